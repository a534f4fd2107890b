"""
Standard type definitions for database models.

Provides consistent column types for block numbers and on-chain amounts.
"""

from sqlalchemy import BigInteger, Integer, Numeric, String

# Block numbers: signed 64-bit is far beyond any chain height
BlockNumberType = BigInteger

# Raw uint256 token amounts (no decimals applied)
# Precision: 78 digits, enough for 2**256 - 1
TokenAmountType = Numeric(78, 0)

# 0x-prefixed 32-byte hash
HashType = String(66)

# 0x-prefixed 20-byte address
AddressType = String(42)

# Surrogate key for high-volume tables; SQLite only autoincrements INTEGER
BigIdType = BigInteger().with_variant(Integer, "sqlite")
