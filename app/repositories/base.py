"""
Base repository.

Shared write primitives for the indexer repositories: plain inserts,
dialect-aware upserts and pair-scoped deletes above a block.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import Base
from app.models.pair import PairKey

# Generic type for model
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository bound to one model and one session.

    Repositories never commit; the caller owns the transaction.

    Type Parameters:
        ModelType: SQLAlchemy model class

    Example:
        class ReorgRecordRepository(BaseRepository[ReorgRecord]):
            def __init__(self, session: AsyncSession):
                super().__init__(ReorgRecord, session)
    """

    def __init__(
        self, model: type[ModelType], session: AsyncSession
    ) -> None:
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **data: Any) -> ModelType:
        """
        Insert one row and return it with server defaults loaded.

        Args:
            **data: Column values

        Returns:
            Created entity
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    def _insert(self):
        """INSERT construct with ON CONFLICT support for the bound dialect."""
        dialect = self.session.bind.dialect.name
        if dialect == "sqlite":
            return sqlite.insert(self.model)
        return postgresql.insert(self.model)

    async def upsert_many(
        self,
        rows: list[dict[str, Any]],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """
        Insert rows, overwriting `update_columns` on key conflict.

        Args:
            rows: Row dicts
            conflict_columns: Columns of the unique constraint
            update_columns: Columns refreshed when the row exists

        Returns:
            Number of rows written
        """
        if not rows:
            return 0

        stmt = self._insert().values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        await self.session.execute(stmt)
        return len(rows)


class PairScopedRepository(BaseRepository[ModelType]):
    """Repository for rows keyed by (chain_id, contract_address, block_number)."""

    def _pair_clause(self, key: PairKey) -> list[Any]:
        return [
            self.model.chain_id == key.chain_id,
            self.model.contract_address == key.contract_address,
        ]

    async def delete_above(self, key: PairKey, block_number: int) -> int:
        """
        Delete rows of a pair with block_number > `block_number`.

        Returns:
            Number of deleted rows
        """
        stmt = delete(self.model).where(
            *self._pair_clause(key), self.model.block_number > block_number
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
