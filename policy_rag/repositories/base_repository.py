"""Shared repository plumbing for the relational store."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from policy_rag.core.exceptions import DatabaseError
from policy_rag.utils.logging import get_logger

ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Lookup, insert and delete by primary key for one model.

    Repositories flush but never commit; the caller owns the transaction.
    Driver errors surface as ``DatabaseError``.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model
        self.logger = LOGGER

    @asynccontextmanager
    async def _translate_errors(self, action: str) -> AsyncIterator[None]:
        """Log and re-raise ``SQLAlchemyError`` raised inside the block as ``DatabaseError``."""
        try:
            yield
        except SQLAlchemyError as e:
            self.logger.error(f"Database error while trying to {action}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to {action}", original_error=e) from e

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        async with self._translate_errors(f"load {self.model.__name__} {id}"):
            return await self.session.get(self.model, id)

    async def create(self, **fields) -> ModelType:
        instance = self.model(**fields)
        async with self._translate_errors(f"create {self.model.__name__}"):
            self.session.add(instance)
            await self.session.flush()
        return instance

    async def delete(self, id: UUID) -> bool:
        """Delete by primary key. Returns False when no such row exists."""
        instance = await self.get_by_id(id)
        if instance is None:
            return False

        async with self._translate_errors(f"delete {self.model.__name__} {id}"):
            await self.session.delete(instance)
            await self.session.flush()
        return True
