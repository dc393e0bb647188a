from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.utils.logger import get_logger


class BaseService:
    """Base service class with database dependency injection."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = get_logger(self.__class__.__name__)

    async def commit(self) -> None:
        """Commit the current unit of work, rolling back if it fails."""
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
