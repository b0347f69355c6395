"""
Enrichment log repository.
"""
import logging
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from prospector.models.enrichment_log import EnrichmentLog
from prospector.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class EnrichmentLogRepository(BaseRepository[EnrichmentLog]):
    """Repository for EnrichmentLog operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(EnrichmentLog, session)

    async def append(
        self,
        record_id: str,
        table_name: str,
        status: str,
        details: Optional[dict] = None
    ) -> Optional[EnrichmentLog]:
        """
        Append an audit entry. Audit writes never fail the caller: errors
        are logged and None is returned.
        """
        try:
            return await self.create({
                "record_id": record_id,
                "table_name": table_name,
                "status": status,
                "details": jsonable_encoder(details or {}),
            })
        except SQLAlchemyError as e:
            logger.error(f"Failed to write enrichment log for {table_name}/{record_id}: {e}")
            await self.session.rollback()
            return None

    async def rollback(self) -> None:
        """Discard a failed transaction on the shared session before appending."""
        await self.session.rollback()
