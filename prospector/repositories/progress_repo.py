"""
Search progress repository - company pagination checkpoints.
"""
from typing import Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from prospector.core.clock import utc_now
from prospector.models.progress import SearchProgress
from prospector.repositories.base import BaseRepository


class SearchProgressRepository(BaseRepository[SearchProgress]):
    """Repository for SearchProgress checkpoints keyed by (user_id, filters_hash)."""

    def __init__(self, session: AsyncSession):
        super().__init__(SearchProgress, session)

    async def get_last_page(self, user_id: str, filters_hash: str) -> Optional[int]:
        """Last fully consumed company page, or None when no search ran yet."""
        progress = await self.get((user_id, filters_hash))
        if not progress:
            return None
        return progress.last_company_page

    async def save_last_page(self, user_id: str, filters_hash: str, page: int) -> SearchProgress:
        """
        Upsert the checkpoint. A lower page than the stored one is ignored,
        so a stale concurrent writer cannot move the checkpoint backwards.
        """
        progress = await self.get((user_id, filters_hash))
        if progress is None:
            progress = SearchProgress(
                user_id=user_id,
                filters_hash=filters_hash,
                last_company_page=page,
            )
        else:
            progress.last_company_page = max(progress.last_company_page, page)
            progress.updated_at = utc_now()

        self.session.add(progress)
        await self.session.commit()
        await self.session.refresh(progress)
        return progress
