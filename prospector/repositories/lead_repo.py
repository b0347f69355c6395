"""
Lead repository with keyed bulk upsert and batch run queries.
"""
from typing import List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func

from prospector.core.clock import utc_now
from prospector.models.lead import LeadRecord
from prospector.repositories.base import BaseRepository


class LeadRepository(BaseRepository[LeadRecord]):
    """Repository for LeadRecord operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(LeadRecord, session)

    async def upsert_many(self, leads_data: List[dict]) -> int:
        """
        Insert or overwrite leads keyed by id in a single commit.
        Existing rows keep created_at; every other field is replaced.
        """
        if not leads_data:
            return 0

        ids = [data["id"] for data in leads_data]
        result = await self.session.exec(select(LeadRecord).where(LeadRecord.id.in_(ids)))
        existing = {lead.id: lead for lead in result.all()}

        now = utc_now()
        for data in leads_data:
            lead = existing.get(data["id"])
            if lead is None:
                lead = LeadRecord(**data, created_at=now, updated_at=now)
                existing[lead.id] = lead
            else:
                for field, value in data.items():
                    setattr(lead, field, value)
                lead.updated_at = now
            self.session.add(lead)

        await self.session.commit()
        return len(existing)

    async def get_many(self, ids: List[str]) -> List[LeadRecord]:
        """Read back leads by id."""
        if not ids:
            return []
        result = await self.session.exec(select(LeadRecord).where(LeadRecord.id.in_(ids)))
        return result.all()

    async def count_by_batch(self, batch_run_id: str) -> int:
        """Count leads currently tagged with a batch run."""
        return await self.count({"batch_run_id": batch_run_id})

    async def list_batch_runs(self, limit: int = 50) -> List[dict]:
        """Group persisted leads by batch run, newest first."""
        first_seen = func.min(LeadRecord.created_at)
        query = (
            select(LeadRecord.batch_run_id, first_seen, func.count(LeadRecord.id))
            .group_by(LeadRecord.batch_run_id)
            .order_by(first_seen.desc())
            .limit(limit)
        )
        result = await self.session.exec(query)
        return [
            {"batch_run_id": batch_run_id, "created_at": created_at, "count": count}
            for batch_run_id, created_at, count in result.all()
        ]
