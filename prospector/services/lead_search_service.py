"""
Lead search service - resumable company search, chunked people search,
lead persistence.
"""
import uuid
import logging
from typing import Any, Dict, List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from prospector.config import settings
from prospector.core.exceptions import PersistenceError, ValidationError
from prospector.core.fingerprint import fingerprint_filters
from prospector.repositories.lead_repo import LeadRepository
from prospector.repositories.progress_repo import SearchProgressRepository
from prospector.schemas.lead_search import LeadSearchRequest
from prospector.services.apollo_service import ApolloService
from prospector.services.pagination import chunked, fetch_companies, fetch_people

logger = logging.getLogger(__name__)


def to_lead_record(person: Dict[str, Any], batch_run_id: str) -> Dict[str, Any]:
    """Normalize an Apollo person into a people_search_leads row."""
    organization = person.get("organization") or {}
    return {
        "id": str(person["id"]),
        "first_name": person.get("first_name"),
        "last_name": person.get("last_name"),
        "email": person.get("email"),
        "title": person.get("title"),
        "linkedin_url": person.get("linkedin_url"),
        "organization_name": organization.get("name") if isinstance(organization, dict) else None,
        "batch_run_id": batch_run_id,
    }


class LeadSearchService:
    """Service for lead search batch runs."""

    def __init__(self, session: AsyncSession, apollo: ApolloService):
        self.session = session
        self.apollo = apollo
        self.lead_repo = LeadRepository(session)
        self.progress_repo = SearchProgressRepository(session)

    @staticmethod
    def company_cap(max_results: int) -> int:
        """
        Companies to fetch per run: at least one full page, more when more
        leads are requested. max_results itself caps leads, not companies.
        """
        return max(max_results, settings.COMPANY_PAGE_SIZE)

    async def search(self, request: LeadSearchRequest) -> dict:
        """Run one batch: companies, then people, then persistence."""
        user_id = (request.user_id or "").strip()
        if not user_id:
            raise ValidationError("Missing required field: user_id")
        self.apollo.ensure_configured()

        batch_run_id = str(uuid.uuid4())
        logger.info(f"Starting batch run: {batch_run_id}")

        # Step 1: Resume company pagination from the checkpoint
        company_filters = request.company_filters()
        filters_hash = fingerprint_filters(company_filters)
        last_page = await self.progress_repo.get_last_page(user_id, filters_hash)
        start_page = (last_page or 0) + 1
        logger.info(f"Company search for {user_id}/{filters_hash[:12]} starts at page {start_page}")

        companies = await fetch_companies(
            self.apollo,
            company_filters,
            cap=self.company_cap(request.max_results),
            start_page=start_page,
            page_size=settings.COMPANY_PAGE_SIZE,
            max_pages=settings.COMPANY_MAX_PAGES_PER_RUN,
        )
        logger.info(f"Found {len(companies.organizations)} companies (pages {start_page}-{companies.last_page_fetched}).")

        if companies.advanced:
            await self._save_progress(user_id, filters_hash, companies.last_page_consumed)

        # Step 2: People at those companies, chunked by organization id
        organization_ids = list(dict.fromkeys(
            str(org["id"]) for org in companies.organizations if org.get("id")
        ))
        leads = await self.collect_people(
            organization_ids,
            titles=request.titles,
            seniorities=request.seniorities,
            max_results=request.max_results,
        )
        logger.info(f"Found {len(leads)} leads.")

        # Step 3: Persist
        await self.save_leads(leads, batch_run_id)

        return {
            "batch_run_id": batch_run_id,
            "leads_count": len(leads),
            "leads": leads,
        }

    async def collect_people(
        self,
        organization_ids: List[str],
        titles: Optional[List[str]],
        seniorities: Optional[List[str]],
        max_results: int,
    ) -> List[Dict[str, Any]]:
        """Query people chunk by chunk until max_results distinct people are collected."""
        collected: Dict[str, Dict[str, Any]] = {}

        for chunk in chunked(organization_ids, settings.ORG_ID_CHUNK_SIZE):
            remaining = max_results - len(collected)
            if remaining <= 0:
                break

            people = await fetch_people(
                self.apollo,
                chunk,
                budget=remaining,
                titles=titles,
                seniorities=seniorities,
                page_size=settings.PEOPLE_PAGE_SIZE,
                max_pages=settings.PEOPLE_MAX_PAGES_PER_CHUNK,
            )
            for person in people:
                person_id = person.get("id")
                if not person_id:
                    logger.warning("Skipping Apollo person without id")
                    continue
                collected.setdefault(str(person_id), person)

        return list(collected.values())[:max_results]

    async def save_leads(self, leads: List[Dict[str, Any]], batch_run_id: str) -> None:
        """Upsert leads keyed by Apollo id and check they are visible."""
        if not leads:
            return

        records = [to_lead_record(lead, batch_run_id) for lead in leads]
        try:
            await self.lead_repo.upsert_many(records)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Error saving leads for batch {batch_run_id}: {e}")
            raise PersistenceError(f"Database error while saving leads: {e}") from e

        ids = [record["id"] for record in records]
        try:
            visible = await self.lead_repo.get_many(ids)
            tagged = await self.lead_repo.count_by_batch(batch_run_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not verify saved leads for batch {batch_run_id}: {e}")
            return

        if len(visible) != len(records) or tagged != len(records):
            logger.warning(
                f"Batch {batch_run_id}: wrote {len(records)} leads but {len(visible)} are visible "
                f"and {tagged} are tagged with the batch"
            )

    async def _save_progress(self, user_id: str, filters_hash: str, page: int) -> None:
        try:
            await self.progress_repo.save_last_page(user_id, filters_hash, page)
        except SQLAlchemyError as e:
            # Resumability is best effort; the search still returns its leads
            await self.session.rollback()
            logger.error(f"Failed to save search progress for {user_id}/{filters_hash[:12]}: {e}")
