"""
Paginated Apollo fetchers for the lead search pipeline.

Both loops are strictly sequential: page numbers feed the resumable
checkpoint, so truncation must land on a known page boundary.
"""
import logging
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel

from prospector.core.exceptions import ExternalServiceError
from prospector.services.apollo_service import ApolloService

logger = logging.getLogger(__name__)


class CompanyPage(BaseModel):
    """Organizations accumulated by one company fetch."""
    organizations: List[Dict[str, Any]] = []
    start_page: int
    last_page_fetched: int  # start_page - 1 when nothing came back
    last_page_consumed: int  # only pages whose organizations were all kept

    @property
    def advanced(self) -> bool:
        return self.last_page_consumed >= self.start_page


def chunked(items: List[str], size: int) -> Iterator[List[str]]:
    """Split a list into consecutive chunks of at most `size` items."""
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def fetch_companies(
    apollo: ApolloService,
    filters: Dict[str, Any],
    cap: int,
    start_page: int = 1,
    page_size: int = 100,
    max_pages: int = 10,
) -> CompanyPage:
    """
    Accumulate organizations from `start_page` until `cap` is reached, the
    provider runs out (empty or short page) or `max_pages` were requested.

    Any remote failure stops pagination and keeps what was accumulated.
    """
    organizations: List[Dict[str, Any]] = []
    page = start_page
    last_fetched = start_page - 1
    last_consumed = start_page - 1
    pages_requested = 0

    while len(organizations) < cap and pages_requested < max_pages:
        try:
            batch = await apollo.search_companies(
                page=page,
                per_page=page_size,
                industry_keywords=filters.get("industry_keywords"),
                company_location=filters.get("company_location"),
                employee_ranges=filters.get("employee_ranges"),
            )
        except ExternalServiceError as e:
            logger.error(f"Company search stopped at page {page}: {e.message}")
            break
        pages_requested += 1

        if not batch:
            break

        last_fetched = page
        room = cap - len(organizations)
        organizations.extend(batch[:room])
        if len(batch) <= room:
            last_consumed = page

        if len(batch) < page_size:
            break
        page += 1

    if pages_requested >= max_pages and len(organizations) < cap:
        logger.info(f"Company search hit the {max_pages} page safety limit")

    return CompanyPage(
        organizations=organizations,
        start_page=start_page,
        last_page_fetched=last_fetched,
        last_page_consumed=last_consumed,
    )


async def fetch_people(
    apollo: ApolloService,
    organization_ids: List[str],
    budget: int,
    titles: Optional[List[str]] = None,
    seniorities: Optional[List[str]] = None,
    page_size: int = 100,
    max_pages: int = 10,
) -> List[Dict[str, Any]]:
    """
    People at one chunk of organizations, never more than `budget`.
    Same stop conditions and failure handling as fetch_companies.
    """
    people: List[Dict[str, Any]] = []
    if budget <= 0 or not organization_ids:
        return people

    page = 1
    while len(people) < budget and page <= max_pages:
        try:
            batch = await apollo.search_people(
                organization_ids=organization_ids,
                page=page,
                per_page=page_size,
                titles=titles,
                seniorities=seniorities,
            )
        except ExternalServiceError as e:
            logger.error(f"People search stopped at page {page}: {e.message}")
            break

        if not batch:
            break

        people.extend(batch)
        if len(batch) < page_size:
            break
        page += 1

    return people[:budget]
