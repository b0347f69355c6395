import asyncio
import logging
from typing import Optional, Dict, Any, List

import httpx

from prospector.config import settings
from prospector.core.exceptions import ConfigurationError, ExternalServiceError, RateLimitedError
from prospector.schemas.enrichment import RevealPreferences

logger = logging.getLogger(__name__)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def clean_domain(domain: str) -> str:
    """Strip scheme and trailing slash from a company website/domain."""
    domain = domain.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
            break
    return domain.rstrip("/")


class ApolloService:
    """
    Apollo.io client for company/people search and person enrichment.
    API Docs: https://docs.apollo.io/reference
    """

    SERVICE_NAME = "Apollo API"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        rate_limit_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.APOLLO_API_KEY or "").strip()
        self.base_url = base_url or settings.APOLLO_BASE_URL
        self.rate_limit_retries = (
            settings.RATE_LIMIT_RETRIES if rate_limit_retries is None else rate_limit_retries
        )
        self.backoff_seconds = (
            settings.RATE_LIMIT_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.APOLLO_TIMEOUT_SECONDS,
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
            "accept": "application/json",
            "x-api-key": self.api_key,
        }

    def ensure_configured(self) -> None:
        """Raise before any remote call when the API key is missing."""
        if not self.api_key:
            raise ConfigurationError("APOLLO_API_KEY")

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POST to Apollo, retrying 429 responses with linear backoff.

        Raises RateLimitedError once retries are exhausted and
        ExternalServiceError for any other non-success outcome.
        """
        self.ensure_configured()
        attempts = self.rate_limit_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                response = await self.client.post(
                    path,
                    headers=self.headers,
                    json=json if json is not None else {},
                    params=params,
                )
            except httpx.TimeoutException as e:
                logger.error(f"Apollo API timeout on {path}")
                raise ExternalServiceError(self.SERVICE_NAME, "Request timeout") from e
            except httpx.HTTPError as e:
                logger.error(f"Apollo API transport error on {path}: {e}")
                raise ExternalServiceError(self.SERVICE_NAME, str(e)) from e

            if response.status_code == 429:
                if attempt < attempts:
                    delay = self.backoff_seconds * attempt
                    logger.warning(f"Apollo rate limit (429) on {path}. Retrying in {delay}s...")
                    await asyncio.sleep(delay)
                    continue
                logger.warning(f"Apollo rate limit (429) on {path}. Giving up after {attempt} attempts")
                raise RateLimitedError(self.SERVICE_NAME, attempts=attempt)

            if response.status_code == 402:
                logger.error("Apollo API credits exhausted")
                raise ExternalServiceError(self.SERVICE_NAME, "Credits exhausted", status=402)

            if not response.is_success:
                logger.error(f"Apollo API error on {path}: {response.status_code} - {response.text}")
                raise ExternalServiceError(
                    self.SERVICE_NAME,
                    f"Apollo API Error ({response.status_code})",
                    status=response.status_code,
                )

            try:
                return response.json()
            except ValueError as e:
                raise ExternalServiceError(self.SERVICE_NAME, "Invalid JSON response") from e

        # Unreachable: the loop either returns or raises
        raise RateLimitedError(self.SERVICE_NAME, attempts=attempts)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search_companies(
        self,
        page: int,
        per_page: int,
        industry_keywords: Optional[List[str]] = None,
        company_location: Optional[List[str]] = None,
        employee_ranges: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """One page of organizations matching the company filters."""
        payload: Dict[str, Any] = {"page": page, "per_page": per_page}
        if industry_keywords:
            payload["q_keywords"] = " ".join(industry_keywords)
        if company_location:
            payload["organization_locations"] = company_location
        if employee_ranges:
            payload["organization_num_employees_ranges"] = employee_ranges

        data = await self._post("/mixed_companies/search", json=payload)
        return data.get("organizations") or data.get("accounts") or []

    async def search_people(
        self,
        organization_ids: List[str],
        page: int,
        per_page: int,
        titles: Optional[List[str]] = None,
        seniorities: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """One page of people working at the given organizations."""
        payload: Dict[str, Any] = {
            "organization_ids": organization_ids,
            "page": page,
            "per_page": per_page,
        }
        if titles:
            payload["person_titles"] = titles
        if seniorities:
            payload["person_seniorities"] = seniorities

        data = await self._post("/mixed_people/search", json=payload)
        return data.get("people") or []

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    def _reveal_params(self, prefs: RevealPreferences, webhook_url: str) -> Dict[str, str]:
        return {
            "reveal_personal_emails": _flag(prefs.reveal_email),
            "reveal_phone_number": _flag(prefs.reveal_phone),
            "webhook_url": webhook_url,
        }

    async def enrich_by_id(
        self,
        apollo_id: str,
        prefs: RevealPreferences,
        webhook_url: str,
    ) -> Dict[str, Any]:
        """Enrich a known Apollo person through bulk_match."""
        return await self._post(
            "/people/bulk_match",
            json={"details": [{"id": apollo_id}]},
            params=self._reveal_params(prefs, webhook_url),
        )

    async def match_person(
        self,
        lead: Dict[str, Any],
        prefs: RevealPreferences,
        webhook_url: str,
    ) -> Dict[str, Any]:
        """
        Find and enrich a person from whatever identifiers the lead carries:
        name, email, organization name/domain, LinkedIn URL.
        """
        params = self._reveal_params(prefs, webhook_url)
        for field in ("first_name", "last_name", "email", "organization_name", "linkedin_url"):
            value = lead.get(field)
            if value:
                params[field] = str(value)

        domain = lead.get("organization_domain") or lead.get("domain")
        if domain:
            params["domain"] = clean_domain(str(domain))

        return await self._post("/people/match", json={}, params=params)
