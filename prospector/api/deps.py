"""
API dependencies - shared across all routes.
"""
import logging
import secrets
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from prospector.database import get_session
from prospector.config import settings
from prospector.core.exceptions import ConfigurationError, UnauthorizedError
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.record_store import RecordStore, SQLRecordStore
from prospector.services.apollo_service import ApolloService

logger = logging.getLogger(__name__)


async def get_apollo_service() -> AsyncIterator[ApolloService]:
    """Apollo client scoped to one request."""
    apollo = ApolloService()
    try:
        yield apollo
    finally:
        await apollo.aclose()


def get_record_store(session: AsyncSession = Depends(get_session)) -> RecordStore:
    return SQLRecordStore(session)


def get_log_repo(session: AsyncSession = Depends(get_session)) -> EnrichmentLogRepository:
    return EnrichmentLogRepository(session)


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Request body as a dict; anything unparseable or non-object is {}."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        return authorization[7:]
    return None


def _body_secret(body: Dict[str, Any]) -> Optional[str]:
    for key in ("secret_key", "api_secret_key"):
        if isinstance(body.get(key), str):
            return body[key]
    return None


def verify_shared_secret(request: Request, body: Dict[str, Any]) -> None:
    """
    Check the enrichment shared secret.

    Accepted sources, first present wins: x-api-secret-key header, x-api-key
    header, ?secret_key, ?api_secret_key, Authorization: Bearer, body
    secret_key / api_secret_key.
    """
    sources = {
        "has_x_api_secret_key": request.headers.get("x-api-secret-key"),
        "has_x_api_key": request.headers.get("x-api-key"),
        "has_secret_key_query": request.query_params.get("secret_key"),
        "has_api_secret_key_query": request.query_params.get("api_secret_key"),
        "has_bearer_token": _bearer_token(request),
        "has_secret_key_body": _body_secret(body),
    }
    provided = next((value for value in sources.values() if value), "").strip()
    expected = (settings.API_SECRET_KEY or "").strip()

    logger.debug(
        "Auth sources present: "
        + ", ".join(name for name, value in sources.items() if value)
    )

    if not expected:
        logger.error("Server misconfiguration: API_SECRET_KEY is not configured")
        raise ConfigurationError("API_SECRET_KEY")

    if secrets.compare_digest(provided.encode(), expected.encode()):
        return

    apollo_key = (settings.APOLLO_API_KEY or "").strip()
    apollo_key_by_mistake = bool(provided and apollo_key and secrets.compare_digest(provided.encode(), apollo_key.encode()))
    logger.warning("Unauthorized enrichment request: invalid or missing secret key")
    if apollo_key_by_mistake:
        logger.warning("Auth mismatch: caller sent APOLLO_API_KEY where API_SECRET_KEY is required")

    debug = None
    if settings.DEV_MODE:
        debug = {name: bool(value) for name, value in sources.items()}
        debug["provided_apollo_key_by_mistake"] = apollo_key_by_mistake

    if apollo_key_by_mistake:
        message = "Unauthorized: APOLLO_API_KEY is not valid for /api/enrich auth. Use API_SECRET_KEY instead."
    else:
        message = "Unauthorized: Missing valid x-api-secret-key header or secret_key param"
    raise UnauthorizedError(message, debug=debug)
