"""
Enrichment API routes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from prospector.services.apollo_service import ApolloService
from prospector.services.enrichment_service import EnrichmentService
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.record_store import RecordStore
from prospector.schemas.enrichment import EnrichmentResponse
from prospector.schemas.common import ErrorResponse
from prospector.api.deps import (
    get_apollo_service, get_log_repo, get_record_store, read_json_body, verify_shared_secret
)

router = APIRouter(prefix="/api", tags=["enrichment"])


@router.post(
    "/enrich",
    response_model=EnrichmentResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def enrich_record(
    request: Request,
    apollo: ApolloService = Depends(get_apollo_service),
    store: RecordStore = Depends(get_record_store),
    log_repo: EnrichmentLogRepository = Depends(get_log_repo)
):
    """
    Enrich one caller-owned row through Apollo.
    Apollo also calls the webhook later with the revealed data.
    """
    body = await read_json_body(request)
    verify_shared_secret(request, body)

    service = EnrichmentService(apollo, store, log_repo)
    return await service.enrich(body)


@router.get("/enrich-health")
async def enrich_health_get():
    """Reachability check."""
    return {
        "status": "ok",
        "message": "Enrichment endpoint is reachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/enrich-health")
async def enrich_health_post(request: Request):
    """Reachability check via POST; reports secret presence, never its value."""
    body = await read_json_body(request)
    return {
        "status": "ok",
        "message": "Enrichment endpoint is reachable via POST",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "received_keys": sorted(key for key in body if key not in ("secret_key", "api_secret_key")),
        "headers": {
            "x-api-secret-key": "present" if request.headers.get("x-api-secret-key") else "missing"
        },
    }
