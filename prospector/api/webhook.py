"""
Apollo webhook route.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from prospector.services.webhook_service import WebhookService
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.record_store import RecordStore
from prospector.schemas.enrichment import WebhookAck
from prospector.schemas.common import ErrorResponse
from prospector.api.deps import get_log_repo, get_record_store, read_json_body

router = APIRouter(prefix="/api", tags=["webhook"])


@router.post(
    "/apollo-webhook",
    responses={200: {"model": WebhookAck}, 400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def apollo_webhook(
    request: Request,
    record_id: Optional[str] = None,
    table_name: Optional[str] = None,
    reveal_email: Optional[str] = None,
    reveal_phone: Optional[str] = None,
    store: RecordStore = Depends(get_record_store),
    log_repo: EnrichmentLogRepository = Depends(get_log_repo)
):
    """Asynchronous enrichment callback from Apollo. Unauthenticated."""
    body = await read_json_body(request)
    service = WebhookService(store, log_repo)
    status_code, payload = await service.reconcile(record_id, table_name, reveal_email, reveal_phone, body)
    return JSONResponse(status_code=status_code, content=payload)
