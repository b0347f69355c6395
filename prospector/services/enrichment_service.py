"""
Enrichment service - dispatches Apollo enrichment for a caller-owned row.

Apollo answers synchronously when it already knows the person and also
calls the webhook later; this service handles the synchronous half and
leaves the row "pending" otherwise.
"""
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from prospector.config import settings
from prospector.core.exceptions import (
    ExternalServiceError,
    PersistenceError,
    ProspectorException,
    ValidationError,
)
from prospector.models import is_service_table
from prospector.models.enrichment_log import LogStatus
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.record_store import RecordStore
from prospector.schemas.apollo import parse_person_payload
from prospector.schemas.enrichment import RevealPreferences
from prospector.services.apollo_service import ApolloService
from prospector.services.person_mapping import build_person_updates, status_updates
from prospector.services.reconciliation import update_with_schema_fallback, wait_for_row
from prospector.services.reveal import resolve_reveal_preferences

logger = logging.getLogger(__name__)


def build_webhook_url(record_id: str, table_name: str, prefs: RevealPreferences) -> str:
    """Callback URL carrying everything the webhook needs to reconcile."""
    query = urlencode({
        "record_id": record_id,
        "table_name": table_name,
        "reveal_email": "true" if prefs.reveal_email else "false",
        "reveal_phone": "true" if prefs.reveal_phone else "false",
    })
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{settings.WEBHOOK_PATH}?{query}"


def parse_enrich_request(body: Any) -> Tuple[str, str, Dict[str, Any]]:
    """Validate the trigger body; returns (record_id, table_name, lead)."""
    body = body if isinstance(body, dict) else {}
    record_id = str(body.get("record_id") or "").strip()
    table_name = str(body.get("table_name") or "").strip() or settings.DEFAULT_TARGET_TABLE
    lead = body.get("lead")

    if not record_id or not isinstance(lead, dict) or not lead:
        raise ValidationError("Missing required fields: record_id, lead, or table_name")
    if is_service_table(table_name):
        raise ValidationError(f"Table '{table_name}' cannot be an enrichment target", field="table_name")
    return record_id, table_name, lead


class EnrichmentService:
    """Service for enrichment dispatch."""

    def __init__(
        self,
        apollo: ApolloService,
        store: RecordStore,
        log_repo: EnrichmentLogRepository,
        row_check_attempts: Optional[int] = None,
        row_check_delay: Optional[float] = None,
        fallback_attempts: Optional[int] = None,
    ):
        self.apollo = apollo
        self.store = store
        self.log_repo = log_repo
        self.row_check_attempts = row_check_attempts or settings.ROW_CHECK_ATTEMPTS
        self.row_check_delay = settings.ROW_CHECK_DELAY_SECONDS if row_check_delay is None else row_check_delay
        self.fallback_attempts = fallback_attempts or settings.SCHEMA_FALLBACK_MAX_ATTEMPTS

    async def enrich(self, body: Any) -> dict:
        """
        Validate, dispatch and reconcile one enrichment request.

        Raises ValidationError / ConfigurationError before anything is sent,
        PersistenceError when the target row could not be updated. Any other
        failure is audit-logged and re-raised as a 500.
        """
        record_id, table_name, lead = parse_enrich_request(body)
        prefs = resolve_reveal_preferences(body)
        self.apollo.ensure_configured()

        logger.info(f"Processing record {record_id} for table {table_name}")
        logger.info(
            f"Requested reveal settings: email={prefs.reveal_email}, phone={prefs.reveal_phone}, "
            f"level={prefs.enrichment_level or 'n/a'}"
        )

        try:
            return await self._dispatch(record_id, table_name, lead, prefs)
        except ProspectorException:
            raise
        except Exception as e:
            logger.exception(f"Enrichment of {table_name}/{record_id} crashed")
            await self.log_repo.rollback()
            await self.log_repo.append(record_id, table_name, LogStatus.ERROR, {"error": str(e)})
            raise ProspectorException(str(e) or "Internal Server Error") from e

    async def _dispatch(
        self,
        record_id: str,
        table_name: str,
        lead: Dict[str, Any],
        prefs: RevealPreferences,
    ) -> dict:
        webhook_url = build_webhook_url(record_id, table_name, prefs)
        apollo_id = str(lead.get("apollo_id") or lead.get("id") or "").strip()
        match_method = "apollo_id" if apollo_id else "people_match"

        # 1. Call Apollo (enrich by id, or search/match)
        remote_error: Optional[str] = None
        response: Dict[str, Any] = {}
        try:
            if apollo_id:
                logger.info(f"Enriching via Apollo ID: {apollo_id}")
                response = await self.apollo.enrich_by_id(apollo_id, prefs, webhook_url)
            else:
                logger.info("Enriching via people match")
                response = await self.apollo.match_person(lead, prefs, webhook_url)
        except ExternalServiceError as e:
            remote_error = e.message

        # 2. Map an immediate person, if Apollo sent one
        parsed = parse_person_payload(response)
        if remote_error:
            updates = status_updates(LogStatus.FAILED)
        elif parsed.found:
            updates = build_person_updates(parsed.person, prefs, status=LogStatus.COMPLETED)
        else:
            logger.info("No immediate match from Apollo; waiting for webhook.")
            updates = status_updates(LogStatus.PENDING)
        enrichment_status = updates["enrichment_status"]

        # 3. Wait for the caller's row, then update what the table accepts
        row_check = await wait_for_row(
            self.store, table_name, record_id,
            attempts=self.row_check_attempts, delay_seconds=self.row_check_delay,
        )
        outcome = await update_with_schema_fallback(
            self.store, table_name, record_id, updates, max_attempts=self.fallback_attempts,
        )
        if outcome.removed_columns:
            logger.warning(f"Schema fallback removed columns for {table_name}: {', '.join(outcome.removed_columns)}")

        final_status = enrichment_status
        if not outcome.ok:
            logger.error(f"Update of {table_name}/{record_id} failed: {outcome.error}")
            final_status = LogStatus.FAILED

        # 4. Audit
        await self.log_repo.append(record_id, table_name, final_status, {
            "match_method": match_method,
            "match_found": parsed.found and not remote_error,
            "payload_shape": parsed.shape.value,
            "is_async": True,
            "requested_reveal": prefs.as_log(),
            "email_found": outcome.applied.get("email"),
            "phone_count": len(outcome.applied.get("phone_numbers") or []),
            "db_update_count": len(outcome.rows),
            "row_check_found": row_check.found,
            "row_check_attempts": row_check.attempts,
            "removed_columns": outcome.removed_columns,
            "check_error": None if row_check.found else "Row not found after retries",
            "error": outcome.error or remote_error,
            "applied_updates": outcome.applied,
            "apollo_data": parsed.raw_person,
        })

        if not outcome.ok:
            raise PersistenceError(f"Database update failed: {outcome.error}")

        return {
            "success": enrichment_status != LogStatus.FAILED,
            "enrichment_status": enrichment_status,
            "data_found": parsed.found,
            "requested_reveal": prefs.as_log(),
            "extracted_data": outcome.applied,
            "removed_columns": outcome.removed_columns,
        }
