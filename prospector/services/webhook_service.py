"""
Webhook service - reconciles Apollo's asynchronous enrichment callbacks.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import status

from prospector.config import settings
from prospector.models import is_service_table
from prospector.models.enrichment_log import LogStatus
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.record_store import RecordStore
from prospector.schemas.apollo import parse_person_payload
from prospector.schemas.enrichment import RevealPreferences
from prospector.services.person_mapping import build_person_updates
from prospector.services.reconciliation import update_with_schema_fallback, wait_for_row
from prospector.services.reveal import parse_boolean_flag

logger = logging.getLogger(__name__)


def webhook_preferences(reveal_email: Optional[str], reveal_phone: Optional[str]) -> RevealPreferences:
    """Reveal flags echoed back on the callback URL; unparseable means on."""
    email = parse_boolean_flag(reveal_email)
    phone = parse_boolean_flag(reveal_phone)
    return RevealPreferences(
        reveal_email=True if email is None else email,
        reveal_phone=True if phone is None else phone,
    )


class WebhookService:
    """Service for Apollo webhook callbacks."""

    def __init__(
        self,
        store: RecordStore,
        log_repo: EnrichmentLogRepository,
        row_check_attempts: Optional[int] = None,
        row_check_delay: Optional[float] = None,
        fallback_attempts: Optional[int] = None,
    ):
        self.store = store
        self.log_repo = log_repo
        self.row_check_attempts = row_check_attempts or settings.ROW_CHECK_ATTEMPTS
        self.row_check_delay = settings.ROW_CHECK_DELAY_SECONDS if row_check_delay is None else row_check_delay
        self.fallback_attempts = fallback_attempts or settings.SCHEMA_FALLBACK_MAX_ATTEMPTS

    async def reconcile(
        self,
        record_id: Optional[str],
        table_name: Optional[str],
        reveal_email: Optional[str],
        reveal_phone: Optional[str],
        body: Any,
    ) -> Tuple[int, Dict[str, Any]]:
        """
        Apply one webhook body to the caller's row.

        Returns (status_code, payload). Exactly one audit entry is written
        per call, whatever the outcome.
        """
        record_id = (record_id or "").strip()
        table_name = (table_name or "").strip()
        prefs = webhook_preferences(reveal_email, reveal_phone)

        if not record_id or not table_name:
            logger.warning("Webhook called without record_id or table_name")
            await self.log_repo.append(record_id or "unknown", table_name or "unknown", LogStatus.WEBHOOK_REJECTED, {
                "error": "Missing record_id or table_name",
                "payload": body,
            })
            return status.HTTP_400_BAD_REQUEST, {"error": "Missing record_id or table_name"}

        if is_service_table(table_name):
            error = f"Table '{table_name}' cannot be an enrichment target"
            logger.warning(f"Webhook rejected for {table_name}/{record_id}: service-owned table")
            await self.log_repo.append(record_id, table_name, LogStatus.WEBHOOK_REJECTED, {
                "error": error,
                "payload": body,
            })
            return status.HTTP_400_BAD_REQUEST, {"error": error}

        logger.info(f"Webhook received for {table_name}/{record_id}")

        try:
            return await self._reconcile(record_id, table_name, prefs, body)
        except Exception as e:
            logger.exception(f"Webhook for {table_name}/{record_id} crashed")
            await self.log_repo.rollback()
            await self.log_repo.append(record_id, table_name, LogStatus.ERROR, {"error": str(e)})
            return status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": str(e)}

    async def _reconcile(
        self,
        record_id: str,
        table_name: str,
        prefs: RevealPreferences,
        body: Any,
    ) -> Tuple[int, Dict[str, Any]]:
        parsed = parse_person_payload(body)
        if not parsed.found:
            reason = "No person data found in payload"
            logger.warning(f"Webhook for {table_name}/{record_id}: {reason}")
            await self.log_repo.append(record_id, table_name, LogStatus.WEBHOOK_IGNORED, {
                "payload_shape": parsed.shape.value,
                "reason": reason,
                "payload": body,
            })
            return status.HTTP_200_OK, {"received": True, "processed": False, "reason": reason}

        updates = build_person_updates(parsed.person, prefs, status=LogStatus.COMPLETED)

        row_check = await wait_for_row(
            self.store, table_name, record_id,
            attempts=self.row_check_attempts, delay_seconds=self.row_check_delay,
        )
        if not row_check.found:
            logger.warning(f"Row {table_name}/{record_id} not visible; updating anyway")

        outcome = await update_with_schema_fallback(
            self.store, table_name, record_id, updates, max_attempts=self.fallback_attempts,
        )

        await self.log_repo.append(
            record_id,
            table_name,
            LogStatus.WEBHOOK_RECEIVED if outcome.ok else LogStatus.FAILED,
            {
                "payload_shape": parsed.shape.value,
                "requested_reveal": prefs.as_log(),
                "email_found": outcome.applied.get("email"),
                "phone_count": len(outcome.applied.get("phone_numbers") or []),
                "row_check_found": row_check.found,
                "row_check_attempts": row_check.attempts,
                "removed_columns": outcome.removed_columns,
                "db_update_count": len(outcome.rows),
                "error": outcome.error,
                "apollo_data": parsed.raw_person,
            },
        )

        if not outcome.ok:
            logger.error(f"Webhook update of {table_name}/{record_id} failed: {outcome.error}")
            return status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": outcome.error}

        logger.info(f"Webhook processed for {table_name}/{record_id} ({len(outcome.rows)} rows)")
        return status.HTTP_200_OK, {"received": True, "processed": True}
