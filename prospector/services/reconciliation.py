"""
Reconciliation helpers for caller-owned enrichment rows.

The caller may still be committing the target row when enrichment (or the
webhook) arrives, and its table may lack some of the columns we know how to
fill. Neither is fatal on its own.
"""
import asyncio
import logging
from typing import Any, Dict

from prospector.core.exceptions import MissingColumnError, PersistenceError
from prospector.repositories.record_store import RecordStore
from prospector.schemas.enrichment import RowCheck, UpdateOutcome

logger = logging.getLogger(__name__)


async def wait_for_row(
    store: RecordStore,
    table_name: str,
    record_id: str,
    attempts: int = 3,
    delay_seconds: float = 2.0,
) -> RowCheck:
    """Poll for the row a bounded number of times with a fixed delay."""
    for attempt in range(1, attempts + 1):
        try:
            found = await store.exists(table_name, record_id)
        except PersistenceError as e:
            logger.warning(f"Row check {attempt} for {table_name}/{record_id} failed: {e.message}")
            found = False

        if found:
            logger.info(f"Row {table_name}/{record_id} found on attempt {attempt}")
            return RowCheck(found=True, attempts=attempt)

        logger.info(f"Attempt {attempt}: row {table_name}/{record_id} not found yet.")
        if attempt < attempts:
            await asyncio.sleep(delay_seconds)

    return RowCheck(found=False, attempts=attempts)


async def update_with_schema_fallback(
    store: RecordStore,
    table_name: str,
    record_id: str,
    updates: Dict[str, Any],
    max_attempts: int = 20,
) -> UpdateOutcome:
    """
    Apply `updates`, dropping each column the table reports missing and
    retrying, up to `max_attempts` updates. Never raises for store errors;
    the outcome carries the error instead.
    """
    safe_updates = dict(updates)
    removed_columns = []

    for _ in range(max_attempts):
        try:
            rows = await store.update(table_name, record_id, safe_updates)
        except MissingColumnError as e:
            if e.column not in safe_updates:
                return UpdateOutcome(applied=safe_updates, removed_columns=removed_columns, error=e.message)

            del safe_updates[e.column]
            removed_columns.append(e.column)
            logger.warning(f"Schema fallback: removed missing column '{e.column}' for table '{table_name}'.")

            if not safe_updates:
                return UpdateOutcome(
                    applied=safe_updates,
                    removed_columns=removed_columns,
                    error=f"No valid columns remain after schema fallback for table {table_name}",
                )
            continue
        except PersistenceError as e:
            return UpdateOutcome(applied=safe_updates, removed_columns=removed_columns, error=e.message)

        return UpdateOutcome(rows=rows, applied=safe_updates, removed_columns=removed_columns)

    return UpdateOutcome(
        applied=safe_updates,
        removed_columns=removed_columns,
        error=f"Exceeded schema fallback attempts for table {table_name}",
    )
