"""
Enrichment log model - audit trail for enrichment attempts and webhook events.
"""
import uuid
from datetime import datetime
from typing import Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB

from prospector.core.clock import utc_now


class EnrichmentLog(SQLModel, table=True):
    """
    One row per enrichment attempt or webhook callback. Append-only.
    """
    __tablename__ = "enrichment_logs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    # Target row being enriched (owned by the caller, may not exist yet)
    record_id: str = Field(index=True)
    table_name: str

    status: str = Field(index=True)  # completed, pending, failed, webhook_received, webhook_ignored, error

    details: Dict[str, Any] = Field(
        default={}, sa_column=Column(JSON().with_variant(JSONB, "postgresql"))
    )
    # Example: {"match_method": "apollo_id", "row_check_found": false, "removed_columns": ["headline"]}

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


# Status constants for consistency
class LogStatus:
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_IGNORED = "webhook_ignored"
    WEBHOOK_REJECTED = "webhook_rejected"
    ERROR = "error"
