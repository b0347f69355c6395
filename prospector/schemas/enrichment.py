"""
Enrichment and webhook schemas.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class RevealPreferences(BaseModel):
    """Which contact data the caller asked Apollo to reveal."""
    reveal_email: bool = True
    reveal_phone: bool = True
    enrichment_level: Optional[str] = None  # basic, deep
    requested_fields: List[str] = []

    def as_log(self) -> Dict[str, Any]:
        return {
            "email": self.reveal_email,
            "phone": self.reveal_phone,
            "enrichment_level": self.enrichment_level,
            "requested_fields": self.requested_fields,
        }


class EnrichmentResponse(BaseModel):
    """Enrichment trigger result."""
    success: bool
    enrichment_status: str
    data_found: bool
    requested_reveal: Dict[str, Any]
    extracted_data: Dict[str, Any]
    removed_columns: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "enrichment_status": "pending",
                "data_found": False,
                "requested_reveal": {"email": True, "phone": False, "enrichment_level": "basic", "requested_fields": []},
                "extracted_data": {"enrichment_status": "pending"},
                "removed_columns": []
            }
        }


class WebhookAck(BaseModel):
    """Apollo webhook acknowledgement."""
    received: bool = True
    processed: bool
    reason: Optional[str] = None


class UpdateOutcome(BaseModel):
    """Result of a schema-tolerant update against a caller-owned table."""
    rows: List[Dict[str, Any]] = []
    applied: Dict[str, Any] = {}
    removed_columns: List[str] = []
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RowCheck(BaseModel):
    """Outcome of waiting for a caller-owned row to become visible."""
    found: bool
    attempts: int
