"""
Lead model - people fetched by a lead search batch run.
Keyed by the Apollo person id so re-fetches overwrite in place.
"""
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime

from prospector.core.clock import utc_now


class LeadRecord(SQLModel, table=True):
    """
    A person returned by the people search stage.
    Re-fetching the same person re-tags it with the newest batch run.
    """
    __tablename__ = "people_search_leads"

    id: str = Field(primary_key=True)  # Apollo person id
    batch_run_id: str = Field(index=True)

    # Basic info
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    title: Optional[str] = None
    linkedin_url: Optional[str] = None
    organization_name: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
