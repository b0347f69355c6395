"""
Search progress model - resumable company pagination checkpoint.
"""
from datetime import datetime

from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime

from prospector.core.clock import utc_now


class SearchProgress(SQLModel, table=True):
    """
    Last fully consumed company page per user and company filter fingerprint.
    Upserted on every search sharing the key; never deleted here.
    """
    __tablename__ = "search_progress"

    user_id: str = Field(primary_key=True)
    filters_hash: str = Field(primary_key=True, max_length=64)
    last_company_page: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
