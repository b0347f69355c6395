"""
Lead search schemas.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from prospector.core.fingerprint import company_filter_subset


class LeadSearchRequest(BaseModel):
    """Start a lead search batch run."""
    user_id: Optional[str] = None  # Required; checked by the route for a 400
    industry_keywords: Optional[List[str]] = None
    company_location: Optional[List[str]] = None
    titles: Optional[List[str]] = None
    seniorities: Optional[List[str]] = None
    employee_ranges: Optional[List[str]] = None
    max_results: int = Field(default=100, ge=1)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user-123",
                "industry_keywords": ["software", "saas"],
                "company_location": ["United States"],
                "titles": ["CEO", "CTO"],
                "employee_ranges": ["11,50"],
                "max_results": 50
            }
        }

    def company_filters(self) -> Dict[str, Any]:
        """Filters that drive company pagination (and its checkpoint key)."""
        return company_filter_subset(
            industry_keywords=self.industry_keywords,
            company_location=self.company_location,
            employee_ranges=self.employee_ranges,
        )


class LeadSearchResponse(BaseModel):
    """Lead search result."""
    batch_run_id: str
    leads_count: int
    leads: List[Dict[str, Any]]


class BatchRunSummary(BaseModel):
    """One batch run as seen from its persisted leads."""
    batch_run_id: str
    created_at: Optional[datetime]
    count: int
