"""
Filter fingerprinting for resumable company pagination.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional

# Only filters that change which companies come back. Title and seniority
# filters apply to the people stage and must not reset company progress.
COMPANY_FILTER_FIELDS = ("industry_keywords", "company_location", "employee_ranges")


def company_filter_subset(
    industry_keywords: Optional[List[str]] = None,
    company_location: Optional[List[str]] = None,
    employee_ranges: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Build the ordered company filter subset, omitting absent filters."""
    values = {
        "industry_keywords": industry_keywords,
        "company_location": company_location,
        "employee_ranges": employee_ranges,
    }
    return {field: values[field] for field in COMPANY_FILTER_FIELDS if values[field] is not None}


def fingerprint_filters(filters: Dict[str, Any]) -> str:
    """
    Hash a company filter subset into a stable 64-char hex key.

    Key order is preserved as given, so callers should build the subset
    with company_filter_subset(). Used as an opaque checkpoint key only.
    """
    canonical = json.dumps(filters, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
