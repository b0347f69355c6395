"""
Mapping of an Apollo person onto enrichment target columns.

Shared by the synchronous enrichment path and the webhook so both write the
same fields under the same reveal rules.
"""
import logging
from typing import Any, Dict, List, Optional

from prospector.core.clock import utc_now
from prospector.schemas.apollo import ApolloPerson
from prospector.schemas.enrichment import RevealPreferences

logger = logging.getLogger(__name__)

# Apollo returns this instead of an address when the email is not unlocked
EMAIL_PLACEHOLDER = "email_not_unlocked@apollo.io"

HEADQUARTERS_PHONE_TYPE = "work_headquarters"


def resolve_email(person: ApolloPerson) -> Optional[str]:
    """First real email: the direct field, then the `emails` entries."""
    candidates: List[Any] = [person.email]
    for entry in person.emails or []:
        candidates.append(entry.get("email") if isinstance(entry, dict) else entry)

    for candidate in candidates:
        if isinstance(candidate, str):
            email = candidate.strip()
            if email and email != EMAIL_PLACEHOLDER:
                return email
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _departments(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    departments = [entry for entry in value if isinstance(entry, str) and entry]
    return departments or None


def resolve_phone_numbers(person: ApolloPerson) -> List[Dict[str, Any]]:
    return [phone for phone in person.phone_numbers or [] if isinstance(phone, dict) and phone]


def resolve_primary_phone(phone_numbers: List[Dict[str, Any]]) -> Optional[str]:
    """Prefer a mobile number, otherwise the first listed one."""
    if not phone_numbers:
        return None

    def phone_type(phone: Dict[str, Any]) -> str:
        return str(phone.get("type") or phone.get("type_cd") or "").lower()

    selected = next((p for p in phone_numbers if "mobile" in phone_type(p)), phone_numbers[0])
    value = selected.get("sanitized_number") or selected.get("number") or selected.get("raw_number")
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _phone_updates(person: ApolloPerson) -> Dict[str, Any]:
    phone_numbers = resolve_phone_numbers(person)
    if phone_numbers:
        updates: Dict[str, Any] = {"phone_numbers": phone_numbers}
        primary = resolve_primary_phone(phone_numbers)
        if primary:
            updates["primary_phone"] = primary
        return updates

    organization = person.organization
    switchboard = organization and (_text(organization.sanitized_phone) or _text(organization.phone))
    if switchboard:
        # No direct number: fall back to the company switchboard
        logger.info("No direct phone found. Using organization phone fallback.")
        primary = switchboard
        return {
            "primary_phone": primary,
            "phone_numbers": [{
                "type": HEADQUARTERS_PHONE_TYPE,
                "sanitized_number": primary,
                "number": _text(organization.phone),
            }],
        }
    return {}


def build_person_updates(
    person: ApolloPerson,
    prefs: RevealPreferences,
    status: str = "completed",
) -> Dict[str, Any]:
    """
    Column updates for one enriched person. Fields are copied only when
    Apollo sent them; email and phone obey the reveal preferences, and with
    phone reveal off no phone column is touched at all.
    """
    updates: Dict[str, Any] = {
        "enrichment_status": status,
        "updated_at": utc_now(),
    }

    # Basic fields
    for field in ("first_name", "last_name", "linkedin_url", "title"):
        value = getattr(person, field)
        if value:
            updates[field] = value

    # Location and professional info, well-formed values only
    for field in ("city", "state", "country", "headline", "photo_url", "seniority"):
        value = _text(getattr(person, field))
        if value:
            updates[field] = value
    departments = _departments(person.departments)
    if departments:
        updates["departments"] = departments

    # Organization
    organization = person.organization
    if organization:
        if organization.name:
            updates["organization_name"] = organization.name
        if _text(organization.primary_domain):
            updates["organization_domain"] = _text(organization.primary_domain)
        if _text(organization.industry):
            updates["organization_industry"] = _text(organization.industry)
        if isinstance(organization.estimated_num_employees, int) and organization.estimated_num_employees > 0:
            updates["organization_size"] = organization.estimated_num_employees

    # Email
    if prefs.reveal_email:
        email = resolve_email(person)
        if email:
            updates["email"] = email
            updates["email_status"] = _text(person.email_status) or "verified"
        else:
            logger.info("Apollo did not return a revealed email. Keeping original.")
    else:
        logger.info("Email reveal disabled by request. Skipping email updates.")

    # Phone
    if prefs.reveal_phone:
        updates.update(_phone_updates(person))
    else:
        logger.info("Phone reveal disabled by request. Skipping phone updates.")

    return updates


def status_updates(status: str) -> Dict[str, Any]:
    """Updates for an attempt that produced no person data."""
    return {
        "enrichment_status": status,
        "updated_at": utc_now(),
    }
