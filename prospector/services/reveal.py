"""
Reveal preference resolution.

Callers express what to reveal in several historical shapes. Each flag is
resolved by walking an ordered precedence table of (source, extractor)
pairs; the first extractor yielding a recognizable boolean wins, and True is
the default when nothing decides.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from prospector.schemas.enrichment import RevealPreferences

ENRICHMENT_LEVELS = ("basic", "deep")

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def parse_boolean_flag(value: Any) -> Optional[bool]:
    """Parse booleans, 0/1 and true/false/yes/no strings; anything else is None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    return None


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _config(body: Dict[str, Any]) -> Dict[str, Any]:
    return _dict(body.get("config"))


def _requested_data(body: Dict[str, Any]) -> Dict[str, Any]:
    config = _config(body)
    for candidate in (
        body.get("requested_data"),
        body.get("requestedData"),
        config.get("requested_data"),
        config.get("requestedData"),
    ):
        if isinstance(candidate, dict):
            return candidate
    return {}


def requested_fields(body: Dict[str, Any]) -> List[str]:
    config = _config(body)
    for candidate in (
        body.get("requested_fields"),
        body.get("requestedFields"),
        config.get("requested_fields"),
        config.get("requestedFields"),
    ):
        if candidate is not None:
            if not isinstance(candidate, list):
                return []
            return [
                entry.strip().lower()
                for entry in candidate
                if isinstance(entry, str) and entry.strip()
            ]
    return []


def enrichment_level(body: Dict[str, Any]) -> Optional[str]:
    config = _config(body)
    for candidate in (
        body.get("enrichment_level"),
        body.get("enrichmentLevel"),
        config.get("enrichment_level"),
        config.get("enrichmentLevel"),
    ):
        if isinstance(candidate, str) and candidate:
            level = candidate.strip().lower()
            return level if level in ENRICHMENT_LEVELS else None
    return None


def _field_requested(body: Dict[str, Any], field: str) -> Optional[bool]:
    fields = requested_fields(body)
    if not fields:
        return None
    return field in fields


Precedence = Tuple[Tuple[str, Callable[[Dict[str, Any]], Any]], ...]

REVEAL_EMAIL_PRECEDENCE: Precedence = (
    ("body.reveal_email", lambda body: body.get("reveal_email")),
    ("body.revealEmail", lambda body: body.get("revealEmail")),
    ("config.reveal_email", lambda body: _config(body).get("reveal_email")),
    ("config.revealEmail", lambda body: _config(body).get("revealEmail")),
    ("requested_data.email", lambda body: _requested_data(body).get("email")),
    ("requested_fields", lambda body: _field_requested(body, "email")),
    ("enrichment_level", lambda body: True if enrichment_level(body) in ENRICHMENT_LEVELS else None),
)

REVEAL_PHONE_PRECEDENCE: Precedence = (
    ("body.reveal_phone", lambda body: body.get("reveal_phone")),
    ("body.revealPhone", lambda body: body.get("revealPhone")),
    ("config.reveal_phone", lambda body: _config(body).get("reveal_phone")),
    ("config.revealPhone", lambda body: _config(body).get("revealPhone")),
    ("requested_data.phone", lambda body: _requested_data(body).get("phone")),
    ("requested_fields", lambda body: _field_requested(body, "phone")),
    ("enrichment_level", lambda body: {"basic": False, "deep": True}.get(enrichment_level(body))),
)


def first_boolean(precedence: Precedence, body: Dict[str, Any]) -> Optional[Tuple[str, bool]]:
    """The winning (source, value) pair of a precedence table, if any."""
    for source, extract in precedence:
        parsed = parse_boolean_flag(extract(body))
        if parsed is not None:
            return source, parsed
    return None


def resolve_reveal_preferences(body: Any) -> RevealPreferences:
    """Collapse every accepted alias into the two reveal booleans."""
    body = _dict(body)
    email = first_boolean(REVEAL_EMAIL_PRECEDENCE, body)
    phone = first_boolean(REVEAL_PHONE_PRECEDENCE, body)
    return RevealPreferences(
        reveal_email=email[1] if email else True,
        reveal_phone=phone[1] if phone else True,
        enrichment_level=enrichment_level(body),
        requested_fields=requested_fields(body),
    )
