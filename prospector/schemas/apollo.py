"""
Apollo payload schemas and the tagged-variant person decoder.

Apollo returns a person in several envelopes depending on the endpoint and
on whether it answers synchronously or through the webhook. Each known
envelope is tried in PAYLOAD_DECODERS order with a strict decode; the first
one that yields a person wins, otherwise the payload is "unrecognized".
"""
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, model_validator
from pydantic import ValidationError as PydanticValidationError

# A candidate decodes as a person only if at least one of these is present.
PERSON_IDENTIFYING_FIELDS = (
    "id",
    "email",
    "emails",
    "phone_numbers",
    "first_name",
    "last_name",
    "name",
    "linkedin_url",
    "organization",
    "title",
)


class ApolloOrganization(BaseModel):
    """Organization block nested in a person, or a company search result."""
    id: Optional[str] = None
    name: Optional[str] = None

    # Descriptive fields are loosely typed; the mapper keeps well-formed values only
    primary_domain: Optional[Any] = None
    industry: Optional[Any] = None
    estimated_num_employees: Optional[Any] = None
    phone: Optional[Any] = None
    sanitized_phone: Optional[Any] = None

    class Config:
        extra = "allow"


class ApolloPerson(BaseModel):
    """Person record as returned by match, bulk_match, search and webhooks."""
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    linkedin_url: Optional[str] = None

    # Auxiliary profile fields are loosely typed so one malformed value does
    # not discard the person; the mapper keeps well-formed values only
    headline: Optional[Any] = None
    photo_url: Optional[Any] = None
    seniority: Optional[Any] = None
    departments: Optional[Any] = None

    # Location
    city: Optional[Any] = None
    state: Optional[Any] = None
    country: Optional[Any] = None

    # Contact (entries are loosely shaped across Apollo endpoints)
    email: Optional[str] = None
    email_status: Optional[Any] = None
    emails: Optional[List[Any]] = None
    phone_numbers: Optional[List[Any]] = None

    organization: Optional[ApolloOrganization] = None

    class Config:
        extra = "allow"

    @model_validator(mode="after")
    def _has_identifying_field(self):
        if not any(getattr(self, field) is not None for field in PERSON_IDENTIFYING_FIELDS):
            raise ValueError("payload has no person-identifying field")
        return self


class PayloadShape(str, Enum):
    WRAPPED = "wrapped"        # {"person": {...}}
    PEOPLE = "people"          # {"people": [{...}, ...]}
    MATCHES = "matches"        # {"matches": [{...}, ...]}  (bulk_match)
    DIRECT = "direct"          # the body is the person
    UNRECOGNIZED = "unrecognized"


class ParsedPayload(BaseModel):
    """Result of decoding an Apollo body into at most one person."""
    shape: PayloadShape
    person: Optional[ApolloPerson] = None
    raw_person: Optional[Dict[str, Any]] = None

    @property
    def found(self) -> bool:
        return self.person is not None


def decode_person(candidate: Any) -> Optional[Tuple[ApolloPerson, Dict[str, Any]]]:
    """Strictly decode one candidate; returns (person, raw dict) or None."""
    if not isinstance(candidate, dict):
        return None
    try:
        return ApolloPerson.model_validate(candidate), candidate
    except PydanticValidationError:
        return None


def _first_decoded(entries: Any) -> Optional[Tuple[ApolloPerson, Dict[str, Any]]]:
    if not isinstance(entries, list):
        return None
    for entry in entries:
        decoded = decode_person(entry)
        if decoded:
            return decoded
    return None


PAYLOAD_DECODERS: Tuple[Tuple[PayloadShape, Callable[[Dict[str, Any]], Any]], ...] = (
    (PayloadShape.WRAPPED, lambda body: decode_person(body.get("person"))),
    (PayloadShape.PEOPLE, lambda body: _first_decoded(body.get("people"))),
    (PayloadShape.MATCHES, lambda body: _first_decoded(body.get("matches"))),
    (PayloadShape.DIRECT, decode_person),
)


def parse_person_payload(body: Any) -> ParsedPayload:
    """Locate the person in an Apollo response or webhook body."""
    if isinstance(body, dict):
        for shape, decoder in PAYLOAD_DECODERS:
            decoded = decoder(body)
            if decoded:
                person, raw = decoded
                return ParsedPayload(shape=shape, person=person, raw_person=raw)
    return ParsedPayload(shape=PayloadShape.UNRECOGNIZED)
