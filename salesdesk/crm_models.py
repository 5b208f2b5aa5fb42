"""Entity models for the CRM workspace.

Every record belongs to exactly one user (``user_id``) and is stored as a
document in a named collection. Pydantic models normalise what comes back from
the store; the ``validate_*`` helpers enforce the stricter rules applied when a
form writes a record.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError, field_validator


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PROSPECT = "prospect"


class DealStage(str, Enum):
    NEW = "new"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class ActivityType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    NOTE = "note"
    TASK = "task"
    LEAD_CREATED = "lead_created"
    LEAD_UPDATED = "lead_updated"
    LEAD_DELETED = "lead_deleted"
    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"
    CLIENT_DELETED = "client_deleted"
    DEAL_CREATED = "deal_created"
    DEAL_UPDATED = "deal_updated"
    DEAL_DELETED = "deal_deleted"
    DEAL_STAGE_CHANGED = "deal_stage_changed"


class EntityType(str, Enum):
    LEAD = "lead"
    CLIENT = "client"
    DEAL = "deal"


# Board column order; also the order of the per-stage analytics breakdown.
DEAL_STAGES = tuple(stage.value for stage in DealStage)

DEAL_STAGE_LABELS: Dict[str, str] = {
    DealStage.NEW.value: "New",
    DealStage.QUALIFIED.value: "Qualified",
    DealStage.PROPOSAL.value: "Proposal",
    DealStage.NEGOTIATION.value: "Negotiation",
    DealStage.CLOSED_WON.value: "Closed (won)",
    DealStage.CLOSED_LOST.value: "Closed (lost)",
}

CLOSED_STAGES = frozenset({DealStage.CLOSED_WON.value, DealStage.CLOSED_LOST.value})

LEAD_SOURCES = ("website", "advertising", "social", "referral", "cold_call")

# Legacy vocabularies still found in stored documents and older forms.
LEAD_STATUS_ALIASES: Dict[str, str] = {
    "новый": LeadStatus.NEW.value,
    "контакт": LeadStatus.CONTACTED.value,
    "квалифицирован": LeadStatus.QUALIFIED.value,
    "отклонен": LeadStatus.CLOSED_LOST.value,
    "rejected": LeadStatus.CLOSED_LOST.value,
}

CLIENT_STATUS_ALIASES: Dict[str, str] = {
    "potential": ClientStatus.PROSPECT.value,
}

DEAL_STAGE_ALIASES: Dict[str, str] = {
    "prospecting": DealStage.NEW.value,
    "qualification": DealStage.QUALIFIED.value,
}

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _apply_alias(value: Any, aliases: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return aliases.get(stripped.lower(), stripped)
    return value


def normalize_lead_status(value: Any) -> Any:
    return _apply_alias(value, LEAD_STATUS_ALIASES)


def normalize_client_status(value: Any) -> Any:
    return _apply_alias(value, CLIENT_STATUS_ALIASES)


def normalize_deal_stage(value: Any) -> Any:
    return _apply_alias(value, DEAL_STAGE_ALIASES)


def require_non_empty_string(value: Any, field_name: str) -> None:
    """Ensure that a required string field is not empty or whitespace."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be provided as a string.")
    if value.strip() == "":
        raise ValueError(f"{field_name} must not be blank or whitespace.")


def validate_email(value: Any, field_name: str = "Email") -> str:
    """Validate an email address entered in a form."""
    require_non_empty_string(value, field_name)
    try:
        return str(_EMAIL_ADAPTER.validate_python(value.strip()))
    except ValidationError as exc:
        raise ValueError(f"{field_name} must be a valid email address.") from exc


def validate_enum_value(raw_value: Any, enum_cls: Type[Enum], field_name: str) -> str:
    """Validate that the provided value matches one of the enum values exactly."""
    if isinstance(raw_value, Enum):
        raw_value = raw_value.value
    if not isinstance(raw_value, str):
        raise ValueError(f"{field_name} must be provided as a string.")
    valid_values = {member.value for member in enum_cls}
    if raw_value not in valid_values:
        formatted = ", ".join(sorted(valid_values))
        raise ValueError(f"{field_name} must be one of: {formatted}.")
    return raw_value


def validate_amount(value: Any, field_name: str) -> float:
    """Validate that a monetary amount is strictly positive."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be numeric.")
    amount = float(value)
    if amount <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return amount


def validate_probability(value: Any) -> int:
    """Probabilities are whole-number percentages between 0 and 100."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("Probability must be numeric.")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("Probability must be expressed as a whole-number percentage.")
    as_int = int(value)
    if as_int < 0 or as_int > 100:
        raise ValueError("Probability must be between 0 and 100.")
    return as_int


def normalize_close_date(value: Any) -> Optional[date]:
    """Convert expected_close_date inputs to ``date``; blank strings clear the field."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValueError("Expected close date must be a valid ISO-8601 date (YYYY-MM-DD).") from exc
    raise ValueError("Expected close date must be provided as a date or ISO-8601 string.")


class CRMBaseModel(BaseModel):
    """Shared configuration for all stored records."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        use_enum_values=True,
        validate_default=True,
        extra="ignore",
    )

    id: Optional[str] = None
    user_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("*", mode="before", check_fields=False)
    @classmethod
    def strip_strings(cls, value: Any) -> Any:
        """Normalize string inputs by trimming whitespace."""
        if isinstance(value, str):
            return value.strip()
        return value

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible document as sent to the store."""
        return self.model_dump(mode="json")


class Lead(CRMBaseModel):
    name: str
    # Format is checked on writes by validate_email; reads accept any stored text.
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    source: str = "website"
    status: LeadStatus = LeadStatus.NEW
    value: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return normalize_lead_status(value)


class Client(CRMBaseModel):
    name: str
    # Format is checked on writes by validate_email; reads accept any stored text.
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    address: Optional[str] = None
    status: ClientStatus = ClientStatus.ACTIVE
    total_value: float = Field(default=0.0, ge=0)
    last_contact: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return normalize_client_status(value)


class Deal(CRMBaseModel):
    title: str
    description: str = ""
    value: float = 0.0
    # Read leniently: stored documents may carry a missing or legacy stage.
    stage: Optional[str] = DealStage.NEW.value
    probability: int = Field(default=50, ge=0, le=100)
    expected_close_date: Optional[date] = None
    lead_id: Optional[str] = None
    client_id: Optional[str] = None
    notes: str = ""

    @field_validator("stage", mode="before")
    @classmethod
    def _normalize_stage(cls, value: Any) -> Any:
        return normalize_deal_stage(value)

    @field_validator("expected_close_date", mode="before")
    @classmethod
    def _normalize_close_date(cls, value: Any) -> Any:
        return normalize_close_date(value)

    @field_validator("description", "notes", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_closed(self) -> bool:
        return self.stage in CLOSED_STAGES


class Activity(CRMBaseModel):
    type: str
    title: Optional[str] = None
    description: Optional[str] = None
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    lead_id: Optional[str] = None
    client_id: Optional[str] = None
    deal_id: Optional[str] = None


class UserSettings(CRMBaseModel):
    company_name: str = ""
    company_address: str = ""
    company_phone: str = ""
    company_email: str = ""
    currency: str = "RUB"
    timezone: str = "Europe/Moscow"
    language: str = "ru"
    email_notifications: bool = True
    push_notifications: bool = True
    deal_reminders: bool = True
    lead_auto_assignment: bool = False
    # Stored only; nothing purges records on this schedule.
    data_retention_days: int = Field(default=365, ge=1)


class User(BaseModel):
    """Signed-in user as reported by the auth provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None
