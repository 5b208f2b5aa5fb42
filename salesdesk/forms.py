"""Form drafts and the create/edit dialog controller.

A draft mirrors the editable fields of one entity. ``validation_errors`` is
what keeps the submit button disabled: nothing reaches the store while it
returns anything.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import ValidationError

from .crm_models import (
    CRMBaseModel,
    Client,
    ClientStatus,
    Deal,
    DealStage,
    Lead,
    LeadStatus,
    normalize_client_status,
    normalize_close_date,
    normalize_deal_stage,
    normalize_lead_status,
    require_non_empty_string,
    validate_amount,
    validate_email,
    validate_enum_value,
    validate_probability,
)
from .notifications import Notifier
from .record_store import Clock, StoreError, utc_now
from .repositories import EntityRepository
from .view_models import ListViewModel

logger = logging.getLogger(__name__)


def _collect(errors: List[str], check: Callable[[], Any]) -> None:
    try:
        check()
    except ValueError as exc:
        errors.append(str(exc))


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


@dataclass
class LeadDraft:
    name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    position: str = ""
    source: str = "website"
    status: str = LeadStatus.NEW.value
    notes: str = ""

    record_type = Lead
    label = "lead"

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        _collect(errors, lambda: require_non_empty_string(self.name, "Name"))
        _collect(errors, lambda: validate_email(self.email))
        _collect(errors, lambda: validate_enum_value(normalize_lead_status(self.status), LeadStatus, "Status"))
        return errors

    def display_name(self) -> str:
        return self.name

    def changes(self) -> Dict[str, Any]:
        values = asdict(self)
        for key in ("phone", "company", "position", "notes"):
            values[key] = _blank_to_none(values[key])
        values["status"] = normalize_lead_status(self.status)
        return values

    @classmethod
    def from_record(cls, lead: Lead) -> "LeadDraft":
        return cls(
            name=lead.name,
            email=str(lead.email),
            phone=lead.phone or "",
            company=lead.company or "",
            position=lead.position or "",
            source=lead.source,
            status=lead.status,
            notes=lead.notes or "",
        )


@dataclass
class ClientDraft:
    name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    position: str = ""
    status: str = ClientStatus.ACTIVE.value
    address: str = ""
    notes: str = ""
    total_value: float = 0.0

    record_type = Client
    label = "client"

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        _collect(errors, lambda: require_non_empty_string(self.name, "Name"))
        _collect(errors, lambda: validate_email(self.email))
        _collect(errors, lambda: validate_enum_value(normalize_client_status(self.status), ClientStatus, "Status"))
        if isinstance(self.total_value, bool) or not isinstance(self.total_value, (int, float)):
            errors.append("Total value must be numeric.")
        elif self.total_value < 0:
            errors.append("Total value must not be negative.")
        return errors

    def display_name(self) -> str:
        return self.name

    def changes(self) -> Dict[str, Any]:
        values = asdict(self)
        for key in ("phone", "company", "position", "address", "notes"):
            values[key] = _blank_to_none(values[key])
        values["status"] = normalize_client_status(self.status)
        values["total_value"] = float(self.total_value)
        return values

    @classmethod
    def from_record(cls, client: Client) -> "ClientDraft":
        return cls(
            name=client.name,
            email=str(client.email),
            phone=client.phone or "",
            company=client.company or "",
            position=client.position or "",
            status=client.status,
            address=client.address or "",
            notes=client.notes or "",
            total_value=client.total_value,
        )


@dataclass
class DealDraft:
    title: str = ""
    description: str = ""
    value: float = 0.0
    stage: str = DealStage.NEW.value
    probability: int = 50
    expected_close_date: str = ""
    lead_id: str = ""
    client_id: str = ""
    notes: str = ""

    record_type = Deal
    label = "deal"

    def link_lead(self, lead_id: str) -> None:
        """A deal references a lead or a client, never both."""
        self.lead_id = lead_id
        if lead_id:
            self.client_id = ""

    def link_client(self, client_id: str) -> None:
        self.client_id = client_id
        if client_id:
            self.lead_id = ""

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        _collect(errors, lambda: require_non_empty_string(self.title, "Title"))
        _collect(errors, lambda: validate_amount(self.value, "Value"))
        _collect(errors, lambda: validate_probability(self.probability))
        _collect(errors, lambda: validate_enum_value(normalize_deal_stage(self.stage), DealStage, "Stage"))
        _collect(errors, lambda: normalize_close_date(self.expected_close_date))
        if self.lead_id and self.client_id:
            errors.append("A deal can reference a lead or a client, not both.")
        return errors

    def display_name(self) -> str:
        return self.title

    def changes(self) -> Dict[str, Any]:
        values = asdict(self)
        values["value"] = float(self.value)
        values["stage"] = normalize_deal_stage(self.stage)
        values["expected_close_date"] = normalize_close_date(self.expected_close_date)
        values["lead_id"] = self.lead_id or None
        values["client_id"] = self.client_id or None
        return values

    @classmethod
    def from_record(cls, deal: Deal) -> "DealDraft":
        return cls(
            title=deal.title,
            description=deal.description,
            value=deal.value,
            stage=deal.stage or DealStage.NEW.value,
            probability=deal.probability,
            expected_close_date=deal.expected_close_date.isoformat() if deal.expected_close_date else "",
            lead_id=deal.lead_id or "",
            client_id=deal.client_id or "",
            notes=deal.notes,
        )


D = TypeVar("D", LeadDraft, ClientDraft, DealDraft)
R = TypeVar("R", bound=CRMBaseModel)


@dataclass
class SubmitOutcome(Generic[R]):
    record: R
    created: bool
    draft: Any = field(repr=False, default=None)


SavedHook = Callable[[SubmitOutcome], None]


class FormController(Generic[D, R]):
    """Create/edit dialog bound to one repository and one list view."""

    def __init__(
        self,
        draft_type: Type[D],
        repository: EntityRepository,
        view: ListViewModel,
        notifier: Notifier,
        on_saved: Optional[SavedHook] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._draft_type = draft_type
        self._repository = repository
        self._view = view
        self._notifier = notifier
        self._on_saved = on_saved
        self._clock: Clock = clock or utc_now
        self.draft: D = draft_type()
        self.editing: Optional[R] = None
        self.is_open = False

    def open_create(self) -> None:
        self.editing = None
        self.draft = self._draft_type()
        self.is_open = True

    def open_edit(self, record: R) -> None:
        self.editing = record
        self.draft = self._draft_type.from_record(record)
        self.is_open = True

    def update_draft(self, **values: Any) -> None:
        known = {item.name for item in fields(self.draft)}
        unknown = set(values) - known
        if unknown:
            raise KeyError(f"Unknown form fields: {sorted(unknown)}")
        self.draft = replace(self.draft, **values)

    def close(self) -> None:
        self.is_open = False
        self.editing = None
        self.draft = self._draft_type()

    def can_submit(self) -> bool:
        return not self.draft.validation_errors()

    def submit(self, owner_id: str) -> Optional[SubmitOutcome]:
        """Create or update from the draft; returns None when nothing was saved."""
        if not self.can_submit():
            return None
        changes = self.draft.changes()
        label = self.draft.label
        try:
            if self.editing is None:
                candidate = self.draft.record_type(user_id=owner_id, **changes)
            else:
                merged = {**self.editing.model_dump(), **changes, "updated_at": self._clock()}
                candidate = self.draft.record_type.model_validate(merged)
        except ValidationError as exc:
            logger.info("Rejected %s draft: %s", label, exc)
            self._notifier.error(f"Please check the {label} fields.")
            return None

        try:
            if self.editing is None:
                record = self._repository.create(candidate)
                self._view.prepend(record)
                outcome = SubmitOutcome(record=record, created=True, draft=self.draft)
            else:
                self._repository.update(self.editing.id, changes)
                self._view.replace(candidate)
                outcome = SubmitOutcome(record=candidate, created=False, draft=self.draft)
        except StoreError as exc:
            action = "create" if self.editing is None else "update"
            logger.error("Failed to %s %s: %s", action, label, exc)
            self._notifier.error(f"Could not {action} the {label}.")
            return None

        self.close()
        if self._on_saved is not None:
            self._on_saved(outcome)
        return outcome
