"""In-memory list, filter, board and time-bucket views over loaded records.

Pages load a user's full record set once and derive everything shown on screen
from it; there is no server-side pagination.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .crm_models import (
    CRMBaseModel,
    DEAL_STAGES,
    DealStage,
    normalize_client_status,
    normalize_deal_stage,
    normalize_lead_status,
)

ALL = "all"

LEAD_SEARCH_FIELDS: Tuple[str, ...] = ("name", "email", "company")
CLIENT_SEARCH_FIELDS: Tuple[str, ...] = ("name", "email", "company")
DEAL_SEARCH_FIELDS: Tuple[str, ...] = ("title", "description")
ACTIVITY_SEARCH_FIELDS: Tuple[str, ...] = ("title", "description")

TIME_RANGES: Tuple[int, ...] = (7, 30, 90, 365)

FilterNormalizer = Callable[[Any], Any]

# Filter values go through the same alias tables as stored records.
LEAD_FILTER_NORMALIZERS: Dict[str, FilterNormalizer] = {"status": normalize_lead_status}
CLIENT_FILTER_NORMALIZERS: Dict[str, FilterNormalizer] = {"status": normalize_client_status}
DEAL_FILTER_NORMALIZERS: Dict[str, FilterNormalizer] = {"stage": normalize_deal_stage}

R = TypeVar("R", bound=CRMBaseModel)


def _field_text(record: Any, field: str) -> str:
    value = getattr(record, field, None)
    if value is None:
        return ""
    return str(value)


def matches_search(record: Any, term: str, fields: Sequence[str]) -> bool:
    """Case-insensitive substring match against any of ``fields``."""
    needle = term.strip().lower()
    if not needle:
        return True
    return any(needle in _field_text(record, field).lower() for field in fields)


def matches_filters(record: Any, filters: Mapping[str, Optional[str]]) -> bool:
    """Exact equality per field; ``"all"`` (or empty) disables a filter."""
    for field, wanted in filters.items():
        if wanted in (None, "", ALL):
            continue
        if getattr(record, field, None) != wanted:
            return False
    return True


def filter_records(
    records: Iterable[R],
    search: str = "",
    search_fields: Sequence[str] = (),
    filters: Optional[Mapping[str, Optional[str]]] = None,
) -> List[R]:
    criteria = filters or {}
    return [
        record
        for record in records
        if matches_search(record, search, search_fields) and matches_filters(record, criteria)
    ]


def group_by_stage(deals: Iterable[R]) -> Dict[str, List[R]]:
    """Partition deals into the fixed stage columns.

    Deals whose stage is missing or not one of the known stages appear in no
    column.
    """
    columns: Dict[str, List[R]] = {stage: [] for stage in DEAL_STAGES}
    for deal in deals:
        stage = getattr(deal, "stage", None)
        if stage in columns:
            columns[stage].append(deal)
    return columns


def local_date(timestamp: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar day of ``timestamp`` in local time (or ``tz`` when given).

    Naive timestamps are taken to already be local.
    """
    if timestamp.tzinfo is None:
        return timestamp.date()
    return timestamp.astimezone(tz).date()


def validate_time_range(days: int) -> int:
    if days not in TIME_RANGES:
        allowed = ", ".join(str(value) for value in TIME_RANGES)
        raise ValueError(f"Time range must be one of: {allowed} days.")
    return days


def trailing_days(days: int, today: date) -> List[date]:
    """The ``days`` calendar days ending today, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def filter_by_window(records: Iterable[R], days: int, now: datetime) -> List[R]:
    """Records created within the trailing ``days`` window ending at ``now``.

    Naive timestamps are taken to be local, as in :func:`local_date`.
    """
    cutoff = now - timedelta(days=days)
    selected: List[R] = []
    for record in records:
        created = record.created_at
        if created is None:
            continue
        if created.tzinfo is None and cutoff.tzinfo is not None:
            created = created.astimezone()
        elif created.tzinfo is not None and cutoff.tzinfo is None:
            created = created.astimezone().replace(tzinfo=None)
        if created >= cutoff:
            selected.append(record)
    return selected


def bucket_by_day(
    records: Iterable[R],
    days: int,
    today: date,
    tz: Optional[tzinfo] = None,
) -> Dict[date, List[R]]:
    """Group records into one bucket per trailing day; empty days keep an empty bucket."""
    buckets: Dict[date, List[R]] = {day: [] for day in trailing_days(days, today)}
    for record in records:
        if record.created_at is None:
            continue
        day = local_date(record.created_at, tz)
        if day in buckets:
            buckets[day].append(record)
    return buckets


class ListViewModel(Generic[R]):
    """Loaded records plus the current search term and categorical filters."""

    def __init__(
        self,
        search_fields: Sequence[str],
        filter_fields: Sequence[str] = (),
        normalizers: Optional[Mapping[str, FilterNormalizer]] = None,
    ) -> None:
        self.search_fields = tuple(search_fields)
        self.normalizers: Dict[str, FilterNormalizer] = dict(normalizers or {})
        self.records: List[R] = []
        self.search_term = ""
        self.filters: Dict[str, str] = {field: ALL for field in filter_fields}

    def set_records(self, records: Iterable[R]) -> None:
        self.records = list(records)

    def set_search(self, term: str) -> None:
        self.search_term = term

    def set_filter(self, field: str, value: str) -> None:
        if field not in self.filters:
            raise KeyError(f"Unknown filter '{field}'.")
        normalize = self.normalizers.get(field)
        if normalize is not None and value not in (None, "", ALL):
            value = normalize(value)
        self.filters[field] = value

    def clear_filters(self) -> None:
        self.search_term = ""
        for field in self.filters:
            self.filters[field] = ALL

    @property
    def visible(self) -> List[R]:
        return filter_records(self.records, self.search_term, self.search_fields, self.filters)

    @property
    def is_empty(self) -> bool:
        return not self.records

    def find(self, record_id: str) -> Optional[R]:
        return next((record for record in self.records if record.id == record_id), None)

    def prepend(self, record: R) -> None:
        self.records.insert(0, record)

    def replace(self, record: R) -> None:
        self.records = [record if existing.id == record.id else existing for existing in self.records]

    def remove(self, record_id: str) -> None:
        self.records = [record for record in self.records if record.id != record_id]


class BoardViewModel(ListViewModel[R]):
    """Deal list with kanban columns over the filtered set."""

    @property
    def columns(self) -> Dict[str, List[R]]:
        return group_by_stage(self.visible)

    @property
    def total_value(self) -> float:
        return sum(deal.value for deal in self.visible)

    @property
    def won_value(self) -> float:
        return sum(deal.value for deal in self.columns[DealStage.CLOSED_WON.value])
