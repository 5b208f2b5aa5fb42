"""Document store contract and the in-memory implementation.

The store is the only collaborator that owns persistence. It knows nothing
about entity types: collections hold plain JSON-like documents keyed by a
server-assigned ``id``. Queries support an equality ``where`` clause, ordering
on one field and a limit, which is everything the CRM pages ask for.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from itertools import count
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple
from uuid import uuid4

logger = logging.getLogger(__name__)

LEADS = "leads"
CLIENTS = "clients"
DEALS = "deals"
ACTIVITIES = "activities"
USER_SETTINGS = "user_settings"

COLLECTIONS: Tuple[str, ...] = (LEADS, CLIENTS, DEALS, ACTIVITIES, USER_SETTINGS)

Document = Dict[str, Any]
Clock = Callable[[], datetime]


class StoreError(RuntimeError):
    """Base class for failures reported by a record store."""


class StoreUnavailable(StoreError):
    """The backend could not be reached or rejected the request."""


class RecordNotFound(StoreError):
    """An update or delete referenced an id that does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} record not found with ID '{record_id}'.")
        self.collection = collection
        self.record_id = record_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_order_by(order_by: Optional[str]) -> Tuple[Optional[str], bool]:
    """Split ``"-created_at"`` into ``("created_at", True)`` (descending)."""
    if not order_by:
        return None, False
    if order_by.startswith("-"):
        return order_by[1:], True
    return order_by, False


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection '{collection}'.")


def _sort_value(value: Any) -> Tuple[int, Any]:
    # Missing values sort first; timestamps compare by instant whether stored as datetime or ISO text.
    if value is None:
        return (0, 0)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return (3, value)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (2, value)
    return (3, str(value))


class RecordStore:
    """Interface shared by every document store backend."""

    def list(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        raise NotImplementedError

    def create(self, collection: str, document: Mapping[str, Any]) -> Document:
        raise NotImplementedError

    def update(self, collection: str, record_id: str, partial: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, record_id: str) -> None:
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Process-local document store with the same semantics as the remote one."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock: Clock = clock or utc_now
        self._collections: Dict[str, Dict[str, Document]] = {name: {} for name in COLLECTIONS}
        self._sequence: Dict[str, int] = {}
        self._counter = count()
        self._pending_failures: List[Tuple[str, Optional[str]]] = []
        self._failing_ids: Set[str] = set()

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, collection: Optional[str] = None) -> None:
        """Make the next matching call raise :class:`StoreUnavailable`."""
        self._pending_failures.append((operation, collection))

    def fail_on_id(self, record_id: str) -> None:
        """Make every update/delete of ``record_id`` raise :class:`StoreUnavailable`."""
        self._failing_ids.add(record_id)

    def _maybe_fail(self, operation: str, collection: str, record_id: Optional[str] = None) -> None:
        if record_id is not None and record_id in self._failing_ids:
            raise StoreUnavailable(f"Simulated outage while running {operation} on {collection}/{record_id}.")
        for index, (op, target) in enumerate(self._pending_failures):
            if op == operation and target in (None, collection):
                del self._pending_failures[index]
                raise StoreUnavailable(f"Simulated outage while running {operation} on {collection}.")

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def list(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        _check_collection(collection)
        self._maybe_fail("list", collection)
        criteria = dict(where or {})
        rows = [
            doc
            for doc in self._collections[collection].values()
            if all(doc.get(field) == value for field, value in criteria.items())
        ]
        field, descending = parse_order_by(order_by)
        if field:
            # Ties fall back to insertion order so "-created_at" lists the newest insert first.
            rows.sort(
                key=lambda doc: (_sort_value(doc.get(field)), self._sequence[doc["id"]]),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        logger.debug("Listed %d %s documents for %s", len(rows), collection, criteria)
        return [copy.deepcopy(doc) for doc in rows]

    def create(self, collection: str, document: Mapping[str, Any]) -> Document:
        _check_collection(collection)
        self._maybe_fail("create", collection)
        now = self._clock()
        stored = copy.deepcopy(dict(document))
        stored["id"] = str(uuid4())
        stored.setdefault("created_at", now)
        stored.setdefault("updated_at", now)
        if stored["created_at"] is None:
            stored["created_at"] = now
        if stored["updated_at"] is None:
            stored["updated_at"] = now
        self._collections[collection][stored["id"]] = stored
        self._sequence[stored["id"]] = next(self._counter)
        return copy.deepcopy(stored)

    def update(self, collection: str, record_id: str, partial: Mapping[str, Any]) -> None:
        _check_collection(collection)
        self._maybe_fail("update", collection, record_id)
        store = self._collections[collection]
        if record_id not in store:
            raise RecordNotFound(collection, record_id)
        changes = {key: copy.deepcopy(value) for key, value in partial.items() if key != "id"}
        changes["updated_at"] = self._clock()
        store[record_id].update(changes)

    def delete(self, collection: str, record_id: str) -> None:
        _check_collection(collection)
        self._maybe_fail("delete", collection, record_id)
        store = self._collections[collection]
        if record_id not in store:
            raise RecordNotFound(collection, record_id)
        del store[record_id]
        self._sequence.pop(record_id, None)

    # ------------------------------------------------------------------
    # Helpers for tests and parity checks
    # ------------------------------------------------------------------

    def summarize_counts(self) -> Dict[str, int]:
        return {name: len(documents) for name, documents in self._collections.items()}
