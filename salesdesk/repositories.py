"""Owner-scoped repositories over the document store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from .crm_models import Activity, CRMBaseModel, Client, Deal, Lead, UserSettings
from .record_store import ACTIVITIES, CLIENTS, DEALS, LEADS, USER_SETTINGS, RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=CRMBaseModel)

DEFAULT_ORDER = "-created_at"


class EntityRepository(Generic[T]):
    """Query and mutation wrapper for one collection.

    ``list`` always filters on ``user_id``; records owned by anyone else are
    never returned even if the backend ignores part of the filter. Documents
    that no longer validate are logged and skipped.
    """

    collection: str = ""
    model: Type[T]

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def list(
        self,
        owner_id: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = DEFAULT_ORDER,
        limit: Optional[int] = None,
    ) -> List[T]:
        criteria: Dict[str, Any] = dict(to_jsonable_python(dict(where or {})))
        criteria["user_id"] = owner_id
        documents = self._store.list(self.collection, where=criteria, order_by=order_by, limit=limit)
        records: List[T] = []
        for doc in documents:
            if doc.get("user_id") != owner_id:
                continue
            try:
                records.append(self.model(**doc))
            except ValidationError as exc:
                logger.warning("Skipping unreadable %s record %s: %s", self.collection, doc.get("id"), exc)
        return records

    def create(self, draft: T) -> T:
        document = draft.to_document()
        document.pop("id", None)
        stored = self._store.create(self.collection, document)
        logger.debug("Created %s record %s", self.collection, stored.get("id"))
        return self.model(**stored)

    def update(self, record_id: str, partial: Mapping[str, Any]) -> None:
        changes = to_jsonable_python(dict(partial))
        changes.pop("id", None)
        changes.pop("user_id", None)
        self._store.update(self.collection, record_id, changes)

    def delete(self, record_id: str) -> None:
        self._store.delete(self.collection, record_id)


class LeadRepository(EntityRepository[Lead]):
    collection = LEADS
    model = Lead


class ClientRepository(EntityRepository[Client]):
    collection = CLIENTS
    model = Client


class DealRepository(EntityRepository[Deal]):
    collection = DEALS
    model = Deal


class ActivityRepository(EntityRepository[Activity]):
    """Activities are append-only; only the bulk wipe removes them."""

    collection = ACTIVITIES
    model = Activity

    def update(self, record_id: str, partial: Mapping[str, Any]) -> None:
        raise TypeError("Activity records are append-only.")


class SettingsRepository(EntityRepository[UserSettings]):
    collection = USER_SETTINGS
    model = UserSettings

    def get(self, owner_id: str) -> Optional[UserSettings]:
        rows = self.list(owner_id, order_by=None, limit=1)
        return rows[0] if rows else None


class Repositories:
    """Bundle of repositories sharing one store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.leads = LeadRepository(store)
        self.clients = ClientRepository(store)
        self.deals = DealRepository(store)
        self.activities = ActivityRepository(store)
        self.settings = SettingsRepository(store)
