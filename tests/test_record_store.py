"""Tests for the in-memory document store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from salesdesk.record_store import (
    CLIENTS,
    DEALS,
    LEADS,
    InMemoryRecordStore,
    RecordNotFound,
    StoreUnavailable,
    parse_order_by,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns a time one minute later on every call."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(minutes=1)
        return now


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore(clock=TickingClock())


def test_create_assigns_uuid_and_timestamps(store: InMemoryRecordStore) -> None:
    stored = store.create(LEADS, {"user_id": "u1", "name": "Anna"})

    assert str(UUID(stored["id"])) == stored["id"]
    assert stored["created_at"] == START
    assert stored["updated_at"] == START
    assert store.summarize_counts()[LEADS] == 1


def test_create_keeps_explicit_created_at(store: InMemoryRecordStore) -> None:
    stored = store.create(LEADS, {"user_id": "u1", "created_at": "2023-01-01T00:00:00+00:00"})
    assert stored["created_at"] == "2023-01-01T00:00:00+00:00"


def test_list_filters_by_equality(store: InMemoryRecordStore) -> None:
    store.create(DEALS, {"user_id": "u1", "stage": "new"})
    store.create(DEALS, {"user_id": "u1", "stage": "closed_won"})
    store.create(DEALS, {"user_id": "u2", "stage": "new"})

    rows = store.list(DEALS, where={"user_id": "u1", "stage": "new"})
    assert len(rows) == 1
    assert rows[0]["user_id"] == "u1"


def test_list_orders_newest_first_with_limit(store: InMemoryRecordStore) -> None:
    for name in ("first", "second", "third"):
        store.create(LEADS, {"user_id": "u1", "name": name})

    rows = store.list(LEADS, where={"user_id": "u1"}, order_by="-created_at", limit=2)
    assert [row["name"] for row in rows] == ["third", "second"]


def test_descending_ties_list_latest_insert_first() -> None:
    frozen = InMemoryRecordStore(clock=lambda: START)
    frozen.create(LEADS, {"user_id": "u1", "name": "older"})
    frozen.create(LEADS, {"user_id": "u1", "name": "newer"})

    rows = frozen.list(LEADS, order_by="-created_at")
    assert [row["name"] for row in rows] == ["newer", "older"]


def test_sorting_mixes_datetimes_and_iso_strings(store: InMemoryRecordStore) -> None:
    store.create(LEADS, {"user_id": "u1", "name": "imported", "created_at": "2030-01-01T00:00:00+00:00"})
    store.create(LEADS, {"user_id": "u1", "name": "typed"})

    rows = store.list(LEADS, order_by="-created_at")
    assert [row["name"] for row in rows] == ["imported", "typed"]


def test_list_returns_copies(store: InMemoryRecordStore) -> None:
    store.create(CLIENTS, {"user_id": "u1", "name": "Orbita"})
    store.list(CLIENTS)[0]["name"] = "Changed"
    assert store.list(CLIENTS)[0]["name"] == "Orbita"


def test_update_merges_and_refreshes_updated_at(store: InMemoryRecordStore) -> None:
    stored = store.create(DEALS, {"user_id": "u1", "title": "Pilot", "stage": "new"})
    store.update(DEALS, stored["id"], {"stage": "proposal", "id": "ignored"})

    row = store.list(DEALS)[0]
    assert row["id"] == stored["id"]
    assert row["stage"] == "proposal"
    assert row["title"] == "Pilot"
    assert row["updated_at"] > row["created_at"]


def test_update_and_delete_unknown_id_raise(store: InMemoryRecordStore) -> None:
    with pytest.raises(RecordNotFound) as exc_info:
        store.update(DEALS, "missing", {"stage": "new"})
    assert exc_info.value.record_id == "missing"

    with pytest.raises(RecordNotFound):
        store.delete(DEALS, "missing")


def test_delete_removes_document(store: InMemoryRecordStore) -> None:
    stored = store.create(LEADS, {"user_id": "u1"})
    store.delete(LEADS, stored["id"])
    assert store.list(LEADS) == []


def test_unknown_collection_rejected(store: InMemoryRecordStore) -> None:
    with pytest.raises(ValueError, match="Unknown collection"):
        store.list("contacts")


def test_fail_next_fires_once_for_matching_collection(store: InMemoryRecordStore) -> None:
    store.fail_next("create", LEADS)

    store.create(CLIENTS, {"user_id": "u1"})
    with pytest.raises(StoreUnavailable):
        store.create(LEADS, {"user_id": "u1"})
    store.create(LEADS, {"user_id": "u1"})

    assert store.summarize_counts()[LEADS] == 1


def test_fail_on_id_blocks_every_mutation(store: InMemoryRecordStore) -> None:
    stored = store.create(LEADS, {"user_id": "u1"})
    store.fail_on_id(stored["id"])

    with pytest.raises(StoreUnavailable):
        store.update(LEADS, stored["id"], {"name": "x"})
    with pytest.raises(StoreUnavailable):
        store.delete(LEADS, stored["id"])


def test_parse_order_by() -> None:
    assert parse_order_by("-created_at") == ("created_at", True)
    assert parse_order_by("name") == ("name", False)
    assert parse_order_by(None) == (None, False)
