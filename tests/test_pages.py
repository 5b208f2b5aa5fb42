"""Scenario tests for the page controllers over the in-memory store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from salesdesk.auth import AuthSession, NotAuthenticated
from salesdesk.crm_models import Deal, Lead, User
from salesdesk.notifications import Variant
from salesdesk.pages import (
    ActivitiesPage,
    AnalyticsPage,
    ClientsPage,
    DashboardPage,
    DealsPage,
    LeadsPage,
    PageContext,
    SettingsPage,
)
from salesdesk.record_store import ACTIVITIES, DEALS, LEADS, InMemoryRecordStore

UTC = timezone.utc
START = datetime(2024, 3, 10, 9, 0, tzinfo=UTC)


class TickingClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(seconds=1)
        return now


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(clock: TickingClock) -> InMemoryRecordStore:
    return InMemoryRecordStore(clock=clock)


@pytest.fixture
def session() -> AuthSession:
    session = AuthSession()
    session.signed_in(User(id="u1", email="owner@example.com", display_name="Owner"))
    return session


@pytest.fixture
def ctx(store: InMemoryRecordStore, session: AuthSession, clock: TickingClock) -> PageContext:
    return PageContext.create(store, session, clock=clock, tz=UTC)


def create_lead(page: LeadsPage, **values: object) -> Lead:
    page.form.open_create()
    page.form.update_draft(**values)
    outcome = page.submit()
    assert outcome is not None
    return outcome.record


def create_deal(page: DealsPage, **values: object) -> Deal:
    page.form.open_create()
    page.form.update_draft(**values)
    outcome = page.submit()
    assert outcome is not None
    return outcome.record


# ------------------------------------------------------------------------------
# Leads
# ------------------------------------------------------------------------------


def test_created_lead_appears_at_head_and_delete_keeps_order(ctx: PageContext) -> None:
    page = LeadsPage(ctx)
    assert page.mount()
    create_lead(page, name="Boris", email="boris@example.com")
    create_lead(page, name="Vera", email="vera@example.com")

    lead = create_lead(page, name="A", email="a@x.com", source="сайт", status="новый")
    assert page.records[0].id == lead.id
    assert lead.status == "new"
    assert lead.source == "сайт"
    assert ctx.notifier.last.description == "Lead created."

    assert page.delete(lead)
    assert [item.name for item in page.records] == ["Vera", "Boris"]

    page.unmount()
    fresh = LeadsPage(ctx)
    fresh.mount()
    assert [item.name for item in fresh.records] == ["Vera", "Boris"]


def test_lead_mutations_are_logged(ctx: PageContext) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    lead = create_lead(leads, name="Anna", email="anna@example.com")

    leads.form.open_edit(lead)
    leads.form.update_draft(status="qualified")
    assert leads.submit() is not None
    leads.delete(leads.view.find(lead.id))

    activities = ActivitiesPage(ctx)
    activities.mount()
    assert [entry.type for entry in activities.records] == ["lead_deleted", "lead_updated", "lead_created"]
    assert activities.records[-1].description == "Created lead: Anna"
    assert activities.records[-1].lead_id == lead.id


def test_lead_filters(ctx: PageContext) -> None:
    page = LeadsPage(ctx)
    page.mount()
    create_lead(page, name="Anna", email="anna@example.com", source="referral")
    create_lead(page, name="Boris", email="boris@example.com", status="qualified")

    page.view.set_filter("source", "referral")
    assert [item.name for item in page.records] == ["Anna"]
    page.view.set_filter("source", "all")
    page.view.set_filter("status", "qualified")
    assert [item.name for item in page.records] == ["Boris"]


def test_legacy_lead_loads_and_matches_its_filter(ctx: PageContext, store: InMemoryRecordStore) -> None:
    store.create(LEADS, {"user_id": "u1", "name": "Ivan", "email": "ivan@company", "status": "новый"})
    store.create(LEADS, {"user_id": "u1", "name": "Broken", "email": "b@example.com", "status": "maybe"})
    page = LeadsPage(ctx)

    assert page.mount() is True
    assert page.loading is False
    assert [item.name for item in page.records] == ["Ivan"]
    assert ctx.notifier.history == []

    page.view.set_filter("status", "новый")
    assert [item.name for item in page.records] == ["Ivan"]
    page.view.set_filter("status", "квалифицирован")
    assert page.records == []


def test_deal_stage_filter_accepts_legacy_stage(ctx: PageContext) -> None:
    page = DealsPage(ctx)
    page.mount()
    create_deal(page, title="Pilot", value=100)

    page.view.set_filter("stage", "prospecting")
    assert [item.title for item in page.records] == ["Pilot"]


def test_delete_failure_keeps_record(ctx: PageContext, store: InMemoryRecordStore) -> None:
    page = LeadsPage(ctx)
    page.mount()
    lead = create_lead(page, name="Anna", email="anna@example.com")

    store.fail_next("delete", LEADS)
    assert page.delete(lead) is False
    assert [item.id for item in page.records] == [lead.id]
    assert ctx.notifier.last.variant == Variant.DESTRUCTIVE
    assert ctx.notifier.last.description == "Could not delete the lead."


def test_activity_failure_warns_and_keeps_primary_change(ctx: PageContext, store: InMemoryRecordStore) -> None:
    page = LeadsPage(ctx)
    page.mount()
    store.fail_next("create", ACTIVITIES)

    create_lead(page, name="Anna", email="anna@example.com")
    variants = [note.variant for note in ctx.notifier.history]
    assert Variant.WARNING in variants
    assert store.summarize_counts()[LEADS] == 1
    assert store.summarize_counts()[ACTIVITIES] == 0
    assert ctx.activity_logger.pending_count == 1

    create_lead(page, name="Boris", email="boris@example.com")
    assert ctx.activity_logger.pending_count == 0
    assert store.summarize_counts()[ACTIVITIES] == 2


# ------------------------------------------------------------------------------
# Clients
# ------------------------------------------------------------------------------


def test_client_create_and_status_filter(ctx: PageContext) -> None:
    page = ClientsPage(ctx)
    page.mount()
    page.form.open_create()
    page.form.update_draft(name="Orbita", email="hello@orbita.example", status="potential")
    outcome = page.submit()

    assert outcome is not None
    assert outcome.record.status == "prospect"
    page.view.set_filter("status", "active")
    assert page.records == []
    with pytest.raises(KeyError):
        page.view.set_filter("source", "website")


# ------------------------------------------------------------------------------
# Deals
# ------------------------------------------------------------------------------


def test_stage_change_moves_deal_and_counts_toward_win_rate(ctx: PageContext) -> None:
    page = DealsPage(ctx)
    page.mount()
    deal = create_deal(page, title="Contract", value=1000, stage="new")
    assert [item.id for item in page.columns["new"]] == [deal.id]

    assert page.change_stage(deal.id, "closed_won")
    placed = {stage: [item.id for item in column] for stage, column in page.columns.items()}
    assert placed["closed_won"] == [deal.id]
    assert all(deal.id not in ids for stage, ids in placed.items() if stage != "closed_won")

    analytics = AnalyticsPage(ctx, days=7)
    analytics.mount()
    report = analytics.report
    assert report.won_count == 1
    assert report.lost_count == 0
    assert report.win_rate == 1.0

    activities = ActivitiesPage(ctx)
    activities.mount()
    assert activities.records[0].type == "deal_stage_changed"
    assert activities.records[0].description == 'Deal "Contract" moved to "Closed (won)"'
    assert activities.records[0].deal_id == deal.id


def test_stage_change_rejects_unknown_stage(ctx: PageContext, store: InMemoryRecordStore) -> None:
    page = DealsPage(ctx)
    page.mount()
    deal = create_deal(page, title="Contract", value=1000)

    assert page.change_stage(deal.id, "archived") is False
    assert store.list(DEALS)[0]["stage"] == "new"


def test_stage_change_failure_leaves_board_untouched(ctx: PageContext, store: InMemoryRecordStore) -> None:
    page = DealsPage(ctx)
    page.mount()
    deal = create_deal(page, title="Contract", value=1000)

    store.fail_next("update", DEALS)
    assert page.change_stage(deal.id, "proposal") is False
    assert [item.id for item in page.columns["new"]] == [deal.id]
    assert ctx.notifier.last.description == "Could not update the deal stage."


def test_deal_value_must_be_positive(ctx: PageContext, store: InMemoryRecordStore) -> None:
    page = DealsPage(ctx)
    page.mount()
    page.form.open_create()
    page.form.update_draft(title="Contract", value=0)

    assert page.submit() is None
    assert store.summarize_counts()[DEALS] == 0


def test_related_contact_prefers_client(ctx: PageContext) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    lead = create_lead(leads, name="Anna", email="anna@example.com")

    clients = ClientsPage(ctx)
    clients.mount()
    clients.form.open_create()
    clients.form.update_draft(name="Orbita", email="hello@orbita.example")
    client = clients.submit().record

    deals = DealsPage(ctx)
    deals.mount()
    deals.form.open_create()
    deals.form.update_draft(title="Pilot", value=100)
    deals.form.draft.link_lead(lead.id)
    lead_deal = deals.submit().record
    deals.form.open_create()
    deals.form.update_draft(title="Rollout", value=200)
    deals.form.draft.link_client(client.id)
    client_deal = deals.submit().record

    assert deals.related_contact(lead_deal) == lead
    assert deals.related_contact(client_deal).id == client.id
    assert deals.related_contact(Deal(user_id="u1", title="Solo")) is None


# ------------------------------------------------------------------------------
# Lifecycle and cache
# ------------------------------------------------------------------------------


def test_late_load_after_unmount_is_discarded(ctx: PageContext) -> None:
    page = LeadsPage(ctx)
    token = page.begin_load()
    page.unmount()

    applied = page.complete_load(token, {"records": [Lead(user_id="u1", id="l1", name="Anna", email="anna@example.com")]})
    assert applied is False
    assert page.records == []


def test_superseded_load_is_discarded(ctx: PageContext) -> None:
    page = LeadsPage(ctx)
    stale = page.begin_load()
    current = page.begin_load()

    assert page.complete_load(stale, {"records": [Lead(user_id="u1", id="old", name="Old", email="old@example.com")]}) is False
    assert page.complete_load(current, {"records": []}) is True


def test_load_failure_notifies(ctx: PageContext, store: InMemoryRecordStore) -> None:
    store.fail_next("list", DEALS)
    page = DealsPage(ctx)

    assert page.mount() is False
    assert page.loading is False
    assert ctx.notifier.last.description == "Could not load deals."


def test_pages_share_cached_record_sets(ctx: PageContext) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    loads_after_leads = ctx.cache.loads

    DealsPage(ctx).mount()
    loads_after_deals = ctx.cache.loads
    assert loads_after_deals == loads_after_leads + 2

    DashboardPage(ctx).mount()
    assert ctx.cache.loads == loads_after_deals + 1

    create_lead(leads, name="Anna", email="anna@example.com")
    assert ctx.cache.peek(LEADS, "u1") is None


def test_mount_requires_signed_in_user(store: InMemoryRecordStore) -> None:
    ctx = PageContext.create(store, AuthSession())
    with pytest.raises(NotAuthenticated):
        LeadsPage(ctx).mount()


def test_dashboard_summary(ctx: PageContext) -> None:
    deals = DealsPage(ctx)
    deals.mount()
    won = create_deal(deals, title="Contract", value=1000)
    deals.change_stage(won.id, "closed_won")
    create_deal(deals, title="Pilot", value=300)

    page = DashboardPage(ctx)
    page.mount()
    assert page.summary.total_deals == 2
    assert page.summary.total_revenue == 1000
    assert page.summary.recent_activities[0].type == "deal_created"


def test_analytics_time_range(ctx: PageContext) -> None:
    page = AnalyticsPage(ctx)
    page.mount()
    page.set_time_range(90)
    assert len(page.report.time_series) == 90
    with pytest.raises(ValueError):
        page.set_time_range(60)


# ------------------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------------------


def test_settings_created_on_first_save_then_updated(ctx: PageContext) -> None:
    page = SettingsPage(ctx)
    page.mount()
    assert page.settings.id is None

    page.update_settings(company_name="Orbita", currency="EUR")
    assert page.save()
    settings_id = page.settings.id
    assert settings_id is not None

    page.update_settings(deal_reminders=False)
    assert page.save()

    reloaded = SettingsPage(ctx)
    reloaded.mount()
    assert reloaded.settings.id == settings_id
    assert reloaded.settings.currency == "EUR"
    assert reloaded.settings.deal_reminders is False


def test_settings_export(ctx: PageContext, tmp_path: Path) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    create_lead(leads, name="Anna", email="anna@example.com")

    page = SettingsPage(ctx)
    page.mount()
    path = page.export(tmp_path)

    assert path is not None
    assert path.name == "crm-export-2024-03-10.json"
    assert '"total_leads": 1' in path.read_text(encoding="utf-8")


def test_delete_all_continues_past_failures(ctx: PageContext, store: InMemoryRecordStore) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    anna = create_lead(leads, name="Anna", email="anna@example.com")
    create_lead(leads, name="Boris", email="boris@example.com")
    deals = DealsPage(ctx)
    deals.mount()
    create_deal(deals, title="Contract", value=1000)

    page = SettingsPage(ctx)
    page.mount()
    page.update_settings(company_name="Orbita")
    page.save()

    store.fail_on_id(anna.id)
    report = page.delete_all_data()

    assert report is not None and not report.ok
    assert report.deleted[LEADS] == 1
    assert report.deleted[DEALS] == 1
    assert [failure[1] for failure in report.failures] == [anna.id]
    assert ctx.notifier.last.variant == Variant.DESTRUCTIVE
    assert "1 failed" in ctx.notifier.last.description

    counts = store.summarize_counts()
    assert counts[LEADS] == 1
    assert counts[DEALS] == 0
    assert counts[ACTIVITIES] == 0
    assert counts["user_settings"] == 1


def test_delete_all_success(ctx: PageContext, store: InMemoryRecordStore) -> None:
    leads = LeadsPage(ctx)
    leads.mount()
    create_lead(leads, name="Anna", email="anna@example.com")

    page = SettingsPage(ctx)
    page.mount()
    report = page.delete_all_data()

    assert report.ok
    assert report.total_deleted == 2
    assert ctx.notifier.last.description == "All data deleted."
