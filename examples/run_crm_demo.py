"""Walk through the CRM screens against the in-memory store."""

from __future__ import annotations

from pathlib import Path
from pprint import pprint
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from salesdesk.auth import AuthSession
from salesdesk.crm_models import User
from salesdesk.pages import (
    ActivitiesPage,
    AnalyticsPage,
    DashboardPage,
    DealsPage,
    LeadsPage,
    PageContext,
)
from salesdesk.record_store import InMemoryRecordStore


def main() -> None:
    session = AuthSession()
    session.signed_in(User(id="demo-user", email="owner@example.com", display_name="Demo Owner"))
    ctx = PageContext.create(InMemoryRecordStore(), session)
    ctx.notifier.subscribe(lambda note: print(f"[{note.variant.value}] {note.title}: {note.description}"))

    leads = LeadsPage(ctx)
    leads.mount()
    leads.form.open_create()
    leads.form.update_draft(name="Ivan Petrov", email="ivan@example.com", company="Orbita", source="referral")
    leads.submit()

    deals = DealsPage(ctx)
    deals.mount()
    deals.form.open_create()
    deals.form.update_draft(title="Orbita rollout", value=120_000.0)
    deals.form.draft.link_lead(leads.records[0].id)
    outcome = deals.submit()
    if outcome is not None:
        deals.change_stage(outcome.record.id, "closed_won")

    board = {stage: [deal.title for deal in column] for stage, column in deals.columns.items()}
    pprint(board)

    activities = ActivitiesPage(ctx)
    activities.mount()
    for entry in activities.records:
        print(f"{entry.created_at:%Y-%m-%d %H:%M} {entry.type}: {entry.description}")

    analytics = AnalyticsPage(ctx, days=7)
    analytics.mount()
    report = analytics.report
    print(f"Win rate: {report.win_rate:.0%}  won value: {report.won_value:,.2f}")

    dashboard = DashboardPage(ctx)
    dashboard.mount()
    pprint(dashboard.summary)


if __name__ == "__main__":
    main()
