"""Tests for the analytics report and dashboard summary."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List

import pytest

from salesdesk.analytics import compute_analytics, summarize_dashboard, win_rate
from salesdesk.crm_models import Activity, Client, Deal, Lead

UTC = timezone.utc
NOW = datetime(2024, 3, 10, 15, 0, tzinfo=UTC)


def deal(title: str, stage: str, value: float, age_days: float = 0) -> Deal:
    return Deal(user_id="u1", id=title, title=title, stage=stage, value=value, created_at=NOW - timedelta(days=age_days))


def lead(name: str, status: str = "new", source: str = "website", age_days: float = 0) -> Lead:
    return Lead(
        user_id="u1",
        id=name,
        name=name,
        email=f"{name.lower()}@example.com",
        status=status,
        source=source,
        created_at=NOW - timedelta(days=age_days),
    )


def client(name: str, age_days: float = 0) -> Client:
    return Client(user_id="u1", id=name, name=name, email=f"{name.lower()}@example.com", created_at=NOW - timedelta(days=age_days))


@pytest.fixture
def deals() -> List[Deal]:
    return [
        deal("A", "closed_won", 1000, age_days=1),
        deal("B", "closed_lost", 500, age_days=2),
        deal("C", "new", 200, age_days=3),
        deal("D", "closed_won", 300, age_days=40),
    ]


def test_win_rate_is_zero_without_closed_deals() -> None:
    assert win_rate(0, 0) == 0.0
    assert win_rate(3, 1) == 0.75


def test_report_for_empty_data() -> None:
    report = compute_analytics([], [], [], [], 30, NOW, UTC)

    assert report.win_rate == 0.0
    assert report.conversion_rate == 0.0
    assert report.average_deal_value == 0.0
    assert len(report.time_series) == 30
    assert all(point.deals == 0 and point.revenue == 0 for point in report.time_series)


def test_window_metrics(deals: List[Deal]) -> None:
    report = compute_analytics([], [], deals, [], 30, NOW, UTC)

    assert report.deals_in_window == 3
    assert report.total_deal_value == 1700
    assert report.won_value == 1000
    assert report.won_count == 1
    assert report.lost_count == 1
    assert report.win_rate == 0.5
    assert report.average_deal_value == pytest.approx(1700 / 3)


def test_stage_breakdown_covers_every_stage(deals: List[Deal]) -> None:
    report = compute_analytics([], [], deals, [], 90, NOW, UTC)
    by_stage = {row.stage: row for row in report.deals_by_stage}

    assert list(by_stage) == ["new", "qualified", "proposal", "negotiation", "closed_won", "closed_lost"]
    assert by_stage["closed_won"].count == 2
    assert by_stage["closed_won"].value == 1300
    assert by_stage["closed_won"].label == "Closed (won)"
    assert by_stage["qualified"].count == 0


@pytest.mark.parametrize("days", [7, 30, 90, 365])
def test_time_series_length_matches_window(days: int, deals: List[Deal]) -> None:
    report = compute_analytics([], [], deals, [], days, NOW, UTC)
    assert len(report.time_series) == days
    assert report.time_series[-1].day == date(2024, 3, 10)


def test_time_series_revenue_counts_won_deals_by_creation_day(deals: List[Deal]) -> None:
    report = compute_analytics([], [], deals, [], 7, NOW, UTC)
    points = {point.day: point for point in report.time_series}

    assert points[date(2024, 3, 9)].revenue == 1000
    assert points[date(2024, 3, 8)].revenue == 0
    assert points[date(2024, 3, 8)].deals == 1
    assert points[date(2024, 3, 9)].label == "09 Mar"


def test_conversion_compares_window_clients_to_window_leads() -> None:
    leads = [lead("Anna"), lead("Boris"), lead("Vera"), lead("Old", age_days=100)]
    clients = [client("Orbita"), client("Vektor", age_days=100)]
    report = compute_analytics(leads, clients, [], [], 30, NOW, UTC)

    assert report.leads_in_window == 3
    assert report.clients_in_window == 1
    assert report.conversion_rate == pytest.approx(1 / 3)


def test_breakdowns_over_full_sets() -> None:
    leads = [
        lead("Anna", status="new", source="website"),
        lead("Boris", status="qualified", source="referral", age_days=200),
        lead("Vera", status="closed_lost", source="website"),
    ]
    activities = [
        Activity(user_id="u1", type="lead_created"),
        Activity(user_id="u1", type="lead_created"),
        Activity(user_id="u1", type="call"),
    ]
    report = compute_analytics(leads, [], [], activities, 7, NOW, UTC)

    assert report.leads_by_source == {"website": 2, "referral": 1}
    assert report.leads_by_status == {"new": 1, "qualified": 1, "closed_lost": 1}
    assert report.activity_by_type == {"lead_created": 2, "call": 1}
    assert report.lead_details == {"new": 1, "qualified": 1, "closed_lost": 1}


def test_deal_details(deals: List[Deal]) -> None:
    report = compute_analytics([], [], deals, [], 7, NOW, UTC)
    assert report.deal_details == {"total": 4, "in_window": 3, "open": 1, "won": 1, "lost": 1}


def test_unsupported_window_rejected() -> None:
    with pytest.raises(ValueError):
        compute_analytics([], [], [], [], 10, NOW, UTC)


def test_dashboard_summary(deals: List[Deal]) -> None:
    activities = [Activity(user_id="u1", type="note", description=str(index)) for index in range(15)]
    summary = summarize_dashboard([lead("Anna")], [client("Orbita")], deals, activities)

    assert summary.total_leads == 1
    assert summary.total_clients == 1
    assert summary.total_deals == 4
    assert summary.total_revenue == 1300
    assert [item.description for item in summary.recent_activities] == [str(index) for index in range(10)]
