"""Aggregations for the Analytics and Dashboard screens.

Everything here is a pure function of already-loaded record sets and the
selected trailing window; nothing talks to the store.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Dict, List, Optional, Sequence

from .crm_models import (
    Activity,
    Client,
    DEAL_STAGE_LABELS,
    DEAL_STAGES,
    Deal,
    DealStage,
    Lead,
    LeadStatus,
)
from .view_models import bucket_by_day, filter_by_window, local_date, validate_time_range

UNKNOWN = "unknown"
RECENT_ACTIVITY_LIMIT = 10


def win_rate(won: int, lost: int) -> float:
    """Share of closed deals that were won; 0 when nothing has closed."""
    closed = won + lost
    if closed == 0:
        return 0.0
    return won / closed


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _total_value(deals: Sequence[Deal]) -> float:
    return float(sum(deal.value for deal in deals))


def _count_by(values: Sequence[Optional[str]]) -> Dict[str, int]:
    return dict(Counter(value or UNKNOWN for value in values))


@dataclass(frozen=True)
class StageBreakdown:
    stage: str
    label: str
    count: int
    value: float


@dataclass(frozen=True)
class DayPoint:
    day: date
    leads: int
    clients: int
    deals: int
    revenue: float

    @property
    def label(self) -> str:
        return self.day.strftime("%d %b")


@dataclass(frozen=True)
class AnalyticsReport:
    days: int
    deals_in_window: int
    leads_in_window: int
    clients_in_window: int
    total_deal_value: float
    won_value: float
    won_count: int
    lost_count: int
    win_rate: float
    average_deal_value: float
    conversion_rate: float
    deals_by_stage: List[StageBreakdown] = field(default_factory=list)
    leads_by_source: Dict[str, int] = field(default_factory=dict)
    leads_by_status: Dict[str, int] = field(default_factory=dict)
    activity_by_type: Dict[str, int] = field(default_factory=dict)
    time_series: List[DayPoint] = field(default_factory=list)
    lead_details: Dict[str, int] = field(default_factory=dict)
    deal_details: Dict[str, int] = field(default_factory=dict)


def compute_analytics(
    leads: Sequence[Lead],
    clients: Sequence[Client],
    deals: Sequence[Deal],
    activities: Sequence[Activity],
    days: int,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> AnalyticsReport:
    """Build the analytics report for the trailing ``days`` window ending at ``now``.

    Window metrics (values, win rate, conversion) use records created inside
    the window. Source/status/type breakdowns cover the full loaded sets. In
    ``deal_details`` the won and lost counts are per window while the open
    count covers every deal. The conversion rate compares clients to leads
    created in the window; it does not trace which lead became which client.
    """
    validate_time_range(days)
    window_deals = filter_by_window(deals, days, now)
    window_leads = filter_by_window(leads, days, now)
    window_clients = filter_by_window(clients, days, now)

    won = [deal for deal in window_deals if deal.stage == DealStage.CLOSED_WON.value]
    lost = [deal for deal in window_deals if deal.stage == DealStage.CLOSED_LOST.value]
    total_value = _total_value(window_deals)

    by_stage = [
        StageBreakdown(
            stage=stage,
            label=DEAL_STAGE_LABELS[stage],
            count=sum(1 for deal in window_deals if deal.stage == stage),
            value=_total_value([deal for deal in window_deals if deal.stage == stage]),
        )
        for stage in DEAL_STAGES
    ]

    today = local_date(now, tz)
    lead_days = bucket_by_day(leads, days, today, tz)
    client_days = bucket_by_day(clients, days, today, tz)
    deal_days = bucket_by_day(deals, days, today, tz)
    series = [
        DayPoint(
            day=day,
            leads=len(lead_days[day]),
            clients=len(client_days[day]),
            deals=len(deal_days[day]),
            revenue=_total_value([deal for deal in deal_days[day] if deal.stage == DealStage.CLOSED_WON.value]),
        )
        for day in deal_days
    ]

    return AnalyticsReport(
        days=days,
        deals_in_window=len(window_deals),
        leads_in_window=len(window_leads),
        clients_in_window=len(window_clients),
        total_deal_value=total_value,
        won_value=_total_value(won),
        won_count=len(won),
        lost_count=len(lost),
        win_rate=win_rate(len(won), len(lost)),
        average_deal_value=_ratio(total_value, len(window_deals)),
        conversion_rate=_ratio(len(window_clients), len(window_leads)),
        deals_by_stage=by_stage,
        leads_by_source=_count_by([lead.source for lead in leads]),
        leads_by_status=_count_by([lead.status for lead in leads]),
        activity_by_type=_count_by([activity.type for activity in activities]),
        time_series=series,
        lead_details={
            LeadStatus.NEW.value: sum(1 for lead in leads if lead.status == LeadStatus.NEW.value),
            LeadStatus.QUALIFIED.value: sum(1 for lead in leads if lead.status == LeadStatus.QUALIFIED.value),
            LeadStatus.CLOSED_LOST.value: sum(1 for lead in leads if lead.status == LeadStatus.CLOSED_LOST.value),
        },
        deal_details={
            "total": len(deals),
            "in_window": len(window_deals),
            "open": sum(1 for deal in deals if not deal.is_closed),
            "won": len(won),
            "lost": len(lost),
        },
    )


@dataclass(frozen=True)
class DashboardSummary:
    total_leads: int
    total_clients: int
    total_deals: int
    total_revenue: float
    recent_activities: List[Activity]


def summarize_dashboard(
    leads: Sequence[Lead],
    clients: Sequence[Client],
    deals: Sequence[Deal],
    activities: Sequence[Activity],
    recent_limit: int = RECENT_ACTIVITY_LIMIT,
) -> DashboardSummary:
    """Headline counts; revenue is the value of won deals. ``activities`` must be newest first."""
    return DashboardSummary(
        total_leads=len(leads),
        total_clients=len(clients),
        total_deals=len(deals),
        total_revenue=_total_value([deal for deal in deals if deal.stage == DealStage.CLOSED_WON.value]),
        recent_activities=list(activities[:recent_limit]),
    )
