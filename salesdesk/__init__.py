"""Client-side data and view model for a small-business CRM."""

from .auth import AuthSession, NotAuthenticated
from .config import AppConfig, build_store
from .crm_models import Activity, Client, Deal, Lead, User, UserSettings
from .pages import (
    ActivitiesPage,
    AnalyticsPage,
    ClientsPage,
    DashboardPage,
    DealsPage,
    LeadsPage,
    PageContext,
    SettingsPage,
)
from .record_store import InMemoryRecordStore, RecordNotFound, StoreError, StoreUnavailable

__all__ = [
    "Activity",
    "ActivitiesPage",
    "AnalyticsPage",
    "AppConfig",
    "AuthSession",
    "Client",
    "ClientsPage",
    "DashboardPage",
    "Deal",
    "DealsPage",
    "InMemoryRecordStore",
    "Lead",
    "LeadsPage",
    "NotAuthenticated",
    "PageContext",
    "RecordNotFound",
    "SettingsPage",
    "StoreError",
    "StoreUnavailable",
    "User",
    "UserSettings",
    "build_store",
]
