"""Page controllers: one per CRM screen.

A page loads its records through the shared cache on mount, keeps them in a
view model, and turns every store failure into a notification while leaving
what is already on screen untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .account import AccountService, BulkDeleteReport
from .activity_log import ActivityLogger, EntityRef
from .analytics import AnalyticsReport, DashboardSummary, compute_analytics, summarize_dashboard
from .auth import AuthSession
from .crm_models import (
    Activity,
    ActivityType,
    Client,
    DEAL_STAGE_LABELS,
    Deal,
    DealStage,
    EntityType,
    Lead,
    UserSettings,
    validate_enum_value,
)
from .export import write_export
from .forms import ClientDraft, DealDraft, FormController, LeadDraft, SubmitOutcome
from .notifications import Notifier
from .record_cache import RecordCache
from .record_store import ACTIVITIES, Clock, RecordStore, StoreError, utc_now
from .repositories import EntityRepository, Repositories
from .view_models import (
    ACTIVITY_SEARCH_FIELDS,
    CLIENT_FILTER_NORMALIZERS,
    CLIENT_SEARCH_FIELDS,
    DEAL_FILTER_NORMALIZERS,
    DEAL_SEARCH_FIELDS,
    LEAD_FILTER_NORMALIZERS,
    LEAD_SEARCH_FIELDS,
    BoardViewModel,
    ListViewModel,
    validate_time_range,
)

logger = logging.getLogger(__name__)

ACTIVITY_PAGE_LIMIT = 100
RECENT_ACTIVITY_LIMIT = 10


@dataclass
class PageContext:
    """Collaborators shared by every page of one signed-in session."""

    session: AuthSession
    repositories: Repositories
    cache: RecordCache
    notifier: Notifier
    activity_logger: ActivityLogger
    clock: Clock = utc_now
    tz: Optional[tzinfo] = None
    recent_activity_limit: int = RECENT_ACTIVITY_LIMIT
    analytics_activity_limit: int = ACTIVITY_PAGE_LIMIT

    @classmethod
    def create(
        cls,
        store: RecordStore,
        session: AuthSession,
        clock: Optional[Clock] = None,
        tz: Optional[tzinfo] = None,
        recent_activity_limit: int = RECENT_ACTIVITY_LIMIT,
        analytics_activity_limit: int = ACTIVITY_PAGE_LIMIT,
    ) -> "PageContext":
        repositories = Repositories(store)
        clock = clock or utc_now
        return cls(
            session=session,
            repositories=repositories,
            cache=RecordCache(),
            notifier=Notifier(),
            activity_logger=ActivityLogger(repositories.activities, clock=clock),
            clock=clock,
            tz=tz,
            recent_activity_limit=recent_activity_limit,
            analytics_activity_limit=analytics_activity_limit,
        )

    @property
    def owner_id(self) -> str:
        return self.session.me().id


@dataclass(frozen=True)
class LoadToken:
    generation: int


class Page:
    """Mount/unmount lifecycle with a guard against late load results."""

    load_error = "Could not load data."

    def __init__(self, context: PageContext) -> None:
        self.ctx = context
        self.mounted = False
        self.loading = False
        self._generation = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin_load(self) -> LoadToken:
        self._generation += 1
        self.mounted = True
        self.loading = True
        return LoadToken(self._generation)

    def complete_load(self, token: LoadToken, data: Dict[str, Any]) -> bool:
        """Apply loaded data unless the page was unmounted or re-mounted meanwhile."""
        if not self.mounted or token.generation != self._generation:
            logger.debug("Discarding stale load for %s", type(self).__name__)
            return False
        self.loading = False
        self._apply(data)
        return True

    def mount(self) -> bool:
        token = self.begin_load()
        try:
            data = self._fetch(self.ctx.owner_id)
        except StoreError as exc:
            logger.error("%s failed to load: %s", type(self).__name__, exc)
            self.loading = False
            self.ctx.notifier.error(self.load_error)
            return False
        return self.complete_load(token, data)

    def unmount(self) -> None:
        self.mounted = False
        self._generation += 1

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _apply(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _cached(self, repository: EntityRepository, owner_id: str, limit: Optional[int] = None) -> List[Any]:
        return self.ctx.cache.get_or_load(
            repository.collection,
            owner_id,
            lambda: repository.list(owner_id, limit=limit),
            limit=limit,
        )

    def _log_activity(
        self,
        owner_id: str,
        activity_type: ActivityType,
        description: str,
        entity_ref: Optional[EntityRef] = None,
    ) -> None:
        activity_logger = self.ctx.activity_logger
        if activity_logger.pending_count:
            activity_logger.flush()
        if not activity_logger.record(owner_id, activity_type, description, entity_ref):
            self.ctx.notifier.warning("The change was saved but its history entry is pending.")
        self.ctx.cache.invalidate(ACTIVITIES, owner_id)


class RecordListPage(Page):
    """Record list with a create/edit dialog and a delete action."""

    entity_type: EntityType
    label: str
    created_type: ActivityType
    updated_type: ActivityType
    deleted_type: ActivityType

    def __init__(
        self,
        context: PageContext,
        repository: EntityRepository,
        view: ListViewModel,
        draft_type: Any,
    ) -> None:
        super().__init__(context)
        self.repository = repository
        self.view = view
        self.form = FormController(
            draft_type,
            repository,
            view,
            context.notifier,
            on_saved=self._on_saved,
            clock=context.clock,
        )
        self.load_error = f"Could not load {self.label}s."

    @property
    def records(self) -> List[Any]:
        return self.view.visible

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        return {"records": self._cached(self.repository, owner_id)}

    def _apply(self, data: Dict[str, Any]) -> None:
        self.view.set_records(data["records"])

    def submit(self) -> Optional[SubmitOutcome]:
        return self.form.submit(self.ctx.owner_id)

    def _record_name(self, record: Any) -> str:
        return record.name

    def _on_saved(self, outcome: SubmitOutcome) -> None:
        record = outcome.record
        self.ctx.cache.invalidate(self.repository.collection, record.user_id)
        if outcome.created:
            description = f"Created {self.label}: {self._record_name(record)}"
            activity_type = self.created_type
        else:
            description = f"Updated {self.label}: {self._record_name(record)}"
            activity_type = self.updated_type
        self._log_activity(record.user_id, activity_type, description, EntityRef(self.entity_type, record.id))
        verb = "created" if outcome.created else "updated"
        self.ctx.notifier.success(f"{self.label.capitalize()} {verb}.")

    def delete(self, record: Any) -> bool:
        owner_id = self.ctx.owner_id
        try:
            self.repository.delete(record.id)
        except StoreError as exc:
            logger.error("Failed to delete %s %s: %s", self.label, record.id, exc)
            self.ctx.notifier.error(f"Could not delete the {self.label}.")
            return False
        self.view.remove(record.id)
        self.ctx.cache.invalidate(self.repository.collection, owner_id)
        self._log_activity(
            owner_id,
            self.deleted_type,
            f"Deleted {self.label}: {self._record_name(record)}",
            EntityRef(self.entity_type, record.id),
        )
        self.ctx.notifier.success(f"{self.label.capitalize()} deleted.")
        return True


class LeadsPage(RecordListPage):
    entity_type = EntityType.LEAD
    label = "lead"
    created_type = ActivityType.LEAD_CREATED
    updated_type = ActivityType.LEAD_UPDATED
    deleted_type = ActivityType.LEAD_DELETED

    def __init__(self, context: PageContext) -> None:
        view: ListViewModel[Lead] = ListViewModel(
            LEAD_SEARCH_FIELDS, filter_fields=("status", "source"), normalizers=LEAD_FILTER_NORMALIZERS
        )
        super().__init__(context, context.repositories.leads, view, LeadDraft)


class ClientsPage(RecordListPage):
    entity_type = EntityType.CLIENT
    label = "client"
    created_type = ActivityType.CLIENT_CREATED
    updated_type = ActivityType.CLIENT_UPDATED
    deleted_type = ActivityType.CLIENT_DELETED

    def __init__(self, context: PageContext) -> None:
        view: ListViewModel[Client] = ListViewModel(
            CLIENT_SEARCH_FIELDS, filter_fields=("status",), normalizers=CLIENT_FILTER_NORMALIZERS
        )
        super().__init__(context, context.repositories.clients, view, ClientDraft)


class DealsPage(RecordListPage):
    """Kanban board of deals plus the leads and clients a deal can point at."""

    entity_type = EntityType.DEAL
    label = "deal"
    created_type = ActivityType.DEAL_CREATED
    updated_type = ActivityType.DEAL_UPDATED
    deleted_type = ActivityType.DEAL_DELETED

    def __init__(self, context: PageContext) -> None:
        view: BoardViewModel[Deal] = BoardViewModel(
            DEAL_SEARCH_FIELDS, filter_fields=("stage",), normalizers=DEAL_FILTER_NORMALIZERS
        )
        super().__init__(context, context.repositories.deals, view, DealDraft)
        self.leads: List[Lead] = []
        self.clients: List[Client] = []

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        repos = self.ctx.repositories
        return {
            "records": self._cached(repos.deals, owner_id),
            "leads": self._cached(repos.leads, owner_id),
            "clients": self._cached(repos.clients, owner_id),
        }

    def _apply(self, data: Dict[str, Any]) -> None:
        super()._apply(data)
        self.leads = data["leads"]
        self.clients = data["clients"]

    def _record_name(self, record: Any) -> str:
        return record.title

    @property
    def columns(self) -> Dict[str, List[Deal]]:
        return self.view.columns

    def related_contact(self, deal: Deal) -> Optional[Union[Client, Lead]]:
        if deal.client_id:
            return next((client for client in self.clients if client.id == deal.client_id), None)
        if deal.lead_id:
            return next((lead for lead in self.leads if lead.id == deal.lead_id), None)
        return None

    def change_stage(self, deal_id: str, stage: str) -> bool:
        """Move a deal to any stage; there is no transition table."""
        try:
            stage = validate_enum_value(stage, DealStage, "Stage")
        except ValueError as exc:
            self.ctx.notifier.error(str(exc))
            return False
        deal = self.view.find(deal_id)
        if deal is None:
            self.ctx.notifier.error("Deal not found.")
            return False
        owner_id = self.ctx.owner_id
        try:
            self.repository.update(deal_id, {"stage": stage})
        except StoreError as exc:
            logger.error("Failed to move deal %s to %s: %s", deal_id, stage, exc)
            self.ctx.notifier.error("Could not update the deal stage.")
            return False
        self.view.replace(deal.model_copy(update={"stage": stage, "updated_at": self.ctx.clock()}))
        self.ctx.cache.invalidate(self.repository.collection, owner_id)
        stage_label = DEAL_STAGE_LABELS[stage]
        self._log_activity(
            owner_id,
            ActivityType.DEAL_STAGE_CHANGED,
            f'Deal "{deal.title}" moved to "{stage_label}"',
            EntityRef(EntityType.DEAL, deal_id),
        )
        self.ctx.notifier.success(f'Deal moved to "{stage_label}".')
        return True


class ActivitiesPage(Page):
    """Read-only feed of the most recent activity entries."""

    load_error = "Could not load activities."

    def __init__(self, context: PageContext) -> None:
        super().__init__(context)
        self.view: ListViewModel[Activity] = ListViewModel(ACTIVITY_SEARCH_FIELDS, filter_fields=("type",))

    @property
    def records(self) -> List[Activity]:
        return self.view.visible

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        return {"records": self._cached(self.ctx.repositories.activities, owner_id, limit=ACTIVITY_PAGE_LIMIT)}

    def _apply(self, data: Dict[str, Any]) -> None:
        self.view.set_records(data["records"])


class AnalyticsPage(Page):
    load_error = "Could not load analytics data."

    def __init__(self, context: PageContext, days: int = 30) -> None:
        super().__init__(context)
        self.days = validate_time_range(days)
        self.leads: List[Lead] = []
        self.clients: List[Client] = []
        self.deals: List[Deal] = []
        self.activities: List[Activity] = []

    def set_time_range(self, days: int) -> None:
        self.days = validate_time_range(days)

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        repos = self.ctx.repositories
        return {
            "deals": self._cached(repos.deals, owner_id),
            "leads": self._cached(repos.leads, owner_id),
            "clients": self._cached(repos.clients, owner_id),
            "activities": self._cached(repos.activities, owner_id, limit=self.ctx.analytics_activity_limit),
        }

    def _apply(self, data: Dict[str, Any]) -> None:
        self.deals = data["deals"]
        self.leads = data["leads"]
        self.clients = data["clients"]
        self.activities = data["activities"]

    @property
    def report(self) -> AnalyticsReport:
        return compute_analytics(
            self.leads,
            self.clients,
            self.deals,
            self.activities,
            self.days,
            now=self.ctx.clock(),
            tz=self.ctx.tz,
        )


class DashboardPage(Page):
    load_error = "Could not load the dashboard."

    def __init__(self, context: PageContext) -> None:
        super().__init__(context)
        self.summary: Optional[DashboardSummary] = None

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        repos = self.ctx.repositories
        return {
            "leads": self._cached(repos.leads, owner_id),
            "clients": self._cached(repos.clients, owner_id),
            "deals": self._cached(repos.deals, owner_id),
            "activities": self._cached(repos.activities, owner_id, limit=self.ctx.recent_activity_limit),
        }

    def _apply(self, data: Dict[str, Any]) -> None:
        self.summary = summarize_dashboard(
            data["leads"],
            data["clients"],
            data["deals"],
            data["activities"],
            recent_limit=self.ctx.recent_activity_limit,
        )


class SettingsPage(Page):
    load_error = "Could not load settings."

    def __init__(self, context: PageContext) -> None:
        super().__init__(context)
        self.account = AccountService(context.repositories, context.cache, clock=context.clock)
        self.settings: Optional[UserSettings] = None
        self.saving = False

    def _fetch(self, owner_id: str) -> Dict[str, Any]:
        return {"settings": self.account.load_settings(owner_id)}

    def _apply(self, data: Dict[str, Any]) -> None:
        self.settings = data["settings"]

    def update_settings(self, **values: Any) -> None:
        if self.settings is None:
            raise RuntimeError("Settings are not loaded.")
        self.settings = UserSettings.model_validate({**self.settings.model_dump(), **values})

    def save(self) -> bool:
        if self.settings is None:
            return False
        self.saving = True
        try:
            self.settings = self.account.save_settings(self.settings)
        except StoreError as exc:
            logger.error("Failed to save settings: %s", exc)
            self.ctx.notifier.error("Could not save settings.")
            return False
        finally:
            self.saving = False
        self.ctx.notifier.success("Settings saved.")
        return True

    def export(self, directory: Path) -> Optional[Path]:
        user = self.ctx.session.me()
        try:
            document = self.account.export(user, self.settings)
        except StoreError as exc:
            logger.error("Export failed: %s", exc)
            self.ctx.notifier.error("Could not export data.")
            return None
        path = write_export(document, directory, self.ctx.clock())
        self.ctx.notifier.success("Data exported.")
        return path

    def delete_all_data(self) -> Optional[BulkDeleteReport]:
        owner_id = self.ctx.owner_id
        try:
            report = self.account.delete_all_data(owner_id)
        except StoreError as exc:
            logger.error("Delete-all could not list records: %s", exc)
            self.ctx.notifier.error("Could not delete data.")
            return None
        if report.ok:
            self.ctx.notifier.success("All data deleted.")
        else:
            self.ctx.notifier.error(f"Some records could not be deleted ({len(report.failures)} failed).")
        return report
