"""User settings, data export and the delete-everything action."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .crm_models import User, UserSettings
from .export import build_export
from .record_cache import RecordCache
from .record_store import Clock, StoreError, utc_now
from .repositories import EntityRepository, Repositories

logger = logging.getLogger(__name__)


@dataclass
class BulkDeleteReport:
    deleted: Dict[str, int] = field(default_factory=dict)
    failures: List[Tuple[str, str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


class AccountService:
    def __init__(self, repositories: Repositories, cache: RecordCache, clock: Optional[Clock] = None) -> None:
        self._repos = repositories
        self._cache = cache
        self._clock: Clock = clock or utc_now

    def _wiped_repositories(self) -> Tuple[EntityRepository, ...]:
        return (self._repos.leads, self._repos.clients, self._repos.deals, self._repos.activities)

    def load_settings(self, owner_id: str) -> UserSettings:
        """Stored settings, or unsaved defaults (``id`` is None) for a new user."""
        existing = self._repos.settings.get(owner_id)
        if existing is not None:
            return existing
        return UserSettings(user_id=owner_id)

    def save_settings(self, settings: UserSettings) -> UserSettings:
        """Create on first save, update afterwards."""
        if settings.id is None:
            return self._repos.settings.create(settings)
        changes = settings.model_dump(exclude={"id", "user_id", "created_at", "updated_at"})
        self._repos.settings.update(settings.id, changes)
        return settings.model_copy(update={"updated_at": self._clock()})

    def export(self, user: User, settings: Optional[UserSettings] = None) -> Dict[str, Any]:
        """Fresh read of every collection; the cache is bypassed so the export is complete."""
        leads = self._repos.leads.list(user.id)
        clients = self._repos.clients.list(user.id)
        deals = self._repos.deals.list(user.id)
        activities = self._repos.activities.list(user.id)
        return build_export(user, settings, leads, clients, deals, activities, self._clock())

    def delete_all_data(self, owner_id: str) -> BulkDeleteReport:
        """Delete every lead, client, deal and activity of ``owner_id``.

        Deletion continues past individual failures; there is no rollback, so a
        report with failures describes a partially wiped account. Settings are
        kept.
        """
        report = BulkDeleteReport()
        targets = []
        for repository in self._wiped_repositories():
            records = repository.list(owner_id, order_by=None)
            targets.append((repository, records))
            report.deleted[repository.collection] = 0

        for repository, records in targets:
            for record in records:
                try:
                    repository.delete(record.id)
                except StoreError as exc:
                    logger.error("Failed to delete %s/%s: %s", repository.collection, record.id, exc)
                    report.failures.append((repository.collection, record.id, str(exc)))
                    continue
                report.deleted[repository.collection] += 1

        self._cache.invalidate_owner(owner_id)
        logger.info("Deleted %d records for %s (%d failures)", report.total_deleted, owner_id, len(report.failures))
        return report
