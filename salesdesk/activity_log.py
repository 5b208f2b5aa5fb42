"""Activity logger.

Each successful create/update/delete/stage change writes one human-readable
activity record. The write is not atomic with the mutation that triggered it:
if it fails the primary change stays, the entry is parked in an outbox and
``flush`` retries it later with its original timestamp.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from .crm_models import Activity, ActivityType, EntityType
from .record_store import Clock, StoreError, utc_now
from .repositories import ActivityRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class EntityRef:
    entity_type: EntityType
    entity_id: str


@dataclass
class PendingActivity:
    activity: Activity
    attempts: int
    last_error: str


class ActivityLogger:
    def __init__(
        self,
        repository: ActivityRepository,
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._repository = repository
        self._clock: Clock = clock or utc_now
        self._max_attempts = max_attempts
        self.outbox: Deque[PendingActivity] = deque()
        self.dropped: List[PendingActivity] = []

    def record(
        self,
        owner_id: str,
        activity_type: ActivityType | str,
        description: str,
        entity_ref: Optional[EntityRef] = None,
        title: Optional[str] = None,
    ) -> bool:
        """Write an activity entry; returns False when it was parked in the outbox."""
        activity = Activity(
            user_id=owner_id,
            type=activity_type.value if isinstance(activity_type, ActivityType) else activity_type,
            title=title,
            description=description,
            created_at=self._clock(),
        )
        if entity_ref is not None:
            activity.entity_type = entity_ref.entity_type
            activity.entity_id = entity_ref.entity_id
            setattr(activity, f"{EntityType(entity_ref.entity_type).value}_id", entity_ref.entity_id)
        try:
            self._repository.create(activity)
        except StoreError as exc:
            logger.warning("Activity log write failed, queued for retry: %s", exc)
            self.outbox.append(PendingActivity(activity=activity, attempts=1, last_error=str(exc)))
            return False
        return True

    def flush(self) -> int:
        """Retry queued entries in order; returns how many were written."""
        written = 0
        for _ in range(len(self.outbox)):
            pending = self.outbox.popleft()
            try:
                self._repository.create(pending.activity)
            except StoreError as exc:
                pending.attempts += 1
                pending.last_error = str(exc)
                if pending.attempts >= self._max_attempts:
                    logger.error(
                        "Dropping activity %r after %d attempts: %s",
                        pending.activity.type,
                        pending.attempts,
                        exc,
                    )
                    self.dropped.append(pending)
                else:
                    self.outbox.append(pending)
                continue
            written += 1
        if written:
            logger.info("Flushed %d queued activity entries", written)
        return written

    @property
    def pending_count(self) -> int:
        return len(self.outbox)
