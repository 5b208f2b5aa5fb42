"""Client-side cache of loaded record sets, keyed by collection and owner."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .crm_models import CRMBaseModel

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, Optional[int]]


class RecordCache:
    """Holds the full record set each page loaded so other pages can reuse it.

    Entries are keyed by ``(collection, owner_id, limit)``. Invalidation drops
    every entry for a collection/owner pair regardless of limit.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, List[CRMBaseModel]] = {}
        self.loads = 0

    def get_or_load(
        self,
        collection: str,
        owner_id: str,
        loader: Callable[[], List[CRMBaseModel]],
        limit: Optional[int] = None,
    ) -> List[CRMBaseModel]:
        key = (collection, owner_id, limit)
        if key not in self._entries:
            self._entries[key] = list(loader())
            self.loads += 1
            logger.debug("Cached %d %s records for %s", len(self._entries[key]), collection, owner_id)
        return list(self._entries[key])

    def peek(self, collection: str, owner_id: str, limit: Optional[int] = None) -> Optional[List[CRMBaseModel]]:
        entry = self._entries.get((collection, owner_id, limit))
        return list(entry) if entry is not None else None

    def invalidate(self, collection: str, owner_id: str) -> None:
        stale = [key for key in self._entries if key[0] == collection and key[1] == owner_id]
        for key in stale:
            del self._entries[key]

    def invalidate_owner(self, owner_id: str) -> None:
        stale = [key for key in self._entries if key[1] == owner_id]
        for key in stale:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
