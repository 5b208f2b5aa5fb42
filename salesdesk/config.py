"""Application configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .record_store import Clock, InMemoryRecordStore, RecordStore

STORE_MEMORY = "memory"
STORE_POSTGRES = "postgres"
STORE_BACKENDS = (STORE_MEMORY, STORE_POSTGRES)


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive.")
    return value


@dataclass(frozen=True)
class AppConfig:
    store: str = STORE_MEMORY
    export_dir: Path = Path("exports")
    recent_activity_limit: int = 10
    analytics_activity_limit: int = 100

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build the configuration; call ``load_dotenv()`` first to pick up a ``.env`` file."""
        env = os.environ if env is None else env
        store = env.get("SALESDESK_STORE", STORE_MEMORY).strip().lower()
        if store not in STORE_BACKENDS:
            raise ValueError(f"SALESDESK_STORE must be one of: {', '.join(STORE_BACKENDS)}.")
        return cls(
            store=store,
            export_dir=Path(env.get("SALESDESK_EXPORT_DIR", "exports")),
            recent_activity_limit=_int_setting(env, "SALESDESK_RECENT_ACTIVITY_LIMIT", 10),
            analytics_activity_limit=_int_setting(env, "SALESDESK_ANALYTICS_ACTIVITY_LIMIT", 100),
        )


def build_store(config: AppConfig, clock: Optional[Clock] = None) -> RecordStore:
    """Instantiate the configured record store backend."""
    if config.store == STORE_POSTGRES:
        # psycopg is only needed by this backend.
        from .postgres_store import PostgresRecordStore

        store = PostgresRecordStore(clock=clock)
        store.ensure_schema()
        return store
    return InMemoryRecordStore(clock=clock)
