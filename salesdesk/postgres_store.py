"""Postgres-backed document store.

All collections share one ``documents`` table; each row keeps the owner id, creation
time and an insertion sequence as real columns (for filtering and ordering) and
the full record as JSONB. Ordering ties resolve by insertion sequence in the
same direction, so descending lists show the newest insert first.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

import psycopg
from psycopg import Connection, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .record_store import (
    Clock,
    Document,
    RecordNotFound,
    RecordStore,
    StoreUnavailable,
    _check_collection,
    parse_order_by,
    utc_now,
)

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10
_FIELD_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    user_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    data JSONB NOT NULL,
    seq BIGSERIAL,
    PRIMARY KEY (collection, id)
);
ALTER TABLE documents ADD COLUMN IF NOT EXISTS seq BIGSERIAL;
CREATE INDEX IF NOT EXISTS documents_owner_idx ON documents (collection, user_id, created_at DESC);
"""


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the Postgres document store."""

    host: str
    port: int
    user: str
    password: str
    dbname: str
    sslmode: Optional[str] = None
    connect_timeout: int = _DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Construct configuration from standard environment variables."""
        return cls(
            host=os.getenv("DB_HOST", os.getenv("POSTGRES_HOST", "localhost")),
            port=int(os.getenv("DB_PORT", os.getenv("POSTGRES_PORT", "5432"))),
            user=os.getenv("DB_USER", os.getenv("POSTGRES_USER", "crm_app")),
            password=os.getenv("DB_PASSWORD", os.getenv("POSTGRES_PASSWORD", "crm_password")),
            dbname=os.getenv("DB_NAME", os.getenv("POSTGRES_DB", "salesdesk")),
            sslmode=os.getenv("DB_SSLMODE"),
            connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", str(_DEFAULT_TIMEOUT))),
        )


def _check_field(name: str) -> str:
    if not _FIELD_NAME.fullmatch(name):
        raise ValueError(f"Invalid field name: {name}")
    return name


def _to_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _jsonable(document: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in document.items():
        result[key] = value.isoformat() if hasattr(value, "isoformat") else value
    return result


class PostgresRecordStore(RecordStore):
    """Record store that persists documents in Postgres."""

    def __init__(self, config: Optional[DatabaseConfig] = None, clock: Optional[Clock] = None) -> None:
        self._config = config or DatabaseConfig.from_env()
        self._clock: Clock = clock or utc_now
        try:
            self._conn: Connection = psycopg.connect(
                host=self._config.host,
                port=self._config.port,
                user=self._config.user,
                password=self._config.password,
                dbname=self._config.dbname,
                sslmode=self._config.sslmode,
                connect_timeout=self._config.connect_timeout,
                row_factory=dict_row,
                autocommit=True,
            )
        except psycopg.OperationalError as exc:
            raise StoreUnavailable(f"Could not connect to {self._config.host}:{self._config.port}: {exc}") from exc

    def ensure_schema(self) -> None:
        """Create the documents table if it is missing."""
        self._execute(SCHEMA_SQL, None)

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _fetchall(self, query: Any, params: Mapping[str, Any]) -> Sequence[Dict[str, Any]]:
        try:
            with self._conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg.Error as exc:
            logger.exception("Postgres query failed")
            raise StoreUnavailable(str(exc)) from exc

    def _execute(self, query: Any, params: Optional[Mapping[str, Any]]) -> int:
        try:
            with self._conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount
        except psycopg.Error as exc:
            logger.exception("Postgres statement failed")
            raise StoreUnavailable(str(exc)) from exc

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def list(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        _check_collection(collection)
        conditions = [sql.SQL("collection = %(collection)s")]
        params: Dict[str, Any] = {"collection": collection}
        for idx, (field, value) in enumerate((where or {}).items()):
            param_name = f"where_{idx}"
            if field == "user_id":
                conditions.append(sql.SQL("user_id = %({})s").format(sql.SQL(param_name)))
                params[param_name] = value
            else:
                conditions.append(
                    sql.SQL("data -> {} = %({})s").format(sql.Literal(_check_field(field)), sql.SQL(param_name))
                )
                params[param_name] = Jsonb(value)

        query = sql.SQL("SELECT data FROM documents WHERE {}").format(sql.SQL(" AND ").join(conditions))
        field, descending = parse_order_by(order_by)
        if field:
            direction = sql.SQL("DESC") if descending else sql.SQL("ASC")
            if field == "created_at":
                query += sql.SQL(" ORDER BY created_at {}, seq {}").format(direction, direction)
            else:
                query += sql.SQL(" ORDER BY data -> {} {}, seq {}").format(
                    sql.Literal(_check_field(field)), direction, direction
                )
        if limit is not None:
            query += sql.SQL(" LIMIT %(limit)s")
            params["limit"] = int(limit)
        rows = self._fetchall(query, params)
        return [dict(row["data"]) for row in rows]

    def create(self, collection: str, document: Mapping[str, Any]) -> Document:
        _check_collection(collection)
        now = self._clock()
        stored = dict(document)
        stored["id"] = str(uuid4())
        if not stored.get("created_at"):
            stored["created_at"] = now
        if not stored.get("updated_at"):
            stored["updated_at"] = now
        stored = _jsonable(stored)
        self._execute(
            """
            INSERT INTO documents (collection, id, user_id, created_at, data)
            VALUES (%(collection)s, %(id)s, %(user_id)s, %(created_at)s, %(data)s);
            """,
            {
                "collection": collection,
                "id": stored["id"],
                "user_id": stored.get("user_id"),
                "created_at": _to_timestamp(stored["created_at"]),
                "data": Jsonb(stored),
            },
        )
        return stored

    def update(self, collection: str, record_id: str, partial: Mapping[str, Any]) -> None:
        _check_collection(collection)
        changes = {key: value for key, value in partial.items() if key != "id"}
        changes["updated_at"] = self._clock()
        updated = self._execute(
            """
            UPDATE documents SET data = data || %(changes)s
            WHERE collection = %(collection)s AND id = %(id)s;
            """,
            {"collection": collection, "id": record_id, "changes": Jsonb(_jsonable(changes))},
        )
        if updated == 0:
            raise RecordNotFound(collection, record_id)

    def delete(self, collection: str, record_id: str) -> None:
        _check_collection(collection)
        deleted = self._execute(
            "DELETE FROM documents WHERE collection = %(collection)s AND id = %(id)s;",
            {"collection": collection, "id": record_id},
        )
        if deleted == 0:
            raise RecordNotFound(collection, record_id)

    def truncate(self) -> None:
        """Remove every document (used by integration tests)."""
        self._execute("DELETE FROM documents;", None)
