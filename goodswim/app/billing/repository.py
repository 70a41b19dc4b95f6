"""Persistence for the per-team subscription record."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Protocol

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import dict_cursor
from ..entitlements.models import SubscriptionRecord, SubscriptionStatus, SubscriptionUpdate, Tier
from .errors import PersistenceError


class SubscriptionRepository(Protocol):
    """Single writable store holding one subscription record per team."""

    def get(self, team_id: str) -> Optional[SubscriptionRecord]:
        ...

    def find_by_external_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        ...

    def find_by_external_subscription_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def upsert(self, team_id: str, update: SubscriptionUpdate) -> SubscriptionRecord:
        """Write the provided fields for ``team_id``; last write wins."""

    def claim_customer_id(self, team_id: str, customer_id: str, *, defaults: SubscriptionUpdate) -> str:
        """Store ``customer_id`` unless the team already has one; return the stored id."""


class InMemorySubscriptionRepository:
    """Lock-guarded repository suitable for tests and local development."""

    def __init__(self) -> None:
        self._records: Dict[str, SubscriptionRecord] = {}
        self._lock = Lock()

    def get(self, team_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            return self._records.get(team_id)

    def find_by_external_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            return next(
                (record for record in self._records.values() if record.external_customer_id == customer_id),
                None,
            )

    def find_by_external_subscription_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            return next(
                (record for record in self._records.values() if record.external_subscription_id == subscription_id),
                None,
            )

    def upsert(self, team_id: str, update: SubscriptionUpdate) -> SubscriptionRecord:
        with self._lock:
            return self._apply(team_id, update.changes())

    def claim_customer_id(self, team_id: str, customer_id: str, *, defaults: SubscriptionUpdate) -> str:
        with self._lock:
            existing = self._records.get(team_id)
            if existing is None:
                changes = {**defaults.changes(), "external_customer_id": customer_id}
                return self._apply(team_id, changes).external_customer_id or customer_id
            if existing.external_customer_id:
                return existing.external_customer_id
            return self._apply(team_id, {"external_customer_id": customer_id}).external_customer_id or customer_id

    def _apply(self, team_id: str, changes: Dict[str, Any]) -> SubscriptionRecord:
        now = datetime.now(timezone.utc)
        existing = self._records.get(team_id)
        if existing is None:
            record = SubscriptionRecord(team_id=team_id, created_at=now, updated_at=now, **changes)
        else:
            record = existing.model_copy(update=changes)
            if record != existing:
                record = record.model_copy(update={"updated_at": now})
        self._records[team_id] = record
        return record


def _to_db_value(value: Any) -> Any:
    if isinstance(value, (SubscriptionStatus, Tier)):
        return value.value
    return value


def _row_to_subscription(row: dict) -> SubscriptionRecord:
    return SubscriptionRecord(
        team_id=str(row["team_id"]),
        status=SubscriptionStatus(row["status"]),
        tier=Tier(row["tier"]) if row.get("tier") else None,
        trial_end=row.get("trial_end"),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        cancel_at_period_end=bool(row.get("cancel_at_period_end")),
        external_customer_id=row.get("external_customer_id"),
        external_subscription_id=row.get("external_subscription_id"),
        external_price_id=row.get("external_price_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscription records in PostgreSQL.

    Expects a ``subscriptions`` table keyed by ``team_id`` with a unique
    ``external_customer_id``; see ``SUBSCRIPTIONS_DDL``.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            with dict_cursor(self._conn) as cursor:
                yield cursor
        except psycopg2.Error as exc:
            raise PersistenceError(message="Subscription storage is unavailable.", detail={"reason": str(exc)}) from exc

    def get(self, team_id: str) -> Optional[SubscriptionRecord]:
        return self._fetch_one("team_id", team_id)

    def find_by_external_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        return self._fetch_one("external_customer_id", customer_id)

    def find_by_external_subscription_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        return self._fetch_one("external_subscription_id", subscription_id)

    def upsert(self, team_id: str, update: SubscriptionUpdate) -> SubscriptionRecord:
        changes = {column: _to_db_value(value) for column, value in update.changes().items()}
        columns = ["team_id", *changes]

        if changes:
            assignments = sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(column)) for column in changes
            )
            current = sql.SQL(", ").join(
                sql.SQL("subscriptions.{col}").format(col=sql.Identifier(column)) for column in changes
            )
            incoming = sql.SQL(", ").join(
                sql.SQL("EXCLUDED.{col}").format(col=sql.Identifier(column)) for column in changes
            )
            # updated_at only moves when a value actually changes, so replays are no-ops.
            conflict = sql.SQL(
                "DO UPDATE SET {assignments}, updated_at = CASE WHEN ROW({current}, NULL) "
                "IS DISTINCT FROM ROW({incoming}, NULL) THEN NOW() ELSE subscriptions.updated_at END"
            ).format(assignments=assignments, current=current, incoming=incoming)
        else:
            conflict = sql.SQL("DO UPDATE SET updated_at = subscriptions.updated_at")

        query = sql.SQL(
            "INSERT INTO subscriptions ({columns}) VALUES ({values}) ON CONFLICT (team_id) {conflict} RETURNING *"
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(column) for column in columns),
            values=sql.SQL(", ").join(sql.Placeholder(column) for column in columns),
            conflict=conflict,
        )

        with self._cursor() as cursor:
            cursor.execute(query, {"team_id": team_id, **changes})
            row = cursor.fetchone()
            if not row:
                raise PersistenceError(message="Failed to persist subscription.", detail={"team_id": team_id})
            return _row_to_subscription(row)

    def claim_customer_id(self, team_id: str, customer_id: str, *, defaults: SubscriptionUpdate) -> str:
        values = {column: _to_db_value(value) for column, value in defaults.changes().items()}
        values["external_customer_id"] = customer_id
        columns = ["team_id", *values]

        query = sql.SQL(
            """
            INSERT INTO subscriptions ({columns}) VALUES ({values})
            ON CONFLICT (team_id) DO UPDATE SET
                external_customer_id = COALESCE(subscriptions.external_customer_id, EXCLUDED.external_customer_id),
                updated_at = CASE WHEN subscriptions.external_customer_id IS NULL
                                  THEN NOW() ELSE subscriptions.updated_at END
            RETURNING external_customer_id
            """
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(column) for column in columns),
            values=sql.SQL(", ").join(sql.Placeholder(column) for column in columns),
        )

        with self._cursor() as cursor:
            cursor.execute(query, {"team_id": team_id, **values})
            row = cursor.fetchone()
            if not row or not row.get("external_customer_id"):
                raise PersistenceError(message="Failed to persist billing customer.", detail={"team_id": team_id})
            return str(row["external_customer_id"])

    def _fetch_one(self, column: str, value: str) -> Optional[SubscriptionRecord]:
        query = sql.SQL("SELECT * FROM subscriptions WHERE {column} = %s LIMIT 1").format(
            column=sql.Identifier(column)
        )
        with self._cursor() as cursor:
            cursor.execute(query, (value,))
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None


SUBSCRIPTIONS_DDL = """
CREATE TABLE IF NOT EXISTS subscriptions (
    team_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'trialing',
    tier TEXT DEFAULT 'trial',
    trial_end TIMESTAMPTZ,
    current_period_start TIMESTAMPTZ,
    current_period_end TIMESTAMPTZ,
    cancel_at_period_end BOOLEAN NOT NULL DEFAULT FALSE,
    external_customer_id TEXT UNIQUE,
    external_subscription_id TEXT,
    external_price_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS subscriptions_external_subscription_id_idx
    ON subscriptions (external_subscription_id);
"""


__all__ = [
    "InMemorySubscriptionRepository",
    "PostgresSubscriptionRepository",
    "SUBSCRIPTIONS_DDL",
    "SubscriptionRepository",
]
