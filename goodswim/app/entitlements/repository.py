"""PostgreSQL access to the team roster facts entitlements depend on."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import psycopg2
from psycopg2.extensions import connection as PgConnection

from ..billing.errors import PersistenceError
from ..db import dict_cursor


class PostgresTeamDirectory:
    """Reads team creation time and swimmer counts.

    Teams and swimmers are owned by roster management; this class only
    queries ``teams(id, created_at)`` and ``swimmers(team_id)``.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def team_created_at(self, team_id: str) -> Optional[datetime]:
        try:
            with dict_cursor(self._conn) as cursor:
                cursor.execute("SELECT created_at FROM teams WHERE id = %s", (team_id,))
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise PersistenceError(message="Team lookup failed.", detail={"team_id": team_id}) from exc
        if not row or row.get("created_at") is None:
            return None
        created_at = row["created_at"]
        return created_at if created_at.tzinfo else created_at.replace(tzinfo=timezone.utc)

    def count_swimmers(self, team_id: str) -> int:
        try:
            with dict_cursor(self._conn) as cursor:
                cursor.execute("SELECT COUNT(*) AS swimmer_count FROM swimmers WHERE team_id = %s", (team_id,))
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise PersistenceError(message="Swimmer count failed.", detail={"team_id": team_id}) from exc
        return int(row["swimmer_count"]) if row else 0


__all__ = ["PostgresTeamDirectory"]
