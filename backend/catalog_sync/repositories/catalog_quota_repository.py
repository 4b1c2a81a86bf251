from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from backend.catalog_sync.repositories.common import utc_month_key, utc_now_iso
from backend.catalog_sync.repositories.database import Database


@dataclass(frozen=True)
class CatalogQuotaSnapshot:
    month: str
    requests_used: int
    monthly_limit: int
    requested: int
    allowed: bool

    @property
    def remaining(self) -> int:
        return max(0, self.monthly_limit - self.requests_used)


class CatalogQuotaRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_current_month_usage(self, *, monthly_limit: int) -> CatalogQuotaSnapshot:
        month = utc_month_key()
        with self._db.connection() as conn:
            _ensure_month_row(conn, month)
            row = conn.execute(
                """
                SELECT watchmode_requests
                FROM catalog_api_usage_monthly
                WHERE month = ?
                """,
                (month,),
            ).fetchone()

        requests_used = int(row["watchmode_requests"]) if row is not None else 0
        return CatalogQuotaSnapshot(
            month=month,
            requests_used=requests_used,
            monthly_limit=max(0, monthly_limit),
            requested=0,
            allowed=requests_used < monthly_limit,
        )

    def try_reserve(self, *, requests: int, monthly_limit: int) -> CatalogQuotaSnapshot:
        month = utc_month_key()
        requested = max(0, requests)
        limit = max(0, monthly_limit)

        with self._db.connection() as conn:
            _ensure_month_row(conn, month)
            # Single conditional UPDATE: the limit check and the increment cannot interleave
            # with another writer, whichever process or thread it lives in.
            cursor = conn.execute(
                """
                UPDATE catalog_api_usage_monthly
                SET watchmode_requests = watchmode_requests + ?, updated_at = ?
                WHERE month = ? AND watchmode_requests + ? <= ?
                """,
                (requested, utc_now_iso(), month, requested, limit),
            )
            allowed = cursor.rowcount == 1
            row = conn.execute(
                """
                SELECT watchmode_requests
                FROM catalog_api_usage_monthly
                WHERE month = ?
                """,
                (month,),
            ).fetchone()

        requests_used = int(row["watchmode_requests"]) if row is not None else 0
        return CatalogQuotaSnapshot(
            month=month,
            requests_used=requests_used,
            monthly_limit=limit,
            requested=requested,
            allowed=allowed,
        )


def _ensure_month_row(conn: sqlite3.Connection, month: str) -> None:
    now_iso = utc_now_iso()
    conn.execute(
        """
        INSERT INTO catalog_api_usage_monthly (month, watchmode_requests, created_at, updated_at)
        VALUES (?, 0, ?, ?)
        ON CONFLICT(month) DO NOTHING
        """,
        (month, now_iso, now_iso),
    )
