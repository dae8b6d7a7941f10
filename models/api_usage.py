"""
Mega OCR: Usage ledger for external OCR / AI calls.

Tables:
  - api_usage: one append-only row per external call attempt
    (text extraction or structured parsing), successful or not.

Uses raw psycopg2 with CREATE TABLE IF NOT EXISTS and a small module-level
ThreadedConnectionPool, created once under a lock.
Writes never raise (a ledger outage must not break extraction). Aggregation
reads raise UsageLedgerError so callers decide how to degrade.
"""
import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import psycopg2
import psycopg2.pool

from config.settings import config
from tools.cards.errors import UsageLedgerError
from tools.cards.models import UsageRecord

logger = logging.getLogger("mega.models.api_usage")

# ---------------------------------------------------------------------------
# Connection pool
# ---------------------------------------------------------------------------

_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()


def _get_pool():
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                try:
                    _pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=1, maxconn=3, **config.postgres.dsn_params,
                    )
                    logger.info("api_usage: PostgreSQL pool initialised")
                except Exception as e:
                    logger.warning(f"api_usage: PostgreSQL pool init failed: {e}")
    return _pool


def get_conn():
    pool = _get_pool()
    if pool is None:
        return None
    try:
        return pool.getconn()
    except Exception as e:
        logger.warning(f"api_usage: could not get connection: {e}")
        return None


def put_conn(conn):
    pool = _get_pool()
    if pool and conn:
        try:
            pool.putconn(conn)
        except Exception:
            pass


# ---------------------------------------------------------------------------
# Table creation
# ---------------------------------------------------------------------------

def ensure_tables():
    """Create the api_usage table and its indexes if they don't exist."""
    conn = get_conn()
    if not conn:
        logger.warning("api_usage: no DB connection — tables not verified")
        return
    try:
        cur = conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS api_usage (
                id SERIAL PRIMARY KEY,
                requester_id VARCHAR(100) NOT NULL,
                service_kind VARCHAR(50) NOT NULL,
                operation VARCHAR(50) NOT NULL,
                units_used INTEGER NOT NULL DEFAULT 1,
                success BOOLEAN NOT NULL DEFAULT TRUE,
                error_message TEXT NOT NULL DEFAULT '',
                metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
                ip_address VARCHAR(64) NOT NULL DEFAULT '',
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            )
        """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_usage_requester_created
            ON api_usage (requester_id, service_kind, created_at DESC)
        """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_usage_service_created
            ON api_usage (service_kind, created_at DESC)
        """)
        conn.commit()
        cur.close()
        logger.info("api_usage: tables verified (api_usage)")
    except Exception as e:
        logger.error(f"api_usage: table creation failed: {e}")
    finally:
        put_conn(conn)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class UsageLedger:
    """Append-only record of external API calls plus aggregation queries."""

    def log_usage(self, record: UsageRecord) -> bool:
        """Append one usage row. Returns False (and logs) on any failure."""
        conn = get_conn()
        if not conn:
            logger.warning("No DB connection — usage record dropped (%s, %s)",
                           record.service_kind, record.requester_id)
            return False
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO api_usage
                    (requester_id, service_kind, operation, units_used, success,
                     error_message, metadata, ip_address, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s, COALESCE(%s, NOW()))
                """,
                (
                    record.requester_id, record.service_kind, record.operation,
                    record.units_used, record.success, record.error_message or "",
                    json.dumps(record.metadata or {}, default=str),
                    record.ip_address or "", record.created_at,
                ),
            )
            conn.commit()
            cur.close()
            return True
        except Exception as e:
            logger.error("Failed to log API usage: %s", e)
            try:
                conn.rollback()
            except Exception:
                pass
            return False
        finally:
            put_conn(conn)

    def _fetch(self, sql: str, params: tuple, many: bool = False):
        conn = get_conn()
        if not conn:
            raise UsageLedgerError("No DB connection for usage ledger")
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall() if many else cur.fetchone()
            cur.close()
            return rows
        except psycopg2.Error as e:
            raise UsageLedgerError(f"Usage ledger query failed: {e}") from e
        finally:
            put_conn(conn)

    def monthly_usage(self, service_kind: str, since: datetime) -> dict:
        """Totals for one service kind since the start of the billing month."""
        row = self._fetch(
            """
            SELECT COALESCE(SUM(units_used), 0),
                   COUNT(*),
                   COUNT(*) FILTER (WHERE success)
            FROM api_usage
            WHERE service_kind = %s AND created_at >= %s
            """,
            (service_kind, since),
        )
        total_units, total_requests, successful = row or (0, 0, 0)
        return {
            "total_units": int(total_units),
            "total_requests": int(total_requests),
            "successful_requests": int(successful),
            "failed_requests": int(total_requests) - int(successful),
        }

    def hourly_attempts(self, requester_id: str, service_kind: str, since: datetime) -> int:
        """Number of attempts by a requester since `since` (sliding window)."""
        row = self._fetch(
            """
            SELECT COUNT(*) FROM api_usage
            WHERE requester_id = %s AND service_kind = %s AND created_at >= %s
            """,
            (requester_id, service_kind, since),
        )
        return int(row[0]) if row else 0

    def oldest_attempt_since(self, requester_id: str, service_kind: str,
                             since: datetime) -> Optional[datetime]:
        row = self._fetch(
            """
            SELECT MIN(created_at) FROM api_usage
            WHERE requester_id = %s AND service_kind = %s AND created_at >= %s
            """,
            (requester_id, service_kind, since),
        )
        if not row or row[0] is None:
            return None
        ts = row[0]
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

    def daily_breakdown(self, days: int = 30) -> list:
        """Per-day, per-service totals for the last `days` days."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        rows = self._fetch(
            """
            SELECT TO_CHAR(created_at, 'YYYY-MM-DD') AS day, service_kind,
                   COALESCE(SUM(units_used), 0), COUNT(*)
            FROM api_usage
            WHERE created_at >= %s
            GROUP BY day, service_kind
            ORDER BY day
            """,
            (since,),
            many=True,
        )
        return [
            {"date": day, "service_kind": kind,
             "total_units": int(units), "total_requests": int(count)}
            for day, kind, units, count in rows or []
        ]

    def user_stats(self, requester_id: str, days: int = 30) -> list:
        """Per-service totals for one requester over the last `days` days."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        rows = self._fetch(
            """
            SELECT service_kind,
                   COALESCE(SUM(units_used), 0),
                   COUNT(*),
                   COUNT(*) FILTER (WHERE success),
                   AVG((metadata->>'processing_time_ms')::numeric)
            FROM api_usage
            WHERE requester_id = %s AND created_at >= %s
            GROUP BY service_kind
            """,
            (requester_id, since),
            many=True,
        )
        return [
            {
                "service_kind": kind,
                "total_units": int(units),
                "total_requests": int(count),
                "successful_requests": int(ok),
                "average_processing_time_ms": float(avg) if avg is not None else None,
            }
            for kind, units, count, ok, avg in rows or []
        ]
