"""
Security Analytics
==================

Read-only aggregates over accounts, stored files and the audit log for
the administrator dashboard.

Detection Thresholds:
- An email with more than SUSPICIOUS_ACTOR_FAILURES failed logins
- An origin with more than SUSPICIOUS_ORIGIN_FAILURES failed logins
- The RECENT_LOCKS_LIMIT most recent brute-force locks
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from scanvault.db.store import VaultStore
from scanvault.security.audit import AuditAction, AuditOutcome
from scanvault.security.constants import (
    ANALYTICS_WINDOW_SECONDS,
    RECENT_LOCKS_LIMIT,
    SUSPICIOUS_ACTOR_FAILURES,
    SUSPICIOUS_ORIGIN_FAILURES,
)
from scanvault.utils.clock import Clock, to_iso, utc_now


class SecurityAnalytics:
    """
    Dashboard queries.

    Usage:
        analytics = SecurityAnalytics(store)
        analytics.summary()["failed_logins_24h"]
    """

    __slots__ = ("_store", "_clock", "_window")

    def __init__(
        self,
        store: VaultStore,
        clock: Clock = utc_now,
        window_seconds: int = ANALYTICS_WINDOW_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._window = timedelta(seconds=window_seconds)

    def summary(self, now: Optional[datetime] = None) -> Dict[str, int]:
        since = to_iso((now or self._clock()) - self._window)
        with self._store.read() as conn:
            def scalar(sql: str, params: tuple = ()) -> int:
                return int(conn.execute(sql, params).fetchone()[0])

            return {
                "total_users": scalar("SELECT COUNT(*) FROM accounts"),
                "locked_accounts": scalar(
                    "SELECT COUNT(*) FROM accounts WHERE lock_state != 'active'"
                ),
                "total_uploads": scalar(
                    "SELECT COUNT(*) FROM stored_files WHERE status = 'safe' AND pending_delete = 0"
                ),
                "total_downloads": scalar(
                    "SELECT COUNT(*) FROM audit_events WHERE action = ? AND outcome = ?",
                    (AuditAction.FILE_DOWNLOAD.value, AuditOutcome.SUCCESS.value),
                ),
                "failed_logins_24h": scalar(
                    "SELECT COUNT(*) FROM audit_events WHERE action = ? AND outcome = ? AND created_at >= ?",
                    (AuditAction.LOGIN.value, AuditOutcome.FAILED.value, since),
                ),
                "locks_24h": scalar(
                    "SELECT COUNT(*) FROM audit_events WHERE action = ? AND created_at >= ?",
                    (AuditAction.ACCOUNT_LOCK.value, since),
                ),
                "malware_files": scalar(
                    "SELECT COUNT(*) FROM stored_files WHERE status = 'malicious' AND pending_delete = 0"
                ),
            }

    def suspicious_activity(self) -> Dict[str, List[Dict[str, Any]]]:
        login, failed = AuditAction.LOGIN.value, AuditOutcome.FAILED.value
        with self._store.read() as conn:
            by_email = conn.execute("""
                SELECT actor_email, COUNT(*) AS failed_count
                FROM audit_events
                WHERE action = ? AND outcome = ? AND actor_email IS NOT NULL
                GROUP BY actor_email
                HAVING COUNT(*) > ?
                ORDER BY failed_count DESC
            """, (login, failed, SUSPICIOUS_ACTOR_FAILURES)).fetchall()

            by_origin = conn.execute("""
                SELECT origin, COUNT(*) AS attempts
                FROM audit_events
                WHERE action = ? AND outcome = ? AND origin IS NOT NULL
                GROUP BY origin
                HAVING COUNT(*) > ?
                ORDER BY attempts DESC
            """, (login, failed, SUSPICIOUS_ORIGIN_FAILURES)).fetchall()

            locks = conn.execute("""
                SELECT actor_email, created_at
                FROM audit_events
                WHERE action = ?
                ORDER BY seq DESC
                LIMIT ?
            """, (AuditAction.ACCOUNT_LOCK.value, RECENT_LOCKS_LIMIT)).fetchall()

        return {
            "failed_login_users": [
                {"user_email": row["actor_email"], "failed_count": row["failed_count"]}
                for row in by_email
            ],
            "suspicious_ips": [
                {"ip_address": row["origin"], "attempts": row["attempts"]}
                for row in by_origin
            ],
            "recent_locks": [
                {"user_email": row["actor_email"], "created_at": row["created_at"]}
                for row in locks
            ],
        }
