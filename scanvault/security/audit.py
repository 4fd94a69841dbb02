"""
Tamper-Aware Audit Bus
======================

Append-only audit log with integrity verification and live fan-out.

Every event is first appended to the authoritative store inside a
transaction (chained SHA-256 hashes make edits and deletions detectable),
then offered to live subscribers. Delivery to subscribers is
at-most-once and never blocks the producer: each subscription owns a
bounded queue and a full queue drops the event for that subscriber only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Final, List, Optional

from scanvault.core.errors import StorageUnavailable
from scanvault.db.store import StoreIntegrityError, VaultStore
from scanvault.security.constants import AUDIT_DEFAULT_LIMIT, AUDIT_MAX_LIMIT
from scanvault.utils.clock import Clock, from_iso, to_iso, utc_now


logger = logging.getLogger(__name__)

GENESIS_HASH: Final[str] = "genesis"
DEFAULT_SUBSCRIBER_QUEUE: Final[int] = 256


class AuditOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"
    LOCKED = "locked"
    ERROR = "error"


class AuditAction(Enum):
    """Types of auditable events."""
    # Authentication
    SIGNUP = "signup"
    LOGIN = "login"
    ACCOUNT_LOCK = "account_lock"
    ACCOUNT_AUTO_UNLOCK = "account_auto_unlock"
    LOGOUT_ALL = "logout_all"

    # Files
    FILE_UPLOAD = "file_upload"
    MALWARE_DETECTED = "malware_detected"
    FILE_DOWNLOAD = "file_download"
    FILE_PREVIEW = "file_preview"
    FILE_DELETE = "file_delete"

    # Administration
    ADMIN_LOCK = "admin_lock"
    ADMIN_UNLOCK = "admin_unlock"
    ROLE_CHANGE = "role_change"
    FORCE_LOGOUT = "force_logout"
    ACCOUNT_DELETE = "account_delete"


@dataclass(frozen=True)
class AuditEvent:
    """An immutable, chained audit record."""
    id: str
    actor_email: Optional[str]
    action: AuditAction
    outcome: AuditOutcome
    origin: Optional[str]
    detail: str
    created_at: datetime
    previous_hash: str
    event_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_email": self.actor_email,
            "action": self.action.value,
            "status": self.outcome.value,
            "ip_address": self.origin,
            "detail": self.detail,
            "created_at": to_iso(self.created_at),
        }


def compute_event_hash(
    event_id: str,
    actor_email: Optional[str],
    action: str,
    outcome: str,
    origin: Optional[str],
    detail: str,
    created_at: str,
    previous_hash: str,
) -> str:
    """Hash every field of an event together with its predecessor's hash."""
    data = {
        "id": event_id,
        "actor_email": actor_email,
        "action": action,
        "outcome": outcome,
        "origin": origin,
        "detail": detail,
        "created_at": created_at,
        "previous_hash": previous_hash,
    }
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


class Subscription:
    """
    One live observer's handle.

    Usage:
        with broker.subscribe() as subscription:
            while True:
                event = subscription.get(timeout=15)
                if event is None:
                    continue  # idle or closed
                send(event)
    """

    __slots__ = ("_broker", "_queue", "_closed", "dropped")

    def __init__(self, broker: EventBroker, max_pending: int) -> None:
        self._broker = broker
        self._queue: queue.Queue[AuditEvent] = queue.Queue(maxsize=max_pending)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: AuditEvent) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[AuditEvent]:
        """Next event, or None if none arrived within timeout or the handle is closed."""
        if self._closed:
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[AuditEvent]:
        """Everything currently queued, without waiting."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._broker.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class EventBroker:
    """
    In-process publish/subscribe topic for newly appended audit events.

    Transports (the SSE endpoint, tests) hold Subscriptions; the broker
    knows nothing about them beyond their queue.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, max_pending: int = DEFAULT_SUBSCRIBER_QUEUE) -> Subscription:
        subscription = Subscription(self, max_pending)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: AuditEvent) -> int:
        """Offer an event to every current subscriber. Returns deliveries."""
        with self._lock:
            targets = list(self._subscriptions)
        delivered = 0
        for subscription in targets:
            if subscription.offer(event):
                delivered += 1
        return delivered


class AuditBus:
    """
    Durable, chained audit log with best-effort live publication.

    Features:
    - Append is synchronous and durable before record() returns
    - Chained hashes for integrity
    - Append-only (no update or delete paths)
    - Publication can never fail or block the append
    """

    __slots__ = ("_store", "_broker", "_clock")

    def __init__(
        self,
        store: VaultStore,
        broker: Optional[EventBroker] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._broker = broker or EventBroker()
        self._clock = clock

    @property
    def broker(self) -> EventBroker:
        return self._broker

    def record(
        self,
        actor_email: Optional[str],
        action: AuditAction,
        outcome: AuditOutcome,
        origin: Optional[str] = None,
        detail: str = "",
    ) -> AuditEvent:
        """
        Append an event, then publish it.

        Raises:
            StorageUnavailable: If the durable append failed
        """
        event_id = uuid.uuid4().hex
        created_at = self._clock()
        created_iso = to_iso(created_at)

        try:
            with self._store.transaction() as conn:
                row = conn.execute(
                    "SELECT event_hash FROM audit_events ORDER BY seq DESC LIMIT 1"
                ).fetchone()
                previous_hash = row["event_hash"] if row else GENESIS_HASH
                event_hash = compute_event_hash(
                    event_id, actor_email, action.value, outcome.value,
                    origin, detail, created_iso, previous_hash,
                )
                conn.execute("""
                    INSERT INTO audit_events (
                        id, actor_email, action, outcome, origin, detail,
                        created_at, previous_hash, event_hash
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    event_id, actor_email, action.value, outcome.value, origin,
                    detail, created_iso, previous_hash, event_hash,
                ))
        except StoreIntegrityError as e:
            raise StorageUnavailable(f"Audit append rejected: {e}") from e

        event = AuditEvent(
            id=event_id,
            actor_email=actor_email,
            action=action,
            outcome=outcome,
            origin=origin,
            detail=detail,
            created_at=created_at,
            previous_hash=previous_hash,
            event_hash=event_hash,
        )
        self._publish(event)
        return event

    def _publish(self, event: AuditEvent) -> None:
        try:
            self._broker.publish(event)
        except Exception:
            # The event is already durable; live observers can backfill via recent()
            logger.exception("Live audit publication failed for event %s", event.id)

    def subscribe(self, max_pending: int = DEFAULT_SUBSCRIBER_QUEUE) -> Subscription:
        """Live feed of events appended after this call. No backfill."""
        return self._broker.subscribe(max_pending)

    def recent(self, limit: int = AUDIT_DEFAULT_LIMIT) -> List[AuditEvent]:
        """Most recent events, newest first."""
        limit = max(1, min(int(limit), AUDIT_MAX_LIMIT))
        with self._store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_events ORDER BY seq DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def verify_integrity(self) -> tuple[bool, int]:
        """
        Walk the hash chain from the first event.

        Returns:
            Tuple of (is_valid, events verified before the first break)
        """
        previous_hash = GENESIS_HASH
        count = 0
        with self._store.read() as conn:
            for row in conn.execute("SELECT * FROM audit_events ORDER BY seq ASC"):
                if row["previous_hash"] != previous_hash:
                    return False, count
                expected = compute_event_hash(
                    row["id"], row["actor_email"], row["action"], row["outcome"],
                    row["origin"], row["detail"], row["created_at"], row["previous_hash"],
                )
                if expected != row["event_hash"]:
                    return False, count
                previous_hash = row["event_hash"]
                count += 1
        return True, count

    @staticmethod
    def _row_to_event(row) -> AuditEvent:
        return AuditEvent(
            id=row["id"],
            actor_email=row["actor_email"],
            action=AuditAction(row["action"]),
            outcome=AuditOutcome(row["outcome"]),
            origin=row["origin"],
            detail=row["detail"],
            created_at=from_iso(row["created_at"]),
            previous_hash=row["previous_hash"],
            event_hash=row["event_hash"],
        )
