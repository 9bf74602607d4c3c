"""
Change Notifier — fans committed state changes out to project subscribers.

Two steps, split around the service's commit:

    notifier.record_entity("daily_log", log)   # same transaction as the change
    db.session.commit()
    notifier.dispatch_after_commit()           # deliver what just committed

``record`` writes a ChangeEvent outbox row, so an event exists exactly when
its mutation committed. ``dispatch_pending`` walks undelivered rows in id
order and hands each payload to the transport and to every subscriber of the
event's project. Delivery is at-least-once: a failed row keeps
``delivered_at`` NULL and is retried on the next dispatch, and later events
of the same entity wait behind it so per-entity order holds. A row that
fails ``max_attempts`` times is parked until ``dispatch_pending(include_parked=True)``
(the ``flask dispatch-events`` command) requeues it. Payloads are
full snapshots; consumers replace their copy and may drop any event whose
``version`` is not newer than the one they hold.
"""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from siteledger.models import db
from siteledger.models.change_event import ENTITY_TYPES, ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DISPATCH_BATCH = 500


# ── Transports ───────────────────────────────────────────────────────────────


class EventTransport:
    """Interface to the realtime layer that reaches connected clients."""

    def send(self, event: dict) -> None:
        raise NotImplementedError


class LoggingTransport(EventTransport):
    """Default transport for deployments without a realtime channel."""

    def send(self, event: dict) -> None:
        logger.debug(
            "Change event %s %s:%s v%s",
            event["event_id"], event["entity_type"], event["entity_id"], event["version"],
            extra={"project_id": event["project_id"], "entity_type": event["entity_type"],
                   "entity_id": event["entity_id"]},
        )


class Subscription:
    """Handle returned by ``subscribe``; pass it back to ``unsubscribe``."""

    __slots__ = ("id", "project_id", "callback")

    def __init__(self, sub_id: int, project_id: int, callback: Callable[[dict], None]):
        self.id = sub_id
        self.project_id = project_id
        self.callback = callback

    def __repr__(self):
        return f"<Subscription {self.id} project={self.project_id}>"


# ── Notifier ─────────────────────────────────────────────────────────────────


class ChangeNotifier:
    """Outbox-backed publisher of entity snapshots, scoped by project."""

    def __init__(self, transport: EventTransport | None = None,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._transport = transport or LoggingTransport()
        self.max_attempts = max_attempts
        self._subscribers: dict[int, dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        self._registry_lock = threading.Lock()
        self._dispatch_lock = threading.Lock()

    def init_app(self, app) -> None:
        self.max_attempts = int(app.config.get("NOTIFIER_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
        app.extensions["change_notifier"] = self

    # ── Wiring ────────────────────────────────────────────────────────────

    def set_transport(self, transport: EventTransport) -> None:
        self._transport = transport

    def subscribe(self, project_id: int, callback: Callable[[dict], None]) -> Subscription:
        with self._registry_lock:
            sub = Subscription(next(self._ids), project_id, callback)
            self._subscribers.setdefault(project_id, {})[sub.id] = sub
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._registry_lock:
            subs = self._subscribers.get(subscription.project_id, {})
            subs.pop(subscription.id, None)
            if not subs:
                self._subscribers.pop(subscription.project_id, None)

    def subscribers_for(self, project_id: int) -> list[Subscription]:
        with self._registry_lock:
            return list(self._subscribers.get(project_id, {}).values())

    def reset(self) -> None:
        """Drop all subscribers and restore the logging transport (tests)."""
        with self._registry_lock:
            self._subscribers.clear()
        self._transport = LoggingTransport()

    # ── Recording ─────────────────────────────────────────────────────────

    def record(self, entity_type: str, entity_id, project_id: int,
               new_state: dict, version: int) -> ChangeEvent:
        """Add an outbox row to the current transaction. Does not commit."""
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity_type '{entity_type}'")
        event = ChangeEvent(
            project_id=project_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            entity_version=version,
            new_state=new_state,
        )
        db.session.add(event)
        return event

    def record_entity(self, entity_type: str, entity) -> ChangeEvent:
        """Snapshot an ORM entity exposing ``to_dict``, ``project_id`` and ``version``."""
        db.session.flush()
        return self.record(entity_type, entity.id, entity.project_id,
                           entity.to_dict(), entity.version)

    # ── Delivery ──────────────────────────────────────────────────────────

    def _deliver(self, payload: dict) -> None:
        self._transport.send(payload)
        for sub in self.subscribers_for(payload["project_id"]):
            sub.callback(payload)

    def requeue_parked(self) -> int:
        """Give parked events a fresh set of attempts. Does not commit."""
        result = db.session.execute(
            update(ChangeEvent)
            .where(ChangeEvent.delivered_at.is_(None),
                   ChangeEvent.attempts >= self.max_attempts)
            .values(attempts=0)
        )
        if result.rowcount:
            logger.info("Requeued %d parked change events", result.rowcount)
        return result.rowcount

    def dispatch_pending(self, limit: int = DISPATCH_BATCH, *, include_parked: bool = False) -> int:
        """
        Deliver undelivered events in commit order.

        Args:
            include_parked: first requeue events that exhausted ``max_attempts``
                (operator redelivery after a transport outage).

        Returns:
            Number of events delivered in this round.
        """
        with self._dispatch_lock:
            if include_parked and self.requeue_parked():
                db.session.commit()
            rows = db.session.execute(
                select(ChangeEvent)
                .where(ChangeEvent.delivered_at.is_(None),
                       ChangeEvent.attempts < self.max_attempts)
                .order_by(ChangeEvent.id)
                .limit(limit)
            ).scalars().all()

            blocked: set[tuple[str, str]] = set()
            delivered = 0
            for row in rows:
                key = (row.entity_type, row.entity_id)
                if key in blocked:
                    continue
                row.attempts += 1
                try:
                    self._deliver(row.to_event())
                except Exception as exc:
                    # Kept undelivered for the next round; the mutation itself is committed.
                    row.last_error = str(exc)[:500]
                    blocked.add(key)
                    logger.warning(
                        "Delivery of change event %s failed (attempt %d/%d): %s",
                        row.id, row.attempts, self.max_attempts, exc,
                        extra={"project_id": row.project_id, "entity_type": row.entity_type,
                               "entity_id": row.entity_id},
                    )
                    if row.attempts >= self.max_attempts:
                        logger.error("Change event %s parked after %d attempts",
                                     row.id, row.attempts)
                else:
                    row.delivered_at = datetime.now(timezone.utc)
                    row.last_error = None
                    delivered += 1
            if rows:
                db.session.commit()
            return delivered

    def dispatch_after_commit(self) -> int:
        """
        ``dispatch_pending`` for services whose mutation has already committed.

        A database error here must not turn a committed change into a failed
        call; the outbox rows stay undelivered for the next dispatch.
        """
        try:
            return self.dispatch_pending()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Change event dispatch failed, events stay queued: %s", exc)
            return 0

    # ── Replay ────────────────────────────────────────────────────────────

    def events_since(self, project_id: int, after_id: int = 0, limit: int = 200) -> list[dict]:
        """Committed events of a project with id > after_id, oldest first."""
        rows = db.session.execute(
            select(ChangeEvent)
            .where(ChangeEvent.project_id == project_id, ChangeEvent.id > after_id)
            .order_by(ChangeEvent.id)
            .limit(limit)
        ).scalars()
        return [row.to_event() for row in rows]


notifier = ChangeNotifier()
