"""
Progress Ledger — budget-safe reservations against BOQ items.

Owns ``BoqItem.approved_quantity`` and ``BoqItem.pending_quantity`` and keeps
``approved + pending <= budgeted`` true under concurrent submissions.

Serialization is per item and two-layered:
    1. an in-process ``threading.RLock`` picked from a fixed pool by item id,
       acquired with a bounded wait (``LEDGER_LOCK_TIMEOUT_SECONDS``); timing out raises BusyError;
    2. ``SELECT ... FOR UPDATE`` on the item row, which serializes separate
       worker processes on PostgreSQL (SQLite ignores it and relies on its
       single-writer lock).
The lock is held from the read of ``available`` until the transaction that
increments ``pending`` has committed.

Operations:
    reserve(boq_item_id, quantity)         -> Reservation | OverBudgetError
    reserving(boq_item_id, quantity)       -> context manager, same checks,
                                              caller adds rows before commit
    commit(token)                          -> pending → approved (idempotent)
    release(token)                         -> pending dropped (idempotent)
    available_quantity(boq_item_id)        -> Decimal (advisory)
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from siteledger.core.exceptions import (
    BusyError,
    InvalidTokenError,
    NotFoundError,
    OverBudgetError,
    ValidationError,
)
from siteledger.models import db
from siteledger.models.catalog import BoqItem
from siteledger.models.ledger import Reservation
from siteledger.models.types import to_decimal
from siteledger.services.change_notifier import notifier

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


# ── Per-item locks ───────────────────────────────────────────────────────────

# Fixed pool: items sharing a stripe serialize, memory stays bounded.
LOCK_STRIPES = 256
_item_locks = tuple(threading.RLock() for _ in range(LOCK_STRIPES))


def _lock_for(boq_item_id: int) -> threading.RLock:
    return _item_locks[hash(boq_item_id) % LOCK_STRIPES]


def _lock_timeout(timeout: float | None) -> float:
    if timeout is not None:
        return timeout
    if has_app_context():
        return float(current_app.config.get("LEDGER_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT))
    return DEFAULT_LOCK_TIMEOUT


@contextmanager
def item_lock(boq_item_id: int, timeout: float | None = None):
    """Hold the process-local lock of one BOQ item, or raise BusyError. Reentrant."""
    wait = _lock_timeout(timeout)
    lock = _lock_for(boq_item_id)
    if not lock.acquire(timeout=wait):
        logger.warning("Ledger lock wait exceeded %.1fs for BOQ item %s", wait, boq_item_id,
                       extra={"entity_type": "boq_item", "entity_id": boq_item_id})
        raise BusyError(resource=f"BoqItem {boq_item_id}", retry_after=min(wait, 1.0))
    try:
        yield
    finally:
        lock.release()


def _select_for_update(boq_item_id: int, timeout: float) -> BoqItem:
    """Load the item row under a row lock, refreshing any stale identity-map copy."""
    bind = db.session.get_bind()
    if bind.dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
    try:
        item = db.session.execute(
            select(BoqItem)
            .where(BoqItem.id == boq_item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("Row lock on BOQ item %s failed: %s", boq_item_id, exc)
        raise BusyError(resource=f"BoqItem {boq_item_id}") from exc
    if item is None:
        raise NotFoundError(resource="BoqItem", resource_id=boq_item_id)
    return item


def _check_invariant(item: BoqItem) -> None:
    if item.approved_quantity < 0 or item.pending_quantity < 0 or \
            item.approved_quantity + item.pending_quantity > item.budgeted_quantity:
        raise AssertionError(
            f"Ledger invariant broken for BOQ item {item.id}: "
            f"approved={item.approved_quantity} pending={item.pending_quantity} "
            f"budgeted={item.budgeted_quantity}"
        )


def _touch(item: BoqItem) -> None:
    item.version = (item.version or 0) + 1
    _check_invariant(item)
    notifier.record_entity("boq_item", item)


# ── Reserve ──────────────────────────────────────────────────────────────────


def _parse_quantity(quantity) -> Decimal:
    try:
        qty = to_decimal(quantity)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"quantity": "invalid"}) from None
    if qty <= 0:
        raise ValidationError("quantity must be greater than zero", details={"quantity": "not_positive"})
    return qty


@contextmanager
def reserving(boq_item_id: int, quantity, *, timeout: float | None = None):
    """
    Reserve quantity and keep the item locked while the caller extends the
    same transaction; everything commits together on clean exit.

        with progress_ledger.reserving(item_id, qty) as reservation:
            db.session.add(DailyLog(..., reservation_token=reservation.token))

    Any exception (OverBudgetError included) rolls the whole unit back.
    """
    qty = _parse_quantity(quantity)
    wait = _lock_timeout(timeout)
    try:
        with item_lock(boq_item_id, wait):
            item = _select_for_update(boq_item_id, wait)
            if not item.is_active:
                raise ValidationError(f"BOQ item {item.code} is inactive",
                                      details={"boq_item_id": "inactive"})
            available = item.available_quantity
            if qty > available:
                raise OverBudgetError(requested=qty, available=available, boq_item_id=item.id)

            item.pending_quantity = item.pending_quantity + qty
            reservation = Reservation(token=str(uuid.uuid4()), boq_item_id=item.id,
                                      quantity=qty, status="reserved")
            db.session.add(reservation)
            _touch(item)
            token = reservation.token

            yield reservation

            db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Reserved %s on BOQ item %s (token %s)", qty, boq_item_id, token,
                extra={"entity_type": "boq_item", "entity_id": boq_item_id})
    notifier.dispatch_after_commit()


def reserve(boq_item_id: int, quantity, *, timeout: float | None = None) -> Reservation:
    """
    Atomically check the budget and add ``quantity`` to the item's pending total.

    Raises:
        ValidationError: quantity not > 0, or item inactive
        OverBudgetError: quantity exceeds budgeted - approved - pending
        BusyError: item lock not acquired within the timeout
        NotFoundError: unknown item
    """
    with reserving(boq_item_id, quantity, timeout=timeout) as reservation:
        pass
    return reservation


# ── Commit / release ─────────────────────────────────────────────────────────


def _settle(token: str, target: str, *, timeout: float | None = None) -> Reservation:
    """Move a reservation to ``committed`` or ``released`` and commit the session."""
    reservation = db.session.get(Reservation, token) if token else None
    if reservation is None:
        logger.error("Unknown reservation token %r", token)
        db.session.rollback()
        raise InvalidTokenError(token, "unknown token")

    boq_item_id = reservation.boq_item_id
    wait = _lock_timeout(timeout)
    try:
        with item_lock(boq_item_id, wait):
            db.session.refresh(reservation, with_for_update=True)
            if reservation.status == target:
                # Idempotent repeat: commit whatever the caller staged, ledger untouched.
                db.session.commit()
                return reservation
            if reservation.status != "reserved":
                logger.error(
                    "Reservation %s is %s, cannot become %s",
                    token, reservation.status, target,
                    extra={"entity_type": "boq_item", "entity_id": boq_item_id},
                )
                raise InvalidTokenError(token, f"already {reservation.status}")

            item = _select_for_update(boq_item_id, wait)
            amount = reservation.quantity
            item.pending_quantity = item.pending_quantity - amount
            if target == "committed":
                item.approved_quantity = item.approved_quantity + amount
            reservation.status = target
            reservation.resolved_at = datetime.now(timezone.utc)
            _touch(item)
            db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Reservation %s %s (%s on BOQ item %s)", token, target,
                amount, boq_item_id,
                extra={"entity_type": "boq_item", "entity_id": boq_item_id})
    notifier.dispatch_after_commit()
    return reservation


def commit(token: str, *, timeout: float | None = None) -> Reservation:
    """
    Move the reserved amount from pending to approved.

    Anything the caller staged in the session commits in the same
    transaction. A repeated commit is a no-op.

    Raises:
        InvalidTokenError: unknown or already released token
    """
    return _settle(token, "committed", timeout=timeout)


def release(token: str, *, timeout: float | None = None) -> Reservation:
    """
    Drop the reserved amount from pending without approving it.

    Raises:
        InvalidTokenError: unknown or already committed token
    """
    return _settle(token, "released", timeout=timeout)


# ── Reads ────────────────────────────────────────────────────────────────────


def available_quantity(boq_item_id: int) -> Decimal:
    """Advisory read of budgeted - approved - pending from the latest snapshot."""
    item = db.session.get(BoqItem, boq_item_id)
    if item is None:
        raise NotFoundError(resource="BoqItem", resource_id=boq_item_id)
    return item.available_quantity
