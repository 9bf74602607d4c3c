"""
Change notifier tests — outbox recording, ordered delivery, redelivery, replay.
"""

import logging
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from siteledger.core.exceptions import OverBudgetError
from siteledger.models import db
from siteledger.models.change_event import ChangeEvent
from siteledger.models.ledger import Reservation
from siteledger.models.project import Project
from siteledger.services import daily_log_service, progress_ledger
from siteledger.services.change_notifier import EventTransport, notifier


class _Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)


class _FlakyTransport(EventTransport):
    """Fails the first ``failures`` sends, then succeeds."""

    def __init__(self, failures):
        self.failures = failures
        self.sent = []

    def send(self, event):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("realtime channel down")
        self.sent.append(event)


def _submit(site, item, quantity="5"):
    return daily_log_service.submit(
        boq_item_id=item.id,
        submitter_id=site.foreman.id,
        quantity=quantity,
        labor_entries=[{"role": "peon", "count": 1, "hours": "8"}],
        material_entries=[],
        machinery_entries=[],
        evidence_refs=[],
    )


class TestDelivery:
    def test_subscriber_receives_full_snapshots_in_order(self, site, boq_item):
        item = boq_item(budget="50")
        rec = _Recorder()
        notifier.subscribe(site.project.id, rec)

        log = _submit(site, item, "5")
        daily_log_service.approve(log.id, site.engineer.id)

        kinds = [(e["entity_type"], e["new_state"].get("status")) for e in rec.events]
        assert kinds == [
            ("boq_item", None), ("daily_log", "pending"),
            ("daily_log", "approved"), ("boq_item", None),
        ]
        ids = [e["event_id"] for e in rec.events]
        assert ids == sorted(ids)
        boq_versions = [e["version"] for e in rec.events if e["entity_type"] == "boq_item"]
        assert boq_versions == sorted(boq_versions)
        assert rec.events[-1]["new_state"]["approved_quantity"] == "5.0000"

    def test_subscribers_are_scoped_by_project(self, site, boq_item):
        other = Project(code="OBRA-999", name="Otra obra")
        db.session.add(other)
        db.session.commit()
        mine, theirs = _Recorder(), _Recorder()
        notifier.subscribe(site.project.id, mine)
        notifier.subscribe(other.id, theirs)

        progress_ledger.reserve(boq_item(budget="10").id, "1")

        assert len(mine.events) == 1
        assert theirs.events == []

    def test_unsubscribe_stops_delivery(self, site, boq_item):
        item = boq_item(budget="10")
        rec = _Recorder()
        sub = notifier.subscribe(site.project.id, rec)
        progress_ledger.reserve(item.id, "1")
        notifier.unsubscribe(sub)
        progress_ledger.reserve(item.id, "1")
        assert len(rec.events) == 1

    def test_failed_mutation_publishes_nothing(self, site, boq_item):
        item = boq_item(budget="10")
        rec = _Recorder()
        notifier.subscribe(site.project.id, rec)
        with pytest.raises(OverBudgetError):
            progress_ledger.reserve(item.id, "11")
        assert rec.events == []
        assert ChangeEvent.query.count() == 0


class TestRedelivery:
    def test_failed_delivery_is_retried_in_order(self, site, boq_item):
        item = boq_item(budget="50")
        transport = _FlakyTransport(failures=1)
        notifier.set_transport(transport)

        progress_ledger.reserve(item.id, "1")      # first event fails
        progress_ledger.reserve(item.id, "2")      # retried first, then its own

        versions = [e["version"] for e in transport.sent]
        assert versions == [2, 3]
        assert ChangeEvent.query.filter(ChangeEvent.delivered_at.is_(None)).count() == 0
        first = ChangeEvent.query.order_by(ChangeEvent.id).first()
        assert first.attempts == 2

    def test_failure_blocks_later_events_of_same_entity(self, site, boq_item):
        item = boq_item(budget="50")
        rec = _Recorder()
        notifier.subscribe(site.project.id, rec)
        notifier.set_transport(_FlakyTransport(failures=10))

        progress_ledger.reserve(item.id, "1")
        progress_ledger.reserve(item.id, "1")
        assert rec.events == []
        assert ChangeEvent.query.filter(ChangeEvent.delivered_at.is_(None)).count() == 2

        notifier.set_transport(_FlakyTransport(failures=0))
        assert notifier.dispatch_pending() == 2
        assert [e["version"] for e in rec.events] == [2, 3]

    def test_event_parked_after_max_attempts(self, site, boq_item):
        item = boq_item(budget="50")
        notifier.set_transport(_FlakyTransport(failures=100))
        progress_ledger.reserve(item.id, "1")
        for _ in range(notifier.max_attempts):
            notifier.dispatch_pending()

        event = ChangeEvent.query.one()
        assert event.attempts == notifier.max_attempts
        assert event.delivered_at is None
        assert "realtime channel down" in event.last_error
        assert notifier.dispatch_pending() == 0

    def test_parked_event_is_redelivered_on_request(self, site, boq_item):
        item = boq_item(budget="50")
        notifier.set_transport(_FlakyTransport(failures=100))
        progress_ledger.reserve(item.id, "1")
        for _ in range(notifier.max_attempts):
            notifier.dispatch_pending()
        assert notifier.dispatch_pending() == 0

        recovered = _FlakyTransport(failures=0)
        notifier.set_transport(recovered)
        assert notifier.dispatch_pending(include_parked=True) == 1

        event = db.session.get(ChangeEvent, recovered.sent[0]["event_id"])
        assert event.delivered_at is not None
        assert event.attempts == 1
        assert event.last_error is None

    def test_requeue_touches_only_parked_events(self, site, boq_item):
        parked, fresh = boq_item(budget="50"), boq_item(budget="50")
        notifier.set_transport(_FlakyTransport(failures=100))
        progress_ledger.reserve(parked.id, "1")
        for _ in range(notifier.max_attempts):
            notifier.dispatch_pending()
        progress_ledger.reserve(fresh.id, "1")

        assert notifier.requeue_parked() == 1
        db.session.commit()
        attempts = {e.entity_id: e.attempts for e in ChangeEvent.query.all()}
        assert attempts == {str(parked.id): 0, str(fresh.id): 1}

    def test_dispatch_database_error_keeps_committed_change(self, site, boq_item, monkeypatch, caplog):
        item = boq_item(budget="50")

        def broken_dispatch(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(notifier, "dispatch_pending", broken_dispatch)
        with caplog.at_level(logging.ERROR, logger="siteledger.services.change_notifier"):
            reservation = progress_ledger.reserve(item.id, "4")

        assert db.session.get(Reservation, reservation.token).status == "reserved"
        assert progress_ledger.available_quantity(item.id) == Decimal("46")
        assert ChangeEvent.query.one().delivered_at is None
        assert "events stay queued" in caplog.text

        monkeypatch.undo()
        assert notifier.dispatch_pending() == 1


class TestReplay:
    def test_events_since(self, site, boq_item):
        item = boq_item(budget="50")
        progress_ledger.reserve(item.id, "1")
        progress_ledger.reserve(item.id, "1")
        progress_ledger.reserve(item.id, "1")

        all_events = notifier.events_since(site.project.id)
        assert len(all_events) == 3
        after_first = notifier.events_since(site.project.id, after_id=all_events[0]["event_id"])
        assert [e["event_id"] for e in after_first] == [e["event_id"] for e in all_events[1:]]
        assert notifier.events_since(site.project.id, limit=1) == all_events[:1]

    def test_record_rejects_unknown_entity_type(self, site):
        with pytest.raises(ValueError):
            notifier.record("invoice", 1, site.project.id, {}, 1)
        db.session.rollback()
