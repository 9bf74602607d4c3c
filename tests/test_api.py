"""
HTTP adapter tests — routes, bearer auth and the error-code mapping.

    OverBudgetError              409 ERR_OVER_BUDGET
    InvalidTransitionError       409 ERR_CONFLICT_STATE
    MissingRequiredEvidenceError 422 ERR_MISSING_EVIDENCE
    ValidationError              422 ERR_VALIDATION_INVALID
    ConflictError                409 ERR_CONFLICT_DUPLICATE
    PermissionDenied             403 ERR_FORBIDDEN
    NotFoundError                404 ERR_NOT_FOUND
    BusyError                    503 ERR_BUSY + Retry-After
    InvalidTokenError            500 ERR_INTEGRITY
"""

import threading

import pytest

from siteledger.config import Config
from siteledger.models import db
from siteledger.models.daily_log import DailyLog
from siteledger.models.project import Project
from siteledger.services import progress_ledger

BASE = "/api/v1"


def _log_body(item, quantity="30"):
    return {
        "boq_item_id": item.id,
        "quantity": quantity,
        "labor_entries": [{"role": "oficial", "count": 2, "hours": "8"}],
        "material_entries": [],
        "machinery_entries": [],
        "evidence_refs": ["photo-001"],
        "notes": "Encofrado de columnas",
    }


@pytest.fixture()
def as_user(client, auth_headers):
    """``as_user(user).post(url, json=...)`` issues requests with that user's token."""
    class _Caller:
        def __init__(self, user):
            self.headers = auth_headers(user)

        def get(self, url, **kw):
            return client.get(url, headers=self.headers, **kw)

        def post(self, url, **kw):
            return client.post(url, headers=self.headers, **kw)

    return _Caller


# ═════════════════════════════════════════════════════════════════════════════
# Health & auth
# ═════════════════════════════════════════════════════════════════════════════


class TestHealthAndAuth:
    def test_health_needs_no_token(self, client):
        res = client.get(f"{BASE}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"
        assert "X-Request-ID" in res.headers

    def test_readiness_checks_database(self, client):
        res = client.get(f"{BASE}/health/ready")
        assert res.status_code == 200
        assert res.get_json()["database"]["status"] == "ok"

    def test_rate_limit_storage_comes_from_config(self, app):
        assert app.config["RATELIMIT_STORAGE_URI"] == Config.RATELIMIT_STORAGE_URI
        assert not hasattr(Config, "REDIS_URL")

    def test_missing_token(self, client, site):
        res = client.get(f"{BASE}/projects/{site.project.id}/progress")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token(self, client, site):
        res = client.get(f"{BASE}/projects/{site.project.id}/progress",
                         headers={"Authorization": "Bearer not.a.token"})
        assert res.status_code == 401

    def test_forbidden(self, as_user, site):
        res = as_user(site.logistics).post(f"{BASE}/projects/{site.project.id}/boq-items",
                                           json={"code": "X", "unit": "m2", "budgeted_quantity": "1"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


# ═════════════════════════════════════════════════════════════════════════════
# BOQ
# ═════════════════════════════════════════════════════════════════════════════


class TestBoqApi:
    def test_create_list_available(self, as_user, site):
        pm = as_user(site.pm)
        res = pm.post(f"{BASE}/projects/{site.project.id}/boq-items", json={
            "code": "04.01", "name": "Tarrajeo de muros", "unit": "m2",
            "budgeted_quantity": "320", "unit_price": "25.5",
        })
        assert res.status_code == 201
        item = res.get_json()
        assert item["budgeted_quantity"] == "320.0000"

        listing = pm.get(f"{BASE}/projects/{site.project.id}/boq-items").get_json()
        assert listing["total"] == 1

        avail = pm.get(f"{BASE}/boq-items/{item['id']}/available").get_json()
        assert avail["available_quantity"] == "320.0000"

    def test_duplicate_code(self, as_user, site):
        pm = as_user(site.pm)
        body = {"code": "04.01", "unit": "m2", "budgeted_quantity": "1"}
        pm.post(f"{BASE}/projects/{site.project.id}/boq-items", json=body)
        res = pm.post(f"{BASE}/projects/{site.project.id}/boq-items", json=body)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_deactivate(self, as_user, site, boq_item):
        item = boq_item()
        res = as_user(site.pm).post(f"{BASE}/boq-items/{item.id}/deactivate")
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

    def test_unknown_project(self, as_user, site):
        res = as_user(site.admin).get(f"{BASE}/projects/9999/boq-items")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Daily logs
# ═════════════════════════════════════════════════════════════════════════════


class TestDailyLogApi:
    def test_submit_approve_flow(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        res = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                         json=_log_body(item))
        assert res.status_code == 201
        log = res.get_json()
        assert log["status"] == "pending"

        res = as_user(site.engineer).post(f"{BASE}/daily-logs/{log['id']}/approve")
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"

        detail = as_user(site.ceo).get(f"{BASE}/daily-logs/{log['id']}").get_json()
        assert detail["costs"]["labor"] == "300.0000"

    def test_over_budget(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        foreman = as_user(site.foreman)
        foreman.post(f"{BASE}/projects/{site.project.id}/daily-logs", json=_log_body(item, "30"))
        res = foreman.post(f"{BASE}/projects/{site.project.id}/daily-logs", json=_log_body(item, "25"))

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_OVER_BUDGET"
        assert body["details"]["requested"] == "25.0000"
        assert body["details"]["available"] == "20.0000"

    def test_second_review_conflicts(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        log = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                         json=_log_body(item)).get_json()
        engineer = as_user(site.engineer)
        engineer.post(f"{BASE}/daily-logs/{log['id']}/reject", json={"reason": "Sin fotos"})
        res = engineer.post(f"{BASE}/daily-logs/{log['id']}/approve")

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"] == {"from_state": "rejected", "attempted": "approve"}

    def test_reject_without_reason(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        log = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                         json=_log_body(item)).get_json()
        res = as_user(site.engineer).post(f"{BASE}/daily-logs/{log['id']}/reject", json={})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    @pytest.mark.parametrize("field, value", [
        ("boq_item_id", [1]),
        ("boq_item_id", "1"),
        ("notes", {"text": "x"}),
        ("evidence_refs", [1]),
        ("labor_entries", [{"role": 7, "count": 2, "hours": "8"}]),
    ])
    def test_wrong_json_types_are_422(self, as_user, site, boq_item, field, value):
        item = boq_item(budget="50")
        body = {**_log_body(item), field: value}
        res = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs", json=body)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_item_from_other_project(self, as_user, site, boq_item):
        other = Project(code="OBRA-002", name="Otra")
        db.session.add(other)
        db.session.commit()
        item = boq_item(budget="50")
        res = as_user(site.admin).post(f"{BASE}/projects/{other.id}/daily-logs", json=_log_body(item))
        assert res.status_code == 422

    def test_list_with_filters(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                   json=_log_body(item, "5"))
        res = as_user(site.pm).get(f"{BASE}/projects/{site.project.id}/daily-logs?status=pending")
        assert res.get_json()["total"] == 1
        res = as_user(site.pm).get(f"{BASE}/projects/{site.project.id}/daily-logs?boq_item_id=abc")
        assert res.status_code == 422

    def test_busy_item(self, as_user, site, boq_item, app):
        item = boq_item(budget="50")
        item_id = item.id
        held = threading.Event()
        done = threading.Event()

        def holder():
            with progress_ledger.item_lock(item_id):
                held.set()
                done.wait(10)

        app.config["LEDGER_LOCK_TIMEOUT_SECONDS"] = 0.05
        t = threading.Thread(target=holder)
        t.start()
        try:
            assert held.wait(5)
            res = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                             json=_log_body(item, "5"))
        finally:
            done.set()
            t.join()
            app.config["LEDGER_LOCK_TIMEOUT_SECONDS"] = 2.0

        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_BUSY"
        assert res.headers["Retry-After"] == "1"
        assert DailyLog.query.count() == 0

    def test_integrity_fault(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        log = as_user(site.foreman).post(f"{BASE}/projects/{site.project.id}/daily-logs",
                                         json=_log_body(item)).get_json()
        token = db.session.get(DailyLog, log["id"]).reservation_token
        progress_ledger.release(token)  # settled behind the log's back

        res = as_user(site.engineer).post(f"{BASE}/daily-logs/{log['id']}/approve")

        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_INTEGRITY"
        assert res.get_json()["details"]["token"] == token
        assert db.session.get(DailyLog, log["id"]).status == "pending"


# ═════════════════════════════════════════════════════════════════════════════
# Requisitions
# ═════════════════════════════════════════════════════════════════════════════


class TestRequisitionApi:
    def _create(self, as_user, site):
        res = as_user(site.engineer).post(f"{BASE}/projects/{site.project.id}/requisitions", json={
            "item_name": "Fierro 3/8", "quantity": "200", "unit": "kg", "urgency": "critical",
        })
        assert res.status_code == 201
        return res.get_json()

    def test_pipeline(self, as_user, site):
        req = self._create(as_user, site)
        assert as_user(site.pm).post(f"{BASE}/requisitions/{req['id']}/approve").status_code == 200

        res = as_user(site.logistics).post(f"{BASE}/requisitions/{req['id']}/purchase",
                                           json={"invoice": "inv-001", "waybill": "gr-001"})
        assert res.status_code == 200
        assert res.get_json()["evidence"] == {"invoice": "inv-001", "waybill": "gr-001", "photo": None}

        res = as_user(site.foreman).post(f"{BASE}/requisitions/{req['id']}/receive")
        assert res.get_json()["status"] == "completed"

        listing = as_user(site.ceo).get(f"{BASE}/projects/{site.project.id}/requisitions?status=received")
        assert listing.get_json()["total"] == 1

    def test_missing_invoice(self, as_user, site):
        req = self._create(as_user, site)
        as_user(site.pm).post(f"{BASE}/requisitions/{req['id']}/approve")
        res = as_user(site.logistics).post(f"{BASE}/requisitions/{req['id']}/purchase",
                                           json={"invoice": None})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_MISSING_EVIDENCE"
        assert res.get_json()["details"]["field"] == "invoice"

        detail = as_user(site.pm).get(f"{BASE}/requisitions/{req['id']}").get_json()
        assert detail["status"] == "to_buy"

    @pytest.mark.parametrize("body", [
        {"item_name": 123, "quantity": "5", "unit": "kg"},
        {"item_name": "Fierro 3/8", "quantity": "5", "unit": "kg", "urgency": ["high"]},
        {"item_name": "Fierro 3/8", "quantity": "5", "unit": "kg", "material_id": {"id": 1}},
    ])
    def test_wrong_json_types_are_422(self, as_user, site, body):
        res = as_user(site.engineer).post(f"{BASE}/projects/{site.project.id}/requisitions", json=body)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_purchase_out_of_order(self, as_user, site):
        req = self._create(as_user, site)
        res = as_user(site.logistics).post(f"{BASE}/requisitions/{req['id']}/purchase",
                                           json={"invoice": "inv-001"})
        assert res.status_code == 409
        assert res.get_json()["details"]["from_state"] == "pending_pm"


# ═════════════════════════════════════════════════════════════════════════════
# Feed
# ═════════════════════════════════════════════════════════════════════════════


class TestFeedApi:
    def test_events_after_cursor(self, as_user, site, boq_item):
        item = boq_item(budget="50")
        foreman = as_user(site.foreman)
        foreman.post(f"{BASE}/projects/{site.project.id}/daily-logs", json=_log_body(item, "1"))

        first = foreman.get(f"{BASE}/projects/{site.project.id}/events").get_json()
        assert [e["entity_type"] for e in first["items"]] == ["boq_item", "daily_log"]

        foreman.post(f"{BASE}/projects/{site.project.id}/daily-logs", json=_log_body(item, "1"))
        nxt = foreman.get(f"{BASE}/projects/{site.project.id}/events?after={first['last_event_id']}").get_json()
        assert len(nxt["items"]) == 2
        assert all(e["event_id"] > first["last_event_id"] for e in nxt["items"])

    def test_progress_and_material_usage(self, as_user, site, boq_item):
        boq_item(budget="50")
        ceo = as_user(site.ceo)
        progress = ceo.get(f"{BASE}/projects/{site.project.id}/progress")
        assert progress.status_code == 200
        assert len(progress.get_json()["items"]) == 1
        usage = ceo.get(f"{BASE}/projects/{site.project.id}/material-usage")
        assert usage.get_json() == {"items": []}

    def test_outsider_cannot_read_feed(self, as_user, site, make_user):
        outsider = make_user("engineer")
        res = as_user(outsider).get(f"{BASE}/projects/{site.project.id}/events")
        assert res.status_code == 403
