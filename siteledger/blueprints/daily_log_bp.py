"""
SiteLedger
Daily log blueprint — field submissions and engineer review.

Endpoints:
    POST /api/v1/projects/<pid>/daily-logs           submit (reserves quantity)
    GET  /api/v1/projects/<pid>/daily-logs           list (?status=&boq_item_id=)
    GET  /api/v1/daily-logs/<id>                     detail with cost breakdown
    POST /api/v1/daily-logs/<id>/approve             approve
    POST /api/v1/daily-logs/<id>/reject              reject (body: { reason })
"""

from datetime import date

from flask import Blueprint, jsonify, request

from siteledger.blueprints import actor_id, int_arg, json_body
from siteledger.core.exceptions import ValidationError
from siteledger.services import catalog, daily_log_service
from siteledger.services.authorization import require_capability

daily_log_bp = Blueprint("daily_log", __name__, url_prefix="/api/v1")


def _parse_date(val):
    if not val:
        return None
    try:
        return date.fromisoformat(str(val))
    except ValueError:
        raise ValidationError("log_date must be an ISO date", details={"log_date": "invalid"}) from None


@daily_log_bp.route("/projects/<int:pid>/daily-logs", methods=["POST"])
def submit_log(pid):
    """
    Body: {
        boq_item_id, quantity, notes, log_date,
        labor_entries: [{role, count, hours}],
        material_entries: [{material_id, quantity, unit}],
        machinery_entries: [{machine_id, hours}],
        evidence_refs: [ref, ...]
    }
    """
    data = json_body()
    item = catalog.get_boq_item(data.get("boq_item_id"))
    if item.project_id != pid:
        raise ValidationError("BOQ item does not belong to this project",
                              details={"boq_item_id": "wrong_project"})
    log = daily_log_service.submit(
        boq_item_id=item.id,
        submitter_id=actor_id(),
        quantity=data.get("quantity"),
        labor_entries=data.get("labor_entries"),
        material_entries=data.get("material_entries"),
        machinery_entries=data.get("machinery_entries"),
        evidence_refs=data.get("evidence_refs"),
        notes=data.get("notes"),
        log_date=_parse_date(data.get("log_date")),
    )
    return jsonify(log.to_dict()), 201


@daily_log_bp.route("/projects/<int:pid>/daily-logs", methods=["GET"])
def list_logs(pid):
    catalog.get_project(pid)
    require_capability(actor_id(), "progress_view", pid)
    logs = daily_log_service.list_logs(
        pid,
        status=request.args.get("status") or None,
        boq_item_id=int_arg("boq_item_id"),
    )
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)})


@daily_log_bp.route("/daily-logs/<int:log_id>", methods=["GET"])
def get_log(log_id):
    log = daily_log_service.get_log(log_id)
    require_capability(actor_id(), "progress_view", log.project_id)
    body = log.to_dict()
    body["costs"] = daily_log_service.cost_breakdown(log)
    return jsonify(body)


@daily_log_bp.route("/daily-logs/<int:log_id>/approve", methods=["POST"])
def approve_log(log_id):
    log = daily_log_service.approve(log_id, actor_id())
    return jsonify(log.to_dict())


@daily_log_bp.route("/daily-logs/<int:log_id>/reject", methods=["POST"])
def reject_log(log_id):
    data = json_body()
    log = daily_log_service.reject(log_id, actor_id(), data.get("reason", ""))
    return jsonify(log.to_dict())
