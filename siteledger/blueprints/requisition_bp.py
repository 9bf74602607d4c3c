"""
SiteLedger
Requisition blueprint — material procurement pipeline.

Endpoints:
    POST /api/v1/projects/<pid>/requisitions         create (pending_pm)
    GET  /api/v1/projects/<pid>/requisitions         list (?status=, "received" = completed)
    GET  /api/v1/requisitions/<id>                   detail
    POST /api/v1/requisitions/<id>/approve           pending_pm → to_buy
    POST /api/v1/requisitions/<id>/reject            pending_pm → rejected (body: { reason })
    POST /api/v1/requisitions/<id>/purchase          to_buy → in_transit (body: { invoice, waybill, photo })
    POST /api/v1/requisitions/<id>/receive           in_transit → completed
"""

from flask import Blueprint, jsonify, request

from siteledger.blueprints import actor_id, json_body
from siteledger.services import catalog, requisition_service
from siteledger.services.authorization import require_capability

requisition_bp = Blueprint("requisition", __name__, url_prefix="/api/v1")


@requisition_bp.route("/projects/<int:pid>/requisitions", methods=["POST"])
def create_requisition(pid):
    """Body: { item_name, material_id, quantity, unit, urgency, notes }"""
    data = json_body()
    req = requisition_service.create(
        actor_id(),
        pid,
        item_name=data.get("item_name"),
        material_id=data.get("material_id"),
        quantity=data.get("quantity"),
        unit=data.get("unit"),
        urgency=data.get("urgency") or "medium",
        notes=data.get("notes"),
    )
    return jsonify(req.to_dict()), 201


@requisition_bp.route("/projects/<int:pid>/requisitions", methods=["GET"])
def list_requisitions(pid):
    catalog.get_project(pid)
    require_capability(actor_id(), "progress_view", pid)
    reqs = requisition_service.list_requisitions(pid, status=request.args.get("status") or None)
    return jsonify({"items": [r.to_dict() for r in reqs], "total": len(reqs)})


@requisition_bp.route("/requisitions/<int:req_id>", methods=["GET"])
def get_requisition(req_id):
    req = requisition_service.get_requisition(req_id)
    require_capability(actor_id(), "progress_view", req.project_id)
    return jsonify(req.to_dict())


@requisition_bp.route("/requisitions/<int:req_id>/approve", methods=["POST"])
def approve_requisition(req_id):
    return jsonify(requisition_service.approve_for_purchase(req_id, actor_id()).to_dict())


@requisition_bp.route("/requisitions/<int:req_id>/reject", methods=["POST"])
def reject_requisition(req_id):
    data = json_body()
    req = requisition_service.reject_request(req_id, actor_id(), data.get("reason", ""))
    return jsonify(req.to_dict())


@requisition_bp.route("/requisitions/<int:req_id>/purchase", methods=["POST"])
def record_purchase(req_id):
    data = json_body()
    evidence = {
        "invoice": data.get("invoice"),
        "waybill": data.get("waybill"),
        "photo": data.get("photo"),
    }
    req = requisition_service.record_purchase(req_id, actor_id(), evidence)
    return jsonify(req.to_dict())


@requisition_bp.route("/requisitions/<int:req_id>/receive", methods=["POST"])
def confirm_receipt(req_id):
    return jsonify(requisition_service.confirm_receipt(req_id, actor_id()).to_dict())
