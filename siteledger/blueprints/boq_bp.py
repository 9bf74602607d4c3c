"""
SiteLedger
BOQ blueprint — bill-of-quantities items and their ledger totals.

Endpoints:
    POST /api/v1/projects/<pid>/boq-items            create item
    GET  /api/v1/projects/<pid>/boq-items            list items (?include_inactive=true)
    GET  /api/v1/boq-items/<id>/available            available quantity
    POST /api/v1/boq-items/<id>/deactivate           hide from new submissions
"""

from flask import Blueprint, jsonify, request

from siteledger.blueprints import actor_id, json_body
from siteledger.models.types import ZERO, fmt
from siteledger.services import catalog, progress_ledger
from siteledger.services.authorization import require_capability

boq_bp = Blueprint("boq", __name__, url_prefix="/api/v1")


@boq_bp.route("/projects/<int:pid>/boq-items", methods=["POST"])
def create_boq_item(pid):
    """Body: { code, name, unit, budgeted_quantity, unit_price }"""
    data = json_body()
    item = catalog.create_boq_item(
        actor_id(),
        pid,
        code=data.get("code", ""),
        name=data.get("name", ""),
        unit=data.get("unit", ""),
        budgeted_quantity=data.get("budgeted_quantity"),
        unit_price=data.get("unit_price", ZERO),
    )
    return jsonify(item.to_dict()), 201


@boq_bp.route("/projects/<int:pid>/boq-items", methods=["GET"])
def list_boq_items(pid):
    catalog.get_project(pid)
    require_capability(actor_id(), "progress_view", pid)
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    items = catalog.list_boq_items(pid, include_inactive=include_inactive)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@boq_bp.route("/boq-items/<int:item_id>/available", methods=["GET"])
def available(item_id):
    item = catalog.get_boq_item(item_id)
    require_capability(actor_id(), "progress_view", item.project_id)
    return jsonify({
        "boq_item_id": item_id,
        "available_quantity": fmt(progress_ledger.available_quantity(item_id)),
        "unit": item.unit,
    })


@boq_bp.route("/boq-items/<int:item_id>/deactivate", methods=["POST"])
def deactivate(item_id):
    item = catalog.deactivate_boq_item(actor_id(), item_id)
    return jsonify(item.to_dict())
