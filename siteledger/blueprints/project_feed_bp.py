"""
SiteLedger
Project feed blueprint — change-event replay and progress reporting.

Endpoints:
    GET /api/v1/projects/<pid>/events?after=<id>&limit=<n>   committed change events
    GET /api/v1/projects/<pid>/progress                       valorización summary
    GET /api/v1/projects/<pid>/material-usage                 materials over approved logs
"""

from flask import Blueprint, jsonify

from siteledger.blueprints import actor_id, int_arg
from siteledger.services import catalog, progress_report
from siteledger.services.authorization import require_capability
from siteledger.services.change_notifier import notifier

project_feed_bp = Blueprint("project_feed", __name__, url_prefix="/api/v1/projects")

MAX_EVENTS = 1000


def _authorize(pid):
    catalog.get_project(pid)
    require_capability(actor_id(), "progress_view", pid)


@project_feed_bp.route("/<int:pid>/events", methods=["GET"])
def events(pid):
    _authorize(pid)
    after = int_arg("after", 0)
    limit = min(int_arg("limit", 200, minimum=1), MAX_EVENTS)
    items = notifier.events_since(pid, after_id=after, limit=limit)
    last = items[-1]["event_id"] if items else after
    return jsonify({"items": items, "last_event_id": last})


@project_feed_bp.route("/<int:pid>/progress", methods=["GET"])
def progress(pid):
    _authorize(pid)
    return jsonify(progress_report.project_progress(pid))


@project_feed_bp.route("/<int:pid>/material-usage", methods=["GET"])
def material_usage(pid):
    _authorize(pid)
    return jsonify({"items": progress_report.material_usage(pid)})
