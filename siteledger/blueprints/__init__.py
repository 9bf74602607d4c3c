"""
SiteLedger
Blueprint registry and shared request helpers.

Views stay thin: parse the request, call one service operation, serialize.
Engine exceptions propagate to the handlers in ``siteledger.utils.errors``.
"""

from flask import request

from siteledger.core.exceptions import PermissionDenied, ValidationError
from siteledger.middleware.actor_auth import current_actor_id


def actor_id() -> int:
    """Acting user of the current request; set by the bearer-token middleware."""
    actor = current_actor_id()
    if actor is None:
        raise PermissionDenied(None, "authenticate")
    return actor


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name: str, default: int | None = None, *, minimum: int = 0) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"}) from None
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}", details={name: "invalid"})
    return value


def register_blueprints(app):
    from siteledger.blueprints.boq_bp import boq_bp
    from siteledger.blueprints.daily_log_bp import daily_log_bp
    from siteledger.blueprints.health_bp import health_bp
    from siteledger.blueprints.project_feed_bp import project_feed_bp
    from siteledger.blueprints.requisition_bp import requisition_bp

    app.register_blueprint(boq_bp)
    app.register_blueprint(daily_log_bp)
    app.register_blueprint(requisition_bp)
    app.register_blueprint(project_feed_bp)
    app.register_blueprint(health_bp)
