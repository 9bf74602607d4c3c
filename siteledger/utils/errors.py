"""Standardised API error responses.

Usage
-----
    from siteledger.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Daily log not found")
    return api_error(E.OVER_BUDGET, "Requested 25 exceeds available 20",
                     details={"requested": "25.0000", "available": "20.0000"})

``register_error_handlers`` maps the engine exceptions in
``siteledger.core.exceptions`` onto these codes, so views never catch them.
"""

from __future__ import annotations

import logging
import math

from flask import jsonify, request

from siteledger.core.exceptions import (
    BusyError,
    ConflictError,
    InvalidTokenError,
    InvalidTransitionError,
    MissingRequiredEvidenceError,
    NotFoundError,
    OverBudgetError,
    PermissionDenied,
    ValidationError,
)
from siteledger.models import db
from siteledger.models.types import fmt

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    MISSING_EVIDENCE = "ERR_MISSING_EVIDENCE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    OVER_BUDGET = "ERR_OVER_BUDGET"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500 / 503
    INTEGRITY = "ERR_INTEGRITY"
    BUSY = "ERR_BUSY"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.MISSING_EVIDENCE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.OVER_BUDGET: 409,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.INTEGRITY: 500,
    E.BUSY: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (available quantity, offending fields, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Exception → response mapping ──────────────────────────────────────


def register_error_handlers(app):
    """Attach one handler per engine exception, plus the HTTP fallbacks."""

    @app.errorhandler(OverBudgetError)
    def _over_budget(e):
        return api_error(E.OVER_BUDGET, str(e), details={
            "requested": fmt(e.requested),
            "available": fmt(e.available),
            "boq_item_id": e.boq_item_id,
        })

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(e):
        return api_error(E.CONFLICT_STATE, str(e), details={
            "from_state": e.from_state,
            "attempted": e.attempted,
        })

    @app.errorhandler(MissingRequiredEvidenceError)
    def _missing_evidence(e):
        return api_error(E.MISSING_EVIDENCE, str(e), details={"field": e.field})

    @app.errorhandler(InvalidTokenError)
    def _invalid_token(e):
        logger.error("Ledger integrity fault on %s %s: %s", request.method, request.path, e)
        return api_error(E.INTEGRITY, "Ledger integrity fault", details={"token": e.token})

    @app.errorhandler(BusyError)
    def _busy(e):
        response, status = api_error(E.BUSY, str(e), details={"resource": e.resource})
        response.headers["Retry-After"] = str(max(1, math.ceil(e.retry_after)))
        return response, status

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def _conflict(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={"field": e.field})

    @app.errorhandler(PermissionDenied)
    def _forbidden(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(404)
    def _http_not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        db.session.rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
