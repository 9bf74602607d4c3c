"""
Role-Based Access Control for engine transitions.

Capabilities are logical: a role maps to the set of operations it may call,
and every non-global role is further restricted to the projects it is
assigned to. Services call ``require_capability`` before touching state.

Usage:
    from siteledger.services.authorization import require_capability

    # Raises PermissionDenied if not allowed
    require_capability(actor_id=7, capability="daily_log_review", project_id=1)

    # Boolean check
    if has_capability(actor_id=7, capability="requisition_purchase", project_id=1):
        ...
"""

import logging

from siteledger.core.exceptions import PermissionDenied
from siteledger.models import db
from siteledger.models.auth import GLOBAL_ROLES, User
from siteledger.models.project import ProjectAssignment

logger = logging.getLogger(__name__)


CAPABILITIES = {
    "daily_log_submit",
    "daily_log_review",
    "requisition_create",
    "requisition_approve",
    "requisition_purchase",
    "requisition_receive",
    "boq_manage",
    "progress_view",
}

PERMISSION_MATRIX = {
    "admin": set(CAPABILITIES),
    "ceo": {"progress_view"},
    "pm": {
        "daily_log_review", "requisition_create", "requisition_approve",
        "requisition_receive", "boq_manage", "progress_view",
    },
    "engineer": {
        "daily_log_review", "requisition_create", "requisition_approve",
        "requisition_receive", "boq_manage", "progress_view",
    },
    "foreman": {"daily_log_submit", "requisition_receive", "progress_view"},
    "logistics": {"requisition_purchase", "requisition_receive", "progress_view"},
}


def _active_user(actor_id) -> User | None:
    if actor_id is None:
        return None
    try:
        user = db.session.get(User, int(actor_id))
    except (TypeError, ValueError):
        return None
    if user is None or not user.is_active:
        return None
    return user


def role_of(actor_id) -> str:
    """Return the role of an active actor; unknown or inactive actors are denied."""
    user = _active_user(actor_id)
    if user is None:
        raise PermissionDenied(actor_id, "authenticate")
    return user.role


def is_assigned(actor_id: int, project_id: int) -> bool:
    """True when the actor may act on the project (assignment or global role)."""
    user = _active_user(actor_id)
    if user is None:
        return False
    if user.role in GLOBAL_ROLES:
        return True
    return (
        ProjectAssignment.query
        .filter_by(user_id=user.id, project_id=project_id)
        .first()
    ) is not None


def has_capability(actor_id, capability: str, project_id: int | None = None) -> bool:
    """
    Check if an actor holds a capability, optionally within a project.

    Returns:
        True if the actor's role grants the capability and, when project_id
        is given, the actor is assigned to that project.
    """
    user = _active_user(actor_id)
    if user is None:
        return False
    if capability not in PERMISSION_MATRIX.get(user.role, set()):
        return False
    if project_id is None:
        return True
    return is_assigned(user.id, project_id)


def require_capability(actor_id, capability: str, project_id: int | None = None) -> User:
    """Raise PermissionDenied unless ``has_capability``; return the acting user."""
    if not has_capability(actor_id, capability, project_id):
        logger.info(
            "Denied %s for actor=%s project=%s", capability, actor_id, project_id,
            extra={"actor_id": actor_id, "project_id": project_id},
        )
        raise PermissionDenied(actor_id, capability, project_id)
    return db.session.get(User, int(actor_id))
