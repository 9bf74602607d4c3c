"""
Requisition State Machine — material procurement from request to receipt.

    pending_pm --approve--> to_buy --purchase--> in_transit --receive--> completed
    pending_pm --reject---> rejected

Each transition checks the actor's capability, validates its inputs, then
applies a compare-and-set status update together with a change event in a
single commit. Any edge not listed above raises InvalidTransitionError and
leaves the requisition untouched.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from siteledger.core.exceptions import (
    MissingRequiredEvidenceError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from siteledger.models import db
from siteledger.models.requisition import (
    REQUISITION_STATUSES,
    REQUISITION_TRANSITIONS,
    REQUISITION_URGENCIES,
    STATUS_ALIASES,
    Requisition,
)
from siteledger.models.types import to_decimal
from siteledger.services import catalog
from siteledger.services.authorization import has_capability, is_assigned, require_capability
from siteledger.services.change_notifier import notifier
from siteledger.services.evidence_store import missing_refs
from siteledger.services.state_machine import apply_transition
from siteledger.utils.helpers import choice_field, text_field

logger = logging.getLogger(__name__)


def _get(req_id: int) -> Requisition:
    req = db.session.get(Requisition, req_id)
    if req is None:
        raise NotFoundError(resource="Requisition", resource_id=req_id)
    return req


def _transition(req: Requisition, action: str, actor_id: int, extra: dict | None = None) -> Requisition:
    """Apply ``action`` stamping actor and time, record the event, commit."""
    actor_field, at_field = REQUISITION_TRANSITIONS[action]["stamps"]
    values = {actor_field: actor_id, at_field: datetime.now(timezone.utc), **(extra or {})}
    try:
        apply_transition(Requisition, req, REQUISITION_TRANSITIONS, action, values, "Requisition")
        notifier.record_entity("requisition", req)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Requisition %s → %s by %s", req.id, req.status, actor_id,
        extra={"project_id": req.project_id, "entity_type": "requisition",
               "entity_id": req.id, "actor_id": actor_id},
    )
    notifier.dispatch_after_commit()
    return req


# ── Create ───────────────────────────────────────────────────────────────────


def create(
    requester_id: int,
    project_id: int,
    item_name: str | None = None,
    material_id: int | None = None,
    quantity=None,
    unit: str | None = None,
    urgency: str = "medium",
    notes: str | None = None,
) -> Requisition:
    """
    Open a requisition in ``pending_pm``.

    ``item_name`` and ``unit`` fall back to the catalog material when
    ``material_id`` is given; free-text items must supply both.

    Raises:
        PermissionDenied, NotFoundError (project or material), ValidationError
    """
    catalog.get_project(project_id)
    require_capability(requester_id, "requisition_create", project_id)

    material = catalog.get_material(material_id) if material_id is not None else None
    item_name = text_field(item_name, "item_name") or (material.name if material else None)
    unit = text_field(unit, "unit") or (material.unit if material else None)
    if not item_name:
        raise ValidationError("item_name is required", details={"item_name": "required"})
    if not unit:
        raise ValidationError("unit is required", details={"unit": "required"})
    urgency = choice_field(urgency, "urgency", REQUISITION_URGENCIES)
    notes = text_field(notes, "notes")
    try:
        qty = to_decimal(quantity)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"quantity": "invalid"}) from None
    if qty <= 0:
        raise ValidationError("quantity must be greater than zero", details={"quantity": "not_positive"})

    req = Requisition(
        project_id=project_id,
        material_id=material.id if material else None,
        item_name=item_name,
        quantity=qty,
        unit=unit,
        urgency=urgency,
        notes=notes,
        status="pending_pm",
        requester_id=requester_id,
    )
    db.session.add(req)
    try:
        notifier.record_entity("requisition", req)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Requisition %s created: %s %s %s", req.id, qty, unit, item_name,
        extra={"project_id": project_id, "entity_type": "requisition",
               "entity_id": req.id, "actor_id": requester_id},
    )
    notifier.dispatch_after_commit()
    return req


# ── Transitions ──────────────────────────────────────────────────────────────


def approve_for_purchase(req_id: int, approver_id: int) -> Requisition:
    """pending_pm → to_buy."""
    req = _get(req_id)
    require_capability(approver_id, "requisition_approve", req.project_id)
    return _transition(req, "approve", approver_id)


def reject_request(req_id: int, approver_id: int, reason: str) -> Requisition:
    """pending_pm → rejected. A non-empty reason is required."""
    req = _get(req_id)
    require_capability(approver_id, "requisition_approve", req.project_id)
    reason = text_field(reason, "reason", required=True)
    return _transition(req, "reject", approver_id, {"rejection_reason": reason})


def record_purchase(req_id: int, purchaser_id: int, evidence: dict | None) -> Requisition:
    """
    to_buy → in_transit, attaching purchase evidence.

    Args:
        evidence: ``{"invoice": ref, "waybill": ref | None, "photo": ref | None}``

    Raises:
        InvalidTransitionError: requisition is not in ``to_buy``
        MissingRequiredEvidenceError: no invoice reference
        ValidationError: a supplied reference is not in the evidence store
    """
    req = _get(req_id)
    require_capability(purchaser_id, "requisition_purchase", req.project_id)

    evidence = evidence or {}
    if not isinstance(evidence, dict):
        raise ValidationError("evidence must be an object", details={"evidence": "invalid"})
    if req.status not in REQUISITION_TRANSITIONS["purchase"]["from"]:
        # Checked ahead of evidence so an out-of-order call reports the state.
        return _transition(req, "purchase", purchaser_id)
    invoice = text_field(evidence.get("invoice"), "invoice")
    if not invoice:
        raise MissingRequiredEvidenceError(
            "invoice", "An invoice reference is required to record a purchase",
        )

    refs = {
        "invoice_ref": invoice,
        "waybill_ref": text_field(evidence.get("waybill"), "waybill"),
        "photo_ref": text_field(evidence.get("photo"), "photo"),
    }
    unknown = missing_refs([ref for ref in refs.values() if ref])
    if unknown:
        raise ValidationError(
            f"Unknown evidence reference(s): {', '.join(unknown)}",
            details={"evidence": unknown},
        )
    return _transition(req, "purchase", purchaser_id, refs)


def confirm_receipt(req_id: int, receiver_id: int) -> Requisition:
    """
    in_transit → completed.

    Allowed to the original requester or any actor holding
    ``requisition_receive`` on the project.
    """
    req = _get(req_id)
    is_requester = req.requester_id == receiver_id and is_assigned(receiver_id, req.project_id)
    if not is_requester and not has_capability(receiver_id, "requisition_receive", req.project_id):
        logger.info("Denied requisition_receive for actor=%s project=%s",
                    receiver_id, req.project_id,
                    extra={"actor_id": receiver_id, "project_id": req.project_id})
        raise PermissionDenied(receiver_id, "requisition_receive", req.project_id)
    return _transition(req, "receive", receiver_id)


# ── Reads ────────────────────────────────────────────────────────────────────


def get_requisition(req_id: int) -> Requisition:
    return _get(req_id)


def list_requisitions(project_id: int, status: str | None = None) -> list[Requisition]:
    """Requisitions of a project, newest first. ``received`` filters ``completed``."""
    stmt = select(Requisition).where(Requisition.project_id == project_id)
    if status:
        status = choice_field(status, "status", REQUISITION_STATUSES | set(STATUS_ALIASES))
        status = STATUS_ALIASES.get(status, status)
        stmt = stmt.where(Requisition.status == status)
    stmt = stmt.order_by(Requisition.created_at.desc(), Requisition.id.desc())
    return list(db.session.execute(stmt).scalars())
