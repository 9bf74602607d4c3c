"""
Daily Log State Machine — field submissions and their review.

Lifecycle:
    submit  → pending   (quantity reserved in the ledger)
    approve → approved  (reservation committed)
    reject  → rejected  (reservation released)

Both review outcomes are terminal. Each step writes the log, the ledger and
the change events in one transaction; on any error the session is rolled
back and nothing is left behind.

Usage:
    from siteledger.services import daily_log_service

    log = daily_log_service.submit(
        boq_item_id=3, submitter_id=12, quantity="30",
        labor_entries=[{"role": "oficial", "count": 2, "hours": 8}],
        material_entries=[], machinery_entries=[], evidence_refs=["photo-1"],
        notes="Vaciado de zapatas eje A",
    )
    daily_log_service.approve(log.id, reviewer_id=4)
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from siteledger.core.exceptions import NotFoundError, ValidationError
from siteledger.models import db
from siteledger.models.catalog import Machine, Material, PersonnelType
from siteledger.models.daily_log import DAILY_LOG_STATUSES, DAILY_LOG_TRANSITIONS, DailyLog
from siteledger.models.types import ZERO, fmt, to_decimal
from siteledger.services import catalog, progress_ledger
from siteledger.services.authorization import require_capability
from siteledger.services.change_notifier import notifier
from siteledger.services.evidence_store import missing_refs
from siteledger.services.state_machine import apply_transition
from siteledger.utils.helpers import choice_field, text_field

logger = logging.getLogger(__name__)


# ── Entry validation ─────────────────────────────────────────────────────────


def _number(value, field: str) -> Decimal:
    try:
        return to_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), details={field: "invalid"}) from None


def _entries(entries, field: str) -> list[dict]:
    entries = entries or []
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ValidationError(f"{field} must be a list of objects", details={field: "invalid"})
    return entries


def _require_active(obj, label: str, key) -> None:
    if not obj.is_active:
        raise ValidationError(f"{label} {key} is inactive", details={label: "inactive"})


def _normalize_labor(entries) -> list[dict]:
    entries = _entries(entries, "labor_entries")
    if not entries:
        raise ValidationError("At least one labor entry is required",
                              details={"labor_entries": "required"})
    normalized = []
    for entry in entries:
        role = text_field(entry.get("role"), "role", required=True)
        _require_active(catalog.get_personnel_type(role), "PersonnelType", role)
        count = entry.get("count", 1)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("Labor entry count must be a positive integer",
                                  details={"labor_entries": "count"})
        hours = _number(entry.get("hours"), "hours")
        if hours <= 0:
            raise ValidationError("Labor entry hours must be greater than zero",
                                  details={"labor_entries": "hours"})
        normalized.append({"role": role, "count": count, "hours": fmt(hours)})
    return normalized


def _normalize_materials(entries) -> list[dict]:
    normalized = []
    for entry in _entries(entries, "material_entries"):
        material = catalog.get_material(entry.get("material_id"))
        _require_active(material, "Material", material.id)
        quantity = _number(entry.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("Material quantity must be greater than zero",
                                  details={"material_entries": "quantity"})
        normalized.append({
            "material_id": material.id,
            "quantity": fmt(quantity),
            "unit": text_field(entry.get("unit"), "unit") or material.unit,
        })
    return normalized


def _normalize_machinery(entries) -> list[dict]:
    normalized = []
    for entry in _entries(entries, "machinery_entries"):
        machine = catalog.get_machine(entry.get("machine_id"))
        _require_active(machine, "Machine", machine.id)
        hours = _number(entry.get("hours"), "hours")
        if hours <= 0:
            raise ValidationError("Machine hours must be greater than zero",
                                  details={"machinery_entries": "hours"})
        normalized.append({"machine_id": machine.id, "hours": fmt(hours)})
    return normalized


def _normalize_evidence(refs) -> list[str]:
    refs = refs or []
    if not isinstance(refs, list) or not all(isinstance(ref, str) for ref in refs):
        raise ValidationError("evidence_refs must be a list of strings",
                              details={"evidence_refs": "invalid"})
    unique = list(dict.fromkeys(ref for ref in refs if ref))
    unknown = missing_refs(unique)
    if unknown:
        raise ValidationError(
            f"Unknown evidence reference(s): {', '.join(unknown)}",
            details={"evidence_refs": unknown},
        )
    return unique


# ── Submit ───────────────────────────────────────────────────────────────────


def submit(
    boq_item_id: int,
    submitter_id: int,
    quantity,
    labor_entries,
    material_entries,
    machinery_entries,
    evidence_refs,
    notes: str | None = None,
    log_date: date | None = None,
) -> DailyLog:
    """
    Create a pending daily log and reserve its quantity.

    The budget check and the log insert are one unit: either both land or
    neither does.

    Raises:
        PermissionDenied: submitter lacks daily_log_submit on the item's project
        NotFoundError: unknown BOQ item or catalog reference
        ValidationError: malformed entries, unknown evidence, inactive item
        OverBudgetError: quantity exceeds the item's available quantity
        BusyError: ledger lock not acquired in time
    """
    item = catalog.get_boq_item(boq_item_id)
    project_id = item.project_id
    require_capability(submitter_id, "daily_log_submit", project_id)
    notes = text_field(notes, "notes")

    labor = _normalize_labor(labor_entries)
    materials = _normalize_materials(material_entries)
    machinery = _normalize_machinery(machinery_entries)
    evidence = _normalize_evidence(evidence_refs)

    with progress_ledger.reserving(boq_item_id, quantity) as reservation:
        log = DailyLog(
            project_id=project_id,
            boq_item_id=boq_item_id,
            submitter_id=submitter_id,
            log_date=log_date or date.today(),
            quantity=reservation.quantity,
            labor_entries=labor,
            material_entries=materials,
            machinery_entries=machinery,
            evidence_refs=evidence,
            notes=notes,
            status="pending",
            reservation_token=reservation.token,
        )
        db.session.add(log)
        notifier.record_entity("daily_log", log)

    logger.info(
        "Daily log %s submitted: %s on BOQ item %s",
        log.id, log.quantity, boq_item_id,
        extra={"project_id": project_id, "entity_type": "daily_log",
               "entity_id": log.id, "actor_id": submitter_id},
    )
    return log


# ── Review ───────────────────────────────────────────────────────────────────


def _get_log(log_id: int) -> DailyLog:
    log = db.session.get(DailyLog, log_id)
    if log is None:
        raise NotFoundError(resource="DailyLog", resource_id=log_id)
    return log


def _review(log_id: int, reviewer_id: int, action: str, values: dict) -> DailyLog:
    log = _get_log(log_id)
    require_capability(reviewer_id, "daily_log_review", log.project_id)

    values = {"reviewer_id": reviewer_id, "reviewed_at": datetime.now(timezone.utc), **values}
    settle = progress_ledger.commit if action == "approve" else progress_ledger.release
    try:
        # Held across the status write and the ledger settlement.
        with progress_ledger.item_lock(log.boq_item_id):
            apply_transition(DailyLog, log, DAILY_LOG_TRANSITIONS, action, values, "DailyLog")
            notifier.record_entity("daily_log", log)
            # Ledger settlement commits the status change with it.
            settle(log.reservation_token)
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Daily log %s %s by %s", log.id, log.status, reviewer_id,
        extra={"project_id": log.project_id, "entity_type": "daily_log",
               "entity_id": log.id, "actor_id": reviewer_id},
    )
    return log


def approve(log_id: int, reviewer_id: int) -> DailyLog:
    """
    Approve a pending log and move its quantity into the approved total.

    Raises:
        InvalidTransitionError: log is not pending
    """
    return _review(log_id, reviewer_id, "approve", {})


def reject(log_id: int, reviewer_id: int, reason: str) -> DailyLog:
    """
    Reject a pending log and free its reserved quantity.

    Raises:
        ValidationError: empty reason
        InvalidTransitionError: log is not pending
    """
    reason = text_field(reason, "reason", required=True)
    return _review(log_id, reviewer_id, "reject", {"rejection_reason": reason})


# ── Reads ────────────────────────────────────────────────────────────────────


def get_log(log_id: int) -> DailyLog:
    return _get_log(log_id)


def list_logs(project_id: int, status: str | None = None,
              boq_item_id: int | None = None) -> list[DailyLog]:
    if status is not None:
        status = choice_field(status, "status", DAILY_LOG_STATUSES)
    stmt = select(DailyLog).where(DailyLog.project_id == project_id)
    if status:
        stmt = stmt.where(DailyLog.status == status)
    if boq_item_id is not None:
        stmt = stmt.where(DailyLog.boq_item_id == boq_item_id)
    stmt = stmt.order_by(DailyLog.log_date.desc(), DailyLog.id.desc())
    return list(db.session.execute(stmt).scalars())


def cost_breakdown(log: DailyLog) -> dict:
    """Labor, material and machinery cost of one log at current catalog rates."""
    labor = ZERO
    for entry in log.labor_entries or []:
        rate = db.session.execute(
            select(PersonnelType.hourly_rate).where(PersonnelType.code == entry["role"])
        ).scalar_one_or_none() or ZERO
        labor += Decimal(entry.get("count", 1)) * to_decimal(entry["hours"]) * rate

    materials = ZERO
    for entry in log.material_entries or []:
        material = db.session.get(Material, entry["material_id"])
        unit_cost = material.unit_cost if material else ZERO
        materials += to_decimal(entry["quantity"]) * unit_cost

    machinery = ZERO
    for entry in log.machinery_entries or []:
        machine = db.session.get(Machine, entry["machine_id"])
        rate = machine.hourly_rate if machine else ZERO
        machinery += to_decimal(entry["hours"]) * rate

    total = labor + materials + machinery
    return {
        "labor": fmt(to_decimal(labor)),
        "materials": fmt(to_decimal(materials)),
        "machinery": fmt(to_decimal(machinery)),
        "total": fmt(to_decimal(total)),
    }
