"""
Catalog Store — read access to BOQ items and the resource catalogs.

Lookups raise NotFoundError for missing rows so callers can validate foreign
references in one line. BOQ items are created and deactivated here by a
planning actor; their ledger totals are never written from this module.
"""

import logging

from sqlalchemy import select

from siteledger.core.exceptions import ConflictError, NotFoundError, ValidationError
from siteledger.models import db
from siteledger.models.catalog import UNITS, BoqItem, Machine, Material, PersonnelType
from siteledger.models.project import Project
from siteledger.models.types import ZERO, to_decimal
from siteledger.services.authorization import require_capability
from siteledger.services.change_notifier import notifier
from siteledger.services.progress_ledger import item_lock
from siteledger.utils.helpers import choice_field, id_field, text_field

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def _get(model, pk, label: str | None = None):
    label = label or model.__name__
    if pk is None:
        raise NotFoundError(resource=label)
    obj = db.session.get(model, id_field(pk, f"{label} id"))
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def get_project(project_id: int) -> Project:
    return _get(Project, project_id)


def get_boq_item(boq_item_id: int) -> BoqItem:
    return _get(BoqItem, boq_item_id)


def list_boq_items(project_id: int, include_inactive: bool = False) -> list[BoqItem]:
    stmt = select(BoqItem).where(BoqItem.project_id == project_id)
    if not include_inactive:
        stmt = stmt.where(BoqItem.is_active.is_(True))
    return list(db.session.execute(stmt.order_by(BoqItem.code)).scalars())


def get_material(material_id: int) -> Material:
    return _get(Material, material_id)


def get_personnel_type(code: str) -> PersonnelType:
    """Labor entries name their category by code (e.g. ``"oficial"``)."""
    code = text_field(code, "role", required=True)
    obj = db.session.execute(
        select(PersonnelType).where(PersonnelType.code == code)
    ).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(resource="PersonnelType", resource_id=code)
    return obj


def get_machine(machine_id: int) -> Machine:
    return _get(Machine, machine_id)


# ── Planning ─────────────────────────────────────────────────────────────────


def create_boq_item(
    actor_id: int,
    project_id: int,
    *,
    code: str,
    unit: str,
    budgeted_quantity,
    unit_price=ZERO,
    name: str = "",
) -> BoqItem:
    """
    Create a BOQ item with zeroed ledger totals.

    Raises:
        PermissionDenied, NotFoundError (project), ValidationError,
        ConflictError (duplicate code within the project)
    """
    get_project(project_id)
    require_capability(actor_id, "boq_manage", project_id)

    code = text_field(code, "code", required=True)
    name = text_field(name, "name") or ""
    unit = choice_field(unit, "unit", UNITS)
    try:
        budgeted = to_decimal(budgeted_quantity, "budgeted_quantity")
        price = to_decimal(unit_price, "unit_price")
    except ValueError as exc:
        raise ValidationError(str(exc)) from None
    if budgeted < 0 or price < 0:
        raise ValidationError("budgeted_quantity and unit_price must be non-negative")

    duplicate = db.session.execute(
        select(BoqItem.id).where(BoqItem.project_id == project_id, BoqItem.code == code)
    ).first()
    if duplicate:
        raise ConflictError(resource="BoqItem", field="code", value=code)

    item = BoqItem(
        project_id=project_id,
        code=code,
        name=name,
        unit=unit,
        budgeted_quantity=budgeted,
        unit_price=price,
        approved_quantity=ZERO,
        pending_quantity=ZERO,
    )
    db.session.add(item)
    try:
        notifier.record_entity("boq_item", item)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("BOQ item %s created in project %s", code, project_id,
                extra={"project_id": project_id, "entity_type": "boq_item", "entity_id": item.id})
    notifier.dispatch_after_commit()
    return item


def deactivate_boq_item(actor_id: int, boq_item_id: int) -> BoqItem:
    """Hide an item from new submissions; its ledger history is kept."""
    item = get_boq_item(boq_item_id)
    require_capability(actor_id, "boq_manage", item.project_id)
    with item_lock(boq_item_id):
        db.session.refresh(item)
        if not item.is_active:
            return item
        item.is_active = False
        item.version = item.version + 1
        try:
            notifier.record_entity("boq_item", item)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    logger.info("BOQ item %s deactivated", item.code,
                extra={"project_id": item.project_id, "entity_type": "boq_item", "entity_id": item.id})
    notifier.dispatch_after_commit()
    return item
