"""
Progress reporting (valorización) over the ledger totals.

Read-only: figures come from the committed BOQ item totals and approved
daily logs, so a report never includes work still waiting for review.
"""

from collections import OrderedDict
from decimal import Decimal

from sqlalchemy import select

from siteledger.models import db
from siteledger.models.catalog import BoqItem, Material
from siteledger.models.daily_log import DailyLog
from siteledger.models.types import ZERO, fmt, to_decimal
from siteledger.services import catalog

HUNDRED = Decimal("100")


def _percent(done: Decimal, budgeted: Decimal) -> Decimal:
    if budgeted <= 0:
        return ZERO
    return min(HUNDRED, to_decimal(done / budgeted * HUNDRED))


def project_progress(project_id: int) -> dict:
    """
    Per-item and project-level progress.

    Overall percent is the unweighted mean of item percents, capped at 100.
    """
    project = catalog.get_project(project_id)
    items = db.session.execute(
        select(BoqItem).where(BoqItem.project_id == project_id).order_by(BoqItem.code)
    ).scalars().all()

    rows = []
    budgeted_value = ZERO
    executed_value = ZERO
    percents = []
    for item in items:
        pct = _percent(item.approved_quantity, item.budgeted_quantity)
        item_budget = to_decimal(item.budgeted_quantity * item.unit_price)
        item_executed = to_decimal(item.approved_quantity * item.unit_price)
        budgeted_value += item_budget
        executed_value += item_executed
        percents.append(pct)
        rows.append({
            "boq_item_id": item.id,
            "code": item.code,
            "name": item.name,
            "unit": item.unit,
            "is_active": item.is_active,
            "budgeted_quantity": fmt(item.budgeted_quantity),
            "approved_quantity": fmt(item.approved_quantity),
            "pending_quantity": fmt(item.pending_quantity),
            "available_quantity": fmt(item.available_quantity),
            "percent_complete": fmt(pct),
            "budgeted_value": fmt(item_budget),
            "executed_value": fmt(item_executed),
        })

    overall = to_decimal(sum(percents, ZERO) / len(percents)) if percents else ZERO
    return {
        "project_id": project.id,
        "project_code": project.code,
        "items": rows,
        "totals": {
            "budgeted_value": fmt(budgeted_value),
            "executed_value": fmt(executed_value),
            "percent_complete": fmt(min(HUNDRED, overall)),
        },
    }


def material_usage(project_id: int) -> list[dict]:
    """Material quantities and cost summed over the project's approved logs."""
    catalog.get_project(project_id)
    logs = db.session.execute(
        select(DailyLog.material_entries)
        .where(DailyLog.project_id == project_id, DailyLog.status == "approved")
        .order_by(DailyLog.id)
    ).scalars()

    totals: "OrderedDict[int, Decimal]" = OrderedDict()
    for entries in logs:
        for entry in entries or []:
            mid = entry["material_id"]
            totals[mid] = totals.get(mid, ZERO) + to_decimal(entry["quantity"])

    usage = []
    for mid, quantity in totals.items():
        material = db.session.get(Material, mid)
        unit_cost = material.unit_cost if material else ZERO
        usage.append({
            "material_id": mid,
            "code": material.code if material else None,
            "name": material.name if material else None,
            "unit": material.unit if material else None,
            "quantity": fmt(quantity),
            "cost": fmt(to_decimal(quantity * unit_cost)),
        })
    return usage
