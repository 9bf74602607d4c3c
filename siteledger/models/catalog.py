"""
SiteLedger
Catalog domain models.

Models:
    - BoqItem: priced, budgeted line of work (partida) with ledger totals
    - Material: material catalog entry with unit cost
    - PersonnelType: labor category with hourly rate
    - Machine: equipment catalog entry with hourly rate

``BoqItem.approved_quantity`` and ``BoqItem.pending_quantity`` belong to the
progress ledger; nothing else writes them.
"""

from datetime import datetime, timezone
from decimal import Decimal

from siteledger.models import db
from siteledger.models.types import ZERO, ExactDecimal, fmt


# ── Constants ────────────────────────────────────────────────────────────────

UNITS = {"m", "m2", "m3", "kg", "t", "und", "glb", "h", "l"}


class BoqItem(db.Model):
    """
    Bill-of-quantities item.

    Invariant: approved_quantity + pending_quantity <= budgeted_quantity.
    """

    __tablename__ = "boq_items"
    __table_args__ = (
        db.UniqueConstraint("project_id", "code", name="uq_boq_items_project_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(300), nullable=False, default="")
    unit = db.Column(db.String(10), nullable=False, comment="m | m2 | m3 | kg | t | und | glb | h | l")
    budgeted_quantity = db.Column(ExactDecimal(), nullable=False, default=ZERO)
    unit_price = db.Column(ExactDecimal(), nullable=False, default=ZERO)

    # Ledger-owned running totals
    approved_quantity = db.Column(ExactDecimal(), nullable=False, default=ZERO)
    pending_quantity = db.Column(ExactDecimal(), nullable=False, default=ZERO)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def available_quantity(self) -> Decimal:
        return self.budgeted_quantity - self.approved_quantity - self.pending_quantity

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "budgeted_quantity": fmt(self.budgeted_quantity),
            "unit_price": fmt(self.unit_price),
            "approved_quantity": fmt(self.approved_quantity),
            "pending_quantity": fmt(self.pending_quantity),
            "available_quantity": fmt(self.available_quantity),
            "is_active": self.is_active,
            "version": self.version,
        }

    def __repr__(self):
        return f"<BoqItem {self.id}: {self.code}>"


class Material(db.Model):
    """Material catalog entry."""

    __tablename__ = "materials"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    unit = db.Column(db.String(10), nullable=False)
    unit_cost = db.Column(ExactDecimal(), nullable=False, default=ZERO)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "unit_cost": fmt(self.unit_cost),
            "is_active": self.is_active,
        }


class PersonnelType(db.Model):
    """Labor category (peón, oficial, operario, capataz, ...)."""

    __tablename__ = "personnel_types"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    hourly_rate = db.Column(ExactDecimal(), nullable=False, default=ZERO)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "hourly_rate": fmt(self.hourly_rate),
            "is_active": self.is_active,
        }


class Machine(db.Model):
    """Machinery catalog entry."""

    __tablename__ = "machines"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    hourly_rate = db.Column(ExactDecimal(), nullable=False, default=ZERO)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "hourly_rate": fmt(self.hourly_rate),
            "is_active": self.is_active,
        }
