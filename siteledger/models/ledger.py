"""
SiteLedger
Progress ledger model.

Models:
    - Reservation: the token behind one pending-quantity increment.

A reservation is consumed exactly once: ``reserved → committed`` when its
daily log is approved, ``reserved → released`` when it is rejected.
"""

import uuid
from datetime import datetime, timezone

from siteledger.models import db
from siteledger.models.types import ExactDecimal, fmt


# ── Constants ────────────────────────────────────────────────────────────────

RESERVATION_STATUSES = {"reserved", "committed", "released"}


class Reservation(db.Model):
    """Quantity held against a BOQ item until commit or release."""

    __tablename__ = "ledger_reservations"

    token = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    boq_item_id = db.Column(
        db.Integer, db.ForeignKey("boq_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    quantity = db.Column(ExactDecimal(), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="reserved",
                       comment="reserved | committed | released")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "token": self.token,
            "boq_item_id": self.boq_item_id,
            "quantity": fmt(self.quantity),
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self):
        return f"<Reservation {self.token[:8]} item={self.boq_item_id} {self.status}>"
