"""
SiteLedger
Requisition domain model — material procurement requests.

Lifecycle:
    pending_pm → to_buy → in_transit → completed
    pending_pm → rejected

``completed`` is the single terminal name for a received requisition.
"""

from datetime import datetime, timezone

from siteledger.models import db
from siteledger.models.types import ExactDecimal, fmt


# ── Lifecycle ────────────────────────────────────────────────────────────────

REQUISITION_STATUSES = {"pending_pm", "to_buy", "in_transit", "completed", "rejected"}
REQUISITION_URGENCIES = {"low", "medium", "high", "critical"}

# action → allowed source states, target state, and the actor/timestamp pair it stamps
REQUISITION_TRANSITIONS = {
    "approve": {"from": ["pending_pm"], "to": "to_buy",
                "stamps": ("approver_id", "approved_at")},
    "reject": {"from": ["pending_pm"], "to": "rejected",
               "stamps": ("approver_id", "rejected_at")},
    "purchase": {"from": ["to_buy"], "to": "in_transit",
                 "stamps": ("purchaser_id", "purchased_at")},
    "receive": {"from": ["in_transit"], "to": "completed",
                "stamps": ("receiver_id", "received_at")},
}

# Accepted on input for the terminal state; never stored
STATUS_ALIASES = {"received": "completed"}


class Requisition(db.Model):
    """One material request flowing through PM approval, purchase and receipt."""

    __tablename__ = "requisitions"
    __table_args__ = (
        db.Index("idx_requisitions_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=True,
                            comment="NULL for free-text items")
    item_name = db.Column(db.String(300), nullable=False)
    quantity = db.Column(ExactDecimal(), nullable=False)
    unit = db.Column(db.String(10), nullable=False)
    urgency = db.Column(db.String(20), nullable=False, default="medium",
                        comment="low | medium | high | critical")
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending_pm",
                       comment="pending_pm | to_buy | in_transit | completed | rejected")

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    purchaser_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Purchase evidence; invoice is mandatory to leave to_buy
    invoice_ref = db.Column(db.String(500), nullable=True)
    waybill_ref = db.Column(db.String(500), nullable=True)
    photo_ref = db.Column(db.String(500), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        def _ts(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "project_id": self.project_id,
            "material_id": self.material_id,
            "item_name": self.item_name,
            "quantity": fmt(self.quantity),
            "unit": self.unit,
            "urgency": self.urgency,
            "notes": self.notes,
            "status": self.status,
            "requester_id": self.requester_id,
            "approver_id": self.approver_id,
            "approved_at": _ts(self.approved_at),
            "rejected_at": _ts(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "purchaser_id": self.purchaser_id,
            "purchased_at": _ts(self.purchased_at),
            "receiver_id": self.receiver_id,
            "received_at": _ts(self.received_at),
            "evidence": {
                "invoice": self.invoice_ref,
                "waybill": self.waybill_ref,
                "photo": self.photo_ref,
            },
            "version": self.version,
            "created_at": _ts(self.created_at),
        }

    def __repr__(self):
        return f"<Requisition {self.id}: {self.item_name[:30]} {self.status}>"
