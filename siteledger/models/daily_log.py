"""
SiteLedger
Daily log domain model — field submissions against one BOQ item.

Lifecycle: pending → approved | rejected (both terminal).
The log's quantity sits in the item's pending total while ``pending`` and in
its approved total once ``approved``; a rejected log counts nowhere.
"""

from datetime import date, datetime, timezone

from siteledger.models import db
from siteledger.models.types import ExactDecimal, fmt


# ── Lifecycle ────────────────────────────────────────────────────────────────

DAILY_LOG_STATUSES = {"pending", "approved", "rejected"}

DAILY_LOG_TRANSITIONS = {
    "approve": {"from": ["pending"], "to": "approved"},
    "reject": {"from": ["pending"], "to": "rejected"},
}


def _utcnow():
    return datetime.now(timezone.utc)


class DailyLog(db.Model):
    """
    One field submission (reporte diario).

    Entry payloads keep their submission order and carry decimals as strings:
        labor_entries:     [{"role": "oficial", "count": 2, "hours": "8"}]
        material_entries:  [{"material_id": 3, "quantity": "1.5", "unit": "m3"}]
        machinery_entries: [{"machine_id": 1, "hours": "4"}]
    """

    __tablename__ = "daily_logs"
    __table_args__ = (
        db.Index("idx_daily_logs_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    boq_item_id = db.Column(
        db.Integer, db.ForeignKey("boq_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    submitter_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    log_date = db.Column(db.Date, nullable=False, default=date.today)
    quantity = db.Column(ExactDecimal(), nullable=False)

    labor_entries = db.Column(db.JSON, nullable=False, default=list)
    material_entries = db.Column(db.JSON, nullable=False, default=list)
    machinery_entries = db.Column(db.JSON, nullable=False, default=list)
    evidence_refs = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | approved | rejected")
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    reservation_token = db.Column(
        db.String(36), db.ForeignKey("ledger_reservations.token"), nullable=False, unique=True,
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    boq_item = db.relationship("BoqItem")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "boq_item_id": self.boq_item_id,
            "submitter_id": self.submitter_id,
            "log_date": self.log_date.isoformat() if self.log_date else None,
            "quantity": fmt(self.quantity),
            "labor_entries": list(self.labor_entries or []),
            "material_entries": list(self.material_entries or []),
            "machinery_entries": list(self.machinery_entries or []),
            "evidence_refs": list(self.evidence_refs or []),
            "notes": self.notes,
            "status": self.status,
            "reviewer_id": self.reviewer_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DailyLog {self.id}: item={self.boq_item_id} {self.status}>"
