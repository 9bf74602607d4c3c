"""
SiteLedger
Change event outbox — one row per committed state change.

Rows are added in the same transaction as the mutation they describe, so an
event exists exactly when its mutation committed. The notifier delivers them
after commit and stamps ``delivered_at``.
"""

from datetime import datetime, timezone

from siteledger.models import db


ENTITY_TYPES = {"boq_item", "daily_log", "requisition"}


class ChangeEvent(db.Model):
    """Full-state snapshot of an entity after a committed mutation."""

    __tablename__ = "change_events"
    __table_args__ = (
        db.Index("idx_change_events_undelivered", "delivered_at", "id"),
        db.Index("idx_change_events_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    entity_type = db.Column(db.String(30), nullable=False, comment="boq_item | daily_log | requisition")
    entity_id = db.Column(db.String(36), nullable=False)
    entity_version = db.Column(db.Integer, nullable=False, default=1)
    new_state = db.Column(db.JSON, nullable=False)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_event(self) -> dict:
        """Wire payload handed to transports and subscribers."""
        return {
            "event_id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "project_id": self.project_id,
            "version": self.entity_version,
            "new_state": self.new_state,
        }

    def __repr__(self):
        return f"<ChangeEvent {self.id}: {self.entity_type}:{self.entity_id} v{self.entity_version}>"
