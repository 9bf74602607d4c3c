"""
SiteLedger
Identity model — users and their logical role.

The role decides which capabilities an actor holds (see
``siteledger.services.authorization``). Users are deactivated, never deleted.
"""

from datetime import datetime, timezone

from siteledger.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLES = {"admin", "ceo", "pm", "engineer", "foreman", "logistics"}

# Roles that see every project without an explicit assignment
GLOBAL_ROLES = {"admin", "ceo"}


class User(db.Model):
    """An actor of the engine: field worker, engineer, PM, logistics, ..."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200), nullable=False, default="")
    role = db.Column(db.String(30), nullable=False, default="foreman",
                     comment="admin | ceo | pm | engineer | foreman | logistics")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    assignments = db.relationship("ProjectAssignment", backref="user", lazy="dynamic")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
