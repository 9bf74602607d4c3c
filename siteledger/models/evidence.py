"""Evidence artifacts registered by the upload layer."""

from datetime import datetime, timezone

from siteledger.models import db


EVIDENCE_KINDS = {"photo", "invoice", "waybill", "document"}


class EvidenceArtifact(db.Model):
    """A stored file the engine may reference; the bytes live elsewhere."""

    __tablename__ = "evidence_artifacts"

    id = db.Column(db.Integer, primary_key=True)
    ref = db.Column(db.String(500), nullable=False, unique=True,
                    comment="Opaque reference, usually the storage URL")
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    kind = db.Column(db.String(20), nullable=False, default="photo")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "ref": self.ref,
            "project_id": self.project_id,
            "kind": self.kind,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
