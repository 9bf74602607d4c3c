"""
Evidence Store adapter.

The engine never uploads anything; it only asks whether a reference passed
into ``submit`` or ``record_purchase`` denotes a stored artifact. The default
store answers from the ``evidence_artifacts`` table that the upload layer
fills. Deployments backed by object storage install their own store with
``set_evidence_store``.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from siteledger.models import db
from siteledger.models.evidence import EVIDENCE_KINDS, EvidenceArtifact

logger = logging.getLogger(__name__)


class EvidenceStore:
    """Interface: ``exists(ref) -> bool``."""

    def exists(self, ref: str) -> bool:
        raise NotImplementedError


class DatabaseEvidenceStore(EvidenceStore):
    """Looks references up in ``evidence_artifacts``."""

    def exists(self, ref: str) -> bool:
        if not ref:
            return False
        return db.session.execute(
            select(EvidenceArtifact.id).where(EvidenceArtifact.ref == ref)
        ).first() is not None

    @staticmethod
    def register(ref: str, *, kind: str = "photo", project_id: int | None = None) -> EvidenceArtifact:
        """Record an uploaded artifact. Called by the upload layer, not the engine."""
        if kind not in EVIDENCE_KINDS:
            raise ValueError(f"Invalid evidence kind '{kind}'")
        artifact = EvidenceArtifact(ref=ref, kind=kind, project_id=project_id)
        db.session.add(artifact)
        db.session.commit()
        return artifact


_store: EvidenceStore = DatabaseEvidenceStore()


def get_evidence_store() -> EvidenceStore:
    return _store


def set_evidence_store(store: EvidenceStore) -> None:
    global _store
    _store = store


def missing_refs(refs) -> list[str]:
    """Return the subset of ``refs`` the store does not know, in input order."""
    store = get_evidence_store()
    return [ref for ref in refs if not store.exists(ref)]
