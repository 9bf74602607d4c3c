"""
Shared pytest fixtures for the SiteLedger test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - site: committed project with one user per role, catalogs and evidence
    - boq_item: factory for committed BOQ items in the site project
    - auth_headers: bearer-token headers for a user
    - make_user: factory for committed users with an optional assignment
    - file_app: file-backed app for multi-threaded tests
"""

from types import SimpleNamespace

import pytest

from siteledger import create_app
from siteledger.models import db as _db
from siteledger.models.auth import User
from siteledger.models.catalog import BoqItem, Machine, Material, PersonnelType
from siteledger.models.project import Project, ProjectAssignment
from siteledger.models.types import to_decimal
from siteledger.services.change_notifier import notifier
from siteledger.services.evidence_store import DatabaseEvidenceStore, set_evidence_store
from siteledger.services.token_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        notifier.reset()
        set_evidence_store(DatabaseEvidenceStore())
        yield
        notifier.reset()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def _make_user(role: str, project: Project | None = None, *, email: str | None = None,
              is_active: bool = True) -> User:
    """Create a committed user, assigned to ``project`` when given."""
    user = User(
        email=email or f"{role}-{_db.session.query(User).count() + 1}@obra.test",
        full_name=f"Test {role.title()}",
        role=role,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.flush()
    if project is not None:
        _db.session.add(ProjectAssignment(user_id=user.id, project_id=project.id))
    _db.session.commit()
    return user


@pytest.fixture()
def make_user():
    """Factory: ``make_user("foreman", project)``."""
    return _make_user


@pytest.fixture()
def site():
    """A project with one assigned user per role, catalogs and stored evidence."""
    project = Project(code="OBRA-001", name="Edificio Multifamiliar Los Olivos")
    _db.session.add(project)
    _db.session.commit()

    cement = Material(code="CEM-01", name="Cemento Portland Tipo I", unit="bls",
                      unit_cost=to_decimal("28.50"))
    steel = Material(code="ACE-01", name="Acero corrugado 1/2", unit="kg",
                     unit_cost=to_decimal("4.20"))
    oficial = PersonnelType(code="oficial", name="Oficial", hourly_rate=to_decimal("18.75"))
    peon = PersonnelType(code="peon", name="Peón", hourly_rate=to_decimal("15.00"))
    mixer = Machine(code="MEZ-01", name="Mezcladora 9p3", hourly_rate=to_decimal("25.00"))
    _db.session.add_all([cement, steel, oficial, peon, mixer])
    _db.session.commit()

    store = DatabaseEvidenceStore()
    for ref, kind in (("photo-001", "photo"), ("photo-002", "photo"),
                      ("inv-001", "invoice"), ("gr-001", "waybill")):
        store.register(ref, kind=kind, project_id=project.id)

    return SimpleNamespace(
        project=project,
        admin=_make_user("admin"),
        ceo=_make_user("ceo"),
        pm=_make_user("pm", project),
        engineer=_make_user("engineer", project),
        foreman=_make_user("foreman", project),
        logistics=_make_user("logistics", project),
        cement=cement,
        steel=steel,
        oficial=oficial,
        peon=peon,
        mixer=mixer,
    )


@pytest.fixture()
def boq_item(site):
    """Factory: ``boq_item(budget="50")`` returns a committed item in the site project."""
    counter = {"n": 0}

    def _make(budget="50", unit_price="100", *, unit="m3", is_active=True) -> BoqItem:
        counter["n"] += 1
        item = BoqItem(
            project_id=site.project.id,
            code=f"02.01.{counter['n']:02d}",
            name="Concreto f'c=210 kg/cm2 en zapatas",
            unit=unit,
            budgeted_quantity=to_decimal(budget),
            unit_price=to_decimal(unit_price),
            is_active=is_active,
        )
        _db.session.add(item)
        _db.session.commit()
        return item

    return _make


@pytest.fixture()
def auth_headers():
    """Factory: ``auth_headers(user)`` returns an Authorization header dict."""
    def _make(user: User) -> dict:
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}
    return _make


@pytest.fixture()
def file_app(tmp_path):
    """A second app on a file-backed SQLite DB so threads get separate connections."""
    application = create_app("testing", {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'ledger.db'}",
    })
    yield application
    with application.app_context():
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()
