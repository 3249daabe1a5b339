"""
Shared pytest fixtures for the Occupancy Transition Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - transport: RecordingTransport installed for the test (autouse)
    - client: Flask test client (function-scoped)
    - file_app: extra app on a file-backed SQLite DB for multi-session tests
    - unit / tower_unit: Pre-created Unit rows; unit_factory for more
    - recipients: Master/community recipient configuration for the unit scope
"""

import pytest

from occupancy import create_app
from occupancy.config import TestingConfig, config
from occupancy.models import db as _db
from occupancy.models.unit import Unit
from occupancy.services.collaborators import (
    DispatchOutcome,
    EmailTransport,
    UnitOwnershipLookup,
    init_collaborators,
)
from occupancy.services.document_service import DocumentService


class RecordingTransport(EmailTransport):
    """Captures every send; ``fail_with`` makes the next sends raise."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, artifact, primary, cc):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"artifact": artifact, "primary": list(primary), "cc": list(cc)})
        return DispatchOutcome(delivered=True, message_id=f"<msg-{len(self.sent)}@test>")


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def transport(app):
    """Fresh collaborators per test; email goes to a RecordingTransport."""
    recorder = RecordingTransport()
    init_collaborators(
        app,
        ownership=UnitOwnershipLookup(),
        renderer=DocumentService(),
        transport=recorder,
    )
    return recorder


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """Separate app on a file-backed SQLite DB, so each session gets its own connection."""

    class FileBackedConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'occupancy.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 10}}

    monkeypatch.setitem(config, "file-backed", FileBackedConfig)
    application = create_app("file-backed")
    yield application
    with application.app_context():
        _db.engine.dispose()


# ── Convenience fixtures ─────────────────────────────────────────────────


def _make_unit(unit_number="A-101", master=1, community=10, tower=None,
               owner_email="owner@example.com", is_active=True) -> Unit:
    """Create and commit a Unit row."""
    u = Unit(
        unit_number=unit_number,
        master_community_id=master,
        community_id=community,
        tower_id=tower,
        owner_email=owner_email,
        is_active=is_active,
    )
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def unit_factory():
    """Return the Unit factory for tests that need extra units."""
    return _make_unit


@pytest.fixture()
def unit():
    """Villa-style unit: master 1, community 10, no tower."""
    return _make_unit()


@pytest.fixture()
def tower_unit():
    """Apartment unit in tower 100 of community 10."""
    return _make_unit(unit_number="T-1204", tower=100, owner_email="tower.owner@example.com")


@pytest.fixture()
def recipients():
    """Master-community and community configurations for scope (1, 10)."""
    from occupancy.services.recipient_config import create_recipient_configuration

    master = create_recipient_configuration(
        {"master_community_id": 1},
        mip=["master.mip@example.com"],
        mop=["master.mop@example.com"],
    )
    community = create_recipient_configuration(
        {"master_community_id": 1, "community_id": 10},
        mip=["community.mip@example.com", "security@example.com"],
        mop=["community.mop@example.com"],
    )
    return {"master": master, "community": community}
