"""
PyTest configuration and fixtures
"""

import base64
import pytest
import sys
import os
from io import BytesIO

from PIL import Image, ImageDraw
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add the parent directory to the path so we can import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from database import Base, get_db
from app.models.document import Document
from app.services.collaborators import GroupDirectory
from app.services.notification_service import Notifier, SigningNotice
from app.services.signing_workflow_service import SigningWorkflowService


GROUP_ID = "group-1"
GROUP_MEMBERS = {"alice", "bob", "carol", "dave", "owner-1"}
OPERATOR_ID = "owner-1"


class FakeGroupDirectory(GroupDirectory):
    """In-memory group membership"""

    def __init__(self, members=None):
        self.members = members if members is not None else {GROUP_ID: set(GROUP_MEMBERS)}
        self.calls = []

    def is_member(self, group_id, user_id):
        self.calls.append((group_id, user_id))
        return user_id in self.members.get(group_id, set())


class RecordingNotifier(Notifier):
    """Keeps every notice instead of sending it"""

    def __init__(self, fail_for=None):
        self.sent = []
        self.fail_for = set(fail_for or [])

    def notify(self, signer_id, document_id, token, message=None, reminder=False, file_name=None):
        if signer_id in self.fail_for:
            raise RuntimeError(f"delivery to {signer_id} failed")
        self.sent.append(SigningNotice(signer_id, document_id, token, message, reminder, file_name))

    @property
    def recipients(self):
        return [notice.signer_id for notice in self.sent]


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def group_directory():
    return FakeGroupDirectory()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(db_session, group_directory, notifier):
    return SigningWorkflowService(db_session, group_directory=group_directory, notifier=notifier)


@pytest.fixture
def make_document(db_session):
    """Factory for uploaded documents"""

    def _make(group_id=GROUP_ID, file_name="co-ownership-agreement.pdf", file_size=2048):
        document = Document(
            group_id=group_id,
            file_name=file_name,
            file_size=file_size,
            content_type="application/pdf",
            uploaded_by=OPERATOR_ID,
        )
        db_session.add(document)
        db_session.commit()
        return document

    return _make


@pytest.fixture
def document(make_document):
    return make_document()


@pytest.fixture
def signature_factory():
    """Canvas-style PNG data URLs"""

    def _make(blank=False, size=(200, 80)):
        image = Image.new("RGB", size, "white")
        if not blank:
            draw = ImageDraw.Draw(image)
            draw.line((20, 60, 180, 20), fill="black", width=4)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")

    return _make


@pytest.fixture
def signature_data(signature_factory):
    return signature_factory()


@pytest.fixture
def client(db_session, group_directory, notifier):
    """Test client wired to the in-memory database and fake collaborators"""
    from fastapi.testclient import TestClient

    from main import app
    from app.dependencies import get_group_directory, get_notifier
    from app.utils.security import get_current_user_id

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_group_directory] = lambda: group_directory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_current_user_id] = lambda: OPERATOR_ID

    yield TestClient(app)

    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection"""
    # Add unit marker to tests that don't have other markers
    for item in items:
        if not any(mark.name == 'integration' for mark in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
