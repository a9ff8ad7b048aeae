"""
Pytest fixtures for render worker tests.

Database tests run against in-memory SQLite through the production models.
Tests that need the real ffmpeg/ffprobe binaries are marked with
@pytest.mark.requires_media_tools.
"""

import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from render_worker.models import Base, Media, MediaStep, Project, User


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_media_tools: mark test as requiring ffmpeg/ffprobe binaries on PATH"
    )


def pytest_collection_modifyitems(config, items):
    """Skip media-tool tests when ffmpeg/ffprobe are not on PATH."""
    if shutil.which("ffmpeg") and shutil.which("ffprobe"):
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available")
    for item in items:
        if "requires_media_tools" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Same commit/rollback contract as get_sync_db, bound to SQLite."""
    maker = sessionmaker(db_engine, class_=Session, expire_on_commit=False)

    @contextmanager
    def factory():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def seeded(session_factory):
    """A user with credits, a project, a media row and a processing render step."""
    ids = {
        "user_id": uuid.uuid4(),
        "project_id": uuid.uuid4(),
        "media_id": uuid.uuid4(),
        "step_id": uuid.uuid4(),
    }
    with session_factory() as db:
        db.add(User(id=ids["user_id"], email="creator@example.com", name="Creator", credits_balance=10))
        db.add(
            Project(
                id=ids["project_id"],
                user_id=ids["user_id"],
                status="processing",
                tool_type="kinetic-typography",
                credit_cost=2,
            )
        )
        db.add(
            Media(
                id=ids["media_id"],
                user_id=ids["user_id"],
                project_id=ids["project_id"],
                status="processing",
                input_config={"topic": "Volcanoes", "duration": "60-90"},
            )
        )
        db.add(MediaStep(id=ids["step_id"], media_id=ids["media_id"], step="render", status="processing"))
    return {key: str(value) for key, value in ids.items()}
