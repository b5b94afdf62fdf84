"""
Shared fixtures for the import engine test suite.

Provides: in-memory SQLite session factory, fake record sinks, settings and
spreadsheet builders.
"""

import io
import os
import threading
import time
import uuid

# Must be set before idea_importer modules build their engine and settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)

import pytest
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from idea_importer.api.schemas.idea import IdeaCreate, IdeaReference
from idea_importer.core.config import Settings
from idea_importer.db.base import Base
from idea_importer.db.models import Idea  # noqa: F401  registers the table
from idea_importer.services.record_sink import SinkError


class FakeSink:
    """Thread-safe in-memory sink with optional per-slug failures and delay."""

    def __init__(self, *, fail_slugs=(), delay: float = 0.0, retryable: bool = False):
        self.fail_slugs = set(fail_slugs)
        self.delay = delay
        self.retryable = retryable
        self.created: list[IdeaCreate] = []
        self.calls = 0
        self._lock = threading.Lock()

    def create(self, command: IdeaCreate) -> IdeaReference:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if command.slug in self.fail_slugs:
            raise SinkError(f"rejected {command.slug}", retryable=self.retryable)
        with self._lock:
            self.created.append(command)
        return IdeaReference(id=str(uuid.uuid4()), slug=command.slug)


class FakeRedis:
    """Minimal get/set stand-in for a Redis client."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex
        return True

    def get(self, key):
        return self.store.get(key)

    def ping(self):
        return True


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "redis_url": None,
        "sink_retry_backoff_seconds": 0,
        "job_timeout_seconds": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_csv(rows, headers=("title", "description")) -> bytes:
    lines = [",".join(headers)]
    lines.extend(",".join(str(cell) for cell in row) for row in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


def make_xlsx(rows, headers=("title", "description")) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(list(headers))
    for row in rows:
        ws.append(list(row))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def idea_rows(count: int, prefix: str = "Idea"):
    return [(f"{prefix} {idx}", f"Description {idx}") for idx in range(1, count + 1)]


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def file_session_factory(tmp_path):
    """SQLite on disk so concurrent workers get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ideas.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()
