"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine in memory and the worker from polling the network
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SYNC_ENABLED", "false")

import json  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402
from itertools import count  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from filetag_sync.config import Settings  # noqa: E402
from filetag_sync.core.exceptions import CloudRequestError  # noqa: E402
from filetag_sync.db.database import Base, get_db  # noqa: E402
from filetag_sync.db.models import (  # noqa: E402
    Dimension,
    DimensionExpansion,
    File,
    FileTagRelation,
    SyncStatus,
    Tag,
    TagExpansion,
    WorkspaceDirectory,
)
from filetag_sync.main import app  # noqa: E402

# Test database - in-memory SQLite with StaticPool for connection sharing
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for entire test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(setup_database):
    """Provide a transactional database session that rolls back after each test.

    Commits made by the code under test stay inside the outer transaction.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def session_factory(db):
    """Factory for extra sessions joined to the test transaction."""
    connection = db.get_bind()
    return lambda: TestingSessionLocal(bind=connection)


@pytest.fixture(scope="function")
def client(db):
    """Create test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Do not close - managed by db fixture

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def settings() -> Settings:
    """Settings with small, deterministic sync parameters."""
    return Settings(
        debug=False,
        database_url=TEST_DATABASE_URL,
        default_language="zh-CN",
        pan_dimension_ids=[],
        sync_batch_size=50,
        sync_interval_seconds=30,
        sync_unresolved_escalation_cycles=3,
        cloud_api_base_url="http://cloud.test/functions/v1/cloud-analysis",
        cloud_api_key="test-key",
        _env_file=None,
    )


# -----------------------------------------------------------------------------
# Fake cloud service
# -----------------------------------------------------------------------------


class FakeCloud:
    """In-memory cloud service.

    Assigns its own ids (starting far from local ids) and enforces the
    references a real service validates: a tag needs an existing cloud
    dimension, a relation needs an existing file and tag.
    """

    def __init__(self, first_id: int = 100):
        self._ids = count(first_id)
        self.dimensions: dict[str, dict[str, Any]] = {}
        self.tags: dict[tuple[int, str], dict[str, Any]] = {}
        self.files: dict[str, dict[str, Any]] = {}
        self.relations: set[tuple[str, int]] = set()
        self.dimension_expansions: list[dict[str, Any]] = []
        self.tag_expansions: list[dict[str, Any]] = []
        self.calls: list[dict[str, list[dict]]] = []
        self.fetch_count = 0
        self.fail_on: dict[str, Exception] = {}
        self.fail_fetch: Exception | None = None
        self.fail_next_fetch: Exception | None = None
        self.hidden_dimensions: set[str] = set()
        self.hidden_tags: set[str] = set()

    def add_dimension(self, name: str, cloud_id: int | None = None) -> int:
        cloud_id = next(self._ids) if cloud_id is None else cloud_id
        self.dimensions[name] = {"id": cloud_id, "name": name}
        return cloud_id

    def add_tag(self, dimension_id: int, name: str, cloud_id: int | None = None) -> int:
        cloud_id = next(self._ids) if cloud_id is None else cloud_id
        self.tags[(dimension_id, name)] = {"id": cloud_id, "name": name, "dimension_id": dimension_id}
        return cloud_id

    @property
    def tag_ids(self) -> set[int]:
        return {tag["id"] for tag in self.tags.values()}

    def keys_sent(self) -> list[list[str]]:
        return [sorted(call) for call in self.calls]

    def _check_fetch(self) -> None:
        if self.fail_next_fetch:
            error, self.fail_next_fetch = self.fail_next_fetch, None
            raise error
        if self.fail_fetch:
            raise self.fail_fetch

    async def fetch_dimensions(self, language: str) -> list[dict[str, Any]]:
        self.fetch_count += 1
        self._check_fetch()
        return [d for d in self.dimensions.values() if d["name"] not in self.hidden_dimensions]

    async def fetch_tags(self, language: str) -> list[dict[str, Any]]:
        self._check_fetch()
        return [t for t in self.tags.values() if t["name"] not in self.hidden_tags]

    async def batch_sync(self, payload: dict[str, list[dict]], language: str) -> dict[str, Any]:
        for key in payload:
            if key in self.fail_on:
                raise self.fail_on[key]
        # Round-trip through JSON like the real transport
        payload = json.loads(json.dumps(payload))
        self.calls.append(payload)

        for record in payload.get("dimensions", []):
            if record["name"] not in self.dimensions:
                self.add_dimension(record["name"])
        for record in payload.get("tags", []):
            if record["dimension_id"] not in {d["id"] for d in self.dimensions.values()}:
                raise CloudRequestError(f"unknown dimension {record['dimension_id']}", 400)
            if (record["dimension_id"], record["name"]) not in self.tags:
                self.add_tag(record["dimension_id"], record["name"])
        for record in payload.get("files", []):
            self.files[record["id"]] = record
        for record in payload.get("tag_relations", []):
            if record["file_id"] not in self.files or record["tag_id"] not in self.tag_ids:
                raise CloudRequestError(f"dangling relation {record}", 400)
            self.relations.add((record["file_id"], record["tag_id"]))
        self.dimension_expansions.extend(payload.get("dimension_expansions", []))
        self.tag_expansions.extend(payload.get("tag_expansions", []))
        return {"success": True}


@pytest.fixture(scope="function")
def cloud() -> FakeCloud:
    return FakeCloud()


class FakeConnectivity:
    def __init__(self, online: bool = True):
        self.online = online
        self.probes = 0

    async def is_online(self) -> bool:
        self.probes += 1
        return self.online


@pytest.fixture(scope="function")
def connectivity() -> FakeConnectivity:
    return FakeConnectivity()


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


# -----------------------------------------------------------------------------
# Local store seeding
# -----------------------------------------------------------------------------


class Seeder:
    """Inserts local rows for a test. Flushes, never commits."""

    def __init__(self, db):
        self.db = db
        self._n = count(1)
        self._analyzed_at = datetime(2024, 1, 1, 12, 0, 0)

    def workspace(self, type_: str = "SPEEDY", path: str | None = None) -> WorkspaceDirectory:
        n = next(self._n)
        ws = WorkspaceDirectory(path=path or f"/data/ws{n}", name=f"ws{n}", type=type_)
        self.db.add(ws)
        self.db.flush()
        return ws

    def dimension(self, name: str, **kwargs) -> Dimension:
        kwargs.setdefault("sync_status", SyncStatus.SYNCED)
        dim = Dimension(name=name, **kwargs)
        self.db.add(dim)
        self.db.flush()
        return dim

    def tag(self, dimension: Dimension, name: str, **kwargs) -> Tag:
        kwargs.setdefault("sync_status", SyncStatus.PENDING)
        tag = Tag(name=name, dimension_id=dimension.id, **kwargs)
        self.db.add(tag)
        self.db.flush()
        return tag

    def file(
        self,
        workspace: WorkspaceDirectory,
        content_hash: str | None = None,
        tags: list[Tag] | None = None,
        **kwargs,
    ) -> File:
        n = next(self._n)
        kwargs.setdefault("is_analyzed", True)
        kwargs.setdefault("sync_status", SyncStatus.PENDING)
        kwargs.setdefault("last_analyzed_at", self._analyzed_at + timedelta(minutes=n))
        file = File(
            content_hash=content_hash or f"hash{n:04d}",
            path=f"{workspace.path}/file{n}.txt",
            name=f"file{n}.txt",
            size=100 * n,
            workspace_id=workspace.id,
            **kwargs,
        )
        self.db.add(file)
        self.db.flush()
        for tag in tags or []:
            self.db.add(FileTagRelation(file_id=file.id, tag_id=tag.id))
        self.db.flush()
        return file

    def dimension_expansion(self, name: str, **kwargs) -> DimensionExpansion:
        exp = DimensionExpansion(name=name, **kwargs)
        self.db.add(exp)
        self.db.flush()
        return exp

    def tag_expansion(self, dimension: Dimension, name: str, **kwargs) -> TagExpansion:
        exp = TagExpansion(name=name, dimension_id=dimension.id, **kwargs)
        self.db.add(exp)
        self.db.flush()
        return exp


@pytest.fixture(scope="function")
def seed(db) -> Seeder:
    return Seeder(db)
