import os
from collections.abc import Generator

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import orderdesk.models  # noqa: F401
from orderdesk.api.deps import get_blob_storage, get_db
from orderdesk.main import app
from orderdesk.services.blob_storage import LocalBlobStorage


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """Create an in-memory SQLite database with the full schema."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine: Engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def blob_storage(tmp_path) -> LocalBlobStorage:
    """Blob storage rooted in a temporary directory."""
    return LocalBlobStorage(tmp_path / "blobs", "http://testserver/uploads")


@pytest.fixture(scope="function")
def order_numbers():
    """Deterministic order number factory."""
    counter = iter(range(1, 10_000))
    return lambda: f"ORD-20250101-{next(counter):06d}"


@pytest.fixture(scope="function")
def client(db: Session, blob_storage: LocalBlobStorage) -> Generator[TestClient, None, None]:
    """Create a test client bound to the test session and blob storage."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
