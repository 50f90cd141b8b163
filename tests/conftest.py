# tests/conftest.py
import os

# keep the import-time engine away from the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from consent_app import identity, main
from consent_app.db import init_db, make_engine
from consent_app.registry import AccessRegistry, RequestLocks
from consent_app.storage import BlobStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds=0, ms=0):
        self.now += seconds * 1000 + ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'consent.db'}"


@pytest.fixture
def session_factory(db_url):
    engine = make_engine(db_url)
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def blobs(db, upload_dir):
    return BlobStore(db, upload_dir)


@pytest.fixture
def registry(db, blobs, clock):
    return AccessRegistry(db, blobs, clock=clock, locks=RequestLocks(), validate_student=True)


@pytest.fixture
def student(db):
    return identity.register(db, "Alice Johnson", "pw-alice", "student")


@pytest.fixture
def other_student(db):
    return identity.register(db, "Bob Smith", "pw-bob", "student")


@pytest.fixture
def org(db):
    return identity.register(db, "Acme University", "pw-acme", "org")


@pytest.fixture
def client(session_factory, upload_dir, clock):
    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def _blobs(db: Session = Depends(main.get_db)):
        return BlobStore(db, upload_dir)

    main.app.dependency_overrides[main.get_db] = _db
    main.app.dependency_overrides[main.get_blobs] = _blobs
    main.app.dependency_overrides[main.get_clock] = lambda: clock
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
