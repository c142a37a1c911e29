from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("EQUIPDB_DOCUMENTS_ROOT", "/srv/equipdb/documents")
os.environ.setdefault("COMPLIANCE_CHECK_ENABLED", "false")

from equipdb.database import Base, build_engine  # noqa: E402
from equipdb import models as _models  # noqa: E402,F401
from equipdb.apps.gateway.dispatcher import SecureDispatcher  # noqa: E402
from equipdb.apps.gateway.operations import build_registry  # noqa: E402

DOCUMENTS_ROOT = "/srv/equipdb/documents"


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    try:
        yield TestingSession
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def registry():
    return build_registry(documents_root=DOCUMENTS_ROOT)


@pytest.fixture()
def dispatcher(registry, session_factory):
    return SecureDispatcher(registry, session_factory)
