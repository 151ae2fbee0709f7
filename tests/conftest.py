"""Shared test fixtures."""

import os

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from farmsync.core.security import create_access_token
from farmsync.create_tables import seed_permissions
from farmsync.db.base import Base
from farmsync.db.session import build_engine, get_db
from farmsync.main import app
from farmsync.models import Tenant, User


@pytest.fixture
def engine():
    """In-memory SQLite with savepoint-correct transactions, fresh schema per test."""
    engine = build_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = Session(bind=engine, autoflush=False, expire_on_commit=False)
    seed_permissions(session)
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def tenant_a(db):
    tenant = Tenant(id=uuid.uuid4(), name="Granja Norte", status="active")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def tenant_b(db):
    tenant = Tenant(id=uuid.uuid4(), name="Granja Sur", status="active")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def user_a(db, tenant_a):
    user = User(id=uuid.uuid4(), tenant_id=tenant_a.id, email="ana@norte.test", full_name="Ana")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def user_b(db, tenant_b):
    user = User(id=uuid.uuid4(), tenant_id=tenant_b.id, email="bruno@sur.test", full_name="Bruno")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_token():
    """Factory: signed JWT for a user and/or tenant."""

    def _make(user=None, tenant=None, **claims):
        data = dict(claims)
        if user is not None:
            data.setdefault("sub", str(user.id))
        if tenant is not None:
            data.setdefault("tenant_id", str(tenant.id))
        return create_access_token(data)

    return _make


@pytest.fixture
def hide_first_find(monkeypatch):
    """Make a reconciler's first natural-key lookup miss, as if a concurrent writer had not committed yet."""

    def _hide(reconciler):
        real_find = reconciler.find
        calls = []

        def find(kind, key):
            calls.append(key)
            return None if len(calls) == 1 else real_find(kind, key)

        monkeypatch.setattr(reconciler, "find", find)
        return calls

    return _hide


@pytest.fixture
def client(db):
    """TestClient sharing the test session through the get_db override."""

    def _override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(make_token, user_a, tenant_a):
    return {"Authorization": f"Bearer {make_token(user=user_a, tenant=tenant_a)}"}
