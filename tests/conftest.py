import os
from typing import Generator

# Configure before the app modules read the environment
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("REDIS_URL", "")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finance_tracker import config
from finance_tracker.db import Base
from finance_tracker.main import app, get_db


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    config.reset()


def register(client, name="Alice", email="alice@x.com", password="secret1"):
    r = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert r.status_code == 201, r.text
    return r.json()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_user(client, db_session, email, role="user", name="Someone", password="secret1"):
    """Register through the API, then set the role directly in the store."""
    from finance_tracker import models

    data = register(client, name=name, email=email, password=password)
    if role != "user":
        user = db_session.get(models.User, data["user"]["id"])
        user.role = role
        db_session.commit()
    return data["user"], auth_headers(data["token"])


def tx_payload(**overrides):
    payload = {
        "type": "expense",
        "amount": 42.50,
        "description": "Coffee",
        "category": "Food & Dining",
        "date": "2024-03-01",
    }
    payload.update(overrides)
    return payload
