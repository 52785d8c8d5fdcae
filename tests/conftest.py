"""
Shared fixtures: an in-process Mongo (mongomock-motor) behind the real app.
Environment defaults are set before the app is imported.
"""
import asyncio
import datetime
from decimal import Decimal
import os

os.environ.setdefault("MONGO_TRANSACTIONS", "false")
os.environ.setdefault("DB_NAME", "santiye_test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from santiye.auth import get_current_user
from santiye.dependencies import get_db
from santiye.server import app
from santiye.storage import EntityStore

TEST_USER = {"user_id": "test-user", "type": "access"}
TODAY = datetime.date(2024, 3, 1)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db():
    return AsyncMongoMockClient()["santiye_test"]


@pytest.fixture
def store(db):
    return EntityStore(db)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: TEST_USER
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def project(store):
    return run(store.create_project({"name": "Merkez Şantiye", "advance_payment": "1000"}))


def make_transaction(store, project_id, amount, type="Gider", **extra):
    data = {
        "project_id": project_id,
        "type": type,
        "amount": Decimal(str(amount)),
        "date": TODAY,
        "description": "Beton",
        "is_grubu": "Kaba İmalat",
        "rayic_grubu": "Malzeme",
        **extra,
    }
    return run(store.create_transaction(data))
