"""
Shared fixtures for the escrow coordinator test suites.

Key Components:
1. Fresh in-memory EscrowState, Ledger and EscrowRegistry per test
2. EscrowService over an InMemoryStateStore
3. In-memory SQLite session factory for the relational store
4. FastAPI TestClient with role login helpers
"""

import logging

import pytest

from config import Config
from database import build_engine, build_session_factory, create_tables
from services.audit_logger import AuditLogger
from services.escrow_registry import EscrowRegistry
from services.escrow_service import EscrowService
from services.escrow_state import EscrowState
from services.ledger import Ledger
from services.state_store import InMemoryStateStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

CLIENT_TOKEN = "client-session-1"
OTHER_CLIENT_TOKEN = "client-session-2"


@pytest.fixture
def state():
    return EscrowState()


@pytest.fixture
def ledger(state):
    return Ledger(state.wallet)


@pytest.fixture
def registry(state, ledger):
    return EscrowRegistry(state, ledger)


@pytest.fixture
def paypal_methods():
    return [{"method": "paypal", "fields": {"email": "seller@example.com"}}]


@pytest.fixture
def memory_store():
    return InMemoryStateStore()


@pytest.fixture
def service(memory_store):
    return EscrowService(memory_store, AuditLogger(log_file="")).bootstrap()


@pytest.fixture
def sql_session_factory():
    """Isolated in-memory SQLite database with the full schema"""
    engine = build_engine("sqlite:///:memory:")
    create_tables(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def api_client(service):
    from fastapi.testclient import TestClient

    from api_server import create_app

    with TestClient(create_app(service)) as client:
        yield client


def login(client, role, password=None):
    """Log in through the API and return ready-to-use auth headers"""
    password = password or {"admin": Config.ADMIN_PASSWORD, "client": Config.CLIENT_PASSWORD}[role]
    response = client.post("/api/auth/login", json={"role": role, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def login_as(api_client):
    return lambda role, password=None: login(api_client, role, password)


@pytest.fixture
def admin_headers(api_client):
    return login(api_client, "admin")


@pytest.fixture
def client_headers(api_client):
    return login(api_client, "client")
