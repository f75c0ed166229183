"""Pytest configuration and fixtures for Reppy tests."""

import os
import sqlite3
import sys
import tempfile
from datetime import date, timedelta
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

PASSWORD = "secret123"


@pytest.fixture(scope="function")
def temp_db_path():
    """Create a temporary database file for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield Path(db_path)
    # Cleanup after test
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture(scope="function")
def test_app(temp_db_path, monkeypatch):
    """
    Create a test FastAPI app with isolated database.
    Uses monkeypatch to override DATABASE_PATH.
    """
    from reppy import db
    import server

    monkeypatch.setattr(db, "DATABASE_PATH", temp_db_path)
    db.init_database()

    yield server.app


@pytest.fixture(scope="function")
def client(test_app):
    """Create a test client for the FastAPI app."""
    with TestClient(test_app) as c:
        yield c


# ==================== Accounts ====================


def register(client, email, password=PASSWORD, **extra):
    """Sign up through the API and return the session body."""
    response = client.post("/api/auth/signup", json=dict(extra, email=email, password=password))
    assert response.status_code == 200, response.text
    return response.json()


def bearer(session):
    return {"Authorization": f"Bearer {session['access_token']}"}


def make_admin(db_path, user_id):
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE profiles SET is_admin = 1 WHERE user_id = ?", (user_id,))
    conn.commit()
    conn.close()


@pytest.fixture
def user_session(client):
    return register(client, "lifter@example.com", display_name="Lifter", username="lifter")


@pytest.fixture
def user_headers(user_session):
    return bearer(user_session)


@pytest.fixture
def other_session(client):
    return register(client, "spotter@example.com", display_name="Spotter", username="spotter")


@pytest.fixture
def other_headers(other_session):
    return bearer(other_session)


@pytest.fixture
def admin_session(client, temp_db_path):
    session = register(client, "boss@example.com", display_name="Boss", username="boss")
    make_admin(temp_db_path, session["user"]["id"])
    return session


@pytest.fixture
def admin_headers(admin_session):
    return bearer(admin_session)


@pytest.fixture
def presets(test_app, temp_db_path):
    """Preset exercise ids by name."""
    conn = sqlite3.connect(temp_db_path)
    rows = conn.execute("SELECT name, id FROM exercises WHERE is_preset = 1").fetchall()
    conn.close()
    return dict(rows)


@pytest.fixture
def today():
    return date.today().isoformat()


@pytest.fixture
def yesterday():
    return (date.today() - timedelta(days=1)).isoformat()


# ==================== Client library ====================


@pytest.fixture
def api(client, user_session):
    """A signed-in ReppyClient talking to the in-process app."""
    from reppy.client import ReppyClient

    reppy_client = ReppyClient(client)
    reppy_client.sign_in("lifter@example.com", PASSWORD)
    return reppy_client


@pytest.fixture
def unreachable_http():
    """An httpx client whose every request fails to connect."""
    def refuse(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(refuse), base_url="http://testserver") as c:
        yield c


@pytest.fixture
def store():
    from reppy.client import OfflineStore

    local = OfflineStore()
    yield local
    local.close()


# ==================== MCP Fixtures ====================

@pytest.fixture
def mcp_config(temp_db_path):
    """Create MCP config for testing."""
    from reppy import db
    from reppy_mcp.config import MCPConfig

    db.init_database(db_path=temp_db_path)

    return MCPConfig(db_path=temp_db_path, max_rows=100)


@pytest.fixture
def db_manager(mcp_config):
    """Create DatabaseManager for testing."""
    from reppy_mcp.server import DatabaseManager
    return DatabaseManager(mcp_config)
