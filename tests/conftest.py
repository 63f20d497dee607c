"""Shared pytest fixtures.

The application reads its settings at import time, so the test environment is
configured here before anything under ``app`` is imported.
"""
import os
from pathlib import Path

DB_FILE = Path("./pytest.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_FILE}"
os.environ["IDENTITY_PROVIDER"] = "local"
os.environ["LOCAL_JWT_SECRET"] = "testing_secret"
os.environ["CLASSIFIER_API_URL"] = "http://classifier.test"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text

from app.auth import get_classifier
from app.classifier import ClassifierClient
from app.identity import create_local_token
from app.main import app


class FakeClassifier:
    """Scriptable stand-in for the ML scoring service, served over MockTransport."""

    def __init__(self):
        self.calls = []
        self.healthy = True
        self.predict_status = 200
        self.predict_body = {
            "prediction": "Gir",
            "confidence": 0.93,
            "processing_time": 0.4,
            "breed_info": {"origin": "Gujarat, India", "characteristics": ["domed forehead"]},
        }
        self.refuse_connections = False
        self.breeds = ["Gir", "Sahiwal", "Ongole"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.refuse_connections:
            raise httpx.ConnectError("Connection refused", request=request)
        path = request.url.path
        if path == "/health":
            if self.healthy:
                return httpx.Response(200, json={"status": "ok", "version": "2.1"})
            return httpx.Response(503, json={"status": "down"})
        if path == "/predict":
            return httpx.Response(self.predict_status, json=self.predict_body)
        if path == "/breeds":
            return httpx.Response(200, json={"breeds": self.breeds})
        if path.startswith("/breed-info/"):
            name = path.rsplit("/", 1)[-1]
            if name in self.breeds:
                return httpx.Response(200, json={"name": name, "origin": "India"})
            return httpx.Response(404, json={"error": "unknown breed"})
        return httpx.Response(404)

    def client(self) -> ClassifierClient:
        return ClassifierClient("http://classifier.test", transport=httpx.MockTransport(self.handler))

    def paths(self):
        return [p for _, p in self.calls]


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def client(classifier):
    DB_FILE.unlink(missing_ok=True)
    app.dependency_overrides[get_classifier] = classifier.client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    DB_FILE.unlink(missing_ok=True)


@pytest.fixture
def sync_db():
    """Synchronous handle on the test database for seeding and assertions."""
    engine = create_engine(f"sqlite:///{DB_FILE}")
    yield engine
    engine.dispose()


def token_for(uid: str, email: str = None, name: str = None) -> str:
    return create_local_token(uid, email=email if email is not None else f"{uid}@example.com", name=name)


def bearer(uid: str, **kw) -> dict:
    return {"Authorization": f"Bearer {token_for(uid, **kw)}"}


@pytest.fixture
def register(client):
    """Register a subject and return (user_id, auth headers)."""
    def _register(uid: str, **kw):
        headers = bearer(uid, **kw)
        res = client.post("/api/v1/auth/register", headers=headers)
        assert res.status_code == 201, res.text
        return res.json()["data"]["id"], headers
    return _register


@pytest.fixture
def set_role(sync_db):
    def _set_role(user_id: int, role: str):
        with sync_db.begin() as conn:
            conn.execute(text("UPDATE users SET role = :role WHERE id = :id"), {"role": role, "id": user_id})
    return _set_role


@pytest.fixture
def admin(register, set_role):
    user_id, headers = register("admin-uid", name="Admin")
    set_role(user_id, "ADMIN")
    return user_id, headers


@pytest.fixture
def officer(register, set_role):
    user_id, headers = register("officer-uid", name="Officer")
    set_role(user_id, "OFFICER")
    return user_id, headers


@pytest.fixture
def auth_headers():
    """Build Authorization headers for an arbitrary subject without registering it."""
    return bearer


class RecordingMirror:
    """Wraps the configured verifier and records every role mirrored to it."""

    name = "recording"

    def __init__(self, inner):
        self.inner = inner
        self.mirrored = []

    async def verify(self, token):
        return await self.inner.verify(token)

    def mirror_role(self, subject_id, role):
        self.mirrored.append((subject_id, role))


@pytest.fixture
def mirror(client):
    saved = app.state.identity
    app.state.identity = RecordingMirror(saved)
    yield app.state.identity
    app.state.identity = saved
