"""
tests/conftest.py - shared fixtures for the publish broker tests.
"""

import fnmatch
import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from core.context import build_context
from main import create_app


DEVICE_TOKEN = "test-device-token"


class FakeRedis:
    """Dict-backed stand-in for the handful of redis.Redis calls the job store makes."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.ping_error = None

    def get(self, name):
        return self.data.get(name)

    def set(self, name, value, keepttl=False):
        self.data[name] = value
        if not keepttl:
            self.ttls.pop(name, None)
        return True

    def setex(self, name, time, value):
        self.data[name] = value
        self.ttls[name] = time
        return True

    def scan_iter(self, match="*"):
        return [key for key in list(self.data) if fnmatch.fnmatch(key, match)]

    def delete(self, *names):
        removed = 0
        for name in names:
            if name in self.data:
                del self.data[name]
                self.ttls.pop(name, None)
                removed += 1
        return removed

    def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True


def build_zip(entries):
    """Zip archive bytes from a {path: bytes | str} mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for path, content in entries.items():
            archive.writestr(path, content)
    return buffer.getvalue()


@pytest.fixture
def make_zip():
    return build_zip


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ABBA_DEVICE_TOKEN=DEVICE_TOKEN,
        BROKER_VERCEL_TOKEN=None,
        VERCEL_TEAM_ID=None,
        JOB_STORE_BACKEND="memory",
        RATE_LIMIT_REQUESTS=1000,
        RATE_LIMIT_WINDOW_SECONDS=60,
        POLL_INTERVAL_SECONDS=0.01,
        POLL_TIMEOUT_SECONDS=1.0,
    )


@pytest.fixture
def auth_headers():
    return {"x-abba-device-token": DEVICE_TOKEN}


@pytest.fixture
def make_client():
    """Factory for TestClients around a freshly built broker context."""
    clients = []

    def _make(config):
        client = TestClient(create_app(build_context(config)))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, test_settings):
    return make_client(test_settings)
