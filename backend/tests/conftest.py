"""
Shared fixtures: an in-memory SQLite database, a fixed encryption key and a
signed-request test client.
"""
import base64
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_AUTH_SECRET"] = "test-internal-secret"
os.environ["DATA_ENCRYPTION_KEY_CURRENT"] = base64.urlsafe_b64encode(b"t" * 32).decode("utf-8").rstrip("=")
os.environ["DATA_ENCRYPTION_KEY_ID"] = "k-test"
os.environ.pop("DATA_ENCRYPTION_KEY_PREVIOUS", None)
os.environ["DEFAULT_CURRENCY"] = "BRL"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from fintrack.database import Base, SessionLocal, engine  # noqa: E402
from fintrack.integrations.pluggy import get_aggregator_client  # noqa: E402
from fintrack.main import app  # noqa: E402
from fintrack.security.data_encryption import reset_encryption_config_cache  # noqa: E402
from tests.fake_aggregator import FakeAggregator  # noqa: E402
from tests.internal_auth import build_internal_auth_headers  # noqa: E402


@pytest.fixture(autouse=True)
def _schema():
    reset_encryption_config_cache()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    reset_encryption_config_cache()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


class SignedClient:
    """TestClient wrapper that signs every request for one user."""

    def __init__(self, client: TestClient, user_id: str):
        self.client = client
        self.user_id = user_id

    def request(self, method: str, path: str, **kwargs):
        headers = build_internal_auth_headers(method, path, self.user_id)
        headers.update(kwargs.pop("headers", {}))
        return self.client.request(method, path, headers=headers, **kwargs)

    def get(self, path: str, **kwargs):
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs):
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs):
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs):
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs):
        return self.request("DELETE", path, **kwargs)

    def as_user(self, user_id: str) -> "SignedClient":
        return SignedClient(self.client, user_id)


@pytest.fixture
def raw_client(aggregator):
    app.dependency_overrides[get_aggregator_client] = lambda: aggregator
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def api(raw_client) -> SignedClient:
    return SignedClient(raw_client, "user-1")
