"""HTTP fixtures: the app wired to the per-test SQLite session and fake gateway."""

from typing import Callable, Dict

from fastapi.testclient import TestClient
import pytest

from roombook.api.dependencies.database import get_db
from roombook.api.dependencies.services import get_gateway
from roombook.auth import create_access_token
from roombook.core.enums import RoleName
from roombook.main import app

ADMIN_ID = "01JADMIN000000000000000000"


@pytest.fixture
def client(db, gateway):
    """Create a test client bound to the test database."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(user_id: str, **claims) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, **claims)}"}

    return _headers


@pytest.fixture
def admin_headers(auth_headers) -> Dict[str, str]:
    return auth_headers(ADMIN_ID, role=RoleName.ADMIN.value)
