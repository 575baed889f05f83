import os
import tempfile
from collections.abc import Generator

# must be in place before ticketbooth.config is imported
_TMP = tempfile.mkdtemp(prefix="ticketbooth-tests-")
DB_PATH = os.path.join(_TMP, "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["HOLD_BACKEND"] = "sql"
os.environ["GATEWAY"] = "mock"
os.environ["REAPER_INTERVAL_SECONDS"] = "0"
os.environ["VERIFICATION_SECRET"] = "test-verify"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "hunter2"
os.environ["PAYSTACK_PUBLIC_KEY"] = "pk_test_1234567890"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_abcdefghijklmnop"
os.environ["PUBLIC_BASE_URL"] = "https://tickets.example.com"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402

from ticketbooth.gateway import MockGateway  # noqa: E402
from ticketbooth.model import GatedAsyncSession  # noqa: E402
from ticketbooth.model.orm import Base  # noqa: E402
from ticketbooth.server import SessionAsync, app, gated, get_gateway  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db() -> None:
    # plain sqlite3 engine so resetting never touches an event loop
    engine = create_engine(f"sqlite:///{DB_PATH}")
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    engine.dispose()


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway("test-mock-secret")


@pytest.fixture
def client(gateway: MockGateway) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_gateway] = lambda: gateway
    # used as a context manager so the lifespan runs
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    r = client.post(
        "/admin/login", data={"username": "admin", "password": "hunter2"}
    )
    assert r.status_code == 200
    return client


@pytest_asyncio.fixture
async def ac():
    async with SessionAsync() as session:
        yield GatedAsyncSession(session=session, gated=gated)
