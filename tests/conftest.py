import json
import os
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

# Settings are read at import time.
os.environ.setdefault("FEE_API_BASE_URL", "http://upstream.test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("CACHE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feedesk.auth.schemas import CurrentUser
from feedesk.clients.fee_api import FeeApiClient, get_fee_api
from feedesk.core import models  # noqa: F401  (register tables on Base)
from feedesk.core.config import settings
from feedesk.db.session import Base, get_db
from feedesk.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
UPSTREAM_URL = "http://upstream.test"


class FakeFeeService:
    """In-process stand-in for the fee service, routed on (method, path).

    A route's body may be a callable taking the httpx.Request; raising from it
    (e.g. httpx.ConnectError) simulates a transport failure.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status_code, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {request.url.path}"})
        status_code, body = route
        if callable(body):
            body = body(request)
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def last_json(self, method: str, path: str) -> Any:
        return json.loads(self.calls(method, path)[-1].content)

    def client(self) -> FeeApiClient:
        return FeeApiClient(base_url=UPSTREAM_URL, transport=httpx.MockTransport(self.handler))


def make_token(user_id: str = "u1", roles: Optional[Dict[str, str]] = None, **claims: Any) -> str:
    payload = {"userId": user_id, "coachingRoles": roles if roles is not None else {"c1": "ADMIN"}, **claims}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory cache database per test, wired into the get_db dependency."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, future=True, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def upstream() -> AsyncGenerator[FakeFeeService, None]:
    fake = FakeFeeService()
    api = fake.client()
    app.dependency_overrides[get_fee_api] = lambda: api
    yield fake
    app.dependency_overrides.pop(get_fee_api, None)
    await api.aclose()


@pytest.fixture()
async def fee_api(upstream: FakeFeeService) -> AsyncGenerator[FeeApiClient, None]:
    api = upstream.client()
    yield api
    await api.aclose()


@pytest.fixture()
async def client(db_session: AsyncSession, upstream: FakeFeeService) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    token = make_token("u1", {"c1": "ADMIN"}, name="Asha Admin", email="asha@example.com", phone="9876500001")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def student_headers() -> Dict[str, str]:
    token = make_token("u2", {"c1": "STUDENT"}, name="Ravi Kumar", email="ravi@example.com", phone="9876543210")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_user() -> CurrentUser:
    return CurrentUser(id="u1", name="Asha Admin", coaching_roles={"c1": "ADMIN"}, token=make_token())


@pytest.fixture()
def make_record() -> Callable[..., Dict[str, Any]]:
    """Fee record as the fee service returns it (camelCase, nested member and coaching)."""

    def _make(**overrides: Any) -> Dict[str, Any]:
        record = {
            "id": "r1",
            "coachingId": "c1",
            "memberId": "m1",
            "title": "April tuition",
            "baseAmount": 1000,
            "discountAmount": 0,
            "fineAmount": 0,
            "finalAmount": 1000,
            "paidAmount": 0,
            "dueDate": "2099-04-10T00:00:00.000Z",
            "status": "PENDING",
            "taxType": "NONE",
            "taxAmount": 0,
            "member": {"id": "m1", "user": {"name": "Ravi Kumar", "phone": "9876543210"}},
            "coaching": {"name": "Bright Minds Academy", "gstNumber": None},
            "payments": [],
            "refunds": [],
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture()
def gateway_enabled(upstream: FakeFeeService) -> None:
    upstream.add("GET", "/payment/config", {"keyId": "rzp_test_1", "enabled": True})
