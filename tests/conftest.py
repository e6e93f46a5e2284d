"""Pytest fixtures for storefront tests."""

import asyncio
import json
from datetime import datetime

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from storefront.config import Settings
from storefront.db import create_schema
from storefront.marketing.email import EmailClient
from storefront.notifications.cache import NotificationCountCache
from storefront.payments import PaymentClient
from storefront.users import save_user_profile

ADMIN_ID = "admin-1"
CUSTOMER_ID = "user-1"
TEAM_ID = "team-1"


class RecordingRedis:
    """Stands in for the Redis connection; keeps everything that was published."""

    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    async def aclose(self) -> None:
        pass

    def event_types(self, channel: str | None = None) -> list[str]:
        return [
            message["event_type"]
            for ch, message in self.published
            if channel is None or ch == channel
        ]


class FakePaymentProvider:
    """In-memory payment API served through httpx.MockTransport."""

    def __init__(self):
        self.sessions: dict[str, str] = {}
        self.intents: list[dict] = []
        self.refunds: list[dict] = []
        self.requests: list[tuple[str, str]] = []
        self.refund_status_code = 200
        self.checkout_status_code = 200

    def add_intent(self, intent_id: str, amount: float, email: str, created: datetime) -> None:
        self.intents.append(
            {"id": intent_id, "amount": amount, "email": email, "created": created}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((request.method, path))
        body = json.loads(request.content) if request.content else {}

        if path == "create-checkout-session":
            if self.checkout_status_code != 200:
                return httpx.Response(self.checkout_status_code, json={"error": "unavailable"})
            session_id = f"cs_test_{len(self.sessions) + 1}"
            self.sessions[session_id] = f"pi_for_{session_id}"
            return httpx.Response(200, json={"sessionId": session_id})

        if path == "get-payment-intent":
            intent = self.sessions.get(request.url.params.get("sessionId"))
            if intent is None:
                return httpx.Response(404, json={"error": "Payment intent not found"})
            return httpx.Response(200, json={"paymentIntentId": intent, "status": "succeeded"})

        if path == "find-payment-intent":
            start = datetime.fromisoformat(body["startDate"])
            end = datetime.fromisoformat(body["endDate"])
            for intent in self.intents:
                if (
                    intent["amount"] == body["amount"]
                    and intent["email"] == body["customerEmail"]
                    and start <= intent["created"] <= end
                ):
                    return httpx.Response(200, json={"paymentIntentId": intent["id"]})
            return httpx.Response(404, json={"error": "No matching payment intent"})

        if path == "process-refund":
            if self.refund_status_code != 200:
                return httpx.Response(self.refund_status_code, json={"error": "charge_disputed"})
            self.refunds.append(body)
            return httpx.Response(
                200,
                json={
                    "refundId": f"re_{len(self.refunds)}",
                    "status": "succeeded",
                    "amount": body["amount"],
                },
            )

        return httpx.Response(404, json={"error": "unknown endpoint"})


class FakeEmailProvider:
    def __init__(self):
        self.sent: list[dict] = []
        self.failing: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["to"] in self.failing:
            return httpx.Response(500, json={"success": False, "error": "rejected"})
        self.sent.append(body)
        return httpx.Response(200, json={"success": True})


def make_settings(database_url: str, **overrides) -> Settings:
    values = dict(
        database_url=database_url,
        redis_url="redis://localhost:6379",
        payment_service_url="http://payments.test/api",
        email_service_url="http://email.test/api",
        frontend_url="http://shop.test",
        app_id="test-app",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}"


@pytest.fixture
async def session(db_url):
    engine = create_async_engine(db_url)
    await create_schema(engine)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def payments(provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return PaymentClient(client, "http://payments.test/api", "http://shop.test")


@pytest.fixture
def email_provider():
    return FakeEmailProvider()


@pytest.fixture
def email(email_provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(email_provider.handler))
    return EmailClient(client, "http://email.test/api", "info@quibble.online", "Quibble Wellness Store")


@pytest.fixture
def cache():
    return NotificationCountCache(ttl=300)


@pytest.fixture
def seeded_db(db_url):
    """Database with the schema and the admin, team and customer profiles, prepared before the app starts."""

    async def seed():
        engine = create_async_engine(db_url)
        await create_schema(engine)
        factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as s:
            await save_user_profile(s, ADMIN_ID, "admin@quibble.online", ["admin"], "Store Admin")
            await save_user_profile(s, CUSTOMER_ID, "jane@example.com", ["customer"], "Jane")
            await save_user_profile(s, TEAM_ID, "help@quibble.online", ["team_member"], "Helper")
        await engine.dispose()

    asyncio.run(seed())
    return db_url
