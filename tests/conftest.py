"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from itertools import count
from typing import AsyncGenerator, List

import pytest
from httpx import ASGITransport, AsyncClient

from contracts.schemas.notification import Notification
from contracts.schemas.user import NotificationPreferences
from contracts.utils.security import pwd_context
from gateway.config import Settings
from gateway.main import create_app
from gateway.services.notifications import NotificationDispatcher

API = "/api/v1"

# Minimum bcrypt cost keeps the auth tests fast
pwd_context.update(bcrypt__rounds=4)

_emails = count(1)


class RecordingDispatcher(NotificationDispatcher):
    """Keeps dispatched notifications for assertions."""

    def __init__(self):
        self.sent: List[Notification] = []

    async def dispatch(self, notification: Notification, preferences: NotificationPreferences) -> None:
        self.sent.append(notification)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        JWT_SECRET="test-secret",
        STORE_BACKEND="memory",
        CACHE_BACKEND="memory",
        RATE_LIMIT_PER_MINUTE=1000,
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
async def app(settings, dispatcher) -> AsyncGenerator:
    """Application with its lifespan running (store opened, catalog seeded)."""
    application = create_app(settings, dispatcher)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app) -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def services(app):
    return app.state.services


async def register(client: AsyncClient, email: str = None, password: str = "secret123", name: str = "Priya Sharma") -> dict:
    """Register a user and return its auth data plus ready-made headers."""
    email = email or f"user{next(_emails)}@example.com"
    response = await client.post(
        f"{API}/auth/register",
        json={"email": email, "password": password, "name": name, "accepted_terms": True},
    )
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    data["email"] = email
    data["password"] = password
    data["headers"] = {"Authorization": f"Bearer {data['tokens']['access_token']}"}
    return data


@pytest.fixture
async def user(client) -> dict:
    return await register(client)


@pytest.fixture
async def other_user(client) -> dict:
    return await register(client, name="Rahul Verma")


@pytest.fixture
def booking_day() -> date:
    """A day a few days ahead, always in the future for 24h facilities."""
    return date.today() + timedelta(days=3)


@pytest.fixture
def sample_report_text() -> str:
    """Lab report text with biomarker lines."""
    return "\n".join(
        [
            "City Diagnostics - Lipid Profile",
            "Patient Name: Priya Sharma",
            "Age: 42",
            "Sample Date: 2024-11-02",
            "Total Cholesterol: 245 mg/dL (125-200)",
            "LDL Cholesterol: 162 mg/dL (0-100)",
            "HDL Cholesterol: 48 mg/dL (40-60)",
            "Triglycerides: 180 mg/dL (0-150)",
            "Fasting Glucose: 92 mg/dL (70-100)",
            "Hemoglobin: 13.5 g/dL (12-16)",
            "Urine Glucose: Negative",
        ]
    )
