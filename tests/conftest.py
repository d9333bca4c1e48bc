"""
Pytest configuration for Paygate gateway tests
"""

import os

# Settings are read once per process; pin them before the app is imported
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = ""
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from dataclasses import replace

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from main import app
from src.config.settings import get_settings
from src.database.store import MemoryPlatformStore
from src.integrations import build_default_adapters
from src.middleware.rate_limit import burst_rate_limiter
from src.models.platform import Tier
from src.services.api_key_service import ApiKeyService
from src.services.payment_router import PaymentRouter
from src.utils.jwt import create_access_token
from src.workers.webhook_dispatcher import WebhookDispatcher
from tests.utils import ProviderStub, WebhookReceiver

PROVIDER_ENV = {
    "STRIPE_SECRET_KEY": "sk_test_stripe",
    "ADYEN_API_KEY": "adyen_test_key",
    "ADYEN_MERCHANT_ACCOUNT": "PaygateECOM",
    "GODADDY_PAYMENTS_API_KEY": "gd_test_key",
    "SQUARE_ACCESS_TOKEN": "sq_test_token",
    "COINBASE_COMMERCE_API_KEY": "cb_test_key",
}


@pytest.fixture(autouse=True)
def reset_burst_limiter():
    """Each test starts with an empty per-client burst window"""
    burst_rate_limiter.reset()
    yield
    burst_rate_limiter.reset()


@pytest.fixture(autouse=True)
def clear_provider_env(monkeypatch):
    """Backends are unconfigured unless a test opts in"""
    for name in (*PROVIDER_ENV, "STRIPE_WEBHOOK_SECRET"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def configure_providers(monkeypatch):
    """Set credentials for the named backends (all of them by default)"""

    def configure(*providers: str):
        for name, value in PROVIDER_ENV.items():
            if not providers or name.split("_")[0].lower() in providers:
                monkeypatch.setenv(name, value)

    return configure


@pytest.fixture
def settings():
    """Gateway settings with immediate retries"""
    return replace(
        get_settings(),
        webhook_retry_base_seconds=0.0,
        webhook_max_attempts=3,
        webhook_failure_threshold=10,
        dispatcher_enabled=False,
    )


@pytest.fixture
def store() -> MemoryPlatformStore:
    return MemoryPlatformStore()


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def dispatcher(store, settings, receiver):
    dispatcher = WebhookDispatcher(store, settings, transport=receiver.transport)
    yield dispatcher
    await dispatcher.stop()


@pytest_asyncio.fixture
async def payment_router(provider_stub):
    router = PaymentRouter(adapters=build_default_adapters(transport=provider_stub.transport))
    yield router
    await router.aclose()


@pytest_asyncio.fixture
async def test_client(store, payment_router, dispatcher) -> AsyncClient:
    """Async client against the app with in-memory components"""
    originals = (app.state.store, app.state.payment_router, app.state.dispatcher)
    app.state.store = store
    app.state.payment_router = payment_router
    app.state.dispatcher = dispatcher
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
            yield ac
    finally:
        app.state.store, app.state.payment_router, app.state.dispatcher = originals
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(test_client: AsyncClient) -> AsyncClient:
    """Alias for test_client fixture"""
    yield test_client


@pytest.fixture
def developer_token():
    """JWT for a developer portal user"""
    return create_access_token(
        data={"sub": "dev-user-1", "email": "dev@paygate.io", "role": "developer"}
    )


@pytest.fixture
def other_developer_token():
    return create_access_token(
        data={"sub": "dev-user-2", "email": "other@paygate.io", "role": "developer"}
    )


@pytest.fixture
def auth_headers(developer_token):
    return {"Authorization": f"Bearer {developer_token}"}


@pytest.fixture
def issue_key(store):
    """Create an API key directly through the service; returns (IssuedApiKey, headers)"""

    async def issue(tier: Tier = Tier.FREE, user_id: str = "dev-user-1", **kwargs):
        issued = await ApiKeyService(store).create_key(user_id, f"{tier.value} key", tier=tier, **kwargs)
        headers = {"X-API-Key": issued.public_key, "X-API-Secret": issued.secret_key}
        return issued, headers

    return issue
