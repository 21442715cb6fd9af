"""Router test fixtures with mocked Identity service and payment gateway."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from coin_ledger_service.app import create_app
from coin_ledger_service.config import clear_settings_cache
from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.core.lifespan import lifespan
from coin_ledger_service.core.state import get_app_state, reset_app_state
from coin_ledger_service.services.authorization import AuthContext
from coin_ledger_service.services.topup_service import TopUpService

# Bearer token -> identity the mocked Identity service vouches for
IDENTITIES: dict[str, AuthContext] = {
    "tok-buyer": AuthContext("buyer-1", "buyer"),
    "tok-buyer-2": AuthContext("buyer-2", "buyer"),
    "tok-worker": AuthContext("worker-1", "worker"),
    "tok-worker-2": AuthContext("worker-2", "worker"),
    "tok-admin": AuthContext("admin-1", "admin"),
    "tok-newcomer": AuthContext("newcomer-1", "worker"),
}


def auth(token: str) -> dict[str, str]:
    """Authorization header for one of the known test tokens."""
    return {"Authorization": f"Bearer {token}"}


async def _verify_token(token: str) -> AuthContext:
    ctx = IDENTITIES.get(token)
    if ctx is None:
        raise ServiceError("UNAUTHORIZED", "Bearer token verification failed", 401, {})
    return ctx


@pytest.fixture
async def app(tmp_path):
    """Create a test app with a temporary database and mocked collaborators."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    config_content = f"""
service:
  name: "coin-ledger"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
  busy_timeout_ms: 5000
identity:
  base_url: "http://localhost:8001"
  verify_token_path: "/auth/verify"
  timeout_seconds: 10
payment_gateway:
  base_url: "http://localhost:8020"
  confirm_deposit_path: "/deposits"
  timeout_seconds: 10
withdrawals:
  minimum_coins: 200
top_ups:
  coins_per_cash_unit: 10
request:
  max_body_size: 1048576
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        mock_identity = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=_verify_token)
        state.identity_client = mock_identity

        mock_gateway = AsyncMock()
        mock_gateway.confirm_deposit = AsyncMock(return_value=10.0)
        state.payment_gateway = mock_gateway
        assert state.store is not None
        state.topup_service = TopUpService(
            store=state.store,
            payment_gateway=mock_gateway,
            coins_per_cash_unit=10,
        )

        yield test_app

    reset_app_state()
    clear_settings_cache()
    os.environ.pop("CONFIG_PATH", None)


@pytest.fixture
async def client(app):
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def seeded(app):
    """Accounts behind the known tokens: buyer-1 holds 1000 coins, worker-1 holds 500."""
    store = get_app_state().store
    assert store is not None
    store.create_account("buyer-1", "buyer@example.com", "buyer", 1000)
    store.create_account("buyer-2", "buyer2@example.com", "buyer", 0)
    store.create_account("worker-1", "w1@example.com", "worker", 500)
    store.create_account("worker-2", "w2@example.com", "worker", 0)
    store.create_account("admin-1", "admin@example.com", "admin", 0)
    return store
