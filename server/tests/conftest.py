from __future__ import annotations
import time
from typing import Any, List, Optional

import jwt
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from shadowai.config import Settings
from shadowai.core.auth import AuthContext
from shadowai.core.changefeed import ChangeFeed
from shadowai.db.gateway import PersistenceGateway
from shadowai.db.session import init_db, make_session_factory
from shadowai.schemas.chat import ChatMessage
from shadowai.services.completion import CompletionClient
from shadowai.services.orchestrator import ConversationOrchestrator
from shadowai.services.subscriptions import SubscriptionResolver

JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
WEBHOOK_SECRET = "whsec_testsecret0123456789"


class FakeProvider:
    """Records every call; replies with `reply` or raises `error`."""

    id = "fake"

    def __init__(self, reply: str = "Hi! I'm doing well.", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[dict] = []

    async def complete(self, messages: List[ChatMessage], token_budget: int, model: str) -> str:
        self.calls.append({"messages": list(messages), "token_budget": token_budget, "model": model})
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_jwt_secret=JWT_SECRET,
        completion_provider="chat_completions",
        completion_api_key="test-completion-key",
        completion_base_url="https://llm.test/v1",
        stripe_secret_key="sk_test_0123456789abcdef",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_api_base="https://billing.test",
        stripe_prices={"premium": "price_premium_test"},
        public_app_url="https://app.test",
        reconcile_delay_seconds=0,
        system_prompt="You are ShadowAI.",
    )


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def gateway(engine, feed) -> PersistenceGateway:
    return PersistenceGateway(make_session_factory(engine), feed)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def resolver(gateway, settings) -> SubscriptionResolver:
    return SubscriptionResolver(gateway, settings)


@pytest.fixture
def completion(provider, settings) -> CompletionClient:
    return CompletionClient(provider, settings.system_prompt)


@pytest.fixture
def orchestrator(gateway, resolver, completion, settings) -> ConversationOrchestrator:
    return ConversationOrchestrator(gateway, resolver, completion, history_window=settings.history_window)


@pytest.fixture
def auth() -> AuthContext:
    return AuthContext(user_id="user-1", email="user1@example.com")


def make_token(sub: str = "user-1", **claims: Any) -> str:
    payload = {
        "sub": sub,
        "email": f"{sub}@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")
