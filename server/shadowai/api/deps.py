from __future__ import annotations
from functools import lru_cache

from fastapi import Depends

from shadowai.config import Settings, get_settings
from shadowai.core.changefeed import ChangeFeed
from shadowai.db.gateway import PersistenceGateway
from shadowai.providers.router import build_provider
from shadowai.services.checkout import CheckoutBridge
from shadowai.services.completion import CompletionClient
from shadowai.services.orchestrator import ConversationOrchestrator
from shadowai.services.subscriptions import SubscriptionResolver


@lru_cache()
def get_gateway() -> PersistenceGateway:
    return PersistenceGateway(feed=ChangeFeed())


def get_completion_client(settings: Settings = Depends(get_settings)) -> CompletionClient:
    return CompletionClient(build_provider(settings), settings.system_prompt)


def get_resolver(
    gateway: PersistenceGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> SubscriptionResolver:
    return SubscriptionResolver(gateway, settings)


def get_orchestrator(
    gateway: PersistenceGateway = Depends(get_gateway),
    resolver: SubscriptionResolver = Depends(get_resolver),
    completion: CompletionClient = Depends(get_completion_client),
    settings: Settings = Depends(get_settings),
) -> ConversationOrchestrator:
    return ConversationOrchestrator(gateway, resolver, completion, history_window=settings.history_window)


def get_checkout_bridge(
    gateway: PersistenceGateway = Depends(get_gateway),
    resolver: SubscriptionResolver = Depends(get_resolver),
    settings: Settings = Depends(get_settings),
) -> CheckoutBridge:
    return CheckoutBridge(gateway, resolver, settings)
