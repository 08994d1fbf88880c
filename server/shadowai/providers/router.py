from __future__ import annotations
import logging
from typing import Optional
import httpx

from shadowai.config import Settings
from shadowai.providers.base import CompletionProvider
from shadowai.providers.chat_completions import ChatCompletionsProvider
from shadowai.providers.maestro import MaestroProvider
from shadowai.providers.mock import EchoProvider

logger = logging.getLogger(__name__)

PROVIDER_IDS = (ChatCompletionsProvider.id, MaestroProvider.id, EchoProvider.id)


def build_provider(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> CompletionProvider:
    """Select the single configured completion adapter."""
    pid = settings.completion_provider
    if pid not in PROVIDER_IDS:
        raise ValueError(f"Unknown completion provider: {pid}")
    if pid == EchoProvider.id:
        return EchoProvider()

    api_key = settings.completion_api_key
    if not api_key:
        # Graceful fallback for local development
        logger.warning("COMPLETION_API_KEY is not set; using mock completion provider")
        return EchoProvider()

    if pid == MaestroProvider.id:
        return MaestroProvider(
            settings.completion_base_url,
            api_key,
            timeout=settings.completion_timeout_seconds,
            transport=transport,
        )
    return ChatCompletionsProvider(
        settings.completion_base_url,
        api_key,
        temperature=settings.temperature,
        timeout=settings.completion_timeout_seconds,
        transport=transport,
    )
