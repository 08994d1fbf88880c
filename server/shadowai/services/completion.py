from __future__ import annotations
import logging
import time
from typing import List, Optional

from shadowai.core.errors import ProtocolError, UpstreamError
from shadowai.providers.base import CompletionProvider
from shadowai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)


class CompletionClient:
    """Prepends the system prompt and delegates to the configured adapter."""

    def __init__(self, provider: CompletionProvider, system_prompt: str) -> None:
        self.provider = provider
        self.system_prompt = system_prompt

    def build_messages(self, history: List[ChatMessage], system_prompt: Optional[str] = None) -> List[ChatMessage]:
        system = ChatMessage(role="system", content=system_prompt or self.system_prompt)
        return [system, *history]

    async def complete(
        self,
        history: List[ChatMessage],
        token_budget: int,
        model: str,
        system_prompt: Optional[str] = None,
    ) -> str:
        messages = self.build_messages(history, system_prompt)
        started = time.monotonic()
        try:
            text = await self.provider.complete(messages, token_budget, model)
        except UpstreamError as e:
            logger.warning(
                "Completion failed provider=%s model=%s status=%s: %s",
                self.provider.id,
                model,
                e.upstream_status,
                e.upstream_message or e.detail,
            )
            raise
        except ProtocolError:
            logger.exception("Unexpected completion reply provider=%s model=%s", self.provider.id, model)
            raise
        logger.info(
            "Completion ok provider=%s model=%s messages=%d max_tokens=%d elapsed=%.2fs",
            self.provider.id,
            model,
            len(messages),
            token_budget,
            time.monotonic() - started,
        )
        return text
