from __future__ import annotations
import logging
from typing import Any, List, Optional
import httpx

from shadowai.core.errors import ProtocolError, UpstreamError
from shadowai.providers.base import as_payload_messages, raise_for_upstream
from shadowai.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)


class ChatCompletionsProvider:
    """OpenAI-compatible `/chat/completions` endpoint (AI21 Studio by default).

    One POST per call. No retry: the caller decides whether to resubmit.
    """

    id = "chat_completions"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        temperature: float = 0.7,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = base_url.rstrip("/") + "/chat/completions"
        self._api_key = api_key
        self.temperature = temperature
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    async def complete(self, messages: List[ChatMessage], token_budget: int, model: str) -> str:
        payload = {
            "model": model,
            "messages": as_payload_messages(messages),
            "max_tokens": token_budget,
            "temperature": self.temperature,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, trust_env=True, transport=self._transport) as client:
                resp = await client.post(self.url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"[{self.id}] request failed: {e.__class__.__name__}") from e

        raise_for_upstream(resp, self.id)

        try:
            obj: Any = resp.json()
        except ValueError as e:
            raise ProtocolError("Invalid AI response format") from e
        try:
            content = obj["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProtocolError("Invalid AI response format") from e
        if not isinstance(content, str):
            raise ProtocolError("Invalid AI response format")

        logger.debug("%s reply model=%s chars=%d", self.id, obj.get("model", model), len(content))
        return content.strip()
