from __future__ import annotations
from typing import Any, List, Optional
import httpx

from shadowai.core.errors import ProtocolError, UpstreamError
from shadowai.providers.base import raise_for_upstream
from shadowai.schemas.chat import ChatMessage


class MaestroProvider:
    """AI21 Maestro runs: the whole conversation is sent as one text input."""

    id = "ai21_maestro"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = base_url.rstrip("/") + "/maestro/runs"
        self._api_key = api_key
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    @staticmethod
    def combine(messages: List[ChatMessage]) -> str:
        return "\n".join(f"{m.role}: {m.content}" for m in messages)

    async def complete(self, messages: List[ChatMessage], token_budget: int, model: str) -> str:
        payload = {
            "model": model,
            "input": self.combine(messages),
            "output_type": {"type": "string"},
            "max_tokens": token_budget,
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
        output = obj.get("output") if isinstance(obj, dict) else None
        if not isinstance(output, str):
            raise ProtocolError("Invalid AI response format")
        return output.strip()
