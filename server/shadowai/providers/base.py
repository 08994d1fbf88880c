from __future__ import annotations
from typing import Protocol, List, Optional, Dict, Any
import httpx

from shadowai.core.errors import UpstreamError
from shadowai.schemas.chat import ChatMessage


class CompletionProvider(Protocol):
    id: str

    async def complete(self, messages: List[ChatMessage], token_budget: int, model: str) -> str:
        """Return the single text reply for `messages` (system prompt first)."""
        ...


def upstream_error_message(resp: httpx.Response) -> Optional[str]:
    """Best-effort extraction of the provider's own error text."""
    try:
        body: Any = resp.json()
    except ValueError:
        text = resp.text.strip()
        return text[:500] or None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("message") or err.get("type")
        if isinstance(err, str):
            return err
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str):
            return detail
    return None


def raise_for_upstream(resp: httpx.Response, provider: str) -> None:
    if resp.status_code < 400:
        return
    message = upstream_error_message(resp)
    if resp.status_code == 429:
        friendly = f"[{provider}] Too many requests. Please wait a moment and try again."
    elif resp.status_code in (401, 403):
        friendly = f"[{provider}] The completion service rejected the server credentials."
    elif resp.status_code == 402:
        friendly = f"[{provider}] The completion service requires payment."
    else:
        friendly = f"[{provider}] The completion service failed (HTTP {resp.status_code})."
    raise UpstreamError(friendly, upstream_status=resp.status_code, upstream_message=message)


def as_payload_messages(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    return [m.model_dump() for m in messages]
