from __future__ import annotations
from typing import List

from shadowai.schemas.chat import ChatMessage


class EchoProvider:
    """Offline stand-in used when no completion credentials are configured."""

    id = "mock"

    async def complete(self, messages: List[ChatMessage], token_budget: int, model: str) -> str:
        last_user = next((m for m in reversed(messages) if m.role == "user"), None)
        said = last_user.content if last_user else ""
        return f"[{model}-mock] You said: '{said}'"
