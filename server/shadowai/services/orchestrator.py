"""Per-turn coordination of persistence, tier selection and completion.

A turn is: persist the user's message, title the conversation on its first
message, pick the caller's tier, ask the completion endpoint for a reply over a
bounded slice of recent history, persist the reply.

There is no transaction spanning the two writes and the completion call. If
the completion fails the user message stays stored without an answer, and the
error propagates; resubmitting appends a new user message.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional

from shadowai.core.auth import AuthContext
from shadowai.core.errors import AuthError, ValidationError
from shadowai.db.gateway import PersistenceGateway
from shadowai.db.models import Conversation, Message
from shadowai.schemas.chat import ChatMessage
from shadowai.services.completion import CompletionClient
from shadowai.services.subscriptions import SubscriptionResolver, TierSelection

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
ELLIPSIS = "..."


def derive_title(text: str) -> str:
    text = text.strip()
    if len(text) > TITLE_MAX_LENGTH:
        return text[: TITLE_MAX_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    return text


def to_chat_messages(rows: List[Message]) -> List[ChatMessage]:
    return [ChatMessage(role=m.role, content=m.content) for m in rows]


@dataclass
class TurnResult:
    conversation_id: int
    user_message: Message
    assistant_message: Message
    selection: TierSelection
    title: Optional[str] = None


class ConversationOrchestrator:
    def __init__(
        self,
        gateway: PersistenceGateway,
        resolver: SubscriptionResolver,
        completion: CompletionClient,
        history_window: int = 10,
    ) -> None:
        self.gateway = gateway
        self.resolver = resolver
        self.completion = completion
        self.history_window = history_window

    @staticmethod
    def _require(auth: Optional[AuthContext]) -> AuthContext:
        if auth is None or not auth.user_id:
            raise AuthError("Missing session")
        return auth

    async def start_conversation(self, auth: AuthContext) -> Conversation:
        auth = self._require(auth)
        conv = await self.gateway.create_conversation(auth.user_id)
        logger.info("Conversation created id=%s user=%s", conv.id, auth.user_id)
        return conv

    async def list_conversations(self, auth: AuthContext, limit: int = 10) -> List[Conversation]:
        auth = self._require(auth)
        return await self.gateway.list_conversations(auth.user_id, limit=limit)

    async def delete_conversation(self, auth: AuthContext, conversation_id: int) -> None:
        auth = self._require(auth)
        await self.gateway.delete_conversation(auth.user_id, conversation_id)
        logger.info("Conversation deleted id=%s user=%s", conversation_id, auth.user_id)

    async def history(self, auth: AuthContext, conversation_id: int) -> List[Message]:
        auth = self._require(auth)
        return await self.gateway.list_messages(auth.user_id, conversation_id)

    async def send_turn(self, conversation_id: int, user_text: str, auth: AuthContext) -> TurnResult:
        auth = self._require(auth)
        text = (user_text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")

        uid = auth.user_id
        # At least one row so an empty conversation is detectable with any window
        prior = await self.gateway.recent_messages(uid, conversation_id, max(self.history_window, 1))
        first_message = not prior
        prior = prior[-self.history_window :] if self.history_window > 0 else []

        user_msg = await self.gateway.add_message(uid, conversation_id, "user", text)
        logger.info("Turn start conversation=%s user=%s message=%s", conversation_id, uid, user_msg.id)

        title = None
        if first_message:
            title = derive_title(text)
            await self.gateway.set_title(uid, conversation_id, title)

        selection = await self.resolver.resolve_tier(uid)
        history = to_chat_messages(prior) + [ChatMessage(role="user", content=text)]

        # On failure the user message is left unanswered
        reply = await self.completion.complete(history, selection.token_budget, selection.model)

        assistant_msg = await self.gateway.add_message(uid, conversation_id, "assistant", reply)
        logger.info(
            "Turn done conversation=%s tier=%s model=%s reply=%s",
            conversation_id,
            selection.tier,
            selection.model,
            assistant_msg.id,
        )
        return TurnResult(
            conversation_id=conversation_id,
            user_message=user_msg,
            assistant_message=assistant_msg,
            selection=selection,
            title=title,
        )
