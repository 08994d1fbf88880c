from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Type

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from shadowai.core.changefeed import ChangeFeed
from shadowai.core.errors import NotFoundError, PersistenceError, ValidationError
from shadowai.db.models import DEFAULT_TITLE, ROLES, Conversation, Message, Subscriber, utcnow
from shadowai.db.session import get_session

logger = logging.getLogger(__name__)

TABLES: Dict[str, Type[SQLModel]] = {
    "conversations": Conversation,
    "messages": Message,
    "subscribers": Subscriber,
}


def _model(table: str) -> Type[SQLModel]:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _pk_column(model: Type[SQLModel]):
    return model.user_id if model is Subscriber else model.id  # type: ignore[attr-defined]


def to_row(obj: SQLModel) -> Dict[str, Any]:
    return obj.model_dump(mode="json")


class PersistenceGateway:
    """Typed access to conversations, messages and subscriber status.

    The generic operations (insert / select_ordered / update / delete) act on a
    table by name. The conversation and message helpers take the caller's user
    id and only ever touch rows owned by that user: a conversation that exists
    but belongs to someone else is reported as not found.

    Every successful insert is published on the change feed.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, feed: Optional[ChangeFeed] = None) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with get_session(self._session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.exception("Database operation failed: %s", e)
            raise PersistenceError("Could not save or load your data") from e

    def _publish(self, table: str, obj: SQLModel) -> None:
        self.feed.publish(table, to_row(obj))

    # Generic table operations
    async def insert(self, table: str, row: Dict[str, Any]) -> SQLModel:
        model = _model(table)
        async with self._session() as session:
            obj = model(**row)
            session.add(obj)
            await session.flush()
            await session.refresh(obj)
        self._publish(table, obj)
        return obj

    async def select_ordered(
        self,
        table: str,
        filters: Dict[str, Any],
        order_key: str,
        *,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[SQLModel]:
        model = _model(table)
        order_col = getattr(model, order_key)
        pk = _pk_column(model)
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(model, key) == value)
        if descending:
            stmt = stmt.order_by(order_col.desc(), pk.desc())
        else:
            stmt = stmt.order_by(order_col, pk)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.exec(stmt)
            return list(result.all())

    async def update(self, table: str, row_id: Any, patch: Dict[str, Any]) -> Optional[SQLModel]:
        model = _model(table)
        async with self._session() as session:
            obj = await session.get(model, row_id)
            if obj is None:
                return None
            for key, value in patch.items():
                setattr(obj, key, value)
            session.add(obj)
            await session.flush()
            await session.refresh(obj)
            return obj

    async def delete(self, table: str, row_id: Any) -> bool:
        model = _model(table)
        async with self._session() as session:
            obj = await session.get(model, row_id)
            if obj is None:
                return False
            await session.delete(obj)
            return True

    # Conversations
    async def _owned_conversation(self, session: AsyncSession, user_id: str, conversation_id: int) -> Conversation:
        conv = await session.get(Conversation, conversation_id)
        if conv is None or conv.user_id != user_id:
            raise NotFoundError("Conversation not found")
        return conv

    async def create_conversation(self, user_id: str, title: str = DEFAULT_TITLE) -> Conversation:
        return await self.insert("conversations", {"user_id": user_id, "title": title})  # type: ignore[return-value]

    async def get_conversation(self, user_id: str, conversation_id: int) -> Conversation:
        async with self._session() as session:
            return await self._owned_conversation(session, user_id, conversation_id)

    async def list_conversations(self, user_id: str, limit: Optional[int] = 10) -> List[Conversation]:
        rows = await self.select_ordered(
            "conversations", {"user_id": user_id}, "updated_at", descending=True, limit=limit
        )
        return rows  # type: ignore[return-value]

    async def set_title(self, user_id: str, conversation_id: int, title: str) -> Conversation:
        async with self._session() as session:
            conv = await self._owned_conversation(session, user_id, conversation_id)
            conv.title = title
            conv.updated_at = utcnow()
            session.add(conv)
            await session.flush()
            await session.refresh(conv)
            return conv

    async def delete_conversation(self, user_id: str, conversation_id: int) -> None:
        async with self._session() as session:
            conv = await self._owned_conversation(session, user_id, conversation_id)
            # Delete messages first (no relationship cascade defined)
            res = await session.exec(select(Message).where(Message.conversation_id == conversation_id))
            for m in res.all():
                await session.delete(m)
            await session.delete(conv)

    # Messages
    async def add_message(self, user_id: str, conversation_id: int, role: str, content: str) -> Message:
        if role not in ROLES:
            raise ValidationError(f"Unsupported message role: {role}")
        async with self._session() as session:
            await self._owned_conversation(session, user_id, conversation_id)
            msg = Message(conversation_id=conversation_id, role=role, content=content)
            session.add(msg)
            await session.flush()
            await session.refresh(msg)
        self._publish("messages", msg)
        return msg

    async def list_messages(self, user_id: str, conversation_id: int) -> List[Message]:
        await self.get_conversation(user_id, conversation_id)
        rows = await self.select_ordered("messages", {"conversation_id": conversation_id}, "created_at")
        return rows  # type: ignore[return-value]

    async def recent_messages(self, user_id: str, conversation_id: int, limit: int) -> List[Message]:
        """Last `limit` messages of the conversation, oldest first."""
        await self.get_conversation(user_id, conversation_id)
        if limit <= 0:
            return []
        rows = await self.select_ordered(
            "messages", {"conversation_id": conversation_id}, "created_at", descending=True, limit=limit
        )
        rows.reverse()
        return rows  # type: ignore[return-value]

    async def count_messages(self, conversation_id: int) -> int:
        async with self._session() as session:
            stmt = select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
            result = await session.exec(stmt)
            return int(result.one())

    # Subscribers
    async def get_subscriber(self, user_id: str) -> Optional[Subscriber]:
        async with self._session() as session:
            return await session.get(Subscriber, user_id)

    async def find_subscriber_by_customer(self, stripe_customer_id: str) -> Optional[Subscriber]:
        rows = await self.select_ordered(
            "subscribers", {"stripe_customer_id": stripe_customer_id}, "updated_at", descending=True, limit=1
        )
        return rows[0] if rows else None  # type: ignore[return-value]

    async def upsert_subscriber(
        self,
        user_id: str,
        *,
        subscribed: bool,
        subscription_tier: Optional[str] = None,
        subscription_end: Optional[datetime] = None,
        stripe_customer_id: Optional[str] = None,
    ) -> Subscriber:
        async with self._session() as session:
            sub = await session.get(Subscriber, user_id)
            if sub is None:
                sub = Subscriber(user_id=user_id)
            sub.subscribed = subscribed
            sub.subscription_tier = subscription_tier
            sub.subscription_end = subscription_end
            if stripe_customer_id:
                sub.stripe_customer_id = stripe_customer_id
            sub.updated_at = utcnow()
            session.add(sub)
            await session.flush()
            await session.refresh(sub)
            return sub
