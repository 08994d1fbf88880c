from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

DEFAULT_TITLE = "New Chat"
ROLES = ("user", "assistant")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC on the way in and out, on any backend.

    SQLite keeps no offset, so values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_column(*, index: bool = False, nullable: bool = False) -> Column:
    return Column(UTCDateTime(), index=index, nullable=nullable)


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(index=True, foreign_key="conversations.id")
    role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))


class Subscriber(SQLModel, table=True):
    __tablename__ = "subscribers"

    user_id: str = Field(primary_key=True)
    subscribed: bool = False
    subscription_tier: Optional[str] = None
    subscription_end: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
