from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: str = Field(..., pattern=r"^(user|assistant|system)$")
    content: str


class TurnRequest(BaseModel):
    message: str


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    role: str
    content: str
    created_at: datetime


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    created_at: datetime
    updated_at: datetime


class TurnResponse(BaseModel):
    conversationId: int
    title: Optional[str] = None
    userMessage: MessageOut
    assistantMessage: MessageOut
    tier: str
    model: str


class PlanInfo(BaseModel):
    id: str
    name: str
    model: str
    max_tokens: int


class PlansResponse(BaseModel):
    plans: List[PlanInfo]
