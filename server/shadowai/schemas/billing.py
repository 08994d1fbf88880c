from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    planId: str = Field("premium", min_length=1)


class CheckoutResponse(BaseModel):
    url: str


class ReconcileRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)


class SubscriptionStatus(BaseModel):
    subscribed: bool = False
    subscription_tier: Optional[str] = None
    subscription_end: Optional[datetime] = None
