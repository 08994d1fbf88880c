from __future__ import annotations
import logging
from dataclasses import dataclass

from shadowai.config import Settings
from shadowai.core.errors import PersistenceError
from shadowai.db.gateway import PersistenceGateway
from shadowai.schemas.billing import SubscriptionStatus

logger = logging.getLogger(__name__)

FREE_TIER = "free"
PREMIUM_TIER = "premium"


@dataclass(frozen=True)
class TierSelection:
    tier: str
    token_budget: int
    model: str
    subscribed: bool = False


class SubscriptionResolver:
    """Maps a user's billing status to a model and token budget."""

    def __init__(self, gateway: PersistenceGateway, settings: Settings) -> None:
        self.gateway = gateway
        self.settings = settings

    def free(self) -> TierSelection:
        return TierSelection(FREE_TIER, self.settings.free_token_budget, self.settings.free_model)

    async def status(self, user_id: str) -> SubscriptionStatus:
        row = await self.gateway.get_subscriber(user_id)
        if row is None:
            return SubscriptionStatus()
        return SubscriptionStatus(
            subscribed=row.subscribed,
            subscription_tier=row.subscription_tier,
            subscription_end=row.subscription_end,
        )

    async def resolve_tier(self, user_id: str) -> TierSelection:
        # A failed lookup must not block the chat turn
        try:
            row = await self.gateway.get_subscriber(user_id)
        except PersistenceError:
            logger.warning("Subscription lookup failed for user=%s; using free tier", user_id)
            return self.free()

        if row is None or not row.subscribed:
            return self.free()
        return TierSelection(
            tier=row.subscription_tier or PREMIUM_TIER,
            token_budget=self.settings.premium_token_budget,
            model=self.settings.premium_model,
            subscribed=True,
        )
