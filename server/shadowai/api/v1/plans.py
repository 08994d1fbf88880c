from fastapi import APIRouter, Depends

from shadowai.config import Settings, get_settings
from shadowai.schemas.chat import PlanInfo, PlansResponse
from shadowai.services.subscriptions import FREE_TIER, PREMIUM_TIER

router = APIRouter()


@router.get("/plans", response_model=PlansResponse)
async def get_plans(settings: Settings = Depends(get_settings)) -> PlansResponse:
    """Available plans with the model and reply cap each one grants."""
    return PlansResponse(
        plans=[
            PlanInfo(id=FREE_TIER, name="Free", model=settings.free_model, max_tokens=settings.free_token_budget),
            PlanInfo(
                id=PREMIUM_TIER,
                name="Premium",
                model=settings.premium_model,
                max_tokens=settings.premium_token_budget,
            ),
        ]
    )
