from functools import lru_cache
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional


DEFAULT_SYSTEM_PROMPT = (
    "You are ShadowAI, a helpful AI assistant. You are knowledgeable, conversational, "
    "and provide detailed responses using markdown formatting when appropriate. "
    "Keep your responses engaging and well-structured."
)


class Settings(BaseSettings):
    server_port: int = 8000
    # Allow both localhost and 127.0.0.1 for local development
    allowed_origins: List[AnyHttpUrl] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]  # type: ignore
    public_app_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./shadowai.db"

    # Identity provider (Supabase) JWT verification
    supabase_jwt_secret: Optional[str] = None
    jwt_audience: str = "authenticated"

    # Completion endpoint; credentials never leave the server
    completion_provider: str = "chat_completions"
    completion_base_url: str = "https://api.ai21.com/studio/v1"
    completion_api_key: Optional[str] = None
    completion_timeout_seconds: float = 60.0
    temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    history_window: int = 10

    # Tiers
    free_model: str = "jamba-mini"
    premium_model: str = "jamba-large"
    free_token_budget: int = 1000
    premium_token_budget: int = 2000

    # Billing (Stripe)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_api_base: str = "https://api.stripe.com"
    stripe_prices: Dict[str, str] = {"premium": "price_premium"}
    reconcile_delay_seconds: float = 2.0

    # pydantic-settings v2 style config: load env from both ../.env (repo root) and .env
    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=("../.env", ".env"),
        extra="ignore",  # ignore env vars not defined as fields
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
