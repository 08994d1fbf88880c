from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import get_settings
from fastapi import APIRouter

# API routers
from .api.v1.plans import router as plans_router
from .api.v1.chat import router as chat_router
from .api.v1.conversations import router as conversations_router
from .api.v1.billing import router as billing_router
from .core.errors import register_exception_handlers
from .core.logging import setup_logging
from .db.session import init_db


def create_app() -> FastAPI:
    settings = get_settings()
    # Setup logging early
    setup_logging(settings.log_level.upper())
    app = FastAPI(title="ShadowAI Server", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(o).rstrip("/") for o in settings.allowed_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # Mount API v1
    api_v1 = APIRouter()
    api_v1.include_router(plans_router, prefix="/v1")
    api_v1.include_router(chat_router, prefix="/v1")
    api_v1.include_router(conversations_router, prefix="/v1")
    api_v1.include_router(billing_router, prefix="/v1")
    app.include_router(api_v1, prefix="/api")

    @app.on_event("startup")
    async def _startup() -> None:
        await init_db()

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/")
    def root():
        return {"service": "shadowai", "version": "0.1.0"}

    return app


app = create_app()
