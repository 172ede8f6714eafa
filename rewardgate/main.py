import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from rewardgate.config import Settings, settings as default_settings
from rewardgate.context import AppContext
from rewardgate.middleware.cors import add_cors
from rewardgate.middleware.security_headers import SecurityHeadersMiddleware
from rewardgate.middleware.rate_limit import init_rate_limiter, add_rate_limit_exception_handler

from rewardgate.api.public import router as public_router
from rewardgate.api.admin import router as admin_router


def create_app(settings: Optional[Settings] = None, ctx: Optional[AppContext] = None) -> FastAPI:
    settings = settings or (ctx.settings if ctx else default_settings)
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = ctx or AppContext(settings)
        app.state.ctx = context
        await context.start()
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(title="Reward Gate", lifespan=lifespan)

    # CORS (restrict to the game's domain in production)
    add_cors(app, settings.ALLOWED_ORIGINS)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware, app_env=settings.APP_ENV)

    # Rate limiter (slowapi)
    init_rate_limiter(app)
    add_rate_limit_exception_handler(app)

    # Routes
    app.include_router(public_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    def health():
        return {"ok": True, "env": settings.APP_ENV}

    return app
