import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from duet.api.auth import router as auth_router
from duet.api.player import router as player_router
from duet.api.routes import router as base_router
from duet.api.songs import router as songs_router
from duet.api.stats import router as stats_router
from duet.clients.gateway import BackendGateway
from duet.core.bootstrap import build_container, shutdown, start
from duet.core.config import Settings, settings as default_settings
from duet.core.errors import AuthError, DuetError

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, gateway: Optional[BackendGateway] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ---- startup -------------------------------------------------------
        container = build_container(settings, gateway)
        app.state.container = container
        await start(container)

        yield

        # ---- shutdown ------------------------------------------------------
        await shutdown(container)

    app = FastAPI(title=f"{settings.service_name}-service", lifespan=lifespan)

    # --- CORS setup ----------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,  # set True only if you use cookies
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=86400,
    )

    @app.exception_handler(DuetError)
    async def backend_error(request: Request, exc: DuetError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        if isinstance(exc, AuthError):
            code, error = 401, "auth_error"
        else:
            code, error = 502, "backend_error"
        return JSONResponse(status_code=code, content={"detail": {"error": error, "message": exc.message}})

    # Routers
    app.include_router(base_router)
    app.include_router(auth_router)
    app.include_router(songs_router)
    app.include_router(stats_router)
    app.include_router(player_router)
    return app


app = create_app()
