from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dao_radar import __version__
from dao_radar.config import common_settings
from dao_radar.exceptions import DaoRadarError
from dao_radar.routers.fastapi_router import router as api_router
from dao_radar.services.context import AppContext
from dao_radar.utils.logger import logger
from dao_radar.utils.startup_validation import validate_startup


async def dao_radar_error_handler(request: Request, exc: DaoRadarError) -> JSONResponse:
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, int(round(exc.retry_after))))
    if exc.code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.code, content=exc.to_dict(), headers=headers)


def create_app(context_factory: Callable[[], AppContext] = AppContext, allowed_origins: Optional[str] = None) -> FastAPI:
    """
    Build the API application.

    ``context_factory`` is called once at startup; its AppContext is closed
    on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting DAO Radar backend...")
        app.state.context = context_factory()
        try:
            yield
        finally:
            logger.info("Shutting down DAO Radar backend...")
            await app.state.context.aclose()

    app = FastAPI(title="DAO Radar", version=__version__, lifespan=lifespan)

    origins_env = common_settings.ALLOWED_ORIGINS if allowed_origins is None else allowed_origins
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if origins:
        logger.info(f"Allowed origins: {origins}")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_exception_handler(DaoRadarError, dao_radar_error_handler)

    @app.get("/healthz")
    def healthz(request: Request) -> dict:
        """Health check with component status."""
        context = getattr(request.app.state, "context", None)
        if context is None:
            return {"status": "starting"}
        return {
            "status": "ok",
            "version": __version__,
            "rpc_client_open": context.connection.is_open,
            "summarizer": "model" if context.summarizer.enabled else "fallback",
        }

    app.include_router(api_router)
    return app


# Run startup validation
logger.info("DAO Radar backend starting up...")
if not validate_startup():
    # Keep serving so health checks can report the failure
    logger.error("Startup validation failed. Please check configuration.")

app = create_app()


def run() -> None:
    uvicorn.run("dao_radar.main:app", host=common_settings.HOST, port=common_settings.PORT)
