"""FastAPI application main module.

This module builds the FastAPI application for the StoreRec recommendation
service: it wires the recommendation engine, registers the routers and the
error handler, and starts the background recompute scheduler for the
lifetime of the application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storerec import __version__
from storerec.api.logging_config import RequestLoggingMiddleware, setup_logging
from storerec.api.metrics import metrics_service
from storerec.api.routes import admin, recommend
from storerec.config import EngineConfig, load_config
from storerec.exceptions import StoreRecException
from storerec.recommender.engine import RecommendationEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[RecommendationEngine] = None,
    config: Optional[EngineConfig] = None,
    start_scheduler: bool = True,
    configure_logging: bool = False,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        engine: Engine to serve. Built from ``config`` when omitted.
        config: Engine configuration (default: read from the environment).
        start_scheduler: Run the background recompute scheduler while the
            application is up.
        configure_logging: Install the JSON log setup from the engine
            configuration when the application starts.

    Returns:
        Configured FastAPI application.
    """
    if engine is None:
        engine = build_engine(config or load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if configure_logging:
            setup_logging(engine.config.log_level, json_format=engine.config.log_json)
        if start_scheduler:
            engine.start()
        yield
        if start_scheduler:
            engine.stop()

    application = FastAPI(
        title="StoreRec API",
        description="Personalized product recommendation serving engine",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.engine = engine

    engine.scheduler.add_listener(
        lambda result: metrics_service.record_recompute(result.status.value)
    )

    application.add_middleware(RequestLoggingMiddleware)

    @application.exception_handler(StoreRecException)
    async def storerec_exception_handler(
        request: Request, exc: StoreRecException
    ) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={
                "path": str(request.url.path),
                "error_type": type(exc).__name__,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    application.include_router(recommend.router)
    application.include_router(admin.router)

    @application.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Returns:
            Dictionary with status key set to "ok".
        """
        return {"status": "ok"}

    return application


def _create_default_app() -> FastAPI:
    return create_app(config=load_config(), configure_logging=True)


app = _create_default_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storerec.api.main:app",
        host="0.0.0.0",
        port=8000,
    )
