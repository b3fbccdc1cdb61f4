import logging
import uvicorn

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from entitynet.core.config import settings
from entitynet.core.logging_config import configure_logging
from entitynet.db.database import check_postgres_connection
from entitynet.api.entities import router as entities_router
from entitynet.api.graph import router as graph_router
from entitynet.db.pool import init_pool, close_pool, get_pool
from entitynet.services.session import SessionStore

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.sessions = SessionStore(settings.max_sessions)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def catch_unhandled_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("[api] %s %s failed", request.method, request.url.path)
            return JSONResponse(status_code=500, content={"detail": str(exc) or "Unknown error"})

    @app.get("/health")
    async def health():
        try:
            pool = get_pool()
        except RuntimeError as exc:
            return JSONResponse(
                status_code=503,
                content={"status": "unavailable", "detail": str(exc)},
            )

        try:
            await pool.fetchval("SELECT 1;")
        except Exception as exc:  # noqa: PERF203
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unavailable",
                    "detail": f"Database health check failed: {exc}",
                },
            )

        return {"status": "ok", "sessions": len(app.state.sessions)}

    @app.on_event("startup")
    async def on_startup():
        logger.info("[startup] checking Postgres connection")
        await check_postgres_connection()
        await init_pool()
        logger.info("[startup] database pool ready")

    @app.on_event("shutdown")
    async def on_shutdown():
        try:
            await close_pool()
        except Exception as exc:  # noqa: PERF203
            logger.warning("[shutdown] closing DB pool failed: %s", exc)

    # Routers
    app.include_router(graph_router, prefix=settings.api_prefix)
    app.include_router(entities_router, prefix=settings.api_prefix)

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    uvicorn.run("entitynet.main:app", host=settings.host, port=settings.port)
