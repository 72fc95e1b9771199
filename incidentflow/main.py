"""IncidentFlow: incident tracking with permission-gated, audited mutations.

FastAPI entry point with lifespan management, CORS and error handling.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import api_router
from .config import DEFAULT_SECRET_KEY
from .database import close_engine, create_tables, get_session_factory
from .dependencies import get_app_config
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .seed import run_startup_seed
from .utils.logging import get_logger, setup_logging

VERSION = "1.0.0"

config = get_app_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("incidentflow.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("incidentflow_starting", host=config.host, port=config.port)

    if config.secret_key == DEFAULT_SECRET_KEY:
        if not config.debug:
            raise RuntimeError(
                "INSECURE_SECRET_KEY: default secret_key detected in production mode. "
                "Set a strong, unique SECRET_KEY in .env before deploying."
            )
        logger.warning("insecure_secret_key", hint="Set SECRET_KEY in .env before deploying")

    await create_tables(config)

    try:
        await run_startup_seed(get_session_factory(config), config)
    except Exception as e:
        logger.error("startup_seed_failed", error=str(e), exc_info=True)

    logger.info("incidentflow_started")
    yield

    await close_engine()
    logger.info("incidentflow_stopped")


app = FastAPI(
    title="IncidentFlow",
    description="Incident tracking with role-based authorization and an audit trail",
    version=VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Request ID added LAST so it runs FIRST
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/health")
async def health():
    return {"name": config.app_name, "version": VERSION, "status": "operational"}


def main():
    """Run the IncidentFlow server."""
    uvicorn.run(
        "incidentflow.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
