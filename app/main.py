"""FastAPI application factory and entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import close_db
from app.exceptions import create_exception_handlers
from app.middleware import TenantMiddleware

log_level = logging.DEBUG if settings.is_development else getattr(logging, settings.app_log_level)
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    force=True,
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the import API: tenant middleware, error envelope and v1 routers."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting {settings.app_name} ({settings.app_env}): "
            f"batches of {settings.import_batch_size} every {settings.import_batch_delay_ms} ms, "
            f"up to {settings.import_max_rows} rows per file"
        )
        yield
        logger.info(f"Shutting down {settings.app_name}")
        await close_db()

    app = FastAPI(
        title=settings.app_name,
        description="Bulk spreadsheet import and enrollment reconciliation for class scheduling",
        version="1.0.0",
        docs_url="/api/docs" if settings.app_debug else None,
        redoc_url="/api/redoc" if settings.app_debug else None,
        openapi_url="/api/openapi.json" if settings.app_debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [settings.app_base_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TenantMiddleware)

    for exc_class, handler in create_exception_handlers().items():
        app.add_exception_handler(exc_class, handler)

    register_routers(app)

    return app


def register_routers(app: FastAPI):
    from app.api.v1 import api_router
    from app.services.import_service import get_import_service

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness check; also reports how many import wizards are open."""
        return {
            "status": "healthy",
            "app": settings.app_name,
            "env": settings.app_env,
            "active_import_sessions": get_import_service().active_session_count(),
        }


app = create_app()


def main():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.app_log_level.lower(),
    )


if __name__ == "__main__":
    main()
