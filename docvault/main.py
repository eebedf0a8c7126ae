"""FastAPI application wiring for the document store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import install_exception_handlers, router as api_router
from .config import Settings, get_settings
from .domain.backup import BackupService
from .domain.documents import DocumentService
from .domain.service import AccountService
from .repository import AccountRepository, DocumentRepository, ensure_schema
from .security.tokens import SessionIssuer

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def wire_services(app: FastAPI, settings: Settings, accounts: AccountRepository, documents: DocumentRepository) -> None:
    """Attach the services used by the route dependencies to ``app.state``."""
    issuer = SessionIssuer.from_settings(settings)
    document_service = DocumentService(documents)
    app.state.session_issuer = issuer
    app.state.account_service = AccountService(
        accounts,
        issuer,
        min_password_length=settings.min_password_length,
        password_hash_iterations=settings.password_hash_iterations,
    )
    app.state.document_service = document_service
    app.state.backup_service = BackupService(accounts, document_service)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; the Postgres pool is opened by the lifespan."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
        pool = ConnectionPool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            open=False,
        )
        pool.open()
        app.state.pool = pool
        ensure_schema(pool)
        wire_services(app, settings, AccountRepository(pool), DocumentRepository(pool))
        logger.info("%s %s ready", settings.app_name, settings.version)
        try:
            yield
        finally:
            pool.close()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    install_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


configure_logging(get_settings().log_level)

app = create_app()
