"""
ED Supply Backend: medical-supply inventory for the emergency department.

ARCHITECTURE:
- FastAPI: thin HTTP layer, bearer JWT identifies the actor
- InventoryService: every quantity movement (validate, authorize, atomic
  state + ledger write, audit)
- SQLAlchemy DB: source of truth; optimistic version counter per supply
- Background: audit writer thread, daily expiration sweep

SAFETY MODEL:
- Quantities never go negative; sufficiency is re-checked inside the transaction
- Ledger entries are append-only
- Every mutating attempt, accepted or rejected, is audited
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from edsupply.api.routes import audit_logs, supplies, transactions
from edsupply.core.audit import AuditRecorder
from edsupply.core.config import settings
from edsupply.core.exceptions import InvalidArgumentError, InventoryError, error_response, internal_error
from edsupply.core.permissions import PermissionOracle
from edsupply.db.init_db import init_db
from edsupply.db.session import Database, RetryPolicy
from edsupply.jobs.expiration_sweep import start_expiration_scheduler, stop_expiration_scheduler
from edsupply.services.audit_log_service import AuditLogService
from edsupply.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None, start_background: bool = True) -> FastAPI:
    """
    Build the application around one Database context.

    start_background=False skips the expiration scheduler (tests drive the
    sweep directly). The audit recorder always runs.
    """
    database = database or Database(settings.DATABASE_URL)
    audit = AuditRecorder(database, queue_size=settings.AUDIT_QUEUE_SIZE)
    permissions = PermissionOracle(database)
    inventory = InventoryService(
        database,
        permissions,
        audit,
        retry_policy=RetryPolicy(
            max_attempts=settings.TRANSACTION_MAX_ATTEMPTS,
            backoff_seconds=settings.TRANSACTION_BACKOFF_SECONDS,
            max_backoff_seconds=settings.TRANSACTION_MAX_BACKOFF_SECONDS,
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
        1. Initialize database tables and listeners
        2. Start the audit writer
        3. Start the expiration scheduler (if enabled)

        Shutdown: stop the scheduler, drain and stop the audit writer.
        """
        try:
            logger.info("Initializing database...")
            init_db(database)
            audit.start()
            if start_background and settings.EXPIRATION_SWEEP_ENABLED:
                start_expiration_scheduler(inventory, database, audit)
            else:
                logger.info("Expiration scheduler disabled")
        except Exception as e:
            logger.error(f"Startup error: {e}", exc_info=True)
            raise

        yield

        try:
            stop_expiration_scheduler()
            audit.stop()
        except Exception as e:
            logger.error(f"Shutdown error: {e}", exc_info=True)

    app = FastAPI(
        title="ED Supply API",
        description="Emergency-department medical-supply inventory: movements, ledger, audit trail.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.audit = audit
    app.state.permissions = permissions
    app.state.inventory_service = inventory
    app.state.audit_log_service = AuditLogService(permissions, audit)

    # SECURITY: Restrict CORS to specific methods and headers (not wildcards)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
        max_age=600,
        expose_headers=["Content-Type"],
    )

    # SECURITY: Add security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return error_response(InvalidArgumentError(f"Invalid arguments: {problems}"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return error_response(internal_error(exc))

    app.include_router(supplies.router, prefix="/supplies", tags=["supplies"])
    app.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
    app.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit"])

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "audit_recorder": "running" if audit.running else "stopped",
            "audit_dropped": audit.dropped,
        }

    return app


app = create_app()
