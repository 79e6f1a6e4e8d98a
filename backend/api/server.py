# api/server.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: FASTAPI SERVER
# ============================================================================
# Checkout session creation, Stripe webhook confirmation, health checks and
# dead-letter admin. Every collaborator is built in create_app() and hung
# on app.state; the lifespan owns connect/close.
# ============================================================================

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
import uvicorn
from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors import (
    CheckoutSessionError,
    ProviderNotConfiguredError,
    WebhookVerificationError,
)
from logging_config import configure_logging
from payments.confirmation_handler import ConfirmationHandler
from payments.provider import StripeProvider
from payments.session_initiator import SessionInitiator
from schemas.payment_models import (
    CheckoutSessionResponse,
    ErrorResponse,
    PurchaseRequest,
    WebhookAck,
)
from settings import Settings
from storage.dead_letters import DeadLetterQueue
from storage.entitlement_store import EntitlementStore, create_entitlement_store
from tasks.reconciliation import ReconciliationLoop, reconcile_failed_grants


VERSION = "1.0.0"

logger = structlog.get_logger(component="server")


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class HealthResponse(BaseModel):
    status: str
    message: str
    version: str
    uptime_seconds: float
    store: str
    store_reachable: bool


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    settings: Settings = app.state.settings
    settings.validate_for_startup()

    logger.info("server_starting",
                version=VERSION,
                env=settings.env,
                store=app.state.store.name,
                stripe_configured=settings.stripe_configured,
                failure_policy=settings.store_failure_policy.value)

    await app.state.store.initialize()

    if settings.reconcile_enabled:
        app.state.reconciler.start()

    yield

    logger.info("server_stopping")
    await app.state.reconciler.stop()
    await app.state.store.close()


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_initiator(request: Request) -> SessionInitiator:
    return request.app.state.initiator


def get_confirmation_handler(request: Request) -> ConfirmationHandler:
    return request.app.state.confirmation_handler


def get_store(request: Request) -> EntitlementStore:
    return request.app.state.store


def get_dead_letters(request: Request) -> DeadLetterQueue:
    return request.app.state.dead_letters


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[StripeProvider] = None,
    store: Optional[EntitlementStore] = None,
    dead_letters: Optional[DeadLetterQueue] = None,
) -> FastAPI:
    """Build the app; anything not passed in is constructed from settings."""
    if settings is None:
        settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_format)

    if provider is None:
        provider = StripeProvider(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    if store is None:
        store = create_entitlement_store(settings)
    if dead_letters is None:
        dead_letters = DeadLetterQueue(max_attempts=settings.reconcile_max_attempts)

    app = FastAPI(
        title="PoleGuessr Premium Pass",
        description="Stripe checkout and webhook confirmation for Premium Pass",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.provider = provider
    app.state.store = store
    app.state.dead_letters = dead_letters
    app.state.initiator = SessionInitiator(provider, settings)
    app.state.confirmation_handler = ConfirmationHandler(
        provider,
        store,
        dead_letters=dead_letters,
        failure_policy=settings.store_failure_policy,
    )
    app.state.reconciler = ReconciliationLoop(
        store, dead_letters, interval_seconds=settings.reconcile_interval_seconds
    )
    app.state.started_at = datetime.utcnow()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_middleware(app)
    _register_routes(app)
    return app


# ============================================================================
# MIDDLEWARE
# ============================================================================

def _register_middleware(app: FastAPI) -> None:

    @app.middleware("http")
    async def log_and_time(request: Request, call_next):
        """Log each request and add a response timing header."""
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        logger.info("http_request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round(duration, 2))
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            logger.info("route_not_found", path=request.url.path)
            return JSONResponse(status_code=404, content={"error": "Route not found"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        )
        logger.warning("request_validation_failed", path=request.url.path, details=details)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="Invalid checkout request", details=details).model_dump(),
        )


# ============================================================================
# ENDPOINTS
# ============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.post(
        "/create-checkout-session",
        response_model=CheckoutSessionResponse,
        responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    )
    async def create_checkout_session(
        request: Request,
        purchase: Optional[PurchaseRequest] = Body(default=None),
        initiator: SessionInitiator = Depends(get_initiator),
    ):
        """Create a Stripe checkout session for the Premium Pass."""
        purchase = purchase or PurchaseRequest()
        try:
            return await initiator.create_checkout_session(
                purchase, origin=request.headers.get("origin")
            )
        except ProviderNotConfiguredError as e:
            return JSONResponse(
                status_code=503,
                content=ErrorResponse(error="Payment provider not configured", details=str(e)).model_dump(),
            )
        except CheckoutSessionError as e:
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="Failed to create checkout session", details=e.message).model_dump(),
            )

    @app.post("/webhook", response_model=WebhookAck)
    async def stripe_webhook(
        request: Request,
        handler: ConfirmationHandler = Depends(get_confirmation_handler),
    ):
        """
        Stripe webhook endpoint. The body is read raw: the signature covers
        the exact bytes Stripe sent.
        """
        payload = await request.body()
        signature = request.headers.get("stripe-signature")

        try:
            result = await handler.handle(payload, signature)
        except WebhookVerificationError as e:
            return PlainTextResponse(f"Webhook Error: {e}", status_code=400)
        except ProviderNotConfiguredError as e:
            return PlainTextResponse(f"Webhook Error: {e}", status_code=503)

        if not result.acknowledged:
            return PlainTextResponse(
                f"Webhook Error: entitlement update failed: {result.error}",
                status_code=500,
            )
        return WebhookAck()

    @app.get("/health", response_model=HealthResponse)
    async def health_check(store: EntitlementStore = Depends(get_store)):
        """Liveness check."""
        uptime = (datetime.utcnow() - app.state.started_at).total_seconds()
        return HealthResponse(
            status="ok",
            message="Server is running",
            version=VERSION,
            uptime_seconds=uptime,
            store=store.name,
            store_reachable=await store.ping(),
        )

    @app.get("/test")
    async def test_endpoint():
        return {"message": "Server is working!"}

    @app.get("/stripe-status")
    async def stripe_status(request: Request):
        """Provider connectivity check."""
        status = await request.app.state.provider.check_connectivity()
        return JSONResponse(status_code=200 if status["connected"] else 503, content=status)

    @app.get("/admin/dead-letters")
    async def dead_letter_stats(dead_letters: DeadLetterQueue = Depends(get_dead_letters)):
        return await dead_letters.get_stats()

    @app.post("/admin/dead-letters/retry")
    async def retry_dead_letters(
        store: EntitlementStore = Depends(get_store),
        dead_letters: DeadLetterQueue = Depends(get_dead_letters),
    ):
        """Run one reconciliation pass now."""
        stats = await reconcile_failed_grants(store, dead_letters, due_only=False)
        remaining = (await dead_letters.get_stats())["pending"]
        return {**stats, "remaining": remaining}


# ============================================================================
# MAIN
# ============================================================================

def main() -> None:
    settings = Settings.from_env()
    uvicorn.run(
        "api.server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
