import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from alumni_payments.config import get_settings
from alumni_payments.database import get_db, init_db
from alumni_payments.errors import WebhookError
from alumni_payments.routes import get_stripe_gateway, router
from alumni_payments.schemas import WebhookResponse
from alumni_payments.stripe_gateway import StripeGateway, create_stripe_gateway
from alumni_payments.webhook import WebhookReconciler, construct_webhook_event

logger = logging.getLogger("alumni_payments")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db()
    if settings.stripe_secret_key:
        app.state.stripe_gateway = create_stripe_gateway(settings)
    else:
        app.state.stripe_gateway = None
        logger.warning("STRIPE_SECRET_KEY is not set; checkout and webhooks are disabled")
    yield


def _first_error_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    path = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return f"Invalid {path}: {first.get('msg', 'invalid value')}"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(detail, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": _first_error_message(exc)}, status_code=400)


def create_app() -> FastAPI:
    configure_logging(get_settings().log_level)

    app = FastAPI(title="Alumni Association Payments", lifespan=lifespan)
    app.include_router(router)
    register_error_handlers(app)

    @app.post("/webhooks/stripe", response_model=WebhookResponse)
    async def stripe_webhook(
        request: Request,
        stripe_signature: str = Header(None),
        db: Session = Depends(get_db),
        gateway: StripeGateway = Depends(get_stripe_gateway),
    ):
        if not stripe_signature:
            raise HTTPException(status_code=400, detail={"error": "Missing stripe-signature header"})

        webhook_secret = gateway.webhook_secret
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured")
            raise HTTPException(status_code=400, detail={"error": "Webhook secret not configured"})

        payload = await request.body()

        try:
            event = construct_webhook_event(gateway, payload, stripe_signature, webhook_secret)
        except WebhookError as exc:
            logger.warning("Rejected webhook: %s", exc.message)
            raise HTTPException(status_code=400, detail={"error": "Invalid webhook signature"})

        try:
            result = await run_in_threadpool(WebhookReconciler(db).handle_webhook_event, event)
        except Exception:
            # Non-2xx makes Stripe redeliver the event later
            logger.exception("Webhook handler failed for %s", event["type"])
            raise HTTPException(status_code=500, detail={"error": "Webhook handler failed"})

        return WebhookResponse(handled=result.handled, event_type=result.event_type)

    return app


app = create_app()
