from __future__ import annotations
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import log as logconf
from .config import Settings
from .errors import SignatureInvalid, TicketingError, ValidationFailed
from .helpers import is_valid_email, normalize_email
from .infra.sql import Database, Gated, make_database
from .model.capacity import check_remaining_capacity, ensure_capacity
from .model.db import create_schema
from .model.signups import register_signup
from .model.tickets import issue_ticket, lookup_ticket
from .notify import Notifier, signup_summary, ticket_summary
from .payments import COMPLETED, PaymentAdapter, StripeGateway

HERE = Path(__file__).parent
templates = Jinja2Templates(directory=str(HERE / "templates"))

log = structlog.get_logger(__name__)

SITE_NAME = "Room No. 4"
GENERIC_5XX = "internal error, please try again later"


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.db
    async with database.sessions() as session:
        yield session


def get_gated(request: Request) -> Gated:
    return request.app.state.db.gated


def get_gateway(request: Request) -> PaymentAdapter:
    return request.app.state.gateway


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway: Optional[PaymentAdapter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application. Without explicit settings they are read from the
    environment, which raises ConfigError when Stripe is not configured.
    """
    if settings is None:
        settings = Settings.from_env()
    logconf.configure(settings.log_level, settings.log_json)

    if not settings.stripe_webhook_secret:
        log.warning("webhook_secret_missing",
                    detail="all webhook deliveries will be rejected")

    app = FastAPI(
        title="ticketdesk",
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings
    app.mount("/static", StaticFiles(directory=str(HERE / "static")),
              name="static")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        log.info("starting", ticket_limit=settings.ticket_limit,
                 database=settings.database_url.split("://", 1)[0],
                 mail=settings.mail_enabled,
                 telegram=settings.telegram_enabled)

    @app.on_event("startup")
    async def _db_init():
        app.state.db = make_database(settings.database_url)
        async with app.state.db.engine.begin() as conn:
            await create_schema(conn)

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            timeout=5.0,
            transport=transport,
        )
        app.state.notifier = Notifier(app.state.http, settings)
        app.state.gateway = gateway or StripeGateway(
            secret_key=settings.stripe_secret_key,
            price_id=settings.stripe_price_id,
            webhook_secret=settings.stripe_webhook_secret,
            public_url=settings.public_url,
        )

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _db_stop():
        db = getattr(app.state, "db", None)
        if db is not None:
            await db.dispose()
            app.state.db = None

    # ----------------------------
    # Errors
    # ----------------------------
    @app.exception_handler(TicketingError)
    async def _ticketing_error(request: Request, exc: TicketingError):
        detail = exc.detail
        if exc.status_code >= 500:
            log.error("request_failed", path=request.url.path,
                      code=exc.code, detail=exc.detail)
            detail = GENERIC_5XX
        return ORJSONResponse(
            {"error": exc.code, "detail": detail},
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        # malformed or non-object JSON bodies
        return ORJSONResponse(
            {"error": ValidationFailed.code,
             "detail": "request body must be a JSON object"},
            status_code=ValidationFailed.status_code,
        )

    @app.exception_handler(SQLAlchemyError)
    async def _db_error(request: Request, exc: SQLAlchemyError):
        log.exception("database_error", path=request.url.path)
        return ORJSONResponse(
            {"error": "INTERNAL_ERROR", "detail": GENERIC_5XX},
            status_code=500,
        )

    # ----------------------------
    # API
    # ----------------------------
    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/api/status")
    async def get_status(
        db: AsyncSession = Depends(get_db),
        gated: Gated = Depends(get_gated),
    ):
        cap = await check_remaining_capacity(db, gated, settings.ticket_limit)
        return {"limit": cap.limit, "count": cap.count,
                "soldOut": cap.sold_out}

    @app.post("/api/signup")
    async def signup(
        payload: dict,
        db: AsyncSession = Depends(get_db),
        gated: Gated = Depends(get_gated),
        notifier: Notifier = Depends(get_notifier),
    ):
        s = await register_signup(
            db, gated,
            payload.get("name"), payload.get("email"), payload.get("phone"),
            settings.ticket_limit,
        )
        await notifier.notify_operator(
            signup_summary(s.number, s.name, s.email, s.phone)
        )
        return {"success": True, "number": s.number,
                "limit": settings.ticket_limit}

    @app.post("/api/create-checkout")
    async def create_checkout(
        payload: dict,
        db: AsyncSession = Depends(get_db),
        gated: Gated = Depends(get_gated),
        gw: PaymentAdapter = Depends(get_gateway),
    ):
        email = payload.get("email")
        if not is_valid_email(email):
            raise ValidationFailed("email is required and must be valid")

        await ensure_capacity(db, gated, settings.ticket_limit)
        url = await gw.create_checkout_session(normalize_email(email))
        return {"url": url}

    # The signature covers the raw body: this route reads the bytes itself
    # and must not declare a parsed body parameter.
    @app.post("/api/stripe/webhook")
    async def stripe_webhook(
        request: Request,
        db: AsyncSession = Depends(get_db),
        gated: Gated = Depends(get_gated),
        gw: PaymentAdapter = Depends(get_gateway),
        notifier: Notifier = Depends(get_notifier),
    ):
        payload = await request.body()
        try:
            event = gw.verify_and_parse_event(
                payload, request.headers.get("stripe-signature")
            )
        except SignatureInvalid as e:
            # rejected, nothing processed
            log.warning("webhook_rejected", detail=e.detail)
            raise

        if event.kind != COMPLETED:
            log.info("webhook_ignored", type=event.type,
                     event_id=event.event_id)
            return {"received": True}

        if not event.session_id or not event.email:
            log.error("webhook_incomplete", type=event.type,
                      event_id=event.event_id, session_id=event.session_id)
            return {"received": True}

        # from here on the provider always gets an acknowledgement, failures
        # are left for manual reconciliation
        try:
            ticket, created = await issue_ticket(
                db, gated, event.session_id, normalize_email(event.email)
            )
        except TicketingError as e:
            log.error("issuance_failed", session_id=event.session_id,
                      email=event.email, event_id=event.event_id,
                      code=e.code, detail=e.detail)
            return {"received": True}

        if created:
            await notifier.notify_buyer(ticket)
            await notifier.notify_operator(ticket_summary(ticket))
        return {"received": True}

    @app.get("/api/ticket")
    async def get_ticket_for_session(
        session_id: str = "",
        db: AsyncSession = Depends(get_db),
        gated: Gated = Depends(get_gated),
        gw: PaymentAdapter = Depends(get_gateway),
    ):
        if not session_id:
            raise ValidationFailed("session_id is required")
        ticket = await lookup_ticket(db, gated, gw, session_id)
        return {"ticketCode": ticket.ticket_code, "qr": ticket.qr}

    # ----------------------------
    # Pages
    # ----------------------------
    @app.get("/success", response_class=HTMLResponse)
    async def success_page(request: Request):
        return templates.TemplateResponse(
            request, "success.html", {"site_name": SITE_NAME}
        )

    # SPA-style fallback, registered last
    @app.get("/{full_path:path}", response_class=HTMLResponse)
    async def landing_page(request: Request, full_path: str):
        if full_path.startswith("api/"):
            return ORJSONResponse(
                {"error": "NOT_FOUND", "detail": "no such endpoint"},
                status_code=404,
            )
        return templates.TemplateResponse(
            request,
            "landing.html",
            {
                "site_name": SITE_NAME,
                "limit": settings.ticket_limit,
                "canceled": request.query_params.get("canceled") == "1",
            },
        )

    return app

