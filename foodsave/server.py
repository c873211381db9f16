from __future__ import annotations
from datetime import date
from typing import AsyncIterator, Callable, Optional

import httpx
import orjson
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.responses import ORJSONResponse, RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER

from .catalog import Catalog, PACKAGE_CATALOG
from .checkout import CheckoutOrchestrator
from .config import Settings
from .errors import (
    ConfigurationError, FoodSaveError, NotFoundError, UnauthorizedError,
    ValidationError,
)
from .helpers import ct_equal
from .infra import timings
from .infra.sql import make_async_engine
from .logs import configure_logging, get_logger
from .model.reservation import ReservationStore, create_schema, new_store
from .model.types import STATUSES
from .notify import NotificationDispatcher
from .payments import (
    MockPay, PaymentAdapter, SESSION_COMPLETED, SESSION_EXPIRED, new_adapter,
)
from .reconcile import ReconciliationResolver
from .webhooks import WebhookProcessor

logger = get_logger("server")

ADMIN_LIST_DEFAULT = 50
ADMIN_LIST_MAX = 200


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway: Optional[PaymentAdapter] = None,
    catalog: Catalog = PACKAGE_CATALOG,
    redis_client: Optional[redis.Redis] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    engine, SessionAsync, gated = make_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        gate_limit=settings.db_gate_limit,
    )

    app = FastAPI(title="FoodSave", default_response_class=ORJSONResponse)
    app.state.settings = settings
    app.state.catalog = catalog
    app.state.gateway = gateway or new_adapter(settings)
    app.state.redis = redis_client
    app.state.http = http_client
    app.state.notifier = NotificationDispatcher.from_settings(
        settings, http_client
    )
    app.state.engine = engine

    # ----------------------------
    # Dependencies
    # ----------------------------
    async def reservations() -> AsyncIterator[ReservationStore]:
        if settings.resv_backend == "redis":
            yield new_store(backend="redis", r=app.state.redis)
        else:
            async with SessionAsync() as session:
                yield new_store(backend="sql", db=session, gated=gated)

    def orchestrator(
        store: ReservationStore = Depends(reservations),
    ) -> CheckoutOrchestrator:
        return CheckoutOrchestrator(
            catalog=app.state.catalog,
            store=store,
            gateway=app.state.gateway,
            base_url=settings.base_url,
            today=today,
        )

    def webhook_processor(
        store: ReservationStore = Depends(reservations),
    ) -> WebhookProcessor:
        return WebhookProcessor(
            gateway=app.state.gateway,
            store=store,
            notifier=app.state.notifier,
        )

    def resolver(
        store: ReservationStore = Depends(reservations),
    ) -> ReconciliationResolver:
        return ReconciliationResolver(store=store, gateway=app.state.gateway)

    def require_admin_token(request: Request) -> None:
        if not settings.admin_token:
            raise ConfigurationError("ADMIN_TOKEN not set.")
        token = (
            request.headers.get("x-admin-token")
            or request.query_params.get("token")
            or ""
        )
        if not ct_equal(token, settings.admin_token):
            raise UnauthorizedError("Unauthorized.")

    def mockpay() -> MockPay:
        gw = app.state.gateway
        if not isinstance(gw, MockPay):
            raise NotFoundError("Not found")
        return gw

    # ----------------------------
    # Errors
    # ----------------------------
    @app.exception_handler(FoodSaveError)
    async def _foodsave_error(request: Request, exc: FoodSaveError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path,
                         error=exc.message, kind=type(exc).__name__)
        return ORJSONResponse(
            {"error": exc.message}, status_code=exc.status_code
        )

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info("starting",
                    payment_provider=app.state.gateway.name,
                    reservation_backend=settings.resv_backend,
                    mail_enabled=settings.mail_enabled)

    @app.on_event("startup")
    async def _db_init():
        if settings.resv_backend == "sql":
            async with engine.begin() as conn:
                await create_schema(conn)

    @app.on_event("startup")
    async def _redis_start():
        if settings.resv_backend == "redis" and app.state.redis is None:
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                max_connections=settings.redis_max_conn,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )
            app.state.owns_redis = True

    @app.on_event("startup")
    async def _http_client_start():
        if app.state.http is None:
            app.state.http = httpx.AsyncClient(
                timeout=5.0,
                limits=httpx.Limits(
                    max_connections=64, max_keepalive_connections=16
                ),
            )
            app.state.owns_http = True
        app.state.notifier.http = app.state.http

    @app.on_event("shutdown")
    async def _notifier_stop():
        await app.state.notifier.aclose()

    @app.on_event("shutdown")
    async def _http_client_stop():
        if getattr(app.state, "owns_http", False):
            await app.state.http.aclose()
            app.state.http = None
            app.state.notifier.http = None

    @app.on_event("shutdown")
    async def _redis_stop():
        if getattr(app.state, "owns_redis", False):
            await app.state.redis.aclose()
            app.state.redis = None

    @app.on_event("shutdown")
    async def _db_stop():
        timings.flush()
        await engine.dispose()

    # ----------------------------
    # API
    # ----------------------------
    @app.get("/api/health")
    async def health():
        return {
            "ok": True,
            "provider": app.state.gateway.name,
            "backend": settings.resv_backend,
        }

    @app.post("/api/checkout")
    async def create_checkout(
        request: Request,
        checkout: CheckoutOrchestrator = Depends(orchestrator),
    ):
        try:
            payload = orjson.loads(await request.body())
        except orjson.JSONDecodeError:
            raise ValidationError("Invalid JSON body.")
        return await checkout.create_checkout(payload)

    @app.post("/api/checkout/webhook")
    async def payments_webhook(
        request: Request,
        processor: WebhookProcessor = Depends(webhook_processor),
    ):
        payload = await request.body()
        headers = dict(request.headers)
        return await processor.handle_event(payload, headers)

    @app.get("/api/checkout/session/{session_id}")
    async def checkout_session(
        session_id: str,
        resolve: ReconciliationResolver = Depends(resolver),
    ):
        return await resolve.resolve_session(session_id)

    @app.get("/api/admin/reservations",
             dependencies=[Depends(require_admin_token)])
    async def api_admin_reservations(
        limit: int = ADMIN_LIST_DEFAULT,
        status: Optional[str] = None,
        store: ReservationStore = Depends(reservations),
    ):
        if status and status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}.")
        limit = max(1, min(limit, ADMIN_LIST_MAX))
        items = await store.list_recent(limit=limit, status=status)
        return {"reservations": [r.to_dict() for r in items]}

    # ----------------------------
    # MockPay (local development only)
    # ----------------------------
    @app.get("/mockpay/{psid}")
    async def mockpay_screen(psid: str, gw: MockPay = Depends(mockpay)):
        s = gw.get_session(psid)
        if s is None:
            raise NotFoundError("payment session not found")
        return {
            "session": s,
            "emit": f"/mockpay/{psid}/emit",
            "kinds": [SESSION_COMPLETED, SESSION_EXPIRED],
        }

    @app.post("/mockpay/{psid}/emit")
    async def mockpay_emit(
        psid: str, request: Request, gw: MockPay = Depends(mockpay),
    ):
        form = await request.form()
        if not gw.webhook_configured:
            raise ConfigurationError("MOCK_SECRET not set.")
        kind = form.get("t")
        if kind not in (SESSION_COMPLETED, SESSION_EXPIRED):
            raise ValidationError("invalid kind")
        s = gw.get_session(psid)
        if s is None:
            raise NotFoundError("payment session not found")

        payload, headers = gw.build_event(psid, kind)
        client_http: httpx.AsyncClient = app.state.http
        try:
            await client_http.post(
                settings.mock_webhook_url, content=payload, headers=headers,
            )
        except httpx.HTTPError as e:
            # the user can retry from the mock page
            logger.warning("mock_webhook_delivery_failed", session_id=psid,
                           error=repr(e))

        if kind == SESSION_COMPLETED:
            url = s["success_url"].replace("{CHECKOUT_SESSION_ID}", psid)
        else:
            url = s["cancel_url"]
        return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)

    return app
