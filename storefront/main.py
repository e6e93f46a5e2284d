"""
Storefront — FastAPI エントリーポイント

ストアの在庫・注文・決済・返金・通知・メールマーケティングを 1 つの API で提供する。
CQRS パターンに従い、Command (POST) と Query (GET) のエンドポイントを分離。
在庫と注文の状態変更はイベントストアに記録し、Redis Pub/Sub にも流す。

  ┌──────────┐     ┌────────────┐     ┌────────────────┐
  │ Frontend │────▶│ Storefront │────▶│ Payment API    │
  │          │     │  (this)    │────▶│ Email API      │
  └──────────┘     └─────┬──────┘     └────────────────┘
                         │ order_events / inventory_events
                         ▼
                      Redis Pub/Sub
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import errors, event_store
from .checkout.routes import router as checkout_router
from .config import Settings, load_settings
from .db import create_schema
from .deps import get_session
from .inventory.routes import router as inventory_router
from .marketing.email import EmailClient
from .marketing.routes import router as marketing_router
from .notifications.cache import NotificationCountCache
from .notifications.routes import router as notifications_router
from .notifications.subscriber import run_subscriber
from .orders.routes import router as orders_router
from .payments import PaymentClient
from .refunds.routes import router as refunds_router

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    errors.StoreNotInitializedError: 503,
    errors.ProductNotFoundError: 404,
    errors.OrderNotFoundError: 404,
    errors.NotificationNotFoundError: 404,
    errors.SubscriberNotFoundError: 404,
    errors.InvalidTransitionError: 409,
    errors.InsufficientStockError: 409,
    errors.InvalidStockLevelError: 409,
    errors.RefundNotEligibleError: 409,
    errors.ManualRefundRequiredError: 422,
    errors.PaymentProviderError: 502,
    errors.AnchorMoveError: 400,
    errors.InvalidTrackingEventError: 400,
    errors.NoEligibleSubscribersError: 400,
    errors.PermissionDeniedError: 403,
}


async def storefront_error_handler(request: Request, exc: errors.StorefrontError):
    status = ERROR_STATUS.get(type(exc), 400)
    if status >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


def create_app(
    settings: Settings,
    *,
    redis: aioredis.Redis | None = None,
    payments: PaymentClient | None = None,
    email: EmailClient | None = None,
    notification_cache: NotificationCountCache | None = None,
) -> FastAPI:
    """
    アプリを組み立てる。

    redis / payments / email を渡すとそれを使う (テストで差し替える)。
    渡さなければ lifespan の中で設定から作る。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        engine = create_async_engine(settings.database_url, echo=False)
        await create_schema(engine)
        async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        http_client = httpx.AsyncClient(timeout=30.0)
        redis_pool = (
            redis
            if redis is not None
            else aioredis.from_url(settings.redis_url, decode_responses=True)
        )

        app.state.settings = settings
        app.state.session_factory = async_session
        app.state.redis = redis_pool
        app.state.payments = payments or PaymentClient(
            http_client, settings.payment_service_url, settings.frontend_url
        )
        app.state.email = email or EmailClient(
            http_client,
            settings.email_service_url,
            settings.from_email,
            settings.from_name,
        )
        app.state.notification_cache = notification_cache or NotificationCountCache(
            ttl=settings.notification_cache_ttl
        )

        subscriber_task = None
        shutdown_event = asyncio.Event()
        if settings.notification_mode == "subscriber":
            subscriber_task = asyncio.create_task(
                run_subscriber(
                    redis_pool,
                    async_session,
                    app.state.notification_cache,
                    settings.app_id,
                    shutdown_event,
                )
            )
        logger.info("Storefront started (app_id=%s)", settings.app_id)

        yield

        if subscriber_task:
            shutdown_event.set()
            subscriber_task.cancel()
            try:
                await subscriber_task
            except asyncio.CancelledError:
                pass
        await http_client.aclose()
        if redis is None:
            await redis_pool.aclose()
        await engine.dispose()

    app = FastAPI(title="Storefront Service", lifespan=lifespan)
    app.add_exception_handler(errors.StorefrontError, storefront_error_handler)

    # CORS 設定（ストアのフロントエンドからのアクセスを許可）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.frontend_url else ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(inventory_router, tags=["inventory"])
    app.include_router(orders_router, tags=["orders"])
    app.include_router(checkout_router, tags=["checkout"])
    app.include_router(refunds_router, tags=["refunds"])
    app.include_router(notifications_router, tags=["notifications"])
    app.include_router(marketing_router, tags=["marketing"])

    # ── Event Store (監査・デバッグ用) ───────────────

    @app.get("/events")
    async def get_all_events(session: AsyncSession = Depends(get_session)):
        return await event_store.load_events(session)

    @app.get("/events/{aggregate_id}")
    async def get_aggregate_events(
        aggregate_id: str, session: AsyncSession = Depends(get_session)
    ):
        return await event_store.load_events(session, aggregate_id)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "storefront", "app_id": settings.app_id}

    return app


app = create_app(load_settings())
