"""
Checkout — カート決済のブリッジ

Saga パターン（オーケストレーション型）:
  カートの明細ごとに在庫を引き当て、決済プロバイダのセッションを作る。
  途中で失敗したら、それまでに成功した引き当てを解放する
  (補償トランザクション)。

  フロー:
  ┌───────────────────────────────────────────────────────────┐
  │  start                                                     │
  │  1. 明細ごとに reserve_stock                               │
  │     └─ 失敗 → 引き当て済みを release (補償) → 409          │
  │  2. 決済セッション作成                                     │
  │     └─ 失敗 → すべて release (補償) → 502                  │
  │  3. ハンドオフ (注文情報一式) をクライアントへ返す          │
  │                                                            │
  │  complete (決済プロバイダから戻ってきたとき)                │
  │  4. cart_ 注文 → paid で注文を作成 / 既存注文 → 支払い確定  │
  │  5. 明細ごとに purchase_stock                              │
  └───────────────────────────────────────────────────────────┘

注文ドキュメントは決済が成功するまで作らない。放棄されたチェックアウトが
「支払い済みの注文」として残らないようにするため。
"""

import logging
from datetime import timedelta

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import ensure_session, utcnow
from ..errors import InsufficientStockError, PaymentProviderError
from ..inventory import commands as inventory
from ..inventory.queries import get_product_stock
from ..orders import commands as orders
from ..orders.aggregate import OrderAggregate
from ..orders.events import LineItem, OrderEvent, ShippingInfo
from ..payments import PaymentClient

logger = logging.getLogger(__name__)

CART_PRODUCT_ID = "cart_order"
DEFAULT_CUSTOMER_EMAIL = "customer@example.com"


class CheckoutHandoff(BaseModel):
    """決済プロバイダへ遷移する間クライアントが保持し、戻ってきたときに送り返す。"""

    order_id: str
    items: list[LineItem]
    customer_info: ShippingInfo | None = None
    total_price: float
    session_id: str | None = None
    saga_log: list[dict] = Field(default_factory=list)

    @property
    def product_name(self) -> str:
        if len(self.items) == 1:
            return self.items[0].name
        return f"Cart Order - {len(self.items)} items"

    @property
    def quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def customer_email(self) -> str:
        if self.customer_info and self.customer_info.email:
            return self.customer_info.email
        return DEFAULT_CUSTOMER_EMAIL

    @property
    def customer_name(self) -> str:
        if not self.customer_info:
            return ""
        return f"{self.customer_info.first_name} {self.customer_info.last_name}".strip()


class CheckoutBridge:
    """カート決済のオーケストレーター"""

    def __init__(
        self,
        session: AsyncSession,
        redis: aioredis.Redis,
        payments: PaymentClient,
    ):
        self.session = ensure_session(session)
        self.redis = redis
        self.payments = payments

    async def _release_all(self, order_id: str, reserved: list[LineItem], saga_log: list[dict]) -> None:
        for item in reversed(reserved):
            await inventory.release_stock(
                self.session, self.redis, item.product_id, item.quantity, order_id=order_id
            )
            saga_log.append(
                {
                    "action": "ReleaseStock (補償)",
                    "product_id": item.product_id,
                    "status": "COMPENSATED",
                    "timestamp": utcnow().isoformat(),
                }
            )

    async def start(
        self,
        items: list[LineItem],
        customer_info: ShippingInfo | None = None,
    ) -> CheckoutHandoff:
        """在庫を引き当ててから決済セッションを作る。"""
        order_id = orders.new_cart_order_id()
        saga_log: list[dict] = []
        reserved: list[LineItem] = []

        # ── Step 1: 明細ごとに在庫を引き当て ────────────
        for item in items:
            ok = await inventory.reserve_stock(
                self.session, self.redis, item.product_id, item.quantity, order_id=order_id
            )
            saga_log.append(
                {
                    "action": "ReserveStock",
                    "product_id": item.product_id,
                    "status": "SUCCESS" if ok else "FAILED",
                    "timestamp": utcnow().isoformat(),
                }
            )
            if not ok:
                stock = await get_product_stock(self.session, item.product_id)
                available = stock["available"] if stock else 0
                logger.info(
                    "Checkout %s: insufficient stock for %s, releasing %d reservations",
                    order_id,
                    item.product_id,
                    len(reserved),
                )
                await self._release_all(order_id, reserved, saga_log)
                raise InsufficientStockError(item.product_id, item.quantity, available)
            reserved.append(item)

        total = round(sum(item.price * item.quantity for item in items), 2)
        handoff = CheckoutHandoff(
            order_id=order_id,
            items=items,
            customer_info=customer_info,
            total_price=total,
            saga_log=saga_log,
        )

        # ── Step 2: 決済セッションを作成 ────────────────
        try:
            handoff.session_id = await self.payments.create_checkout_session(
                order_id, total, handoff.product_name
            )
        except PaymentProviderError:
            await self._release_all(order_id, reserved, saga_log)
            raise

        saga_log.append(
            {
                "action": "CreateCheckoutSession",
                "status": "SUCCESS",
                "timestamp": utcnow().isoformat(),
            }
        )
        logger.info("Checkout %s started for $%.2f", order_id, total)
        return handoff

    async def resolve_payment_reference(
        self, handoff: CheckoutHandoff, session_id: str | None
    ) -> str | None:
        """
        決済参照を解決する。見つからなくても注文は作る
        (返金処理時に recover_payment_reference で補完できる)。
        """
        try:
            if session_id:
                return await self.payments.get_payment_intent(session_id)
            now = utcnow()
            return await self.payments.find_payment_intent(
                handoff.total_price,
                handoff.customer_email,
                now - timedelta(days=1),
                now + timedelta(days=1),
            )
        except PaymentProviderError:
            logger.warning(
                "Could not resolve payment reference for %s", handoff.order_id, exc_info=True
            )
            return None

    async def complete(
        self,
        user_id: str,
        handoff: CheckoutHandoff,
        session_id: str | None = None,
    ) -> tuple[OrderAggregate, list[OrderEvent]]:
        """
        決済成功後のコールバック。

        同じハンドオフで二度呼ぶと二度目は InvalidTransitionError になる
        (注文が既に paid のため)。在庫の purchase は一度しか走らない。
        """
        payment_intent_id = await self.resolve_payment_reference(
            handoff, session_id or handoff.session_id
        )
        if not payment_intent_id:
            logger.warning("Order %s completed without a payment reference", handoff.order_id)

        if orders.is_cart_order(handoff.order_id):
            agg, events = await orders.create_paid_order(
                self.session,
                self.redis,
                order_id=handoff.order_id,
                user_id=user_id,
                user_email=handoff.customer_email,
                user_name=handoff.customer_name,
                product_id=CART_PRODUCT_ID,
                product_name=handoff.product_name,
                quantity=handoff.quantity,
                total_amount=handoff.total_price,
                payment_intent_id=payment_intent_id,
                items=handoff.items,
                shipping_info=handoff.customer_info,
            )
        else:
            agg, events = await orders.confirm_payment(
                self.session, self.redis, handoff.order_id, payment_intent_id
            )

        # ── 引き当て → 販売 ────────────────────────────
        for item in agg.line_items():
            await inventory.purchase_stock(
                self.session, self.redis, item.product_id, item.quantity, order_id=agg.id
            )

        logger.info("Checkout completed for order %s", agg.id)
        return agg, events
