"""
Orders — 注文集約 (Order Aggregate)

注文の状態は「フェーズ」のタグ付きユニオン 1 つで表す。
status / payment_status / refund_status の 3 軸はフェーズから導出されるので、
refund_status=processed なのに payment_status=pending、のような
ありえない組み合わせは表現できない。

状態遷移:
    pending ──pay──▶ paid ──ship──▶ shipped ──deliver──▶ delivered
       └──cancel──▶ cancelled
    shipped / delivered ──request──▶ refund_requested
    refund_requested ──approve──▶ refund_approved ──process──▶ refunded
    refund_requested ──reject──▶ refund_rejected   (終端)

Event Sourcing なので集約はイベント列から再構築する。
コマンド用メソッドは「発行すべきイベントのリスト」を返し、集約自身も
新しい状態に進む。通知などの副作用は呼び出し側が別に処理する。
"""

from datetime import datetime
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidTransitionError
from .events import (
    EVENT_TYPES,
    LineItem,
    OrderCancelled,
    OrderCreated,
    OrderDelivered,
    OrderEvent,
    OrderPaid,
    OrderShipped,
    PaymentReferenceRecorded,
    RefundApproved,
    RefundProcessed,
    RefundRejected,
    RefundRequested,
    ShippingInfo,
    TrackingUpdated,
)

Fulfillment = Literal["shipped", "delivered"]


# ── フェーズ ─────────────────────────────────────


class _Phase(BaseModel):
    model_config = ConfigDict(frozen=True)

    STATUS: ClassVar[str] = ""
    PAYMENT_STATUS: ClassVar[str] = "completed"
    REFUND_STATUS: ClassVar[str] = "none"

    @property
    def status(self) -> str:
        return self.STATUS

    @property
    def payment_status(self) -> str:
        return self.PAYMENT_STATUS

    @property
    def refund_status(self) -> str:
        return self.REFUND_STATUS


class Pending(_Phase):
    kind: Literal["pending"] = "pending"
    STATUS: ClassVar[str] = "pending"
    PAYMENT_STATUS: ClassVar[str] = "pending"


class Paid(_Phase):
    kind: Literal["paid"] = "paid"
    STATUS: ClassVar[str] = "paid"


class Shipped(_Phase):
    kind: Literal["shipped"] = "shipped"
    STATUS: ClassVar[str] = "shipped"


class Delivered(_Phase):
    kind: Literal["delivered"] = "delivered"
    STATUS: ClassVar[str] = "delivered"


class Cancelled(_Phase):
    kind: Literal["cancelled"] = "cancelled"
    STATUS: ClassVar[str] = "cancelled"
    PAYMENT_STATUS: ClassVar[str] = "pending"


class _RefundPhase(_Phase):
    # 返金フェーズ中も配送ステータスは shipped / delivered のまま
    fulfillment: Fulfillment

    @property
    def status(self) -> str:
        return self.fulfillment


class RefundRequestedPhase(_RefundPhase):
    kind: Literal["refund_requested"] = "refund_requested"
    REFUND_STATUS: ClassVar[str] = "requested"


class RefundApprovedPhase(_RefundPhase):
    kind: Literal["refund_approved"] = "refund_approved"
    REFUND_STATUS: ClassVar[str] = "approved"


class RefundRejectedPhase(_RefundPhase):
    kind: Literal["refund_rejected"] = "refund_rejected"
    REFUND_STATUS: ClassVar[str] = "rejected"


class Refunded(_Phase):
    kind: Literal["refunded"] = "refunded"
    STATUS: ClassVar[str] = "refunded"
    PAYMENT_STATUS: ClassVar[str] = "refunded"
    REFUND_STATUS: ClassVar[str] = "processed"


OrderPhase = Annotated[
    Union[
        Pending,
        Paid,
        Shipped,
        Delivered,
        Cancelled,
        RefundRequestedPhase,
        RefundApprovedPhase,
        RefundRejectedPhase,
        Refunded,
    ],
    Field(discriminator="kind"),
]


# ── 遷移関数 ─────────────────────────────────────


def pay(phase: OrderPhase) -> Paid:
    if not isinstance(phase, Pending):
        raise InvalidTransitionError(phase.kind, "confirm payment for")
    return Paid()


def ship(phase: OrderPhase) -> Shipped:
    if not isinstance(phase, Paid):
        raise InvalidTransitionError(phase.kind, "ship")
    return Shipped()


def deliver(phase: OrderPhase) -> Delivered:
    if not isinstance(phase, Shipped):
        raise InvalidTransitionError(phase.kind, "deliver")
    return Delivered()


def cancel(phase: OrderPhase) -> Cancelled:
    if not isinstance(phase, Pending):
        raise InvalidTransitionError(phase.kind, "cancel")
    return Cancelled()


def request_refund(phase: OrderPhase) -> RefundRequestedPhase:
    if not isinstance(phase, (Shipped, Delivered)):
        raise InvalidTransitionError(phase.kind, "request a refund for")
    return RefundRequestedPhase(fulfillment=phase.kind)


def approve_refund(phase: OrderPhase) -> RefundApprovedPhase:
    if not isinstance(phase, RefundRequestedPhase):
        raise InvalidTransitionError(phase.kind, "approve a refund for")
    return RefundApprovedPhase(fulfillment=phase.fulfillment)


def reject_refund(phase: OrderPhase) -> RefundRejectedPhase:
    if not isinstance(phase, RefundRequestedPhase):
        raise InvalidTransitionError(phase.kind, "reject a refund for")
    return RefundRejectedPhase(fulfillment=phase.fulfillment)


def process_refund(phase: OrderPhase) -> Refunded:
    if not isinstance(phase, RefundApprovedPhase):
        raise InvalidTransitionError(phase.kind, "process a refund for")
    return Refunded()


# ── 集約 ─────────────────────────────────────────


class OrderAggregate:
    """注文集約 — イベントから現在の状態を再構築する。"""

    def __init__(self) -> None:
        self.id: str | None = None
        self.user_id: str = ""
        self.user_email: str = ""
        self.user_name: str = ""
        self.product_id: str = ""
        self.product_name: str = ""
        self.quantity: int = 0
        self.total_amount: float = 0
        self.items: list[LineItem] = []
        self.shipping_info: ShippingInfo | None = None
        self.payment_intent_id: str | None = None
        self.refund_amount: float | None = None
        self.refund_reason: str | None = None
        self.created_at: datetime | None = None
        self.phase: OrderPhase = Pending()
        self.version: int = 0

    @property
    def status(self) -> str:
        return self.phase.status

    @property
    def payment_status(self) -> str:
        return self.phase.payment_status

    @property
    def refund_status(self) -> str:
        return self.phase.refund_status

    def line_items(self) -> list[LineItem]:
        """在庫操作の単位。単品注文は注文本体から 1 行を作る。"""
        if self.items:
            return self.items
        price = self.total_amount / self.quantity if self.quantity else 0
        return [
            LineItem(
                product_id=self.product_id,
                name=self.product_name,
                quantity=self.quantity,
                price=price,
            )
        ]

    def refund_block_reason(self) -> str | None:
        """新しい返金リクエストを受け付けられない理由 (受け付けられるなら None)。"""
        if self.status not in ("shipped", "delivered"):
            return f"order status is '{self.status}', only shipped or delivered orders are refundable"
        if self.payment_status != "completed":
            return f"payment status is '{self.payment_status}'"
        if self.refund_status != "none":
            return f"refund status is already '{self.refund_status}'"
        return None

    # ── コマンド (発行するイベントを返す) ─────────────

    def _emit(self, event: OrderEvent) -> list[OrderEvent]:
        self.apply(event)
        return [event]

    def create(
        self,
        order_id: str,
        user_id: str,
        user_email: str,
        user_name: str,
        product_id: str,
        product_name: str,
        quantity: int,
        total_amount: float,
        now: datetime,
        items: list[LineItem] | None = None,
        shipping_info: ShippingInfo | None = None,
    ) -> list[OrderEvent]:
        if self.id is not None:
            raise InvalidTransitionError(self.phase.kind, "create")
        return self._emit(
            OrderCreated(
                order_id=order_id,
                user_id=user_id,
                user_email=user_email,
                user_name=user_name,
                product_id=product_id,
                product_name=product_name,
                quantity=quantity,
                total_amount=total_amount,
                items=items or [],
                shipping_info=shipping_info,
                timestamp=now,
            )
        )

    def confirm_payment(
        self, payment_intent_id: str | None, now: datetime
    ) -> list[OrderEvent]:
        return self._emit(
            OrderPaid(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                amount=self.total_amount,
                payment_intent_id=payment_intent_id,
                timestamp=now,
            )
        )

    def record_payment_reference(
        self, payment_intent_id: str, now: datetime
    ) -> list[OrderEvent]:
        return self._emit(
            PaymentReferenceRecorded(
                order_id=self.id,
                payment_intent_id=payment_intent_id,
                timestamp=now,
            )
        )

    def ship(self, tracking_number: str, carrier: str, now: datetime) -> list[OrderEvent]:
        return self._emit(
            OrderShipped(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                tracking_number=tracking_number,
                carrier=carrier,
                timestamp=now,
            )
        )

    def deliver(self, now: datetime) -> list[OrderEvent]:
        return self._emit(
            OrderDelivered(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                timestamp=now,
            )
        )

    def cancel(self, reason: str, now: datetime) -> list[OrderEvent]:
        return self._emit(
            OrderCancelled(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                reason=reason,
                timestamp=now,
            )
        )

    def update_tracking(self, event_count: int, now: datetime) -> list[OrderEvent]:
        return self._emit(
            TrackingUpdated(order_id=self.id, event_count=event_count, timestamp=now)
        )

    def request_refund(self, reason: str, amount: float, now: datetime) -> list[OrderEvent]:
        return self._emit(
            RefundRequested(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                amount=amount,
                reason=reason,
                timestamp=now,
            )
        )

    def approve_refund(self, admin_name: str, now: datetime) -> list[OrderEvent]:
        return self._emit(
            RefundApproved(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                amount=self.refund_amount or self.total_amount,
                approved_by=admin_name,
                timestamp=now,
            )
        )

    def reject_refund(self, admin_name: str, reason: str, now: datetime) -> list[OrderEvent]:
        return self._emit(
            RefundRejected(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                reason=reason,
                rejected_by=admin_name,
                timestamp=now,
            )
        )

    def process_refund(
        self, admin_name: str, refund_id: str | None, now: datetime
    ) -> list[OrderEvent]:
        return self._emit(
            RefundProcessed(
                order_id=self.id,
                user_id=self.user_id,
                product_name=self.product_name,
                amount=self.refund_amount or self.total_amount,
                processed_by=admin_name,
                refund_id=refund_id,
                timestamp=now,
            )
        )

    # ── イベント適用メソッド ──────────────────────────

    def apply_order_created(self, event: OrderCreated) -> None:
        self.id = event.order_id
        self.user_id = event.user_id
        self.user_email = event.user_email
        self.user_name = event.user_name
        self.product_id = event.product_id
        self.product_name = event.product_name
        self.quantity = event.quantity
        self.total_amount = event.total_amount
        self.items = list(event.items)
        self.shipping_info = event.shipping_info
        self.created_at = event.timestamp
        self.phase = Pending()

    def apply_order_paid(self, event: OrderPaid) -> None:
        self.phase = pay(self.phase)
        if event.payment_intent_id:
            self.payment_intent_id = event.payment_intent_id

    def apply_payment_reference_recorded(self, event: PaymentReferenceRecorded) -> None:
        self.payment_intent_id = event.payment_intent_id

    def apply_order_shipped(self, _event: OrderShipped) -> None:
        self.phase = ship(self.phase)

    def apply_order_delivered(self, _event: OrderDelivered) -> None:
        self.phase = deliver(self.phase)

    def apply_order_cancelled(self, _event: OrderCancelled) -> None:
        self.phase = cancel(self.phase)

    def apply_tracking_updated(self, _event: TrackingUpdated) -> None:
        pass

    def apply_refund_requested(self, event: RefundRequested) -> None:
        self.phase = request_refund(self.phase)
        self.refund_amount = event.amount
        self.refund_reason = event.reason

    def apply_refund_approved(self, _event: RefundApproved) -> None:
        self.phase = approve_refund(self.phase)

    def apply_refund_rejected(self, _event: RefundRejected) -> None:
        self.phase = reject_refund(self.phase)

    def apply_refund_processed(self, _event: RefundProcessed) -> None:
        self.phase = process_refund(self.phase)

    # ── イベントリプレイ ─────────────────────────────

    def apply(self, event: OrderEvent) -> None:
        handler = {
            "OrderCreated": self.apply_order_created,
            "OrderPaid": self.apply_order_paid,
            "PaymentReferenceRecorded": self.apply_payment_reference_recorded,
            "OrderShipped": self.apply_order_shipped,
            "OrderDelivered": self.apply_order_delivered,
            "OrderCancelled": self.apply_order_cancelled,
            "TrackingUpdated": self.apply_tracking_updated,
            "RefundRequested": self.apply_refund_requested,
            "RefundApproved": self.apply_refund_approved,
            "RefundRejected": self.apply_refund_rejected,
            "RefundProcessed": self.apply_refund_processed,
        }.get(event.event_type)
        if handler:
            handler(event)

    def apply_event(self, event_type: str, event_data: dict) -> None:
        event_cls = EVENT_TYPES.get(event_type)
        if event_cls:
            self.apply(event_cls.model_validate(event_data))

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg
