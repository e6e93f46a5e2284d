"""
Orders — イベント定義

注文ドメインで発生するイベント。返金ワークフローのイベントもここに置く
(返金は注文集約の状態遷移なので同じイベント列に積む)。
"""

from typing import ClassVar

from pydantic import BaseModel

from ..messaging import DomainEvent


class LineItem(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float


class ShippingInfo(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""


class OrderEvent(DomainEvent):
    order_id: str


class OrderCreated(OrderEvent):
    """注文が作成された（レガシーは pending、カート決済は直後に OrderPaid が続く）"""
    event_type: ClassVar[str] = "OrderCreated"
    user_id: str
    user_email: str
    user_name: str
    product_id: str
    product_name: str
    quantity: int
    total_amount: float
    items: list[LineItem] = []
    shipping_info: ShippingInfo | None = None


class OrderPaid(OrderEvent):
    """決済が完了した"""
    event_type: ClassVar[str] = "OrderPaid"
    user_id: str
    product_name: str
    amount: float
    payment_intent_id: str | None = None


class PaymentReferenceRecorded(OrderEvent):
    """決済参照 (payment intent) を後から補完した"""
    event_type: ClassVar[str] = "PaymentReferenceRecorded"
    payment_intent_id: str


class OrderShipped(OrderEvent):
    event_type: ClassVar[str] = "OrderShipped"
    user_id: str
    product_name: str
    tracking_number: str
    carrier: str


class OrderDelivered(OrderEvent):
    event_type: ClassVar[str] = "OrderDelivered"
    user_id: str
    product_name: str


class OrderCancelled(OrderEvent):
    event_type: ClassVar[str] = "OrderCancelled"
    user_id: str
    product_name: str
    reason: str = ""


class TrackingUpdated(OrderEvent):
    """配送タイムラインが更新された（状態遷移は伴わない）"""
    event_type: ClassVar[str] = "TrackingUpdated"
    event_count: int


class RefundRequested(OrderEvent):
    event_type: ClassVar[str] = "RefundRequested"
    user_id: str
    product_name: str
    amount: float
    reason: str


class RefundApproved(OrderEvent):
    event_type: ClassVar[str] = "RefundApproved"
    user_id: str
    product_name: str
    amount: float
    approved_by: str


class RefundRejected(OrderEvent):
    event_type: ClassVar[str] = "RefundRejected"
    user_id: str
    product_name: str
    reason: str
    rejected_by: str


class RefundProcessed(OrderEvent):
    event_type: ClassVar[str] = "RefundProcessed"
    user_id: str
    product_name: str
    amount: float
    processed_by: str
    refund_id: str | None = None


EVENT_TYPES: dict[str, type[OrderEvent]] = {
    cls.event_type: cls
    for cls in (
        OrderCreated,
        OrderPaid,
        PaymentReferenceRecorded,
        OrderShipped,
        OrderDelivered,
        OrderCancelled,
        TrackingUpdated,
        RefundRequested,
        RefundApproved,
        RefundRejected,
        RefundProcessed,
    )
}
