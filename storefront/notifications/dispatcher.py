"""
Notifications — ドメインイベント → ユーザー通知

注文・返金のコマンドが返したイベントを通知レコードに変換して書き込む。
書き込みはベストエフォート: 失敗はログに残すだけで、元の状態遷移には影響しない。
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..messaging import DomainEvent
from ..orders.commands import is_cart_order
from ..orders.events import (
    OrderCreated,
    OrderDelivered,
    OrderPaid,
    OrderShipped,
    RefundApproved,
    RefundProcessed,
    RefundRejected,
    RefundRequested,
)
from .cache import NotificationCountCache
from .commands import create_notification

logger = logging.getLogger(__name__)


@dataclass
class NotificationData:
    user_id: str
    type: str
    title: str
    message: str
    priority: str = "high"
    order_id: str | None = None
    product_name: str | None = None
    amount: float | None = None


def _order_placed(e: OrderCreated) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_order",
        title="Order Placed",
        message=f"Your order for {e.product_name} has been placed successfully. "
        f"Total: ${e.total_amount:.2f}",
        order_id=e.order_id,
        product_name=e.product_name,
        amount=e.total_amount,
    )


def _payment_successful(e: OrderPaid) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_payment",
        title="Payment Successful",
        message=f"Your payment of ${e.amount:.2f} for {e.product_name} has been "
        "processed successfully. Your order is being prepared for shipment.",
        priority="medium",
        order_id=e.order_id,
        product_name=e.product_name,
        amount=e.amount,
    )


def _order_shipped(e: OrderShipped) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_shipping",
        title="Order Shipped",
        message=f"Your order for {e.product_name} has been shipped! "
        f"Tracking number: {e.tracking_number}",
        order_id=e.order_id,
        product_name=e.product_name,
    )


def _order_delivered(e: OrderDelivered) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_delivery",
        title="Order Delivered",
        message=f"Your order for {e.product_name} has been delivered! Enjoy your purchase.",
        order_id=e.order_id,
        product_name=e.product_name,
    )


def _refund_requested(e: RefundRequested) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_refund",
        title="Refund Request Submitted",
        message=f"Your refund request for {e.product_name} has been submitted. "
        "We'll review it within 2-3 business days.",
        order_id=e.order_id,
        product_name=e.product_name,
        amount=e.amount,
    )


def _refund_approved(e: RefundApproved) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_refund",
        title="Refund Approved",
        message=f"Your refund request for {e.product_name} has been approved. "
        f"${e.amount:.2f} will be refunded to your original payment method "
        "within 5-10 business days.",
        order_id=e.order_id,
        product_name=e.product_name,
        amount=e.amount,
    )


def _refund_rejected(e: RefundRejected) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_refund",
        title="Refund Request Denied",
        message=f"Your refund request for {e.product_name} has been denied. "
        f"Reason: {e.reason}. Please contact support if you have any questions.",
        order_id=e.order_id,
        product_name=e.product_name,
    )


def _refund_processed(e: RefundProcessed) -> NotificationData:
    return NotificationData(
        user_id=e.user_id,
        type="store_refund",
        title="Refund Processed",
        message=f"Your refund of ${e.amount:.2f} for {e.product_name} has been "
        "processed successfully. The refund will appear in your account "
        "within 5-10 business days.",
        order_id=e.order_id,
        product_name=e.product_name,
        amount=e.amount,
    )


TEMPLATES = {
    "OrderCreated": _order_placed,
    "OrderPaid": _payment_successful,
    "OrderShipped": _order_shipped,
    "OrderDelivered": _order_delivered,
    "RefundRequested": _refund_requested,
    "RefundApproved": _refund_approved,
    "RefundRejected": _refund_rejected,
    "RefundProcessed": _refund_processed,
}


def build_notifications(events: list[DomainEvent]) -> list[NotificationData]:
    """
    イベント列から作るべき通知を返す。

    決済完了後に作られるカート注文には「注文受付」を出さず
    「支払い完了」だけを出す。
    """
    notifications = []
    for event in events:
        if isinstance(event, OrderCreated) and is_cart_order(event.order_id):
            continue
        template = TEMPLATES.get(event.event_type)
        if template:
            notifications.append(template(event))
    return notifications


async def dispatch_events(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    events: list[DomainEvent],
) -> int:
    """通知を書き込み、作成できた件数を返す。"""
    created = 0
    for data in build_notifications(events):
        try:
            await create_notification(
                session,
                cache,
                app_id,
                user_id=data.user_id,
                type=data.type,
                title=data.title,
                message=data.message,
                priority=data.priority,
                order_id=data.order_id,
                product_name=data.product_name,
                amount=data.amount,
            )
            created += 1
        except SQLAlchemyError:
            logger.exception("Failed to create '%s' notification for %s", data.title, data.user_id)
            await session.rollback()
    return created
