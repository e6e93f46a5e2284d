"""Custom exceptions for the storefront service."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class StoreNotInitializedError(StorefrontError):
    """Raised when a command runs before the document store is available."""

    def __init__(self) -> None:
        super().__init__("Document store not initialized")


class ProductNotFoundError(StorefrontError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(StorefrontError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransitionError(StorefrontError):
    """Raised when an order phase does not allow the requested action."""

    def __init__(self, phase: str, action: str):
        self.phase = phase
        self.action = action
        super().__init__(f"Cannot {action} an order in phase '{phase}'")


class InsufficientStockError(StorefrontError):
    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id}: "
            f"requested={requested}, available={available}"
        )


class InvalidStockLevelError(StorefrontError):
    def __init__(self, product_id: str, stock_count: int, reserved: int):
        self.product_id = product_id
        super().__init__(
            f"Stock count {stock_count} for {product_id} is below the "
            f"{reserved} units currently reserved"
        )


class RefundNotEligibleError(StorefrontError):
    """Raised when a refund request does not meet the eligibility rules."""

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Order {order_id} is not eligible for a refund: {reason}")


class ManualRefundRequiredError(StorefrontError):
    """Raised when no payment reference can be found for a refund."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(
            "No payment intent ID found for this order. This order was created "
            "before automatic refund processing was implemented. Please process "
            "this refund manually through the payment provider dashboard using "
            f"the order details (order {order_id})."
        )


class PaymentProviderError(StorefrontError):
    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Payment provider {operation} failed: {detail}")


class AnchorMoveError(StorefrontError):
    """Raised when a tracking reorder moves or drops an anchor event."""

    def __init__(self, location: str, reason: str):
        self.location = location
        super().__init__(f"Tracking anchor '{location}' {reason}")


class InvalidTrackingEventError(StorefrontError):
    pass


class NoEligibleSubscribersError(StorefrontError):
    def __init__(self, campaign_type: str):
        self.campaign_type = campaign_type
        super().__init__(f"No eligible subscribers for campaign type '{campaign_type}'")


class PermissionDeniedError(StorefrontError):
    def __init__(self, user_id: str | None, action: str):
        self.user_id = user_id
        super().__init__(f"User {user_id or '<anonymous>'} may not {action}")


class NotificationNotFoundError(StorefrontError):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class SubscriberNotFoundError(StorefrontError):
    def __init__(self, subscriber_id: str):
        self.subscriber_id = subscriber_id
        super().__init__(f"Subscriber not found: {subscriber_id}")
