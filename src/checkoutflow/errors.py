"""Custom exceptions for checkoutflow."""


class CheckoutError(Exception):
    """Base exception for all checkoutflow errors."""

    severity = "error"


class ValidationError(CheckoutError):
    """Raised when local input blocks forward progress (recoverable)."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class ProviderInitError(CheckoutError):
    """Raised when a payment gateway SDK fails to load."""

    def __init__(self, provider: str, reason: str | None = None):
        self.provider = provider
        self.reason = reason
        msg = f"Payment gateway '{provider}' is not available"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class PaymentSessionError(CheckoutError):
    """Raised when a provider payment session could not be created."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Failed to create {provider} payment session: {reason}")


class VerificationFailedError(CheckoutError):
    """Raised when the provider does not confirm a payment. No order is created.

    definitive is False when the provider could not be asked (transport
    failure, 5xx), so the payment may still have gone through.
    """

    def __init__(
        self,
        provider: str,
        correlation_id: str,
        reason: str | None = None,
        definitive: bool = True,
    ):
        self.provider = provider
        self.correlation_id = correlation_id
        self.reason = reason
        self.definitive = definitive
        msg = f"Payment verification failed for {provider} ({correlation_id})"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class OrderCreationError(CheckoutError):
    """Raised when order creation fails and no payment has been captured."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to place order: {reason}")


class CapturedPaymentError(CheckoutError):
    """Base for failures after the provider may have taken the shopper's money.

    Recorded in the capture ledger and never retried automatically.
    """

    severity = "critical"

    def __init__(
        self,
        transaction_id: str,
        provider: str,
        reason: str,
        capture_id: str | None = None,
        message: str | None = None,
    ):
        self.transaction_id = transaction_id
        self.provider = provider
        self.reason = reason
        self.capture_id = capture_id
        super().__init__(message or reason)


class OrderCreationAfterPaymentFailedError(CapturedPaymentError):
    """Raised when a verified payment could not be turned into an order."""

    def __init__(
        self,
        transaction_id: str,
        provider: str,
        reason: str,
        capture_id: str | None = None,
    ):
        super().__init__(
            transaction_id,
            provider,
            reason,
            capture_id,
            "Payment successful but failed to create order. Funds may have been "
            f"captured (transaction {transaction_id}). Please contact support.",
        )


class PaymentUnverifiedAfterCaptureError(CapturedPaymentError):
    """Raised when the gateway reported a capture but verification could not complete."""

    def __init__(
        self,
        transaction_id: str,
        provider: str,
        reason: str,
        capture_id: str | None = None,
    ):
        super().__init__(
            transaction_id,
            provider,
            reason,
            capture_id,
            "Payment may have been captured but could not be verified "
            f"(transaction {transaction_id}). Please contact support before paying again.",
        )


class PlacementError(CheckoutError):
    """Raised when order placement stopped on an unexpected failure."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Could not place order: {reason}")


class LifecycleConflictError(CheckoutError):
    """Raised when an order item is not in a state that allows the action."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Action rejected for item {item_id}: {reason}")


class BackendError(CheckoutError):
    """Raised when a backend API call fails at the transport or envelope level."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        msg = message
        if status_code is not None:
            msg = f"{message} (HTTP {status_code})"
        super().__init__(msg)


class OrderNotFoundError(CheckoutError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderItemNotFoundError(CheckoutError):
    """Raised when an item ID isn't part of the order."""

    def __init__(self, order_id: str, item_id: str):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found in order {order_id}")


class AddressNotFoundError(CheckoutError):
    """Raised when an address ID isn't among the saved addresses."""

    def __init__(self, address_id: str):
        self.address_id = address_id
        super().__init__(f"Address not found: {address_id}")


class CaptureNotFoundError(CheckoutError):
    """Raised when a capture record ID doesn't exist."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Capture record not found: {record_id}")


class InvalidSchemaVersionError(CheckoutError):
    """Raised when a stored file has an unsupported schema version."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )
