"""Order creation from a confirmed checkout."""

import logging
from decimal import Decimal

from .backend import Backend
from .cart import CartStore
from .errors import (
    BackendError,
    OrderCreationAfterPaymentFailedError,
    OrderCreationError,
    ValidationError,
)
from .models import (
    Address,
    CartItem,
    ItemStatus,
    Order,
    OrderItem,
    PaymentMethod,
    Provider,
    ShippingInfo,
    _money_out,
    _utc_now,
)

logger = logging.getLogger(__name__)


def order_total(cart_items: list[CartItem], shipping_charges: Decimal) -> Decimal:
    """sum(unit price x quantity) + shipping, the amount frozen into the order."""
    return sum((i.line_total for i in cart_items), Decimal("0")) + shipping_charges


class OrderCreator:
    """Materializes an order from cart, address and frozen totals.

    Called exactly once per confirmed COD choice or verified payment. It never
    retries: a retry after an ambiguous failure could create a second order.
    """

    def __init__(self, backend: Backend, cart: CartStore):
        self._backend = backend
        self._cart = cart
        self.confirmation_target: str | None = None

    async def create_order(
        self,
        cart_items: list[CartItem],
        address: Address,
        payment_method: PaymentMethod,
        payment_provider: Provider | None = None,
        transaction_id: str | None = None,
        shipping_charges: Decimal = Decimal("0"),
        idempotency_key: str | None = None,
    ) -> Order:
        """
        Create the order and clear the cart.

        Args:
            cart_items: Lines to order (a snapshot of the cart).
            address: Shipping address; copied into the order.
            payment_method: COD or ONLINE.
            payment_provider: Required for ONLINE.
            transaction_id: Verified transaction ID, required for ONLINE.
            shipping_charges: Shipping frozen at placement.
            idempotency_key: Sent to the backend so a duplicate submit is detectable.

        Returns:
            The created Order. Its items carry no server IDs until re-fetched.

        Raises:
            ValidationError: If inputs are incomplete.
            OrderCreationError: If a COD order could not be created.
            OrderCreationAfterPaymentFailedError: If an online order could not be
                created after its payment was verified.
        """
        if not cart_items:
            raise ValidationError("cart", "No items in cart")
        if payment_method == PaymentMethod.ONLINE:
            if payment_provider is None or not transaction_id:
                raise ValidationError(
                    "payment", "Online payment requires provider and transactionId"
                )
        else:
            payment_provider = None
            transaction_id = None

        shipping_info = ShippingInfo.from_address(address)
        total = order_total(cart_items, shipping_charges)
        payload = {
            "items": [i.to_order_line() for i in cart_items],
            "shippingInfo": shipping_info.to_dict(),
            "paymentMethod": payment_method.value,
            "paymentProvider": payment_provider.value if payment_provider else None,
            "transactionId": transaction_id,
            "shippingCharges": _money_out(shipping_charges),
            "totalAmount": _money_out(total),
        }

        try:
            order_id = await self._backend.create_order(payload, idempotency_key=idempotency_key)
        except BackendError as e:
            if payment_method == PaymentMethod.ONLINE:
                logger.critical(
                    "Payment %s (%s) verified but order creation failed: %s",
                    transaction_id,
                    payment_provider.value,
                    e,
                )
                raise OrderCreationAfterPaymentFailedError(
                    transaction_id, payment_provider.value, str(e)
                ) from e
            logger.error("COD order creation failed: %s", e)
            raise OrderCreationError(str(e)) from e

        order = Order(
            order_id=order_id,
            items=[
                OrderItem(
                    id="",
                    product_id=i.product_id,
                    color_id=i.color_id,
                    size=i.size,
                    quantity=i.quantity,
                    amount=i.unit_price,
                    order_status=ItemStatus.ORDERED,
                    name=i.name,
                )
                for i in cart_items
            ],
            shipping_info=shipping_info,
            payment_method=payment_method,
            shipping_charges=shipping_charges,
            total_amount=total,
            payment_provider=payment_provider,
            transaction_id=transaction_id,
            ordered_at=_utc_now(),
        )

        self._cart.clear()
        self.confirmation_target = order_id
        logger.info("Order %s placed (%s, total %s)", order_id, payment_method.value, total)
        return order
