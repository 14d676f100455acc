"""Utility functions for checkoutflow."""

import random
import string
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError
from .models import CartItem, Order, OrderItem, to_decimal

_BASE36 = string.digits + string.ascii_lowercase


def to_minor_units(amount: Decimal) -> int:
    """
    Convert a currency amount (rupees) to the provider's integer unit (paise).

    Only payment-provider calls take minor units; everything else stays in rupees.
    """
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    """Convert paise back to rupees."""
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


def generate_temp_order_id() -> str:
    """
    Generate a temporary order ID for correlating a payment with the provider.

    Format: TEMP_<epoch millis>_<9 base36 chars>.
    """
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"TEMP_{int(time.time() * 1000)}_{suffix}"


def parse_amount(value: str, field: str = "amount") -> Decimal:
    """
    Parse a user-supplied amount.

    Raises:
        ValidationError: If the value isn't a non-negative number.
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValidationError(field, f"'{value}' is not a number")
    if amount < 0:
        raise ValidationError(field, "must be >= 0")
    return amount


def format_price(amount: Decimal) -> str:
    """Format an amount in rupees, e.g. '₹1,299.50' or '₹650'."""
    amount = to_decimal(amount)
    if amount == amount.to_integral_value():
        return f"₹{int(amount):,}"
    return f"₹{amount:,.2f}"


def format_cart_item(item: CartItem) -> str:
    """Format a cart line for display."""
    color = f" • {item.color_name}" if item.color_name else ""
    name = item.name or item.product_id
    return (
        f"{name}{color} • Size {item.size} • Qty {item.quantity}  "
        f"{format_price(item.line_total)}"
    )


def format_order_item(item: OrderItem, verbose: bool = False) -> str:
    """Format an order item for display."""
    from .lifecycle import refund_display_status

    name = item.name or item.product_id
    result = f"{item.id[:8]}  {name} ({item.size}) x{item.quantity} @ {format_price(item.amount)}"
    result += f" [{item.order_status.value}]"

    refund = refund_display_status(item)
    if refund:
        result += f" refund: {refund}"

    if verbose:
        if item.cancelled_quantity:
            result += f"\n         Cancelled units: {item.cancelled_quantity}"
        if item.cancelled_at:
            result += f"\n         Cancelled at: {item.cancelled_at}"
        if item.refund_requested_at:
            result += f"\n         Refund requested at: {item.refund_requested_at}"
        if item.refund_amount is not None:
            result += f"\n         Refund amount: {format_price(item.refund_amount)}"

    return result


def format_order(order: Order) -> str:
    """Format an order header for display."""
    method = "Cash on Delivery" if order.payment_method.value == "COD" else "Online"
    if order.payment_provider:
        method = f"{method} ({order.payment_provider.value})"
    lines = [
        f"Order #{order.order_id} ({order.overall_status})",
        f"  Ordered: {order.ordered_at}",
        f"  Payment: {method}",
    ]
    if order.transaction_id:
        lines.append(f"  Txn: {order.transaction_id}")
    lines.append(f"  Shipping: {format_price(order.shipping_charges)}")
    lines.append(f"  Total: {format_price(order.total_amount)}")
    return "\n".join(lines)
