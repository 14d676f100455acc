"""Shipping fee rules."""

from dataclasses import dataclass
from decimal import Decimal

from .models import PaymentMethod

FLAT_SHIPPING = Decimal("50")
FREE_SHIPPING_THRESHOLD = Decimal("599")


def compute_shipping(payment_method: PaymentMethod | str | None, subtotal: Decimal) -> Decimal:
    """
    Shipping charge for a payment method and cart subtotal.

    - COD: flat 50.
    - ONLINE: free at or above 599, else 50.
    - Unset or unknown method: 0, so the Payment step is never blocked.
    """
    method: PaymentMethod | None = None
    if isinstance(payment_method, PaymentMethod):
        method = payment_method
    elif payment_method:
        try:
            method = PaymentMethod(payment_method.upper())
        except ValueError:
            method = None

    if method == PaymentMethod.COD:
        return FLAT_SHIPPING
    if method == PaymentMethod.ONLINE:
        if subtotal >= FREE_SHIPPING_THRESHOLD:
            return Decimal("0")
        return FLAT_SHIPPING
    return Decimal("0")


@dataclass(frozen=True)
class ShippingQuote:
    subtotal: Decimal
    shipping: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping


def quote(payment_method: PaymentMethod | str | None, subtotal: Decimal) -> ShippingQuote:
    """Subtotal, shipping and total for display or freezing at placement."""
    return ShippingQuote(subtotal=subtotal, shipping=compute_shipping(payment_method, subtotal))
