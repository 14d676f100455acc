"""Tests for OrderCreator."""

from decimal import Decimal

import pytest

from checkoutflow.errors import (
    BackendError,
    OrderCreationAfterPaymentFailedError,
    OrderCreationError,
    ValidationError,
)
from checkoutflow.models import Address, PaymentMethod, Provider
from checkoutflow.orders import OrderCreator, order_total

from .conftest import run

ADDRESS = Address(
    id="a1", phone="9876543210", address="1 MG Road", city="Pune", state="MH", postal_code="411001"
)


class TestOrderTotal:
    def test_sum_plus_shipping(self, cart):
        assert order_total(cart.items, Decimal("50")) == Decimal("700")


class TestOrderCreator:
    def test_cod_order(self, backend, cart):
        creator = OrderCreator(backend, cart)
        order = run(
            creator.create_order(
                cart.items, ADDRESS, PaymentMethod.COD, shipping_charges=Decimal("50")
            )
        )

        payload = backend.order_payloads[0]
        assert payload["paymentMethod"] == "COD"
        assert payload["paymentProvider"] is None
        assert payload["transactionId"] is None
        assert payload["totalAmount"] == 700
        assert payload["shippingCharges"] == 50
        assert payload["shippingInfo"]["postalCode"] == "411001"
        assert order.total_amount == Decimal("700")
        assert creator.confirmation_target == order.order_id
        assert cart.is_empty()

    def test_online_requires_transaction(self, backend, cart):
        creator = OrderCreator(backend, cart)
        with pytest.raises(ValidationError):
            run(creator.create_order(cart.items, ADDRESS, PaymentMethod.ONLINE, Provider.RAZORPAY))
        assert backend.order_payloads == []

    def test_empty_cart_rejected(self, backend, cart):
        creator = OrderCreator(backend, cart)
        with pytest.raises(ValidationError):
            run(creator.create_order([], ADDRESS, PaymentMethod.COD))

    def test_online_order_sends_idempotency_key(self, backend, cart):
        creator = OrderCreator(backend, cart)
        run(
            creator.create_order(
                cart.items,
                ADDRESS,
                PaymentMethod.ONLINE,
                Provider.CASHFREE,
                "txn-9",
                idempotency_key="TEMP_1",
            )
        )
        assert backend.idempotency_keys == ["TEMP_1"]
        assert backend.order_payloads[0]["transactionId"] == "txn-9"

    def test_cod_failure_keeps_cart(self, backend, cart):
        backend.create_order_error = BackendError("db down", 500)
        creator = OrderCreator(backend, cart)

        with pytest.raises(OrderCreationError):
            run(creator.create_order(cart.items, ADDRESS, PaymentMethod.COD))
        assert not cart.is_empty()
        assert creator.confirmation_target is None

    def test_online_failure_is_critical(self, backend, cart):
        backend.create_order_error = BackendError("db down", 500)
        creator = OrderCreator(backend, cart)

        with pytest.raises(OrderCreationAfterPaymentFailedError) as exc_info:
            run(
                creator.create_order(
                    cart.items, ADDRESS, PaymentMethod.ONLINE, Provider.RAZORPAY, "txn-1"
                )
            )
        assert exc_info.value.severity == "critical"
        assert exc_info.value.transaction_id == "txn-1"
        assert "contact support" in str(exc_info.value)
        assert len(backend.order_payloads) == 1
        assert not cart.is_empty()
