"""Pytest fixtures for checkoutflow tests."""

import asyncio
import copy
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from checkoutflow.cart import CartStore
from checkoutflow.checkout import CheckoutSession
from checkoutflow.errors import BackendError, OrderNotFoundError, ProviderInitError
from checkoutflow.models import (
    Address,
    CartItem,
    ItemStatus,
    Order,
    OrderItem,
    PaymentConfig,
    PaymentMethod,
    Provider,
    ProviderConfig,
    RefundRequest,
    RefundStatus,
    ShippingInfo,
    _utc_now,
    to_decimal,
)
from checkoutflow.payments import PaymentSessionBroker
from checkoutflow.reconciliation import CaptureLedger


def run(coro):
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run(coro)


class FakeBackend:
    """In-memory Backend with switches for failure paths."""

    def __init__(self):
        self.addresses: list[Address] = []
        self.payment_config = PaymentConfig(
            cod_enabled=True,
            online_payment_enabled=True,
            providers=[
                ProviderConfig("razorpay", True),
                ProviderConfig("cashfree", True),
            ],
        )
        self.orders: dict[str, Order] = {}
        self.order_payloads: list[dict[str, Any]] = []
        self.idempotency_keys: list[str | None] = []
        self.payment_orders: list[dict[str, Any]] = []
        self.sessions: list[dict[str, Any]] = []
        self.verify_calls: list[tuple[Provider, str, dict | None]] = []
        self.cancel_calls: list[tuple[str, int]] = []
        self.refund_payloads: list[dict[str, Any]] = []
        self.refunds: list[RefundRequest] = []
        self.verify_success = True
        self.verify_error: BackendError | None = None
        self.create_order_error: BackendError | None = None
        self.cancel_error: BackendError | None = None
        self.refund_error: BackendError | None = None
        self.session_error: BackendError | None = None
        self.get_order_error: BackendError | None = None
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def add_order(
        self,
        payment_method: PaymentMethod = PaymentMethod.ONLINE,
        items: list[OrderItem] | None = None,
    ) -> Order:
        """Seed an existing order."""
        order = Order(
            order_id=self._next_id("order"),
            items=items
            or [
                OrderItem(
                    id="item-a",
                    product_id="p1",
                    color_id="c1",
                    size="M",
                    quantity=3,
                    amount=Decimal("200"),
                )
            ],
            shipping_info=ShippingInfo("1 MG Road", "Pune", "MH", "India", "411001", "9876543210"),
            payment_method=payment_method,
            shipping_charges=Decimal("0"),
            total_amount=Decimal("600"),
            payment_provider=Provider.RAZORPAY if payment_method == PaymentMethod.ONLINE else None,
            transaction_id="txn-seed" if payment_method == PaymentMethod.ONLINE else None,
        )
        self.orders[order.order_id] = order
        return order

    def _find_item(self, item_id: str) -> OrderItem:
        for order in self.orders.values():
            item = order.get_item(item_id)
            if item is not None:
                return item
        raise BackendError("Item not found", 404)

    # Addresses

    async def list_addresses(self) -> list[Address]:
        return copy.deepcopy(self.addresses)

    async def create_address(self, data: dict[str, Any]) -> Address:
        address = Address.from_dict({**data, "_id": self._next_id("addr")})
        self.addresses.append(address)
        return copy.deepcopy(address)

    async def update_address(self, address_id: str, data: dict[str, Any]) -> Address:
        updated = Address.from_dict({**data, "_id": address_id})
        self.addresses = [updated if a.id == address_id else a for a in self.addresses]
        return copy.deepcopy(updated)

    async def delete_address(self, address_id: str) -> None:
        self.addresses = [a for a in self.addresses if a.id != address_id]

    async def set_default_address(self, address_id: str) -> None:
        for a in self.addresses:
            a.is_default = a.id == address_id

    # Payments

    async def get_payment_config(self) -> PaymentConfig:
        return copy.deepcopy(self.payment_config)

    async def create_payment_order(self, temp_order_id, amount_minor, provider, customer):
        if self.session_error:
            raise self.session_error
        self.payment_orders.append(
            {"orderId": temp_order_id, "amount": amount_minor, "provider": provider.value}
        )
        return {
            "transactionId": self._next_id("txn"),
            "providerOrderHandle": self._next_id("order_rzp"),
            "providerKey": "rzp_test_key",
            "currency": "INR",
        }

    async def create_simple_session(self, temp_order_id, amount_minor):
        if self.session_error:
            raise self.session_error
        self.sessions.append({"orderId": temp_order_id, "amount": amount_minor})
        return {"paymentSessionToken": self._next_id("session")}

    async def verify_payment(self, provider, correlation_id, evidence=None):
        self.verify_calls.append((provider, correlation_id, evidence))
        if self.verify_error:
            raise self.verify_error
        if not self.verify_success:
            return {"success": False, "transactionId": None, "message": "Payment not completed"}
        return {"success": True, "transactionId": correlation_id}

    # Orders

    async def create_order(self, payload, idempotency_key=None):
        await asyncio.sleep(0)
        self.order_payloads.append(payload)
        self.idempotency_keys.append(idempotency_key)
        if self.create_order_error:
            raise self.create_order_error
        order_id = self._next_id("order")
        items = [
            OrderItem(
                id=self._next_id("item"),
                product_id=line["productId"],
                color_id=line["colorId"],
                size=line["size"],
                quantity=line["quantity"],
                amount=to_decimal(line["price"]),
            )
            for line in payload["items"]
        ]
        provider = payload.get("paymentProvider")
        self.orders[order_id] = Order(
            order_id=order_id,
            items=items,
            shipping_info=ShippingInfo.from_dict(payload["shippingInfo"]),
            payment_method=PaymentMethod(payload["paymentMethod"]),
            shipping_charges=to_decimal(payload["shippingCharges"]),
            total_amount=to_decimal(payload["totalAmount"]),
            payment_provider=Provider(provider) if provider else None,
            transaction_id=payload.get("transactionId"),
        )
        return order_id

    async def get_order(self, order_id: str) -> Order:
        if self.get_order_error:
            raise self.get_order_error
        if order_id not in self.orders:
            raise OrderNotFoundError(order_id)
        return copy.deepcopy(self.orders[order_id])

    async def list_orders(self) -> list[Order]:
        return [copy.deepcopy(o) for o in self.orders.values()]

    async def cancel_item(self, item_id: str, quantity: int):
        self.cancel_calls.append((item_id, quantity))
        if self.cancel_error:
            raise self.cancel_error
        item = self._find_item(item_id)
        if item.order_status != ItemStatus.ORDERED or quantity > item.quantity:
            raise BackendError("Item cannot be cancelled", 400)
        item.quantity -= quantity
        item.cancelled_quantity += quantity
        if item.quantity == 0:
            item.order_status = ItemStatus.CANCELLED
            item.cancelled_at = _utc_now()
        return copy.deepcopy(item)

    async def request_refund(self, payload):
        self.refund_payloads.append(payload)
        if self.refund_error:
            raise self.refund_error
        item = self._find_item(payload["itemId"])
        item.refund_requested_at = _utc_now()
        item.refund_status = RefundStatus.PENDING
        item.refund_amount = to_decimal(payload["refundAmount"])
        refund = RefundRequest(
            id=self._next_id("refund"),
            order_id=payload["orderId"],
            item_id=payload["itemId"],
            amount=to_decimal(payload["refundAmount"]),
            reason=payload.get("note") or "",
            quantity=payload["quantity"],
            requested_at=item.refund_requested_at,
        )
        self.refunds.append(refund)
        return copy.deepcopy(refund)

    async def list_refund_requests(self):
        return copy.deepcopy(self.refunds)


class FakeWindow:
    """Hosted payment window that closes after a number of polls (never if None)."""

    def __init__(self, close_after: int | None = 2):
        self.close_after = close_after
        self.polls = 0
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        self.polls += 1
        if self.close_after is not None and self.polls > self.close_after:
            self._closed = True
        return self._closed

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeLauncher:
    """Scripted gateway widgets."""

    def __init__(
        self,
        razorpay_loads: bool = True,
        cashfree_loads: bool = True,
        razorpay_outcome: str = "success",
        window: FakeWindow | None = None,
        block_popup: bool = False,
        window_error: Exception | None = None,
    ):
        self.razorpay_loads = razorpay_loads
        self.cashfree_loads = cashfree_loads
        self.razorpay_outcome = razorpay_outcome
        self.window = window or FakeWindow()
        self.block_popup = block_popup
        self.window_error = window_error
        self.opened_handles = []
        self.modal_tokens: list[str] = []
        self.opened_urls: list[str] = []
        self.cashfree_mode: str | None = None

    async def load_razorpay(self) -> None:
        if not self.razorpay_loads:
            raise ProviderInitError("razorpay", "Failed to load Razorpay SDK")

    def open_razorpay(self, handle, on_success, on_dismiss) -> None:
        self.opened_handles.append(handle)
        if self.razorpay_outcome == "success":
            on_success(
                {
                    "razorpay_order_id": handle.provider_order_handle,
                    "razorpay_payment_id": "pay_123",
                    "razorpay_signature": "sig_abc",
                }
            )
        elif self.razorpay_outcome == "dismiss":
            on_dismiss()
        elif self.razorpay_outcome == "error":
            raise RuntimeError("Razorpay is not defined")

    async def load_cashfree(self, mode: str) -> None:
        self.cashfree_mode = mode
        if not self.cashfree_loads:
            raise ProviderInitError("cashfree", "Failed to load Cashfree SDK")

    async def cashfree_checkout(self, session_token: str):
        self.modal_tokens.append(session_token)
        return {}

    def open_window(self, url: str):
        self.opened_urls.append(url)
        if self.window_error is not None:
            raise self.window_error
        if self.block_popup:
            return None
        return self.window


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backend():
    """FakeBackend with one saved default address."""
    fake = FakeBackend()
    fake.addresses.append(
        Address(
            id="addr-home",
            phone="9876543210",
            address="1 MG Road",
            city="Pune",
            state="MH",
            postal_code="411001",
            is_default=True,
        )
    )
    return fake


@pytest.fixture
def cart():
    """In-memory cart with a 650 subtotal."""
    store = CartStore()
    store.add(
        CartItem(
            product_id="p1",
            color_id="c1",
            size="M",
            quantity=1,
            unit_price=Decimal("650"),
            name="Kurta",
        )
    )
    return store


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def ledger(temp_dir):
    return CaptureLedger(temp_dir)


@pytest.fixture
def make_session(backend, cart, ledger):
    """Factory for a CheckoutSession over the fakes with fast polling."""

    def _make(launcher=None, poll_timeout: float = 5.0) -> CheckoutSession:
        broker = PaymentSessionBroker(
            backend, launcher, poll_interval=0, poll_timeout=poll_timeout
        )
        return CheckoutSession(backend, cart, ledger=ledger, broker=broker)

    return _make
