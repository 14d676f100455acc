"""Checkout session: cart to placed order."""

import asyncio
import copy
import logging
from typing import Any

from .addresses import AddressSelector
from .backend import Backend
from .cart import CartStore
from .errors import (
    BackendError,
    CapturedPaymentError,
    CheckoutError,
    OrderCreationAfterPaymentFailedError,
    PaymentUnverifiedAfterCaptureError,
    PlacementError,
    ValidationError,
    VerificationFailedError,
)
from .models import (
    Address,
    Order,
    PaymentConfig,
    PaymentIntent,
    PaymentMethod,
    PaymentOption,
    ShippingInfo,
)
from .orders import OrderCreator
from .payments import CheckoutLauncher, PaymentSessionBroker
from .reconciliation import CaptureLedger
from .shipping import ShippingQuote, quote
from .stepper import CheckoutStepper, Step
from .utils import generate_temp_order_id
from .verifier import PaymentVerifier

logger = logging.getLogger(__name__)


class CheckoutSession:
    """One shopper's checkout.

    Owns the stepper and wires the cart, address selection, payment
    broker, verifier and order creator together. place_order() runs the
    placement in a task so close() can stop it, including any hosted-page
    polling in progress.
    """

    def __init__(
        self,
        backend: Backend,
        cart: CartStore,
        launcher: CheckoutLauncher | None = None,
        ledger: CaptureLedger | None = None,
        broker: PaymentSessionBroker | None = None,
        customer: dict[str, str] | None = None,
    ):
        """
        Initialize CheckoutSession.

        Args:
            backend: Storefront API.
            cart: The shopper's cart; cleared only when an order is created.
            launcher: Client-side gateway widgets. Without one only COD can be offered.
            ledger: Where captured-but-unordered payments are recorded.
            broker: Override payment broker (for testing).
            customer: Name/email/phone passed to the card gateway.
        """
        self.backend = backend
        self.cart = cart
        self.addresses = AddressSelector(backend)
        self.payment_config = PaymentConfig()
        self.broker = broker or PaymentSessionBroker(backend, launcher)
        self.verifier = PaymentVerifier(backend)
        self.order_creator = OrderCreator(backend, cart)
        self.ledger = ledger or CaptureLedger()
        self.customer = customer or {}
        self.stepper = CheckoutStepper(self.is_option_enabled)
        self.intent: PaymentIntent | None = None
        self.order: Order | None = None
        self._place_task: asyncio.Task | None = None
        self.started = False

    # Setup

    async def start(self) -> "CheckoutSession":
        """
        Load payment config and saved addresses, and initialize gateways.

        Raises:
            ValidationError: If the cart is empty.
        """
        if self.cart.is_empty():
            raise ValidationError("cart", "No items in cart")

        try:
            self.payment_config = await self.backend.get_payment_config()
        except BackendError as e:
            logger.error("Failed to load payment config: %s", e)
            self.payment_config = PaymentConfig()
        await self.broker.initialize()
        await self.addresses.load()

        if self.stepper.step not in (Step.PLACING, Step.PLACED):
            self.stepper.set_address(self.addresses.selected)
            if self.stepper.payment is not None and not self.is_option_enabled(
                self.stepper.payment
            ):
                self.stepper.set_payment(None)

        if self.no_payment_methods_available:
            logger.warning("No payment methods are currently available")
        self.started = True
        return self

    # Payment options

    def is_option_enabled(self, option: PaymentOption) -> bool:
        """Enabled on the server and launchable on this client."""
        if not self.payment_config.is_enabled(option):
            return False
        if option.method == PaymentMethod.COD:
            return True
        return self.broker.is_launchable(option.provider)

    def available_options(self) -> list[PaymentOption]:
        return [o for o in self.payment_config.available_options() if self.is_option_enabled(o)]

    @property
    def no_payment_methods_available(self) -> bool:
        return not self.available_options()

    def select_payment(self, option: PaymentOption | str) -> PaymentOption:
        if isinstance(option, str):
            try:
                option = PaymentOption.parse(option)
            except ValueError:
                raise ValidationError("payment", f"unknown payment method '{option}'")
        self.stepper.set_payment(option)
        return option

    # Addresses

    def select_address(self, address_id: str) -> Address:
        address = self.addresses.select(address_id)
        self.stepper.set_address(address)
        return address

    async def add_address(self, data: dict[str, Any]) -> Address:
        address = await self.addresses.add(data, select=True)
        self.stepper.set_address(address)
        return address

    async def delete_address(self, address_id: str) -> None:
        if await self.addresses.delete(address_id):
            self.stepper.set_address(None)

    # Navigation

    def quote(self) -> ShippingQuote:
        """Current subtotal, shipping and total; recomputed on every call."""
        method = self.stepper.payment.method if self.stepper.payment else None
        return quote(method, self.cart.subtotal())

    def advance(self) -> Step:
        return self.stepper.advance()

    def back(self) -> Step:
        return self.stepper.back()

    def go_to(self, step: Step) -> Step:
        return self.stepper.go_to(step)

    # Placement

    async def place_order(self) -> Order | None:
        """
        Place the order from the Review step.

        COD creates the order directly. Online payment creates a provider
        session, launches the gateway, verifies server-side and only then
        creates the order.

        Returns:
            The created order, or None if a placement was already in flight.

        Raises:
            ValidationError: If the checkout isn't ready to place.
            CheckoutError: Whatever stopped the placement; the stepper is
                back on REVIEW with the error in last_error.
        """
        if self.cart.is_empty():
            raise ValidationError("cart", "No items in cart")
        if not self.stepper.begin_placing():
            return None
        self._place_task = asyncio.create_task(self._place())
        try:
            return await self._place_task
        finally:
            self._place_task = None

    async def _place(self) -> Order:
        cart_items = copy.deepcopy(self.cart.items)
        address = self.stepper.address
        option = self.stepper.payment
        frozen = self.quote()

        try:
            if option.method == PaymentMethod.COD:
                order = await self.order_creator.create_order(
                    cart_items,
                    address,
                    PaymentMethod.COD,
                    shipping_charges=frozen.shipping,
                )
            else:
                order = await self._place_online(cart_items, address, option, frozen)
        except CheckoutError as e:
            self.intent = None
            self.stepper.failed(e)
            raise
        except asyncio.CancelledError:
            logger.info("Placement cancelled")
            self.intent = None
            self.stepper.abort()
            raise
        except Exception as e:
            logger.exception("Unexpected failure while placing order")
            self.intent = None
            error = PlacementError(str(e) or type(e).__name__)
            self.stepper.failed(error)
            raise error from e

        self.intent = None
        self.order = order
        self.stepper.placed()
        return order

    async def _place_online(self, cart_items, address, option, frozen) -> Order:
        intent = PaymentIntent(
            temp_order_id=generate_temp_order_id(),
            amount=frozen.total,
            provider=option.provider,
        )
        self.intent = intent
        customer = {"phone": address.phone, **self.customer}

        handle = await self.broker.create_session(
            intent.temp_order_id, intent.amount, intent.provider, customer
        )
        outcome = await self.broker.launch(handle)

        try:
            result = await self.verifier.verify(
                outcome.provider, outcome.correlation_id, outcome.evidence
            )
        except VerificationFailedError as e:
            if e.definitive or not outcome.reports_capture:
                raise
            logger.critical(
                "Gateway reported payment %s captured but verification failed: %s",
                outcome.correlation_id,
                e.reason,
            )
            captured = PaymentUnverifiedAfterCaptureError(
                outcome.correlation_id, outcome.provider.value, e.reason or str(e)
            )
            self._record_capture(captured, intent, cart_items, address)
            raise captured from e

        try:
            return await self.order_creator.create_order(
                cart_items,
                address,
                PaymentMethod.ONLINE,
                payment_provider=intent.provider,
                transaction_id=result.transaction_id,
                shipping_charges=frozen.shipping,
                idempotency_key=intent.temp_order_id,
            )
        except CapturedPaymentError as e:
            self._record_capture(e, intent, cart_items, address)
            raise
        except Exception as e:
            logger.critical(
                "Payment %s verified but order creation broke: %s", result.transaction_id, e
            )
            captured = OrderCreationAfterPaymentFailedError(
                result.transaction_id, intent.provider.value, str(e) or type(e).__name__
            )
            self._record_capture(captured, intent, cart_items, address)
            raise captured from e

    def _record_capture(self, error, intent, cart_items, address) -> None:
        """Write a captured-but-unordered payment to the ledger and link it to error."""
        try:
            record = self.ledger.record(
                transaction_id=error.transaction_id,
                provider=error.provider,
                temp_order_id=intent.temp_order_id,
                amount=intent.amount,
                reason=error.reason,
                cart=[i.to_dict() for i in cart_items],
                shipping_info=ShippingInfo.from_address(address).to_dict(),
            )
        except Exception as write_error:
            logger.critical(
                "Could not record capture for transaction %s: %s",
                error.transaction_id,
                write_error,
            )
            return
        error.capture_id = record.id

    async def close(self) -> None:
        """Tear down the checkout, stopping any placement in flight."""
        task = self._place_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, CheckoutError):
                pass
