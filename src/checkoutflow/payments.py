"""Payment provider sessions and gateway launch strategies."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Protocol

from . import settings
from .backend import Backend
from .errors import (
    BackendError,
    PaymentSessionError,
    ProviderInitError,
    ValidationError,
    VerificationFailedError,
)
from .models import Provider, ProviderHandle
from .utils import to_minor_units

logger = logging.getLogger(__name__)

STRATEGY_NATIVE = "native"  # gateway A checkout widget
STRATEGY_MODAL = "modal"  # gateway B in-page SDK modal
STRATEGY_HOSTED = "hosted"  # gateway B hosted page in a new window


class PaymentWindow(Protocol):
    """A browser context showing a hosted payment page."""

    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...


class CheckoutLauncher(Protocol):
    """Client-side gateway widgets.

    This is the seam to whatever renders the gateways' own checkout UI
    (browser bridge, webview, test double).
    """

    async def load_razorpay(self) -> None:
        """Load the card/netbanking gateway SDK. Raise ProviderInitError on failure."""
        ...

    def open_razorpay(
        self,
        handle: ProviderHandle,
        on_success: Callable[[dict[str, Any]], None],
        on_dismiss: Callable[[], None],
    ) -> None:
        """Open the native checkout bound to handle and register completion callbacks."""
        ...

    async def load_cashfree(self, mode: str) -> None:
        """Load the UPI/wallet gateway SDK. Raise ProviderInitError on failure."""
        ...

    async def cashfree_checkout(self, session_token: str) -> dict[str, Any] | None:
        """Run the in-page modal checkout; returns when the modal settles."""
        ...

    def open_window(self, url: str) -> PaymentWindow | None:
        """Open url in a new browser context. None if it was blocked."""
        ...


@dataclass
class GatewayOutcome:
    """What the client saw after the gateway interaction.

    Never proof of payment; it only tells the verifier what to check.
    """

    provider: Provider
    correlation_id: str
    strategy: str
    evidence: dict[str, Any] = field(default_factory=dict)
    timed_out: bool = False

    @property
    def reports_capture(self) -> bool:
        """Whether the gateway told the client a payment was taken."""
        return bool(self.evidence.get("razorpay_payment_id"))


class PaymentSessionBroker:
    """One interface over the online providers: create a session, launch it, await completion."""

    def __init__(
        self,
        backend: Backend,
        launcher: CheckoutLauncher | None = None,
        poll_interval: float | None = None,
        poll_timeout: float | None = None,
        cashfree_mode: str | None = None,
    ):
        self._backend = backend
        self._launcher = launcher
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.POLL_TIMEOUT
        self.cashfree_mode = cashfree_mode or settings.CASHFREE_MODE
        self.sdk_ready: dict[Provider, bool] = {p: False for p in Provider}
        self._initialized = False

    async def initialize(self) -> dict[Provider, bool]:
        """
        Load the gateway SDKs.

        A failed load is recorded rather than raised: the card gateway's
        option becomes unavailable, the UPI gateway falls back to its hosted
        page.
        """
        if self._launcher is None:
            self._initialized = True
            return dict(self.sdk_ready)

        loaders = {
            Provider.RAZORPAY: self._launcher.load_razorpay,
            Provider.CASHFREE: lambda: self._launcher.load_cashfree(self.cashfree_mode),
        }
        for provider, load in loaders.items():
            try:
                await load()
                self.sdk_ready[provider] = True
            except ProviderInitError as e:
                self.sdk_ready[provider] = False
                logger.warning("%s", e)
        self._initialized = True
        return dict(self.sdk_ready)

    def is_launchable(self, provider: Provider) -> bool:
        """Whether the provider can be offered on this client."""
        if self._launcher is None:
            return False
        if not self._initialized:
            return True  # not probed yet; launch will report
        if provider == Provider.CASHFREE:
            return True  # hosted page fallback needs no SDK
        return self.sdk_ready[provider]

    async def create_session(
        self,
        temp_order_id: str,
        amount: Decimal,
        provider: Provider,
        customer: dict[str, str] | None = None,
    ) -> ProviderHandle:
        """
        Create a provider payment session for amount (rupees).

        Raises:
            ValidationError: If amount is not positive.
            PaymentSessionError: If the backend could not create the session.
        """
        if amount <= 0:
            raise ValidationError("amount", "Invalid order amount")

        amount_minor = to_minor_units(amount)
        try:
            if provider == Provider.RAZORPAY:
                data = await self._backend.create_payment_order(
                    temp_order_id, amount_minor, provider, customer or {}
                )
                if not data.get("transactionId") or not data.get("providerOrderHandle"):
                    raise PaymentSessionError(provider.value, "incomplete provider order")
                handle = ProviderHandle(
                    provider=provider,
                    temp_order_id=temp_order_id,
                    amount_minor=amount_minor,
                    transaction_id=data["transactionId"],
                    provider_order_handle=data["providerOrderHandle"],
                    provider_key=data.get("providerKey"),
                    currency=data.get("currency") or "INR",
                )
            else:
                data = await self._backend.create_simple_session(temp_order_id, amount_minor)
                if not data.get("paymentSessionToken"):
                    raise PaymentSessionError(provider.value, "payment session ID is missing")
                handle = ProviderHandle(
                    provider=provider,
                    temp_order_id=temp_order_id,
                    amount_minor=amount_minor,
                    payment_session_token=data["paymentSessionToken"],
                )
        except BackendError as e:
            raise PaymentSessionError(provider.value, str(e)) from e

        logger.info(
            "Created %s session for %s (%d paise)", provider.value, temp_order_id, amount_minor
        )
        return handle

    async def launch(self, handle: ProviderHandle) -> GatewayOutcome:
        """
        Show the gateway checkout for handle and wait until it settles.

        Raises:
            ProviderInitError: If the gateway cannot be shown on this client.
            VerificationFailedError: If the shopper dismissed the card checkout.
        """
        if self._launcher is None:
            raise ProviderInitError(handle.provider.value, "no checkout launcher configured")
        if handle.provider == Provider.RAZORPAY:
            return await self._launch_razorpay(handle)
        return await self._launch_cashfree(handle)

    async def _launch_razorpay(self, handle: ProviderHandle) -> GatewayOutcome:
        if not self.sdk_ready[Provider.RAZORPAY]:
            raise ProviderInitError(
                Provider.RAZORPAY.value, "Payment gateway not available. Please refresh the page."
            )

        loop = asyncio.get_running_loop()
        completed: asyncio.Future[dict[str, Any]] = loop.create_future()

        def on_success(response: dict[str, Any]) -> None:
            if not completed.done():
                completed.set_result(response)

        def on_dismiss() -> None:
            if not completed.done():
                completed.set_exception(
                    VerificationFailedError(
                        handle.provider.value,
                        handle.transaction_id or handle.temp_order_id,
                        "payment was not completed",
                    )
                )

        try:
            self._launcher.open_razorpay(handle, on_success, on_dismiss)
        except Exception as e:
            logger.error("Razorpay checkout failed to open: %s", e)
            raise ProviderInitError(Provider.RAZORPAY.value, str(e)) from e
        response = await completed
        evidence = {
            key: response[key]
            for key in ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
            if key in response
        }
        return GatewayOutcome(
            provider=handle.provider,
            correlation_id=handle.transaction_id or handle.temp_order_id,
            strategy=STRATEGY_NATIVE,
            evidence=evidence,
        )

    async def _launch_cashfree(self, handle: ProviderHandle) -> GatewayOutcome:
        token = handle.payment_session_token or ""
        if self.sdk_ready[Provider.CASHFREE]:
            try:
                await self._launcher.cashfree_checkout(token)
            except Exception as e:
                # The modal's own result is not authoritative either way
                logger.warning("Cashfree modal checkout ended with error: %s", e)
            return GatewayOutcome(
                provider=handle.provider,
                correlation_id=handle.temp_order_id,
                strategy=STRATEGY_MODAL,
            )

        url = settings.CASHFREE_HOSTED_URL.format(token=token)
        try:
            window = self._launcher.open_window(url)
        except Exception as e:
            logger.error("Hosted payment page failed to open: %s", e)
            raise ProviderInitError(Provider.CASHFREE.value, str(e)) from e
        if window is None:
            raise ProviderInitError(Provider.CASHFREE.value, "Please allow popups for payment")

        try:
            closed = await self._wait_for_close(window)
        except Exception as e:
            # The shopper may already have paid; verification still decides
            logger.error("Lost track of hosted payment page for %s: %s", handle.temp_order_id, e)
            closed = True
        finally:
            try:
                if not window.closed:
                    window.close()
            except Exception as e:
                logger.warning("Could not close hosted payment page: %s", e)

        if not closed:
            logger.warning(
                "Hosted payment page for %s still open after %.0fs; verifying anyway",
                handle.temp_order_id,
                self.poll_timeout,
            )
        return GatewayOutcome(
            provider=handle.provider,
            correlation_id=handle.temp_order_id,
            strategy=STRATEGY_HOSTED,
            timed_out=not closed,
        )

    async def _wait_for_close(self, window: PaymentWindow) -> bool:
        """
        Poll until the hosted payment window closes.

        Returns:
            True once closed, False when poll_timeout elapses. Cancelling the
            awaiting task stops the loop immediately.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout
        while not window.closed:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True
