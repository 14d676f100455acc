"""Checkout step state machine."""

import logging
from enum import Enum
from typing import Callable

from .errors import CheckoutError, ValidationError
from .models import Address, PaymentOption

logger = logging.getLogger(__name__)


class Step(str, Enum):
    ADDRESS = "ADDRESS"
    PAYMENT = "PAYMENT"
    REVIEW = "REVIEW"
    PLACING = "PLACING"
    PLACED = "PLACED"
    FAILED = "FAILED"

    @property
    def number(self) -> int | None:
        """1-based position for the three user-facing steps."""
        return {"ADDRESS": 1, "PAYMENT": 2, "REVIEW": 3}.get(self.value)


class CheckoutStepper:
    """Sequences Address -> Payment -> Review -> Placing -> Placed.

    Forward moves are gated on the current selections; backward moves are
    always allowed and keep what was entered. PLACING doubles as the
    no-double-submit gate. A failed placement returns to REVIEW with the
    error kept in last_error.
    """

    def __init__(self, is_payment_enabled: Callable[[PaymentOption], bool]):
        """
        Args:
            is_payment_enabled: Tells whether a payment option may be selected
                right now (server config and client SDK availability).
        """
        self._is_payment_enabled = is_payment_enabled
        self.step = Step.ADDRESS
        self.address: Address | None = None
        self.payment: PaymentOption | None = None
        self.last_error: CheckoutError | None = None
        self.last_outcome: Step | None = None

    @property
    def is_placing(self) -> bool:
        return self.step == Step.PLACING

    @property
    def can_place(self) -> bool:
        """Whether the place-order action is enabled."""
        return self.step == Step.REVIEW and self._selections_valid()

    def _selections_valid(self) -> bool:
        return (
            self.address is not None
            and self.payment is not None
            and self._is_payment_enabled(self.payment)
        )

    def _require_not_busy(self) -> None:
        if self.step in (Step.PLACING, Step.PLACED):
            raise ValidationError("step", f"checkout is {self.step.value.lower()}")

    def set_address(self, address: Address | None) -> None:
        """Record the chosen address (None clears it and returns to ADDRESS)."""
        self._require_not_busy()
        self.address = address
        if address is None and self.step != Step.ADDRESS:
            logger.debug("Address cleared; back to ADDRESS")
            self.step = Step.ADDRESS

    def set_payment(self, option: PaymentOption | None) -> None:
        """
        Record the chosen payment option.

        Raises:
            ValidationError: If the option is not enabled.
        """
        self._require_not_busy()
        if option is not None and not self._is_payment_enabled(option):
            raise ValidationError("payment", f"'{option.key}' is not available")
        self.payment = option
        if option is None and self.step == Step.REVIEW:
            self.step = Step.PAYMENT

    def advance(self) -> Step:
        """
        Move one step forward from ADDRESS or PAYMENT.

        Raises:
            ValidationError: If the current step's selection is missing or invalid.
        """
        self._require_not_busy()
        if self.step == Step.ADDRESS:
            if self.address is None:
                raise ValidationError("address", "Please select a shipping address")
            self.step = Step.PAYMENT
        elif self.step == Step.PAYMENT:
            if self.payment is None:
                raise ValidationError("payment", "Please select a payment method")
            if not self._is_payment_enabled(self.payment):
                raise ValidationError("payment", f"'{self.payment.key}' is not available")
            self.step = Step.REVIEW
        elif self.step == Step.REVIEW:
            raise ValidationError("step", "use place order to continue from review")
        return self.step

    def back(self) -> Step:
        """Move one step back. Selections are kept."""
        self._require_not_busy()
        if self.step == Step.REVIEW:
            self.step = Step.PAYMENT
        elif self.step == Step.PAYMENT:
            self.step = Step.ADDRESS
        return self.step

    def go_to(self, step: Step) -> Step:
        """Jump directly to an earlier step, or forward through the gates."""
        self._require_not_busy()
        order = [Step.ADDRESS, Step.PAYMENT, Step.REVIEW]
        if step not in order:
            raise ValidationError("step", f"cannot go to {step.value}")
        while order.index(self.step) > order.index(step):
            self.back()
        while order.index(self.step) < order.index(step):
            self.advance()
        return self.step

    def begin_placing(self) -> bool:
        """
        Enter PLACING.

        Returns:
            False (no-op) if a placement is already in flight.

        Raises:
            ValidationError: If not on REVIEW or a selection became invalid.
        """
        if self.step == Step.PLACING:
            logger.debug("Placement already in flight; ignoring")
            return False
        if self.step != Step.REVIEW:
            raise ValidationError("step", "review your order before placing it")
        if self.address is None:
            raise ValidationError("address", "Please select a shipping address")
        if self.payment is None or not self._is_payment_enabled(self.payment):
            raise ValidationError("payment", "Please select a payment method")
        self.step = Step.PLACING
        self.last_error = None
        return True

    def placed(self) -> None:
        if self.step != Step.PLACING:
            raise ValidationError("step", "no placement in flight")
        self.step = Step.PLACED
        self.last_outcome = Step.PLACED

    def abort(self) -> None:
        """Leave PLACING without an outcome (the placement was cancelled)."""
        if self.step == Step.PLACING:
            self.step = Step.REVIEW

    def failed(self, error: CheckoutError) -> None:
        """Record a failed placement and return to REVIEW with input intact."""
        if self.step != Step.PLACING:
            raise ValidationError("step", "no placement in flight")
        self.last_error = error
        self.last_outcome = Step.FAILED
        self.step = Step.REVIEW
