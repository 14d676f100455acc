"""Tests for the checkout step state machine."""

import pytest

from checkoutflow.errors import OrderCreationError, ValidationError
from checkoutflow.models import Address, PaymentOption
from checkoutflow.stepper import CheckoutStepper, Step

ADDRESS = Address(
    id="a1", phone="9876543210", address="1 MG Road", city="Pune", state="MH", postal_code="411001"
)
COD = PaymentOption.parse("cod")
RAZORPAY = PaymentOption.parse("razorpay")


def make_stepper(enabled=("cod", "razorpay")):
    return CheckoutStepper(lambda option: option.key in enabled)


def at_review(stepper):
    stepper.set_address(ADDRESS)
    stepper.advance()
    stepper.set_payment(COD)
    stepper.advance()
    return stepper


class TestForwardMoves:
    def test_starts_on_address(self):
        stepper = make_stepper()
        assert stepper.step == Step.ADDRESS
        assert stepper.step.number == 1

    def test_address_required(self):
        stepper = make_stepper()
        with pytest.raises(ValidationError) as exc_info:
            stepper.advance()
        assert exc_info.value.field == "address"
        assert stepper.step == Step.ADDRESS

    def test_payment_required(self):
        stepper = make_stepper()
        stepper.set_address(ADDRESS)
        stepper.advance()

        with pytest.raises(ValidationError):
            stepper.advance()
        assert stepper.step == Step.PAYMENT

    def test_disabled_payment_cannot_be_selected(self):
        stepper = make_stepper(enabled=("cod",))
        with pytest.raises(ValidationError):
            stepper.set_payment(RAZORPAY)
        assert stepper.payment is None

    def test_reaches_review(self):
        stepper = at_review(make_stepper())
        assert stepper.step == Step.REVIEW
        assert stepper.step.number == 3
        assert stepper.can_place is True


class TestBackwardMoves:
    def test_back_keeps_selections(self):
        stepper = at_review(make_stepper())

        assert stepper.back() == Step.PAYMENT
        assert stepper.back() == Step.ADDRESS
        assert stepper.address == ADDRESS
        assert stepper.payment == COD

    def test_go_to_review_from_address(self):
        stepper = at_review(make_stepper())
        stepper.go_to(Step.ADDRESS)

        assert stepper.go_to(Step.REVIEW) == Step.REVIEW

    def test_clearing_address_returns_to_address(self):
        stepper = at_review(make_stepper())
        stepper.set_address(None)
        assert stepper.step == Step.ADDRESS


class TestPlacementGate:
    def test_begin_placing_once(self):
        stepper = at_review(make_stepper())

        assert stepper.begin_placing() is True
        assert stepper.is_placing
        assert stepper.can_place is False
        assert stepper.begin_placing() is False

    def test_cannot_place_before_review(self):
        stepper = make_stepper()
        stepper.set_address(ADDRESS)
        with pytest.raises(ValidationError):
            stepper.begin_placing()

    def test_no_navigation_while_placing(self):
        stepper = at_review(make_stepper())
        stepper.begin_placing()
        with pytest.raises(ValidationError):
            stepper.back()

    def test_failure_returns_to_review(self):
        stepper = at_review(make_stepper())
        stepper.begin_placing()
        error = OrderCreationError("backend down")

        stepper.failed(error)

        assert stepper.step == Step.REVIEW
        assert stepper.last_outcome == Step.FAILED
        assert stepper.last_error is error
        assert stepper.payment == COD
        assert stepper.can_place is True

    def test_retry_clears_last_error(self):
        stepper = at_review(make_stepper())
        stepper.begin_placing()
        stepper.failed(OrderCreationError("x"))

        stepper.begin_placing()
        assert stepper.last_error is None

    def test_placed_is_terminal(self):
        stepper = at_review(make_stepper())
        stepper.begin_placing()
        stepper.placed()

        assert stepper.step == Step.PLACED
        with pytest.raises(ValidationError):
            stepper.back()

    def test_abort_returns_to_review(self):
        stepper = at_review(make_stepper())
        stepper.begin_placing()
        stepper.abort()
        assert stepper.step == Step.REVIEW
        assert stepper.last_outcome is None
