"""Tests for PaymentVerifier."""

import pytest

from checkoutflow.errors import BackendError, VerificationFailedError
from checkoutflow.models import Provider
from checkoutflow.verifier import PaymentVerifier

from .conftest import run


class TestPaymentVerifier:
    def test_success(self, backend):
        verifier = PaymentVerifier(backend)
        result = run(verifier.verify(Provider.CASHFREE, "TEMP_1"))

        assert result.success is True
        assert result.transaction_id == "TEMP_1"
        assert result.provider == Provider.CASHFREE

    def test_evidence_is_forwarded(self, backend):
        verifier = PaymentVerifier(backend)
        evidence = {"razorpay_payment_id": "pay_1", "razorpay_signature": "sig"}
        run(verifier.verify(Provider.RAZORPAY, "txn-1", evidence))

        assert backend.verify_calls == [(Provider.RAZORPAY, "txn-1", evidence)]

    def test_not_confirmed_raises(self, backend):
        backend.verify_success = False
        verifier = PaymentVerifier(backend)

        with pytest.raises(VerificationFailedError) as exc_info:
            run(verifier.verify(Provider.CASHFREE, "TEMP_1"))
        assert exc_info.value.correlation_id == "TEMP_1"
        assert "Payment not completed" in str(exc_info.value)
        assert exc_info.value.definitive is True

    def test_transport_error_raises_verification_failed(self, backend):
        backend.verify_error = BackendError("timeout")
        verifier = PaymentVerifier(backend)

        with pytest.raises(VerificationFailedError) as exc_info:
            run(verifier.verify(Provider.RAZORPAY, "txn-1"))
        assert exc_info.value.definitive is False
