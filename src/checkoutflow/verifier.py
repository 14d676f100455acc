"""Server-side payment verification."""

import logging
from typing import Any

from .backend import Backend
from .errors import BackendError, VerificationFailedError
from .models import Provider, VerificationResult

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """Confirms with the provider, through the backend, that a payment succeeded.

    Client-side signals (gateway callbacks, window closure) only decide when
    to ask; the backend's answer is the only proof.
    """

    def __init__(self, backend: Backend):
        self._backend = backend

    async def verify(
        self,
        provider: Provider,
        correlation_id: str,
        evidence: dict[str, Any] | None = None,
    ) -> VerificationResult:
        """
        Verify a payment.

        Args:
            provider: Gateway that took the payment.
            correlation_id: Transaction ID (card gateway) or temp order ID (UPI gateway).
            evidence: Gateway callback parameters, forwarded for the server to check.

        Returns:
            A successful VerificationResult carrying the transaction ID.

        Raises:
            VerificationFailedError: If the provider does not confirm the payment
                (definitive) or could not be asked (not definitive).
        """
        try:
            response = await self._backend.verify_payment(provider, correlation_id, evidence)
        except BackendError as e:
            logger.error("Verification call for %s failed: %s", correlation_id, e)
            raise VerificationFailedError(
                provider.value, correlation_id, str(e), definitive=False
            ) from e

        if not response.get("success"):
            reason = response.get("message") or "provider did not confirm the payment"
            logger.warning("Payment %s not verified: %s", correlation_id, reason)
            raise VerificationFailedError(provider.value, correlation_id, reason)

        # The UPI gateway may confirm without echoing an ID; the temp order ID then identifies it
        transaction_id = response.get("transactionId") or correlation_id

        logger.info("Payment %s verified (%s)", correlation_id, transaction_id)
        return VerificationResult(success=True, transaction_id=transaction_id, provider=provider)
