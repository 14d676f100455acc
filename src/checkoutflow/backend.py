"""Backend REST API access for checkoutflow."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from . import settings
from .errors import BackendError, OrderNotFoundError
from .models import (
    Address,
    Order,
    OrderItem,
    PaymentConfig,
    Provider,
    RefundRequest,
)

logger = logging.getLogger(__name__)


class Backend(Protocol):
    """Operations the checkout consumes from the storefront backend.

    Implementations raise BackendError for transport failures and
    unsuccessful responses; callers translate those at their operation
    boundary. Amounts passed to payment operations are integer paise;
    everything else is rupees.
    """

    async def list_addresses(self) -> list[Address]:
        ...

    async def create_address(self, data: dict[str, Any]) -> Address:
        ...

    async def update_address(self, address_id: str, data: dict[str, Any]) -> Address:
        ...

    async def delete_address(self, address_id: str) -> None:
        ...

    async def set_default_address(self, address_id: str) -> None:
        ...

    async def get_payment_config(self) -> PaymentConfig:
        ...

    async def create_payment_order(
        self,
        temp_order_id: str,
        amount_minor: int,
        provider: Provider,
        customer: dict[str, str],
    ) -> dict[str, Any]:
        """Create a provider order.

        Returns:
            {"transactionId", "providerOrderHandle", "providerKey", "currency"}
        """
        ...

    async def create_simple_session(self, temp_order_id: str, amount_minor: int) -> dict[str, Any]:
        """Create a hosted payment session.

        Returns:
            {"paymentSessionToken"}
        """
        ...

    async def verify_payment(
        self,
        provider: Provider,
        correlation_id: str,
        evidence: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Re-query the provider for a payment.

        Returns:
            {"success": bool, "transactionId": str | None}
        """
        ...

    async def create_order(self, payload: dict[str, Any], idempotency_key: str | None = None) -> str:
        """Create an order and return its orderId."""
        ...

    async def get_order(self, order_id: str) -> Order:
        ...

    async def list_orders(self) -> list[Order]:
        ...

    async def cancel_item(self, item_id: str, quantity: int) -> OrderItem | None:
        ...

    async def request_refund(self, payload: dict[str, Any]) -> RefundRequest:
        ...

    async def list_refund_requests(self) -> list[RefundRequest]:
        ...


class HttpBackend:
    """Backend implementation over the storefront REST API.

    Responses use a {"success", "data", "message"} envelope.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize HttpBackend.

        Args:
            base_url: API root, e.g. "https://shop.example/api".
            token: Bearer token for the signed-in user.
            timeout: Per-request timeout in seconds.
            transport: Override transport (for testing).
        """
        headers = {"Accept": "application/json"}
        token = token if token is not None else settings.API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_URL,
            headers=headers,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpBackend":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded envelope."""
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise BackendError(f"{method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_error:
            message = body.get("message") or response.reason_phrase or "Request failed"
            logger.warning("%s %s -> %d: %s", method, path, response.status_code, message)
            raise BackendError(message, response.status_code)
        if body.get("success") is False:
            raise BackendError(body.get("message") or "Request was not successful", response.status_code)
        return body

    # Addresses

    async def list_addresses(self) -> list[Address]:
        body = await self._request("GET", "/newOrders/addresses")
        return [Address.from_dict(a) for a in body.get("data") or []]

    async def create_address(self, data: dict[str, Any]) -> Address:
        body = await self._request("POST", "/newOrders/addresses", json=data)
        return Address.from_dict(body.get("data") or {})

    async def update_address(self, address_id: str, data: dict[str, Any]) -> Address:
        body = await self._request("PUT", f"/newOrders/addresses/{address_id}", json=data)
        return Address.from_dict(body.get("data") or {})

    async def delete_address(self, address_id: str) -> None:
        await self._request("DELETE", f"/newOrders/addresses/{address_id}")

    async def set_default_address(self, address_id: str) -> None:
        await self._request("PUT", f"/newOrders/addresses/{address_id}/default")

    # Payments

    async def get_payment_config(self) -> PaymentConfig:
        body = await self._request("GET", "/payments/config")
        return PaymentConfig.from_dict(body.get("data") or {})

    async def create_payment_order(
        self,
        temp_order_id: str,
        amount_minor: int,
        provider: Provider,
        customer: dict[str, str],
    ) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/payments/create-order",
            json={
                "orderId": temp_order_id,
                "amount": amount_minor,
                "provider": provider.value,
                "customerName": customer.get("name", ""),
                "customerEmail": customer.get("email", ""),
                "customerPhone": customer.get("phone", ""),
            },
        )
        data = body.get("data") or {}
        payment_order = data.get("paymentOrder") or {}
        return {
            "transactionId": data.get("transactionId"),
            "providerOrderHandle": data.get("providerOrderId") or payment_order.get("id"),
            "providerKey": data.get("key_id"),
            "currency": payment_order.get("currency", "INR"),
        }

    async def create_simple_session(self, temp_order_id: str, amount_minor: int) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/payments/simple-payment",
            json={"orderId": temp_order_id, "amount": amount_minor},
        )
        data = body.get("data") or {}
        return {"paymentSessionToken": data.get("payment_session_id")}

    async def verify_payment(
        self,
        provider: Provider,
        correlation_id: str,
        evidence: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if provider == Provider.RAZORPAY:
            payload = {"transactionId": correlation_id, **(evidence or {})}
        else:
            payload = {"orderId": correlation_id, **(evidence or {})}
        try:
            body = await self._request("POST", f"/payments/verify/{provider.value}", json=payload)
        except BackendError as e:
            # An explicit "not paid" from the verify endpoint comes back as success=false
            if e.status_code is not None and e.status_code < 500:
                return {"success": False, "transactionId": None, "message": e.message}
            raise
        data = body.get("data") or {}
        return {
            "success": bool(body.get("success", False)),
            "transactionId": data.get("transactionId") or payload.get("transactionId"),
        }

    # Orders

    async def create_order(self, payload: dict[str, Any], idempotency_key: str | None = None) -> str:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request("POST", "/newOrders", json=payload, headers=headers)
        order_id = body.get("orderId") or (body.get("order") or {}).get("_id")
        if not order_id:
            raise BackendError("Order created without an orderId")
        return str(order_id)

    async def get_order(self, order_id: str) -> Order:
        try:
            body = await self._request("GET", f"/newOrders/{order_id}")
        except BackendError as e:
            if e.status_code == 404:
                raise OrderNotFoundError(order_id) from e
            raise
        data = body.get("data")
        if not data:
            raise OrderNotFoundError(order_id)
        return Order.from_dict(data)

    async def list_orders(self) -> list[Order]:
        body = await self._request("GET", "/newOrders")
        return [Order.from_dict(o) for o in body.get("data") or []]

    async def cancel_item(self, item_id: str, quantity: int) -> OrderItem | None:
        body = await self._request(
            "PUT", "/newOrders/cancel", json={"itemId": item_id, "quantity": quantity}
        )
        data = body.get("data")
        return OrderItem.from_dict(data) if isinstance(data, dict) and data.get("_id") else None

    async def request_refund(self, payload: dict[str, Any]) -> RefundRequest:
        body = await self._request("POST", "/newOrders/refund/request", json=payload)
        data = body.get("data") or {}
        return RefundRequest.from_dict({**payload, **data})

    async def list_refund_requests(self) -> list[RefundRequest]:
        body = await self._request("GET", "/newOrders/refund/requests")
        return [RefundRequest.from_dict(r) for r in body.get("data") or []]
