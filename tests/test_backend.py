"""Tests for HttpBackend over httpx.MockTransport."""

import json

import httpx
import pytest

from checkoutflow.backend import HttpBackend
from checkoutflow.errors import BackendError, OrderNotFoundError
from checkoutflow.models import ItemStatus, PaymentMethod, Provider

from .conftest import run

BASE_URL = "http://shop.test/api"


def make_backend(handler):
    return HttpBackend(
        base_url=BASE_URL, token="tok", timeout=5, transport=httpx.MockTransport(handler)
    )


def call(handler, method_name, *args, **kwargs):
    async def go():
        async with make_backend(handler) as backend:
            return await getattr(backend, method_name)(*args, **kwargs)

    return run(go())


class TestEnvelope:
    def test_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True, "data": []})

        call(handler, "list_addresses")
        assert seen["auth"] == "Bearer tok"

    def test_http_error_becomes_backend_error(self):
        def handler(request):
            return httpx.Response(500, json={"success": False, "message": "boom"})

        with pytest.raises(BackendError) as exc_info:
            call(handler, "list_addresses")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "boom"

    def test_success_false_becomes_backend_error(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "message": "nope"})

        with pytest.raises(BackendError):
            call(handler, "get_payment_config")

    def test_transport_error_becomes_backend_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendError):
            call(handler, "list_addresses")


class TestPayments:
    def test_payment_config(self):
        def handler(request):
            assert request.url.path == "/api/payments/config"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "codEnabled": True,
                        "onlinePaymentEnabled": True,
                        "providers": [{"name": "razorpay", "isEnabled": True}],
                    },
                },
            )

        config = call(handler, "get_payment_config")
        assert config.cod_enabled is True
        assert config.providers[0].name == "razorpay"

    def test_create_payment_order(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["amount"] == 65000
            assert body["orderId"] == "TEMP_1"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "transactionId": "txn-1",
                        "paymentOrder": {"id": "order_rzp_1", "amount": 65000, "currency": "INR"},
                        "key_id": "rzp_key",
                    },
                },
            )

        data = call(handler, "create_payment_order", "TEMP_1", 65000, Provider.RAZORPAY, {})
        assert data == {
            "transactionId": "txn-1",
            "providerOrderHandle": "order_rzp_1",
            "providerKey": "rzp_key",
            "currency": "INR",
        }

    def test_simple_session(self):
        def handler(request):
            assert request.url.path == "/api/payments/simple-payment"
            return httpx.Response(
                200, json={"success": True, "data": {"payment_session_id": "sess_1"}}
            )

        data = call(handler, "create_simple_session", "TEMP_1", 65000)
        assert data["paymentSessionToken"] == "sess_1"

    def test_verify_cashfree(self):
        def handler(request):
            assert request.url.path == "/api/payments/verify/cashfree"
            assert json.loads(request.content) == {"orderId": "TEMP_1"}
            return httpx.Response(
                200, json={"success": True, "data": {"transactionId": "cf_txn"}}
            )

        data = call(handler, "verify_payment", Provider.CASHFREE, "TEMP_1")
        assert data == {"success": True, "transactionId": "cf_txn"}

    def test_verify_razorpay_forwards_evidence(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["transactionId"] == "txn-1"
            assert body["razorpay_signature"] == "sig"
            return httpx.Response(200, json={"success": True, "data": {}})

        data = call(
            handler, "verify_payment", Provider.RAZORPAY, "txn-1", {"razorpay_signature": "sig"}
        )
        assert data["transactionId"] == "txn-1"

    def test_verify_rejection_is_unsuccessful(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "message": "Signature mismatch"})

        data = call(handler, "verify_payment", Provider.RAZORPAY, "txn-1")
        assert data["success"] is False
        assert data["message"] == "Signature mismatch"


class TestOrders:
    def test_create_order_sends_idempotency_key(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("idempotency-key")
            return httpx.Response(201, json={"success": True, "orderId": "ord-1"})

        order_id = call(handler, "create_order", {"items": []}, idempotency_key="TEMP_1")
        assert order_id == "ord-1"
        assert seen["key"] == "TEMP_1"

    def test_create_order_reads_nested_id(self):
        def handler(request):
            return httpx.Response(201, json={"success": True, "order": {"_id": "ord-2"}})

        assert call(handler, "create_order", {"items": []}) == "ord-2"

    def test_create_order_without_id_fails(self):
        def handler(request):
            return httpx.Response(201, json={"success": True})

        with pytest.raises(BackendError):
            call(handler, "create_order", {"items": []})

    def test_get_order(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "orderId": "ord-1",
                        "paymentMethod": "ONLINE",
                        "paymentProvider": "cashfree",
                        "totalAmount": 650,
                        "shippingCharges": 0,
                        "shippingInfo": {"address": "1 MG Road", "city": "Pune"},
                        "items": [
                            {
                                "_id": "it-1",
                                "product": {"_id": "p1", "name": "Kurta"},
                                "color": {"_id": "c1"},
                                "size": "M",
                                "quantity": 1,
                                "amount": {"price": 650},
                                "orderStatus": "Cancelled",
                                "refundStatus": "PENDING",
                            }
                        ],
                    },
                },
            )

        order = call(handler, "get_order", "ord-1")
        assert order.payment_method == PaymentMethod.ONLINE
        assert order.payment_provider == Provider.CASHFREE
        item = order.items[0]
        assert item.product_id == "p1"
        assert item.name == "Kurta"
        assert item.order_status == ItemStatus.CANCELLED
        assert str(item.amount) == "650"

    def test_get_order_404(self):
        def handler(request):
            return httpx.Response(404, json={"success": False, "message": "Order not found"})

        with pytest.raises(OrderNotFoundError):
            call(handler, "get_order", "missing")

    def test_cancel_item(self):
        def handler(request):
            assert request.method == "PUT"
            assert request.url.path == "/api/newOrders/cancel"
            assert json.loads(request.content) == {"itemId": "it-1", "quantity": 2}
            return httpx.Response(200, json={"success": True, "data": {}})

        assert call(handler, "cancel_item", "it-1", 2) is None

    def test_request_refund(self):
        def handler(request):
            assert request.url.path == "/api/newOrders/refund/request"
            return httpx.Response(200, json={"success": True, "data": {"_id": "rf-1"}})

        refund = call(
            handler,
            "request_refund",
            {"orderId": "ord-1", "itemId": "it-1", "quantity": 1, "refundAmount": 650},
        )
        assert refund.id == "rf-1"
        assert refund.item_id == "it-1"
        assert str(refund.amount) == "650"

    def test_list_orders(self):
        def handler(request):
            assert request.url.path == "/api/newOrders"
            return httpx.Response(
                200,
                json={"success": True, "data": [{"orderId": "ord-1", "items": []}]},
            )

        orders = call(handler, "list_orders")
        assert [o.order_id for o in orders] == ["ord-1"]

    def test_list_refund_requests(self):
        def handler(request):
            assert request.url.path == "/api/newOrders/refund/requests"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": [
                        {
                            "_id": "rf-1",
                            "orderId": "ord-1",
                            "itemId": "it-1",
                            "refundAmount": 200,
                            "refundStatus": "REFUNDED",
                            "refundAccountDetails": {"accountType": "UPI", "upiId": "a@b"},
                        }
                    ],
                },
            )

        refunds = call(handler, "list_refund_requests")
        assert refunds[0].refund_status.value == "REFUNDED"
        assert refunds[0].account_details.upi_id == "a@b"


class TestAddresses:
    def test_create_address(self):
        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/api/newOrders/addresses"
            body = json.loads(request.content)
            return httpx.Response(201, json={"success": True, "data": {**body, "_id": "a-9"}})

        address = call(
            handler,
            "create_address",
            {"phone": "9876543210", "address": "x", "city": "y", "state": "z", "postalCode": "411001"},
        )
        assert address.id == "a-9"
        assert address.postal_code == "411001"

    def test_set_default(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["method"] = request.method
            return httpx.Response(200, json={"success": True})

        call(handler, "set_default_address", "a-1")
        assert seen == {"path": "/api/newOrders/addresses/a-1/default", "method": "PUT"}
