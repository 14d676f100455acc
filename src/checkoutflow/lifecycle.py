"""Post-purchase transitions for individual order items."""

import copy
import logging
from decimal import Decimal

from .backend import Backend
from .errors import (
    BackendError,
    LifecycleConflictError,
    OrderItemNotFoundError,
    ValidationError,
)
from .models import (
    AccountType,
    ItemStatus,
    Order,
    OrderItem,
    PaymentMethod,
    RefundAccountDetails,
    RefundRequest,
    RefundStatus,
    _money_out,
    _utc_now,
)

logger = logging.getLogger(__name__)

REFUND_APPROVED = "approved"
REFUND_DENIED = "denied"
REFUND_PENDING = "pending"


def can_cancel(item: OrderItem) -> bool:
    """An item can be cancelled while it is Ordered and no cancellation is recorded."""
    return item.order_status == ItemStatus.ORDERED and item.cancelled_at is None


def can_refund(item: OrderItem, order: Order) -> bool:
    """
    Whether a refund may be requested for item.

    Only cancelled items of online-paid orders qualify, and only once.
    COD orders never qualify: there is no captured payment to reverse.
    """
    if order.payment_method != PaymentMethod.ONLINE:
        return False
    return (
        item.order_status == ItemStatus.CANCELLED
        and item.refund_requested_at is None
        and item.refund_amount is None
    )


def refund_display_status(item: OrderItem) -> str | None:
    """Derive the refund state shown to the shopper."""
    if item.refund_status == RefundStatus.REFUNDED:
        return REFUND_APPROVED
    if item.refund_status == RefundStatus.REJECTED:
        return REFUND_DENIED
    if item.refund_requested_at is not None:
        return REFUND_PENDING
    return None


def validate_account_details(details: RefundAccountDetails) -> RefundAccountDetails:
    """
    Check refund payout details.

    Raises:
        ValidationError: If a UPI ID is malformed or bank fields are missing.
    """
    if details.account_type == AccountType.UPI:
        upi_id = (details.upi_id or "").strip()
        if not upi_id:
            raise ValidationError("upiId", "is required")
        if "@" not in upi_id:
            raise ValidationError("upiId", "Please enter a valid UPI ID")
        details.upi_id = upi_id
        return details

    for name, value in (
        ("bankName", details.bank_name),
        ("accountNumber", details.account_number),
        ("ifscCode", details.ifsc_code),
        ("accountHolderName", details.account_holder_name),
    ):
        if not (value or "").strip():
            raise ValidationError(name, "is required")
    details.ifsc_code = details.ifsc_code.strip().upper()
    return details


class OrderItemLifecycleManager:
    """Cancels items and files refund requests with apply-then-confirm.

    Each action first applies a local projection to the tracked copy of the
    order, then issues the backend call, then re-fetches the order. The
    re-fetched state always replaces the projection, so a rejected action
    never leaves the projection behind. When the re-fetch itself fails the
    order is marked stale: reconcile() or load() retries it, and no further
    action is taken on it until that succeeds.
    """

    def __init__(self, backend: Backend):
        self._backend = backend
        self.orders: dict[str, Order] = {}
        self.stale: set[str] = set()

    async def load(self, order_id: str) -> Order:
        """Fetch an order and start tracking it."""
        order = await self._backend.get_order(order_id)
        self.orders[order.order_id] = order
        self.stale.discard(order.order_id)
        return order

    def is_stale(self, order_id: str) -> bool:
        return order_id in self.stale

    async def reconcile(self) -> list[str]:
        """
        Re-fetch every stale order.

        Returns:
            IDs of orders that are still stale.
        """
        for order_id in list(self.stale):
            await self._resync(self.orders[order_id])
        return sorted(self.stale)

    async def _require_fresh(self, order: Order, item_id: str) -> Order:
        if order.order_id not in self.stale:
            return order
        fresh = await self._resync(order)
        if fresh.order_id in self.stale:
            raise LifecycleConflictError(
                item_id, f"order {order.order_id} is out of date; reload it and try again"
            )
        return fresh

    def _require_item(self, order: Order, item_id: str) -> OrderItem:
        item = order.get_item(item_id)
        if item is None:
            raise OrderItemNotFoundError(order.order_id, item_id)
        return item

    async def _resync(self, order: Order) -> Order:
        try:
            fresh = await self._backend.get_order(order.order_id)
        except BackendError as e:
            logger.warning("Could not re-fetch order %s; marked stale: %s", order.order_id, e)
            self.stale.add(order.order_id)
            return self.orders.get(order.order_id, order)
        self.orders[fresh.order_id] = fresh
        self.stale.discard(fresh.order_id)
        return fresh

    async def cancel_item(self, order: Order, item_id: str, quantity: int) -> Order:
        """
        Cancel quantity units of an item.

        Cancelling fewer than the remaining units keeps the item Ordered;
        cancelling all of them moves it to Cancelled.

        Returns:
            The re-fetched order.

        Raises:
            OrderItemNotFoundError: If item_id isn't in the order.
            LifecycleConflictError: If the item can't be cancelled, or the
                backend rejected the cancellation.
            ValidationError: If quantity is outside 1..remaining.
        """
        order = await self._require_fresh(order, item_id)
        item = self._require_item(order, item_id)
        if not can_cancel(item):
            raise LifecycleConflictError(item_id, f"item is {item.order_status.value}")
        if quantity < 1 or quantity > item.quantity:
            raise ValidationError(
                "quantity", f"must be between 1 and {item.quantity}, got {quantity}"
            )

        projected = copy.deepcopy(order)
        projected_item = projected.get_item(item_id)
        projected_item.quantity -= quantity
        projected_item.cancelled_quantity += quantity
        if projected_item.quantity == 0:
            projected_item.order_status = ItemStatus.CANCELLED
            projected_item.cancelled_at = _utc_now()
        self.orders[order.order_id] = projected

        try:
            await self._backend.cancel_item(item_id, quantity)
        except BackendError as e:
            fresh = await self._resync(order)
            if fresh is projected:
                # Could not resync; drop the projection rather than keep it
                self.orders[order.order_id] = order
            logger.warning("Cancellation of %s rejected: %s", item_id, e)
            raise LifecycleConflictError(item_id, e.message) from e

        logger.info("Cancelled %d unit(s) of item %s in order %s", quantity, item_id, order.order_id)
        return await self._resync(projected)

    async def request_refund(
        self,
        order: Order,
        item_id: str,
        reason: str,
        amount: Decimal | None = None,
        account_details: RefundAccountDetails | None = None,
        quantity: int | None = None,
    ) -> tuple[Order, RefundRequest]:
        """
        File a refund request for a cancelled item.

        Args:
            order: Order holding the item.
            item_id: Cancelled item to refund.
            reason: Free-text note for the reviewer.
            amount: Requested amount; defaults to unit price x quantity.
            account_details: Optional payout account.
            quantity: Units to refund; defaults to the cancelled units.

        Returns:
            (re-fetched order, created RefundRequest).

        Raises:
            LifecycleConflictError: If the item is not refund-eligible or the
                backend rejected the request.
            ValidationError: If amount, quantity or account details are invalid.
        """
        order = await self._require_fresh(order, item_id)
        item = self._require_item(order, item_id)
        if not can_refund(item, order):
            if order.payment_method != PaymentMethod.ONLINE:
                reason_text = "cash on delivery orders are not refundable"
            elif item.order_status != ItemStatus.CANCELLED:
                reason_text = "only cancelled items can be refunded"
            else:
                reason_text = "a refund was already requested"
            raise LifecycleConflictError(item_id, reason_text)

        refundable_units = item.cancelled_quantity or item.quantity or 1
        if quantity is None:
            quantity = refundable_units
        if quantity < 1 or quantity > refundable_units:
            raise ValidationError(
                "quantity", f"must be between 1 and {refundable_units}, got {quantity}"
            )

        max_amount = item.amount * quantity
        if amount is None:
            amount = max_amount
        if amount <= 0:
            raise ValidationError("amount", "must be greater than 0")
        if amount > max_amount:
            raise ValidationError("amount", f"cannot exceed {max_amount}")

        if account_details is not None:
            account_details = validate_account_details(account_details)

        payload = {
            "orderId": order.order_id,
            "itemId": item_id,
            "quantity": quantity,
            "refundAmount": _money_out(amount),
            "note": reason,
            "refundAccountDetails": account_details.to_dict() if account_details else None,
        }

        projected = copy.deepcopy(order)
        projected_item = projected.get_item(item_id)
        projected_item.refund_requested_at = _utc_now()
        projected_item.refund_status = RefundStatus.PENDING
        self.orders[order.order_id] = projected

        try:
            refund = await self._backend.request_refund(payload)
        except BackendError as e:
            fresh = await self._resync(order)
            if fresh is projected:
                self.orders[order.order_id] = order
            logger.warning("Refund request for %s rejected: %s", item_id, e)
            raise LifecycleConflictError(item_id, e.message) from e

        logger.info("Refund of %s requested for item %s", amount, item_id)
        return await self._resync(projected), refund
