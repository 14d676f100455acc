"""Data models for checkoutflow."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
import uuid


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new local record ID."""
    return str(uuid.uuid4())


def to_decimal(value: Any) -> Decimal:
    """Coerce a wire number (int, float, str) to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _money_out(value: Decimal) -> float | int:
    """Render a Decimal amount for JSON (ints stay ints)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


class PaymentMethod(str, Enum):
    COD = "COD"
    ONLINE = "ONLINE"


class Provider(str, Enum):
    RAZORPAY = "razorpay"  # card/netbanking gateway with native checkout
    CASHFREE = "cashfree"  # UPI/wallet gateway with session token


class ItemStatus(str, Enum):
    ORDERED = "Ordered"
    CANCELLED = "Cancelled"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    REFUNDED = "REFUNDED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class PaymentOption:
    """What the shopper picked on the Payment step: COD, or ONLINE through a provider."""

    method: PaymentMethod
    provider: Provider | None = None

    @classmethod
    def parse(cls, value: str) -> "PaymentOption":
        """Parse 'cod', 'razorpay' or 'cashfree' (case-insensitive)."""
        key = value.strip().lower()
        if key == "cod":
            return cls(PaymentMethod.COD)
        return cls(PaymentMethod.ONLINE, Provider(key))

    @property
    def key(self) -> str:
        if self.method == PaymentMethod.COD:
            return "cod"
        return self.provider.value if self.provider else "online"


# Cart


@dataclass
class CartItem:
    """A line in the shopping cart."""

    product_id: str
    color_id: str
    size: str
    quantity: int
    unit_price: Decimal
    name: str = ""
    image: str | None = None
    color_name: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.product_id, self.color_id, self.size)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "productId": self.product_id,
            "colorId": self.color_id,
            "size": self.size,
            "quantity": self.quantity,
            "price": str(self.unit_price),
            "name": self.name,
        }
        if self.image is not None:
            result["image"] = self.image
        if self.color_name is not None:
            result["colorName"] = self.color_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=str(data["productId"]),
            color_id=str(data["colorId"]),
            size=str(data["size"]),
            quantity=int(data["quantity"]),
            unit_price=to_decimal(data["price"]),
            name=data.get("name", ""),
            image=data.get("image"),
            color_name=data.get("colorName"),
        )

    def to_order_line(self) -> dict[str, Any]:
        """Order-creation payload for this line (only the fields the backend reads)."""
        return {
            "productId": self.product_id,
            "colorId": self.color_id,
            "size": self.size,
            "quantity": self.quantity,
            "price": _money_out(self.unit_price),
        }


# Addresses


@dataclass
class Address:
    """A saved shipping address."""

    id: str
    phone: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str = "India"
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
            "isDefault": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Address":
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            phone=data.get("phone", ""),
            address=data.get("address", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            postal_code=str(data.get("postalCode", "")),
            country=data.get("country") or "India",
            is_default=bool(data.get("isDefault", False)),
        )


@dataclass(frozen=True)
class ShippingInfo:
    """Address snapshot embedded in an order; later address edits never touch it."""

    address: str
    city: str
    state: str
    country: str
    postal_code: str
    phone: str

    @classmethod
    def from_address(cls, address: Address) -> "ShippingInfo":
        return cls(
            address=address.address,
            city=address.city,
            state=address.state,
            country=address.country,
            postal_code=address.postal_code,
            phone=address.phone,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postalCode": self.postal_code,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingInfo":
        return cls(
            address=data.get("address") or data.get("addressLine1", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            country=data.get("country", ""),
            postal_code=str(data.get("postalCode") or data.get("pincode") or ""),
            phone=data.get("phone", ""),
        )


# Payments


@dataclass
class ProviderConfig:
    name: str
    is_enabled: bool = False


@dataclass
class PaymentConfig:
    """Server-side payment switches."""

    cod_enabled: bool = False
    online_payment_enabled: bool = False
    providers: list[ProviderConfig] = field(default_factory=list)

    def is_enabled(self, option: PaymentOption) -> bool:
        if option.method == PaymentMethod.COD:
            return self.cod_enabled
        if not self.online_payment_enabled or option.provider is None:
            return False
        return any(
            p.name == option.provider.value and p.is_enabled for p in self.providers
        )

    def available_options(self) -> list[PaymentOption]:
        """Enabled options in display order: COD first, then providers as configured."""
        options = []
        cod = PaymentOption(PaymentMethod.COD)
        if self.is_enabled(cod):
            options.append(cod)
        for p in self.providers:
            try:
                provider = Provider(p.name)
            except ValueError:
                continue  # provider this client cannot launch
            option = PaymentOption(PaymentMethod.ONLINE, provider)
            if self.is_enabled(option):
                options.append(option)
        return options

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentConfig":
        return cls(
            cod_enabled=bool(data.get("codEnabled", False)),
            online_payment_enabled=bool(data.get("onlinePaymentEnabled", False)),
            providers=[
                ProviderConfig(name=p["name"], is_enabled=bool(p.get("isEnabled", False)))
                for p in data.get("providers", [])
            ],
        )


@dataclass
class PaymentIntent:
    """Client-side placeholder between 'place order' and order creation. Never persisted."""

    temp_order_id: str
    amount: Decimal  # subtotal + shipping, currency units
    provider: Provider
    created_at: str = field(default_factory=_utc_now)


@dataclass
class ProviderHandle:
    """What a provider returned for a new payment session."""

    provider: Provider
    temp_order_id: str
    amount_minor: int  # paise
    transaction_id: str | None = None
    provider_order_handle: str | None = None
    provider_key: str | None = None
    payment_session_token: str | None = None
    currency: str = "INR"


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    transaction_id: str | None
    provider: Provider


# Orders


@dataclass
class OrderItem:
    """One order line with its own post-purchase state."""

    id: str
    product_id: str
    color_id: str
    size: str
    quantity: int  # remaining (non-cancelled) units
    amount: Decimal  # unit price
    order_status: ItemStatus = ItemStatus.ORDERED
    cancelled_at: str | None = None
    cancelled_quantity: int = 0
    refund_requested_at: str | None = None
    refund_status: RefundStatus | None = None
    refund_amount: Decimal | None = None
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "_id": self.id,
            "productId": self.product_id,
            "colorId": self.color_id,
            "size": self.size,
            "quantity": self.quantity,
            "amount": _money_out(self.amount),
            "orderStatus": self.order_status.value,
            "cancelledQuantity": self.cancelled_quantity,
            "cancelledAt": self.cancelled_at,
            "refundRequestedAt": self.refund_requested_at,
            "refundStatus": self.refund_status.value if self.refund_status else None,
            "refundAmount": (
                _money_out(self.refund_amount) if self.refund_amount is not None else None
            ),
        }
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        amount = data.get("amount")
        if isinstance(amount, dict):
            amount = amount.get("price")
        if amount is None:
            amount = data.get("price")
        product = data.get("product")
        product_id = data.get("productId")
        name = data.get("name", "")
        if isinstance(product, dict):
            product_id = product_id or product.get("_id")
            name = name or product.get("name", "")
        elif product and not product_id:
            product_id = product
        color = data.get("color")
        color_id = data.get("colorId")
        if isinstance(color, dict):
            color_id = color_id or color.get("_id")
        refund_status = data.get("refundStatus")
        refund_amount = data.get("refundAmount")
        return cls(
            id=str(data.get("_id") or data.get("id")),
            product_id=str(product_id or ""),
            color_id=str(color_id or ""),
            size=str(data.get("size") or ""),
            quantity=int(data.get("quantity", 0)),
            amount=to_decimal(amount),
            order_status=ItemStatus(data.get("orderStatus", ItemStatus.ORDERED.value)),
            cancelled_at=data.get("cancelledAt"),
            cancelled_quantity=int(data.get("cancelledQuantity", 0)),
            refund_requested_at=data.get("refundRequestedAt"),
            refund_status=RefundStatus(refund_status) if refund_status else None,
            refund_amount=to_decimal(refund_amount) if refund_amount is not None else None,
            name=name,
        )


@dataclass
class Order:
    """A placed order. total_amount is fixed at creation and never recomputed."""

    order_id: str
    items: list[OrderItem]
    shipping_info: ShippingInfo
    payment_method: PaymentMethod
    shipping_charges: Decimal
    total_amount: Decimal
    payment_provider: Provider | None = None
    transaction_id: str | None = None
    overall_status: str = "PROCESSING"
    ordered_at: str = field(default_factory=_utc_now)

    def get_item(self, item_id: str) -> OrderItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "items": [i.to_dict() for i in self.items],
            "shippingInfo": self.shipping_info.to_dict(),
            "paymentMethod": self.payment_method.value,
            "paymentProvider": self.payment_provider.value if self.payment_provider else None,
            "transactionId": self.transaction_id,
            "shippingCharges": _money_out(self.shipping_charges),
            "totalAmount": _money_out(self.total_amount),
            "overallStatus": self.overall_status,
            "orderedAt": self.ordered_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        provider = data.get("paymentProvider")
        shipping = data.get("shippingInfo") or data.get("shippingAddress") or {}
        return cls(
            order_id=str(data.get("orderId") or data.get("_id")),
            items=[OrderItem.from_dict(i) for i in data.get("items", [])],
            shipping_info=ShippingInfo.from_dict(shipping),
            payment_method=PaymentMethod(data.get("paymentMethod", PaymentMethod.COD.value)),
            shipping_charges=to_decimal(data.get("shippingCharges", 0)),
            total_amount=to_decimal(data.get("totalAmount", 0)),
            payment_provider=Provider(provider) if provider else None,
            transaction_id=data.get("transactionId"),
            overall_status=data.get("overallStatus", "PROCESSING"),
            ordered_at=data.get("orderedAt", ""),
        )


# Refunds


class AccountType(str, Enum):
    UPI = "UPI"
    BANK = "BANK"


@dataclass
class RefundAccountDetails:
    """Where a refund should be paid out."""

    account_type: AccountType
    upi_id: str | None = None
    phone_number: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    ifsc_code: str | None = None
    account_holder_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.account_type == AccountType.UPI:
            return {
                "accountType": self.account_type.value,
                "upiId": self.upi_id,
                "phoneNumber": self.phone_number,
            }
        return {
            "accountType": self.account_type.value,
            "bankName": self.bank_name,
            "accountNumber": self.account_number,
            "ifscCode": self.ifsc_code.upper() if self.ifsc_code else None,
            "accountHolderName": self.account_holder_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundAccountDetails":
        return cls(
            account_type=AccountType(data.get("accountType", AccountType.UPI.value)),
            upi_id=data.get("upiId"),
            phone_number=data.get("phoneNumber"),
            bank_name=data.get("bankName"),
            account_number=data.get("accountNumber"),
            ifsc_code=data.get("ifscCode"),
            account_holder_name=data.get("accountHolderName"),
        )


@dataclass
class RefundRequest:
    """A refund filed against a cancelled order item."""

    id: str
    order_id: str
    item_id: str
    amount: Decimal
    reason: str
    quantity: int
    refund_status: RefundStatus = RefundStatus.PENDING
    requested_at: str = field(default_factory=_utc_now)
    account_details: RefundAccountDetails | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundRequest":
        details = data.get("refundAccountDetails")
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            order_id=str(data.get("orderId", "")),
            item_id=str(data.get("itemId", "")),
            amount=to_decimal(data.get("refundAmount", data.get("amount", 0))),
            reason=data.get("note") or data.get("reason") or "",
            quantity=int(data.get("quantity", 1)),
            refund_status=RefundStatus(data.get("refundStatus", RefundStatus.PENDING.value)),
            requested_at=data.get("refundRequestedAt") or data.get("requestedAt") or "",
            account_details=RefundAccountDetails.from_dict(details) if details else None,
        )


# Reconciliation


@dataclass
class CaptureRecord:
    """A payment the provider confirmed but for which no order could be created."""

    id: str
    transaction_id: str
    provider: str
    temp_order_id: str
    amount: str  # currency units, kept as string for exactness
    reason: str
    cart: list[dict[str, Any]]
    shipping_info: dict[str, Any]
    created_at: str
    resolved: bool = False
    resolved_at: str | None = None
    resolution_note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "provider": self.provider,
            "temp_order_id": self.temp_order_id,
            "amount": self.amount,
            "reason": self.reason,
            "cart": self.cart,
            "shipping_info": self.shipping_info,
            "created_at": self.created_at,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at,
            "resolution_note": self.resolution_note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaptureRecord":
        return cls(
            id=data["id"],
            transaction_id=data["transaction_id"],
            provider=data["provider"],
            temp_order_id=data["temp_order_id"],
            amount=data["amount"],
            reason=data.get("reason", ""),
            cart=data.get("cart", []),
            shipping_info=data.get("shipping_info", {}),
            created_at=data["created_at"],
            resolved=data.get("resolved", False),
            resolved_at=data.get("resolved_at"),
            resolution_note=data.get("resolution_note"),
        )
