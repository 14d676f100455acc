"""FastAPI REST API for the checkout flow."""

from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__, settings
from .backend import Backend, HttpBackend
from .cart import CART_FILE, CartStore
from .checkout import CheckoutSession
from .errors import (
    AddressNotFoundError,
    BackendError,
    CaptureNotFoundError,
    CapturedPaymentError,
    CheckoutError,
    InvalidSchemaVersionError,
    LifecycleConflictError,
    OrderCreationAfterPaymentFailedError,
    OrderCreationError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    PaymentSessionError,
    PaymentUnverifiedAfterCaptureError,
    PlacementError,
    ProviderInitError,
    ValidationError,
    VerificationFailedError,
)
from .lifecycle import OrderItemLifecycleManager, can_cancel, can_refund, refund_display_status
from .models import (
    Address,
    CaptureRecord,
    CartItem,
    Order,
    OrderItem,
    RefundAccountDetails,
    RefundRequest,
    to_decimal,
)
from .payments import CheckoutLauncher
from .reconciliation import CaptureLedger
from .shipping import quote
from .stepper import Step


# --- Pydantic Schemas ---


class CartItemSchema(BaseModel):
    product_id: str
    color_id: str
    size: str
    quantity: int
    unit_price: float
    line_total: float
    name: str = ""
    image: Optional[str] = None
    color_name: Optional[str] = None


class CartResponse(BaseModel):
    items: list[CartItemSchema]
    item_count: int
    subtotal: float


class CartItemCreateRequest(BaseModel):
    product_id: str
    color_id: str
    size: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(..., ge=0)
    name: str = ""
    image: Optional[str] = None
    color_name: Optional[str] = None


class CartItemUpdateRequest(BaseModel):
    product_id: str
    color_id: str
    size: str
    quantity: int


class ShippingQuoteSchema(BaseModel):
    payment_method: Optional[str]
    subtotal: float
    shipping: float
    total: float


class AddressSchema(BaseModel):
    id: str
    phone: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool


class AddressCreateSchema(BaseModel):
    phone: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str = "India"
    is_default: bool = False


class AddressSelectRequest(BaseModel):
    """Select a saved address by ID, or create and select a new one."""

    address_id: Optional[str] = None
    address: Optional[AddressCreateSchema] = None


class PaymentSelectRequest(BaseModel):
    method: str = Field(..., description="'cod', 'razorpay' or 'cashfree'")


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


class CheckoutStateResponse(BaseModel):
    step: str
    step_number: Optional[int]
    addresses: list[AddressSchema]
    selected_address_id: Optional[str]
    payment_method: Optional[str]
    available_payment_methods: list[str]
    no_payment_methods_available: bool
    quote: ShippingQuoteSchema
    can_place: bool
    is_placing: bool
    last_outcome: Optional[str] = None
    last_error: Optional[ErrorResponse] = None


class OrderItemSchema(BaseModel):
    id: str
    product_id: str
    color_id: str
    size: str
    name: str
    quantity: int
    amount: float
    order_status: str
    cancelled_quantity: int
    cancelled_at: Optional[str]
    refund_requested_at: Optional[str]
    refund_status: Optional[str]
    refund_amount: Optional[float]
    refund_display_status: Optional[str]
    can_cancel: bool
    can_refund: bool


class OrderSchema(BaseModel):
    order_id: str
    items: list[OrderItemSchema]
    shipping_info: dict
    payment_method: str
    payment_provider: Optional[str]
    transaction_id: Optional[str]
    shipping_charges: float
    total_amount: float
    overall_status: str
    ordered_at: str


class CancelItemRequest(BaseModel):
    quantity: int = Field(default=1)


class RefundAccountSchema(BaseModel):
    account_type: str = Field(..., description="'UPI' or 'BANK'")
    upi_id: Optional[str] = None
    phone_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    account_holder_name: Optional[str] = None


class RefundItemRequest(BaseModel):
    reason: str = ""
    amount: Optional[float] = None
    quantity: Optional[int] = None
    account_details: Optional[RefundAccountSchema] = None


class RefundRequestSchema(BaseModel):
    id: str
    order_id: str
    item_id: str
    amount: float
    reason: str
    quantity: int
    refund_status: str
    requested_at: str


class RefundResponse(BaseModel):
    order: OrderSchema
    refund: RefundRequestSchema


class CaptureSchema(BaseModel):
    id: str
    transaction_id: str
    provider: str
    temp_order_id: str
    amount: str
    reason: str
    created_at: str
    resolved: bool
    resolved_at: Optional[str]
    resolution_note: Optional[str]


class CaptureListResponse(BaseModel):
    captures: list[CaptureSchema]
    count: int


class CaptureResolveRequest(BaseModel):
    note: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int


class RefundListResponse(BaseModel):
    refunds: list[RefundRequestSchema]
    count: int


# --- Session State ---

# The API serves one shopper's checkout; configure() swaps the collaborators.
_state: dict = {
    "backend": None,
    "cart": None,
    "ledger": None,
    "launcher": None,
    "session": None,
}


def configure(
    backend: Backend | None = None,
    cart: CartStore | None = None,
    ledger: CaptureLedger | None = None,
    launcher: CheckoutLauncher | None = None,
) -> None:
    """Set the collaborators used by the endpoints and drop the current session."""
    _state.update(
        backend=backend, cart=cart, ledger=ledger, launcher=launcher, session=None
    )


def get_backend() -> Backend:
    if _state["backend"] is None:
        _state["backend"] = HttpBackend()
    return _state["backend"]


def get_cart() -> CartStore:
    if _state["cart"] is None:
        _state["cart"] = CartStore(settings.DATA_DIR / CART_FILE)
    return _state["cart"]


def get_ledger() -> CaptureLedger:
    if _state["ledger"] is None:
        _state["ledger"] = CaptureLedger()
    return _state["ledger"]


def get_session() -> CheckoutSession:
    if _state["session"] is None:
        _state["session"] = CheckoutSession(
            get_backend(),
            get_cart(),
            launcher=_state["launcher"],
            ledger=get_ledger(),
        )
    return _state["session"]


async def get_started_session() -> CheckoutSession:
    """The checkout session, loaded from the backend on first use."""
    session = get_session()
    if not session.started:
        await session.start()
    return session


# --- Converters ---


def cart_item_to_schema(item: CartItem) -> CartItemSchema:
    return CartItemSchema(
        product_id=item.product_id,
        color_id=item.color_id,
        size=item.size,
        quantity=item.quantity,
        unit_price=float(item.unit_price),
        line_total=float(item.line_total),
        name=item.name,
        image=item.image,
        color_name=item.color_name,
    )


def cart_to_response(cart: CartStore) -> CartResponse:
    return CartResponse(
        items=[cart_item_to_schema(i) for i in cart.items],
        item_count=cart.item_count(),
        subtotal=float(cart.subtotal()),
    )


def address_to_schema(address: Address) -> AddressSchema:
    return AddressSchema(
        id=address.id,
        phone=address.phone,
        address=address.address,
        city=address.city,
        state=address.state,
        postal_code=address.postal_code,
        country=address.country,
        is_default=address.is_default,
    )


def order_item_to_schema(item: OrderItem, order: Order) -> OrderItemSchema:
    return OrderItemSchema(
        id=item.id,
        product_id=item.product_id,
        color_id=item.color_id,
        size=item.size,
        name=item.name,
        quantity=item.quantity,
        amount=float(item.amount),
        order_status=item.order_status.value,
        cancelled_quantity=item.cancelled_quantity,
        cancelled_at=item.cancelled_at,
        refund_requested_at=item.refund_requested_at,
        refund_status=item.refund_status.value if item.refund_status else None,
        refund_amount=float(item.refund_amount) if item.refund_amount is not None else None,
        refund_display_status=refund_display_status(item),
        can_cancel=can_cancel(item),
        can_refund=can_refund(item, order),
    )


def order_to_schema(order: Order) -> OrderSchema:
    return OrderSchema(
        order_id=order.order_id,
        items=[order_item_to_schema(i, order) for i in order.items],
        shipping_info=order.shipping_info.to_dict(),
        payment_method=order.payment_method.value,
        payment_provider=order.payment_provider.value if order.payment_provider else None,
        transaction_id=order.transaction_id,
        shipping_charges=float(order.shipping_charges),
        total_amount=float(order.total_amount),
        overall_status=order.overall_status,
        ordered_at=order.ordered_at,
    )


def refund_to_schema(refund: RefundRequest) -> RefundRequestSchema:
    return RefundRequestSchema(
        id=refund.id,
        order_id=refund.order_id,
        item_id=refund.item_id,
        amount=float(refund.amount),
        reason=refund.reason,
        quantity=refund.quantity,
        refund_status=refund.refund_status.value,
        requested_at=refund.requested_at,
    )


def capture_to_schema(record: CaptureRecord) -> CaptureSchema:
    return CaptureSchema(
        id=record.id,
        transaction_id=record.transaction_id,
        provider=record.provider,
        temp_order_id=record.temp_order_id,
        amount=record.amount,
        reason=record.reason,
        created_at=record.created_at,
        resolved=record.resolved,
        resolved_at=record.resolved_at,
        resolution_note=record.resolution_note,
    )


def checkout_state(session: CheckoutSession) -> CheckoutStateResponse:
    stepper = session.stepper
    current = session.quote()
    error = None
    if stepper.last_error is not None:
        error = ErrorResponse(
            detail=str(stepper.last_error), error_type=type(stepper.last_error).__name__
        )
    return CheckoutStateResponse(
        step=stepper.step.value,
        step_number=stepper.step.number,
        addresses=[address_to_schema(a) for a in session.addresses.addresses],
        selected_address_id=stepper.address.id if stepper.address else None,
        payment_method=stepper.payment.key if stepper.payment else None,
        available_payment_methods=[o.key for o in session.available_options()],
        no_payment_methods_available=session.no_payment_methods_available,
        quote=ShippingQuoteSchema(
            payment_method=stepper.payment.method.value if stepper.payment else None,
            subtotal=float(current.subtotal),
            shipping=float(current.shipping),
            total=float(current.total),
        ),
        can_place=stepper.can_place,
        is_placing=stepper.is_placing,
        last_outcome=stepper.last_outcome.value if stepper.last_outcome else None,
        last_error=error,
    )


# --- App Setup ---


app = FastAPI(
    title="checkoutflow API",
    description="REST API for cart checkout and order item lifecycle",
    version=__version__,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    ProviderInitError: 503,
    PaymentSessionError: 502,
    VerificationFailedError: 402,
    OrderCreationError: 502,
    OrderCreationAfterPaymentFailedError: 500,
    PaymentUnverifiedAfterCaptureError: 500,
    PlacementError: 500,
    LifecycleConflictError: 409,
    BackendError: 502,
    OrderNotFoundError: 404,
    OrderItemNotFoundError: 404,
    AddressNotFoundError: 404,
    CaptureNotFoundError: 404,
    InvalidSchemaVersionError: 500,
}


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    """Map CheckoutError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, CapturedPaymentError):
        content["severity"] = exc.severity
        content["transaction_id"] = exc.transaction_id
        content["capture_id"] = exc.capture_id
    return JSONResponse(status_code=status_code, content=content)


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    try:
        cart = get_cart()
        return {
            "status": "ok",
            "version": __version__,
            "cart_items": cart.item_count(),
        }
    except Exception as e:
        return {
            "status": "error",
            "detail": str(e),
        }


# --- Cart Endpoints ---


@app.get("/api/cart", response_model=CartResponse)
def get_cart_contents():
    return cart_to_response(get_cart())


@app.post("/api/cart/items", response_model=CartResponse, status_code=201)
def add_cart_item(request: CartItemCreateRequest):
    cart = get_cart()
    cart.add(
        CartItem(
            product_id=request.product_id,
            color_id=request.color_id,
            size=request.size,
            quantity=request.quantity,
            unit_price=to_decimal(request.unit_price),
            name=request.name,
            image=request.image,
            color_name=request.color_name,
        )
    )
    return cart_to_response(cart)


@app.patch("/api/cart/items", response_model=CartResponse)
def update_cart_item(request: CartItemUpdateRequest):
    """Change a line's quantity. Quantities below 1 are ignored."""
    cart = get_cart()
    if not cart.contains(request.product_id, request.color_id, request.size):
        raise HTTPException(status_code=404, detail="Item not in cart")
    cart.update_quantity(request.product_id, request.color_id, request.size, request.quantity)
    return cart_to_response(cart)


@app.delete("/api/cart/items", response_model=CartResponse)
def remove_cart_item(
    product_id: str = Query(...),
    color_id: str = Query(...),
    size: str = Query(...),
):
    cart = get_cart()
    if not cart.remove(product_id, color_id, size):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return cart_to_response(cart)


@app.get("/api/shipping/quote", response_model=ShippingQuoteSchema)
def get_shipping_quote(
    method: Optional[str] = Query(default=None, description="'COD' or 'ONLINE'"),
    subtotal: Optional[float] = Query(default=None, ge=0, description="Defaults to the cart subtotal"),
):
    amount = to_decimal(subtotal) if subtotal is not None else get_cart().subtotal()
    result = quote(method, amount)
    return ShippingQuoteSchema(
        payment_method=method.upper() if method else None,
        subtotal=float(result.subtotal),
        shipping=float(result.shipping),
        total=float(result.total),
    )


# --- Checkout Endpoints ---


@app.get("/api/checkout", response_model=CheckoutStateResponse)
async def get_checkout():
    session = await get_started_session()
    return checkout_state(session)


@app.post("/api/checkout/address", response_model=CheckoutStateResponse)
async def select_checkout_address(request: AddressSelectRequest):
    """Select a shipping address and continue to the Payment step."""
    session = await get_started_session()
    if request.address is not None:
        data = request.address
        await session.add_address(
            {
                "phone": data.phone,
                "address": data.address,
                "city": data.city,
                "state": data.state,
                "postalCode": data.postal_code,
                "country": data.country,
                "isDefault": data.is_default,
            }
        )
    elif request.address_id:
        session.select_address(request.address_id)
    if session.stepper.step == Step.ADDRESS:
        session.advance()
    return checkout_state(session)


@app.post("/api/checkout/payment", response_model=CheckoutStateResponse)
async def select_checkout_payment(request: PaymentSelectRequest):
    session = await get_started_session()
    session.select_payment(request.method)
    return checkout_state(session)


@app.post("/api/checkout/back", response_model=CheckoutStateResponse)
async def checkout_back():
    session = await get_started_session()
    session.back()
    return checkout_state(session)


@app.post("/api/checkout/review", response_model=CheckoutStateResponse)
async def checkout_review():
    session = await get_started_session()
    session.go_to(Step.REVIEW)
    return checkout_state(session)


@app.post("/api/checkout/place", response_model=OrderSchema, status_code=201)
async def place_checkout_order():
    """Place the order. A second request while one is in flight gets 409."""
    session = await get_started_session()
    order = await session.place_order()
    if order is None:
        raise HTTPException(status_code=409, detail="Order placement already in progress")
    # A placed checkout is finished; the next request starts a fresh one
    _state["session"] = None
    return order_to_schema(order)


# --- Order Endpoints ---


@app.get("/api/orders", response_model=OrderListResponse)
async def list_orders():
    orders = await get_backend().list_orders()
    return OrderListResponse(orders=[order_to_schema(o) for o in orders], count=len(orders))


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
async def get_order(order_id: str):
    order = await get_backend().get_order(order_id)
    return order_to_schema(order)


@app.post("/api/orders/{order_id}/items/{item_id}/cancel", response_model=OrderSchema)
async def cancel_order_item(order_id: str, item_id: str, request: CancelItemRequest):
    manager = OrderItemLifecycleManager(get_backend())
    order = await manager.load(order_id)
    updated = await manager.cancel_item(order, item_id, request.quantity)
    return order_to_schema(updated)


@app.post("/api/orders/{order_id}/items/{item_id}/refund", response_model=RefundResponse)
async def refund_order_item(order_id: str, item_id: str, request: RefundItemRequest):
    manager = OrderItemLifecycleManager(get_backend())
    order = await manager.load(order_id)
    details = None
    if request.account_details is not None:
        d = request.account_details
        try:
            details = RefundAccountDetails.from_dict(
                {
                    "accountType": d.account_type.upper(),
                    "upiId": d.upi_id,
                    "phoneNumber": d.phone_number,
                    "bankName": d.bank_name,
                    "accountNumber": d.account_number,
                    "ifscCode": d.ifsc_code,
                    "accountHolderName": d.account_holder_name,
                }
            )
        except ValueError:
            raise ValidationError("accountType", f"unknown account type '{d.account_type}'")
    amount = Decimal(str(request.amount)) if request.amount is not None else None
    updated, refund = await manager.request_refund(
        order,
        item_id,
        request.reason,
        amount=amount,
        account_details=details,
        quantity=request.quantity,
    )
    return RefundResponse(order=order_to_schema(updated), refund=refund_to_schema(refund))


@app.get("/api/refunds", response_model=RefundListResponse)
async def list_refunds():
    refunds = await get_backend().list_refund_requests()
    return RefundListResponse(refunds=[refund_to_schema(r) for r in refunds], count=len(refunds))


# --- Reconciliation Endpoints ---


@app.get("/api/captures", response_model=CaptureListResponse)
def list_captures(unresolved_only: bool = Query(default=False)):
    records = get_ledger().list_records(unresolved_only=unresolved_only)
    return CaptureListResponse(
        captures=[capture_to_schema(r) for r in records],
        count=len(records),
    )


@app.post("/api/captures/{record_id}/resolve", response_model=CaptureSchema)
def resolve_capture(record_id: str, request: CaptureResolveRequest):
    """Mark a captured-but-unordered payment as handled by support."""
    record = get_ledger().mark_resolved(record_id, request.note)
    return capture_to_schema(record)
