"""Command-line interface for checkoutflow."""

import argparse
import asyncio
import json
import sys

from . import __version__, settings
from .backend import HttpBackend
from .cart import CART_FILE, CartStore
from .errors import CheckoutError, ValidationError
from .lifecycle import OrderItemLifecycleManager
from .logging_config import setup_logging
from .models import AccountType, CartItem, RefundAccountDetails
from .reconciliation import CaptureLedger
from .shipping import quote
from .utils import (
    format_cart_item,
    format_order,
    format_order_item,
    format_price,
    parse_amount,
)


def get_cart() -> CartStore:
    """Get the persisted cart in the data directory."""
    return CartStore(settings.DATA_DIR / CART_FILE)


def cmd_cart_list(args: argparse.Namespace) -> int:
    """List cart lines."""
    try:
        cart = get_cart()
        items = cart.items

        if not items:
            print("Cart is empty.")
            return 0

        if args.json:
            data = {
                "items": [i.to_dict() for i in items],
                "subtotal": str(cart.subtotal()),
            }
            print(json.dumps(data, indent=2))
        else:
            print(f"Cart ({cart.item_count()} items):")
            print()
            for item in items:
                print(f"  {format_cart_item(item)}")
            print()
            print(f"Subtotal: {format_price(cart.subtotal())}")

        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_add(args: argparse.Namespace) -> int:
    """Add a line to the cart (merges with the same product/color/size)."""
    try:
        cart = get_cart()
        item = cart.add(
            CartItem(
                product_id=args.product_id,
                color_id=args.color_id,
                size=args.size,
                quantity=args.quantity,
                unit_price=parse_amount(args.price, "price"),
                name=args.name or "",
            )
        )
        print(f"Added: {format_cart_item(item)}")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_update(args: argparse.Namespace) -> int:
    """Change a cart line's quantity."""
    try:
        cart = get_cart()
        if not cart.contains(args.product_id, args.color_id, args.size):
            print("Error: item not in cart", file=sys.stderr)
            return 1
        if not cart.update_quantity(args.product_id, args.color_id, args.size, args.quantity):
            print("Quantity unchanged (must be at least 1).")
            return 0
        item = cart.get_item(args.product_id, args.color_id, args.size)
        print(f"Updated: {format_cart_item(item)}")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_remove(args: argparse.Namespace) -> int:
    """Remove a cart line."""
    try:
        cart = get_cart()
        if not cart.remove(args.product_id, args.color_id, args.size):
            print("Error: item not in cart", file=sys.stderr)
            return 1
        print(f"Removed {args.product_id} ({args.color_id}, {args.size})")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cart_clear(args: argparse.Namespace) -> int:
    try:
        get_cart().clear()
        print("Cart cleared.")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_shipping(args: argparse.Namespace) -> int:
    """Show the shipping charge for a payment method and subtotal."""
    try:
        subtotal = parse_amount(args.subtotal, "subtotal")
        result = quote(args.method, subtotal)
        print(f"Subtotal: {format_price(result.subtotal)}")
        print(f"Shipping: {format_price(result.shipping) if result.shipping else 'FREE'}")
        print(f"Total:    {format_price(result.total)}")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


async def _show_order(order_id: str):
    async with HttpBackend() as backend:
        return await backend.get_order(order_id)


async def _list_orders():
    async with HttpBackend() as backend:
        return await backend.list_orders()


async def _list_refunds():
    async with HttpBackend() as backend:
        return await backend.list_refund_requests()


async def _cancel_item(order_id: str, item_id: str, quantity: int):
    async with HttpBackend() as backend:
        manager = OrderItemLifecycleManager(backend)
        order = await manager.load(order_id)
        return await manager.cancel_item(order, item_id, quantity)


async def _refund_item(order_id: str, item_id: str, reason: str, amount, details, quantity):
    async with HttpBackend() as backend:
        manager = OrderItemLifecycleManager(backend)
        order = await manager.load(order_id)
        return await manager.request_refund(
            order,
            item_id,
            reason,
            amount=amount,
            account_details=details,
            quantity=quantity,
        )


def cmd_order_show(args: argparse.Namespace) -> int:
    """Show an order and its items."""
    try:
        order = asyncio.run(_show_order(args.order_id))

        if args.json:
            print(json.dumps(order.to_dict(), indent=2))
        else:
            print(format_order(order))
            print()
            for item in order.items:
                print(f"  {format_order_item(item, verbose=args.verbose)}")

        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_order_list(args: argparse.Namespace) -> int:
    """List the signed-in user's orders."""
    try:
        orders = asyncio.run(_list_orders())

        if not orders:
            print("No orders.")
            return 0

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
        else:
            for order in orders:
                print(format_order(order))
                print()

        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_order_cancel(args: argparse.Namespace) -> int:
    """Cancel some or all units of an order item."""
    try:
        order = asyncio.run(_cancel_item(args.order_id, args.item_id, args.quantity))
        item = order.get_item(args.item_id)
        print(f"Cancelled {args.quantity} unit(s) of item {args.item_id}")
        if item is not None:
            print(f"  {format_order_item(item)}")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _account_details_from_args(args: argparse.Namespace) -> RefundAccountDetails | None:
    if args.upi:
        return RefundAccountDetails(account_type=AccountType.UPI, upi_id=args.upi)
    bank_fields = (args.bank_name, args.account_number, args.ifsc, args.account_holder)
    if any(bank_fields):
        return RefundAccountDetails(
            account_type=AccountType.BANK,
            bank_name=args.bank_name,
            account_number=args.account_number,
            ifsc_code=args.ifsc,
            account_holder_name=args.account_holder,
        )
    return None


def cmd_order_refund(args: argparse.Namespace) -> int:
    """Request a refund for a cancelled item of an online-paid order."""
    try:
        amount = parse_amount(args.amount) if args.amount is not None else None
        if amount is not None and amount == 0:
            raise ValidationError("amount", "must be greater than 0")
        details = _account_details_from_args(args)
        _, refund = asyncio.run(
            _refund_item(
                args.order_id, args.item_id, args.reason or "", amount, details, args.quantity
            )
        )
        print(f"Refund requested for item {args.item_id}")
        print(f"  Amount: {format_price(refund.amount)}")
        print(f"  Status: {refund.refund_status.value}")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_order_refunds(args: argparse.Namespace) -> int:
    """List refund requests and their status."""
    try:
        refunds = asyncio.run(_list_refunds())

        if not refunds:
            print("No refund requests.")
            return 0

        for r in refunds:
            print(
                f"  {r.order_id}  item {r.item_id}  x{r.quantity}  "
                f"{format_price(r.amount)}  [{r.refund_status.value}]"
            )
            if r.reason:
                print(f"           {r.reason}")

        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_captures_list(args: argparse.Namespace) -> int:
    """List payments captured without an order."""
    try:
        records = CaptureLedger().list_records(unresolved_only=args.unresolved)

        if not records:
            print("No capture records.")
            return 0

        if args.json:
            print(json.dumps([r.to_dict() for r in records], indent=2))
        else:
            print(f"Capture records ({len(records)}):")
            print()
            for r in records:
                state = "resolved" if r.resolved else "UNRESOLVED"
                print(f"  {r.id[:8]}  {r.provider} txn {r.transaction_id}  ₹{r.amount}  [{state}]")
                print(f"           {r.created_at}  {r.reason}")
                if r.resolution_note:
                    print(f"           Note: {r.resolution_note}")
                print()

        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_captures_resolve(args: argparse.Namespace) -> int:
    """Mark a capture record as resolved."""
    try:
        record = CaptureLedger().mark_resolved(args.record_id, args.note)
        print(f"Resolved capture {record.id[:8]} (transaction {record.transaction_id})")
        return 0

    except CheckoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        print("Starting checkoutflow API server...")
        print(f"Backend: {settings.API_URL}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "checkoutflow.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,  # The API holds a single in-process checkout session
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _add_line_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("product_id", help="Product ID")
    parser.add_argument("color_id", help="Color variant ID")
    parser.add_argument("size", help="Size")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="checkoutflow",
        description="Cart checkout and order item lifecycle for the storefront.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level", default=None, help="Log level (default: $CHECKOUTFLOW_LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # cart (subcommand group)
    cart_parser = subparsers.add_parser("cart", help="Manage the local cart")
    cart_subparsers = cart_parser.add_subparsers(dest="cart_command")

    cart_list_parser = cart_subparsers.add_parser("list", help="List cart lines")
    cart_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    cart_add_parser = cart_subparsers.add_parser("add", help="Add a line to the cart")
    _add_line_arguments(cart_add_parser)
    cart_add_parser.add_argument("price", help="Unit price in rupees")
    cart_add_parser.add_argument(
        "--quantity", "-q", type=int, default=1, help="Quantity (default: 1)"
    )
    cart_add_parser.add_argument("--name", "-n", help="Product name")

    cart_update_parser = cart_subparsers.add_parser("update", help="Change a line's quantity")
    _add_line_arguments(cart_update_parser)
    cart_update_parser.add_argument("quantity", type=int, help="New quantity")

    cart_remove_parser = cart_subparsers.add_parser("remove", help="Remove a cart line")
    _add_line_arguments(cart_remove_parser)

    cart_subparsers.add_parser("clear", help="Empty the cart")

    # shipping
    shipping_parser = subparsers.add_parser(
        "shipping", help="Show the shipping charge for a payment method"
    )
    shipping_parser.add_argument("method", help="Payment method: COD or ONLINE")
    shipping_parser.add_argument("subtotal", help="Cart subtotal in rupees")

    # order (subcommand group)
    order_parser = subparsers.add_parser("order", help="Inspect orders and manage items")
    order_subparsers = order_parser.add_subparsers(dest="order_command")

    order_show_parser = order_subparsers.add_parser("show", help="Show an order")
    order_show_parser.add_argument("order_id", help="Order ID")
    order_show_parser.add_argument("--json", action="store_true", help="Output as JSON")
    order_show_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show cancellation and refund details"
    )

    order_list_parser = order_subparsers.add_parser("list", help="List orders")
    order_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    order_subparsers.add_parser("refunds", help="List refund requests")

    order_cancel_parser = order_subparsers.add_parser("cancel", help="Cancel an order item")
    order_cancel_parser.add_argument("order_id", help="Order ID")
    order_cancel_parser.add_argument("item_id", help="Order item ID")
    order_cancel_parser.add_argument(
        "--quantity", "-q", type=int, default=1, help="Units to cancel (default: 1)"
    )

    order_refund_parser = order_subparsers.add_parser(
        "refund", help="Request a refund for a cancelled item"
    )
    order_refund_parser.add_argument("order_id", help="Order ID")
    order_refund_parser.add_argument("item_id", help="Order item ID")
    order_refund_parser.add_argument("--reason", "-r", help="Note for the reviewer")
    order_refund_parser.add_argument("--amount", "-a", help="Amount (default: full item value)")
    order_refund_parser.add_argument("--quantity", "-q", type=int, help="Units to refund")
    order_refund_parser.add_argument("--upi", help="UPI ID for the payout")
    order_refund_parser.add_argument("--bank-name", help="Bank name for the payout")
    order_refund_parser.add_argument("--account-number", help="Bank account number")
    order_refund_parser.add_argument("--ifsc", help="Bank IFSC code")
    order_refund_parser.add_argument("--account-holder", help="Account holder name")

    # captures (subcommand group)
    captures_parser = subparsers.add_parser(
        "captures", help="Payments captured without an order"
    )
    captures_subparsers = captures_parser.add_subparsers(dest="captures_command")

    captures_list_parser = captures_subparsers.add_parser("list", help="List capture records")
    captures_list_parser.add_argument(
        "--unresolved", "-u", action="store_true", help="Only unresolved records"
    )
    captures_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    captures_resolve_parser = captures_subparsers.add_parser(
        "resolve", help="Mark a capture record resolved"
    )
    captures_resolve_parser.add_argument("record_id", help="Capture record ID")
    captures_resolve_parser.add_argument("--note", "-n", help="Resolution note")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level, stream=sys.stderr)

    if not args.command:
        parser.print_help()
        return 0

    groups = {
        "cart": (
            "cart_command",
            {
                "list": cmd_cart_list,
                "add": cmd_cart_add,
                "update": cmd_cart_update,
                "remove": cmd_cart_remove,
                "clear": cmd_cart_clear,
            },
        ),
        "order": (
            "order_command",
            {
                "list": cmd_order_list,
                "show": cmd_order_show,
                "cancel": cmd_order_cancel,
                "refund": cmd_order_refund,
                "refunds": cmd_order_refunds,
            },
        ),
        "captures": (
            "captures_command",
            {
                "list": cmd_captures_list,
                "resolve": cmd_captures_resolve,
            },
        ),
    }

    # Handle subcommand groups
    if args.command in groups:
        attr, handlers = groups[args.command]
        subcommand = getattr(args, attr, None)
        if not subcommand:
            parser.parse_args([args.command, "--help"])
            return 0
        return handlers[subcommand](args)

    commands = {
        "shipping": cmd_shipping,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
