"""
Operator CLI for the checkout engine.

Usage:
    foodapp cart add MENU_ITEM_ID RESTAURANT_ID --name "Paneer Roll" --price 120 --qty 2
    foodapp cart show
    foodapp coupon check SAVE50
    foodapp coupons list
    foodapp checkout --user USER_ID --name "Asha" --phone 99999 --address1 "12 MG Road"
    foodapp checkout --offline ...
"""

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from foodapp.backend import InMemoryBackend, get_backend
from foodapp.checkout import (
    AddressBook,
    CartStore,
    CheckoutSession,
    CouponAdmin,
    CouponValidator,
    DeliveryDetails,
    JsonFileStorage,
    compose_totals,
    get_config,
    get_geocoder,
)
from foodapp.checkout.errors import BackendError, CouponAdminError
from foodapp.checkout.money import format_money

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

console = Console()

DEFAULT_STORE = Path(os.getenv("FOODAPP_STORAGE", str(Path.home() / ".foodapp" / "storage.json")))

KIND_OPTION = click.option(
    "--kind",
    "-k",
    type=click.Choice(["restaurant", "grocery"], case_sensitive=False),
    default="restaurant",
    show_default=True,
    help="Cart kind",
)


def _cart(ctx: click.Context, kind: str) -> CartStore:
    return CartStore(ctx.obj["storage"], kind=kind.lower(), config=get_config())


def _money(value) -> str:
    return format_money(value, get_config().currency_symbol)


def _print_cart(cart: CartStore) -> None:
    lines = cart.read()
    if not lines:
        console.print("[dim]Cart is empty.[/dim]")
        return

    table = Table(title=f"{cart.kind.capitalize()} cart (store {lines[0].store_id})")
    table.add_column("Product", style="cyan")
    table.add_column("Name")
    table.add_column("Qty", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Line total", justify="right", style="green")
    for line in lines:
        table.add_row(
            str(line.product_id), line.name or "-", str(line.qty), _money(line.unit_price), _money(line.line_total)
        )
    console.print(table)

    totals = compose_totals(lines, config=cart.config)
    console.print(
        f"Subtotal {_money(totals.subtotal)}  Delivery "
        f"{'FREE' if not totals.delivery_fee else _money(totals.delivery_fee)}  "
        f"GST {_money(totals.tax)}  [bold]Payable {_money(totals.total)}[/bold]"
    )


@click.group()
@click.option(
    "--storage",
    "-s",
    type=click.Path(dir_okay=False),
    default=str(DEFAULT_STORE),
    show_default=True,
    help="JSON file holding the local cart and saved address",
)
@click.pass_context
def cli(ctx: click.Context, storage: str):
    """FoodApp checkout tools.

    Inspect and edit the local cart, check coupons, manage coupons and
    place orders against the configured backend.
    """
    ctx.ensure_object(dict)
    ctx.obj["storage"] = JsonFileStorage(storage)


# --- cart ---

@cli.group()
def cart():
    """Local cart."""
    pass


@cart.command("show")
@KIND_OPTION
@click.pass_context
def cart_show(ctx: click.Context, kind: str):
    """Show the canonical cart (repairs every storage key)."""
    store = _cart(ctx, kind)
    store.load()
    _print_cart(store)


@cart.command("add")
@click.argument("product_id")
@click.argument("store_id")
@click.option("--name", "-n", default=None, help="Display name")
@click.option("--price", "-p", type=float, default=0.0, help="Unit price")
@click.option("--qty", "-q", type=int, default=1, help="Quantity to add")
@KIND_OPTION
@click.pass_context
def cart_add(ctx: click.Context, product_id: str, store_id: str, name: str, price: float, qty: int, kind: str):
    """Add an item to the cart."""
    store = _cart(ctx, kind)
    result = store.add(product_id, store_id, name=name, unit_price=price, qty=qty)
    if not result.ok:
        console.print(f"[red]{result.message}[/red]")
        sys.exit(1)
    _print_cart(store)


@cart.command("remove")
@click.argument("product_id")
@KIND_OPTION
@click.pass_context
def cart_remove(ctx: click.Context, product_id: str, kind: str):
    """Remove an item from the cart."""
    store = _cart(ctx, kind)
    store.remove(product_id)
    _print_cart(store)


@cart.command("clear")
@KIND_OPTION
@click.pass_context
def cart_clear(ctx: click.Context, kind: str):
    """Empty the cart."""
    _cart(ctx, kind).clear()
    console.print("[green]✅ Cart cleared.[/green]")


# --- coupon check ---

@cli.group()
def coupon():
    """Coupon checks."""
    pass


@coupon.command("check")
@click.argument("code")
@click.option("--subtotal", type=float, default=None, help="Subtotal to check against (default: current cart)")
@click.option("--user", "-u", "user_id", default=None, help="User id for the per-user limit")
@click.pass_context
def coupon_check(ctx: click.Context, code: str, subtotal: float, user_id: str):
    """Validate a coupon code."""
    if subtotal is None:
        subtotal = _cart(ctx, "restaurant").subtotal()

    check = CouponValidator(get_backend(), currency_symbol=get_config().currency_symbol).validate(
        code, subtotal, user_id
    )
    if not check.ok:
        console.print(f"[red]✗ {check.reason}[/red]")
        sys.exit(1)
    console.print(
        f"[green]✓ {check.coupon.code}[/green] ({check.coupon.kind} {check.coupon.value:g}) "
        f"discount {_money(check.discount)} on subtotal {_money(subtotal)}"
    )


# --- coupons admin ---

@cli.group()
def coupons():
    """Coupon administration."""
    pass


@coupons.command("list")
def coupons_list():
    """List coupons."""
    try:
        rows = CouponAdmin(get_backend()).list()
    except BackendError as e:
        console.print(f"[red]Coupon load failed:[/red] {e.message}")
        sys.exit(1)

    table = Table(title="Coupons")
    for column in ("ID", "Code", "Type", "Value", "Active", "Min order", "Max discount", "Expires"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            str(row.get("id")),
            str(row.get("code")),
            str(row.get("type")),
            str(row.get("value")),
            "yes" if row.get("is_active") else "no",
            str(row.get("min_order_amount") or "-"),
            str(row.get("max_discount") or "-"),
            str(row.get("expires_at") or "-"),
        )
    console.print(table)


@coupons.command("create")
@click.argument("code")
@click.option("--type", "kind", type=click.Choice(["flat", "percent"]), default="flat", show_default=True)
@click.option("--value", required=True, help="Amount off (flat) or rate (percent)")
@click.option("--min-order", default=None, help="Minimum order amount")
@click.option("--max-discount", default=None, help="Maximum discount")
@click.option("--starts-at", default=None, help="ISO timestamp")
@click.option("--expires-at", default=None, help="ISO timestamp")
@click.option("--limit-total", default=None, help="Total usage limit")
@click.option("--limit-per-user", default=None, help="Per-user usage limit")
@click.option("--inactive", is_flag=True, help="Create disabled")
def coupons_create(code, kind, value, min_order, max_discount, starts_at, expires_at, limit_total, limit_per_user, inactive):
    """Create a coupon."""
    data = {"code": code, "type": kind, "value": value, "is_active": not inactive}
    optional = {
        "min_order_amount": min_order,
        "max_discount": max_discount,
        "starts_at": starts_at,
        "expires_at": expires_at,
        "usage_limit_total": limit_total,
        "usage_limit_per_user": limit_per_user,
    }
    data.update({k: v for k, v in optional.items() if v is not None})

    try:
        row = CouponAdmin(get_backend()).create(data)
    except CouponAdminError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except BackendError as e:
        console.print(f"[red]Create failed:[/red] {e.message}")
        sys.exit(1)
    console.print(f"[green]Coupon created ✅[/green] {row.get('code')} ({row.get('id')})")


@coupons.command("toggle")
@click.argument("coupon_id")
@click.option("--on/--off", "active", default=True, help="Enable or disable")
def coupons_toggle(coupon_id: str, active: bool):
    """Enable or disable a coupon."""
    try:
        CouponAdmin(get_backend()).set_active(coupon_id, active)
    except BackendError as e:
        console.print(f"[red]Update failed:[/red] {e.message}")
        sys.exit(1)
    console.print(f"[green]Updated ✅[/green] {coupon_id} is now {'active' if active else 'inactive'}")


@coupons.command("delete")
@click.argument("coupon_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def coupons_delete(coupon_id: str, yes: bool):
    """Delete a coupon."""
    if not yes and not click.confirm(f"Delete coupon {coupon_id}?"):
        return
    try:
        CouponAdmin(get_backend()).delete(coupon_id)
    except BackendError as e:
        console.print(f"[red]Delete failed:[/red] {e.message}")
        sys.exit(1)
    console.print(f"[green]Deleted ✅[/green] {coupon_id}")


# --- checkout ---

@cli.command()
@click.option("--user", "-u", "user_id", required=True, help="Customer user id")
@click.option("--name", "customer_name", default=None, help="Customer name (default: saved address)")
@click.option("--phone", default=None)
@click.option("--address1", "address_line1", default=None)
@click.option("--address2", "address_line2", default=None)
@click.option("--landmark", default=None)
@click.option("--instructions", default=None)
@click.option("--coupon", "coupon_code", default=None, help="Coupon code to apply")
@click.option("--tip", type=float, default=0.0)
@click.option("--pay", "payment_method", type=click.Choice(["card", "cod", "upi"]), default="cod", show_default=True)
@click.option("--save-address", is_flag=True, help="Remember the delivery details")
@click.option("--offline", is_flag=True, help="Use the in-memory backend and skip geocoding")
@KIND_OPTION
@click.pass_context
def checkout(ctx: click.Context, user_id, customer_name, phone, address_line1, address_line2, landmark,
             instructions, coupon_code, tip, payment_method, save_address, offline, kind):
    """Place an order from the local cart."""
    config = get_config()
    storage = ctx.obj["storage"]
    book = AddressBook(storage, config.saved_address_key)
    saved = book.load() or DeliveryDetails()

    delivery = DeliveryDetails(
        customer_name=customer_name if customer_name is not None else saved.customer_name,
        phone=phone if phone is not None else saved.phone,
        address_line1=address_line1 if address_line1 is not None else saved.address_line1,
        address_line2=address_line2 if address_line2 is not None else saved.address_line2,
        landmark=landmark if landmark is not None else saved.landmark,
        instructions=instructions if instructions is not None else saved.instructions,
    )

    backend = InMemoryBackend() if offline else get_backend()
    session = CheckoutSession(
        _cart(ctx, kind),
        backend,
        geocoder=None if offline else get_geocoder(),
        config=config,
        address_book=book,
        payment_method=payment_method,
    )
    session.set_tip(tip)

    if coupon_code:
        check = session.apply_coupon(coupon_code, user_id)
        if not check.ok:
            console.print(f"[red]{check.reason}[/red]")
            sys.exit(1)
        console.print(f"[green]Coupon {check.coupon.code} applied: -{_money(check.discount)}[/green]")

    result = session.place_order(user_id, delivery, save_address=save_address)
    if not result.ok:
        console.print(f"[red]{result.error}[/red]")
        sys.exit(1)

    console.print(result.info)
    b = result.breakdown
    console.print(
        f"Order [bold]{result.order_id}[/bold]: subtotal {_money(b.subtotal)}, delivery {_money(b.delivery_fee)}, "
        f"GST {_money(b.tax)}, tip {_money(b.tip)}, discount -{_money(b.discount)}, "
        f"[bold]total {_money(b.total)}[/bold]"
    )
    if result.redemption_error:
        console.print(f"[yellow]Coupon redemption not recorded: {result.redemption_error}[/yellow]")


if __name__ == "__main__":
    cli()
