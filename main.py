#!/usr/bin/env python3
"""
Supplier Order Back-Office — CLI entry point.

Usage examples:
  python main.py template > order.csv                          # Blank order sheet
  python main.py create order.csv --supplier "Acme" --purchase-date 2024-01-15
  python main.py list --status PARTIAL                         # Filter the order list
  python main.py list --due-soon                               # Payments due in the next days

  python main.py confirm <id>                                  # DRAFT -> CONFIRMED
  python main.py transit <id>                                  # CONFIRMED -> IN_TRANSIT
  python main.py receive <id> ABC123 --qty 4                   # Scan goods in
  python main.py close-partial <id> --reason "Out of stock"    # Accept a short delivery
  python main.py pay <id>                                      # Settle the supplier

  python main.py reconcile <id>                                # Merge receipts into stock
  python main.py reconcile <id> --decision keep_price          # ...without prompting
  python main.py stock                                         # Current warehouse
"""
import asyncio
import json
import logging
import sqlite3
import sys
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import click

from config import Config
from models.supplier_order import OrderStatus, SupplierOrder
from models.warehouse import PriceConflict, PriceDecision
from procurement.decisions import FixedDecider, PriceDecider
from procurement.errors import BackOfficeError
from procurement.intake import order_template
from procurement.processor import SupplierOrderProcessor
from procurement.receiving import payment_progress, receipt_progress
from procurement.reports import SORT_FIELDS, filter_orders, sort_orders

ASK = "ask"
DECISION_CHOICES = [ASK] + [d.value for d in PriceDecision]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


@contextmanager
def _errors():
    """Report back-office errors as 'Error: ...' and exit with status 1."""
    try:
        yield
    except BackOfficeError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        problems = getattr(exc, "problems", [])
        if len(problems) > 1:
            for problem in problems:
                click.echo(f"  - {problem}", err=True)
        sys.exit(1)


def _ask_operator(conflict: PriceConflict) -> PriceDecision:
    """Ask the operator on the terminal how to resolve a price conflict (blocks on stdin)."""
    click.echo()
    click.echo(f"  Price conflict on {conflict.sku}" + (f" ({conflict.name})" if conflict.name else ""))
    click.echo(f"    In stock at:  {conflict.old_price:.2f}")
    click.echo(f"    Ordered at:   {conflict.new_price:.2f}   ({conflict.quantity} unit(s) arriving)")
    click.echo(f"    {conflict.suggestion}")
    choice = click.prompt(
        "  [u]pdate price / [k]eep current price / [i]gnore these units",
        type=click.Choice(["u", "k", "i"]),
        default="k",
    )
    return {
        "u": PriceDecision.UPDATE_PRICE,
        "k": PriceDecision.KEEP_PRICE,
        "i": PriceDecision.IGNORE,
    }[choice]


async def _prompt_decision(conflict: PriceConflict) -> PriceDecision:
    """Decider for the CLI: the prompt runs in a worker thread so the event loop keeps going."""
    return await asyncio.to_thread(_ask_operator, conflict)


def _decider(decision: str) -> PriceDecider:
    return _prompt_decision if decision == ASK else FixedDecider(decision)


def _print_order(order: SupplierOrder) -> None:
    receipt = receipt_progress(order)
    payment = payment_progress(order)
    click.echo()
    click.echo(f"  Order:       {order.order_number}   ({order.id})")
    click.echo(f"  Supplier:    {order.supplier}")
    click.echo(f"  Status:      {order.status.value}")
    click.echo(f"  Purchased:   {order.purchase_date}")
    click.echo(f"  Payment due: {order.payment_date or '(not set)'}")
    if order.invoice_number:
        click.echo(f"  Invoice:     {order.invoice_number}")
    if order.partial_reason:
        click.echo(f"  Reason:      {order.partial_reason}")
    click.echo(f"  Total:       {order.total_value:.2f}")
    click.echo(f"  Received:    {receipt.received_units}/{receipt.total_units} ({receipt.percentage}%)")
    click.echo(f"  Paid:        {payment.paid_amount:.2f}/{payment.total_owed:.2f} ({payment.percentage}%)")
    click.echo()
    click.echo(f"  {'SKU':<16} {'Ordered':>8} {'Received':>9} {'Price':>10}  Name")
    for product in order.products:
        click.echo(
            f"  {product.sku:<16} {product.quantity:>8} {order.received_quantity(product.sku):>9} "
            f"{product.price:>10.2f}  {product.name or ''}"
        )
    click.echo()


def _processor(decide: Optional[PriceDecider] = None) -> SupplierOrderProcessor:
    return SupplierOrderProcessor(Config(), decide=decide)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Supplier Order Back-Office — track purchase orders and reconcile stock."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


# --------------------------------------------------------------------
# Order intake
# --------------------------------------------------------------------

@cli.command()
@click.option("--output", "-o", default=None, type=click.Path(), help="Write to a file instead of stdout")
def template(output: Optional[str]) -> None:
    """Print the CSV order sheet template."""
    if output:
        Path(output).write_text(order_template(), encoding="utf-8")
        click.echo(f"Template written to {output}")
    else:
        click.echo(order_template(), nl=False)


@cli.command()
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--supplier", "-s", required=True, help="Supplier name")
@click.option("--purchase-date", "-d", default=None, help="Purchase date YYYY-MM-DD (default: today)")
@click.option("--invoice-number", default=None, help="Supplier invoice reference")
def create(csv_file: str, supplier: str, purchase_date: Optional[str], invoice_number: Optional[str]) -> None:
    """Create a DRAFT order from a CSV order sheet."""
    with _errors():
        order = _processor().create_order_from_csv(
            Path(csv_file),
            supplier=supplier,
            purchase_date=purchase_date or date.today(),
            invoice_number=invoice_number,
        )
    click.echo(f"✓ Created {order.order_number}  ({order.id})")
    _print_order(order)


# --------------------------------------------------------------------
# Listing
# --------------------------------------------------------------------

@cli.command(name="list")
@click.option("--status", type=click.Choice([s.value for s in OrderStatus], case_sensitive=False), default=None)
@click.option("--search", "-q", default=None, help="Order number, supplier or SKU")
@click.option("--due-soon", is_flag=True, help="Only orders whose payment is due soon")
@click.option("--to-receive", is_flag=True, help="Only orders with goods still to arrive")
@click.option("--sort", "sort_field", type=click.Choice(SORT_FIELDS), default="purchase_date")
@click.option("--ascending", is_flag=True)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def list_orders(
    status: Optional[str],
    search: Optional[str],
    due_soon: bool,
    to_receive: bool,
    sort_field: str,
    ascending: bool,
    as_json: bool,
) -> None:
    """List supplier orders."""
    processor = _processor()
    orders = filter_orders(
        processor.list_orders(),
        search=search,
        status=status.upper() if status else None,
        due_within_days=processor.config.due_soon_days if due_soon else None,
        only_to_receive=to_receive,
    )
    orders = sort_orders(orders, field=sort_field, descending=not ascending)

    if as_json:
        click.echo(json.dumps([o.model_dump(mode="json") for o in orders], indent=2))
        return

    if not orders:
        click.echo("No orders found.")
        return
    click.echo(f"\n  {'Order':<20} {'Supplier':<24} {'Status':<11} {'Total':>10}  {'Due':<10}  Received")
    for order in orders:
        receipt = receipt_progress(order)
        click.echo(
            f"  {order.order_number:<20} {order.supplier[:24]:<24} {order.status.value:<11} "
            f"{order.total_value:>10.2f}  {str(order.payment_date or '-'):<10}  {receipt.percentage}%"
        )
    click.echo(f"\n  {len(orders)} order(s)\n")


@cli.command()
@click.argument("order_id")
@click.option("--history", "show_history", is_flag=True, help="Also print the audit trail")
def show(order_id: str, show_history: bool) -> None:
    """Show one order with its receipt and payment progress."""
    processor = _processor()
    with _errors():
        order = processor.get_order(order_id)
    _print_order(order)
    if show_history:
        for entry in processor.audit_log(order_id):
            click.echo(f"  {entry['timestamp']}  {entry['action']:<15} {entry['detail'] or ''}")
        click.echo()


@cli.command()
def summary() -> None:
    """Headline figures across all orders."""
    stats = _processor().summary()
    click.echo("\n=== Supplier Orders ===\n")
    click.echo(f"  Orders:              {stats.total_orders}")
    click.echo(f"  Total value:         {stats.total_value:.2f}")
    for status, count in stats.by_status.items():
        click.echo(f"    {status:<18} {count}")
    click.echo(f"  To pay:              {stats.to_pay}  ({stats.to_pay_value:.2f})")
    click.echo(f"  Paid value:          {stats.paid_value:.2f}")
    click.echo(f"  Due in last days:    {stats.due_last_5_days}")
    click.echo()


# --------------------------------------------------------------------
# Lifecycle
# --------------------------------------------------------------------

@cli.command()
@click.argument("order_id")
def confirm(order_id: str) -> None:
    """Mark a DRAFT order as confirmed by the supplier."""
    with _errors():
        order = _processor().confirm(order_id)
    click.echo(f"✓ {order.order_number} is {order.status.value}")


@cli.command()
@click.argument("order_id")
def transit(order_id: str) -> None:
    """Mark a CONFIRMED order as shipped."""
    with _errors():
        order = _processor().mark_in_transit(order_id)
    click.echo(f"✓ {order.order_number} is {order.status.value}")


@cli.command()
@click.argument("order_id")
@click.argument("sku")
@click.option("--qty", "-n", default=1, type=click.IntRange(min=1), help="Units received (default 1)")
@click.option("--decision", type=click.Choice(DECISION_CHOICES), default=ASK,
              help="Price conflict answer if the order completes and is reconciled")
def receive(order_id: str, sku: str, qty: int, decision: str) -> None:
    """Scan QTY units of SKU into an order."""
    processor = _processor()
    with _errors():
        order = asyncio.run(processor.receive(order_id, sku, qty, decide=_decider(decision)))
    receipt = receipt_progress(order)
    click.echo(
        f"✓ {sku} x{qty}  {order.order_number} {order.status.value}  "
        f"{receipt.received_units}/{receipt.total_units} ({receipt.percentage}%)"
    )


@cli.command(name="close-partial")
@click.argument("order_id")
@click.option("--reason", "-r", default=None, help="Why the order is incomplete")
@click.option("--final", is_flag=True, help="Close a PARTIAL order out as RECEIVED")
@click.option("--decision", type=click.Choice(DECISION_CHOICES), default=ASK)
def close_partial(order_id: str, reason: Optional[str], final: bool, decision: str) -> None:
    """Accept a short delivery and merge what arrived into stock."""
    processor = _processor()
    with _errors():
        order = asyncio.run(
            processor.close_partial(order_id, reason=reason, final=final, decide=_decider(decision))
        )
    click.echo(f"✓ {order.order_number} is {order.status.value}  payment due {order.payment_date or '-'}")


@cli.command()
@click.argument("order_id")
@click.option("--paid-at", default=None, help="Payment timestamp, ISO format (default: now)")
def pay(order_id: str, paid_at: Optional[str]) -> None:
    """Mark a RECEIVED or PARTIAL order as paid."""
    when = None
    if paid_at:
        try:
            when = datetime.fromisoformat(paid_at)
        except ValueError:
            click.echo(f"Error: '{paid_at}' is not an ISO date/time.", err=True)
            sys.exit(1)
    with _errors():
        order = _processor().mark_paid(order_id, paid_at=when)
    click.echo(f"✓ {order.order_number} paid")


@cli.command()
@click.argument("order_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def delete(order_id: str, yes: bool) -> None:
    """Delete an order that has not been received."""
    processor = _processor()
    with _errors():
        order = processor.get_order(order_id)
        if not yes:
            click.confirm(f"Delete {order.order_number} ({order.supplier})?", abort=True)
        processor.delete_order(order_id)
    click.echo(f"✓ Deleted {order.order_number}")


# --------------------------------------------------------------------
# Warehouse
# --------------------------------------------------------------------

@cli.command()
@click.argument("order_id")
@click.option("--decision", type=click.Choice(DECISION_CHOICES), default=ASK,
              help="Answer every price conflict this way instead of asking")
def reconcile(order_id: str, decision: str) -> None:
    """Merge an order's received goods into the warehouse."""
    processor = _processor()
    with _errors():
        result = asyncio.run(processor.reconcile(order_id, decide=_decider(decision)))

    if not (result.changed or result.ignored or result.skipped):
        click.echo("Nothing new to reconcile.")
        return
    click.echo()
    for label, skus in (("Updated", result.updated), ("Created", result.created),
                        ("Ignored", result.ignored), ("Skipped", result.skipped)):
        if skus:
            click.echo(f"  {label:<8} {', '.join(skus)}")
    for warning in result.warnings:
        click.echo(f"  ⚠ {warning.message}")
    click.echo()


@cli.command()
def stock() -> None:
    """Print the warehouse ledger."""
    items = _processor().stock()
    if not items:
        click.echo("Warehouse is empty.")
        return
    click.echo(f"\n  {'SKU':<16} {'Qty':>6} {'Price':>10}  Name")
    for item in items:
        click.echo(f"  {item.sku:<16} {item.quantity:>6} {item.price:>10.2f}  {item.name}")
    click.echo()


@cli.command()
@click.argument("sku")
def history(sku: str) -> None:
    """Print the stock history of one SKU."""
    entries = _processor().stock_history(sku)
    if not entries:
        click.echo(f"No history for {sku}.")
        return
    for entry in entries:
        click.echo(
            f"  {entry.timestamp:%Y-%m-%d %H:%M}  +{entry.quantity_received or 0:<4} "
            f"-> {entry.quantity:<5} @ {entry.price:.2f}  {entry.description or ''}"
        )


# --------------------------------------------------------------------
# Maintenance
# --------------------------------------------------------------------

@cli.command()
def check() -> None:
    """Show where the back-office keeps its state."""
    status = _processor().check_setup()
    db = status["database"]
    click.echo("\n=== Back-Office Setup Check ===\n")
    click.echo(f"  Database:        {db['path']}  ({'✓' if db['exists'] else '✗'})")
    click.echo(f"  Orders:          {db['orders']}")
    click.echo(f"  History entries: {db['stock_history_entries']}")
    click.echo(f"  Backups:         {status['backups']['count']} in {status['backups']['path']}")
    click.echo(f"  Price decision:  {status['price_decision']}")
    click.echo()


@cli.command()
def backup() -> None:
    """
    Create a timestamped backup of the database and settings.
    """
    processor = _processor()
    try:
        zip_name = processor.backup_service.create_backup()
    except (OSError, sqlite3.Error) as e:
        click.echo(f"\n✗ Backup failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Backup successful: {processor.backup_service.backup_dir / zip_name}")


if __name__ == "__main__":
    cli()
