#!/usr/bin/env python3
"""
Fulfillment reconciliation: CLI entry point.

Usage examples:
  python main.py po show 665f1c                        # Order lines, received, outstanding
  python main.py po receive 665f1c A1=10 B2=5          # Apply one receipt batch
  python main.py po receive 665f1c A1=10 --key r-0001  # Same, replay-safe
  python main.py po place 665f1c                       # Draft -> Ordered
  python main.py po cancel 665f1c

  python main.py invoice show 7a01d9                   # Items, payments, balance due
  python main.py invoice send 7a01d9
  python main.py invoice void 7a01d9

  python main.py payment record 7a01d9 --amount 50 --method Cash
  python main.py payment update 81bb02 --amount 45.50
  python main.py payment delete 81bb02

  python main.py --db output/reconciliation.db po show 665f1c   # Local store instead of HTTP
"""
import logging
import sys
from contextlib import contextmanager
from datetime import date

import click

from config import Config
from gateway.http import HttpGateway
from gateway.sqlite import SqliteGateway
from models.invoice import PAYMENT_METHODS
from models.purchase_order import ReceiptLine
from models.session import Session
from reconciliation.errors import ReconciliationError
from reconciliation.payments import PaymentEngine
from reconciliation.receiving import ReceivingEngine
from reconciliation.status import invoice_status, order_status


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@contextmanager
def _reported():
    """Print reconciliation failures to stderr and exit non-zero."""
    try:
        yield
    except ReconciliationError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


def _gateway(ctx: click.Context):
    if ctx.obj.get("gateway") is None:
        config: Config = ctx.obj["config"]
        if ctx.obj.get("db"):
            ctx.obj["gateway"] = SqliteGateway(ctx.obj["db"], accounts=config.accounts)
        else:
            ctx.obj["gateway"] = HttpGateway(config.gateway_base_url, timeout=config.gateway_timeout)
    return ctx.obj["gateway"]


def _parse_receipt(entries: tuple[str, ...]) -> list[ReceiptLine]:
    lines = []
    for entry in entries:
        item_id, sep, qty = entry.rpartition("=")
        if not sep or not item_id:
            raise click.BadParameter(f"'{entry}' is not LINE=QTY", param_hint="RECEIPT")
        try:
            quantity = int(qty)
        except ValueError:
            raise click.BadParameter(f"'{qty}' is not a whole number", param_hint="RECEIPT")
        lines.append(ReceiptLine(item_id=item_id, quantity_newly_received=quantity))
    return lines


def _echo_order(order) -> None:
    click.echo(f"\nPO {order.po_number}  [{order_status(order)}]")
    if order.supplier_ref:
        click.echo(f"  Supplier:  {order.supplier_ref}")
    if order.expected_delivery_date:
        click.echo(f"  Expected:  {order.expected_delivery_date.isoformat()}")
    click.echo()
    click.echo(f"  {'Line':<26} {'Product':<28} {'Ordered':>8} {'Received':>9} {'Outstanding':>12}")
    for item in order.line_items:
        click.echo(
            f"  {item.id:<26} {item.product_name[:28]:<28} {item.quantity_ordered:>8} "
            f"{item.quantity_received:>9} {item.outstanding:>12}"
        )
    click.echo(f"\n  Grand total: {order.grand_total:.2f}\n")


def _echo_invoice(invoice, payments=None) -> None:
    click.echo(f"\nInvoice {invoice.invoice_number}  [{invoice_status(invoice)}]")
    if invoice.due_date:
        click.echo(f"  Due:  {invoice.due_date.isoformat()}")
    click.echo()
    for item in invoice.items:
        click.echo(
            f"  {item.product_name[:36]:<36} {item.quantity:>8} x {item.unit_price:>10.2f} "
            f"= {item.total_price:>10.2f}"
        )
    click.echo(f"\n  Subtotal:     {invoice.sub_total:>12.2f}")
    click.echo(f"  Tax ({invoice.tax_rate}%):  {invoice.tax_amount:>12.2f}")
    click.echo(f"  Grand total:  {invoice.grand_total:>12.2f}")
    click.echo(f"  Total paid:   {invoice.total_paid:>12.2f}")
    click.echo(f"  Balance due:  {invoice.balance_due:>12.2f}")
    if payments:
        click.echo("\n  Payments:")
        for p in payments:
            ref = f"  ({p.transaction_id})" if p.transaction_id else ""
            click.echo(
                f"    {p.id}  {p.payment_date.isoformat()}  {p.amount_paid:>10.2f}  "
                f"{p.payment_method}{ref}"
            )
    click.echo()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", type=click.Path(dir_okay=False), default=None,
              help="Use the local SQLite store at this path instead of the HTTP gateway")
@click.option("--base-url", default=None, help="Gateway base URL (default: GATEWAY_BASE_URL)")
@click.option("--token", default=None, help="Bearer token (default: GATEWAY_TOKEN)")
@click.option("--user", default="cli", show_default=True, help="Username recorded as the actor")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db: str | None, base_url: str | None,
        token: str | None, user: str) -> None:
    """Fulfillment reconciliation: receive goods against orders, reconcile invoice payments."""
    _setup_logging(verbose)
    config = Config()
    if base_url:
        config.gateway_base_url = base_url
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["db"] = db
    ctx.obj["session"] = Session(token=token or config.gateway_token, username=user)


# --------------------------------------------------------------------
# purchase orders
# --------------------------------------------------------------------

@cli.group()
def po() -> None:
    """Purchase orders and goods receipts."""


@po.command("show")
@click.argument("order_id")
@click.pass_context
def po_show(ctx: click.Context, order_id: str) -> None:
    """Show an order's lines with received and outstanding quantities."""
    with _reported():
        order = _gateway(ctx).get_purchase_order(order_id, session=ctx.obj["session"])
    _echo_order(order)


@po.command("receive")
@click.argument("order_id")
@click.argument("receipt", nargs=-1, required=True)
@click.option("--key", default=None, help="Idempotency key for this receipt submission")
@click.pass_context
def po_receive(ctx: click.Context, order_id: str, receipt: tuple[str, ...], key: str | None) -> None:
    """Receive goods: RECEIPT is one or more LINE_ID=QUANTITY pairs."""
    lines = _parse_receipt(receipt)
    engine = ReceivingEngine(_gateway(ctx))
    with _reported():
        order = engine.receive_latest(order_id, lines, ctx.obj["session"], idempotency_key=key)
    click.echo(f"✓ Receipt applied to PO {order.po_number}")
    _echo_order(order)


@po.command("place")
@click.argument("order_id")
@click.pass_context
def po_place(ctx: click.Context, order_id: str) -> None:
    """Move a Draft order to Ordered."""
    gateway, session = _gateway(ctx), ctx.obj["session"]
    with _reported():
        order = gateway.get_purchase_order(order_id, session=session)
        order = ReceivingEngine(gateway).place_order(order, session)
    click.echo(f"✓ PO {order.po_number} is now {order.status}")


@po.command("cancel")
@click.argument("order_id")
@click.pass_context
def po_cancel(ctx: click.Context, order_id: str) -> None:
    """Cancel an order that is not yet fully received."""
    gateway, session = _gateway(ctx), ctx.obj["session"]
    with _reported():
        order = gateway.get_purchase_order(order_id, session=session)
        order = ReceivingEngine(gateway).cancel_order(order, session)
    click.echo(f"✓ PO {order.po_number} is now {order.status}")


# --------------------------------------------------------------------
# invoices
# --------------------------------------------------------------------

@cli.group()
def invoice() -> None:
    """Customer invoices."""


@invoice.command("show")
@click.argument("invoice_id")
@click.pass_context
def invoice_show(ctx: click.Context, invoice_id: str) -> None:
    """Show items, payments, totals, and balance due."""
    gateway, session = _gateway(ctx), ctx.obj["session"]
    with _reported():
        inv = gateway.get_invoice(invoice_id, session=session)
        payments = gateway.list_payments(invoice_id, session=session)
    _echo_invoice(inv, payments)


@invoice.command("send")
@click.argument("invoice_id")
@click.pass_context
def invoice_send(ctx: click.Context, invoice_id: str) -> None:
    """Move a draft invoice to sent."""
    gateway, session = _gateway(ctx), ctx.obj["session"]
    with _reported():
        inv = gateway.get_invoice(invoice_id, session=session)
        inv = PaymentEngine(gateway).send_invoice(inv, session)
    click.echo(f"✓ Invoice {inv.invoice_number} is now {inv.status}")


@invoice.command("void")
@click.argument("invoice_id")
@click.pass_context
def invoice_void(ctx: click.Context, invoice_id: str) -> None:
    """Void an invoice (terminal)."""
    gateway, session = _gateway(ctx), ctx.obj["session"]
    with _reported():
        inv = gateway.get_invoice(invoice_id, session=session)
        inv = PaymentEngine(gateway).void_invoice(inv, session)
    click.echo(f"✓ Invoice {inv.invoice_number} is now {inv.status}")


# --------------------------------------------------------------------
# payments
# --------------------------------------------------------------------

@cli.group()
def payment() -> None:
    """Payments against invoices."""


@payment.command("record")
@click.argument("invoice_id")
@click.option("--amount", required=True, help="Amount paid, e.g. 50.00")
@click.option("--method", required=True, type=click.Choice(PAYMENT_METHODS), help="Payment method")
@click.option("--date", "payment_date", default=None, help="Payment date YYYY-MM-DD (default: today)")
@click.option("--transaction-id", default=None, help="Bank or processor reference")
@click.option("--notes", default=None)
@click.pass_context
def payment_record(ctx: click.Context, invoice_id: str, amount: str, method: str,
                   payment_date: str | None, transaction_id: str | None, notes: str | None) -> None:
    """Record a payment and show the reconciled invoice."""
    draft = {
        "amountPaid": amount,
        "paymentDate": payment_date or date.today().isoformat(),
        "paymentMethod": method,
        "transactionId": transaction_id,
        "notes": notes,
    }
    engine = PaymentEngine(_gateway(ctx))
    with _reported():
        outcome = engine.record_payment_latest(invoice_id, draft, ctx.obj["session"])
    click.echo(f"✓ Payment {outcome.payment.id} recorded")
    _echo_invoice(outcome.invoice)


@payment.command("update")
@click.argument("payment_id")
@click.option("--amount", default=None, help="New amount paid")
@click.option("--method", default=None, type=click.Choice(PAYMENT_METHODS), help="New payment method")
@click.option("--date", "payment_date", default=None, help="New payment date YYYY-MM-DD")
@click.option("--transaction-id", default=None)
@click.option("--notes", default=None)
@click.pass_context
def payment_update(ctx: click.Context, payment_id: str, amount: str | None, method: str | None,
                   payment_date: str | None, transaction_id: str | None, notes: str | None) -> None:
    """Edit a payment; only the options given are changed."""
    given = {
        "amountPaid": amount,
        "paymentDate": payment_date,
        "paymentMethod": method,
        "transactionId": transaction_id,
        "notes": notes,
    }
    fields = {k: v for k, v in given.items() if v is not None}
    engine = PaymentEngine(_gateway(ctx))
    with _reported():
        outcome = engine.update_payment(payment_id, fields, ctx.obj["session"])
    click.echo(f"✓ Payment {payment_id} updated")
    _echo_invoice(outcome.invoice)


@payment.command("delete")
@click.argument("payment_id")
@click.confirmation_option(prompt="Delete this payment?")
@click.pass_context
def payment_delete(ctx: click.Context, payment_id: str) -> None:
    """Delete a payment and show the reconciled invoice."""
    engine = PaymentEngine(_gateway(ctx))
    with _reported():
        inv = engine.delete_payment(payment_id, ctx.obj["session"])
    click.echo(f"✓ Payment {payment_id} deleted")
    _echo_invoice(inv)


if __name__ == "__main__":
    cli()
