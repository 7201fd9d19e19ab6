"""
Canonical status derivation for purchase orders and invoices.

These functions are the only place status is computed.  The engines, the
local store, the HTTP service, and the CLI's display code all call them the
same way, so a list view can never disagree with the reconciled state.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Union

from models.invoice import (
    INVOICE_DRAFT,
    INVOICE_OVERDUE,
    INVOICE_PAID,
    INVOICE_PARTIALLY_PAID,
    INVOICE_SENT,
    INVOICE_VOID,
    Invoice,
)
from models.money import to_money
from models.purchase_order import (
    PO_CANCELLED,
    PO_ORDERED,
    PO_PARTIALLY_RECEIVED,
    PO_RECEIVED,
    PurchaseOrder,
    PurchaseOrderLineItem,
)

PAID_TOLERANCE = Decimal("0.01")

# Stored statuses that are themselves derived collapse to their lifecycle base
_PO_BASE = {PO_PARTIALLY_RECEIVED: PO_ORDERED, PO_RECEIVED: PO_ORDERED}
_INVOICE_BASE = {
    INVOICE_PARTIALLY_PAID: INVOICE_SENT,
    INVOICE_PAID:           INVOICE_SENT,
    INVOICE_OVERDUE:        INVOICE_SENT,
}


def base_po_status(status: str) -> str:
    return _PO_BASE.get(status, status)


def base_invoice_status(status: str) -> str:
    return _INVOICE_BASE.get(status, status)


def invoice_lifecycle(invoice: Invoice) -> str:
    """
    The explicit draft/sent/void status of *invoice*.

    Stores record it separately from the derived status.  When it is missing
    (an older record, or a remote gateway that does not send it) it is
    recovered from the stored status.
    """
    return invoice.lifecycle_status or base_invoice_status(invoice.status)


def derive_po_status(
    line_items: Iterable[PurchaseOrderLineItem],
    explicit_status: str,
) -> str:
    """
    Status of a purchase order given its current line quantities.

    Cancelled is terminal and overrides quantities.  Otherwise an order is
    Received when every line is fully received, Partially Received when any
    line has received units, and keeps its lifecycle status (Draft/Ordered)
    when nothing has arrived.
    """
    if explicit_status == PO_CANCELLED:
        return PO_CANCELLED

    items = list(line_items)
    if items and all(i.quantity_received == i.quantity_ordered for i in items):
        return PO_RECEIVED
    if any(i.quantity_received > 0 for i in items):
        return PO_PARTIALLY_RECEIVED
    return base_po_status(explicit_status)


def derive_invoice_status(
    grand_total,
    total_paid,
    due_date: Optional[date],
    explicit_status: str,
    now: Union[date, datetime, None] = None,
) -> str:
    """
    Settlement status of an invoice.

    void is terminal.  An invoice is paid once total_paid reaches grand_total
    less one cent, partially_paid while anything has been paid, overdue when
    nothing is paid, it has been sent, and its due date is before today.
    """
    if explicit_status == INVOICE_VOID:
        return INVOICE_VOID

    grand_total = to_money(grand_total)
    total_paid = to_money(total_paid)
    base = base_invoice_status(explicit_status)

    if total_paid >= grand_total - PAID_TOLERANCE:
        return INVOICE_PAID
    if total_paid > 0:
        return INVOICE_PARTIALLY_PAID

    today = _today(now)
    if due_date is not None and due_date < today and base != INVOICE_DRAFT:
        return INVOICE_OVERDUE
    return base


def order_status(order: PurchaseOrder) -> str:
    """derive_po_status applied to a whole aggregate."""
    return derive_po_status(order.line_items, order.status)


def invoice_status(invoice: Invoice, now: Union[date, datetime, None] = None) -> str:
    """derive_invoice_status applied to a whole aggregate."""
    return derive_invoice_status(
        invoice.grand_total, invoice.total_paid, invoice.due_date, invoice_lifecycle(invoice), now,
    )


def _today(now: Union[date, datetime, None]) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now
