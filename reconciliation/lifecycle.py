"""
Guarded lifecycle transitions for purchase orders and invoices.

Purchase order:  Draft -> Ordered -> (receipts) -> Partially Received -> Received
                 Draft / Ordered / Partially Received -> Cancelled
Invoice:         draft -> sent -> (payments) -> partially_paid -> paid
                 any non-void -> void (terminal)

Cancelling an order that has already received goods leaves the received
quantities and stock as they are.
"""
from datetime import date, datetime
from typing import Union

from models.invoice import INVOICE_DRAFT, INVOICE_SENT, INVOICE_VOID, Invoice
from models.purchase_order import (
    PO_CANCELLED,
    PO_DRAFT,
    PO_ORDERED,
    PO_PARTIALLY_RECEIVED,
    PO_RECEIVED,
    PurchaseOrder,
)

from .errors import StateError, ValidationError
from .status import derive_invoice_status, derive_po_status, invoice_lifecycle

_PO_TRANSITIONS = {
    PO_ORDERED:   {PO_DRAFT},
    PO_CANCELLED: {PO_DRAFT, PO_ORDERED, PO_PARTIALLY_RECEIVED},
}

_INVOICE_TRANSITIONS = {
    INVOICE_SENT: {INVOICE_DRAFT},
    INVOICE_VOID: {INVOICE_DRAFT, INVOICE_SENT},
}

PO_DELETABLE = {PO_DRAFT, PO_CANCELLED}
INVOICE_DELETABLE = {INVOICE_DRAFT, INVOICE_VOID}


def transition_order(order: PurchaseOrder, target: str) -> PurchaseOrder:
    """Return a copy of *order* moved to *target*, or raise StateError."""
    allowed_from = _PO_TRANSITIONS.get(target)
    if allowed_from is None:
        raise ValidationError(
            f"'{target}' cannot be set directly; it is derived from received quantities"
            if target in (PO_PARTIALLY_RECEIVED, PO_RECEIVED)
            else f"Unknown purchase order status '{target}'"
        )
    if order.status not in allowed_from:
        raise StateError(
            f"Cannot move PO {order.po_number} from '{order.status}' to '{target}'"
        )
    if target == PO_ORDERED and not order.line_items:
        raise ValidationError(f"PO {order.po_number} has no line items to order")

    updated = order.model_copy(deep=True)
    updated.status = derive_po_status(updated.line_items, target)
    return updated


def transition_invoice(
    invoice: Invoice,
    target: str,
    now: Union[date, datetime, None] = None,
) -> Invoice:
    """Return a copy of *invoice* moved to *target*, or raise StateError."""
    allowed_from = _INVOICE_TRANSITIONS.get(target)
    if allowed_from is None:
        raise ValidationError(
            f"Invoice status '{target}' is derived from payments and cannot be set directly"
        )
    if invoice_lifecycle(invoice) not in allowed_from:
        raise StateError(
            f"Cannot move invoice {invoice.invoice_number} from '{invoice.status}' to '{target}'"
        )

    updated = invoice.model_copy(deep=True)
    updated.lifecycle_status = target
    updated.status = derive_invoice_status(
        updated.grand_total, updated.total_paid, updated.due_date, target, now,
    )
    return updated


def check_order_deletable(order: PurchaseOrder) -> None:
    if order.status not in PO_DELETABLE:
        raise StateError(
            f"Cannot delete PO {order.po_number} in '{order.status}' status"
        )


def check_invoice_deletable(invoice: Invoice, payment_count: int) -> None:
    if invoice_lifecycle(invoice) not in INVOICE_DELETABLE:
        raise StateError(
            f"Cannot delete invoice {invoice.invoice_number} in '{invoice.status}' status"
        )
    if payment_count:
        raise StateError(
            f"Cannot delete invoice {invoice.invoice_number}: {payment_count} payment(s) linked"
        )
