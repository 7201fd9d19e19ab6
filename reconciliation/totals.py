"""
Totals for invoices and purchase orders, recomputed from their line items.

Every figure is computed from scratch in Decimal and quantized once per
line and once per total, so repeated recomputation is stable.
"""
from decimal import Decimal
from typing import Iterable, NamedTuple

from models.invoice import InvoiceLineItem, Payment
from models.money import ZERO, line_total, to_decimal, to_money
from models.purchase_order import PurchaseOrderLineItem


class InvoiceTotals(NamedTuple):
    sub_total: Decimal
    tax_amount: Decimal
    grand_total: Decimal


class OrderTotals(NamedTuple):
    sub_total: Decimal
    grand_total: Decimal


def compute_invoice_totals(items: Iterable[InvoiceLineItem], tax_rate) -> InvoiceTotals:
    """subTotal = sum of line totals; tax is tax_rate percent of subTotal."""
    sub_total = sum((line_total(i.quantity, i.unit_price) for i in items), ZERO)
    tax_amount = to_money(sub_total * to_decimal(tax_rate) / Decimal(100))
    return InvoiceTotals(to_money(sub_total), tax_amount, to_money(sub_total + tax_amount))


def compute_order_totals(line_items: Iterable[PurchaseOrderLineItem]) -> OrderTotals:
    """Purchase orders carry no tax or shipping, so grandTotal == subTotal."""
    sub_total = to_money(sum(
        (line_total(i.quantity_ordered, i.unit_price) for i in line_items), ZERO,
    ))
    return OrderTotals(sub_total, sub_total)


def sum_payments(payments: Iterable[Payment]) -> Decimal:
    """Fresh total of the payments currently linked to an invoice."""
    return to_money(sum((to_money(p.amount_paid) for p in payments), ZERO))
