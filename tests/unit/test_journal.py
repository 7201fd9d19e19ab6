"""
Unit tests for journal entry construction.
"""
from datetime import date
from decimal import Decimal

import pytest

from conftest import make_invoice, make_order
from models.invoice import Payment
from models.purchase_order import ReceiptLine
from reconciliation.journal import (
    AccountNames,
    goods_received_entry,
    payment_adjustment_entry,
    payment_received_entry,
    payment_reversal_entry,
)

ON = date(2024, 6, 15)


def _payment(amount: str) -> Payment:
    return Payment(id="p1", invoice_ref="inv-1", amount_paid=amount,
                   payment_date="2024-06-10", payment_method="Cash")


def _amounts(entry):
    return {l.account: (l.debit, l.credit) for l in entry.lines}


@pytest.mark.unit
class TestJournalEntries:

    def test_goods_received(self):
        lines = [ReceiptLine(item_id="A", quantity_newly_received=4),
                 ReceiptLine(item_id="B", quantity_newly_received=1)]
        entry = goods_received_entry(make_order(), lines, ON)
        assert entry.is_balanced
        assert entry.reference_number == "PO-1001"
        assert entry.entry_date == "2024-06-15"
        assert _amounts(entry) == {
            "Inventory": (Decimal("90.00"), Decimal("0.00")),
            "Accounts Payable": (Decimal("0.00"), Decimal("90.00")),
        }

    def test_zero_value_receipt_posts_nothing(self):
        order = make_order()
        order.line_items[0].unit_price = Decimal("0.00")
        assert goods_received_entry(order, [ReceiptLine(item_id="A", quantity_newly_received=2)], ON) is None

    def test_payment_received(self):
        entry = payment_received_entry(make_invoice(), _payment("50.00"))
        assert entry.is_balanced
        assert entry.entry_date == "2024-06-10"
        assert _amounts(entry)["Cash"] == (Decimal("50.00"), Decimal("0.00"))
        assert _amounts(entry)["Accounts Receivable"] == (Decimal("0.00"), Decimal("50.00"))

    def test_payment_increase_posts_net_change(self):
        entry = payment_adjustment_entry(make_invoice(), _payment("60.00"), "50.00", ON)
        assert entry.reference_number == "PAY-EDIT-p1"
        assert "+10.00" in entry.description
        assert _amounts(entry)["Cash"] == (Decimal("10.00"), Decimal("0.00"))

    def test_payment_decrease_reverses_direction(self):
        entry = payment_adjustment_entry(make_invoice(), _payment("45.00"), "50.00", ON)
        assert entry.is_balanced
        assert "-5.00" in entry.description
        assert _amounts(entry)["Accounts Receivable"] == (Decimal("5.00"), Decimal("0.00"))
        assert _amounts(entry)["Cash"] == (Decimal("0.00"), Decimal("5.00"))

    def test_unchanged_amount_posts_nothing(self):
        assert payment_adjustment_entry(make_invoice(), _payment("50.00"), Decimal("50"), ON) is None

    def test_payment_reversal(self):
        entry = payment_reversal_entry(make_invoice(), _payment("50.00"), ON)
        assert entry.reference_number == "PAY-DEL-p1"
        assert _amounts(entry)["Accounts Receivable"] == (Decimal("50.00"), Decimal("0.00"))
        assert _amounts(entry)["Cash"] == (Decimal("0.00"), Decimal("50.00"))

    def test_custom_account_names(self):
        accounts = AccountNames(cash="Bank - Operating", accounts_receivable="Debtors")
        entry = payment_received_entry(make_invoice(), _payment("5.00"), accounts)
        assert set(_amounts(entry)) == {"Bank - Operating", "Debtors"}
