"""
Double-entry postings for goods receipts and payment changes.

  Goods received     Dr Inventory            Cr Accounts Payable
  Payment recorded   Dr Cash                 Cr Accounts Receivable
  Payment edited     net change only; direction follows the sign
  Payment deleted    Dr Accounts Receivable  Cr Cash

Pure functions: the store persists the entries in the same transaction as
the aggregate they describe.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from models.invoice import Invoice, Payment
from models.money import to_money
from models.purchase_order import PurchaseOrder
from models.result import JournalEntry, JournalLine

from .receiving import receipt_value


@dataclass(frozen=True)
class AccountNames:
    inventory: str = "Inventory"
    accounts_payable: str = "Accounts Payable"
    cash: str = "Cash"
    accounts_receivable: str = "Accounts Receivable"


DEFAULT_ACCOUNTS = AccountNames()


def _entry(
    on: date,
    description: str,
    reference: str,
    debit_account: str,
    credit_account: str,
    amount: Decimal,
) -> JournalEntry:
    return JournalEntry(
        entry_date=on.isoformat(),
        description=description,
        reference_number=reference,
        lines=[
            JournalLine(account=debit_account, debit=amount),
            JournalLine(account=credit_account, credit=amount),
        ],
    )


def goods_received_entry(
    order: PurchaseOrder,
    receipt_lines: Iterable,
    on: date,
    accounts: AccountNames = DEFAULT_ACCOUNTS,
) -> Optional[JournalEntry]:
    """Inventory / payable posting for one receipt batch; None if it has no value."""
    value = receipt_value(order, receipt_lines)
    if value <= 0:
        return None
    return _entry(
        on, f"Goods received for PO #{order.po_number}", order.po_number,
        accounts.inventory, accounts.accounts_payable, value,
    )


def payment_received_entry(
    invoice: Invoice,
    payment: Payment,
    accounts: AccountNames = DEFAULT_ACCOUNTS,
) -> JournalEntry:
    return _entry(
        payment.payment_date,
        f"Payment received for Invoice #{invoice.invoice_number}",
        invoice.invoice_number,
        accounts.cash, accounts.accounts_receivable, to_money(payment.amount_paid),
    )


def payment_adjustment_entry(
    invoice: Invoice,
    payment: Payment,
    original_amount,
    on: date,
    accounts: AccountNames = DEFAULT_ACCOUNTS,
) -> Optional[JournalEntry]:
    """Posting for the net change in a payment's amount; None when unchanged."""
    change = to_money(payment.amount_paid) - to_money(original_amount)
    if change == 0:
        return None
    sign = "+" if change > 0 else "-"
    description = (
        f"Payment update for Invoice #{invoice.invoice_number}. "
        f"Net change: {sign}{abs(change):.2f}"
    )
    if change > 0:
        debit, credit = accounts.cash, accounts.accounts_receivable
    else:
        debit, credit = accounts.accounts_receivable, accounts.cash
    return _entry(on, description, f"PAY-EDIT-{payment.id}", debit, credit, abs(change))


def payment_reversal_entry(
    invoice: Invoice,
    payment: Payment,
    on: date,
    accounts: AccountNames = DEFAULT_ACCOUNTS,
) -> JournalEntry:
    amount = to_money(payment.amount_paid)
    return _entry(
        on,
        f"Payment deletion reversal for Invoice #{invoice.invoice_number}. Amount: {amount:.2f}",
        f"PAY-DEL-{payment.id}",
        accounts.accounts_receivable, accounts.cash, amount,
    )
