from .purchase_order import PurchaseOrder, PurchaseOrderLineItem, ReceiptLine
from .invoice import Invoice, InvoiceLineItem, Payment, PaymentDraft, PaymentUpdate
from .session import Session
from .result import Issue, PaymentOutcome, JournalEntry, JournalLine

__all__ = [
    "PurchaseOrder", "PurchaseOrderLineItem", "ReceiptLine",
    "Invoice", "InvoiceLineItem", "Payment", "PaymentDraft", "PaymentUpdate",
    "Session",
    "Issue", "PaymentOutcome", "JournalEntry", "JournalLine",
]
