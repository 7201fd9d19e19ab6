from typing import List, Optional

from pydantic import BaseModel, Field

from .invoice import Invoice, Payment
from .money import Money, ZERO


class Issue(BaseModel):
    """A single problem found while validating a proposed change."""
    field: Optional[str] = None             # Which input field is affected
    message: str                            # Human-readable explanation
    line_item_id: Optional[str] = None      # Relevant for receipt lines
    value: Optional[str] = None             # The offending value, as submitted


class PaymentOutcome(BaseModel):
    """The gateway-confirmed result of recording or editing a payment."""
    payment: Payment
    invoice: Invoice


class JournalLine(BaseModel):
    account: str
    debit: Money = ZERO
    credit: Money = ZERO


class JournalEntry(BaseModel):
    """
    A balanced double-entry posting produced by a receipt or payment change.
    reference_number links the entry back to the PO / invoice / payment.
    """
    entry_date: str                         # YYYY-MM-DD
    description: str
    reference_number: str
    lines: List[JournalLine] = Field(default_factory=list)

    @property
    def is_balanced(self) -> bool:
        return sum(l.debit for l in self.lines) == sum(l.credit for l in self.lines)
