from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, model_validator

from .base import WireModel
from .money import IsoDate, Money, Quantity, ZERO, line_total


INVOICE_DRAFT          = "draft"
INVOICE_SENT           = "sent"
INVOICE_PARTIALLY_PAID = "partially_paid"
INVOICE_PAID           = "paid"
INVOICE_OVERDUE        = "overdue"
INVOICE_VOID           = "void"

InvoiceStatus = Literal["draft", "sent", "partially_paid", "paid", "overdue", "void"]
InvoiceLifecycle = Literal["draft", "sent", "void"]

PaymentMethod = Literal["Cash", "Credit Card", "Bank Transfer", "Online Payment", "Other"]
PAYMENT_METHODS = ("Cash", "Credit Card", "Bank Transfer", "Online Payment", "Other")


class InvoiceLineItem(WireModel):
    """A single line item on a customer invoice."""
    product_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("productRef", "product_ref", "productId"),
    )
    product_name: str
    description: Optional[str] = None
    quantity: Quantity = Field(gt=0)
    unit_price: Money = Field(ge=0)
    total_price: Money = ZERO      # quantity * unit_price

    @model_validator(mode="after")
    def _compute_total(self):
        self.total_price = line_total(self.quantity, self.unit_price)
        return self


class Invoice(WireModel):
    """
    A customer invoice.  All monetary values are cent-quantized Decimals.

    total_paid is owned by the payment reconciliation: it is always the fresh
    sum of the payments currently linked to the invoice.
    """
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    invoice_number: str
    customer_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customerRef", "customer_ref", "customer"),
    )
    invoice_date: Optional[IsoDate] = None
    due_date: Optional[IsoDate] = None
    items: List[InvoiceLineItem] = Field(default_factory=list)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)   # percent, e.g. 18 for 18%
    sub_total: Money = ZERO
    tax_amount: Money = ZERO
    grand_total: Money = ZERO
    total_paid: Money = ZERO
    status: InvoiceStatus = INVOICE_DRAFT
    # draft | sent | void as last set explicitly; payments never change it
    lifecycle_status: Optional[InvoiceLifecycle] = None
    notes: Optional[str] = None

    @property
    def balance_due(self) -> Decimal:
        """grand_total - total_paid; negative when overpaid."""
        return self.grand_total - self.total_paid


class Payment(WireModel):
    """A payment recorded against an invoice."""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    invoice_ref: str = Field(validation_alias=AliasChoices("invoiceRef", "invoice_ref", "invoice", "invoiceId"))
    amount_paid: Money
    payment_date: IsoDate
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class PaymentDraft(WireModel):
    """The fields a user submits when recording a new payment."""
    amount_paid: Money
    payment_date: IsoDate
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(WireModel):
    """Partial payment edit; only the fields that are set are applied."""
    amount_paid: Optional[Money] = None
    payment_date: Optional[IsoDate] = None
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None

    def changes(self) -> dict:
        """Return the explicitly-set fields as a snake_case dict."""
        return self.model_dump(exclude_unset=True)
