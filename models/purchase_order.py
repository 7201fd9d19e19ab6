from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator

from .base import WireModel
from .money import IsoDate, Money, ZERO, line_total


PO_DRAFT              = "Draft"
PO_ORDERED            = "Ordered"
PO_PARTIALLY_RECEIVED = "Partially Received"
PO_RECEIVED           = "Received"
PO_CANCELLED          = "Cancelled"

POStatus = Literal["Draft", "Ordered", "Partially Received", "Received", "Cancelled"]

RECEIVABLE_STATUSES = {PO_ORDERED, PO_PARTIALLY_RECEIVED}


class PurchaseOrderLineItem(WireModel):
    """A single product line on a purchase order."""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    product_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("productRef", "product_ref", "product"),
    )
    product_name: str
    quantity_ordered: int = Field(gt=0)
    quantity_received: int = Field(default=0, ge=0)
    unit_price: Money = Field(ge=0)
    total_price: Money = ZERO      # quantity_ordered * unit_price

    @model_validator(mode="after")
    def _check_quantities(self):
        if self.quantity_received > self.quantity_ordered:
            raise ValueError(
                f"quantity_received ({self.quantity_received}) exceeds "
                f"quantity_ordered ({self.quantity_ordered}) on line {self.id}"
            )
        self.total_price = line_total(self.quantity_ordered, self.unit_price)
        return self

    @property
    def outstanding(self) -> int:
        """Units still expected on this line."""
        return self.quantity_ordered - self.quantity_received

    @property
    def is_fully_received(self) -> bool:
        return self.quantity_received >= self.quantity_ordered


class PurchaseOrder(WireModel):
    """
    A purchase order together with its line items (one consistency boundary).

    status holds the stored lifecycle value; reconciliation.status re-derives
    it from the line quantities whenever a receipt is applied.
    """
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    po_number: str
    supplier_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("supplierRef", "supplier_ref", "supplier"),
    )
    order_date: Optional[IsoDate] = None
    expected_delivery_date: Optional[IsoDate] = None
    status: POStatus = PO_DRAFT
    line_items: List[PurchaseOrderLineItem] = Field(
        default_factory=list, validation_alias=AliasChoices("lineItems", "line_items", "items"),
    )
    sub_total: Money = ZERO
    grand_total: Money = ZERO
    notes: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        # Accept the compact spelling used by some clients
        if value == "PartiallyReceived":
            return PO_PARTIALLY_RECEIVED
        return value

    def line(self, line_item_id: str) -> Optional[PurchaseOrderLineItem]:
        """Return the line item with this id, or None."""
        for item in self.line_items:
            if item.id == line_item_id:
                return item
        return None


class ReceiptLine(WireModel):
    """One entry of a delivery receipt: units newly received against a line."""
    item_id: str = Field(validation_alias=AliasChoices("itemId", "item_id", "lineItemId"))
    quantity_newly_received: int
