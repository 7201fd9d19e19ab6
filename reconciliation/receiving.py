"""
Delivery receipts against purchase-order line items.

Receiving rules:
  State:       only Ordered / Partially Received orders accept receipts
  Batch:       at least one entry; every entry names a line on this order
  Quantities:  each entry is >= 1, and the units received for a line in one
               batch never exceed that line's outstanding quantity

The whole batch is validated before anything changes.  One bad entry rejects
the batch and the order is left exactly as it was.
"""
import logging
import uuid
from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from models.money import ZERO, line_total
from models.purchase_order import (
    PO_CANCELLED,
    PO_ORDERED,
    PO_PARTIALLY_RECEIVED,
    RECEIVABLE_STATUSES,
    PurchaseOrder,
    ReceiptLine,
)
from models.result import Issue
from models.session import Session

from .errors import StateError, ValidationError
from .lifecycle import transition_order
from .status import derive_po_status

logger = logging.getLogger(__name__)


def coerce_receipt_lines(receipt_lines: Iterable) -> list[ReceiptLine]:
    lines = []
    for entry in receipt_lines:
        if isinstance(entry, ReceiptLine):
            lines.append(entry)
        else:
            try:
                lines.append(ReceiptLine.model_validate(entry))
            except PydanticValidationError as exc:
                raise ValidationError(f"Malformed receipt entry {entry!r}: {exc.errors()[0]['msg']}") from exc
    return lines


def check_receivable(order: PurchaseOrder) -> None:
    """Raise StateError unless the order can accept a receipt."""
    if order.status not in RECEIVABLE_STATUSES:
        raise StateError(
            f"Cannot receive items for PO {order.po_number} with status '{order.status}'"
        )


def validate_receipt(order: PurchaseOrder, receipt_lines: Sequence[ReceiptLine]) -> dict[str, int]:
    """
    Check a whole receipt batch against the order without changing it.

    Returns the units to add per line item id.  Raises StateError if the
    order is not receivable, ValidationError listing every offending entry.
    """
    check_receivable(order)
    if not receipt_lines:
        raise ValidationError("No items provided for receiving")

    issues: list[Issue] = []
    per_line: "OrderedDict[str, int]" = OrderedDict()

    for entry in receipt_lines:
        item = order.line(entry.item_id)
        if item is None:
            issues.append(Issue(
                field="itemId",
                message=f"Item with ID {entry.item_id} not found in PO {order.po_number}",
                line_item_id=entry.item_id,
                value=entry.item_id,
            ))
            continue
        if entry.quantity_newly_received < 1:
            issues.append(Issue(
                field="quantityNewlyReceived",
                message=(
                    f"Invalid quantity received for {item.product_name}: "
                    f"{entry.quantity_newly_received} (must be at least 1)"
                ),
                line_item_id=item.id,
                value=str(entry.quantity_newly_received),
            ))
            continue
        per_line[item.id] = per_line.get(item.id, 0) + entry.quantity_newly_received

    for item_id, quantity in per_line.items():
        item = order.line(item_id)
        if quantity > item.outstanding:
            issues.append(Issue(
                field="quantityNewlyReceived",
                message=(
                    f"Cannot receive more than outstanding for {item.product_name}. "
                    f"Ordered: {item.quantity_ordered}, Already Received: "
                    f"{item.quantity_received}, Trying to receive: {quantity}"
                ),
                line_item_id=item_id,
                value=str(quantity),
            ))

    if issues:
        raise ValidationError(f"Receipt rejected for PO {order.po_number}:", issues)
    return dict(per_line)


def apply_receipt(order: PurchaseOrder, receipt_lines: Iterable) -> PurchaseOrder:
    """
    Return a new PurchaseOrder with the receipt applied and status re-derived.

    The input order is never mutated; on any failure nothing changes.
    """
    lines = coerce_receipt_lines(receipt_lines)
    to_add = validate_receipt(order, lines)

    updated = order.model_copy(deep=True)
    for item in updated.line_items:
        if item.id in to_add:
            item.quantity_received += to_add[item.id]
    updated.status = derive_po_status(updated.line_items, updated.status)
    return updated


def receipt_value(order: PurchaseOrder, receipt_lines: Iterable) -> Decimal:
    """Value of the goods in a receipt at the order's unit prices."""
    total = ZERO
    for entry in coerce_receipt_lines(receipt_lines):
        item = order.line(entry.item_id)
        if item is not None and entry.quantity_newly_received > 0:
            total += line_total(entry.quantity_newly_received, item.unit_price)
    return total


class ReceivingEngine:
    """
    Applies delivery receipts through a persistence gateway.

    Usage:
        engine = ReceivingEngine(gateway)
        order = engine.receive(order, [{"itemId": "A", "quantityNewlyReceived": 10}], session)

    The caller's order object is never modified.  The returned order is the
    gateway-confirmed state and is the only thing the caller should keep.
    """

    def __init__(self, gateway) -> None:
        self.gateway = gateway

    def receive(
        self,
        order: PurchaseOrder,
        receipt_lines: Iterable,
        session: Session,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseOrder:
        """Validate the receipt locally, then submit it and return the confirmed order."""
        lines = coerce_receipt_lines(receipt_lines)
        expected = apply_receipt(order, lines)

        confirmed = self.gateway.receive_items(
            order.id, lines, session=session, idempotency_key=idempotency_key,
        )

        if confirmed.status != expected.status:
            # Another receipt landed between our read and the write
            logger.warning(
                "PO %s: confirmed status %r differs from local expectation %r",
                order.po_number, confirmed.status, expected.status,
            )
        logger.info(
            "PO %s: received %d line(s), status now %s",
            order.po_number, len(lines), confirmed.status,
        )
        return confirmed

    def receive_latest(
        self,
        order_id: str,
        receipt_lines: Iterable,
        session: Session,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseOrder:
        """
        Re-read the order from the gateway and receive against that state.

        This is the safe way to retry after a NetworkError: the receipt is
        validated against what the store holds now, not a stale copy.
        """
        order = self.gateway.get_purchase_order(order_id, session=session)
        return self.receive(order, receipt_lines, session, idempotency_key=idempotency_key)

    @staticmethod
    def new_idempotency_key() -> str:
        """A fresh client-generated key for one receipt submission."""
        return uuid.uuid4().hex

    def place_order(self, order: PurchaseOrder, session: Session) -> PurchaseOrder:
        """Draft -> Ordered: lock the line items and open the order for receiving."""
        return self._transition(order, PO_ORDERED, session)

    def cancel_order(self, order: PurchaseOrder, session: Session) -> PurchaseOrder:
        """Cancel an order that has not been fully received."""
        if order.status == PO_PARTIALLY_RECEIVED:
            logger.warning(
                "PO %s cancelled after partial receipt; received stock is not reversed",
                order.po_number,
            )
        return self._transition(order, PO_CANCELLED, session)

    def _transition(self, order: PurchaseOrder, target: str, session: Session) -> PurchaseOrder:
        transition_order(order, target)
        confirmed = self.gateway.set_purchase_order_status(order.id, target, session=session)
        logger.info("PO %s: %s -> %s", order.po_number, order.status, confirmed.status)
        return confirmed
