"""
Payment reconciliation against invoices.

totalPaid is never adjusted by a running delta: after every add, edit, or
delete it is recomputed as the fresh sum of the payments currently linked to
the invoice, and the status is re-derived from that sum.
"""
import logging
from datetime import date, datetime
from typing import Iterable, Union

from pydantic import ValidationError as PydanticValidationError

from models.invoice import INVOICE_SENT, INVOICE_VOID, Invoice, Payment, PaymentDraft, PaymentUpdate
from models.result import Issue, PaymentOutcome
from models.session import Session

from .errors import StateError, ValidationError
from .lifecycle import transition_invoice
from .status import derive_invoice_status, invoice_lifecycle
from .totals import sum_payments

logger = logging.getLogger(__name__)


def reconcile_invoice(
    invoice: Invoice,
    payments: Iterable[Payment],
    now: Union[date, datetime, None] = None,
) -> Invoice:
    """
    Return a copy of *invoice* with total_paid and status recomputed from
    the complete, current payment set.
    """
    linked = [p for p in payments if p.invoice_ref == invoice.id]
    updated = invoice.model_copy(deep=True)
    updated.total_paid = sum_payments(linked)
    updated.lifecycle_status = invoice_lifecycle(invoice)
    updated.status = derive_invoice_status(
        updated.grand_total, updated.total_paid, updated.due_date, updated.lifecycle_status, now,
    )
    return updated


def _coerce_draft(payment) -> PaymentDraft:
    if isinstance(payment, PaymentDraft):
        return payment
    try:
        return PaymentDraft.model_validate(payment)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid payment:", [_issue_from_pydantic(e) for e in exc.errors()],
        ) from exc


def _coerce_update(fields) -> PaymentUpdate:
    if isinstance(fields, PaymentUpdate):
        return fields
    try:
        return PaymentUpdate.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid payment update:", [_issue_from_pydantic(e) for e in exc.errors()],
        ) from exc


def _issue_from_pydantic(error: dict) -> Issue:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return Issue(field=loc or None, message=f"{loc}: {error.get('msg')}" if loc else error.get("msg"))


def validate_new_payment(invoice: Invoice, payment) -> PaymentDraft:
    """Check a proposed payment against the invoice; return it as a PaymentDraft."""
    draft = _coerce_draft(payment)
    if invoice.status == INVOICE_VOID:
        raise StateError(f"Cannot record a payment on void invoice {invoice.invoice_number}")
    if draft.amount_paid <= 0:
        raise ValidationError("Invalid payment:", [Issue(
            field="amountPaid",
            message=f"Payment amount must be greater than zero (got {draft.amount_paid})",
            value=str(draft.amount_paid),
        )])
    return draft


def validate_payment_update(fields) -> PaymentUpdate:
    """Check a partial payment edit before it is submitted."""
    update = _coerce_update(fields)
    changes = update.changes()
    if not changes:
        raise ValidationError("No payment fields to update")
    if "amount_paid" in changes:
        amount = changes["amount_paid"]
        if amount is None or amount <= 0:
            raise ValidationError("Invalid payment update:", [Issue(
                field="amountPaid",
                message=f"Payment amount must be greater than zero (got {amount})",
                value=str(amount),
            )])
    for required in ("payment_date", "payment_method"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"{required} cannot be cleared")
    return update


def apply_payment_update(payment: Payment, fields) -> Payment:
    """Return a copy of *payment* with the set fields of *fields* replaced."""
    update = validate_payment_update(fields)
    return payment.model_copy(update=update.changes())


def warn_if_overpaid(invoice: Invoice) -> None:
    # Overpayment is accepted; it shows up as a negative balance due
    if invoice.balance_due < 0:
        logger.warning(
            "Invoice %s is overpaid: total paid %s exceeds grand total %s",
            invoice.invoice_number, invoice.total_paid, invoice.grand_total,
        )


class PaymentEngine:
    """
    Records, edits, and deletes payments through a persistence gateway.

    Usage:
        engine = PaymentEngine(gateway)
        outcome = engine.record_payment(invoice, {"amountPaid": 50, ...}, session)
        invoice = outcome.invoice

    Nothing the caller holds is modified; only the gateway-confirmed invoice
    and payment are returned.
    """

    def __init__(self, gateway) -> None:
        self.gateway = gateway

    def record_payment(self, invoice: Invoice, payment, session: Session) -> PaymentOutcome:
        """Validate and submit a new payment; return the confirmed payment and invoice."""
        draft = validate_new_payment(invoice, payment)
        saved, updated = self.gateway.create_payment(invoice.id, draft, session=session)
        logger.info(
            "Invoice %s: recorded payment %s of %s (%s), status now %s",
            updated.invoice_number, saved.id, saved.amount_paid,
            saved.payment_method, updated.status,
        )
        warn_if_overpaid(updated)
        return PaymentOutcome(payment=saved, invoice=updated)

    def update_payment(self, payment_id: str, fields, session: Session) -> PaymentOutcome:
        """Replace the given fields of a payment; totals are recomputed by the store."""
        update = validate_payment_update(fields)
        saved, updated = self.gateway.update_payment(payment_id, update, session=session)
        logger.info(
            "Invoice %s: updated payment %s, total paid %s, status now %s",
            updated.invoice_number, payment_id, updated.total_paid, updated.status,
        )
        warn_if_overpaid(updated)
        return PaymentOutcome(payment=saved, invoice=updated)

    def delete_payment(self, payment_id: str, session: Session) -> Invoice:
        """Remove a payment and return the confirmed, re-reconciled invoice."""
        updated = self.gateway.delete_payment(payment_id, session=session)
        logger.info(
            "Invoice %s: deleted payment %s, total paid %s, status now %s",
            updated.invoice_number, payment_id, updated.total_paid, updated.status,
        )
        return updated

    def record_payment_latest(self, invoice_id: str, payment, session: Session) -> PaymentOutcome:
        """Re-read the invoice from the gateway, then record the payment against it."""
        invoice = self.gateway.get_invoice(invoice_id, session=session)
        return self.record_payment(invoice, payment, session)

    def send_invoice(self, invoice: Invoice, session: Session) -> Invoice:
        """draft -> sent."""
        transition_invoice(invoice, INVOICE_SENT)
        confirmed = self.gateway.set_invoice_status(invoice.id, INVOICE_SENT, session=session)
        logger.info("Invoice %s sent, status now %s", invoice.invoice_number, confirmed.status)
        return confirmed

    def void_invoice(self, invoice: Invoice, session: Session) -> Invoice:
        """Terminal override: the invoice is void regardless of its payments."""
        transition_invoice(invoice, INVOICE_VOID)
        confirmed = self.gateway.set_invoice_status(invoice.id, INVOICE_VOID, session=session)
        logger.info("Invoice %s voided", invoice.invoice_number)
        return confirmed
