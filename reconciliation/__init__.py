from .errors import ReconciliationError, ValidationError, StateError, NotFoundError, NetworkError
from .status import derive_po_status, derive_invoice_status
from .receiving import apply_receipt, ReceivingEngine
from .payments import reconcile_invoice, PaymentEngine
from .lifecycle import transition_order, transition_invoice

__all__ = [
    "ReconciliationError", "ValidationError", "StateError", "NotFoundError", "NetworkError",
    "derive_po_status", "derive_invoice_status",
    "apply_receipt", "ReceivingEngine",
    "reconcile_invoice", "PaymentEngine",
    "transition_order", "transition_invoice",
]
