"""
Persistence gateway contract.

Both engines read the current aggregate from a gateway and submit changes
through it.  The gateway's response is the canonical new state; engines
never keep a locally computed aggregate that the gateway has not confirmed.

Implementations must serialize writes per aggregate (a transaction, a row
lock, or a version check) and apply a write fully or not at all.
"""
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from models.invoice import Invoice, Payment, PaymentDraft, PaymentUpdate
from models.purchase_order import PurchaseOrder, ReceiptLine
from models.session import Session


class PersistenceGateway(ABC):

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    @abstractmethod
    def get_purchase_order(self, order_id: str, session: Session) -> PurchaseOrder:
        """GET /purchase-orders/:id"""

    @abstractmethod
    def receive_items(
        self,
        order_id: str,
        receipt_lines: Sequence[ReceiptLine],
        session: Session,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseOrder:
        """POST /purchase-orders/:id/receive"""

    @abstractmethod
    def set_purchase_order_status(self, order_id: str, status: str, session: Session) -> PurchaseOrder:
        """PUT /purchase-orders/:id  with {status}"""

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    @abstractmethod
    def get_invoice(self, invoice_id: str, session: Session) -> Invoice:
        """GET /invoices/:id"""

    @abstractmethod
    def set_invoice_status(self, invoice_id: str, status: str, session: Session) -> Invoice:
        """PUT /invoices/:id  with {status}"""

    @abstractmethod
    def list_payments(self, invoice_id: str, session: Session) -> list[Payment]:
        """GET /payments/invoice/:invoiceId"""

    @abstractmethod
    def get_payment(self, payment_id: str, session: Session) -> Payment:
        """GET /payments/:id"""

    @abstractmethod
    def create_payment(
        self, invoice_id: str, draft: PaymentDraft, session: Session,
    ) -> tuple[Payment, Invoice]:
        """POST /payments"""

    @abstractmethod
    def update_payment(
        self, payment_id: str, fields: PaymentUpdate, session: Session,
    ) -> tuple[Payment, Invoice]:
        """PUT /payments/:id"""

    @abstractmethod
    def delete_payment(self, payment_id: str, session: Session) -> Invoice:
        """DELETE /payments/:id"""
