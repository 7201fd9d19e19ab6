"""
JSON-over-HTTP client for the persistence gateway contract.

Every response uses the envelope { success, data?, message?, updatedInvoice? }.
HTTP status codes map onto the reconciliation error taxonomy:

  400 / 422        ValidationError
  404              NotFoundError
  409              StateError
  408 / 429 / 5xx  NetworkError (transient; re-read before retrying)
  no response      NetworkError
"""
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from models.invoice import Invoice, Payment, PaymentDraft, PaymentUpdate
from models.purchase_order import PurchaseOrder, ReceiptLine
from models.session import Session
from reconciliation.errors import (
    NetworkError,
    NotFoundError,
    ReconciliationError,
    StateError,
    ValidationError,
)

from .base import PersistenceGateway

logger = logging.getLogger(__name__)

USER_AGENT = "Stockbook-Reconciliation/1.0"


def _message_from(body: str) -> Optional[str]:
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:200] or None
    if isinstance(payload, dict):
        return payload.get("message") or payload.get("detail")
    return None


def _error_for(status_code: int, message: str) -> ReconciliationError:
    if status_code in (400, 422):
        return ValidationError(message)
    if status_code == 404:
        return NotFoundError(message)
    if status_code == 409:
        return StateError(message)
    if status_code in (408, 429) or status_code >= 500:
        return NetworkError(message, status_code=status_code)
    return ReconciliationError(message)


class HttpGateway(PersistenceGateway):
    """
    Talks to the backend REST API.

    Usage:
        gateway = HttpGateway("http://localhost:5001/api", timeout=30)
        order = gateway.get_purchase_order("665f...", session)
    """

    def __init__(self, base_url: str, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        session: Session,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(url, data=data, method=method)

        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("Accept", "application/json")
        req.add_header("User-Agent", USER_AGENT)
        if session.token:
            req.add_header("Authorization", f"Bearer {session.token}")
        if session.username:
            req.add_header("X-User", session.username)
        for key, value in (headers or {}).items():
            req.add_header(key, value)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace") if e.fp else ""
            message = _message_from(raw) or f"HTTP {e.code} from {method} {path}"
            logger.error("Gateway %s %s failed: HTTP %d - %s", method, path, e.code, message)
            raise _error_for(e.code, message) from e
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            reason = getattr(e, "reason", e)
            logger.error("Gateway %s %s unreachable: %s", method, path, reason)
            raise NetworkError(f"Gateway unreachable: {reason}") from e

        try:
            payload = json.loads(raw) if raw else {}
        except ValueError as e:
            raise NetworkError(f"Malformed response from {method} {path}: {raw[:200]!r}") from e

        if not isinstance(payload, dict):
            raise NetworkError(f"Unexpected response from {method} {path}: {raw[:200]!r}")
        if not payload.get("success", False):
            raise ValidationError(payload.get("message") or f"{method} {path} was not accepted")
        return payload

    @staticmethod
    def _parse(model, data: Any, what: str):
        if data is None:
            raise ReconciliationError(f"Gateway response is missing {what}")
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            raise ReconciliationError(f"Gateway returned an invalid {what}: {exc}") from exc

    @staticmethod
    def _path_id(value: str) -> str:
        return quote(str(value), safe="")

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def get_purchase_order(self, order_id: str, session: Session) -> PurchaseOrder:
        payload = self._request("GET", f"/purchase-orders/{self._path_id(order_id)}", session)
        return self._parse(PurchaseOrder, payload.get("data"), "purchase order")

    def receive_items(
        self,
        order_id: str,
        receipt_lines: Sequence[ReceiptLine],
        session: Session,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseOrder:
        body = {"itemsToReceive": [line.to_wire() for line in receipt_lines]}
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        payload = self._request(
            "POST", f"/purchase-orders/{self._path_id(order_id)}/receive",
            session, body=body, headers=headers,
        )
        return self._parse(PurchaseOrder, payload.get("data"), "purchase order")

    def set_purchase_order_status(self, order_id: str, status: str, session: Session) -> PurchaseOrder:
        payload = self._request(
            "PUT", f"/purchase-orders/{self._path_id(order_id)}", session, body={"status": status},
        )
        return self._parse(PurchaseOrder, payload.get("data"), "purchase order")

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: str, session: Session) -> Invoice:
        payload = self._request("GET", f"/invoices/{self._path_id(invoice_id)}", session)
        return self._parse(Invoice, payload.get("data"), "invoice")

    def set_invoice_status(self, invoice_id: str, status: str, session: Session) -> Invoice:
        payload = self._request(
            "PUT", f"/invoices/{self._path_id(invoice_id)}", session, body={"status": status},
        )
        return self._parse(Invoice, payload.get("data"), "invoice")

    def list_payments(self, invoice_id: str, session: Session) -> list[Payment]:
        payload = self._request("GET", f"/payments/invoice/{self._path_id(invoice_id)}", session)
        return [self._parse(Payment, p, "payment") for p in payload.get("data") or []]

    def get_payment(self, payment_id: str, session: Session) -> Payment:
        payload = self._request("GET", f"/payments/{self._path_id(payment_id)}", session)
        return self._parse(Payment, payload.get("data"), "payment")

    def create_payment(
        self, invoice_id: str, draft: PaymentDraft, session: Session,
    ) -> tuple[Payment, Invoice]:
        body = {"invoiceId": invoice_id, **draft.to_wire()}
        payload = self._request("POST", "/payments", session, body=body)
        return (
            self._parse(Payment, payload.get("data"), "payment"),
            self._parse(Invoice, payload.get("updatedInvoice"), "updated invoice"),
        )

    def update_payment(
        self, payment_id: str, fields: PaymentUpdate, session: Session,
    ) -> tuple[Payment, Invoice]:
        body = fields.model_dump(mode="json", by_alias=True, exclude_unset=True)
        payload = self._request("PUT", f"/payments/{self._path_id(payment_id)}", session, body=body)
        return (
            self._parse(Payment, payload.get("data"), "payment"),
            self._parse(Invoice, payload.get("updatedInvoice"), "updated invoice"),
        )

    def delete_payment(self, payment_id: str, session: Session) -> Invoice:
        payload = self._request("DELETE", f"/payments/{self._path_id(payment_id)}", session)
        return self._parse(Invoice, payload.get("updatedInvoice"), "updated invoice")
