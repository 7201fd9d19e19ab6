"""
Reconciliation service: FastAPI backend over the SQLite store.

Speaks the same JSON contract the HTTP gateway consumes, so a remote client
and the local store can be swapped without the engines noticing.  Every
response uses the envelope { success, data?, message?, updatedInvoice? }.

Endpoints
---------
  GET    /api/health                         → liveness probe
  GET    /api/purchase-orders                → all orders, derived status
  POST   /api/purchase-orders                → create an order (Draft or Ordered)
  GET    /api/purchase-orders/{id}           → one order
  PUT    /api/purchase-orders/{id}           → lifecycle change {status}
  DELETE /api/purchase-orders/{id}           → delete (Draft / Cancelled only)
  POST   /api/purchase-orders/{id}/receive   → apply a receipt batch {itemsToReceive}
  GET    /api/invoices                       → all invoices, derived status
  POST   /api/invoices                       → create an invoice
  GET    /api/invoices/{id}                  → one invoice
  PUT    /api/invoices/{id}                  → lifecycle change {status}
  DELETE /api/invoices/{id}                  → delete (draft / void, no payments)
  GET    /api/payments/invoice/{invoice_id}  → payments linked to an invoice
  GET    /api/payments/{id}                  → one payment
  POST   /api/payments                       → record a payment
  PUT    /api/payments/{id}                  → edit a payment
  DELETE /api/payments/{id}                  → delete a payment

Error mapping: ValidationError 400, NotFoundError 404, StateError 409,
NetworkError 503.
"""
import logging
from typing import Any, Optional

from fastapi import Body, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config import Config
from gateway.sqlite import SqliteGateway
from models.purchase_order import ReceiptLine
from models.session import Session
from reconciliation.errors import (
    NetworkError,
    NotFoundError,
    ReconciliationError,
    StateError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Store (lazy; opened on first request)
# ---------------------------------------------------------------------------
_gateway: Optional[SqliteGateway] = None


def get_gateway() -> SqliteGateway:
    global _gateway
    if _gateway is None:
        config = Config()
        config.ensure_output_dir()
        _gateway = SqliteGateway(config.db_path, accounts=config.accounts)
    return _gateway


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Fulfillment Reconciliation", docs_url=None, redoc_url=None)

_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError:   404,
    StateError:      409,
    NetworkError:    503,
}


def _fail(status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ReconciliationError)
async def _reconciliation_error(request: Request, exc: ReconciliationError) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc), 500)
    issues = [i.model_dump(exclude_none=True) for i in getattr(exc, "issues", [])]
    logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc.message)
    return _fail(status_code, exc.message, issues)


@app.exception_handler(RequestValidationError)
async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _fail(400, "Invalid request body", [
        {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")}
        for e in exc.errors()
    ])


@app.exception_handler(PydanticValidationError)
async def _model_error(request: Request, exc: PydanticValidationError) -> JSONResponse:
    return _fail(400, "Invalid data", [
        {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")}
        for e in exc.errors()
    ])


def _session(authorization: Optional[str], x_user: Optional[str]) -> Session:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip() or None
    return Session(token=token, username=x_user or "anonymous")


def _ok(data: Any = None, **extra: Any) -> dict:
    payload: dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return payload


# ── Request models ───────────────────────────────────────────────────────────

class StatusUpdate(BaseModel):
    status: str


class ReceiveRequest(BaseModel):
    itemsToReceive: list[dict]


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    gw = get_gateway()
    return {
        "status": "ok",
        "db_path": str(gw.db_path),
        "db_exists": gw.db_path.exists(),
    }


# ── Purchase orders ──────────────────────────────────────────────────────────

@app.get("/api/purchase-orders")
def list_purchase_orders(
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    orders = get_gateway().list_purchase_orders(_session(authorization, x_user))
    return _ok([o.to_wire() for o in orders])


@app.post("/api/purchase-orders", status_code=201)
def create_purchase_order(
    body: dict = Body(...),
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    order = get_gateway().create_purchase_order(body, _session(authorization, x_user))
    return _ok(order.to_wire())


@app.get("/api/purchase-orders/{order_id}")
def get_purchase_order(
    order_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    order = get_gateway().get_purchase_order(order_id, _session(authorization, x_user))
    return _ok(order.to_wire())


@app.put("/api/purchase-orders/{order_id}")
def update_purchase_order_status(
    order_id: str,
    body: StatusUpdate,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    order = get_gateway().set_purchase_order_status(
        order_id, body.status, _session(authorization, x_user),
    )
    return _ok(order.to_wire())


@app.delete("/api/purchase-orders/{order_id}")
def delete_purchase_order(
    order_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    get_gateway().delete_purchase_order(order_id, _session(authorization, x_user))
    return _ok(message="Purchase Order deleted")


@app.post("/api/purchase-orders/{order_id}/receive")
def receive_items(
    order_id: str,
    body: ReceiveRequest,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
    idempotency_key: Optional[str] = Header(default=None),
):
    lines = [ReceiptLine.model_validate(entry) for entry in body.itemsToReceive]
    order = get_gateway().receive_items(
        order_id, lines, _session(authorization, x_user), idempotency_key=idempotency_key,
    )
    return _ok(order.to_wire())


# ── Invoices ─────────────────────────────────────────────────────────────────

@app.get("/api/invoices")
def list_invoices(
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    invoices = get_gateway().list_invoices(_session(authorization, x_user))
    return _ok([i.to_wire() for i in invoices])


@app.post("/api/invoices", status_code=201)
def create_invoice(
    body: dict = Body(...),
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    invoice = get_gateway().create_invoice(body, _session(authorization, x_user))
    return _ok(invoice.to_wire())


@app.get("/api/invoices/{invoice_id}")
def get_invoice(
    invoice_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    invoice = get_gateway().get_invoice(invoice_id, _session(authorization, x_user))
    return _ok(invoice.to_wire())


@app.put("/api/invoices/{invoice_id}")
def update_invoice_status(
    invoice_id: str,
    body: StatusUpdate,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    invoice = get_gateway().set_invoice_status(
        invoice_id, body.status, _session(authorization, x_user),
    )
    return _ok(invoice.to_wire())


@app.delete("/api/invoices/{invoice_id}")
def delete_invoice(
    invoice_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    get_gateway().delete_invoice(invoice_id, _session(authorization, x_user))
    return _ok(message="Invoice deleted")


# ── Payments ─────────────────────────────────────────────────────────────────

@app.get("/api/payments/invoice/{invoice_id}")
def list_payments(
    invoice_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    payments = get_gateway().list_payments(invoice_id, _session(authorization, x_user))
    return _ok([p.to_wire() for p in payments])


@app.get("/api/payments/{payment_id}")
def get_payment(
    payment_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    payment = get_gateway().get_payment(payment_id, _session(authorization, x_user))
    return _ok(payment.to_wire())


@app.post("/api/payments", status_code=201)
def create_payment(
    body: dict = Body(...),
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    fields = dict(body)
    invoice_id = fields.pop("invoiceId", None) or fields.pop("invoice", None)
    if not invoice_id:
        raise ValidationError("invoiceId is required")
    payment, invoice = get_gateway().create_payment(
        invoice_id, fields, _session(authorization, x_user),
    )
    return _ok(payment.to_wire(), updatedInvoice=invoice.to_wire())


@app.put("/api/payments/{payment_id}")
def update_payment(
    payment_id: str,
    body: dict = Body(...),
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    payment, invoice = get_gateway().update_payment(
        payment_id, body, _session(authorization, x_user),
    )
    return _ok(payment.to_wire(), updatedInvoice=invoice.to_wire())


@app.delete("/api/payments/{payment_id}")
def delete_payment(
    payment_id: str,
    authorization: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
):
    invoice = get_gateway().delete_payment(payment_id, _session(authorization, x_user))
    return _ok(message="Payment deleted", updatedInvoice=invoice.to_wire())
