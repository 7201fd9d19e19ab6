"""
SQLite implementation of the persistence gateway.

A single database file (output/reconciliation.db) holds purchase orders,
invoices, payments, and the side records each write produces:

  - Journal entries for goods receipts and payment changes
  - On-hand stock per product, incremented by receipts
  - Receipt idempotency keys, so a replayed submission is not applied twice
  - An audit log of every write and who made it

Every write runs inside one BEGIN IMMEDIATE transaction: the aggregate is
re-read inside the transaction, the reconciliation core is applied to that
fresh state, and the aggregate plus its side records are committed together
or not at all.  Amounts are stored as decimal strings, never REAL.
"""
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Sequence

from models.invoice import INVOICE_DRAFT, INVOICE_SENT, Invoice, Payment, PaymentDraft, PaymentUpdate
from models.purchase_order import PO_DRAFT, PO_ORDERED, PurchaseOrder, ReceiptLine
from models.result import JournalEntry
from models.session import Session
from reconciliation.errors import NotFoundError, ValidationError
from reconciliation.journal import (
    DEFAULT_ACCOUNTS,
    AccountNames,
    goods_received_entry,
    payment_adjustment_entry,
    payment_received_entry,
    payment_reversal_entry,
)
from reconciliation.lifecycle import (
    check_invoice_deletable,
    check_order_deletable,
    transition_invoice,
    transition_order,
)
from reconciliation.payments import apply_payment_update, reconcile_invoice, validate_new_payment
from reconciliation.receiving import apply_receipt, coerce_receipt_lines
from reconciliation.status import invoice_lifecycle, invoice_status, order_status
from reconciliation.totals import compute_invoice_totals, compute_order_totals

from .base import PersistenceGateway

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    id                     TEXT PRIMARY KEY,
    po_number              TEXT NOT NULL UNIQUE,
    supplier_ref           TEXT,
    order_date             TEXT,
    expected_delivery_date TEXT,
    status                 TEXT NOT NULL DEFAULT 'Draft',
    sub_total              TEXT NOT NULL DEFAULT '0.00',
    grand_total            TEXT NOT NULL DEFAULT '0.00',
    notes                  TEXT,
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS po_line_items (
    id                TEXT PRIMARY KEY,
    order_id          TEXT NOT NULL REFERENCES purchase_orders (id) ON DELETE CASCADE,
    position          INTEGER NOT NULL,
    product_ref       TEXT,
    product_name      TEXT NOT NULL,
    quantity_ordered  INTEGER NOT NULL CHECK (quantity_ordered > 0),
    quantity_received INTEGER NOT NULL DEFAULT 0
                      CHECK (quantity_received >= 0 AND quantity_received <= quantity_ordered),
    unit_price        TEXT NOT NULL,
    total_price       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_po_lines_order ON po_line_items (order_id, position);

CREATE TABLE IF NOT EXISTS invoices (
    id             TEXT PRIMARY KEY,
    invoice_number TEXT NOT NULL UNIQUE,
    customer_ref   TEXT,
    invoice_date   TEXT,
    due_date       TEXT,
    tax_rate       TEXT NOT NULL DEFAULT '0',
    sub_total      TEXT NOT NULL DEFAULT '0.00',
    tax_amount     TEXT NOT NULL DEFAULT '0.00',
    grand_total    TEXT NOT NULL DEFAULT '0.00',
    total_paid     TEXT NOT NULL DEFAULT '0.00',
    status         TEXT NOT NULL DEFAULT 'draft',
    lifecycle      TEXT NOT NULL DEFAULT 'draft'
                   CHECK (lifecycle IN ('draft', 'sent', 'void')),
    notes          TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invoice_items (
    invoice_id   TEXT NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
    position     INTEGER NOT NULL,
    product_ref  TEXT,
    product_name TEXT NOT NULL,
    description  TEXT,
    quantity     TEXT NOT NULL,
    unit_price   TEXT NOT NULL,
    total_price  TEXT NOT NULL,
    PRIMARY KEY (invoice_id, position)
);

CREATE TABLE IF NOT EXISTS payments (
    id             TEXT PRIMARY KEY,
    invoice_id     TEXT NOT NULL REFERENCES invoices (id),
    amount_paid    TEXT NOT NULL,
    payment_date   TEXT NOT NULL,
    payment_method TEXT NOT NULL,
    transaction_id TEXT,
    notes          TEXT,
    recorded_by    TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_payments_invoice ON payments (invoice_id);

CREATE TABLE IF NOT EXISTS receipt_keys (
    order_id        TEXT NOT NULL,
    idempotency_key TEXT NOT NULL,
    applied_at      TEXT NOT NULL,
    PRIMARY KEY (order_id, idempotency_key)
);

CREATE TABLE IF NOT EXISTS stock_levels (
    product_ref       TEXT PRIMARY KEY,
    quantity_in_stock INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS journal_entries (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_date       TEXT NOT NULL,
    description      TEXT NOT NULL,
    reference_number TEXT NOT NULL,
    lines            TEXT NOT NULL,   -- JSON list of {account, debit, credit}
    created_by       TEXT NOT NULL DEFAULT 'system',
    created_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_journal_reference ON journal_entries (reference_number);

CREATE TABLE IF NOT EXISTS audit_log (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    entity    TEXT NOT NULL,         -- purchase_order | invoice | payment
    entity_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,         -- ISO-8601 UTC
    action    TEXT NOT NULL,         -- created | received | status_changed |
                                     -- payment_recorded | payment_updated | payment_deleted | deleted
    actor     TEXT NOT NULL DEFAULT 'system',
    detail    TEXT                   -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log (entity_id);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _with_id(line):
    """A copy of a line dict with an id filled in when it has none."""
    if not isinstance(line, dict):
        return line
    line = dict(line)
    if not (line.get("id") or line.get("_id")):
        line["id"] = _new_id()
    return line


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class SqliteGateway(PersistenceGateway):
    """Local store implementing the gateway contract on one SQLite file."""

    def __init__(
        self,
        db_path: Path,
        accounts: AccountNames = DEFAULT_ACCOUNTS,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.db_path = Path(db_path)
        self.accounts = accounts
        self.clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _conn(self, write: bool = False):
        """
        One transaction per call.  Writers take the RESERVED lock up front
        (BEGIN IMMEDIATE) so two writers to the same aggregate cannot both
        read the old state.
        """
        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
        finally:
            conn.close()
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _load_order(self, conn: sqlite3.Connection, order_id: str) -> PurchaseOrder:
        row = conn.execute("SELECT * FROM purchase_orders WHERE id=?", (order_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Purchase Order not found: {order_id}")
        lines = conn.execute(
            "SELECT * FROM po_line_items WHERE order_id=? ORDER BY position", (order_id,)
        ).fetchall()
        return PurchaseOrder.model_validate({
            "id":                     row["id"],
            "po_number":              row["po_number"],
            "supplier_ref":           row["supplier_ref"],
            "order_date":             row["order_date"],
            "expected_delivery_date": row["expected_delivery_date"],
            "status":                 row["status"],
            "sub_total":              Decimal(row["sub_total"]),
            "grand_total":            Decimal(row["grand_total"]),
            "notes":                  row["notes"],
            "line_items": [
                {
                    "id":                r["id"],
                    "product_ref":       r["product_ref"],
                    "product_name":      r["product_name"],
                    "quantity_ordered":  r["quantity_ordered"],
                    "quantity_received": r["quantity_received"],
                    "unit_price":        Decimal(r["unit_price"]),
                    "total_price":       Decimal(r["total_price"]),
                }
                for r in lines
            ],
        })

    def _save_order_state(self, conn: sqlite3.Connection, order: PurchaseOrder) -> None:
        """Persist status and received quantities (the only fields receipts change)."""
        conn.execute(
            "UPDATE purchase_orders SET status=?, updated_at=? WHERE id=?",
            (order.status, _now_iso(), order.id),
        )
        conn.executemany(
            "UPDATE po_line_items SET quantity_received=? WHERE id=? AND order_id=?",
            [(i.quantity_received, i.id, order.id) for i in order.line_items],
        )

    def _load_invoice(self, conn: sqlite3.Connection, invoice_id: str) -> Invoice:
        row = conn.execute("SELECT * FROM invoices WHERE id=?", (invoice_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        items = conn.execute(
            "SELECT * FROM invoice_items WHERE invoice_id=? ORDER BY position", (invoice_id,)
        ).fetchall()
        return Invoice.model_validate({
            "id":             row["id"],
            "invoice_number": row["invoice_number"],
            "customer_ref":   row["customer_ref"],
            "invoice_date":   row["invoice_date"],
            "due_date":       row["due_date"],
            "tax_rate":       Decimal(row["tax_rate"]),
            "sub_total":      Decimal(row["sub_total"]),
            "tax_amount":     Decimal(row["tax_amount"]),
            "grand_total":    Decimal(row["grand_total"]),
            "total_paid":     Decimal(row["total_paid"]),
            "status":         row["status"],
            "lifecycle_status": row["lifecycle"],
            "notes":          row["notes"],
            "items": [
                {
                    "product_ref":  r["product_ref"],
                    "product_name": r["product_name"],
                    "description":  r["description"],
                    "quantity":     Decimal(r["quantity"]),
                    "unit_price":   Decimal(r["unit_price"]),
                    "total_price":  Decimal(r["total_price"]),
                }
                for r in items
            ],
        })

    def _save_invoice_state(self, conn: sqlite3.Connection, invoice: Invoice) -> None:
        conn.execute(
            "UPDATE invoices SET total_paid=?, status=?, lifecycle=?, updated_at=? WHERE id=?",
            (
                str(invoice.total_paid), invoice.status, invoice_lifecycle(invoice),
                _now_iso(), invoice.id,
            ),
        )

    @staticmethod
    def _payment_from_row(row: sqlite3.Row) -> Payment:
        return Payment.model_validate({
            "id":             row["id"],
            "invoice_ref":    row["invoice_id"],
            "amount_paid":    Decimal(row["amount_paid"]),
            "payment_date":   row["payment_date"],
            "payment_method": row["payment_method"],
            "transaction_id": row["transaction_id"],
            "notes":          row["notes"],
            "recorded_by":    row["recorded_by"],
        })

    def _load_payment(self, conn: sqlite3.Connection, payment_id: str) -> Payment:
        row = conn.execute("SELECT * FROM payments WHERE id=?", (payment_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Payment not found: {payment_id}")
        return self._payment_from_row(row)

    def _load_payments(self, conn: sqlite3.Connection, invoice_id: str) -> list[Payment]:
        rows = conn.execute(
            "SELECT * FROM payments WHERE invoice_id=? ORDER BY payment_date, created_at",
            (invoice_id,),
        ).fetchall()
        return [self._payment_from_row(r) for r in rows]

    def _reconcile(self, conn: sqlite3.Connection, invoice_id: str) -> Invoice:
        """Recompute total_paid and status from every payment now linked to the invoice."""
        invoice = self._load_invoice(conn, invoice_id)
        reconciled = reconcile_invoice(invoice, self._load_payments(conn, invoice_id), self.clock())
        self._save_invoice_state(conn, reconciled)
        return reconciled

    # ------------------------------------------------------------------
    # Side records
    # ------------------------------------------------------------------

    def _post_journal(
        self, conn: sqlite3.Connection, entry: Optional[JournalEntry], session: Session,
    ) -> None:
        if entry is None:
            return
        conn.execute(
            """INSERT INTO journal_entries
                   (entry_date, description, reference_number, lines, created_by, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                entry.entry_date,
                entry.description,
                entry.reference_number,
                json.dumps([l.model_dump(mode="json") for l in entry.lines]),
                session.actor,
                _now_iso(),
            ),
        )

    def _log_audit(
        self,
        conn: sqlite3.Connection,
        entity: str,
        entity_id: str,
        action: str,
        session: Session,
        detail: Optional[dict] = None,
    ) -> None:
        conn.execute(
            """INSERT INTO audit_log (entity, entity_id, timestamp, action, actor, detail)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                entity,
                entity_id,
                _now_iso(),
                action,
                session.actor,
                json.dumps(detail) if detail is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def create_purchase_order(self, order, session: Session) -> PurchaseOrder:
        """
        Store a new purchase order.  Ids are assigned where missing, totals are
        recomputed from the lines, and nothing may have been received yet.
        """
        if not isinstance(order, PurchaseOrder):
            data = dict(order)
            data.setdefault("id", _new_id())
            raw_lines = [data.pop(key, None) for key in ("lineItems", "line_items", "items")]
            data["line_items"] = [_with_id(line) for line in next(filter(None, raw_lines), [])]
            order = PurchaseOrder.model_validate(data)
        if not order.line_items:
            raise ValidationError("At least one item is required in the purchase order")
        if any(i.quantity_received for i in order.line_items):
            raise ValidationError("A new purchase order cannot have received quantities")
        if order.status not in (PO_DRAFT, PO_ORDERED):
            raise ValidationError(f"A new purchase order cannot start as '{order.status}'")

        totals = compute_order_totals(order.line_items)
        now = _now_iso()
        with self._conn(write=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM purchase_orders WHERE po_number=?", (order.po_number,)
            ).fetchone()
            if exists:
                raise ValidationError(f"PO number {order.po_number} already exists")
            conn.execute(
                """INSERT INTO purchase_orders (
                       id, po_number, supplier_ref, order_date, expected_delivery_date,
                       status, sub_total, grand_total, notes, created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    order.id, order.po_number, order.supplier_ref,
                    _iso(order.order_date or self.clock()), _iso(order.expected_delivery_date),
                    order.status or PO_DRAFT, str(totals.sub_total), str(totals.grand_total),
                    order.notes, now, now,
                ),
            )
            conn.executemany(
                """INSERT INTO po_line_items (
                       id, order_id, position, product_ref, product_name,
                       quantity_ordered, quantity_received, unit_price, total_price
                   ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)""",
                [
                    (
                        i.id, order.id, pos, i.product_ref, i.product_name,
                        i.quantity_ordered, str(i.unit_price), str(i.total_price),
                    )
                    for pos, i in enumerate(order.line_items)
                ],
            )
            self._log_audit(conn, "purchase_order", order.id, "created", session,
                            {"po_number": order.po_number})
            stored = self._load_order(conn, order.id)

        logger.info("PO %s created (%d lines)", stored.po_number, len(stored.line_items))
        return stored

    def get_purchase_order(self, order_id: str, session: Session) -> PurchaseOrder:
        with self._conn() as conn:
            order = self._load_order(conn, order_id)
        order.status = order_status(order)
        return order

    def list_purchase_orders(self, session: Session) -> list[PurchaseOrder]:
        with self._conn() as conn:
            ids = [r["id"] for r in conn.execute(
                "SELECT id FROM purchase_orders ORDER BY created_at DESC"
            ).fetchall()]
            orders = [self._load_order(conn, i) for i in ids]
        for order in orders:
            order.status = order_status(order)
        return orders

    def receive_items(
        self,
        order_id: str,
        receipt_lines: Sequence[ReceiptLine],
        session: Session,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseOrder:
        receipt_lines = coerce_receipt_lines(receipt_lines)
        with self._conn(write=True) as conn:
            if idempotency_key:
                seen = conn.execute(
                    "SELECT 1 FROM receipt_keys WHERE order_id=? AND idempotency_key=?",
                    (order_id, idempotency_key),
                ).fetchone()
                if seen:
                    logger.info("PO %s: receipt %s already applied, returning current state",
                                order_id, idempotency_key)
                    return self._load_order(conn, order_id)

            order = self._load_order(conn, order_id)
            updated = apply_receipt(order, receipt_lines)
            self._save_order_state(conn, updated)

            for entry in receipt_lines:
                line = order.line(entry.item_id)
                if line.product_ref:
                    conn.execute(
                        """INSERT INTO stock_levels (product_ref, quantity_in_stock) VALUES (?, ?)
                           ON CONFLICT(product_ref) DO UPDATE SET
                               quantity_in_stock = quantity_in_stock + excluded.quantity_in_stock""",
                        (line.product_ref, entry.quantity_newly_received),
                    )

            self._post_journal(
                conn, goods_received_entry(order, receipt_lines, self.clock(), self.accounts), session,
            )
            if idempotency_key:
                conn.execute(
                    "INSERT INTO receipt_keys (order_id, idempotency_key, applied_at) VALUES (?, ?, ?)",
                    (order_id, idempotency_key, _now_iso()),
                )
            self._log_audit(conn, "purchase_order", order_id, "received", session, {
                "items": [l.to_wire() for l in receipt_lines],
                "status": updated.status,
            })

        logger.info("PO %s: receipt applied, status %s", updated.po_number, updated.status)
        return updated

    def set_purchase_order_status(self, order_id: str, status: str, session: Session) -> PurchaseOrder:
        with self._conn(write=True) as conn:
            order = self._load_order(conn, order_id)
            updated = transition_order(order, status)
            conn.execute(
                "UPDATE purchase_orders SET status=?, updated_at=? WHERE id=?",
                (updated.status, _now_iso(), order_id),
            )
            self._log_audit(conn, "purchase_order", order_id, "status_changed", session,
                            {"from": order.status, "to": updated.status})
        return updated

    def delete_purchase_order(self, order_id: str, session: Session) -> bool:
        """Administrative deletion; only Draft or Cancelled orders."""
        with self._conn(write=True) as conn:
            order = self._load_order(conn, order_id)
            check_order_deletable(order)
            conn.execute("DELETE FROM purchase_orders WHERE id=?", (order_id,))
            self._log_audit(conn, "purchase_order", order_id, "deleted", session,
                            {"po_number": order.po_number})
        return True

    def get_stock_level(self, product_ref: str) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT quantity_in_stock FROM stock_levels WHERE product_ref=?", (product_ref,)
            ).fetchone()
        return row["quantity_in_stock"] if row else 0

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(self, invoice, session: Session) -> Invoice:
        """Store a new invoice with totals recomputed from its items."""
        if not isinstance(invoice, Invoice):
            data = dict(invoice)
            data.setdefault("id", _new_id())
            invoice = Invoice.model_validate(data)
        if not invoice.items:
            raise ValidationError("Invoice must have at least one item")
        if invoice.status not in (INVOICE_DRAFT, INVOICE_SENT):
            raise ValidationError(f"A new invoice cannot start as '{invoice.status}'")

        totals = compute_invoice_totals(invoice.items, invoice.tax_rate)
        now = _now_iso()
        with self._conn(write=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM invoices WHERE invoice_number=?", (invoice.invoice_number,)
            ).fetchone()
            if exists:
                raise ValidationError(f"Invoice number {invoice.invoice_number} already exists")
            conn.execute(
                """INSERT INTO invoices (
                       id, invoice_number, customer_ref, invoice_date, due_date, tax_rate,
                       sub_total, tax_amount, grand_total, total_paid, status, lifecycle, notes,
                       created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, '0.00', ?, ?, ?, ?, ?)""",
                (
                    invoice.id, invoice.invoice_number, invoice.customer_ref,
                    _iso(invoice.invoice_date or self.clock()), _iso(invoice.due_date),
                    str(invoice.tax_rate), str(totals.sub_total), str(totals.tax_amount),
                    str(totals.grand_total), invoice.status, invoice.status, invoice.notes, now, now,
                ),
            )
            conn.executemany(
                """INSERT INTO invoice_items (
                       invoice_id, position, product_ref, product_name, description,
                       quantity, unit_price, total_price
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        invoice.id, pos, i.product_ref, i.product_name, i.description,
                        str(i.quantity), str(i.unit_price), str(i.total_price),
                    )
                    for pos, i in enumerate(invoice.items)
                ],
            )
            self._log_audit(conn, "invoice", invoice.id, "created", session,
                            {"invoice_number": invoice.invoice_number})
            stored = self._load_invoice(conn, invoice.id)

        logger.info("Invoice %s created, grand total %s", stored.invoice_number, stored.grand_total)
        return stored

    def get_invoice(self, invoice_id: str, session: Session) -> Invoice:
        with self._conn() as conn:
            invoice = self._load_invoice(conn, invoice_id)
        invoice.status = invoice_status(invoice, self.clock())
        return invoice

    def list_invoices(self, session: Session) -> list[Invoice]:
        with self._conn() as conn:
            ids = [r["id"] for r in conn.execute(
                "SELECT id FROM invoices ORDER BY created_at DESC"
            ).fetchall()]
            invoices = [self._load_invoice(conn, i) for i in ids]
        today = self.clock()
        for invoice in invoices:
            invoice.status = invoice_status(invoice, today)
        return invoices

    def set_invoice_status(self, invoice_id: str, status: str, session: Session) -> Invoice:
        with self._conn(write=True) as conn:
            invoice = self._load_invoice(conn, invoice_id)
            updated = transition_invoice(invoice, status, self.clock())
            self._save_invoice_state(conn, updated)
            self._log_audit(conn, "invoice", invoice_id, "status_changed", session,
                            {"from": invoice.status, "to": updated.status})
        return updated

    def delete_invoice(self, invoice_id: str, session: Session) -> bool:
        """Administrative deletion; only draft or void invoices without payments."""
        with self._conn(write=True) as conn:
            invoice = self._load_invoice(conn, invoice_id)
            check_invoice_deletable(invoice, len(self._load_payments(conn, invoice_id)))
            conn.execute("DELETE FROM invoices WHERE id=?", (invoice_id,))
            self._log_audit(conn, "invoice", invoice_id, "deleted", session,
                            {"invoice_number": invoice.invoice_number})
        return True

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def list_payments(self, invoice_id: str, session: Session) -> list[Payment]:
        with self._conn() as conn:
            self._load_invoice(conn, invoice_id)
            return self._load_payments(conn, invoice_id)

    def get_payment(self, payment_id: str, session: Session) -> Payment:
        with self._conn() as conn:
            return self._load_payment(conn, payment_id)

    def create_payment(
        self, invoice_id: str, draft: PaymentDraft, session: Session,
    ) -> tuple[Payment, Invoice]:
        now = _now_iso()
        payment_id = _new_id()
        with self._conn(write=True) as conn:
            invoice = self._load_invoice(conn, invoice_id)
            draft = validate_new_payment(invoice, draft)
            conn.execute(
                """INSERT INTO payments (
                       id, invoice_id, amount_paid, payment_date, payment_method,
                       transaction_id, notes, recorded_by, created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    payment_id, invoice_id, str(draft.amount_paid), _iso(draft.payment_date),
                    draft.payment_method, draft.transaction_id, draft.notes,
                    session.user_id or session.actor, now, now,
                ),
            )
            payment = self._load_payment(conn, payment_id)
            reconciled = self._reconcile(conn, invoice_id)
            self._post_journal(conn, payment_received_entry(reconciled, payment, self.accounts), session)
            self._log_audit(conn, "payment", payment_id, "payment_recorded", session, {
                "invoice_id": invoice_id,
                "amount_paid": str(payment.amount_paid),
                "total_paid": str(reconciled.total_paid),
            })
        return payment, reconciled

    def update_payment(
        self, payment_id: str, fields: PaymentUpdate, session: Session,
    ) -> tuple[Payment, Invoice]:
        with self._conn(write=True) as conn:
            original = self._load_payment(conn, payment_id)
            edited = apply_payment_update(original, fields)
            conn.execute(
                """UPDATE payments SET
                       amount_paid=?, payment_date=?, payment_method=?,
                       transaction_id=?, notes=?, updated_at=?
                   WHERE id=?""",
                (
                    str(edited.amount_paid), _iso(edited.payment_date), edited.payment_method,
                    edited.transaction_id, edited.notes, _now_iso(), payment_id,
                ),
            )
            payment = self._load_payment(conn, payment_id)
            reconciled = self._reconcile(conn, payment.invoice_ref)
            self._post_journal(
                conn,
                payment_adjustment_entry(
                    reconciled, payment, original.amount_paid, self.clock(), self.accounts,
                ),
                session,
            )
            self._log_audit(conn, "payment", payment_id, "payment_updated", session, {
                "invoice_id": payment.invoice_ref,
                "from_amount": str(original.amount_paid),
                "to_amount": str(payment.amount_paid),
                "total_paid": str(reconciled.total_paid),
            })
        return payment, reconciled

    def delete_payment(self, payment_id: str, session: Session) -> Invoice:
        with self._conn(write=True) as conn:
            payment = self._load_payment(conn, payment_id)
            conn.execute("DELETE FROM payments WHERE id=?", (payment_id,))
            reconciled = self._reconcile(conn, payment.invoice_ref)
            self._post_journal(
                conn, payment_reversal_entry(reconciled, payment, self.clock(), self.accounts), session,
            )
            self._log_audit(conn, "payment", payment_id, "payment_deleted", session, {
                "invoice_id": payment.invoice_ref,
                "amount_paid": str(payment.amount_paid),
                "total_paid": str(reconciled.total_paid),
            })
        return reconciled

    # ------------------------------------------------------------------
    # Read-only views of side records
    # ------------------------------------------------------------------

    def list_journal_entries(self, reference_number: Optional[str] = None) -> list[JournalEntry]:
        """Journal entries oldest first, optionally for one reference number."""
        query = "SELECT * FROM journal_entries"
        params: list = []
        if reference_number:
            query += " WHERE reference_number = ?"
            params.append(reference_number)
        query += " ORDER BY id ASC"
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            JournalEntry(
                entry_date=r["entry_date"],
                description=r["description"],
                reference_number=r["reference_number"],
                lines=json.loads(r["lines"]),
            )
            for r in rows
        ]

    def get_audit_log(self, entity_id: str) -> list[dict]:
        """Return all audit entries for one order, invoice, or payment, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, entity, timestamp, action, actor, detail
                   FROM audit_log WHERE entity_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (entity_id,),
            ).fetchall()
        return [dict(r) for r in rows]
