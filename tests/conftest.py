"""
Pytest configuration and shared fixtures for the reconciliation test suite.
"""
import os
import shutil
import tempfile
from datetime import date
from itertools import count
from pathlib import Path
from typing import Generator

import pytest

from gateway.base import PersistenceGateway
from models.invoice import Invoice, InvoiceLineItem, Payment
from models.purchase_order import PurchaseOrder, PurchaseOrderLineItem
from models.session import Session
from reconciliation.errors import NotFoundError
from reconciliation.lifecycle import transition_invoice, transition_order
from reconciliation.payments import apply_payment_update, reconcile_invoice, validate_new_payment
from reconciliation.receiving import apply_receipt
from reconciliation.totals import compute_invoice_totals, compute_order_totals

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)

# Fixed "today" so overdue checks do not depend on the wall clock
TODAY = date(2024, 6, 15)


class InMemoryGateway(PersistenceGateway):
    """
    Dict-backed gateway for engine tests.

    Applies the same core functions as the real stores.  Set fail_with to an
    exception to make the next write raise it without changing anything.
    """

    def __init__(self, orders=(), invoices=(), payments=(), today: date = TODAY):
        self.orders = {o.id: o.model_copy(deep=True) for o in orders}
        self.invoices = {i.id: i.model_copy(deep=True) for i in invoices}
        self.payments = {p.id: p.model_copy(deep=True) for p in payments}
        self.today = today
        self.calls: list[tuple] = []
        self.fail_with = None
        self._ids = count(1)

    def _write(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    def _order(self, order_id):
        if order_id not in self.orders:
            raise NotFoundError(f"Purchase Order not found: {order_id}")
        return self.orders[order_id]

    def _invoice(self, invoice_id):
        if invoice_id not in self.invoices:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        return self.invoices[invoice_id]

    def _payment(self, payment_id):
        if payment_id not in self.payments:
            raise NotFoundError(f"Payment not found: {payment_id}")
        return self.payments[payment_id]

    def _reconcile(self, invoice_id):
        updated = reconcile_invoice(self._invoice(invoice_id), self.payments.values(), self.today)
        self.invoices[invoice_id] = updated
        return updated.model_copy(deep=True)

    def get_purchase_order(self, order_id, session):
        return self._order(order_id).model_copy(deep=True)

    def receive_items(self, order_id, receipt_lines, session, idempotency_key=None):
        self._write("receive_items", order_id, idempotency_key)
        updated = apply_receipt(self._order(order_id), receipt_lines)
        self.orders[order_id] = updated
        return updated.model_copy(deep=True)

    def set_purchase_order_status(self, order_id, status, session):
        self._write("set_purchase_order_status", order_id, status)
        updated = transition_order(self._order(order_id), status)
        self.orders[order_id] = updated
        return updated.model_copy(deep=True)

    def get_invoice(self, invoice_id, session):
        return self._invoice(invoice_id).model_copy(deep=True)

    def set_invoice_status(self, invoice_id, status, session):
        self._write("set_invoice_status", invoice_id, status)
        updated = transition_invoice(self._invoice(invoice_id), status, self.today)
        self.invoices[invoice_id] = updated
        return updated.model_copy(deep=True)

    def list_payments(self, invoice_id, session):
        return [p.model_copy() for p in self.payments.values() if p.invoice_ref == invoice_id]

    def get_payment(self, payment_id, session):
        return self._payment(payment_id).model_copy()

    def create_payment(self, invoice_id, draft, session):
        self._write("create_payment", invoice_id)
        draft = validate_new_payment(self._invoice(invoice_id), draft)
        payment = Payment(
            id=f"pay-{next(self._ids)}", invoice_ref=invoice_id,
            recorded_by=session.actor, **draft.model_dump(),
        )
        self.payments[payment.id] = payment
        return payment.model_copy(), self._reconcile(invoice_id)

    def update_payment(self, payment_id, fields, session):
        self._write("update_payment", payment_id)
        updated = apply_payment_update(self._payment(payment_id), fields)
        self.payments[payment_id] = updated
        return updated.model_copy(), self._reconcile(updated.invoice_ref)

    def delete_payment(self, payment_id, session):
        self._write("delete_payment", payment_id)
        payment = self.payments.pop(self._payment(payment_id).id)
        return self._reconcile(payment.invoice_ref)


def make_order(status: str = "Ordered", received=(0, 0), **overrides) -> PurchaseOrder:
    """PO-1001 with line A (10 @ 12.50) and line B (5 @ 40.00)."""
    lines = [
        PurchaseOrderLineItem(
            id="A", product_ref="SKU-A", product_name="Widget",
            quantity_ordered=10, quantity_received=received[0], unit_price="12.50",
        ),
        PurchaseOrderLineItem(
            id="B", product_ref="SKU-B", product_name="Gadget",
            quantity_ordered=5, quantity_received=received[1], unit_price="40.00",
        ),
    ]
    totals = compute_order_totals(lines)
    data = dict(
        id="po-1", po_number="PO-1001", supplier_ref="SUP-001", status=status,
        order_date=date(2024, 6, 1), line_items=lines,
        sub_total=totals.sub_total, grand_total=totals.grand_total,
    )
    data.update(overrides)
    return PurchaseOrder(**data)


def make_invoice(status: str = "sent", total_paid="0", **overrides) -> Invoice:
    """INV-2001: subtotal 100.00 at 18% tax, grand total 118.00, due 2024-07-15."""
    items = [InvoiceLineItem(product_ref="SKU-A", product_name="Widget", quantity=4, unit_price="25.00")]
    totals = compute_invoice_totals(items, 18)
    data = dict(
        id="inv-1", invoice_number="INV-2001", customer_ref="CUST-001",
        invoice_date=date(2024, 6, 1), due_date=date(2024, 7, 15),
        items=items, tax_rate=18,
        sub_total=totals.sub_total, tax_amount=totals.tax_amount, grand_total=totals.grand_total,
        total_paid=total_paid, status=status,
    )
    data.update(overrides)
    return Invoice(**data)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="reconciliation_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    config = Config()
    config.output_dir = temp_dir / "output"
    config.db_path = temp_dir / "output" / "reconciliation.db"
    config.ensure_output_dir()
    return config


@pytest.fixture
def session() -> Session:
    return Session(token="test-token", user_id="u-1", username="alice")


@pytest.fixture
def sample_order() -> PurchaseOrder:
    return make_order()


@pytest.fixture
def sample_invoice() -> Invoice:
    return make_invoice()


@pytest.fixture
def memory_gateway(sample_order, sample_invoice) -> InMemoryGateway:
    return InMemoryGateway(orders=[sample_order], invoices=[sample_invoice])


@pytest.fixture
def test_store(test_config) -> "SqliteGateway":
    """Provide a SQLite store with a fixed clock."""
    from gateway.sqlite import SqliteGateway
    return SqliteGateway(test_config.db_path, accounts=test_config.accounts, clock=lambda: TODAY)


@pytest.fixture
def stored_order(test_store, session) -> PurchaseOrder:
    """PO-1001 stored and placed (Ordered), nothing received yet."""
    order = test_store.create_purchase_order({
        "poNumber": "PO-1001",
        "supplier": "SUP-001",
        "orderDate": "2024-06-01",
        "lineItems": [
            {"id": "A", "productRef": "SKU-A", "productName": "Widget",
             "quantityOrdered": 10, "unitPrice": 12.50},
            {"id": "B", "productRef": "SKU-B", "productName": "Gadget",
             "quantityOrdered": 5, "unitPrice": 40},
        ],
    }, session)
    return test_store.set_purchase_order_status(order.id, "Ordered", session)


@pytest.fixture
def stored_invoice(test_store, session) -> Invoice:
    """INV-2001 stored and sent: grand total 118.00."""
    invoice = test_store.create_invoice({
        "invoiceNumber": "INV-2001",
        "customer": "CUST-001",
        "invoiceDate": "2024-06-01",
        "dueDate": "2024-07-15",
        "taxRate": 18,
        "items": [{"productName": "Widget", "quantity": 4, "unitPrice": 25}],
    }, session)
    return test_store.set_invoice_status(invoice.id, "sent", session)


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
