"""
Integration tests for the command-line interface over the local store.
"""
import pytest
from click.testing import CliRunner

from main import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_args(test_config, stored_order):
    return ["--db", str(test_config.db_path), "--user", "carol"]


@pytest.fixture
def stored_invoice(test_store, session):
    """The CLI reads with the real clock, so this invoice is due far in the future."""
    invoice = test_store.create_invoice({
        "invoiceNumber": "INV-2001",
        "dueDate": "2099-12-31",
        "taxRate": 18,
        "status": "sent",
        "items": [{"productName": "Widget", "quantity": 4, "unitPrice": 25}],
    }, session)
    return invoice


@pytest.mark.integration
class TestCli:

    def test_po_show(self, runner, db_args, stored_order):
        result = runner.invoke(cli, [*db_args, "po", "show", stored_order.id])
        assert result.exit_code == 0, result.output
        assert "PO-1001" in result.output
        assert "Widget" in result.output

    def test_unknown_order_exits_non_zero(self, runner, db_args):
        result = runner.invoke(cli, [*db_args, "po", "show", "missing"])
        assert result.exit_code == 1
        assert "Purchase Order not found" in result.output

    def test_receive_and_show(self, runner, db_args, stored_order, test_store, session):
        result = runner.invoke(cli, [*db_args, "po", "receive", stored_order.id, "A=10", "B=2"])
        assert result.exit_code == 0, result.output
        assert "Partially Received" in result.output

        order = test_store.get_purchase_order(stored_order.id, session)
        assert [i.quantity_received for i in order.line_items] == [10, 2]
        assert test_store.get_audit_log(stored_order.id)[-1]["actor"] == "carol"

    def test_over_receipt_exits_non_zero(self, runner, db_args, stored_order):
        result = runner.invoke(cli, [*db_args, "po", "receive", stored_order.id, "A=11"])
        assert result.exit_code == 1
        assert "Cannot receive more than outstanding" in result.output

    def test_bad_receipt_syntax(self, runner, db_args, stored_order):
        result = runner.invoke(cli, [*db_args, "po", "receive", stored_order.id, "A:10"])
        assert result.exit_code == 2
        assert "LINE=QTY" in result.output

    def test_cancel(self, runner, db_args, stored_order):
        result = runner.invoke(cli, [*db_args, "po", "cancel", stored_order.id])
        assert result.exit_code == 0, result.output
        assert "Cancelled" in result.output

    def test_record_update_delete_payment(self, runner, db_args, stored_invoice, test_store, session):
        result = runner.invoke(cli, [*db_args, "payment", "record", stored_invoice.id,
                                     "--amount", "50", "--method", "Cash", "--date", "2024-06-10"])
        assert result.exit_code == 0, result.output
        assert "Balance due:" in result.output
        assert "68.00" in result.output

        payment = test_store.list_payments(stored_invoice.id, session)[0]
        result = runner.invoke(cli, [*db_args, "payment", "update", payment.id, "--amount", "118"])
        assert result.exit_code == 0, result.output
        assert "[paid]" in result.output

        result = runner.invoke(cli, [*db_args, "payment", "delete", payment.id, "--yes"])
        assert result.exit_code == 0, result.output
        assert "[sent]" in result.output

    def test_invoice_show_lists_payments(self, runner, db_args, stored_invoice, test_store, session):
        test_store.create_payment(stored_invoice.id, {
            "amountPaid": 18, "paymentDate": "2024-06-10",
            "paymentMethod": "Credit Card", "transactionId": "ch_123",
        }, session)
        result = runner.invoke(cli, [*db_args, "invoice", "show", stored_invoice.id])
        assert result.exit_code == 0, result.output
        assert "INV-2001" in result.output
        assert "ch_123" in result.output

    def test_void_invoice(self, runner, db_args, stored_invoice):
        result = runner.invoke(cli, [*db_args, "invoice", "void", stored_invoice.id])
        assert result.exit_code == 0, result.output
        assert "void" in result.output
        result = runner.invoke(cli, [*db_args, "invoice", "send", stored_invoice.id])
        assert result.exit_code == 1
