"""
Unit tests for the HTTP gateway client (urlopen is patched).
"""
import io
import json
import urllib.error
from decimal import Decimal
from unittest.mock import patch

import pytest

from gateway.http import HttpGateway
from models.invoice import PaymentDraft, PaymentUpdate
from models.purchase_order import ReceiptLine
from models.session import Session
from reconciliation.errors import (
    NetworkError,
    NotFoundError,
    ReconciliationError,
    StateError,
    ValidationError,
)

BASE_URL = "http://gateway.test/api"

ORDER_JSON = {
    "_id": "po-1",
    "poNumber": "PO-1001",
    "status": "Partially Received",
    "items": [
        {"_id": "A", "productName": "Widget", "quantityOrdered": 10,
         "quantityReceived": 10, "unitPrice": 12.5},
        {"_id": "B", "productName": "Gadget", "quantityOrdered": 5,
         "quantityReceived": 0, "unitPrice": 40},
    ],
}

INVOICE_JSON = {
    "_id": "inv-1",
    "invoiceNumber": "INV-2001",
    "dueDate": "2024-07-15T00:00:00.000Z",
    "items": [{"productName": "Widget", "quantity": 4, "unitPrice": 25}],
    "taxRate": 18,
    "subTotal": 100,
    "taxAmount": 18,
    "grandTotal": 118,
    "totalPaid": 50,
    "status": "partially_paid",
}

PAYMENT_JSON = {
    "_id": "pay-1",
    "invoice": "inv-1",
    "amountPaid": 50,
    "paymentDate": "2024-06-10T00:00:00.000Z",
    "paymentMethod": "Cash",
}


class _Response:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _http_error(code: int, payload: dict) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        BASE_URL, code, "error", {}, io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


@pytest.mark.unit
class TestHttpGateway:
    """Tests for HttpGateway request building and error mapping."""

    @pytest.fixture
    def gateway(self):
        return HttpGateway(BASE_URL, timeout=5)

    def test_get_purchase_order(self, gateway, session):
        with patch("urllib.request.urlopen", return_value=_Response({"success": True, "data": ORDER_JSON})) as mock:
            order = gateway.get_purchase_order("po-1", session)

        req = mock.call_args.args[0]
        assert req.full_url == f"{BASE_URL}/purchase-orders/po-1"
        assert req.get_method() == "GET"
        assert req.get_header("Authorization") == "Bearer test-token"
        assert mock.call_args.kwargs["timeout"] == 5
        assert order.po_number == "PO-1001"
        assert order.line("A").quantity_received == 10

    def test_receive_items_body_and_idempotency_header(self, gateway, session):
        lines = [ReceiptLine(item_id="B", quantity_newly_received=5)]
        response = {"success": True, "data": {**ORDER_JSON, "status": "Received"}}
        with patch("urllib.request.urlopen", return_value=_Response(response)) as mock:
            gateway.receive_items("po-1", lines, session, idempotency_key="r-0001")

        req = mock.call_args.args[0]
        assert req.full_url.endswith("/purchase-orders/po-1/receive")
        assert req.get_method() == "POST"
        assert json.loads(req.data) == {"itemsToReceive": [{"itemId": "B", "quantityNewlyReceived": 5}]}
        assert req.get_header("Idempotency-key") == "r-0001"

    def test_no_token_means_no_authorization(self, gateway):
        with patch("urllib.request.urlopen", return_value=_Response({"success": True, "data": ORDER_JSON})) as mock:
            gateway.get_purchase_order("po-1", Session())
        assert mock.call_args.args[0].get_header("Authorization") is None

    def test_path_ids_are_quoted(self, gateway, session):
        with patch("urllib.request.urlopen", return_value=_Response({"success": True, "data": ORDER_JSON})) as mock:
            gateway.get_purchase_order("po/1", session)
        assert mock.call_args.args[0].full_url == f"{BASE_URL}/purchase-orders/po%2F1"

    def test_create_payment(self, gateway, session):
        draft = PaymentDraft(amount_paid="50", payment_date="2024-06-10", payment_method="Cash")
        response = {"success": True, "data": PAYMENT_JSON, "updatedInvoice": INVOICE_JSON}
        with patch("urllib.request.urlopen", return_value=_Response(response)) as mock:
            payment, invoice = gateway.create_payment("inv-1", draft, session)

        body = json.loads(mock.call_args.args[0].data)
        assert body == {
            "invoiceId": "inv-1", "amountPaid": 50.0,
            "paymentDate": "2024-06-10", "paymentMethod": "Cash",
        }
        assert payment.invoice_ref == "inv-1"
        assert invoice.total_paid == Decimal("50.00")
        assert invoice.balance_due == Decimal("68.00")

    def test_update_payment_sends_only_set_fields(self, gateway, session):
        update = PaymentUpdate.model_validate({"amountPaid": 45})
        response = {"success": True, "data": PAYMENT_JSON, "updatedInvoice": INVOICE_JSON}
        with patch("urllib.request.urlopen", return_value=_Response(response)) as mock:
            gateway.update_payment("pay-1", update, session)

        req = mock.call_args.args[0]
        assert req.get_method() == "PUT"
        assert json.loads(req.data) == {"amountPaid": 45.0}

    def test_delete_payment_returns_updated_invoice(self, gateway, session):
        response = {"success": True, "message": "Payment deleted", "updatedInvoice": INVOICE_JSON}
        with patch("urllib.request.urlopen", return_value=_Response(response)) as mock:
            invoice = gateway.delete_payment("pay-1", session)
        assert mock.call_args.args[0].get_method() == "DELETE"
        assert invoice.invoice_number == "INV-2001"

    @pytest.mark.parametrize("code,error", [
        (400, ValidationError),
        (422, ValidationError),
        (404, NotFoundError),
        (409, StateError),
        (500, NetworkError),
        (503, NetworkError),
    ])
    def test_http_errors_are_mapped(self, gateway, session, code, error):
        exc = _http_error(code, {"success": False, "message": "Cannot receive more than outstanding"})
        with patch("urllib.request.urlopen", side_effect=exc):
            with pytest.raises(error) as exc_info:
                gateway.get_purchase_order("po-1", session)
        assert "Cannot receive more than outstanding" in exc_info.value.message

    def test_unreachable_host_is_network_error(self, gateway, session):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("Connection refused")):
            with pytest.raises(NetworkError, match="unreachable"):
                gateway.get_invoice("inv-1", session)

    def test_timeout_is_network_error(self, gateway, session):
        with patch("urllib.request.urlopen", side_effect=TimeoutError("timed out")):
            with pytest.raises(NetworkError):
                gateway.get_invoice("inv-1", session)

    def test_unsuccessful_envelope(self, gateway, session):
        with patch("urllib.request.urlopen", return_value=_Response({"success": False, "message": "nope"})):
            with pytest.raises(ValidationError, match="nope"):
                gateway.get_invoice("inv-1", session)

    def test_malformed_json_is_network_error(self, gateway, session):
        with patch("urllib.request.urlopen", return_value=_Response(b"<html>bad gateway</html>")):
            with pytest.raises(NetworkError, match="Malformed"):
                gateway.get_invoice("inv-1", session)

    def test_non_object_body_is_network_error(self, gateway, session):
        with patch("urllib.request.urlopen", return_value=_Response([ORDER_JSON])):
            with pytest.raises(NetworkError, match="Unexpected response"):
                gateway.get_purchase_order("po-1", session)

    def test_invalid_aggregate_in_response(self, gateway, session):
        bad = {**ORDER_JSON, "items": [{**ORDER_JSON["items"][0], "quantityReceived": 11}]}
        with patch("urllib.request.urlopen", return_value=_Response({"success": True, "data": bad})):
            with pytest.raises(ReconciliationError, match="invalid purchase order"):
                gateway.get_purchase_order("po-1", session)
