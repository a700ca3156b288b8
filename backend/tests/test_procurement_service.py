"""
Procurement document tests.

Verifies:
- Documents start at their configured initial stage with sequential numbers
- Invoice receivings update PO receiving totals in the same transaction
- Over-receiving and receiving against closed orders are rejected
"""

import pytest

from pharmaflow.extensions import db
from pharmaflow.models import PurchaseOrder
from pharmaflow.services import procurement_service
from pharmaflow.validation import ConflictError, NotFoundError, ValidationError

from conftest import stage


def _receive(po, quantities, *, created_by, invoice_number="INV-1"):
    return procurement_service.create_invoice_receiving(
        {
            "purchase_order_id": po.id,
            "invoice_number": invoice_number,
            "lines": [
                {"purchase_order_line_id": line.id, "received_quantity": qty}
                for line, qty in zip(po.lines, quantities)
                if qty
            ],
        },
        created_by=created_by,
    )


class TestPurchaseOrders:

    def test_create_starts_in_draft(self, db_session, purchase_order, buyer):
        assert purchase_order.po_number == "PO-000001"
        assert purchase_order.current_stage.code == "DRAFT"
        assert purchase_order.status == "draft"
        assert purchase_order.total_amount_cents == 100 * 25 + 50 * 80
        assert purchase_order.total_backlog_qty == 150
        assert purchase_order.created_by_user_id == buyer.id
        assert [line.line_no for line in purchase_order.lines] == [1, 2]

    def test_numbers_are_sequential(self, db_session, purchase_order, buyer):
        second = procurement_service.create_purchase_order(
            {"supplier_name": "Beta Labs", "lines": [{"product_name": "Ibuprofen", "quantity": 10}]},
            created_by=buyer,
        )
        assert second.po_number == "PO-000002"

    def test_reports_every_violation(self, db_session, buyer):
        with pytest.raises(ValidationError) as exc_info:
            procurement_service.create_purchase_order(
                {"supplier_name": "A", "lines": [{"product_name": "", "quantity": 0}, "x"]},
                created_by=buyer,
            )
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"supplier_name", "lines[0].product_name", "lines[0].quantity", "lines[1]"}

    def test_requires_lines(self, db_session, buyer):
        with pytest.raises(ValidationError):
            procurement_service.create_purchase_order({"supplier_name": "Acme Pharma"}, created_by=buyer)

    def test_missing_initial_stage_is_conflict(self, db_session, buyer):
        stage("DRAFT").is_active = False
        db.session.commit()

        with pytest.raises(ConflictError):
            procurement_service.create_purchase_order(
                {"supplier_name": "Acme Pharma", "lines": [{"product_name": "X", "quantity": 1}]},
                created_by=buyer,
            )

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            procurement_service.get_purchase_order(999999)


class TestInvoiceReceiving:

    def test_partial_receipt_updates_totals(self, db_session, purchase_order, buyer):
        receiving = _receive(purchase_order, [40, 0], created_by=buyer)

        assert receiving.receiving_number == "IR-000001"
        assert receiving.current_stage.code == "IR_DRAFT"

        po = db.session.get(PurchaseOrder, purchase_order.id)
        assert po.total_received_qty == 40
        assert po.total_backlog_qty == 110
        assert po.is_fully_received is False
        # Outside the receiving stages the status follows the workflow only
        assert po.status == "draft"

    def test_receipt_in_receiving_stage_derives_status(self, db_session, purchase_order, buyer):
        purchase_order.current_stage_id = stage("ORDERED").id
        purchase_order.status = "ordered"
        db.session.commit()

        _receive(purchase_order, [100, 0], created_by=buyer)
        assert db.session.get(PurchaseOrder, purchase_order.id).status == "partial_received"

        _receive(purchase_order, [0, 50], created_by=buyer, invoice_number="INV-2")
        po = db.session.get(PurchaseOrder, purchase_order.id)
        assert po.status == "received"
        assert po.is_fully_received is True
        assert po.total_backlog_qty == 0

    def test_over_receiving_is_rejected(self, db_session, purchase_order, buyer):
        _receive(purchase_order, [90, 0], created_by=buyer)

        with pytest.raises(ValidationError) as exc_info:
            _receive(purchase_order, [20, 0], created_by=buyer, invoice_number="INV-2")
        assert exc_info.value.errors[0]["field"] == "lines[0].received_quantity"

    def test_line_from_another_order(self, db_session, purchase_order, buyer):
        other = procurement_service.create_purchase_order(
            {"supplier_name": "Beta Labs", "lines": [{"product_name": "Ibuprofen", "quantity": 10}]},
            created_by=buyer,
        )
        with pytest.raises(ValidationError):
            procurement_service.create_invoice_receiving(
                {
                    "purchase_order_id": purchase_order.id,
                    "invoice_number": "INV-9",
                    "lines": [{"purchase_order_line_id": other.lines[0].id, "received_quantity": 1}],
                },
                created_by=buyer,
            )

    def test_closed_order_cannot_receive(self, db_session, purchase_order, buyer):
        purchase_order.status = "cancelled"
        db.session.commit()

        with pytest.raises(ConflictError):
            _receive(purchase_order, [1, 0], created_by=buyer)


class TestDownstreamDocuments:

    def test_quality_control_and_warehouse_approval(self, db_session, purchase_order, buyer):
        receiving = _receive(purchase_order, [100, 50], created_by=buyer)

        qc = procurement_service.create_quality_control(
            {"invoice_receiving_id": receiving.id, "priority": "urgent"}, created_by=buyer
        )
        approval = procurement_service.create_warehouse_approval(
            {"quality_control_id": qc.id, "warehouse_location": "Cold room B"}, created_by=buyer
        )

        assert qc.qc_number == "QC-000001"
        assert qc.current_stage.code == "QC_INSPECTION"
        assert approval.approval_number == "WA-000001"
        assert approval.current_stage.code == "WH_PENDING"
        assert approval.warehouse_location == "Cold room B"

    def test_invalid_priority(self, db_session, purchase_order, buyer):
        receiving = _receive(purchase_order, [1, 0], created_by=buyer)
        with pytest.raises(ValidationError):
            procurement_service.create_quality_control(
                {"invoice_receiving_id": receiving.id, "priority": "whenever"}, created_by=buyer
            )

    def test_unknown_parents(self, db_session, buyer):
        with pytest.raises(NotFoundError):
            procurement_service.create_quality_control({"invoice_receiving_id": 999999}, created_by=buyer)
        with pytest.raises(NotFoundError):
            procurement_service.create_warehouse_approval({"quality_control_id": 999999}, created_by=buyer)
