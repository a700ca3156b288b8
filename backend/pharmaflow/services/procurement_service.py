# Overview: Purchase order, invoice receiving, QC and warehouse approval records.

"""
Procurement documents that move through the workflow engine.

These functions own document creation and the receiving arithmetic. They
never change current_stage_id after creation: stage changes go through the
workflow engine.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    InvoiceReceiving,
    InvoiceReceivingLine,
    PurchaseOrder,
    PurchaseOrderLine,
    QualityControl,
    User,
    WarehouseApproval,
    WorkflowStage,
)
from ..validation import (
    ConflictError,
    NotFoundError,
    Violations,
    check_length,
    clean_string,
    coerce_int,
)
from .concurrency import run_with_retry


RECEIVING_STAGE_CODES = {"ORDERED", "PARTIAL_RECEIVED", "RECEIVED"}
PRIORITIES = ("low", "medium", "high", "urgent")
LINE_STATUSES = ("received", "backlog", "damaged", "rejected")


def initial_stage(entity_type: str) -> WorkflowStage:
    """Configured starting stage for entity_type; must exist and be active."""
    code = (current_app.config.get("WORKFLOW_INITIAL_STAGES") or {}).get(entity_type)
    stage = db.session.query(WorkflowStage).filter_by(code=code).first() if code else None
    if stage is None or not stage.is_active:
        raise ConflictError(
            f"No active initial stage configured for {entity_type}",
            details={"entity_type": entity_type, "stage_code": code},
        )
    return stage


def _next_number(model, prefix: str) -> str:
    count = db.session.query(db.func.count(model.id)).scalar() or 0
    return f"{prefix}-{count + 1:06d}"


def _create_with_number(build):
    """Insert a numbered document, retrying when a concurrent insert took the number."""
    def _op():
        record = build()
        db.session.add(record)
        db.session.commit()
        return record
    return run_with_retry(_op, retry_on=(IntegrityError,))


def _get(model, record_id: int, label: str):
    record = db.session.get(model, record_id)
    if not record:
        raise NotFoundError(f"{label} {record_id} not found", details={"id": record_id})
    return record


# -- PURCHASE ORDERS --

def create_purchase_order(payload: dict, *, created_by: User) -> PurchaseOrder:
    """
    Create a purchase order with its lines at the initial workflow stage.

    payload keys: supplier_name, supplier_reference?, payment_terms?, remarks?,
    lines: [{product_name, product_code?, quantity, unit_price_cents?}]
    """
    payload = payload or {}
    v = Violations()
    supplier_name = clean_string(payload.get("supplier_name"))
    check_length(v, "supplier_name", supplier_name, min_len=2, max_len=200)
    supplier_reference = clean_string(payload.get("supplier_reference")) or None
    check_length(v, "supplier_reference", supplier_reference, max_len=100, required=False)
    payment_terms = clean_string(payload.get("payment_terms")) or None
    remarks = clean_string(payload.get("remarks")) or None

    raw_lines = payload.get("lines")
    lines: list[dict] = []
    if not isinstance(raw_lines, list) or not raw_lines:
        v.add("lines", "at least one line is required")
    else:
        for idx, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                v.add(f"lines[{idx}]", "must be an object")
                continue
            name = clean_string(raw.get("product_name"))
            check_length(v, f"lines[{idx}].product_name", name, min_len=1, max_len=200)
            qty = coerce_int(v, f"lines[{idx}].quantity", raw.get("quantity"), minimum=1)
            price = coerce_int(v, f"lines[{idx}].unit_price_cents", raw.get("unit_price_cents", 0), minimum=0)
            lines.append({
                "line_no": idx + 1,
                "product_code": clean_string(raw.get("product_code")) or None,
                "product_name": name,
                "quantity": qty,
                "unit_price_cents": price,
            })
    v.raise_if_any()

    stage = initial_stage("purchase_order")

    def build() -> PurchaseOrder:
        po = PurchaseOrder(
            po_number=_next_number(PurchaseOrder, "PO"),
            supplier_name=supplier_name,
            supplier_reference=supplier_reference,
            payment_terms=payment_terms,
            remarks=remarks,
            status="draft",
            current_stage_id=stage.id,
            created_by_user_id=created_by.id,
            total_amount_cents=sum(line["quantity"] * line["unit_price_cents"] for line in lines),
            total_backlog_qty=sum(line["quantity"] for line in lines),
        )
        po.lines = [PurchaseOrderLine(**line) for line in lines]
        return po

    po = _create_with_number(build)
    current_app.logger.info("Purchase order %s created by %s", po.po_number, created_by.username)
    return po


def get_purchase_order(po_id: int) -> PurchaseOrder:
    return _get(PurchaseOrder, po_id, "Purchase order")


def recompute_po_status(po_id: int) -> PurchaseOrder:
    """
    Recalculate PO receiving totals from its invoice receivings.

    received_quantity per line = sum of lines on every non-rejected
    invoice receiving. While the PO is in a receiving stage, status becomes
    received / partial_received from the totals.

    Does not commit: runs inside the caller's transaction.
    """
    po = get_purchase_order(po_id)

    received_by_line: dict[int, int] = {}
    for receiving in po.invoice_receivings:
        if receiving.status == "rejected":
            continue
        for line in receiving.lines:
            received_by_line[line.purchase_order_line_id] = (
                received_by_line.get(line.purchase_order_line_id, 0) + line.received_quantity
            )

    for line in po.lines:
        line.received_quantity = received_by_line.get(line.id, 0)

    po.total_received_qty = sum(line.received_quantity for line in po.lines)
    po.total_backlog_qty = sum(line.backlog_quantity for line in po.lines)
    all_received = all(line.received_quantity >= line.quantity for line in po.lines)
    some_received = any(line.received_quantity > 0 for line in po.lines)
    po.is_fully_received = bool(po.lines) and all_received

    if po.current_stage is not None and po.current_stage.code in RECEIVING_STAGE_CODES:
        if all_received:
            po.status = "received"
        elif some_received:
            po.status = "partial_received"
        else:
            po.status = "ordered"

    db.session.flush()
    return po


# -- INVOICE RECEIVING --

def create_invoice_receiving(payload: dict, *, created_by: User) -> InvoiceReceiving:
    """
    Record goods received against a PO and update the PO receiving totals
    in the same transaction.

    payload keys: purchase_order_id, invoice_number, invoice_amount_cents?,
    remarks?, lines: [{purchase_order_line_id, received_quantity, batch_no?, status?}]
    """
    payload = payload or {}
    v = Violations()
    po_id = coerce_int(v, "purchase_order_id", payload.get("purchase_order_id"), minimum=1)
    invoice_number = clean_string(payload.get("invoice_number"))
    check_length(v, "invoice_number", invoice_number, min_len=1, max_len=64)
    amount = coerce_int(v, "invoice_amount_cents", payload.get("invoice_amount_cents", 0), minimum=0)
    remarks = clean_string(payload.get("remarks")) or None
    v.raise_if_any()

    po = get_purchase_order(po_id)
    if po.status in ("cancelled", "rejected", "completed"):
        raise ConflictError(f"Purchase order {po.po_number} is {po.status}; it cannot receive goods")

    po_lines = {line.id: line for line in po.lines}
    raw_lines = payload.get("lines")
    lines: list[dict] = []
    requested: dict[int, int] = {}
    if not isinstance(raw_lines, list) or not raw_lines:
        v.add("lines", "at least one line is required")
    else:
        for idx, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                v.add(f"lines[{idx}]", "must be an object")
                continue
            line_id = coerce_int(v, f"lines[{idx}].purchase_order_line_id", raw.get("purchase_order_line_id"),
                                 minimum=1)
            qty = coerce_int(v, f"lines[{idx}].received_quantity", raw.get("received_quantity"), minimum=1)
            status = clean_string(raw.get("status")) or "received"
            if status not in LINE_STATUSES:
                v.add(f"lines[{idx}].status", f"must be one of {', '.join(LINE_STATUSES)}")
            if line_id is not None and line_id not in po_lines:
                v.add(f"lines[{idx}].purchase_order_line_id", f"line {line_id} is not on {po.po_number}")
                continue
            if line_id is None or qty is None:
                continue
            requested[line_id] = requested.get(line_id, 0) + qty
            if requested[line_id] > po_lines[line_id].backlog_quantity:
                v.add(f"lines[{idx}].received_quantity",
                      f"exceeds outstanding quantity {po_lines[line_id].backlog_quantity}")
            lines.append({
                "purchase_order_line_id": line_id,
                "received_quantity": qty,
                "batch_no": clean_string(raw.get("batch_no")) or None,
                "status": status,
            })
    v.raise_if_any()

    stage = initial_stage("invoice_receiving")

    def build() -> InvoiceReceiving:
        receiving = InvoiceReceiving(
            receiving_number=_next_number(InvoiceReceiving, "IR"),
            purchase_order=po,
            invoice_number=invoice_number,
            invoice_amount_cents=amount,
            remarks=remarks,
            status="draft",
            current_stage_id=stage.id,
            created_by_user_id=created_by.id,
        )
        receiving.lines = [InvoiceReceivingLine(**line) for line in lines]
        db.session.add(receiving)
        db.session.flush()
        recompute_po_status(po.id)
        return receiving

    receiving = _create_with_number(build)
    current_app.logger.info(
        "Invoice receiving %s recorded against %s", receiving.receiving_number, po.po_number
    )
    return receiving


def get_invoice_receiving(receiving_id: int) -> InvoiceReceiving:
    return _get(InvoiceReceiving, receiving_id, "Invoice receiving")


# -- QUALITY CONTROL --

def create_quality_control(payload: dict, *, created_by: User) -> QualityControl:
    """payload keys: invoice_receiving_id, priority?, remarks?"""
    payload = payload or {}
    v = Violations()
    receiving_id = coerce_int(v, "invoice_receiving_id", payload.get("invoice_receiving_id"), minimum=1)
    priority = clean_string(payload.get("priority")) or "medium"
    v.check(priority in PRIORITIES, "priority", f"must be one of {', '.join(PRIORITIES)}")
    remarks = clean_string(payload.get("remarks")) or None
    v.raise_if_any()

    receiving = get_invoice_receiving(receiving_id)
    stage = initial_stage("quality_control")

    def build() -> QualityControl:
        return QualityControl(
            qc_number=_next_number(QualityControl, "QC"),
            invoice_receiving_id=receiving.id,
            priority=priority,
            remarks=remarks,
            status="pending",
            current_stage_id=stage.id,
            created_by_user_id=created_by.id,
        )

    return _create_with_number(build)


def get_quality_control(qc_id: int) -> QualityControl:
    return _get(QualityControl, qc_id, "Quality control")


# -- WAREHOUSE APPROVAL --

def create_warehouse_approval(payload: dict, *, created_by: User) -> WarehouseApproval:
    """payload keys: quality_control_id, warehouse_location?, remarks?"""
    payload = payload or {}
    v = Violations()
    qc_id = coerce_int(v, "quality_control_id", payload.get("quality_control_id"), minimum=1)
    location = clean_string(payload.get("warehouse_location")) or None
    check_length(v, "warehouse_location", location, max_len=100, required=False)
    remarks = clean_string(payload.get("remarks")) or None
    v.raise_if_any()

    qc = get_quality_control(qc_id)
    stage = initial_stage("warehouse_approval")

    def build() -> WarehouseApproval:
        return WarehouseApproval(
            approval_number=_next_number(WarehouseApproval, "WA"),
            quality_control_id=qc.id,
            warehouse_location=location,
            remarks=remarks,
            status="pending",
            current_stage_id=stage.id,
            created_by_user_id=created_by.id,
        )

    return _create_with_number(build)


def get_warehouse_approval(approval_id: int) -> WarehouseApproval:
    return _get(WarehouseApproval, approval_id, "Warehouse approval")


# -- WORKFLOW HOOKS --

def on_invoice_receiving_transition(receiving: InvoiceReceiving, from_stage, to_stage, action: str) -> None:
    """A receiving that changes stage (e.g. rejected) changes the PO totals."""
    recompute_po_status(receiving.purchase_order_id)


def on_purchase_order_transition(po: PurchaseOrder, from_stage, to_stage, action: str) -> None:
    """Entering a receiving stage derives status from quantities, not the stage code."""
    if to_stage.code in RECEIVING_STAGE_CODES:
        recompute_po_status(po.id)
