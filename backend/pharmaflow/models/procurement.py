from __future__ import annotations

from ..extensions import db
from pharmaflow.time_utils import to_utc_z, utcnow


def _stage_ref(stage) -> dict | None:
    if stage is None:
        return None
    return {"id": stage.id, "code": stage.code, "name": stage.name}


class PurchaseOrder(db.Model):
    """
    Purchase order raised against a principal (supplier).

    WORKFLOW: current_stage_id is owned by the workflow engine. status is a
    coarse mirror derived from the stage code plus receiving progress and is
    never set directly by clients.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    supplier_name = db.Column(db.String(200), nullable=False)
    supplier_reference = db.Column(db.String(100), nullable=True)
    payment_terms = db.Column(db.String(100), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # draft, pending_approval, approved, rejected, ordered, partial_received,
    # received, qc_pending, qc_passed, qc_failed, completed, cancelled
    status = db.Column(db.String(32), nullable=False, default="draft", index=True)
    current_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_received_qty = db.Column(db.Integer, nullable=False, default=0)
    total_backlog_qty = db.Column(db.Integer, nullable=False, default=0)
    is_fully_received = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    current_stage = db.relationship("WorkflowStage")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy="selectin",
        order_by="PurchaseOrderLine.line_no",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_name": self.supplier_name,
            "supplier_reference": self.supplier_reference,
            "payment_terms": self.payment_terms,
            "remarks": self.remarks,
            "status": self.status,
            "current_stage": _stage_ref(self.current_stage),
            "total_amount_cents": self.total_amount_cents,
            "total_received_qty": self.total_received_qty,
            "total_backlog_qty": self.total_backlog_qty,
            "is_fully_received": self.is_fully_received,
            "lines": [line.to_dict() for line in self.lines],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class PurchaseOrderLine(db.Model):
    """Ordered product on a PO; received_quantity accumulates from invoice receivings."""
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "line_no", name="uq_po_lines_po_line_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    product_code = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def backlog_quantity(self) -> int:
        return max(self.quantity - (self.received_quantity or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_no": self.line_no,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "received_quantity": self.received_quantity,
            "backlog_quantity": self.backlog_quantity,
            "unit_price_cents": self.unit_price_cents,
        }


class InvoiceReceiving(db.Model):
    """
    Goods received against a purchase order under a supplier invoice.

    Creating one adds its line quantities to the PO lines and recomputes the
    PO receiving status in the same transaction.
    """
    __tablename__ = "invoice_receivings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receiving_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    invoice_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # pending, in_progress, passed, failed, partial_pass
    qc_status = db.Column(db.String(16), nullable=False, default="pending")
    qc_remarks = db.Column(db.Text, nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # draft, submitted, qc_pending, completed, rejected
    status = db.Column(db.String(32), nullable=False, default="draft", index=True)
    current_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("invoice_receivings", lazy=True))
    current_stage = db.relationship("WorkflowStage")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "InvoiceReceivingLine",
        backref="invoice_receiving",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receiving_number": self.receiving_number,
            "purchase_order_id": self.purchase_order_id,
            "invoice_number": self.invoice_number,
            "invoice_amount_cents": self.invoice_amount_cents,
            "received_at": to_utc_z(self.received_at),
            "qc_status": self.qc_status,
            "qc_remarks": self.qc_remarks,
            "remarks": self.remarks,
            "status": self.status,
            "current_stage": _stage_ref(self.current_stage),
            "lines": [line.to_dict() for line in self.lines],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InvoiceReceivingLine(db.Model):
    """Quantity received for one PO line."""
    __tablename__ = "invoice_receiving_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_receiving_id = db.Column(db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=False, index=True)
    purchase_order_line_id = db.Column(db.Integer, db.ForeignKey("purchase_order_lines.id"), nullable=False, index=True)
    received_quantity = db.Column(db.Integer, nullable=False)
    batch_no = db.Column(db.String(64), nullable=True)
    # received, backlog, damaged, rejected
    status = db.Column(db.String(16), nullable=False, default="received")

    purchase_order_line = db.relationship("PurchaseOrderLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_line_id": self.purchase_order_line_id,
            "received_quantity": self.received_quantity,
            "batch_no": self.batch_no,
            "status": self.status,
        }


class QualityControl(db.Model):
    """Quality inspection of goods from one invoice receiving."""
    __tablename__ = "quality_controls"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    qc_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    invoice_receiving_id = db.Column(db.Integer, db.ForeignKey("invoice_receivings.id"), nullable=False, index=True)

    # low, medium, high, urgent
    priority = db.Column(db.String(16), nullable=False, default="medium")
    # pending, passed, failed, partial_pass
    overall_result = db.Column(db.String(16), nullable=False, default="pending")
    inspector_notes = db.Column(db.Text, nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # pending, in_progress, pending_approval, completed, rejected, on_hold, cancelled
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    current_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice_receiving = db.relationship("InvoiceReceiving", backref=db.backref("quality_controls", lazy=True))
    current_stage = db.relationship("WorkflowStage")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qc_number": self.qc_number,
            "invoice_receiving_id": self.invoice_receiving_id,
            "priority": self.priority,
            "overall_result": self.overall_result,
            "inspector_notes": self.inspector_notes,
            "remarks": self.remarks,
            "status": self.status,
            "current_stage": _stage_ref(self.current_stage),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class WarehouseApproval(db.Model):
    """Warehouse acceptance of goods that passed quality control."""
    __tablename__ = "warehouse_approvals"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    approval_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    quality_control_id = db.Column(db.Integer, db.ForeignKey("quality_controls.id"), nullable=False, index=True)

    warehouse_location = db.Column(db.String(100), nullable=True)
    # accept_all, accept_partial, reject_all, return_to_qc, hold_for_review
    decision = db.Column(db.String(32), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # pending, in_progress, completed, on_hold, cancelled
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    current_stage_id = db.Column(db.Integer, db.ForeignKey("workflow_stages.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    quality_control = db.relationship("QualityControl", backref=db.backref("warehouse_approvals", lazy=True))
    current_stage = db.relationship("WorkflowStage")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "approval_number": self.approval_number,
            "quality_control_id": self.quality_control_id,
            "warehouse_location": self.warehouse_location,
            "decision": self.decision,
            "remarks": self.remarks,
            "status": self.status,
            "current_stage": _stage_ref(self.current_stage),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
