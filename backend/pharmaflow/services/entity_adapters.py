# Overview: Registry describing how each workflow entity type plugs into the engine.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..extensions import db
from ..models import InvoiceReceiving, PurchaseOrder, QualityControl, WarehouseApproval
from ..validation import ValidationError
from . import procurement_service


TransitionHook = Callable[[Any, Any, Any, str], None]


@dataclass(frozen=True)
class EntityAdapter:
    """
    How the engine reads and writes one entity type.

    writable_fields: payload keys the engine may copy onto the entity during
    a transition (the structured diff lists what changed).
    status_by_stage: stage code -> coarse status mirrored on the entity.
    on_transition: called inside the transaction after the stage changed.
    """
    entity_type: str
    model: type
    number_attr: str
    writable_fields: tuple[str, ...] = ()
    status_by_stage: dict[str, str] = field(default_factory=dict)
    on_transition: TransitionHook | None = None

    def load(self, entity_id: int):
        return db.session.get(self.model, entity_id)

    def number_of(self, entity) -> str | None:
        return getattr(entity, self.number_attr, None)

    def snapshot(self, entity) -> dict:
        """Plain dict of the entity's columns, used as condition context."""
        data: dict = {}
        for column in self.model.__table__.columns:
            value = getattr(entity, column.key)
            data[column.key] = value.isoformat() if isinstance(value, datetime) else value
        return data

    def apply_fields(self, entity, fields: dict) -> list[dict]:
        """Copy writable payload values onto entity; return the changes made."""
        changes: list[dict] = []
        for name in self.writable_fields:
            if name not in fields:
                continue
            old, new = getattr(entity, name), fields[name]
            if old != new:
                setattr(entity, name, new)
                changes.append({"field": name, "old": old, "new": new})
        return changes

    def status_for(self, stage_code: str) -> str | None:
        return self.status_by_stage.get(stage_code)


_ADAPTERS: dict[str, EntityAdapter] = {}


def register_adapter(adapter: EntityAdapter) -> EntityAdapter:
    _ADAPTERS[adapter.entity_type] = adapter
    return adapter


def get_adapter(entity_type: str) -> EntityAdapter:
    adapter = _ADAPTERS.get(entity_type)
    if adapter is None:
        raise ValidationError([{
            "field": "entity_type",
            "message": f"unsupported entity type {entity_type!r}; expected one of {', '.join(sorted(_ADAPTERS))}",
        }])
    return adapter


def registered_models() -> dict[str, type]:
    return {name: adapter.model for name, adapter in _ADAPTERS.items()}


register_adapter(EntityAdapter(
    entity_type="purchase_order",
    model=PurchaseOrder,
    number_attr="po_number",
    writable_fields=("supplier_name", "supplier_reference", "payment_terms", "remarks"),
    status_by_stage={
        "DRAFT": "draft",
        "PENDING_APPROVAL": "pending_approval",
        "APPROVED": "approved",
        "ORDERED": "ordered",
        "PARTIAL_RECEIVED": "partial_received",
        "RECEIVED": "received",
        "QC_PENDING": "qc_pending",
        "QC_PASSED": "qc_passed",
        "QC_FAILED": "qc_failed",
        "COMPLETED": "completed",
        "CANCELLED": "cancelled",
        "REJECTED": "rejected",
    },
    on_transition=procurement_service.on_purchase_order_transition,
))

register_adapter(EntityAdapter(
    entity_type="invoice_receiving",
    model=InvoiceReceiving,
    number_attr="receiving_number",
    writable_fields=("invoice_number", "invoice_amount_cents", "qc_status", "qc_remarks", "remarks"),
    status_by_stage={
        "IR_DRAFT": "draft",
        "IR_SUBMITTED": "submitted",
        "IR_QC_PENDING": "qc_pending",
        "IR_COMPLETED": "completed",
        "IR_REJECTED": "rejected",
    },
    on_transition=procurement_service.on_invoice_receiving_transition,
))

register_adapter(EntityAdapter(
    entity_type="quality_control",
    model=QualityControl,
    number_attr="qc_number",
    writable_fields=("priority", "overall_result", "inspector_notes", "remarks"),
    status_by_stage={
        "QC_INSPECTION": "in_progress",
        "QC_REVIEW": "pending_approval",
        "QC_APPROVED": "completed",
        "QC_REJECTED": "rejected",
    },
))

register_adapter(EntityAdapter(
    entity_type="warehouse_approval",
    model=WarehouseApproval,
    number_attr="approval_number",
    writable_fields=("warehouse_location", "decision", "remarks"),
    status_by_stage={
        "WH_PENDING": "pending",
        "WH_APPROVED": "in_progress",
        "WH_COMPLETED": "completed",
        "WH_REJECTED": "cancelled",
    },
))
