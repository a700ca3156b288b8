# Overview: Default procurement workflow (stages and transition rules).

"""
Default workflow definitions, seeded by `flask system init` and
`flask workflow seed`.

Four flows share the stage registry:
- purchase orders: DRAFT ... COMPLETED / CANCELLED / REJECTED
- invoice receiving: IR_DRAFT ... IR_COMPLETED / IR_REJECTED
- quality control: QC_INSPECTION ... QC_APPROVED / QC_REJECTED
- warehouse approval: WH_PENDING ... WH_COMPLETED / WH_REJECTED

Seeding is idempotent: existing stages (matched by code) and rules
(matched by from/to/action) are left as administrators configured them.
"""

from __future__ import annotations

from flask import current_app

from .extensions import db
from .models import WorkflowStage, WorkflowTransition
from .services import permission_service

NOT_FULLY_RECEIVED = {"kind": "not", "condition": {"kind": "guard", "name": "fully_received"}}
FULLY_RECEIVED = {"kind": "guard", "name": "fully_received"}
QC_RESULT_ACCEPTABLE = {"kind": "field_in", "field": "overall_result", "values": ["passed", "partial_pass"]}

# (code, name, allowed actions, required permission names)
STAGES = [
    # Purchase orders
    ("DRAFT", "Draft", ["edit", "submit", "cancel"], ["po_view", "po_submit", "po_cancel"]),
    ("PENDING_APPROVAL", "Pending Approval", ["approve", "reject", "return"],
     ["po_view", "po_approve", "po_reject", "po_return"]),
    ("APPROVED", "Approved", ["submit", "cancel"], ["po_view", "po_submit", "po_cancel"]),
    ("ORDERED", "Ordered", ["receive", "cancel"], ["po_view", "po_receive", "po_cancel"]),
    ("PARTIAL_RECEIVED", "Partially Received", ["receive", "qc_check"],
     ["po_view", "po_receive", "po_qc_check"]),
    ("RECEIVED", "Received", ["qc_check"], ["po_view", "po_qc_check"]),
    ("QC_PENDING", "QC Pending", ["approve", "reject"], ["po_view", "po_approve", "po_reject"]),
    ("QC_PASSED", "QC Passed", ["complete"], ["po_view", "po_complete"]),
    ("QC_FAILED", "QC Failed", ["return", "reject"], ["po_view", "po_return", "po_reject"]),
    ("COMPLETED", "Completed", ["edit"], ["po_view"]),
    ("CANCELLED", "Cancelled", ["edit"], ["po_view"]),
    ("REJECTED", "Rejected", ["edit"], ["po_view"]),
    # Invoice receiving
    ("IR_DRAFT", "Receiving Draft", ["edit", "submit"],
     ["invoice_receiving_view", "invoice_receiving_submit"]),
    ("IR_SUBMITTED", "Receiving Submitted", ["approve", "reject", "return"],
     ["invoice_receiving_view", "invoice_receiving_approve", "invoice_receiving_reject"]),
    ("IR_QC_PENDING", "Receiving QC Pending", ["complete", "reject"],
     ["invoice_receiving_view", "invoice_receiving_reject"]),
    ("IR_COMPLETED", "Receiving Completed", ["edit"], ["invoice_receiving_view"]),
    ("IR_REJECTED", "Receiving Rejected", ["edit"], ["invoice_receiving_view"]),
    # Quality control
    ("QC_INSPECTION", "QC Inspection", ["qc_check"], ["qc_view", "qc_check"]),
    ("QC_REVIEW", "QC Review", ["approve", "reject", "return"], ["qc_view", "qc_approve", "qc_reject"]),
    ("QC_APPROVED", "QC Approved", ["edit"], ["qc_view"]),
    ("QC_REJECTED", "QC Rejected", ["edit"], ["qc_view"]),
    # Warehouse approval
    ("WH_PENDING", "Warehouse Pending", ["approve", "reject"],
     ["warehouse_view", "warehouse_approve", "warehouse_reject"]),
    ("WH_APPROVED", "Warehouse Approved", ["complete"], ["warehouse_view"]),
    ("WH_COMPLETED", "Warehouse Completed", ["edit"], ["warehouse_view"]),
    ("WH_REJECTED", "Warehouse Rejected", ["edit"], ["warehouse_view"]),
]

# (from, to, action, options)
TRANSITIONS = [
    ("DRAFT", "DRAFT", "edit", {}),
    ("DRAFT", "PENDING_APPROVAL", "submit", {"notification_template": "approval_required"}),
    ("DRAFT", "CANCELLED", "cancel", {"required_fields": ["remarks"]}),
    ("PENDING_APPROVAL", "APPROVED", "approve", {}),
    ("PENDING_APPROVAL", "REJECTED", "reject",
     {"required_fields": ["remarks"], "notification_template": "entity_rejected"}),
    ("PENDING_APPROVAL", "DRAFT", "return",
     {"required_fields": ["remarks"], "notification_template": "entity_returned"}),
    ("APPROVED", "ORDERED", "submit", {}),
    ("APPROVED", "CANCELLED", "cancel", {"required_fields": ["remarks"]}),
    ("ORDERED", "PARTIAL_RECEIVED", "receive", {"conditions": NOT_FULLY_RECEIVED}),
    ("ORDERED", "RECEIVED", "receive", {"conditions": FULLY_RECEIVED}),
    ("ORDERED", "CANCELLED", "cancel", {"required_fields": ["remarks"]}),
    ("PARTIAL_RECEIVED", "PARTIAL_RECEIVED", "receive", {"conditions": NOT_FULLY_RECEIVED}),
    ("PARTIAL_RECEIVED", "RECEIVED", "receive", {"conditions": FULLY_RECEIVED}),
    ("PARTIAL_RECEIVED", "QC_PENDING", "qc_check", {"notification_template": "qc_assignment"}),
    ("RECEIVED", "QC_PENDING", "qc_check", {"notification_template": "qc_assignment"}),
    ("QC_PENDING", "QC_PASSED", "approve", {"notification_template": "warehouse_assignment"}),
    ("QC_PENDING", "QC_FAILED", "reject",
     {"required_fields": ["remarks"], "notification_template": "entity_rejected"}),
    ("QC_PASSED", "COMPLETED", "complete", {"notification_template": "workflow_completed"}),
    ("QC_FAILED", "ORDERED", "return", {"required_fields": ["remarks"]}),
    ("QC_FAILED", "CANCELLED", "reject", {"required_fields": ["remarks"]}),

    ("IR_DRAFT", "IR_DRAFT", "edit", {}),
    ("IR_DRAFT", "IR_SUBMITTED", "submit", {"notification_template": "approval_required"}),
    ("IR_SUBMITTED", "IR_QC_PENDING", "approve", {"notification_template": "qc_assignment"}),
    ("IR_SUBMITTED", "IR_REJECTED", "reject",
     {"required_fields": ["remarks"], "notification_template": "entity_rejected"}),
    ("IR_SUBMITTED", "IR_DRAFT", "return",
     {"required_fields": ["remarks"], "notification_template": "entity_returned"}),
    ("IR_QC_PENDING", "IR_COMPLETED", "complete", {"notification_template": "workflow_completed"}),
    ("IR_QC_PENDING", "IR_REJECTED", "reject", {"required_fields": ["remarks"]}),

    ("QC_INSPECTION", "QC_REVIEW", "qc_check",
     {"required_fields": ["overall_result"], "notification_template": "approval_required"}),
    ("QC_REVIEW", "QC_APPROVED", "approve",
     {"conditions": QC_RESULT_ACCEPTABLE, "notification_template": "warehouse_assignment"}),
    ("QC_REVIEW", "QC_REJECTED", "reject",
     {"required_fields": ["remarks"], "notification_template": "entity_rejected"}),
    ("QC_REVIEW", "QC_INSPECTION", "return",
     {"required_fields": ["remarks"], "notification_template": "entity_returned"}),

    ("WH_PENDING", "WH_APPROVED", "approve", {"required_fields": ["warehouse_location"]}),
    ("WH_PENDING", "WH_REJECTED", "reject",
     {"required_fields": ["remarks"], "notification_template": "entity_rejected"}),
    ("WH_APPROVED", "WH_COMPLETED", "complete",
     {"auto_transition": True, "notification_template": "workflow_completed"}),
]


def seed_default_workflow(*, created_by_user_id: int | None = None) -> dict:
    """
    Create the default stages and rules that are missing.

    Returns counts of what was created.
    """
    permission_service.initialize_permissions()

    stages: dict[str, WorkflowStage] = {
        s.code: s for s in db.session.query(WorkflowStage).all()
    }
    created_stages: list[WorkflowStage] = []
    for sequence, (code, name, actions, permission_names) in enumerate(STAGES, start=1):
        if code in stages:
            continue
        stage = WorkflowStage(
            name=name,
            code=code,
            sequence=sequence,
            allowed_actions=list(actions),
            is_active=True,
            created_by_user_id=created_by_user_id,
            updated_by_user_id=created_by_user_id,
        )
        stage.required_permissions = permission_service.get_permissions_by_names(permission_names)
        db.session.add(stage)
        stages[code] = stage
        created_stages.append(stage)
    db.session.flush()

    existing_rules = {
        (t.from_stage_id, t.to_stage_id, t.action)
        for t in db.session.query(WorkflowTransition).all()
    }
    created_rules = 0
    for from_code, to_code, action, options in TRANSITIONS:
        source, target = stages[from_code], stages[to_code]
        if (source.id, target.id, action) in existing_rules:
            continue
        db.session.add(WorkflowTransition(
            from_stage_id=source.id,
            to_stage_id=target.id,
            action=action,
            conditions=options.get("conditions"),
            auto_transition=options.get("auto_transition", False),
            required_fields=list(options.get("required_fields", [])),
            notification_template=options.get("notification_template"),
            created_by_user_id=created_by_user_id,
        ))
        created_rules += 1

    # Successor lists mirror the rule table (self-loops excluded)
    for stage in created_stages:
        successors = [
            stages[to_code] for from_code, to_code, _action, _opts in TRANSITIONS
            if from_code == stage.code and to_code != stage.code
        ]
        stage.next_stages = list(dict.fromkeys(successors))

    db.session.commit()
    if created_stages or created_rules:
        current_app.logger.info(
            "Seeded default workflow: %d stages, %d transitions", len(created_stages), created_rules
        )
    return {"stages": len(created_stages), "transitions": created_rules}
