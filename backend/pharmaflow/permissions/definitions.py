# Overview: All permission definitions organized by category.
# Each permission is defined as: (name, resource, action, description, category)

from .categories import PermissionCategory


# -- PURCHASE ORDERS --

PURCHASE_ORDER_PERMISSIONS = [
    ("po_view", "purchase_orders", "view", "View purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_create", "purchase_orders", "create", "Create purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_edit", "purchase_orders", "update", "Edit purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_delete", "purchase_orders", "delete", "Delete purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_submit", "po_workflow", "submit", "Submit PO for approval", PermissionCategory.PURCHASE_ORDERS),
    ("po_approve", "po_workflow", "approve", "Approve purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_reject", "po_workflow", "reject", "Reject purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_return", "po_workflow", "return", "Return PO for revision", PermissionCategory.PURCHASE_ORDERS),
    ("po_cancel", "po_workflow", "cancel", "Cancel purchase orders", PermissionCategory.PURCHASE_ORDERS),
    ("po_complete", "po_workflow", "complete", "Mark PO as completed", PermissionCategory.PURCHASE_ORDERS),
    ("po_receive", "po_receiving", "receive", "Receive products against PO", PermissionCategory.PURCHASE_ORDERS),
    ("po_qc_check", "po_receiving", "qc_check", "Send received products to QC", PermissionCategory.PURCHASE_ORDERS),
]


# -- INVOICE RECEIVING --

INVOICE_RECEIVING_PERMISSIONS = [
    ("invoice_receiving_view", "invoice_receiving", "view", "View invoice receiving records",
     PermissionCategory.INVOICE_RECEIVING),
    ("invoice_receiving_create", "invoice_receiving", "create", "Create invoice receiving records",
     PermissionCategory.INVOICE_RECEIVING),
    ("invoice_receiving_edit", "invoice_receiving", "update", "Edit invoice receiving records",
     PermissionCategory.INVOICE_RECEIVING),
    ("invoice_receiving_submit", "invoice_receiving", "submit", "Submit invoice receiving for verification",
     PermissionCategory.INVOICE_RECEIVING),
    ("invoice_receiving_approve", "invoice_receiving", "approve", "Verify invoice receiving records",
     PermissionCategory.INVOICE_RECEIVING),
    ("invoice_receiving_reject", "invoice_receiving", "reject", "Reject invoice receiving records",
     PermissionCategory.INVOICE_RECEIVING),
]


# -- QUALITY CONTROL --

QUALITY_CONTROL_PERMISSIONS = [
    ("qc_view", "quality_control", "view", "View QC records", PermissionCategory.QUALITY_CONTROL),
    ("qc_create", "quality_control", "create", "Create QC records", PermissionCategory.QUALITY_CONTROL),
    ("qc_check", "quality_control", "qc_check", "Perform QC checks", PermissionCategory.QUALITY_CONTROL),
    ("qc_approve", "quality_control", "approve", "Approve QC results", PermissionCategory.QUALITY_CONTROL),
    ("qc_reject", "quality_control", "reject", "Reject QC results", PermissionCategory.QUALITY_CONTROL),
]


# -- WAREHOUSE --

WAREHOUSE_PERMISSIONS = [
    ("warehouse_view", "warehouse_approval", "view", "View warehouse approvals", PermissionCategory.WAREHOUSE),
    ("warehouse_create", "warehouse_approval", "create", "Create warehouse approvals",
     PermissionCategory.WAREHOUSE),
    ("warehouse_approve", "warehouse_approval", "approve", "Approve goods into the warehouse",
     PermissionCategory.WAREHOUSE),
    ("warehouse_reject", "warehouse_approval", "reject", "Reject goods at the warehouse",
     PermissionCategory.WAREHOUSE),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    ("inventory_view", "inventory", "view", "View inventory", PermissionCategory.INVENTORY),
    ("inventory_adjust", "inventory", "adjust", "Adjust stock levels", PermissionCategory.INVENTORY),
    ("inventory_reserve", "inventory", "reserve", "Reserve stock", PermissionCategory.INVENTORY),
    ("inventory_transfer", "inventory", "transfer", "Transfer stock between warehouses",
     PermissionCategory.INVENTORY),
    ("inventory_utilize", "inventory", "utilize", "Utilize reserved stock", PermissionCategory.INVENTORY),
    ("inventory_movement_history", "inventory", "movement_history", "View stock movement history",
     PermissionCategory.INVENTORY),
    ("inventory_statistics", "inventory", "statistics", "View inventory statistics",
     PermissionCategory.INVENTORY),
]


# -- WORKFLOW ADMINISTRATION --

WORKFLOW_PERMISSIONS = [
    ("workflow_view", "workflow", "view", "View workflow stages, transitions and history",
     PermissionCategory.WORKFLOW),
    ("workflow_manage", "workflow", "update", "Create, edit and delete workflow stages and transitions",
     PermissionCategory.WORKFLOW),
    ("workflow_assign", "stage_permissions", "create", "Assign and revoke stage permissions",
     PermissionCategory.WORKFLOW),
    ("workflow_statistics", "workflow", "statistics", "View workflow statistics",
     PermissionCategory.WORKFLOW),
]


# -- USERS --

USER_PERMISSIONS = [
    ("users_view", "users", "view", "View users", PermissionCategory.USERS),
    ("users_manage", "users", "update", "Create and edit users and role membership", PermissionCategory.USERS),
]


# Combined list of all permissions (preserves original ordering)
PERMISSION_DEFINITIONS = (
    PURCHASE_ORDER_PERMISSIONS
    + INVOICE_RECEIVING_PERMISSIONS
    + QUALITY_CONTROL_PERMISSIONS
    + WAREHOUSE_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + WORKFLOW_PERMISSIONS
    + USER_PERMISSIONS
)
