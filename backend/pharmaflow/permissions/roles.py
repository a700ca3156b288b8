# Overview: Default role -> permission name sets applied at bootstrap.

from .definitions import PERMISSION_DEFINITIONS


def _names(*prefixes: str) -> list[str]:
    return [p[0] for p in PERMISSION_DEFINITIONS if p[0].startswith(prefixes)]


DEFAULT_ROLE_PERMISSIONS = {
    # Admin gets every permission in the catalog
    "admin": [p[0] for p in PERMISSION_DEFINITIONS],
    "workflow_admin": _names("workflow_") + ["users_view"],
    "procurement": _names("po_", "invoice_receiving_") + ["workflow_view"],
    "quality_assurance": _names("qc_") + ["po_view", "invoice_receiving_view", "workflow_view"],
    "warehouse": _names("warehouse_", "inventory_") + ["qc_view", "workflow_view"],
    "viewer": [p[0] for p in PERMISSION_DEFINITIONS if p[2] == "view"],
}

DEFAULT_ROLE_DESCRIPTIONS = {
    "admin": "Full access to every module",
    "workflow_admin": "Maintains workflow stages, transitions and stage permissions",
    "procurement": "Raises purchase orders and records invoice receiving",
    "quality_assurance": "Performs quality control checks",
    "warehouse": "Approves goods into the warehouse and manages stock",
    "viewer": "Read-only access",
}
