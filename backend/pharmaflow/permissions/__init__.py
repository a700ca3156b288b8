# Overview: Permission catalog package.
# Re-exports all public APIs for convenient imports.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    PURCHASE_ORDER_PERMISSIONS,
    INVOICE_RECEIVING_PERMISSIONS,
    QUALITY_CONTROL_PERMISSIONS,
    WAREHOUSE_PERMISSIONS,
    INVENTORY_PERMISSIONS,
    WORKFLOW_PERMISSIONS,
    USER_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLE_DESCRIPTIONS

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "PURCHASE_ORDER_PERMISSIONS",
    "INVOICE_RECEIVING_PERMISSIONS",
    "QUALITY_CONTROL_PERMISSIONS",
    "WAREHOUSE_PERMISSIONS",
    "INVENTORY_PERMISSIONS",
    "WORKFLOW_PERMISSIONS",
    "USER_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "DEFAULT_ROLE_DESCRIPTIONS",
]
