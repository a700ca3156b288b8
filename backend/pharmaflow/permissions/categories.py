# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    PURCHASE_ORDERS = "PURCHASE_ORDERS"
    INVOICE_RECEIVING = "INVOICE_RECEIVING"
    QUALITY_CONTROL = "QUALITY_CONTROL"
    WAREHOUSE = "WAREHOUSE"
    INVENTORY = "INVENTORY"
    WORKFLOW = "WORKFLOW"
    USERS = "USERS"
