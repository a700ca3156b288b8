from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .workflow import (
    WorkflowStage,
    WorkflowTransition,
    StagePermission,
    WorkflowHistoryEntry,
    stage_required_permissions,
    stage_next_stages,
    stage_permission_grants,
)
from .procurement import (
    PurchaseOrder,
    PurchaseOrderLine,
    InvoiceReceiving,
    InvoiceReceivingLine,
    QualityControl,
    WarehouseApproval,
)
from .audit import AuditLog, Notification

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'WorkflowStage', 'WorkflowTransition', 'StagePermission', 'WorkflowHistoryEntry',
    'stage_required_permissions', 'stage_next_stages', 'stage_permission_grants',
    'PurchaseOrder', 'PurchaseOrderLine', 'InvoiceReceiving', 'InvoiceReceivingLine',
    'QualityControl', 'WarehouseApproval',
    'AuditLog', 'Notification',
]
