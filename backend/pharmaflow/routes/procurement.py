# Overview: Flask API routes for procurement documents (create and fetch).

"""
Procurement document endpoints.

Documents are created at their configured initial stage. Stage changes
never happen here: clients call /api/workflow/execute.
"""

from flask import Blueprint, request, jsonify, g

from ..api_errors import error_response
from ..decorators import require_auth, require_permission
from ..services import procurement_service
from ..validation import DomainError

procurement_bp = Blueprint("procurement", __name__, url_prefix="/api")


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

@procurement_bp.post("/purchase-orders")
@require_auth
@require_permission("po_create")
def create_purchase_order():
    """
    Request body:
    {
        "supplier_name": str,
        "supplier_reference": str (optional),
        "payment_terms": str (optional),
        "remarks": str (optional),
        "lines": [{"product_name": str, "product_code": str?, "quantity": int, "unit_price_cents": int?}]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        po = procurement_service.create_purchase_order(data, created_by=g.current_user)
    except DomainError as e:
        return error_response(e)
    return jsonify(po.to_dict()), 201


@procurement_bp.get("/purchase-orders/<int:po_id>")
@require_auth
@require_permission("po_view")
def get_purchase_order(po_id: int):
    try:
        po = procurement_service.get_purchase_order(po_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(po.to_dict())


# =============================================================================
# INVOICE RECEIVING
# =============================================================================

@procurement_bp.post("/invoice-receivings")
@require_auth
@require_permission("invoice_receiving_create")
def create_invoice_receiving():
    """
    Request body:
    {
        "purchase_order_id": int,
        "invoice_number": str,
        "invoice_amount_cents": int (optional),
        "remarks": str (optional),
        "lines": [{"purchase_order_line_id": int, "received_quantity": int, "batch_no": str?, "status": str?}]
    }

    Recomputes the purchase order's received quantities in the same transaction.
    """
    data = request.get_json(silent=True) or {}
    try:
        receiving = procurement_service.create_invoice_receiving(data, created_by=g.current_user)
    except DomainError as e:
        return error_response(e)
    return jsonify(receiving.to_dict()), 201


@procurement_bp.get("/invoice-receivings/<int:receiving_id>")
@require_auth
@require_permission("invoice_receiving_view")
def get_invoice_receiving(receiving_id: int):
    try:
        receiving = procurement_service.get_invoice_receiving(receiving_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(receiving.to_dict())


# =============================================================================
# QUALITY CONTROL
# =============================================================================

@procurement_bp.post("/quality-controls")
@require_auth
@require_permission("qc_create")
def create_quality_control():
    data = request.get_json(silent=True) or {}
    try:
        qc = procurement_service.create_quality_control(data, created_by=g.current_user)
    except DomainError as e:
        return error_response(e)
    return jsonify(qc.to_dict()), 201


@procurement_bp.get("/quality-controls/<int:qc_id>")
@require_auth
@require_permission("qc_view")
def get_quality_control(qc_id: int):
    try:
        qc = procurement_service.get_quality_control(qc_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(qc.to_dict())


# =============================================================================
# WAREHOUSE APPROVAL
# =============================================================================

@procurement_bp.post("/warehouse-approvals")
@require_auth
@require_permission("warehouse_create")
def create_warehouse_approval():
    data = request.get_json(silent=True) or {}
    try:
        approval = procurement_service.create_warehouse_approval(data, created_by=g.current_user)
    except DomainError as e:
        return error_response(e)
    return jsonify(approval.to_dict()), 201


@procurement_bp.get("/warehouse-approvals/<int:approval_id>")
@require_auth
@require_permission("warehouse_view")
def get_warehouse_approval(approval_id: int):
    try:
        approval = procurement_service.get_warehouse_approval(approval_id)
    except DomainError as e:
        return error_response(e)
    return jsonify(approval.to_dict())
