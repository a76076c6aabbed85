"""
Liyaqa - Invoice Routes
VAT invoices, payments and ZATCA compliance data
"""
from flask import Blueprint, request, jsonify

from liyaqa.exceptions import ValidationError
from liyaqa.models import Permission, ZatcaStatus
from liyaqa.routes.auth import permission_required, resolve_tenant_id
from liyaqa.services.invoice_service import invoice_service
from liyaqa.services.zatca_service import zatca_service
from liyaqa.utils import paginate, safe_int

invoices_bp = Blueprint('invoices', __name__)


@invoices_bp.route('', methods=['GET'])
@permission_required(Permission.BILLING_VIEW)
def list_invoices(current_user):
    """GET /api/invoices?status=issued&member_id=...&page=1"""
    tenant_id = resolve_tenant_id(current_user)
    query = invoice_service.query_invoices(
        tenant_id,
        status=request.args.get('status'),
        member_id=request.args.get('member_id')
    )
    return jsonify(paginate(query, request, key='invoices'))


@invoices_bp.route('', methods=['POST'])
@permission_required(Permission.BILLING_MANAGE)
def create_invoice(current_user):
    """
    Create a draft invoice

    POST /api/invoices
    {
        "member_id": "mem_...",
        "line_items": [
            {"description": "Monthly membership", "quantity": 1, "unit_price": "299.00"}
        ]
    }
    """
    tenant_id = resolve_tenant_id(current_user)
    invoice = invoice_service.create_invoice(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route('/summary', methods=['GET'])
@permission_required(Permission.BILLING_VIEW)
def invoice_summary(current_user):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(invoice_service.summary(tenant_id))


@invoices_bp.route('/<invoice_id>', methods=['GET'])
@permission_required(Permission.BILLING_VIEW)
def get_invoice(current_user, invoice_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(invoice_service.get_invoice(tenant_id, invoice_id).to_dict())


@invoices_bp.route('/<invoice_id>/issue', methods=['POST'])
@permission_required(Permission.BILLING_MANAGE)
def issue_invoice(current_user, invoice_id):
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    due_days = safe_int(data['due_days'], 0, min_val=0) if data.get('due_days') is not None else None
    invoice = invoice_service.issue(invoice_service.get_invoice(tenant_id, invoice_id),
                                    actor=current_user, due_days=due_days)
    return jsonify(invoice.to_dict())


@invoices_bp.route('/<invoice_id>/pay', methods=['POST'])
@permission_required(Permission.BILLING_MANAGE)
def pay_invoice(current_user, invoice_id):
    """
    POST /api/invoices/<id>/pay
    {"payment_method": "mada", "payment_reference": "TXN-8812", "amount": "343.85"}
    """
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.pay(
        invoice_service.get_invoice(tenant_id, invoice_id),
        payment_method=data.get('payment_method'),
        payment_reference=data.get('payment_reference'),
        amount=data.get('amount'),
        actor=current_user
    )
    return jsonify(invoice.to_dict())


@invoices_bp.route('/<invoice_id>/cancel', methods=['POST'])
@permission_required(Permission.BILLING_MANAGE)
def cancel_invoice(current_user, invoice_id):
    tenant_id = resolve_tenant_id(current_user)
    invoice = invoice_service.cancel(invoice_service.get_invoice(tenant_id, invoice_id), actor=current_user)
    return jsonify(invoice.to_dict())


@invoices_bp.route('/<invoice_id>/zatca', methods=['GET'])
@permission_required(Permission.BILLING_VIEW)
def invoice_zatca(current_user, invoice_id):
    """ZATCA fields plus the decoded QR payload"""
    tenant_id = resolve_tenant_id(current_user)
    invoice = invoice_service.get_invoice(tenant_id, invoice_id)
    result = invoice.to_dict()['zatca']
    result['qr_fields'] = zatca_service.decode_qr_code(invoice.zatca_qr_code) if invoice.zatca_qr_code else None
    return jsonify(result)


@invoices_bp.route('/<invoice_id>/zatca/report', methods=['POST'])
@permission_required(Permission.BILLING_MANAGE)
def report_invoice(current_user, invoice_id):
    """Retry reporting a pending or failed invoice to ZATCA"""
    tenant_id = resolve_tenant_id(current_user)
    invoice = invoice_service.get_invoice(tenant_id, invoice_id)
    if invoice.zatca_status not in (ZatcaStatus.PENDING, ZatcaStatus.FAILED) or not invoice.zatca_qr_code:
        raise ValidationError(f'Invoice cannot be reported (zatca status: {invoice.zatca_status})')
    status = zatca_service.report_invoice(invoice)
    return jsonify({'invoice_id': invoice.id, 'zatca_status': status})
