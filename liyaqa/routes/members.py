"""
Liyaqa - Member Routes
Members, check-ins, membership plans and subscriptions
"""
from flask import Blueprint, request, jsonify

from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required, resolve_tenant_id
from liyaqa.services.membership_service import membership_service
from liyaqa.services.invoice_service import invoice_service
from liyaqa.services.order_service import order_service
from liyaqa.utils import paginate, parse_datetime, safe_bool

members_bp = Blueprint('members', __name__)
plans_bp = Blueprint('plans', __name__)
subscriptions_bp = Blueprint('subscriptions', __name__)


# ==========================================
# Members  (/api/members)
# ==========================================

@members_bp.route('', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def list_members(current_user):
    """GET /api/members?status=active&search=ahmed&location_id=...&page=1"""
    tenant_id = resolve_tenant_id(current_user)
    query = membership_service.query_members(
        tenant_id,
        status=request.args.get('status'),
        search=request.args.get('search'),
        location_id=request.args.get('location_id')
    )
    return jsonify(paginate(query, request, key='members'))


@members_bp.route('', methods=['POST'])
@permission_required(Permission.MEMBERS_MANAGE)
def create_member(current_user):
    """
    POST /api/members
    {"first_name": "Noura", "last_name": "Al-Harbi", "email": "...", "gender": "female", "tags": ["vip"]}
    """
    tenant_id = resolve_tenant_id(current_user)
    member = membership_service.create_member(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(member.to_dict()), 201


@members_bp.route('/<member_id>', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def get_member(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(membership_service.get_member(tenant_id, member_id).to_dict())


@members_bp.route('/<member_id>', methods=['PUT'])
@permission_required(Permission.MEMBERS_MANAGE)
def update_member(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    member = membership_service.update_member(membership_service.get_member(tenant_id, member_id),
                                              request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(member.to_dict())


@members_bp.route('/<member_id>', methods=['DELETE'])
@permission_required(Permission.MEMBERS_MANAGE)
def delete_member(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    membership_service.delete_member(membership_service.get_member(tenant_id, member_id), actor=current_user)
    return jsonify({'message': 'Member deactivated'})


@members_bp.route('/<member_id>/check-in', methods=['POST'])
@permission_required(Permission.MEMBERS_MANAGE)
def check_in(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    at = parse_datetime(data.get('at'), 'at')
    member = membership_service.check_in(membership_service.get_member(tenant_id, member_id), at=at)
    return jsonify(member.to_dict())


@members_bp.route('/<member_id>/subscriptions', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def member_subscriptions(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    membership_service.get_member(tenant_id, member_id)
    query = membership_service.list_subscriptions(tenant_id, member_id=member_id)
    return jsonify(paginate(query, request, key='subscriptions'))


@members_bp.route('/<member_id>/invoices', methods=['GET'])
@permission_required(Permission.BILLING_VIEW)
def member_invoices(current_user, member_id):
    tenant_id = resolve_tenant_id(current_user)
    membership_service.get_member(tenant_id, member_id)
    invoices = invoice_service.member_invoices(tenant_id, member_id)
    return jsonify({'invoices': [invoice.to_dict() for invoice in invoices]})


@members_bp.route('/<member_id>/access', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def member_access(current_user, member_id):
    """Zone access the member currently holds through shop purchases"""
    tenant_id = resolve_tenant_id(current_user)
    membership_service.get_member(tenant_id, member_id)
    grants = order_service.member_access(tenant_id, member_id)
    return jsonify({'access': [grant.to_dict() for grant in grants]})


# ==========================================
# Membership plans  (/api/plans)
# ==========================================

@plans_bp.route('', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def list_plans(current_user):
    tenant_id = resolve_tenant_id(current_user)
    plans = membership_service.list_plans(tenant_id, active_only=safe_bool(request.args.get('active_only')))
    return jsonify({'plans': [plan.to_dict() for plan in plans]})


@plans_bp.route('', methods=['POST'])
@permission_required(Permission.MEMBERS_MANAGE)
def create_plan(current_user):
    """
    POST /api/plans
    {"name_en": "Monthly", "name_ar": "شهري", "price": "299.00", "duration_days": 30}
    """
    tenant_id = resolve_tenant_id(current_user)
    plan = membership_service.create_plan(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(plan.to_dict()), 201


@plans_bp.route('/<plan_id>', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def get_plan(current_user, plan_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(membership_service.get_plan(tenant_id, plan_id).to_dict())


@plans_bp.route('/<plan_id>', methods=['PUT'])
@permission_required(Permission.MEMBERS_MANAGE)
def update_plan(current_user, plan_id):
    tenant_id = resolve_tenant_id(current_user)
    plan = membership_service.update_plan(membership_service.get_plan(tenant_id, plan_id),
                                          request.get_json(silent=True) or {})
    return jsonify(plan.to_dict())


# ==========================================
# Subscriptions  (/api/subscriptions)
# ==========================================

@subscriptions_bp.route('', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def list_subscriptions(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = membership_service.list_subscriptions(
        tenant_id,
        member_id=request.args.get('member_id'),
        status=request.args.get('status')
    )
    return jsonify(paginate(query, request, key='subscriptions'))


@subscriptions_bp.route('', methods=['POST'])
@permission_required(Permission.MEMBERS_MANAGE)
def create_subscription(current_user):
    """
    POST /api/subscriptions
    {"member_id": "mem_...", "plan_id": "plan_...", "start_date": "2026-03-01"}
    """
    tenant_id = resolve_tenant_id(current_user)
    subscription = membership_service.create_subscription(tenant_id, request.get_json(silent=True) or {},
                                                          actor=current_user)
    return jsonify(subscription.to_dict()), 201


@subscriptions_bp.route('/<subscription_id>', methods=['GET'])
@permission_required(Permission.MEMBERS_VIEW)
def get_subscription(current_user, subscription_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(membership_service.get_subscription(tenant_id, subscription_id).to_dict())


@subscriptions_bp.route('/<subscription_id>/cancel', methods=['POST'])
@permission_required(Permission.MEMBERS_MANAGE)
def cancel_subscription(current_user, subscription_id):
    tenant_id = resolve_tenant_id(current_user)
    subscription = membership_service.cancel_subscription(
        membership_service.get_subscription(tenant_id, subscription_id), actor=current_user
    )
    return jsonify(subscription.to_dict())
