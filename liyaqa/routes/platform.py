"""
Liyaqa - Platform Routes
Tenant lifecycle, API keys, impersonation, analytics and jobs for platform staff
"""
from flask import Blueprint, request, jsonify, Response

from liyaqa.exceptions import ValidationError
from liyaqa.models import Permission
from liyaqa.routes.auth import token_required, platform_required
from liyaqa.services.tenant_service import tenant_service
from liyaqa.services.api_key_service import api_key_service
from liyaqa.services.impersonation_service import impersonation_service
from liyaqa.services.platform_analytics_service import platform_analytics_service
from liyaqa.services import scheduler_service
from liyaqa.utils import paginate

platform_bp = Blueprint('platform', __name__)


# ==========================================
# Tenants
# ==========================================

@platform_bp.route('/tenants', methods=['GET'])
@platform_required(Permission.TENANTS_VIEW)
def list_tenants(current_user):
    """GET /api/platform/tenants?status=active&search=fit&plan_name=pro&page=1"""
    query = tenant_service.query(
        status=request.args.get('status'),
        search=request.args.get('search'),
        plan_name=request.args.get('plan_name')
    )
    return jsonify(paginate(query, request, key='tenants'))


@platform_bp.route('/tenants', methods=['POST'])
@platform_required(Permission.TENANTS_MANAGE)
def provision_tenant(current_user):
    """
    Provision a tenant with its first organization and admin user

    POST /api/platform/tenants
    {
        "name": "Fitness Time",
        "name_ar": "وقت اللياقة",
        "admin_email": "owner@fitnesstime.sa",
        "plan_name": "pro",
        "monthly_price_sar": "1499.00",
        "city": "Riyadh"
    }
    """
    result = tenant_service.provision(request.get_json(silent=True) or {}, actor=current_user)
    response = {
        'tenant': result['tenant'].to_dict(),
        'organization': result['organization'].to_dict(),
        'admin': result['admin'].to_dict()
    }
    if result['generated_password']:
        response['admin_password'] = result['generated_password']
        response['warning'] = 'SAVE THIS PASSWORD - it will not be shown again!'
    return jsonify(response), 201


@platform_bp.route('/tenants/<tenant_id>', methods=['GET'])
@platform_required(Permission.TENANTS_VIEW)
def get_tenant(current_user, tenant_id):
    return jsonify(tenant_service.get(tenant_id).to_dict())


@platform_bp.route('/tenants/<tenant_id>', methods=['PUT'])
@platform_required(Permission.TENANTS_MANAGE)
def update_tenant(current_user, tenant_id):
    tenant = tenant_service.update(tenant_service.get(tenant_id), request.get_json(silent=True) or {},
                                   actor=current_user)
    return jsonify(tenant.to_dict())


@platform_bp.route('/tenants/<tenant_id>/<action>', methods=['POST'])
@platform_required(Permission.TENANTS_MANAGE)
def change_tenant_status(current_user, tenant_id, action):
    """POST /api/platform/tenants/<id>/{activate|suspend|deactivate|archive}, reason in body"""
    tenant = tenant_service.get(tenant_id)
    reason = (request.get_json(silent=True) or {}).get('reason')
    if action == 'activate':
        tenant = tenant_service.activate(tenant, actor=current_user)
    elif action == 'suspend':
        tenant = tenant_service.suspend(tenant, reason=reason, actor=current_user)
    elif action == 'deactivate':
        tenant = tenant_service.deactivate(tenant, reason, actor=current_user)
    elif action == 'archive':
        tenant = tenant_service.archive(tenant, actor=current_user)
    else:
        return jsonify({'error': f'Unknown action: {action}'}), 404
    return jsonify(tenant.to_dict())


# ==========================================
# API keys
# ==========================================

@platform_bp.route('/api-keys', methods=['GET'])
@platform_required(Permission.API_KEYS_MANAGE)
def list_api_keys(current_user):
    keys = api_key_service.list_keys(tenant_id=request.args.get('tenant_id'), status=request.args.get('status'))
    return jsonify({'api_keys': [key.to_dict() for key in keys]})


@platform_bp.route('/tenants/<tenant_id>/api-keys', methods=['GET'])
@platform_required(Permission.API_KEYS_MANAGE)
def list_tenant_api_keys(current_user, tenant_id):
    tenant_service.get(tenant_id)
    keys = api_key_service.list_keys(tenant_id=tenant_id, status=request.args.get('status'))
    return jsonify({'api_keys': [key.to_dict() for key in keys]})


@platform_bp.route('/tenants/<tenant_id>/api-keys', methods=['POST'])
@platform_required(Permission.API_KEYS_MANAGE)
def create_api_key(current_user, tenant_id):
    """The raw key is only ever returned by this call"""
    data = request.get_json(silent=True) or {}
    api_key, raw_key = api_key_service.create_key(tenant_id, data.get('name'), actor=current_user)
    return jsonify({
        'api_key': api_key.to_dict(),
        'key': raw_key,
        'warning': 'Store this key now - it will not be shown again!'
    }), 201


@platform_bp.route('/api-keys/<key_id>', methods=['DELETE'])
@platform_required(Permission.API_KEYS_MANAGE)
def revoke_api_key(current_user, key_id):
    api_key = api_key_service.revoke(api_key_service.get_key(key_id), actor=current_user)
    return jsonify(api_key.to_dict())


# ==========================================
# Impersonation
# ==========================================

@platform_bp.route('/impersonation', methods=['POST'])
@platform_required(Permission.IMPERSONATE)
def start_impersonation(current_user):
    """
    POST /api/platform/impersonation
    {"target_user_id": "user_...", "reason": "Investigating ticket #4411"}
    """
    data = request.get_json(silent=True) or {}
    if not data.get('target_user_id'):
        raise ValidationError('target_user_id is required')
    session, token = impersonation_service.start(current_user, data['target_user_id'], data.get('reason'))
    return jsonify({'session': session.to_dict(), 'token': token}), 201


@platform_bp.route('/impersonation/<session_id>/end', methods=['POST'])
@token_required
def end_impersonation(current_user, session_id):
    session = impersonation_service.end(impersonation_service.get(session_id), current_user)
    return jsonify(session.to_dict())


@platform_bp.route('/impersonation/<session_id>/force-end', methods=['POST'])
@platform_required(Permission.IMPERSONATION_ADMIN)
def force_end_impersonation(current_user, session_id):
    session = impersonation_service.force_end(impersonation_service.get(session_id), current_user)
    return jsonify(session.to_dict())


@platform_bp.route('/impersonation/active', methods=['GET'])
@platform_required(Permission.IMPERSONATE)
def active_impersonations(current_user):
    return jsonify({'sessions': [s.to_dict() for s in impersonation_service.list_active()]})


@platform_bp.route('/impersonation/history', methods=['GET'])
@platform_required(Permission.IMPERSONATE)
def impersonation_history(current_user):
    query = impersonation_service.history_query(
        status=request.args.get('status'),
        platform_user_id=request.args.get('platform_user_id'),
        tenant_id=request.args.get('tenant_id')
    )
    return jsonify(paginate(query, request, key='sessions'))


# ==========================================
# Analytics
# ==========================================

@platform_bp.route('/analytics/dashboard', methods=['GET'])
@platform_required(Permission.PLATFORM_ANALYTICS)
def analytics_dashboard(current_user):
    return jsonify(platform_analytics_service.dashboard())


@platform_bp.route('/analytics/churn', methods=['GET'])
@platform_required(Permission.PLATFORM_ANALYTICS)
def analytics_churn(current_user):
    return jsonify(platform_analytics_service.churn_analysis())


@platform_bp.route('/analytics/export', methods=['GET'])
@platform_required(Permission.PLATFORM_ANALYTICS)
def analytics_export(current_user):
    """GET /api/platform/analytics/export?type=revenue|churn|growth|full&format=csv|pdf"""
    content, filename, mimetype = platform_analytics_service.export(
        request.args.get('type', 'full'),
        request.args.get('format', 'csv'),
        actor=current_user
    )
    return Response(
        content,
        mimetype=mimetype,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


# ==========================================
# Scheduler
# ==========================================

@platform_bp.route('/scheduler/status', methods=['GET'])
@platform_required(Permission.TENANTS_MANAGE)
def scheduler_status(current_user):
    return jsonify(scheduler_service.get_scheduler_status())


@platform_bp.route('/scheduler/jobs/<job_id>/run', methods=['POST'])
@platform_required(Permission.TENANTS_MANAGE)
def run_scheduler_job(current_user, job_id):
    result = scheduler_service.run_job_now(job_id)
    return jsonify(result), (404 if 'error' in result else 200)
