"""
Liyaqa - Audit Routes
Read access to the audit trail
"""
from flask import Blueprint, request, jsonify

from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import get_pagination_params, parse_datetime, safe_int

audit_bp = Blueprint('audit', __name__)


def _scope_tenant(current_user):
    # Platform staff see every tenant unless they filter; tenant staff only their own
    if current_user.is_platform_user:
        return request.args.get('tenant_id')
    return current_user.tenant_id


@audit_bp.route('/logs', methods=['GET'])
@permission_required(Permission.AUDIT_VIEW)
def list_logs(current_user):
    """
    GET /api/audit/logs?action=update&resource_type=member&resource_id=...&user_id=...
        &status=failure&start_date=2026-01-01T00:00:00&end_date=...&page=1&limit=50
    """
    limit, offset, page = get_pagination_params(request)
    filters = dict(
        tenant_id=_scope_tenant(current_user),
        action=request.args.get('action'),
        resource_type=request.args.get('resource_type'),
        resource_id=request.args.get('resource_id'),
        user_id=request.args.get('user_id'),
        status=request.args.get('status'),
        start_date=parse_datetime(request.args.get('start_date'), 'start_date'),
        end_date=parse_datetime(request.args.get('end_date'), 'end_date'),
    )
    logs = audit_service.get_logs(limit=limit, offset=offset, **filters)
    return jsonify({
        'logs': [entry.to_dict() for entry in logs],
        'total': audit_service.count_logs(**filters),
        'limit': limit,
        'offset': offset,
        'page': page
    })


@audit_bp.route('/stats', methods=['GET'])
@permission_required(Permission.AUDIT_VIEW)
def audit_stats(current_user):
    days = safe_int(request.args.get('days'), 30, min_val=1, max_val=365)
    return jsonify(audit_service.get_stats(tenant_id=_scope_tenant(current_user), days=days))


@audit_bp.route('/resources/<resource_type>/<resource_id>', methods=['GET'])
@permission_required(Permission.AUDIT_VIEW)
def resource_history(current_user, resource_type, resource_id):
    """Change history of one record, newest first"""
    limit = safe_int(request.args.get('limit'), 50, min_val=1, max_val=200)
    history = audit_service.get_resource_history(resource_type, resource_id,
                                                 tenant_id=_scope_tenant(current_user), limit=limit)
    return jsonify({
        'resource_type': resource_type,
        'resource_id': resource_id,
        'history': [entry.to_dict() for entry in history]
    })
