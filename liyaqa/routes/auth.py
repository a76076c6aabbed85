"""
Liyaqa - Authentication Routes
Login, token verification decorators, tenant context and staff users
"""
from functools import wraps

import jwt
from flask import Blueprint, request, jsonify, current_app, g

from liyaqa.database import db
from liyaqa.exceptions import ValidationError, NotFoundError, PermissionDeniedError
from liyaqa.models import DBUser, DBTenant, Permission
from liyaqa.services.auth_service import auth_service
from liyaqa.services.api_key_service import api_key_service
from liyaqa.services.impersonation_service import impersonation_service

auth_bp = Blueprint('auth', __name__)


def _bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header.split(' ', 1)[1].strip()
    return None


def token_required(f):
    """
    Decorator to require a valid JWT, or a tenant API key in X-API-Key.
    Passes the authenticated principal as the first argument.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()

        if not token:
            raw_key = request.headers.get('X-API-Key')
            if raw_key:
                principal = api_key_service.authenticate(raw_key)
                if principal is None:
                    return jsonify({'error': 'Invalid API key'}), 401
                g.current_user = principal
                return f(principal, *args, **kwargs)
            return jsonify({'error': 'Token is missing'}), 401

        try:
            payload = auth_service.decode_token(token)
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'Token has expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'error': 'Invalid token'}), 401

        current_user = db.session.get(DBUser, payload.get('user_id'))
        if not current_user:
            return jsonify({'error': 'User not found'}), 401
        if not current_user.is_active:
            return jsonify({'error': 'User is deactivated'}), 401

        session_id = payload.get('impersonation_session_id')
        if session_id:
            if not impersonation_service.is_session_live(session_id):
                return jsonify({'error': 'Impersonation session has ended'}), 401
            g.impersonation_session_id = session_id
            g.impersonator_id = payload.get('impersonator_id')

        g.current_user = current_user
        return f(current_user, *args, **kwargs)

    return decorated


def permission_required(permission: str):
    """Decorator to require a permission of the authenticated principal"""
    def decorator(f):
        @wraps(f)
        @token_required
        def decorated(current_user, *args, **kwargs):
            if not current_user.has_permission(permission):
                return jsonify({'error': 'Permission denied', 'required': permission}), 403
            return f(current_user, *args, **kwargs)
        return decorated
    return decorator


def platform_required(permission: str):
    """Like permission_required, but only platform staff qualify"""
    def decorator(f):
        @wraps(f)
        @permission_required(permission)
        def decorated(current_user, *args, **kwargs):
            if not current_user.is_platform_user:
                return jsonify({'error': 'Platform access required'}), 403
            return f(current_user, *args, **kwargs)
        return decorated
    return decorator


def resolve_tenant_id(current_user) -> str:
    """
    Tenant the request acts on. Tenant principals are bound to their own
    tenant; platform users select one with the X-Tenant-ID header.
    """
    requested = request.headers.get('X-Tenant-ID') or request.args.get('tenant_id')
    if current_user.tenant_id:
        if requested and requested != current_user.tenant_id:
            raise PermissionDeniedError('You cannot act on another tenant')
        return current_user.tenant_id
    if not requested:
        raise ValidationError('X-Tenant-ID header is required for platform users')
    if not db.session.get(DBTenant, requested):
        raise NotFoundError('Tenant', requested)
    return requested


# ==========================================
# Endpoints
# ==========================================

@auth_bp.route('/bootstrap', methods=['POST'])
def bootstrap():
    """
    Create the first super admin. Only works while none exists.

    POST /api/auth/bootstrap
    {"email": "...", "name": "...", "password": "..."}

    Without a password one is generated and returned once.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    if not email:
        raise ValidationError('email is required')

    user, generated = auth_service.bootstrap_super_admin(email, data.get('name') or 'Super Admin',
                                                         data.get('password'))
    response = {
        'message': 'Super admin created',
        'token': auth_service.generate_token(user),
        'user': user.to_dict()
    }
    if generated:
        response['password'] = generated
        response['warning'] = 'SAVE THIS PASSWORD - it will not be shown again!'
    return jsonify(response), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    POST /api/auth/login
    {"email": "user@example.com", "password": "..."}
    """
    data = request.get_json(silent=True) or {}
    if not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Email and password required'}), 400

    user = auth_service.authenticate(data['email'], data['password'])
    return jsonify({
        'token': auth_service.generate_token(user),
        'expires_in': int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds()),
        'user': user.to_dict()
    })


@auth_bp.route('/me', methods=['GET'])
@token_required
def me(current_user):
    result = current_user.to_dict()
    result['permissions'] = sorted(
        current_user.permissions if isinstance(current_user, DBUser) else []
    )
    if g.get('impersonation_session_id'):
        result['impersonation'] = {
            'session_id': g.impersonation_session_id,
            'impersonator_id': g.get('impersonator_id')
        }
    return jsonify(result)


@auth_bp.route('/change-password', methods=['POST'])
@token_required
def change_password(current_user):
    if not isinstance(current_user, DBUser):
        return jsonify({'error': 'API keys have no password'}), 400
    data = request.get_json(silent=True) or {}
    auth_service.change_password(current_user, data.get('current_password'), data.get('new_password'))
    return jsonify({'message': 'Password changed'})


# ==========================================
# Tenant staff users
# ==========================================

@auth_bp.route('/users', methods=['GET'])
@permission_required(Permission.USERS_MANAGE)
def list_users(current_user):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify({'users': [user.to_dict() for user in auth_service.list_users(tenant_id)]})


@auth_bp.route('/users', methods=['POST'])
@permission_required(Permission.USERS_MANAGE)
def create_user(current_user):
    """
    POST /api/auth/users
    {"email": "...", "name": "...", "password": "...", "role": "staff"}
    """
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    for field in ('email', 'name', 'password', 'role'):
        if not data.get(field):
            raise ValidationError(f'{field} is required')
    user = auth_service.create_user(data['email'], data['name'], data['password'], data['role'],
                                    tenant_id=tenant_id, actor=current_user)
    return jsonify(user.to_dict()), 201


@auth_bp.route('/users/<user_id>', methods=['PUT'])
@permission_required(Permission.USERS_MANAGE)
def update_user(current_user, user_id):
    tenant_id = resolve_tenant_id(current_user)
    user = auth_service.get_user(user_id, tenant_id)
    user = auth_service.update_user(user, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(user.to_dict())


@auth_bp.route('/users/<user_id>', methods=['DELETE'])
@permission_required(Permission.USERS_MANAGE)
def delete_user(current_user, user_id):
    tenant_id = resolve_tenant_id(current_user)
    user = auth_service.get_user(user_id, tenant_id)
    auth_service.deactivate_user(user, actor=current_user)
    return jsonify({'message': 'User deactivated'})
