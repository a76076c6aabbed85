"""
Liyaqa - Authentication Service
Password rules, JWT issuing/verification and staff user management
"""
import logging
import re
import secrets
import string
from datetime import datetime
from typing import Optional, List

import jwt
from flask import current_app

from liyaqa.database import db, save, commit
from liyaqa.exceptions import (
    ValidationError, AuthenticationError, PermissionDeniedError, NotFoundError, ConflictError
)
from liyaqa.models import DBUser, DBTenant, UserRole
from liyaqa.services.audit_service import audit_service

logger = logging.getLogger(__name__)


def validate_password(password):
    """
    Validate password meets security requirements.
    Returns: (is_valid: bool, error_message: str or None)
    """
    if not password:
        return False, "Password is required"
    if len(password) < 8:
        return False, "Password must be at least 8 characters"
    if not re.search(r'[A-Z]', password):
        return False, "Password must contain at least one uppercase letter"
    if not re.search(r'[a-z]', password):
        return False, "Password must contain at least one lowercase letter"
    if not re.search(r'[0-9]', password):
        return False, "Password must contain at least one number"
    return True, None


def generate_password(length: int = 16) -> str:
    """Random password that satisfies validate_password"""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    while True:
        candidate = ''.join(secrets.choice(alphabet) for _ in range(length))
        if validate_password(candidate)[0]:
            return candidate


class AuthService:
    """Token and user account operations"""

    def generate_token(self, user: DBUser, impersonation_session=None) -> str:
        expires = current_app.config['JWT_ACCESS_TOKEN_EXPIRES']
        exp = datetime.utcnow() + expires
        payload = {
            'user_id': user.id,
            'email': user.email,
            'role': user.role,
            'tenant_id': user.tenant_id,
        }
        if impersonation_session is not None:
            payload['impersonation_session_id'] = impersonation_session.id
            payload['impersonator_id'] = impersonation_session.platform_user_id
            exp = min(exp, impersonation_session.expires_at)
        payload['exp'] = exp
        return jwt.encode(payload, current_app.config['JWT_SECRET_KEY'], algorithm='HS256')

    def decode_token(self, token: str) -> dict:
        """Decode a JWT; raises jwt.ExpiredSignatureError / jwt.InvalidTokenError"""
        return jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=['HS256'])

    def authenticate(self, email: str, password: str) -> DBUser:
        user = DBUser.query.filter_by(email=(email or '').strip().lower()).first()

        if not user or not user.verify_password(password or ''):
            audit_service.log_login(
                user.id if user else None, email, success=False, error='Invalid credentials',
                tenant_id=user.tenant_id if user else None
            )
            raise AuthenticationError('Invalid email or password')

        if not user.is_active:
            audit_service.log_login(user.id, user.email, success=False, error='Account deactivated',
                                    tenant_id=user.tenant_id)
            raise AuthenticationError('Account is deactivated')

        if user.tenant_id:
            tenant = db.session.get(DBTenant, user.tenant_id)
            if not tenant or not tenant.is_operational:
                audit_service.log_login(user.id, user.email, success=False, error='Tenant not active',
                                        tenant_id=user.tenant_id)
                raise PermissionDeniedError('Your organization account is not active')

        user.last_login = datetime.utcnow()
        commit()
        audit_service.log_login(user.id, user.email, success=True, tenant_id=user.tenant_id)
        return user

    def bootstrap_super_admin(self, email: str, name: str, password: Optional[str] = None):
        """Create the first platform super admin. Returns (user, generated_password)."""
        if DBUser.query.filter_by(role=UserRole.SUPER_ADMIN).first():
            raise ConflictError('A super admin already exists. Use login instead.')

        generated = None
        if not password:
            generated = password = generate_password()
        else:
            valid, error = validate_password(password)
            if not valid:
                raise ValidationError(error)

        user = DBUser(email=email, name=name, password=password, role=UserRole.SUPER_ADMIN)
        save(user)
        logger.info(f"Bootstrapped super admin {user.email}")
        return user, generated

    def create_user(self, email: str, name: str, password: str, role: str,
                    tenant_id: Optional[str] = None, actor=None) -> DBUser:
        self._check_role_scope(role, tenant_id)
        valid, error = validate_password(password)
        if not valid:
            raise ValidationError(error)
        if DBUser.query.filter_by(email=email.strip().lower()).first():
            raise ConflictError(f'A user with email {email} already exists')

        user = DBUser(email=email, name=name, password=password, role=role, tenant_id=tenant_id)
        save(user)
        audit_service.log_create(audit_service.RESOURCE_USER, user.id, user.email,
                                 actor=actor, tenant_id=tenant_id, new_value={'role': role})
        return user

    def list_users(self, tenant_id: Optional[str]) -> List[DBUser]:
        query = DBUser.query
        if tenant_id is None:
            query = query.filter(DBUser.tenant_id.is_(None))
        else:
            query = query.filter(DBUser.tenant_id == tenant_id)
        return query.order_by(DBUser.created_at).all()

    def get_user(self, user_id: str, tenant_id: Optional[str]) -> DBUser:
        user = db.session.get(DBUser, user_id)
        if not user or user.tenant_id != tenant_id:
            raise NotFoundError('User', user_id)
        return user

    def update_user(self, user: DBUser, data: dict, actor=None) -> DBUser:
        old = user.to_dict()
        if 'name' in data and data['name']:
            user.name = data['name']
        if 'role' in data and data['role'] != user.role:
            self._check_role_scope(data['role'], user.tenant_id)
            if actor is not None and actor.id == user.id:
                raise ValidationError('You cannot change your own role')
            user.role = data['role']
        if 'is_active' in data:
            if actor is not None and actor.id == user.id and not data['is_active']:
                raise ValidationError('You cannot deactivate your own account')
            user.is_active = bool(data['is_active'])
        commit()
        audit_service.log_update(audit_service.RESOURCE_USER, user.id, user.email, actor=actor,
                                 tenant_id=user.tenant_id, old_value=old, new_value=user.to_dict())
        return user

    def deactivate_user(self, user: DBUser, actor=None) -> DBUser:
        return self.update_user(user, {'is_active': False}, actor=actor)

    def change_password(self, user: DBUser, current_password: str, new_password: str):
        if not user.verify_password(current_password or ''):
            raise AuthenticationError('Current password is incorrect')
        valid, error = validate_password(new_password)
        if not valid:
            raise ValidationError(error)
        user.set_password(new_password)
        commit()
        audit_service.log_update(audit_service.RESOURCE_USER, user.id, user.email, actor=user,
                                 changes='Password changed')

    @staticmethod
    def _check_role_scope(role: str, tenant_id: Optional[str]):
        allowed = UserRole.TENANT_ROLES if tenant_id else UserRole.PLATFORM_ROLES
        if role not in allowed:
            raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(allowed)}")


auth_service = AuthService()
