"""
Liyaqa - User, role and permission models
"""
from datetime import datetime
from typing import Optional
import hashlib
import secrets

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, iso


class UserRole:
    # Platform staff (no tenant)
    SUPER_ADMIN = 'super_admin'
    PLATFORM_ADMIN = 'platform_admin'
    SUPPORT = 'support'

    # Tenant staff
    ADMIN = 'admin'
    MANAGER = 'manager'
    STAFF = 'staff'
    VIEWER = 'viewer'

    PLATFORM_ROLES = [SUPER_ADMIN, PLATFORM_ADMIN, SUPPORT]
    TENANT_ROLES = [ADMIN, MANAGER, STAFF, VIEWER]

    # Principal role for requests authenticated with a tenant API key
    API_KEY = 'api_key'


class Permission:
    # Platform
    TENANTS_VIEW = 'tenants.view'
    TENANTS_MANAGE = 'tenants.manage'
    API_KEYS_MANAGE = 'api_keys.manage'
    IMPERSONATE = 'impersonation.start'
    IMPERSONATION_ADMIN = 'impersonation.admin'
    PLATFORM_ANALYTICS = 'platform.analytics'
    TEAM_MANAGE = 'team.manage'

    # Tenant
    USERS_MANAGE = 'users.manage'
    ORGANIZATIONS_VIEW = 'organizations.view'
    ORGANIZATIONS_MANAGE = 'organizations.manage'
    MEMBERS_VIEW = 'members.view'
    MEMBERS_MANAGE = 'members.manage'
    BILLING_VIEW = 'billing.view'
    BILLING_MANAGE = 'billing.manage'
    MARKETING_VIEW = 'marketing.view'
    MARKETING_MANAGE = 'marketing.manage'
    SHOP_VIEW = 'shop.view'
    SHOP_MANAGE = 'shop.manage'
    AUDIT_VIEW = 'audit.view'


_TENANT_READ = {
    Permission.ORGANIZATIONS_VIEW, Permission.MEMBERS_VIEW, Permission.BILLING_VIEW,
    Permission.MARKETING_VIEW, Permission.SHOP_VIEW,
}
_TENANT_ALL = _TENANT_READ | {
    Permission.USERS_MANAGE, Permission.ORGANIZATIONS_MANAGE, Permission.MEMBERS_MANAGE,
    Permission.BILLING_MANAGE, Permission.MARKETING_MANAGE, Permission.SHOP_MANAGE,
    Permission.AUDIT_VIEW, Permission.TEAM_MANAGE,
}
_PLATFORM_ALL = {
    Permission.TENANTS_VIEW, Permission.TENANTS_MANAGE, Permission.API_KEYS_MANAGE,
    Permission.IMPERSONATE, Permission.IMPERSONATION_ADMIN, Permission.PLATFORM_ANALYTICS,
    Permission.TEAM_MANAGE,
}

ROLE_PERMISSIONS = {
    UserRole.SUPER_ADMIN: _PLATFORM_ALL | _TENANT_ALL,
    UserRole.PLATFORM_ADMIN: (_PLATFORM_ALL - {Permission.IMPERSONATION_ADMIN}) | _TENANT_ALL,
    UserRole.SUPPORT: {Permission.TENANTS_VIEW, Permission.IMPERSONATE} | _TENANT_READ,
    UserRole.ADMIN: _TENANT_ALL,
    UserRole.MANAGER: _TENANT_READ | {
        Permission.MEMBERS_MANAGE, Permission.BILLING_MANAGE, Permission.MARKETING_MANAGE,
        Permission.SHOP_MANAGE, Permission.ORGANIZATIONS_MANAGE,
    },
    UserRole.STAFF: _TENANT_READ | {Permission.MEMBERS_MANAGE, Permission.SHOP_MANAGE},
    UserRole.VIEWER: set(_TENANT_READ),
    UserRole.API_KEY: _TENANT_READ | {Permission.MEMBERS_MANAGE, Permission.SHOP_MANAGE},
}


class DBUser(db.Model):
    """Staff account (platform team when tenant_id is NULL)"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    password_salt: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.VIEWER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __init__(self, email: str, name: str, password: str, role: str = UserRole.VIEWER, tenant_id: str = None):
        self.id = generate_id('user')
        self.tenant_id = tenant_id
        self.email = email.strip().lower()
        self.name = name
        self.role = role
        self.set_password(password)
        self.is_active = True
        self.created_at = datetime.utcnow()

    @staticmethod
    def _hash_password(password: str, salt: str) -> str:
        return hashlib.sha256(f"{password}{salt}".encode()).hexdigest()

    def verify_password(self, password: str) -> bool:
        return secrets.compare_digest(self.password_hash, self._hash_password(password, self.password_salt))

    def set_password(self, password: str):
        self.password_salt = secrets.token_hex(16)
        self.password_hash = self._hash_password(password, self.password_salt)

    @property
    def is_platform_user(self) -> bool:
        return self.tenant_id is None

    @property
    def permissions(self) -> set:
        return ROLE_PERMISSIONS.get(self.role, set())

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'is_active': self.is_active,
            'is_platform_user': self.is_platform_user,
            'created_at': iso(self.created_at),
            'last_login': iso(self.last_login)
        }
