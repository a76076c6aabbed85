"""
Liyaqa - Tenant API Key Service
Keys look like lq_<32 lowercase alphanumerics>; only their SHA-256 digest is stored
"""
import hashlib
import logging
import secrets
import string
from datetime import datetime
from typing import Optional, List

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import DBTenantApiKey, DBTenant, ApiKeyStatus, UserRole, ROLE_PERMISSIONS
from liyaqa.services.audit_service import audit_service

logger = logging.getLogger(__name__)

KEY_PREFIX = 'lq_'
KEY_LENGTH = 32
KEY_ALPHABET = string.ascii_lowercase + string.digits


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


class ApiKeyPrincipal:
    """Request principal for calls authenticated with a tenant API key"""

    role = UserRole.API_KEY
    is_platform_user = False

    def __init__(self, api_key: DBTenantApiKey):
        self.api_key = api_key
        self.id = api_key.id
        self.tenant_id = api_key.tenant_id
        self.email = f"api-key:{api_key.name}"
        self.name = api_key.name

    def has_permission(self, permission: str) -> bool:
        return permission in ROLE_PERMISSIONS[UserRole.API_KEY]

    def to_dict(self) -> dict:
        return {'id': self.id, 'tenant_id': self.tenant_id, 'name': self.name, 'role': self.role}


class ApiKeyService:

    def generate_raw_key(self) -> str:
        return KEY_PREFIX + ''.join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_LENGTH))

    def create_key(self, tenant_id: str, name: str, actor=None):
        """Create a key. Returns (api_key, raw_key); the raw key is never retrievable again."""
        if not name or not name.strip():
            raise ValidationError('name is required')
        if not db.session.get(DBTenant, tenant_id):
            raise NotFoundError('Tenant', tenant_id)

        raw_key = self.generate_raw_key()
        api_key = DBTenantApiKey(
            tenant_id=tenant_id,
            name=name.strip(),
            key_hash=hash_key(raw_key),
            masked_key=f"****{raw_key[-4:]}",
            created_by=getattr(actor, 'id', None)
        )
        save(api_key)

        audit_service.log(
            action=audit_service.ACTION_API_KEY_CREATE,
            resource_type=audit_service.RESOURCE_API_KEY,
            resource_id=api_key.id,
            resource_name=api_key.name,
            actor=actor,
            tenant_id=tenant_id,
            description=f"Created API key {api_key.name} ({api_key.masked_key})"
        )
        return api_key, raw_key

    def list_keys(self, tenant_id: Optional[str] = None, status: Optional[str] = None) -> List[DBTenantApiKey]:
        query = DBTenantApiKey.query
        if tenant_id:
            query = query.filter(DBTenantApiKey.tenant_id == tenant_id)
        if status:
            query = query.filter(DBTenantApiKey.status == status)
        return query.order_by(DBTenantApiKey.created_at.desc()).all()

    def get_key(self, key_id: str) -> DBTenantApiKey:
        api_key = db.session.get(DBTenantApiKey, key_id)
        if not api_key:
            raise NotFoundError('API key', key_id)
        return api_key

    def revoke(self, api_key: DBTenantApiKey, actor=None) -> DBTenantApiKey:
        if api_key.status == ApiKeyStatus.DEACTIVATED:
            raise ValidationError('API key is already revoked')
        api_key.status = ApiKeyStatus.DEACTIVATED
        api_key.revoked_at = datetime.utcnow()
        api_key.revoked_by = getattr(actor, 'id', None)
        commit()

        audit_service.log(
            action=audit_service.ACTION_API_KEY_REVOKE,
            resource_type=audit_service.RESOURCE_API_KEY,
            resource_id=api_key.id,
            resource_name=api_key.name,
            actor=actor,
            tenant_id=api_key.tenant_id,
            description=f"Revoked API key {api_key.name} ({api_key.masked_key})"
        )
        return api_key

    def authenticate(self, raw_key: str) -> Optional[ApiKeyPrincipal]:
        """Resolve a raw key to a principal; None for unknown, revoked or non-operational tenants"""
        if not raw_key or not raw_key.startswith(KEY_PREFIX):
            return None
        api_key = DBTenantApiKey.query.filter_by(key_hash=hash_key(raw_key)).first()
        if not api_key or api_key.status != ApiKeyStatus.ACTIVE:
            return None
        tenant = db.session.get(DBTenant, api_key.tenant_id)
        if not tenant or not tenant.is_operational:
            return None

        api_key.last_used_at = datetime.utcnow()
        commit()
        return ApiKeyPrincipal(api_key)


api_key_service = ApiKeyService()
