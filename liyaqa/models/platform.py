"""
Liyaqa - Platform models
Tenants and the platform security surface: API keys, impersonation, team invites
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, iso, decimal_str


# ============================================
# Tenant
# ============================================

class TenantStatus:
    TRIAL = 'trial'
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    DEACTIVATED = 'deactivated'
    ARCHIVED = 'archived'

    OPERATIONAL = [TRIAL, ACTIVE]
    ALL = [TRIAL, ACTIVE, SUSPENDED, DEACTIVATED, ARCHIVED]


class DBTenant(db.Model):
    """A customer gym chain / club operator"""
    __tablename__ = 'tenants'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=TenantStatus.TRIAL, index=True)

    plan_name: Mapped[str] = mapped_column(String(50), default='starter')
    monthly_price_sar: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    suspended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deactivation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, name: str, slug: str, **kwargs):
        self.id = generate_id('tenant')
        self.name = name
        self.slug = slug
        self.status = TenantStatus.TRIAL
        self.plan_name = 'starter'
        self.monthly_price_sar = Decimal('0.00')
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @property
    def is_operational(self) -> bool:
        return self.status in TenantStatus.OPERATIONAL

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'name_ar': self.name_ar,
            'slug': self.slug,
            'status': self.status,
            'plan_name': self.plan_name,
            'monthly_price_sar': decimal_str(self.monthly_price_sar),
            'city': self.city,
            'contact_email': self.contact_email,
            'contact_phone': self.contact_phone,
            'trial_ends_at': iso(self.trial_ends_at),
            'activated_at': iso(self.activated_at),
            'suspended_at': iso(self.suspended_at),
            'deactivated_at': iso(self.deactivated_at),
            'archived_at': iso(self.archived_at),
            'deactivation_reason': self.deactivation_reason,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


# ============================================
# API Keys
# ============================================

class ApiKeyStatus:
    ACTIVE = 'active'
    DEACTIVATED = 'deactivated'


class DBTenantApiKey(db.Model):
    """Tenant API key; only the SHA-256 digest of the raw key is stored"""
    __tablename__ = 'tenant_api_keys'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    key_prefix: Mapped[str] = mapped_column(String(10), default='lq_')
    masked_key: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ApiKeyStatus.ACTIVE, index=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __init__(self, tenant_id: str, name: str, key_hash: str, masked_key: str, **kwargs):
        self.id = generate_id('apikey')
        self.tenant_id = tenant_id
        self.name = name
        self.key_hash = key_hash
        self.masked_key = masked_key
        self.key_prefix = 'lq_'
        self.status = ApiKeyStatus.ACTIVE
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'key_prefix': self.key_prefix,
            'masked_key': self.masked_key,
            'status': self.status,
            'created_by': self.created_by,
            'created_at': iso(self.created_at),
            'last_used_at': iso(self.last_used_at),
            'revoked_at': iso(self.revoked_at)
        }


# ============================================
# Impersonation
# ============================================

class ImpersonationStatus:
    ACTIVE = 'active'
    ENDED = 'ended'
    EXPIRED = 'expired'
    FORCE_ENDED = 'force_ended'


class DBImpersonationSession(db.Model):
    """A platform user acting as a tenant user for support"""
    __tablename__ = 'impersonation_sessions'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    platform_user_id: Mapped[str] = mapped_column(String(50), ForeignKey('users.id'), nullable=False, index=True)
    target_user_id: Mapped[str] = mapped_column(String(50), ForeignKey('users.id'), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ImpersonationStatus.ACTIVE, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __init__(self, platform_user_id: str, target_user_id: str, tenant_id: str, reason: str,
                 expires_at: datetime, **kwargs):
        self.id = generate_id('imp')
        self.platform_user_id = platform_user_id
        self.target_user_id = target_user_id
        self.tenant_id = tenant_id
        self.reason = reason
        self.expires_at = expires_at
        self.status = ImpersonationStatus.ACTIVE
        self.started_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def is_live(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return self.status == ImpersonationStatus.ACTIVE and self.expires_at > now

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'platform_user_id': self.platform_user_id,
            'target_user_id': self.target_user_id,
            'tenant_id': self.tenant_id,
            'reason': self.reason,
            'status': self.status,
            'started_at': iso(self.started_at),
            'expires_at': iso(self.expires_at),
            'ended_at': iso(self.ended_at),
            'ended_by': self.ended_by
        }


# ============================================
# Team Invites
# ============================================

class InviteStatus:
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REVOKED = 'revoked'
    EXPIRED = 'expired'


class DBTeamInvite(db.Model):
    """Invitation to join the platform team (tenant_id NULL) or a tenant team"""
    __tablename__ = 'team_invites'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=True, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=InviteStatus.PENDING, index=True)

    invited_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    accepted_user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, email: str, role: str, token_hash: str, expires_at: datetime, **kwargs):
        self.id = generate_id('invite')
        self.email = email.strip().lower()
        self.role = role
        self.token_hash = token_hash
        self.expires_at = expires_at
        self.status = InviteStatus.PENDING
        self.email_sent = False
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'email': self.email,
            'role': self.role,
            'status': self.status,
            'invited_by': self.invited_by,
            'expires_at': iso(self.expires_at),
            'accepted_at': iso(self.accepted_at),
            'revoked_at': iso(self.revoked_at),
            'email_sent': self.email_sent,
            'created_at': iso(self.created_at)
        }
