"""
Liyaqa - Tenant Service
Provisioning and lifecycle of customer tenants
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import or_

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError
from liyaqa.models import DBTenant, DBUser, DBOrganization, TenantStatus, UserRole
from liyaqa.services.audit_service import audit_service
from liyaqa.services.auth_service import generate_password, validate_password
from liyaqa.utils import parse_decimal

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
TRANSITIONS = {
    TenantStatus.ACTIVE: [TenantStatus.TRIAL, TenantStatus.SUSPENDED, TenantStatus.DEACTIVATED],
    TenantStatus.SUSPENDED: [TenantStatus.TRIAL, TenantStatus.ACTIVE],
    TenantStatus.DEACTIVATED: [TenantStatus.TRIAL, TenantStatus.ACTIVE, TenantStatus.SUSPENDED],
    TenantStatus.ARCHIVED: [TenantStatus.DEACTIVATED],
}

UPDATABLE_FIELDS = ['name', 'name_ar', 'plan_name', 'city', 'contact_email', 'contact_phone']


def slugify(value: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', (value or '').lower()).strip('-')
    return slug[:90] or 'tenant'


class TenantService:

    def provision(self, data: dict, actor=None) -> dict:
        """
        Create a tenant with its first organization and admin user.

        Returns a dict with the tenant, organization, admin user and, when
        no admin password was supplied, the generated one (shown once).
        """
        name = (data.get('name') or '').strip()
        admin_email = (data.get('admin_email') or '').strip().lower()
        if not name:
            raise ValidationError('name is required')
        if not admin_email:
            raise ValidationError('admin_email is required')

        slug = slugify(data.get('slug') or name)
        if DBTenant.query.filter_by(slug=slug).first():
            raise ConflictError(f"Tenant slug '{slug}' is already taken")
        if DBUser.query.filter_by(email=admin_email).first():
            raise ConflictError(f'A user with email {admin_email} already exists')

        password = data.get('admin_password')
        generated = None
        if password:
            valid, error = validate_password(password)
            if not valid:
                raise ValidationError(error)
        else:
            generated = password = generate_password()

        trial_days = current_app.config.get('TRIAL_DAYS', 14)
        tenant = DBTenant(
            name=name,
            slug=slug,
            name_ar=data.get('name_ar'),
            plan_name=data.get('plan_name') or 'starter',
            monthly_price_sar=parse_decimal(data.get('monthly_price_sar'), 'monthly_price_sar',
                                            default='0', min_val=0),
            city=data.get('city'),
            contact_email=data.get('contact_email') or admin_email,
            contact_phone=data.get('contact_phone'),
            trial_ends_at=datetime.utcnow() + timedelta(days=trial_days)
        )
        organization = DBOrganization(
            tenant_id=tenant.id,
            name_en=data.get('organization_name') or name,
            name_ar=data.get('name_ar'),
            vat_number=data.get('vat_number'),
            cr_number=data.get('cr_number')
        )
        admin = DBUser(
            email=admin_email,
            name=data.get('admin_name') or 'Administrator',
            password=password,
            role=UserRole.ADMIN,
            tenant_id=tenant.id
        )
        db.session.add(tenant)
        db.session.flush()
        db.session.add_all([organization, admin])
        commit()

        audit_service.log_create(audit_service.RESOURCE_TENANT, tenant.id, tenant.name,
                                 actor=actor, tenant_id=tenant.id,
                                 new_value={'plan_name': tenant.plan_name, 'admin_email': admin_email})
        logger.info(f"Provisioned tenant {tenant.slug} ({tenant.id})")

        return {
            'tenant': tenant,
            'organization': organization,
            'admin': admin,
            'generated_password': generated
        }

    def get(self, tenant_id: str) -> DBTenant:
        tenant = db.session.get(DBTenant, tenant_id)
        if not tenant:
            raise NotFoundError('Tenant', tenant_id)
        return tenant

    def query(self, status: Optional[str] = None, search: Optional[str] = None, plan_name: Optional[str] = None):
        query = DBTenant.query
        if status:
            if status not in TenantStatus.ALL:
                raise ValidationError(f'Invalid status: {status}')
            query = query.filter(DBTenant.status == status)
        if plan_name:
            query = query.filter(DBTenant.plan_name == plan_name)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(DBTenant.name.ilike(pattern), DBTenant.slug.ilike(pattern),
                                     DBTenant.contact_email.ilike(pattern)))
        return query.order_by(DBTenant.created_at.desc())

    def update(self, tenant: DBTenant, data: dict, actor=None) -> DBTenant:
        old = tenant.to_dict()
        for field in UPDATABLE_FIELDS:
            if field in data:
                setattr(tenant, field, data[field])
        if 'monthly_price_sar' in data:
            tenant.monthly_price_sar = parse_decimal(data['monthly_price_sar'], 'monthly_price_sar', min_val=0)
        commit()
        audit_service.log_update(audit_service.RESOURCE_TENANT, tenant.id, tenant.name, actor=actor,
                                 tenant_id=tenant.id, old_value=old, new_value=tenant.to_dict())
        return tenant

    def activate(self, tenant: DBTenant, actor=None) -> DBTenant:
        old_status = self._transition(tenant, TenantStatus.ACTIVE)
        tenant.activated_at = datetime.utcnow()
        tenant.suspended_at = None
        tenant.deactivated_at = None
        tenant.deactivation_reason = None
        self._finish(tenant, old_status, actor)
        return tenant

    def suspend(self, tenant: DBTenant, reason: str = None, actor=None) -> DBTenant:
        old_status = self._transition(tenant, TenantStatus.SUSPENDED)
        tenant.suspended_at = datetime.utcnow()
        self._finish(tenant, old_status, actor, reason)
        return tenant

    def deactivate(self, tenant: DBTenant, reason: str, actor=None) -> DBTenant:
        if not reason or not reason.strip():
            raise ValidationError('A deactivation reason is required')
        old_status = self._transition(tenant, TenantStatus.DEACTIVATED)
        tenant.deactivated_at = datetime.utcnow()
        tenant.deactivation_reason = reason.strip()
        self._finish(tenant, old_status, actor, reason)
        return tenant

    def archive(self, tenant: DBTenant, actor=None) -> DBTenant:
        old_status = self._transition(tenant, TenantStatus.ARCHIVED)
        tenant.archived_at = datetime.utcnow()
        self._finish(tenant, old_status, actor)
        return tenant

    @staticmethod
    def _transition(tenant: DBTenant, target: str) -> str:
        if tenant.status not in TRANSITIONS[target]:
            raise ValidationError(f'Cannot change tenant status from {tenant.status} to {target}')
        old_status = tenant.status
        tenant.status = target
        return old_status

    @staticmethod
    def _finish(tenant: DBTenant, old_status: str, actor, reason: str = None):
        commit()
        audit_service.log_status_change(
            audit_service.RESOURCE_TENANT, tenant.id, tenant.name, old_status, tenant.status,
            actor=actor, tenant_id=tenant.id, metadata={'reason': reason} if reason else None
        )
        logger.info(f"Tenant {tenant.slug}: {old_status} -> {tenant.status}")


tenant_service = TenantService()
