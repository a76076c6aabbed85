"""
Liyaqa - Organization Service
Organizations, clubs and locations of a tenant
"""
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError
from liyaqa.models import (
    DBOrganization, DBClub, DBLocation, DBGenderSchedule,
    OrganizationStatus, OrganizationType, GenderPolicy,
)
from liyaqa.services.audit_service import audit_service

logger = logging.getLogger(__name__)

ORGANIZATION_FIELDS = ['name_en', 'name_ar', 'organization_type', 'status', 'vat_number', 'cr_number',
                       'email', 'phone', 'address']
CLUB_FIELDS = ['name_en', 'name_ar', 'description', 'status']
LOCATION_FIELDS = ['name_en', 'name_ar', 'address', 'city', 'phone', 'timezone', 'status']


def _validate_vat_number(vat_number):
    # Saudi VAT registration numbers: 15 digits, starting and ending with 3
    if vat_number and not (len(vat_number) == 15 and vat_number.isdigit()
                           and vat_number.startswith('3') and vat_number.endswith('3')):
        raise ValidationError('vat_number must be 15 digits starting and ending with 3')


def _validate_timezone(name):
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f'Unknown timezone: {name}')


def _apply(instance, data: dict, fields):
    for field in fields:
        if field in data:
            setattr(instance, field, data[field])


class OrganizationService:

    # ---------- organizations ----------

    def list_organizations(self, tenant_id: str, status: str = None):
        query = DBOrganization.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(DBOrganization.name_en)

    def get_organization(self, tenant_id: str, organization_id: str) -> DBOrganization:
        organization = db.session.get(DBOrganization, organization_id)
        if not organization or organization.tenant_id != tenant_id:
            raise NotFoundError('Organization', organization_id)
        return organization

    def create_organization(self, tenant_id: str, data: dict, actor=None) -> DBOrganization:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        self._validate_organization(data)
        organization = DBOrganization(tenant_id=tenant_id, name_en=data['name_en'])
        _apply(organization, data, ORGANIZATION_FIELDS)
        save(organization)
        audit_service.log_create(audit_service.RESOURCE_ORGANIZATION, organization.id, organization.name_en,
                                 actor=actor, tenant_id=tenant_id)
        return organization

    def update_organization(self, organization: DBOrganization, data: dict, actor=None) -> DBOrganization:
        self._validate_organization(data)
        _apply(organization, data, ORGANIZATION_FIELDS)
        commit()
        audit_service.log_update(audit_service.RESOURCE_ORGANIZATION, organization.id, organization.name_en,
                                 actor=actor, tenant_id=organization.tenant_id)
        return organization

    def delete_organization(self, organization: DBOrganization, actor=None):
        if DBClub.query.filter_by(organization_id=organization.id).count():
            raise ConflictError('Organization still has clubs; delete or move them first')
        db.session.delete(organization)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_ORGANIZATION, organization.id, organization.name_en,
                                 actor=actor, tenant_id=organization.tenant_id)

    @staticmethod
    def _validate_organization(data: dict):
        if 'organization_type' in data and data['organization_type'] not in OrganizationType.ALL:
            raise ValidationError(f"organization_type must be one of: {', '.join(OrganizationType.ALL)}")
        if 'status' in data and data['status'] not in (OrganizationStatus.ACTIVE, OrganizationStatus.INACTIVE):
            raise ValidationError('status must be active or inactive')
        _validate_vat_number(data.get('vat_number'))

    # ---------- clubs ----------

    def list_clubs(self, tenant_id: str, organization_id: str = None):
        query = DBClub.query.filter_by(tenant_id=tenant_id)
        if organization_id:
            query = query.filter_by(organization_id=organization_id)
        return query.order_by(DBClub.name_en)

    def get_club(self, tenant_id: str, club_id: str) -> DBClub:
        club = db.session.get(DBClub, club_id)
        if not club or club.tenant_id != tenant_id:
            raise NotFoundError('Club', club_id)
        return club

    def create_club(self, tenant_id: str, data: dict, actor=None) -> DBClub:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        if not data.get('organization_id'):
            raise ValidationError('organization_id is required')
        self.get_organization(tenant_id, data['organization_id'])
        club = DBClub(tenant_id=tenant_id, organization_id=data['organization_id'], name_en=data['name_en'])
        _apply(club, data, CLUB_FIELDS)
        save(club)
        audit_service.log_create(audit_service.RESOURCE_CLUB, club.id, club.name_en, actor=actor, tenant_id=tenant_id)
        return club

    def update_club(self, club: DBClub, data: dict, actor=None) -> DBClub:
        _apply(club, data, CLUB_FIELDS)
        commit()
        audit_service.log_update(audit_service.RESOURCE_CLUB, club.id, club.name_en, actor=actor,
                                 tenant_id=club.tenant_id)
        return club

    def delete_club(self, club: DBClub, actor=None):
        if DBLocation.query.filter_by(club_id=club.id).count():
            raise ConflictError('Club still has locations; delete them first')
        db.session.delete(club)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_CLUB, club.id, club.name_en, actor=actor,
                                 tenant_id=club.tenant_id)

    # ---------- locations ----------

    def list_locations(self, tenant_id: str, club_id: str = None):
        query = DBLocation.query.filter_by(tenant_id=tenant_id)
        if club_id:
            query = query.filter_by(club_id=club_id)
        return query.order_by(DBLocation.name_en)

    def get_location(self, tenant_id: str, location_id: str) -> DBLocation:
        location = db.session.get(DBLocation, location_id)
        if not location or location.tenant_id != tenant_id:
            raise NotFoundError('Location', location_id)
        return location

    def create_location(self, tenant_id: str, club_id: str, data: dict, actor=None) -> DBLocation:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        self.get_club(tenant_id, club_id)
        if data.get('timezone'):
            _validate_timezone(data['timezone'])
        policy = data.get('gender_policy', GenderPolicy.MIXED)
        if policy not in GenderPolicy.ALL:
            raise ValidationError(f"gender_policy must be one of: {', '.join(GenderPolicy.ALL)}")
        location = DBLocation(tenant_id=tenant_id, club_id=club_id, name_en=data['name_en'], gender_policy=policy)
        _apply(location, data, LOCATION_FIELDS)
        save(location)
        audit_service.log_create(audit_service.RESOURCE_LOCATION, location.id, location.name_en,
                                 actor=actor, tenant_id=tenant_id)
        return location

    def update_location(self, location: DBLocation, data: dict, actor=None) -> DBLocation:
        if data.get('timezone'):
            _validate_timezone(data['timezone'])
        _apply(location, data, LOCATION_FIELDS)
        commit()
        audit_service.log_update(audit_service.RESOURCE_LOCATION, location.id, location.name_en,
                                 actor=actor, tenant_id=location.tenant_id)
        return location

    def delete_location(self, location: DBLocation, actor=None):
        DBGenderSchedule.query.filter_by(location_id=location.id).delete()
        db.session.delete(location)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_LOCATION, location.id, location.name_en,
                                 actor=actor, tenant_id=location.tenant_id)


organization_service = OrganizationService()
