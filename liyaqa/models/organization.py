"""
Liyaqa - Organization models
Organization -> Club -> Location hierarchy with per-location gender policy
"""
from datetime import datetime, time
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, Time, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, iso


class OrganizationStatus:
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class OrganizationType:
    LLC = 'llc'
    SOLE_PROPRIETORSHIP = 'sole_proprietorship'
    CORPORATION = 'corporation'
    OTHER = 'other'

    ALL = [LLC, SOLE_PROPRIETORSHIP, CORPORATION, OTHER]


class GenderPolicy:
    MIXED = 'mixed'
    MALE_ONLY = 'male_only'
    FEMALE_ONLY = 'female_only'
    TIME_BASED = 'time_based'

    ALL = [MIXED, MALE_ONLY, FEMALE_ONLY, TIME_BASED]

    LABELS = {
        MIXED: ('Mixed', 'مختلط'),
        MALE_ONLY: ('Men only', 'رجال فقط'),
        FEMALE_ONLY: ('Women only', 'نساء فقط'),
        TIME_BASED: ('Time-based schedule', 'حسب الجدول الزمني'),
    }


class Gender:
    MALE = 'male'
    FEMALE = 'female'

    ALL = [MALE, FEMALE]


DAYS_OF_WEEK = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']


class DBOrganization(db.Model):
    """Legal entity that owns clubs; seller identity on tax invoices"""
    __tablename__ = 'organizations'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    organization_type: Mapped[str] = mapped_column(String(30), default=OrganizationType.LLC)
    status: Mapped[str] = mapped_column(String(20), default=OrganizationStatus.ACTIVE)
    vat_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cr_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: str, name_en: str, **kwargs):
        self.id = generate_id('org')
        self.tenant_id = tenant_id
        self.name_en = name_en
        self.organization_type = OrganizationType.LLC
        self.status = OrganizationStatus.ACTIVE
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'organization_type': self.organization_type,
            'status': self.status,
            'vat_number': self.vat_number,
            'cr_number': self.cr_number,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBClub(db.Model):
    __tablename__ = 'clubs'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(50), ForeignKey('organizations.id'), nullable=False, index=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OrganizationStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: str, organization_id: str, name_en: str, **kwargs):
        self.id = generate_id('club')
        self.tenant_id = tenant_id
        self.organization_id = organization_id
        self.name_en = name_en
        self.status = OrganizationStatus.ACTIVE
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'organization_id': self.organization_id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'description': self.description,
            'status': self.status,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBLocation(db.Model):
    """A physical branch of a club"""
    __tablename__ = 'locations'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    club_id: Mapped[str] = mapped_column(String(50), ForeignKey('clubs.id'), nullable=False, index=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default='Asia/Riyadh')
    gender_policy: Mapped[str] = mapped_column(String(20), default=GenderPolicy.MIXED)
    status: Mapped[str] = mapped_column(String(20), default=OrganizationStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: str, club_id: str, name_en: str, **kwargs):
        self.id = generate_id('loc')
        self.tenant_id = tenant_id
        self.club_id = club_id
        self.name_en = name_en
        self.timezone = 'Asia/Riyadh'
        self.gender_policy = GenderPolicy.MIXED
        self.status = OrganizationStatus.ACTIVE
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'club_id': self.club_id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'address': self.address,
            'city': self.city,
            'phone': self.phone,
            'timezone': self.timezone,
            'gender_policy': self.gender_policy,
            'status': self.status,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBGenderSchedule(db.Model):
    """Weekly window during which a TIME_BASED location serves one gender"""
    __tablename__ = 'gender_schedules'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(50), ForeignKey('locations.id'), nullable=False, index=True)
    day_of_week: Mapped[str] = mapped_column(String(10), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    gender: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def covers(self, day_of_week: str, moment: time) -> bool:
        return self.day_of_week == day_of_week and self.start_time <= moment < self.end_time

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'location_id': self.location_id,
            'day_of_week': self.day_of_week,
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'gender': self.gender
        }
