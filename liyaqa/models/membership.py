"""
Liyaqa - Membership models
Members, membership plans and subscriptions
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
import json

from sqlalchemy import String, Text, Integer, Boolean, Date, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, safe_json_loads, iso, decimal_str


class MemberStatus:
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    SUSPENDED = 'suspended'
    FROZEN = 'frozen'

    ALL = [ACTIVE, INACTIVE, SUSPENDED, FROZEN]


class SubscriptionStatus:
    ACTIVE = 'active'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'
    FROZEN = 'frozen'

    ALL = [ACTIVE, EXPIRED, CANCELLED, FROZEN]


class DBMember(db.Model):
    """Gym member (end user of a tenant)"""
    __tablename__ = 'members'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default='')
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preferred_language: Mapped[str] = mapped_column(String(5), default='ar')
    national_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=MemberStatus.ACTIVE, index=True)
    tags: Mapped[str] = mapped_column(Text, default='[]')  # JSON array
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, default=True)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    last_check_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: str, first_name: str, **kwargs):
        self.id = generate_id('member')
        self.tenant_id = tenant_id
        self.first_name = first_name
        self.last_name = ''
        self.preferred_language = 'ar'
        self.status = MemberStatus.ACTIVE
        self.tags = '[]'
        self.marketing_opt_in = True
        self.joined_at = datetime.utcnow()
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        tags = kwargs.pop('tags', None)
        if tags is not None:
            self.set_tags(tags)
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    def get_tags(self) -> List[str]:
        return safe_json_loads(self.tags, [])

    def set_tags(self, tags: List[str]):
        self.tags = json.dumps(sorted(set(tags)))

    def age_on(self, today: date) -> Optional[int]:
        if not self.date_of_birth:
            return None
        dob = self.date_of_birth
        return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'location_id': self.location_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'gender': self.gender,
            'date_of_birth': iso(self.date_of_birth),
            'preferred_language': self.preferred_language,
            'national_id': self.national_id,
            'status': self.status,
            'tags': self.get_tags(),
            'marketing_opt_in': self.marketing_opt_in,
            'joined_at': iso(self.joined_at),
            'last_check_in_at': iso(self.last_check_in_at),
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBMembershipPlan(db.Model):
    __tablename__ = 'membership_plans'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    duration_days: Mapped[int] = mapped_column(Integer, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, tenant_id: str, name_en: str, **kwargs):
        self.id = generate_id('plan')
        self.tenant_id = tenant_id
        self.name_en = name_en
        self.price = Decimal('0.00')
        self.duration_days = 30
        self.is_active = True
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'price': decimal_str(self.price),
            'duration_days': self.duration_days,
            'is_active': self.is_active,
            'created_at': iso(self.created_at)
        }


class DBSubscription(db.Model):
    __tablename__ = 'subscriptions'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), ForeignKey('members.id'), nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(String(50), ForeignKey('membership_plans.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=SubscriptionStatus.ACTIVE, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, tenant_id: str, member_id: str, plan_id: str, start_date: date, end_date: date, **kwargs):
        self.id = generate_id('sub')
        self.tenant_id = tenant_id
        self.member_id = member_id
        self.plan_id = plan_id
        self.start_date = start_date
        self.end_date = end_date
        self.status = SubscriptionStatus.ACTIVE
        self.auto_renew = False
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'member_id': self.member_id,
            'plan_id': self.plan_id,
            'status': self.status,
            'start_date': iso(self.start_date),
            'end_date': iso(self.end_date),
            'auto_renew': self.auto_renew,
            'cancelled_at': iso(self.cancelled_at),
            'created_at': iso(self.created_at)
        }
