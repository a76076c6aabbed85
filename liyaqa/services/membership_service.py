"""
Liyaqa - Membership Service
Members, plans, subscriptions and check-ins
"""
import logging
from datetime import datetime, date, timedelta
from typing import Optional

from sqlalchemy import or_

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError
from liyaqa.models import (
    DBMember, DBMembershipPlan, DBSubscription, MemberStatus, SubscriptionStatus, Gender,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import parse_date, parse_decimal, safe_int

logger = logging.getLogger(__name__)

MEMBER_FIELDS = ['first_name', 'last_name', 'email', 'phone', 'national_id', 'location_id', 'marketing_opt_in']


class MembershipService:

    # ---------- members ----------

    def query_members(self, tenant_id: str, status: str = None, search: str = None, location_id: str = None):
        query = DBMember.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter(DBMember.status == status)
        if location_id:
            query = query.filter(DBMember.location_id == location_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                DBMember.first_name.ilike(pattern), DBMember.last_name.ilike(pattern),
                DBMember.email.ilike(pattern), DBMember.phone.ilike(pattern)
            ))
        return query.order_by(DBMember.created_at.desc())

    def get_member(self, tenant_id: str, member_id: str) -> DBMember:
        member = db.session.get(DBMember, member_id)
        if not member or member.tenant_id != tenant_id:
            raise NotFoundError('Member', member_id)
        return member

    def create_member(self, tenant_id: str, data: dict, actor=None) -> DBMember:
        if not data.get('first_name'):
            raise ValidationError('first_name is required')
        email = (data.get('email') or '').strip().lower() or None
        if email and DBMember.query.filter_by(tenant_id=tenant_id, email=email).first():
            raise ConflictError(f'A member with email {email} already exists')

        member = DBMember(tenant_id=tenant_id, first_name=data['first_name'])
        self._apply(member, dict(data, email=email))
        save(member)
        audit_service.log_create(audit_service.RESOURCE_MEMBER, member.id, member.full_name,
                                 actor=actor, tenant_id=tenant_id)

        from liyaqa.services.marketing.trigger_service import trigger_service
        trigger_service.on_member_created(member)
        return member

    def update_member(self, member: DBMember, data: dict, actor=None) -> DBMember:
        if 'email' in data:
            data = dict(data, email=(data.get('email') or '').strip().lower() or None)
        self._apply(member, data)
        commit()
        audit_service.log_update(audit_service.RESOURCE_MEMBER, member.id, member.full_name,
                                 actor=actor, tenant_id=member.tenant_id)
        return member

    def delete_member(self, member: DBMember, actor=None):
        # Members with history are deactivated rather than removed
        member.status = MemberStatus.INACTIVE
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_MEMBER, member.id, member.full_name,
                                        MemberStatus.ACTIVE, MemberStatus.INACTIVE,
                                        actor=actor, tenant_id=member.tenant_id)

    def check_in(self, member: DBMember, at: Optional[datetime] = None) -> DBMember:
        if member.status != MemberStatus.ACTIVE:
            raise ValidationError(f'Member is {member.status}')
        member.last_check_in_at = at or datetime.utcnow()
        commit()
        return member

    def _apply(self, member: DBMember, data: dict):
        for field in MEMBER_FIELDS:
            if field in data:
                setattr(member, field, data[field])
        if 'gender' in data:
            gender = (data['gender'] or '').lower() or None
            if gender and gender not in Gender.ALL:
                raise ValidationError('gender must be male or female')
            member.gender = gender
        if 'date_of_birth' in data:
            member.date_of_birth = parse_date(data['date_of_birth'], 'date_of_birth')
        if 'preferred_language' in data:
            if data['preferred_language'] not in ('en', 'ar'):
                raise ValidationError('preferred_language must be en or ar')
            member.preferred_language = data['preferred_language']
        if 'status' in data:
            if data['status'] not in MemberStatus.ALL:
                raise ValidationError(f"status must be one of: {', '.join(MemberStatus.ALL)}")
            member.status = data['status']
        if 'tags' in data:
            if not isinstance(data['tags'], list):
                raise ValidationError('tags must be a list')
            member.set_tags([str(tag) for tag in data['tags']])
        if 'joined_at' in data and data['joined_at']:
            joined = parse_date(data['joined_at'], 'joined_at')
            member.joined_at = datetime.combine(joined, datetime.min.time())

    # ---------- plans ----------

    def list_plans(self, tenant_id: str, active_only: bool = False):
        query = DBMembershipPlan.query.filter_by(tenant_id=tenant_id)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(DBMembershipPlan.price).all()

    def get_plan(self, tenant_id: str, plan_id: str) -> DBMembershipPlan:
        plan = db.session.get(DBMembershipPlan, plan_id)
        if not plan or plan.tenant_id != tenant_id:
            raise NotFoundError('Membership plan', plan_id)
        return plan

    def create_plan(self, tenant_id: str, data: dict, actor=None) -> DBMembershipPlan:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        duration = safe_int(data.get('duration_days'), 0)
        if duration <= 0:
            raise ValidationError('duration_days must be a positive integer')
        plan = DBMembershipPlan(
            tenant_id=tenant_id,
            name_en=data['name_en'],
            name_ar=data.get('name_ar'),
            price=parse_decimal(data.get('price'), 'price', default='0', min_val=0),
            duration_days=duration
        )
        save(plan)
        return plan

    def update_plan(self, plan: DBMembershipPlan, data: dict) -> DBMembershipPlan:
        for field in ('name_en', 'name_ar'):
            if field in data:
                setattr(plan, field, data[field])
        if 'price' in data:
            plan.price = parse_decimal(data['price'], 'price', min_val=0)
        if 'duration_days' in data:
            duration = safe_int(data['duration_days'], 0)
            if duration <= 0:
                raise ValidationError('duration_days must be a positive integer')
            plan.duration_days = duration
        if 'is_active' in data:
            plan.is_active = bool(data['is_active'])
        commit()
        return plan

    # ---------- subscriptions ----------

    def list_subscriptions(self, tenant_id: str, member_id: str = None, status: str = None):
        query = DBSubscription.query.filter_by(tenant_id=tenant_id)
        if member_id:
            query = query.filter_by(member_id=member_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(DBSubscription.start_date.desc())

    def get_subscription(self, tenant_id: str, subscription_id: str) -> DBSubscription:
        subscription = db.session.get(DBSubscription, subscription_id)
        if not subscription or subscription.tenant_id != tenant_id:
            raise NotFoundError('Subscription', subscription_id)
        return subscription

    def create_subscription(self, tenant_id: str, data: dict, actor=None) -> DBSubscription:
        if not data.get('member_id') or not data.get('plan_id'):
            raise ValidationError('member_id and plan_id are required')
        member = self.get_member(tenant_id, data['member_id'])
        plan = self.get_plan(tenant_id, data['plan_id'])
        if not plan.is_active:
            raise ValidationError('Membership plan is not active')

        start = parse_date(data.get('start_date'), 'start_date') or date.today()
        end = start + timedelta(days=plan.duration_days)
        subscription = DBSubscription(
            tenant_id=tenant_id,
            member_id=member.id,
            plan_id=plan.id,
            start_date=start,
            end_date=end,
            auto_renew=bool(data.get('auto_renew', False))
        )
        if member.status == MemberStatus.INACTIVE:
            member.status = MemberStatus.ACTIVE
        save(subscription)
        audit_service.log_create('subscription', subscription.id, plan.name_en, actor=actor, tenant_id=tenant_id,
                                 new_value={'member_id': member.id, 'end_date': end.isoformat()})
        return subscription

    def cancel_subscription(self, subscription: DBSubscription, actor=None) -> DBSubscription:
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise ValidationError(f'Subscription is {subscription.status}')
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = datetime.utcnow()
        commit()
        audit_service.log_status_change('subscription', subscription.id, subscription.member_id,
                                        SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED,
                                        actor=actor, tenant_id=subscription.tenant_id)
        return subscription

    def expire_subscriptions(self, today: date = None) -> int:
        """Mark active subscriptions past their end date as expired"""
        today = today or date.today()
        due = DBSubscription.query.filter(
            DBSubscription.status == SubscriptionStatus.ACTIVE,
            DBSubscription.end_date < today
        ).all()
        for subscription in due:
            subscription.status = SubscriptionStatus.EXPIRED
        commit()
        if due:
            logger.info(f"Expired {len(due)} subscriptions")
        return len(due)


membership_service = MembershipService()
