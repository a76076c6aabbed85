"""
Liyaqa - Campaign Trigger Service

Matches members against the trigger of every active campaign and enrolls
them. Daily triggers match an exact day (e.g. subscriptions ending in
exactly `days` days) so each member is picked up once per occurrence.
"""
import logging
from datetime import datetime, date, timedelta
from typing import List

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from liyaqa.database import db
from liyaqa.models import (
    DBCampaign, DBMember, DBSubscription, DBInvoice,
    CampaignStatus, TriggerType, MemberStatus, SubscriptionStatus, InvoiceStatus,
)
from liyaqa.services.marketing.execution_service import execution_service
from liyaqa.services.marketing.segment_service import segment_service

logger = logging.getLogger(__name__)


def _start_of(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())


class TriggerService:

    def active_campaigns(self, trigger_type: str, tenant_id: str = None) -> List[DBCampaign]:
        query = DBCampaign.query.filter(
            DBCampaign.status == CampaignStatus.ACTIVE,
            DBCampaign.trigger_type == trigger_type,
            DBCampaign.is_template.is_(False)
        )
        if tenant_id:
            query = query.filter(DBCampaign.tenant_id == tenant_id)
        return query.all()

    def on_member_created(self, member: DBMember) -> int:
        """Enroll a newly created member into welcome campaigns"""
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.MEMBER_CREATED, member.tenant_id):
            try:
                if execution_service.enroll_member(campaign, member, once=True, source=TriggerType.MEMBER_CREATED):
                    enrolled += 1
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Welcome enrollment failed for member {member.id} in {campaign.id}: {e}")
        return enrolled

    # ---------- daily ----------

    def run_daily_triggers(self, today: date = None) -> dict:
        today = today or date.today()
        triggers = [
            (TriggerType.DAYS_BEFORE_EXPIRY, self.trigger_days_before_expiry),
            (TriggerType.DAYS_AFTER_EXPIRY, self.trigger_days_after_expiry),
            (TriggerType.BIRTHDAY, self.trigger_birthdays),
            (TriggerType.DAYS_INACTIVE, self.trigger_inactivity),
            (TriggerType.MEMBER_CREATED, self.trigger_new_members),
            (TriggerType.PAYMENT_FAILED, self.trigger_payment_failed),
        ]
        results = {}
        for trigger_type, trigger in triggers:
            try:
                results[trigger_type] = trigger(today)
            except Exception as e:
                db.session.rollback()
                logger.error(f"Campaign trigger {trigger_type} failed: {e}")
                results[trigger_type] = None
        logger.info(f"Daily campaign triggers: {results}")
        return results

    def _enroll_all(self, campaign: DBCampaign, members, **kwargs) -> int:
        enrolled = 0
        for member in members:
            if member.status != MemberStatus.ACTIVE and campaign.trigger_type not in (
                TriggerType.DAYS_AFTER_EXPIRY, TriggerType.PAYMENT_FAILED
            ):
                continue
            if execution_service.enroll_member(campaign, member, source=campaign.trigger_type, **kwargs):
                enrolled += 1
        return enrolled

    def _subscription_members(self, campaign: DBCampaign, status: str, end_date: date) -> List[DBMember]:
        query = DBMember.query.join(DBSubscription, DBSubscription.member_id == DBMember.id).filter(
            DBSubscription.tenant_id == campaign.tenant_id,
            DBSubscription.status == status,
            DBSubscription.end_date == end_date
        )
        plan_ids = campaign.get_trigger_config().get('plan_ids')
        if plan_ids:
            query = query.filter(DBSubscription.plan_id.in_(plan_ids))
        return query.distinct().all()

    def trigger_days_before_expiry(self, today: date) -> int:
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.DAYS_BEFORE_EXPIRY):
            days = campaign.trigger_days
            if days is None:
                continue
            members = self._subscription_members(campaign, SubscriptionStatus.ACTIVE, today + timedelta(days=days))
            enrolled += self._enroll_all(campaign, members)
        return enrolled

    def trigger_days_after_expiry(self, today: date) -> int:
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.DAYS_AFTER_EXPIRY):
            days = campaign.trigger_days
            if days is None:
                continue
            members = self._subscription_members(campaign, SubscriptionStatus.EXPIRED, today - timedelta(days=days))
            renewed = {
                row[0] for row in db.session.query(DBSubscription.member_id).filter(
                    DBSubscription.tenant_id == campaign.tenant_id,
                    DBSubscription.status == SubscriptionStatus.ACTIVE,
                    DBSubscription.end_date >= today
                )
            }
            enrolled += self._enroll_all(campaign, [m for m in members if m.id not in renewed])
        return enrolled

    def trigger_birthdays(self, today: date) -> int:
        enrolled = 0
        campaigns = self.active_campaigns(TriggerType.BIRTHDAY)
        if not campaigns:
            return 0
        leap_day_today = today.month == 2 and today.day == 28 and not _is_leap(today.year)
        for campaign in campaigns:
            candidates = DBMember.query.filter(
                DBMember.tenant_id == campaign.tenant_id,
                DBMember.date_of_birth.isnot(None)
            ).all()
            members = [
                m for m in candidates
                if (m.date_of_birth.month, m.date_of_birth.day) == (today.month, today.day)
                or (leap_day_today and (m.date_of_birth.month, m.date_of_birth.day) == (2, 29))
            ]
            # Once per calendar year
            enrolled += self._enroll_all(campaign, members, once=True, since=_start_of(date(today.year, 1, 1)))
        return enrolled

    def trigger_inactivity(self, today: date) -> int:
        """Active members who have not checked in for `days` days, or never have"""
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.DAYS_INACTIVE):
            days = campaign.trigger_days
            if days is None:
                continue
            cutoff = _start_of(today - timedelta(days=days))
            members = DBMember.query.filter(
                DBMember.tenant_id == campaign.tenant_id,
                DBMember.status == MemberStatus.ACTIVE,
                or_(DBMember.last_check_in_at.is_(None), DBMember.last_check_in_at < cutoff)
            ).all()
            for member in members:
                # Once per inactivity spell: a new check-in starts a new spell
                since = member.last_check_in_at or member.joined_at
                if execution_service.enroll_member(campaign, member, once=True, since=since,
                                                   source=TriggerType.DAYS_INACTIVE):
                    enrolled += 1
        return enrolled

    def trigger_new_members(self, today: date) -> int:
        """Catch-up for members created while a welcome campaign was inactive or by import"""
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.MEMBER_CREATED):
            members = DBMember.query.filter(
                DBMember.tenant_id == campaign.tenant_id,
                DBMember.joined_at >= _start_of(today),
                DBMember.joined_at < _start_of(today + timedelta(days=1))
            ).all()
            enrolled += self._enroll_all(campaign, members, once=True)
        return enrolled

    def trigger_payment_failed(self, today: date) -> int:
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.PAYMENT_FAILED):
            overdue = db.session.query(
                DBInvoice.member_id, func.min(DBInvoice.due_date)
            ).filter(
                DBInvoice.tenant_id == campaign.tenant_id,
                DBInvoice.status == InvoiceStatus.OVERDUE
            ).group_by(DBInvoice.member_id).all()
            for member_id, first_due in overdue:
                member = db.session.get(DBMember, member_id)
                if not member:
                    continue
                # Once per overdue episode
                since = _start_of(first_due) if first_due else None
                if execution_service.enroll_member(campaign, member, once=True, since=since,
                                                   source=TriggerType.PAYMENT_FAILED):
                    enrolled += 1
        return enrolled

    # ---------- hourly ----------

    def run_segment_triggers(self) -> dict:
        """Refresh dynamic segments and enroll newly matching members of segment campaigns"""
        results = segment_service.recalculate_all()
        enrolled = 0
        for campaign in self.active_campaigns(TriggerType.SEGMENT):
            if not campaign.segment_id:
                continue
            segment = segment_service.get_segment(campaign.tenant_id, campaign.segment_id)
            enrolled += execution_service.enroll_segment(campaign, segment, once=True)['enrolled']
        results['segment_enrollments'] = enrolled
        return results


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


trigger_service = TriggerService()
