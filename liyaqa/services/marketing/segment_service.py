"""
Liyaqa - Segment Service
Static member lists and dynamic criteria-based audiences
"""
import logging
from datetime import datetime, date, timedelta
from typing import List, Optional

from sqlalchemy import select, or_, and_

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError
from liyaqa.models import (
    DBSegment, DBSegmentMember, DBMember, DBSubscription, DBCampaign,
    SegmentType, SubscriptionStatus, MemberStatus, CampaignStatus, Gender,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import safe_int

logger = logging.getLogger(__name__)

LIST_CRITERIA = ['member_statuses', 'subscription_statuses', 'plan_ids', 'tags', 'exclude_member_ids']
DAY_CRITERIA = ['inactive_days', 'joined_within_days', 'expiring_within_days', 'expired_within_days']
CRITERIA_KEYS = LIST_CRITERIA + DAY_CRITERIA + ['has_active_subscription', 'gender', 'min_age', 'max_age']


def validate_criteria(criteria: dict) -> dict:
    """Check criteria keys and value shapes; returns a cleaned copy"""
    if not isinstance(criteria, dict):
        raise ValidationError('criteria must be an object')
    unknown = set(criteria) - set(CRITERIA_KEYS)
    if unknown:
        raise ValidationError(f"Unknown segment criteria: {', '.join(sorted(unknown))}")

    cleaned = {}
    for key, value in criteria.items():
        if value is None:
            continue
        if key in LIST_CRITERIA:
            if not isinstance(value, list):
                raise ValidationError(f'{key} must be a list')
            cleaned[key] = [str(item) for item in value]
        elif key in DAY_CRITERIA or key in ('min_age', 'max_age'):
            number = safe_int(value, -1)
            if number < 0:
                raise ValidationError(f'{key} must be a non-negative integer')
            cleaned[key] = number
        elif key == 'has_active_subscription':
            cleaned[key] = bool(value)
        elif key == 'gender':
            if value not in Gender.ALL:
                raise ValidationError('gender must be male or female')
            cleaned[key] = value

    for status in cleaned.get('member_statuses', []):
        if status not in MemberStatus.ALL:
            raise ValidationError(f'Unknown member status: {status}')
    for status in cleaned.get('subscription_statuses', []):
        if status not in SubscriptionStatus.ALL:
            raise ValidationError(f'Unknown subscription status: {status}')
    if 'min_age' in cleaned and 'max_age' in cleaned and cleaned['min_age'] > cleaned['max_age']:
        raise ValidationError('min_age cannot be greater than max_age')
    return cleaned


class SegmentService:

    def list_segments(self, tenant_id: str, segment_type: str = None, active_only: bool = False):
        query = DBSegment.query.filter_by(tenant_id=tenant_id)
        if segment_type:
            query = query.filter_by(segment_type=segment_type)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(DBSegment.created_at.desc())

    def get_segment(self, tenant_id: str, segment_id: str) -> DBSegment:
        segment = db.session.get(DBSegment, segment_id)
        if not segment or segment.tenant_id != tenant_id:
            raise NotFoundError('Segment', segment_id)
        return segment

    def create_segment(self, tenant_id: str, data: dict, actor=None) -> DBSegment:
        if not data.get('name'):
            raise ValidationError('name is required')
        segment_type = data.get('segment_type', SegmentType.DYNAMIC)
        if segment_type not in (SegmentType.STATIC, SegmentType.DYNAMIC):
            raise ValidationError('segment_type must be static or dynamic')

        segment = DBSegment(
            tenant_id=tenant_id,
            name=data['name'],
            description=data.get('description', ''),
            segment_type=segment_type,
            criteria=validate_criteria(data.get('criteria') or {}) if segment_type == SegmentType.DYNAMIC else {}
        )
        db.session.add(segment)
        if segment_type == SegmentType.STATIC and data.get('member_ids'):
            try:
                self._add_static_members(segment, data['member_ids'])
            except ValidationError:
                db.session.rollback()
                raise
        commit()
        self.recalculate(segment)

        audit_service.log_create(audit_service.RESOURCE_SEGMENT, segment.id, segment.name,
                                 actor=actor, tenant_id=tenant_id)
        return segment

    def update_segment(self, segment: DBSegment, data: dict, actor=None) -> DBSegment:
        criteria = None
        if 'criteria' in data:
            if segment.segment_type != SegmentType.DYNAMIC:
                raise ValidationError('Only dynamic segments have criteria')
            criteria = validate_criteria(data['criteria'] or {})
        for field in ('name', 'description'):
            if field in data:
                setattr(segment, field, data[field])
        if 'is_active' in data:
            segment.is_active = bool(data['is_active'])
        if criteria is not None:
            segment.set_criteria(criteria)
        commit()
        self.recalculate(segment)
        audit_service.log_update(audit_service.RESOURCE_SEGMENT, segment.id, segment.name,
                                 actor=actor, tenant_id=segment.tenant_id)
        return segment

    def delete_segment(self, segment: DBSegment, actor=None):
        in_use = DBCampaign.query.filter(
            DBCampaign.segment_id == segment.id,
            DBCampaign.status != CampaignStatus.ARCHIVED
        ).count()
        if in_use:
            raise ConflictError('Segment is used by a campaign; archive the campaign first')
        DBSegmentMember.query.filter_by(segment_id=segment.id).delete()
        db.session.delete(segment)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_SEGMENT, segment.id, segment.name,
                                 actor=actor, tenant_id=segment.tenant_id)

    # ---------- static membership ----------

    def add_members(self, segment: DBSegment, member_ids: List[str]) -> int:
        if segment.segment_type != SegmentType.STATIC:
            raise ValidationError('Members can only be added to static segments')
        added = self._add_static_members(segment, member_ids)
        commit()
        self.recalculate(segment)
        return added

    def remove_members(self, segment: DBSegment, member_ids: List[str]) -> int:
        if segment.segment_type != SegmentType.STATIC:
            raise ValidationError('Members can only be removed from static segments')
        removed = DBSegmentMember.query.filter(
            DBSegmentMember.segment_id == segment.id,
            DBSegmentMember.member_id.in_(member_ids or [])
        ).delete(synchronize_session=False)
        commit()
        self.recalculate(segment)
        return removed

    def _add_static_members(self, segment: DBSegment, member_ids: List[str]) -> int:
        if not isinstance(member_ids, list) or not member_ids:
            raise ValidationError('member_ids must be a non-empty list')
        valid_ids = {
            row[0] for row in db.session.query(DBMember.id).filter(
                DBMember.tenant_id == segment.tenant_id, DBMember.id.in_(member_ids)
            )
        }
        missing = set(member_ids) - valid_ids
        if missing:
            raise ValidationError(f"Unknown members: {', '.join(sorted(missing))}")
        existing = {
            row[0] for row in db.session.query(DBSegmentMember.member_id).filter_by(segment_id=segment.id)
        }
        added = 0
        for member_id in valid_ids - existing:
            db.session.add(DBSegmentMember(segment_id=segment.id, member_id=member_id))
            added += 1
        return added

    # ---------- evaluation ----------

    def evaluate(self, tenant_id: str, criteria: dict, today: Optional[date] = None) -> List[DBMember]:
        """Members of a tenant matching dynamic criteria"""
        today = today or date.today()
        now = datetime.combine(today, datetime.min.time())
        query = DBMember.query.filter(DBMember.tenant_id == tenant_id)

        if criteria.get('member_statuses'):
            query = query.filter(DBMember.status.in_(criteria['member_statuses']))
        if criteria.get('gender'):
            query = query.filter(DBMember.gender == criteria['gender'])
        if criteria.get('joined_within_days') is not None:
            query = query.filter(DBMember.joined_at >= now - timedelta(days=criteria['joined_within_days']))
        if criteria.get('inactive_days') is not None:
            cutoff = now - timedelta(days=criteria['inactive_days'])
            query = query.filter(or_(
                DBMember.last_check_in_at < cutoff,
                and_(DBMember.last_check_in_at.is_(None), DBMember.joined_at < cutoff)
            ))
        if criteria.get('exclude_member_ids'):
            query = query.filter(DBMember.id.notin_(criteria['exclude_member_ids']))

        subscription_filters = []
        if criteria.get('subscription_statuses'):
            subscription_filters.append(DBSubscription.status.in_(criteria['subscription_statuses']))
        if criteria.get('plan_ids'):
            subscription_filters.append(DBSubscription.plan_id.in_(criteria['plan_ids']))
        if criteria.get('expiring_within_days') is not None:
            subscription_filters.extend([
                DBSubscription.status == SubscriptionStatus.ACTIVE,
                DBSubscription.end_date >= today,
                DBSubscription.end_date <= today + timedelta(days=criteria['expiring_within_days'])
            ])
        if criteria.get('expired_within_days') is not None:
            subscription_filters.extend([
                DBSubscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED]),
                DBSubscription.end_date < today,
                DBSubscription.end_date >= today - timedelta(days=criteria['expired_within_days'])
            ])
        if subscription_filters:
            query = query.filter(DBMember.id.in_(
                select(DBSubscription.member_id).where(DBSubscription.tenant_id == tenant_id, *subscription_filters)
            ))

        if 'has_active_subscription' in criteria:
            active = select(DBSubscription.member_id).where(
                DBSubscription.tenant_id == tenant_id,
                DBSubscription.status == SubscriptionStatus.ACTIVE,
                DBSubscription.end_date >= today
            )
            if criteria['has_active_subscription']:
                query = query.filter(DBMember.id.in_(active))
            else:
                query = query.filter(DBMember.id.notin_(active))

        members = query.order_by(DBMember.joined_at).all()

        # Age and tags are evaluated in Python (date arithmetic and JSON column)
        min_age, max_age = criteria.get('min_age'), criteria.get('max_age')
        if min_age is not None or max_age is not None:
            def in_range(member):
                age = member.age_on(today)
                if age is None:
                    return False
                return (min_age is None or age >= min_age) and (max_age is None or age <= max_age)
            members = [m for m in members if in_range(m)]
        if criteria.get('tags'):
            wanted = set(criteria['tags'])
            members = [m for m in members if wanted & set(m.get_tags())]
        return members

    def members(self, segment: DBSegment, today: Optional[date] = None) -> List[DBMember]:
        if segment.segment_type == SegmentType.STATIC:
            return DBMember.query.join(
                DBSegmentMember, DBSegmentMember.member_id == DBMember.id
            ).filter(DBSegmentMember.segment_id == segment.id).order_by(DBSegmentMember.added_at).all()
        return self.evaluate(segment.tenant_id, segment.get_criteria(), today)

    def preview(self, segment: DBSegment, limit: int = 20) -> dict:
        members = self.members(segment)
        return {
            'segment_id': segment.id,
            'count': len(members),
            'members': [m.to_dict() for m in members[:limit]]
        }

    def preview_criteria(self, tenant_id: str, criteria: dict, limit: int = 20) -> dict:
        members = self.evaluate(tenant_id, validate_criteria(criteria or {}))
        return {'count': len(members), 'members': [m.to_dict() for m in members[:limit]]}

    def recalculate(self, segment: DBSegment, today: Optional[date] = None) -> int:
        segment.member_count = len(self.members(segment, today))
        segment.last_calculated_at = datetime.utcnow()
        commit()
        return segment.member_count

    def recalculate_all(self) -> dict:
        """Refresh counts of every active dynamic segment"""
        segments = DBSegment.query.filter_by(segment_type=SegmentType.DYNAMIC, is_active=True).all()
        updated = 0
        for segment in segments:
            self.recalculate(segment)
            updated += 1
        logger.info(f"Recalculated {updated} dynamic segments")
        return {'segments_recalculated': updated}


segment_service = SegmentService()
