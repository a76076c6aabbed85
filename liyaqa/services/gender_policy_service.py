"""
Liyaqa - Gender Policy Service
Per-location gender access rules, including weekly time-based schedules
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List
from zoneinfo import ZoneInfo

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import DBLocation, DBGenderSchedule, GenderPolicy, Gender, DAYS_OF_WEEK
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import parse_time

logger = logging.getLogger(__name__)

GENDER_LABELS = {
    Gender.MALE: ('men', 'الرجال'),
    Gender.FEMALE: ('women', 'النساء'),
}


class GenderPolicyService:

    def list_policies(self) -> List[dict]:
        return [
            {'policy': policy, 'name_en': GenderPolicy.LABELS[policy][0], 'name_ar': GenderPolicy.LABELS[policy][1]}
            for policy in GenderPolicy.ALL
        ]

    def update_policy(self, location: DBLocation, policy: str, actor=None) -> DBLocation:
        if policy not in GenderPolicy.ALL:
            raise ValidationError(f"gender_policy must be one of: {', '.join(GenderPolicy.ALL)}")
        old_policy = location.gender_policy
        location.gender_policy = policy
        commit()
        audit_service.log_update(audit_service.RESOURCE_LOCATION, location.id, location.name_en, actor=actor,
                                 tenant_id=location.tenant_id, old_value={'gender_policy': old_policy},
                                 new_value={'gender_policy': policy})
        return location

    # ---------- schedules ----------

    def list_schedules(self, location: DBLocation) -> List[DBGenderSchedule]:
        schedules = DBGenderSchedule.query.filter_by(location_id=location.id).all()
        return sorted(schedules, key=lambda s: (DAYS_OF_WEEK.index(s.day_of_week), s.start_time))

    def get_schedule(self, location: DBLocation, schedule_id: int) -> DBGenderSchedule:
        schedule = db.session.get(DBGenderSchedule, schedule_id)
        if not schedule or schedule.location_id != location.id:
            raise NotFoundError('Gender schedule', str(schedule_id))
        return schedule

    def add_schedule(self, location: DBLocation, data: dict, actor=None) -> DBGenderSchedule:
        day, start, end, gender = self._parse_schedule(data)
        self._check_overlap(location, day, start, end)
        schedule = DBGenderSchedule(
            tenant_id=location.tenant_id,
            location_id=location.id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            gender=gender
        )
        save(schedule)
        audit_service.log_update(audit_service.RESOURCE_LOCATION, location.id, location.name_en, actor=actor,
                                 tenant_id=location.tenant_id, new_value=schedule.to_dict(),
                                 changes=f"Added {gender} schedule {day} {data.get('start_time')}-{data.get('end_time')}")
        return schedule

    def update_schedule(self, location: DBLocation, schedule: DBGenderSchedule, data: dict, actor=None) -> DBGenderSchedule:
        merged = schedule.to_dict()
        merged.update({k: v for k, v in data.items() if k in ('day_of_week', 'start_time', 'end_time', 'gender')})
        day, start, end, gender = self._parse_schedule(merged)
        self._check_overlap(location, day, start, end, exclude_id=schedule.id)
        old = schedule.to_dict()
        schedule.day_of_week = day
        schedule.start_time = start
        schedule.end_time = end
        schedule.gender = gender
        commit()
        audit_service.log_update(audit_service.RESOURCE_LOCATION, location.id, location.name_en, actor=actor,
                                 tenant_id=location.tenant_id, old_value=old, new_value=schedule.to_dict(),
                                 changes='Updated gender schedule')
        return schedule

    def delete_schedule(self, location: DBLocation, schedule: DBGenderSchedule, actor=None):
        old = schedule.to_dict()
        db.session.delete(schedule)
        commit()
        audit_service.log_update(audit_service.RESOURCE_LOCATION, location.id, location.name_en, actor=actor,
                                 tenant_id=location.tenant_id, old_value=old, changes='Deleted gender schedule')

    @staticmethod
    def _parse_schedule(data: dict):
        day = (data.get('day_of_week') or '').lower()
        if day not in DAYS_OF_WEEK:
            raise ValidationError(f"day_of_week must be one of: {', '.join(DAYS_OF_WEEK)}")
        gender = (data.get('gender') or '').lower()
        if gender not in Gender.ALL:
            raise ValidationError('gender must be male or female')
        if not data.get('start_time') or not data.get('end_time'):
            raise ValidationError('start_time and end_time are required')
        start = parse_time(data['start_time'], 'start_time')
        end = parse_time(data['end_time'], 'end_time')
        if start >= end:
            raise ValidationError('start_time must be before end_time')
        return day, start, end, gender

    @staticmethod
    def _check_overlap(location: DBLocation, day, start, end, exclude_id: int = None):
        for other in DBGenderSchedule.query.filter_by(location_id=location.id, day_of_week=day).all():
            if other.id == exclude_id:
                continue
            if start < other.end_time and other.start_time < end:
                raise ValidationError(
                    f"Schedule overlaps with existing {other.gender} slot "
                    f"{other.start_time.strftime('%H:%M')}-{other.end_time.strftime('%H:%M')} on {day}"
                )

    # ---------- access ----------

    def local_now(self, location: DBLocation, now: Optional[datetime] = None) -> datetime:
        """Location-local wall clock time (naive) for a UTC instant"""
        now = now or datetime.utcnow()
        aware = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
        return aware.astimezone(ZoneInfo(location.timezone or 'Asia/Riyadh')).replace(tzinfo=None)

    def active_schedule(self, location: DBLocation, local_time: datetime) -> Optional[DBGenderSchedule]:
        day = DAYS_OF_WEEK[local_time.weekday()]
        moment = local_time.time()
        for schedule in DBGenderSchedule.query.filter_by(location_id=location.id, day_of_week=day).all():
            if schedule.covers(day, moment):
                return schedule
        return None

    def allowed_genders(self, location: DBLocation, local_time: datetime):
        """Returns (allowed genders, governing schedule or None)"""
        policy = location.gender_policy
        if policy == GenderPolicy.MALE_ONLY:
            return [Gender.MALE], None
        if policy == GenderPolicy.FEMALE_ONLY:
            return [Gender.FEMALE], None
        if policy == GenderPolicy.TIME_BASED:
            schedule = self.active_schedule(location, local_time)
            if schedule:
                return [schedule.gender], schedule
        # Mixed, or time-based outside any reserved slot
        return list(Gender.ALL), None

    def check_access(self, location: DBLocation, gender: str, at: Optional[datetime] = None) -> dict:
        """
        Can a member of this gender enter the location?

        `at` is a location-local datetime; defaults to the current local time.
        """
        gender = (gender or '').lower()
        if gender not in Gender.ALL:
            raise ValidationError('gender must be male or female')
        local_time = at or self.local_now(location)
        allowed, schedule = self.allowed_genders(location, local_time)
        is_allowed = gender in allowed

        if is_allowed:
            message_en, message_ar = 'Access allowed', 'الدخول مسموح'
        else:
            label_en, label_ar = GENDER_LABELS[allowed[0]]
            message_en = f'This location is currently reserved for {label_en}'
            message_ar = f'هذا الموقع مخصص حالياً لـ{label_ar}'

        return {
            'location_id': location.id,
            'gender': gender,
            'allowed': is_allowed,
            'policy': location.gender_policy,
            'checked_at': local_time.isoformat(),
            'schedule': schedule.to_dict() if schedule else None,
            'message_en': message_en,
            'message_ar': message_ar
        }

    def current_status(self, location: DBLocation, now: Optional[datetime] = None) -> dict:
        local_time = self.local_now(location, now)
        allowed, schedule = self.allowed_genders(location, local_time)
        allows_male = Gender.MALE in allowed
        allows_female = Gender.FEMALE in allowed

        if allows_male and allows_female:
            status_en, status_ar = 'Open to everyone', 'مفتوح للجميع'
        else:
            label_en, label_ar = GENDER_LABELS[allowed[0]]
            status_en, status_ar = f'Open to {label_en} only', f'مفتوح لـ{label_ar} فقط'

        return {
            'location_id': location.id,
            'policy': location.gender_policy,
            'local_time': local_time.isoformat(),
            'timezone': location.timezone,
            'allows_male': allows_male,
            'allows_female': allows_female,
            'current_gender': allowed[0] if len(allowed) == 1 else None,
            'schedule_ends_at': schedule.end_time.strftime('%H:%M') if schedule else None,
            'status_en': status_en,
            'status_ar': status_ar
        }


gender_policy_service = GenderPolicyService()
