"""
Liyaqa - Marketing automation models
Campaigns are drip sequences of steps; members progress through them via enrollments
"""
from datetime import datetime, timedelta
from typing import Optional, List, Dict
import json

from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, safe_json_loads, iso


class CampaignStatus:
    DRAFT = 'draft'
    ACTIVE = 'active'
    PAUSED = 'paused'
    ARCHIVED = 'archived'

    EDITABLE = [DRAFT, PAUSED]


class CampaignType:
    WELCOME_SEQUENCE = 'welcome_sequence'
    EXPIRY_REMINDER = 'expiry_reminder'
    WIN_BACK = 'win_back'
    BIRTHDAY = 'birthday'
    INACTIVITY = 'inactivity'
    PAYMENT_REMINDER = 'payment_reminder'
    CUSTOM = 'custom'

    ALL = [WELCOME_SEQUENCE, EXPIRY_REMINDER, WIN_BACK, BIRTHDAY, INACTIVITY, PAYMENT_REMINDER, CUSTOM]


class TriggerType:
    MEMBER_CREATED = 'member_created'
    DAYS_BEFORE_EXPIRY = 'days_before_expiry'
    DAYS_AFTER_EXPIRY = 'days_after_expiry'
    BIRTHDAY = 'birthday'
    DAYS_INACTIVE = 'days_inactive'
    PAYMENT_FAILED = 'payment_failed'
    SEGMENT = 'segment'
    MANUAL = 'manual'

    ALL = [MEMBER_CREATED, DAYS_BEFORE_EXPIRY, DAYS_AFTER_EXPIRY, BIRTHDAY, DAYS_INACTIVE,
           PAYMENT_FAILED, SEGMENT, MANUAL]
    # Triggers that need trigger_config['days']
    DAY_BASED = [DAYS_BEFORE_EXPIRY, DAYS_AFTER_EXPIRY, DAYS_INACTIVE]


class StepChannel:
    EMAIL = 'email'
    SMS = 'sms'
    WHATSAPP = 'whatsapp'
    PUSH = 'push'

    ALL = [EMAIL, SMS, WHATSAPP, PUSH]


class EnrollmentStatus:
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class MessageStatus:
    PENDING = 'pending'
    SENT = 'sent'
    DELIVERED = 'delivered'
    OPENED = 'opened'
    CLICKED = 'clicked'
    FAILED = 'failed'


class SegmentType:
    STATIC = 'static'
    DYNAMIC = 'dynamic'


# ============================================
# Campaign
# ============================================

class DBCampaign(db.Model):
    """Marketing automation campaign (tenant_id NULL for system templates)"""
    __tablename__ = 'marketing_campaigns'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    campaign_type: Mapped[str] = mapped_column(String(30), default=CampaignType.CUSTOM)
    status: Mapped[str] = mapped_column(String(20), default=CampaignStatus.DRAFT, index=True)
    trigger_type: Mapped[str] = mapped_column(String(30), default=TriggerType.MANUAL, index=True)
    trigger_config: Mapped[str] = mapped_column(Text, default='{}')  # JSON
    segment_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    total_enrolled: Mapped[int] = mapped_column(Integer, default=0)
    total_completed: Mapped[int] = mapped_column(Integer, default=0)
    is_template: Mapped[bool] = mapped_column(Boolean, default=False)
    template_key: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: Optional[str], name: str, **kwargs):
        self.id = generate_id('camp')
        self.tenant_id = tenant_id
        self.name = name
        self.description = ''
        self.campaign_type = CampaignType.CUSTOM
        self.status = CampaignStatus.DRAFT
        self.trigger_type = TriggerType.MANUAL
        self.trigger_config = '{}'
        self.total_enrolled = 0
        self.total_completed = 0
        self.is_template = False
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        config = kwargs.pop('trigger_config', None)
        if config is not None:
            self.set_trigger_config(config)
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def get_trigger_config(self) -> Dict:
        return safe_json_loads(self.trigger_config, {})

    def set_trigger_config(self, config: Dict):
        self.trigger_config = json.dumps(config or {})

    @property
    def trigger_days(self) -> Optional[int]:
        days = self.get_trigger_config().get('days')
        return int(days) if days is not None else None

    @property
    def excludes_weekends(self) -> bool:
        return bool(self.get_trigger_config().get('exclude_weekends'))

    @property
    def is_editable(self) -> bool:
        return self.status in CampaignStatus.EDITABLE

    @property
    def is_running(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    def can_enroll(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        if self.is_template or not self.is_running:
            return False
        if self.start_date and now < self.start_date:
            return False
        if self.end_date and now > self.end_date:
            return False
        return True

    def to_dict(self, steps: List = None) -> dict:
        data = {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'description': self.description,
            'campaign_type': self.campaign_type,
            'status': self.status,
            'trigger_type': self.trigger_type,
            'trigger_config': self.get_trigger_config(),
            'segment_id': self.segment_id,
            'start_date': iso(self.start_date),
            'end_date': iso(self.end_date),
            'total_enrolled': self.total_enrolled,
            'total_completed': self.total_completed,
            'is_template': self.is_template,
            'template_key': self.template_key,
            'activated_at': iso(self.activated_at),
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }
        if steps is not None:
            data['steps'] = [step.to_dict() for step in steps]
        return data


class DBCampaignStep(db.Model):
    """One message in a campaign; A/B variants share a step_number"""
    __tablename__ = 'marketing_campaign_steps'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(50), ForeignKey('marketing_campaigns.id'), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default='')
    channel: Mapped[str] = mapped_column(String(20), default=StepChannel.EMAIL)

    subject_en: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    subject_ar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    body_en: Mapped[str] = mapped_column(Text, default='')
    body_ar: Mapped[str] = mapped_column(Text, default='')

    delay_days: Mapped[int] = mapped_column(Integer, default=0)
    delay_hours: Mapped[int] = mapped_column(Integer, default=0)

    is_ab_test: Mapped[bool] = mapped_column(Boolean, default=False)
    ab_variant: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    ab_split_percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, campaign_id: str, step_number: int, **kwargs):
        self.id = generate_id('step')
        self.campaign_id = campaign_id
        self.step_number = step_number
        self.name = ''
        self.channel = StepChannel.EMAIL
        self.body_en = ''
        self.body_ar = ''
        self.delay_days = 0
        self.delay_hours = 0
        self.is_ab_test = False
        self.is_active = True
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @property
    def delay(self) -> timedelta:
        return timedelta(days=self.delay_days or 0, hours=self.delay_hours or 0)

    def subject_for(self, language: str) -> Optional[str]:
        if language == 'ar' and self.subject_ar:
            return self.subject_ar
        return self.subject_en or self.subject_ar

    def body_for(self, language: str) -> str:
        if language == 'ar' and self.body_ar:
            return self.body_ar
        return self.body_en or self.body_ar or ''

    def copy_to(self, campaign_id: str) -> 'DBCampaignStep':
        return DBCampaignStep(
            campaign_id=campaign_id,
            step_number=self.step_number,
            name=self.name,
            channel=self.channel,
            subject_en=self.subject_en,
            subject_ar=self.subject_ar,
            body_en=self.body_en,
            body_ar=self.body_ar,
            delay_days=self.delay_days,
            delay_hours=self.delay_hours,
            is_ab_test=self.is_ab_test,
            ab_variant=self.ab_variant,
            ab_split_percentage=self.ab_split_percentage,
            is_active=self.is_active
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'campaign_id': self.campaign_id,
            'step_number': self.step_number,
            'name': self.name,
            'channel': self.channel,
            'subject_en': self.subject_en,
            'subject_ar': self.subject_ar,
            'body_en': self.body_en,
            'body_ar': self.body_ar,
            'delay_days': self.delay_days,
            'delay_hours': self.delay_hours,
            'is_ab_test': self.is_ab_test,
            'ab_variant': self.ab_variant,
            'ab_split_percentage': self.ab_split_percentage,
            'is_active': self.is_active,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBCampaignEnrollment(db.Model):
    """A member's progress through a campaign"""
    __tablename__ = 'marketing_enrollments'
    __table_args__ = (
        # At most one active enrollment per member per campaign
        Index(
            'uq_enrollment_active_member', 'campaign_id', 'member_id', unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'")
        ),
        Index('ix_enrollment_due', 'status', 'next_step_due_at'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    campaign_id: Mapped[str] = mapped_column(String(50), ForeignKey('marketing_campaigns.id'), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), ForeignKey('members.id'), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), default=EnrollmentStatus.ACTIVE)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    ab_group: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    trigger_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    next_step_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_step_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __init__(self, tenant_id: str, campaign_id: str, member_id: str, **kwargs):
        self.id = generate_id('enr')
        self.tenant_id = tenant_id
        self.campaign_id = campaign_id
        self.member_id = member_id
        self.status = EnrollmentStatus.ACTIVE
        self.current_step = 0
        self.enrolled_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def complete(self, now: datetime):
        self.status = EnrollmentStatus.COMPLETED
        self.completed_at = now
        self.next_step_due_at = None

    def cancel(self, now: datetime, reason: str = None):
        self.status = EnrollmentStatus.CANCELLED
        self.cancelled_at = now
        self.cancel_reason = reason
        self.next_step_due_at = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'campaign_id': self.campaign_id,
            'member_id': self.member_id,
            'status': self.status,
            'current_step': self.current_step,
            'ab_group': self.ab_group,
            'trigger_source': self.trigger_source,
            'enrolled_at': iso(self.enrolled_at),
            'next_step_due_at': iso(self.next_step_due_at),
            'last_step_sent_at': iso(self.last_step_sent_at),
            'completed_at': iso(self.completed_at),
            'cancelled_at': iso(self.cancelled_at),
            'cancel_reason': self.cancel_reason
        }


class DBMessageLog(db.Model):
    """Every message a campaign step produced, with delivery/engagement timestamps"""
    __tablename__ = 'marketing_message_logs'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    campaign_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    step_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    enrollment_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    member_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language: Mapped[str] = mapped_column(String(5), default='ar')
    subject: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    body: Mapped[str] = mapped_column(Text, default='')
    ab_variant: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(20), default=MessageStatus.PENDING, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    clicked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, tenant_id: str, channel: str, **kwargs):
        self.id = generate_id('msg')
        self.tenant_id = tenant_id
        self.channel = channel
        self.language = 'ar'
        self.body = ''
        self.is_test = False
        self.status = MessageStatus.PENDING
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def mark_sent(self, now: datetime):
        self.status = MessageStatus.SENT
        self.sent_at = now

    def mark_failed(self, now: datetime, error: str):
        self.status = MessageStatus.FAILED
        self.failed_at = now
        self.error_message = error

    def mark_opened(self, now: datetime):
        if self.status == MessageStatus.FAILED:
            return
        self.delivered_at = self.delivered_at or now
        self.opened_at = self.opened_at or now
        if self.status != MessageStatus.CLICKED:
            self.status = MessageStatus.OPENED

    def mark_clicked(self, now: datetime):
        if self.status == MessageStatus.FAILED:
            return
        self.mark_opened(now)
        self.clicked_at = self.clicked_at or now
        self.status = MessageStatus.CLICKED

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'campaign_id': self.campaign_id,
            'step_id': self.step_id,
            'enrollment_id': self.enrollment_id,
            'member_id': self.member_id,
            'channel': self.channel,
            'recipient': self.recipient,
            'language': self.language,
            'subject': self.subject,
            'ab_variant': self.ab_variant,
            'is_test': self.is_test,
            'status': self.status,
            'sent_at': iso(self.sent_at),
            'delivered_at': iso(self.delivered_at),
            'opened_at': iso(self.opened_at),
            'clicked_at': iso(self.clicked_at),
            'failed_at': iso(self.failed_at),
            'error_message': self.error_message,
            'created_at': iso(self.created_at)
        }


class DBTrackingPixel(db.Model):
    """Opaque token embedded in outgoing email for open/click tracking"""
    __tablename__ = 'marketing_tracking_pixels'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    message_log_id: Mapped[str] = mapped_column(String(50), ForeignKey('marketing_message_logs.id'), nullable=False, index=True)
    open_count: Mapped[int] = mapped_column(Integer, default=0)
    click_count: Mapped[int] = mapped_column(Integer, default=0)
    first_opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_event_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ============================================
# Segments
# ============================================

class DBSegment(db.Model):
    """Named audience: explicit member list (static) or criteria (dynamic)"""
    __tablename__ = 'marketing_segments'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    segment_type: Mapped[str] = mapped_column(String(20), default=SegmentType.DYNAMIC)
    criteria: Mapped[str] = mapped_column(Text, default='{}')  # JSON
    member_count: Mapped[int] = mapped_column(Integer, default=0)
    last_calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __init__(self, tenant_id: str, name: str, **kwargs):
        self.id = generate_id('seg')
        self.tenant_id = tenant_id
        self.name = name
        self.description = ''
        self.segment_type = SegmentType.DYNAMIC
        self.criteria = '{}'
        self.member_count = 0
        self.is_active = True
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        criteria = kwargs.pop('criteria', None)
        if criteria is not None:
            self.set_criteria(criteria)
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def get_criteria(self) -> Dict:
        return safe_json_loads(self.criteria, {})

    def set_criteria(self, criteria: Dict):
        self.criteria = json.dumps(criteria or {})

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'description': self.description,
            'segment_type': self.segment_type,
            'criteria': self.get_criteria(),
            'member_count': self.member_count,
            'last_calculated_at': iso(self.last_calculated_at),
            'is_active': self.is_active,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBSegmentMember(db.Model):
    __tablename__ = 'marketing_segment_members'
    __table_args__ = (
        db.UniqueConstraint('segment_id', 'member_id', name='uq_segment_member'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    segment_id: Mapped[str] = mapped_column(String(50), ForeignKey('marketing_segments.id'), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), ForeignKey('members.id'), nullable=False, index=True)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
