"""
Liyaqa - Campaign Execution Service

Enrolls members into campaigns and walks enrollments through their steps.
process_due_steps() is polled by the scheduler; every enrollment is handled
in its own transaction so one failure never stops the batch.
"""
import logging
import random
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, List
from urllib.parse import quote
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy.exc import IntegrityError

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import (
    DBCampaign, DBCampaignStep, DBCampaignEnrollment, DBMessageLog, DBTrackingPixel,
    DBMember, DBLocation, DBClub, DBTenant,
    CampaignStatus, EnrollmentStatus, MessageStatus, StepChannel,
)
from liyaqa.services.marketing.segment_service import segment_service
from liyaqa.services.notification_service import notification_service
from liyaqa.utils import parse_time

logger = logging.getLogger(__name__)

# Friday and Saturday
WEEKEND_DAYS = (4, 5)

PLACEHOLDER_RE = re.compile(r'\{\{\s*(\w+)\s*\}\}')
LINK_RE = re.compile(r'href="(https?://[^"]+)"')


def personalize(text: Optional[str], context: dict) -> Optional[str]:
    """Replace {{placeholders}} with member values; unknown placeholders are kept"""
    if not text:
        return text
    return PLACEHOLDER_RE.sub(lambda m: str(context.get(m.group(1), m.group(0)) or ''), text)


class ExecutionService:

    # ---------- steps ----------

    def active_steps(self, campaign_id: str) -> List[DBCampaignStep]:
        return DBCampaignStep.query.filter_by(campaign_id=campaign_id, is_active=True).order_by(
            DBCampaignStep.step_number, DBCampaignStep.ab_variant
        ).all()

    @staticmethod
    def select_variant(candidates: List[DBCampaignStep], ab_group: Optional[str]) -> DBCampaignStep:
        """Pick the step variant for an enrollment's A/B group, falling back to the first"""
        if len(candidates) > 1 and ab_group:
            for step in candidates:
                if step.ab_variant == ab_group:
                    return step
        return candidates[0]

    def assign_ab_group(self, campaign: DBCampaign, roll: int = None, steps: List[DBCampaignStep] = None) -> Optional[str]:
        """
        Bucket an enrollment into A/B group.

        The split percentage is the share of enrollments that go to variant A;
        a roll of 1..100 at or under the split lands in A.
        """
        steps = steps if steps is not None else self.active_steps(campaign.id)
        ab_steps = [step for step in steps if step.is_ab_test]
        if not ab_steps:
            return None
        split = next(
            (step.ab_split_percentage for step in ab_steps
             if step.ab_variant == 'A' and step.ab_split_percentage is not None),
            None
        )
        if split is None:
            split = current_app.config.get('MARKETING_DEFAULT_AB_SPLIT', 50)
        roll = roll if roll is not None else random.randint(1, 100)
        return 'A' if roll <= split else 'B'

    def schedule_time(self, campaign: DBCampaign, base: datetime, step: DBCampaignStep) -> datetime:
        """
        Due time for a step: base + delay, aligned to the campaign send time
        for whole-day delays and pushed off the weekend when configured.
        """
        due = base + step.delay
        config = campaign.get_trigger_config()
        send_time = config.get('time')
        if not send_time and not campaign.excludes_weekends:
            return due

        tz = ZoneInfo(current_app.config.get('DEFAULT_TIMEZONE', 'Asia/Riyadh'))
        local = due.replace(tzinfo=timezone.utc).astimezone(tz)
        if send_time and not step.delay_hours:
            at = parse_time(send_time, 'time')
            aligned = local.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
            if aligned < local:
                aligned += timedelta(days=1)
            local = aligned
        if campaign.excludes_weekends:
            while local.weekday() in WEEKEND_DAYS:
                local += timedelta(days=1)
        return local.astimezone(timezone.utc).replace(tzinfo=None)

    # ---------- enrollment ----------

    def enroll_member(self, campaign: DBCampaign, member: DBMember, now: datetime = None,
                      once: bool = False, since: datetime = None,
                      source: str = None) -> Optional[DBCampaignEnrollment]:
        """
        Enroll a member. Returns None when skipped: the campaign is not
        accepting enrollments, the member opted out, or an active enrollment
        already exists. With once=True any earlier enrollment (on or after
        `since`, when given) also skips.
        """
        now = now or datetime.utcnow()
        if member.tenant_id != campaign.tenant_id:
            raise ValidationError('Member does not belong to the campaign tenant')
        if not campaign.can_enroll(now):
            logger.debug(f"Campaign {campaign.id} not accepting enrollments")
            return None
        if not member.marketing_opt_in:
            return None

        existing = DBCampaignEnrollment.query.filter_by(campaign_id=campaign.id, member_id=member.id)
        if existing.filter_by(status=EnrollmentStatus.ACTIVE).first():
            return None
        if once:
            previous = existing
            if since is not None:
                previous = previous.filter(DBCampaignEnrollment.enrolled_at >= since)
            if previous.first():
                return None

        steps = self.active_steps(campaign.id)
        if not steps:
            return None

        enrollment = DBCampaignEnrollment(
            tenant_id=campaign.tenant_id,
            campaign_id=campaign.id,
            member_id=member.id,
            enrolled_at=now,
            trigger_source=source or campaign.trigger_type,
            ab_group=self.assign_ab_group(campaign, steps=steps),
        )
        enrollment.next_step_due_at = self.schedule_time(campaign, now, steps[0])
        campaign.total_enrolled = (campaign.total_enrolled or 0) + 1
        db.session.add(enrollment)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent enrollment of the same member
            db.session.rollback()
            logger.info(f"Member {member.id} already enrolled in campaign {campaign.id}")
            return None

        logger.info(f"Enrolled member {member.id} in campaign {campaign.id}")
        return enrollment

    def enroll_members(self, campaign: DBCampaign, member_ids: List[str], now: datetime = None,
                       source: str = 'manual') -> dict:
        if not isinstance(member_ids, list) or not member_ids:
            raise ValidationError('member_ids must be a non-empty list')
        enrolled, skipped = [], 0
        for member_id in member_ids:
            member = db.session.get(DBMember, member_id)
            if not member or member.tenant_id != campaign.tenant_id:
                raise NotFoundError('Member', member_id)
            enrollment = self.enroll_member(campaign, member, now=now, source=source)
            if enrollment:
                enrolled.append(enrollment.id)
            else:
                skipped += 1
        return {'enrolled': len(enrolled), 'skipped': skipped, 'enrollment_ids': enrolled}

    def enroll_segment(self, campaign: DBCampaign, segment, now: datetime = None, once: bool = False) -> dict:
        enrolled, skipped = 0, 0
        for member in segment_service.members(segment):
            if self.enroll_member(campaign, member, now=now, once=once, source='segment'):
                enrolled += 1
            else:
                skipped += 1
        logger.info(f"Segment {segment.id} -> campaign {campaign.id}: {enrolled} enrolled, {skipped} skipped")
        return {'enrolled': enrolled, 'skipped': skipped}

    def list_enrollments(self, campaign: DBCampaign, status: str = None):
        query = DBCampaignEnrollment.query.filter_by(campaign_id=campaign.id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(DBCampaignEnrollment.enrolled_at.desc())

    def get_enrollment(self, tenant_id: str, enrollment_id: str) -> DBCampaignEnrollment:
        enrollment = db.session.get(DBCampaignEnrollment, enrollment_id)
        if not enrollment or enrollment.tenant_id != tenant_id:
            raise NotFoundError('Enrollment', enrollment_id)
        return enrollment

    def cancel_enrollment(self, enrollment: DBCampaignEnrollment, reason: str = 'manual') -> DBCampaignEnrollment:
        if enrollment.status != EnrollmentStatus.ACTIVE:
            raise ValidationError(f'Enrollment is already {enrollment.status}')
        enrollment.cancel(datetime.utcnow(), reason)
        commit()
        logger.info(f"Cancelled enrollment {enrollment.id}")
        return enrollment

    def cancel_campaign_enrollments(self, campaign: DBCampaign, reason: str) -> int:
        """Cancel every active enrollment of a campaign; the caller commits"""
        now = datetime.utcnow()
        active = DBCampaignEnrollment.query.filter_by(campaign_id=campaign.id, status=EnrollmentStatus.ACTIVE).all()
        for enrollment in active:
            enrollment.cancel(now, reason)
        return len(active)

    # ---------- processing ----------

    def process_due_steps(self, batch_size: int = None, now: datetime = None) -> dict:
        """
        Execute the next step of every due enrollment.

        Enrollments of paused campaigns are left untouched until the campaign
        resumes. Returns counts of sent steps, completions, cancellations and
        failures.
        """
        now = now or datetime.utcnow()
        batch_size = batch_size or current_app.config.get('MARKETING_BATCH_SIZE', 100)
        due_ids = [
            row[0] for row in db.session.query(DBCampaignEnrollment.id).join(
                DBCampaign, DBCampaign.id == DBCampaignEnrollment.campaign_id
            ).filter(
                DBCampaignEnrollment.status == EnrollmentStatus.ACTIVE,
                DBCampaignEnrollment.next_step_due_at <= now,
                DBCampaign.status != CampaignStatus.PAUSED
            ).order_by(DBCampaignEnrollment.next_step_due_at).limit(batch_size)
        ]

        results = {'due': len(due_ids), 'sent': 0, 'send_failed': 0, 'completed': 0, 'cancelled': 0, 'failed': 0}
        for enrollment_id in due_ids:
            try:
                enrollment = db.session.get(DBCampaignEnrollment, enrollment_id)
                self._process_enrollment(enrollment, now, results)
                commit()
            except Exception as e:
                db.session.rollback()
                results['failed'] += 1
                logger.error(f"Error processing enrollment {enrollment_id}: {e}", exc_info=True)

        if due_ids:
            logger.info(
                f"Campaign steps: {results['sent']} sent, {results['send_failed']} not delivered, "
                f"{results['completed']} completed, "
                f"{results['cancelled']} cancelled, {results['failed']} failed"
            )
        return results

    def _process_enrollment(self, enrollment: DBCampaignEnrollment, now: datetime, results: dict):
        campaign = db.session.get(DBCampaign, enrollment.campaign_id)
        if not campaign or not campaign.is_running:
            enrollment.cancel(now, 'campaign_not_running')
            results['cancelled'] += 1
            return
        member = db.session.get(DBMember, enrollment.member_id)
        if not member:
            enrollment.cancel(now, 'member_not_found')
            results['cancelled'] += 1
            return

        steps = self.active_steps(campaign.id)
        numbers = sorted({step.step_number for step in steps})
        step_number = next((n for n in numbers if n > enrollment.current_step), None)
        if step_number is None:
            self._complete(enrollment, campaign, now)
            results['completed'] += 1
            return

        step = self.select_variant([s for s in steps if s.step_number == step_number], enrollment.ab_group)
        message = self.execute_step(enrollment, step, member, campaign, now)
        enrollment.current_step = step_number
        enrollment.last_step_sent_at = now
        # A failed send still advances the enrollment
        results['send_failed' if message.status == MessageStatus.FAILED else 'sent'] += 1

        following = next((n for n in numbers if n > step_number), None)
        if following is None:
            self._complete(enrollment, campaign, now)
            results['completed'] += 1
        else:
            next_step = self.select_variant([s for s in steps if s.step_number == following], enrollment.ab_group)
            enrollment.next_step_due_at = self.schedule_time(campaign, now, next_step)

    @staticmethod
    def _complete(enrollment: DBCampaignEnrollment, campaign: DBCampaign, now: datetime):
        enrollment.complete(now)
        campaign.total_completed = (campaign.total_completed or 0) + 1

    def personalization_context(self, member: DBMember, language: str) -> dict:
        club_name = None
        if member.location_id:
            location = db.session.get(DBLocation, member.location_id)
            club = db.session.get(DBClub, location.club_id) if location else None
            if club:
                club_name = club.name_ar if language == 'ar' and club.name_ar else club.name_en
        if not club_name:
            tenant = db.session.get(DBTenant, member.tenant_id)
            if tenant:
                club_name = tenant.name_ar if language == 'ar' and tenant.name_ar else tenant.name
        return {
            'firstName': member.first_name,
            'lastName': member.last_name,
            'fullName': member.full_name,
            'email': member.email,
            'phone': member.phone,
            'clubName': club_name or '',
        }

    def execute_step(self, enrollment: Optional[DBCampaignEnrollment], step: DBCampaignStep, member: DBMember,
                     campaign: DBCampaign, now: datetime = None, recipient: str = None,
                     is_test: bool = False) -> DBMessageLog:
        """Render and send one step to a member, recording a message log"""
        now = now or datetime.utcnow()
        language = member.preferred_language if member.preferred_language in ('en', 'ar') else 'ar'
        context = self.personalization_context(member, language)
        is_email = step.channel == StepChannel.EMAIL

        subject = personalize(step.subject_for(language) or campaign.name, context) if is_email else None
        body = personalize(step.body_for(language), context)
        if not recipient:
            if is_email:
                recipient = member.email
            elif step.channel in (StepChannel.SMS, StepChannel.WHATSAPP):
                recipient = member.phone
            else:
                recipient = member.id

        message = DBMessageLog(
            tenant_id=member.tenant_id,
            channel=step.channel,
            campaign_id=campaign.id,
            step_id=step.id,
            enrollment_id=enrollment.id if enrollment else None,
            member_id=member.id,
            recipient=recipient,
            language=language,
            subject=subject,
            body=body,
            ab_variant=step.ab_variant,
            is_test=is_test
        )
        db.session.add(message)

        outgoing = body
        if is_email:
            outgoing = self._add_tracking(message, body)

        if not recipient:
            message.mark_failed(now, 'No email address' if is_email else 'No phone number')
            return message

        notification = notification_service.send(
            step.channel, recipient, outgoing,
            subject=subject,
            tenant_id=member.tenant_id,
            member_id=member.id,
            related_type='campaign',
            related_id=campaign.id,
            html=is_email
        )
        if notification.status == 'sent':
            message.mark_sent(now)
        else:
            message.mark_failed(now, notification.error_message)
        return message

    def _add_tracking(self, message: DBMessageLog, body: str) -> str:
        token = secrets.token_urlsafe(24)
        db.session.add(DBTrackingPixel(token=token, message_log_id=message.id, open_count=0, click_count=0))
        base = current_app.config.get('APP_URL', '').rstrip('/')
        click_base = f"{base}/api/marketing/track/click/{token}?url="
        body = LINK_RE.sub(lambda m: f'href="{click_base}{quote(m.group(1), safe="")}"', body)
        return f'{body}<img src="{base}/api/marketing/track/open/{token}" width="1" height="1" alt="" />'

    # ---------- engagement tracking ----------

    def _pixel_message(self, token: str):
        pixel = DBTrackingPixel.query.filter_by(token=token).first()
        if not pixel:
            return None, None
        return pixel, db.session.get(DBMessageLog, pixel.message_log_id)

    def record_open(self, token: str, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        pixel, message = self._pixel_message(token)
        if not message:
            return False
        pixel.open_count = (pixel.open_count or 0) + 1
        pixel.first_opened_at = pixel.first_opened_at or now
        pixel.last_event_at = now
        message.mark_opened(now)
        commit()
        return True

    def record_click(self, token: str, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        pixel, message = self._pixel_message(token)
        if not message:
            return False
        pixel.click_count = (pixel.click_count or 0) + 1
        pixel.first_opened_at = pixel.first_opened_at or now
        pixel.last_event_at = now
        message.mark_clicked(now)
        commit()
        return True

    def record_delivery(self, message: DBMessageLog, now: datetime = None) -> DBMessageLog:
        """Delivery receipt from a channel gateway"""
        if message.status == MessageStatus.SENT:
            message.status = MessageStatus.DELIVERED
            message.delivered_at = now or datetime.utcnow()
            commit()
        return message

    def get_message(self, tenant_id: str, message_id: str) -> DBMessageLog:
        message = db.session.get(DBMessageLog, message_id)
        if not message or message.tenant_id != tenant_id:
            raise NotFoundError('Message', message_id)
        return message


execution_service = ExecutionService()
