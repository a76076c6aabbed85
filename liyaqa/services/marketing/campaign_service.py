"""
Liyaqa - Campaign Service
Campaign definitions, lifecycle, templates and steps
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import (
    DBCampaign, DBCampaignStep, DBMember,
    CampaignStatus, CampaignType, TriggerType, StepChannel,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.services.marketing.execution_service import execution_service
from liyaqa.services.marketing.segment_service import segment_service
from liyaqa.services.marketing.templates import CAMPAIGN_TEMPLATES
from liyaqa.utils import parse_datetime, parse_time, safe_int

logger = logging.getLogger(__name__)

STEP_FIELDS = ['name', 'subject_en', 'subject_ar', 'body_en', 'body_ar']


def validate_trigger_config(trigger_type: str, config: dict) -> dict:
    if not isinstance(config, dict):
        raise ValidationError('trigger_config must be an object')
    cleaned = {}
    if config.get('days') is not None:
        days = safe_int(config['days'], -1)
        if days < 0:
            raise ValidationError('trigger_config.days must be a non-negative integer')
        cleaned['days'] = days
    if config.get('time'):
        parse_time(config['time'], 'trigger_config.time')
        cleaned['time'] = config['time']
    if 'exclude_weekends' in config:
        cleaned['exclude_weekends'] = bool(config['exclude_weekends'])
    if config.get('plan_ids'):
        if not isinstance(config['plan_ids'], list):
            raise ValidationError('trigger_config.plan_ids must be a list')
        cleaned['plan_ids'] = [str(plan_id) for plan_id in config['plan_ids']]
    return cleaned


class CampaignService:

    # ---------- campaigns ----------

    def list_campaigns(self, tenant_id: str, status: str = None, campaign_type: str = None,
                       trigger_type: str = None, search: str = None):
        query = DBCampaign.query.filter_by(tenant_id=tenant_id, is_template=False)
        if status:
            query = query.filter_by(status=status)
        if campaign_type:
            query = query.filter_by(campaign_type=campaign_type)
        if trigger_type:
            query = query.filter_by(trigger_type=trigger_type)
        if search:
            query = query.filter(DBCampaign.name.ilike(f"%{search}%"))
        return query.order_by(DBCampaign.created_at.desc())

    def get_campaign(self, tenant_id: str, campaign_id: str) -> DBCampaign:
        campaign = db.session.get(DBCampaign, campaign_id)
        if not campaign or campaign.is_template or campaign.tenant_id != tenant_id:
            raise NotFoundError('Campaign', campaign_id)
        return campaign

    def create_campaign(self, tenant_id: str, data: dict, actor=None) -> DBCampaign:
        if not data.get('name'):
            raise ValidationError('name is required')
        values = self._validated(data, tenant_id)
        campaign = DBCampaign(
            tenant_id=tenant_id,
            name=data['name'],
            created_by=getattr(actor, 'id', None),
            **values
        )
        save(campaign)
        audit_service.log_create(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                 actor=actor, tenant_id=tenant_id)
        return campaign

    def update_campaign(self, campaign: DBCampaign, data: dict, actor=None) -> DBCampaign:
        self._require_editable(campaign)
        merged = dict(data)
        merged.setdefault('trigger_type', campaign.trigger_type)
        if 'trigger_config' not in merged and 'trigger_type' in data:
            merged['trigger_config'] = campaign.get_trigger_config()
        values = self._validated(merged, campaign.tenant_id)

        if 'name' in data:
            if not data['name']:
                raise ValidationError('name cannot be empty')
            campaign.name = data['name']
        for key, value in values.items():
            if key == 'trigger_config':
                campaign.set_trigger_config(value)
            elif key in data or key == 'trigger_type':
                setattr(campaign, key, value)
        commit()
        audit_service.log_update(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                 actor=actor, tenant_id=campaign.tenant_id)
        return campaign

    def delete_campaign(self, campaign: DBCampaign, actor=None):
        if campaign.status != CampaignStatus.DRAFT:
            raise ValidationError('Only draft campaigns can be deleted; archive it instead')
        DBCampaignStep.query.filter_by(campaign_id=campaign.id).delete()
        db.session.delete(campaign)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                 actor=actor, tenant_id=campaign.tenant_id)

    def _validated(self, data: dict, tenant_id: str) -> dict:
        values = {}
        if 'description' in data:
            values['description'] = data.get('description') or ''
        if 'campaign_type' in data:
            if data['campaign_type'] not in CampaignType.ALL:
                raise ValidationError(f"campaign_type must be one of: {', '.join(CampaignType.ALL)}")
            values['campaign_type'] = data['campaign_type']
        trigger_type = data.get('trigger_type', TriggerType.MANUAL)
        if trigger_type not in TriggerType.ALL:
            raise ValidationError(f"trigger_type must be one of: {', '.join(TriggerType.ALL)}")
        values['trigger_type'] = trigger_type
        if 'trigger_config' in data:
            values['trigger_config'] = validate_trigger_config(trigger_type, data.get('trigger_config') or {})
        if 'segment_id' in data:
            if data['segment_id']:
                segment_service.get_segment(tenant_id, data['segment_id'])
            values['segment_id'] = data['segment_id'] or None
        for field in ('start_date', 'end_date'):
            if field in data:
                values[field] = parse_datetime(data[field], field)
        start, end = values.get('start_date'), values.get('end_date')
        if start and end and end <= start:
            raise ValidationError('end_date must be after start_date')
        return values

    @staticmethod
    def _require_editable(campaign: DBCampaign):
        if not campaign.is_editable:
            raise ValidationError(f'Campaign is {campaign.status}; only draft or paused campaigns can be edited')

    # ---------- lifecycle ----------

    def activate(self, campaign: DBCampaign, actor=None) -> DBCampaign:
        if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.PAUSED):
            raise ValidationError(f'Cannot activate a {campaign.status} campaign')
        if not any(step.is_active for step in self.list_steps(campaign)):
            raise ValidationError('Campaign needs at least one active step before activation')
        if campaign.trigger_type in TriggerType.DAY_BASED and campaign.trigger_days is None:
            raise ValidationError(f'{campaign.trigger_type} campaigns need trigger_config.days')
        if campaign.trigger_type == TriggerType.SEGMENT and not campaign.segment_id:
            raise ValidationError('Segment campaigns need a segment_id')

        old_status = campaign.status
        campaign.status = CampaignStatus.ACTIVE
        campaign.activated_at = campaign.activated_at or datetime.utcnow()
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                        old_status, CampaignStatus.ACTIVE, actor=actor,
                                        tenant_id=campaign.tenant_id)
        logger.info(f"Campaign {campaign.id} activated")

        if campaign.trigger_type == TriggerType.SEGMENT:
            segment = segment_service.get_segment(campaign.tenant_id, campaign.segment_id)
            execution_service.enroll_segment(campaign, segment, once=True)
        return campaign

    def pause(self, campaign: DBCampaign, actor=None) -> DBCampaign:
        if campaign.status != CampaignStatus.ACTIVE:
            raise ValidationError('Only active campaigns can be paused')
        campaign.status = CampaignStatus.PAUSED
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                        CampaignStatus.ACTIVE, CampaignStatus.PAUSED, actor=actor,
                                        tenant_id=campaign.tenant_id)
        return campaign

    def archive(self, campaign: DBCampaign, actor=None) -> DBCampaign:
        if campaign.status == CampaignStatus.ARCHIVED:
            raise ValidationError('Campaign is already archived')
        old_status = campaign.status
        campaign.status = CampaignStatus.ARCHIVED
        cancelled = execution_service.cancel_campaign_enrollments(campaign, 'campaign_archived')
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name,
                                        old_status, CampaignStatus.ARCHIVED, actor=actor,
                                        tenant_id=campaign.tenant_id,
                                        metadata={'cancelled_enrollments': cancelled})
        logger.info(f"Campaign {campaign.id} archived, {cancelled} enrollments cancelled")
        return campaign

    def duplicate(self, campaign: DBCampaign, actor=None, name: str = None,
                  tenant_id: str = None) -> DBCampaign:
        """Copy a campaign and its steps into a new draft"""
        copy = DBCampaign(
            tenant_id=tenant_id or campaign.tenant_id,
            name=name or f"{campaign.name} (Copy)",
            description=campaign.description,
            campaign_type=campaign.campaign_type,
            trigger_type=campaign.trigger_type,
            trigger_config=campaign.get_trigger_config(),
            segment_id=campaign.segment_id if not tenant_id else None,
            created_by=getattr(actor, 'id', None)
        )
        db.session.add(copy)
        for step in self.list_steps(campaign):
            db.session.add(step.copy_to(copy.id))
        commit()
        audit_service.log_create(audit_service.RESOURCE_CAMPAIGN, copy.id, copy.name, actor=actor,
                                 tenant_id=copy.tenant_id, new_value={'source_campaign_id': campaign.id})
        return copy

    # ---------- templates ----------

    def seed_templates(self) -> int:
        """Create missing built-in template campaigns; safe to call repeatedly"""
        created = 0
        for template in CAMPAIGN_TEMPLATES:
            if DBCampaign.query.filter_by(is_template=True, template_key=template['template_key']).first():
                continue
            campaign = DBCampaign(
                tenant_id=None,
                name=template['name'],
                description=template['description'],
                campaign_type=template['campaign_type'],
                trigger_type=template['trigger_type'],
                trigger_config=template['trigger_config'],
                is_template=True,
                template_key=template['template_key']
            )
            db.session.add(campaign)
            for number, step in enumerate(template['steps'], start=1):
                db.session.add(DBCampaignStep(campaign_id=campaign.id, step_number=number, **step))
            created += 1
        if created:
            commit()
            logger.info(f"Seeded {created} campaign templates")
        return created

    def list_templates(self) -> List[DBCampaign]:
        return DBCampaign.query.filter_by(is_template=True).order_by(DBCampaign.name).all()

    def get_template(self, template_id: str) -> DBCampaign:
        template = db.session.get(DBCampaign, template_id)
        if not template or not template.is_template:
            raise NotFoundError('Campaign template', template_id)
        return template

    def create_from_template(self, tenant_id: str, template_id: str, name: str = None, actor=None) -> DBCampaign:
        template = self.get_template(template_id)
        return self.duplicate(template, actor=actor, name=name or template.name, tenant_id=tenant_id)

    # ---------- steps ----------

    def list_steps(self, campaign: DBCampaign) -> List[DBCampaignStep]:
        return DBCampaignStep.query.filter_by(campaign_id=campaign.id).order_by(
            DBCampaignStep.step_number, DBCampaignStep.ab_variant
        ).all()

    def get_step(self, campaign: DBCampaign, step_id: str) -> DBCampaignStep:
        step = db.session.get(DBCampaignStep, step_id)
        if not step or step.campaign_id != campaign.id:
            raise NotFoundError('Campaign step', step_id)
        return step

    def add_step(self, campaign: DBCampaign, data: dict, actor=None) -> DBCampaignStep:
        """
        Append a step. An A/B variant passes the step_number it shares with
        its sibling and its ab_variant letter.
        """
        self._require_editable(campaign)
        values = self._validated_step(data, require_body=True)
        last_number = db.session.query(func.max(DBCampaignStep.step_number)).filter(
            DBCampaignStep.campaign_id == campaign.id
        ).scalar() or 0

        if values.get('is_ab_test') and data.get('step_number') is not None:
            step_number = safe_int(data['step_number'], 0)
            if step_number < 1 or step_number > last_number + 1:
                raise ValidationError('step_number is out of range')
        else:
            step_number = last_number + 1

        if values.get('is_ab_test'):
            self._check_variant(campaign, step_number, values.get('ab_variant'))

        step = DBCampaignStep(campaign_id=campaign.id, step_number=step_number, **values)
        save(step)
        audit_service.log_update(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name, actor=actor,
                                 tenant_id=campaign.tenant_id, changes=f"Added step {step_number}")
        return step

    def update_step(self, campaign: DBCampaign, step: DBCampaignStep, data: dict, actor=None) -> DBCampaignStep:
        self._require_editable(campaign)
        values = self._validated_step(data)
        if values.get('is_ab_test') or (step.is_ab_test and 'ab_variant' in values):
            variant = values.get('ab_variant', step.ab_variant)
            self._check_variant(campaign, step.step_number, variant, exclude_id=step.id)
        for key, value in values.items():
            setattr(step, key, value)
        if not step.is_ab_test:
            step.ab_variant = None
            step.ab_split_percentage = None
        commit()
        audit_service.log_update(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name, actor=actor,
                                 tenant_id=campaign.tenant_id, changes=f"Updated step {step.step_number}")
        return step

    def delete_step(self, campaign: DBCampaign, step: DBCampaignStep, actor=None):
        """Remove a step; later steps move up when its number is left empty"""
        self._require_editable(campaign)
        number = step.step_number
        db.session.delete(step)
        db.session.flush()
        if not DBCampaignStep.query.filter_by(campaign_id=campaign.id, step_number=number).count():
            for later in DBCampaignStep.query.filter(
                DBCampaignStep.campaign_id == campaign.id,
                DBCampaignStep.step_number > number
            ).all():
                later.step_number -= 1
        commit()
        audit_service.log_update(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name, actor=actor,
                                 tenant_id=campaign.tenant_id, changes=f"Deleted step {number}")

    def reorder_steps(self, campaign: DBCampaign, order: List[int], actor=None) -> List[DBCampaignStep]:
        """`order` lists the current step numbers in their new sequence"""
        self._require_editable(campaign)
        steps = self.list_steps(campaign)
        current = sorted({step.step_number for step in steps})
        if not isinstance(order, list) or sorted(safe_int(n, 0) for n in order) != current:
            raise ValidationError(f'order must be a permutation of the current step numbers {current}')
        mapping = {safe_int(old, 0): new for new, old in enumerate(order, start=1)}
        for step in steps:
            step.step_number = mapping[step.step_number]
        commit()
        audit_service.log_update(audit_service.RESOURCE_CAMPAIGN, campaign.id, campaign.name, actor=actor,
                                 tenant_id=campaign.tenant_id, changes='Reordered steps')
        return self.list_steps(campaign)

    def send_test(self, campaign: DBCampaign, step: DBCampaignStep, member: DBMember, recipient: str = None):
        """Send a step to one member (or an override recipient) without enrolling"""
        message = execution_service.execute_step(None, step, member, campaign, recipient=recipient, is_test=True)
        commit()
        return message

    @staticmethod
    def _validated_step(data: dict, require_body: bool = False) -> dict:
        values = {field: data[field] for field in STEP_FIELDS if field in data}
        channel = data.get('channel')
        if channel is not None:
            if channel not in StepChannel.ALL:
                raise ValidationError(f"channel must be one of: {', '.join(StepChannel.ALL)}")
            values['channel'] = channel
        if require_body and not (data.get('body_en') or data.get('body_ar')):
            raise ValidationError('body_en or body_ar is required')
        if require_body and (channel or StepChannel.EMAIL) == StepChannel.EMAIL \
                and not (data.get('subject_en') or data.get('subject_ar')):
            raise ValidationError('Email steps need subject_en or subject_ar')
        for field in ('delay_days', 'delay_hours'):
            if field in data:
                value = safe_int(data[field], -1)
                if value < 0:
                    raise ValidationError(f'{field} must be a non-negative integer')
                values[field] = value
        if 'is_active' in data:
            values['is_active'] = bool(data['is_active'])
        if 'is_ab_test' in data:
            values['is_ab_test'] = bool(data['is_ab_test'])
        if 'ab_variant' in data and data['ab_variant'] is not None:
            if data['ab_variant'] not in ('A', 'B'):
                raise ValidationError('ab_variant must be A or B')
            values['ab_variant'] = data['ab_variant']
        if 'ab_split_percentage' in data and data['ab_split_percentage'] is not None:
            split = safe_int(data['ab_split_percentage'], -1)
            if not 1 <= split <= 99:
                raise ValidationError('ab_split_percentage must be between 1 and 99')
            values['ab_split_percentage'] = split
        if values.get('is_ab_test') and not values.get('ab_variant'):
            raise ValidationError('A/B test steps need ab_variant A or B')
        return values

    @staticmethod
    def _check_variant(campaign: DBCampaign, step_number: int, variant: Optional[str], exclude_id: str = None):
        siblings = DBCampaignStep.query.filter_by(campaign_id=campaign.id, step_number=step_number).all()
        for sibling in siblings:
            if sibling.id == exclude_id:
                continue
            if not sibling.is_ab_test:
                raise ValidationError(f'Step {step_number} is not an A/B test step')
            if sibling.ab_variant == variant:
                raise ValidationError(f'Step {step_number} already has variant {variant}')


campaign_service = CampaignService()
