"""
Liyaqa - Marketing Automation Tests
"""
from datetime import date, datetime, timedelta

from liyaqa.database import db
from liyaqa.models import (
    DBCampaign, DBCampaignStep, DBCampaignEnrollment, DBMessageLog, DBTrackingPixel,
    DBMember, DBMembershipPlan, DBSubscription, DBInvoice,
    CampaignStatus, EnrollmentStatus, MessageStatus, StepChannel, TriggerType,
    MemberStatus, SubscriptionStatus, InvoiceStatus,
)
from liyaqa.services.marketing import (
    campaign_service, execution_service, trigger_service, marketing_analytics_service,
)
from liyaqa.services.marketing.execution_service import personalize
from liyaqa.services.marketing.templates import CAMPAIGN_TEMPLATES

PUSH_STEP = {'channel': StepChannel.PUSH, 'name': 'Nudge', 'body_en': 'Hi {{firstName}}, see you at {{clubName}}'}


def create_campaign(client, headers, **overrides):
    body = {'name': 'Autumn push', 'campaign_type': 'custom'}
    body.update(overrides)
    res = client.post('/api/marketing/campaigns', json=body, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


def add_step(client, headers, campaign_id, step=None):
    res = client.post(f"/api/marketing/campaigns/{campaign_id}/steps", json=step or PUSH_STEP, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


def active_campaign(client, headers, steps=None, **overrides):
    campaign = create_campaign(client, headers, **overrides)
    for step in steps or [PUSH_STEP]:
        add_step(client, headers, campaign['id'], step)
    res = client.post(f"/api/marketing/campaigns/{campaign['id']}/activate", headers=headers)
    assert res.status_code == 200, res.data
    return res.get_json()


def soon():
    return datetime.utcnow() + timedelta(minutes=1)


class TestCampaigns:
    """Test campaign definitions and lifecycle"""

    def test_create(self, client, tenant_headers, tenant_id):
        campaign = create_campaign(client, tenant_headers)

        assert campaign['tenant_id'] == tenant_id
        assert campaign['status'] == CampaignStatus.DRAFT
        assert campaign['trigger_type'] == TriggerType.MANUAL
        assert campaign['total_enrolled'] == 0

    def test_validation(self, client, tenant_headers):
        bad_bodies = [
            {'campaign_type': 'custom'},
            {'name': 'X', 'campaign_type': 'newsletter'},
            {'name': 'X', 'trigger_type': 'on_visit'},
            {'name': 'X', 'trigger_type': TriggerType.DAYS_INACTIVE, 'trigger_config': {'days': -1}},
            {'name': 'X', 'trigger_config': {'time': '25:00'}},
            {'name': 'X', 'start_date': '2026-12-01T00:00:00', 'end_date': '2026-11-01T00:00:00'},
        ]
        for body in bad_bodies:
            assert client.post('/api/marketing/campaigns', json=body,
                               headers=tenant_headers).status_code == 400, body

    def test_step_validation(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers)
        url = f"/api/marketing/campaigns/{campaign['id']}/steps"

        assert client.post(url, json={'channel': StepChannel.EMAIL, 'body_en': 'No subject'},
                           headers=tenant_headers).status_code == 400
        assert client.post(url, json={'channel': StepChannel.SMS}, headers=tenant_headers).status_code == 400
        assert client.post(url, json={'channel': 'pigeon', 'body_en': 'x'}, headers=tenant_headers).status_code == 400
        assert client.post(url, json={'channel': StepChannel.SMS, 'body_en': 'x', 'delay_days': -2},
                           headers=tenant_headers).status_code == 400

    def test_lifecycle(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers)
        url = f"/api/marketing/campaigns/{campaign['id']}"

        # nothing to send yet
        assert client.post(f"{url}/activate", headers=tenant_headers).status_code == 400

        add_step(client, tenant_headers, campaign['id'])
        res = client.post(f"{url}/activate", headers=tenant_headers)
        assert res.get_json()['status'] == CampaignStatus.ACTIVE
        assert res.get_json()['activated_at'] is not None

        assert client.put(url, json={'name': 'Renamed'}, headers=tenant_headers).status_code == 400
        assert client.delete(url, headers=tenant_headers).status_code == 400

        assert client.post(f"{url}/pause", headers=tenant_headers).get_json()['status'] == CampaignStatus.PAUSED
        assert client.put(url, json={'name': 'Renamed'}, headers=tenant_headers).get_json()['name'] == 'Renamed'
        assert client.post(f"{url}/archive", headers=tenant_headers).get_json()['status'] == CampaignStatus.ARCHIVED
        assert client.post(f"{url}/archive", headers=tenant_headers).status_code == 400
        assert client.post(f"{url}/launch", headers=tenant_headers).status_code == 404

    def test_day_based_trigger_needs_days(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers, trigger_type=TriggerType.DAYS_BEFORE_EXPIRY)
        add_step(client, tenant_headers, campaign['id'])

        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/activate", headers=tenant_headers)
        assert res.status_code == 400

        client.put(f"/api/marketing/campaigns/{campaign['id']}", json={'trigger_config': {'days': 7}},
                   headers=tenant_headers)
        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/activate", headers=tenant_headers)
        assert res.status_code == 200

    def test_only_drafts_can_be_deleted(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers)
        add_step(client, tenant_headers, campaign['id'])

        res = client.delete(f"/api/marketing/campaigns/{campaign['id']}", headers=tenant_headers)
        assert res.status_code == 200
        assert client.get(f"/api/marketing/campaigns/{campaign['id']}", headers=tenant_headers).status_code == 404

    def test_duplicate(self, client, tenant_headers):
        campaign = active_campaign(client, tenant_headers)

        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/duplicate", headers=tenant_headers)
        assert res.status_code == 201
        copy = res.get_json()
        assert copy['name'] == 'Autumn push (Copy)'
        assert copy['status'] == CampaignStatus.DRAFT
        assert len(copy['steps']) == 1
        assert copy['steps'][0]['body_en'] == PUSH_STEP['body_en']

    def test_reorder_and_delete_steps(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers)
        for name in ('First', 'Second', 'Third'):
            add_step(client, tenant_headers, campaign['id'], dict(PUSH_STEP, name=name))
        url = f"/api/marketing/campaigns/{campaign['id']}/steps"

        res = client.post(f"{url}/reorder", json={'order': [3, 1, 2]}, headers=tenant_headers)
        assert [step['name'] for step in res.get_json()['steps']] == ['Third', 'First', 'Second']

        assert client.post(f"{url}/reorder", json={'order': [1, 2]}, headers=tenant_headers).status_code == 400

        first = res.get_json()['steps'][0]
        client.delete(f"{url}/{first['id']}", headers=tenant_headers)
        steps = client.get(url, headers=tenant_headers).get_json()['steps']
        assert [(step['step_number'], step['name']) for step in steps] == [(1, 'First'), (2, 'Second')]

    def test_ab_variants(self, client, tenant_headers):
        campaign = create_campaign(client, tenant_headers)
        variant_a = dict(PUSH_STEP, is_ab_test=True, ab_variant='A', ab_split_percentage=30)
        variant_b = dict(PUSH_STEP, is_ab_test=True, ab_variant='B', step_number=1, body_en='Other copy')
        add_step(client, tenant_headers, campaign['id'], variant_a)
        step_b = add_step(client, tenant_headers, campaign['id'], variant_b)

        assert step_b['step_number'] == 1
        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/steps",
                          json=dict(variant_b, body_en='Third copy'), headers=tenant_headers)
        assert res.status_code == 400
        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/steps",
                          json=dict(PUSH_STEP, is_ab_test=True), headers=tenant_headers)
        assert res.status_code == 400


class TestTemplates:
    """Test built-in campaign templates"""

    def test_seed_is_idempotent(self, app):
        assert campaign_service.seed_templates() == len(CAMPAIGN_TEMPLATES)
        assert campaign_service.seed_templates() == 0

    def test_use_template(self, app, client, tenant_headers, tenant_id):
        campaign_service.seed_templates()
        templates = client.get('/api/marketing/templates', headers=tenant_headers).get_json()['templates']
        welcome = next(t for t in templates if t['template_key'] == 'welcome_sequence')
        assert welcome['tenant_id'] is None

        res = client.post(f"/api/marketing/templates/{welcome['id']}/use", json={'name': 'Our welcome'},
                          headers=tenant_headers)
        assert res.status_code == 201
        campaign = res.get_json()
        assert campaign['tenant_id'] == tenant_id
        assert campaign['name'] == 'Our welcome'
        assert campaign['status'] == CampaignStatus.DRAFT
        assert campaign['is_template'] is False
        assert len(campaign['steps']) == len(welcome['steps'])

        # templates never show up as tenant campaigns
        campaigns = client.get('/api/marketing/campaigns', headers=tenant_headers).get_json()['campaigns']
        assert [c['id'] for c in campaigns] == [campaign['id']]
        assert client.get(f"/api/marketing/campaigns/{welcome['id']}", headers=tenant_headers).status_code == 404


class TestExecution:
    """Test enrollment and step processing"""

    def test_enroll_and_send_push(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers)
        url = f"/api/marketing/campaigns/{campaign['id']}/enrollments"

        res = client.post(url, json={'member_ids': [member['id']]}, headers=tenant_headers)
        assert res.status_code == 201
        assert res.get_json()['enrolled'] == 1

        # already enrolled
        res = client.post(url, json={'member_ids': [member['id']]}, headers=tenant_headers)
        assert res.get_json() == {'enrolled': 0, 'skipped': 1, 'enrollment_ids': []}

        results = execution_service.process_due_steps(now=soon())
        assert results == {'due': 1, 'sent': 1, 'send_failed': 0, 'completed': 1, 'cancelled': 0, 'failed': 0}

        message = DBMessageLog.query.filter_by(member_id=member['id']).one()
        assert message.status == MessageStatus.SENT
        assert message.body == 'Hi Sara, see you at Fitness Time'
        assert message.language == 'en'

        enrollments = client.get(url, headers=tenant_headers).get_json()['enrollments']
        assert enrollments[0]['status'] == EnrollmentStatus.COMPLETED
        assert enrollments[0]['current_step'] == 1

        analytics = client.get(f"/api/marketing/analytics/campaigns/{campaign['id']}",
                               headers=tenant_headers).get_json()
        assert analytics['total_enrolled'] == 1
        assert analytics['completion_rate'] == 100.0
        assert analytics['messages']['sent'] == 1

    def test_failed_email_still_advances(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers, steps=[{
            'channel': StepChannel.EMAIL, 'subject_en': 'Hello {{firstName}}', 'body_en': 'Welcome'
        }])
        client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                    json={'member_ids': [member['id']]}, headers=tenant_headers)

        results = execution_service.process_due_steps(now=soon())
        assert results['sent'] == 0
        assert results['send_failed'] == 1
        assert results['completed'] == 1

        message = DBMessageLog.query.filter_by(member_id=member['id']).one()
        # no mail provider configured under test
        assert message.status == MessageStatus.FAILED
        assert message.subject == 'Hello Sara'
        enrollment = DBCampaignEnrollment.query.filter_by(member_id=member['id']).one()
        assert enrollment.status == EnrollmentStatus.COMPLETED

    def test_steps_wait_for_their_delay(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers, steps=[
            PUSH_STEP, dict(PUSH_STEP, name='Follow up', delay_days=2)
        ])
        client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                    json={'member_ids': [member['id']]}, headers=tenant_headers)
        now = soon()

        assert execution_service.process_due_steps(now=now)['sent'] == 1
        assert execution_service.process_due_steps(now=now + timedelta(days=1))['due'] == 0

        results = execution_service.process_due_steps(now=now + timedelta(days=2))
        assert results['sent'] == 1
        assert results['completed'] == 1

    def test_paused_campaigns_hold_enrollments(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers)
        client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                    json={'member_ids': [member['id']]}, headers=tenant_headers)
        client.post(f"/api/marketing/campaigns/{campaign['id']}/pause", headers=tenant_headers)

        assert execution_service.process_due_steps(now=soon())['due'] == 0

        client.post(f"/api/marketing/campaigns/{campaign['id']}/activate", headers=tenant_headers)
        assert execution_service.process_due_steps(now=soon())['sent'] == 1

    def test_archiving_cancels_enrollments(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers)
        client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                    json={'member_ids': [member['id']]}, headers=tenant_headers)

        client.post(f"/api/marketing/campaigns/{campaign['id']}/archive", headers=tenant_headers)

        enrollment = DBCampaignEnrollment.query.filter_by(member_id=member['id']).one()
        assert enrollment.status == EnrollmentStatus.CANCELLED
        assert enrollment.cancel_reason == 'campaign_archived'

    def test_opted_out_members_are_skipped(self, client, tenant_headers, member):
        client.put(f"/api/members/{member['id']}", json={'marketing_opt_in': False}, headers=tenant_headers)
        campaign = active_campaign(client, tenant_headers)

        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                          json={'member_ids': [member['id']]}, headers=tenant_headers)
        assert res.get_json()['skipped'] == 1

    def test_draft_campaign_enrolls_nobody(self, client, tenant_headers, member):
        campaign = create_campaign(client, tenant_headers)
        add_step(client, tenant_headers, campaign['id'])

        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                          json={'member_ids': [member['id']]}, headers=tenant_headers)
        assert res.get_json()['enrolled'] == 0

    def test_new_members_join_welcome_campaigns(self, client, tenant_headers):
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.MEMBER_CREATED,
                                   campaign_type='welcome_sequence')

        res = client.post('/api/members', json={'first_name': 'Ahmed', 'email': 'ahmed@example.sa'},
                          headers=tenant_headers)
        member_id = res.get_json()['id']

        enrollment = DBCampaignEnrollment.query.filter_by(campaign_id=campaign['id'], member_id=member_id).one()
        assert enrollment.trigger_source == TriggerType.MEMBER_CREATED

    def test_cancel_enrollment(self, client, tenant_headers, member):
        campaign = active_campaign(client, tenant_headers)
        enrollment_id = client.post(f"/api/marketing/campaigns/{campaign['id']}/enrollments",
                                    json={'member_ids': [member['id']]},
                                    headers=tenant_headers).get_json()['enrollment_ids'][0]

        res = client.post(f"/api/marketing/enrollments/{enrollment_id}/cancel", json={'reason': 'asked'},
                          headers=tenant_headers)
        assert res.get_json()['status'] == EnrollmentStatus.CANCELLED
        assert res.get_json()['cancel_reason'] == 'asked'

        res = client.post(f"/api/marketing/enrollments/{enrollment_id}/cancel", headers=tenant_headers)
        assert res.status_code == 400

    def test_send_test(self, client, tenant_headers, member):
        campaign = create_campaign(client, tenant_headers)
        step = add_step(client, tenant_headers, campaign['id'])

        res = client.post(f"/api/marketing/campaigns/{campaign['id']}/steps/{step['id']}/test",
                          json={'member_id': member['id']}, headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['is_test'] is True
        assert res.get_json()['status'] == MessageStatus.SENT
        assert DBCampaignEnrollment.query.count() == 0


class TestScheduling:
    """Test send-time alignment and A/B bucketing"""

    def test_weekend_and_send_time(self, app):
        campaign = DBCampaign(tenant_id='tenant_x', name='Reminder',
                              trigger_config={'time': '09:00', 'exclude_weekends': True})
        step = DBCampaignStep(campaign_id=campaign.id, step_number=1, delay_days=1)

        # Thursday 10:00 UTC + 1 day is Friday 13:00 in Riyadh; 09:00 has passed, so
        # Saturday 09:00, which is also weekend, so Sunday 09:00 (06:00 UTC)
        due = execution_service.schedule_time(campaign, datetime(2026, 10, 15, 10, 0), step)
        assert due == datetime(2026, 10, 18, 6, 0)

    def test_plain_delay(self, app):
        campaign = DBCampaign(tenant_id='tenant_x', name='Plain')
        step = DBCampaignStep(campaign_id=campaign.id, step_number=1, delay_hours=5)

        due = execution_service.schedule_time(campaign, datetime(2026, 10, 16, 10, 0), step)
        assert due == datetime(2026, 10, 16, 15, 0)

    def test_ab_group_split(self, app):
        campaign = DBCampaign(tenant_id='tenant_x', name='Split')
        steps = [
            DBCampaignStep(campaign_id=campaign.id, step_number=1, is_ab_test=True, ab_variant='A',
                           ab_split_percentage=30),
            DBCampaignStep(campaign_id=campaign.id, step_number=1, is_ab_test=True, ab_variant='B'),
        ]

        assert execution_service.assign_ab_group(campaign, roll=30, steps=steps) == 'A'
        assert execution_service.assign_ab_group(campaign, roll=31, steps=steps) == 'B'
        assert execution_service.assign_ab_group(campaign, roll=1, steps=steps[:0]) is None

    def test_personalize(self):
        context = {'firstName': 'Noura', 'clubName': 'Fitness Time'}
        assert personalize('Hi {{ firstName }} from {{clubName}}', context) == 'Hi Noura from Fitness Time'
        assert personalize('Code {{promo}}', context) == 'Code {{promo}}'
        assert personalize(None, context) is None


class TestTracking:
    """Test open/click tracking and delivery receipts"""

    def _sent_message(self, tenant_id, member_id, token='tok-open-123'):
        message = DBMessageLog(tenant_id=tenant_id, channel=StepChannel.EMAIL, member_id=member_id,
                               recipient='sara@example.sa', subject='Offer')
        message.mark_sent(datetime.utcnow())
        db.session.add(message)
        db.session.add(DBTrackingPixel(token=token, message_log_id=message.id, open_count=0, click_count=0))
        db.session.commit()
        return message

    def test_open_pixel(self, client, tenant_id, member):
        message = self._sent_message(tenant_id, member['id'])

        res = client.get('/api/marketing/track/open/tok-open-123')
        assert res.status_code == 200
        assert res.mimetype == 'image/gif'

        db.session.expire_all()
        assert db.session.get(DBMessageLog, message.id).status == MessageStatus.OPENED
        pixel = DBTrackingPixel.query.filter_by(token='tok-open-123').one()
        assert pixel.open_count == 1

        # unknown tokens still get the image
        assert client.get('/api/marketing/track/open/unknown').status_code == 200

    def test_click_redirect(self, client, tenant_id, member):
        message = self._sent_message(tenant_id, member['id'])

        res = client.get('/api/marketing/track/click/tok-open-123?url=javascript:alert(1)')
        assert res.status_code == 400

        res = client.get('/api/marketing/track/click/tok-open-123?url=https://fitnesstime.sa/offers')
        assert res.status_code == 302
        assert res.headers['Location'] == 'https://fitnesstime.sa/offers'

        db.session.expire_all()
        clicked = db.session.get(DBMessageLog, message.id)
        assert clicked.status == MessageStatus.CLICKED
        assert clicked.opened_at is not None

    def test_delivery_receipt(self, client, tenant_headers, tenant_id, member):
        message = self._sent_message(tenant_id, member['id'])

        res = client.post(f"/api/marketing/messages/{message.id}/delivered", headers=tenant_headers)
        assert res.get_json()['status'] == MessageStatus.DELIVERED
        assert res.get_json()['delivered_at'] is not None


class TestSegments:
    """Test audiences"""

    def test_dynamic_segment(self, client, tenant_headers, member):
        client.post('/api/members', json={'first_name': 'Ahmed', 'gender': 'male'}, headers=tenant_headers)
        client.put(f"/api/members/{member['id']}", json={'tags': ['vip']}, headers=tenant_headers)

        res = client.post('/api/marketing/segments', json={
            'name': 'VIPs', 'criteria': {'tags': ['vip', 'founder']}
        }, headers=tenant_headers)
        assert res.status_code == 201
        segment = res.get_json()
        assert segment['member_count'] == 1

        preview = client.get(f"/api/marketing/segments/{segment['id']}/preview", headers=tenant_headers).get_json()
        assert [m['id'] for m in preview['members']] == [member['id']]

        res = client.post('/api/marketing/segments/preview', json={'criteria': {'gender': 'male'}},
                          headers=tenant_headers)
        assert res.get_json()['count'] == 1

    def test_criteria_validation(self, client, tenant_headers):
        bad_criteria = [
            {'favourite_colour': 'blue'},
            {'tags': 'vip'},
            {'inactive_days': -1},
            {'gender': 'other'},
            {'member_statuses': ['sleeping']},
            {'min_age': 40, 'max_age': 30},
        ]
        for criteria in bad_criteria:
            res = client.post('/api/marketing/segments', json={'name': 'Bad', 'criteria': criteria},
                              headers=tenant_headers)
            assert res.status_code == 400, criteria

    def test_static_segment(self, client, tenant_headers, member):
        res = client.post('/api/marketing/segments', json={
            'name': 'Front row', 'segment_type': 'static', 'member_ids': [member['id']]
        }, headers=tenant_headers)
        segment = res.get_json()
        assert segment['member_count'] == 1
        url = f"/api/marketing/segments/{segment['id']}/members"

        assert client.post(url, json={'member_ids': ['member_missing']}, headers=tenant_headers).status_code == 400

        res = client.delete(url, json={'member_ids': [member['id']]}, headers=tenant_headers)
        assert res.get_json() == {'removed': 1, 'member_count': 0}

    def test_segment_campaign_enrolls_on_activation(self, client, tenant_headers, member):
        segment = client.post('/api/marketing/segments', json={
            'name': 'Women', 'criteria': {'gender': 'female'}
        }, headers=tenant_headers).get_json()

        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.SEGMENT,
                                   segment_id=segment['id'])
        assert client.get(f"/api/marketing/campaigns/{campaign['id']}",
                          headers=tenant_headers).get_json()['total_enrolled'] == 1

        # in use by a live campaign
        res = client.delete(f"/api/marketing/segments/{segment['id']}", headers=tenant_headers)
        assert res.status_code == 409


def make_member(tenant_id, first_name, **fields):
    member = DBMember(tenant_id=tenant_id, first_name=first_name, **fields)
    db.session.add(member)
    db.session.commit()
    return member


def subscribe(tenant_id, member, plan, end_date, status=SubscriptionStatus.ACTIVE):
    subscription = DBSubscription(tenant_id=tenant_id, member_id=member.id, plan_id=plan.id,
                                  start_date=end_date - timedelta(days=plan.duration_days),
                                  end_date=end_date, status=status)
    db.session.add(subscription)
    db.session.commit()
    return subscription


def enrolled_names(campaign_id):
    enrollments = DBCampaignEnrollment.query.filter_by(campaign_id=campaign_id).all()
    return sorted(db.session.get(DBMember, e.member_id).first_name for e in enrollments)


class TestTriggers:
    """Test daily trigger matching"""

    def test_days_before_expiry_filters_plans(self, client, tenant_headers, tenant_id):
        today = date(2026, 10, 18)
        gold = DBMembershipPlan(tenant_id=tenant_id, name_en='Gold')
        silver = DBMembershipPlan(tenant_id=tenant_id, name_en='Silver')
        db.session.add_all([gold, silver])
        db.session.commit()
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.DAYS_BEFORE_EXPIRY,
                                   trigger_config={'days': 7, 'plan_ids': [gold.id]})

        subscribe(tenant_id, make_member(tenant_id, 'Noura'), gold, today + timedelta(days=7))
        subscribe(tenant_id, make_member(tenant_id, 'Faisal'), silver, today + timedelta(days=7))
        subscribe(tenant_id, make_member(tenant_id, 'Ahmed'), gold, today + timedelta(days=8))

        assert trigger_service.trigger_days_before_expiry(today) == 1
        assert enrolled_names(campaign['id']) == ['Noura']
        assert trigger_service.trigger_days_before_expiry(today) == 0

    def test_days_after_expiry_skips_renewed_members(self, client, tenant_headers, tenant_id):
        today = date(2026, 10, 18)
        plan = DBMembershipPlan(tenant_id=tenant_id, name_en='Monthly')
        db.session.add(plan)
        db.session.commit()
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.DAYS_AFTER_EXPIRY,
                                   trigger_config={'days': 3})

        lapsed = make_member(tenant_id, 'Reem')
        subscribe(tenant_id, lapsed, plan, today - timedelta(days=3), status=SubscriptionStatus.EXPIRED)
        renewed = make_member(tenant_id, 'Khalid')
        subscribe(tenant_id, renewed, plan, today - timedelta(days=3), status=SubscriptionStatus.EXPIRED)
        subscribe(tenant_id, renewed, plan, today + timedelta(days=27))

        assert trigger_service.trigger_days_after_expiry(today) == 1
        assert enrolled_names(campaign['id']) == ['Reem']

    def test_leap_day_birthdays_in_common_years(self, client, tenant_headers, tenant_id):
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.BIRTHDAY)
        make_member(tenant_id, 'Layla', date_of_birth=date(1992, 2, 29))
        make_member(tenant_id, 'Omar', date_of_birth=date(1990, 2, 28))
        make_member(tenant_id, 'Huda', date_of_birth=date(1990, 3, 1))

        assert trigger_service.trigger_birthdays(date(2027, 2, 28)) == 2
        assert enrolled_names(campaign['id']) == ['Layla', 'Omar']

    def test_leap_day_birthdays_wait_in_leap_years(self, client, tenant_headers, tenant_id):
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.BIRTHDAY)
        make_member(tenant_id, 'Layla', date_of_birth=date(1992, 2, 29))
        make_member(tenant_id, 'Omar', date_of_birth=date(1990, 2, 28))

        assert trigger_service.trigger_birthdays(date(2028, 2, 28)) == 1
        assert enrolled_names(campaign['id']) == ['Omar']

    def test_birthday_fires_once_a_year(self, client, tenant_headers, tenant_id):
        today = date.today()
        active_campaign(client, tenant_headers, trigger_type=TriggerType.BIRTHDAY)
        make_member(tenant_id, 'Maha', date_of_birth=date(1992, today.month, today.day))

        assert trigger_service.trigger_birthdays(today) == 1
        execution_service.cancel_enrollment(DBCampaignEnrollment.query.one())
        assert trigger_service.trigger_birthdays(today) == 0

    def test_inactivity_includes_members_who_never_checked_in(self, client, tenant_headers, tenant_id):
        now = datetime.utcnow()
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.DAYS_INACTIVE,
                                   trigger_config={'days': 14})
        make_member(tenant_id, 'Nasser')
        make_member(tenant_id, 'Salma', last_check_in_at=now - timedelta(days=20))
        make_member(tenant_id, 'Yousef', last_check_in_at=now - timedelta(days=2))
        make_member(tenant_id, 'Dana', status=MemberStatus.FROZEN)

        assert trigger_service.trigger_inactivity(date.today()) == 2
        assert enrolled_names(campaign['id']) == ['Nasser', 'Salma']

        # once per inactivity spell
        for enrollment in DBCampaignEnrollment.query.all():
            execution_service.cancel_enrollment(enrollment)
        assert trigger_service.trigger_inactivity(date.today()) == 0

    def test_payment_failed_enrolls_once_per_member(self, client, tenant_headers, tenant_id):
        campaign = active_campaign(client, tenant_headers, trigger_type=TriggerType.PAYMENT_FAILED)
        late = make_member(tenant_id, 'Bader')
        paying = make_member(tenant_id, 'Hind')
        db.session.add_all([
            DBInvoice(tenant_id, late.id, 'INV-2026-00001', status=InvoiceStatus.OVERDUE, due_date=date(2026, 9, 1)),
            DBInvoice(tenant_id, late.id, 'INV-2026-00002', status=InvoiceStatus.OVERDUE, due_date=date(2026, 10, 1)),
            DBInvoice(tenant_id, paying.id, 'INV-2026-00003', status=InvoiceStatus.ISSUED, due_date=date(2026, 10, 1)),
        ])
        db.session.commit()

        assert trigger_service.trigger_payment_failed(date.today()) == 1
        assert enrolled_names(campaign['id']) == ['Bader']

        execution_service.cancel_enrollment(DBCampaignEnrollment.query.one())
        assert trigger_service.trigger_payment_failed(date.today()) == 0

    def test_one_failing_trigger_does_not_stop_the_rest(self, client, tenant_headers, tenant_id, monkeypatch):
        active_campaign(client, tenant_headers, trigger_type=TriggerType.DAYS_INACTIVE, trigger_config={'days': 14})
        make_member(tenant_id, 'Nasser')

        def broken(today):
            raise RuntimeError('birthday lookup failed')

        monkeypatch.setattr(trigger_service, 'trigger_birthdays', broken)
        results = trigger_service.run_daily_triggers(date.today())

        assert results[TriggerType.BIRTHDAY] is None
        assert results[TriggerType.DAYS_INACTIVE] == 1
        assert results[TriggerType.PAYMENT_FAILED] == 0


class TestAbResults:
    """Test A/B winner selection"""

    def _ab_campaign(self, client, headers):
        campaign = create_campaign(client, headers)
        step_a = add_step(client, headers, campaign['id'], dict(PUSH_STEP, is_ab_test=True, ab_variant='A'))
        step_b = add_step(client, headers, campaign['id'], dict(PUSH_STEP, is_ab_test=True, ab_variant='B',
                                                                step_number=1, body_en='Other copy'))
        return campaign, step_a, step_b

    def _record(self, tenant_id, campaign, step, member_id, sent, opened=0, clicked=0):
        now = datetime.utcnow()
        for index in range(sent):
            message = DBMessageLog(tenant_id=tenant_id, channel=StepChannel.PUSH, campaign_id=campaign['id'],
                                   step_id=step['id'], member_id=member_id, recipient=member_id,
                                   ab_variant=step['ab_variant'])
            message.mark_sent(now)
            if index < clicked:
                message.mark_clicked(now)
            elif index < opened:
                message.mark_opened(now)
            db.session.add(message)
        db.session.commit()

    def _results(self, client, headers, campaign, min_sample=None):
        url = f"/api/marketing/analytics/campaigns/{campaign['id']}/ab"
        if min_sample is not None:
            url += f"?min_sample={min_sample}"
        res = client.get(url, headers=headers)
        assert res.status_code == 200
        return res.get_json()['steps'][0]

    def test_open_rate_decides(self, client, tenant_headers, tenant_id, member):
        campaign, step_a, step_b = self._ab_campaign(client, tenant_headers)
        self._record(tenant_id, campaign, step_a, member['id'], sent=10, opened=4)
        self._record(tenant_id, campaign, step_b, member['id'], sent=10, opened=2)

        result = self._results(client, tenant_headers, campaign, min_sample=10)
        assert result['sufficient_data'] is True
        assert result['winner'] == 'A'
        assert [v['open_rate'] for v in result['variants']] == [40.0, 20.0]

    def test_click_rate_breaks_ties(self, client, tenant_headers, tenant_id, member):
        campaign, step_a, step_b = self._ab_campaign(client, tenant_headers)
        self._record(tenant_id, campaign, step_a, member['id'], sent=10, opened=3, clicked=1)
        self._record(tenant_id, campaign, step_b, member['id'], sent=10, opened=3, clicked=2)

        assert self._results(client, tenant_headers, campaign, min_sample=10)['winner'] == 'B'

    def test_exact_tie_has_no_winner(self, client, tenant_headers, tenant_id, member):
        campaign, step_a, step_b = self._ab_campaign(client, tenant_headers)
        self._record(tenant_id, campaign, step_a, member['id'], sent=10, opened=3, clicked=1)
        self._record(tenant_id, campaign, step_b, member['id'], sent=10, opened=3, clicked=1)

        result = self._results(client, tenant_headers, campaign, min_sample=10)
        assert result['sufficient_data'] is True
        assert result['winner'] is None

    def test_waits_for_minimum_sample(self, client, tenant_headers, tenant_id, member):
        campaign, step_a, step_b = self._ab_campaign(client, tenant_headers)
        self._record(tenant_id, campaign, step_a, member['id'], sent=10, opened=4)
        self._record(tenant_id, campaign, step_b, member['id'], sent=10, opened=2)

        result = self._results(client, tenant_headers, campaign)
        assert result['min_sample'] == 20
        assert result['sufficient_data'] is False
        assert result['winner'] is None

        db_campaign = db.session.get(DBCampaign, campaign['id'])
        assert marketing_analytics_service.ab_results(db_campaign, min_sample=10)[0]['winner'] == 'A'
