"""
Liyaqa - Marketing Routes
Campaigns, steps, templates, segments, enrollments, analytics and
engagement tracking
"""
import base64
from urllib.parse import urlparse

from flask import Blueprint, request, jsonify, redirect, Response

from liyaqa.exceptions import ValidationError
from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required, resolve_tenant_id
from liyaqa.services.membership_service import membership_service
from liyaqa.services.marketing import (
    campaign_service, execution_service, segment_service, marketing_analytics_service,
)
from liyaqa.utils import paginate, safe_bool, safe_int

marketing_bp = Blueprint('marketing', __name__)

# 1x1 transparent GIF
TRACKING_PIXEL = base64.b64decode('R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7')

CAMPAIGN_ACTIONS = {
    'activate': campaign_service.activate,
    'pause': campaign_service.pause,
    'archive': campaign_service.archive,
}


def _campaign(current_user, campaign_id):
    return campaign_service.get_campaign(resolve_tenant_id(current_user), campaign_id)


# ==========================================
# Campaigns
# ==========================================

@marketing_bp.route('/campaigns', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def list_campaigns(current_user):
    """GET /api/marketing/campaigns?status=active&campaign_type=welcome&trigger_type=member_created&search="""
    tenant_id = resolve_tenant_id(current_user)
    query = campaign_service.list_campaigns(
        tenant_id,
        status=request.args.get('status'),
        campaign_type=request.args.get('campaign_type'),
        trigger_type=request.args.get('trigger_type'),
        search=request.args.get('search')
    )
    return jsonify(paginate(query, request, key='campaigns'))


@marketing_bp.route('/campaigns', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def create_campaign(current_user):
    """
    POST /api/marketing/campaigns
    {
        "name": "Welcome series",
        "campaign_type": "welcome",
        "trigger_type": "member_created",
        "trigger_config": {}
    }
    """
    tenant_id = resolve_tenant_id(current_user)
    campaign = campaign_service.create_campaign(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(campaign.to_dict()), 201


@marketing_bp.route('/campaigns/<campaign_id>', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def get_campaign(current_user, campaign_id):
    campaign = _campaign(current_user, campaign_id)
    return jsonify(campaign.to_dict(steps=campaign_service.list_steps(campaign)))


@marketing_bp.route('/campaigns/<campaign_id>', methods=['PUT'])
@permission_required(Permission.MARKETING_MANAGE)
def update_campaign(current_user, campaign_id):
    campaign = campaign_service.update_campaign(_campaign(current_user, campaign_id),
                                                request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(campaign.to_dict())


@marketing_bp.route('/campaigns/<campaign_id>', methods=['DELETE'])
@permission_required(Permission.MARKETING_MANAGE)
def delete_campaign(current_user, campaign_id):
    campaign_service.delete_campaign(_campaign(current_user, campaign_id), actor=current_user)
    return jsonify({'message': 'Campaign deleted'})


@marketing_bp.route('/campaigns/<campaign_id>/duplicate', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def duplicate_campaign(current_user, campaign_id):
    data = request.get_json(silent=True) or {}
    copy = campaign_service.duplicate(_campaign(current_user, campaign_id), actor=current_user,
                                      name=data.get('name'))
    return jsonify(copy.to_dict(steps=campaign_service.list_steps(copy))), 201


@marketing_bp.route('/campaigns/<campaign_id>/<action>', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def change_campaign_status(current_user, campaign_id, action):
    """POST /api/marketing/campaigns/<id>/{activate|pause|archive}"""
    if action not in CAMPAIGN_ACTIONS:
        return jsonify({'error': f'Unknown action: {action}'}), 404
    campaign = CAMPAIGN_ACTIONS[action](_campaign(current_user, campaign_id), actor=current_user)
    return jsonify(campaign.to_dict())


# ==========================================
# Steps
# ==========================================

@marketing_bp.route('/campaigns/<campaign_id>/steps', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def list_steps(current_user, campaign_id):
    campaign = _campaign(current_user, campaign_id)
    return jsonify({'steps': [step.to_dict() for step in campaign_service.list_steps(campaign)]})


@marketing_bp.route('/campaigns/<campaign_id>/steps', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def add_step(current_user, campaign_id):
    """
    POST /api/marketing/campaigns/<id>/steps
    {
        "channel": "email",
        "delay_days": 1,
        "subject_en": "Welcome, {{first_name}}",
        "body_en": "...",
        "subject_ar": "...",
        "body_ar": "..."
    }
    """
    campaign = _campaign(current_user, campaign_id)
    step = campaign_service.add_step(campaign, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(step.to_dict()), 201


@marketing_bp.route('/campaigns/<campaign_id>/steps/reorder', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def reorder_steps(current_user, campaign_id):
    """{"order": [3, 1, 2]} lists current step numbers in their new sequence"""
    campaign = _campaign(current_user, campaign_id)
    steps = campaign_service.reorder_steps(campaign, (request.get_json(silent=True) or {}).get('order'),
                                           actor=current_user)
    return jsonify({'steps': [step.to_dict() for step in steps]})


@marketing_bp.route('/campaigns/<campaign_id>/steps/<step_id>', methods=['PUT'])
@permission_required(Permission.MARKETING_MANAGE)
def update_step(current_user, campaign_id, step_id):
    campaign = _campaign(current_user, campaign_id)
    step = campaign_service.update_step(campaign, campaign_service.get_step(campaign, step_id),
                                        request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(step.to_dict())


@marketing_bp.route('/campaigns/<campaign_id>/steps/<step_id>', methods=['DELETE'])
@permission_required(Permission.MARKETING_MANAGE)
def delete_step(current_user, campaign_id, step_id):
    campaign = _campaign(current_user, campaign_id)
    campaign_service.delete_step(campaign, campaign_service.get_step(campaign, step_id), actor=current_user)
    return jsonify({'message': 'Step deleted'})


@marketing_bp.route('/campaigns/<campaign_id>/steps/<step_id>/test', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def send_test(current_user, campaign_id, step_id):
    """{"member_id": "mem_...", "recipient": "qa@club.sa"}  recipient overrides the member's address"""
    tenant_id = resolve_tenant_id(current_user)
    campaign = campaign_service.get_campaign(tenant_id, campaign_id)
    step = campaign_service.get_step(campaign, step_id)
    data = request.get_json(silent=True) or {}
    if not data.get('member_id'):
        raise ValidationError('member_id is required')
    member = membership_service.get_member(tenant_id, data['member_id'])
    message = campaign_service.send_test(campaign, step, member, recipient=data.get('recipient'))
    return jsonify(message.to_dict())


# ==========================================
# Templates
# ==========================================

@marketing_bp.route('/templates', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def list_templates(current_user):
    templates = campaign_service.list_templates()
    return jsonify({'templates': [
        template.to_dict(steps=campaign_service.list_steps(template)) for template in templates
    ]})


@marketing_bp.route('/templates/<template_id>/use', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def use_template(current_user, template_id):
    """Copy a built-in template into the tenant as a draft campaign"""
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    campaign = campaign_service.create_from_template(tenant_id, template_id, name=data.get('name'),
                                                     actor=current_user)
    return jsonify(campaign.to_dict(steps=campaign_service.list_steps(campaign))), 201


# ==========================================
# Enrollments
# ==========================================

@marketing_bp.route('/campaigns/<campaign_id>/enrollments', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def list_enrollments(current_user, campaign_id):
    campaign = _campaign(current_user, campaign_id)
    query = execution_service.list_enrollments(campaign, status=request.args.get('status'))
    return jsonify(paginate(query, request, key='enrollments'))


@marketing_bp.route('/campaigns/<campaign_id>/enrollments', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def enroll(current_user, campaign_id):
    """
    Manual enrollment

    {"member_ids": ["mem_1", "mem_2"]}  or  {"segment_id": "seg_..."}
    """
    tenant_id = resolve_tenant_id(current_user)
    campaign = campaign_service.get_campaign(tenant_id, campaign_id)
    data = request.get_json(silent=True) or {}
    if data.get('segment_id'):
        segment = segment_service.get_segment(tenant_id, data['segment_id'])
        result = execution_service.enroll_segment(campaign, segment)
    else:
        result = execution_service.enroll_members(campaign, data.get('member_ids'))
    return jsonify(result), 201


@marketing_bp.route('/enrollments/<enrollment_id>/cancel', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def cancel_enrollment(current_user, enrollment_id):
    tenant_id = resolve_tenant_id(current_user)
    enrollment = execution_service.get_enrollment(tenant_id, enrollment_id)
    reason = (request.get_json(silent=True) or {}).get('reason') or 'manual'
    return jsonify(execution_service.cancel_enrollment(enrollment, reason).to_dict())


# ==========================================
# Segments
# ==========================================

@marketing_bp.route('/segments', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def list_segments(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = segment_service.list_segments(
        tenant_id,
        segment_type=request.args.get('segment_type'),
        active_only=safe_bool(request.args.get('active_only'))
    )
    return jsonify(paginate(query, request, key='segments'))


@marketing_bp.route('/segments', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def create_segment(current_user):
    """
    POST /api/marketing/segments
    {"name": "Lapsed VIPs", "segment_type": "dynamic", "criteria": {"tags": ["vip"], "inactive_days": 30}}
    """
    tenant_id = resolve_tenant_id(current_user)
    segment = segment_service.create_segment(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(segment.to_dict()), 201


@marketing_bp.route('/segments/preview', methods=['POST'])
@permission_required(Permission.MARKETING_VIEW)
def preview_criteria(current_user):
    """Evaluate criteria without saving a segment"""
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    limit = safe_int(data.get('limit'), 20, min_val=1, max_val=100)
    return jsonify(segment_service.preview_criteria(tenant_id, data.get('criteria'), limit=limit))


@marketing_bp.route('/segments/<segment_id>', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def get_segment(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(segment_service.get_segment(tenant_id, segment_id).to_dict())


@marketing_bp.route('/segments/<segment_id>', methods=['PUT'])
@permission_required(Permission.MARKETING_MANAGE)
def update_segment(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    segment = segment_service.update_segment(segment_service.get_segment(tenant_id, segment_id),
                                             request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(segment.to_dict())


@marketing_bp.route('/segments/<segment_id>', methods=['DELETE'])
@permission_required(Permission.MARKETING_MANAGE)
def delete_segment(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    segment_service.delete_segment(segment_service.get_segment(tenant_id, segment_id), actor=current_user)
    return jsonify({'message': 'Segment deleted'})


@marketing_bp.route('/segments/<segment_id>/preview', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def preview_segment(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    limit = safe_int(request.args.get('limit'), 20, min_val=1, max_val=100)
    return jsonify(segment_service.preview(segment_service.get_segment(tenant_id, segment_id), limit=limit))


@marketing_bp.route('/segments/<segment_id>/members', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def add_segment_members(current_user, segment_id):
    """{"member_ids": [...]}; static segments only"""
    tenant_id = resolve_tenant_id(current_user)
    segment = segment_service.get_segment(tenant_id, segment_id)
    added = segment_service.add_members(segment, (request.get_json(silent=True) or {}).get('member_ids'))
    return jsonify({'added': added, 'member_count': segment.member_count})


@marketing_bp.route('/segments/<segment_id>/members', methods=['DELETE'])
@permission_required(Permission.MARKETING_MANAGE)
def remove_segment_members(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    segment = segment_service.get_segment(tenant_id, segment_id)
    removed = segment_service.remove_members(segment, (request.get_json(silent=True) or {}).get('member_ids'))
    return jsonify({'removed': removed, 'member_count': segment.member_count})


@marketing_bp.route('/segments/<segment_id>/recalculate', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def recalculate_segment(current_user, segment_id):
    tenant_id = resolve_tenant_id(current_user)
    segment = segment_service.get_segment(tenant_id, segment_id)
    return jsonify({'segment_id': segment.id, 'member_count': segment_service.recalculate(segment)})


# ==========================================
# Analytics
# ==========================================

@marketing_bp.route('/analytics/overview', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def analytics_overview(current_user):
    tenant_id = resolve_tenant_id(current_user)
    days = safe_int(request.args.get('days'), 30, min_val=1, max_val=365)
    return jsonify(marketing_analytics_service.overview(tenant_id, days=days))


@marketing_bp.route('/analytics/campaigns/<campaign_id>', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def analytics_campaign(current_user, campaign_id):
    return jsonify(marketing_analytics_service.campaign_analytics(_campaign(current_user, campaign_id)))


@marketing_bp.route('/analytics/campaigns/<campaign_id>/ab', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def analytics_ab(current_user, campaign_id):
    campaign = _campaign(current_user, campaign_id)
    min_sample = safe_int(request.args.get('min_sample'), 0, min_val=0) if request.args.get('min_sample') else None
    return jsonify({'campaign_id': campaign.id,
                    'steps': marketing_analytics_service.ab_results(campaign, min_sample=min_sample)})


@marketing_bp.route('/analytics/timeline', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def analytics_timeline(current_user):
    tenant_id = resolve_tenant_id(current_user)
    days = safe_int(request.args.get('days'), 30, min_val=1, max_val=365)
    return jsonify({'timeline': marketing_analytics_service.timeline(
        tenant_id, campaign_id=request.args.get('campaign_id'), days=days
    )})


# ==========================================
# Messages and tracking
# ==========================================

@marketing_bp.route('/messages/<message_id>', methods=['GET'])
@permission_required(Permission.MARKETING_VIEW)
def get_message(current_user, message_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(execution_service.get_message(tenant_id, message_id).to_dict())


@marketing_bp.route('/messages/<message_id>/delivered', methods=['POST'])
@permission_required(Permission.MARKETING_MANAGE)
def message_delivered(current_user, message_id):
    """Delivery receipt relayed from an SMS/WhatsApp/push gateway"""
    tenant_id = resolve_tenant_id(current_user)
    message = execution_service.record_delivery(execution_service.get_message(tenant_id, message_id))
    return jsonify(message.to_dict())


@marketing_bp.route('/track/open/<token>', methods=['GET'])
def track_open(token):
    """Public: the e-mail open pixel. Always answers with the image."""
    execution_service.record_open(token)
    return Response(TRACKING_PIXEL, mimetype='image/gif', headers={
        'Cache-Control': 'no-cache, no-store, must-revalidate'
    })


@marketing_bp.route('/track/click/<token>', methods=['GET'])
def track_click(token):
    """Public: records a click, then redirects to the original link"""
    url = request.args.get('url', '')
    if urlparse(url).scheme not in ('http', 'https'):
        return jsonify({'error': 'Invalid redirect URL'}), 400
    execution_service.record_click(token)
    return redirect(url, code=302)
