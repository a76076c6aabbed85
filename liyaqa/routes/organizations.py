"""
Liyaqa - Organization Routes
Organizations, clubs, locations and location gender policies
"""
from flask import Blueprint, request, jsonify

from liyaqa.exceptions import ValidationError
from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required, resolve_tenant_id
from liyaqa.services.organization_service import organization_service
from liyaqa.services.gender_policy_service import gender_policy_service
from liyaqa.utils import paginate, parse_datetime

organizations_bp = Blueprint('organizations', __name__)
clubs_bp = Blueprint('clubs', __name__)
locations_bp = Blueprint('locations', __name__)
gender_policies_bp = Blueprint('gender_policies', __name__)


# ==========================================
# Organizations  (/api/organizations)
# ==========================================

@organizations_bp.route('', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def list_organizations(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = organization_service.list_organizations(tenant_id, status=request.args.get('status'))
    return jsonify(paginate(query, request, key='organizations'))


@organizations_bp.route('', methods=['POST'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def create_organization(current_user):
    tenant_id = resolve_tenant_id(current_user)
    organization = organization_service.create_organization(tenant_id, request.get_json(silent=True) or {},
                                                            actor=current_user)
    return jsonify(organization.to_dict()), 201


@organizations_bp.route('/<organization_id>', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def get_organization(current_user, organization_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(organization_service.get_organization(tenant_id, organization_id).to_dict())


@organizations_bp.route('/<organization_id>', methods=['PUT'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def update_organization(current_user, organization_id):
    tenant_id = resolve_tenant_id(current_user)
    organization = organization_service.get_organization(tenant_id, organization_id)
    organization = organization_service.update_organization(organization, request.get_json(silent=True) or {},
                                                            actor=current_user)
    return jsonify(organization.to_dict())


@organizations_bp.route('/<organization_id>', methods=['DELETE'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def delete_organization(current_user, organization_id):
    tenant_id = resolve_tenant_id(current_user)
    organization_service.delete_organization(organization_service.get_organization(tenant_id, organization_id),
                                             actor=current_user)
    return jsonify({'message': 'Organization deleted'})


@organizations_bp.route('/<organization_id>/clubs', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def list_organization_clubs(current_user, organization_id):
    tenant_id = resolve_tenant_id(current_user)
    organization_service.get_organization(tenant_id, organization_id)
    query = organization_service.list_clubs(tenant_id, organization_id=organization_id)
    return jsonify(paginate(query, request, key='clubs'))


# ==========================================
# Clubs  (/api/clubs)
# ==========================================

@clubs_bp.route('', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def list_clubs(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = organization_service.list_clubs(tenant_id, organization_id=request.args.get('organization_id'))
    return jsonify(paginate(query, request, key='clubs'))


@clubs_bp.route('', methods=['POST'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def create_club(current_user):
    tenant_id = resolve_tenant_id(current_user)
    club = organization_service.create_club(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(club.to_dict()), 201


@clubs_bp.route('/<club_id>', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def get_club(current_user, club_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(organization_service.get_club(tenant_id, club_id).to_dict())


@clubs_bp.route('/<club_id>', methods=['PUT'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def update_club(current_user, club_id):
    tenant_id = resolve_tenant_id(current_user)
    club = organization_service.update_club(organization_service.get_club(tenant_id, club_id),
                                            request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(club.to_dict())


@clubs_bp.route('/<club_id>', methods=['DELETE'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def delete_club(current_user, club_id):
    tenant_id = resolve_tenant_id(current_user)
    organization_service.delete_club(organization_service.get_club(tenant_id, club_id), actor=current_user)
    return jsonify({'message': 'Club deleted'})


@clubs_bp.route('/<club_id>/locations', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def list_locations(current_user, club_id):
    tenant_id = resolve_tenant_id(current_user)
    organization_service.get_club(tenant_id, club_id)
    query = organization_service.list_locations(tenant_id, club_id=club_id)
    return jsonify(paginate(query, request, key='locations'))


@clubs_bp.route('/<club_id>/locations', methods=['POST'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def create_location(current_user, club_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.create_location(tenant_id, club_id, request.get_json(silent=True) or {},
                                                    actor=current_user)
    return jsonify(location.to_dict()), 201


# ==========================================
# Locations  (/api/locations)
# ==========================================

@locations_bp.route('/<location_id>', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def get_location(current_user, location_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(organization_service.get_location(tenant_id, location_id).to_dict())


@locations_bp.route('/<location_id>', methods=['PUT'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def update_location(current_user, location_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.update_location(organization_service.get_location(tenant_id, location_id),
                                                    request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(location.to_dict())


@locations_bp.route('/<location_id>', methods=['DELETE'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def delete_location(current_user, location_id):
    tenant_id = resolve_tenant_id(current_user)
    organization_service.delete_location(organization_service.get_location(tenant_id, location_id),
                                         actor=current_user)
    return jsonify({'message': 'Location deleted'})


# ==========================================
# Gender policies  (/api/gender-policies)
# ==========================================

@gender_policies_bp.route('', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def list_policies(current_user):
    """Supported policies with English and Arabic names"""
    return jsonify({'policies': gender_policy_service.list_policies()})


@gender_policies_bp.route('/locations/<location_id>', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def get_location_policy(current_user, location_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    return jsonify({
        'location_id': location.id,
        'gender_policy': location.gender_policy,
        'schedules': [s.to_dict() for s in gender_policy_service.list_schedules(location)]
    })


@gender_policies_bp.route('/locations/<location_id>', methods=['PUT'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def update_location_policy(current_user, location_id):
    """PUT /api/gender-policies/locations/<id> {"gender_policy": "time_based"}"""
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    data = request.get_json(silent=True) or {}
    location = gender_policy_service.update_policy(location, data.get('gender_policy'), actor=current_user)
    return jsonify(location.to_dict())


@gender_policies_bp.route('/locations/<location_id>/schedules', methods=['POST'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def add_schedule(current_user, location_id):
    """
    POST /api/gender-policies/locations/<id>/schedules
    {"day_of_week": "sunday", "start_time": "06:00", "end_time": "12:00", "gender": "female"}
    """
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    schedule = gender_policy_service.add_schedule(location, request.get_json(silent=True) or {},
                                                  actor=current_user)
    return jsonify(schedule.to_dict()), 201


@gender_policies_bp.route('/locations/<location_id>/schedules/<int:schedule_id>', methods=['PUT'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def update_schedule(current_user, location_id, schedule_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    schedule = gender_policy_service.get_schedule(location, schedule_id)
    schedule = gender_policy_service.update_schedule(location, schedule, request.get_json(silent=True) or {},
                                                     actor=current_user)
    return jsonify(schedule.to_dict())


@gender_policies_bp.route('/locations/<location_id>/schedules/<int:schedule_id>', methods=['DELETE'])
@permission_required(Permission.ORGANIZATIONS_MANAGE)
def delete_schedule(current_user, location_id, schedule_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    gender_policy_service.delete_schedule(location, gender_policy_service.get_schedule(location, schedule_id),
                                          actor=current_user)
    return jsonify({'message': 'Schedule deleted'})


@gender_policies_bp.route('/locations/<location_id>/check', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def check_access(current_user, location_id):
    """GET /api/gender-policies/locations/<id>/check?gender=female&at=2026-03-01T09:30"""
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    if not request.args.get('gender'):
        raise ValidationError('gender is required')
    at = parse_datetime(request.args.get('at'), 'at')
    return jsonify(gender_policy_service.check_access(location, request.args['gender'], at))


@gender_policies_bp.route('/locations/<location_id>/status', methods=['GET'])
@permission_required(Permission.ORGANIZATIONS_VIEW)
def current_status(current_user, location_id):
    tenant_id = resolve_tenant_id(current_user)
    location = organization_service.get_location(tenant_id, location_id)
    return jsonify(gender_policy_service.current_status(location))
