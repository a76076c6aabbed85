"""
Liyaqa - Team Routes
Invites and members of the caller's team (platform team or tenant staff)
"""
from flask import Blueprint, request, jsonify

from liyaqa.exceptions import ValidationError
from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required
from liyaqa.services.auth_service import auth_service
from liyaqa.services.team_service import team_service

team_bp = Blueprint('team', __name__)


@team_bp.route('/invites', methods=['GET'])
@permission_required(Permission.TEAM_MANAGE)
def list_invites(current_user):
    invites = team_service.list_invites(current_user.tenant_id, status=request.args.get('status'))
    return jsonify({'invites': [invite.to_dict() for invite in invites]})


@team_bp.route('/invites', methods=['POST'])
@permission_required(Permission.TEAM_MANAGE)
def create_invite(current_user):
    """
    POST /api/team/invites
    {"email": "coach@club.sa", "role": "staff"}

    The invite token is e-mailed and returned once.
    """
    data = request.get_json(silent=True) or {}
    if not data.get('role'):
        raise ValidationError('role is required')
    invite, token = team_service.invite(current_user, data.get('email'), data['role'])
    return jsonify({'invite': invite.to_dict(), 'token': token}), 201


@team_bp.route('/invites/<invite_id>', methods=['DELETE'])
@permission_required(Permission.TEAM_MANAGE)
def revoke_invite(current_user, invite_id):
    invite = team_service.revoke(team_service.get_invite(invite_id, current_user.tenant_id), current_user)
    return jsonify(invite.to_dict())


@team_bp.route('/invites/accept', methods=['POST'])
def accept_invite():
    """
    POST /api/team/invites/accept
    {"token": "...", "name": "Sara", "password": "..."}
    """
    data = request.get_json(silent=True) or {}
    user = team_service.accept(data.get('token'), data.get('name'), data.get('password'))
    return jsonify({'user': user.to_dict(), 'token': auth_service.generate_token(user)}), 201


@team_bp.route('/members', methods=['GET'])
@permission_required(Permission.TEAM_MANAGE)
def list_members(current_user):
    members = team_service.list_members(current_user.tenant_id)
    return jsonify({'members': [member.to_dict() for member in members]})


@team_bp.route('/members/<user_id>/role', methods=['PUT'])
@permission_required(Permission.TEAM_MANAGE)
def change_member_role(current_user, user_id):
    data = request.get_json(silent=True) or {}
    if not data.get('role'):
        raise ValidationError('role is required')
    member = auth_service.get_user(user_id, current_user.tenant_id)
    return jsonify(team_service.change_role(member, data['role'], current_user).to_dict())


@team_bp.route('/members/<user_id>/deactivate', methods=['POST'])
@permission_required(Permission.TEAM_MANAGE)
def deactivate_member(current_user, user_id):
    member = auth_service.get_user(user_id, current_user.tenant_id)
    return jsonify(team_service.deactivate_member(member, current_user).to_dict())
