"""
Liyaqa - Team Service
Invitations and membership of the platform team and tenant staff teams
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, List

from flask import current_app

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError, PermissionDeniedError
from liyaqa.models import DBTeamInvite, DBUser, InviteStatus, UserRole
from liyaqa.services.audit_service import audit_service
from liyaqa.services.auth_service import auth_service, validate_password
from liyaqa.services.notification_service import notification_service

logger = logging.getLogger(__name__)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class TeamService:
    """Team scope is the inviter's tenant; platform users manage the platform team"""

    def invite(self, inviter: DBUser, email: str, role: str):
        """Create and e-mail an invite. Returns (invite, raw_token)."""
        email = (email or '').strip().lower()
        if not email or '@' not in email:
            raise ValidationError('A valid email is required')

        tenant_id = inviter.tenant_id
        allowed = UserRole.TENANT_ROLES if tenant_id else UserRole.PLATFORM_ROLES
        if role not in allowed:
            raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(allowed)}")
        if role == UserRole.SUPER_ADMIN and inviter.role != UserRole.SUPER_ADMIN:
            raise PermissionDeniedError('Only a super admin can invite another super admin')

        if DBUser.query.filter_by(email=email).first():
            raise ConflictError(f'A user with email {email} already exists')

        self.expire_invites()
        pending = DBTeamInvite.query.filter_by(email=email, status=InviteStatus.PENDING).first()
        if pending:
            raise ConflictError(f'An invite for {email} is already pending')

        token = secrets.token_urlsafe(32)
        days = current_app.config.get('INVITE_EXPIRY_DAYS', 7)
        invite = DBTeamInvite(
            email=email,
            role=role,
            token_hash=_hash_token(token),
            expires_at=datetime.utcnow() + timedelta(days=days),
            tenant_id=tenant_id,
            invited_by=inviter.id
        )
        db.session.add(invite)

        accept_url = f"{current_app.config.get('APP_URL', '').rstrip('/')}/accept-invite?token={token}"
        notification = notification_service.send_email(
            email,
            'You have been invited to join Liyaqa',
            f"<p>{inviter.name} invited you to join their team on Liyaqa as <b>{role}</b>.</p>"
            f"<p><a href=\"{accept_url}\">Accept the invitation</a> (valid for {days} days).</p>",
            tenant_id=tenant_id,
            user_id=inviter.id,
            related_type='invite',
            related_id=invite.id
        )
        invite.email_sent = notification.status == 'sent'
        commit()

        audit_service.log(
            action=audit_service.ACTION_INVITE,
            resource_type=audit_service.RESOURCE_INVITE,
            resource_id=invite.id,
            resource_name=email,
            actor=inviter,
            tenant_id=tenant_id,
            description=f"Invited {email} as {role}"
        )
        return invite, token

    def list_invites(self, tenant_id: Optional[str], status: Optional[str] = None) -> List[DBTeamInvite]:
        self.expire_invites()
        query = DBTeamInvite.query.filter(
            DBTeamInvite.tenant_id.is_(None) if tenant_id is None else DBTeamInvite.tenant_id == tenant_id
        )
        if status:
            query = query.filter(DBTeamInvite.status == status)
        return query.order_by(DBTeamInvite.created_at.desc()).all()

    def get_invite(self, invite_id: str, tenant_id: Optional[str]) -> DBTeamInvite:
        invite = db.session.get(DBTeamInvite, invite_id)
        if not invite or invite.tenant_id != tenant_id:
            raise NotFoundError('Invite', invite_id)
        return invite

    def revoke(self, invite: DBTeamInvite, actor: DBUser) -> DBTeamInvite:
        if invite.status != InviteStatus.PENDING:
            raise ValidationError(f'Invite is already {invite.status}')
        invite.status = InviteStatus.REVOKED
        invite.revoked_at = datetime.utcnow()
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_INVITE, invite.id, invite.email,
                                        InviteStatus.PENDING, InviteStatus.REVOKED,
                                        actor=actor, tenant_id=invite.tenant_id)
        return invite

    def accept(self, token: str, name: str, password: str) -> DBUser:
        if not token:
            raise ValidationError('token is required')
        if not name:
            raise ValidationError('name is required')
        valid, error = validate_password(password)
        if not valid:
            raise ValidationError(error)

        invite = DBTeamInvite.query.filter_by(token_hash=_hash_token(token)).first()
        if not invite:
            raise NotFoundError('Invite')
        if invite.status == InviteStatus.PENDING and invite.expires_at <= datetime.utcnow():
            invite.status = InviteStatus.EXPIRED
            commit()
        if invite.status != InviteStatus.PENDING:
            raise ValidationError(f'Invite is {invite.status}')
        if DBUser.query.filter_by(email=invite.email).first():
            raise ConflictError(f'A user with email {invite.email} already exists')

        user = DBUser(email=invite.email, name=name, password=password, role=invite.role,
                      tenant_id=invite.tenant_id)
        invite.status = InviteStatus.ACCEPTED
        invite.accepted_at = datetime.utcnow()
        invite.accepted_user_id = user.id
        save(user)

        audit_service.log(
            action=audit_service.ACTION_INVITE_ACCEPT,
            resource_type=audit_service.RESOURCE_INVITE,
            resource_id=invite.id,
            resource_name=invite.email,
            actor=user,
            tenant_id=invite.tenant_id,
            description=f"{invite.email} accepted invite as {invite.role}"
        )
        return user

    def expire_invites(self, now: datetime = None) -> int:
        now = now or datetime.utcnow()
        expired = DBTeamInvite.query.filter(
            DBTeamInvite.status == InviteStatus.PENDING,
            DBTeamInvite.expires_at <= now
        ).all()
        for invite in expired:
            invite.status = InviteStatus.EXPIRED
        if expired:
            commit()
            logger.info(f"Expired {len(expired)} team invites")
        return len(expired)

    def list_members(self, tenant_id: Optional[str]) -> List[DBUser]:
        return auth_service.list_users(tenant_id)

    def change_role(self, member: DBUser, role: str, actor: DBUser) -> DBUser:
        if role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
            raise PermissionDeniedError('Only a super admin can grant the super admin role')
        return auth_service.update_user(member, {'role': role}, actor=actor)

    def deactivate_member(self, member: DBUser, actor: DBUser) -> DBUser:
        return auth_service.deactivate_user(member, actor=actor)


team_service = TeamService()
