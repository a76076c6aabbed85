"""
Liyaqa - Impersonation Service
Lets platform support staff act as a tenant user for a bounded, audited session
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List

from flask import current_app, has_request_context, request

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError, PermissionDeniedError
from liyaqa.models import DBImpersonationSession, DBUser, DBTenant, ImpersonationStatus, Permission
from liyaqa.services.audit_service import audit_service
from liyaqa.services.auth_service import auth_service

logger = logging.getLogger(__name__)


class ImpersonationService:

    def start(self, platform_user: DBUser, target_user_id: str, reason: str):
        """
        Start impersonating a tenant user.

        Returns (session, token). Any active session of the same platform user
        is ended first.
        """
        if not platform_user.is_platform_user or not platform_user.has_permission(Permission.IMPERSONATE):
            raise PermissionDeniedError('Only platform staff can impersonate users')
        if not reason or len(reason.strip()) < 5:
            raise ValidationError('A reason (at least 5 characters) is required to impersonate a user')

        target = db.session.get(DBUser, target_user_id)
        if not target:
            raise NotFoundError('User', target_user_id)
        if target.is_platform_user:
            raise PermissionDeniedError('Platform users cannot be impersonated')
        if not target.is_active:
            raise ValidationError('Cannot impersonate a deactivated user')
        tenant = db.session.get(DBTenant, target.tenant_id)
        if not tenant or not tenant.is_operational:
            raise ValidationError('Cannot impersonate a user of an inactive tenant')

        now = datetime.utcnow()
        ended = []
        for previous in self.active_for(platform_user.id):
            previous.status = ImpersonationStatus.ENDED
            previous.ended_at = now
            previous.ended_by = platform_user.id
            ended.append(previous)

        minutes = current_app.config.get('IMPERSONATION_SESSION_MINUTES', 30)
        session = DBImpersonationSession(
            platform_user_id=platform_user.id,
            target_user_id=target.id,
            tenant_id=target.tenant_id,
            reason=reason.strip(),
            expires_at=now + timedelta(minutes=minutes),
            ip_address=request.remote_addr if has_request_context() else None
        )
        db.session.add(session)
        commit()

        for previous in ended:
            self._audit(previous, audit_service.ACTION_IMPERSONATION_END, platform_user, 'Superseded by new session')
        self._audit(session, audit_service.ACTION_IMPERSONATION_START, platform_user,
                    f"Started impersonating {target.email}: {session.reason}")
        logger.info(f"{platform_user.email} started impersonating {target.email} ({session.id})")

        token = auth_service.generate_token(target, impersonation_session=session)
        return session, token

    def get(self, session_id: str) -> DBImpersonationSession:
        session = db.session.get(DBImpersonationSession, session_id)
        if not session:
            raise NotFoundError('Impersonation session', session_id)
        return session

    def active_for(self, platform_user_id: str) -> List[DBImpersonationSession]:
        return DBImpersonationSession.query.filter_by(
            platform_user_id=platform_user_id, status=ImpersonationStatus.ACTIVE
        ).all()

    def is_session_live(self, session_id: str) -> bool:
        session = db.session.get(DBImpersonationSession, session_id)
        return bool(session and session.is_live())

    def end(self, session: DBImpersonationSession, actor: DBUser) -> DBImpersonationSession:
        """End a session; the impersonator may end their own, or the impersonated token may end itself"""
        if actor.id not in (session.platform_user_id, session.target_user_id):
            raise PermissionDeniedError('You can only end your own impersonation session')
        return self._close(session, ImpersonationStatus.ENDED, actor)

    def force_end(self, session: DBImpersonationSession, actor: DBUser) -> DBImpersonationSession:
        if not actor.has_permission(Permission.IMPERSONATION_ADMIN):
            raise PermissionDeniedError('Not allowed to force-end impersonation sessions')
        return self._close(session, ImpersonationStatus.FORCE_ENDED, actor)

    def list_active(self) -> List[DBImpersonationSession]:
        now = datetime.utcnow()
        return DBImpersonationSession.query.filter(
            DBImpersonationSession.status == ImpersonationStatus.ACTIVE,
            DBImpersonationSession.expires_at > now
        ).order_by(DBImpersonationSession.started_at.desc()).all()

    def history_query(self, status: Optional[str] = None, platform_user_id: Optional[str] = None,
                      tenant_id: Optional[str] = None):
        query = DBImpersonationSession.query
        if status:
            query = query.filter(DBImpersonationSession.status == status)
        if platform_user_id:
            query = query.filter(DBImpersonationSession.platform_user_id == platform_user_id)
        if tenant_id:
            query = query.filter(DBImpersonationSession.tenant_id == tenant_id)
        return query.order_by(DBImpersonationSession.started_at.desc())

    def expire_sessions(self, now: datetime = None) -> int:
        """Mark overdue active sessions as expired"""
        now = now or datetime.utcnow()
        overdue = DBImpersonationSession.query.filter(
            DBImpersonationSession.status == ImpersonationStatus.ACTIVE,
            DBImpersonationSession.expires_at <= now
        ).all()
        for session in overdue:
            session.status = ImpersonationStatus.EXPIRED
            session.ended_at = now
        commit()
        for session in overdue:
            self._audit(session, audit_service.ACTION_IMPERSONATION_END, None, 'Session expired')
        if overdue:
            logger.info(f"Expired {len(overdue)} impersonation sessions")
        return len(overdue)

    def _close(self, session: DBImpersonationSession, status: str, actor: DBUser) -> DBImpersonationSession:
        if session.status != ImpersonationStatus.ACTIVE:
            raise ValidationError(f'Session is already {session.status}')
        session.status = status
        session.ended_at = datetime.utcnow()
        session.ended_by = actor.id
        commit()
        self._audit(session, audit_service.ACTION_IMPERSONATION_END, actor, f"Session {status}")
        return session

    @staticmethod
    def _audit(session: DBImpersonationSession, action: str, actor, description: str):
        audit_service.log(
            action=action,
            resource_type=audit_service.RESOURCE_IMPERSONATION,
            resource_id=session.id,
            resource_name=session.target_user_id,
            actor=actor,
            tenant_id=session.tenant_id,
            description=description,
            metadata={'platform_user_id': session.platform_user_id, 'status': session.status}
        )


impersonation_service = ImpersonationService()
