"""
Liyaqa - Audit Logging Service
Track security-relevant and state-changing actions for compliance and support
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from flask import request, has_request_context, g

from liyaqa.database import db
from liyaqa.models import DBAuditLog

logger = logging.getLogger(__name__)


def _to_json(value):
    if value is None:
        return None
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


class AuditService:
    """Service for logging and querying audit events"""

    # Action types
    ACTION_CREATE = 'create'
    ACTION_UPDATE = 'update'
    ACTION_DELETE = 'delete'
    ACTION_LOGIN = 'login'
    ACTION_EXPORT = 'export'
    ACTION_STATUS_CHANGE = 'status_change'
    ACTION_IMPERSONATION_START = 'impersonation_start'
    ACTION_IMPERSONATION_END = 'impersonation_end'
    ACTION_API_KEY_CREATE = 'api_key_create'
    ACTION_API_KEY_REVOKE = 'api_key_revoke'
    ACTION_INVITE = 'invite'
    ACTION_INVITE_ACCEPT = 'invite_accept'

    # Resource types
    RESOURCE_USER = 'user'
    RESOURCE_TENANT = 'tenant'
    RESOURCE_API_KEY = 'api_key'
    RESOURCE_IMPERSONATION = 'impersonation'
    RESOURCE_INVITE = 'invite'
    RESOURCE_ORGANIZATION = 'organization'
    RESOURCE_CLUB = 'club'
    RESOURCE_LOCATION = 'location'
    RESOURCE_MEMBER = 'member'
    RESOURCE_INVOICE = 'invoice'
    RESOURCE_CAMPAIGN = 'campaign'
    RESOURCE_SEGMENT = 'segment'
    RESOURCE_PRODUCT = 'product'
    RESOURCE_ORDER = 'order'
    RESOURCE_ANALYTICS = 'analytics'

    def log(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        resource_name: Optional[str] = None,
        description: Optional[str] = None,
        actor=None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        tenant_id: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        metadata: Optional[Dict] = None,
        status: str = 'success',
        error_message: Optional[str] = None
    ) -> Optional[DBAuditLog]:
        """
        Log an audit event

        Args:
            action: The action performed (create, update, delete, etc.)
            resource_type: Type of resource affected
            resource_id: ID of the affected resource
            resource_name: Human-readable name of the resource
            description: Description of what happened
            actor: The user/API-key principal performing the action; fills
                user_id, user_email and tenant_id when they are not given
            old_value: Previous state (will be JSON serialized)
            new_value: New state (will be JSON serialized)
            metadata: Additional metadata (will be JSON serialized)
            status: success, failure, or error

        Returns:
            The created audit log entry, or None when it could not be stored
        """
        if actor is not None:
            user_id = user_id or getattr(actor, 'id', None)
            user_email = user_email or getattr(actor, 'email', None)
            tenant_id = tenant_id or getattr(actor, 'tenant_id', None)

        try:
            ip_address = None
            user_agent = None
            endpoint = None
            http_method = None
            impersonator_id = None

            if has_request_context():
                ip_address = request.remote_addr
                user_agent = request.headers.get('User-Agent', '')[:500]
                endpoint = request.path
                http_method = request.method
                impersonator_id = g.get('impersonator_id')

            log_entry = DBAuditLog(
                user_id=user_id,
                user_email=user_email,
                impersonator_id=impersonator_id,
                ip_address=ip_address,
                user_agent=user_agent,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                resource_name=resource_name,
                description=description,
                old_value=_to_json(old_value),
                new_value=_to_json(new_value),
                extra_data=_to_json(metadata),
                tenant_id=tenant_id,
                endpoint=endpoint,
                http_method=http_method,
                status=status,
                error_message=error_message,
                created_at=datetime.utcnow()
            )

            db.session.add(log_entry)
            db.session.commit()

            logger.debug(f"Audit: {action} {resource_type} {resource_id} by {user_email}")

            return log_entry

        except Exception as e:
            logger.error(f"Failed to create audit log: {e}")
            db.session.rollback()
            return None

    def log_login(self, user_id: str, user_email: str, success: bool = True, error: str = None,
                  tenant_id: str = None):
        """Log a login attempt"""
        return self.log(
            action=self.ACTION_LOGIN,
            resource_type=self.RESOURCE_USER,
            resource_id=user_id,
            resource_name=user_email,
            user_id=user_id,
            user_email=user_email,
            tenant_id=tenant_id,
            description=f"User {'logged in successfully' if success else 'failed to log in'}",
            status='success' if success else 'failure',
            error_message=error
        )

    def log_create(self, resource_type: str, resource_id: str, resource_name: str,
                   actor=None, tenant_id: str = None, new_value: Any = None):
        """Log a resource creation"""
        return self.log(
            action=self.ACTION_CREATE,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            actor=actor,
            tenant_id=tenant_id,
            new_value=new_value,
            description=f"Created {resource_type}: {resource_name}"
        )

    def log_update(self, resource_type: str, resource_id: str, resource_name: str,
                   actor=None, tenant_id: str = None, old_value: Any = None,
                   new_value: Any = None, changes: str = None):
        """Log a resource update"""
        return self.log(
            action=self.ACTION_UPDATE,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            actor=actor,
            tenant_id=tenant_id,
            old_value=old_value,
            new_value=new_value,
            description=changes or f"Updated {resource_type}: {resource_name}"
        )

    def log_delete(self, resource_type: str, resource_id: str, resource_name: str,
                   actor=None, tenant_id: str = None, old_value: Any = None):
        """Log a resource deletion"""
        return self.log(
            action=self.ACTION_DELETE,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            actor=actor,
            tenant_id=tenant_id,
            old_value=old_value,
            description=f"Deleted {resource_type}: {resource_name}"
        )

    def log_status_change(self, resource_type: str, resource_id: str, resource_name: str,
                          old_status: str, new_status: str, actor=None, tenant_id: str = None,
                          metadata: Dict = None):
        return self.log(
            action=self.ACTION_STATUS_CHANGE,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            actor=actor,
            tenant_id=tenant_id,
            old_value={'status': old_status},
            new_value={'status': new_status},
            metadata=metadata,
            description=f"{resource_type} {resource_name}: {old_status} -> {new_status}"
        )

    def get_logs(
        self,
        tenant_id: str = None,
        action: str = None,
        resource_type: str = None,
        resource_id: str = None,
        user_id: str = None,
        status: str = None,
        start_date: datetime = None,
        end_date: datetime = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[DBAuditLog]:
        """Query audit logs with filters, newest first"""
        return self._filtered(
            tenant_id, action, resource_type, resource_id, user_id, status, start_date, end_date
        ).order_by(DBAuditLog.created_at.desc(), DBAuditLog.id.desc()).offset(offset).limit(limit).all()

    def count_logs(self, tenant_id: str = None, action: str = None, resource_type: str = None,
                   resource_id: str = None, user_id: str = None, status: str = None,
                   start_date: datetime = None, end_date: datetime = None) -> int:
        return self._filtered(
            tenant_id, action, resource_type, resource_id, user_id, status, start_date, end_date
        ).count()

    def _filtered(self, tenant_id, action, resource_type, resource_id, user_id, status,
                  start_date, end_date):
        query = DBAuditLog.query

        if tenant_id:
            query = query.filter(DBAuditLog.tenant_id == tenant_id)
        if action:
            query = query.filter(DBAuditLog.action == action)
        if resource_type:
            query = query.filter(DBAuditLog.resource_type == resource_type)
        if resource_id:
            query = query.filter(DBAuditLog.resource_id == resource_id)
        if user_id:
            query = query.filter(DBAuditLog.user_id == user_id)
        if status:
            query = query.filter(DBAuditLog.status == status)
        if start_date:
            query = query.filter(DBAuditLog.created_at >= start_date)
        if end_date:
            query = query.filter(DBAuditLog.created_at <= end_date)
        return query

    def get_resource_history(self, resource_type: str, resource_id: str, tenant_id: str = None,
                             limit: int = 50) -> List[DBAuditLog]:
        """Get history of changes to a specific resource"""
        return self.get_logs(tenant_id=tenant_id, resource_type=resource_type, resource_id=resource_id, limit=limit)

    def get_stats(self, tenant_id: str = None, days: int = 30) -> Dict:
        """Get audit statistics"""
        start_date = datetime.utcnow() - timedelta(days=days)
        query = DBAuditLog.query.filter(DBAuditLog.created_at >= start_date)
        if tenant_id:
            query = query.filter(DBAuditLog.tenant_id == tenant_id)

        logs = query.all()
        by_action: Dict[str, int] = {}
        by_resource: Dict[str, int] = {}
        failures = 0
        for entry in logs:
            by_action[entry.action] = by_action.get(entry.action, 0) + 1
            by_resource[entry.resource_type] = by_resource.get(entry.resource_type, 0) + 1
            if entry.status != 'success':
                failures += 1

        return {
            'period_days': days,
            'total_events': len(logs),
            'failures': failures,
            'by_action': by_action,
            'by_resource': by_resource
        }

    def cleanup_old_logs(self, days: int = 365) -> int:
        """Delete audit logs older than the retention window"""
        cutoff = datetime.utcnow() - timedelta(days=days)
        deleted = DBAuditLog.query.filter(DBAuditLog.created_at < cutoff).delete()
        db.session.commit()
        logger.info(f"Cleaned up {deleted} audit logs older than {days} days")
        return deleted


audit_service = AuditService()
