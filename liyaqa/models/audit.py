"""
Liyaqa - Audit log and outbound notification records
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from liyaqa.database import db
from liyaqa.models.common import generate_id, iso, safe_json_loads


class DBAuditLog(db.Model):
    """Audit log for tracking all system actions"""
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Who did it
    user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    impersonator_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # What they did
    action: Mapped[str] = mapped_column(String(50), index=True)
    resource_type: Mapped[str] = mapped_column(String(50), index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    resource_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON
    extra_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON

    # Context
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    endpoint: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    http_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default='success')  # success, failure, error
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_email': self.user_email,
            'impersonator_id': self.impersonator_id,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'resource_name': self.resource_name,
            'description': self.description,
            'tenant_id': self.tenant_id,
            'metadata': safe_json_loads(self.extra_data, {}),
            'status': self.status,
            'error_message': self.error_message,
            'created_at': iso(self.created_at)
        }


class DBNotification(db.Model):
    """Every outbound email/SMS/WhatsApp/push, for tracking and debugging"""
    __tablename__ = 'notifications'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    member_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    body: Mapped[str] = mapped_column(Text, default='')

    status: Mapped[str] = mapped_column(String(20), default='pending')  # pending, sent, failed
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    related_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    related_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __init__(self, channel: str, recipient: Optional[str], body: str, **kwargs):
        self.id = generate_id('ntf')
        self.channel = channel
        self.recipient = recipient
        self.body = body
        self.status = 'pending'
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'member_id': self.member_id,
            'user_id': self.user_id,
            'channel': self.channel,
            'recipient': self.recipient,
            'subject': self.subject,
            'status': self.status,
            'error_message': self.error_message,
            'related_type': self.related_type,
            'related_id': self.related_id,
            'created_at': iso(self.created_at),
            'sent_at': iso(self.sent_at)
        }
