"""
Liyaqa - Notification Service
Records every outbound message and dispatches it to the channel service
"""
import logging
from datetime import datetime
from typing import Optional

from liyaqa.database import db
from liyaqa.models import DBNotification, StepChannel
from liyaqa.services.email_service import email_service
from liyaqa.services.sms_service import sms_service

logger = logging.getLogger(__name__)


class NotificationService:
    """Channel-agnostic send with a persistent notification record"""

    def send(
        self,
        channel: str,
        recipient: Optional[str],
        body: str,
        subject: str = None,
        tenant_id: str = None,
        member_id: str = None,
        user_id: str = None,
        related_type: str = None,
        related_id: str = None,
        html: bool = False
    ) -> DBNotification:
        """
        Send a message over a channel.

        The returned notification has status 'sent' or 'failed' (with
        error_message). The caller owns the transaction; the record is
        added to the session but not committed.
        """
        notification = DBNotification(
            channel=channel,
            recipient=recipient,
            body=body,
            subject=subject,
            tenant_id=tenant_id,
            member_id=member_id,
            user_id=user_id,
            related_type=related_type,
            related_id=related_id
        )
        db.session.add(notification)

        if channel == StepChannel.EMAIL:
            success, error = email_service.send(recipient, subject or '', body, html=html)
        elif channel in (StepChannel.SMS, StepChannel.WHATSAPP):
            success, error = sms_service.send(recipient, body, channel=channel)
        elif channel == StepChannel.PUSH:
            # Push messages are served to the member app from this table
            success, error = True, None
        else:
            success, error = False, f"Unsupported channel: {channel}"

        if success:
            notification.status = 'sent'
            notification.sent_at = datetime.utcnow()
        else:
            notification.status = 'failed'
            notification.error_message = error
            logger.warning(f"Notification {notification.id} via {channel} failed: {error}")

        return notification

    def send_email(self, to: str, subject: str, body: str, html: bool = True, **kwargs) -> DBNotification:
        return self.send(StepChannel.EMAIL, to, body, subject=subject, html=html, **kwargs)


notification_service = NotificationService()
