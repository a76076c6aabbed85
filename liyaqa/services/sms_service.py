"""
Liyaqa - SMS / WhatsApp delivery through Twilio
"""
import logging

from flask import current_app

logger = logging.getLogger(__name__)


class SmsService:
    """Twilio messaging; WhatsApp uses the same API with whatsapp: addresses"""

    @property
    def is_configured(self) -> bool:
        return bool(current_app.config.get('TWILIO_ACCOUNT_SID') and current_app.config.get('TWILIO_AUTH_TOKEN'))

    def sender(self, channel: str) -> str:
        if channel == 'whatsapp':
            number = current_app.config.get('TWILIO_WHATSAPP_FROM') or current_app.config.get('TWILIO_FROM_NUMBER')
            return f"whatsapp:{number}"
        return current_app.config.get('TWILIO_FROM_NUMBER')

    def send(self, to: str, body: str, channel: str = 'sms') -> tuple:
        """Returns (success, error_message)"""
        if not to:
            return False, 'No recipient phone number'
        if not self.is_configured:
            logger.warning(f"Twilio not configured. Would send {channel} to {to}")
            return False, 'SMS gateway is not configured'

        from twilio.base.exceptions import TwilioException
        from twilio.rest import Client

        client = Client(current_app.config['TWILIO_ACCOUNT_SID'], current_app.config['TWILIO_AUTH_TOKEN'])
        try:
            message = client.messages.create(
                body=body,
                from_=self.sender(channel),
                to=f"whatsapp:{to}" if channel == 'whatsapp' else to
            )
        except TwilioException as e:
            logger.error(f"{channel.upper()} to {to} failed: {e}")
            return False, str(e)

        logger.info(f"{channel.upper()} sent to {to}: {message.sid}")
        return True, None


sms_service = SmsService()
