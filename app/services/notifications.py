"""
Notification Service
Thin SMTP email and HTTP SMS adapters used by the outbox event handlers
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import httpx
import structlog

from app.config import settings
from app.services.monitoring.circuit_breakers import SMS_GATEWAY, CircuitBreakerError, get_breaker

logger = structlog.get_logger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def _result(provider: str, success: bool, id: Optional[str] = None, error: Optional[str] = None) -> dict:
    result = {"provider": provider, "success": success}
    if id is not None:
        result["id"] = id
    if error is not None:
        result["error"] = error
    return result


class NotificationService:
    """
    Best-effort email and SMS delivery.

    Neither method raises for provider problems: every outcome is returned as
    {provider, success, id?, error?} so one failing channel never stops the
    caller from trying the next.
    """

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.email_from = settings.email_from
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.Client:
        # Lazy-init to avoid import-time side effects
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=settings.sms_timeout_seconds)
        return self._http_client

    # -- email -------------------------------------------------------------

    def send_email(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> dict:
        if not to:
            return _result("smtp", False, error="no_recipient")
        if not self.smtp_host:
            return _result("smtp", False, error="smtp_not_configured")

        msg = MIMEMultipart("alternative")
        msg["From"] = self.email_from
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            smtp_class = smtplib.SMTP_SSL if self.smtp_port == 465 else smtplib.SMTP
            with smtp_class(self.smtp_host, self.smtp_port, timeout=10) as server:
                if smtp_class is smtplib.SMTP and self.smtp_username and self.smtp_password:
                    server.starttls()
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except Exception as e:
            logger.warning("email_send_failed", recipient=to, error=str(e))
            return _result("smtp", False, error=str(e))

        logger.info("email_sent", recipient=to, subject=subject)
        return _result("smtp", True, id=msg["Message-ID"])

    # -- sms ---------------------------------------------------------------

    def send_sms(self, to: str, message: str) -> dict:
        """
        Twilio when its credentials are set, otherwise the generic HTTP provider.
        """
        if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from:
            provider, send = "twilio", self._send_twilio
        else:
            provider, send = "generic", self._send_generic

        if not to:
            return _result(provider, False, error="no_recipient")
        if provider == "generic" and not (settings.sms_api_url and settings.sms_api_key):
            return _result(provider, False, error="sms_not_configured")

        try:
            message_id = get_breaker(SMS_GATEWAY).call(send, to, message)
        except CircuitBreakerError:
            logger.warning("sms_circuit_open", recipient=to, provider=provider)
            return _result(provider, False, error="sms_circuit_open")
        except Exception as e:
            logger.warning("sms_send_failed", recipient=to, provider=provider, error=str(e))
            return _result(provider, False, error=str(e))

        logger.info("sms_sent", recipient=to, provider=provider, message_id=message_id)
        return _result(provider, True, id=message_id)

    def _send_twilio(self, to: str, message: str) -> Optional[str]:
        response = self.http_client.post(
            TWILIO_MESSAGES_URL.format(sid=settings.twilio_account_sid),
            data={"To": to, "From": settings.twilio_from, "Body": message},
            auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            timeout=settings.sms_timeout_seconds,
        )
        response.raise_for_status()
        return response.json().get("sid")

    def _send_generic(self, to: str, message: str) -> Optional[str]:
        response = self.http_client.post(
            settings.sms_api_url,
            json={"to": to, "message": message},
            headers={"Authorization": f"Bearer {settings.sms_api_key}"},
            timeout=settings.sms_timeout_seconds,
        )
        response.raise_for_status()
        return response.json().get("id")
