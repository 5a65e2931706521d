"""
Failure Notification Service
Emails the operator when an outbox job exhausts its retries (poison entry)
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
import structlog

from app.config import settings
from app.database import utcnow

logger = structlog.get_logger()


class FailureNotifier:
    """
    Service to send email notifications when outbox jobs permanently fail
    """

    def __init__(self):
        """Load SMTP settings from app configuration"""
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.admin_email = settings.admin_email

    def send_poison_alert(
        self,
        outbox_id: str,
        event_type: str,
        error: str,
        attempts: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> bool:
        """
        Send email notification for a poison outbox entry.

        Returns:
            True if the alert was handed to SMTP
        """
        if not self.smtp_host:
            logger.warning("poison_alert_skipped", outbox_id=outbox_id, reason="smtp_not_configured")
            return False
        if not self.admin_email:
            logger.warning("poison_alert_skipped", outbox_id=outbox_id, reason="admin_email_not_configured")
            return False

        msg = MIMEMultipart()
        msg['From'] = settings.email_from
        msg['To'] = self.admin_email
        msg['Subject'] = f"[ALERT] Outbox job failed permanently - {event_type} {outbox_id}"

        body = f"""
OUTBOX JOB PERMANENT FAILURE

Outbox ID: {outbox_id}
Event Type: {event_type}
Tenant: {tenant_id or 'unknown'}
Claim Attempts: {attempts if attempts is not None else 'unknown'}
Timestamp: {utcnow().isoformat()}

Error:
{error}

The entry stays unprocessed (processed_at IS NULL) and keeps last_error.
---
Inspect: GET /api/v1/outbox/{outbox_id}
Replay:  POST /api/v1/outbox/{outbox_id}/requeue
         or python scripts/replay_outbox.py requeue {outbox_id}
"""
        msg.attach(MIMEText(body, 'plain'))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

            logger.info("poison_alert_sent", outbox_id=outbox_id, recipient=self.admin_email)
            return True

        except Exception as e:
            # Do NOT raise - notification failure should not cascade
            logger.error("poison_alert_failed", outbox_id=outbox_id, error=str(e), smtp_host=self.smtp_host)
            return False


def notify_poison_outbox_entry(outbox_id: str, event_type: str, error: str) -> None:
    """
    Log and alert for an outbox entry whose job was dead-lettered.

    Loads the row for attempts/last_error when the database is configured.
    Best-effort: never raises.
    """
    try:
        from app.database import SessionLocal
        from app.services.outbox import OutboxStore

        attempts = None
        tenant_id = None
        if SessionLocal is not None:
            entry = OutboxStore(SessionLocal).get_entry(outbox_id)
            if entry is not None:
                attempts = entry.attempts
                tenant_id = entry.tenant_id
                error = entry.last_error or error

        logger.error(
            "outbox_poison_entry",
            outbox_id=outbox_id,
            event_type=event_type,
            attempts=attempts,
            error=error,
        )
        FailureNotifier().send_poison_alert(
            outbox_id=outbox_id,
            event_type=event_type,
            error=error,
            attempts=attempts,
            tenant_id=tenant_id,
        )

    except Exception as e:
        logger.error("poison_notification_exception", outbox_id=outbox_id, error=str(e), exc_info=True)
