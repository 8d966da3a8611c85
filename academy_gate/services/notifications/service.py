"""
Expiry notices. NotificationPort is what AccessGate talks to; EmailNotifier is
the SMTP implementation run by the worker.
"""
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

from academy_gate.core.config import settings

logger = logging.getLogger(__name__)


class NotificationPort(ABC):
    """Interface for user-facing notices (fire-and-forget for the caller)"""

    @abstractmethod
    def send_expiry_notice(self, email_or_id: str, display_name: str | None) -> None:
        """Tell the user their access period ended"""


def build_expiry_message(display_name: str | None) -> tuple[str, str]:
    name = display_name or "there"
    subject = "Your membership access has ended"
    lines = [
        f"Hi {name},",
        "",
        "Your current membership period has ended, so your access to the courses",
        "and to the community server has been paused.",
        "",
    ]
    if settings.renewal_url:
        lines.append(f"Renew here to get back in: {settings.renewal_url}")
    else:
        lines.append("Reply to this email to renew your membership.")
    return subject, "\n".join(lines)


class EmailNotifier(NotificationPort):
    """
    Sends the expiry notice over SMTP when configured.
    Never raises: a failed send is logged and dropped.
    """

    def send_expiry_notice(self, email_or_id: str, display_name: str | None) -> None:
        if not settings.email_enabled:
            logger.info("expiry_notice_skipped", extra={"reason": "email_disabled", "user_id": email_or_id})
            return
        if "@" not in (email_or_id or ""):
            logger.warning("expiry_notice_skipped", extra={"reason": "no_email", "user_id": email_or_id})
            return
        if not settings.smtp_host or not settings.smtp_username or not settings.smtp_password:
            logger.warning("expiry_notice_skipped", extra={"reason": "smtp_not_configured"})
            return

        subject, body = build_expiry_message(display_name)
        from_email = settings.smtp_from_email or settings.smtp_username
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{settings.smtp_from_name} <{from_email}>"
        msg["To"] = email_or_id
        msg.set_content(body)

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout) as server:
                server.ehlo()
                server.starttls()
                server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("expiry_notice_failed", extra={"user_id": email_or_id, "error": str(e)})
            return
        logger.info("expiry_notice_sent", extra={"user_id": email_or_id})
