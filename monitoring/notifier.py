"""
Match Notifications

Tells the user a watch found its text: logs it, brings the target to the
front and, when SMTP credentials are configured, sends an e-mail. Delivery
runs on a background thread so it never holds up the scheduler.
"""

import smtplib
import logging
import threading
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from config import settings
from monitoring.content import describe_match_spec

logger = logging.getLogger(__name__)


def send_match_email(watch, recipient):
    """
    Send an e-mail for a watch that found its text.

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not settings.SENDER_EMAIL or not settings.SENDER_PASSWORD:
        logger.error("Email credentials not configured. Set SENDER_EMAIL and SENDER_PASSWORD environment variables.")
        return False

    label = watch.get("display_label") or watch.get("source_url")
    subject = f"Found: {describe_match_spec(watch['match_spec'])} on {label}"
    body = f"""Hello!

Your watch found {describe_match_spec(watch['match_spec'])}.

Page: {watch.get('source_url')}
Watch ID: {watch['id']}

---
This is an automated notification from Page Watchdog.
"""

    message = MIMEMultipart()
    message["From"] = settings.SENDER_EMAIL
    message["To"] = recipient
    message["Subject"] = subject
    message.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT) as server:
            server.starttls()
            server.login(settings.SENDER_EMAIL, settings.SENDER_PASSWORD)
            server.send_message(message)

        logger.info(f"Email notification sent to {recipient} for watch {watch['id']}")
        return True

    except smtplib.SMTPException as e:
        logger.error(f"SMTP error sending email to {recipient}: {e}")
        return False
    except Exception as e:
        logger.error(f"Error sending email to {recipient}: {e}")
        return False


class Notifier:
    """Outbound, fire-and-forget match notifications."""

    def __init__(self, platform=None, email_to=None, send_email=send_match_email):
        self._platform = platform
        self._email_to = email_to if email_to is not None else settings.NOTIFY_EMAIL
        self._send_email = send_email

    def notify_match(self, watch):
        logger.info(
            f"FOUND {describe_match_spec(watch['match_spec'])} "
            f"on {watch.get('source_url')} (watch {watch['id']})"
        )

        if self._platform is not None and watch.get("target_handle"):
            try:
                self._platform.focus_target(watch["target_handle"])
            except Exception as e:
                logger.warning(f"Could not focus target for watch {watch['id']}: {e}")

        if self._email_to:
            thread = threading.Thread(
                target=self._send_email,
                args=(watch, self._email_to),
                name=f"notify-{watch['id'][:8]}",
                daemon=True,
            )
            thread.start()
