"""
Email Notification Service

Delivers rendered reminders by email over SMTP.

Failures are classified so the workflow can decide whether to retry:
- connection problems, timeouts and SMTP 4xx replies -> TransientDeliveryError
- refused recipients, authentication and SMTP 5xx replies -> PermanentDeliveryError
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from subscription_tracker.config.settings import Settings
from subscription_tracker.infrastructure.exceptions import (
    ConfigurationError,
    NotificationError,
    PermanentDeliveryError,
    TransientDeliveryError,
)


logger = logging.getLogger(__name__)


class EmailNotificationSender:
    """
    SMTP email sender.

    smtplib is blocking, so every delivery runs in a worker thread.
    """

    backend = "smtp"

    def __init__(self, settings: Settings):
        missing = [key for key in ("smtp_host", "email_from") if not getattr(settings, key)]
        if missing:
            raise ConfigurationError(
                "SMTP notification backend is not configured",
                missing_keys=[key.upper() for key in missing],
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = int(settings.smtp_port)
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout_seconds
        self.from_email = settings.email_from

    def build_message(
        self,
        destination: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> EmailMessage:
        """Build a plain-text email with an optional HTML alternative."""
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = destination
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> None:
        """
        Send one email.

        Raises:
            TransientDeliveryError: retryable failure
            PermanentDeliveryError: failure retrying cannot fix
        """
        msg = self.build_message(destination, subject, body, html)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except NotificationError:
            raise
        except smtplib.SMTPRecipientsRefused as e:
            raise PermanentDeliveryError(
                f"Recipient refused: {destination}",
                destination=destination,
                backend=self.backend,
                original_error=e,
            )
        except smtplib.SMTPAuthenticationError as e:
            raise PermanentDeliveryError(
                "SMTP authentication failed",
                destination=destination,
                backend=self.backend,
                original_error=e,
            )
        except smtplib.SMTPResponseException as e:
            error_cls = TransientDeliveryError if 400 <= e.smtp_code < 500 else PermanentDeliveryError
            raise error_cls(
                f"SMTP error {e.smtp_code}: {e.smtp_error!r}",
                destination=destination,
                backend=self.backend,
                original_error=e,
            )
        except (smtplib.SMTPException, OSError) as e:
            # Disconnects, connection refused, timeouts
            raise TransientDeliveryError(
                f"SMTP delivery failed: {e}",
                destination=destination,
                backend=self.backend,
                original_error=e,
            )

        logger.info(f"Email sent to {destination}: {subject}")

    def _send_sync(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.smtp_port == 465:
            # Implicit TLS
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                self._login_and_send(server, msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls(context=context)
                self._login_and_send(server, msg)

    def _login_and_send(self, server: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.smtp_username and self.smtp_password:
            server.login(self.smtp_username, self.smtp_password)
        server.send_message(msg)


class LoggingNotificationSender:
    """Development sender: writes reminders to the log instead of delivering them."""

    backend = "log"

    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> None:
        logger.info(f"📧 [DEV] Would send email to {destination}")
        logger.info(f"📧 [DEV] Subject: {subject}")
        logger.debug(f"📧 [DEV] Body:\n{body}")


def get_notification_sender(settings: Settings):
    """Build the sender selected by NOTIFICATION_BACKEND."""
    if settings.notification_backend == "smtp":
        return EmailNotificationSender(settings)
    return LoggingNotificationSender()
