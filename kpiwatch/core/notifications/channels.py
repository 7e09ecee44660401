"""
Notification delivery channels.

Each channel delivers one rendered AlertMessage to one recipient and
raises DeliveryError on failure, so the dispatcher can keep going with
the remaining recipients.

- InAppChannel: writes a row into the user's in-app inbox
- EmailChannel: sends a multipart email over SMTP
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from typing import Optional, Union

from sqlmodel import col, select

from kpiwatch.config import config
from kpiwatch.core.constants import CHANNEL_EMAIL, CHANNEL_INAPP
from kpiwatch.core.exceptions import ChannelNotConfiguredError, DeliveryError
from kpiwatch.core.notifications.messages import AlertMessage
from kpiwatch.db.database import get_session
from kpiwatch.db.models import InAppMessage

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Base class for delivery channels."""

    name: str = ""

    def is_configured(self) -> bool:
        return True

    def send(
        self,
        message: AlertMessage,
        recipient: Union[int, str],
        entity_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> None:
        raise NotImplementedError


class InAppChannel(NotificationChannel):
    """Stores notifications in the in-app inbox table."""

    name = CHANNEL_INAPP

    def send(
        self,
        message: AlertMessage,
        recipient: Union[int, str],
        entity_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> None:
        try:
            user_id = int(recipient)
        except (TypeError, ValueError):
            raise DeliveryError(self.name, str(recipient), "not a user id")

        try:
            with get_session() as session:
                session.add(
                    InAppMessage(
                        user_id=user_id,
                        entity_id=entity_id,
                        alert_id=alert_id,
                        subject=message.subject[:255],
                        body=message.text_body(),
                        severity=message.severity,
                    )
                )
        except Exception as e:
            raise DeliveryError(self.name, str(user_id), str(e)) from e

        logger.debug(f"In-app notification stored for user {user_id}: {message.subject}")

    @staticmethod
    def get_inbox(user_id: int, unread_only: bool = False, limit: int = 50) -> list[InAppMessage]:
        """Messages for a user, newest first."""
        with get_session() as session:
            stmt = (
                select(InAppMessage)
                .where(InAppMessage.user_id == user_id)
                .order_by(col(InAppMessage.created_at).desc(), col(InAppMessage.id).desc())
                .limit(limit)
            )
            if unread_only:
                stmt = stmt.where(InAppMessage.is_read == False)  # noqa: E712
            messages = list(session.exec(stmt).all())
            for item in messages:
                session.expunge(item)
            return messages


@dataclass
class SMTPConfig:
    """SMTP configuration container."""

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_address: str
    use_tls: bool


class EmailChannel(NotificationChannel):
    """Sends notifications by email through the configured SMTP server."""

    name = CHANNEL_EMAIL

    def __init__(self, smtp_config: Optional[SMTPConfig] = None):
        self._smtp_config = smtp_config

    @property
    def smtp_config(self) -> Optional[SMTPConfig]:
        if self._smtp_config is not None:
            return self._smtp_config
        if not config.has_smtp:
            return None
        return SMTPConfig(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            from_address=config.smtp_from,
            use_tls=config.smtp_use_tls,
        )

    def is_configured(self) -> bool:
        return self.smtp_config is not None

    def send(
        self,
        message: AlertMessage,
        recipient: Union[int, str],
        entity_id: Optional[int] = None,
        alert_id: Optional[int] = None,
    ) -> None:
        smtp = self.smtp_config
        if smtp is None:
            raise ChannelNotConfiguredError(self.name)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = smtp.from_address
        msg["To"] = str(recipient)
        msg["Date"] = formatdate(usegmt=True)
        msg.attach(MIMEText(message.text_body(), "plain"))
        msg.attach(MIMEText(message.html_body(), "html"))

        try:
            with smtplib.SMTP(smtp.host, smtp.port, timeout=config.http_timeout_seconds) as server:
                if smtp.use_tls:
                    server.starttls()
                if smtp.user and smtp.password:
                    server.login(smtp.user, smtp.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.name, str(recipient), str(e)) from e

        logger.info(f"Sent email alert to {recipient}: {message.subject}")
