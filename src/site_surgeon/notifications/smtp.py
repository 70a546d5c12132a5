"""Email delivery of pipeline notifications over SMTP.

Port 465 uses implicit TLS; any other port upgrades the connection with
STARTTLS. smtplib is blocking, so each send runs in a worker thread.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from site_surgeon.notifications.formatting import (
    format_automated_fix,
    format_manual_review,
)
from site_surgeon.notifications.models import Notification, NotificationError
from site_surgeon.state.models import IssueRecord


logger = logging.getLogger(__name__)

SMTP_IMPLICIT_TLS_PORT = 465


class EmailNotifier:
    """Sends notifications by email to a single recipient.

    When no SMTP host or recipient is configured, notifications are logged
    and skipped.

    Attributes:
        smtp_host: SMTP server hostname.
        smtp_port: SMTP server port.
        smtp_user: Login user, also the default sender address.
        smtp_password: Login password.
        recipient: Address every notification is sent to.
        sender: From address (defaults to smtp_user).
        timeout: Socket timeout in seconds.
    """

    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        recipient: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.recipient = recipient or smtp_user
        self.sender = sender or smtp_user
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and self.recipient)

    async def notify_manual_review(self, issue: IssueRecord) -> None:
        await self.send(format_manual_review(issue))

    async def notify_automated_fix(
        self,
        issue: IssueRecord,
        pr_url: str,
        merged: bool,
        patch_summary: str,
    ) -> None:
        await self.send(format_automated_fix(issue, pr_url, merged, patch_summary))

    async def send(self, notification: Notification) -> None:
        """Deliver a rendered notification.

        Raises:
            NotificationError: If the SMTP exchange fails.
        """
        if not self.enabled:
            logger.warning(
                "Email notifications not configured, skipping",
                extra={
                    "issue_id": notification.issue_id,
                    "kind": notification.kind.value,
                },
            )
            return

        message = self._build_message(notification)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                notification.issue_id,
                f"Failed to send {notification.kind.value} email: {e}",
                cause=e,
            ) from e

        logger.info(
            "Notification email sent",
            extra={
                "issue_id": notification.issue_id,
                "kind": notification.kind.value,
                "to": self.recipient,
            },
        )

    def _build_message(self, notification: Notification) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = notification.subject
        msg["From"] = f"Site Surgeon <{self.sender}>" if self.sender else "Site Surgeon"
        msg["To"] = self.recipient
        msg.set_content(notification.body)
        return msg

    def _send_sync(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.smtp_port == SMTP_IMPLICIT_TLS_PORT:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                self._login(server)
                server.send_message(message)
        else:
            with smtplib.SMTP(
                self.smtp_host, self.smtp_port, timeout=self.timeout
            ) as server:
                server.starttls(context=context)
                self._login(server)
                server.send_message(message)

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
