import html
import smtplib
import requests
import logging
from email.message import EmailMessage
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

NOTIFY_STATUSES = ("successful", "failed")
NOTIFY_TIMEOUT = 10
SMTP_SSL_PORT = 465

logger = logging.getLogger(__name__)


class EmailSettings(BaseModel):
    """The ``notifications.email`` section of the config file."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    smtp_server: Optional[str] = None
    smtp_port: int = 587
    use_tls: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    sender_email: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all([self.smtp_server, self.username, self.password, self.recipients])


class Notifications:
    """Reports update outcomes to Slack and by email. Delivery failures are logged, never raised."""

    def __init__(self, settings: Optional[dict] = None):
        settings = settings or {}
        self.slack_webhook_url = settings.get('slack_webhook_url') or ""
        email_config = settings.get('email') or {}
        self.email: Optional[EmailSettings] = EmailSettings(**email_config) if email_config else None

        if self.email is not None:
            logger.debug(
                f"Email notifications via {self.email.smtp_server}:{self.email.smtp_port} "
                f"(TLS: {self.email.use_tls}) to {self.email.recipients}"
            )

    @property
    def enabled(self) -> bool:
        return bool(self.slack_webhook_url) or self.email is not None

    def send_slack_message(self, message: str):
        if not self.slack_webhook_url:
            return
        try:
            response = requests.post(self.slack_webhook_url, json={"text": message}, timeout=NOTIFY_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Slack notification failed: {e}")
            return
        logger.info("Slack notification sent.")

    def _build_email(self, subject: str, plain_body: str, html_body: Optional[str]) -> EmailMessage:
        msg = EmailMessage()
        msg['From'] = self.email.sender_email or self.email.username
        msg['To'] = ", ".join(self.email.recipients)
        msg['Subject'] = subject
        msg.set_content(plain_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        return msg

    def _connect(self) -> smtplib.SMTP:
        if self.email.smtp_port == SMTP_SSL_PORT:
            return smtplib.SMTP_SSL(self.email.smtp_server, self.email.smtp_port, timeout=NOTIFY_TIMEOUT)

        server = smtplib.SMTP(self.email.smtp_server, self.email.smtp_port, timeout=NOTIFY_TIMEOUT)
        if self.email.use_tls:
            try:
                server.starttls()
            except (smtplib.SMTPException, OSError):
                server.close()
                raise
        return server

    def send_email(self, subject: str, plain_body: str, html_body: Optional[str] = None):
        """
        Email the configured recipients, plain text with an optional HTML alternative.
        """
        if self.email is None:
            return
        if not self.email.complete:
            logger.error("Email configuration is incomplete. Check the notifications section of the config file.")
            return

        msg = self._build_email(subject, plain_body, html_body)
        try:
            server = self._connect()
            try:
                server.login(self.email.username, self.email.password)
                server.send_message(msg)
            finally:
                server.quit()
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for '{self.email.username}': {e}")
            return
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email notification failed: {e}")
            return
        logger.info(f"Email '{subject}' sent to {self.email.recipients}.")

    def notify_update_event(self, repo: str, status: str, details: Optional[str] = ""):
        """
        Notify about a working-copy update (Slack + Email), only for successful or failed updates.
        """
        if status not in NOTIFY_STATUSES:
            return

        message = (
            f"🚀 Update Event\n"
            f"Repository: {repo}\n"
            f"Status: {status.capitalize()}\n"
            f"Details: {details}"
        )
        self.send_slack_message(message)
        subject = f"Update Event: {status.capitalize()} on {repo}"
        html_message = f"""
        <html>
          <body>
            <h2>Update Event - {status.capitalize()}</h2>
            <table border="1" style="border-collapse: collapse;">
              <tr><th>Repository</th><td>{html.escape(repo)}</td></tr>
              <tr><th>Status</th><td>{status.capitalize()}</td></tr>
              <tr><th>Details</th><td><pre>{html.escape(details or "")}</pre></td></tr>
            </table>
          </body>
        </html>
        """
        self.send_email(subject, message, html_message)
