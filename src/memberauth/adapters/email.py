"""ABOUTME: Email adapter implementations for sending emails via various backends
ABOUTME: Supports SMTP delivery and console logging for development"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from memberauth.config import EmailCfg

logger = logging.getLogger(__name__)


class EmailAdapter(ABC):
    """Abstract base class for email sending adapters."""

    @abstractmethod
    def send_email(self, to: list[str], subject: str, text_body: str, html_body: str | None = None) -> bool:
        """Send an email to one or more recipients.

        Args:
            to: List of recipient email addresses
            subject: Email subject line
            text_body: Plain text version of the email body
            html_body: Optional HTML version of the email body

        Returns:
            True if email sent successfully, False otherwise
        """
        pass


class ConsoleEmailAdapter(EmailAdapter):
    """Email adapter that logs emails instead of sending them.

    Only the envelope is logged at INFO. Bodies carry one-time codes and reset
    links, so they only appear at DEBUG.
    """

    def __init__(self, from_email: str = "noreply@bookworms.local") -> None:
        self.from_email = from_email

    def send_email(self, to: list[str], subject: str, text_body: str, html_body: str | None = None) -> bool:
        logger.info(
            f"EMAIL (Console): from={self.from_email} to={', '.join(to)} subject={subject!r} "
            f"html={'yes' if html_body else 'no'}"
        )
        logger.debug(f"EMAIL (Console) body:\n{text_body}")
        return True


class SMTPEmailAdapter(EmailAdapter):
    """Email adapter that sends emails via SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        from_name: str = "",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def send_email(self, to: list[str], subject: str, text_body: str, html_body: str | None = None) -> bool:
        """Send an email via SMTP.

        Returns:
            True if email sent successfully, False if an error occurred
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email
        msg["To"] = ", ".join(to)
        msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error sending email to {len(to)} recipient(s): {e}")
            return False

        logger.info(f"Email sent successfully to {len(to)} recipient(s)")
        return True


def get_email_adapter(email_cfg: EmailCfg | None = None) -> EmailAdapter:
    """Build the email adapter selected by EMAIL_BACKEND."""
    email_cfg = email_cfg or EmailCfg.from_env()
    if email_cfg.backend == "console":
        return ConsoleEmailAdapter(from_email=email_cfg.from_email)
    if email_cfg.backend == "smtp":
        return SMTPEmailAdapter(
            host=email_cfg.host,
            port=email_cfg.port,
            username=email_cfg.username,
            password=email_cfg.password,
            use_tls=email_cfg.use_tls,
            from_email=email_cfg.from_email,
            from_name=email_cfg.from_name,
        )
    raise ValueError(f"Unknown EMAIL_BACKEND '{email_cfg.backend}'. Use 'console' or 'smtp'")
