"""ABOUTME: Outbound member notifications for one-time codes and password reset links
ABOUTME: Provides the Notifier interface and an email implementation built on the email and template adapters"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta

from memberauth.adapters.email import EmailAdapter
from memberauth.adapters.template_renderer import TemplateRenderer

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers codes and links to a member. Returns False when delivery failed."""

    @abstractmethod
    def send_otp(self, email: str, code: str) -> bool:
        pass

    @abstractmethod
    def send_password_reset_link(self, email: str, url: str) -> bool:
        pass


class EmailNotifier(Notifier):
    def __init__(
        self,
        email_adapter: EmailAdapter,
        template_renderer: TemplateRenderer,
        site_name: str = "Bookworms Online",
        otp_lifetime: timedelta = timedelta(minutes=10),
        reset_link_lifetime: timedelta = timedelta(hours=24),
    ):
        self.email_adapter = email_adapter
        self.template_renderer = template_renderer
        self.site_name = site_name
        self.otp_lifetime = otp_lifetime
        self.reset_link_lifetime = reset_link_lifetime

    def send_otp(self, email: str, code: str) -> bool:
        context = {
            "site_name": self.site_name,
            "code": code,
            "expiry_minutes": int(self.otp_lifetime.total_seconds() // 60),
        }
        return self._send(
            email,
            subject=f"Your {self.site_name} verification code",
            template="two_factor_code",
            context=context,
        )

    def send_password_reset_link(self, email: str, url: str) -> bool:
        context = {
            "site_name": self.site_name,
            "reset_url": url,
            "expiry_hours": int(self.reset_link_lifetime.total_seconds() // 3600),
        }
        return self._send(
            email,
            subject=f"Reset your {self.site_name} password",
            template="password_reset",
            context=context,
        )

    def _send(self, email: str, subject: str, template: str, context: dict) -> bool:
        try:
            text_body = self.template_renderer.render_template(f"emails/{template}.txt", **context)
            html_body = self.template_renderer.render_template(f"emails/{template}.html", **context)
            success = self.email_adapter.send_email(
                to=[email],
                subject=subject,
                text_body=text_body,
                html_body=html_body,
            )
        except Exception as e:
            logger.error(f"Error sending {template} email to {email}: {e}")
            return False

        if success:
            logger.info(f"{template} email sent to {email}")
        else:
            logger.error(f"Failed to send {template} email to {email}")
        return success
