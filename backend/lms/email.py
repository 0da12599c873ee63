"""
Transactional e-mail: providers (Resend, SendGrid, console) and templates.

Why:
    Signup, billing and invitations notify users by e-mail. Delivery must never
    break the user-facing flow, so `send_email` reports success as a bool and
    logs failures instead of raising.

Security:
    Every interpolated value in a template is HTML-escaped; organization and
    user names are user-controlled.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape
from typing import List, Optional, Protocol

import httpx

logger = logging.getLogger("clearcourse.email")

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_FROM = "noreply@clearcoursestudio.com"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    sender: Optional[str] = None


class EmailProvider(Protocol):
    def send_email(self, message: EmailMessage) -> bool: ...


class _HttpProvider:
    url: str = ""
    name: str = "http"

    def __init__(self, api_key: str, from_email: str = DEFAULT_FROM, *, client: Optional[httpx.Client] = None,
                 timeout: float = 10.0) -> None:
        self._api_key = api_key
        self._from = from_email or DEFAULT_FROM
        self._client = client
        self._timeout = timeout

    def _payload(self, message: EmailMessage) -> dict:
        raise NotImplementedError

    def send_email(self, message: EmailMessage) -> bool:
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            if self._client is not None:
                resp = self._client.post(self.url, json=self._payload(message), headers=headers)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    resp = client.post(self.url, json=self._payload(message), headers=headers)
        except httpx.HTTPError as exc:
            logger.error("email.send.failed provider=%s error=%s", self.name, exc.__class__.__name__)
            return False
        if resp.is_success:
            return True
        logger.error("email.send.rejected provider=%s status=%s", self.name, resp.status_code)
        return False


class ResendProvider(_HttpProvider):
    url = RESEND_URL
    name = "resend"

    def _payload(self, message: EmailMessage) -> dict:
        return {
            "from": message.sender or self._from,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }


class SendGridProvider(_HttpProvider):
    url = SENDGRID_URL
    name = "sendgrid"

    def _payload(self, message: EmailMessage) -> dict:
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": message.sender or self._from},
            "subject": message.subject,
            "content": [{"type": "text/html", "value": message.html}],
        }


class ConsoleProvider:
    """Logs messages instead of sending them; keeps an outbox for inspection."""

    name = "console"

    def __init__(self) -> None:
        self.outbox: List[EmailMessage] = []

    def send_email(self, message: EmailMessage) -> bool:
        self.outbox.append(message)
        logger.info("email.console to=%s subject=%r", message.to, message.subject)
        return True


def create_email_provider(settings) -> EmailProvider:
    provider = (settings.email_provider or "console").lower()
    if provider == "resend":
        return ResendProvider(settings.email_api_key, settings.email_from)
    if provider == "sendgrid":
        return SendGridProvider(settings.email_api_key, settings.email_from)
    if provider != "console":
        logger.warning("email.provider.unknown provider=%s using console", provider)
    return ConsoleProvider()


# --- Templates -------------------------------------------------------------------

_STYLE = """
body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 600px; margin: 0 auto; padding: 20px; }
.header { background: linear-gradient(135deg, %(from)s 0%%, %(to)s 100%%); color: white; padding: 30px;
          text-align: center; border-radius: 8px 8px 0 0; }
.content { background: #f8fafc; padding: 30px; border-radius: 0 0 8px 8px; }
.button { display: inline-block; background: #3B82F6; color: white; padding: 12px 30px;
          text-decoration: none; border-radius: 6px; margin-top: 20px; }
.footer { margin-top: 40px; padding-top: 30px; border-top: 1px solid #e2e8f0; text-align: center;
          color: #64748b; font-size: 12px; }
"""

_GRADIENTS = {
    "brand": ("#3B82F6", "#1E40AF"),
    "warning": ("#F59E0B", "#D97706"),
    "success": ("#10B981", "#059669"),
    "danger": ("#EF4444", "#DC2626"),
}


def _footer(base_url: str, *, marketing: bool = False) -> str:
    reason = (
        "You received this email because you opted in to receive updates from Clear Course Studio. "
        f'<a href="{base_url}/profile">Manage preferences</a>'
        if marketing
        else "You received this email because you have an account with Clear Course Studio."
    )
    return (
        '<div class="footer">'
        "<p><strong>Clear Course Studio</strong></p>"
        "<p>Modern Learning Management Platform</p>"
        f'<p><a href="{base_url}/terms">Terms</a> | <a href="{base_url}/privacy">Privacy</a> | '
        f'<a href="{base_url}/contact">Contact</a></p>'
        f"<p>{reason}</p>"
        "</div>"
    )


def _document(title: str, body: str, *, tone: str, base_url: str, marketing: bool = False) -> str:
    start, end = _GRADIENTS[tone]
    style = _STYLE % {"from": start, "to": end}
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<style>{style}</style></head><body><div class=\"container\">"
        f"<div class=\"header\"><h1>{escape(title)}</h1></div>"
        f"<div class=\"content\">{body}{_footer(base_url, marketing=marketing)}</div>"
        "</div></body></html>"
    )


def welcome_email(organization_name: str, owner_name: str, *, base_url: str) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(owner_name)},</p>"
        f"<p>Congratulations on creating <strong>{escape(organization_name)}</strong>! "
        "Your learning platform is now live and ready to go.</p>"
        "<ul><li>Customize your branding</li><li>Create your first course</li>"
        "<li>Invite instructors and learners</li></ul>"
        "<p>Your 14-day free trial has started. No credit card required!</p>"
        f'<a href="{escape(base_url)}/dashboard" class="button">Go to Dashboard</a>'
    )
    subject = f"Welcome to Clear Course Studio, {organization_name}!"
    return subject, _document("Welcome to Clear Course Studio!", body, tone="brand", base_url=escape(base_url))


def invitation_email(organization_name: str, inviter_name: str, role: str, invite_link: str, *,
                     base_url: str) -> tuple[str, str]:
    body = (
        f"<p><strong>{escape(inviter_name)}</strong> has invited you to join "
        f"<strong>{escape(organization_name)}</strong> on Clear Course Studio as a "
        f"<strong>{escape(role)}</strong>.</p>"
        f'<a href="{escape(invite_link, quote=True)}" class="button">Accept Invitation</a>'
        '<p style="color: #64748b; font-size: 14px;">This invitation expires in 7 days.</p>'
    )
    subject = f"You're invited to join {organization_name}"
    return subject, _document("You're Invited!", body, tone="brand", base_url=escape(base_url))


def trial_ending_email(organization_name: str, days_left: int, *, base_url: str) -> tuple[str, str]:
    body = (
        "<p>Hi there,</p>"
        f"<p>Your free trial for <strong>{escape(organization_name)}</strong> expires in "
        f"<strong>{int(days_left)} days</strong>.</p>"
        "<p>To continue without interruption, please select a subscription plan.</p>"
        f'<a href="{escape(base_url)}/pricing" class="button">View Plans</a>'
    )
    subject = f"Your trial ends in {int(days_left)} days"
    return subject, _document("Your Trial is Ending Soon", body, tone="warning", base_url=escape(base_url),
                              marketing=True)


def subscription_activated_email(organization_name: str, plan_name: str, *, base_url: str) -> tuple[str, str]:
    body = (
        "<p>Great news!</p>"
        f"<p>Your <strong>{escape(plan_name)}</strong> subscription for "
        f"<strong>{escape(organization_name)}</strong> is now active.</p>"
        f'<a href="{escape(base_url)}/dashboard" class="button">Go to Dashboard</a>'
    )
    return "Your subscription is active", _document(
        "Subscription Activated!", body, tone="success", base_url=escape(base_url)
    )


def payment_failed_email(organization_name: str, *, base_url: str) -> tuple[str, str]:
    body = (
        f"<p>We were unable to process your payment for <strong>{escape(organization_name)}</strong>.</p>"
        "<p>Please update your payment method to avoid service interruption.</p>"
        f'<a href="{escape(base_url)}/settings/billing" class="button">Update Payment Method</a>'
    )
    return "Action required: payment failed", _document("Payment Failed", body, tone="danger",
                                                         base_url=escape(base_url))


@dataclass
class Mailer:
    """Renders templates and hands them to the configured provider."""

    provider: EmailProvider
    base_url: str

    def send(self, to: str, subject: str, html: str) -> bool:
        if not to:
            return False
        try:
            return bool(self.provider.send_email(EmailMessage(to=to, subject=subject, html=html)))
        except Exception:
            # send() never raises, whatever the provider does.
            logger.exception("email.send.unexpected to_domain=%s", to.rpartition("@")[2])
            return False

    def send_welcome(self, to: str, organization_name: str, owner_name: str) -> bool:
        return self.send(to, *welcome_email(organization_name, owner_name, base_url=self.base_url))

    def send_invitation(self, to: str, organization_name: str, inviter_name: str, role: str, invite_link: str) -> bool:
        return self.send(
            to, *invitation_email(organization_name, inviter_name, role, invite_link, base_url=self.base_url)
        )

    def send_trial_ending(self, to: str, organization_name: str, days_left: int) -> bool:
        return self.send(to, *trial_ending_email(organization_name, days_left, base_url=self.base_url))

    def send_subscription_activated(self, to: str, organization_name: str, plan_name: str) -> bool:
        return self.send(to, *subscription_activated_email(organization_name, plan_name, base_url=self.base_url))

    def send_payment_failed(self, to: str, organization_name: str) -> bool:
        return self.send(to, *payment_failed_email(organization_name, base_url=self.base_url))


__all__ = [
    "ConsoleProvider",
    "EmailMessage",
    "EmailProvider",
    "Mailer",
    "ResendProvider",
    "SendGridProvider",
    "create_email_provider",
    "invitation_email",
    "payment_failed_email",
    "subscription_activated_email",
    "trial_ending_email",
    "welcome_email",
]
