"""
Sign-in, sign-up and password-reset forms.

Passwords are never echoed back into the markup; re-rendered forms keep only
the e-mail address and name.
"""

from __future__ import annotations

from typing import Optional

from ..base import Component, csrf_input
from .fields import TextInputField
from .password import PasswordStrengthIndicator
from .submit import SubmitButton


def _alert(message: Optional[str], kind: str = "error") -> str:
    if not message:
        return ""
    role = "alert" if kind == "error" else "status"
    return f'<div class="flash flash--{kind}" role="{role}">{Component.escape(message)}</div>'


class LoginForm(Component):
    def __init__(self, csrf_token: str, *, email: str = "", error: Optional[str] = None,
                 notice: Optional[str] = None) -> None:
        self.csrf_token = csrf_token
        self.email = email
        self.error = error
        self.notice = notice

    def render(self) -> str:
        return f"""
        <form method="post" action="/login" class="auth-form">
            {csrf_input(self.csrf_token)}
            {_alert(self.notice, "info")}
            {TextInputField("email", "Email", required=True).render(value=self.email, input_type="email", autocomplete="email")}
            {TextInputField("password", "Password", required=True).render(input_type="password", autocomplete="current-password")}
            {_alert(self.error)}
            <div class="form-actions">{SubmitButton("Sign in", full_width=True).render()}</div>
            <p class="auth-form__links"><a href="/reset-password">Forgot password?</a> &middot;
               <a href="/signup">Create an account</a></p>
        </form>
        """


class SignupForm(Component):
    def __init__(
        self,
        csrf_token: str,
        *,
        values: Optional[dict] = None,
        errors: Optional[dict] = None,
        error: Optional[str] = None,
        password_for_meter: Optional[str] = None,
    ) -> None:
        self.csrf_token = csrf_token
        self.values = values or {}
        self.errors = errors or {}
        self.error = error
        self.password_for_meter = password_for_meter

    def render(self) -> str:
        v, e = self.values, self.errors
        full_name = TextInputField("full_name", "Full name", required=True, error_text=e.get("full_name"))
        email = TextInputField("email", "Email", required=True, error_text=e.get("email"))
        password = TextInputField(
            "password", "Password", required=True, error_text=e.get("password"),
            help_text="At least 8 characters with upper- and lowercase letters, a number and a symbol.",
        )
        return f"""
        <form method="post" action="/signup" class="auth-form">
            {csrf_input(self.csrf_token)}
            {full_name.render(value=v.get("full_name") or "", autocomplete="name")}
            {email.render(value=v.get("email") or "", input_type="email", autocomplete="email")}
            {password.render(input_type="password", autocomplete="new-password")}
            {PasswordStrengthIndicator(self.password_for_meter).render()}
            {_alert(self.error)}
            <div class="form-actions">{SubmitButton("Create account", full_width=True).render()}</div>
            <p class="auth-form__links">Already registered? <a href="/login">Sign in</a></p>
        </form>
        """


class ResetPasswordForm(Component):
    """Request form (e-mail) or, with `has_recovery_session`, the new-password form."""

    def __init__(self, csrf_token: str, *, has_recovery_session: bool = False, error: Optional[str] = None,
                 notice: Optional[str] = None) -> None:
        self.csrf_token = csrf_token
        self.has_recovery_session = has_recovery_session
        self.error = error
        self.notice = notice

    def render(self) -> str:
        if self.has_recovery_session:
            fields = (
                TextInputField("password", "New password", required=True).render(
                    input_type="password", autocomplete="new-password", minlength="6"
                )
                + TextInputField("password_confirm", "Confirm new password", required=True).render(
                    input_type="password", autocomplete="new-password"
                )
            )
            label = "Update password"
        else:
            fields = TextInputField("email", "Email", required=True).render(input_type="email", autocomplete="email")
            label = "Send reset link"
        return f"""
        <form method="post" action="/reset-password" class="auth-form">
            {csrf_input(self.csrf_token)}
            {_alert(self.notice, "success")}
            {fields}
            {_alert(self.error)}
            <div class="form-actions">{SubmitButton(label, full_width=True).render()}</div>
        </form>
        """
