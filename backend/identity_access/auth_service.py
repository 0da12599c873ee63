"""
Authentication and profile context on top of the hosted auth gateway.

Why:
    Views should never talk to the auth provider directly. This service maps
    provider failures to stable machine codes (`AuthError.code`) and owns the
    one retry policy of the app: loading a freshly created profile row.

Behavior:
    - The profile row is created by a backend trigger after signup and may not
      be readable immediately. `load_profile` retries a bounded number of
      times with exponential backoff and returns None when exhausted.
    - Password rules: change requires >= 8 characters and re-authentication;
      recovery update requires >= 6 characters.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from backend.datastore.ports import AuthGatewayError, AuthUser, DatastoreError, DatastoreProtocol
from backend.datastore.wiring import Backend

from .domain import AuthError, Profile
from .stores import SessionRecord

logger = logging.getLogger("clearcourse.auth")

MIN_CHANGE_PASSWORD_LENGTH = 8
MIN_RESET_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class SignInResult:
    user: AuthUser
    profile: Optional[Profile]


class AuthService:
    def __init__(
        self,
        backend: Backend,
        *,
        app_base_url: str,
        retry_attempts: int = 5,
        retry_base_delay: float = 0.25,
        retry_multiplier: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._app_base_url = app_base_url.rstrip("/")
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_base_delay = max(0.0, float(retry_base_delay))
        self.retry_multiplier = max(1.0, float(retry_multiplier))
        self._sleep = sleep

    @classmethod
    def from_settings(cls, backend: Backend, settings, **kwargs) -> "AuthService":
        return cls(
            backend,
            app_base_url=settings.app_base_url,
            retry_attempts=settings.profile_retry_attempts,
            retry_base_delay=settings.profile_retry_base_delay,
            retry_multiplier=settings.profile_retry_multiplier,
            **kwargs,
        )

    # --- Sign in / up / out ------------------------------------------------------

    def sign_in(self, email: str, password: str) -> SignInResult:
        email = (email or "").strip()
        try:
            user = self._backend.auth.sign_in_with_password(email, password or "")
        except AuthGatewayError as exc:
            if "email not confirmed" in exc.message.lower():
                raise AuthError("EMAIL_NOT_CONFIRMED", "Please confirm your email address before signing in.") from exc
            logger.info("auth.sign_in.failed email_domain=%s", email.rpartition("@")[2] or "-")
            raise AuthError("INVALID_CREDENTIALS", "Invalid email or password.") from exc
        if not user.email_confirmed:
            self._backend.auth.sign_out(user.access_token, user.refresh_token)
            raise AuthError("EMAIL_NOT_CONFIRMED", "Please confirm your email address before signing in.")
        profile = self.load_profile(self._backend.datastore_for(user.access_token), user.id)
        return SignInResult(user=user, profile=profile)

    def sign_up(self, email: str, password: str, full_name: str) -> SignInResult:
        """Register a learner account.

        Raises `AuthError("CONFIRMATION_REQUIRED")` when the provider requires
        the e-mail address to be confirmed before the first sign-in.
        """
        metadata = {"full_name": (full_name or "").strip(), "role": "learner"}
        try:
            user = self._backend.auth.sign_up((email or "").strip(), password or "", metadata)
        except AuthGatewayError as exc:
            if "password" in exc.message.lower():
                raise AuthError("WEAK_PASSWORD", exc.message) from exc
            raise AuthError("SIGNUP_FAILED", exc.message) from exc
        if user is None:
            raise AuthError("SIGNUP_FAILED", "Signup did not return a user.")
        if not user.email_confirmed or not user.access_token:
            raise AuthError(
                "CONFIRMATION_REQUIRED", "Please check your email to confirm your account before signing in."
            )
        profile = self.load_profile(self._backend.datastore_for(user.access_token), user.id)
        return SignInResult(user=user, profile=profile)

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None:
        self._backend.auth.sign_out(access_token, refresh_token)

    # --- Passwords ---------------------------------------------------------------

    def change_password(self, email: str, current_password: str, new_password: str) -> None:
        if len(new_password or "") < MIN_CHANGE_PASSWORD_LENGTH:
            raise AuthError("WEAK_PASSWORD", "New password must be at least 8 characters long.")
        try:
            verified = self._backend.auth.sign_in_with_password(email, current_password or "")
        except AuthGatewayError as exc:
            raise AuthError("CURRENT_PASSWORD_INCORRECT", "Current password is incorrect.") from exc
        if not verified.access_token:
            raise AuthError("NOT_AUTHENTICATED", "Could not verify the current session.")
        try:
            self._backend.auth.update_password(verified.access_token, verified.refresh_token, new_password)
        except AuthGatewayError as exc:
            raise AuthError("WEAK_PASSWORD", exc.message) from exc
        logger.info("auth.password.changed user=%s", verified.id)

    def reset_password(self, email: str) -> None:
        self._backend.auth.reset_password_for_email(
            (email or "").strip(), redirect_to=f"{self._app_base_url}/reset-password"
        )

    def update_password(self, access_token: Optional[str], refresh_token: Optional[str], new_password: str) -> None:
        if not access_token:
            raise AuthError("NOT_AUTHENTICATED", "Open the link from the reset e-mail to set a new password.")
        if len(new_password or "") < MIN_RESET_PASSWORD_LENGTH:
            raise AuthError("WEAK_PASSWORD", "Password must be at least 6 characters long.")
        try:
            self._backend.auth.update_password(access_token, refresh_token, new_password)
        except AuthGatewayError as exc:
            raise AuthError("NOT_AUTHENTICATED", exc.message) from exc

    # --- Profile -----------------------------------------------------------------

    def retry_delay(self, attempt: int) -> float:
        """Delay slept after failed attempt number `attempt` (1-based)."""
        return self.retry_base_delay * (self.retry_multiplier ** (attempt - 1))

    def load_profile(self, datastore: DatastoreProtocol, user_id: str) -> Optional[Profile]:
        """Read the user's profile row with bounded retries.

        Behavior:
            - Up to `retry_attempts` reads. A missing row or a read error
              triggers another attempt after `retry_delay(attempt)` seconds.
            - A row with an unknown role is rejected without retrying.
            - Returns None after exhausting all attempts.
        """
        for attempt in range(1, self.retry_attempts + 1):
            try:
                row = datastore.select_one("profiles", {"id": user_id})
            except DatastoreError as exc:
                logger.warning("auth.profile.read_failed attempt=%s user=%s code=%s", attempt, user_id, exc.code)
                row = None
            if row:
                try:
                    return Profile.from_row(row)
                except ValueError as exc:
                    logger.error("auth.profile.rejected user=%s reason=%s", user_id, exc)
                    return None
            if attempt < self.retry_attempts:
                delay = self.retry_delay(attempt)
                logger.debug("auth.profile.retry attempt=%s user=%s delay=%.3f", attempt, user_id, delay)
                self._sleep(delay)
        logger.error("auth.profile.unavailable user=%s attempts=%s", user_id, self.retry_attempts)
        return None

    def refetch_profile(self, record: SessionRecord) -> Optional[Profile]:
        profile = self.load_profile(self._backend.datastore_for(record.access_token), record.user_id)
        if profile is not None:
            record.profile = profile
        return profile


__all__ = ["AuthService", "SignInResult", "MIN_CHANGE_PASSWORD_LENGTH", "MIN_RESET_PASSWORD_LENGTH"]
