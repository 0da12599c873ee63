"""
Identity domain types: roles, profiles and impersonation state.

Why:
- Centralize allowed roles to avoid drift between services and web layer.
- Keep the profile shape in one place so session storage and views agree.

Notes:
- `is_super_admin` is a flag independent of `role`: a super admin may be a
  learner, instructor or admin within their own organization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"learner", "instructor", "admin"})


class AuthError(Exception):
    """Authentication failure with a machine-readable code.

    Codes: EMAIL_NOT_CONFIRMED, CONFIRMATION_REQUIRED, INVALID_CREDENTIALS,
    WEAK_PASSWORD, CURRENT_PASSWORD_INCORRECT, NOT_AUTHENTICATED,
    SIGNUP_FAILED.
    """

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class ImpersonationError(Exception):
    """Impersonation failure (forbidden, already_active, not_active,
    target_not_found, self_target, backend_error)."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


@dataclass(frozen=True)
class Profile:
    id: str
    email: str
    role: str = "learner"
    full_name: Optional[str] = None
    is_super_admin: bool = False
    organization_id: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        """Build a Profile from a `profiles` row.

        Raises `ValueError("invalid_role")` for a role outside ALLOWED_ROLES and
        `ValueError("invalid_profile")` when the id is missing.
        """
        pid = str(row.get("id") or "")
        if not pid:
            raise ValueError("invalid_profile")
        role = str(row.get("role") or "learner")
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        return cls(
            id=pid,
            email=str(row.get("email") or ""),
            role=role,
            full_name=row.get("full_name") or None,
            is_super_admin=bool(row.get("is_super_admin")),
            organization_id=row.get("organization_id") or None,
            avatar_url=row.get("avatar_url") or None,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "User"


@dataclass(frozen=True)
class ImpersonationState:
    session_id: str
    target_profile: Profile
    original_profile: Profile
    started_at: datetime
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "target_profile": self.target_profile.to_dict(),
            "original_profile": self.original_profile.to_dict(),
            "started_at": self.started_at.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImpersonationState":
        started = datetime.fromisoformat(str(data["started_at"]))
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return cls(
            session_id=str(data["session_id"]),
            target_profile=Profile(**data["target_profile"]),
            original_profile=Profile(**data["original_profile"]),
            started_at=started,
            reason=data.get("reason"),
        )


__all__ = ["ALLOWED_ROLES", "AuthError", "ImpersonationError", "ImpersonationState", "Profile"]
