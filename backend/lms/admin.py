"""
Organization administration: stats and user management for admins.

Permissions:
    Callers must hold the `admin` role (or be a super admin). Role changes go
    through the `update_organization_user_role` RPC, which re-checks the
    caller server-side and reports `{success, error}`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.datastore.ports import AuthGatewayError, AuthGatewayProtocol, DatastoreError, DatastoreProtocol
from backend.identity_access.domain import ALLOWED_ROLES, Profile

from .email import Mailer
from .validation import EMAIL_RE, PASSWORD_MIN_LENGTH

logger = logging.getLogger("clearcourse.admin")


class AdminActionError(Exception):
    """A user-management action was rejected; `message` is shown to the admin."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class AdminStats:
    total_users: int
    instructors: int
    learners: int
    total_courses: int
    total_enrollments: int


def _require_admin(actor: Profile) -> None:
    if actor.role != "admin" and not actor.is_super_admin:
        raise PermissionError("forbidden")


@dataclass
class AdminService:
    ds: DatastoreProtocol
    auth: AuthGatewayProtocol
    mailer: Optional[Mailer] = None

    def list_users(self, organization_id: str) -> list[dict]:
        return self.ds.select("profiles", filters={"organization_id": organization_id}, order_by="created_at",
                              descending=True)

    def stats(self, organization_id: str) -> AdminStats:
        users = self.list_users(organization_id)
        courses = self.ds.select("courses", filters={"organization_id": organization_id})
        enrollments = self.ds.select("enrollments", in_filter=("course_id", [c["id"] for c in courses]))
        return AdminStats(
            total_users=len(users),
            instructors=sum(1 for u in users if u.get("role") == "instructor"),
            learners=sum(1 for u in users if u.get("role") == "learner"),
            total_courses=len(courses),
            total_enrollments=len(enrollments),
        )

    def update_role(self, actor: Profile, target_user_id: str, new_role: str) -> None:
        _require_admin(actor)
        if target_user_id == actor.id:
            raise AdminActionError("You cannot change your own role.")
        if new_role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        try:
            result = self.ds.rpc(
                "update_organization_user_role", {"target_user_id": target_user_id, "new_role": new_role}
            )
        except DatastoreError as exc:
            logger.error("admin.role.rpc_failed target=%s code=%s", target_user_id, exc.code)
            raise AdminActionError(f"Permission error: {exc.message}") from exc
        if not isinstance(result, dict) or "success" not in result:
            raise AdminActionError("Unexpected response from server")
        if not result.get("success"):
            raise AdminActionError(str(result.get("error") or "Failed to update user role"))
        logger.info("admin.role.updated actor=%s target=%s role=%s", actor.id, target_user_id, new_role)

    def update_email(self, actor: Profile, target_user_id: str, email: str) -> None:
        _require_admin(actor)
        email = (email or "").strip()
        if not EMAIL_RE.match(email):
            raise ValueError("invalid_email")
        rows = self.ds.update("profiles", {"id": target_user_id}, {"email": email})
        if not rows:
            raise LookupError("user_not_found")

    def create_user(
        self,
        actor: Profile,
        *,
        email: str,
        password: str,
        full_name: str,
        role: str,
        organization_name: str = "",
        login_url: str = "",
    ) -> str:
        """Register a user with the given role and link it to the admin's organization."""
        _require_admin(actor)
        email = (email or "").strip()
        if not EMAIL_RE.match(email):
            raise ValueError("invalid_email")
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        if len(password or "") < PASSWORD_MIN_LENGTH:
            raise ValueError("invalid_password")
        try:
            user = self.auth.sign_up(email, password, {"full_name": (full_name or "").strip(), "role": role})
        except AuthGatewayError as exc:
            raise AdminActionError(exc.message) from exc
        if user is None:
            raise AdminActionError("User creation failed - no user data returned")
        if actor.organization_id:
            self.ds.update("profiles", {"id": user.id}, {"organization_id": actor.organization_id, "role": role})
        if self.mailer is not None and login_url:
            self.mailer.send_invitation(email, organization_name, actor.display_name, role, login_url)
        logger.info("admin.user.created actor=%s user=%s role=%s", actor.id, user.id, role)
        return user.id

    def delete_user(self, actor: Profile, target_user_id: str) -> None:
        _require_admin(actor)
        if target_user_id == actor.id:
            raise AdminActionError("You cannot delete your own account.")
        try:
            result = self.ds.invoke_function("delete-user", {"userId": target_user_id})
        except DatastoreError as exc:
            raise AdminActionError(exc.message or "Failed to delete user") from exc
        if result.get("success") is False or result.get("error"):
            raise AdminActionError(str(result.get("error") or "Failed to delete user"))
        logger.info("admin.user.deleted actor=%s target=%s", actor.id, target_user_id)


__all__ = ["AdminActionError", "AdminService", "AdminStats"]
