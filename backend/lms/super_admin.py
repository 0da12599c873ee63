"""
Platform-wide overview for super admins.

Permissions:
    Only profiles with `is_super_admin` may load the overview; everyone else
    gets `PermissionError("forbidden")` and the page renders "Access Denied".
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from backend.datastore.ports import DatastoreProtocol
from backend.identity_access.domain import Profile

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")
STATUS_BADGES = {
    "trial": "badge--info",
    "active": "badge--success",
    "lifetime": "badge--accent",
    "past_due": "badge--warning",
    "canceled": "badge--danger",
}


def status_badge(status: Optional[str]) -> tuple[str, str]:
    """Return (css_class, label); unknown statuses render like `canceled`."""
    status = status or "canceled"
    css = STATUS_BADGES.get(status, STATUS_BADGES["canceled"])
    return css, status[:1].upper() + status[1:]


@dataclass
class OrganizationRow:
    organization: dict
    owner_email: Optional[str] = None
    plan_name: Optional[str] = None
    users: int = 0

    @property
    def plan_label(self) -> str:
        return self.plan_name or "Trial"


@dataclass
class PlatformOverview:
    organizations: list[OrganizationRow] = field(default_factory=list)
    total_users: int = 0
    active_subscriptions: int = 0
    query: str = ""

    @property
    def total_organizations(self) -> int:
        return len(self.organizations)

    @property
    def conversion_rate(self) -> float:
        if not self.organizations:
            return 0.0
        return round(self.active_subscriptions / len(self.organizations) * 100, 1)

    @property
    def filtered(self) -> list[OrganizationRow]:
        q = self.query.strip().lower()
        if not q:
            return list(self.organizations)
        return [
            row
            for row in self.organizations
            if q in (row.organization.get("name") or "").lower()
            or q in (row.organization.get("slug") or "").lower()
            or q in (row.owner_email or "").lower()
        ]


@dataclass
class SuperAdminService:
    ds: DatastoreProtocol

    def overview(self, actor: Profile, query: str = "") -> PlatformOverview:
        if not actor.is_super_admin:
            raise PermissionError("forbidden")
        orgs = self.ds.select("organizations", order_by="created_at", descending=True)
        profiles = self.ds.select("profiles")
        emails = {str(p["id"]): p.get("email") for p in profiles}
        members: dict[str, int] = {}
        for p in profiles:
            if p.get("organization_id"):
                members[str(p["organization_id"])] = members.get(str(p["organization_id"]), 0) + 1

        subs = self.ds.select("subscriptions", order_by="created_at", descending=True)
        plans = {str(p["id"]): p for p in self.ds.select("subscription_plans")}
        latest_plan: dict[str, str] = {}
        for sub in subs:
            org_id = str(sub.get("organization_id"))
            if org_id not in latest_plan:
                latest_plan[org_id] = (plans.get(str(sub.get("plan_id"))) or {}).get("name") or "N/A"

        rows = [
            OrganizationRow(
                organization=org,
                owner_email=emails.get(str(org.get("owner_id"))),
                plan_name=latest_plan.get(str(org["id"])),
                users=members.get(str(org["id"]), 0),
            )
            for org in orgs
        ]
        active = sum(1 for s in subs if s.get("status") in ACTIVE_SUBSCRIPTION_STATUSES)
        return PlatformOverview(
            organizations=rows, total_users=len(profiles), active_subscriptions=active, query=query or ""
        )

    def users(self, actor: Profile) -> list[dict]:
        """All profiles, newest first; the impersonation picker lists these."""
        if not actor.is_super_admin:
            raise PermissionError("forbidden")
        return self.ds.select("profiles", order_by="created_at", descending=True)


__all__ = ["OrganizationRow", "PlatformOverview", "SuperAdminService", "status_badge"]
