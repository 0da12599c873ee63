"""
Organizations (tenants): lifecycle, plans, promo codes and feature limits.

Why:
    Every course and user belongs to exactly one organization. Plan limits and
    the subscription status gate what admins and instructors may create, so the
    checks live here and not in individual views.

Behavior:
    - New organizations start a 14-day trial with the default brand colours.
    - Lifetime deals (promo codes of type `lifetime_deal`) replace the plan's
      limits with the promo's `lifetime_plan_limits`.
    - A limit of None means unlimited.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from backend.datastore.ports import DatastoreError, DatastoreProtocol

from .email import Mailer
from .validation import HEX_COLOR_RE

logger = logging.getLogger("clearcourse.organizations")

DEFAULT_PRIMARY_COLOR = "#3B82F6"
DEFAULT_SECONDARY_COLOR = "#1E40AF"
TRIAL_DAYS = 14
SUBSCRIPTION_STATUSES = ("trial", "active", "past_due", "canceled", "lifetime")
FEATURES = ("courses", "instructors", "learners")
PROFILE_LINK_POLL_ATTEMPTS = 10
PROFILE_LINK_POLL_INTERVAL = 0.3


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the backend; naive values are UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def slugify(text: str) -> str:
    value = (text or "").lower().strip()
    value = re.sub(r"[^\w\s-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return re.sub(r"^-+|-+$", "", value)


def _normalize_color(value: Optional[str], default: str) -> str:
    if value is None or not str(value).strip():
        return default
    color = str(value).strip()
    if not HEX_COLOR_RE.match(color):
        raise ValueError("invalid_color")
    return color.upper()


def _normalize_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name or len(name) > 100:
        raise ValueError("invalid_name")
    return name


@dataclass(frozen=True)
class FeatureLimit:
    allowed: bool
    current: int
    max: Optional[int]


@dataclass(frozen=True)
class OrganizationUsage:
    courses: int = 0
    instructors: int = 0
    learners: int = 0

    def for_feature(self, feature: str) -> int:
        return int(getattr(self, feature))


@dataclass
class OrganizationService:
    ds: DatastoreProtocol
    sleep: Callable[[float], None] = field(default=time.sleep)

    # --- Lookup / CRUD -----------------------------------------------------------

    def get(self, organization_id: Optional[str]) -> Optional[dict]:
        if not organization_id:
            return None
        try:
            return self.ds.select_one("organizations", {"id": organization_id})
        except DatastoreError as exc:
            logger.error("org.get.failed org=%s code=%s", organization_id, exc.code)
            return None

    def get_by_slug(self, slug: str) -> Optional[dict]:
        try:
            return self.ds.select_one("organizations", {"slug": slug})
        except DatastoreError as exc:
            logger.error("org.get_by_slug.failed slug=%s code=%s", slug, exc.code)
            return None

    def create(
        self,
        *,
        name: str,
        slug: str,
        owner_id: str,
        primary_color: Optional[str] = None,
        secondary_color: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        now = now or datetime.now(timezone.utc)
        slug = slugify(slug)
        if not slug:
            raise ValueError("invalid_slug")
        return self.ds.insert(
            "organizations",
            {
                "name": _normalize_name(name),
                "slug": slug,
                "owner_id": owner_id,
                "primary_color": _normalize_color(primary_color, DEFAULT_PRIMARY_COLOR),
                "secondary_color": _normalize_color(secondary_color, DEFAULT_SECONDARY_COLOR),
                "subscription_status": "trial",
                "trial_ends_at": (now + timedelta(days=TRIAL_DAYS)).isoformat(),
            },
        )

    def update(self, organization_id: str, values: dict) -> Optional[dict]:
        rows = self.ds.update("organizations", {"id": organization_id}, values)
        return rows[0] if rows else None

    def update_branding(
        self, organization_id: str, *, name: str, primary_color: str, secondary_color: str
    ) -> Optional[dict]:
        """Settings page save: name plus brand colours in `#RRGGBB` form."""
        return self.update(
            organization_id,
            {
                "name": _normalize_name(name),
                "primary_color": _normalize_color(primary_color, DEFAULT_PRIMARY_COLOR),
                "secondary_color": _normalize_color(secondary_color, DEFAULT_SECONDARY_COLOR),
            },
        )

    # --- Plans & subscriptions ---------------------------------------------------

    def list_plans(self) -> list[dict]:
        try:
            return self.ds.select("subscription_plans", filters={"is_active": True}, order_by="price_monthly")
        except DatastoreError as exc:
            logger.error("org.plans.failed code=%s", exc.code)
            return []

    def get_plan(self, plan_id: str) -> Optional[dict]:
        return self.ds.select_one("subscription_plans", {"id": plan_id})

    def current_subscription(self, organization_id: str) -> Optional[tuple[dict, Optional[dict]]]:
        """Latest subscription of the organization together with its plan."""
        rows = self.ds.select(
            "subscriptions",
            filters={"organization_id": organization_id},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        if not rows:
            return None
        subscription = rows[0]
        plan = self.get_plan(subscription["plan_id"]) if subscription.get("plan_id") else None
        return subscription, plan

    # --- Promo codes -------------------------------------------------------------

    def validate_promo_code(self, code: str, *, now: Optional[datetime] = None) -> Optional[dict]:
        code = (code or "").strip().upper()
        if not code:
            return None
        try:
            promo = self.ds.select_one("promo_codes", {"code": code, "is_active": True})
        except DatastoreError as exc:
            logger.error("org.promo.lookup_failed code=%s", exc.code)
            return None
        if not promo:
            return None
        now = now or datetime.now(timezone.utc)
        valid_from = parse_timestamp(promo.get("valid_from"))
        valid_until = parse_timestamp(promo.get("valid_until"))
        if (valid_from and now < valid_from) or (valid_until and now > valid_until):
            return None
        max_redemptions = promo.get("max_redemptions")
        if max_redemptions is not None and int(promo.get("redemptions_count") or 0) >= int(max_redemptions):
            return None
        return promo

    def redeem_promo_code(self, promo_id: str, organization_id: str, user_id: str) -> bool:
        try:
            self.ds.insert(
                "promo_code_redemptions",
                {"promo_code_id": promo_id, "organization_id": organization_id, "redeemed_by": user_id},
            )
        except DatastoreError as exc:
            logger.error("org.promo.redeem_failed promo=%s code=%s", promo_id, exc.code)
            return False
        self.ds.rpc("increment_promo_redemptions", {"promo_id": promo_id})
        return True

    # --- Usage & limits ----------------------------------------------------------

    def usage(self, organization_id: str) -> OrganizationUsage:
        return OrganizationUsage(
            courses=self.ds.count("courses", {"organization_id": organization_id}),
            instructors=self.ds.count("profiles", {"organization_id": organization_id, "role": "instructor"}),
            learners=self.ds.count("profiles", {"organization_id": organization_id, "role": "learner"}),
        )

    def _lifetime_limits(self, organization_id: str) -> Optional[dict]:
        redemption = self.ds.select_one("promo_code_redemptions", {"organization_id": organization_id})
        if not redemption:
            return None
        promo = self.ds.select_one("promo_codes", {"id": redemption.get("promo_code_id")})
        limits = (promo or {}).get("lifetime_plan_limits")
        return limits if isinstance(limits, dict) and limits else None

    def check_feature_limit(self, organization_id: str, feature: str) -> FeatureLimit:
        if feature not in FEATURES:
            raise ValueError("invalid_feature")
        org = self.get(organization_id)
        if not org:
            return FeatureLimit(allowed=False, current=0, max=None)

        key = f"max_{feature}"
        if org.get("subscription_status") == "lifetime":
            limits = self._lifetime_limits(organization_id)
            if limits is not None:
                current = self.usage(organization_id).for_feature(feature)
                maximum = limits.get(key)
                return FeatureLimit(allowed=maximum is None or current < int(maximum), current=current,
                                    max=maximum)

        sub = self.current_subscription(organization_id)
        if sub is None or sub[1] is None:
            return FeatureLimit(allowed=False, current=0, max=None)
        current = self.usage(organization_id).for_feature(feature)
        maximum = sub[1].get(key)
        return FeatureLimit(allowed=maximum is None or current < int(maximum), current=current, max=maximum)

    # --- Organization signup -----------------------------------------------------

    def signup(
        self,
        *,
        user_id: str,
        owner_email: str,
        owner_name: str,
        name: str,
        slug: Optional[str] = None,
        primary_color: Optional[str] = None,
        secondary_color: Optional[str] = None,
        promo_code: Optional[str] = None,
        mailer: Optional[Mailer] = None,
    ) -> dict:
        """Create an organization and make the caller its admin.

        Behavior:
            - Raises `ValueError("slug_taken")` when the slug already exists and
              `ValueError("invalid_promo_code")` for a code that does not validate.
            - A lifetime deal switches the organization to `lifetime` and clears
              the trial end.
            - Sends the welcome e-mail; delivery failures are logged only.
        """
        name = _normalize_name(name)
        slug = slugify(slug or name)
        if not slug:
            raise ValueError("invalid_slug")
        promo = None
        if promo_code and promo_code.strip():
            promo = self.validate_promo_code(promo_code)
            if promo is None:
                raise ValueError("invalid_promo_code")
        if self.get_by_slug(slug):
            raise ValueError("slug_taken")

        try:
            org = self.create(
                name=name, slug=slug, owner_id=user_id, primary_color=primary_color, secondary_color=secondary_color
            )
        except DatastoreError as exc:
            if exc.code == "23505":
                raise ValueError("slug_taken") from exc
            raise
        self.ds.update("profiles", {"id": user_id}, {"organization_id": org["id"], "role": "admin"})

        if promo is not None and promo.get("type") == "lifetime_deal":
            if self.redeem_promo_code(promo["id"], org["id"], user_id):
                org = self.update(org["id"], {"subscription_status": "lifetime", "trial_ends_at": None}) or org
                logger.info("org.lifetime_deal org=%s promo=%s", org["id"], promo["id"])

        if mailer is not None:
            mailer.send_welcome(owner_email, org["name"], owner_name or owner_email)
        logger.info("org.created org=%s owner=%s", org["id"], user_id)
        return org

    def wait_for_profile_link(
        self,
        user_id: str,
        organization_id: str,
        *,
        attempts: int = PROFILE_LINK_POLL_ATTEMPTS,
        interval: float = PROFILE_LINK_POLL_INTERVAL,
    ) -> bool:
        """Poll the profile until it shows the new organization and admin role."""
        for attempt in range(attempts):
            row = self.ds.select_one("profiles", {"id": user_id})
            if row and row.get("organization_id") == organization_id and row.get("role") == "admin":
                return True
            if attempt < attempts - 1:
                self.sleep(interval)
        logger.warning("org.profile_link.timeout user=%s org=%s", user_id, organization_id)
        return False


@dataclass
class OrganizationContext:
    """The current user's organization plus derived subscription flags."""

    organization: Optional[dict]
    service: Optional[OrganizationService] = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def load(cls, service: OrganizationService, organization_id: Optional[str]) -> "OrganizationContext":
        return cls(organization=service.get(organization_id), service=service)

    @property
    def status(self) -> Optional[str]:
        return (self.organization or {}).get("subscription_status")

    @property
    def is_trial_expired(self) -> bool:
        if self.status != "trial":
            return False
        ends = parse_timestamp((self.organization or {}).get("trial_ends_at"))
        return bool(ends and ends < self.now)

    @property
    def is_subscription_active(self) -> bool:
        return self.status in ("active", "lifetime")

    def _allowed(self, feature: str) -> bool:
        if not self.organization or self.service is None:
            return False
        limit = self.service.check_feature_limit(self.organization["id"], feature)
        if limit.allowed:
            return True
        # A running trial has no subscription row yet; it is not capped by a plan.
        return self.status == "trial" and not self.is_trial_expired and limit.max is None

    def can_create_course(self) -> bool:
        return self._allowed("courses")

    def can_invite_instructor(self) -> bool:
        return self._allowed("instructors")

    def can_invite_learner(self) -> bool:
        return self._allowed("learners")


__all__ = [
    "DEFAULT_PRIMARY_COLOR",
    "DEFAULT_SECONDARY_COLOR",
    "FeatureLimit",
    "OrganizationContext",
    "OrganizationService",
    "OrganizationUsage",
    "SUBSCRIPTION_STATUSES",
    "TRIAL_DAYS",
    "parse_timestamp",
    "slugify",
]
