"""
Organizations: signup, promo codes, plan limits, trial handling, branding
settings and the billing pages.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.datastore.memory import InMemoryBackend
from backend.lms.billing import StripeClient
from backend.lms.email import ConsoleProvider, Mailer
from backend.lms.organizations import OrganizationContext, OrganizationService, slugify
from backend.tests.utils.web import csrf_for, login, post_form, seed_org, seed_user
from backend.web import app_state

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _service(memory: InMemoryBackend, sleeps: list | None = None) -> OrganizationService:
    return OrganizationService(memory.service_datastore(), sleep=(sleeps if sleeps is not None else []).append)


def test_slugify():
    assert slugify("  Acme Academy! ") == "acme-academy"
    assert slugify("Über__Schule--2024") == "über-schule-2024"
    assert slugify("!!!") == ""


def test_create_starts_trial_with_default_colors():
    memory = InMemoryBackend()
    org = _service(memory).create(name="Acme", slug="Acme", owner_id="u1", now=NOW)
    assert org["slug"] == "acme"
    assert org["subscription_status"] == "trial"
    assert org["trial_ends_at"] == (NOW + timedelta(days=14)).isoformat()
    assert (org["primary_color"], org["secondary_color"]) == ("#3B82F6", "#1E40AF")


def test_create_rejects_bad_input():
    svc = _service(InMemoryBackend())
    with pytest.raises(ValueError, match="invalid_slug"):
        svc.create(name="Acme", slug="???", owner_id="u1")
    with pytest.raises(ValueError, match="invalid_color"):
        svc.create(name="Acme", slug="acme", owner_id="u1", primary_color="blue")
    with pytest.raises(ValueError, match="invalid_name"):
        svc.create(name=" ", slug="acme", owner_id="u1")


def test_signup_links_owner_and_sends_welcome():
    memory = InMemoryBackend()
    uid = seed_user(memory, "owner@example.com")
    outbox = ConsoleProvider()
    org = _service(memory).signup(
        user_id=uid, owner_email="owner@example.com", owner_name="Olga", name="Acme Academy",
        mailer=Mailer(outbox, "https://lms"),
    )
    assert org["slug"] == "acme-academy"
    profile = memory.service_datastore().select_one("profiles", {"id": uid})
    assert profile["organization_id"] == org["id"]
    assert profile["role"] == "admin"
    assert outbox.outbox[0].subject == "Welcome to Clear Course Studio, Acme Academy!"


def test_signup_rejects_taken_slug_and_bad_promo():
    memory = InMemoryBackend()
    seed_org(memory, slug="acme")
    uid = seed_user(memory, "owner@example.com")
    svc = _service(memory)
    with pytest.raises(ValueError, match="slug_taken"):
        svc.signup(user_id=uid, owner_email="o@x.io", owner_name="O", name="Acme")
    with pytest.raises(ValueError, match="invalid_promo_code"):
        svc.signup(user_id=uid, owner_email="o@x.io", owner_name="O", name="Other", promo_code="NOPE")


def test_lifetime_deal_promo_switches_status_and_counts_redemption():
    memory = InMemoryBackend()
    ds = memory.service_datastore()
    promo = ds.insert("promo_codes", {
        "code": "LIFETIME", "type": "lifetime_deal", "max_redemptions": 1,
        "lifetime_plan_limits": {"max_courses": 2, "max_instructors": None, "max_learners": 100},
    })
    uid = seed_user(memory, "owner@example.com")
    svc = _service(memory)
    org = svc.signup(user_id=uid, owner_email="o@x.io", owner_name="O", name="Acme", promo_code=" lifetime ")
    assert org["subscription_status"] == "lifetime"
    assert org["trial_ends_at"] is None
    assert ds.select_one("promo_codes", {"id": promo["id"]})["redemptions_count"] == 1
    # Used up now.
    assert svc.validate_promo_code("LIFETIME") is None

    ds.insert("courses", {"title": "One", "organization_id": org["id"]})
    limit = svc.check_feature_limit(org["id"], "courses")
    assert (limit.allowed, limit.current, limit.max) == (True, 1, 2)
    ds.insert("courses", {"title": "Two", "organization_id": org["id"]})
    assert svc.check_feature_limit(org["id"], "courses").allowed is False


def test_promo_code_validity_window():
    memory = InMemoryBackend()
    ds = memory.service_datastore()
    ds.insert("promo_codes", {"code": "SPRING", "valid_from": "2025-03-01T00:00:00+00:00",
                              "valid_until": "2025-03-31T00:00:00+00:00"})
    svc = _service(memory)
    assert svc.validate_promo_code("spring", now=NOW + timedelta(days=1)) is not None
    assert svc.validate_promo_code("spring", now=NOW - timedelta(days=1)) is None
    assert svc.validate_promo_code("spring", now=NOW + timedelta(days=60)) is None


def test_feature_limits_follow_the_plan():
    memory = InMemoryBackend()
    ds = memory.service_datastore()
    org = seed_org(memory, status="active")
    plan = ds.insert("subscription_plans", {"name": "Starter", "max_courses": 1, "max_instructors": None})
    ds.insert("subscriptions", {"organization_id": org, "plan_id": plan["id"], "status": "active"})
    svc = _service(memory)
    assert svc.check_feature_limit(org, "courses").allowed is True
    ds.insert("courses", {"title": "Only", "organization_id": org})
    assert svc.check_feature_limit(org, "courses").allowed is False
    assert svc.check_feature_limit(org, "instructors").allowed is True
    with pytest.raises(ValueError):
        svc.check_feature_limit(org, "storage")


def test_running_trial_is_not_capped_but_expired_trial_is():
    memory = InMemoryBackend()
    svc = _service(memory)
    running = seed_org(memory, slug="running")
    expired = seed_org(memory, slug="expired", trial_ends_at="2000-01-01T00:00:00+00:00")
    assert OrganizationContext.load(svc, running).can_create_course() is True
    ctx = OrganizationContext.load(svc, expired)
    assert ctx.is_trial_expired is True
    assert ctx.can_create_course() is False
    assert OrganizationContext.load(svc, None).can_invite_learner() is False


def test_wait_for_profile_link_polls_until_visible():
    memory = InMemoryBackend()
    uid = seed_user(memory, "o@example.com")
    sleeps: list = []
    svc = _service(memory, sleeps)
    assert svc.wait_for_profile_link(uid, "org-1", attempts=3, interval=0.3) is False
    assert sleeps == [0.3, 0.3]
    memory.service_datastore().update("profiles", {"id": uid}, {"organization_id": "org-1", "role": "admin"})
    assert svc.wait_for_profile_link(uid, "org-1") is True


# --- Web -------------------------------------------------------------------------------


@pytest.mark.anyio
async def test_organization_signup_flow(client, memory, outbox):
    uid = seed_user(memory, "founder@example.com", full_name="Fay Founder")
    await login(client, "founder@example.com")
    token = await csrf_for(client, "/organizations/new")
    r = await client.post("/organizations/new", data={
        "name": "Fay's School", "slug": "", "primary_color": "#112233", "secondary_color": "", "csrf_token": token,
    })
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/admin"
    org = memory.service_datastore().select_one("organizations", {"slug": "fays-school"})
    assert org["primary_color"] == "#112233"
    assert org["owner_id"] == uid
    assert outbox.outbox[0].to == "founder@example.com"
    dashboard = await client.get("/dashboard/admin")
    assert dashboard.status_code == 200


@pytest.mark.anyio
async def test_organization_signup_errors_render_inline(client, memory):
    seed_org(memory, slug="taken")
    seed_user(memory, "founder@example.com")
    await login(client, "founder@example.com")
    token = await csrf_for(client, "/organizations/new")
    r = await client.post("/organizations/new", data={"name": "Taken", "slug": "taken", "csrf_token": token})
    assert r.status_code == 400
    assert 'value="Taken"' in r.text
    bad = await client.post("/organizations/new", data={
        "name": "Fresh", "slug": "fresh", "primary_color": "red", "csrf_token": token,
    })
    assert bad.status_code == 400
    assert memory.service_datastore().select_one("organizations", {"slug": "fresh"}) is None


@pytest.mark.anyio
async def test_branding_settings_are_admin_only(client, memory):
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    seed_user(memory, "learner@example.com", org_id=org)

    await login(client, "learner@example.com")
    denied = await client.get("/settings/organization")
    assert denied.status_code == 303
    assert denied.headers["location"] == "/dashboard/learner"
    await post_form(client, "/logout")

    await login(client, "admin@example.com")
    page = await client.get("/settings/organization")
    assert page.status_code == 200
    invalid = await post_form(
        client, "/settings/organization",
        {"name": "Acme", "primary_color": "#12345", "secondary_color": "#1E40AF"},
        csrf_page="/settings/organization",
    )
    assert invalid.status_code == 400
    saved = await post_form(
        client, "/settings/organization",
        {"name": "Acme Learning", "primary_color": "#abcdef", "secondary_color": "#1E40AF"},
        csrf_page="/settings/organization",
    )
    assert saved.status_code == 303
    row = memory.service_datastore().select_one("organizations", {"id": org})
    assert row["name"] == "Acme Learning"
    assert row["primary_color"] == "#ABCDEF"


@pytest.mark.anyio
async def test_billing_page_and_checkout_redirect(client, memory, monkeypatch):
    ds = memory.service_datastore()
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    plan = ds.insert("subscription_plans", {
        "name": "Pro", "price_monthly": 49, "price_yearly": 490, "max_courses": 10,
        "stripe_price_id_monthly": "price_m", "stripe_price_id_yearly": "price_y",
    })
    calls: list = []

    def fake_checkout(self, **kwargs):
        calls.append(kwargs)
        return "https://checkout.stripe.com/c/cs_1"

    monkeypatch.setattr(StripeClient, "create_checkout_session", fake_checkout)
    await login(client, "admin@example.com")
    page = await client.get("/settings/billing")
    assert page.status_code == 200
    assert "Pro" in page.text
    assert f'action="/billing/subscribe/{plan["id"]}"' in page.text

    r = await post_form(client, f"/billing/subscribe/{plan['id']}", {"billing_cycle": "yearly"},
                        csrf_page="/settings/billing")
    assert r.status_code == 303
    assert r.headers["location"] == "https://checkout.stripe.com/c/cs_1"
    assert calls[0]["billing_cycle"] == "yearly"
    assert calls[0]["success_url"] == "https://test/billing/success?session_id={CHECKOUT_SESSION_ID}"
    assert calls[0]["cancel_url"] == "https://test/settings/billing"
    assert calls[0]["organization"]["id"] == org


@pytest.mark.anyio
async def test_checkout_failure_flashes_and_returns(client, memory):
    ds = memory.service_datastore()
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    plan = ds.insert("subscription_plans", {"name": "Pro", "price_monthly": 49, "stripe_price_id_monthly": "price_m"})
    await login(client, "admin@example.com")
    # The test wiring has no Stripe secret, so checkout is not configured.
    assert app_state.STRIPE.secret_key == ""
    r = await post_form(client, f"/billing/subscribe/{plan['id']}", {"billing_cycle": "monthly"},
                        csrf_page="/settings/billing")
    assert r.status_code == 303
    assert r.headers["location"] == "/settings/billing"
    assert "Checkout could not be started" in (await client.get("/settings/billing")).text
