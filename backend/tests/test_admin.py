"""
Organization admin and super-admin: user management, statistics and the
platform overview.
"""
from __future__ import annotations

import pytest

from backend.datastore.memory import InMemoryBackend
from backend.identity_access.domain import Profile
from backend.lms.admin import AdminActionError, AdminService
from backend.lms.email import ConsoleProvider, Mailer
from backend.lms.super_admin import SuperAdminService, status_badge
from backend.tests.utils.web import login, post_form, seed_course, seed_org, seed_user


def _actor(memory: InMemoryBackend, user_id: str) -> Profile:
    return Profile.from_row(memory.service_datastore().select_one("profiles", {"id": user_id}))


def _admin_service(memory: InMemoryBackend, user_id: str, mailer=None) -> AdminService:
    return AdminService(memory.datastore(memory.issue_token(user_id)), memory.auth(), mailer=mailer)


def test_stats_count_members_courses_and_enrollments():
    memory = InMemoryBackend()
    org = seed_org(memory)
    admin = seed_user(memory, "admin@example.com", role="admin", org_id=org)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    learner = seed_user(memory, "l@example.com", org_id=org)
    seed_user(memory, "outsider@example.com")
    course = seed_course(memory, instructor, org)["course"]
    memory.service_datastore().insert("enrollments", {"user_id": learner, "course_id": course["id"]})

    stats = _admin_service(memory, admin).stats(org)
    assert (stats.total_users, stats.instructors, stats.learners) == (3, 1, 1)
    assert (stats.total_courses, stats.total_enrollments) == (1, 1)


def test_admin_cannot_change_or_delete_own_account():
    memory = InMemoryBackend()
    org = seed_org(memory)
    admin = seed_user(memory, "admin@example.com", role="admin", org_id=org)
    service = _admin_service(memory, admin)
    with pytest.raises(AdminActionError, match="own role"):
        service.update_role(_actor(memory, admin), admin, "learner")
    with pytest.raises(AdminActionError, match="own account"):
        service.delete_user(_actor(memory, admin), admin)


def test_non_admins_are_rejected():
    memory = InMemoryBackend()
    org = seed_org(memory)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    learner = seed_user(memory, "l@example.com", org_id=org)
    with pytest.raises(PermissionError):
        _admin_service(memory, instructor).update_role(_actor(memory, instructor), learner, "admin")


def test_role_update_is_confined_to_the_organization():
    memory = InMemoryBackend()
    org = seed_org(memory)
    other_org = seed_org(memory, name="Other", slug="other")
    admin = seed_user(memory, "admin@example.com", role="admin", org_id=org)
    member = seed_user(memory, "m@example.com", org_id=org)
    stranger = seed_user(memory, "s@example.com", org_id=other_org)
    service = _admin_service(memory, admin)

    service.update_role(_actor(memory, admin), member, "instructor")
    assert memory.service_datastore().select_one("profiles", {"id": member})["role"] == "instructor"
    with pytest.raises(AdminActionError, match="another organization"):
        service.update_role(_actor(memory, admin), stranger, "admin")
    with pytest.raises(ValueError, match="invalid_role"):
        service.update_role(_actor(memory, admin), member, "owner")


def test_create_user_links_organization_and_sends_invitation():
    memory = InMemoryBackend()
    org = seed_org(memory)
    admin = seed_user(memory, "admin@example.com", role="admin", org_id=org, full_name="Ada Admin")
    outbox = ConsoleProvider()
    service = _admin_service(memory, admin, mailer=Mailer(outbox, "https://app.example"))

    user_id = service.create_user(
        _actor(memory, admin),
        email=" new@example.com ",
        password="longenough",
        full_name="New Person",
        role="instructor",
        organization_name="Acme Academy",
        login_url="https://app.example/login",
    )
    row = memory.service_datastore().select_one("profiles", {"id": user_id})
    assert (row["organization_id"], row["role"], row["email"]) == (org, "instructor", "new@example.com")
    [message] = outbox.outbox
    assert message.to == "new@example.com"
    assert message.subject == "You're invited to join Acme Academy"
    assert "Ada Admin" in message.html

    with pytest.raises(AdminActionError, match="already registered"):
        service.create_user(_actor(memory, admin), email="new@example.com", password="longenough",
                            full_name="Again", role="learner")
    with pytest.raises(ValueError, match="invalid_password"):
        service.create_user(_actor(memory, admin), email="x@example.com", password="short",
                            full_name="X", role="learner")


def test_delete_user_goes_through_the_edge_function():
    memory = InMemoryBackend()
    org = seed_org(memory)
    admin = seed_user(memory, "admin@example.com", role="admin", org_id=org)
    member = seed_user(memory, "m@example.com", org_id=org)
    service = _admin_service(memory, admin)
    service.delete_user(_actor(memory, admin), member)
    assert memory.service_datastore().select_one("profiles", {"id": member}) is None
    assert "m@example.com" not in memory.users
    with pytest.raises(AdminActionError, match="User not found"):
        service.delete_user(_actor(memory, admin), member)


# --- Super admin -----------------------------------------------------------------------


def test_status_badge_defaults_to_canceled_style():
    assert status_badge("active") == ("badge--success", "Active")
    assert status_badge("past_due") == ("badge--warning", "Past_due")
    assert status_badge(None) == ("badge--danger", "Canceled")
    assert status_badge("weird") == ("badge--danger", "Weird")


def test_overview_joins_owners_plans_and_conversion():
    memory = InMemoryBackend()
    ds = memory.service_datastore()
    owner = seed_user(memory, "owner@acme.test")
    acme = seed_org(memory, owner_id=owner, status="active")
    seed_org(memory, name="Beta School", slug="beta")
    ds.update("profiles", {"id": owner}, {"organization_id": acme})
    plan = ds.insert("subscription_plans", {"name": "Professional"})
    ds.insert("subscriptions", {"organization_id": acme, "plan_id": plan["id"], "status": "active"})
    root = seed_user(memory, "root@example.com", super_admin=True)

    service = SuperAdminService(ds)
    overview = service.overview(_actor(memory, root))
    assert overview.total_organizations == 2
    assert overview.total_users == 2
    assert overview.active_subscriptions == 1
    assert overview.conversion_rate == 50.0
    by_slug = {row.organization["slug"]: row for row in overview.organizations}
    assert by_slug["acme"].owner_email == "owner@acme.test"
    assert by_slug["acme"].plan_label == "Professional"
    assert by_slug["acme"].users == 1
    assert by_slug["beta"].plan_label == "Trial"

    filtered = service.overview(_actor(memory, root), "ACME.TEST").filtered
    assert [row.organization["slug"] for row in filtered] == ["acme"]
    with pytest.raises(PermissionError):
        service.overview(_actor(memory, owner))


# --- Web -------------------------------------------------------------------------------


@pytest.mark.anyio
async def test_admin_dashboard_lists_users(client, memory):
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    seed_user(memory, "member@example.com", org_id=org, full_name="Mia Member")
    await login(client, "admin@example.com")
    r = await client.get("/dashboard/admin")
    assert r.status_code == 200
    assert "Acme Academy" in r.text
    assert "Mia Member" in r.text
    assert "Trial ends on 2999-01-01" in r.text


@pytest.mark.anyio
async def test_admin_creates_user_and_invitation_is_sent(client, memory, outbox):
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    await login(client, "admin@example.com")
    r = await post_form(
        client,
        "/admin/users",
        {"full_name": "Ian Instructor", "email": "ian@example.com", "password": "longenough", "role": "instructor"},
        csrf_page="/dashboard/admin",
    )
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/admin"
    row = memory.service_datastore().select_one("profiles", {"email": "ian@example.com"})
    assert row["organization_id"] == org
    assert outbox.outbox[-1].to == "ian@example.com"
    assert "https://test/login" in outbox.outbox[-1].html
    assert "User created and invitation sent." in (await client.get("/dashboard/admin")).text


@pytest.mark.anyio
async def test_learner_limit_blocks_user_creation(client, memory):
    ds = memory.service_datastore()
    org = seed_org(memory, status="active")
    plan = ds.insert("subscription_plans", {"name": "Tiny", "max_learners": 0})
    ds.insert("subscriptions", {"organization_id": org, "plan_id": plan["id"], "status": "active"})
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    await login(client, "admin@example.com")
    await post_form(
        client,
        "/admin/users",
        {"full_name": "L", "email": "l@example.com", "password": "longenough", "role": "learner"},
        csrf_page="/dashboard/admin",
    )
    assert ds.select_one("profiles", {"email": "l@example.com"}) is None
    assert "learner limit has been reached" in (await client.get("/dashboard/admin")).text


@pytest.mark.anyio
async def test_admin_updates_role_email_and_deletes(client, memory):
    org = seed_org(memory)
    seed_user(memory, "admin@example.com", role="admin", org_id=org)
    member = seed_user(memory, "member@example.com", org_id=org)
    await login(client, "admin@example.com")
    ds = memory.service_datastore()

    await post_form(client, f"/admin/users/{member}/role", {"role": "instructor"}, csrf_page="/dashboard/admin")
    assert ds.select_one("profiles", {"id": member})["role"] == "instructor"

    await post_form(client, f"/admin/users/{member}/email", {"email": "not-an-email"}, csrf_page="/dashboard/admin")
    assert "Please enter a valid email address." in (await client.get("/dashboard/admin")).text
    await post_form(client, f"/admin/users/{member}/email", {"email": "new@example.com"}, csrf_page="/dashboard/admin")
    assert ds.select_one("profiles", {"id": member})["email"] == "new@example.com"

    r = await post_form(client, f"/admin/users/{member}/delete", csrf_page="/dashboard/admin")
    assert r.status_code == 303
    assert ds.select_one("profiles", {"id": member}) is None


@pytest.mark.anyio
async def test_admin_pages_redirect_other_roles(client, memory):
    org = seed_org(memory)
    seed_user(memory, "t@example.com", role="instructor", org_id=org)
    await login(client, "t@example.com")
    r = await client.get("/dashboard/admin")
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/instructor"


@pytest.mark.anyio
async def test_super_admin_overview_page(client, memory):
    seed_org(memory, name="Beta School", slug="beta")
    seed_user(memory, "root@example.com", super_admin=True)
    seed_user(memory, "pick@example.com", full_name="Pick Me")
    await login(client, "root@example.com")
    r = await client.get("/super-admin")
    assert r.status_code == 200
    assert "Beta School" in r.text
    assert "Pick Me" in r.text
    assert 'action="/impersonation/start"' in r.text

    searched = await client.get("/super-admin", params={"q": "nothing-matches"})
    assert "No organizations found." in searched.text
