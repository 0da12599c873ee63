"""
Public pages and the theme preference.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.web import csrf_for, login, seed_org, seed_user


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/", "/features", "/about", "/faq", "/terms", "/privacy", "/contact"])
async def test_public_pages_render_anonymously(client, path):
    r = await client.get(path)
    assert r.status_code == 200
    assert "<!DOCTYPE html>" in r.text or "<html" in r.text


@pytest.mark.anyio
async def test_landing_cta_depends_on_session(client, memory):
    assert "Start free trial" in (await client.get("/")).text
    org = seed_org(memory)
    seed_user(memory, "t@example.com", role="instructor", org_id=org)
    await login(client, "t@example.com")
    assert 'href="/dashboard/instructor">Go to dashboard' in (await client.get("/")).text


@pytest.mark.anyio
async def test_pricing_lists_active_plans_by_price(client, memory):
    ds = memory.service_datastore()
    ds.insert("subscription_plans", {"name": "Professional", "price_monthly": 99})
    ds.insert("subscription_plans", {"name": "Starter", "price_monthly": 29})
    ds.insert("subscription_plans", {"name": "Legacy", "price_monthly": 5, "is_active": False})
    r = await client.get("/pricing")
    assert r.status_code == 200
    assert "Legacy" not in r.text
    assert r.text.index("Starter") < r.text.index("Professional")


@pytest.mark.anyio
async def test_pricing_without_plans(client):
    assert "Plans will be announced soon." in (await client.get("/pricing")).text


@pytest.mark.anyio
async def test_theme_toggle_sets_cookie_and_returns(client):
    token = await csrf_for(client, "/features")
    r = await client.post(
        "/preferences/theme", data={"theme": "dark", "csrf_token": token}, headers={"referer": "https://test/faq?x=1"}
    )
    assert r.status_code == 303
    assert r.headers["location"] == "/faq?x=1"
    assert "clearcourse_theme=dark" in r.headers["set-cookie"]
    assert 'class="theme-dark"' in (await client.get("/faq")).text


@pytest.mark.anyio
async def test_theme_toggle_only_returns_to_local_paths(client):
    token = await csrf_for(client, "/features")
    r = await client.post(
        "/preferences/theme", data={"theme": "neon", "csrf_token": token}, headers={"referer": "https://evil.example/x"}
    )
    assert r.headers["location"] == "/x"
    assert "clearcourse_theme=light" in r.headers["set-cookie"]

    r = await client.post("/preferences/theme", data={"theme": "dark", "csrf_token": token})
    assert r.headers["location"] == "/"
