"""
Seeding and HTTP helpers shared by the web tests.

Seed rows go straight into the in-memory backend with the service datastore;
HTTP helpers read CSRF tokens from rendered pages the way a browser would.
"""
from __future__ import annotations

import re
from typing import Optional

import httpx

from backend.datastore.memory import InMemoryBackend

PASSWORD = "Password123!"
CSRF_RE = re.compile(r'name="csrf_token" value="([^"]+)"')


# --- Seeding helpers -------------------------------------------------------------------


def seed_org(
    memory: InMemoryBackend,
    *,
    name: str = "Acme Academy",
    slug: str = "acme",
    status: str = "trial",
    trial_ends_at: Optional[str] = "2999-01-01T00:00:00+00:00",
    owner_id: Optional[str] = None,
) -> str:
    row = memory.service_datastore().insert(
        "organizations",
        {
            "name": name,
            "slug": slug,
            "owner_id": owner_id,
            "primary_color": "#3B82F6",
            "secondary_color": "#1E40AF",
            "subscription_status": status,
            "trial_ends_at": trial_ends_at,
        },
    )
    return row["id"]


def seed_user(memory: InMemoryBackend, email: str, *, role: str = "learner", org_id: Optional[str] = None,
              full_name: Optional[str] = None, super_admin: bool = False) -> str:
    return memory.create_user(
        email=email,
        password=PASSWORD,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
        organization_id=org_id,
        is_super_admin=super_admin,
    )


def seed_course(memory: InMemoryBackend, instructor_id: str, org_id: Optional[str], *, title: str = "Python 101",
                published: bool = True, lessons: int = 2) -> dict:
    """A course with one module and `lessons` text lessons."""
    ds = memory.service_datastore()
    course = ds.insert(
        "courses",
        {"title": title, "instructor_id": instructor_id, "organization_id": org_id, "is_published": published},
    )
    module = ds.insert("modules", {"course_id": course["id"], "title": "Getting started", "order_index": 0})
    lesson_ids = [
        ds.insert(
            "lessons",
            {"module_id": module["id"], "title": f"Lesson {i + 1}", "content": f"Body {i + 1}", "order_index": i},
        )["id"]
        for i in range(lessons)
    ]
    return {"course": course, "module": module, "lesson_ids": lesson_ids}


# --- HTTP helpers ----------------------------------------------------------------------


def csrf_from(html: str) -> str:
    match = CSRF_RE.search(html)
    assert match, "page has no CSRF token"
    return match.group(1)


async def csrf_for(client: httpx.AsyncClient, path: str) -> str:
    r = await client.get(path)
    assert r.status_code == 200, (path, r.status_code)
    return csrf_from(r.text)


async def login(client: httpx.AsyncClient, email: str, password: str = PASSWORD) -> httpx.Response:
    token = await csrf_for(client, "/login")
    r = await client.post("/login", data={"email": email, "password": password, "csrf_token": token})
    assert r.status_code == 303, r.text
    return r


async def post_form(client: httpx.AsyncClient, path: str, data: Optional[dict] = None, *,
                    csrf_page: str = "/support") -> httpx.Response:
    """POST a form carrying the session's CSRF token (read from `csrf_page`)."""
    payload = dict(data or {})
    payload["csrf_token"] = await csrf_for(client, csrf_page)
    return await client.post(path, data=payload)
