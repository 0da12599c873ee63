"""
Path shim: public paths, organization paths and role dashboards.
"""
from __future__ import annotations

import pytest

from backend.identity_access.domain import Profile
from backend.web.routing import (
    dashboard_path_for,
    is_public_path,
    is_public_route,
    requires_auth,
    requires_organization,
)


@pytest.mark.parametrize(
    "path",
    ["/", "/pricing", "/features", "/about", "/contact", "/faq", "/terms", "/privacy", "/login", "/signup",
     "/reset-password"],
)
def test_public_routes(path):
    assert is_public_route(path)
    assert not requires_auth(path)


def test_public_routes_match_exactly():
    assert not is_public_route("/login/extra")
    assert not is_public_route("/pricing/")
    assert requires_auth("/dashboard")


def test_machine_and_static_paths_are_public():
    assert is_public_path("/health")
    assert is_public_path("/billing/webhook")
    assert is_public_path("/static/css/clearcourse.css")
    assert not is_public_path("/billing/subscribe/abc")


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/dashboard", True),
        ("/dashboard/learner", True),
        ("/courses/1/learn", True),
        ("/profile", True),
        ("/settings/billing", True),
        ("/analytics/courses/1", True),
        ("/support", False),
        ("/super-admin", False),
        ("/organizations/new", False),
    ],
)
def test_requires_organization_by_prefix(path, expected):
    assert requires_organization(path) is expected


def test_dashboard_path_for_roles():
    assert dashboard_path_for(Profile(id="u1", email="a@x.io", role="learner")) == "/dashboard/learner"
    assert dashboard_path_for(Profile(id="u1", email="a@x.io", role="instructor")) == "/dashboard/instructor"
    assert dashboard_path_for(Profile(id="u1", email="a@x.io", role="admin")) == "/dashboard/admin"
    assert dashboard_path_for(None) == "/dashboard/learner"
