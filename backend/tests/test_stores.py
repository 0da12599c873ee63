"""
TokenMap: the capped, expiring map behind CSRF and password-recovery tokens.
"""
from __future__ import annotations

import pytest

from backend.identity_access import stores
from backend.identity_access.stores import TokenMap


def test_oldest_entries_are_evicted_at_the_cap():
    tokens = TokenMap(max_entries=3)
    for i in range(5):
        tokens.set(f"k{i}", f"t{i}")
    assert len(tokens) == 3
    assert tokens.get("k0") is None and tokens.get("k1") is None
    assert tokens.get("k4") == "t4"


def test_setting_again_refreshes_position():
    tokens = TokenMap(max_entries=2)
    tokens.set("a", 1)
    tokens.set("b", 2)
    tokens.set("a", 3)
    tokens.set("c", 4)
    assert "a" in tokens and "b" not in tokens


def test_entries_expire(monkeypatch: pytest.MonkeyPatch):
    now = [1_000]
    monkeypatch.setattr(stores, "_now", lambda: now[0])
    tokens = TokenMap(ttl_seconds=60)
    tokens.set("k", "v")
    now[0] += 59
    assert tokens.get("k") == "v"
    now[0] += 2
    assert tokens.get("k") is None
    assert len(tokens) == 0


def test_pop_and_clear():
    tokens = TokenMap()
    tokens.set("k", "v")
    assert tokens.pop("k") == "v"
    assert tokens.pop("k") is None
    tokens.set("x", "y")
    tokens.clear()
    assert len(tokens) == 0
