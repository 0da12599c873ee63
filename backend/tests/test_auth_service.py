"""
AuthService: provider error mapping, password rules and the bounded profile
retry after signup.
"""
from __future__ import annotations

import pytest

from backend.datastore.memory import InMemoryBackend
from backend.datastore.wiring import build_memory_backend
from backend.identity_access.auth_service import AuthService
from backend.identity_access.domain import AuthError, Profile


def _service(memory: InMemoryBackend, sleeps: list, **kwargs) -> AuthService:
    return AuthService(build_memory_backend(memory), app_base_url="https://lms.example/", sleep=sleeps.append, **kwargs)


def test_retry_delays_grow_exponentially():
    svc = _service(InMemoryBackend(), [], retry_base_delay=0.25, retry_multiplier=2.0)
    assert [svc.retry_delay(n) for n in (1, 2, 3, 4)] == [0.25, 0.5, 1.0, 2.0]


def test_sign_up_waits_for_a_lagging_profile():
    memory = InMemoryBackend(profile_visibility_delay=2)
    sleeps: list = []
    result = _service(memory, sleeps).sign_up("new@example.com", "Password123!", "New Person")
    assert isinstance(result.profile, Profile)
    assert result.profile.role == "learner"
    assert result.profile.full_name == "New Person"
    assert sleeps == [0.25, 0.5]


def test_profile_missing_after_all_attempts_returns_none():
    memory = InMemoryBackend(profile_visibility_delay=50)
    sleeps: list = []
    svc = _service(memory, sleeps, retry_attempts=5)
    result = svc.sign_up("slow@example.com", "Password123!", "Slow")
    assert result.profile is None
    # No sleep after the last attempt.
    assert sleeps == [0.25, 0.5, 1.0, 2.0]


def test_profile_with_unknown_role_is_rejected_without_retry():
    memory = InMemoryBackend()
    uid = memory.create_user(email="odd@example.com")
    memory.tables["profiles"][0]["role"] = "owner"
    sleeps: list = []
    svc = _service(memory, sleeps)
    assert svc.load_profile(memory.service_datastore(), uid) is None
    assert sleeps == []


def test_sign_in_maps_invalid_credentials():
    memory = InMemoryBackend()
    memory.create_user(email="a@example.com")
    with pytest.raises(AuthError) as exc:
        _service(memory, []).sign_in("a@example.com", "wrong-password")
    assert exc.value.code == "INVALID_CREDENTIALS"
    assert exc.value.message == "Invalid email or password."


def test_sign_in_requires_confirmed_email():
    memory = InMemoryBackend(require_email_confirmation=True)
    memory.create_user(email="pending@example.com", confirmed=False)
    with pytest.raises(AuthError) as exc:
        _service(memory, []).sign_in("pending@example.com", "Password123!")
    assert exc.value.code == "EMAIL_NOT_CONFIRMED"


def test_sign_up_with_confirmation_required():
    memory = InMemoryBackend(require_email_confirmation=True)
    with pytest.raises(AuthError) as exc:
        _service(memory, []).sign_up("c@example.com", "Password123!", "C")
    assert exc.value.code == "CONFIRMATION_REQUIRED"


def test_sign_up_duplicate_email_fails():
    memory = InMemoryBackend()
    memory.create_user(email="dup@example.com")
    with pytest.raises(AuthError) as exc:
        _service(memory, []).sign_up("dup@example.com", "Password123!", "Dup")
    assert exc.value.code == "SIGNUP_FAILED"


def test_change_password_rules():
    memory = InMemoryBackend()
    memory.create_user(email="p@example.com")
    svc = _service(memory, [])
    with pytest.raises(AuthError) as short:
        svc.change_password("p@example.com", "Password123!", "short")
    assert short.value.code == "WEAK_PASSWORD"
    with pytest.raises(AuthError) as wrong:
        svc.change_password("p@example.com", "not-my-password", "NewPassword1!")
    assert wrong.value.code == "CURRENT_PASSWORD_INCORRECT"

    svc.change_password("p@example.com", "Password123!", "NewPassword1!")
    assert svc.sign_in("p@example.com", "NewPassword1!").profile is not None


def test_reset_password_sends_link_to_reset_page():
    memory = InMemoryBackend()
    _service(memory, []).reset_password(" someone@example.com ")
    assert memory.password_reset_requests == [
        {"email": "someone@example.com", "redirect_to": "https://lms.example/reset-password"}
    ]


def test_update_password_requires_recovery_token_and_length():
    memory = InMemoryBackend()
    uid = memory.create_user(email="r@example.com")
    svc = _service(memory, [])
    with pytest.raises(AuthError) as missing:
        svc.update_password(None, None, "secret1")
    assert missing.value.code == "NOT_AUTHENTICATED"
    token = memory.issue_token(uid)
    with pytest.raises(AuthError) as short:
        svc.update_password(token, None, "12345")
    assert short.value.code == "WEAK_PASSWORD"
    svc.update_password(token, None, "123456")
    assert svc.sign_in("r@example.com", "123456").user.id == uid
