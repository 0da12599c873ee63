"""
Learner flows: dashboard catalogue and search, enrollment, the course viewer
and progress tracking.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.datastore.memory import InMemoryBackend
from backend.lms.learning import LearningService
from backend.tests.utils.web import login, post_form, seed_course, seed_org, seed_user


def _setup():
    memory = InMemoryBackend()
    org = seed_org(memory)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org, full_name="Tara Instructor")
    learner = seed_user(memory, "l@example.com", org_id=org)
    return memory, org, instructor, learner


def test_dashboard_lists_published_courses_and_search():
    memory, org, instructor, learner = _setup()
    seed_course(memory, instructor, org, title="Python 101")
    seed_course(memory, instructor, org, title="Baking Bread")
    seed_course(memory, instructor, org, title="Hidden Draft", published=False)
    svc = LearningService(memory.service_datastore())

    data = svc.dashboard(learner)
    assert sorted(s.course["title"] for s in data.available) == ["Baking Bread", "Python 101"]
    assert data.empty_state is None
    assert [s.course["title"] for s in svc.dashboard(learner, "python").filtered_available] == ["Python 101"]
    # Instructor names are searchable too.
    assert len(svc.dashboard(learner, "tara").filtered_available) == 2
    assert svc.dashboard(learner, "chemistry").empty_state == "no_match"


def test_empty_catalogue_state():
    memory, org, instructor, learner = _setup()
    assert LearningService(memory.service_datastore()).dashboard(learner).empty_state == "no_courses"


def test_enroll_is_idempotent_and_moves_course_to_enrolled():
    memory, org, instructor, learner = _setup()
    course = seed_course(memory, instructor, org)["course"]
    svc = LearningService(memory.service_datastore())
    first = svc.enroll(learner, course["id"])
    second = svc.enroll(learner, course["id"])
    assert first["id"] == second["id"]
    data = svc.dashboard(learner)
    assert [s.id for s in data.enrolled] == [course["id"]]
    assert data.available == []


def test_enroll_in_unpublished_course_fails():
    memory, org, instructor, learner = _setup()
    draft = seed_course(memory, instructor, org, published=False)["course"]
    with pytest.raises(LookupError):
        LearningService(memory.service_datastore()).enroll(learner, draft["id"])


def test_outline_requires_enrollment():
    memory, org, instructor, learner = _setup()
    course = seed_course(memory, instructor, org)["course"]
    svc = LearningService(memory.service_datastore())
    with pytest.raises(PermissionError):
        svc.course_outline(learner, course["id"])
    with pytest.raises(LookupError):
        svc.course_outline(learner, "missing")


def test_progress_is_recomputed_on_completion():
    memory, org, instructor, learner = _setup()
    seeded = seed_course(memory, instructor, org, lessons=3)
    course_id = seeded["course"]["id"]
    first, second, third = seeded["lesson_ids"]
    svc = LearningService(memory.service_datastore())
    svc.enroll(learner, course_id)

    outline = svc.course_outline(learner, course_id)
    assert outline.current.id == first and outline.is_first

    assert svc.mark_lesson_complete(learner, course_id, first) == 33.33
    outline = svc.course_outline(learner, course_id)
    assert outline.current.id == second
    assert outline.previous_lesson.id == first and outline.next_lesson.id == third
    last = svc.course_outline(learner, course_id, third)
    assert last.is_last and last.next_lesson is None

    svc.mark_lesson_complete(learner, course_id, second)
    assert svc.mark_lesson_complete(learner, course_id, third) == 100.0
    enrollment = memory.service_datastore().select_one("enrollments", {"user_id": learner, "course_id": course_id})
    assert enrollment["progress_percentage"] == 100.0
    assert enrollment["completed_at"] is not None
    # Completing again keeps a single progress row.
    svc.mark_lesson_complete(learner, course_id, third)
    assert memory.service_datastore().count("lesson_progress", {"user_id": learner, "lesson_id": third}) == 1


def test_completed_at_keeps_first_completion():
    memory, org, instructor, learner = _setup()
    seeded = seed_course(memory, instructor, org, lessons=1)
    course_id = seeded["course"]["id"]
    (lesson,) = seeded["lesson_ids"]
    svc = LearningService(memory.service_datastore())
    svc.enroll(learner, course_id)
    first = datetime(2025, 1, 1, tzinfo=timezone.utc)

    svc.mark_lesson_complete(learner, course_id, lesson, now=first)
    svc.mark_lesson_complete(learner, course_id, lesson, now=first + timedelta(days=7))

    enrollment = memory.service_datastore().select_one("enrollments", {"user_id": learner, "course_id": course_id})
    assert enrollment["completed_at"] == first.isoformat()


def test_complete_requires_lesson_of_course_and_enrollment():
    memory, org, instructor, learner = _setup()
    one = seed_course(memory, instructor, org, title="One")
    two = seed_course(memory, instructor, org, title="Two")
    svc = LearningService(memory.service_datastore())
    with pytest.raises(PermissionError):
        svc.mark_lesson_complete(learner, one["course"]["id"], one["lesson_ids"][0])
    assert memory.service_datastore().count("lesson_progress") == 0
    svc.enroll(learner, one["course"]["id"])
    with pytest.raises(LookupError):
        svc.mark_lesson_complete(learner, one["course"]["id"], two["lesson_ids"][0])


def test_explicit_lesson_outside_course_falls_back():
    memory, org, instructor, learner = _setup()
    seeded = seed_course(memory, instructor, org)
    svc = LearningService(memory.service_datastore())
    svc.enroll(learner, seeded["course"]["id"])
    outline = svc.course_outline(learner, seeded["course"]["id"], "not-a-lesson")
    assert outline.current.id == seeded["lesson_ids"][0]


# --- Web -------------------------------------------------------------------------------


@pytest.mark.anyio
async def test_enroll_and_complete_through_the_viewer(client, memory):
    org = seed_org(memory)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    seed_user(memory, "l@example.com", org_id=org)
    seeded = seed_course(memory, instructor, org, title="Python 101")
    course_id = seeded["course"]["id"]
    first, second = seeded["lesson_ids"]
    await login(client, "l@example.com")

    dashboard = await client.get("/dashboard/learner")
    assert "Python 101" in dashboard.text
    assert f'action="/courses/{course_id}/enroll"' in dashboard.text

    blocked = await client.get(f"/courses/{course_id}/learn")
    assert blocked.status_code == 303

    enrolled = await post_form(client, f"/courses/{course_id}/enroll", csrf_page="/dashboard/learner")
    assert enrolled.status_code == 303
    assert enrolled.headers["location"] == f"/courses/{course_id}/learn"

    viewer = await client.get(f"/courses/{course_id}/learn")
    assert viewer.status_code == 200
    assert "Lesson 1 of 2" in viewer.text
    assert "<p>Body 1</p>" in viewer.text
    assert "0 of 2 lessons completed" in viewer.text

    done = await post_form(
        client, f"/courses/{course_id}/lessons/{first}/complete", csrf_page=f"/courses/{course_id}/learn"
    )
    assert done.status_code == 303
    assert done.headers["location"] == f"/courses/{course_id}/learn?lesson={second}"
    after = await client.get(done.headers["location"])
    assert "1 of 2 lessons completed" in after.text
    assert "Lesson completed." in after.text


@pytest.mark.anyio
async def test_viewer_unknown_course_is_404(client, memory):
    org = seed_org(memory)
    seed_user(memory, "l@example.com", org_id=org)
    await login(client, "l@example.com")
    r = await client.get("/courses/does-not-exist/learn")
    assert r.status_code == 404


@pytest.mark.anyio
async def test_instructor_cannot_open_learner_dashboard(client, memory):
    org = seed_org(memory)
    seed_user(memory, "t@example.com", role="instructor", org_id=org)
    await login(client, "t@example.com")
    r = await client.get("/dashboard/learner")
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/instructor"
