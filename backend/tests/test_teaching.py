"""
Instructor flows: course CRUD with ownership, the builder (modules, lessons,
ordering, uploads) and course analytics.
"""
from __future__ import annotations

import pytest

from backend.datastore.memory import InMemoryBackend
from backend.lms.files import FileService
from backend.lms.learning import LearningService
from backend.lms.teaching import TeachingService
from backend.tests.utils.web import csrf_from, login, post_form, seed_course, seed_org, seed_user


def _setup():
    memory = InMemoryBackend()
    org = seed_org(memory)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    other = seed_user(memory, "o@example.com", role="instructor", org_id=org)
    service = TeachingService(memory.service_datastore(), files=FileService(memory.file_storage()))
    return memory, org, instructor, other, service


def test_create_course_validates_and_respects_limit():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="  Intro  ", description="")
    assert course["title"] == "Intro"
    assert course["description"] is None
    assert course["is_published"] is False
    with pytest.raises(ValueError, match="invalid_title"):
        svc.create_course(instructor, org, title="x" * 201)
    with pytest.raises(PermissionError, match="course_limit_reached"):
        svc.create_course(instructor, org, title="Too many", within_limit=False)


def test_foreign_courses_look_missing():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Mine")
    with pytest.raises(LookupError):
        svc.update_course(other, course["id"], title="Stolen")
    with pytest.raises(LookupError):
        svc.toggle_publish(other, course["id"])
    with pytest.raises(LookupError):
        svc.delete_course(other, course["id"])


def test_publish_toggle_and_list_counts():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    module = svc.add_module(instructor, course["id"], title="M1")
    svc.add_lesson(instructor, course["id"], module["id"], title="L1")
    svc.add_lesson(instructor, course["id"], module["id"], title="L2")
    assert svc.toggle_publish(instructor, course["id"]) is True
    assert svc.toggle_publish(instructor, course["id"]) is False
    [summary] = svc.list_courses(instructor)
    assert (summary.module_count, summary.lesson_count, summary.enrollment_count) == (1, 2, 0)


def test_modules_and_lessons_get_increasing_order():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    first = svc.add_module(instructor, course["id"], title="First")
    second = svc.add_module(instructor, course["id"], title="Second")
    assert (first["order_index"], second["order_index"]) == (0, 1)
    a = svc.add_lesson(instructor, course["id"], first["id"], title="A")
    b = svc.add_lesson(instructor, course["id"], first["id"], title="B", content_type="video",
                       content_url="https://youtu.be/abc", duration_minutes="12")
    assert (a["order_index"], b["order_index"]) == (0, 1)
    assert b["duration_minutes"] == 12


@pytest.mark.parametrize(
    "kwargs,code",
    [
        ({"content_type": "podcast"}, "invalid_content_type"),
        ({"content_url": "ftp://files.example/x"}, "invalid_content_url"),
        ({"duration_minutes": "-3"}, "invalid_duration"),
        ({"duration_minutes": "soon"}, "invalid_duration"),
    ],
)
def test_lesson_validation(kwargs, code):
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    module = svc.add_module(instructor, course["id"], title="M")
    with pytest.raises(ValueError, match=code):
        svc.add_lesson(instructor, course["id"], module["id"], title="L", **kwargs)


def test_move_module_and_lesson():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    m1 = svc.add_module(instructor, course["id"], title="One")
    m2 = svc.add_module(instructor, course["id"], title="Two")
    assert svc.move_module(instructor, course["id"], m1["id"], "up") is False
    assert svc.move_module(instructor, course["id"], m1["id"], "down") is True
    assert [m.module["title"] for m in svc.structure(instructor, course["id"])] == ["Two", "One"]

    a = svc.add_lesson(instructor, course["id"], m2["id"], title="A")
    svc.add_lesson(instructor, course["id"], m2["id"], title="B")
    assert svc.move_lesson(instructor, course["id"], a["id"], "down") is True
    assert [lesson["title"] for lesson in svc.structure(instructor, course["id"])[0].lessons] == ["B", "A"]
    with pytest.raises(ValueError):
        svc.move_lesson(instructor, course["id"], a["id"], "sideways")


def test_update_lesson_replaces_uploaded_file():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    module = svc.add_module(instructor, course["id"], title="M")
    first = svc.upload_file(filename="v1.pdf", content=b"one", content_type="application/pdf")
    lesson = svc.add_lesson(instructor, course["id"], module["id"], title="Doc", content_type="pdf", upload=first)
    assert lesson["original_filename"] == "v1.pdf"
    assert lesson["file_size"] == 3

    second = svc.upload_file(filename="v2.pdf", content=b"two!", content_type="application/pdf")
    updated = svc.update_lesson(instructor, course["id"], lesson["id"], title="Doc", content_type="pdf", upload=second)
    assert updated["content_url"] == second.url
    assert ("course-documents", first.path) not in memory.files
    assert ("course-documents", second.path) in memory.files

    # Switching to an external link clears the file metadata.
    linked = svc.update_lesson(instructor, course["id"], lesson["id"], title="Doc", content_type="document",
                               content_url="https://docs.example/guide")
    assert linked["original_filename"] is None and linked["file_size"] is None


def test_delete_module_cascades_and_removes_files():
    memory, org, instructor, other, svc = _setup()
    course = svc.create_course(instructor, org, title="Course")
    module = svc.add_module(instructor, course["id"], title="M")
    upload = svc.upload_file(filename="clip.mp4", content=b"video", content_type="video/mp4")
    svc.add_lesson(instructor, course["id"], module["id"], title="Clip", content_type="video", upload=upload)
    svc.delete_module(instructor, course["id"], module["id"])
    assert memory.service_datastore().count("lessons") == 0
    assert memory.files == {}


def test_analytics_counts_completions():
    memory, org, instructor, other, svc = _setup()
    seeded = seed_course(memory, instructor, org, lessons=2)
    course_id = seeded["course"]["id"]
    learning = LearningService(memory.service_datastore())
    finisher = seed_user(memory, "f@example.com", org_id=org)
    starter = seed_user(memory, "s@example.com", org_id=org)
    for uid in (finisher, starter):
        learning.enroll(uid, course_id)
    for lesson_id in seeded["lesson_ids"]:
        learning.mark_lesson_complete(finisher, course_id, lesson_id)
    learning.mark_lesson_complete(starter, course_id, seeded["lesson_ids"][0])

    stats = svc.analytics(instructor, course_id)
    assert stats.enrollment_count == 2
    assert stats.completion_count == 1
    assert stats.average_progress == 75.0
    assert stats.lesson_completions == {seeded["lesson_ids"][0]: 2, seeded["lesson_ids"][1]: 1}
    with pytest.raises(LookupError):
        svc.analytics(other, course_id)


# --- Web -------------------------------------------------------------------------------


@pytest.mark.anyio
async def test_create_course_and_build_it(client, memory):
    org = seed_org(memory)
    seed_user(memory, "t@example.com", role="instructor", org_id=org)
    await login(client, "t@example.com")

    created = await post_form(client, "/courses", {"title": "Data 101", "description": "Numbers"},
                              csrf_page="/dashboard/instructor")
    assert created.status_code == 303
    course = memory.service_datastore().select_one("courses", {"title": "Data 101"})
    builder_url = f"/courses/{course['id']}/builder"
    assert created.headers["location"] == builder_url

    added = await post_form(client, f"/courses/{course['id']}/modules", {"title": "Week 1"}, csrf_page=builder_url)
    assert added.headers["location"] == builder_url
    module = memory.service_datastore().select_one("modules", {"course_id": course["id"]})

    token_page = await client.get(builder_url)
    assert "1. Week 1" in token_page.text
    token = csrf_from(token_page.text)
    upload = await client.post(
        f"/courses/{course['id']}/modules/{module['id']}/lessons",
        data={"title": "Slides", "content_type": "pdf", "csrf_token": token},
        files={"file": ("slides.pdf", b"%PDF-1.4 test", "application/pdf")},
    )
    assert upload.status_code == 303
    lesson = memory.service_datastore().select_one("lessons", {"module_id": module["id"]})
    assert lesson["original_filename"] == "slides.pdf"
    assert lesson["content_url"].startswith("http://localhost:54321/storage/v1/object/public/course-documents/")

    rejected = await client.post(
        f"/courses/{course['id']}/modules/{module['id']}/lessons",
        data={"title": "Archive", "content_type": "document", "csrf_token": token},
        files={"file": ("a.zip", b"PK", "application/zip")},
    )
    assert rejected.status_code == 303
    assert "Unsupported file type" in (await client.get(builder_url)).text

    published = await post_form(client, f"/courses/{course['id']}/publish", csrf_page=builder_url)
    assert published.status_code == 303
    assert memory.service_datastore().select_one("courses", {"id": course["id"]})["is_published"] is True


@pytest.mark.anyio
async def test_course_limit_blocks_creation(client, memory):
    ds = memory.service_datastore()
    org = seed_org(memory, status="active")
    plan = ds.insert("subscription_plans", {"name": "Tiny", "max_courses": 1})
    ds.insert("subscriptions", {"organization_id": org, "plan_id": plan["id"], "status": "active"})
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    seed_course(memory, instructor, org)
    await login(client, "t@example.com")
    r = await post_form(client, "/courses", {"title": "Second"}, csrf_page="/dashboard/instructor")
    assert r.headers["location"] == "/dashboard/instructor"
    assert ds.count("courses") == 1
    assert "course limit has been reached" in (await client.get("/dashboard/instructor")).text


@pytest.mark.anyio
async def test_other_instructors_course_is_404(client, memory):
    org = seed_org(memory)
    owner = seed_user(memory, "owner@example.com", role="instructor", org_id=org)
    seed_user(memory, "t@example.com", role="instructor", org_id=org)
    course = seed_course(memory, owner, org)["course"]
    await login(client, "t@example.com")
    assert (await client.get(f"/courses/{course['id']}/builder")).status_code == 404
    r = await post_form(client, f"/courses/{course['id']}/delete", csrf_page="/dashboard/instructor")
    assert r.status_code == 404
    assert memory.service_datastore().select_one("courses", {"id": course["id"]}) is not None


@pytest.mark.anyio
async def test_learners_cannot_reach_course_management(client, memory):
    org = seed_org(memory)
    seed_user(memory, "l@example.com", org_id=org)
    await login(client, "l@example.com")
    r = await client.get("/dashboard/instructor")
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/learner"


@pytest.mark.anyio
async def test_course_analytics_page(client, memory):
    org = seed_org(memory)
    instructor = seed_user(memory, "t@example.com", role="instructor", org_id=org)
    seeded = seed_course(memory, instructor, org, title="Stats Course")
    learner = seed_user(memory, "l@example.com", org_id=org, full_name="Lia Learner")
    LearningService(memory.service_datastore()).enroll(learner, seeded["course"]["id"])
    await login(client, "t@example.com")
    overview = await client.get("/analytics")
    assert overview.status_code == 200
    assert "Stats Course" in overview.text
    detail = await client.get(f"/analytics/courses/{seeded['course']['id']}")
    assert detail.status_code == 200
    assert "Lia Learner" in detail.text
