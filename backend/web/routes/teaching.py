"""
Instructor routes: dashboard, course management, course builder and analytics.

Why:
    Instructors author courses as modules of ordered lessons. The builder is a
    plain server-rendered page: every change is a small POST form followed by
    a redirect back to the builder (PRG), so the page always shows fresh data.

Notes:
    - Ownership is enforced by `TeachingService` (and by row-level security in
      the hosted datastore). Foreign courses surface as 404.
    - Course creation honours the organization's `courses` feature limit.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from starlette.datastructures import UploadFile

from backend.datastore.ports import DatastoreError
from backend.lms.files import FileUploadError, UploadResult
from backend.lms.teaching import BuilderModule, TeachingService
from backend.web import app_state
from backend.web.components import (
    Component,
    CourseCard,
    CourseCardAction,
    CourseForm,
    LessonForm,
    StatCard,
    csrf_input,
)
from backend.web.components.forms.course_form import ERROR_MESSAGES as COURSE_ERRORS
from backend.web.components.forms.lesson_form import ERROR_MESSAGES as LESSON_ERRORS

teaching_router = APIRouter(tags=["Teaching"])
logger = logging.getLogger("clearcourse.web.teaching")

INSTRUCTOR_ROLES = ("instructor",)


def _course_url(course_id: str, suffix: str = "") -> str:
    return f"/courses/{quote(course_id)}{suffix}"


def _error_text(code: str, messages: dict) -> str:
    return messages.get(code) or COURSE_ERRORS.get(code) or "The change could not be saved."


def _post_button(action: str, label: str, token: str, *, variant: str = "secondary", fields: str = "",
                 confirm: Optional[str] = None) -> str:
    confirm_attr = f' data-confirm="{Component.escape(confirm)}"' if confirm else ""
    return (
        f'<form method="post" action="{Component.escape(action)}" class="inline-form"{confirm_attr}>'
        f"{csrf_input(token)}{fields}"
        f'<button type="submit" class="btn btn--{variant} btn--sm">{Component.escape(label)}</button>'
        "</form>"
    )


def _move_buttons(action: str, token: str) -> str:
    up = _post_button(action, "Up", token, fields='<input type="hidden" name="direction" value="up">')
    down = _post_button(action, "Down", token, fields='<input type="hidden" name="direction" value="down">')
    return f'<span class="move-buttons">{up}{down}</span>'


# --- Dashboard & courses ------------------------------------------------------------


@teaching_router.get("/dashboard/instructor", response_class=HTMLResponse)
async def instructor_dashboard(request: Request):
    """Own courses with counts, quick stats and the create-course form.

    Permissions:
        Instructor role (effective profile).
    """
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    current = app_state.profile(request)
    token = app_state.csrf_token(request)
    courses = app_state.teaching_service(request).list_courses(current.id)
    can_create = app_state.organization_context(request).can_create_course()

    stats = "".join(
        [
            StatCard("Courses", len(courses)).render(),
            StatCard("Published", sum(1 for c in courses if c.course.get("is_published"))).render(),
            StatCard("Enrollments", sum(c.enrollment_count for c in courses)).render(),
        ]
    )
    cards = "".join(
        CourseCard(
            c.course,
            badge="Published" if c.course.get("is_published") else "Draft",
            meta=[f"{c.module_count} modules", f"{c.lesson_count} lessons", f"{c.enrollment_count} learners"],
            actions=[
                CourseCardAction("Builder", _course_url(c.course["id"], "/builder")),
                CourseCardAction("Edit", _course_url(c.course["id"], "/edit"), variant="secondary"),
                CourseCardAction("Analytics", f"/analytics/courses/{quote(c.course['id'])}", variant="secondary"),
                CourseCardAction(
                    "Unpublish" if c.course.get("is_published") else "Publish",
                    _course_url(c.course["id"], "/publish"),
                    method="post",
                    variant="secondary",
                ),
                CourseCardAction(
                    "Delete",
                    _course_url(c.course["id"], "/delete"),
                    method="post",
                    variant="danger",
                    confirm="Delete this course and all of its lessons?",
                ),
            ],
            csrf_token=token,
        ).render()
        for c in courses
    ) or '<p class="empty-state">You have not created any courses yet.</p>'

    if can_create:
        create_html = CourseForm(token).render()
    else:
        create_html = (
            '<p class="notice">Your plan does not allow more courses. '
            '<a href="/settings/billing">Upgrade your plan</a> to create more.</p>'
        )
    content = f"""
    <section class="dashboard">
        <header class="page-header"><h1>Instructor dashboard</h1></header>
        <div class="stat-grid">{stats}</div>
        <h2>Your courses</h2>
        <div class="card-grid" id="instructor-courses">{cards}</div>
        <section class="card" id="create-course"><h2>Create a course</h2>{create_html}</section>
    </section>
    """
    return app_state.layout_response(request, "Instructor dashboard", content)


@teaching_router.post("/courses")
async def create_course(request: Request):
    """Create a draft course and open it in the builder."""
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    ctx = app_state.organization_context(request)
    try:
        course = app_state.teaching_service(request).create_course(
            current.id,
            current.organization_id,
            title=values.get("title"),
            description=values.get("description"),
            within_limit=ctx.can_create_course(),
        )
    except (ValueError, PermissionError) as exc:
        app_state.flash(request, _error_text(str(exc), COURSE_ERRORS), "error")
        return app_state.redirect("/dashboard/instructor")
    except DatastoreError as exc:
        logger.error("teaching.course.create_failed instructor=%s code=%s", current.id, exc.code)
        app_state.flash(request, COURSE_ERRORS["backend_error"], "error")
        return app_state.redirect("/dashboard/instructor")
    app_state.flash(request, "Course created. Add modules and lessons below.", "success")
    return app_state.redirect(_course_url(course["id"], "/builder"))


@teaching_router.get("/courses/{course_id}/edit", response_class=HTMLResponse)
async def edit_course_page(request: Request, course_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    try:
        course = app_state.teaching_service(request).get_course(app_state.profile(request).id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    form = CourseForm(
        app_state.csrf_token(request),
        action=_course_url(course_id, "/edit"),
        values=course,
        submit_label="Save changes",
    )
    content = f'<section class="card"><h1>Edit course</h1>{form.render()}</section>'
    return app_state.layout_response(request, "Edit course", content)


@teaching_router.post("/courses/{course_id}/edit", response_class=HTMLResponse)
async def edit_course_submit(request: Request, course_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    try:
        app_state.teaching_service(request).update_course(
            app_state.profile(request).id, course_id, title=values.get("title"), description=values.get("description")
        )
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    except ValueError as exc:
        form = CourseForm(
            app_state.csrf_token(request),
            action=_course_url(course_id, "/edit"),
            values=values,
            error=str(exc),
            submit_label="Save changes",
        )
        content = f'<section class="card"><h1>Edit course</h1>{form.render()}</section>'
        return app_state.layout_response(request, "Edit course", content, status_code=400)
    app_state.flash(request, "Course saved.", "success")
    return app_state.redirect("/dashboard/instructor")


@teaching_router.post("/courses/{course_id}/publish")
async def toggle_publish(request: Request, course_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    try:
        published = app_state.teaching_service(request).toggle_publish(app_state.profile(request).id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    app_state.flash(request, "Course published." if published else "Course unpublished.", "success")
    return app_state.redirect("/dashboard/instructor")


@teaching_router.post("/courses/{course_id}/delete")
async def delete_course(request: Request, course_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    try:
        app_state.teaching_service(request).delete_course(app_state.profile(request).id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    app_state.flash(request, "Course deleted.", "success")
    return app_state.redirect("/dashboard/instructor")


# --- Builder ------------------------------------------------------------------------


def _render_builder_module(course_id: str, index: int, item: BuilderModule, token: str) -> str:
    module = item.module
    mid = str(module["id"])
    base = _course_url(course_id, f"/modules/{quote(mid)}")
    lessons = []
    for lesson in item.lessons:
        lid = str(lesson["id"])
        lesson_base = _course_url(course_id, f"/lessons/{quote(lid)}")
        lessons.append(
            '<li class="builder__lesson">'
            f'<span class="builder__lesson-title">{Component.escape(lesson.get("title"))}</span> '
            f'<span class="badge">{Component.escape(lesson.get("content_type"))}</span> '
            f'<a class="btn btn--secondary btn--sm" href="{lesson_base}/edit">Edit</a>'
            f"{_move_buttons(lesson_base + '/move', token)}"
            f"{_post_button(lesson_base + '/delete', 'Delete', token, variant='danger', confirm='Delete this lesson?')}"
            "</li>"
        )
    lessons_html = "".join(lessons) or '<li class="empty-state">No lessons yet.</li>'
    rename_form = (
        f'<form method="post" action="{base}/rename" class="inline-form builder__rename">'
        f"{csrf_input(token)}"
        f'<input type="text" name="title" value="{Component.escape(module.get("title"))}" maxlength="200" '
        f'required class="form-input" aria-label="Module title">'
        '<button type="submit" class="btn btn--secondary btn--sm">Rename</button></form>'
    )
    lesson_form = LessonForm(token, action=f"{base}/lessons", field_prefix=f"m{index}").render()
    delete_form = _post_button(
        base + "/delete", "Delete module", token, variant="danger", confirm="Delete this module and its lessons?"
    )
    return f"""
    <section class="card builder__module" id="module-{Component.escape(mid)}">
        <header class="builder__module-header">
            <h2>{index + 1}. {Component.escape(module.get("title"))}</h2>
            {rename_form}
            {_move_buttons(base + "/move", token)}
            {delete_form}
        </header>
        <ol class="builder__lessons">{lessons_html}</ol>
        <details class="builder__add-lesson"><summary>Add lesson</summary>{lesson_form}</details>
    </section>
    """


@teaching_router.get("/courses/{course_id}/builder", response_class=HTMLResponse)
async def course_builder(request: Request, course_id: str):
    """Course builder: modules with their lessons, ordering and add forms.

    Permissions:
        Instructor who owns the course.
    """
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    service = app_state.teaching_service(request)
    current = app_state.profile(request)
    try:
        course = service.get_course(current.id, course_id)
        modules = service.structure(current.id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    token = app_state.csrf_token(request)
    modules_html = "".join(_render_builder_module(course_id, i, m, token) for i, m in enumerate(modules))
    if not modules_html:
        modules_html = '<p class="empty-state">Start by adding the first module.</p>'
    status = "Published" if course.get("is_published") else "Draft"
    content = f"""
    <section class="builder">
        <header class="page-header">
            <h1>{Component.escape(course.get("title"))} <span class="badge">{status}</span></h1>
            <a class="btn btn--secondary" href="/dashboard/instructor">Back to dashboard</a>
        </header>
        {modules_html}
        <section class="card" id="add-module">
            <h2>Add module</h2>
            <form method="post" action="{_course_url(course_id, "/modules")}" class="inline-form">
                {csrf_input(token)}
                <input type="text" name="title" maxlength="200" required class="form-input"
                       placeholder="Module title" aria-label="Module title">
                <button type="submit" class="btn btn--primary">Add module</button>
            </form>
        </section>
    </section>
    """
    return app_state.layout_response(request, f"Builder - {course.get('title')}", content)


async def _builder_action(request: Request, course_id: str, action, success: Optional[str] = None):
    """Shared POST handling for builder forms: CSRF, ownership, flash, redirect back."""
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    service = app_state.teaching_service(request)
    try:
        action(service, app_state.profile(request).id, values)
    except LookupError:
        return app_state.not_found(request, "This course item does not exist.")
    except ValueError as exc:
        app_state.flash(request, _error_text(str(exc), LESSON_ERRORS), "error")
    except DatastoreError as exc:
        logger.error("teaching.builder.failed course=%s code=%s", course_id, exc.code)
        app_state.flash(request, COURSE_ERRORS["backend_error"], "error")
    else:
        if success:
            app_state.flash(request, success, "success")
    return app_state.redirect(_course_url(course_id, "/builder"))


@teaching_router.post("/courses/{course_id}/modules")
async def add_module(request: Request, course_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.add_module(user_id, course_id, title=values.get("title"), description=values.get("description"))

    return await _builder_action(request, course_id, action, "Module added.")


@teaching_router.post("/courses/{course_id}/modules/{module_id}/rename")
async def rename_module(request: Request, course_id: str, module_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.rename_module(user_id, course_id, module_id, title=values.get("title"))

    return await _builder_action(request, course_id, action, "Module renamed.")


@teaching_router.post("/courses/{course_id}/modules/{module_id}/delete")
async def delete_module(request: Request, course_id: str, module_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.delete_module(user_id, course_id, module_id)

    return await _builder_action(request, course_id, action, "Module deleted.")


@teaching_router.post("/courses/{course_id}/modules/{module_id}/move")
async def move_module(request: Request, course_id: str, module_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.move_module(user_id, course_id, module_id, str(values.get("direction") or ""))

    return await _builder_action(request, course_id, action)


@teaching_router.post("/courses/{course_id}/lessons/{lesson_id}/move")
async def move_lesson(request: Request, course_id: str, lesson_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.move_lesson(user_id, course_id, lesson_id, str(values.get("direction") or ""))

    return await _builder_action(request, course_id, action)


@teaching_router.post("/courses/{course_id}/lessons/{lesson_id}/delete")
async def delete_lesson(request: Request, course_id: str, lesson_id: str):
    def action(service: TeachingService, user_id: str, values: dict) -> None:
        service.delete_lesson(user_id, course_id, lesson_id)

    return await _builder_action(request, course_id, action, "Lesson deleted.")


async def _read_upload(service: TeachingService, values: dict) -> Optional[UploadResult]:
    """Upload the optional `file` field; raises FileUploadError on rejection."""
    upload = values.get("file")
    if not isinstance(upload, UploadFile) or not upload.filename:
        return None
    content = await upload.read()
    if not content:
        return None
    return service.upload_file(
        filename=upload.filename, content=content, content_type=upload.content_type or "application/octet-stream"
    )


def _discard_upload(request: Request, upload: Optional[UploadResult]) -> None:
    if upload is None:
        return
    try:
        app_state.file_service(request).delete(upload.url)
    except FileUploadError as exc:
        logger.warning("teaching.upload.cleanup_failed path=%s error=%s", upload.path, exc)


@teaching_router.post("/courses/{course_id}/modules/{module_id}/lessons")
async def add_lesson(request: Request, course_id: str, module_id: str):
    """Add a lesson (multipart form with an optional file upload)."""
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    service = app_state.teaching_service(request)
    current = app_state.profile(request)
    upload = None
    try:
        upload = await _read_upload(service, values)
        service.add_lesson(
            current.id,
            course_id,
            module_id,
            title=values.get("title"),
            content_type=values.get("content_type"),
            content=values.get("content"),
            content_url=values.get("content_url"),
            duration_minutes=values.get("duration_minutes"),
            upload=upload,
        )
    except FileUploadError as exc:
        app_state.flash(request, f"{LESSON_ERRORS['upload_failed']} {exc}", "error")
    except LookupError:
        _discard_upload(request, upload)
        return app_state.not_found(request, "This module does not exist.")
    except ValueError as exc:
        _discard_upload(request, upload)
        app_state.flash(request, _error_text(str(exc), LESSON_ERRORS), "error")
    else:
        app_state.flash(request, "Lesson added.", "success")
    return app_state.redirect(_course_url(course_id, "/builder"))


def _lesson_page(request: Request, course_id: str, lesson_id: str, values: dict, error: Optional[str] = None,
                 status_code: int = 200) -> HTMLResponse:
    form = LessonForm(
        app_state.csrf_token(request),
        action=_course_url(course_id, f"/lessons/{quote(lesson_id)}/edit"),
        values=values,
        error=error,
        submit_label="Save lesson",
    )
    current_file = ""
    if values.get("original_filename"):
        current_file = f'<p class="text-muted">Current file: {Component.escape(values["original_filename"])}</p>'
    content = f"""
    <section class="card">
        <h1>Edit lesson</h1>
        {current_file}
        {form.render()}
        <p><a href="{_course_url(course_id, "/builder")}">Back to builder</a></p>
    </section>
    """
    return app_state.layout_response(request, "Edit lesson", content, status_code=status_code)


@teaching_router.get("/courses/{course_id}/lessons/{lesson_id}/edit", response_class=HTMLResponse)
async def edit_lesson_page(request: Request, course_id: str, lesson_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    service = app_state.teaching_service(request)
    current = app_state.profile(request)
    try:
        modules = service.structure(current.id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    lesson = next((ls for m in modules for ls in m.lessons if str(ls["id"]) == lesson_id), None)
    if lesson is None:
        return app_state.not_found(request, "This lesson does not exist.")
    return _lesson_page(request, course_id, lesson_id, lesson)


@teaching_router.post("/courses/{course_id}/lessons/{lesson_id}/edit", response_class=HTMLResponse)
async def edit_lesson_submit(request: Request, course_id: str, lesson_id: str):
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    service = app_state.teaching_service(request)
    current = app_state.profile(request)
    upload = None
    form_values = {k: v for k, v in values.items() if k != "file"}
    try:
        upload = await _read_upload(service, values)
        service.update_lesson(
            current.id,
            course_id,
            lesson_id,
            title=values.get("title"),
            content_type=values.get("content_type"),
            content=values.get("content"),
            content_url=values.get("content_url"),
            duration_minutes=values.get("duration_minutes"),
            upload=upload,
        )
    except FileUploadError as exc:
        return _lesson_page(request, course_id, lesson_id, form_values, error=str(exc), status_code=400)
    except LookupError:
        _discard_upload(request, upload)
        return app_state.not_found(request, "This lesson does not exist.")
    except ValueError as exc:
        _discard_upload(request, upload)
        return _lesson_page(request, course_id, lesson_id, form_values, error=str(exc), status_code=400)
    app_state.flash(request, "Lesson saved.", "success")
    return app_state.redirect(_course_url(course_id, "/builder"))


# --- Analytics ----------------------------------------------------------------------


@teaching_router.get("/analytics", response_class=HTMLResponse)
async def analytics_overview(request: Request):
    """Per-course enrollment overview linking to the course analytics pages."""
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    courses = app_state.teaching_service(request).list_courses(app_state.profile(request).id)
    rows = "".join(
        "<tr>"
        f'<td><a href="/analytics/courses/{quote(c.course["id"])}">{Component.escape(c.course.get("title"))}</a></td>'
        f"<td>{'Published' if c.course.get('is_published') else 'Draft'}</td>"
        f"<td>{c.lesson_count}</td><td>{c.enrollment_count}</td>"
        "</tr>"
        for c in courses
    ) or '<tr><td colspan="4" class="empty-state">No courses yet.</td></tr>'
    content = f"""
    <section>
        <header class="page-header"><h1>Analytics</h1></header>
        <table class="table">
            <thead><tr><th>Course</th><th>Status</th><th>Lessons</th><th>Learners</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
    </section>
    """
    return app_state.layout_response(request, "Analytics", content)


@teaching_router.get("/analytics/courses/{course_id}", response_class=HTMLResponse)
async def course_analytics(request: Request, course_id: str):
    """Enrollments, average progress, completions and per-lesson completion counts."""
    denied = app_state.require_role(request, *INSTRUCTOR_ROLES)
    if denied is not None:
        return denied
    try:
        data = app_state.teaching_service(request).analytics(app_state.profile(request).id, course_id)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")

    stats = "".join(
        [
            StatCard("Learners", data.enrollment_count).render(),
            StatCard("Average progress", f"{data.average_progress}%").render(),
            StatCard("Completions", data.completion_count).render(),
        ]
    )
    learner_rows = "".join(
        "<tr>"
        f"<td>{Component.escape((lp.user or {}).get('full_name') or (lp.user or {}).get('email') or 'Unknown')}</td>"
        f"<td>{lp.completed_lessons} / {lp.total_lessons}</td>"
        f"<td>{int(round(float(lp.enrollment.get('progress_percentage') or 0)))}%</td>"
        f"<td>{'Yes' if lp.enrollment.get('completed_at') else 'No'}</td>"
        "</tr>"
        for lp in data.learners
    ) or '<tr><td colspan="4" class="empty-state">No learners enrolled yet.</td></tr>'
    lesson_rows = "".join(
        "<tr>"
        f"<td>{Component.escape(m.module.get('title'))}</td>"
        f"<td>{Component.escape(lesson.get('title'))}</td>"
        f"<td>{data.lesson_completions.get(lesson['id'], 0)}</td>"
        "</tr>"
        for m in data.modules
        for lesson in m.lessons
    ) or '<tr><td colspan="3" class="empty-state">No lessons yet.</td></tr>'
    content = f"""
    <section>
        <header class="page-header">
            <h1>Analytics: {Component.escape(data.course.get("title"))}</h1>
            <a class="btn btn--secondary" href="/analytics">All courses</a>
        </header>
        <div class="stat-grid">{stats}</div>
        <h2>Learners</h2>
        <table class="table" id="learner-progress">
            <thead><tr><th>Learner</th><th>Lessons</th><th>Progress</th><th>Completed</th></tr></thead>
            <tbody>{learner_rows}</tbody>
        </table>
        <h2>Lesson completions</h2>
        <table class="table" id="lesson-completions">
            <thead><tr><th>Module</th><th>Lesson</th><th>Completed by</th></tr></thead>
            <tbody>{lesson_rows}</tbody>
        </table>
    </section>
    """
    return app_state.layout_response(request, "Course analytics", content)
