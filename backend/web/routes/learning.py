"""
Learner routes: dashboard, enrollment and the course viewer.

Why:
    Learners browse published courses, enroll and work through lessons in
    order. Every write is followed by a redirect so the next page renders a
    fresh read (refetch after write).
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.datastore.ports import DatastoreError
from backend.lms.learning import CourseOutline, LessonView
from backend.web import app_state
from backend.web.components import (
    Component,
    CourseCard,
    CourseCardAction,
    ProgressRing,
    VideoPlayer,
    csrf_input,
    render_markdown_safe,
)
from backend.web.routing import dashboard_path_for

learning_router = APIRouter(tags=["Learning"])
logger = logging.getLogger("clearcourse.web.learning")

EMPTY_STATES = {
    "no_courses": "No courses are available yet. Check back soon.",
    "no_match": "No courses match your search.",
}


@learning_router.get("/dashboard")
async def dashboard_redirect(request: Request):
    """Send the user to the dashboard of their effective role."""
    return app_state.redirect(dashboard_path_for(app_state.profile(request)))


@learning_router.get("/dashboard/learner", response_class=HTMLResponse)
async def learner_dashboard(request: Request, q: str = ""):
    """Enrolled courses with progress plus the published catalogue.

    Permissions:
        Learner role (effective profile).
    """
    denied = app_state.require_role(request, "learner")
    if denied is not None:
        return denied
    current = app_state.profile(request)
    token = app_state.csrf_token(request)
    try:
        data = app_state.learning_service(request).dashboard(current.id, q)
    except DatastoreError as exc:
        logger.error("learning.dashboard.failed user=%s code=%s", current.id, exc.code)
        app_state.flash(request, "Your courses could not be loaded. Please try again.", "error")
        return app_state.layout_response(request, "My learning", "<h1>My learning</h1>")

    enrolled_html = "".join(
        CourseCard(
            s.course,
            instructor_name=s.instructor_name,
            progress=s.progress,
            badge="Completed" if (s.enrollment or {}).get("completed_at") else None,
            actions=[CourseCardAction("Continue", f"/courses/{quote(s.id)}/learn")],
        ).render()
        for s in data.enrolled
    ) or '<p class="empty-state">You are not enrolled in any course yet.</p>'

    available = data.filtered_available
    available_html = "".join(
        CourseCard(
            s.course,
            instructor_name=s.instructor_name,
            actions=[CourseCardAction("Enroll", f"/courses/{quote(s.id)}/enroll", method="post")],
            csrf_token=token,
        ).render()
        for s in available
    )
    if data.empty_state:
        available_html = f'<p class="empty-state">{EMPTY_STATES[data.empty_state]}</p>'

    content = f"""
    <section class="dashboard">
        <header class="page-header">
            <h1>Welcome back, {Component.escape(current.display_name)}</h1>
        </header>
        <h2>My courses</h2>
        <div class="card-grid" id="enrolled-courses">{enrolled_html}</div>
        <div class="section-header">
            <h2>Browse courses</h2>
            <form method="get" action="/dashboard/learner" class="search-form" role="search">
                <input type="search" name="q" value="{Component.escape(q)}" placeholder="Search courses"
                       aria-label="Search courses" class="form-input">
            </form>
        </div>
        <div class="card-grid" id="available-courses">{available_html}</div>
    </section>
    """
    return app_state.layout_response(request, "My learning", content)


@learning_router.post("/courses/{course_id}/enroll")
async def enroll(request: Request, course_id: str):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    try:
        app_state.learning_service(request).enroll(current.id, course_id)
    except LookupError:
        app_state.flash(request, "That course is not available for enrollment.", "error")
        return app_state.redirect("/dashboard/learner")
    except DatastoreError as exc:
        logger.error("learning.enroll.failed user=%s course=%s code=%s", current.id, course_id, exc.code)
        app_state.flash(request, "Enrollment failed. Please try again.", "error")
        return app_state.redirect("/dashboard/learner")
    logger.info("learning.enrolled user=%s course=%s", current.id, course_id)
    app_state.flash(request, "You are enrolled. Enjoy the course!", "success")
    return app_state.redirect(f"/courses/{quote(course_id)}/learn")


def _lesson_link(course_id: str, lesson: LessonView) -> str:
    return f"/courses/{quote(course_id)}/learn?lesson={quote(lesson.id)}"


def _render_outline(course_id: str, outline: CourseOutline) -> str:
    current_id = outline.current.id if outline.current else None
    modules = []
    for module in outline.modules:
        items = []
        for lesson in module.lessons:
            classes = Component.classes(
                "outline__lesson",
                "outline__lesson--done" if lesson.is_completed else None,
                "outline__lesson--current" if lesson.id == current_id else None,
            )
            marker = "&#10003;" if lesson.is_completed else "&#9675;"
            items.append(
                f'<li class="{classes}"><a href="{_lesson_link(course_id, lesson)}">'
                f'<span aria-hidden="true">{marker}</span> {Component.escape(lesson.lesson.get("title"))}</a></li>'
            )
        modules.append(
            f'<li class="outline__module"><h3>{Component.escape(module.module.get("title"))}</h3>'
            f'<ol>{"".join(items)}</ol></li>'
        )
    return f'<ol class="outline">{"".join(modules)}</ol>'


def _render_lesson_body(lesson: dict) -> str:
    content_type = lesson.get("content_type") or "text"
    url = lesson.get("content_url")
    parts = []
    if content_type == "video" and url:
        parts.append(VideoPlayer(url, title=lesson.get("title") or "Lesson video").render())
    elif content_type in ("pdf", "document") and url:
        name = lesson.get("original_filename") or "document"
        parts.append(
            '<p class="lesson__document">'
            f'<a class="btn btn--secondary" href="{Component.escape(url)}" target="_blank" rel="noopener">'
            f"Open {Component.escape(name)}</a></p>"
        )
    elif url:
        parts.append(
            f'<p><a href="{Component.escape(url)}" target="_blank" rel="noopener">Open lesson resource</a></p>'
        )
    if lesson.get("content"):
        parts.append(f'<div class="lesson__text prose">{render_markdown_safe(lesson["content"])}</div>')
    if not parts:
        parts.append('<p class="empty-state">This lesson has no content yet.</p>')
    return "".join(parts)


@learning_router.get("/courses/{course_id}/learn", response_class=HTMLResponse)
async def course_viewer(request: Request, course_id: str, lesson: Optional[str] = None):
    """Course viewer: outline, current lesson, progress and navigation.

    Behavior:
        - Current lesson: `?lesson=` when it belongs to the course, else the
          first incomplete lesson, else the first one.
        - Users who are not enrolled are sent back to their dashboard.
    Permissions:
        Any enrolled user (row-level security applies).
    """
    current = app_state.profile(request)
    service = app_state.learning_service(request)
    try:
        outline = service.course_outline(current.id, course_id, lesson)
    except LookupError:
        return app_state.not_found(request, "This course does not exist.")
    except PermissionError:
        app_state.flash(request, "Enroll in the course to view its lessons.", "warning")
        return app_state.redirect(dashboard_path_for(current))

    course = outline.course
    token = app_state.csrf_token(request)
    if outline.current is None:
        lesson_html = '<p class="empty-state">This course has no lessons yet.</p>'
    else:
        lv = outline.current
        prev_lesson, next_lesson = outline.previous_lesson, outline.next_lesson
        prev_html = (
            f'<a class="btn btn--secondary" href="{_lesson_link(course_id, prev_lesson)}">Previous</a>'
            if prev_lesson
            else ""
        )
        next_html = (
            f'<a class="btn btn--secondary" href="{_lesson_link(course_id, next_lesson)}">Next</a>'
            if next_lesson
            else ""
        )
        if lv.is_completed:
            complete_html = '<span class="badge badge--success">Completed</span>'
        else:
            complete_html = (
                f'<form method="post" action="/courses/{quote(course_id)}/lessons/{quote(lv.id)}/complete" '
                'class="inline-form">'
                f"{csrf_input(token)}"
                '<button type="submit" class="btn btn--primary">Mark as complete</button></form>'
            )
        duration = int(lv.lesson.get("duration_minutes") or 0)
        lesson_html = f"""
        <article class="lesson" id="lesson-{Component.escape(lv.id)}">
            <header>
                <h2>{Component.escape(lv.lesson.get("title"))}</h2>
                <p class="text-muted">Lesson {outline.current_index + 1} of {len(outline.lessons)}
                {f"&middot; {duration} min" if duration else ""}</p>
            </header>
            {_render_lesson_body(lv.lesson)}
            <nav class="lesson__nav" aria-label="Lesson navigation">
                {prev_html}{complete_html}{next_html}
            </nav>
        </article>
        """

    content = f"""
    <section class="course-viewer">
        <header class="page-header">
            <h1>{Component.escape(course.get("title"))}</h1>
            <div class="course-viewer__progress">
                {ProgressRing(outline.overall_progress, size=72).render()}
                <span>{outline.completed_count} of {len(outline.lessons)} lessons completed</span>
            </div>
        </header>
        <div class="course-viewer__layout">
            <aside class="course-viewer__outline" aria-label="Course outline">{_render_outline(course_id, outline)}</aside>
            <div class="course-viewer__lesson">{lesson_html}</div>
        </div>
    </section>
    """
    return app_state.layout_response(request, course.get("title") or "Course", content)


@learning_router.post("/courses/{course_id}/lessons/{lesson_id}/complete")
async def complete_lesson(request: Request, course_id: str, lesson_id: str):
    """Mark a lesson complete, recompute progress and move on to the next lesson."""
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    service = app_state.learning_service(request)
    try:
        progress = service.mark_lesson_complete(current.id, course_id, lesson_id)
        outline = service.course_outline(current.id, course_id, lesson_id)
    except LookupError:
        return app_state.not_found(request, "This lesson does not exist.")
    except PermissionError:
        app_state.flash(request, "Enroll in the course to track your progress.", "warning")
        return app_state.redirect(dashboard_path_for(current))
    except DatastoreError as exc:
        logger.error("learning.complete.failed user=%s lesson=%s code=%s", current.id, lesson_id, exc.code)
        app_state.flash(request, "Your progress could not be saved. Please try again.", "error")
        return app_state.redirect(f"/courses/{quote(course_id)}/learn?lesson={quote(lesson_id)}")

    if progress >= 100:
        app_state.flash(request, "Congratulations, you completed the course!", "success")
    else:
        app_state.flash(request, "Lesson completed.", "success")
    target = outline.next_lesson or outline.current
    if target is None:
        return app_state.redirect(f"/courses/{quote(course_id)}/learn")
    return app_state.redirect(_lesson_link(course_id, target))
