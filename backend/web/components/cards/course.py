"""
CourseCard component.

Used by the learner dashboard (enrolled and available courses) and the
instructor dashboard. Actions are rendered as links or small POST forms so the
card works without JavaScript.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..base import Component, csrf_input
from ..media import ProgressRing


@dataclass
class CourseCardAction:
    """A link (GET) or a form button (POST) shown in the card footer."""

    label: str
    href: str
    method: str = "get"
    variant: str = "primary"
    confirm: Optional[str] = None


class CourseCard(Component):
    def __init__(
        self,
        course: dict,
        *,
        instructor_name: Optional[str] = None,
        progress: Optional[int] = None,
        badge: Optional[str] = None,
        meta: Sequence[str] = (),
        actions: Sequence[CourseCardAction] = (),
        csrf_token: str = "",
    ) -> None:
        self.course = course
        self.instructor_name = instructor_name
        self.progress = progress
        self.badge = badge
        self.meta = list(meta)
        self.actions = list(actions)
        self.csrf_token = csrf_token

    def _render_action(self, action: CourseCardAction) -> str:
        css = f"btn btn--{self.escape(action.variant)}"
        if action.method.lower() == "get":
            return f'<a class="{css}" href="{self.escape(action.href)}">{self.escape(action.label)}</a>'
        confirm = f' data-confirm="{self.escape(action.confirm)}"' if action.confirm else ""
        return (
            f'<form method="post" action="{self.escape(action.href)}" class="inline-form"{confirm}>'
            f"{csrf_input(self.csrf_token)}"
            f'<button type="submit" class="{css}">{self.escape(action.label)}</button>'
            "</form>"
        )

    def render(self) -> str:
        course = self.course
        thumbnail = course.get("thumbnail_url")
        thumb_html = (
            f'<img class="course-card__thumb" src="{self.escape(thumbnail)}" alt="">'
            if thumbnail
            else '<div class="course-card__thumb course-card__thumb--placeholder" aria-hidden="true"></div>'
        )
        badge_html = f'<span class="badge">{self.escape(self.badge)}</span>' if self.badge else ""
        instructor_html = (
            f'<p class="course-card__instructor">by {self.escape(self.instructor_name)}</p>'
            if self.instructor_name
            else ""
        )
        description = course.get("description") or ""
        meta_html = "".join(f"<li>{self.escape(m)}</li>" for m in self.meta)
        progress_html = (
            f'<div class="course-card__progress">{ProgressRing(self.progress, size=56).render()}</div>'
            if self.progress is not None
            else ""
        )
        actions_html = "".join(self._render_action(a) for a in self.actions)
        return (
            f'<article class="card course-card" id="course-{self.escape(course.get("id"))}">'
            f"{thumb_html}"
            '<div class="course-card__body">'
            f'<h3 class="course-card__title">{self.escape(course.get("title"))} {badge_html}</h3>'
            f"{instructor_html}"
            f'<p class="course-card__description">{self.escape(description)}</p>'
            f'<ul class="course-card__meta">{meta_html}</ul>'
            f"{progress_html}"
            "</div>"
            f'<div class="course-card__actions">{actions_html}</div>'
            "</article>"
        )
