"""
Learner-facing use cases: dashboard, enrollment and the course viewer.

Why:
    Keep the web adapter thin. Views receive plain dataclasses with progress
    already computed, and every write is followed by a fresh read.

Permissions:
    Rows are filtered by the caller's access token (RLS); these use cases add
    the checks the UI relies on (published courses only, enrollment required
    to open the viewer).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from backend.datastore.ports import DatastoreError, DatastoreProtocol

logger = logging.getLogger("clearcourse.learning")


@dataclass
class CourseSummary:
    course: dict
    instructor_name: Optional[str] = None
    enrollment: Optional[dict] = None

    @property
    def id(self) -> str:
        return str(self.course["id"])

    @property
    def progress(self) -> int:
        return int(round(float((self.enrollment or {}).get("progress_percentage") or 0)))


@dataclass
class LearnerDashboard:
    enrolled: list[CourseSummary]
    available: list[CourseSummary]
    query: str = ""

    @property
    def filtered_available(self) -> list[CourseSummary]:
        q = self.query.strip().lower()
        if not q:
            return list(self.available)
        return [c for c in self.available if _matches_query(c, q)]

    @property
    def empty_state(self) -> Optional[str]:
        """"no_courses" when nothing is published, "no_match" when the search is empty."""
        if not self.available:
            return "no_courses"
        if not self.filtered_available:
            return "no_match"
        return None


def _matches_query(summary: CourseSummary, q: str) -> bool:
    haystacks = (
        summary.course.get("title") or "",
        summary.course.get("description") or "",
        summary.instructor_name or "",
    )
    return any(q in h.lower() for h in haystacks)


@dataclass
class LessonView:
    lesson: dict
    progress: Optional[dict] = None

    @property
    def id(self) -> str:
        return str(self.lesson["id"])

    @property
    def is_completed(self) -> bool:
        return bool((self.progress or {}).get("is_completed"))


@dataclass
class ModuleView:
    module: dict
    lessons: list[LessonView] = field(default_factory=list)


@dataclass
class CourseOutline:
    course: dict
    modules: list[ModuleView]
    current: Optional[LessonView] = None

    @property
    def lessons(self) -> list[LessonView]:
        return [lesson for module in self.modules for lesson in module.lessons]

    @property
    def completed_count(self) -> int:
        return sum(1 for lesson in self.lessons if lesson.is_completed)

    @property
    def overall_progress(self) -> float:
        total = len(self.lessons)
        return (self.completed_count / total) * 100 if total else 0.0

    @property
    def current_index(self) -> int:
        if self.current is None:
            return -1
        for idx, lesson in enumerate(self.lessons):
            if lesson.id == self.current.id:
                return idx
        return -1

    @property
    def is_first(self) -> bool:
        return self.current_index == 0

    @property
    def is_last(self) -> bool:
        return self.current_index == len(self.lessons) - 1

    @property
    def previous_lesson(self) -> Optional[LessonView]:
        idx = self.current_index
        return self.lessons[idx - 1] if idx > 0 else None

    @property
    def next_lesson(self) -> Optional[LessonView]:
        idx = self.current_index
        lessons = self.lessons
        return lessons[idx + 1] if 0 <= idx < len(lessons) - 1 else None


@dataclass
class LearningService:
    ds: DatastoreProtocol

    def _instructor_names(self, courses: list[dict]) -> dict[str, Optional[str]]:
        ids = sorted({str(c["instructor_id"]) for c in courses if c.get("instructor_id")})
        if not ids:
            return {}
        rows = self.ds.select("profiles", in_filter=("id", ids))
        return {str(r["id"]): r.get("full_name") for r in rows}

    def dashboard(self, user_id: str, query: str = "") -> LearnerDashboard:
        enrollments = self.ds.select("enrollments", filters={"user_id": user_id}, order_by="enrolled_at",
                                     descending=True)
        course_ids = [e["course_id"] for e in enrollments]
        enrolled_courses = {c["id"]: c for c in self.ds.select("courses", in_filter=("id", course_ids))}
        published = self.ds.select("courses", filters={"is_published": True}, order_by="created_at",
                                   descending=True)
        names = self._instructor_names(list(enrolled_courses.values()) + published)

        enrolled: list[CourseSummary] = []
        for enrollment in enrollments:
            course = enrolled_courses.get(enrollment["course_id"])
            if course is None:
                continue
            enrolled.append(CourseSummary(course, names.get(str(course.get("instructor_id"))), enrollment))
        enrolled_ids = {s.id for s in enrolled}
        available = [
            CourseSummary(c, names.get(str(c.get("instructor_id"))))
            for c in published
            if str(c["id"]) not in enrolled_ids
        ]
        return LearnerDashboard(enrolled=enrolled, available=available, query=query or "")

    def enroll(self, user_id: str, course_id: str) -> dict:
        """Enroll the user; a second call returns the existing enrollment."""
        course = self.ds.select_one("courses", {"id": course_id})
        if not course or not course.get("is_published"):
            raise LookupError("course_not_found")
        existing = self.ds.select_one("enrollments", {"user_id": user_id, "course_id": course_id})
        if existing:
            return existing
        try:
            return self.ds.insert("enrollments", {"user_id": user_id, "course_id": course_id})
        except DatastoreError as exc:
            if exc.code == "23505":
                found = self.ds.select_one("enrollments", {"user_id": user_id, "course_id": course_id})
                if found:
                    return found
            raise

    def course_outline(self, user_id: str, course_id: str, lesson_id: Optional[str] = None) -> CourseOutline:
        """Modules and lessons in order with the user's progress.

        The current lesson is `lesson_id` when it belongs to the course, else
        the first incomplete lesson, else the first lesson.
        """
        course = self.ds.select_one("courses", {"id": course_id})
        if not course:
            raise LookupError("course_not_found")
        if not self.ds.select_one("enrollments", {"user_id": user_id, "course_id": course_id}):
            raise PermissionError("not_enrolled")

        modules = self.ds.select("modules", filters={"course_id": course_id}, order_by="order_index")
        module_ids = [m["id"] for m in modules]
        lessons = self.ds.select("lessons", in_filter=("module_id", module_ids), order_by="order_index")
        lesson_ids = [lesson["id"] for lesson in lessons]
        progress_rows = self.ds.select(
            "lesson_progress", filters={"user_id": user_id}, in_filter=("lesson_id", lesson_ids)
        )
        progress = {p["lesson_id"]: p for p in progress_rows}

        views = []
        for module in modules:
            module_lessons = [
                LessonView(lesson, progress.get(lesson["id"])) for lesson in lessons if lesson["module_id"] == module["id"]
            ]
            views.append(ModuleView(module, module_lessons))
        outline = CourseOutline(course=course, modules=views)

        all_lessons = outline.lessons
        selected = next((lv for lv in all_lessons if lv.id == lesson_id), None) if lesson_id else None
        if selected is None:
            selected = next((lv for lv in all_lessons if not lv.is_completed), None)
        if selected is None and all_lessons:
            selected = all_lessons[0]
        outline.current = selected
        return outline

    def mark_lesson_complete(
        self, user_id: str, course_id: str, lesson_id: str, *, now: Optional[datetime] = None
    ) -> float:
        """Mark the lesson complete and return the recomputed course progress."""
        now_iso = (now or datetime.now(timezone.utc)).isoformat()
        lesson = self.ds.select_one("lessons", {"id": lesson_id})
        module = self.ds.select_one("modules", {"id": lesson["module_id"]}) if lesson else None
        if not module or module.get("course_id") != course_id:
            raise LookupError("lesson_not_found")
        if not self.ds.select_one("enrollments", {"user_id": user_id, "course_id": course_id}):
            raise PermissionError("not_enrolled")

        existing = self.ds.select_one("lesson_progress", {"user_id": user_id, "lesson_id": lesson_id})
        if existing:
            self.ds.update("lesson_progress", {"id": existing["id"]}, {"is_completed": True, "completed_at": now_iso})
        else:
            self.ds.insert(
                "lesson_progress",
                {
                    "user_id": user_id,
                    "lesson_id": lesson_id,
                    "is_completed": True,
                    "completed_at": now_iso,
                    "time_spent_minutes": 0,
                },
            )
        return self.recompute_enrollment_progress(user_id, course_id, now_iso=now_iso)

    def recompute_enrollment_progress(self, user_id: str, course_id: str, *, now_iso: Optional[str] = None) -> float:
        outline = self.course_outline(user_id, course_id)
        percentage = round(outline.overall_progress, 2)
        values: dict = {"progress_percentage": percentage}
        enrollment = self.ds.select_one("enrollments", {"user_id": user_id, "course_id": course_id}) or {}
        if outline.lessons and outline.completed_count == len(outline.lessons) and not enrollment.get("completed_at"):
            values["completed_at"] = now_iso or datetime.now(timezone.utc).isoformat()
        self.ds.update("enrollments", {"user_id": user_id, "course_id": course_id}, values)
        logger.debug("learning.progress user=%s course=%s pct=%s", user_id, course_id, percentage)
        return percentage


__all__ = [
    "CourseOutline",
    "CourseSummary",
    "LearnerDashboard",
    "LearningService",
    "LessonView",
    "ModuleView",
]
