"""Teaching service layer: courses, the course builder and course analytics.

Why:
    Encapsulates instructor use cases (list/create/update/publish/delete,
    module and lesson authoring, reordering, analytics) so that web adapters
    remain thin and validation can be unit-tested without FastAPI.

Permissions:
    Every operation checks that the course belongs to the calling instructor
    (`instructor_id`). Row-level security on the backend enforces the same
    rule; the check here turns a silent empty result into `LookupError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from backend.datastore.ports import DatastoreProtocol

from .files import FileService, FileUploadError, UploadResult

logger = logging.getLogger("clearcourse.teaching")

CONTENT_TYPES = ("video", "pdf", "document", "quiz", "text")
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 5000


def _normalize_title(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > TITLE_MAX_LENGTH:
        raise ValueError("invalid_title")
    return trimmed


def _normalize_description(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_description")
    trimmed = value.strip()
    if len(trimmed) > DESCRIPTION_MAX_LENGTH:
        raise ValueError("invalid_description")
    return trimmed or None


def _normalize_content_type(value: object) -> str:
    if not isinstance(value, str) or value not in CONTENT_TYPES:
        raise ValueError("invalid_content_type")
    return value


def _normalize_duration(value: object) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError("invalid_duration")
    try:
        minutes = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError("invalid_duration") from exc
    if minutes < 0:
        raise ValueError("invalid_duration")
    return minutes


def _normalize_url(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_content_url")
    trimmed = value.strip()
    if not trimmed:
        return None
    if not trimmed.startswith(("http://", "https://")):
        raise ValueError("invalid_content_url")
    return trimmed


@dataclass
class InstructorCourse:
    course: dict
    module_count: int = 0
    lesson_count: int = 0
    enrollment_count: int = 0


@dataclass
class BuilderModule:
    module: dict
    lessons: List[dict] = field(default_factory=list)


@dataclass
class LearnerProgress:
    enrollment: dict
    user: Optional[dict]
    completed_lessons: int
    total_lessons: int


@dataclass
class CourseAnalytics:
    course: dict
    modules: List[BuilderModule]
    learners: List[LearnerProgress]
    lesson_completions: dict[str, int]

    @property
    def enrollment_count(self) -> int:
        return len(self.learners)

    @property
    def completion_count(self) -> int:
        return sum(1 for lp in self.learners if lp.enrollment.get("completed_at"))

    @property
    def average_progress(self) -> float:
        if not self.learners:
            return 0.0
        total = sum(float(lp.enrollment.get("progress_percentage") or 0) for lp in self.learners)
        return round(total / len(self.learners), 1)


@dataclass
class TeachingService:
    """Use cases for instructors (framework-independent)."""

    ds: DatastoreProtocol
    files: Optional[FileService] = None

    # --- Courses -----------------------------------------------------------------

    def _owned_course(self, instructor_id: str, course_id: str) -> dict:
        course = self.ds.select_one("courses", {"id": course_id})
        if not course or course.get("instructor_id") != instructor_id:
            raise LookupError("course_not_found")
        return course

    def get_course(self, instructor_id: str, course_id: str) -> dict:
        return self._owned_course(instructor_id, course_id)

    def list_courses(self, instructor_id: str) -> List[InstructorCourse]:
        courses = self.ds.select(
            "courses", filters={"instructor_id": instructor_id}, order_by="created_at", descending=True
        )
        course_ids = [c["id"] for c in courses]
        modules = self.ds.select("modules", in_filter=("course_id", course_ids))
        lessons = self.ds.select("lessons", in_filter=("module_id", [m["id"] for m in modules]))
        enrollments = self.ds.select("enrollments", in_filter=("course_id", course_ids))
        module_course = {m["id"]: m["course_id"] for m in modules}

        result = []
        for course in courses:
            cid = course["id"]
            result.append(
                InstructorCourse(
                    course=course,
                    module_count=sum(1 for m in modules if m["course_id"] == cid),
                    lesson_count=sum(1 for lesson in lessons if module_course.get(lesson["module_id"]) == cid),
                    enrollment_count=sum(1 for e in enrollments if e["course_id"] == cid),
                )
            )
        return result

    def create_course(
        self,
        instructor_id: str,
        organization_id: Optional[str],
        *,
        title: object,
        description: object = None,
        within_limit: bool = True,
    ) -> dict:
        """Create a draft course.

        `within_limit` carries the organization's `courses` feature check;
        False raises `PermissionError("course_limit_reached")`.
        """
        row = {
            "title": _normalize_title(title),
            "description": _normalize_description(description),
            "instructor_id": instructor_id,
            "organization_id": organization_id,
            "is_published": False,
        }
        if not within_limit:
            raise PermissionError("course_limit_reached")
        course = self.ds.insert("courses", row)
        logger.info("teaching.course.created course=%s instructor=%s", course["id"], instructor_id)
        return course

    def update_course(self, instructor_id: str, course_id: str, *, title: object, description: object = None) -> dict:
        self._owned_course(instructor_id, course_id)
        rows = self.ds.update(
            "courses",
            {"id": course_id},
            {"title": _normalize_title(title), "description": _normalize_description(description)},
        )
        if not rows:
            raise LookupError("course_not_found")
        return rows[0]

    def toggle_publish(self, instructor_id: str, course_id: str) -> bool:
        course = self._owned_course(instructor_id, course_id)
        published = not bool(course.get("is_published"))
        self.ds.update("courses", {"id": course_id}, {"is_published": published})
        return published

    def delete_course(self, instructor_id: str, course_id: str) -> None:
        self._owned_course(instructor_id, course_id)
        # Modules, lessons and enrollments cascade on the backend.
        self.ds.delete("courses", {"id": course_id})
        logger.info("teaching.course.deleted course=%s instructor=%s", course_id, instructor_id)

    # --- Builder -----------------------------------------------------------------

    def structure(self, instructor_id: str, course_id: str) -> List[BuilderModule]:
        self._owned_course(instructor_id, course_id)
        return self._structure(course_id)

    def _structure(self, course_id: str) -> List[BuilderModule]:
        modules = self.ds.select("modules", filters={"course_id": course_id}, order_by="order_index")
        lessons = self.ds.select(
            "lessons", in_filter=("module_id", [m["id"] for m in modules]), order_by="order_index"
        )
        return [BuilderModule(m, [lesson for lesson in lessons if lesson["module_id"] == m["id"]]) for m in modules]

    def _next_order_index(self, table: str, parent_column: str, parent_id: str) -> int:
        rows = self.ds.select(table, filters={parent_column: parent_id}, order_by="order_index", descending=True,
                              limit=1)
        return int(rows[0].get("order_index") or 0) + 1 if rows else 0

    def _owned_module(self, instructor_id: str, course_id: str, module_id: str) -> dict:
        self._owned_course(instructor_id, course_id)
        module = self.ds.select_one("modules", {"id": module_id})
        if not module or module.get("course_id") != course_id:
            raise LookupError("module_not_found")
        return module

    def add_module(self, instructor_id: str, course_id: str, *, title: object, description: object = None) -> dict:
        course = self._owned_course(instructor_id, course_id)
        return self.ds.insert(
            "modules",
            {
                "course_id": course_id,
                "organization_id": course.get("organization_id"),
                "title": _normalize_title(title),
                "description": _normalize_description(description),
                "order_index": self._next_order_index("modules", "course_id", course_id),
            },
        )

    def rename_module(
        self, instructor_id: str, course_id: str, module_id: str, *, title: object, description: object = None
    ) -> dict:
        self._owned_module(instructor_id, course_id, module_id)
        rows = self.ds.update(
            "modules",
            {"id": module_id},
            {"title": _normalize_title(title), "description": _normalize_description(description)},
        )
        return rows[0] if rows else {}

    def delete_module(self, instructor_id: str, course_id: str, module_id: str) -> None:
        self._owned_module(instructor_id, course_id, module_id)
        for lesson in self.ds.select("lessons", filters={"module_id": module_id}):
            self._remove_lesson_file(lesson)
        self.ds.delete("modules", {"id": module_id})

    def _owned_lesson(self, instructor_id: str, course_id: str, lesson_id: str) -> dict:
        self._owned_course(instructor_id, course_id)
        lesson = self.ds.select_one("lessons", {"id": lesson_id})
        module = self.ds.select_one("modules", {"id": lesson["module_id"]}) if lesson else None
        if not module or module.get("course_id") != course_id:
            raise LookupError("lesson_not_found")
        return lesson  # type: ignore[return-value]

    def _lesson_values(
        self,
        *,
        title: object,
        content: object,
        content_type: object,
        content_url: object,
        duration_minutes: object,
    ) -> dict[str, Any]:
        return {
            "title": _normalize_title(title),
            "content": _normalize_description(content),
            "content_type": _normalize_content_type(content_type),
            "content_url": _normalize_url(content_url),
            "duration_minutes": _normalize_duration(duration_minutes),
        }

    def _apply_upload(self, values: dict[str, Any], upload: Optional[UploadResult]) -> None:
        if upload is None:
            return
        values.update(
            {
                "content_url": upload.url,
                "file_size": upload.size,
                "file_type": upload.type,
                "original_filename": upload.original_filename,
            }
        )

    def upload_file(self, *, filename: str, content: bytes, content_type: str) -> UploadResult:
        if self.files is None:
            raise FileUploadError("File uploads are not configured")
        return self.files.upload(filename=filename, content=content, content_type=content_type)

    def add_lesson(
        self,
        instructor_id: str,
        course_id: str,
        module_id: str,
        *,
        title: object,
        content_type: object = "text",
        content: object = None,
        content_url: object = None,
        duration_minutes: object = 0,
        upload: Optional[UploadResult] = None,
    ) -> dict:
        module = self._owned_module(instructor_id, course_id, module_id)
        values = self._lesson_values(
            title=title,
            content=content,
            content_type=content_type,
            content_url=content_url,
            duration_minutes=duration_minutes,
        )
        self._apply_upload(values, upload)
        values.update(
            {
                "module_id": module_id,
                "organization_id": module.get("organization_id"),
                "order_index": self._next_order_index("lessons", "module_id", module_id),
            }
        )
        return self.ds.insert("lessons", values)

    def update_lesson(
        self,
        instructor_id: str,
        course_id: str,
        lesson_id: str,
        *,
        title: object,
        content_type: object,
        content: object = None,
        content_url: object = None,
        duration_minutes: object = 0,
        upload: Optional[UploadResult] = None,
    ) -> dict:
        lesson = self._owned_lesson(instructor_id, course_id, lesson_id)
        values = self._lesson_values(
            title=title,
            content=content,
            content_type=content_type,
            content_url=content_url if upload is None else None,
            duration_minutes=duration_minutes,
        )
        if upload is not None:
            self._remove_lesson_file(lesson)
            self._apply_upload(values, upload)
        elif values["content_url"] != lesson.get("content_url"):
            values.update({"file_size": None, "file_type": None, "original_filename": None})
        rows = self.ds.update("lessons", {"id": lesson_id}, values)
        return rows[0] if rows else lesson

    def delete_lesson(self, instructor_id: str, course_id: str, lesson_id: str) -> None:
        lesson = self._owned_lesson(instructor_id, course_id, lesson_id)
        self._remove_lesson_file(lesson)
        self.ds.delete("lessons", {"id": lesson_id})

    def _remove_lesson_file(self, lesson: dict) -> None:
        url = lesson.get("content_url")
        if not url or self.files is None or not lesson.get("original_filename"):
            return
        try:
            self.files.delete(url)
        except FileUploadError as exc:
            # The lesson row is authoritative; an orphaned object is acceptable.
            logger.warning("teaching.lesson.file_delete_failed lesson=%s error=%s", lesson.get("id"), exc)

    # --- Reordering --------------------------------------------------------------

    def _swap(self, table: str, rows: List[dict], item_id: str, direction: str) -> bool:
        if direction not in ("up", "down"):
            raise ValueError("invalid_direction")
        ids = [r["id"] for r in rows]
        if item_id not in ids:
            raise LookupError(f"{table[:-1]}_not_found")
        idx = ids.index(item_id)
        other = idx - 1 if direction == "up" else idx + 1
        if other < 0 or other >= len(rows):
            return False
        a, b = rows[idx], rows[other]
        a_index, b_index = a.get("order_index") or 0, b.get("order_index") or 0
        if a_index == b_index:
            # Legacy rows may share an index; fall back to list positions.
            a_index, b_index = idx, other
        self.ds.update(table, {"id": a["id"]}, {"order_index": b_index})
        self.ds.update(table, {"id": b["id"]}, {"order_index": a_index})
        return True

    def move_module(self, instructor_id: str, course_id: str, module_id: str, direction: str) -> bool:
        self._owned_course(instructor_id, course_id)
        modules = self.ds.select("modules", filters={"course_id": course_id}, order_by="order_index")
        return self._swap("modules", modules, module_id, direction)

    def move_lesson(self, instructor_id: str, course_id: str, lesson_id: str, direction: str) -> bool:
        lesson = self._owned_lesson(instructor_id, course_id, lesson_id)
        lessons = self.ds.select("lessons", filters={"module_id": lesson["module_id"]}, order_by="order_index")
        return self._swap("lessons", lessons, lesson_id, direction)

    # --- Analytics ---------------------------------------------------------------

    def analytics(self, instructor_id: str, course_id: str) -> CourseAnalytics:
        course = self._owned_course(instructor_id, course_id)
        modules = self._structure(course_id)
        lesson_ids = [lesson["id"] for m in modules for lesson in m.lessons]
        enrollments = self.ds.select(
            "enrollments", filters={"course_id": course_id}, order_by="enrolled_at", descending=True
        )
        users = {
            u["id"]: u for u in self.ds.select("profiles", in_filter=("id", [e["user_id"] for e in enrollments]))
        }
        progress = [
            p for p in self.ds.select("lesson_progress", in_filter=("lesson_id", lesson_ids)) if p.get("is_completed")
        ]
        completions = {lid: 0 for lid in lesson_ids}
        completed_by_user: dict[str, int] = {}
        for p in progress:
            completions[p["lesson_id"]] = completions.get(p["lesson_id"], 0) + 1
            completed_by_user[p["user_id"]] = completed_by_user.get(p["user_id"], 0) + 1
        learners = [
            LearnerProgress(
                enrollment=e,
                user=users.get(e["user_id"]),
                completed_lessons=completed_by_user.get(e["user_id"], 0),
                total_lessons=len(lesson_ids),
            )
            for e in enrollments
        ]
        return CourseAnalytics(course=course, modules=modules, learners=learners, lesson_completions=completions)


__all__ = [
    "BuilderModule",
    "CONTENT_TYPES",
    "CourseAnalytics",
    "InstructorCourse",
    "LearnerProgress",
    "TeachingService",
]
