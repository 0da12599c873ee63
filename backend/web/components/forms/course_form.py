"""
Course create/edit form.
"""

from __future__ import annotations

from typing import Optional

from ..base import Component, csrf_input
from .fields import TextAreaField, TextInputField
from .submit import SubmitButton

ERROR_MESSAGES = {
    "invalid_title": "Course title is required and must be at most 200 characters.",
    "invalid_description": "Description is too long.",
    "course_limit_reached": "Your plan's course limit has been reached. Upgrade to create more courses.",
    "backend_error": "The course could not be saved. Please try again.",
}


class CourseForm(Component):
    def __init__(
        self,
        csrf_token: str,
        *,
        action: str = "/courses",
        values: Optional[dict] = None,
        error: Optional[str] = None,
        submit_label: str = "Create course",
    ) -> None:
        self.csrf_token = csrf_token
        self.action = action
        self.values = values or {}
        self.error = error
        self.submit_label = submit_label

    def render(self) -> str:
        error_html = ""
        if self.error:
            message = ERROR_MESSAGES.get(self.error, "An unexpected error occurred.")
            error_html = f'<div class="form-error" role="alert">{self.escape(message)}</div>'
        title = TextInputField("title", "Course title", required=True).render(
            value=self.values.get("title") or "", maxlength="200"
        )
        description = TextAreaField("description", "Description").render(
            value=self.values.get("description") or "", rows=4
        )
        return f"""
        <form method="post" action="{self.escape(self.action)}" class="course-form">
            {csrf_input(self.csrf_token)}
            {title}
            {description}
            {error_html}
            <div class="form-actions">{SubmitButton(self.submit_label).render()}</div>
        </form>
        """
