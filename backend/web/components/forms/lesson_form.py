"""
Lesson form for the course builder: content type, text/URL and an optional
file upload (multipart).
"""

from __future__ import annotations

from typing import Optional

from backend.lms.files import BUCKET_MAP
from backend.lms.teaching import CONTENT_TYPES

from ..base import Component, csrf_input
from .fields import FileUploadField, SelectField, TextAreaField, TextInputField
from .submit import SubmitButton

ERROR_MESSAGES = {
    "invalid_title": "Lesson title is required and must be at most 200 characters.",
    "invalid_content_type": "Choose a valid content type.",
    "invalid_duration": "Duration must be a whole number of minutes (0 or more).",
    "invalid_content_url": "Content URL must start with http:// or https://.",
    "invalid_description": "Lesson text is too long.",
    "upload_failed": "The file could not be uploaded.",
}


class LessonForm(Component):
    def __init__(
        self,
        csrf_token: str,
        *,
        action: str,
        values: Optional[dict] = None,
        error: Optional[str] = None,
        submit_label: str = "Add lesson",
        field_prefix: str = "",
    ) -> None:
        self.csrf_token = csrf_token
        self.action = action
        self.values = values or {}
        self.error = error
        self.submit_label = submit_label
        self.prefix = field_prefix

    def _id(self, name: str) -> str:
        return name if not self.prefix else f"{self.prefix}-{name}"

    def render(self) -> str:
        v = self.values
        error_html = ""
        if self.error:
            message = ERROR_MESSAGES.get(self.error, self.error)
            error_html = f'<div class="form-error" role="alert">{self.escape(message)}</div>'
        options = [(ct, ct.capitalize()) for ct in CONTENT_TYPES]
        fields = [
            TextInputField(self._id("title"), "Lesson title", required=True, name="title").render(
                value=v.get("title") or "", maxlength="200"
            ),
            SelectField(self._id("content_type"), "Content type", name="content_type").render(
                options, value=v.get("content_type") or "text"
            ),
            TextAreaField(self._id("content"), "Lesson text (Markdown)", name="content").render(
                value=v.get("content") or "", rows=4
            ),
            TextInputField(self._id("content_url"), "Content URL", help_text="YouTube, Vimeo or a file link", name="content_url").render(
                value=v.get("content_url") or "", input_type="url"
            ),
            TextInputField(self._id("duration_minutes"), "Duration (minutes)", name="duration_minutes").render(
                value=str(v.get("duration_minutes") or 0), input_type="number", min="0"
            ),
            FileUploadField(self._id("file"), "Upload file", name="file").render(accept=",".join(sorted(BUCKET_MAP))),
        ]
        return f"""
        <form method="post" action="{self.escape(self.action)}" enctype="multipart/form-data" class="lesson-form">
            {csrf_input(self.csrf_token)}
            {''.join(fields)}
            {error_html}
            <div class="form-actions">{SubmitButton(self.submit_label).render()}</div>
        </form>
        """
