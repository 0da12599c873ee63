"""
Form field components.

Every field renders the same wrapper (label, control, help and error text)
so forms stay consistent and accessible.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from ..base import Component


class FormField(Component):
    """Wrapper that renders label, input slot, help, and error text."""

    def __init__(
        self,
        field_id: str,
        label: str,
        *,
        required: bool = False,
        help_text: Optional[str] = None,
        error_text: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        self.field_id = field_id
        self.name = name or field_id
        self.label = label
        self.required = required
        self.help_text = help_text
        self.error_text = error_text

    def _aria(self) -> dict:
        return {
            "aria_describedby": f"{self.field_id}-help" if self.help_text else None,
            "aria_invalid": "true" if self.error_text else "false",
        }

    def render(self, input_html: str) -> str:
        state_class = " form-field--error" if self.error_text else ""
        required_marker = '<span class="form-required" aria-hidden="true">*</span>' if self.required else ""
        help_html = (
            f'<p class="form-help" id="{self.field_id}-help">{self.escape(self.help_text)}</p>'
            if self.help_text
            else ""
        )
        error_html = (
            f'<p class="form-error" role="alert" id="{self.field_id}-error">{self.escape(self.error_text)}</p>'
            if self.error_text
            else ""
        )
        label_attrs = self.attributes(for_=self.field_id, class_="form-label")
        return (
            f'<div class="form-field{state_class}">'
            f"<label {label_attrs}>{self.escape(self.label)}{required_marker}</label>"
            f"{input_html}"
            f"{help_html}"
            f"{error_html}"
            "</div>"
        )


class TextInputField(FormField):
    """Single-line input (`text`, `email`, `password`, `number`, `url`, `color`)."""

    def render(
        self,
        *,
        value: str = "",
        input_type: str = "text",
        autocomplete: Optional[str] = None,
        placeholder: Optional[str] = None,
        **attrs,
    ) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.name,
            type=input_type,
            value=None if input_type == "password" else value,
            autocomplete=autocomplete,
            placeholder=placeholder,
            required=self.required,
            class_="form-input",
            **self._aria(),
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class TextAreaField(FormField):
    def render(self, value: str = "", rows: int = 5, **attrs) -> str:
        textarea_attrs = self.attributes(
            id=self.field_id,
            name=self.name,
            rows=str(rows),
            required=self.required,
            class_="form-input",
            **self._aria(),
            **attrs,
        )
        return super().render(f"<textarea {textarea_attrs}>{self.escape(value)}</textarea>")


class SelectField(FormField):
    def render(self, options: Sequence[Tuple[str, str]], *, value: Optional[str] = None, **attrs) -> str:
        opts = "".join(
            f'<option {self.attributes(value=opt_value, selected=(opt_value == value))}>{self.escape(label)}</option>'
            for opt_value, label in options
        )
        select_attrs = self.attributes(
            id=self.field_id, name=self.name, required=self.required, class_="form-input", **self._aria(), **attrs
        )
        return super().render(f"<select {select_attrs}>{opts}</select>")


class FileUploadField(FormField):
    def render(self, accept: Optional[str] = None, **attrs) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.name,
            type="file",
            accept=accept,
            required=self.required,
            **self._aria(),
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class CheckboxField(Component):
    def __init__(self, field_id: str, label: str, *, checked: bool = False, required: bool = False) -> None:
        self.field_id = field_id
        self.label = label
        self.checked = checked
        self.required = required

    def render(self) -> str:
        attrs = self.attributes(
            id=self.field_id, name=self.field_id, type="checkbox", value="on", checked=self.checked,
            required=self.required,
        )
        return (
            '<div class="form-field form-field--checkbox">'
            f"<input {attrs}>"
            f'<label for="{self.field_id}">{self.escape(self.label)}</label>'
            "</div>"
        )