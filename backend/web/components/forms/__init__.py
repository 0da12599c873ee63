"""
Form components: fields, submit button, password meter and the forms built
from them.
"""

from .auth_forms import LoginForm, ResetPasswordForm, SignupForm
from .course_form import CourseForm
from .fields import (
    CheckboxField,
    FileUploadField,
    FormField,
    SelectField,
    TextAreaField,
    TextInputField,
)
from .lesson_form import LessonForm
from .password import PasswordStrengthIndicator
from .submit import SubmitButton

__all__ = [
    "CheckboxField",
    "CourseForm",
    "FileUploadField",
    "FormField",
    "LessonForm",
    "LoginForm",
    "PasswordStrengthIndicator",
    "ResetPasswordForm",
    "SelectField",
    "SignupForm",
    "SubmitButton",
    "TextAreaField",
    "TextInputField",
]
