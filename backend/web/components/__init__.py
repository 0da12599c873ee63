# ClearCourse component system
# Pure Python components for server-rendered HTML

from .banners import FlashMessages, ImpersonationBanner
from .base import Component, csrf_input
from .buttons import Button
from .cards import CourseCard, CourseCardAction, StatCard
from .forms import (
    CheckboxField,
    CourseForm,
    FileUploadField,
    FormField,
    LessonForm,
    LoginForm,
    PasswordStrengthIndicator,
    ResetPasswordForm,
    SelectField,
    SignupForm,
    SubmitButton,
    TextAreaField,
    TextInputField,
)
from .layout import Layout
from .markdown import render_markdown_safe
from .media import ProgressRing, VideoPlayer
from .navigation import Navigation

__all__ = [
    "Button",
    "CheckboxField",
    "Component",
    "CourseCard",
    "CourseCardAction",
    "CourseForm",
    "FileUploadField",
    "FlashMessages",
    "FormField",
    "ImpersonationBanner",
    "Layout",
    "LessonForm",
    "LoginForm",
    "Navigation",
    "PasswordStrengthIndicator",
    "ProgressRing",
    "ResetPasswordForm",
    "SelectField",
    "SignupForm",
    "StatCard",
    "SubmitButton",
    "TextAreaField",
    "TextInputField",
    "VideoPlayer",
    "csrf_input",
    "render_markdown_safe",
]
