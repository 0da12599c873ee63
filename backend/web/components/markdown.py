"""
Safe Markdown renderer for text lessons.

Security model:
- markdown-it builds the HTML with raw HTML input disabled.
- bleach then strips everything outside a small whitelist.
"""
from __future__ import annotations

import bleach
from markdown_it import MarkdownIt

_ALLOWED_TAGS = [
    "p", "br", "strong", "em", "h1", "h2", "h3", "h4", "h5", "h6",
    "table", "thead", "tbody", "tr", "th", "td",
    "ul", "ol", "li", "code", "pre", "blockquote", "a", "hr",
]

_ALLOWED_ATTRIBUTES = {"a": ["href", "title"]}

_ALLOWED_PROTOCOLS = ["http", "https", "mailto"]

_MD = MarkdownIt(
    "commonmark",
    {"html": False, "linkify": False, "typographer": False, "breaks": True},
).enable("table")


def render_markdown_safe(src: str) -> str:
    """Render instructor-authored lesson text to sanitised HTML.

    Permissions:
        None. The caller must already have checked that the viewer is
        enrolled in (or owns) the course.
    """
    if not src:
        return ""
    html = _MD.render(str(src))
    return bleach.clean(
        html,
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRIBUTES,
        protocols=_ALLOWED_PROTOCOLS,
        strip=False,
    ).strip()
