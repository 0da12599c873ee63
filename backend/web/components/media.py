"""
Media components: progress ring (inline SVG) and the lesson video player.
"""

from __future__ import annotations

import math
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .base import Component

_YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{6,20}$")
_VIMEO_ID = re.compile(r"^\d{4,12}$")


class ProgressRing(Component):
    """Circular progress indicator; `progress` is clamped to 0..100."""

    def __init__(self, progress: float, *, size: int = 100, stroke: int = 8, label: Optional[str] = None) -> None:
        self.progress = max(0.0, min(100.0, float(progress or 0)))
        self.size = size
        self.stroke = stroke
        self.label = label

    @property
    def radius(self) -> float:
        return (self.size - self.stroke) / 2

    @property
    def circumference(self) -> float:
        return 2 * math.pi * self.radius

    @property
    def dash_offset(self) -> float:
        return self.circumference - (self.progress / 100) * self.circumference

    def render(self) -> str:
        center = self.size / 2
        pct = int(round(self.progress))
        label = self.label or f"{pct}% complete"
        return (
            f'<svg class="progress-ring" width="{self.size}" height="{self.size}" '
            f'viewBox="0 0 {self.size} {self.size}" role="img" aria-label="{self.escape(label)}">'
            f'<circle class="progress-ring__track" cx="{center}" cy="{center}" r="{self.radius:.2f}" '
            f'stroke-width="{self.stroke}" fill="none"></circle>'
            f'<circle class="progress-ring__value" cx="{center}" cy="{center}" r="{self.radius:.2f}" '
            f'stroke-width="{self.stroke}" fill="none" stroke-linecap="round" '
            f'stroke-dasharray="{self.circumference:.2f}" stroke-dashoffset="{self.dash_offset:.2f}" '
            f'transform="rotate(-90 {center} {center})"></circle>'
            f'<text class="progress-ring__text" x="50%" y="50%" text-anchor="middle" '
            f'dominant-baseline="central">{pct}%</text>'
            "</svg>"
        )


def embed_url(url: str) -> Optional[str]:
    """Return a privacy-friendly embed URL for YouTube/Vimeo links, else None."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    video_id = None
    if host in ("youtube.com", "m.youtube.com"):
        if parsed.path == "/watch":
            video_id = (parse_qs(parsed.query).get("v") or [None])[0]
        elif parsed.path.startswith(("/embed/", "/shorts/")):
            video_id = parsed.path.split("/")[2]
        if video_id and _YOUTUBE_ID.match(video_id):
            return f"https://www.youtube-nocookie.com/embed/{video_id}"
    elif host == "youtu.be":
        video_id = parsed.path.lstrip("/").split("/")[0]
        if _YOUTUBE_ID.match(video_id):
            return f"https://www.youtube-nocookie.com/embed/{video_id}"
    elif host in ("vimeo.com", "player.vimeo.com"):
        video_id = parsed.path.rstrip("/").split("/")[-1]
        if _VIMEO_ID.match(video_id):
            return f"https://player.vimeo.com/video/{video_id}"
    return None


class VideoPlayer(Component):
    """HTML5 `<video>` for uploaded files, an iframe for YouTube/Vimeo links."""

    def __init__(self, url: str, *, title: str = "Lesson video") -> None:
        self.url = url
        self.title = title

    def render(self) -> str:
        embed = embed_url(self.url)
        if embed:
            attrs = self.attributes(
                src=embed,
                title=self.title,
                class_="video-player__frame",
                allow="accelerometer; encrypted-media; fullscreen; picture-in-picture",
                allowfullscreen=True,
                loading="lazy",
                referrerpolicy="strict-origin-when-cross-origin",
            )
            return f'<div class="video-player video-player--embed"><iframe {attrs}></iframe></div>'
        attrs = self.attributes(src=self.url, controls=True, preload="metadata", class_="video-player__video")
        return (
            '<div class="video-player">'
            f"<video {attrs}>Your browser does not support the video element.</video>"
            "</div>"
        )
