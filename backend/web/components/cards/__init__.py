"""
Card components: course tiles and dashboard statistics.
"""

from .course import CourseCard, CourseCardAction
from .stat import StatCard

__all__ = ["CourseCard", "CourseCardAction", "StatCard"]
