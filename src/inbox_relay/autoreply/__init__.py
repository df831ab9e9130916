"""Automatic response handling."""

from .engine import AutoReplyEngine
from .templates import is_vacation_active, render_vacation_template

__all__ = ["AutoReplyEngine", "is_vacation_active", "render_vacation_template"]
