"""Engagement tracking for outbound messages."""

from .tracker import EmailTracker, extract_trackable_links, inject_tracking

__all__ = ["EmailTracker", "extract_trackable_links", "inject_tracking"]
