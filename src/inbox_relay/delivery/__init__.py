"""Outbound composition and delivery."""

from .composer import build_message, parse_recipients, plain_text_to_html, wrap_email_html
from .outbound import OutboundDelivery

__all__ = [
    "OutboundDelivery",
    "build_message",
    "parse_recipients",
    "plain_text_to_html",
    "wrap_email_html",
]
