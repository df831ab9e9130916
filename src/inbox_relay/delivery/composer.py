"""Build outbound HTML and MIME messages."""

from __future__ import annotations

import html
import re
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from email.headerregistry import Address
from email.message import EmailMessage
from email.utils import format_datetime, getaddresses

from ..core.models import OutgoingAttachment, Recipient, RecipientKind

DEFAULT_ATTACHMENT_TYPE = "application/octet-stream"

AUTOMATED_REPLY_HEADERS: dict[str, str] = {
    "Auto-Submitted": "auto-replied",
    "Precedence": "bulk",
    "X-Auto-Response-Suppress": "All",
}

_FONT_FAMILY = "'Segoe UI','Helvetica Neue',Arial,'Liberation Sans',sans-serif"
_OUTER_BACKGROUND = "#f4f5f7"
_INNER_BACKGROUND = "#ffffff"
_PRIMARY_TEXT = "#111827"
_SECONDARY_TEXT = "#475569"

_EMAIL_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <meta name="color-scheme" content="light" />
    <meta name="supported-color-schemes" content="light" />
    <title>Message</title>
  </head>
  <body bgcolor="{outer}" style="margin:0;padding:0;background-color:{outer};font-family:{font};color:{primary};">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="width:100%;border-collapse:collapse;background-color:{outer};">
      <tr>
        <td align="center" style="padding:32px 12px;background-color:{outer};">
          <table role="presentation" width="600" cellpadding="0" cellspacing="0" bgcolor="{inner}" style="width:100%;max-width:600px;border-collapse:separate;border-spacing:0;background-color:{inner};border:1px solid #e2e8f0;border-radius:16px;">
            <tr>
              <td style="padding:28px 28px 32px;font-family:{font};color:{primary};background-color:{inner};border-radius:16px;">
                {header}
                <div style="font-size:15px;line-height:1.6;color:{primary};">
                  {content}
                </div>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>"""

_PARAGRAPH_STYLE = "margin:0 0 16px 0;font-size:14px;line-height:1.6;"
_EMPTY_PARAGRAPH = '<p style="margin:0;font-size:14px;line-height:1.6;">&nbsp;</p>'
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


def escape_html(value: str) -> str:
    """Escape text for inclusion in HTML content or attributes."""
    return html.escape(value, quote=True)


def _sender_header(
    sender_name: str | None, sender_logo_url: str | None, from_email: str | None
) -> str:
    display_name = (sender_name or "").strip()
    parts: list[str] = []
    if display_name:
        parts.append(
            f'<p style="margin:0;font-size:16px;font-weight:600;color:{_PRIMARY_TEXT};">'
            f"{escape_html(display_name)}</p>"
        )
    if from_email:
        margin = "4px 0 0" if display_name else "0"
        parts.append(
            f'<p style="margin:{margin};font-size:12px;color:{_SECONDARY_TEXT};">'
            f"{escape_html(from_email)}</p>"
        )
    cells: list[str] = []
    if sender_logo_url:
        cells.append(
            '<td style="padding-right:12px;vertical-align:middle;" width="48">'
            f'<img src="{escape_html(sender_logo_url)}" alt="Sender logo" width="120" '
            'style="display:block;width:120px;max-width:100%;height:auto;border-radius:6px;" />'
            "</td>"
        )
    if parts:
        cells.append(f'<td style="vertical-align:middle;">{"".join(parts)}</td>')
    if not cells:
        return ""
    return (
        '<table role="presentation" width="100%" cellpadding="0" cellspacing="0" '
        'style="border-collapse:collapse;margin-bottom:24px;">'
        f"<tr>{''.join(cells)}</tr></table>"
    )


def wrap_email_html(
    content_html: str,
    *,
    sender_name: str | None,
    sender_logo_url: str | None,
    from_email: str | None,
) -> str:
    """Place an HTML fragment inside the branded outer template."""
    return _EMAIL_TEMPLATE.format(
        outer=_OUTER_BACKGROUND,
        inner=_INNER_BACKGROUND,
        primary=_PRIMARY_TEXT,
        font=_FONT_FAMILY,
        header=_sender_header(sender_name, sender_logo_url, from_email),
        content=content_html,
    )


def plain_text_to_html(text: str) -> str:
    """Convert plain text to paragraphs; single newlines become ``<br />``."""
    normalized = text.replace("\r\n", "\n").strip()
    if not normalized:
        return _EMPTY_PARAGRAPH
    paragraphs = []
    for paragraph in _PARAGRAPH_BREAK.split(normalized):
        escaped = escape_html(paragraph).replace("\n", "<br />")
        paragraphs.append(f'<p style="{_PARAGRAPH_STYLE}">{escaped}</p>')
    return "".join(paragraphs)


def make_message_id(from_address: str) -> str:
    """Return ``<uuid@domain>`` using the sender's domain, or ``local``."""
    domain = from_address.rsplit("@", 1)[-1] if "@" in from_address else ""
    return f"<{uuid.uuid4()}@{domain or 'local'}>"


def parse_recipients(
    to: Iterable[str], cc: Iterable[str] = (), bcc: Iterable[str] = ()
) -> list[Recipient]:
    """Parse every entry into recipients; unparseable entries are dropped."""
    recipients: list[Recipient] = []
    for kind, entries in (
        (RecipientKind.TO, to),
        (RecipientKind.CC, cc),
        (RecipientKind.BCC, bcc),
    ):
        for name, address in getaddresses([entry for entry in entries if entry]):
            address = address.strip()
            if not address or "@" not in address:
                continue
            recipients.append(
                Recipient(address=address, name=name.strip() or None, kind=kind)
            )
    return recipients


def format_sender(address: str, name: str | None) -> str:
    """Render the From header value."""
    display_name = (name or "").strip()
    if not display_name:
        return address
    username, _, domain = address.partition("@")
    return str(Address(display_name=display_name, username=username, domain=domain))


# pylint: disable=too-many-arguments
def build_message(
    *,
    sender: str,
    recipients: Sequence[Recipient],
    subject: str,
    text: str,
    html_body: str,
    message_id: str,
    sent_at: datetime,
    attachments: Sequence[OutgoingAttachment] = (),
    headers: Mapping[str, str] | None = None,
) -> EmailMessage:
    """Compose a multipart message with text and HTML alternatives.

    Address headers list only the parsed ``recipients``, grouped by kind.
    """
    message = EmailMessage()
    message["From"] = sender
    for header, kind in (
        ("To", RecipientKind.TO),
        ("Cc", RecipientKind.CC),
        ("Bcc", RecipientKind.BCC),
    ):
        values = [
            format_sender(item.address, item.name)
            for item in recipients
            if item.kind is kind
        ]
        if values:
            message[header] = ", ".join(values)
    message["Subject"] = subject
    message["Message-ID"] = message_id
    message["Date"] = format_datetime(sent_at)
    for name, value in (headers or {}).items():
        message[name] = value

    message.set_content(text or "")
    message.add_alternative(html_body, subtype="html")
    for attachment in attachments:
        content_type = attachment.content_type or DEFAULT_ATTACHMENT_TYPE
        maintype, _, subtype = content_type.partition("/")
        message.add_attachment(
            attachment.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return message


__all__ = [
    "AUTOMATED_REPLY_HEADERS",
    "build_message",
    "escape_html",
    "format_sender",
    "make_message_id",
    "parse_recipients",
    "plain_text_to_html",
    "wrap_email_html",
]
