"""FastAPI application exposing the messaging service as a JSON API."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from fastapi import FastAPI, Request, status as http_status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field, field_validator
from starlette.responses import Response

from inbox_relay.core import AppSettings, load_app_settings
from inbox_relay.core.datetime_utils import serialize_datetime
from inbox_relay.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectivityError,
    MessagingError,
    NotFoundError,
    RecipientError,
)
from inbox_relay.core.models import (
    AttachmentInfo,
    AutoMovedSummary,
    ComposeRequest,
    Mailbox,
    MessageDetail,
    MessageSummary,
    OutgoingAttachment,
    Participant,
    SentAppendResult,
    TrackingDetail,
    TrackingStats,
    Uid,
)
from inbox_relay.service import MessagingService

LOGGER = logging.getLogger(__name__)

TRACKING_PIXEL = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
_NO_STORE_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0"}

# Most specific classes first.
_ERROR_STATUS: tuple[tuple[type[MessagingError], int], ...] = (
    (RecipientError, http_status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, http_status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, http_status.HTTP_404_NOT_FOUND),
    (ConfigurationError, http_status.HTTP_409_CONFLICT),
    (ConnectivityError, http_status.HTTP_503_SERVICE_UNAVAILABLE),
)


class AttachmentPayload(BaseModel):
    """Attachment supplied with an outbound message."""

    filename: str
    content_base64: str = Field(alias="contentBase64")
    content_type: str | None = Field(default=None, alias="contentType")

    model_config = {"populate_by_name": True}

    @field_validator("content_base64")
    @classmethod
    def _check_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("contentBase64 is not valid base64") from exc
        return value


class SendMessagePayload(BaseModel):
    """Outbound message request body."""

    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = ""
    text: str = ""
    html: str = ""
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class MovePayload(BaseModel):
    """Destination of a move request."""

    target: Mailbox


def status_for_error(error: MessagingError) -> int:
    """Map an error category onto an HTTP status code."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return http_status.HTTP_502_BAD_GATEWAY


def create_app(
    settings: AppSettings | None = None,
    service: MessagingService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if service is None:
        app_settings = settings or load_app_settings()
        service = MessagingService.from_settings(app_settings)
    messaging = service
    app = FastAPI(title="Inbox Relay")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Release service resources on shutdown."""
        messaging.close()
        LOGGER.info("Messaging service closed")

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(
        request: Request, exc: MessagingError
    ) -> JSONResponse:
        status_code = status_for_error(exc)
        LOGGER.warning(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            status_code,
            exc,
        )
        return JSONResponse(
            status_code=status_code,
            content={"error": str(exc), "type": exc.__class__.__name__},
        )

    @app.get("/api/tenants/{tenant}/mailboxes/{mailbox}/messages")
    async def list_messages(
        tenant: str,
        mailbox: Mailbox,
        page: int = 1,
        page_size: int | None = None,
    ) -> dict[str, Any]:
        """Return one page of a mailbox."""
        result = await messaging.fetch_page(tenant, mailbox, page, page_size)
        return {
            "mailbox": result.mailbox.value,
            "page": result.page,
            "pageSize": result.page_size,
            "totalMessages": result.total_messages,
            "hasMore": result.has_more,
            "messages": [_serialize_summary(item) for item in result.messages],
            "autoMoved": [_serialize_auto_moved(item) for item in result.auto_moved],
        }

    @app.get("/api/tenants/{tenant}/mailboxes/{mailbox}/updates")
    async def list_updates(
        tenant: str, mailbox: Mailbox, since_uid: int = 0
    ) -> dict[str, Any]:
        """Return messages newer than ``since_uid``."""
        result = await messaging.fetch_updates(tenant, mailbox, since_uid)
        return {
            "totalMessages": result.total_messages,
            "messages": [_serialize_summary(item) for item in result.messages],
            "autoMoved": [_serialize_auto_moved(item) for item in result.auto_moved],
        }

    @app.get("/api/tenants/{tenant}/mailboxes/{mailbox}/messages/{uid}")
    async def message_detail(tenant: str, mailbox: Mailbox, uid: int) -> dict[str, Any]:
        """Return the full view of one message."""
        detail = await messaging.fetch_detail(tenant, mailbox, Uid(uid))
        return _serialize_detail(detail)

    @app.get(
        "/api/tenants/{tenant}/mailboxes/{mailbox}/messages/{uid}"
        "/attachments/{attachment_id}"
    )
    async def message_attachment(
        tenant: str, mailbox: Mailbox, uid: int, attachment_id: str
    ) -> dict[str, Any]:
        """Return one attachment, base64-encoded."""
        attachment = await messaging.fetch_attachment(
            tenant, mailbox, Uid(uid), attachment_id
        )
        return {
            "filename": attachment.filename,
            "contentType": attachment.content_type,
            "size": len(attachment.content),
            "contentBase64": base64.b64encode(attachment.content).decode("ascii"),
        }

    @app.post("/api/tenants/{tenant}/mailboxes/{mailbox}/messages/{uid}/move")
    async def move_message(
        tenant: str, mailbox: Mailbox, uid: int, payload: MovePayload
    ) -> dict[str, Any]:
        """Move a message to another logical mailbox."""
        await messaging.move_message(tenant, mailbox, Uid(uid), payload.target)
        return {"success": True, "target": payload.target.value}

    @app.post("/api/tenants/{tenant}/messages")
    async def send_message(tenant: str, payload: SendMessagePayload) -> dict[str, Any]:
        """Deliver a message and report where it was filed."""
        result = await messaging.send_message(tenant, _to_compose_request(payload))
        return _serialize_receipt(result)

    @app.get("/api/tracking/open/{token}.png")
    async def tracking_open(token: str, request: Request) -> Response:
        """Record an open and always answer with the pixel."""
        try:
            await messaging.record_open(token, request.headers.get("user-agent"))
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Unable to record open for %s: %s", token, exc)
        return Response(
            content=TRACKING_PIXEL, media_type="image/png", headers=_NO_STORE_HEADERS
        )

    @app.get("/api/tracking/click/{token}")
    async def tracking_click(token: str, request: Request) -> Response:
        """Record a click and redirect to the original link."""
        url = await messaging.record_click(token, request.headers.get("user-agent"))
        if url is None:
            return JSONResponse(
                status_code=http_status.HTTP_404_NOT_FOUND,
                content={"error": "Link not found"},
            )
        return RedirectResponse(
            url, status_code=http_status.HTTP_302_FOUND, headers=_NO_STORE_HEADERS
        )

    return app


def _to_compose_request(payload: SendMessagePayload) -> ComposeRequest:
    attachments = []
    for item in payload.attachments:
        attachments.append(
            OutgoingAttachment(
                filename=item.filename,
                content=base64.b64decode(item.content_base64),
                content_type=item.content_type,
            )
        )
    return ComposeRequest(
        to=tuple(payload.to),
        cc=tuple(payload.cc),
        bcc=tuple(payload.bcc),
        subject=payload.subject,
        text=payload.text,
        html=payload.html,
        attachments=tuple(attachments),
    )


def _serialize_tracking(stats: TrackingStats | None) -> dict[str, Any] | None:
    if stats is None:
        return None
    return {
        "enabled": stats.enabled,
        "totalOpens": stats.total_opens,
        "totalClicks": stats.total_clicks,
    }


def _serialize_summary(summary: MessageSummary) -> dict[str, Any]:
    return {
        "uid": summary.uid,
        "messageId": summary.message_id,
        "subject": summary.subject,
        "from": summary.sender,
        "to": list(summary.to),
        "date": serialize_datetime(summary.date),
        "seen": summary.seen,
        "hasAttachments": summary.has_attachments,
        "tracking": _serialize_tracking(summary.tracking),
    }


def _serialize_auto_moved(item: AutoMovedSummary) -> dict[str, Any]:
    return {
        "uid": item.uid,
        "subject": item.subject,
        "from": item.sender,
        "score": item.score,
        "target": item.target.value,
    }


def _serialize_participant(participant: Participant | None) -> dict[str, Any] | None:
    if participant is None:
        return None
    return {"name": participant.name, "address": participant.address}


def _serialize_attachment(attachment: AttachmentInfo) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "filename": attachment.filename,
        "contentType": attachment.content_type,
        "size": attachment.size,
    }


def _serialize_tracking_detail(detail: TrackingDetail | None) -> dict[str, Any] | None:
    if detail is None:
        return None
    return {
        "messageId": detail.message_id,
        "trackingEnabled": detail.tracking_enabled,
        "sentAt": serialize_datetime(detail.sent_at),
        "subject": detail.subject,
        "totalOpens": detail.total_opens,
        "totalClicks": detail.total_clicks,
        "recipients": [
            {
                "address": recipient.address,
                "name": recipient.name,
                "type": recipient.kind.value,
                "openCount": recipient.open_count,
                "firstOpenedAt": serialize_datetime(recipient.first_opened_at),
                "lastOpenedAt": serialize_datetime(recipient.last_opened_at),
                "clickCount": recipient.click_count,
                "lastClickedAt": serialize_datetime(recipient.last_clicked_at),
            }
            for recipient in detail.recipients
        ],
        "links": [
            {"url": link.url, "position": link.position, "totalClicks": link.total_clicks}
            for link in detail.links
        ],
    }


def _serialize_detail(detail: MessageDetail) -> dict[str, Any]:
    return {
        "mailbox": detail.mailbox.value,
        "uid": detail.uid,
        "messageId": detail.message_id,
        "subject": detail.subject,
        "from": detail.sender,
        "to": list(detail.to),
        "cc": list(detail.cc),
        "bcc": list(detail.bcc),
        "replyTo": list(detail.reply_to),
        "date": serialize_datetime(detail.date),
        "seen": detail.seen,
        "html": detail.html,
        "text": detail.text,
        "attachments": [_serialize_attachment(item) for item in detail.attachments],
        "fromAddress": _serialize_participant(detail.from_address),
        "toAddresses": [_serialize_participant(item) for item in detail.to_addresses],
        "ccAddresses": [_serialize_participant(item) for item in detail.cc_addresses],
        "bccAddresses": [_serialize_participant(item) for item in detail.bcc_addresses],
        "replyToAddresses": [
            _serialize_participant(item) for item in detail.reply_to_addresses
        ],
        "tracking": _serialize_tracking_detail(detail.tracking),
    }


def _serialize_receipt(result: SentAppendResult) -> dict[str, Any]:
    message = result.message
    payload: dict[str, Any] = {
        "message": _serialize_summary(message) if message is not None else None,
        "totalMessages": result.total_messages,
    }
    reason = getattr(result, "reason", None)
    if reason:
        payload["degradedReason"] = reason
    return payload


__all__ = ["create_app", "status_for_error"]
