"""Gmail message parser: header extraction, MIME tree walking, base64url decoding."""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from mailbox_sync.core.exceptions import ParseError
from mailbox_sync.core.models import MessageBody, MessageHeaders, ParsedMessage

logger = logging.getLogger(__name__)


def decode_body(data: str) -> str:
    """Decode base64url-encoded body data (padding optional)."""
    # Gmail uses base64url encoding (RFC 4648 §5)
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def parse_headers(headers: Iterable[Mapping[str, Any]]) -> MessageHeaders:
    """Collapse name/value header pairs into a MessageHeaders.

    Names match case-insensitively; the last occurrence of a repeated header wins.
    """
    header_map = {str(h.get("name", "")).lower(): str(h.get("value", "")) for h in headers}
    return MessageHeaders(
        sender=header_map.get("from", ""),
        to=header_map.get("to", ""),
        cc=header_map.get("cc", ""),
        bcc=header_map.get("bcc", ""),
        subject=header_map.get("subject", ""),
        date=header_map.get("date", ""),
    )


def _body_data(part: Mapping[str, Any]) -> str | None:
    return (part.get("body") or {}).get("data")


def _walk_parts(parts: Iterable[Mapping[str, Any]]) -> tuple[str, str]:
    """Depth-first walk returning ``(html, text)``.

    The first decodable part of each type wins: a sibling or nested part only
    fills an accumulator that is still empty.
    """
    html = ""
    text = ""
    for part in parts:
        mime_type = part.get("mimeType", "")
        data = _body_data(part)

        if mime_type == "text/html" and data and not html:
            html = decode_body(data)
        elif mime_type == "text/plain" and data and not text:
            text = decode_body(data)

        nested = part.get("parts")
        if nested:
            nested_html, nested_text = _walk_parts(nested)
            html = html or nested_html
            text = text or nested_text

    return html, text


def extract_body(payload: Mapping[str, Any]) -> MessageBody:
    """Extract the HTML and plain-text bodies from a message payload.

    A payload without parts is classified by its ``Content-Type`` header:
    anything mentioning "html" is HTML, the rest is plain text. A payload
    with no decodable body yields two empty strings.
    """
    parts = payload.get("parts")
    if parts:
        html, text = _walk_parts(parts)
        return MessageBody(html=html, text=text)

    data = _body_data(payload)
    if not data:
        return MessageBody()

    is_html = any(
        str(h.get("name", "")).lower() == "content-type" and "html" in str(h.get("value", ""))
        for h in payload.get("headers") or []
    )
    decoded = decode_body(data)
    return MessageBody(html=decoded) if is_html else MessageBody(text=decoded)


def parse_internal_date(value: Any) -> datetime:
    """Convert Gmail's epoch-milliseconds ``internalDate`` to an aware datetime."""
    if value in (None, ""):
        return datetime.fromtimestamp(0, UTC)
    return datetime.fromtimestamp(int(value) / 1000, UTC)


class GmailParser:
    """Parses raw Gmail API message dicts into ParsedMessage objects."""

    def parse(self, raw_message: Mapping[str, Any]) -> ParsedMessage:
        """Parse a raw Gmail API message dict (format=full).

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            payload = raw_message.get("payload") or {}
            label_ids = raw_message.get("labelIds")

            return ParsedMessage(
                message_id=raw_message["id"],
                thread_id=raw_message["threadId"],
                internal_date=parse_internal_date(raw_message.get("internalDate")),
                headers=parse_headers(payload.get("headers") or []),
                body=extract_body(payload),
                label_ids=tuple(label_ids) if label_ids is not None else None,
                snippet=raw_message.get("snippet", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(
                f"Failed to parse message {raw_message.get('id', '?')}: {e}"
            ) from e
