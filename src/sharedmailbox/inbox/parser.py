"""
Raw email parser for the shared inbox.

Inbound mail lands in the bucket as raw MIME. This module turns one
stored blob into an ``EmailMessage`` with decoded headers and a rendered
body (HTML preferred, plain text converted to HTML as a fallback).
"""

import email
import email.header
import email.utils
import html
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.message import Message
from typing import Iterable, Optional

from ..common.exceptions import MessageParseError

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r'(https?://[^\s<>"{}|\\^`\[\]]+)', re.IGNORECASE)


@dataclass(frozen=True)
class EmailMessage:
    """A parsed message from the shared inbox."""

    from_address: str
    to: str
    send_date: datetime
    subject: str
    body: str
    storage_key: str
    allowed_links: tuple[str, ...] = field(default_factory=tuple)

    @property
    def callback_link(self) -> Optional[str]:
        """First allow-listed link, if any."""
        return self.allowed_links[0] if self.allowed_links else None

    def with_links(self, links: Iterable[str]) -> "EmailMessage":
        """Return a copy carrying the given allow-listed links."""
        return replace(self, allowed_links=tuple(links))

    def is_addressed_to(self, recipient: str) -> bool:
        """Case-insensitive check that ``recipient`` appears in the To header."""
        return recipient.lower() in self.to.lower()


def plain_text_to_html(text: str) -> str:
    """Convert plain text to simple HTML, linkifying URLs.

    Args:
        text: Plain text content.

    Returns:
        HTML-formatted text.
    """
    if not text:
        return ""

    text = html.escape(text)
    text = URL_PATTERN.sub(r'<a href="\1">\1</a>', text)
    text = text.replace("\n", "<br/>\n")
    return f"<p>{text}</p>"


class EmailParser:
    """
    Parser for raw MIME messages stored in the inbox bucket.

    Handles multipart messages and the usual transfer encodings
    (quoted-printable, base64) through the standard library.
    """

    def parse(self, raw_message: bytes | str, key: str = "") -> EmailMessage:
        """
        Parse a raw email message.

        Args:
            raw_message: The raw email message as bytes or string.
            key: Storage key the message was read from.

        Returns:
            EmailMessage with decoded headers and rendered body.

        Raises:
            MessageParseError: If the content is not a usable message.
        """
        if isinstance(raw_message, str):
            raw_bytes = raw_message.encode("utf-8", errors="replace")
        else:
            raw_bytes = raw_message

        if not raw_bytes.strip():
            raise MessageParseError(key, "empty message")

        try:
            msg = email.message_from_bytes(raw_bytes)
        except Exception as e:
            raise MessageParseError(key, str(e)) from e

        if not msg.keys():
            raise MessageParseError(key, "no headers found")

        try:
            body_html, body_text = self._extract_bodies(msg)
            parsed = EmailMessage(
                from_address=self._decode_header(msg.get("From", "")) or "Unknown",
                to=self._decode_header(msg.get("To", "")) or "Unknown",
                send_date=self._parse_date(msg.get("Date", "")),
                subject=self._decode_header(msg.get("Subject", "")) or "No Subject",
                body=body_html or plain_text_to_html(body_text) or "",
                storage_key=key,
            )
        except Exception as e:
            raise MessageParseError(key, str(e)) from e

        logger.debug(
            "Parsed email: key=%s, from=%s, to=%s, subject=%s",
            key,
            parsed.from_address,
            parsed.to,
            parsed.subject,
        )
        return parsed

    def _extract_bodies(self, msg: Message) -> tuple[str, str]:
        """Return the first HTML and first plain-text body parts."""
        body_html = ""
        body_text = ""

        for part in msg.walk():
            if part.is_multipart():
                continue
            if part.get_content_disposition() == "attachment":
                continue

            content_type = part.get_content_type()
            if content_type == "text/html" and not body_html:
                body_html = self._get_payload_decoded(part)
            elif content_type == "text/plain" and not body_text:
                body_text = self._get_payload_decoded(part)

        return body_html, body_text

    def _get_payload_decoded(self, part: Message) -> str:
        """Get decoded text payload from message part."""
        payload = part.get_payload(decode=True)
        if payload is None:
            return ""

        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except (LookupError, UnicodeDecodeError):
            return payload.decode("utf-8", errors="replace")

    def _decode_header(self, header_value: str) -> str:
        """Decode an email header value, handling encoded words."""
        if not header_value:
            return ""

        try:
            decoded_parts = email.header.decode_header(str(header_value))
        except Exception as e:
            logger.warning("Failed to decode header: %s", e)
            return str(header_value).strip()

        result_parts = []
        for content, charset in decoded_parts:
            if isinstance(content, bytes):
                try:
                    result_parts.append(content.decode(charset or "utf-8", errors="replace"))
                except (LookupError, UnicodeDecodeError):
                    result_parts.append(content.decode("utf-8", errors="replace"))
            else:
                result_parts.append(content)

        return "".join(result_parts).strip()

    def _parse_date(self, date_string: str) -> datetime:
        """Parse the Date header; missing or unparseable dates mean now."""
        if date_string:
            try:
                parsed = email.utils.parsedate_to_datetime(str(date_string))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
            except (ValueError, TypeError):
                logger.warning("Failed to parse date: %s", date_string)

        return datetime.now(timezone.utc)
