"""
Callback link extraction and allow-listing.

Email bodies are untrusted input. Only a link with the exact shape of a
passwordless callback for the shared recipient is ever handed to the
login flow:

    https://<allowed host>/passwordless/callback?email=<encoded recipient>&token=<64 hex>
"""

import logging
import re
from html.parser import HTMLParser
from typing import Iterable
from urllib.parse import quote, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

PLAIN_URL_PATTERN = re.compile(r"(https?://[^\s<>\"']+)", re.IGNORECASE)

CALLBACK_PATH = "/passwordless/callback"
TOKEN_PATTERN = r"[a-f0-9]{64}"

DEFAULT_PORTS = {"http": 80, "https": 443}


class _AnchorCollector(HTMLParser):
    """Collects href attributes of anchor tags."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.hrefs: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag != "a":
            return
        for name, value in attrs:
            if name == "href" and value:
                self.hrefs.append(value.strip())


def anchor_links(body: str) -> list[str]:
    """Return the href of every anchor in an HTML body."""
    collector = _AnchorCollector()
    collector.feed(body)
    collector.close()
    return collector.hrefs


def extract_links(body: str) -> list[str]:
    """
    Collect candidate links from a message body.

    Anchor hrefs come first, followed by bare URLs found in the raw
    text; duplicates are dropped keeping the first occurrence.
    """
    if not body:
        return []

    candidates = anchor_links(body) + PLAIN_URL_PATTERN.findall(body)
    return list(dict.fromkeys(candidates))


def _remove_dot_segments(path: str) -> str:
    """Resolve "." and ".." segments of an absolute path."""
    segments = path.split("/")[1:]
    output: list[str] = []
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        lowered = segment.lower()
        if lowered in (".", "%2e"):
            if last:
                output.append("")
        elif lowered in ("..", ".%2e", "%2e.", "%2e%2e"):
            if output:
                output.pop()
            if last:
                output.append("")
        else:
            output.append(segment)
    return "/" + "/".join(output)


def normalize_url(link: str) -> str:
    """
    Normalize an absolute URL for comparison.

    Lowercases the scheme and host and drops a port equal to the scheme
    default. Dot-segments in the path are resolved; an empty path
    becomes "/".

    Raises:
        ValueError: If the link is not an absolute URL or has a bad port.
    """
    parts = urlsplit(link.strip())
    if not parts.scheme or not parts.netloc or not parts.hostname:
        raise ValueError(f"not an absolute URL: {link!r}")

    scheme = parts.scheme.lower()
    # Raises ValueError for a non-numeric or out-of-range port
    port = parts.port

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    userinfo = parts.netloc.rpartition("@")[0]
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    path = parts.path or "/"
    if path.startswith("/"):
        path = _remove_dot_segments(path)

    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def encode_recipient(recipient: str) -> str:
    """URL-encode an address the way browsers encode a query component."""
    return quote(recipient, safe="!*'()")


class CallbackLinkFilter:
    """Allow-list for passwordless callback links sent to one recipient."""

    def __init__(self, recipient: str, hosts: Iterable[str]) -> None:
        """
        Initialize the filter.

        Args:
            recipient: Mailbox address the callback must be issued for.
            hosts: Hostnames the callback may point at.
        """
        self.recipient = recipient
        self.hosts = tuple(h.lower() for h in hosts)
        if not self.hosts:
            raise ValueError("at least one callback host is required")

        host_pattern = "|".join(re.escape(h) for h in self.hosts)
        self.pattern = re.compile(
            rf"^https://(?:{host_pattern}){re.escape(CALLBACK_PATH)}"
            rf"\?email={re.escape(encode_recipient(recipient))}"
            rf"&token={TOKEN_PATTERN}$"
        )

    def is_allowed(self, link: str) -> bool:
        """
        Check one link against the allow-list.

        Malformed links are logged and rejected.
        """
        try:
            normalized = normalize_url(link)
        except ValueError as e:
            logger.info("Invalid URL in email: %s", e)
            return False
        return self.pattern.fullmatch(normalized) is not None

    def allowed(self, links: Iterable[str]) -> list[str]:
        """Return the normalized links that pass, each once, in order."""
        result: list[str] = []
        for link in links:
            if not self.is_allowed(link):
                continue
            normalized = normalize_url(link)
            if normalized not in result:
                result.append(normalized)
        return result

    def links_in(self, body: str) -> list[str]:
        """Extract and filter the links in a message body."""
        return self.allowed(extract_links(body))
