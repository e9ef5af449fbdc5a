"""Builders for test emails and callback links."""

import email.utils
from datetime import datetime, timezone
from email.message import EmailMessage as MIMEMessage
from typing import Optional

from sharedmailbox.inbox.links import encode_recipient

RECIPIENT = "e2e+hub@example.com"
OTHER_RECIPIENT = "someone.else@example.com"
HOST = "id.dev.trade-tariff.service.gov.uk"
HOSTS = [HOST, "id.staging.trade-tariff.service.gov.uk"]


def make_token(seed: int = 0) -> str:
    """Return a deterministic 64-character lowercase hex token."""
    return f"{seed:064x}"


def callback_url(
    recipient: str = RECIPIENT,
    host: str = HOST,
    token: Optional[str] = None,
    scheme: str = "https",
) -> str:
    token = token if token is not None else make_token(1)
    return (
        f"{scheme}://{host}/passwordless/callback"
        f"?email={encode_recipient(recipient)}&token={token}"
    )


def build_raw_email(
    to: str = RECIPIENT,
    html: Optional[str] = None,
    text: Optional[str] = None,
    subject: str = "Sign in to your account",
    sender: str = "noreply@trade-tariff.service.gov.uk",
    date: Optional[datetime] = None,
) -> bytes:
    """Build a raw MIME message as the mail service would store it."""
    msg = MIMEMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg["Date"] = email.utils.format_datetime(date or datetime.now(timezone.utc))

    if text is not None:
        msg.set_content(text)
    if html is not None:
        if text is not None:
            msg.add_alternative(html, subtype="html")
        else:
            msg.set_content(html, subtype="html")
    if text is None and html is None:
        msg.set_content("")

    return msg.as_bytes()


def login_email(
    to: str = RECIPIENT,
    link: Optional[str] = None,
    date: Optional[datetime] = None,
) -> bytes:
    """Build a passwordless login email carrying one callback anchor."""
    link = link or callback_url(recipient=to)
    return build_raw_email(
        to=to,
        html=f'<p>Click <a href="{link}">here</a> to sign in.</p>',
        date=date,
    )
