"""Plain-text body extraction for fact-check replies."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from email.message import Message as RFC822Message

from bs4 import BeautifulSoup


def extract_body(message: RFC822Message) -> str:
    """Return the reply text of ``message``.

    ``text/plain`` parts win over ``text/html``; HTML-only replies are
    reduced to their visible text. Attachments are skipped.
    """

    plain_parts: list[str] = []
    html_parts: list[str] = []
    for part in _iter_body_parts(message):
        payload = part.get_payload(decode=True)
        if payload is None or not isinstance(payload, (bytes, bytearray)):
            continue
        decoded = _decode_bytes(bytes(payload), part.get_content_charset())
        content_type = part.get_content_type().lower()
        if content_type == "text/plain":
            plain_parts.append(decoded)
        elif content_type == "text/html":
            html_parts.append(html_to_text(decoded))

    source = plain_parts or html_parts
    return "\n".join(text.strip("\r\n") for text in source if text.strip()).strip()


def html_to_text(html: str) -> str:
    """Return the visible text of an HTML fragment, one block per line."""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def _iter_body_parts(message: RFC822Message) -> Iterable[RFC822Message]:
    for part in message.walk():
        if part.is_multipart():
            continue
        disposition = (part.get_content_disposition() or "").lower()
        if disposition == "attachment":
            continue
        yield part


def _decode_bytes(data: bytes, charset: str | None) -> str:
    candidates: Sequence[str] = []
    if charset:
        candidates = [charset]
    candidates = list(candidates) + ["utf-8", "latin-1"]
    for encoding in candidates:
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            continue
    return data.decode("utf-8", errors="ignore")


__all__ = ["extract_body", "html_to_text"]
