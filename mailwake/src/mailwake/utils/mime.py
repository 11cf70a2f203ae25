"""MIME body extraction tuned for agent triage of inbound mail.

What:
  Turn a raw RFC 5322 payload into the first ``text/plain`` body, the first
  ``text/html`` body, and the ``References`` chain, each bounded in size.

Why:
  Real-world mail nests ``multipart/mixed`` around ``multipart/related``
  around ``multipart/alternative`` and regularly declares charsets nobody has
  heard of. The consumer needs readable text regardless of depth, never the
  contents of an attachment, and never an unbounded body.

How:
  Parse with :class:`email.parser.BytesParser` under the default policy, walk
  only ``multipart/*`` containers depth-first, skip parts whose disposition is
  ``attachment``, and fill each body slot once. Payloads are transfer-decoded
  to bytes, charset-decoded leniently (unknown charsets fall back to UTF-8
  with replacement characters), and truncated on UTF-8 byte length.

Interfaces:
  :class:`ExtractedBody`, :func:`extract_bodies`, :func:`parse_msg_ids`,
  :data:`MAX_BODY_BYTES`, :data:`TRUNCATION_MARKER`.

Invariants & Safety:
  - Unknown charsets are never fatal; the raw bytes are kept, possibly garbled.
  - A body of exactly :data:`MAX_BODY_BYTES` is stored untruncated; one byte
    more is cut to the limit and suffixed with :data:`TRUNCATION_MARKER`.
  - Nested ``message/rfc822`` parts are treated as leaves and never searched.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Iterator, List, Optional

from ..errors import MimeParseError
from .logging import JsonLogger, get_logger


MAX_BODY_BYTES = 32 * 1024
"""Upper bound for each extracted body, measured in UTF-8 bytes."""

TRUNCATION_MARKER = "\n\n[truncated: message exceeds 32KB]"

_MSG_ID = re.compile(r"<([^<>\s]+)>")


@dataclass
class ExtractedBody:
    """Bodies and threading headers recovered from a raw message."""

    text_body: str = ""
    html_body: str = ""
    references: List[str] = field(default_factory=list)


def parse_msg_ids(value: Optional[object]) -> List[str]:
    """Return the message-ids in a ``References``/``In-Reply-To`` value.

    Angle brackets are stripped. Values without any bracketed id are split on
    whitespace so that sloppy senders writing bare ids are still threaded.
    """

    if value is None:
        return []
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    else:
        text = str(value)
    found = _MSG_ID.findall(text)
    if found:
        return found
    return [token for token in text.split() if token]


def extract_bodies(raw: bytes, *, logger: Optional[JsonLogger] = None) -> ExtractedBody:
    """Extract text/html bodies and references from ``raw``.

    What:
      Parses ``raw`` and returns an :class:`ExtractedBody` with the first
      inline ``text/plain`` and ``text/html`` parts and the top-level
      ``References`` ids.

    Why:
      IMAP envelopes do not carry ``References`` reliably and say nothing about
      the body, so both have to come from the raw bytes.

    How:
      Reads the top-level header, then iterates leaf parts from
      :func:`_iter_leaf_parts`, filling each slot at most once and stopping as
      soon as both are filled.

    Args:
      raw: Message bytes as fetched with ``BODY[]``, possibly a prefix of the
        full message when the fetch was bounded.
      logger: Optional logger for charset warnings.

    Returns:
      The populated :class:`ExtractedBody`.

    Raises:
      MimeParseError: If ``raw`` is empty or not bytes.
    """

    log = logger or get_logger("mailwake.mime")
    if not isinstance(raw, (bytes, bytearray)) or not raw:
        raise MimeParseError("empty message payload")
    message = BytesParser(policy=policy.default).parsebytes(bytes(raw))

    result = ExtractedBody()
    result.references = parse_msg_ids(message.get("References"))

    for part in _iter_leaf_parts(message):
        if part.is_attachment():
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and not result.text_body:
            result.text_body = _bounded_text(part, log)
        elif content_type == "text/html" and not result.html_body:
            result.html_body = _bounded_text(part, log)
        if result.text_body and result.html_body:
            break
    return result


def _iter_leaf_parts(part: EmailMessage) -> Iterator[EmailMessage]:
    """Yield non-container parts depth-first, descending only into ``multipart/*``."""

    if part.get_content_maintype() == "multipart" and part.is_multipart():
        for child in part.iter_parts():
            yield from _iter_leaf_parts(child)
        return
    yield part


def _bounded_text(part: EmailMessage, log: JsonLogger) -> str:
    """Decode ``part`` leniently and bound it to :data:`MAX_BODY_BYTES`."""

    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset("utf-8")
    try:
        text = payload.decode(charset, errors="replace")
    except LookupError:
        log.debug("unknown charset, keeping raw bytes", charset=charset)
        text = payload.decode("utf-8", errors="replace")

    encoded = text.encode("utf-8")
    if len(encoded) > MAX_BODY_BYTES:
        text = encoded[:MAX_BODY_BYTES].decode("utf-8", errors="ignore") + TRUNCATION_MARKER
    return text.strip()
