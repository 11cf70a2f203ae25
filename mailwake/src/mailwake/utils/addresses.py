"""Mailbox address formatting helpers.

``format_address`` renders IMAP envelope addresses as ``"Name <addr>"`` and
``extract_address`` strips that wrapping again for comparisons.
"""
from __future__ import annotations

from typing import Any, Optional


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def format_address(name: Optional[Any], mailbox: Optional[Any], host: Optional[Any]) -> str:
    """Return ``"Name <mailbox@host>"`` or the bare address when ``name`` is empty.

    ``imapclient`` hands envelope fields over as bytes; both bytes and str are
    accepted. A missing host (group syntax, local recipients) yields the
    mailbox part alone.
    """

    local = _text(mailbox)
    domain = _text(host)
    address = f"{local}@{domain}" if domain else local
    display = _text(name).strip()
    if display:
        return f"{display} <{address}>"
    return address


def extract_address(value: str) -> str:
    """Return the bare address from ``"Name <addr>"``; other input is returned as-is."""

    if len(value) > 1 and value.endswith(">"):
        start = value.rfind("<")
        if start >= 0:
            return value[start + 1 : -1]
    return value
