"""Translate listing and search options into IMAP ``UID SEARCH`` criteria.

What:
  Provide deterministic mappings from :class:`ListOptions` and
  :class:`SearchOptions` to the criteria lists consumed by
  ``imapclient.IMAPClient.search``, plus the windowing helper that picks the
  UIDs to fetch.

Why:
  IMAP search syntax is positional and picky about argument formats. Keeping
  the translation in one place lets the criteria be unit tested without a
  server and keeps free text out of raw command strings.

How:
  Build flat criteria lists (``["UNSEEN", "UID", "101:*"]``). ``imapclient``
  quotes string values itself and renders ``date`` objects in IMAP format.

Interfaces:
  :func:`list_criteria`, :func:`search_criteria`, :func:`select_window`.

Invariants & Safety:
  - An empty criteria set becomes ``["ALL"]``.
  - ``select_window`` never trusts the server's ordering: UIDs are sorted and,
    when a ``since_uid`` bound is given, filtered to values strictly above it.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List

from .models import DEFAULT_LIMIT, ListOptions, SearchOptions


def _as_date(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def list_criteria(options: ListOptions) -> List[object]:
    """Return ``UID SEARCH`` criteria for a listing.

    ``since_uid`` becomes the open range ``since_uid+1:*``; ``unseen_only``
    adds ``UNSEEN`` (absence of ``\\Seen``).
    """

    criteria: List[object] = []
    if options.unseen_only:
        criteria.append("UNSEEN")
    if options.since_uid > 0:
        criteria.extend(["UID", f"{options.since_uid + 1}:*"])
    return criteria or ["ALL"]


def search_criteria(options: SearchOptions) -> List[object]:
    """Return ``UID SEARCH`` criteria for free text, sender, and date bounds."""

    criteria: List[object] = []
    if options.query:
        criteria.extend(["TEXT", options.query])
    if options.sender:
        criteria.extend(["HEADER", "From", options.sender])
    if options.since is not None:
        criteria.extend(["SINCE", _as_date(options.since)])
    if options.before is not None:
        criteria.extend(["BEFORE", _as_date(options.before)])
    return criteria or ["ALL"]


def select_window(uids: Iterable[int], *, limit: int = DEFAULT_LIMIT, since_uid: int = 0) -> List[int]:
    """Choose which UIDs to fetch, ascending.

    With ``since_uid > 0`` every UID above it is kept and ``limit`` is
    ignored: a ``N:*`` range always matches the highest UID even when that
    UID is below ``N``, so the bound is re-applied here. Otherwise the
    ``limit`` highest UIDs are kept (``limit <= 0`` means the default).
    """

    ordered = sorted({int(uid) for uid in uids})
    if since_uid > 0:
        return [uid for uid in ordered if uid > since_uid]
    if limit <= 0:
        limit = DEFAULT_LIMIT
    return ordered[-limit:]
