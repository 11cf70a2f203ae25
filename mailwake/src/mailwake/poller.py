"""Watermark-driven detection of newly arrived inbox messages.

What:
  One :meth:`Poller.check_new_messages` call walks every account, compares
  the INBOX UID space with the high-water mark persisted in the operational
  state store, and returns a text summary of messages the consumer has not
  seen yet, or ``""`` when there is nothing new.

Why:
  The upstream agent wakes on that text. It must not be flooded with the
  whole mailbox on first run, must not triage its own outbound replies, and
  must not see the same message twice just because a poll was retried.

How:
  Per account: read the mark under ``email_poll/<account>:INBOX``. Without a
  usable mark, seed it from the highest UID and report nothing. Otherwise list
  every UID above the mark, advance the mark to the batch maximum before
  filtering, drop self-sent envelopes, and format what remains. Accounts run
  sequentially; a failing account is logged and skipped.

Interfaces:
  :class:`Poller`, :func:`format_poll_section`, :func:`parse_watermark`,
  :data:`POLL_NAMESPACE`, :data:`POLL_FOLDER`.

Invariants & Safety:
  - The stored mark never decreases.
  - The seed cycle never reports messages; an empty mailbox writes no mark.
  - Storage failures abort the whole cycle because the mark cannot be
    trusted without durable state. Every other per-account failure,
    including unexpected exceptions from odd server replies, is contained.
  - A cancelled context stops the cycle before the next mark is written.
"""
from __future__ import annotations

import re
from typing import List, Optional, Sequence

from .context import CallContext, ensure_context
from .errors import CancelledError, MailWakeError, StorageError
from .imap.manager import AccountManager
from .imap.models import Envelope, ListOptions
from .opstate import OpStateStore
from .utils.addresses import extract_address
from .utils.logging import JsonLogger, get_logger


POLL_NAMESPACE = "email_poll"
POLL_FOLDER = "INBOX"
POLL_HEADER = "New email detected:\n"

_UINT32_MAX = 2**32 - 1
_DECIMAL = re.compile(r"(0|[1-9][0-9]*)")


def watermark_key(account: str, folder: str = POLL_FOLDER) -> str:
    return f"{account}:{folder}"


def parse_watermark(value: str) -> Optional[int]:
    """Return the UID encoded in ``value`` or ``None`` when it is not a plain uint32.

    Only canonical decimal is accepted: no sign, whitespace, or leading zeros.
    """

    if not _DECIMAL.fullmatch(value):
        return None
    number = int(value)
    if number > _UINT32_MAX:
        return None
    return number


def format_poll_section(account: str, envelopes: Sequence[Envelope], folder: str = POLL_FOLDER) -> str:
    """Render the per-account block delivered to the consumer."""

    lines = [f"Account: {account} ({folder})\n"]
    for envelope in envelopes:
        date = envelope.date.strftime("%Y-%m-%d %H:%M") if envelope.date else ""
        lines.append(f"  From: {envelope.sender}\n")
        lines.append(f"  Subject: {envelope.subject}\n")
        lines.append(f"  Date: {date}\n")
        lines.append("\n")
    return "".join(lines)


def filter_self_sent(envelopes: Sequence[Envelope], default_from: str) -> List[Envelope]:
    """Drop envelopes whose bare sender equals the bare ``default_from``, ignoring case."""

    own = extract_address(default_from).strip().lower()
    if not own:
        return list(envelopes)
    return [env for env in envelopes if extract_address(env.sender).strip().lower() != own]


class Poller:
    """Scheduled driver that turns new INBOX arrivals into one text section.

    The scheduler decides when to call :meth:`check_new_messages`; the poller
    keeps no timer of its own.
    """

    def __init__(
        self,
        manager: AccountManager,
        store: OpStateStore,
        *,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._manager = manager
        self._store = store
        self._log = logger or get_logger("mailwake.poller")

    def check_new_messages(self, ctx: Optional[CallContext] = None) -> str:
        """Poll every account once and return the stitched summary or ``""``.

        Raises:
          StorageError: If the operational state store fails; no further
            accounts are polled in this cycle.
          CancelledError: If ``ctx`` fires; marks written for accounts already
            processed are kept.
        """

        ctx = ensure_context(ctx)
        sections: List[str] = []
        for name in self._manager.account_names():
            ctx.check()
            try:
                section = self._poll_account(name, ctx)
            except (StorageError, CancelledError):
                raise
            except MailWakeError as exc:
                self._log.error("email poll failed", email_account=name, error=str(exc))
                continue
            except Exception as exc:
                self._log.error(
                    "email poll failed unexpectedly",
                    email_account=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            if section:
                sections.append(section)
        if not sections:
            return ""
        return POLL_HEADER + "".join("\n" + section for section in sections)

    def _poll_account(self, name: str, ctx: CallContext) -> str:
        client = self._manager.account(name)
        key = watermark_key(name)
        stored = self._store.get(POLL_NAMESPACE, key)
        if not stored:
            self._seed(name, key, ctx)
            return ""
        mark = parse_watermark(stored)
        # UIDs start at 1; a zero mark would read as "no lower bound"
        if not mark:
            self._log.warning("corrupt email watermark, reseeding", email_account=name, value=stored)
            self._seed(name, key, ctx)
            return ""

        envelopes = client.list_messages(ListOptions(folder=POLL_FOLDER, since_uid=mark), ctx=ctx)
        if not envelopes:
            return ""
        self._advance(name, key, mark, envelopes)

        default_from = self._manager.account_config(name).default_from
        fresh = filter_self_sent(envelopes, default_from)
        if len(fresh) < len(envelopes):
            self._log.debug("filtered self-sent messages", email_account=name, count=len(envelopes) - len(fresh))
        if not fresh:
            return ""
        self._log.info("new email detected", email_account=name, count=len(fresh))
        return format_poll_section(name, fresh)

    def _seed(self, name: str, key: str, ctx: CallContext) -> None:
        """Record the current highest UID without reporting anything."""

        latest = self._manager.account(name).list_messages(
            ListOptions(folder=POLL_FOLDER, limit=1), ctx=ctx
        )
        if not latest:
            self._log.debug("inbox empty, watermark not seeded", email_account=name)
            return
        ctx.check()
        uid = max(env.uid for env in latest)
        self._store.set(POLL_NAMESPACE, key, str(uid))
        self._log.info("email watermark seeded", email_account=name, uid=uid)

    def _advance(self, name: str, key: str, mark: int, envelopes: Sequence[Envelope]) -> None:
        highest = max(env.uid for env in envelopes)
        if highest <= mark:
            return
        self._store.set(POLL_NAMESPACE, key, str(highest))
        self._log.debug("email watermark advanced", email_account=name, previous=mark, uid=highest)
