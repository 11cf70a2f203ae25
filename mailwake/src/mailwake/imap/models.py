"""Value types exchanged with the IMAP client.

What:
  Define the envelope, message, and folder records returned by
  :class:`~mailwake.imap.client.AccountClient` plus the option records that
  parameterise listing, searching, flagging, and moving.

Why:
  Callers own these values after a call returns; immutable envelopes make it
  safe to hand the same batch to the watermark logic and the formatter.

How:
  Plain dataclasses. :class:`Envelope` is frozen; :class:`Message` composes an
  envelope with header and body fields and forwards the envelope attributes.

Interfaces:
  :class:`Envelope`, :class:`Message`, :class:`Folder`, :class:`ListOptions`,
  :class:`SearchOptions`, :class:`MarkAction`, :class:`MoveOptions`,
  :data:`DEFAULT_FOLDER`, :data:`DEFAULT_LIMIT`, :data:`VALID_FLAGS`,
  :func:`imap_flag`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional, Tuple


DEFAULT_FOLDER = "INBOX"
DEFAULT_LIMIT = 20

VALID_FLAGS: Dict[str, str] = {
    "seen": "\\Seen",
    "flagged": "\\Flagged",
    "answered": "\\Answered",
}
"""User-facing flag names mapped to IMAP system flags."""


def imap_flag(name: str) -> Optional[str]:
    """Return the IMAP flag for ``name`` or ``None`` when it is not accepted."""

    return VALID_FLAGS.get(name)


@dataclass(frozen=True)
class Envelope:
    """Summary metadata of one message, suitable for listings.

    Attributes:
      uid: IMAP UID within the folder.
      date: ``Date`` header, ``None`` when the server could not parse it.
      sender: First ``From`` address formatted as ``"Name <addr>"``.
      to: Recipients in header order.
      subject: Decoded subject line.
      flags: Server flag tokens such as ``\\Seen``.
      size: ``RFC822.SIZE`` in bytes.
    """

    uid: int
    date: Optional[datetime] = None
    sender: str = ""
    to: Tuple[str, ...] = ()
    subject: str = ""
    flags: FrozenSet[str] = frozenset()
    size: int = 0


@dataclass
class Message:
    """A fully fetched message with bounded bodies."""

    envelope: Envelope
    message_id: str = ""
    in_reply_to: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    reply_to: str = ""
    text_body: str = ""
    html_body: str = ""

    @property
    def uid(self) -> int:
        return self.envelope.uid

    @property
    def date(self) -> Optional[datetime]:
        return self.envelope.date

    @property
    def sender(self) -> str:
        return self.envelope.sender

    @property
    def to(self) -> Tuple[str, ...]:
        return self.envelope.to

    @property
    def subject(self) -> str:
        return self.envelope.subject

    @property
    def flags(self) -> FrozenSet[str]:
        return self.envelope.flags

    @property
    def size(self) -> int:
        return self.envelope.size


@dataclass(frozen=True)
class Folder:
    """Mailbox with its attributes and counters; non-selectable folders report zeros."""

    name: str
    attributes: FrozenSet[str] = frozenset()
    messages: int = 0
    unseen: int = 0

    @property
    def selectable(self) -> bool:
        return not any(attr.lower() == "\\noselect" for attr in self.attributes)


@dataclass
class ListOptions:
    """Parameters of :meth:`AccountClient.list_messages`.

    ``since_uid > 0`` returns every UID strictly above it and ignores
    ``limit``; ``since_uid == 0`` returns the ``limit`` highest UIDs.
    """

    folder: str = DEFAULT_FOLDER
    limit: int = DEFAULT_LIMIT
    unseen_only: bool = False
    since_uid: int = 0


@dataclass
class SearchOptions:
    """Parameters of :meth:`AccountClient.search_messages`."""

    folder: str = DEFAULT_FOLDER
    query: str = ""
    sender: str = ""
    since: Optional[date] = None
    before: Optional[date] = None
    limit: int = DEFAULT_LIMIT


@dataclass
class MarkAction:
    """Flag change applied to ``uids``: ``flag`` is ``seen``, ``flagged``, or ``answered``."""

    uids: List[int]
    flag: str
    add: bool = True
    folder: str = DEFAULT_FOLDER


@dataclass
class MoveOptions:
    """Relocate ``uids`` from ``folder`` to ``destination``."""

    uids: List[int]
    destination: str
    folder: str = DEFAULT_FOLDER
