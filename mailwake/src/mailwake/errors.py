"""Exception hierarchy shared by the mailwake components.

What:
  Define one exception type per failure kind the ingestion core can surface:
  configuration, storage, transport, protocol, not-found, invalid-argument,
  and cancellation.

Why:
  The poller contains per-account failures while treating storage failures as
  fatal for a cycle. Distinct types let it make that distinction with plain
  ``except`` clauses instead of string matching.

How:
  Every error derives from :class:`MailWakeError`. Types that have a natural
  builtin counterpart also inherit from it (``ValueError``, ``LookupError``)
  so generic callers keep working.

Interfaces:
  :class:`MailWakeError`, :class:`ConfigurationError`, :class:`StorageError`,
  :class:`TransportError`, :class:`ProtocolError`, :class:`NotFoundError`,
  :class:`InvalidArgumentError`, :class:`CancelledError`,
  :class:`MimeParseError`.
"""
from __future__ import annotations


class MailWakeError(Exception):
    """Base class for all mailwake failures."""


class ConfigurationError(MailWakeError, ValueError):
    """Raised when the account configuration is malformed or unreadable."""


class StorageError(MailWakeError):
    """Raised when the operational-state database cannot be used.

    What:
      Signals open, write, or scan failures of the backing SQLite file.

    Why:
      Watermarks cannot be trusted without durable state, so the poller aborts
      the current cycle instead of continuing with the next account.
    """


class TransportError(MailWakeError):
    """Raised on dial, TLS, or socket failures talking to an IMAP server.

    The client marks its connection stale when this is raised so that the
    next call redials from scratch.
    """


class ProtocolError(TransportError):
    """Raised when the IMAP server rejects a command or answers unexpectedly."""


class NotFoundError(MailWakeError, LookupError):
    """Raised when a UID or account name does not exist."""


class InvalidArgumentError(MailWakeError, ValueError):
    """Raised synchronously for empty UID lists, unknown flags, or missing folders."""


class CancelledError(MailWakeError):
    """Raised when the caller's :class:`~mailwake.context.CallContext` fires."""


class MimeParseError(MailWakeError):
    """Raised by the MIME extractor when no message structure can be read at all."""
