"""Per-account IMAP client with lazy dialing and liveness-checked reconnects.

What:
  Wrap ``imapclient.IMAPClient`` so one account exposes listing, reading,
  searching, flagging, moving, folder enumeration, and APPEND over a single
  connection that is dialed on first use and transparently redialed once when
  it has gone stale.

Why:
  The poller runs for days against servers that drop idle sessions, rotate
  load balancers, and occasionally answer garbage. Callers should see either a
  result or one typed error, never a half-open socket or two interleaved
  commands on the same connection.

How:
  Every public operation takes the per-client mutex (honouring the caller's
  :class:`~mailwake.context.CallContext` deadline), probes the connection with
  ``NOOP``, redials once on failure, selects the folder, and runs. Errors from
  ``imaplib``, ``socket``, and ``ssl`` are wrapped as
  :class:`~mailwake.errors.TransportError` or
  :class:`~mailwake.errors.ProtocolError` and leave the connection stale so the
  next call starts from a fresh dial.

Interfaces:
  :class:`AccountClient` and :data:`MAX_RAW_BYTES`.

Invariants & Safety:
  - All commands run in UID mode; sequence numbers are never used.
  - No two commands interleave on one connection: the mutex is held for the
    whole operation, including the reconnect.
  - Dials are bounded by :data:`DIAL_TIMEOUT` clamped to the caller's deadline.
  - ``read_message`` never holds more than :data:`MAX_RAW_BYTES` of a message.
"""
from __future__ import annotations

import imaplib
import threading
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from imapclient import IMAPClient
from imapclient.imapclient import SocketTimeout

from ..config.schema import AccountConfig
from ..context import CallContext, ensure_context
from ..errors import (
    CancelledError,
    InvalidArgumentError,
    MimeParseError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from ..utils.addresses import format_address
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import extract_bodies, parse_msg_ids
from .models import (
    DEFAULT_FOLDER,
    Envelope,
    Folder,
    ListOptions,
    MarkAction,
    Message,
    MoveOptions,
    SearchOptions,
    imap_flag,
)
from .search import list_criteria, search_criteria, select_window


DIAL_TIMEOUT = 30.0
"""Ceiling in seconds for TCP connect plus TLS handshake."""

READ_TIMEOUT = 60.0

MAX_RAW_BYTES = 5 * 1024 * 1024
"""Largest prefix of a raw message fetched by :meth:`AccountClient.read_message`."""

ENVELOPE_PARTS = ["UID", "ENVELOPE", "FLAGS", "RFC822.SIZE"]

_IMAP_ERRORS = (imaplib.IMAP4.error, OSError)

T = TypeVar("T")


def _wrap_error(action: str, exc: BaseException) -> TransportError:
    """Map library failures onto the transport/protocol split."""

    if isinstance(exc, imaplib.IMAP4.abort) or isinstance(exc, OSError):
        return TransportError(f"{action}: {exc}")
    return ProtocolError(f"{action}: {exc}")


def _decode_header(value: Any) -> str:
    """Decode an RFC 2047 header value delivered as bytes by ``imapclient``."""

    if value is None:
        return ""
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace")
    else:
        text = str(value)
    if "=?" not in text:
        return text
    try:
        return str(make_header(decode_header(text)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return text


def _format_addresses(addresses: Optional[Sequence[Any]]) -> List[str]:
    result: List[str] = []
    for address in addresses or ():
        mailbox = getattr(address, "mailbox", None)
        if not mailbox:
            # group start/end markers carry no mailbox
            continue
        result.append(format_address(_decode_header(address.name), mailbox, address.host))
    return result


def _flag_tokens(flags: Optional[Iterable[Any]]) -> frozenset:
    tokens = set()
    for flag in flags or ():
        tokens.add(flag.decode("ascii", errors="replace") if isinstance(flag, bytes) else str(flag))
    return frozenset(tokens)


class AccountClient:
    """IMAP access for one configured account.

    What:
      Owns at most one ``IMAPClient`` connection and moves between three states:
      ``idle`` (no connection), ``live`` (authenticated), and ``stale`` (the
      last probe or command failed).

    Why:
      Keeping the state machine in one place means the poller, the CLI, and the
      send path all get the same reconnect semantics.

    How:
      :meth:`_run` is the single entry point for network work. It acquires the
      mutex, calls :meth:`_ensure_live`, and translates library errors.
    """

    def __init__(
        self,
        config: AccountConfig,
        *,
        logger: Optional[JsonLogger] = None,
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        self._config = config
        self._log = (logger or get_logger("mailwake.imap")).bind(email_account=config.name)
        self._read_timeout = read_timeout
        self._lock = threading.Lock()
        self._conn: Optional[IMAPClient] = None
        self._state = "idle"

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> AccountConfig:
        return self._config

    @property
    def state(self) -> str:
        """Connection state: ``idle``, ``live``, or ``stale``."""

        return self._state

    # Connection lifecycle ----------------------------------------------
    def _acquire(self, ctx: CallContext) -> None:
        ctx.check()
        remaining = ctx.remaining()
        acquired = self._lock.acquire() if remaining is None else self._lock.acquire(timeout=remaining)
        if not acquired:
            raise CancelledError("operation deadline exceeded waiting for connection")
        try:
            ctx.check()
        except CancelledError:
            self._lock.release()
            raise

    def _dial(self, ctx: CallContext) -> IMAPClient:
        """Open, optionally upgrade, and authenticate a new connection.

        What:
          Connect with implicit TLS or, on plaintext ports, upgrade via
          STARTTLS when the server advertises it, then log in.

        Why:
          A half-authenticated connection is useless; any failure here closes
          what was opened so the client returns to ``idle``.

        How:
          ``SocketTimeout`` bounds the connect phase by :data:`DIAL_TIMEOUT`
          clamped to the caller's deadline and the read phase by the client's
          read timeout.

        Raises:
          TransportError: On network or TLS failures.
          ProtocolError: When the server rejects STARTTLS or the login.
        """

        imap = self._config.imap
        timeout = SocketTimeout(connect=ctx.clamp(DIAL_TIMEOUT), read=self._read_timeout)
        self._log.debug("dialing imap server", host=imap.host, port=imap.port, tls=imap.tls)
        try:
            conn = IMAPClient(imap.host, port=imap.port, ssl=bool(imap.tls), timeout=timeout)
        except _IMAP_ERRORS as exc:
            raise _wrap_error(f"dial {imap.host}:{imap.port}", exc) from exc
        try:
            if not imap.tls and conn.has_capability("STARTTLS"):
                conn.starttls()
            conn.login(imap.username, imap.password)
        except _IMAP_ERRORS as exc:
            self._discard(conn)
            raise _wrap_error(f"login {imap.username}@{imap.host}", exc) from exc
        self._log.info("imap connection established", host=imap.host)
        return conn

    def _discard(self, conn: Optional[IMAPClient]) -> None:
        """Best-effort logout of ``conn``; the socket is gone either way."""

        if conn is None:
            return
        try:
            conn.logout()
        except _IMAP_ERRORS as exc:
            self._log.debug("logout failed", error=str(exc))

    def _mark_stale(self) -> None:
        conn, self._conn = self._conn, None
        self._state = "stale"
        self._discard(conn)

    def _ensure_live(self, ctx: CallContext) -> IMAPClient:
        """Return a live connection, redialing at most once."""

        if self._conn is not None:
            try:
                self._apply_deadline(self._conn, ctx)
                self._conn.noop()
                return self._conn
            except _IMAP_ERRORS as exc:
                self._log.warning("liveness probe failed, reconnecting", error=str(exc))
                self._mark_stale()
        ctx.check()
        try:
            self._conn = self._dial(ctx)
        except TransportError:
            self._state = "idle"
            raise
        self._state = "live"
        return self._conn

    def _apply_deadline(self, conn: IMAPClient, ctx: CallContext) -> None:
        """Set the read timeout for this call; calls without a deadline get the full one."""

        timeout = self._read_timeout
        if ctx.deadline is not None:
            timeout = max(ctx.clamp(self._read_timeout), 0.001)
        conn.socket().settimeout(timeout)

    def _run(self, action: str, ctx: Optional[CallContext], operation: Callable[[IMAPClient], T]) -> T:
        ctx = ensure_context(ctx)
        self._acquire(ctx)
        try:
            conn = self._ensure_live(ctx)
            ctx.check()
            try:
                self._apply_deadline(conn, ctx)
                return operation(conn)
            except _IMAP_ERRORS as exc:
                self._mark_stale()
                raise _wrap_error(action, exc) from exc
        finally:
            self._lock.release()

    def connect(self, ctx: Optional[CallContext] = None) -> None:
        """Dial eagerly instead of on the first operation."""

        self._run("connect", ctx, lambda conn: None)

    def ping(self, ctx: Optional[CallContext] = None) -> None:
        """Run the liveness probe (and reconnect) for health monitoring."""

        self._run("ping", ctx, lambda conn: None)

    def close(self) -> None:
        """Log out and return to ``idle``; calling it twice is harmless."""

        with self._lock:
            conn, self._conn = self._conn, None
            self._state = "idle"
            self._discard(conn)

    # Fetch helpers -----------------------------------------------------
    def _envelopes(self, conn: IMAPClient, uids: List[int]) -> List[Envelope]:
        """Fetch envelope data for ``uids`` and return it newest-first."""

        if not uids:
            return []
        response = conn.fetch(uids, ENVELOPE_PARTS)
        wanted = set(uids)
        envelopes: List[Envelope] = []
        for key, data in response.items():
            uid = data.get(b"UID")
            if uid is None or int(uid) not in wanted:
                self._log.debug("skipping fetch result without known uid", key=key)
                continue
            envelopes.append(self._build_envelope(int(uid), data))
        envelopes.sort(key=lambda env: env.uid, reverse=True)
        return envelopes

    @staticmethod
    def _build_envelope(uid: int, data: Dict[bytes, Any]) -> Envelope:
        raw = data.get(b"ENVELOPE")
        senders = _format_addresses(getattr(raw, "from_", None))
        return Envelope(
            uid=uid,
            date=getattr(raw, "date", None),
            sender=senders[0] if senders else "",
            to=tuple(_format_addresses(getattr(raw, "to", None))),
            subject=_decode_header(getattr(raw, "subject", None)),
            flags=_flag_tokens(data.get(b"FLAGS")),
            size=int(data.get(b"RFC822.SIZE") or 0),
        )

    # Operations --------------------------------------------------------
    def list_messages(
        self, options: Optional[ListOptions] = None, *, ctx: Optional[CallContext] = None
    ) -> List[Envelope]:
        """Return envelopes of ``options.folder`` in descending UID order.

        With ``since_uid > 0`` every message above that UID is returned and
        ``limit`` is ignored; otherwise the ``limit`` most recent messages.
        """

        options = options or ListOptions()
        folder = options.folder or DEFAULT_FOLDER

        def operation(conn: IMAPClient) -> List[Envelope]:
            conn.select_folder(folder)
            found = conn.search(list_criteria(options))
            uids = select_window(found, limit=options.limit, since_uid=options.since_uid)
            return self._envelopes(conn, uids)

        return self._run(f"list {folder}", ctx, operation)

    def read_message(
        self, uid: int, folder: str = DEFAULT_FOLDER, *, ctx: Optional[CallContext] = None
    ) -> Message:
        """Fetch one message with bounded bodies; marks it ``\\Seen`` on the server.

        The raw bytes are requested with a partial ``BODY[]<0.N>`` fetch so the
        server never sends more than :data:`MAX_RAW_BYTES`. MIME problems are
        logged and yield empty bodies instead of an error.

        Raises:
          NotFoundError: If ``uid`` is not in ``folder``.
        """

        folder = folder or DEFAULT_FOLDER
        body_part = f"BODY[]<0.{MAX_RAW_BYTES}>"

        def operation(conn: IMAPClient) -> Message:
            conn.select_folder(folder)
            response = conn.fetch([uid], ENVELOPE_PARTS + [body_part])
            for data in response.values():
                if data.get(b"UID") is not None and int(data[b"UID"]) == uid:
                    return self._build_message(uid, data)
            raise NotFoundError(f"uid {uid} not found in {folder}")

        return self._run(f"read {folder}/{uid}", ctx, operation)

    def _build_message(self, uid: int, data: Dict[bytes, Any]) -> Message:
        raw_envelope = data.get(b"ENVELOPE")
        message_ids = parse_msg_ids(getattr(raw_envelope, "message_id", None))
        reply_to = _format_addresses(getattr(raw_envelope, "reply_to", None))
        message = Message(
            envelope=self._build_envelope(uid, data),
            message_id=message_ids[0] if message_ids else "",
            in_reply_to=parse_msg_ids(getattr(raw_envelope, "in_reply_to", None)),
            cc=_format_addresses(getattr(raw_envelope, "cc", None)),
            reply_to=reply_to[0] if reply_to else "",
        )
        raw = b""
        for key, value in data.items():
            if isinstance(key, bytes) and key.startswith(b"BODY[") and value:
                raw = bytes(value)[:MAX_RAW_BYTES]
                break
        if not raw:
            self._log.debug("message has no body section", uid=uid)
            return message
        try:
            bodies = extract_bodies(raw, logger=self._log)
        except MimeParseError as exc:
            self._log.warning("mime parse failed", uid=uid, error=str(exc))
            return message
        message.text_body = bodies.text_body
        message.html_body = bodies.html_body
        message.references = bodies.references
        return message

    def search_messages(
        self, options: SearchOptions, *, ctx: Optional[CallContext] = None
    ) -> List[Envelope]:
        """Search by free text, sender, and date window; newest first, at most ``limit``."""

        folder = options.folder or DEFAULT_FOLDER

        def operation(conn: IMAPClient) -> List[Envelope]:
            conn.select_folder(folder, readonly=True)
            found = conn.search(search_criteria(options))
            return self._envelopes(conn, select_window(found, limit=options.limit))

        return self._run(f"search {folder}", ctx, operation)

    def mark_messages(self, action: MarkAction, *, ctx: Optional[CallContext] = None) -> None:
        """Silently add or remove a flag.

        Raises:
          InvalidArgumentError: For an empty UID list or an unknown flag name.
        """

        if not action.uids:
            raise InvalidArgumentError("no message uids given")
        flag = imap_flag(action.flag)
        if flag is None:
            raise InvalidArgumentError(
                f"unknown flag {action.flag!r}; expected seen, flagged or answered"
            )
        folder = action.folder or DEFAULT_FOLDER

        def operation(conn: IMAPClient) -> None:
            conn.select_folder(folder)
            if action.add:
                conn.add_flags(action.uids, [flag], silent=True)
            else:
                conn.remove_flags(action.uids, [flag], silent=True)

        self._run(f"mark {folder}", ctx, operation)

    def move_messages(self, options: MoveOptions, *, ctx: Optional[CallContext] = None) -> None:
        """Move messages with ``UID MOVE`` or copy, flag ``\\Deleted``, and expunge.

        Raises:
          InvalidArgumentError: For an empty UID list or empty destination.
        """

        if not options.uids:
            raise InvalidArgumentError("no message uids given")
        if not options.destination:
            raise InvalidArgumentError("destination folder is required")
        folder = options.folder or DEFAULT_FOLDER

        def operation(conn: IMAPClient) -> None:
            conn.select_folder(folder)
            if conn.has_capability("MOVE"):
                conn.move(options.uids, options.destination)
                return
            conn.copy(options.uids, options.destination)
            conn.delete_messages(options.uids, silent=True)
            conn.expunge()

        self._run(f"move {folder} -> {options.destination}", ctx, operation)

    def list_folders(self, *, ctx: Optional[CallContext] = None) -> List[Folder]:
        """Enumerate mailboxes with counts, sorted by name.

        Folders flagged ``\\Noselect`` are listed without a ``STATUS`` query and
        report zero counts.
        """

        def operation(conn: IMAPClient) -> List[Folder]:
            folders: List[Folder] = []
            for flags, _delimiter, name in conn.list_folders():
                folder = Folder(name=str(name), attributes=_flag_tokens(flags))
                if folder.selectable:
                    status = conn.folder_status(folder.name, ["MESSAGES", "UNSEEN"])
                    folder = Folder(
                        name=folder.name,
                        attributes=folder.attributes,
                        messages=int(status.get(b"MESSAGES", 0)),
                        unseen=int(status.get(b"UNSEEN", 0)),
                    )
                folders.append(folder)
            folders.sort(key=lambda item: item.name)
            return folders

        return self._run("list folders", ctx, operation)

    def append_message(
        self,
        folder: str,
        raw: bytes,
        flags: Sequence[str] = ("\\Seen",),
        *,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """Store ``raw`` in ``folder``, typically a sent copy in ``sent_folder``."""

        if not folder:
            raise InvalidArgumentError("folder is required")
        if not raw:
            raise InvalidArgumentError("message payload is empty")

        def operation(conn: IMAPClient) -> None:
            conn.append(folder, raw, flags=tuple(flags))

        self._run(f"append {folder}", ctx, operation)
