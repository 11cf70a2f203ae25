"""Per-account IMAP client tests against the in-memory backend.

What:
  Cover the connection state machine (lazy dial, NOOP probe, single redial,
  stale marking), UID windows, message reads, flag and move semantics, folder
  listing, and APPEND.

How:
  The ``imap_network`` fixture patches ``IMAPClient`` so each test configures a
  :class:`FakeImapBackend` and drives a real :class:`AccountClient`.
"""

from __future__ import annotations

import imaplib
import threading
from datetime import date, datetime, timezone

import pytest

from fakes import account_config, build_raw_message

from mailwake.context import CallContext
from mailwake.errors import (
    CancelledError,
    InvalidArgumentError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from mailwake.imap.client import MAX_RAW_BYTES, READ_TIMEOUT, AccountClient
from mailwake.imap.models import ListOptions, MarkAction, MoveOptions, SearchOptions


@pytest.fixture
def backend(imap_network):
    return imap_network.add("imap.example.com")


@pytest.fixture
def client(imap_network, backend, logger):
    account = AccountClient(account_config("personal"), logger=logger)
    yield account
    account.close()


def test_dial_is_lazy_and_reused(client, imap_network, backend) -> None:
    assert imap_network.dials == []
    assert client.state == "idle"
    client.list_messages()
    client.list_messages()
    assert imap_network.dials == [("imap.example.com", 993, True)]
    assert backend.logins == [("personal-user", "secret")]
    assert client.state == "live"


def test_dial_timeout_is_clamped_to_deadline(client, imap_network) -> None:
    client.connect(CallContext.with_timeout(5))
    timeout = imap_network.timeouts[0]
    assert 0 < timeout.connect <= 5


def test_starttls_on_plaintext_port(imap_network, logger) -> None:
    backend = imap_network.add("plain.example.com")
    backend.capabilities.add("STARTTLS")
    client = AccountClient(account_config("plain", "plain.example.com", port=143), logger=logger)
    client.connect()
    assert imap_network.dials == [("plain.example.com", 143, False)]
    assert backend.commands[:2] == ["STARTTLS", "LOGIN"]


def test_failed_probe_redials_once(client, imap_network, backend, records) -> None:
    backend.add_message()
    client.list_messages()
    backend.noop_failures = 1
    envelopes = client.list_messages()
    assert [env.uid for env in envelopes] == [1]
    assert len(imap_network.dials) == 2
    assert any(rec["msg"] == "liveness probe failed, reconnecting" for rec in records())


def test_redial_failure_surfaces_and_next_call_retries(client, imap_network, backend) -> None:
    client.connect()
    backend.noop_failures = 1
    backend.unreachable = True
    with pytest.raises(TransportError):
        client.list_messages()
    assert client.state == "idle"
    backend.unreachable = False
    client.list_messages()
    assert client.state == "live"
    assert len(imap_network.dials) == 3


def test_command_error_marks_connection_stale(client, imap_network, backend) -> None:
    client.connect()
    backend.fail_next = imaplib.IMAP4.error("BAD command unknown")
    with pytest.raises(ProtocolError):
        client.list_messages()
    assert client.state == "stale"
    client.list_messages()
    assert len(imap_network.dials) == 2


def test_socket_error_is_transport_error(client, backend) -> None:
    client.connect()
    backend.fail_next = ConnectionResetError("reset")
    with pytest.raises(TransportError) as excinfo:
        client.list_messages()
    assert not isinstance(excinfo.value, ProtocolError)


def test_unreachable_server_is_transport_error(imap_network, logger) -> None:
    client = AccountClient(account_config("ghost", "nowhere.example.com"), logger=logger)
    with pytest.raises(TransportError):
        client.list_messages()
    assert client.state == "idle"


def test_cancelled_context_never_dials(client, imap_network) -> None:
    ctx = CallContext()
    ctx.cancel()
    with pytest.raises(CancelledError):
        client.list_messages(ctx=ctx)
    assert imap_network.dials == []
    # the mutex was released
    client.list_messages()


def test_list_recent_returns_limit_newest_first(client, backend) -> None:
    for _ in range(30):
        backend.add_message()
    envelopes = client.list_messages(ListOptions(limit=5))
    assert [env.uid for env in envelopes] == [30, 29, 28, 27, 26]


def test_list_default_limit_is_twenty(client, backend) -> None:
    for _ in range(25):
        backend.add_message()
    assert len(client.list_messages()) == 20


def test_list_since_uid_ignores_limit_and_filters_strictly(client, backend) -> None:
    for _ in range(40):
        backend.add_message()
    envelopes = client.list_messages(ListOptions(limit=5, since_uid=10))
    assert [env.uid for env in envelopes] == list(range(40, 10, -1))


def test_list_since_uid_above_highest_returns_nothing(client, backend) -> None:
    backend.add_message(uid=200)
    backend.add_message(uid=286)
    assert client.list_messages(ListOptions(since_uid=391)) == []


def test_list_unseen_only(client, backend) -> None:
    backend.add_message(flags=["\\Seen"])
    backend.add_message()
    envelopes = client.list_messages(ListOptions(unseen_only=True))
    assert [env.uid for env in envelopes] == [2]


def test_envelope_fields(client, backend) -> None:
    when = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    backend.add_message("Alice Example <alice@example.com>", "Lunch?", when=when, flags=["\\Flagged"])
    (envelope,) = client.list_messages()
    assert envelope.sender == "Alice Example <alice@example.com>"
    assert envelope.to == ("agent@example.com",)
    assert envelope.subject == "Lunch?"
    assert envelope.date == when
    assert envelope.flags == frozenset({"\\Flagged"})
    assert envelope.size > 0


def test_encoded_subject_is_decoded(client, backend) -> None:
    backend.add_message(subject="=?utf-8?q?caf=C3=A9?=")
    (envelope,) = client.list_messages()
    assert envelope.subject == "café"


def test_fetch_result_without_uid_is_skipped(client, backend, monkeypatch, records) -> None:
    backend.add_message()
    backend.add_message()
    original = backend.fetch

    def fetch_missing_uid(uids, parts):
        response = original(uids, parts)
        del response[1][b"UID"]
        return response

    monkeypatch.setattr(backend, "fetch", fetch_missing_uid)
    envelopes = client.list_messages()
    assert [env.uid for env in envelopes] == [2]
    assert any(rec["msg"] == "skipping fetch result without known uid" for rec in records())


def test_read_message_populates_bodies_and_marks_seen(client, backend) -> None:
    raw = build_raw_message(
        sender="alice@example.com",
        subject="Thread",
        when=datetime(2024, 5, 1, tzinfo=timezone.utc),
        body="See you soon",
        message_id="<m1@example.com>",
        references="<r1@example.com> <r2@example.com>",
    )
    uid = backend.add_message(raw=raw, message_id="<m1@example.com>", in_reply_to="<r2@example.com>")
    message = client.read_message(uid)
    assert message.uid == uid
    assert message.text_body == "See you soon"
    assert message.message_id == "m1@example.com"
    assert message.in_reply_to == ["r2@example.com"]
    assert message.references == ["r1@example.com", "r2@example.com"]
    assert message.reply_to == "alice@example.com"
    assert "\\Seen" in backend.mailboxes["INBOX"][uid].flags


def test_read_message_requests_bounded_body(client, backend, monkeypatch) -> None:
    uid = backend.add_message()
    seen_parts = []
    original = backend.fetch

    def recording_fetch(uids, parts):
        seen_parts.extend(parts)
        return original(uids, parts)

    monkeypatch.setattr(backend, "fetch", recording_fetch)
    client.read_message(uid)
    assert f"BODY[]<0.{MAX_RAW_BYTES}>" in seen_parts


def test_oversized_message_is_parsed_from_prefix(client, backend) -> None:
    header = b"From: a@example.com\r\nSubject: big\r\nContent-Type: text/plain\r\n\r\n"
    uid = backend.add_message(raw=header + b"x" * (MAX_RAW_BYTES + 1000))
    message = client.read_message(uid)
    assert message.text_body.endswith("[truncated: message exceeds 32KB]")


def test_read_missing_uid_is_not_found(client, backend) -> None:
    backend.add_message()
    with pytest.raises(NotFoundError):
        client.read_message(99)
    assert client.state == "live"


def test_search_by_sender_and_dates(client, backend) -> None:
    backend.add_message("alice@example.com", when=datetime(2024, 1, 10, tzinfo=timezone.utc))
    backend.add_message("bob@example.com", when=datetime(2024, 2, 10, tzinfo=timezone.utc))
    backend.add_message("alice@example.com", when=datetime(2024, 3, 10, tzinfo=timezone.utc))
    found = client.search_messages(SearchOptions(sender="alice", since=date(2024, 2, 1)))
    assert [env.uid for env in found] == [3]
    found = client.search_messages(SearchOptions(before=date(2024, 3, 1)))
    assert [env.uid for env in found] == [2, 1]


def test_search_free_text_respects_limit(client, backend) -> None:
    for index in range(5):
        backend.add_message(subject=f"invoice {index}")
    found = client.search_messages(SearchOptions(query="invoice", limit=2))
    assert [env.uid for env in found] == [5, 4]


def test_mark_messages_adds_and_removes(client, backend) -> None:
    uid = backend.add_message()
    client.mark_messages(MarkAction(uids=[uid], flag="flagged"))
    assert "\\Flagged" in backend.mailboxes["INBOX"][uid].flags
    client.mark_messages(MarkAction(uids=[uid], flag="flagged", add=False))
    assert "\\Flagged" not in backend.mailboxes["INBOX"][uid].flags


@pytest.mark.parametrize(
    "action",
    [MarkAction(uids=[], flag="seen"), MarkAction(uids=[1], flag="deleted")],
)
def test_mark_messages_rejects_bad_arguments(client, imap_network, action) -> None:
    with pytest.raises(InvalidArgumentError):
        client.mark_messages(action)
    assert imap_network.dials == []


def test_move_uses_move_capability(client, backend) -> None:
    backend.add_folder("Archive")
    uid = backend.add_message()
    client.move_messages(MoveOptions(uids=[uid], destination="Archive"))
    assert backend.uids("INBOX") == []
    assert len(backend.uids("Archive")) == 1
    assert "MOVE" in backend.commands


def test_move_falls_back_to_copy_delete_expunge(client, backend) -> None:
    backend.capabilities.discard("MOVE")
    backend.add_folder("Archive")
    keep = backend.add_message()
    moved = backend.add_message()
    client.move_messages(MoveOptions(uids=[moved], destination="Archive"))
    assert backend.uids("INBOX") == [keep]
    assert len(backend.uids("Archive")) == 1
    assert "MOVE" not in backend.commands
    assert backend.commands[-3:] == ["COPY", "STORE", "EXPUNGE"]


@pytest.mark.parametrize(
    "options",
    [MoveOptions(uids=[], destination="Archive"), MoveOptions(uids=[1], destination="")],
)
def test_move_rejects_bad_arguments(client, options) -> None:
    with pytest.raises(InvalidArgumentError):
        client.move_messages(options)


def test_list_folders_sorted_with_noselect_zeroed(client, backend) -> None:
    backend.add_folder("Work")
    backend.add_folder("Archive")
    backend.add_folder("[Gmail]", attributes=(b"\\Noselect", b"\\HasChildren"))
    backend.add_message()
    backend.add_message(flags=["\\Seen"])
    folders = client.list_folders()
    assert [folder.name for folder in folders] == ["Archive", "INBOX", "Work", "[Gmail]"]
    inbox = folders[1]
    assert (inbox.messages, inbox.unseen) == (2, 1)
    gmail = folders[3]
    assert not gmail.selectable
    assert (gmail.messages, gmail.unseen) == (0, 0)
    assert backend.commands.count("STATUS") == 3


def test_append_message_files_copy_as_seen(client, backend) -> None:
    backend.add_folder("Sent")
    raw = build_raw_message(sender="agent@example.com", subject="Re: hi", when=datetime.now(timezone.utc))
    client.append_message("Sent", raw)
    (uid,) = backend.uids("Sent")
    assert backend.mailboxes["Sent"][uid].flags == {"\\Seen"}


def test_close_is_idempotent(client, backend) -> None:
    client.connect()
    client.close()
    client.close()
    assert client.state == "idle"
    assert backend.commands.count("LOGOUT") == 1


def test_deadline_timeout_is_restored_for_later_calls(client, backend) -> None:
    client.list_messages(ctx=CallContext.with_timeout(0.5))
    timeouts = backend.socket().timeouts
    assert timeouts and timeouts[-1] < READ_TIMEOUT
    before = len(timeouts)
    client.list_messages()
    # the NOOP check and the command both run with the full read timeout
    assert timeouts[before:] == [READ_TIMEOUT, READ_TIMEOUT]


def _block_search(backend, monkeypatch):
    """Make the next SEARCH wait until the returned ``release`` event is set."""

    entered, release = threading.Event(), threading.Event()
    original = backend.search

    def blocking_search(criteria):
        entered.set()
        release.wait(5)
        return original(criteria)

    monkeypatch.setattr(backend, "search", blocking_search)
    return entered, release


def test_operations_on_one_client_never_interleave(client, backend, monkeypatch) -> None:
    backend.add_message()
    client.connect()
    entered, release = _block_search(backend, monkeypatch)
    results = {}

    def run(key, call):
        results[key] = call()

    first = threading.Thread(target=run, args=("list", client.list_messages))
    second = threading.Thread(target=run, args=("folders", client.list_folders))
    first.start()
    assert entered.wait(5)
    second.start()
    second.join(0.2)
    assert second.is_alive()
    assert backend.commands == ["LOGIN", "NOOP", "SELECT"]

    release.set()
    first.join(5)
    second.join(5)
    assert [env.uid for env in results["list"]] == [1]
    assert [folder.name for folder in results["folders"]] == ["INBOX"]
    assert backend.commands == [
        "LOGIN",
        "NOOP",
        "SELECT",
        "SEARCH",
        "FETCH",
        "NOOP",
        "LIST",
        "STATUS",
    ]


def test_lock_wait_past_deadline_is_cancelled(client, backend, monkeypatch) -> None:
    backend.add_message()
    client.connect()
    entered, release = _block_search(backend, monkeypatch)
    holder = threading.Thread(target=client.list_messages)
    holder.start()
    try:
        assert entered.wait(5)
        with pytest.raises(CancelledError):
            client.list_folders(ctx=CallContext.with_timeout(0.1))
        assert "LIST" not in backend.commands
    finally:
        release.set()
        holder.join(5)
    assert client.state == "live"
    assert [folder.name for folder in client.list_folders()] == ["INBOX"]
