"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Expose a fake IMAP network patched over ``imapclient.IMAPClient``, a JSON
  log capture, and a temporary operational-state store.

Why:
  Client, manager, and poller tests assert on backend state (UIDs, flags,
  dials) and on log records while calling the production classes unchanged.

How:
  Append the unit directory to ``sys.path`` for the local ``fakes`` module and
  monkeypatch ``mailwake.imap.client.IMAPClient`` with
  :meth:`FakeImapNetwork.connect`.

Interfaces:
  :func:`imap_network`, :func:`log_stream`, :func:`logger`, :func:`records`,
  :func:`store` (pytest fixtures).
"""

import io
import json
import sys
from pathlib import Path

import pytest

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapNetwork

from mailwake.opstate import OpStateStore
from mailwake.utils.logging import get_logger


@pytest.fixture
def imap_network(monkeypatch: pytest.MonkeyPatch) -> FakeImapNetwork:
    """Route every ``IMAPClient`` dial to an in-memory backend."""

    network = FakeImapNetwork()
    monkeypatch.setattr("mailwake.imap.client.IMAPClient", network.connect)
    return network


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO):
    return get_logger("mailwake.test", level="TRACE", stream=log_stream)


@pytest.fixture
def records(log_stream: io.StringIO):
    """Return a callable parsing the captured JSON log lines."""

    def _records():
        return [json.loads(line) for line in log_stream.getvalue().splitlines() if line]

    return _records


@pytest.fixture
def store(tmp_path: Path):
    """Yield an :class:`OpStateStore` backed by a real SQLite file."""

    with OpStateStore(tmp_path / "state.db") as opened:
        yield opened
