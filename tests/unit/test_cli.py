"""CLI tests driving the Typer commands against fake IMAP servers.

How:
  :class:`typer.testing.CliRunner` invokes ``poll``, ``folders``, and
  ``watermarks`` with a temporary config file; logging is set to ``ERROR`` so
  stdout only carries command output.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from mailwake.cli import app
from mailwake.opstate import OpStateStore

runner = CliRunner()

CONFIG = """
email:
  accounts:
    - name: personal
      imap:
        host: imap.personal.example
        username: me
        password: secret
      default_from: "Agent <agent@example.com>"
state:
  path: {state}
logging:
  level: ERROR
"""


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.format(state=tmp_path / "state.db"))
    return path


def test_poll_seeds_then_reports(config_path, imap_network, tmp_path) -> None:
    server = imap_network.add("imap.personal.example")
    server.add_message(uid=10)

    first = runner.invoke(app, ["poll", "--config", str(config_path)])
    assert first.exit_code == 0
    assert first.stdout == ""

    server.add_message("alice@example.com", "Lunch", uid=11)
    second = runner.invoke(app, ["poll", "--config", str(config_path)])
    assert second.exit_code == 0
    assert "Account: personal (INBOX)" in second.stdout
    assert "From: alice@example.com" in second.stdout

    with OpStateStore(tmp_path / "state.db") as store:
        assert store.get("email_poll", "personal:INBOX") == "11"


def test_poll_unreachable_account_still_succeeds(config_path, imap_network) -> None:
    result = runner.invoke(app, ["poll", "--config", str(config_path)])
    assert result.exit_code == 0


def test_poll_state_override(config_path, imap_network, tmp_path) -> None:
    imap_network.add("imap.personal.example").add_message(uid=3)
    override = tmp_path / "other.db"
    result = runner.invoke(app, ["poll", "--config", str(config_path), "--state", str(override)])
    assert result.exit_code == 0
    with OpStateStore(override) as store:
        assert store.get("email_poll", "personal:INBOX") == "3"


def test_poll_invalid_config_exits_1(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("email:\n  accounts:\n    - {name: '', imap: {host: h, username: u}}\n")
    result = runner.invoke(app, ["poll", "--config", str(path)])
    assert result.exit_code == 1


def test_poll_unusable_state_exits_1(config_path, imap_network, tmp_path) -> None:
    missing = tmp_path / "missing" / "state.db"
    result = runner.invoke(app, ["poll", "--config", str(config_path), "--state", str(missing)])
    assert result.exit_code == 1


def test_folders_lists_counts(config_path, imap_network) -> None:
    server = imap_network.add("imap.personal.example")
    server.add_folder("Archive")
    server.add_message()
    result = runner.invoke(app, ["folders", "--config", str(config_path)])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["Archive\t0\t0", "INBOX\t1\t1"]


def test_folders_unknown_account_exits_1(config_path, imap_network) -> None:
    result = runner.invoke(app, ["folders", "--config", str(config_path), "--account", "nope"])
    assert result.exit_code == 1


def test_watermarks_lists_namespace(tmp_path) -> None:
    state = tmp_path / "state.db"
    with OpStateStore(state) as store:
        store.set("email_poll", "work:INBOX", "9")
        store.set("email_poll", "personal:INBOX", "4")
        store.set("other", "ignored", "x")
    result = runner.invoke(app, ["watermarks", "--state", str(state)])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["personal:INBOX\t4", "work:INBOX\t9"]
