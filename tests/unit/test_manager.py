"""Account manager lookup and shutdown tests."""

from __future__ import annotations

import pytest

from fakes import account_config

from mailwake.config.schema import EmailConfig
from mailwake.errors import NotFoundError, TransportError
from mailwake.imap.client import AccountClient
from mailwake.imap.manager import AccountManager


@pytest.fixture
def email_config() -> EmailConfig:
    return EmailConfig(
        bcc_owner="audit@example.com",
        accounts=[
            account_config("personal", "imap.personal.example", default_from="Agent <agent@example.com>"),
            account_config("work", "imap.work.example"),
        ],
    )


def test_first_account_is_primary(email_config, logger) -> None:
    manager = AccountManager(email_config, logger=logger)
    assert manager.primary() == "personal"
    assert manager.account_names() == ["personal", "work"]
    assert manager.account("").name == "personal"
    assert manager.account_config("").default_from == "Agent <agent@example.com>"


def test_lookup_by_name(email_config, logger) -> None:
    manager = AccountManager(email_config, logger=logger)
    client = manager.account("work")
    assert isinstance(client, AccountClient)
    assert client.name == "work"
    assert manager.account_config("work").imap.host == "imap.work.example"


def test_unknown_account_is_not_found(email_config, logger) -> None:
    manager = AccountManager(email_config, logger=logger)
    with pytest.raises(NotFoundError):
        manager.account("missing")
    with pytest.raises(NotFoundError):
        manager.account_config("missing")


def test_empty_manager(logger) -> None:
    manager = AccountManager(EmailConfig(), logger=logger)
    assert manager.primary() == ""
    assert manager.account_names() == []
    with pytest.raises(NotFoundError):
        manager.account("")


def test_bcc_owner(email_config, logger) -> None:
    assert AccountManager(email_config, logger=logger).bcc_owner() == "audit@example.com"


def test_construction_does_not_dial(email_config, imap_network, logger) -> None:
    AccountManager(email_config, logger=logger)
    assert imap_network.dials == []


def test_close_logs_failures_and_closes_every_client(email_config, logger, records) -> None:
    closed = []

    class _Client:
        def __init__(self, config, log):
            self.name = config.name

        def close(self):
            closed.append(self.name)
            if self.name == "personal":
                raise TransportError("logout failed")

    manager = AccountManager(email_config, logger=logger, client_factory=_Client)
    manager.close()
    assert closed == ["personal", "work"]
    errors = [rec for rec in records() if rec["lvl"] == "ERROR"]
    assert errors[0]["email_account"] == "personal"
