"""Directory of per-account IMAP clients.

What:
  Build one :class:`~mailwake.imap.client.AccountClient` per configured
  account, remember which one is primary, and own their shutdown.

Why:
  The poller, the CLI, and the send path look accounts up by name; a single
  owner for the clients guarantees each connection is closed exactly once.

How:
  Clients are created eagerly but dial lazily. Lookups with an empty name
  resolve to the first configured account.

Interfaces:
  :class:`AccountManager`.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..config.schema import AccountConfig, EmailConfig
from ..errors import ConfigurationError, MailWakeError, NotFoundError
from ..utils.logging import JsonLogger, get_logger
from .client import AccountClient


ClientFactory = Callable[[AccountConfig, JsonLogger], AccountClient]


def _default_factory(config: AccountConfig, logger: JsonLogger) -> AccountClient:
    return AccountClient(config, logger=logger)


class AccountManager:
    """Named access to account clients and their configuration.

    No cross-account locking happens here; each client serialises its own
    connection.
    """

    def __init__(
        self,
        config: EmailConfig,
        *,
        logger: Optional[JsonLogger] = None,
        client_factory: ClientFactory = _default_factory,
    ) -> None:
        self._log = logger or get_logger("mailwake.accounts")
        self._bcc_owner = config.bcc_owner
        self._configs: Dict[str, AccountConfig] = {}
        self._clients: Dict[str, AccountClient] = {}
        self._order: List[str] = []
        for account in config.accounts:
            if account.name in self._configs:
                raise ConfigurationError(f"duplicate account name {account.name!r}")
            self._configs[account.name] = account
            self._clients[account.name] = client_factory(account, self._log)
            self._order.append(account.name)

    def _resolve(self, name: str) -> str:
        if not name:
            if not self._order:
                raise NotFoundError("no email accounts configured")
            return self._order[0]
        if name not in self._configs:
            raise NotFoundError(f"email account {name!r} not found")
        return name

    def account(self, name: str = "") -> AccountClient:
        """Return the client for ``name``; empty resolves to the primary.

        Raises:
          NotFoundError: If no account matches.
        """

        return self._clients[self._resolve(name)]

    def account_config(self, name: str = "") -> AccountConfig:
        """Return the configuration for ``name`` using the same lookup rule."""

        return self._configs[self._resolve(name)]

    def bcc_owner(self) -> str:
        return self._bcc_owner

    def primary(self) -> str:
        """Name of the first configured account, or ``""`` when there is none."""

        return self._order[0] if self._order else ""

    def account_names(self) -> List[str]:
        return list(self._order)

    def close(self) -> None:
        """Close every client; failures are logged and never stop the loop."""

        for name in self._order:
            try:
                self._clients[name].close()
            except (MailWakeError, OSError) as exc:
                self._log.error("closing account failed", email_account=name, error=str(exc))
