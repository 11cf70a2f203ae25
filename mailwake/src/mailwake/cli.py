"""mailwake command-line interface.

What:
  Provide a Typer application with ``poll`` (one watermark cycle),
  ``folders`` (mailbox listing with counts), and ``watermarks`` (dump of the
  persisted high-water marks).

Why:
  Operators need to exercise the ingestion core by hand: verify credentials,
  inspect which UID each account has reached, and trigger a cycle from cron or
  an external scheduler without writing glue code.

How:
  Each command loads the configuration through
  :func:`mailwake.config.loader.load_config`, builds the operational state
  store and :class:`~mailwake.imap.manager.AccountManager`, runs, and closes
  everything on the way out. Logs go to stderr as JSON so stdout carries only
  the command output.

Interfaces:
  ``app`` (Typer application), ``poll``, ``folders``, ``watermarks``.

Invariants & Safety:
  - Exit codes follow shell expectations: ``0`` success, ``1`` configuration
    or storage failure (and, for ``folders``, IMAP failure).
  - No scheduling loop lives here; ``poll`` runs exactly one cycle.
"""
from __future__ import annotations

import sys
from typing import Optional

import typer

from .config.loader import load_config
from .config.schema import MailWakeConfig
from .context import CallContext
from .errors import CancelledError, ConfigurationError, MailWakeError, StorageError
from .imap.manager import AccountManager
from .opstate import OpStateStore
from .poller import POLL_NAMESPACE, Poller
from .utils.logging import JsonLogger, get_logger


app = typer.Typer(help="mailwake email ingestion utilities")


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


def _load(config_path: Optional[str]) -> MailWakeConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        raise _fail(f"configuration error: {exc}") from exc


def _logger(config: MailWakeConfig) -> JsonLogger:
    return get_logger("mailwake", level=config.logging.level, stream=sys.stderr)


def _open_store(config: MailWakeConfig, state_path: Optional[str]) -> OpStateStore:
    path = state_path or config.state.path
    try:
        return OpStateStore(path, encryption_key=config.state.encryption_key or None)
    except StorageError as exc:
        raise _fail(f"storage error: {exc}") from exc


@app.command("poll")
def poll(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
    state_path: Optional[str] = typer.Option(None, "--state", help="Override the state database path"),
    timeout: Optional[float] = typer.Option(None, help="Abort the cycle after this many seconds"),
) -> None:
    """Run one new-message check across all accounts and print the summary."""

    config = _load(config_path)
    if not config.email.configured():
        raise _fail("configuration error: no email account configured")
    logger = _logger(config)
    ctx = CallContext.with_timeout(timeout) if timeout else CallContext()
    with _open_store(config, state_path) as store:
        manager = AccountManager(config.email, logger=logger)
        try:
            section = Poller(manager, store, logger=logger).check_new_messages(ctx)
        except StorageError as exc:
            raise _fail(f"storage error: {exc}") from exc
        except CancelledError as exc:
            raise _fail(f"poll aborted: {exc}") from exc
        finally:
            manager.close()
    if section:
        typer.echo(section, nl=False)


@app.command("folders")
def folders(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
    account: str = typer.Option("", help="Account name; defaults to the primary account"),
) -> None:
    """List mailboxes of one account with message and unseen counts."""

    config = _load(config_path)
    manager = AccountManager(config.email, logger=_logger(config))
    try:
        client = manager.account(account)
        listing = client.list_folders()
    except MailWakeError as exc:
        raise _fail(f"error: {exc}") from exc
    finally:
        manager.close()
    for folder in listing:
        if folder.selectable:
            typer.echo(f"{folder.name}\t{folder.messages}\t{folder.unseen}")
        else:
            typer.echo(f"{folder.name}\t-\t-")


@app.command("watermarks")
def watermarks(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
    state_path: Optional[str] = typer.Option(None, "--state", help="State database path"),
) -> None:
    """Print the stored high-water mark of every account folder."""

    if config_path is None and state_path is not None:
        config = MailWakeConfig()
    else:
        config = _load(config_path)
    with _open_store(config, state_path) as store:
        try:
            marks = store.list(POLL_NAMESPACE)
        except StorageError as exc:
            raise _fail(f"storage error: {exc}") from exc
    for key, value in marks.items():
        typer.echo(f"{key}\t{value}")


def main() -> None:  # pragma: no cover - console entry point
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
