"""Pydantic models describing the mailwake configuration document."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


DEFAULT_IMAP_PORT = 993
PLAINTEXT_IMAP_PORT = 143
DEFAULT_SMTP_PORT = 587
IMPLICIT_TLS_SMTP_PORT = 465


class ImapSettings(BaseModel):
    """Connection parameters for one IMAP server.

    ``port`` defaults to 993 and ``tls`` to true unless the port is 143;
    explicit values always win.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    tls: Optional[bool] = None

    @model_validator(mode="after")
    def _apply_defaults(self) -> "ImapSettings":
        if self.port == 0:
            self.port = DEFAULT_IMAP_PORT
        if self.tls is None:
            self.tls = self.port != PLAINTEXT_IMAP_PORT
        return self


class SmtpSettings(BaseModel):
    """Outbound server; only ``default_from`` matters to ingestion."""

    model_config = ConfigDict(extra="forbid")

    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    starttls: Optional[bool] = None

    @model_validator(mode="after")
    def _apply_defaults(self) -> "SmtpSettings":
        if not self.host:
            return self
        if self.port == 0:
            self.port = DEFAULT_SMTP_PORT
        if self.starttls is None:
            self.starttls = self.port != IMPLICIT_TLS_SMTP_PORT
        return self


class AccountConfig(BaseModel):
    """One mail account as listed under ``email.accounts``."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    imap: ImapSettings = Field(default_factory=ImapSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    default_from: str = ""
    sent_folder: str = ""

    def smtp_configured(self) -> bool:
        return bool(self.smtp.host and self.smtp.username)

    def problems(self) -> List[str]:
        """Return validation failures in check order; empty when valid."""

        found: List[str] = []
        if not self.name.strip():
            found.append("name is required")
        if not self.imap.host:
            found.append("imap.host is required")
        if not self.imap.username:
            found.append("imap.username is required")
        if not 1 <= self.imap.port <= 65535:
            found.append(f"imap.port {self.imap.port} out of range 1-65535")
        if self.smtp.host:
            if not 1 <= self.smtp.port <= 65535:
                found.append(f"smtp.port {self.smtp.port} out of range 1-65535")
            if not self.smtp.username:
                found.append("smtp.username is required when smtp.host is set")
            if not self.smtp.password:
                found.append("smtp.password is required when smtp.host is set")
            if not self.default_from:
                found.append("default_from is required when smtp.host is set")
        return found


class EmailConfig(BaseModel):
    """The ``email`` section: an audit address and the ordered account list.

    The first account is the primary. Validation reports the first problem
    found, prefixed with the zero-based account index.
    """

    model_config = ConfigDict(extra="forbid")

    bcc_owner: str = ""
    accounts: List[AccountConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_accounts(self) -> "EmailConfig":
        seen = set()
        for index, account in enumerate(self.accounts):
            problems = account.problems()
            if problems:
                raise ValueError(f"email.accounts[{index}]: {problems[0]}")
            if account.name in seen:
                raise ValueError(f"email.accounts[{index}]: duplicate account name {account.name!r}")
            seen.add(account.name)
        return self

    def configured(self) -> bool:
        """Return whether at least one account has an IMAP host and username."""

        return any(account.imap.host and account.imap.username for account in self.accounts)


class StateSettings(BaseModel):
    """Location (and optional SQLCipher key) of the operational-state database."""

    model_config = ConfigDict(extra="forbid")

    path: str = "mailwake.db"
    encryption_key: str = ""


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"

    @model_validator(mode="after")
    def _normalise(self) -> "LoggingSettings":
        level = self.level.upper()
        if level == "WARNING":
            level = "WARN"
        if level not in {"TRACE", "DEBUG", "INFO", "WARN", "ERROR"}:
            raise ValueError(f"unknown logging.level {self.level!r}")
        self.level = level
        return self


class MailWakeConfig(BaseModel):
    """Top-level document: ``email``, ``state``, and ``logging`` sections."""

    model_config = ConfigDict(extra="forbid")

    email: EmailConfig = Field(default_factory=EmailConfig)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
