"""Configuration schema and loader for mailwake."""

from .loader import load_config, parse_config
from .schema import AccountConfig, EmailConfig, ImapSettings, MailWakeConfig, SmtpSettings

__all__ = [
    "AccountConfig",
    "EmailConfig",
    "ImapSettings",
    "MailWakeConfig",
    "SmtpSettings",
    "load_config",
    "parse_config",
]
