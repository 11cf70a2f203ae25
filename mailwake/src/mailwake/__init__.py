"""
Module: mailwake.__init__

What:
  Package root of the mailwake email ingestion core: a per-account IMAP
  client pool, a MIME body extractor, a durable operational-state store, and a
  watermark-driven poller that reports newly arrived inbox messages.

Interfaces:
  - config: Account configuration schema and YAML loading.
  - imap: Per-account clients, the account manager, and value types.
  - utils: Logging, MIME extraction, address and SQLCipher helpers.
  - opstate, poller, context, errors: Core modules.
"""

__all__ = [
    "config",
    "context",
    "errors",
    "imap",
    "opstate",
    "poller",
    "utils",
]

__version__ = "0.1.0"
