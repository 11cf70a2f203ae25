"""Expose the public utility surface for mailwake.

Re-exports the logger factory, the MIME extractor, the address helpers, and
the SQLCipher helpers so callers need not know the module layout.
"""

from .addresses import extract_address, format_address
from .logging import JsonLogger, get_logger
from .mime import ExtractedBody, extract_bodies
from .sqlcipher import SqlCipherUnavailable, open_encrypted_database

__all__ = [
    "ExtractedBody",
    "JsonLogger",
    "SqlCipherUnavailable",
    "extract_address",
    "extract_bodies",
    "format_address",
    "get_logger",
    "open_encrypted_database",
]
