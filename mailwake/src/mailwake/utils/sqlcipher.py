"""SQLCipher helper for an encrypted operational-state database.

What:
  Provide a guarded import of :mod:`pysqlcipher3` plus a function that opens
  an encrypted SQLite database and applies the key before returning it.

Why:
  Watermarks are harmless, but operators who keep the state file next to other
  agent data on shared disks asked for the option to encrypt it. The driver is
  an optional extra, so its absence must surface as a clear error rather than
  an ``ImportError`` deep inside the store.

How:
  Attempt to import :mod:`pysqlcipher3` once. :func:`open_encrypted_database`
  raises :class:`SqlCipherUnavailable` when it is missing, otherwise connects,
  issues ``PRAGMA key``, and runs any extra PRAGMAs verbatim.

Interfaces:
  :class:`SqlCipherUnavailable`, :data:`DRIVER_ERRORS`,
  :func:`open_encrypted_database`.

Invariants & Safety:
  - Connections are only returned once ``PRAGMA key`` has executed.
  - Extra PRAGMAs must come from trusted configuration, never from user input.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

try:  # pragma: no cover - optional dependency
    from pysqlcipher3 import dbapi2 as sqlcipher
except ImportError:  # pragma: no cover
    sqlcipher = None  # type: ignore[assignment]


class SqlCipherUnavailable(RuntimeError):
    """Raised when an encrypted store is requested without ``pysqlcipher3``."""


DRIVER_ERRORS: Tuple[type, ...] = (sqlcipher.Error,) if sqlcipher is not None else ()
"""Driver exception types callers should treat like :class:`sqlite3.Error`."""


def open_encrypted_database(
    path: str,
    *,
    key: str,
    pragmas: Optional[Dict[str, str]] = None,
    check_same_thread: bool = True,
) -> Any:
    """Open ``path`` with SQLCipher and apply ``key``.

    Args:
      path: Filesystem path to the encrypted database file.
      key: Secret used to derive the SQLCipher encryption key.
      pragmas: Optional PRAGMA directives such as ``{"cipher_page_size": "4096"}``.
      check_same_thread: Forwarded to the driver's ``connect``.

    Returns:
      A DB-API connection keyed and ready for queries.

    Raises:
      SqlCipherUnavailable: If ``pysqlcipher3`` is not installed.
    """

    if sqlcipher is None:
        raise SqlCipherUnavailable("SQLCipher driver pysqlcipher3 is required for encrypted stores")
    connection = sqlcipher.connect(path, check_same_thread=check_same_thread)
    connection.execute("PRAGMA key = ?", (key,))
    for pragma, value in (pragmas or {}).items():
        connection.execute(f"PRAGMA {pragma} = {value}")
    return connection
