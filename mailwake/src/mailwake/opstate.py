"""Namespaced key/value store for durable operational state.

What:
  Persist small pieces of state that must survive restarts (poller
  watermarks, toggles) in a single SQLite table keyed by
  ``(namespace, key)``.

Why:
  The poller's watermark contract only holds if a successful write is still
  visible after a crash. Structured domain data deserves its own schema; this
  store is deliberately limited to opaque strings.

How:
  Open one connection at construction (plain :mod:`sqlite3`, or SQLCipher via
  :mod:`mailwake.utils.sqlcipher` when a key is given), create the table if it
  does not exist, and run every statement in autocommit mode under a
  connection lock. Driver errors are re-raised as :class:`StorageError`.

Interfaces:
  :class:`OpStateStore` with ``get``, ``set``, ``delete``,
  ``delete_namespace``, ``list``, and ``close``.

Invariants & Safety:
  - ``get`` returns ``""`` for absent keys; ``list`` returns an empty mapping
    for empty namespaces, ordered by key.
  - ``updated_at`` is stamped in RFC 3339 UTC on every upsert.
  - The parent directory is never created implicitly; a missing directory is
    a :class:`StorageError`.
"""
from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import StorageError
from .utils.sqlcipher import DRIVER_ERRORS, SqlCipherUnavailable, open_encrypted_database


_SCHEMA = """
CREATE TABLE IF NOT EXISTS operational_state (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
)
"""

_DB_ERRORS = (sqlite3.Error,) + DRIVER_ERRORS


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class OpStateStore:
    """SQLite-backed namespaced key/value store.

    What:
      Owns one database connection and exposes string-only CRUD operations.

    Why:
      A single owner for the connection keeps writes serialised and gives
      callers one error type to handle.

    How:
      Statements run under :attr:`_lock` with ``isolation_level=None`` so each
      write is committed before the call returns.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        encryption_key: Optional[str] = None,
        busy_timeout: float = 5.0,
    ) -> None:
        """Open (and if needed create) the store at ``path``.

        Args:
          path: Database file location. ``":memory:"`` is accepted for tests.
          encryption_key: When set, open the file through SQLCipher.
          busy_timeout: Seconds to wait on another process's write lock.

        Raises:
          StorageError: If the file cannot be opened or the schema cannot be
            created.
        """

        self._path = str(path)
        self._lock = threading.Lock()
        self._conn: Any = None
        try:
            if encryption_key:
                self._conn = open_encrypted_database(
                    self._path, key=encryption_key, check_same_thread=False
                )
            else:
                self._conn = sqlite3.connect(
                    self._path,
                    timeout=busy_timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
            self._conn.execute(_SCHEMA)
        except SqlCipherUnavailable as exc:
            raise StorageError(str(exc)) from exc
        except _DB_ERRORS as exc:
            if self._conn is not None:
                self._conn.close()
            raise StorageError(f"open operational state {self._path}: {exc}") from exc

    @property
    def path(self) -> str:
        return self._path

    def __enter__(self) -> "OpStateStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _connection(self) -> Any:
        if self._conn is None:
            raise StorageError(f"operational state {self._path} is closed")
        return self._conn

    def get(self, namespace: str, key: str) -> str:
        """Return the value stored under ``(namespace, key)`` or ``""``."""

        with self._lock:
            try:
                row = self._connection().execute(
                    "SELECT value FROM operational_state WHERE namespace = ? AND key = ?",
                    (namespace, key),
                ).fetchone()
            except _DB_ERRORS as exc:
                raise StorageError(f"get {namespace}/{key}: {exc}") from exc
        if row is None:
            return ""
        value = row[0]
        if not isinstance(value, str):
            raise StorageError(f"get {namespace}/{key}: expected text, found {type(value).__name__}")
        return value

    def set(self, namespace: str, key: str, value: str) -> None:
        """Upsert ``value`` and refresh ``updated_at``."""

        with self._lock:
            try:
                self._connection().execute(
                    "INSERT INTO operational_state (namespace, key, value, updated_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT (namespace, key) DO UPDATE "
                    "SET value = excluded.value, updated_at = excluded.updated_at",
                    (namespace, key, value, _utc_now()),
                )
            except _DB_ERRORS as exc:
                raise StorageError(f"set {namespace}/{key}: {exc}") from exc

    def delete(self, namespace: str, key: str) -> None:
        """Remove one entry; a missing key is not an error."""

        with self._lock:
            try:
                self._connection().execute(
                    "DELETE FROM operational_state WHERE namespace = ? AND key = ?",
                    (namespace, key),
                )
            except _DB_ERRORS as exc:
                raise StorageError(f"delete {namespace}/{key}: {exc}") from exc

    def delete_namespace(self, namespace: str) -> None:
        """Remove every entry in ``namespace``; an empty namespace is not an error."""

        with self._lock:
            try:
                self._connection().execute(
                    "DELETE FROM operational_state WHERE namespace = ?",
                    (namespace,),
                )
            except _DB_ERRORS as exc:
                raise StorageError(f"delete namespace {namespace}: {exc}") from exc

    def list(self, namespace: str) -> Dict[str, str]:
        """Return all ``key -> value`` pairs of ``namespace`` ordered by key."""

        with self._lock:
            try:
                rows = self._connection().execute(
                    "SELECT key, value FROM operational_state WHERE namespace = ? ORDER BY key",
                    (namespace,),
                ).fetchall()
            except _DB_ERRORS as exc:
                raise StorageError(f"list {namespace}: {exc}") from exc
        result: Dict[str, str] = {}
        for key, value in rows:
            if not isinstance(key, str) or not isinstance(value, str):
                raise StorageError(f"scan {namespace}: expected text columns")
            result[key] = value
        return result

    def updated_at(self, namespace: str, key: str) -> Optional[datetime]:
        """Return when ``(namespace, key)`` was last written, or ``None``."""

        with self._lock:
            try:
                row = self._connection().execute(
                    "SELECT updated_at FROM operational_state WHERE namespace = ? AND key = ?",
                    (namespace, key),
                ).fetchone()
            except _DB_ERRORS as exc:
                raise StorageError(f"get {namespace}/{key}: {exc}") from exc
        if row is None:
            return None
        try:
            return datetime.strptime(row[0], "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"scan {namespace}/{key}: bad updated_at {row[0]!r}") from exc

    def close(self) -> None:
        """Release the connection; further calls raise :class:`StorageError`."""

        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except _DB_ERRORS as exc:
                raise StorageError(f"close {self._path}: {exc}") from exc
            finally:
                self._conn = None
