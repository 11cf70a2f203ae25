"""Locate, parse, and validate the mailwake configuration file.

What:
  Resolve ``config.yaml`` from an explicit path, the ``MAILWAKE_CONFIG_PATH``
  environment variable, or well-known defaults, expand ``${VAR}`` references,
  and validate the document into :class:`~mailwake.config.schema.MailWakeConfig`.

Why:
  Account credentials usually live in the environment rather than in the file.
  Operators need one precise error when the document is wrong, reported before
  any IMAP connection is attempted.

How:
  Parse with ``yaml.safe_load``, walk the payload replacing ``${VAR}`` inside
  strings, then call :meth:`MailWakeConfig.model_validate`. Parsing, IO, and
  schema failures are all re-raised as :class:`ConfigurationError` with the
  file path attached.

Interfaces:
  :func:`load_config`, :func:`parse_config`, :func:`expand_env`,
  :func:`candidate_paths`.

Invariants:
  - Candidate paths are probed in precedence order and deduplicated.
  - Unset environment variables expand to the empty string, so required
    fields they feed are caught by validation rather than passed through.
"""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schema import MailWakeConfig


CONFIG_ENV = "MAILWAKE_CONFIG_PATH"
DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("/etc/mailwake/config.yaml"),
)

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def candidate_paths(path: Optional[Path] = None) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    Args:
      path: Explicit path requested by the caller, or ``None`` to rely on the
        environment variable and defaults.
    """

    seen: set[Path] = set()
    ordered = []
    if path is not None:
        ordered.append(path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        ordered.append(Path(env_path))
    ordered.extend(DEFAULT_LOCATIONS)
    for candidate in ordered:
        candidate = candidate.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def expand_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Replace ``${VAR}`` references in every string of ``value``."""

    env = os.environ if environ is None else environ
    if isinstance(value, str):
        return _ENV_REF.sub(lambda match: env.get(match.group(1), ""), value)
    if isinstance(value, dict):
        return {key: expand_env(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item, env) for item in value]
    return value


def parse_config(
    text: str,
    *,
    source: str = "<string>",
    environ: Optional[Mapping[str, str]] = None,
) -> MailWakeConfig:
    """Parse YAML ``text`` into a validated :class:`MailWakeConfig`.

    Raises:
      ConfigurationError: If the YAML is malformed, is not a mapping, or fails
        schema validation.
    """

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{source} must contain a mapping at the top level")
    payload = expand_env(payload, environ)
    try:
        return MailWakeConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration in {source}: {_first_error(exc)}") from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg", "")).removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def load_config(path: Optional[Union[str, Path]] = None) -> MailWakeConfig:
    """Find and load the configuration file.

    Args:
      path: Optional explicit location; when it is given but missing, the
        search continues with the environment variable and defaults.

    Raises:
      ConfigurationError: If no candidate exists or the first existing one is
        unreadable or invalid.
    """

    requested = Path(path) if path is not None else None
    searched = []
    for candidate in candidate_paths(requested):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        try:
            text = candidate.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"unable to read configuration file {candidate}: {exc}") from exc
        return parse_config(text, source=str(candidate))
    raise ConfigurationError(f"unable to locate config.yaml (searched: {', '.join(searched)})")
