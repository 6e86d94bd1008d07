"""Keep store credentials out of log output.

At startup the resolved configuration is scanned for values whose *keys*
match ``logging.redact_patterns`` (shell-style globs).  For connection URIs
only the password component is treated as secret, so the host stays visible
in logs; any other matching value is treated as secret in full.  The
:class:`SecretRedactingFilter` then replaces those values in every record.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any, Iterable
from urllib.parse import urlsplit, urlunsplit

REDACTED = "[REDACTED]"


def redact_uri_credentials(uri: str) -> str:
    """Return *uri* with its password (if any) replaced by ``[REDACTED]``."""
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    userinfo, _, host = parts.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    return urlunsplit(parts._replace(netloc=f"{user}:{REDACTED}@{host}"))


class SecretRedactingFilter(logging.Filter):
    """A :class:`logging.Filter` that scrubs secret values from log output."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets: list[str] = [
            s for s in (secret_values or []) if s and len(s) > 1
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = self._redact(record.msg)
            if isinstance(record.args, dict):
                record.args = {k: self._redact(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact(a) for a in record.args)
        return True

    def _redact(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for secret in self._secrets:
            value = value.replace(secret, REDACTED)
        return value


def collect_secret_values(
    config_dict: dict[str, Any],
    patterns: list[str] | None = None,
) -> list[str]:
    """Walk a config dict and collect secrets under keys matching *patterns*.

    Parameters
    ----------
    config_dict:
        Nested configuration dictionary (e.g. ``asdict(AppConfig)``).
    patterns:
        Case-insensitive shell-glob patterns matched against keys.

    Returns
    -------
    list[str]
        URI passwords and other matching string values.
    """
    if not patterns:
        return []

    results: list[str] = []
    _walk(config_dict, [p.lower() for p in patterns], results)
    return results


def _walk(obj: Any, patterns: list[str], out: list[str]) -> None:
    if isinstance(obj, dict):
        for key, val in obj.items():
            if isinstance(val, str) and any(fnmatch.fnmatch(key.lower(), p) for p in patterns):
                out.append(_secret_part(val))
            _walk(val, patterns, out)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            _walk(item, patterns, out)


def _secret_part(value: str) -> str:
    if "://" not in value:
        return value
    try:
        return urlsplit(value).password or ""
    except ValueError:
        return value
