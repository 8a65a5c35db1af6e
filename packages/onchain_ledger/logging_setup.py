"""Centralized logging configuration for the ``onchain_ledger`` package.

Two public helpers:

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  root logger (``"onchain_ledger"``). Entrypoints (the CLI) call it once.
- ``get_logger(name)``: acquire a logger, making sure the package root logger
  carries a ``NullHandler`` until the host application configures output.

Library modules never attach handlers themselves; they call
``get_logger("onchain_ledger.<module>")`` and emit single-line
``component:event key=value`` messages.
"""

from __future__ import annotations

import logging
import os
from typing import IO

_PKG_LOGGER_NAME = "onchain_ledger"
_LEVEL_ENV = "ONCHAIN_LEDGER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = getattr(logging, name, None)
        if isinstance(numeric, int):
            return numeric
        raise ValueError(f"Unknown log level: {level!r}")
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> None:
    """Configure the package root logger.

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` reads ``ONCHAIN_LEDGER_LOG_LEVEL`` and
        falls back to ``INFO``.
    fmt:
        Optional format string for the handler.
    stream:
        Output stream for the handler (``sys.stderr`` when omitted).
    force:
        Replace a previous configuration instead of returning early. The CLI
        uses it for ``--verbose``.
    """

    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler) or force:
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name with a silent default for library use."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
