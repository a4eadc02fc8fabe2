from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape


class JoltError(Exception):
    pass


class UsageError(JoltError):
    pass


class OpError(JoltError):
    pass


class ConfigValidationError(UsageError):
    pass


JOLT_ENV_PREFIX = "JOLT_"
JOLT_DEBUG = "JOLT_DEBUG"
JOLT_IGNORE_REQUIRED_COMMANDS = "JOLT_IGNORE_REQUIRED_COMMANDS"

EXIT_MISSING_COMMANDS = 4

LOGGER_NAME = "jolt_cli"

_CONSOLE = Console(soft_wrap=True, highlight=False)
_ERROR_CONSOLE = Console(stderr=True, soft_wrap=True, highlight=False)


@dataclass(frozen=True)
class GlobalOpts:
    site: str
    verbose: bool = False


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


def _truthy(raw: str | None) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _say(msg: str, *, style: str = "blue") -> None:
    _CONSOLE.print(f"[{style}]{escape(msg)}[/{style}]")


def _warn(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[yellow]{escape(msg)}[/yellow]")


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}")


def setup_logging(*, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    level = logging.DEBUG if (verbose or _truthy(os.environ.get(JOLT_DEBUG))) else logging.WARNING
    logger.setLevel(level)
    handler = RichHandler(console=_ERROR_CONSOLE, show_path=False, show_time=False, markup=False)
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
