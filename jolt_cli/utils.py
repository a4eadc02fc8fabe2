from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .cli_shared import OpError

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9_-]+):([A-Za-z0-9_-]+)\}")

_CONST_WORD_RE = re.compile(r"[A-Z]{2,}(?=[A-Z][a-z]+[0-9]*|\b)|[A-Z]?[a-z]+[0-9]*|[A-Z]|[0-9]+")


def const_to_camel(key: str) -> str:
    parts = [p.lower() for p in key.split("_")]
    if not parts:
        return key
    head, rest = parts[0], parts[1:]
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def key_to_const(key: str) -> str:
    words = _CONST_WORD_RE.findall(key)
    if not words:
        return key
    return "_".join(w.lower() for w in words).upper()


def capitalize_first(s: str) -> str:
    return s[:1].upper() + s[1:]


def file_exists(path: str | os.PathLike[str]) -> bool:
    try:
        return Path(path).is_file()
    except OSError:
        return False


def directory_exists(path: str | os.PathLike[str]) -> bool:
    try:
        return Path(path).is_dir()
    except OSError:
        return False


def which(cmd: str) -> str | None:
    parts = cmd.split(" ")
    if len(parts) > 1 and parts[1] == "compose":
        return which(parts[0])
    return shutil.which(cmd)


async def delay(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True)
class Placeholder:
    start: int
    end: int
    kind: str
    name: str
    raw: str


def find_placeholders(text: str) -> list[Placeholder]:
    """Collect every ``{type:name}`` placeholder in ``text`` in positional order.

    Matches never overlap. ``kind`` is lower-cased so callers can compare it
    against a fixed vocabulary, ``raw`` keeps the original text so unresolved
    placeholders can be put back verbatim.
    """
    return [
        Placeholder(
            start=m.start(),
            end=m.end(),
            kind=m.group(1).lower(),
            name=m.group(2),
            raw=m.group(0),
        )
        for m in PLACEHOLDER_RE.finditer(text)
    ]


def splice(text: str, placeholders: Sequence[Placeholder], replacements: Sequence[str]) -> str:
    if len(placeholders) != len(replacements):
        raise ValueError("placeholders and replacements must have the same length")
    out: list[str] = []
    pos = 0
    for ph, rep in zip(placeholders, replacements):
        out.append(text[pos : ph.start])
        out.append(rep)
        pos = ph.end
    out.append(text[pos:])
    return "".join(out)


@dataclass
class ExecResult:
    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


class ExecError(OpError):
    """A wrapped command could not be started (``not_found``, ``start``) or exited non-zero (``exit``)."""

    def __init__(
        self,
        *,
        argv: list[str],
        kind: str,
        exit_code: int = 127,
        stderr: str = "",
        result: ExecResult | None = None,
    ) -> None:
        self.argv = list(argv)
        self.kind = kind
        self.exit_code = exit_code
        self.stderr = stderr
        self.result = result
        super().__init__(self._message())

    def _message(self) -> str:
        if self.kind == "not_found":
            return f"command not found: {self.argv[0] if self.argv else ''}"
        if self.kind == "start":
            return f"could not start {' '.join(self.argv)}: {self.stderr}"
        detail = f": {self.stderr.strip()}" if self.stderr.strip() else ""
        return f"command failed with exit code {self.exit_code}: {' '.join(self.argv)}{detail}"


def build_argv(command: str, args: Sequence[str | None | bool] = (), *, clean_args: bool = True) -> list[str]:
    cleaned = [str(a) for a in args if a] if clean_args else [str(a) for a in args]
    try:
        parts = shlex.split(command)
    except ValueError as e:
        raise OpError(f"invalid command {command!r}: {e}") from e
    return parts + cleaned


async def exec_c(
    command: str,
    args: Sequence[str | None | bool] = (),
    *,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    capture: bool = False,
    check: bool = True,
    shell: bool = False,
    input_text: str | None = None,
    stdout_path: str | os.PathLike[str] | None = None,
    clean_args: bool = True,
) -> ExecResult:
    """Run an external command and return its exit code and output.

    Falsy entries in ``args`` are dropped unless ``clean_args`` is off. The
    command string is split with shlex so values like ``docker compose``
    work; with ``shell=True`` the command and args are joined and handed to
    the shell untouched.

    Without ``capture`` (and without ``stdout_path``) the child inherits this
    process's stdout/stderr so the wrapped tool streams straight to the
    terminal.
    """
    if shell:
        argv = [command] + build_argv("", args, clean_args=clean_args)
    else:
        argv = build_argv(command, args, clean_args=clean_args)
    if not argv or not argv[0]:
        raise OpError("empty command")
    if cwd is not None and not directory_exists(cwd):
        raise ExecError(argv=argv, kind="start", stderr=f"working directory {cwd} does not exist")

    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    stdin = asyncio.subprocess.PIPE if input_text is not None else None
    pipe = asyncio.subprocess.PIPE if capture else None
    out_file = None
    if stdout_path is not None:
        out_file = open(stdout_path, "wb")
    logger.debug("exec: %s", " ".join(argv))
    try:
        try:
            if shell:
                proc = await asyncio.create_subprocess_shell(
                    " ".join(argv),
                    cwd=cwd,
                    env=full_env,
                    stdin=stdin,
                    stdout=out_file if out_file is not None else pipe,
                    stderr=pipe,
                )
            else:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=cwd,
                    env=full_env,
                    stdin=stdin,
                    stdout=out_file if out_file is not None else pipe,
                    stderr=pipe,
                )
        except FileNotFoundError as e:
            raise ExecError(argv=argv, kind="not_found") from e
        except OSError as e:
            raise ExecError(argv=argv, kind="start", stderr=str(e)) from e
        raw_out, raw_err = await proc.communicate(
            input_text.encode("utf-8") if input_text is not None else None
        )
    finally:
        if out_file is not None:
            out_file.close()

    result = ExecResult(
        argv=argv,
        exit_code=int(proc.returncode or 0),
        stdout=(raw_out or b"").decode("utf-8", errors="replace"),
        stderr=(raw_err or b"").decode("utf-8", errors="replace"),
    )
    if shell and result.exit_code == 127:
        if check:
            raise ExecError(argv=argv, kind="not_found", stderr=result.stderr, result=result)
        return result
    if check and result.failed:
        raise ExecError(
            argv=argv,
            kind="exit",
            exit_code=result.exit_code,
            stderr=result.stderr,
            result=result,
        )
    return result
