from __future__ import annotations

import asyncio
import shlex
from dataclasses import dataclass, field
from typing import Any

import pytest

import jolt_cli.commands as commands
import jolt_cli.config as config_mod
from jolt_cli.utils import ExecError, ExecResult


_TOOL_ENV_VARS = (
    "DOCKER_COMMAND",
    "COMPOSE_COMMAND",
    "TERRAFORM_COMMAND",
    "NODE_COMMAND",
    "YARN_COMMAND",
    "AWS_COMMAND",
    "SSH_COMMAND",
    "RSYNC_COMMAND",
    "GIT_COMMAND",
    "GZIP_COMMAND",
)


@pytest.fixture(autouse=True)
def _clean_tool_env(monkeypatch) -> None:
    for name in _TOOL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"JOLT_{name}", raising=False)
    for name in ("AWS_REGION", "JOLT_SITE", "JOLT_DEBUG", "JOLT_IGNORE_REQUIRED_COMMANDS"):
        monkeypatch.delenv(name, raising=False)


@dataclass
class _Reply:
    stdout: str = ""
    exit_code: int = 0
    error: Exception | None = None
    delay: float = 0.0


@dataclass
class _Call:
    argv: list[str]
    kwargs: dict[str, Any] = field(default_factory=dict)


class FakeExec:
    """Stands in for ``exec_c``; replies are matched on the arguments after the executable."""

    def __init__(self) -> None:
        self.calls: list[_Call] = []
        self._replies: list[tuple[tuple[str, ...], _Reply]] = []

    def on(self, *prefix: str, stdout: str = "", exit_code: int = 0, error: Exception | None = None, delay: float = 0.0) -> None:
        self._replies.append((prefix, _Reply(stdout=stdout, exit_code=exit_code, error=error, delay=delay)))

    def count(self, *prefix: str) -> int:
        return sum(1 for c in self.calls if tuple(c.argv[1 : 1 + len(prefix)]) == prefix)

    def argvs(self) -> list[list[str]]:
        return [c.argv for c in self.calls]

    async def __call__(self, command: str, args: Any = (), **kwargs: Any) -> ExecResult:
        cleaned = [str(a) for a in args if a]
        argv = [command] + cleaned if kwargs.get("shell") else shlex.split(command) + cleaned
        self.calls.append(_Call(argv=argv, kwargs=kwargs))
        reply = _Reply()
        for prefix, candidate in self._replies:
            if tuple(argv[1 : 1 + len(prefix)]) == prefix:
                reply = candidate
                break
        if reply.delay:
            await asyncio.sleep(reply.delay)
        if reply.error is not None:
            raise reply.error
        result = ExecResult(argv=argv, exit_code=reply.exit_code, stdout=reply.stdout)
        if kwargs.get("check", True) and reply.exit_code != 0:
            raise ExecError(argv=argv, kind="exit", exit_code=reply.exit_code, result=result)
        return result


@pytest.fixture
def fake_exec(monkeypatch) -> FakeExec:
    fake = FakeExec()
    monkeypatch.setattr(config_mod, "exec_c", fake)
    monkeypatch.setattr(commands, "exec_c", fake)
    return fake


@pytest.fixture
def all_tools_present(monkeypatch) -> None:
    monkeypatch.setattr(config_mod, "which", lambda cmd: f"/usr/bin/{cmd.split(' ')[0]}")
    monkeypatch.setattr(commands, "which", lambda cmd: f"/usr/bin/{cmd.split(' ')[0]}")
