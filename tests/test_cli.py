from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable

import click
import typer
from typer.testing import CliRunner

import jolt_cli.commands as commands
from jolt_cli import __version__
from jolt_cli.cli import app, main
from jolt_cli.cli_shared import setup_logging


runner = CliRunner()

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


def _plain(s: str) -> str:
    return _ANSI_RE.sub("", s)


def _walk_click_commands(root: click.Command) -> Iterable[tuple[str, click.Command]]:
    stack: list[tuple[str, click.Command]] = [("", root)]
    while stack:
        base, cmd = stack.pop()
        if isinstance(cmd, click.Group):
            for name, sub in cmd.commands.items():
                path = f"{base} {name}".strip()
                yield path, sub
                stack.append((path, sub))


def test_all_commands_have_help_text() -> None:
    paths = []
    for path, cmd in _walk_click_commands(typer.main.get_command(app)):
        paths.append(path)
        if isinstance(cmd, click.Group):
            continue
        assert str(cmd.help or "").strip(), f"missing help text for command: {path}"
    for expected in (
        "config",
        "cmd",
        "ssh",
        "prepare",
        "db dump",
        "db reset",
        "db await",
        "cache flush",
        "cache clean",
        "cache clear",
        "docker build",
        "docker tag",
        "docker push",
        "docker login",
        "docker combined",
        "docker manifest",
        "build",
        "wp",
        "wp-cli",
        "aws ecs deploy",
        "aws ecs-deploy",
    ):
        assert expected in paths


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == f"jolt {__version__}"


def test_config_json_from_project_dir(tmp_path, monkeypatch) -> None:
    doc = {"imageName": "app", "sshPort": "22"}
    (tmp_path / ".jolt.json").write_text(json.dumps(doc))
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["config", "--format", "json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == doc


def test_invalid_config_file_is_usage_error(tmp_path, monkeypatch) -> None:
    (tmp_path / ".jolt.json").write_text("[1, 2]")
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 2


def test_cmd_passes_options_through_and_uses_site(tmp_path, monkeypatch, fake_exec) -> None:
    doc = {"imageName": "app", "sites": {"blog": {"imageName": "blog-app"}}}
    (tmp_path / ".jolt.json").write_text(json.dumps(doc))
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["--site", "blog", "cmd", "-q", "echo", "{conf:imageName}", "--flag"])
    assert result.exit_code == 0, _plain(result.output)
    assert fake_exec.calls[-1].argv == ["echo", "blog-app", "--flag"]


def test_site_from_environment(tmp_path, monkeypatch, fake_exec) -> None:
    doc = {"imageName": "app", "shopImageName": "shop-app"}
    (tmp_path / ".jolt.json").write_text(json.dumps(doc))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JOLT_SITE", "shop")
    result = runner.invoke(app, ["cmd", "-q", "echo", "{conf:imageName}"])
    assert result.exit_code == 0
    assert fake_exec.calls[-1].argv == ["echo", "shop-app"]


def test_cmd_exit_code_is_propagated(tmp_path, monkeypatch, fake_exec) -> None:
    monkeypatch.chdir(tmp_path)
    fake_exec.on(exit_code=7)
    result = runner.invoke(app, ["cmd", "-q", "false"])
    assert result.exit_code == 7


def test_missing_required_commands_exit_4(tmp_path, monkeypatch, fake_exec) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(commands, "which", lambda cmd: None)
    result = runner.invoke(app, ["docker", "login"])
    assert result.exit_code == 4
    assert fake_exec.calls == []


def test_cache_aliases_flush(tmp_path, monkeypatch, fake_exec, all_tools_present) -> None:
    monkeypatch.chdir(tmp_path)
    fake_exec.on("compose", "config", stdout=json.dumps({"services": {"cache": {"image": "redis:7"}}}))
    for alias in ("flush", "clean", "clear"):
        fake_exec.calls.clear()
        result = runner.invoke(app, ["cache", alias])
        assert result.exit_code == 0, _plain(result.output)
        assert fake_exec.calls[-1].argv == ["docker", "compose", "exec", "cache", "redis-cli", "flushall"]


def test_docker_build_forwards_extra_args(tmp_path, monkeypatch, fake_exec, all_tools_present) -> None:
    (tmp_path / ".jolt.json").write_text(json.dumps({"imageName": "app"}))
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["docker", "build", "--dev", "--no-cache"])
    assert result.exit_code == 0, _plain(result.output)
    argv = fake_exec.calls[-1].argv
    assert argv[:3] == ["docker", "buildx", "build"]
    assert "--build-arg=DEVBUILD=1" in argv
    assert "--no-cache" in argv
    assert argv[argv.index("-t") + 1] == "app-dev"


def test_wp_routes_cli_prefix(tmp_path, monkeypatch, fake_exec) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JOLT_IGNORE_REQUIRED_COMMANDS", "1")
    monkeypatch.setattr(commands, "which", lambda cmd: f"/usr/bin/{cmd}")
    result = runner.invoke(app, ["wp", "cli", "version"])
    assert result.exit_code == 0, _plain(result.output)
    assert fake_exec.calls[-1].argv == ["wp", "cli", "version"]
    result = runner.invoke(app, ["wp-cli", "version"])
    assert fake_exec.calls[-1].argv == ["wp", "cli", "version"]
    result = runner.invoke(app, ["wp", "version"])
    assert fake_exec.calls[-1].argv == ["wp", "version"]
    result = runner.invoke(app, ["wp", "plugin", "list", "--status=active"])
    assert result.exit_code == 0, _plain(result.output)
    assert fake_exec.calls[-1].argv == ["wp", "plugin", "list", "--status=active"]


def test_docker_tag_custom_tag_without_sha(tmp_path, monkeypatch, fake_exec, all_tools_present) -> None:
    (tmp_path / ".jolt.json").write_text(json.dumps({"imageName": "app", "ecrRepoUrl": "registry.example.com/app"}))
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["docker", "tag", "release", "--no-git-tag"])
    assert result.exit_code == 0, _plain(result.output)
    assert [a for a in fake_exec.argvs() if a[:2] == ["docker", "tag"]] == [
        ["docker", "tag", "app:latest", "registry.example.com/app:release"]
    ]
    assert fake_exec.count("rev-parse") == 0


def test_aws_ecs_deploy_and_alias(tmp_path, monkeypatch, fake_exec, all_tools_present) -> None:
    (tmp_path / ".jolt.json").write_text(json.dumps({"ecsCluster": "main", "ecsService": "web"}))
    monkeypatch.chdir(tmp_path)
    fake_exec.on("ecs", "update-service", stdout="{}")
    for path in (["aws", "ecs", "deploy"], ["aws", "ecs-deploy"]):
        result = runner.invoke(app, path)
        assert result.exit_code == 0, _plain(result.output)
        assert fake_exec.calls[-1].argv[1:3] == ["ecs", "update-service"]


def test_main_returns_exit_codes(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert main(["--version"]) == 0
    assert main(["db", "no-such-command"]) == 2
    assert main(["config", "--format", "json"]) == 0


def test_setup_logging_levels(monkeypatch) -> None:
    assert setup_logging().level == logging.WARNING
    assert setup_logging(verbose=True).level == logging.DEBUG
    monkeypatch.setenv("JOLT_DEBUG", "1")
    logger = setup_logging()
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert logger.propagate is False
