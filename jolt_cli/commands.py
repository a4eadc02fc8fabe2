from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from rich.markup import escape

from .cli_shared import (
    _CONSOLE,
    EXIT_MISSING_COMMANDS,
    JOLT_IGNORE_REQUIRED_COMMANDS,
    ConfigValidationError,
    _rich_error,
    _say,
    _truthy,
    _warn,
)
from .config import Config
from .config_types import PrepareCommand
from .utils import ExecError, delay, directory_exists, exec_c, which

logger = logging.getLogger(__name__)

CONFIG_LISTED_COMMANDS: tuple[str, ...] = (
    "aws",
    "compose",
    "docker",
    "git",
    "gzip",
    "node",
    "rsync",
    "ssh",
    "tofu",
    "yarn",
)

REQUIRED_COMMANDS: dict[str, tuple[str, ...]] = {
    "ssh": ("ssh",),
    "db dump": ("docker",),
    "db reset": ("docker",),
    "db await": ("docker",),
    "cache flush": ("docker",),
    "docker build": ("docker",),
    "docker tag": ("docker",),
    "docker push": ("docker",),
    "docker login": ("aws", "docker"),
    "docker combined": ("docker",),
    "docker manifest": ("aws", "docker"),
    "build": ("docker",),
    "wp": ("docker", "compose"),
    "wp-cli": ("docker", "compose"),
    "aws ecs deploy": ("aws",),
}

_ECR_REGION_RE = re.compile(r"dkr\.ecr\.([^.]+)\.amazonaws\.com")

DEFAULT_DB_AWAIT_TIMEOUT = 30.0


def missing_commands(config: Config, names: Sequence[str]) -> list[str]:
    missing: list[str] = []
    for name in names:
        real = config.command(name)
        if not which(real):
            missing.append(real)
    return missing


def check_required_commands(config: Config, command_path: str) -> int:
    if _truthy(os.environ.get(JOLT_IGNORE_REQUIRED_COMMANDS)):
        return 0
    missing = missing_commands(config, REQUIRED_COMMANDS.get(command_path, ()))
    if not missing:
        return 0
    logger.debug("jolt %s needs %s", command_path, ", ".join(missing))
    _rich_error("missing the following commands:")
    for m in missing:
        _warn(f"- {m}")
    _warn("See `jolt config` for more information.")
    return EXIT_MISSING_COMMANDS


async def _parse_args(config: Config, args: Sequence[str], params: dict[str, str] | None = None) -> list[str]:
    return list(await asyncio.gather(*(config.parse_arg(a, params) for a in args)))


# config


async def cmd_config(config: Config, *, fmt: str = "pretty") -> int:
    if fmt == "json":
        sys.stdout.write(config.as_json() + "\n")
        return 0
    if fmt != "pretty":
        _rich_error(f'unknown format "{fmt}"')
        return 1

    _CONSOLE.print("[bold]jolt config[/bold]\n")
    _CONSOLE.print("[bold blue]Commands:[/bold blue]")
    for name in CONFIG_LISTED_COMMANDS:
        override = config.get_command_override(name)
        line = f"[bold]{escape(name)}:[/bold] "
        if which(override.command):
            line += f"[green]{escape(override.command)}[/green]"
        else:
            line += f"[red]{escape(override.command)} [bold]\\[Missing!][/bold][/red]"
        if override.source_type == "env":
            line += f" [dim]\\[Env var: {escape(override.source)}][/dim]"
        elif override.source_type == "config":
            line += f" [dim]\\[Config: {escape(override.source)}][/dim]"
        _CONSOLE.print(line)

    _CONSOLE.print("")
    source = f" [dim]\\[Source file: {escape(config.config_path)}][/dim]" if config.config_path else ""
    _CONSOLE.print(f"[bold blue]Config:[/bold blue]{source}")
    for key, value in config:
        if isinstance(value, str):
            parsed = await config.parse_arg(value)
            line = f"[bold]{escape(key)}:[/bold] {escape(parsed)}"
            if parsed != value:
                line += f" [dim]\\[Parsed from: {escape(value)}][/dim]"
        else:
            line = f"[bold]{escape(key)}:[/bold] {escape(json.dumps(value))}"
        _CONSOLE.print(line)
    return 0


# cmd


def _split_cmd_options(args: Sequence[str]) -> tuple[bool, str | None, list[str]]:
    quiet = False
    cwd: str | None = None
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-q", "--quiet"):
            quiet = True
            i += 1
        elif arg in ("-c", "--cwd"):
            cwd = args[i + 1] if i + 1 < len(args) else None
            i += 2
        elif arg.startswith("--cwd="):
            cwd = arg[len("--cwd=") :]
            i += 1
        else:
            break
    return quiet, cwd, list(args[i:])


async def cmd_cmd(config: Config, args: Sequence[str]) -> int:
    parsed = await _parse_args(config, args)
    quiet, cwd, command_args = _split_cmd_options(parsed)
    if not command_args:
        _rich_error("missing command to run")
        return 1
    if not quiet:
        _say(f"Running command: {' '.join(command_args)}...")
    run_dir = str(config.cwd / cwd) if cwd else None
    result = await exec_c(command_args[0], command_args[1:], cwd=run_dir, shell=True, check=False)
    return result.exit_code


# ssh


async def cmd_ssh(config: Config, args: Sequence[str], *, dev: bool = False) -> int:
    account = await config.get_str("devSshAccount" if dev else "sshAccount")
    if not account:
        _rich_error(f"missing {'devSshAccount' if dev else 'sshAccount'} config variable")
        return 1
    port = await config.get_str("sshPort")
    parsed = await _parse_args(config, args)
    ssh_args = (["-p", port] if port else []) + [account, *parsed]
    result = await exec_c(config.command("ssh"), ssh_args, check=False)
    return result.exit_code


# db


def _backup_filename(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    return f"backup-{stamp}.sql"


async def cmd_db_dump(config: Config, *, backup: bool = False) -> int:
    should_gzip = backup
    if backup:
        backup_path = await config.get_str("dbBackupPath")
        if not backup_path:
            _rich_error("the DB backup location must be configured as dbBackupPath")
            return 1
        file_path = (config.cwd / backup_path / _backup_filename()).resolve()
    else:
        seed = await config.get_str("dbSeed")
        if not seed:
            _rich_error("the DB seed location must be configured as dbSeed")
            return 1
        file_path = (config.cwd / seed).resolve()

    info = await config.get_db_container_info()
    if info is None:
        _rich_error("couldn't find information about the database container; try setting config explicitly")
        return 2

    if file_path.suffix == ".gz":
        should_gzip = True
        file_path = file_path.with_suffix("")

    file_path.parent.mkdir(parents=True, exist_ok=True)
    _say(f"Dumping contents of the DB in container '{info.name}' to {file_path}...")
    compose, args = config.get_compose_command()
    args += [
        "exec",
        "-T",
        info.name,
        info.dump_command,
        "--skip-add-drop-table",
        "-u",
        info.credentials.user,
        f"-p{info.credentials.password}",
        info.credentials.db,
    ]
    result = await exec_c(compose, args, stdout_path=file_path, check=False)
    if result.failed:
        _rich_error(f"database dump failed with exit code {result.exit_code}")
        return result.exit_code

    if should_gzip:
        gzip = config.command("gzip")
        if which(gzip):
            _say("Gzipping file...")
            gz = await exec_c(gzip, ["--force", str(file_path)], check=False)
            if gz.failed:
                _rich_error(f"gzip failed with exit code {gz.exit_code}")
                return gz.exit_code
            file_path = file_path.with_name(file_path.name + ".gz")
        elif backup:
            _warn(f"Wrote backup to {file_path} but couldn't find gzip. Install gzip to compress backups.")
        else:
            _rich_error(f"wrote seed to {file_path} but gzip is missing; install gzip to compress the DB seed")
            return 2

    _say(f"Successfully dumped contents of the DB in container '{info.name}' to {file_path}.")
    return 0


async def cmd_db_await(config: Config, *, timeout: float = DEFAULT_DB_AWAIT_TIMEOUT, quiet: bool = False) -> int:
    info = await config.get_db_container_info()
    if info is None:
        _rich_error("couldn't find information about the database container; try setting config explicitly")
        return 2

    compose, base_args = config.get_compose_command()
    args = base_args + [
        "exec",
        "-T",
        info.name,
        info.admin_command,
        "ping",
        "--silent",
        "-u",
        info.credentials.user,
        f"-p{info.credentials.password}",
    ]
    if not quiet:
        _say(f"Waiting up to {timeout:g} seconds for the DB in container '{info.name}'...")
    deadline = time.monotonic() + timeout
    while True:
        result = await exec_c(compose, args, capture=True, check=False)
        if not result.failed:
            if not quiet:
                _say("Database is ready.")
            return 0
        if time.monotonic() >= deadline:
            break
        await delay(1)
    _rich_error(f"database in container '{info.name}' was not ready after {timeout:g} seconds")
    return 1


async def cmd_db_reset(config: Config) -> int:
    _say("Backing up current database...")
    backup_code = await cmd_db_dump(config, backup=True)
    if backup_code > 0:
        _rich_error("failed to back up database")
        return backup_code

    compose, args = config.get_compose_command()
    _say("Bringing containers down...")
    await exec_c(compose, args + ["down"], check=False)

    compose_config = await config.get_compose_config()
    if compose_config is None or not compose_config.services:
        _rich_error("failed to get compose config")
        return 1

    db_info, cache_info = await asyncio.gather(
        config.get_db_container_info(),
        config.get_cache_container_info(),
    )
    service_volumes = []
    for info in (db_info, cache_info):
        if info is not None and info.service is not None:
            service_volumes.extend(info.service.volumes)
    to_delete = [v.source for v in service_volumes if v.type == "volume" and v.source]

    if to_delete:
        full_names: list[str] = []
        for volume in to_delete:
            declared = compose_config.volumes.get(volume)
            if declared is None:
                _rich_error(f"missing volume config in compose file for volume '{volume}'")
                return 2
            full_names.append(declared.name)
        _say(f"Deleting the following volumes: {', '.join(full_names)}")
        await exec_c(config.command("docker"), ["volume", "rm", *full_names], capture=True, check=False)
        _say("Deleted volumes.")
    else:
        _warn("Didn't find any DB or cache volumes to delete. Maybe there's a config issue?")

    _say("Bringing containers back up...")
    up = await exec_c(compose, args + ["up", "--detach"], check=False)
    if up.failed:
        _rich_error(f"compose up failed with exit code {up.exit_code}")
        return up.exit_code

    dev_plugins = await config.get_str("devPlugins")
    if dev_plugins:
        seconds = await config.get_dev_plugin_delay()
        await cmd_db_await(config, timeout=seconds, quiet=False)
        code = await _activate_dev_plugins(config, dev_plugins)
        if code:
            return code

    _say("Done resetting DB!")
    return 0


async def _activate_dev_plugins(config: Config, dev_plugins: str) -> int:
    plugins = [p.strip() for p in dev_plugins.split(",") if p.strip()]
    if not plugins:
        return 0
    _say(f"Activating dev plugins: {', '.join(plugins)}")
    result = await exec_c(config.command("yarn"), ["run", "wp", "plugin", "activate", *plugins], check=False)
    if result.failed:
        _rich_error(f"failed to activate dev plugins (exit code {result.exit_code})")
    return result.exit_code


# cache


async def cmd_cache_flush(config: Config) -> int:
    info = await config.get_cache_container_info()
    if info is None:
        _rich_error("couldn't find a configured cache container")
        return 1
    compose, args = config.get_compose_command()
    _say(f"Clearing cache in container '{info.name}' using the {info.cli_command} command.")
    result = await exec_c(compose, args + ["exec", info.name, info.cli_command, "flushall"], check=False)
    if not result.failed:
        _say("Cache cleared.")
    return result.exit_code


# wp

# Sub-arguments of `wp cli` as of WP-CLI 2.12.
WP_CLI_SUBCOMMANDS: frozenset[str] = frozenset(
    {
        "alias",
        "cache",
        "check-update",
        "cmd-dump",
        "completions",
        "has-command",
        "info",
        "param-dump",
        "update",
        "version",
    }
)

_WP_CLI_IMAGE_RE = re.compile(r"\bwp[_-]?cli\b", re.IGNORECASE)


async def find_wp_cli_container(config: Config) -> str | None:
    explicit = await config.get_str("wpCliContainer")
    if explicit:
        return explicit
    compose = await config.get_compose_config()
    if compose is None:
        return None
    for name, service in compose.services.items():
        if service.image and _WP_CLI_IMAGE_RE.search(service.image):
            return name
    return None


async def find_wp_cli_profile(config: Config, container: str) -> str | None:
    explicit = await config.get_str("wpCliContainerProfile")
    if explicit:
        return explicit
    compose = await config.get_compose_config()
    service = compose.services.get(container) if compose is not None else None
    if service is None or not service.profiles:
        return None
    return service.profiles[0]


def _user_arg() -> str | None:
    getuid = getattr(os, "getuid", None)
    getgid = getattr(os, "getgid", None)
    if getuid is None or getgid is None:
        return None
    return f"--user={getuid()}:{getgid()}"


async def cmd_wp_cli(config: Config, args: Sequence[str], *, add_cli_arg: bool = True) -> int:
    """Run wp-cli locally when installed, else in the project's wp-cli container.

    Bare ``wp-cli`` subcommands such as ``version`` are rewritten to
    ``cli version`` unless ``add_cli_arg`` is off.
    """
    wp_args = list(args)
    if add_cli_arg and wp_args and wp_args[0] in WP_CLI_SUBCOMMANDS:
        wp_args = ["cli", *wp_args]

    if which("wp") and "wp" not in _package_scripts(config):
        logger.debug("using local wp executable")
        result = await exec_c("wp", await _parse_args(config, wp_args), check=False)
        return result.exit_code

    container = await find_wp_cli_container(config)
    if not container:
        _rich_error("Couldn't find a WP CLI container. Set it with the 'wpCliContainer' config key.")
        return 1
    profile = await find_wp_cli_profile(config, container)

    compose, base_args = config.get_compose_command()
    run_args = [
        *base_args,
        f"--profile={profile}" if profile else "",
        "run",
        "--rm",
        _user_arg() or "",
        container,
        "wp",
        *wp_args,
    ]
    result = await exec_c(compose, await _parse_args(config, run_args), check=False)
    return result.exit_code


# docker


async def build_docker_args(config: Config, *, dev: bool, extra_args: Sequence[str] = ()) -> list[str]:
    # --no-provenance is accepted from older project scripts.
    renamed = ["--provenance=false" if a == "--no-provenance" else a for a in extra_args]
    parsed = await _parse_args(config, renamed)
    image = await config.get_docker_image_name(dev)
    platform = await config.get_str("buildPlatform")
    context = await config.get_str("buildContext")
    dockerfile = config.get_dockerfile_path()

    args: list[str] = ["buildx", "build"]
    if platform:
        args.append(f"--platform={platform}")
    if dockerfile:
        args += ["-f", dockerfile]
    args += ["-t", str(image)]
    if dev:
        args.append("--build-arg=DEVBUILD=1")
    args += [a for a in parsed if a]
    args.append(context or ".")
    return args


async def cmd_docker_build(config: Config, *, dev: bool = False, extra_args: Sequence[str] = ()) -> int:
    image = await config.get_docker_image_name(dev)
    if not image:
        _rich_error("image name must be configured (imageName)")
        return 1
    docker = config.command("docker")
    if not which(docker):
        _rich_error(f"could not find command {docker}")
        return 2
    _say(f"Building image {image} for {'dev' if dev else 'prod'} using {docker}...")
    args = await build_docker_args(config, dev=dev, extra_args=extra_args)
    _CONSOLE.print(f"Running command: {escape(' '.join([docker, *args]))}")
    result = await exec_c(docker, args, check=False)
    return result.exit_code


async def cmd_docker_tag(config: Config, *, dev: bool = False, tag: str | None = None, git_tag: bool = True) -> int:
    image = await config.get_docker_image_name(dev)
    if not image:
        _rich_error("image name must be configured (imageName)")
        return 1
    remote = await config.get_remote_repo(dev)
    if not remote:
        _rich_error("remote repo must be configured (ecrRepoUrl)")
        return 1
    docker = config.command("docker")
    if not which(docker):
        _rich_error(f"could not find command {docker}")
        return 2

    remote_tag = tag or "latest"
    _say(f"Tagging image {image}:latest as {remote}:{remote_tag}...")
    result = await exec_c(docker, ["tag", f"{image}:latest", f"{remote}:{remote_tag}"], check=False)
    if result.failed or not git_tag:
        return result.exit_code

    sha = await config.git_sha()
    if not sha:
        _warn("Failed to find Git SHA, skipping SHA tag.")
        return result.exit_code
    return await cmd_docker_tag(config, dev=dev, tag=sha[:8], git_tag=False)


async def cmd_docker_push(config: Config, *, dev: bool = False, tag: str | None = None, git_tag: bool = True) -> int:
    remote = await config.get_remote_repo(dev)
    if not remote:
        _rich_error("remote repo must be configured (ecrRepoUrl)")
        return 1
    docker = config.command("docker")
    if not which(docker):
        _rich_error(f"could not find command {docker}")
        return 2

    remote_tag = tag or "latest"
    _say(f"Pushing image {remote}:{remote_tag}...")
    result = await exec_c(docker, ["push", f"{remote}:{remote_tag}"], check=False)
    if result.failed or not git_tag:
        return result.exit_code

    sha = await config.git_sha()
    if not sha:
        _warn("Failed to find Git SHA, skipping SHA push.")
        return result.exit_code
    return await cmd_docker_push(config, dev=dev, tag=sha[:8], git_tag=False)


async def resolve_ecr_region(config: Config, repo_url: str | None) -> str:
    if repo_url:
        m = _ECR_REGION_RE.search(repo_url)
        if m:
            return m.group(1)
    configured = await config.get_str("awsRegion")
    if configured:
        return configured
    from_tf = await config.tf_var("region")
    if from_tf:
        return from_tf
    return config.aws_region()


async def cmd_docker_login(config: Config) -> int:
    repo_url = await config.get_str("ecrRepoUrl") or await config.tf_var("ecr_repo_url")
    base_url = await config.get_str("ecrBaseUrl") or await config.tf_var("ecr_base_url")
    if not base_url and repo_url:
        base_url = repo_url.split("/", 1)[0]
    if not base_url:
        _rich_error("ECR base URL must be configured (ecrBaseUrl)")
        return 1

    region = await resolve_ecr_region(config, repo_url)
    _say(f"Logging in to ECR repository {base_url} on {region}...")
    try:
        password = await exec_c(
            config.command("aws"),
            ["ecr", "get-login-password", "--region", region],
            capture=True,
        )
    except ExecError as e:
        _rich_error(f"failed to log in: {e}")
        return e.exit_code or 1
    result = await exec_c(
        config.command("docker"),
        ["login", "--username", "AWS", "--password-stdin", base_url],
        input_text=password.stdout.strip(),
        check=False,
    )
    return result.exit_code


async def cmd_build(config: Config, *, dev: bool = False) -> int:
    image = await config.get_str("imageName")
    if not image:
        _rich_error("nothing to build; configure imageName or run `jolt docker build`")
        return 1
    _say(f"Found a configured image name ({image}) - assuming you wanted to build Docker.", style="yellow")
    return await cmd_docker_build(config, dev=dev)


async def cmd_docker_combined(config: Config, *, dev: bool = False, deploy: bool = False) -> int:
    """Build and tag the image; with ``deploy`` also log in, push and roll ECS.

    Stops at the first step that fails and returns its exit code.
    """
    steps = [
        lambda: cmd_docker_build(config, dev=dev),
        lambda: cmd_docker_tag(config, dev=dev),
    ]
    if deploy:
        steps += [
            lambda: cmd_docker_login(config),
            lambda: cmd_docker_push(config, dev=dev),
            lambda: cmd_ecs_deploy(config, dev=dev),
        ]
    for step in steps:
        code = await step()
        if code:
            return code
    return 0


async def cmd_docker_manifest(config: Config, *, dev: bool = False, build: bool = True) -> int:
    remote = await config.get_remote_repo(dev)
    if not remote:
        _rich_error("remote repo must be configured (ecrRepoUrl)")
        return 1

    code = await cmd_docker_login(config)
    if code:
        return code
    if build:
        code = await cmd_docker_build(config, dev=dev, extra_args=["--no-provenance"])
        if code:
            return code

    try:
        result = await exec_c(
            config.command("docker"),
            ["buildx", "imagetools", "inspect", remote, "--format={{json .Manifest}}"],
            capture=True,
        )
    except ExecError as e:
        _rich_error(str(e))
        return e.exit_code or 1
    try:
        doc: Any = json.loads(result.stdout or "{}")
    except ValueError:
        doc = {}
    digest = doc.get("digest") if isinstance(doc, dict) else None
    if not digest:
        _rich_error("Couldn't find digest in command output!")
        return 1
    sys.stdout.write(f"{digest}\n")
    return 0


# aws


async def _ecs_target(config: Config, *, dev: bool) -> tuple[str | None, str | None]:
    cluster = await config.get_str("devEcsCluster" if dev else "ecsCluster") or await config.tf_var(
        "ecs_cluster_dev" if dev else "ecs_cluster"
    )
    service = await config.get_str("devEcsService" if dev else "ecsService") or await config.tf_var(
        "ecs_service_dev" if dev else "ecs_service"
    )
    return cluster, service


async def cmd_ecs_deploy(config: Config, *, dev: bool = False) -> int:
    cluster, service = await _ecs_target(config, dev=dev)
    if not cluster:
        _rich_error("ECS cluster must be configured (ecsCluster)")
        return 1
    if not service:
        _rich_error("ECS service must be configured (ecsService)")
        return 1

    _say(f"Deploying service {service} on cluster {cluster}...")
    result = await exec_c(
        config.command("aws"),
        [
            "ecs",
            "update-service",
            "--cluster",
            cluster,
            "--service",
            service,
            "--force-new-deployment",
        ],
        env={"AWS_PAGER": ""},
        capture=True,
        check=False,
    )
    if result.failed or not result.stdout.strip():
        _rich_error("failed to deploy")
        if result.stderr.strip():
            _warn(result.stderr.strip())
        return result.exit_code or 1

    try:
        doc: Any = json.loads(result.stdout)
    except ValueError:
        doc = {}
    svc = doc.get("service") if isinstance(doc, dict) else None
    svc = svc if isinstance(svc, dict) else {}
    _CONSOLE.print("[bold blue]Started deploy:[/bold blue]")
    _CONSOLE.print(f"Cluster ARN: {escape(str(svc.get('clusterArn', '')))}")
    _CONSOLE.print(f"Service Name: {escape(str(svc.get('serviceName', '')))}")
    _CONSOLE.print(f"Service ARN: {escape(str(svc.get('serviceArn', '')))}")
    return 0


# prepare


def _has_tofu_files(cwd: Path) -> bool:
    return any(p.suffix in (".tf", ".tofu") for p in cwd.iterdir() if p.is_file())


def _package_scripts(config: Config) -> dict[str, Any]:
    pkg = config.get_package_json() or {}
    scripts = pkg.get("scripts")
    return scripts if isinstance(scripts, dict) else {}


async def run_prepare_commands(config: Config, timing: str) -> int:
    try:
        commands: list[PrepareCommand] = config.get_prepare_commands(timing)
    except ConfigValidationError as e:
        _rich_error(str(e))
        return 1

    logger.debug("%d %s prepare command(s)", len(commands), timing)
    for command in commands:
        name = command.name or command.cmd
        _say(f"  Running command from config: {name}...", style="white")
        cwd_args = ["--cwd", command.dir] if command.dir else []
        code = await cmd_cmd(config, [*cwd_args, command.cmd])
        if command.fail and code > 0:
            _rich_error(f"error running prepare step {name}: returned code {code}")
            return code
    return 0


async def cmd_prepare(
    config: Config,
    *,
    husky: bool = True,
    tofu: bool = True,
    db_seeds: bool = True,
    dev_plugins: bool = True,
    plugin_delay: float | None = None,
) -> int:
    _CONSOLE.print("[bold blue]Preparing repo...[/bold blue]")

    code = await run_prepare_commands(config, "early")
    if code > 0:
        return code

    cwd = config.cwd
    if husky and directory_exists(cwd / ".husky"):
        _say("  Preparing Husky hooks...", style="white")
        await exec_c(config.command("npx"), ["--yes", "--prefer-offline", "husky"], check=False)

    if tofu and _has_tofu_files(cwd):
        _say("  Preparing Terraform variables...", style="white")
        tofu_cmd = config.command("tofu")
        await exec_c(tofu_cmd, ["init"], check=False)
        await exec_c(tofu_cmd, ["refresh"], check=False)

    scripts = _package_scripts(config)
    if db_seeds and "download-db-seeds" in scripts:
        _say("  Downloading DB seeds...", style="white")
        await exec_c(config.command("yarn"), ["run", "download-db-seeds"], check=False)

    plugins = await config.get_str("devPlugins")
    if plugins and "wp" in scripts:
        if dev_plugins:
            _say("  Starting Compose stack...", style="white")
            compose, args = config.get_compose_command()
            await exec_c(compose, args + ["up", "--build", "-d"], check=False)
            seconds = plugin_delay if plugin_delay and plugin_delay > 0 else await config.get_dev_plugin_delay()
            await cmd_db_await(config, timeout=seconds, quiet=True)
            await _activate_dev_plugins(config, plugins)
        else:
            _say("  Skipping dev plugins... SKIPPED", style="yellow")

    code = await run_prepare_commands(config, "normal")
    if code > 0:
        return code

    _CONSOLE.print("[bold blue]Repo prepared.[/bold blue]")
    return 0
