from __future__ import annotations

import asyncio
import sys
from typing import Any

import click
import typer

from . import __version__
from .cli_shared import (
    _ERROR_CONSOLE,
    GlobalOpts,
    OpError,
    UsageError,
    _eprint,
    _env_or_none,
    _rich_error,
    setup_logging,
)
from .commands import (
    DEFAULT_DB_AWAIT_TIMEOUT,
    check_required_commands,
    cmd_build,
    cmd_cache_flush,
    cmd_cmd,
    cmd_config,
    cmd_db_await,
    cmd_db_dump,
    cmd_db_reset,
    cmd_docker_build,
    cmd_docker_combined,
    cmd_docker_login,
    cmd_docker_manifest,
    cmd_docker_push,
    cmd_docker_tag,
    cmd_ecs_deploy,
    cmd_prepare,
    cmd_ssh,
    cmd_wp_cli,
)
from .config import Config, load_config

PROG_NAME = "jolt"

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


def _render_usage_error_with_help(*, message: str, ctx: click.Context | None = None) -> None:
    _rich_error(message)
    if isinstance(ctx, click.Context):
        help_text = str(ctx.get_help() or "").strip()
        if help_text:
            _eprint("")
            _eprint(help_text)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{PROG_NAME} {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name=PROG_NAME,
    help="Project devops helper: builds, deploys, databases and caches from one config.",
    no_args_is_help=True,
    add_completion=False,
)
db_app = typer.Typer(help="Database container helpers", no_args_is_help=True)
cache_app = typer.Typer(help="Cache container helpers", no_args_is_help=True)
docker_app = typer.Typer(help="Image build and registry helpers", no_args_is_help=True)
aws_app = typer.Typer(help="AWS deployment helpers", no_args_is_help=True)
ecs_app = typer.Typer(help="ECS service helpers", no_args_is_help=True)

app.add_typer(db_app, name="db")
app.add_typer(cache_app, name="cache")
app.add_typer(docker_app, name="docker")
app.add_typer(aws_app, name="aws")
aws_app.add_typer(ecs_app, name="ecs")


@app.callback()
def app_callback(
    ctx: typer.Context,
    site: str | None = typer.Option(
        None,
        "--site",
        help="Site name for multi-site configs (env override: JOLT_SITE)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    setup_logging(verbose=verbose)
    g = GlobalOpts(site=(site or _env_or_none("JOLT_SITE") or ""), verbose=verbose)
    try:
        config = load_config()
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    config.set_site(g.site)
    ctx.obj = {"g": g, "config": config}


def _ctx_config(ctx: typer.Context) -> Config:
    return ctx.find_root().obj["config"]


def _invoke(ctx: typer.Context, command_path: str, func: Any, **kwargs: Any) -> None:
    config = _ctx_config(ctx)
    code = check_required_commands(config, command_path)
    if code:
        raise typer.Exit(code=code)
    try:
        code = int(asyncio.run(func(config, **kwargs)))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


@app.command("config", help="Show resolved commands and config values.")
def config_command(
    ctx: typer.Context,
    fmt: str = typer.Option("pretty", "--format", "-f", help="Output format: pretty or json"),
) -> None:
    _invoke(ctx, "config", cmd_config, fmt=fmt)


@app.command("cmd", help="Run a shell command after interpolating {type:name} placeholders.", context_settings=_PASSTHROUGH)
def cmd_command(
    ctx: typer.Context,
    args: list[str] | None = typer.Argument(None, help="[-q] [-c DIR] COMMAND [ARGS...]"),
) -> None:
    _invoke(ctx, "cmd", cmd_cmd, args=list(args or []) + list(ctx.args))


@app.command("ssh", help="Open an SSH session to the configured account.", context_settings=_PASSTHROUGH)
def ssh_command(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Use devSshAccount"),
    args: list[str] | None = typer.Argument(None, help="Extra arguments passed to ssh"),
) -> None:
    _invoke(ctx, "ssh", cmd_ssh, args=list(args or []) + list(ctx.args), dev=dev)


@app.command("prepare", help="Prepare a freshly cloned repo for development.")
def prepare_command(
    ctx: typer.Context,
    husky: bool = typer.Option(True, "--husky/--no-husky", help="Install Husky hooks"),
    tofu: bool = typer.Option(True, "--tofu/--no-tofu", help="Run tofu init and refresh"),
    db_seeds: bool = typer.Option(True, "--db-seeds/--no-db-seeds", help="Download DB seeds"),
    dev_plugins: bool = typer.Option(True, "--dev-plugins/--no-dev-plugins", help="Activate dev plugins"),
    plugin_delay: float | None = typer.Option(
        None,
        "--plugin-delay",
        help="Seconds to wait for the database before activating plugins (default: devPluginDelay or 30)",
    ),
) -> None:
    _invoke(
        ctx,
        "prepare",
        cmd_prepare,
        husky=husky,
        tofu=tofu,
        db_seeds=db_seeds,
        dev_plugins=dev_plugins,
        plugin_delay=plugin_delay,
    )


@app.command("build", help="Build the project; builds the Docker image when imageName is configured.")
def build_command(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev/--prod", help="Build the dev image instead of prod"),
) -> None:
    _invoke(ctx, "build", cmd_build, dev=dev)


@app.command("wp", help="Run wp-cli, in the wp-cli container when wp is not installed locally.", context_settings=_PASSTHROUGH)
def wp_command(
    ctx: typer.Context,
    args: list[str] | None = typer.Argument(None, help="Arguments passed to wp"),
) -> None:
    wp_args = list(args or []) + list(ctx.args)
    # `wp cli version` and `wp-cli version` both mean `wp cli version`
    if wp_args[:1] == ["cli"]:
        _invoke(ctx, "wp-cli", cmd_wp_cli, args=wp_args[1:])
    else:
        _invoke(ctx, "wp", cmd_wp_cli, args=wp_args, add_cli_arg=False)


@app.command("wp-cli", help="Run wp-cli; bare wp-cli subcommands like version get a cli prefix.", context_settings=_PASSTHROUGH)
def wp_cli_command(
    ctx: typer.Context,
    args: list[str] | None = typer.Argument(None, help="Arguments passed to wp"),
) -> None:
    _invoke(ctx, "wp-cli", cmd_wp_cli, args=list(args or []) + list(ctx.args))


@db_app.command("dump", help="Dump the database to dbSeed, or to dbBackupPath with --backup.")
def db_dump(
    ctx: typer.Context,
    backup: bool = typer.Option(False, "--backup", help="Write a timestamped backup instead of the seed"),
) -> None:
    _invoke(ctx, "db dump", cmd_db_dump, backup=backup)


@db_app.command("reset", help="Back up, then recreate the database and cache volumes.")
def db_reset(ctx: typer.Context) -> None:
    _invoke(ctx, "db reset", cmd_db_reset)


@db_app.command("await", help="Wait until the database container accepts connections.")
def db_await(
    ctx: typer.Context,
    timeout: float = typer.Option(DEFAULT_DB_AWAIT_TIMEOUT, "--timeout", help="Seconds to wait"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print errors"),
) -> None:
    _invoke(ctx, "db await", cmd_db_await, timeout=timeout, quiet=quiet)


@cache_app.command("flush", help="Flush all keys in the cache container.")
def cache_flush(ctx: typer.Context) -> None:
    _invoke(ctx, "cache flush", cmd_cache_flush)


@cache_app.command("clean", help="Alias for flush.", hidden=True)
def cache_clean(ctx: typer.Context) -> None:
    _invoke(ctx, "cache flush", cmd_cache_flush)


@cache_app.command("clear", help="Alias for flush.", hidden=True)
def cache_clear(ctx: typer.Context) -> None:
    _invoke(ctx, "cache flush", cmd_cache_flush)


@docker_app.command("build", help="Build the project image with buildx.", context_settings=_PASSTHROUGH)
def docker_build(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Build the dev image"),
    args: list[str] | None = typer.Argument(None, help="Extra arguments passed to docker buildx build"),
) -> None:
    _invoke(ctx, "docker build", cmd_docker_build, dev=dev, extra_args=list(args or []) + list(ctx.args))


@docker_app.command("tag", help="Tag the local image for the remote repository (latest and git SHA).")
def docker_tag(
    ctx: typer.Context,
    tag: str | None = typer.Argument(None, help="Remote tag (default: latest)"),
    dev: bool = typer.Option(False, "--dev", help="Tag the dev image"),
    git_tag: bool = typer.Option(True, "--git-tag/--no-git-tag", help="Also tag with the short git SHA"),
) -> None:
    _invoke(ctx, "docker tag", cmd_docker_tag, dev=dev, tag=tag, git_tag=git_tag)


@docker_app.command("push", help="Push the tagged image to the remote repository.")
def docker_push(
    ctx: typer.Context,
    tag: str | None = typer.Argument(None, help="Remote tag (default: latest)"),
    dev: bool = typer.Option(False, "--dev", help="Push the dev image"),
    git_tag: bool = typer.Option(True, "--git-tag/--no-git-tag", help="Also push the short git SHA tag"),
) -> None:
    _invoke(ctx, "docker push", cmd_docker_push, dev=dev, tag=tag, git_tag=git_tag)


@docker_app.command("login", help="Log docker in to the ECR registry.")
def docker_login(ctx: typer.Context) -> None:
    _invoke(ctx, "docker login", cmd_docker_login)


@docker_app.command("combined", help="Build and tag the image; with --deploy also push it and roll ECS.")
def docker_combined(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Use the dev image and service"),
    deploy: bool = typer.Option(False, "--deploy", help="Also log in, push and deploy to ECS"),
) -> None:
    _invoke(ctx, "docker combined", cmd_docker_combined, dev=dev, deploy=deploy)


@docker_app.command("manifest", help="Print the manifest digest of the remote image.")
def docker_manifest(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Use the dev repository"),
    build: bool = typer.Option(True, "--build/--no-build", help="Build the image first"),
) -> None:
    _invoke(ctx, "docker manifest", cmd_docker_manifest, dev=dev, build=build)


@ecs_app.command("deploy", help="Force a new deployment of the ECS service.")
def aws_ecs_deploy(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Deploy the dev service"),
) -> None:
    _invoke(ctx, "aws ecs deploy", cmd_ecs_deploy, dev=dev)


@aws_app.command("ecs-deploy", help="Alias for ecs deploy.", hidden=True)
def aws_ecs_deploy_alias(
    ctx: typer.Context,
    dev: bool = typer.Option(False, "--dev", help="Deploy the dev service"),
) -> None:
    _invoke(ctx, "aws ecs deploy", cmd_ecs_deploy, dev=dev)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name=PROG_NAME, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.exceptions.Abort:
        _ERROR_CONSOLE.print("Aborted.")
        return 130
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
