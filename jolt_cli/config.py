"""Project configuration and placeholder interpolation.

One ``Config`` is built per CLI invocation by ``load_config`` at the entry
point and handed to every command. The loaded document is read-only; values
computed from external tools (terraform/tofu outputs, the compose topology,
the git HEAD) are memoized on the instance, failures included, so each tool
runs at most once per invocation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Iterator, Mapping

from dotenv import dotenv_values

from .cli_shared import JOLT_ENV_PREFIX, ConfigValidationError, JoltError, OpError
from .config_types import (
    PREPARE_TIMINGS,
    CacheContainerInfo,
    CommandOverride,
    ComposeConfig,
    ComposeService,
    ConfigEntry,
    DBContainerInfo,
    DBCredentials,
    FetchState,
    ListValue,
    PrepareCommand,
    SiteMapValue,
    StringValue,
    parse_compose_config,
    to_config_entry,
)
from .utils import (
    Placeholder,
    capitalize_first,
    const_to_camel,
    exec_c,
    file_exists,
    find_placeholders,
    splice,
    which,
)

logger = logging.getLogger(__name__)

CONFIG_PATHS: tuple[str, ...] = (".jolt.json", "bin/.env", ".env")

DEFAULT_AWS_REGION = "eu-west-1"
DEFAULT_DEV_SUFFIX = "-dev"
DEFAULT_DEV_PLUGIN_DELAY = 30.0

# logical name -> (built-in default, override variable); a None default is
# computed at lookup time.
COMMAND_TABLE: dict[str, tuple[str | None, str]] = {
    "docker": ("docker", "DOCKER_COMMAND"),
    "compose": ("docker compose", "COMPOSE_COMMAND"),
    "docker-compose": ("docker compose", "COMPOSE_COMMAND"),
    "tofu": (None, "TERRAFORM_COMMAND"),
    "terraform": (None, "TERRAFORM_COMMAND"),
    "node": ("node", "NODE_COMMAND"),
    "yarn": ("yarn", "YARN_COMMAND"),
    "aws": ("aws", "AWS_COMMAND"),
    "ssh": ("ssh", "SSH_COMMAND"),
    "rsync": ("rsync", "RSYNC_COMMAND"),
    "git": ("git", "GIT_COMMAND"),
    "gzip": ("gzip", "GZIP_COMMAND"),
}

# Checked in order against each service image, first hit wins.
DB_ENGINES: tuple[str, ...] = ("mariadb", "mysql")
CACHE_ENGINES: tuple[str, ...] = ("valkey", "redis")

DB_ENGINE_COMMANDS: dict[str, tuple[str, str, str]] = {
    # engine: (admin, cli, dump)
    "mysql": ("mysqladmin", "mysql", "mysqldump"),
    "mariadb": ("mariadb-admin", "mariadb", "mariadb-dump"),
}

DB_ENV_PREFIXES: dict[str, tuple[str, ...]] = {
    "mysql": ("MYSQL_",),
    "mariadb": ("MARIADB_", "MYSQL_"),
}

CACHE_CONTAINER_KEYS: tuple[str, ...] = ("cacheContainer", "redisContainer")

ARG_KINDS = frozenset({"arg", "param"})
CMD_KINDS = frozenset({"cmd"})
DB_KINDS = frozenset({"db"})
TF_KINDS = frozenset({"tf", "tofu", "terraform"})
CONF_KINDS = frozenset({"conf", "config"})
GIT_KINDS = frozenset({"git"})

# {conf:x} values are interpolated themselves; stop following references here.
MAX_CONF_DEPTH = 8

SHORT_SHA_LENGTH = 8


def _match_engine(image: str | None, engines: tuple[str, ...]) -> str | None:
    if not image:
        return None
    lowered = image.lower()
    for engine in engines:
        if engine in lowered:
            return engine
    return None


def _env_lookup(env: Mapping[str, str], prefixes: tuple[str, ...], suffix: str) -> str | None:
    for prefix in prefixes:
        val = env.get(f"{prefix}{suffix}")
        if val is not None:
            return val
    return None


def _flatten_tf_outputs(doc: Any) -> dict[str, str]:
    if not isinstance(doc, dict):
        raise OpError("terraform output: expected JSON object")
    out: dict[str, str] = {}
    for name, entry in doc.items():
        if not isinstance(entry, dict) or "value" not in entry:
            continue
        val = entry["value"]
        if val is None:
            continue
        if isinstance(val, str):
            out[str(name)] = val
        elif isinstance(val, (dict, list)):
            out[str(name)] = json.dumps(val, separators=(",", ":"), sort_keys=True)
        elif isinstance(val, bool):
            out[str(name)] = "true" if val else "false"
        else:
            out[str(name)] = str(val)
    return out


class Config:
    """Read-only project configuration with site overrides and tool lookups."""

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        config_path: str | None = None,
        *,
        cwd: str | os.PathLike[str] | None = None,
    ) -> None:
        entries: dict[str, ConfigEntry] = {}
        for key, val in (config or {}).items():
            entries[str(key)] = to_config_entry(str(key), val)
        self._entries = entries
        self.config_path = config_path
        self._cwd = Path(cwd) if cwd is not None else None
        self._site: str | None = None
        self._tf_state: FetchState[dict[str, str]] = FetchState()
        self._compose_state: FetchState[ComposeConfig] = FetchState()
        self._git_state: FetchState[str] = FetchState()

    # document access

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        for key, entry in self._entries.items():
            yield key, entry.raw()

    def as_json(self) -> str:
        return json.dumps({k: e.raw() for k, e in self._entries.items()}, indent=2)

    @property
    def cwd(self) -> Path:
        return self._cwd if self._cwd is not None else Path.cwd()

    @property
    def site(self) -> str | None:
        return self._site

    def set_site(self, site: str | None) -> None:
        self._site = (site or "").strip() or None

    def get_entry(self, key: str) -> ConfigEntry | None:
        """Return the entry ``key`` resolves to, honouring the active site."""
        if self._site:
            sites = self._entries.get("sites")
            if isinstance(sites, SiteMapValue):
                val = sites.lookup(self._site, key)
                if val is not None:
                    return StringValue(val)
            site_key = f"{self._site}{capitalize_first(key)}"
            if site_key in self._entries:
                return self._entries[site_key]
        return self._entries.get(key)

    def has(self, key: str) -> bool:
        return self.get_entry(key) is not None

    async def get(self, key: str) -> str | list[Any] | dict[str, Any] | None:
        return await self._get(key, depth=0)

    async def get_str(self, key: str) -> str | None:
        val = await self._get(key, depth=0)
        return val if isinstance(val, str) else None

    async def _get(self, key: str, *, depth: int) -> str | list[Any] | dict[str, Any] | None:
        entry = self.get_entry(key)
        if entry is None:
            return None
        if isinstance(entry, StringValue):
            return await self._parse_arg(entry.value, None, depth=depth)
        return entry.raw()

    # command resolution

    def _default_command(self, name: str, default: str | None) -> str:
        if default is not None:
            return default
        return "tofu" if which("tofu") else "terraform"

    def get_command_override(self, name: str) -> CommandOverride:
        entry = COMMAND_TABLE.get(name)
        if entry is None:
            return CommandOverride(command=name, source=name, source_type="unknown")
        default, env_var = entry

        for var in (f"{JOLT_ENV_PREFIX}{env_var}", env_var):
            val = (os.environ.get(var) or "").strip()
            if val:
                return CommandOverride(command=val, source=var, source_type="env")

        config_key = const_to_camel(env_var)
        entry = self._entries.get(config_key)
        if isinstance(entry, StringValue) and entry.value.strip():
            return CommandOverride(command=entry.value.strip(), source=config_key, source_type="config")

        return CommandOverride(
            command=self._default_command(name, default),
            source="default",
            source_type="default",
        )

    def command(self, name: str) -> str:
        return self.get_command_override(name).command

    def get_compose_command(self) -> tuple[str, list[str]]:
        raw = self.command("compose")
        try:
            parts = shlex.split(raw)
        except ValueError as e:
            raise OpError(f"invalid compose command {raw!r}: {e}") from e
        if not parts:
            return "docker", ["compose"]
        return parts[0], parts[1:]

    # external tool caches

    async def _tf_outputs(self, *, throw_on_fail: bool) -> dict[str, str]:
        state = self._tf_state
        if not state.attempted:
            try:
                result = await exec_c(self.command("tofu"), ["output", "-json"], capture=True)
                try:
                    doc = json.loads(result.stdout or "{}")
                except ValueError as e:
                    raise OpError(f"terraform output: invalid JSON: {e}") from e
                state.succeed(_flatten_tf_outputs(doc))
            except OpError as e:
                logger.debug("terraform outputs unavailable: %s", e)
                state.fail(e)
        if state.error is not None:
            if throw_on_fail:
                raise state.error
            return {}
        return state.value or {}

    async def tf_var(self, key: str, throw_on_fail: bool = False, try_site: bool = True) -> str | None:
        if self._site and try_site:
            site_val = await self.tf_var(f"{self._site}_{key}", throw_on_fail=False, try_site=False)
            if site_val is not None:
                return site_val
        outputs = await self._tf_outputs(throw_on_fail=throw_on_fail)
        return outputs.get(key)

    async def get_compose_config(self, throw_on_fail: bool = False) -> ComposeConfig | None:
        state = self._compose_state
        if not state.attempted:
            try:
                result = await exec_c(
                    self.command("compose"),
                    ["config", "--format", "json"],
                    capture=True,
                )
                try:
                    state.succeed(parse_compose_config(json.loads(result.stdout or "{}")))
                except ValueError as e:
                    raise OpError(f"compose config: invalid JSON: {e}") from e
            except OpError as e:
                logger.debug("compose config unavailable: %s", e)
                state.fail(e)
        if state.error is not None:
            if throw_on_fail:
                raise state.error
            return None
        return state.value

    async def git_sha(self) -> str | None:
        state = self._git_state
        if not state.attempted:
            try:
                result = await exec_c(self.command("git"), ["rev-parse", "HEAD"], capture=True)
                sha = result.stdout.strip()
                if not sha:
                    raise OpError("git rev-parse HEAD returned nothing")
                state.succeed(sha)
            except OpError as e:
                logger.debug("git sha unavailable: %s", e)
                state.fail(e)
        return state.value

    # derived lookups

    async def get_docker_image_name(self, dev: bool = False) -> str | None:
        if dev:
            explicit = await self.get_str("devImageName")
            if explicit:
                return explicit
            from_tf = await self.tf_var("image_name_dev")
            if from_tf:
                return from_tf
            prod = await self.get_docker_image_name(dev=False)
            if not prod:
                return None
            return f"{prod}{DEFAULT_DEV_SUFFIX}"

        explicit = await self.get_str("imageName")
        if explicit:
            return explicit
        return await self.tf_var("image_name")

    async def get_remote_repo(self, dev: bool = False) -> str | None:
        explicit = await self.get_str("devEcrRepoUrl" if dev else "ecrRepoUrl")
        if explicit:
            return explicit
        return await self.tf_var("ecr_repo_url_dev" if dev else "ecr_repo_url")

    async def get_db_container_info(self) -> DBContainerInfo | None:
        compose = await self.get_compose_config()
        services: Mapping[str, ComposeService] = compose.services if compose else {}

        service: ComposeService | None = None
        db_type: str | None = None
        container = await self.get_str("dbContainer")
        if container:
            service = services.get(container)
            db_type = _match_engine(service.image if service else None, DB_ENGINES) or "mysql"
        else:
            for svc in services.values():
                db_type = _match_engine(svc.image, DB_ENGINES)
                if db_type:
                    service = svc
                    container = svc.name
                    break
        if not container or not db_type:
            return None

        env: Mapping[str, str] = service.environment if service else {}
        prefixes = DB_ENV_PREFIXES[db_type]
        db_name = await self.get_str("dbName")
        user = await self.get_str("dbUser")
        password = await self.get_str("dbPass")
        if db_name is None:
            db_name = _env_lookup(env, prefixes, "DATABASE")
        if user is None:
            user = _env_lookup(env, prefixes, "USER")
        if password is None:
            password = _env_lookup(env, prefixes, "PASSWORD")
        if db_name is None or user is None or password is None:
            logger.debug("database credentials incomplete for container %s", container)
            return None

        admin_cmd, cli_cmd, dump_cmd = DB_ENGINE_COMMANDS[db_type]
        return DBContainerInfo(
            name=container,
            type=db_type,  # type: ignore[arg-type]
            service=service,
            admin_command=admin_cmd,
            cli_command=cli_cmd,
            dump_command=dump_cmd,
            credentials=DBCredentials(db=db_name, user=user, password=password),
        )

    async def get_cache_container_info(self) -> CacheContainerInfo | None:
        compose = await self.get_compose_config()
        services: Mapping[str, ComposeService] = compose.services if compose else {}

        container: str | None = None
        for key in CACHE_CONTAINER_KEYS:
            container = await self.get_str(key)
            if container:
                break

        service: ComposeService | None = None
        cache_type: str | None = None
        if container:
            service = services.get(container)
            cache_type = _match_engine(service.image if service else None, CACHE_ENGINES) or "redis"
        else:
            for svc in services.values():
                cache_type = _match_engine(svc.image, CACHE_ENGINES)
                if cache_type:
                    service = svc
                    container = svc.name
                    break
        if not container or not cache_type:
            return None
        return CacheContainerInfo(
            name=container,
            type=cache_type,  # type: ignore[arg-type]
            service=service,
            cli_command=f"{cache_type}-cli",
        )

    def get_dockerfile_path(self) -> str | None:
        entry = self.get_entry("dockerFile")
        if isinstance(entry, StringValue) and entry.value:
            return entry.value
        for name in ("Dockerfile", "Containerfile"):
            if file_exists(self.cwd / name):
                return name
        return None

    def aws_region(self) -> str:
        return (os.environ.get("AWS_REGION") or "").strip() or DEFAULT_AWS_REGION

    async def get_dev_plugin_delay(self) -> float:
        raw = await self.get_str("devPluginDelay")
        if raw is None:
            return DEFAULT_DEV_PLUGIN_DELAY
        try:
            return float(raw)
        except ValueError:
            logger.warning("unreadable devPluginDelay %r, using %s seconds", raw, DEFAULT_DEV_PLUGIN_DELAY)
            return DEFAULT_DEV_PLUGIN_DELAY

    def get_package_json(self) -> dict[str, Any] | None:
        path = self.cwd / "package.json"
        if not file_exists(path):
            return None
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.debug("ignoring unreadable package.json: %s", e)
            return None
        return doc if isinstance(doc, dict) else None

    def get_prepare_commands(self, timing: str | None = None) -> list[PrepareCommand]:
        entry = self._entries.get("prepareCommands")
        if entry is None:
            return []
        if not isinstance(entry, ListValue):
            raise ConfigValidationError("Invalid prepareCommands configuration: expected a list")

        commands: list[PrepareCommand] = []
        for i, item in enumerate(entry.items):
            if isinstance(item, str):
                commands.append(PrepareCommand(cmd=item))
                continue
            problems: list[str] = []
            cmd = item.get("cmd")
            if not isinstance(cmd, str):
                problems.append("cmd must be a string")
            name = item.get("name")
            if name is not None and not isinstance(name, str):
                problems.append("name must be a string")
            fail = item.get("fail", True)
            if not isinstance(fail, bool):
                problems.append("fail must be a boolean")
            cwd = item.get("dir")
            if cwd is not None and not isinstance(cwd, str):
                problems.append("dir must be a string")
            item_timing = item.get("timing", "normal")
            if item_timing not in PREPARE_TIMINGS:
                problems.append(f"timing must be one of {', '.join(PREPARE_TIMINGS)}")
            if problems:
                raise ConfigValidationError(
                    f"Invalid prepareCommands configuration: item {i}: {'; '.join(problems)}"
                )
            commands.append(PrepareCommand(cmd=cmd, name=name, fail=fail, dir=cwd, timing=item_timing))

        if timing is not None:
            commands = [c for c in commands if c.timing == timing]
        return commands

    # interpolation

    async def parse_arg(self, text: str, params: Mapping[str, str] | None = None) -> str:
        """Replace ``{type:name}`` placeholders in ``text``.

        All placeholders are resolved concurrently and written back in their
        original positions. A placeholder that cannot be resolved is left as
        written; this never raises.
        """
        return await self._parse_arg(text, params, depth=0)

    async def _parse_arg(self, text: str, params: Mapping[str, str] | None, *, depth: int) -> str:
        placeholders = find_placeholders(text)
        if not placeholders:
            return text
        resolved = await asyncio.gather(
            *(self._resolve_placeholder(ph, params, depth=depth) for ph in placeholders)
        )
        replacements = [ph.raw if val is None else val for ph, val in zip(placeholders, resolved)]
        return splice(text, placeholders, replacements)

    async def _resolve_placeholder(
        self,
        ph: Placeholder,
        params: Mapping[str, str] | None,
        *,
        depth: int,
    ) -> str | None:
        try:
            if ph.kind in ARG_KINDS:
                return (params or {}).get(ph.name)
            if ph.kind in CMD_KINDS:
                return self.command(ph.name)
            if ph.kind in DB_KINDS:
                return await self._db_placeholder(ph.name)
            if ph.kind in TF_KINDS:
                return await self.tf_var(ph.name)
            if ph.kind in CONF_KINDS:
                if depth >= MAX_CONF_DEPTH:
                    return None
                val = await self._get(ph.name, depth=depth + 1)
                return val if isinstance(val, str) else None
            if ph.kind in GIT_KINDS:
                return await self._git_placeholder(ph.name)
        except JoltError as e:
            logger.debug("could not resolve %s: %s", ph.raw, e)
        return None

    async def _db_placeholder(self, name: str) -> str | None:
        info = await self.get_db_container_info()
        if info is None:
            return None
        values = {
            "dumpCmd": info.dump_command,
            "cliCmd": info.cli_command,
            "adminCmd": info.admin_command,
            "type": info.type,
            "name": info.credentials.db,
            "db": info.credentials.db,
            "user": info.credentials.user,
            "pass": info.credentials.password,
            "host": info.name,
        }
        return values.get(name)

    async def _git_placeholder(self, name: str) -> str | None:
        if name not in {"sha", "shortSha", "longSha", "fullSha"}:
            return None
        sha = await self.git_sha()
        if sha is None:
            return None
        if name in {"sha", "shortSha"}:
            return sha[:SHORT_SHA_LENGTH]
        return sha


def _read_json_config(path: Path) -> dict[str, Any]:
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ConfigValidationError(f"invalid config file {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigValidationError(f"invalid config file {path}: expected JSON object")
    return doc


def _read_env_config(path: Path) -> dict[str, str]:
    parsed = dotenv_values(path, interpolate=False)
    return {const_to_camel(k): v for k, v in parsed.items() if v is not None}


def load_config(cwd: str | os.PathLike[str] | None = None) -> Config:
    """Load the first config file found under ``cwd``; empty config if none."""
    base = Path(cwd) if cwd is not None else Path.cwd()
    for rel in CONFIG_PATHS:
        path = base / rel
        if not file_exists(path):
            continue
        doc = _read_json_config(path) if path.suffix == ".json" else _read_env_config(path)
        logger.debug("loaded config from %s", path)
        return Config(doc, config_path=str(path), cwd=cwd)
    return Config(cwd=cwd)
