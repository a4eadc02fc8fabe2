from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Generic, Literal, Mapping, TypeVar, Union

from .cli_shared import ConfigValidationError

PrepareTiming = Literal["early", "normal"]
PREPARE_TIMINGS: tuple[str, ...] = ("early", "normal")

CommandSourceType = Literal["env", "config", "default", "unknown"]

DBType = Literal["mysql", "mariadb"]
CacheType = Literal["redis", "valkey"]


@dataclass(frozen=True)
class PrepareCommand:
    cmd: str
    name: str | None = None
    fail: bool = True
    dir: str | None = None
    timing: PrepareTiming = "normal"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"cmd": self.cmd, "fail": self.fail, "timing": self.timing}
        if self.name is not None:
            out["name"] = self.name
        if self.dir is not None:
            out["dir"] = self.dir
        return out


@dataclass(frozen=True)
class StringValue:
    value: str

    def raw(self) -> str:
        return self.value


@dataclass(frozen=True)
class ListValue:
    items: tuple[str | Mapping[str, Any], ...]

    def raw(self) -> list[Any]:
        return [x if isinstance(x, str) else dict(x) for x in self.items]


@dataclass(frozen=True)
class SiteMapValue:
    sites: Mapping[str, Mapping[str, str]]

    def raw(self) -> dict[str, dict[str, str]]:
        return {site: dict(values) for site, values in self.sites.items()}

    def lookup(self, site: str, key: str) -> str | None:
        values = self.sites.get(site)
        if values is None:
            return None
        return values.get(key)


ConfigEntry = Union[StringValue, ListValue, SiteMapValue]


def _scalar_str(val: Any) -> str | None:
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, (str, int, float)):
        return str(val)
    return None


def to_config_entry(key: str, val: Any) -> ConfigEntry:
    """Wrap one raw document value in its tagged variant.

    Scalars become ``StringValue``; lists may only hold strings or command
    objects; a mapping is only accepted under ``sites`` and must map site
    names to flat string maps. Anything else is a malformed document.
    """
    s = _scalar_str(val)
    if s is not None:
        return StringValue(s)
    if isinstance(val, list):
        items: list[str | Mapping[str, Any]] = []
        for i, item in enumerate(val):
            if isinstance(item, str):
                items.append(item)
            elif isinstance(item, dict):
                items.append(MappingProxyType(dict(item)))
            else:
                raise ConfigValidationError(
                    f"invalid config value for {key!r}: list item {i} must be a string or object"
                )
        return ListValue(tuple(items))
    if isinstance(val, dict) and key == "sites":
        sites: dict[str, Mapping[str, str]] = {}
        for site, values in val.items():
            if not isinstance(values, dict):
                raise ConfigValidationError(f"invalid config value for sites.{site}: expected object")
            flat: dict[str, str] = {}
            for k, v in values.items():
                sv = _scalar_str(v)
                if sv is None:
                    raise ConfigValidationError(
                        f"invalid config value for sites.{site}.{k}: expected string"
                    )
                flat[str(k)] = sv
            sites[str(site)] = MappingProxyType(flat)
        return SiteMapValue(MappingProxyType(sites))
    raise ConfigValidationError(f"invalid config value for {key!r}: unsupported type {type(val).__name__}")


@dataclass(frozen=True)
class CommandOverride:
    command: str
    source: str
    source_type: CommandSourceType


@dataclass(frozen=True)
class ComposeServiceVolume:
    type: str
    source: str | None = None
    target: str | None = None


@dataclass(frozen=True)
class ComposeService:
    name: str
    image: str | None
    environment: Mapping[str, str]
    volumes: tuple[ComposeServiceVolume, ...] = ()
    profiles: tuple[str, ...] = ()


@dataclass(frozen=True)
class ComposeVolume:
    key: str
    name: str


@dataclass(frozen=True)
class ComposeConfig:
    services: Mapping[str, ComposeService]
    volumes: Mapping[str, ComposeVolume]


def _parse_environment(raw: Any) -> dict[str, str]:
    if isinstance(raw, dict):
        return {str(k): "" if v is None else str(v) for k, v in raw.items()}
    env: dict[str, str] = {}
    if isinstance(raw, list):
        for item in raw:
            k, sep, v = str(item).partition("=")
            env[k] = v if sep else ""
    return env


def _parse_service_volumes(raw: Any) -> tuple[ComposeServiceVolume, ...]:
    if not isinstance(raw, list):
        return ()
    out: list[ComposeServiceVolume] = []
    for item in raw:
        if isinstance(item, dict):
            out.append(
                ComposeServiceVolume(
                    type=str(item.get("type") or "volume"),
                    source=item.get("source"),
                    target=item.get("target"),
                )
            )
    return tuple(out)


def _parse_profiles(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(p) for p in raw if p)


def parse_compose_config(doc: Any) -> ComposeConfig:
    if not isinstance(doc, dict):
        raise ValueError("compose config: expected JSON object")
    services: dict[str, ComposeService] = {}
    raw_services = doc.get("services") or {}
    if isinstance(raw_services, dict):
        for name, svc in raw_services.items():
            if not isinstance(svc, dict):
                continue
            image = svc.get("image")
            services[str(name)] = ComposeService(
                name=str(name),
                image=str(image) if image else None,
                environment=MappingProxyType(_parse_environment(svc.get("environment"))),
                volumes=_parse_service_volumes(svc.get("volumes")),
                profiles=_parse_profiles(svc.get("profiles")),
            )
    volumes: dict[str, ComposeVolume] = {}
    raw_volumes = doc.get("volumes") or {}
    if isinstance(raw_volumes, dict):
        for key, vol in raw_volumes.items():
            name = vol.get("name") if isinstance(vol, dict) else None
            volumes[str(key)] = ComposeVolume(key=str(key), name=str(name or key))
    return ComposeConfig(services=MappingProxyType(services), volumes=MappingProxyType(volumes))


@dataclass(frozen=True)
class DBCredentials:
    db: str
    user: str
    password: str


@dataclass(frozen=True)
class DBContainerInfo:
    name: str
    type: DBType
    service: ComposeService | None
    admin_command: str
    cli_command: str
    dump_command: str
    credentials: DBCredentials


@dataclass(frozen=True)
class CacheContainerInfo:
    name: str
    type: CacheType
    service: ComposeService | None
    cli_command: str


T = TypeVar("T")


@dataclass
class FetchState(Generic[T]):
    """One-shot memo for an external tool call.

    ``attempted`` False means the tool has not been run yet. Once attempted,
    exactly one of ``value`` / ``error`` describes the outcome and neither is
    ever refreshed.
    """

    attempted: bool = False
    value: T | None = None
    error: Exception | None = None

    def succeed(self, value: T) -> None:
        self.attempted = True
        self.value = value
        self.error = None

    def fail(self, error: Exception) -> None:
        self.attempted = True
        self.value = None
        self.error = error
