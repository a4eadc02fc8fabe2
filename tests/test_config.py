from __future__ import annotations

import json

import pytest

import jolt_cli.config as config_mod
from jolt_cli.cli_shared import ConfigValidationError
from jolt_cli.config import Config, load_config
from jolt_cli.config_types import ListValue, SiteMapValue, StringValue, parse_compose_config, to_config_entry


def _write_json(path, doc) -> None:
    path.write_text(json.dumps(doc), encoding="utf-8")


def test_load_config_without_files_is_empty(tmp_path) -> None:
    cfg = load_config(tmp_path)
    assert list(cfg) == []
    assert cfg.config_path is None
    assert cfg.has("imageName") is False


def test_load_config_prefers_json_over_env_files(tmp_path) -> None:
    _write_json(tmp_path / ".jolt.json", {"imageName": "from-json"})
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / ".env").write_text("IMAGE_NAME=from-bin-env\n")
    (tmp_path / ".env").write_text("IMAGE_NAME=from-env\n")
    cfg = load_config(tmp_path)
    assert cfg.config_path == str(tmp_path / ".jolt.json")
    assert list(cfg) == [("imageName", "from-json")]


def test_load_config_bin_env_before_root_env(tmp_path) -> None:
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / ".env").write_text("DB_SEED=seeds/bin.sql\n")
    (tmp_path / ".env").write_text("DB_SEED=seeds/root.sql\n")
    cfg = load_config(tmp_path)
    assert cfg.config_path == str(tmp_path / "bin" / ".env")
    assert dict(cfg) == {"dbSeed": "seeds/bin.sql"}


def test_env_file_keys_are_camel_cased(tmp_path) -> None:
    (tmp_path / ".env").write_text('DB_SEED=seed.sql\nECR_REPO_URL="1.dkr.ecr.eu-west-2.amazonaws.com/app"\n')
    cfg = load_config(tmp_path)
    assert dict(cfg) == {
        "dbSeed": "seed.sql",
        "ecrRepoUrl": "1.dkr.ecr.eu-west-2.amazonaws.com/app",
    }


def test_env_file_values_are_not_expanded(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("USER_SUFFIX", "-expanded")
    (tmp_path / ".env").write_text("DB_PASS=pa${USER_SUFFIX}x\nDB_USER=\"${DB_PASS}\"\n")
    cfg = load_config(tmp_path)
    assert dict(cfg) == {"dbPass": "pa${USER_SUFFIX}x", "dbUser": "${DB_PASS}"}


def test_invalid_json_is_fatal(tmp_path) -> None:
    (tmp_path / ".jolt.json").write_text("{not json")
    with pytest.raises(ConfigValidationError):
        load_config(tmp_path)


def test_non_object_json_is_fatal(tmp_path) -> None:
    _write_json(tmp_path / ".jolt.json", ["imageName"])
    with pytest.raises(ConfigValidationError):
        load_config(tmp_path)


def test_nested_object_outside_sites_is_fatal(tmp_path) -> None:
    _write_json(tmp_path / ".jolt.json", {"docker": {"image": "x"}})
    with pytest.raises(ConfigValidationError):
        load_config(tmp_path)


def test_to_config_entry_variants() -> None:
    assert to_config_entry("sshPort", 22) == StringValue("22")
    assert to_config_entry("flag", True) == StringValue("true")
    listed = to_config_entry("prepareCommands", ["yarn", {"cmd": "make"}])
    assert isinstance(listed, ListValue)
    assert listed.raw() == ["yarn", {"cmd": "make"}]
    sites = to_config_entry("sites", {"blog": {"imageName": "blog", "port": 8080}})
    assert isinstance(sites, SiteMapValue)
    assert sites.lookup("blog", "port") == "8080"
    assert sites.lookup("shop", "port") is None


def test_to_config_entry_rejects_bad_shapes() -> None:
    with pytest.raises(ConfigValidationError):
        to_config_entry("items", [1, 2])
    with pytest.raises(ConfigValidationError):
        to_config_entry("sites", {"blog": "not-a-map"})
    with pytest.raises(ConfigValidationError):
        to_config_entry("sites", {"blog": {"nested": {"x": 1}}})
    with pytest.raises(ConfigValidationError):
        to_config_entry("missing", None)


def test_as_json_round_trips_document(tmp_path) -> None:
    doc = {
        "imageName": "app",
        "prepareCommands": ["yarn", {"cmd": "make", "timing": "early"}],
        "sites": {"blog": {"imageName": "blog"}},
    }
    _write_json(tmp_path / ".jolt.json", doc)
    cfg = load_config(tmp_path)
    assert json.loads(cfg.as_json()) == doc


@pytest.mark.asyncio
async def test_document_is_unchanged_by_lookups() -> None:
    doc = {"imageName": "app-{conf:suffix}", "suffix": "x", "sites": {"blog": {"suffix": "y"}}}
    cfg = Config(doc)
    before = cfg.as_json()
    cfg.set_site("blog")
    assert await cfg.get("imageName") == "app-y"
    assert cfg.as_json() == before


@pytest.mark.asyncio
async def test_scalars_are_strings() -> None:
    cfg = Config({"sshPort": 2222, "debug": False})
    assert await cfg.get("sshPort") == "2222"
    assert await cfg.get("debug") == "false"
    assert await cfg.get("missing") is None


@pytest.mark.asyncio
async def test_list_values_are_returned_raw() -> None:
    cfg = Config({"prepareCommands": ["yarn"]})
    assert await cfg.get("prepareCommands") == ["yarn"]
    assert await cfg.get_str("prepareCommands") is None


@pytest.mark.asyncio
async def test_site_override_precedence() -> None:
    cfg = Config(
        {
            "imageName": "plain",
            "blogImageName": "flat",
            "sites": {"blog": {"imageName": "nested"}},
            "shopImageName": "shop-flat",
        }
    )
    assert await cfg.get("imageName") == "plain"

    cfg.set_site("blog")
    assert cfg.site == "blog"
    assert await cfg.get("imageName") == "nested"

    cfg.set_site("shop")
    assert await cfg.get("imageName") == "shop-flat"

    cfg.set_site("other")
    assert await cfg.get("imageName") == "plain"

    cfg.set_site("")
    assert cfg.site is None


@pytest.mark.asyncio
async def test_site_flat_key_used_without_sites_map() -> None:
    cfg = Config({"imageName": "plain", "blogImageName": "flat"})
    cfg.set_site("blog")
    assert await cfg.get("imageName") == "flat"
    assert cfg.has("imageName")


def test_command_defaults() -> None:
    cfg = Config()
    override = cfg.get_command_override("docker")
    assert override.command == "docker"
    assert override.source_type == "default"
    assert cfg.command("compose") == "docker compose"
    assert cfg.get_compose_command() == ("docker", ["compose"])


def test_command_precedence(monkeypatch) -> None:
    cfg = Config({"dockerCommand": "nerdctl"})
    monkeypatch.setenv("DOCKER_COMMAND", "podman")
    monkeypatch.setenv("JOLT_DOCKER_COMMAND", "/opt/bin/docker")

    override = cfg.get_command_override("docker")
    assert (override.command, override.source, override.source_type) == (
        "/opt/bin/docker",
        "JOLT_DOCKER_COMMAND",
        "env",
    )

    monkeypatch.delenv("JOLT_DOCKER_COMMAND")
    override = cfg.get_command_override("docker")
    assert (override.command, override.source, override.source_type) == ("podman", "DOCKER_COMMAND", "env")

    monkeypatch.delenv("DOCKER_COMMAND")
    override = cfg.get_command_override("docker")
    assert (override.command, override.source, override.source_type) == ("nerdctl", "dockerCommand", "config")

    assert Config().get_command_override("docker").source_type == "default"


def test_compose_command_override(monkeypatch) -> None:
    monkeypatch.setenv("COMPOSE_COMMAND", "docker-compose")
    cfg = Config()
    assert cfg.get_compose_command() == ("docker-compose", [])
    assert cfg.command("docker-compose") == "docker-compose"


def test_unbalanced_compose_command_is_op_error(monkeypatch) -> None:
    monkeypatch.setenv("COMPOSE_COMMAND", "docker 'compose")
    with pytest.raises(config_mod.OpError):
        Config().get_compose_command()


def test_unknown_command_resolves_to_itself() -> None:
    override = Config().get_command_override("kubectl")
    assert override.command == "kubectl"
    assert override.source_type == "unknown"


def test_tofu_default_depends_on_path(monkeypatch) -> None:
    monkeypatch.setattr(config_mod, "which", lambda cmd: "/usr/bin/tofu" if cmd == "tofu" else None)
    assert Config().command("tofu") == "tofu"
    assert Config().command("terraform") == "tofu"

    monkeypatch.setattr(config_mod, "which", lambda cmd: None)
    assert Config().command("tofu") == "terraform"


def test_terraform_command_override(monkeypatch) -> None:
    monkeypatch.setattr(config_mod, "which", lambda cmd: None)
    cfg = Config({"terraformCommand": "tofu-1.8"})
    assert cfg.command("tofu") == "tofu-1.8"


def test_dockerfile_detection(tmp_path) -> None:
    cfg = Config(cwd=tmp_path)
    assert cfg.get_dockerfile_path() is None

    (tmp_path / "Containerfile").write_text("FROM scratch\n")
    assert cfg.get_dockerfile_path() == "Containerfile"

    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    assert cfg.get_dockerfile_path() == "Dockerfile"

    assert Config({"dockerFile": "docker/app.Dockerfile"}, cwd=tmp_path).get_dockerfile_path() == "docker/app.Dockerfile"


def test_aws_region(monkeypatch) -> None:
    assert Config().aws_region() == "eu-west-1"
    monkeypatch.setenv("AWS_REGION", "us-east-2")
    assert Config().aws_region() == "us-east-2"


def test_prepare_commands_parsing() -> None:
    cfg = Config(
        {
            "prepareCommands": [
                "yarn install",
                {"cmd": "make assets", "name": "Assets", "fail": False, "dir": "web"},
                {"cmd": "cp .env.example .env", "timing": "early"},
            ]
        }
    )
    commands = cfg.get_prepare_commands()
    assert [c.cmd for c in commands] == ["yarn install", "make assets", "cp .env.example .env"]
    assert commands[0].fail is True
    assert commands[0].timing == "normal"
    assert commands[1].to_dict() == {
        "cmd": "make assets",
        "name": "Assets",
        "fail": False,
        "dir": "web",
        "timing": "normal",
    }
    assert [c.cmd for c in cfg.get_prepare_commands("early")] == ["cp .env.example .env"]
    assert [c.cmd for c in cfg.get_prepare_commands("normal")] == ["yarn install", "make assets"]
    assert Config().get_prepare_commands() == []


@pytest.mark.parametrize(
    "item",
    [
        {"name": "no cmd"},
        {"cmd": "x", "fail": "yes"},
        {"cmd": "x", "timing": "late"},
        {"cmd": "x", "dir": 3},
    ],
)
def test_prepare_commands_validation(item) -> None:
    cfg = Config({"prepareCommands": [item]})
    with pytest.raises(ConfigValidationError) as excinfo:
        cfg.get_prepare_commands()
    assert str(excinfo.value).startswith("Invalid prepareCommands configuration")


def test_prepare_commands_must_be_list() -> None:
    with pytest.raises(ConfigValidationError):
        Config({"prepareCommands": "yarn"}).get_prepare_commands()


@pytest.mark.asyncio
async def test_dev_plugin_delay() -> None:
    assert await Config().get_dev_plugin_delay() == 30.0
    assert await Config({"devPluginDelay": 5}).get_dev_plugin_delay() == 5.0
    assert await Config({"devPluginDelay": "soon"}).get_dev_plugin_delay() == 30.0


def test_package_json(tmp_path) -> None:
    cfg = Config(cwd=tmp_path)
    assert cfg.get_package_json() is None
    _write_json(tmp_path / "package.json", {"scripts": {"wp": "wp-env run cli wp"}})
    assert cfg.get_package_json() == {"scripts": {"wp": "wp-env run cli wp"}}
    (tmp_path / "package.json").write_text("{broken")
    assert cfg.get_package_json() is None


def test_parse_compose_config_services() -> None:
    doc = {
        "services": {
            "wp": {"image": "wordpress:cli", "profiles": ["tools", "cli"], "environment": ["A=1", "B"]},
            "db": {"image": "mysql:8", "profiles": "not-a-list"},
            "broken": "nope",
        },
        "volumes": {"data": {"name": "proj_data"}, "plain": None},
    }
    compose = parse_compose_config(doc)
    assert list(compose.services) == ["wp", "db"]
    assert compose.services["wp"].profiles == ("tools", "cli")
    assert dict(compose.services["wp"].environment) == {"A": "1", "B": ""}
    assert compose.services["db"].profiles == ()
    assert compose.volumes["data"].name == "proj_data"
    assert compose.volumes["plain"].name == "plain"
