"""Unit tests for configuration resolution and property loading."""

import pytest
import yaml

from cloudrun.errors import ConfigurationError
from cloudrun.provisioning.config import (
    PropertySources,
    RunConfig,
    harvest_environment,
    load_project_properties,
    missing_required,
    parse_ports,
    parse_properties,
    resolve,
    resolve_config,
)

# ── resolve ──────────────────────────────────────────────────────


def test_resolve_environment_beats_task_and_project():
    sources = PropertySources(
        environment={"instanceType": "env"},
        task={"instanceType": "task"},
        project={"instanceType": "project"},
    )
    assert resolve("instanceType", sources) == "env"


def test_resolve_task_beats_project():
    sources = PropertySources(task={"instanceType": "task"}, project={"instanceType": "project"})
    assert resolve("instanceType", sources) == "task"


def test_resolve_project_then_default():
    assert resolve("instanceType", PropertySources(project={"instanceType": "project"})) == "project"
    assert resolve("instanceType", PropertySources(), default="fallback") == "fallback"


def test_resolve_presence_wins_over_empty_value():
    sources = PropertySources(environment={"spotPrice": ""}, task={"spotPrice": "0.05"})
    assert resolve("spotPrice", sources) == ""


def test_resolve_config_null_blocks_lower_sources_and_binds_default():
    sources = PropertySources(
        environment={"instanceType": None},
        task={"instanceType": "m5.large"},
        output_dir="/scratch",
    )
    assert resolve("instanceType", sources) is None
    assert resolve_config(sources).instance_type == "t2.micro"


def test_resolve_config_keeps_empty_string():
    sources = PropertySources(task={"username": ""}, project={"username": "builder"}, output_dir="/scratch")
    assert resolve_config(sources).username == ""


def test_resolve_output_dir_always_uses_scratch_dir():
    sources = PropertySources(
        environment={"outputDir": "/from/ledger"},
        task={"outputDir": "/from/task"},
        project={"outputDir": "/from/project"},
        output_dir="/scratch",
    )
    assert resolve("outputDir", sources) == "/scratch"
    assert resolve("outputdir", sources) == "/scratch"


def test_resolve_output_dir_unset_scratch_dir():
    sources = PropertySources(environment={"outputDir": "/from/ledger"})
    assert resolve("outputDir", sources) is None


# ── resolve_config ───────────────────────────────────────────────


def test_resolve_config_defaults():
    config = resolve_config(PropertySources(output_dir="/scratch"))
    assert config == RunConfig(output_dir="/scratch")
    assert config.instance_type == "t2.micro"
    assert config.spot_price is None
    assert config.ports == (22, 2376, 8080)
    assert config.resource_prefix == "cloudrun"


def test_resolve_config_converts_string_properties():
    sources = PropertySources(
        task={"ports": "22, 80", "spotPrice": "0.02"},
        project={"instanceType": "t3.small", "region": "eu-west-1"},
        output_dir="/scratch",
    )
    config = resolve_config(sources)
    assert config.ports == (22, 80)
    assert config.spot_price == "0.02"
    assert config.instance_type == "t3.small"
    assert config.region == "eu-west-1"


def test_resolve_config_is_immutable():
    config = resolve_config(PropertySources(output_dir="/scratch"))
    with pytest.raises(AttributeError):
        config.instance_type = "m5.large"


def test_missing_required_output_dir():
    config = resolve_config(PropertySources())
    assert missing_required(config) == ["outputDir"]
    assert missing_required(resolve_config(PropertySources(output_dir="/scratch"))) == []


def test_harvested_environment_resolves_to_same_config():
    first = resolve_config(
        PropertySources(task={"spotPrice": "0.02", "ports": "22"}, project={"region": "eu-west-1"}, output_dir="/a")
    )
    environment = harvest_environment(first)
    assert environment["spotPrice"] == "0.02"
    assert environment["ports"] == [22]
    assert "image" not in environment

    # A later process resolves against the saved environment, ignoring changed properties
    second = resolve_config(
        PropertySources(environment=environment, task={"spotPrice": "9.99"}, project={"region": "us-east-1"}, output_dir="/a")
    )
    assert second == first


def test_parse_ports_invalid():
    with pytest.raises(ConfigurationError, match="Invalid port list"):
        parse_ports("22,ssh")


# ── load_project_properties / parse_properties ───────────────────


def test_load_project_properties(tmp_path):
    path = tmp_path / "cloudrun.yaml"
    with open(path, "w") as f:
        yaml.dump({"properties": {"instanceType": "t3.small", "ports": [22, 80]}}, f)
    assert load_project_properties(str(path)) == {"instanceType": "t3.small", "ports": [22, 80]}


def test_load_project_properties_default_path_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_project_properties() == {}


def test_load_project_properties_explicit_path_missing(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_project_properties(str(tmp_path / "nope.yaml"))


def test_load_project_properties_invalid_yaml(tmp_path):
    path = tmp_path / "cloudrun.yaml"
    path.write_text("properties: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Error parsing YAML"):
        load_project_properties(str(path))


def test_load_project_properties_not_a_mapping(tmp_path):
    path = tmp_path / "cloudrun.yaml"
    path.write_text("properties:\n  - a\n  - b\n")
    with pytest.raises(ConfigurationError, match="must be a mapping"):
        load_project_properties(str(path))


def test_parse_properties():
    assert parse_properties(["instanceType=t3.small", "spotPrice=", "image=a=b"]) == {
        "instanceType": "t3.small",
        "spotPrice": "",
        "image": "a=b",
    }


def test_parse_properties_invalid():
    with pytest.raises(ConfigurationError, match="expected KEY=VALUE"):
        parse_properties(["instanceType"])
