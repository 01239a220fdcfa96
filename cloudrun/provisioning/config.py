"""Configuration resolution: layered property lookup into an immutable RunConfig.

Every setting is looked up by its logical name in, highest priority first:

1. the ledger environment (values harvested from a previous run),
2. task-scoped properties (``-P key=value`` on the command line),
3. project-scoped properties (the ``properties`` section of the YAML config),
4. the setting's default.

``outputDir`` is special: it always resolves to the run's scratch directory.
"""

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import yaml

from cloudrun.errors import ConfigurationError

logger = logging.getLogger(__name__)

OUTPUT_DIR_KEY = "outputDir"
DEFAULT_CONFIG_PATH = "cloudrun.yaml"
DEFAULT_PORTS = (22, 2376, 8080)


def parse_ports(value) -> tuple[int, ...]:
    """Accept ``"22,8080"``, a list of ints/strings, or a single int."""
    if isinstance(value, int):
        return (value,)
    if isinstance(value, str):
        value = [p for p in value.split(",") if p.strip()]
    try:
        return tuple(int(p) for p in value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid port list: {value!r}") from None


def _optional_str(value):
    return None if value is None else str(value)


@dataclass(frozen=True)
class Setting:
    """A configuration field paired with the logical name used for lookups."""

    attr: str
    name: str = ""
    default: object = None
    required: bool = False
    convert: Callable | None = None

    @property
    def key(self) -> str:
        return self.name or self.attr


SETTINGS = (
    Setting("output_dir", OUTPUT_DIR_KEY, required=True, convert=str),
    Setting("instance_type", "instanceType", default="t2.micro", convert=str),
    Setting("spot_price", "spotPrice", convert=_optional_str),
    Setting("ports", default=DEFAULT_PORTS, convert=parse_ports),
    Setting("image", convert=_optional_str),
    Setting("username", convert=_optional_str),
    Setting("region", convert=_optional_str),
    Setting("resource_prefix", "resourcePrefix", default="cloudrun", convert=str),
)


@dataclass(frozen=True)
class RunConfig:
    """Configuration for one orchestration run, resolved once at start."""

    output_dir: str | None = None
    instance_type: str = "t2.micro"
    spot_price: str | None = None
    ports: tuple[int, ...] = DEFAULT_PORTS
    image: str | None = None
    username: str | None = None
    region: str | None = None
    resource_prefix: str = "cloudrun"


@dataclass
class PropertySources:
    """The lookup chain a RunConfig is resolved from."""

    environment: Mapping = field(default_factory=dict)
    task: Mapping = field(default_factory=dict)
    project: Mapping = field(default_factory=dict)
    output_dir: str | None = None


_MISSING = object()


def resolve(name: str, sources: PropertySources, default=None):
    """Resolve a single property by logical name.

    Presence in a source wins, even when the stored value is empty.
    """
    if name.lower() == OUTPUT_DIR_KEY.lower():
        return sources.output_dir
    for source in (sources.environment, sources.task, sources.project):
        value = source.get(name, _MISSING)
        if value is not _MISSING:
            return value
    return default


def resolve_config(sources: PropertySources, settings=SETTINGS) -> RunConfig:
    """Bind every declared setting once and return an immutable RunConfig.

    A key present with a null value stops the lookup but binds the default.
    """
    values = {}
    for setting in settings:
        value = resolve(setting.key, sources, _MISSING)
        if value is _MISSING or value is None:
            if setting.default is not None:
                values[setting.attr] = setting.default
            continue
        values[setting.attr] = setting.convert(value) if setting.convert else value
    config = RunConfig(**values)
    logger.debug(f"Resolved configuration: {config}")
    return config


def missing_required(config: RunConfig, settings=SETTINGS) -> list[str]:
    """Return the logical names of required settings that resolved to nothing."""
    return [s.key for s in settings if s.required and getattr(config, s.attr) is None]


def harvest_environment(config: RunConfig, settings=SETTINGS) -> dict[str, object]:
    """Collect resolved values by logical name for storage in the ledger."""
    environment = {}
    for setting in settings:
        value = getattr(config, setting.attr)
        if value is None:
            continue
        environment[setting.key] = list(value) if isinstance(value, tuple) else value
    return environment


def load_project_properties(config_path: str | None = None) -> dict:
    """Load the ``properties`` mapping from a YAML config file.

    A missing file is only an error when the path was given explicitly.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    path = os.path.expanduser(os.path.expandvars(path))
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        if config_path:
            raise ConfigurationError(f"Config file '{path}' not found") from None
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML config '{path}': {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file '{path}' must contain a mapping")
    properties = data.get("properties") or {}
    if not isinstance(properties, dict):
        raise ConfigurationError(f"'properties' in '{path}' must be a mapping")
    return properties


def parse_properties(entries) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings from the command line."""
    properties = {}
    for entry in entries or []:
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid property '{entry}', expected KEY=VALUE")
        properties[key.strip()] = value
    return properties
