"""
Compiler configuration.

CompilerConfig is a frozen dataclass shared by the codecs, the schema exporter
and the source generators. Defaults reproduce the canonical wire format; a YAML
file can override them:

    discriminator: _type
    max_depth: 256
    schema_indent: 2
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

import yaml

from intertypes.errors import ConfigError

logger = logging.getLogger(__name__)

DRAFT_07 = "http://json-schema.org/draft-07/schema#"


@dataclass(frozen=True)
class CompilerConfig:
    """
    Settings for every intertypes backend.

    Attributes:
        discriminator (str): Property carrying the variant tag of a sum value.
        max_depth (int): Deepest nesting a codec will follow before failing.
            Self-referential declarations make unbounded input legal, so
            untrusted documents must be cut off somewhere.
        schema_indent (int): Indentation of written JSON Schema files.
        schema_uri (str): Value of the top-level `$schema` key.
        source_suffix (str): Required suffix of declaration files.
    """

    discriminator: str = "_type"
    max_depth: int = 256
    schema_indent: int = 2
    schema_uri: str = DRAFT_07
    source_suffix: str = ".it"

    def __post_init__(self):
        if not isinstance(self.discriminator, str) or not self.discriminator:
            raise ConfigError("discriminator must be a non-empty string")
        if not isinstance(self.max_depth, int) or self.max_depth < 1:
            raise ConfigError(f"max_depth must be a positive integer, got {self.max_depth!r}")
        if not isinstance(self.schema_indent, int) or self.schema_indent < 0:
            raise ConfigError(f"schema_indent must be >= 0, got {self.schema_indent!r}")
        if not isinstance(self.source_suffix, str) or not self.source_suffix.startswith("."):
            raise ConfigError(f"source_suffix must start with '.', got {self.source_suffix!r}")


DEFAULT_CONFIG = CompilerConfig()


def config_from_mapping(mapping: Optional[Mapping[str, Any]], base: CompilerConfig = DEFAULT_CONFIG) -> CompilerConfig:
    """
    Apply a loose mapping of overrides onto `base`.

    Unknown keys are rejected so that typos do not silently fall back to
    defaults.
    """
    if mapping is None:
        return base
    if not isinstance(mapping, Mapping):
        raise ConfigError(f"configuration must be a mapping, got {type(mapping).__name__}")

    known = {f.name for f in fields(CompilerConfig)}
    unknown = sorted(set(mapping) - known)
    if unknown:
        raise ConfigError(f"unknown configuration keys: {unknown}")

    try:
        return replace(base, **dict(mapping))
    except TypeError as e:
        raise ConfigError(str(e)) from e


def load_config(path: str, base: CompilerConfig = DEFAULT_CONFIG) -> CompilerConfig:
    """
    Load a CompilerConfig from a YAML file.

    Args:
        path: Path to the YAML file
        base: Settings the file overrides

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the YAML is malformed or holds invalid settings
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

    config = config_from_mapping(data or {}, base=base)
    logger.debug("loaded compiler config from %s: %s", path, config)
    return config


__all__ = ["CompilerConfig", "DEFAULT_CONFIG", "DRAFT_07", "config_from_mapping", "load_config"]
