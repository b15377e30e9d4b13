"""Configuration helpers: config diffing, YAML normalisation and basic auth."""

from __future__ import annotations

import dataclasses
from typing import Any

import yaml

FAKE_TENANT_ID = "single-tenant"
"""Tenant ID used when authorization is disabled."""

_SCALARS = (bool, int, str, float)

_UNSET = ""


def diff_config(default_config: dict, actual_config: dict) -> dict:
    """Return the entries of actual_config that differ from default_config.

    Raises TypeError for values of unsupported types.
    """
    output: dict = {}
    for key, value in actual_config.items():
        if key not in default_config:
            output[key] = value
            continue
        default = default_config[key]

        if value is None:
            if default is not None:
                output[key] = value
        elif isinstance(value, dict):
            if not isinstance(default, dict):
                output[key] = value
                default = {}
            diff = diff_config(default, value)
            if diff:
                output[key] = diff
        elif type(value) in _SCALARS:
            if type(default) is not type(value) or default != value:
                output[key] = value
        elif isinstance(value, list):
            if not isinstance(default, list) or default != value:
                output[key] = value
        else:
            raise TypeError(f"unsupported type {type(value).__name__}")
    return output


def prefix_config(prefix: str, option: str) -> str:
    """Join a prefix and an option name with a dot, if the prefix is set."""
    return f"{prefix}.{option}" if prefix else option


def _yaml_name(field: dataclasses.Field) -> str:
    explicit = field.metadata.get("yaml")
    if explicit:
        return explicit
    return field.metadata.get("yaml_prefix", "") + field.name


def _to_plain(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        plain = {}
        for field in dataclasses.fields(obj):
            name = _yaml_name(field)
            if name == "-":
                continue
            plain[name] = _to_plain(getattr(obj, field.name))
        return plain
    if isinstance(obj, dict):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    return obj


def yaml_marshal_unmarshal(obj: Any) -> dict:
    """Round-trip a value through YAML and return it as a mapping."""
    text = yaml.safe_dump(_to_plain(obj))
    loaded = yaml.safe_load(text)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"cannot unmarshal {type(loaded).__name__} into a mapping")
    return loaded


_BASIC_AUTH_META = {"yaml_prefix": "basic_auth_"}


@dataclasses.dataclass
class BasicAuth:
    """HTTP basic authentication settings for clients."""

    username: str = dataclasses.field(default=_UNSET, metadata=_BASIC_AUTH_META)
    password: str = dataclasses.field(default=_UNSET, metadata=_BASIC_AUTH_META)

    def is_enabled(self) -> bool:
        return bool(self.username or self.password)