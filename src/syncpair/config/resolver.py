"""Configuration resolution helpers."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Mapping, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .exceptions import ConfigError
from .models import SyncPairConfig

ENV_PREFIX = "SYNCPAIR__"

ModelT = TypeVar("ModelT", bound=BaseModel)


def resolve_with_precedence(
    *,
    defaults: SyncPairConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> SyncPairConfig:
    """Merge configuration sources: defaults < file < environment < CLI."""
    merged = defaults.model_dump(mode="python")
    for name, source in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if source is None:
            continue
        merged = _deep_merge(merged, _normalize_mapping(source, source_name=name))

    return validate_model(SyncPairConfig, merged)


def apply_overrides(model: ModelT, overrides: Mapping[str, Any]) -> ModelT:
    """Return a validated copy of ``model`` with dotted or nested overrides applied.

    Args:
        model: Current model instance; it is never mutated.
        overrides: Mapping of field names (dotted paths allowed) to new values.

    Returns:
        ModelT: New validated instance of the same model type.

    Raises:
        ConfigError: If any override fails validation.
    """
    merged = _deep_merge(
        model.model_dump(mode="python"),
        _normalize_mapping(overrides, source_name="update"),
    )
    return validate_model(type(model), merged)


def validate_model(model_type: type[ModelT], data: Mapping[str, Any]) -> ModelT:
    """Validate ``data`` against ``model_type``, raising ``ConfigError`` on failure."""
    try:
        return model_type.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def flatten_for_env(config: SyncPairConfig) -> Dict[str, str]:
    """Flatten the config into `SYNCPAIR__SECTION__KEY` environment variable mappings."""
    flat: Dict[str, str] = {}

    def _recurse(prefix: list[str], value: Any) -> None:
        if isinstance(value, dict):
            for key, child in value.items():
                _recurse(prefix + [str(key)], child)
            return
        env_key = ENV_PREFIX + "__".join(part.upper() for part in prefix)
        if isinstance(value, list):
            flat[env_key] = yaml.safe_dump(value, default_flow_style=True).strip()
        elif value is None:
            flat[env_key] = "null"
        elif isinstance(value, bool):
            flat[env_key] = "true" if value else "false"
        else:
            flat[env_key] = str(value)

    for top_key, child_value in config.model_dump(mode="python").items():
        _recurse([str(top_key)], child_value)

    return flat


def _normalize_mapping(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in dict(source).items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        _assign(result, key.split("."), value, source_name=source_name)
    return result


def _assign(target: dict[str, Any], path: list[str], value: Any, *, source_name: str) -> None:
    node = target
    for segment in path[:-1]:
        existing = node.setdefault(segment, {})
        if not isinstance(existing, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} conflicts with existing value."
            )
        node = existing
    leaf = path[-1]
    if isinstance(value, MappingABC):
        nested = _normalize_mapping(value, source_name=source_name)
        existing_leaf = node.get(leaf)
        node[leaf] = _deep_merge(existing_leaf if isinstance(existing_leaf, MappingABC) else {}, nested)
    else:
        node[leaf] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        if isinstance(value, MappingABC) and isinstance(merged.get(key), MappingABC):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "apply_overrides",
    "flatten_for_env",
    "resolve_with_precedence",
    "validate_model",
]
