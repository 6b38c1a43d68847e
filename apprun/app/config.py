"""Configuration resolution for apprun.

A configuration value is resolved by applying an ordered list of sources on
top of a base value supplied by the application:

1. ``config.yaml`` / ``config.json`` in the working directory
2. ``{app_name}.yaml`` / ``{app_name}.json`` in the working directory
3. the file named by ``APP_CONFIG_PATH``
4. environment variables (``APP_*``, then ``APP_{APP_NAME}_*``)

Each source is a field-level overlay: later sources overwrite the fields
earlier ones set and leave everything else untouched. Missing convention
files are skipped; every other failure raises :class:`ConfigLoadError`.
"""

from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Mapping, Sequence
from collections.abc import Set as AbstractSet
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import UnionType
from typing import Any, Generic, TypeVar, Union, get_args, get_origin, get_type_hints

import yaml
from pydantic import BaseModel, TypeAdapter, ValidationError

from apprun.errors import ConfigFileMissing, ConfigLoadError
from apprun.infrastructure.observability import StructuredLogger, get_logger

C = TypeVar("C")

ENV_PREFIX = "APP"
CONFIG_PATH_ENV = "APP_CONFIG_PATH"
CONFIG_BASENAME = "config"
CONFIG_EXTENSIONS = (".yaml", ".json")

# Variables the runner itself consumes; never treated as configuration fields.
RESERVED_ENV = frozenset(
    {
        "APP_DEBUG",
        "APP_NAME",
        "APP_VERSION",
        CONFIG_PATH_ENV,
        "APP_HTTP_SERVER_ADDR",
    }
)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)
_COMPOSITE_ORIGINS = (list, tuple, set, frozenset, dict, Mapping, Sequence, AbstractSet)


def _unwrap_optional(annotation: Any) -> Any:
    """Return ``X`` for ``Optional[X]`` and ``X | None``; other types unchanged."""
    if get_origin(annotation) in (Union, UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _declared_fields(tp: Any) -> dict[str, Any] | None:
    """Field annotations of a pydantic model or dataclass, ``None`` otherwise."""
    if tp is None or get_origin(tp) is not None:
        return None
    if isinstance(tp, type) and issubclass(tp, BaseModel):
        return {name: info.annotation for name, info in tp.model_fields.items()}
    pydantic_fields = getattr(tp, "__pydantic_fields__", None)
    if pydantic_fields is not None:
        return {name: info.annotation for name, info in pydantic_fields.items()}
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        try:
            hints = get_type_hints(tp)
        except (NameError, TypeError):
            hints = {}
        return {f.name: hints.get(f.name, Any) for f in dataclasses.fields(tp)}
    return None


def _is_composite(annotation: Any) -> bool:
    if annotation is Any:
        return False
    target = get_origin(annotation) or annotation
    if not isinstance(target, type) or issubclass(target, (str, bytes)):
        return False
    return issubclass(target, _COMPOSITE_ORIGINS)


class SourceKind(str, Enum):
    CONVENTION_FILE = "convention_file"
    EXPLICIT_FILE = "explicit_file"
    ENVIRONMENT = "environment"


@dataclass(frozen=True)
class ConfigSource:
    """One step of the resolution cascade."""

    name: str
    kind: SourceKind
    path: Path | None = None
    prefix: str | None = None


def normalize_app_name(app_name: str) -> str:
    """Turn an application name into an environment variable fragment."""
    return app_name.replace("-", "_").replace(".", "_").upper()


def app_env_prefix(app_name: str) -> str | None:
    normalized = normalize_app_name(app_name)
    if not normalized:
        return None
    return f"{ENV_PREFIX}_{normalized}"


def _parse_yaml(text: str) -> Any:
    return yaml.safe_load(text)


def _parse_json(text: str) -> Any:
    return json.loads(text)


_PARSERS = {
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".json": _parse_json,
}


def load_config(path: str | Path) -> dict[str, Any]:
    """Load a configuration mapping from a YAML or JSON file.

    Args:
        path: Path to the configuration file. The format is chosen by
            extension.

    Returns:
        The top-level mapping of the file (empty for an empty YAML file).

    Raises:
        ConfigFileMissing: The file does not exist.
        ConfigLoadError: The file cannot be read or parsed, or does not hold
            a mapping.
    """
    file_path = Path(path)
    parser = _PARSERS.get(file_path.suffix.lower())
    if parser is None:
        raise ConfigLoadError(
            f"unsupported config file format: {file_path.suffix or '<none>'}",
            path=str(path),
        )

    try:
        text = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigFileMissing(str(path)) from None
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"read config file: {exc}", path=str(path)) from exc

    try:
        data = parser(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigLoadError(f"parse config file: {exc}", path=str(path)) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"config file must contain a mapping, got {type(data).__name__}",
            path=str(path),
        )
    return data


def merge_mappings(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into ``base``; nested mappings merge per key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_mappings(current, value)
        else:
            merged[key] = value
    return merged


class ConfigResolver(Generic[C]):
    """Resolve a configuration value from files and environment variables.

    The resolver never mutates the base value: every step dumps the current
    value, merges the overrides and validates a new value with pydantic, so
    a step either applies completely or fails.
    """

    def __init__(
        self,
        app_name: str = "",
        *,
        environ: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.app_name = app_name
        self._environ = os.environ if environ is None else environ
        self._cwd = Path.cwd() if cwd is None else Path(cwd)
        self._logger = logger or get_logger(__name__)

    def sources(self) -> list[ConfigSource]:
        """Return the sources in the order they are applied."""
        sources: list[ConfigSource] = []

        bases = [CONFIG_BASENAME]
        if self.app_name and self.app_name != CONFIG_BASENAME:
            bases.append(self.app_name)
        for base in bases:
            for ext in CONFIG_EXTENSIONS:
                name = base + ext
                sources.append(
                    ConfigSource(
                        name=name,
                        kind=SourceKind.CONVENTION_FILE,
                        path=self._cwd / name,
                    )
                )

        explicit = self._environ.get(CONFIG_PATH_ENV, "")
        if explicit:
            path = Path(explicit)
            if not path.is_absolute():
                path = self._cwd / path
            sources.append(
                ConfigSource(name=explicit, kind=SourceKind.EXPLICIT_FILE, path=path)
            )

        sources.append(
            ConfigSource(name=ENV_PREFIX, kind=SourceKind.ENVIRONMENT, prefix=ENV_PREFIX)
        )
        app_prefix = app_env_prefix(self.app_name)
        if app_prefix is not None:
            sources.append(
                ConfigSource(
                    name=app_prefix, kind=SourceKind.ENVIRONMENT, prefix=app_prefix
                )
            )
        return sources

    def resolve(self, base: C) -> C:
        """Apply every source on top of ``base`` and return the result."""
        adapter: TypeAdapter[C] = TypeAdapter(type(base))
        value = base
        for source in self.sources():
            if source.kind is SourceKind.ENVIRONMENT:
                value = self._apply_environment(adapter, value, source)
            else:
                value = self._apply_file(adapter, value, source)
        return value

    def _apply_file(
        self, adapter: TypeAdapter[C], value: C, source: ConfigSource
    ) -> C:
        assert source.path is not None
        path = str(source.path)
        try:
            overrides = load_config(source.path)
        except ConfigFileMissing:
            if source.kind is SourceKind.EXPLICIT_FILE:
                raise ConfigLoadError(
                    f"config file not found: {path}", path=path
                ) from None
            self._logger.debug("config file not found, skipped", extra={"fields": {"path": path}})
            return value

        try:
            resolved = self._overlay(adapter, value, overrides)
        except ValidationError as exc:
            raise ConfigLoadError(f"invalid config file: {exc}", path=path) from exc

        self._logger.debug("config file loaded", extra={"fields": {"path": path}})
        return resolved

    def _apply_environment(
        self, adapter: TypeAdapter[C], value: C, source: ConfigSource
    ) -> C:
        assert source.prefix is not None
        current = adapter.dump_python(value)
        if not isinstance(current, Mapping):
            raise ConfigLoadError(
                f"config type {type(value).__name__} has no fields to overlay"
            )

        overrides, variables = self._env_overrides(current, source.prefix, type(value))
        if not overrides:
            return value

        try:
            resolved = self._overlay(adapter, value, overrides)
        except ValidationError as exc:
            raise ConfigLoadError(
                f"invalid environment value: {exc}",
                variable=", ".join(variables),
            ) from exc

        self._logger.debug(
            "config loaded from env vars",
            extra={"fields": {"prefix": source.prefix, "vars": ",".join(variables)}},
        )
        return resolved

    def _env_overrides(
        self, current: Mapping[str, Any], prefix: str, declared: Any = None
    ) -> tuple[dict[str, Any], list[str]]:
        overrides: dict[str, Any] = {}
        variables: list[str] = []

        fields = _declared_fields(declared)
        # Declared fields cover values that are currently None
        names = list(fields) if fields is not None else list(current)

        for key in names:
            var = f"{prefix}_{str(key).upper()}"
            if var in RESERVED_ENV:
                continue

            field_value = current.get(key)
            annotation = _unwrap_optional(fields[key]) if fields is not None else None
            nested_type = annotation if _declared_fields(annotation) is not None else None
            raw = self._environ.get(var)

            if nested_type is not None or isinstance(field_value, Mapping):
                if raw is not None:
                    overrides[key] = self._decode_json(var, raw)
                    variables.append(var)
                nested, nested_vars = self._env_overrides(
                    field_value if isinstance(field_value, Mapping) else {},
                    var,
                    nested_type,
                )
                if nested:
                    overrides[key] = merge_mappings(
                        overrides[key] if isinstance(overrides.get(key), Mapping) else {},
                        nested,
                    )
                    variables.extend(nested_vars)
                continue

            if raw is None:
                continue
            if _is_composite(annotation) or isinstance(field_value, _SEQUENCE_TYPES):
                overrides[key] = self._decode_json(var, raw)
            else:
                overrides[key] = raw
            variables.append(var)

        return overrides, variables

    @staticmethod
    def _decode_json(var: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigLoadError(
                f"environment variable {var} is not valid JSON: {exc}",
                variable=var,
            ) from exc

    @staticmethod
    def _overlay(adapter: TypeAdapter[C], value: C, overrides: Mapping[str, Any]) -> C:
        current = adapter.dump_python(value)
        return adapter.validate_python(merge_mappings(current, overrides))


__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigResolver",
    "ConfigSource",
    "ENV_PREFIX",
    "RESERVED_ENV",
    "SourceKind",
    "app_env_prefix",
    "load_config",
    "merge_mappings",
    "normalize_app_name",
]
