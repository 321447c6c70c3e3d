"""Layered configuration service.

Sources are merged in increasing precedence::

    defaults  <  YAML file  <  environment (PREFIX__A__B=value)  <  CLI overrides (a.b=value)

Values are read with dotted keys, e.g. ``cfg.get("distribution.max_tasks", int)``.
A process-wide singleton is available for components that have no explicit
configuration handed to them.
"""
from __future__ import annotations

import copy
import os
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union

import yaml

CONFIG_PATH_ENV = "OBJECT_DISTRIBUTION_CONFIG"
DEFAULT_ENV_PREFIX = "OBJECT_DISTRIBUTION"

DEFAULTS: Mapping[str, Any] = {
    "app": {"name": "object-distribution", "env": "dev"},
    "distribution": {
        "max_tasks": 1,
        "expected_format": "{{topic}}-{{partition}}-{{start_offset}}",
        "type": "partition",
    },
    "logger": {
        "level": "WARNING",
        "sinks": [{"type": "console", "stream": "stderr"}],
    },
}

_SECRET_MARKERS = ("secret", "password", "token", "credential")
_MISSING = object()


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), MutableMapping):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _set_dotted(target: MutableMapping[str, Any], dotted: str, value: Any) -> None:
    parts = [p for p in dotted.split(".") if p]
    if not parts:
        raise ValueError("configuration key must not be empty")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, MutableMapping):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _parse_scalar(raw: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _env_overrides(prefix: str, environ: Mapping[str, str]) -> Dict[str, Any]:
    marker = f"{prefix}__"
    overrides: Dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(marker):
            continue
        dotted = ".".join(part.lower() for part in name[len(marker):].split("__") if part)
        if dotted:
            _set_dotted(overrides, dotted, _parse_scalar(raw))
    return overrides


def _redact(data: Any, key: str = "") -> Any:
    if any(marker in key.lower() for marker in _SECRET_MARKERS):
        return "[REDACTED]"
    if isinstance(data, Mapping):
        return {k: _redact(v, str(k)) for k, v in data.items()}
    if isinstance(data, list):
        return [_redact(v, key) for v in data]
    return data


class Config:
    _singleton: Optional["Config"] = None
    _singleton_lock = threading.Lock()

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, source: Optional[Path] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(data or {}))
        self.source = source

    # -------------------- loading --------------------
    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
        cli_overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        merged: Dict[str, Any] = copy.deepcopy(dict(DEFAULTS))
        if defaults:
            _deep_merge(merged, defaults)
        source: Optional[Path] = None
        if path is not None:
            source = Path(path).expanduser().resolve()
            if not source.exists():
                raise FileNotFoundError(f"configuration file not found: {source}")
            with source.open("r", encoding="utf-8") as handle:
                try:
                    loaded = yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ValueError(f"invalid YAML in {source}: {exc}") from exc
            if not isinstance(loaded, Mapping):
                raise ValueError(f"configuration root must be a mapping: {source}")
            _deep_merge(merged, loaded)
        if env_prefix:
            _deep_merge(merged, _env_overrides(env_prefix, os.environ if environ is None else environ))
        for dotted, value in (cli_overrides or {}).items():
            if value is not None:
                _set_dotted(merged, dotted, value)
        return cls(merged, source=source)

    # -------------------- access --------------------
    def get(self, key: str, typ: Optional[type] = None, default: Any = _MISSING, *, required: bool = False) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if isinstance(node, Mapping) and part in node:
                node = node[part]
            else:
                if required or default is _MISSING:
                    raise KeyError(f"missing configuration key: {key}")
                return default
        if typ is None or node is None or isinstance(node, typ):
            return node
        if typ is float and isinstance(node, int) and not isinstance(node, bool):
            return float(node)
        if typ is int and isinstance(node, str):
            try:
                return int(node)
            except ValueError as exc:
                raise TypeError(f"configuration key {key} is not an integer: {node!r}") from exc
        raise TypeError(f"configuration key {key} has incompatible type: {type(node)!r}")

    def section(self, key: str) -> Dict[str, Any]:
        return copy.deepcopy(self.get(key, dict, default={}) or {})

    def export(self, fmt: str = "dict", *, redact_secrets: bool = False) -> Any:
        data = _redact(self._data) if redact_secrets else copy.deepcopy(self._data)
        if fmt == "dict":
            return data
        if fmt == "yaml":
            return yaml.safe_dump(data, sort_keys=True)
        raise ValueError(f"unsupported export format: {fmt}")

    # -------------------- singleton --------------------
    @classmethod
    def get_singleton(cls) -> "Config":
        with cls._singleton_lock:
            if cls._singleton is None:
                env_path = os.environ.get(CONFIG_PATH_ENV)
                cls._singleton = cls.load(env_path) if env_path else cls.load()
            return cls._singleton

    @classmethod
    def set_singleton(cls, cfg: Optional["Config"]) -> None:
        with cls._singleton_lock:
            cls._singleton = cfg

    @classmethod
    def load_singleton(cls, path: Optional[Union[str, Path]] = None, **kwargs: Any) -> "Config":
        cfg = cls.load(path, **kwargs)
        cls.set_singleton(cfg)
        return cfg


__all__ = ["Config", "CONFIG_PATH_ENV", "DEFAULTS", "DEFAULT_ENV_PREFIX"]
