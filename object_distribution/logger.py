#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Structured logging
------------------

JSON-line logger used across :mod:`object_distribution`.

* Deterministic top-level fields (``ts``, ``level``, ``event``, ``logger``)
  plus promoted standard fields such as ``task_id`` and ``max_tasks``.
* Context propagation with ``bind``/``unbind`` backed by ``contextvars`` so a
  task runtime can bind its ``task_id`` once.
* Sinks: console, rotating file, HTTP endpoint (``requests``) and an in-memory
  sink for tests.
* Secret-looking fields are redacted and oversized payloads summarised.
"""
from __future__ import annotations

import contextlib
import contextvars
import datetime as _dt
import hashlib
import json
import logging
import logging.handlers
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import requests

if TYPE_CHECKING:  # pragma: no cover
    from .config import Config


__all__ = [
    "StructuredLogger",
    "StructuredJSONFormatter",
    "HTTPSinkHandler",
    "MemorySinkHandler",
    "SinkFactory",
]


ROOT_NAMESPACE = "object_distribution"
_SECRET_MARKERS = ("secret", "password", "token", "credential", "auth")
_STANDARD_FIELDS = (
    "trace_id",
    "task_id",
    "max_tasks",
    "generation",
    "partition_id",
    "latency_ms",
)


def _coerce_level(level: Union[str, int, None]) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        lvl = logging.getLevelName(level.upper())
        if isinstance(lvl, int):
            return lvl
    raise ValueError(f"invalid logging level: {level!r}")


def _utc_iso(dt: _dt.datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_dt.timezone.utc)
    return dt.astimezone(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8", errors="ignore")).hexdigest()


def _json_default(value: Any) -> str:
    return repr(value)


def _sanitize_value(key: str, value: Any, *, depth: int = 0, max_depth: int = 4) -> Any:
    if any(marker in key.lower() for marker in _SECRET_MARKERS):
        return "[REDACTED]"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if len(value) > 1024:
            return {
                "__redacted__": True,
                "hint": f"str[{len(value)}]",
                "sha256": _hash_text(value),
            }
        return value
    if depth >= max_depth:
        return {"__summary__": f"depth>{max_depth}", "repr": repr(value)}
    if isinstance(value, Mapping):
        return {
            str(sub_key): _sanitize_value(f"{key}.{sub_key}", sub_value, depth=depth + 1, max_depth=max_depth)
            for sub_key, sub_value in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        seq = list(value)
        if len(seq) > 64:
            return {
                "__summary__": f"{type(value).__name__}[len={len(seq)}]",
                "sha256": _hash_text(json.dumps(seq[:32], default=_json_default)),
            }
        return [_sanitize_value(f"{key}[{idx}]", item, depth=depth + 1, max_depth=max_depth) for idx, item in enumerate(seq)]
    return repr(value)


class StructuredJSONFormatter(logging.Formatter):
    def __init__(self, *, app_info: Optional[Mapping[str, Any]] = None, ensure_ascii: bool = False) -> None:
        super().__init__()
        self._app_info = dict(app_info or {})
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        created = _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        entry: Dict[str, Any] = {
            "ts": _utc_iso(created),
            "level": record.levelname,
            "event": getattr(record, "_structured_event", record.getMessage()),
            "msg": getattr(record, "_structured_msg", None),
            "logger": record.name,
        }
        standard = getattr(record, "_structured_standard", {})
        for field in _STANDARD_FIELDS:
            value = standard.get(field)
            if value is not None:
                entry[field] = value
        entry["extras"] = getattr(record, "_structured_extras", {})
        if self._app_info:
            entry["app"] = self._app_info
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stack": self.formatException(record.exc_info),
            }
        return json.dumps(entry, ensure_ascii=self._ensure_ascii, default=_json_default)


class HTTPSinkHandler(logging.Handler):
    """Ships each record as a JSON body to an HTTP log collector."""

    def __init__(self, *, url: str, method: str = "POST", headers: Optional[Mapping[str, str]] = None, timeout: float = 5.0) -> None:
        super().__init__()
        self.url = url
        self.method = method.upper()
        self.headers = dict(headers or {"Content-Type": "application/json"})
        self.timeout = timeout
        self._session = requests.Session()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._session.request(
                self.method,
                self.url,
                data=self.format(record).encode("utf-8"),
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.RequestException:
            self.handleError(record)

    def close(self) -> None:
        self._session.close()
        super().close()


class MemorySinkHandler(logging.Handler):
    """In-memory sink for unit tests and diagnostics."""

    def __init__(self, name: str):
        super().__init__()
        self.name = name
        self.records: List[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))

    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.records]


class SinkFactory:
    @staticmethod
    def create(sink_cfg: Union[str, Mapping[str, Any]]) -> logging.Handler:
        if isinstance(sink_cfg, str):
            sink_cfg = {"type": sink_cfg}
        if not isinstance(sink_cfg, Mapping):
            raise TypeError("sink configuration must be mapping or string")
        sink_type = str(sink_cfg.get("type", "console")).lower()
        handler: logging.Handler
        if sink_type == "console":
            stream = sink_cfg.get("stream", "stderr")
            handler = logging.StreamHandler(stream=sys.stdout if stream == "stdout" else sys.stderr)
        elif sink_type == "rotating_file":
            path = sink_cfg.get("path")
            if not path:
                raise ValueError("rotating_file sink requires 'path'")
            max_bytes = int(sink_cfg.get("max_bytes", 10 * 1024 * 1024))
            backups = int(sink_cfg.get("backups", 5))
            Path(path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
        elif sink_type == "http":
            url = sink_cfg.get("url")
            if not url:
                raise ValueError("http sink requires 'url'")
            handler = HTTPSinkHandler(
                url=url,
                method=sink_cfg.get("method", "POST"),
                headers=sink_cfg.get("headers"),
                timeout=float(sink_cfg.get("timeout", 5.0)),
            )
        elif sink_type == "memory":
            handler = MemorySinkHandler(name=str(sink_cfg.get("name", "memory")))
        else:
            raise ValueError(f"unsupported sink type: {sink_type}")
        level = sink_cfg.get("level")
        if level is not None:
            handler.setLevel(_coerce_level(level))
        return handler


class StructuredLogger:
    _context: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar("object_distribution_log_context", default={})
    _lock = threading.RLock()
    _configured = False
    _root_logger = logging.getLogger(ROOT_NAMESPACE)
    _memory_sinks: Dict[str, MemorySinkHandler] = {}

    def __init__(self, name: str = "app") -> None:
        self._ensure_configured()
        prefix = f"{ROOT_NAMESPACE}."
        self._logger = self._root_logger.getChild(name[len(prefix):] if name.startswith(prefix) else name)

    @classmethod
    def get_logger(cls, name: str) -> "StructuredLogger":
        return cls(name)

    # -------------------- configuration --------------------
    @classmethod
    def _ensure_configured(cls) -> None:
        if not cls._configured:
            cls.configure(sinks=[{"type": "console", "stream": "stderr"}], level="WARNING")

    @classmethod
    def configure(
        cls,
        *,
        sinks: Optional[Sequence[Union[str, Mapping[str, Any]]]] = None,
        level: Union[str, int, None] = None,
        app: Optional[Mapping[str, Any]] = None,
    ) -> None:
        with cls._lock:
            for handler in list(cls._root_logger.handlers):
                cls._root_logger.removeHandler(handler)
                with contextlib.suppress(OSError):
                    handler.close()
            cls._root_logger.setLevel(_coerce_level(level))
            cls._root_logger.propagate = False
            cls._memory_sinks.clear()

            formatter = StructuredJSONFormatter(app_info=app)
            for sink in sinks or [{"type": "console", "stream": "stderr"}]:
                handler = SinkFactory.create(sink)
                handler.setFormatter(formatter)
                cls._root_logger.addHandler(handler)
                if isinstance(handler, MemorySinkHandler):
                    cls._memory_sinks[handler.name] = handler
            cls._configured = True

    @classmethod
    def configure_from_config(cls, cfg: "Config") -> None:
        logger_cfg = cfg.get("logger", dict, default={}) or {}
        app_cfg = cfg.get("app", dict, default={}) or {}
        cls.configure(
            sinks=logger_cfg.get("sinks"),
            level=logger_cfg.get("level"),
            app={"name": app_cfg.get("name"), "env": app_cfg.get("env")} if app_cfg else None,
        )

    # -------------------- context management --------------------
    @classmethod
    def reset_context(cls) -> None:
        cls._context.set({})

    def bind(self, **context: Any) -> "StructuredLogger":
        current = dict(self._context.get() or {})
        current.update(context)
        self._context.set(current)
        return self

    def unbind(self, *keys: str) -> "StructuredLogger":
        current = dict(self._context.get() or {})
        for key in keys:
            current.pop(key, None)
        self._context.set(current)
        return self

    # -------------------- logging primitives --------------------
    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, event: str, *, exc_info: Optional[Tuple[type, BaseException, Any]] = None, fields: Optional[Mapping[str, Any]] = None) -> None:
        if not event:
            raise ValueError("event must be non-empty")
        if not self._logger.isEnabledFor(level):
            return
        combined: Dict[str, Any] = dict(self._context.get() or {})
        combined.update(fields or {})
        sanitized = {key: _sanitize_value(key, value) for key, value in combined.items()}
        standard = {field: sanitized.pop(field) for field in _STANDARD_FIELDS if field in sanitized}
        structured_msg = sanitized.pop("msg", None)
        self._logger.log(
            level,
            structured_msg or event,
            extra={
                "_structured_event": event,
                "_structured_msg": structured_msg,
                "_structured_extras": sanitized,
                "_structured_standard": standard,
            },
            exc_info=exc_info,
            stacklevel=3,
        )

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields=fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields=fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields=fields)

    def error(self, event: str, **fields: Any) -> None:
        exc = fields.pop("exc", None)
        exc_info = (type(exc), exc, exc.__traceback__) if isinstance(exc, BaseException) else None
        self._log(logging.ERROR, event, fields=fields, exc_info=exc_info)

    def exception(self, event: str, exc: BaseException, **fields: Any) -> None:
        fields.setdefault("error_type", type(exc).__name__)
        fields.setdefault("error_message", str(exc))
        self._log(logging.ERROR, event, fields=fields, exc_info=(type(exc), exc, exc.__traceback__))

    # -------------------- diagnostics --------------------
    @classmethod
    def get_memory_sink(cls, name: str = "memory") -> Optional[MemorySinkHandler]:
        return cls._memory_sinks.get(name)
