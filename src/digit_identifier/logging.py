from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Final, Literal, Protocol, runtime_checkable

from .request_context import call_id_var

_LOGGER_NAME: Final[str] = "digit_identifier"
_ENV_PREFIX: Final[str] = "DIGIT_IDENTIFIER_"
_INT_FIELDS: Final[frozenset[str]] = frozenset({"latency_ms", "label", "width", "height"})


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        cid = call_id_var.get()
        msg = record.getMessage()
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": msg,
        }
        if cid:
            payload["call_id"] = cid
        extra = _parse_evt_fields(msg)
        if extra:
            if "event" in extra:
                payload["message"] = str(extra.pop("event"))
            payload.update(extra)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class _ConsoleFormatter(logging.Formatter):
    """Colorized single-line formatter for interactive terminals.

    The first token of a message is rendered as the event name and the
    remaining ``key=value`` tokens get colored keys.
    """

    _RESET = "\x1b[0m"
    _BOLD = "\x1b[1m"
    _DIM = "\x1b[2m"
    _FG_GRAY = "\x1b[90m"
    _FG_RED = "\x1b[91m"
    _FG_GREEN = "\x1b[92m"
    _FG_YELLOW = "\x1b[93m"
    _FG_BLUE = "\x1b[94m"
    _FG_MAGENTA = "\x1b[95m"
    _FG_CYAN = "\x1b[36m"

    _LEVELS: Final[tuple[tuple[int, str, str], ...]] = (
        (logging.CRITICAL, "CRIT", _FG_MAGENTA),
        (logging.ERROR, "ERROR", _FG_RED),
        (logging.WARNING, "WARN", _FG_YELLOW),
        (logging.INFO, "INFO", _FG_CYAN),
    )

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(UTC).strftime("%H:%M:%S")
        parts: list[str] = [f"{self._DIM}[{ts}]{self._RESET}", self._level_tag(record.levelno)]
        if record.name and record.name != _LOGGER_NAME:
            parts.append(f"{self._DIM}{record.name}{self._RESET}")

        event, kv_pairs, tail = _split_message(record.getMessage())
        if event:
            parts.append(f"{self._BOLD}{self._FG_BLUE}{event}{self._RESET}")
        for k, v in kv_pairs:
            parts.append(f"{self._FG_CYAN}{k}{self._RESET}={self._color_value(k, v)}")
        if tail:
            parts.append(tail)

        if record.exc_info:
            parts.append(f"\n{self._FG_RED}{self.formatException(record.exc_info)}{self._RESET}")

        cid = call_id_var.get()
        if cid:
            parts.append(f"{self._DIM}{self._FG_GRAY}call={cid}{self._RESET}")
        return " ".join(parts)

    def _level_tag(self, level: int) -> str:
        for threshold, name, color in self._LEVELS:
            if level >= threshold:
                return f"{self._BOLD}{color}[{name}]{self._RESET}"
        return f"{self._BOLD}{self._FG_GRAY}[DEBUG]{self._RESET}"

    def _color_value(self, key: str, v: str) -> str:
        if key.endswith("_ms"):
            return f"{self._FG_MAGENTA}{v}{self._RESET}"
        if _is_float_str(v):
            return f"{self._FG_GREEN}{v}{self._RESET}"
        return v


def _split_message(msg: str) -> tuple[str | None, list[tuple[str, str]], str | None]:
    if msg.startswith("EVT "):
        extra = _parse_evt_fields(msg)
        evt_name = str(extra.pop("event")) if "event" in extra else "event"
        return evt_name, [(k, str(v)) for k, v in extra.items()], None

    toks = msg.split()
    if not toks:
        return None, [], None
    event: str | None = None
    rest = toks
    if "=" not in toks[0]:
        event = toks[0]
        rest = toks[1:]
    kv: list[tuple[str, str]] = []
    tail_parts: list[str] = []
    for t in rest:
        k, sep, v = t.partition("=")
        if sep and k:
            kv.append((k, v))
        else:
            tail_parts.append(t)
    return event, kv, (" ".join(tail_parts) if tail_parts else None)


def log_event(event: str, fields: Mapping[str, object] | None = None) -> None:
    parts: list[str] = [f"event={event}"]
    if fields is not None:
        for key, val in fields.items():
            if key in _INT_FIELDS and isinstance(val, int) and not isinstance(val, bool):
                parts.append(f"{key}={val}")
            elif key == "confidence" and isinstance(val, float):
                parts.append(f"confidence={val}")
            elif key == "model_id" and isinstance(val, str) and val and " " not in val:
                parts.append(f"model_id={val}")
    get_logger().info("EVT " + " ".join(parts))


def _parse_evt_fields(msg: str) -> dict[str, object]:
    if not msg.startswith("EVT "):
        return {}
    out: dict[str, object] = {}
    for tok in msg[4:].split():
        k, sep, v = tok.partition("=")
        key = k.strip()
        if not sep or not key:
            continue
        val: object = v
        if key in _INT_FIELDS and v.lstrip("-").isdigit():
            val = int(v)
        elif key == "confidence" and _is_float_str(v):
            val = float(v)
        out[key] = val
    return out


def _is_float_str(s: str) -> bool:
    try:
        float(s)
    except ValueError:
        return False
    return True


LogStyle = Literal["json", "pretty", "auto"]


def _env_level() -> int:
    v = os.environ.get(_ENV_PREFIX + "LOG_LEVEL")
    if not v:
        return logging.INFO
    return {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }.get(v.strip().upper(), logging.INFO)


def init_logging(style: LogStyle = "auto") -> logging.Logger:
    """Initialize or refresh the project logger.

    Re-binds the single stream handler to the current ``sys.stdout`` so that
    repeated calls (and stdout replacement under pytest) never duplicate output.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    lvl = _env_level()
    logger.setLevel(lvl)
    logger.propagate = _env_truthy(_ENV_PREFIX + "LOG_PROPAGATE")

    for h in list(logger.handlers):
        if isinstance(h, logging.StreamHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(_choose_formatter(style))
    handler.setLevel(lvl)
    logger.addHandler(handler)
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(_LOGGER_NAME)


def _env_truthy(name: str) -> bool:
    v = os.environ.get(name)
    if not v:
        return False
    return v.strip().lower() in {"1", "true", "yes", "on", "y"}


def _choose_formatter(style: LogStyle = "auto") -> logging.Formatter:
    if style == "json":
        return _JsonFormatter()
    if style == "pretty":
        return _ConsoleFormatter()

    force_json = _env_truthy(_ENV_PREFIX + "LOG_JSON")
    force_pretty = _env_truthy(_ENV_PREFIX + "LOG_PRETTY")

    @runtime_checkable
    class _HasIsatty(Protocol):
        def isatty(self) -> bool: ...

    out_stream = sys.stdout
    is_tty = isinstance(out_stream, _HasIsatty) and bool(out_stream.isatty())
    if not force_json and (force_pretty or is_tty):
        return _ConsoleFormatter()
    return _JsonFormatter()
