"""
Centralized logging for NeuronVault.

Provides:
- Configurable log levels and rotation
- Session-specific logging
- Sensitive data redaction
- File and console sinks

Configuration comes from the `logging` section of the NeuronVault config.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from neuronvault.config.models import LoggingConfig
from neuronvault.utils.security import redact_sensitive_info


def use_emoji_logs() -> bool:
    """
    Check if emoji prefixes should be used in log messages.

    Returns True unless USE_EMOJI_LOGS is set to "0" or "false".
    """
    value = os.environ.get("USE_EMOJI_LOGS", "1").lower()
    return value not in ("0", "false", "no", "off")


# Mapping of emoji prefixes to ASCII alternatives
_EMOJI_TO_ASCII = {
    "🔄": "[RETRY]",
    "⚠️": "[WARN]",
    "⏱️": "[TIMEOUT]",
    "🌐": "[CONNECT]",
    "🔌": "[DISCONNECT]",
    "✅": "[OK]",
    "❌": "[ERROR]",
    "🚀": "[RUN]",
    "🚫": "[CANCEL]",
    "🗑️": "[DISCARD]",
    "⚡": "[AUTO]",
    "🧹": "[CLEAR]",
    "🧠": "[ATHENA]",
    "🧩": "[SYNTH]",
    "📁": "[FILE]",
    "📊": "[STATS]",
}


def log_prefix(emoji: str) -> str:
    """
    Return the log prefix for the current USE_EMOJI_LOGS setting.

    Args:
        emoji: The emoji to use when emoji logs are enabled.

    Returns:
        The emoji, or its ASCII equivalent (empty string if unmapped).
    """
    if use_emoji_logs():
        return emoji
    return _EMOJI_TO_ASCII.get(emoji, "")


def _redact_value(value: Any, _seen: set[int] | None = None) -> Any:
    """Recursively redact sensitive info from a value."""
    if _seen is None:
        _seen = set()

    value_id = id(value)
    if value_id in _seen:
        return "[circular reference]"

    if isinstance(value, str):
        return redact_sensitive_info(value)
    if isinstance(value, dict):
        _seen.add(value_id)
        result = {k: _redact_value(v, _seen) for k, v in value.items()}
        _seen.discard(value_id)
        return result
    if isinstance(value, (list, tuple)):
        _seen.add(value_id)
        items = [_redact_value(item, _seen) for item in value]
        _seen.discard(value_id)
        return items if isinstance(value, list) else tuple(items)
    return value


def _redaction_patcher(record: dict[str, Any]) -> None:
    """Redact sensitive info from every record."""
    record["message"] = redact_sensitive_info(record["message"])
    for key in list(record["extra"].keys()):
        record["extra"][key] = _redact_value(record["extra"][key])


def setup_logger(
    verbose: bool = False,
    session_id: str | None = None,
    config: LoggingConfig | None = None,
) -> Path:
    """
    Configure the logger.

    Rules:
    1. FILE: Always log to <log_dir>/app.log (rotated), session_id prefixed.
    2. CONSOLE: DEBUG+ to stderr when verbose, otherwise only when
       console_enabled is set (the CLI renders its own output).

    Args:
        verbose: Enable console logging
        session_id: Optional session ID bound to every record
        config: LoggingConfig override (defaults from the loaded config)

    Returns:
        Path of the file sink.
    """
    logger.remove()

    if config is None:
        from neuronvault.config.loader import get_config

        config = get_config().logging

    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / config.app_log_name

    def format_record(record: dict[str, Any]) -> str:
        sid = record["extra"].get("session_id", "")

        if config.json_logs:
            entry = {
                "timestamp": record["time"].isoformat(),
                "level": record["level"].name,
                "message": record["message"],
                "module": record["name"],
                "function": record["function"],
                "line": record["line"],
            }
            if sid:
                entry["session_id"] = sid
            # Braces are escaped because loguru formats the returned template
            return json.dumps(entry).replace("{", "{{").replace("}", "}}") + "\n"

        head = "{time:YYYY-MM-DD HH:mm:ss} | "
        if sid:
            head += "{extra[session_id]} | "
        if config.include_caller:
            return head + "{level: <8} | {name}:{function}:{line} - {message}\n"
        return head + "{level: <8} | {message}\n"

    logger.add(
        log_path,
        rotation=config.rotation,
        retention=config.retention,
        level=config.file_level,
        format=format_record,
        compression=config.compression,
        enqueue=True,
    )

    if verbose or config.console_enabled:
        console_format = (
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
        logger.add(
            sys.stderr,
            format=console_format,
            level="DEBUG" if verbose else config.console_level,
            colorize=True,
        )

    extra = {"session_id": session_id} if session_id else {}
    logger.configure(patcher=_redaction_patcher, extra=extra)

    return log_path


def get_session_logger(session_id: str):
    """
    Get a logger bound to a specific session ID.

    Example:
        >>> session_logger = get_session_logger("sess_20250101_143022")
        >>> session_logger.info("Run submitted")
    """
    return logger.bind(session_id=session_id)
