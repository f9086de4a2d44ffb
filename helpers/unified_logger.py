"""
Unified logging for the custody service

Every component gets a loguru logger bound to an id such as
``SERVICE:PROVISIONER`` or ``EXCHANGE:RELAY``. Output goes to:
- the console (colored, level from LOG_LEVEL)
- logs/custody_history.log (all sessions, DEBUG)
- logs/session_<timestamp>.log (this process only, DEBUG)

Private keys never reach a sink: 32-byte hex values following a key
marker ("private key", "secret", "pk") are masked before formatting.
"""

import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger

# 32-byte hex only counts as a secret after a key marker; condition ids
# and transaction hashes share the shape.
_PRIVATE_KEY_PATTERN = re.compile(
    r"(?i)\b((?:private[_ ]?key|secret|pk)\b\W{0,3})((?:0x)?[0-9a-f]{64})\b"
)

_sinks_installed = False

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level:<8} | "
    "{extra[component_id]:<35} | "
    "{message}"
)

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component_id]: <28}</cyan> | "
    "<level>{message}</level>"
)


def _logs_dir() -> Path:
    logs_dir = Path(os.getenv("LOG_DIR") or Path(__file__).parent.parent / "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def redact(message: str) -> str:
    """Mask raw private keys that follow a key marker."""
    return _PRIVATE_KEY_PATTERN.sub(lambda m: m.group(1) + m.group(2)[:6] + "…[redacted]", message)


def _prepare(record) -> bool:
    record["extra"].setdefault("component_id", "UNKNOWN")
    record["message"] = redact(record["message"])
    return True


def _install_sinks(level: str) -> None:
    global _sinks_installed
    if _sinks_installed:
        return

    _logger.remove()
    _logger.add(
        sys.stdout,
        format=_CONSOLE_FORMAT,
        level=level,
        colorize=True,
        filter=_prepare,
        backtrace=True,
        diagnose=False,
    )

    logs_dir = _logs_dir()
    session_ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    for path in (logs_dir / "custody_history.log", logs_dir / f"session_{session_ts}.log"):
        _logger.add(
            str(path),
            format=_FILE_FORMAT,
            level="DEBUG",
            filter=_prepare,
            backtrace=False,
            diagnose=False,
            enqueue=True,
            catch=True,
        )

    _sinks_installed = True


class UnifiedLogger:
    """Thin wrapper that keeps the caller's location in log records."""

    def __init__(
        self,
        component_type: str,  # "service", "exchange", "execution", "core"
        component_name: str,
        context: Optional[Dict[str, Any]] = None,
        log_level: str = "INFO",
    ):
        self.component_id = f"{component_type.upper()}:{component_name.upper()}"
        if context:
            self.component_id += ":" + ":".join(f"{k}={v}" for k, v in context.items())

        _install_sinks(log_level.upper())
        self._logger = _logger.bind(component_id=self.component_id)

    def debug(self, message: str, **kwargs):
        self._logger.opt(depth=1).debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self._logger.opt(depth=1).info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._logger.opt(depth=1).warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self._logger.opt(depth=1).error(message, **kwargs)

    def log(self, message: str, level: str = "INFO", **kwargs):
        """Log at a level given by name."""
        self._logger.opt(depth=1).log(level.upper(), message, **kwargs)


def get_logger(
    component_type: str,
    component_name: str,
    context: Optional[Dict[str, Any]] = None,
    log_level: Optional[str] = None,
) -> UnifiedLogger:
    """
    Factory function to create unified loggers.

    Args:
        component_type: service, exchange, execution or core
        component_name: Name of specific component
        context: Extra identifiers appended to the component id
        log_level: Console level (defaults to env LOG_LEVEL or INFO)
    """
    return UnifiedLogger(
        component_type=component_type,
        component_name=component_name,
        context=context,
        log_level=log_level or os.getenv("LOG_LEVEL", "INFO"),
    )


def get_exchange_logger(client_name: str, **context) -> UnifiedLogger:
    """Logger for remote clients (relay, order book, chain)."""
    return get_logger("exchange", client_name, context)


def get_execution_logger(component_name: str, **context) -> UnifiedLogger:
    return get_logger("execution", component_name, context)


def get_service_logger(service_name: str, **context) -> UnifiedLogger:
    return get_logger("service", service_name, context)


def get_core_logger(module_name: str, **context) -> UnifiedLogger:
    return get_logger("core", module_name, context)


def log_stage(
    logger_obj: Any,
    title: str,
    *,
    icon: Optional[str] = None,
    stage_id: Optional[str] = None,
    border: str = "=",
    width: int = 55,
    level: str = "INFO"
) -> None:
    """
    Log a banner around a multi-step operation phase.

    Args:
        logger_obj: Logger to emit messages on.
        title: Stage title to display.
        icon: Optional emoji prefix.
        stage_id: Optional step number (e.g., "1", "2.1").
        border: Character used for the separator line.
        width: Width of the separator line.
        level: Log level name.
    """
    label = " ".join(part for part in (f"{stage_id}." if stage_id else None, icon, title) if part)
    border_line = border * width
    for message in (border_line, label, border_line):
        logger_obj.log(message, level=level)
