"""
Logging Utilities

Hierarchical logger configuration with per-module feature flags, plus the
shared helpers the lifecycle layer uses for consistent log formatting.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Module-to-logger mapping; children inherit levels from these parents
MODULE_LOGGER_MAP: dict[str, dict[str, Any]] = {
    "generation": {
        "loggers": ["datamind.generation"],
        "default_level": "INFO",
        "features": ["retry_ticks", "poll_progress", "classified_errors"],
    },
    "history": {
        "loggers": ["datamind.history"],
        "default_level": "INFO",
        "features": ["persistence", "selection"],
    },
    "clients": {
        "loggers": ["datamind.clients", "httpx"],
        "default_level": "WARNING",
        "features": ["http_requests"],
    },
    "tools": {
        "loggers": ["datamind.tools", "datamind.media"],
        "default_level": "INFO",
        "features": ["resource_tracking"],
    },
}

_module_features: dict[str, dict[str, bool]] = {}


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature is enabled for a module."""
    return _module_features.get(module, {}).get(feature, False)


def configure_logging(logging_config: dict[str, Any]) -> None:
    """Apply the `logging` section of the configuration.

    Sets the global level, the format of existing stream handlers, each
    module's parent logger levels and its feature flags. Safe to call again
    when the configuration changes.
    """
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(LEVEL_MAP.get(global_level, logging.WARNING))

    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    _module_features.clear()
    for module_name, module_config in logging_config.get("modules", {}).items():
        if not isinstance(module_config, dict):
            continue

        known = MODULE_LOGGER_MAP.get(module_name, {})
        module_level = module_config.get("level", known.get("default_level", global_level))
        level_value = LEVEL_MAP.get(module_level, logging.WARNING)

        for logger_name in known.get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        _module_features[module_name] = dict(module_config.get("enable_features", {}))


def on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Configuration observer that re-applies logging settings at runtime."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            configure_logging(logging_config)
            logger.info("🔄 Logging configuration updated in real-time")
    except Exception as e:
        logger.error(f"❌ Failed to update logging configuration: {e}")


@asynccontextmanager
async def log_performance(operation_name: str):
    """Context manager to log how long an operation took."""
    start_time = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(f"⏱️ {operation_name} completed in {elapsed_ms:.2f}ms")
