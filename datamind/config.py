"""Configuration management for Datamind."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

PACKAGE_DIR = os.path.dirname(__file__)
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")
STORAGE_TYPES = {"json", "sqlite", "memory"}


class Configuration:
    """Event-driven configuration manager with observer pattern."""

    def __init__(self, config_dir: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_dir: Directory holding runtime_config.yaml. Defaults to
                $DATAMIND_CONFIG_DIR, then to the package directory.
        """
        self.load_env()  # Load .env for API keys
        # Load default YAML config (reference only)
        self._default_config = self._load_yaml_config()
        self._config_dir = config_dir or os.getenv("DATAMIND_CONFIG_DIR") or PACKAGE_DIR
        self._runtime_config_path = os.path.join(self._config_dir, "runtime_config.yaml")
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        # Event-driven observer pattern
        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        # Initialize persistent runtime configuration
        self._initialize_runtime_config()
        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load the default configuration shipped with the package."""
        config_path = os.path.join(PACKAGE_DIR, "config.yaml")
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _initialize_runtime_config(self) -> None:
        """Initialize runtime configuration file if it doesn't exist."""
        if not os.path.exists(self._runtime_config_path):
            os.makedirs(self._config_dir, exist_ok=True)
            initial_config = self._default_config.copy()
            initial_config["_runtime_config"] = {
                "last_modified": time.time(),
                "version": 1,
                "is_runtime_config": True,
                "default_config_path": "config.yaml",
                "created_from_defaults": True,
            }

            with open(self._runtime_config_path, "w") as file:
                yaml.safe_dump(initial_config, file, default_flow_style=False, indent=2)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime configuration from YAML file."""
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
                if not isinstance(config, dict):
                    # If corrupted, recreate from defaults
                    os.remove(self._runtime_config_path)
                    self._initialize_runtime_config()
                    return self._load_runtime_config()
                return cast(dict[str, Any], config)
        except (yaml.YAMLError, OSError):
            # If runtime config is corrupted or unreadable, recreate from defaults
            with contextlib.suppress(OSError):
                os.remove(self._runtime_config_path)
            self._initialize_runtime_config()
            with open(self._runtime_config_path) as file:
                return cast(dict[str, Any], yaml.safe_load(file))

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _reload_config(self) -> bool:
        """Reload configuration from runtime config if it has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if current_mtime != self._runtime_config_mtime:
            old_config = self._current_config.copy()
            self._runtime_config_mtime = current_mtime
            runtime_config = self._load_runtime_config()

            # Runtime values win; defaults fill keys added since the runtime file was created
            runtime_values = {k: v for k, v in runtime_config.items() if not k.startswith("_runtime_config")}
            self._current_config = self._deep_merge(self._default_config, runtime_values)

            # Notify observers if config actually changed (not just first load)
            if old_config and self._current_config != old_config:
                self._notify_config_change()

            return True
        return False

    def _get_current_config(self) -> dict[str, Any]:
        """Get current configuration (cached, no file system access)."""
        return self._current_config

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logging.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None:
            return  # Already watching

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logging.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logging.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logging.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)  # Back off on errors

    def _get_config_value(self, path: list[str], default: Any = None) -> Any:
        """Get a configuration value by dotted path segments."""
        current: Any = self._get_current_config()
        for key in path:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def reload_runtime_config(self) -> bool:
        """Manually reload runtime configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        old_mtime = self._runtime_config_mtime
        self._reload_config()
        return old_mtime != self._runtime_config_mtime

    def save_runtime_config(self, config: dict[str, Any]) -> None:
        """Save configuration to runtime config file.

        Args:
            config: Configuration dictionary to save.
        """
        current_version = self.get_runtime_metadata().get("version", 0)

        runtime_config = config.copy()
        runtime_config["_runtime_config"] = {
            "last_modified": time.time(),
            "version": current_version + 1,
            "is_runtime_config": True,
            "default_config_path": "config.yaml",
        }

        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(runtime_config, file, default_flow_style=False, indent=2)

        # Force a reload even when the filesystem mtime did not move
        self._runtime_config_mtime = None
        self._reload_config()

    def get_runtime_metadata(self) -> dict[str, Any]:
        """Get runtime configuration metadata."""
        if os.path.exists(self._runtime_config_path):
            try:
                with open(self._runtime_config_path) as f:
                    loaded_config = yaml.safe_load(f)
                    if isinstance(loaded_config, dict):
                        runtime_config = cast(dict[str, Any], loaded_config)
                        return runtime_config.get("_runtime_config", {})
            except (yaml.YAMLError, OSError):
                pass
        return {}

    @property
    def api_key(self) -> str:
        """Get the API key for the generation API.

        Raises:
            ValueError: If no API key is found in environment variables.
        """
        for env_key in API_KEY_ENV_VARS:
            api_key = os.getenv(env_key)
            if api_key:
                return api_key
        raise ValueError(f"API key not found in environment variables (tried {', '.join(API_KEY_ENV_VARS)})")

    @property
    def has_api_key(self) -> bool:
        return any(os.getenv(env_key) for env_key in API_KEY_ENV_VARS)

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._get_current_config()

    def get_api_config(self) -> dict[str, Any]:
        """Get generation API configuration (base URL, timeout, models)."""
        api_config = dict(self._get_config_value(["api"], {}))
        if not api_config.get("base_url"):
            raise ValueError("api.base_url must be set")
        timeout = api_config.get("request_timeout_seconds", 120.0)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("api.request_timeout_seconds must be positive")
        return api_config

    def get_generation_config(self) -> dict[str, Any]:
        """Get retry, polling and voice settings with validated values.

        Returns:
            Flat dictionary with tick_seconds, poll_interval_seconds,
            max_poll_attempts, sample_rate, num_channels and default_voice.
        """
        generation = self._get_config_value(["generation"], {})
        retry = generation.get("retry", {})
        polling = generation.get("video_polling", {})
        voice = generation.get("voice", {})

        tick_seconds = retry.get("tick_seconds", 1.0)
        interval = polling.get("interval_seconds", 10.0)
        max_attempts = polling.get("max_attempts", 30)
        sample_rate = voice.get("sample_rate", 24000)
        num_channels = voice.get("num_channels", 1)

        if tick_seconds <= 0:
            raise ValueError("generation.retry.tick_seconds must be positive")
        if interval <= 0:
            raise ValueError("generation.video_polling.interval_seconds must be positive")
        if not isinstance(max_attempts, int) or max_attempts < 1:
            raise ValueError("generation.video_polling.max_attempts must be a positive integer")
        if not isinstance(sample_rate, int) or sample_rate < 1:
            raise ValueError("generation.voice.sample_rate must be a positive integer")
        if not isinstance(num_channels, int) or num_channels < 1:
            raise ValueError("generation.voice.num_channels must be a positive integer")

        return {
            "tick_seconds": tick_seconds,
            "poll_interval_seconds": interval,
            "max_poll_attempts": max_attempts,
            "sample_rate": sample_rate,
            "num_channels": num_channels,
            "default_voice": voice.get("default_voice", "Kore"),
        }

    def get_history_config(self) -> dict[str, Any]:
        """Get history storage configuration."""
        history = self._get_config_value(["history"], {})
        storage_type = history.get("storage", {}).get("type", "json")
        if storage_type not in STORAGE_TYPES:
            raise ValueError(f"history.storage.type must be one of {sorted(STORAGE_TYPES)}")
        return history

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration."""
        return self._get_config_value(["server"], {})

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self._get_config_value(["logging"], {})

    def reset_to_defaults(self) -> None:
        """Reset runtime_config.yaml to the defaults from config.yaml."""
        self.save_runtime_config(self._default_config.copy())


def reset_runtime_config_cli() -> None:
    """Console script that resets runtime_config.yaml to defaults."""
    try:
        cfg = Configuration()
        cfg.reset_to_defaults()
        logging.info("✓ runtime_config.yaml reset to defaults from config.yaml")
    except Exception as e:
        logging.error(f"Error resetting runtime configuration: {e}")
        sys.exit(1)
