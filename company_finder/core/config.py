"""Settings for Company Finder.

Values are resolved in this order, first hit wins:

1. an environment variable named after the dotted key
   (``registry.url`` -> ``REGISTRY_URL``), including anything in ``.env``
2. the YAML or TOML settings file
3. the built-in defaults below

The hosted registry credentials may also come from ``SUPABASE_URL`` and
``SUPABASE_ANON_KEY`` (or their ``NEXT_PUBLIC_`` forms).
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
REGISTRY_BACKENDS = ["supabase", "sqlite"]
CONFIG_NAMES = ("company_finder.yaml", "company_finder.yml", "company_finder.toml")

POSITIVE_INT_KEYS = (
    "api.default_limit",
    "api.max_limit",
    "http.max_attempts",
    "search.page_size",
    "search.recent_limit",
)
NON_NEGATIVE_KEYS = (
    "http.base_delay_seconds",
    "search.debounce_seconds",
    "search.cache_ttl_seconds",
    "cache.stale_time_seconds",
    "cache.gc_time_seconds",
    "cache.persist_max_age_seconds",
    "cache.throttle_seconds",
)


@dataclass
class ValidationResult:
    """Errors make a configuration unusable; warnings do not."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def __str__(self) -> str:
        sections = []
        for title, messages in (("Errors:", self.errors), ("Warnings:", self.warnings)):
            if messages:
                sections.append(title)
                sections.extend(f"  - {message}" for message in messages)
        return "\n".join(sections) if sections else "Configuration is valid."


def _defaults() -> Dict[str, Any]:
    return {
        "logging": {
            "level": "INFO",
            "directory": "logs",
            "json_format": False,
        },
        "registry": {
            "backend": "supabase",
            "url": "",
            "anon_key": "",
            "table": "companies",
            "sqlite_path": "companies.db",
            "timeout_seconds": 10,
        },
        "api": {
            "host": "127.0.0.1",
            "port": 8000,
            "base_url": "http://127.0.0.1:8000",
            "default_limit": 20,
            "max_limit": 100,
            "cors_origins": ["*"],
        },
        "http": {
            "max_attempts": 3,
            "base_delay_seconds": 0.3,
            "timeout_seconds": 10,
        },
        "search": {
            "page_size": 12,
            "debounce_seconds": 1.0,
            "cache_ttl_seconds": 300,
            "recent_limit": 5,
        },
        "cache": {
            "stale_time_seconds": 300,
            "gc_time_seconds": 600,
            "retry": 3,
            "persist": True,
            "persist_key": "COMPANY_FINDER_QUERY_CACHE",
            "buster": "v1",
            "persist_max_age_seconds": 86400,
            "throttle_seconds": 1.0,
        },
        "storage": {"path": ".company_finder/state.db"},
    }


class Config:
    """Layered settings lookup with dotted keys."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Args:
            config_file: YAML or TOML settings file; when omitted the first of
                ``config/company_finder.*`` or ``./company_finder.*`` is used
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config_file = config_file
        self._config: Dict[str, Any] = {}

        if Path(".env").exists():
            load_dotenv(".env")
            self.logger.info("Loaded environment variables from .env")

        self._load()

    def _load(self) -> None:
        path = self._config_file or self._discover()
        self._config = self._read(path) if path else {}
        for section, values in _defaults().items():
            loaded = self._config.get(section)
            if isinstance(loaded, dict):
                self._config[section] = {**values, **loaded}
            elif section not in self._config:
                self._config[section] = values

    def _discover(self) -> Optional[str]:
        for directory in (Path("config"), Path(".")):
            for name in CONFIG_NAMES:
                candidate = directory / name
                if candidate.exists():
                    return str(candidate)
        self.logger.debug("No config file found, using defaults and environment variables")
        return None

    def _read(self, config_file: str) -> Dict[str, Any]:
        path = Path(config_file)
        if not path.exists():
            self.logger.warning(f"Config file not found: {config_file}")
            return {}

        try:
            with open(path, "rb") as f:
                if path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f) or {}
                elif path.suffix == ".toml":
                    data = tomllib.load(f)
                else:
                    self.logger.error(f"Unsupported config format: {config_file}")
                    return {}
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            self.logger.error(f"Failed to load config file {config_file}: {e}")
            return {}

        if not isinstance(data, dict):
            self.logger.error(f"Config file {config_file} does not contain a mapping")
            return {}
        self.logger.info(f"Loaded config from {config_file}")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as ``"registry.url"``.

        An environment variable named after the key (``REGISTRY_URL``)
        overrides the file and the defaults.
        """
        env_value = os.getenv(key.upper().replace(".", "_"))
        if env_value is not None:
            return env_value

        node: Any = self._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_int(self, key: str, default: int = 0) -> int:
        """Get a value coerced to int (environment overrides arrive as strings)."""
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            self.logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            self.logger.warning(f"Invalid number for {key}: {value!r}, using {default}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def set(self, key: str, value: Any) -> None:
        """Override a dotted key for the lifetime of this instance."""
        *parents, leaf = key.split(".")
        node = self._config
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
        self.logger.debug(f"Set config {key} = {value}")

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    def get_registry_credentials(self) -> Tuple[str, str]:
        """
        Get the hosted registry URL and anonymous key.

        ``SUPABASE_URL``/``SUPABASE_ANON_KEY`` (or their ``NEXT_PUBLIC_``
        forms) win over ``registry.url``/``registry.anon_key``.

        Returns:
            Tuple of (url, api_key); either may be empty
        """
        url = (
            os.getenv("SUPABASE_URL")
            or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
            or self.get("registry.url", "")
        )
        api_key = (
            os.getenv("SUPABASE_ANON_KEY")
            or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
            or self.get("registry.anon_key", "")
        )
        return url or "", api_key or ""

    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()

    def reload(self, config_file: Optional[str] = None) -> None:
        """Re-read the settings file, discarding runtime ``set`` calls."""
        if config_file:
            self._config_file = config_file
        self._load()
        self.logger.info("Configuration reloaded")

    def validate(self) -> ValidationResult:
        """Check the settings the registry, API and search screen depend on.

        Errors: unknown log level or registry backend, missing hosted
        registry URL, non-positive limits and sizes, negative durations, a
        default page size above the maximum.
        Warnings: missing anonymous key, garbage collection shorter than the
        staleness window.
        """
        result = ValidationResult(is_valid=True)

        log_level = str(self.get("logging.level", "INFO"))
        if log_level.upper() not in VALID_LOG_LEVELS:
            result.add_error(
                f"Invalid logging level '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )

        backend = str(self.get("registry.backend", "supabase")).lower()
        if backend not in REGISTRY_BACKENDS:
            result.add_error(
                f"Invalid registry backend '{backend}'. Must be one of: {', '.join(REGISTRY_BACKENDS)}"
            )
        elif backend == "supabase":
            url, api_key = self.get_registry_credentials()
            if not url:
                result.add_error("registry.url (or SUPABASE_URL) is required for supabase")
            if not api_key:
                result.add_warning("registry.anon_key (or SUPABASE_ANON_KEY) is not set")

        for key in POSITIVE_INT_KEYS:
            if self.get_int(key, 0) < 1:
                result.add_error(f"{key} must be a positive integer")

        if self.get_int("api.default_limit", 20) > self.get_int("api.max_limit", 100):
            result.add_error("api.default_limit cannot exceed api.max_limit")

        for key in NON_NEGATIVE_KEYS:
            if self.get_float(key, -1.0) < 0:
                result.add_error(f"{key} must be a non-negative number")

        if self.get_float("cache.gc_time_seconds", 600) < self.get_float(
            "cache.stale_time_seconds", 300
        ):
            result.add_warning("cache.gc_time_seconds is shorter than cache.stale_time_seconds")

        for error in result.errors:
            self.logger.error(f"Config validation error: {error}")
        for warning in result.warnings:
            self.logger.warning(f"Config validation warning: {warning}")

        return result

    def validate_and_raise(self) -> None:
        """
        Raises:
            ValueError: If configuration is invalid
        """
        result = self.validate()
        if not result.is_valid:
            raise ValueError(f"Invalid configuration:\n{result}")


_global_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """Process-wide settings; ``config_file`` only matters on the first call."""
    global _global_config

    if _global_config is None:
        _global_config = Config(config_file)
    return _global_config


def reload_config(config_file: Optional[str] = None) -> None:
    global _global_config

    if _global_config is None:
        _global_config = Config(config_file)
    else:
        _global_config.reload(config_file)
