"""Configuration management and validation service."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str
    message: str


class ConfigValidationException(Exception):
    """Raised when config validation fails."""

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


# Configuration schema definition
CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "required": False,
        "properties": {
            "host": {"type": "str", "required": False},
            "port": {"type": "int", "required": False, "min": 1, "max": 65535},
            "debug": {"type": "bool", "required": False},
        }
    },
    "database": {
        "type": "dict",
        "required": False,
        "properties": {
            "enabled": {"type": "bool", "required": False},
            "url": {"type": "str", "required": False},
            "connect_timeout_seconds": {"type": "float", "required": False, "min": 0.1},
            "operation_timeout_seconds": {"type": "float", "required": False, "min": 0.1},
        }
    },
    "coingecko": {
        "type": "dict",
        "required": False,
        "properties": {
            "base_url": {"type": "str", "required": False},
            "api_key": {"type": "str", "required": False},
            "timeout_seconds": {"type": "float", "required": False, "min": 0.1, "max": 120},
            "page_size_cap": {"type": "int", "required": False, "min": 1, "max": 250},
            "max_history_days": {"type": "int", "required": False, "min": 1, "max": 365},
            "vs_currency": {"type": "str", "required": False},
        }
    },
    "cors": {
        "type": "dict",
        "required": False,
        "properties": {
            "allow_origins": {"type": "list", "required": False},
        }
    },
    "logging": {
        "type": "dict",
        "required": False,
        "properties": {
            "level": {"type": "str", "required": False, "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str", "required": False},
        }
    },
}

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,
    },
    "database": {
        "enabled": True,
        "url": "sqlite+aiosqlite:///./cryptopulse.db",
        "connect_timeout_seconds": 3.0,
        "operation_timeout_seconds": 3.0,
    },
    "coingecko": {
        "base_url": "https://api.coingecko.com/api/v3",
        "api_key": "",
        "timeout_seconds": 10.0,
        "page_size_cap": 20,
        "max_history_days": 7,
        "vs_currency": "usd",
    },
    "cors": {
        "allow_origins": ["http://localhost:3000", "http://localhost:5173"],
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
    },
}

# Environment variables that override file values: (env name, dotted key, cast)
ENV_OVERRIDES = [
    ("COINGECKO_API_KEY", "coingecko.api_key", str),
    ("DATABASE_URL", "database.url", str),
    ("PORT", "server.port", int),
    ("LOG_LEVEL", "logging.level", str),
]


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses default location.
            environ: Environment mapping used for overrides. Defaults to os.environ.
        """
        if config_path is None:
            # Default config path relative to backend directory
            backend_dir = Path(__file__).parent.parent.parent
            config_path = str(backend_dir / "config.yaml")

        self.config_path = config_path
        self._environ = os.environ if environ is None else environ
        self._config: Dict[str, Any] = self._merge_defaults({})

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        Returns:
            Validated configuration dictionary, merged over the defaults and
            with environment overrides applied.

        Raises:
            ConfigValidationException: If validation fails.
        """
        errors: List[ConfigValidationError] = []

        config: Any = {}
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
        else:
            try:
                with open(self.config_path, 'r') as f:
                    config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                errors.append(ConfigValidationError(
                    path="",
                    message=f"Invalid YAML syntax: {str(e)}"
                ))
                raise ConfigValidationException(errors)

        if config is None:
            config = {}

        if not isinstance(config, dict):
            errors.append(ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(config).__name__}"
            ))
            raise ConfigValidationException(errors)

        # Validate against schema
        errors.extend(self._validate_dict(config, CONFIG_SCHEMA, ""))

        if errors:
            raise ConfigValidationException(errors)

        merged = self._merge_defaults(config)
        errors.extend(self._apply_env_overrides(merged))
        if errors:
            raise ConfigValidationException(errors)

        self._config = merged
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return merged

    def _merge_defaults(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay a validated config onto the defaults, one section deep."""
        merged: Dict[str, Any] = {}
        for section, defaults in DEFAULT_CONFIG.items():
            merged[section] = dict(defaults)
            merged[section].update(config.get(section) or {})
        return merged

    def _apply_env_overrides(self, config: Dict[str, Any]) -> List[ConfigValidationError]:
        """Apply environment overrides in place."""
        errors = []
        for env_name, key, cast in ENV_OVERRIDES:
            if env_name not in self._environ:
                continue
            raw = self._environ[env_name]
            section, name = key.split(".")
            try:
                value = cast(raw)
            except ValueError:
                errors.append(ConfigValidationError(
                    path=key,
                    message=f"Environment variable {env_name}={raw!r} is not a valid {cast.__name__}"
                ))
                continue
            if key == "logging.level":
                value = value.upper()
            config[section][name] = value
            # An empty or "disabled" DATABASE_URL turns the cache off
            if env_name == "DATABASE_URL" and raw.strip().lower() in ("", "disabled", "none"):
                config["database"]["enabled"] = False

        errors.extend(self._validate_value(
            config["server"]["port"], CONFIG_SCHEMA["server"]["properties"]["port"], "server.port"
        ))
        errors.extend(self._validate_value(
            config["logging"]["level"], CONFIG_SCHEMA["logging"]["properties"]["level"], "logging.level"
        ))
        return errors

    def _validate_dict(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a dictionary against schema.

        Args:
            data: Data to validate
            schema: Schema to validate against
            path: Current path for error messages

        Returns:
            List of validation errors
        """
        errors = []

        # Check for unknown keys
        for key in data:
            if key not in schema:
                errors.append(ConfigValidationError(
                    path=f"{path}.{key}" if path else key,
                    message=f"Unknown configuration key '{key}'"
                ))

        for key, prop_schema in schema.items():
            current_path = f"{path}.{key}" if path else key

            if key not in data:
                if prop_schema.get("required", False):
                    errors.append(ConfigValidationError(
                        path=current_path,
                        message="Required field missing"
                    ))
                continue

            value = data[key]
            errors.extend(self._validate_value(value, prop_schema, current_path))

        return errors

    def _validate_value(
        self,
        value: Any,
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a single value against schema."""
        errors = []
        expected_type = schema.get("type")

        type_map = {
            "str": str,
            "int": int,
            "float": (int, float),
            "bool": bool,
            "list": list,
            "dict": dict,
        }

        if expected_type == "dict":
            if not isinstance(value, dict):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected dict, got {type(value).__name__}"
                ))
                return errors

            if "properties" in schema:
                errors.extend(self._validate_dict(value, schema["properties"], path))

        elif expected_type in type_map:
            expected = type_map[expected_type]
            # bool is an int subclass; never accept it for numeric fields
            if not isinstance(value, expected) or (
                expected_type in ("int", "float") and isinstance(value, bool)
            ):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected {expected_type}, got {type(value).__name__}"
                ))
                return errors

            if expected_type in ("int", "float"):
                if "min" in schema and value < schema["min"]:
                    errors.append(ConfigValidationError(
                        path=path,
                        message=f"Value {value} is below minimum {schema['min']}"
                    ))
                if "max" in schema and value > schema["max"]:
                    errors.append(ConfigValidationError(
                        path=path,
                        message=f"Value {value} is above maximum {schema['max']}"
                    ))

            if "options" in schema and value not in schema["options"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value '{value}' not in allowed options: {schema['options']}"
                ))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "coingecko.api_key")
            default: Default value if not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value


# Global config service instance
config_service = ConfigService()
