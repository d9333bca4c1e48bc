"""
Centralized configuration loading.

Settings come from environment variables (a `.env` file is loaded by
python-dotenv at startup). Gateway tunables use the ``PAYGATE_`` prefix;
provider credentials keep the names their vendors document and are read by
each adapter at call time.
"""

import os
import json
from typing import Any, Dict, List, Optional, TypeVar
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

from src.utils.logger import log

T = TypeVar("T")

load_dotenv()


class SettingsLoader:
    """
    Environment-backed settings reader with typed conversion.

    Priority order (highest to lowest):
    1. ``PAYGATE_``-prefixed environment variables
    2. Default values
    """

    def __init__(self, env_prefix: str = "PAYGATE_"):
        self.env_prefix = env_prefix

    def get_setting(self, key: str, default: T = None, setting_type: type = str) -> T:
        """
        Get a configuration setting.

        Args:
            key: Setting key, dotted or underscored (``webhook.timeout_seconds``)
            default: Default value if not found
            setting_type: Expected type of the setting

        Returns:
            Setting value with proper type conversion
        """
        env_key = f"{self.env_prefix}{key.upper().replace('.', '_')}"
        env_value = os.getenv(env_key)
        if env_value is not None:
            return self._convert_value(env_value, setting_type, default)
        return default

    def get_environment_config(self) -> Dict[str, Any]:
        """All prefixed environment variables as ``dotted.lower`` keys."""
        config = {}
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                config_key = key[len(self.env_prefix):].lower().replace("_", ".")
                config[config_key] = value
        return config

    def _convert_value(self, value: Any, target_type: type, default: Any = None) -> Any:
        """Convert value to target type with error handling."""
        if value is None:
            return default

        try:
            if target_type == bool:
                if isinstance(value, bool):
                    return value
                if isinstance(value, str):
                    return value.lower() in ("true", "1", "yes", "on", "enabled")
                return bool(value)

            elif target_type == int:
                return int(value)

            elif target_type == float:
                return float(value)

            elif target_type == str:
                return str(value)

            elif target_type == dict:
                if isinstance(value, dict):
                    return value
                return json.loads(value)

            elif target_type == list:
                if isinstance(value, list):
                    return value
                value = str(value).strip()
                if value.startswith("["):
                    return json.loads(value)
                return [item.strip() for item in value.split(",") if item.strip()]

            else:
                return target_type(value)

        except (ValueError, TypeError, json.JSONDecodeError) as e:
            log.warning(
                "configuration_type_conversion_failed",
                extra={
                    "event_type": "configuration_type_conversion_failed",
                    "value": str(value),
                    "target_type": target_type.__name__,
                    "error": str(e),
                },
            )
            return default


settings_loader = SettingsLoader()


@dataclass(frozen=True)
class GatewaySettings:
    """Resolved gateway settings"""

    environment: str = "development"
    app_version: str = "0.1.0"
    app_url: str = "http://localhost:8000"
    database_url: Optional[str] = None
    dispatcher_enabled: bool = True

    # Webhook dispatcher
    webhook_timeout_seconds: float = 10.0
    webhook_max_attempts: int = 3
    webhook_retry_base_seconds: float = 1.0
    webhook_failure_threshold: int = 10
    webhook_response_body_limit: int = 1000
    webhook_brand: str = "Paygate"

    # Platform API
    burst_limit_per_minute: int = 60
    key_prefix: str = "pg"

    # Routing overrides, applied over the router defaults
    routing: Dict[str, Any] = field(default_factory=dict)

    @property
    def store_backend(self) -> str:
        return "sql" if self.database_url else "memory"


def _routing_overrides(loader: SettingsLoader) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for slot in ("default", "crypto", "international", "in_person", "pos"):
        value = loader.get_setting(f"routing.{slot}", None, str)
        if value:
            overrides[slot] = value.strip().lower()
    chain: Optional[List[str]] = loader.get_setting("routing.fallback_chain", None, list)
    if chain:
        overrides["fallback_chain"] = [item.lower() for item in chain]
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> GatewaySettings:
    """Load settings once per process."""
    loader = settings_loader
    return GatewaySettings(
        environment=os.getenv("ENV", "development"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        app_url=os.getenv("APP_URL", "http://localhost:8000"),
        database_url=os.getenv("DATABASE_URL") or None,
        dispatcher_enabled=loader._convert_value(os.getenv("DISPATCHER_ENABLED", "true"), bool, True),
        webhook_timeout_seconds=loader.get_setting("webhook.timeout_seconds", 10.0, float),
        webhook_max_attempts=loader.get_setting("webhook.max_attempts", 3, int),
        webhook_retry_base_seconds=loader.get_setting("webhook.retry_base_seconds", 1.0, float),
        webhook_failure_threshold=loader.get_setting("webhook.failure_threshold", 10, int),
        webhook_response_body_limit=loader.get_setting("webhook.response_body_limit", 1000, int),
        webhook_brand=loader.get_setting("webhook.brand", "Paygate", str),
        burst_limit_per_minute=loader.get_setting("burst_limit_per_minute", 60, int),
        key_prefix=loader.get_setting("key_prefix", "pg", str),
        routing=_routing_overrides(loader),
    )
