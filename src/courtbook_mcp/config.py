"""Configuration management for CourtBook MCP server."""

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

CONTIGUITY_POLICIES = ("partition", "strict")
OVERLAP_MODES = ("exact", "overlap")


class Config:
    """Configuration manager with environment variables and file fallback."""

    def __init__(self, config_path: str | None = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file (optional)
        """
        self.config_path = config_path or os.getenv(
            "COURTBOOK_CONFIG_PATH", "config/config.json"
        )
        self._config_data: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file if it exists."""
        config_file = Path(self.config_path)
        if config_file.exists():
            try:
                with open(config_file, encoding="utf-8") as f:
                    self._config_data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file {self.config_path}: {e}")
                self._config_data = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with priority: env vars > config file > default.

        Args:
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value
        """
        env_value = os.getenv(key.upper())
        if env_value is not None:
            return env_value

        if key in self._config_data:
            return self._config_data[key]

        return default

    def _choice(self, key: str, default: str, choices: tuple[str, ...]) -> str:
        value = str(self.get(key, default)).strip().lower()
        if value not in choices:
            raise ValueError(f"{key} must be one of {', '.join(choices)}, got: {value}")
        return value

    @property
    def base_url(self) -> str:
        """Get backend root URL."""
        return str(self.get("COURTBOOK_BASE_URL", "http://localhost:54321")).rstrip("/")

    @property
    def rest_url(self) -> str:
        """Get REST API root."""
        return f"{self.base_url}/rest/v1"

    @property
    def realtime_url(self) -> str:
        """Get change stream root."""
        url = self.get("COURTBOOK_REALTIME_URL")
        if url:
            return str(url).rstrip("/")
        return f"{self.base_url}/realtime/v1/sse"

    @property
    def api_key(self) -> str:
        """Get the backend API key."""
        return str(self.get("COURTBOOK_API_KEY", ""))

    @property
    def access_token(self) -> str | None:
        """Get the signed-in user's access token, if any."""
        token = self.get("COURTBOOK_ACCESS_TOKEN")
        return str(token) if token else None

    @property
    def request_timeout(self) -> int:
        """Get HTTP request timeout in seconds."""
        return int(self.get("COURTBOOK_REQUEST_TIMEOUT", "30"))

    @property
    def retry_attempts(self) -> int:
        """Get number of retry attempts for failed reads."""
        return int(self.get("COURTBOOK_RETRY_ATTEMPTS", "3"))

    @property
    def retry_delay(self) -> float:
        """Get delay between retry attempts in seconds."""
        return float(self.get("COURTBOOK_RETRY_DELAY", "1.0"))

    @property
    def refresh_interval(self) -> float:
        """Get availability reconciliation cadence in seconds."""
        return float(self.get("COURTBOOK_REFRESH_INTERVAL", "15"))

    @property
    def contiguity_policy(self) -> str:
        """Get slot selection policy: 'partition' or 'strict'."""
        return self._choice("COURTBOOK_CONTIGUITY_POLICY", "partition", CONTIGUITY_POLICIES)

    @property
    def overlap_mode(self) -> str:
        """Get conflict matching mode: 'exact' or 'overlap'."""
        return self._choice("COURTBOOK_OVERLAP_MODE", "exact", OVERLAP_MODES)

    @property
    def compensate_partial(self) -> bool:
        """Check if committed blocks are cancelled after a later block fails."""
        return str(self.get("COURTBOOK_COMPENSATE_PARTIAL", "false")).lower() == "true"

    @property
    def enable_debug_mode(self) -> bool:
        """Check if debug mode is enabled."""
        return str(self.get("COURTBOOK_DEBUG", "false")).lower() == "true"

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "base_url": self.base_url,
            "realtime_url": self.realtime_url,
            "has_api_key": bool(self.api_key),
            "request_timeout": self.request_timeout,
            "retry_attempts": self.retry_attempts,
            "retry_delay": self.retry_delay,
            "refresh_interval": self.refresh_interval,
            "contiguity_policy": self.contiguity_policy,
            "overlap_mode": self.overlap_mode,
            "compensate_partial": self.compensate_partial,
            "enable_debug_mode": self.enable_debug_mode,
        }


# Global configuration instance
config = Config()
