"""Configuration management for rtc-rendezvous.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (RTC_RENDEZVOUS_API_URL, RTC_RENDEZVOUS_NAME,
   RTC_RENDEZVOUS_POLLING_INTERVAL)
3. TOML configuration file
4. Default values

Configuration files are loaded from:
- rtc-rendezvous.toml in current working directory
- ~/.rtc-rendezvous/config.toml

Example file:

    [client]
    api_url = "https://script.google.com/macros/s/XXXX/exec"
    name = "alice"
    polling_interval = 2000

    [[ice_servers]]
    urls = "stun:stun.l.google.com:19302"
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

# Default polling interval between gateway requests (milliseconds).
DEFAULT_POLLING_INTERVAL = 2000

# Ceiling on the local candidate gathering wait (milliseconds).
DEFAULT_GATHER_TIMEOUT = 1000

DEFAULT_ICE_SERVERS = [{"urls": "stun:stun.l.google.com:19302"}]


@dataclass
class ClientOptions:
    """Options for a single rendezvous client.

    Attributes:
        api_url: URL of the rendezvous gateway endpoint.
        name: Display name announced to the gateway.
        id: Existing session id to resume, or None to have one assigned.
        global_ip: Global IP reported on registration.
        friend_list: Peer ids the gateway should prefer when matching.
        passphrase: Shared phrase used by the gateway for matching.
        polling_interval: Delay between polling requests in milliseconds.
        ice_servers: STUN/TURN servers passed to the peer connection.
        gather_timeout: Ceiling on the candidate gathering wait in milliseconds.
    """

    api_url: str
    name: str
    id: Optional[str] = None
    global_ip: str = ""
    friend_list: List[str] = field(default_factory=list)
    passphrase: str = ""
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    ice_servers: List[dict] = field(
        default_factory=lambda: [dict(s) for s in DEFAULT_ICE_SERVERS]
    )
    gather_timeout: int = DEFAULT_GATHER_TIMEOUT

    def __post_init__(self):
        """Validate client options after initialization."""
        if not self.api_url:
            raise ValueError("api_url is required")
        if not self.name:
            raise ValueError("name is required")
        if self.polling_interval <= 0:
            raise ValueError("polling_interval must be positive")
        if self.gather_timeout < 0:
            raise ValueError("gather_timeout cannot be negative")

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval / 1000.0

    @property
    def gather_timeout_seconds(self) -> float:
        return self.gather_timeout / 1000.0


class Config:
    """Configuration manager for rtc-rendezvous."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.api_url: Optional[str] = None
        self.name: Optional[str] = None
        self.polling_interval: int = DEFAULT_POLLING_INTERVAL
        self.gather_timeout: int = DEFAULT_GATHER_TIMEOUT
        self.passphrase: str = ""
        self.friend_list: List[str] = []
        self.ice_servers: List[dict] = [dict(s) for s in DEFAULT_ICE_SERVERS]
        self.config_file: Optional[Path] = None
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables
        2. TOML configuration file
        3. Default values
        """
        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. rtc-rendezvous.toml in current working directory
        2. ~/.rtc-rendezvous/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "rtc-rendezvous.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = Path.home() / ".rtc-rendezvous" / "config.toml"
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        self.config_file = config_file
        client = self._config_data.get("client", {})

        if "api_url" in client:
            self.api_url = client["api_url"]
            logger.debug(f"Loaded api_url from config: {self.api_url}")
        if "name" in client:
            self.name = client["name"]
        if "passphrase" in client:
            self.passphrase = client["passphrase"]
        if "friend_list" in client:
            self.friend_list = list(client["friend_list"])
        if "polling_interval" in client:
            self.polling_interval = self._as_millis(
                client["polling_interval"], self.polling_interval, "polling_interval"
            )
        if "gather_timeout" in client:
            self.gather_timeout = self._as_millis(
                client["gather_timeout"], self.gather_timeout, "gather_timeout"
            )

        ice_servers = []
        for entry in self._config_data.get("ice_servers", []):
            if "urls" not in entry:
                logger.warning(f"Skipping ICE server entry without urls: {entry}")
                continue
            ice_servers.append(dict(entry))
        if ice_servers:
            self.ice_servers = ice_servers

    @staticmethod
    def _as_millis(value, fallback: int, key: str) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid {key} value '{value}', keeping {fallback}")
            return fallback

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        api_url = os.getenv("RTC_RENDEZVOUS_API_URL")
        if api_url:
            self.api_url = api_url
            logger.info(f"Overriding api_url from env: {self.api_url}")

        name = os.getenv("RTC_RENDEZVOUS_NAME")
        if name:
            self.name = name

        interval = os.getenv("RTC_RENDEZVOUS_POLLING_INTERVAL")
        if interval:
            self.polling_interval = self._as_millis(
                interval, self.polling_interval, "RTC_RENDEZVOUS_POLLING_INTERVAL"
            )

    def client_options(self, **overrides) -> ClientOptions:
        """Build ClientOptions from the loaded configuration.

        Args:
            **overrides: Values that take precedence (usually CLI arguments).
                Keys whose value is None are ignored.

        Returns:
            Validated ClientOptions.

        Raises:
            ValueError: If api_url or name is missing after all sources.
        """
        values = {
            "api_url": self.api_url or "",
            "name": self.name or "",
            "passphrase": self.passphrase,
            "friend_list": list(self.friend_list),
            "polling_interval": self.polling_interval,
            "gather_timeout": self.gather_timeout,
            "ice_servers": [dict(s) for s in self.ice_servers],
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ClientOptions(**values)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources.

    Useful for testing or runtime reconfiguration.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load()
    return _config
