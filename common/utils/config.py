"""
Configuration management for the VPN system.
Handles reading, writing, and validating configuration from JSON files.
"""
import os
import json
import copy
import shutil
import logging
import ipaddress
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple

from common.errors import ConfigError

PSK_ENV_VAR = "PSKVPN_PSK"
VALID_MODES = ("client", "server")
VALID_KEY_SIZES = (16, 24, 32)

DEFAULT_CONFIG: Dict[str, Any] = {
    "mode": "client",
    "server": {
        "address": "127.0.0.1",
        "port": 51820
    },
    "security": {
        "psk": ""
    },
    "interface": {
        "name": "vpn0",
        "address": "10.8.0.2/24",
        "mtu": 1400
    },
    "tunnel": {
        "connect_timeout": 10,
        "max_connect_tries": 10,
        "retry_delay": 5,
        "read_timeout": 1,
        "peer_timeout": 300,
        "eviction_interval": 60,
        "metrics_interval": 30,
        "reconnect_threshold": None,
        "log_traffic": False
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "console": True
    },
    "status": {
        "enabled": False,
        "host": "127.0.0.1",
        "port": 8080
    }
}


class ConfigManager:
    """
    Configuration manager for VPN settings
    """
    DEFAULT_CONFIG_PATH = "config.json"

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager

        Args:
            config_path: Path to the configuration file (None for default)
        """
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.config: Dict[str, Any] = {}
        self.created = False
        self.logger = logging.getLogger("pskvpn.config")

        # Load existing config or create default
        self.load()

    def load(self) -> None:
        """
        Load configuration from file, writing a default one if it is missing

        Raises:
            ConfigError: If the file exists but cannot be read or parsed
        """
        if not os.path.exists(self.config_path):
            self.logger.warning(f"Configuration file {self.config_path} not found, creating default")
            self.config = self._create_default_config()
            self.created = True
            self.save()
            return

        try:
            with open(self.config_path, 'r') as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to load configuration {self.config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration {self.config_path} must be a JSON object")

        # Missing sections fall back to defaults
        self.config = self._create_default_config()
        self._recursive_update(self.config, loaded)
        self.logger.info(f"Configuration loaded from {self.config_path}")

    def save(self) -> bool:
        """
        Save configuration to file

        Returns:
            True if successful, False otherwise
        """
        try:
            # Create backup if file exists
            if os.path.exists(self.config_path):
                backup_path = f"{self.config_path}.bak"
                shutil.copy2(self.config_path, backup_path)
                self.logger.debug(f"Created backup of configuration at {backup_path}")

            config_dir = os.path.dirname(self.config_path)
            if config_dir and not os.path.exists(config_dir):
                os.makedirs(config_dir)

            with open(self.config_path, 'w') as f:
                json.dump(self.config, f, indent=4)

            self.logger.info(f"Configuration saved to {self.config_path}")
            return True

        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")
            return False

    def _create_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_CONFIG)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value

        Args:
            key: Configuration key (dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value

        Args:
            key: Configuration key (dot notation for nested keys)
            value: Value to set
        """
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def _recursive_update(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._recursive_update(target[key], value)
            else:
                target[key] = value

    def psk(self) -> str:
        """The pre-shared key, taken from the environment when set there"""
        return os.environ.get(PSK_ENV_VAR) or self.get("security.psk") or ""

    def validate(self) -> List[str]:
        """
        Validate the configuration

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        mode = self.get("mode")
        if mode not in VALID_MODES:
            errors.append(f"mode must be 'client' or 'server', got {mode!r}")

        address = self.get("server.address")
        if not isinstance(address, str) or not address.strip():
            errors.append("server.address cannot be empty")

        port = self.get("server.port")
        if not _is_int(port) or not 1 <= port <= 65535:
            errors.append("server.port must be between 1 and 65535")

        psk = self.psk()
        if not psk.strip():
            errors.append(f"security.psk cannot be empty (or set {PSK_ENV_VAR})")
        elif len(psk.encode("utf-8")) not in VALID_KEY_SIZES:
            errors.append("security.psk must be exactly 16, 24 or 32 bytes long")

        name = self.get("interface.name")
        if not isinstance(name, str) or not name.strip():
            errors.append("interface.name cannot be empty")

        cidr = self.get("interface.address")
        if not isinstance(cidr, str) or "/" not in cidr:
            errors.append("interface.address must be in CIDR format (e.g., 10.8.0.2/24)")
        else:
            try:
                ipaddress.ip_interface(cidr)
            except ValueError as e:
                errors.append(f"interface.address is invalid: {e}")

        mtu = self.get("interface.mtu")
        if not _is_int(mtu) or not 576 <= mtu <= 65535:
            errors.append("interface.mtu must be between 576 and 65535")

        for key in ("connect_timeout", "retry_delay", "read_timeout",
                    "peer_timeout", "eviction_interval", "metrics_interval"):
            value = self.get(f"tunnel.{key}")
            if not _is_number(value) or value <= 0:
                errors.append(f"tunnel.{key} must be a positive number")

        tries = self.get("tunnel.max_connect_tries")
        if not _is_int(tries) or tries < 1:
            errors.append("tunnel.max_connect_tries must be a positive integer")

        threshold = self.get("tunnel.reconnect_threshold")
        if threshold is not None and (not _is_int(threshold) or threshold < 1):
            errors.append("tunnel.reconnect_threshold must be null or a positive integer")

        if self.get("status.enabled"):
            status_port = self.get("status.port")
            if not _is_int(status_port) or not 1 <= status_port <= 65535:
                errors.append("status.port must be between 1 and 65535")

        return errors


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class TunnelSettings:
    """
    Validated, immutable settings the tunnel core is built from
    """
    mode: str
    server_address: str
    server_port: int
    psk: str = field(repr=False)
    adapter_name: str
    adapter_address: str
    mtu: int = 1400
    connect_timeout: float = 10.0
    max_connect_tries: int = 10
    retry_delay: float = 5.0
    read_timeout: float = 1.0
    peer_timeout: float = 300.0
    eviction_interval: float = 60.0
    metrics_interval: float = 30.0
    reconnect_threshold: Optional[int] = None
    log_traffic: bool = False

    @property
    def key(self) -> bytes:
        return self.psk.encode("utf-8")

    @property
    def endpoint(self) -> Tuple[str, int]:
        return (self.server_address, self.server_port)

    @classmethod
    def from_config(cls, config_manager: ConfigManager,
                    mode: Optional[str] = None) -> "TunnelSettings":
        """
        Build settings from a configuration manager

        Args:
            config_manager: Loaded configuration
            mode: Overrides the configured mode when given

        Raises:
            ConfigError: Listing every validation failure
        """
        if mode is not None:
            config_manager.set("mode", mode)

        errors = config_manager.validate()
        if errors:
            raise ConfigError(
                f"Invalid configuration in {config_manager.config_path}: " + "; ".join(errors)
            )

        get = config_manager.get
        return cls(
            mode=get("mode"),
            server_address=get("server.address").strip(),
            server_port=get("server.port"),
            psk=config_manager.psk(),
            adapter_name=get("interface.name").strip(),
            adapter_address=get("interface.address"),
            mtu=get("interface.mtu"),
            connect_timeout=float(get("tunnel.connect_timeout")),
            max_connect_tries=get("tunnel.max_connect_tries"),
            retry_delay=float(get("tunnel.retry_delay")),
            read_timeout=float(get("tunnel.read_timeout")),
            peer_timeout=float(get("tunnel.peer_timeout")),
            eviction_interval=float(get("tunnel.eviction_interval")),
            metrics_interval=float(get("tunnel.metrics_interval")),
            reconnect_threshold=get("tunnel.reconnect_threshold"),
            log_traffic=bool(get("tunnel.log_traffic", False)),
        )
