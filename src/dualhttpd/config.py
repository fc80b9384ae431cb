"""Server configuration.

Configuration comes from an optional YAML file; command-line flags
override individual values. Example file:

    host: 127.0.0.1
    http_port: 8080
    https_port: 8443
    tls:
      cert: cert.pem
      key: key.pem
    static_dir: static
    shutdown_grace: 5

Resolution order for the file:
1. --config on the command line
2. $DUALHTTPD_CONFIG environment variable
3. No file: built-in defaults
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8080
DEFAULT_HTTPS_PORT = 8443
DEFAULT_SHUTDOWN_GRACE = 5.0

CONFIG_ENV_VAR = "DUALHTTPD_CONFIG"


class ConfigError(Exception):
    """Configuration error."""


@dataclass(frozen=True)
class ServerConfig:
    """Listener addresses, TLS file locations and shutdown policy."""

    host: str = DEFAULT_HOST
    http_port: int = DEFAULT_HTTP_PORT
    https_port: int = DEFAULT_HTTPS_PORT
    cert_path: Path = field(default_factory=lambda: Path("cert.pem"))
    key_path: Path = field(default_factory=lambda: Path("key.pem"))
    static_dir: Path = field(default_factory=lambda: Path("static"))
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE

    def __post_init__(self):
        for name in ("cert_path", "key_path", "static_dir"):
            value = getattr(self, name)
            if isinstance(value, str):
                object.__setattr__(self, name, Path(value))
            elif not isinstance(value, Path):
                raise ConfigError(f"{name} must be a path, got {value!r}")
        for name in ("http_port", "https_port"):
            port = getattr(self, name)
            if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
                raise ConfigError(f"{name} must be an integer between 0 and 65535, got {port!r}")
        if not isinstance(self.host, str) or not self.host:
            raise ConfigError(f"host must be a non-empty string, got {self.host!r}")
        grace = self.shutdown_grace
        if isinstance(grace, bool) or not isinstance(grace, (int, float)) or grace < 0:
            raise ConfigError(f"shutdown_grace must be a non-negative number, got {grace!r}")

    def with_overrides(self, **overrides) -> "ServerConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_yaml(cls, path: Path) -> "ServerConfig":
        """Load configuration from a YAML file.

        Relative certificate, key and static paths stay relative to the
        process working directory.

        Raises:
            ConfigError: If the file is unreadable, not valid YAML, or has
                wrongly typed values
        """
        data = _parse_yaml(Path(path))
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")

        tls = data.get("tls", {}) or {}
        if not isinstance(tls, dict):
            raise ConfigError(f"{path}: 'tls' must be a mapping")

        values = {
            "host": data.get("host"),
            "http_port": data.get("http_port"),
            "https_port": data.get("https_port"),
            "cert_path": tls.get("cert"),
            "key_path": tls.get("key"),
            "static_dir": data.get("static_dir"),
            "shutdown_grace": data.get("shutdown_grace"),
        }
        try:
            return cls().with_overrides(**values)
        except ConfigError as e:
            raise ConfigError(f"{path}: {e}") from e


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_config(path: Optional[Path] = None) -> ServerConfig:
    """Load configuration from path, $DUALHTTPD_CONFIG, or defaults.

    Raises:
        ConfigError: If the selected file cannot be loaded
    """
    if path is None:
        if env_path := os.environ.get(CONFIG_ENV_VAR):
            path = Path(env_path)
    if path is None:
        return ServerConfig()
    return ServerConfig.from_yaml(path)
