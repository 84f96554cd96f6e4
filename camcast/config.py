"""
Configuration management for camcast.

Settings are built once at startup and passed to each component. Defaults
can be overridden via environment variables, and CLI flags override those:
  CAMCAST_DEVICE        - Video device path (default: /dev/video0)
  CAMCAST_HOST          - Server bind address (default: 0.0.0.0)
  CAMCAST_PORT          - Server port (default: 4443)
  CAMCAST_WIDTH         - Requested frame width (default: 1024)
  CAMCAST_HEIGHT        - Requested frame height (default: 768)
  CAMCAST_QUALITY       - JPEG quality 1-95 (default: 75)
  CAMCAST_TIMEOUT       - Seconds to wait for a camera frame (default: 5)
  CAMCAST_FANOUT        - Max viewers served per frame (default: 50)
  CAMCAST_TIMESTAMP     - Draw capture time on frames (default: 1)
  CAMCAST_TLS           - TLS mode: off or dev (default: dev)
  CAMCAST_CERTS         - Folder with certificate.pem/key.pem (default: certs/)
  CAMCAST_DOMAIN        - Domain name of the service (default: empty)
  CAMCAST_ACCOUNTS      - Accounts file of permitted e-mails (default: accounts)
  CAMCAST_INSECURE      - Disable viewer authentication (default: 0)
  OAUTH_CLIENT_ID       - Google OAuth client id
"""

import os
from dataclasses import dataclass, replace

# V4L2 fourcc for YUYV 4:2:2
PIXEL_FORMAT_YUYV = 0x56595559

TLS_MODES = ("off", "dev")


def _env_str(name: str, default: str) -> str:
    """Get a string from environment variable with fallback."""
    return os.environ.get(name, default)


def _env_int(name: str, default: int) -> int:
    """Get an integer from environment variable with fallback."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        print(f"[config] Warning: {name}={val} is not a valid integer, using default={default}")
        return default


def _env_float(name: str, default: float) -> float:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        print(f"[config] Warning: {name}={val} invalid, using default={default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    normalized = val.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    print(f"[config] Warning: {name}={val} is not a boolean, using default={default}")
    return default


class ConfigError(Exception):
    """Raised when settings are inconsistent."""
    pass


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, constructed once and never mutated."""

    device: str = "/dev/video0"
    host: str = "0.0.0.0"
    port: int = 4443
    width: int = 1024
    height: int = 768
    jpeg_quality: int = 75
    frame_timeout: float = 5.0
    max_fanout: int = 50
    timestamp: bool = True
    tls: str = "dev"
    certs_dir: str = "certs/"
    domain: str = ""
    accounts: str = "accounts"
    insecure: bool = False
    oauth_client_id: str = ""
    dummy: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            device=_env_str("CAMCAST_DEVICE", cls.device),
            host=_env_str("CAMCAST_HOST", cls.host),
            port=_env_int("CAMCAST_PORT", cls.port),
            width=_env_int("CAMCAST_WIDTH", cls.width),
            height=_env_int("CAMCAST_HEIGHT", cls.height),
            jpeg_quality=_env_int("CAMCAST_QUALITY", cls.jpeg_quality),
            frame_timeout=_env_float("CAMCAST_TIMEOUT", cls.frame_timeout),
            max_fanout=_env_int("CAMCAST_FANOUT", cls.max_fanout),
            timestamp=_env_bool("CAMCAST_TIMESTAMP", cls.timestamp),
            tls=_env_str("CAMCAST_TLS", cls.tls),
            certs_dir=_env_str("CAMCAST_CERTS", cls.certs_dir),
            domain=_env_str("CAMCAST_DOMAIN", cls.domain),
            accounts=_env_str("CAMCAST_ACCOUNTS", cls.accounts),
            insecure=_env_bool("CAMCAST_INSECURE", cls.insecure),
            oauth_client_id=_env_str("OAUTH_CLIENT_ID", cls.oauth_client_id),
        )

    def replace(self, **changes) -> "Settings":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)

    def validate(self) -> "Settings":
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"Invalid resolution {self.width}x{self.height}")
        if self.width % 2:
            raise ConfigError("Width must be even for YUYV frames")
        if not 1 <= self.jpeg_quality <= 95:
            raise ConfigError(f"JPEG quality must be within 1-95, got {self.jpeg_quality}")
        if self.frame_timeout <= 0:
            raise ConfigError("Frame timeout must be positive")
        if self.max_fanout < 1:
            raise ConfigError("Fan-out must be at least 1")
        if self.tls not in TLS_MODES:
            raise ConfigError(f"TLS mode must be one of {', '.join(TLS_MODES)}")
        if not self.insecure:
            if not self.accounts:
                raise ConfigError("Accounts file should be specified via --accounts argument")
            if not self.oauth_client_id:
                raise ConfigError(
                    "OAuth client ID should be specified via OAUTH_CLIENT_ID environment variable"
                )
        return self

    @property
    def cert_file(self) -> str:
        return os.path.join(self.certs_dir, "certificate.pem")

    @property
    def key_file(self) -> str:
        return os.path.join(self.certs_dir, "key.pem")


def print_config(settings: Settings):
    """Print current configuration to stdout."""
    print("[config] Current settings:")
    print(f"  DEVICE     = {settings.device}{' (dummy)' if settings.dummy else ''}")
    print(f"  HOST       = {settings.host}")
    print(f"  PORT       = {settings.port}")
    print(f"  SIZE       = {settings.width}x{settings.height}")
    print(f"  QUALITY    = {settings.jpeg_quality}")
    print(f"  TIMEOUT    = {settings.frame_timeout}s")
    print(f"  FANOUT     = {settings.max_fanout}")
    print(f"  TIMESTAMP  = {settings.timestamp}")
    print(f"  TLS        = {settings.tls}")
    print(f"  DOMAIN     = {settings.domain or '-'}")
    print(f"  ACCOUNTS   = {settings.accounts}")
    print(f"  AUTH       = {'disabled' if settings.insecure else 'google'}")
