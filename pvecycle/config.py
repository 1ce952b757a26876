"""
Configuration management for pvecycle.

This module uses Pydantic's BaseSettings to manage configuration through
environment variables (prefix ``PVECYCLE_``) or a ``.env`` file. The CLI
builds one frozen ``Settings`` value per run and hands it to every
component; nothing reads configuration from module globals.
"""
import sys
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pvecycle.utils.timeparse import parse_duration

CEPH_HEALING_FLAGS = ("noout", "norebalance", "norecover")

_DURATION_FIELDS = (
    "API_TIMEOUT",
    "PROBE_INTERVAL",
    "NETWORK_TIMEOUT",
    "API_CHECK_TIMEOUT",
    "API_POLL_INTERVAL",
    "GUEST_SETTLE_DELAY",
    "GUEST_DRAIN_TIMEOUT",
    "GUEST_DRAIN_INTERVAL",
    "NODE_SHUTDOWN_DELAY",
    "NODE_OFFLINE_TIMEOUT",
    "LOCK_POLL_INTERVAL",
    "LOCK_SETTLE_DELAY",
    "BATTERY_POLL_INTERVAL",
    "WOL_DELAY",
    "BOOT_DELAY",
    "NODE_BOOT_TIMEOUT",
    "HEALTH_INTERVAL",
    "AUTOSTART_DELAY",
)


class Settings(BaseSettings):
    """
    Cluster power-cycle settings.

    Durations accept plain seconds or strings such as ``30s``, ``5m``, ``1h``.
    """

    # Proxmox API
    API_HOST: str
    API_PORT: int = 8006
    API_TOKEN_ID: str  # e.g. "user@pve!nut"
    API_TOKEN_SECRET: str
    VERIFY_TLS: bool = False
    API_TIMEOUT: float = 10.0

    # Cluster nodes
    EXCLUDED_NODES: List[str] = []
    LAST_NODE: Optional[str] = None  # node serving the API, powered off last
    NODE_ADDRESSES: Dict[str, str] = {}  # node -> ping address, defaults to node name
    WOL_NODES: Dict[str, str] = {}  # node -> MAC
    WOL_BROADCAST: str = "255.255.255.255"

    # UPS via NUT
    UPS_NAME: str = "ups"
    NUT_HOST: str = "localhost"
    NUT_PORT: int = 3493
    NUT_USERNAME: Optional[str] = None
    NUT_PASSWORD: Optional[str] = None
    MIN_BATTERY: float = 50.0

    # Network probes (gateway, core switch, ...)
    PING_TARGETS: List[str] = []

    # Files
    LOG_DIR: Path = Path("/var/log")
    LOCK_FILE: Path = Path("/var/run/proxmox-cluster-shutdown.pid")
    SNAPSHOT_FILE: Path = Path("/var/run/proxmox-cluster-running.json")

    # Notifications
    WALL_ENABLED: bool = True
    MAIL_ENABLED: bool = False
    MAIL_TO: Optional[str] = None
    MAIL_FROM: str = "Proxmox Cluster <monitor@localhost>"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25

    # Timing
    PROBE_INTERVAL: float = 5
    NETWORK_TIMEOUT: float = 30
    API_CHECK_TIMEOUT: float = 15
    API_POLL_INTERVAL: float = 5
    GUEST_SETTLE_DELAY: float = 1
    GUEST_DRAIN_TIMEOUT: float = 300
    GUEST_DRAIN_INTERVAL: float = 5
    NODE_SHUTDOWN_DELAY: float = 2
    NODE_OFFLINE_TIMEOUT: float = 360
    LOCK_POLL_INTERVAL: float = 5
    LOCK_SETTLE_DELAY: float = 60
    BATTERY_POLL_INTERVAL: float = 60
    WOL_DELAY: float = 2
    BOOT_DELAY: float = 60
    WAIT_FOR_NODE_BOOT: bool = False
    NODE_BOOT_TIMEOUT: float = 300
    HEALTH_ATTEMPTS: int = 20
    HEALTH_INTERVAL: float = 20
    AUTOSTART_DELAY: float = 2

    # Leave the lock behind after a failed shutdown so startup waits for an operator
    RELEASE_LOCK_ON_ABORT: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_prefix="PVECYCLE_",
        frozen=True,
        extra="ignore",
    )

    @field_validator(*_DURATION_FIELDS, mode="before")
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)

    @field_validator("MIN_BATTERY")
    @classmethod
    def _check_percentage(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError("MIN_BATTERY must be a percentage between 0 and 100")
        return value

    @field_validator("HEALTH_ATTEMPTS")
    @classmethod
    def _check_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("HEALTH_ATTEMPTS must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_mail(self) -> "Settings":
        if self.MAIL_ENABLED and not self.MAIL_TO:
            raise ValueError("MAIL_TO is required when MAIL_ENABLED is set")
        return self

    @property
    def base_url(self) -> str:
        return f"https://{self.API_HOST}:{self.API_PORT}/api2/json"

    @property
    def auth_header(self) -> str:
        return f"PVEAPIToken={self.API_TOKEN_ID}={self.API_TOKEN_SECRET}"

    def node_address(self, node: str) -> str:
        """Address used to ping a node; the node name unless overridden."""
        return self.NODE_ADDRESSES.get(node, node)

    def is_excluded(self, node: str) -> bool:
        return node in self.EXCLUDED_NODES


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """
    Build the settings for one run.

    Missing required variables are reported in plain words and exit the
    process, everything else is re-raised.
    """
    try:
        if env_file is not None:
            return Settings(_env_file=env_file, **overrides)
        return Settings(**overrides)
    except ValidationError as e:
        missing = [
            ".".join(str(p) for p in err["loc"])
            for err in e.errors()
            if err["type"] == "missing"
        ]
        if not missing:
            raise
        print("Environment Configuration Error", file=sys.stderr)
        for name in missing:
            print(f"Missing required environment variable: PVECYCLE_{name}", file=sys.stderr)
        print("Set them in the environment or in a .env file, for example:", file=sys.stderr)
        print('  export PVECYCLE_API_TOKEN_SECRET="xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"', file=sys.stderr)
        sys.exit(1)
