"""Startup configuration.

Settings are resolved once, from a YAML file plus environment overrides,
into a frozen Settings value. Whether the remote backend is used is decided
here and nowhere else.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml


DEFAULT_CONFIG_PATHS = (
    "/etc/sysarp/config.yaml",
    str(Path(__file__).parent.parent / "config" / "default.yaml"),
)

ENV_REMOTE_URL = "SYSARP_REMOTE_URL"
ENV_REMOTE_KEY = "SYSARP_REMOTE_KEY"

MIN_KEY_LENGTH = 20


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from the first YAML file that exists."""
    for p in (config_path, *DEFAULT_CONFIG_PATHS):
        if p and Path(p).exists():
            with open(p) as f:
                return yaml.safe_load(f) or {}
    return {}


def sanitize(value: Optional[str]) -> str:
    """Strip stray quotes and whitespace from env/config values."""
    if not value:
        return ""
    return str(value).replace('"', "").replace("'", "").strip()


@dataclass(frozen=True)
class Settings:
    """Resolved startup settings."""

    remote_url: str = ""
    remote_key: str = ""
    timeout_s: float = 10.0
    db_path: str = "/var/sysarp/sysarp.db"
    upload_dir: str = "/var/sysarp/uploads"
    storage_bucket: str = "mission-files"
    admin_password: str = "admin123"
    admin_emails: tuple[str, ...] = field(
        default=("admin", "admin@admin.com", "admin@sysarp.mil.br")
    )
    poll_interval_s: float = 30.0

    @property
    def remote_enabled(self) -> bool:
        """True when a well-formed endpoint and credential are configured."""
        return self.remote_url.startswith("http") and len(self.remote_key) > MIN_KEY_LENGTH


def resolve_settings(config: Optional[dict] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from a loaded config dict and the environment.

    Environment variables win over the config file for the remote endpoint
    and key.
    """
    config = config or {}
    env = os.environ if env is None else env

    remote_cfg = config.get("remote", {}) or {}
    data_cfg = config.get("data", {}) or {}
    auth_cfg = config.get("auth", {}) or {}
    dash_cfg = config.get("dashboard", {}) or {}

    url = sanitize(env.get(ENV_REMOTE_URL)) or sanitize(remote_cfg.get("url"))
    key = sanitize(env.get(ENV_REMOTE_KEY)) or sanitize(remote_cfg.get("key"))

    defaults = Settings()
    admin_emails = auth_cfg.get("admin_emails")
    return Settings(
        remote_url=url,
        remote_key=key,
        timeout_s=float(remote_cfg.get("timeout_s", defaults.timeout_s)),
        db_path=data_cfg.get("db_path", defaults.db_path),
        upload_dir=data_cfg.get("upload_dir", defaults.upload_dir),
        storage_bucket=remote_cfg.get("storage_bucket", defaults.storage_bucket),
        admin_password=str(auth_cfg.get("admin_password", defaults.admin_password)),
        admin_emails=tuple(e.lower() for e in admin_emails) if admin_emails else defaults.admin_emails,
        poll_interval_s=float(dash_cfg.get("poll_interval_s", defaults.poll_interval_s)),
    )
