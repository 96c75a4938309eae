from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_CF_API_BASE_URL = "https://api.cloudflare.com/client/v4"


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env(name: str, default: str = ""):
    return field(default_factory=lambda: _env_str(name, default))


@dataclass(frozen=True)
class Settings:
    # Cloudflare credentials
    cf_api_email: str = _env("CF_API_EMAIL")
    cf_api_key: str = _env("CF_API_KEY")
    cf_org_id: str = _env("CF_ORG_ID")
    cf_api_base_url: str = _env("CF_API_BASE_URL", DEFAULT_CF_API_BASE_URL)
    cf_api_timeout_s: int = field(default_factory=lambda: _env_int("CF_API_TIMEOUT_S", 30))

    # What to manage
    lb_name: str = _env("CF_LB_NAME")
    pool_name: str = _env("CF_LB_POOL_NAME")
    zone: str = _env("CF_LB_ZONE")
    monitor_path: str = _env("CF_LB_MONITOR_PATH")

    # Reconciliation
    mode: str = _env("LBSYNC_MODE", "pool")
    interval_s: int = field(default_factory=lambda: _env_int("LBSYNC_INTERVAL_S", 900))
    watch_nodes: bool = field(default_factory=lambda: _env_bool("LBSYNC_WATCH_NODES", False))
    watch_debounce_s: int = field(default_factory=lambda: _env_int("LBSYNC_WATCH_DEBOUNCE_S", 30))

    # Node eligibility
    node_label_selector: str = _env("LBSYNC_NODE_LABEL_SELECTOR")
    node_address_type: str = _env("LBSYNC_NODE_ADDRESS_TYPE", "ExternalIP")
    kube_timeout_s: int = field(default_factory=lambda: _env_int("LBSYNC_KUBE_TIMEOUT_S", 30))

    # Process
    listen_host: str = _env("LBSYNC_LISTEN_HOST", "0.0.0.0")
    listen_port: int = field(default_factory=lambda: _env_int("LBSYNC_LISTEN_PORT", 9101))
    log_level: str = _env("LBSYNC_LOG_LEVEL", "INFO")
    shutdown_timeout_s: int = field(default_factory=lambda: _env_int("LBSYNC_SHUTDOWN_TIMEOUT_S", 60))

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset or empty."""
        required = {
            "CF_API_EMAIL": self.cf_api_email,
            "CF_API_KEY": self.cf_api_key,
            "CF_LB_NAME": self.lb_name,
            "CF_LB_POOL_NAME": self.pool_name,
            "CF_LB_ZONE": self.zone,
            "CF_LB_MONITOR_PATH": self.monitor_path,
        }
        return [name for name, value in required.items() if not value]
