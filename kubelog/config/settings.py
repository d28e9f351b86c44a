from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from kubelog.authz.rules import AllowMatchMode


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, "") or "").strip() or default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_float(name: str, default: float, *, lo: float, hi: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(lo, min(hi, float(raw)))
    except ValueError:
        return default


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    return int(_env_float(name, float(default), lo=float(lo), hi=float(hi)))


@dataclass(frozen=True)
class Settings:
    # App-config (cluster rules)
    config_path: str
    config_watch: bool
    config_watch_interval_seconds: float

    # Collaborators
    http_timeout_seconds: float
    access_key_ttl_seconds: int
    entity_label: str
    catalog_url: Optional[str]
    catalog_token: Optional[str]

    # Request identity (set by the identity-aware frontend/proxy)
    user_header: str

    allow_match_mode: AllowMatchMode = AllowMatchMode.LAST


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """
    Load runtime settings from env (ConfigMap/Secret friendly).

    Recommended vars:
    - KUBELOG_CONFIG_PATH=/etc/kubelog/app-config.yaml
    - KUBELOG_CONFIG_WATCH=1
    - KUBELOG_HTTP_TIMEOUT_SECONDS=10
    - KUBELOG_ACCESS_KEY_TTL_SECONDS=3600
    - KUBELOG_CATALOG_URL=http://backstage:7007/api/catalog
    - KUBELOG_ALLOW_MATCH_MODE=last|any
    """
    try:
        allow_mode = AllowMatchMode.parse(os.getenv("KUBELOG_ALLOW_MATCH_MODE"))
    except ValueError:
        allow_mode = AllowMatchMode.LAST

    return Settings(
        config_path=_env_str("KUBELOG_CONFIG_PATH", "app-config.yaml"),
        config_watch=_env_bool("KUBELOG_CONFIG_WATCH", True),
        config_watch_interval_seconds=_env_float("KUBELOG_CONFIG_WATCH_INTERVAL_SECONDS", 5.0, lo=1.0, hi=300.0),
        http_timeout_seconds=_env_float("KUBELOG_HTTP_TIMEOUT_SECONDS", 10.0, lo=1.0, hi=60.0),
        access_key_ttl_seconds=_env_int("KUBELOG_ACCESS_KEY_TTL_SECONDS", 3600, lo=60, hi=86400),
        entity_label=_env_str("KUBELOG_ENTITY_LABEL", "backstage.io/kubernetes-id"),
        catalog_url=(_env_str("KUBELOG_CATALOG_URL") or None),
        catalog_token=(_env_str("KUBELOG_CATALOG_TOKEN") or None),
        user_header=_env_str("KUBELOG_USER_HEADER", "X-Backstage-User"),
        allow_match_mode=allow_mode,
    )
