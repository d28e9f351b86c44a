"""
Pytest config.

Pins the repo root on sys.path so `import kubelog` / `import main` work when invoking a global
`pytest` entrypoint without an editable install.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


_KUBELOG_ENV = (
    "KUBELOG_CONFIG_PATH",
    "KUBELOG_CONFIG_WATCH_INTERVAL_SECONDS",
    "KUBELOG_HTTP_TIMEOUT_SECONDS",
    "KUBELOG_ACCESS_KEY_TTL_SECONDS",
    "KUBELOG_ALLOW_MATCH_MODE",
    "KUBELOG_CATALOG_URL",
    "KUBELOG_CATALOG_TOKEN",
    "KUBELOG_USER_HEADER",
    "KUBELOG_ENTITY_LABEL",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """
    Settings are cached per process; every test starts from a clean env and a cleared cache.

    The config watcher thread is disabled so startup hooks never spawn background threads.
    """
    from kubelog.config.settings import load_settings

    for name in _KUBELOG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KUBELOG_CONFIG_WATCH", "0")
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()
