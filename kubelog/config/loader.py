from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional, Union

import yaml

from kubelog.authz.errors import ConfigurationError
from kubelog.authz.registry import ClusterPermissionRegistry
from kubelog.config.reader import ConfigReader

logger = logging.getLogger(__name__)


def load_config_file(path: Union[str, Path]) -> ConfigReader:
    """Read the YAML app-config. Unreadable, invalid or non-mapping documents raise ConfigurationError."""
    p = Path(path)
    try:
        with open(p) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read app-config {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in app-config {p}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"App-config {p} must be a mapping at the top level")
    return ConfigReader(data)


def reload_registry(registry: ClusterPermissionRegistry, path: Union[str, Path]) -> bool:
    """
    Config-change hook: re-read the file and reload the registry.

    Returns False (and keeps the previous snapshot) when the new config is not usable.
    """
    try:
        registry.reload_all(load_config_file(path))
    except ConfigurationError as e:
        logger.error("App-config reload failed, keeping previous permissions: %s", e)
        return False
    return True


def _mtime(path: Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


class ConfigFileWatcher:
    """
    Polls the app-config file and fires `on_change` when its mtime changes.

    One daemon thread; `check_once()` is the unit of work and can be driven directly.
    """

    def __init__(self, path: Union[str, Path], on_change: Callable[[], object], *, interval_seconds: float = 5.0):
        self.path = Path(path)
        self.on_change = on_change
        self.interval_seconds = interval_seconds
        self._last_mtime = _mtime(self.path)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check_once(self) -> bool:
        mtime = _mtime(self.path)
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        logger.warning("Change detected on app-config %s, updating permissions.", self.path)
        self.on_change()
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.check_once()
            except Exception:
                logger.exception("App-config watcher iteration failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="kubelog-config-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_seconds + 1)
            self._thread = None
