from __future__ import annotations

from typing import Any, List, Mapping, Optional

from kubelog.authz.errors import ConfigurationError


class ConfigReader:
    """
    Read-only view over a nested app-config mapping.

    Keys may be dotted paths (`kubernetes.clusterLocatorMethods`). Every getter raises
    ConfigurationError naming the full key path when a value is missing or has the wrong type.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, path: str = "") -> None:
        self._data: Mapping[str, Any] = data or {}
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def _full(self, key: str) -> str:
        return f"{self._path}.{key}" if self._path else key

    def _lookup(self, key: str) -> Any:
        cur: Any = self._data
        for part in key.split("."):
            if not isinstance(cur, Mapping):
                raise KeyError(key)
            # YAML turns all-digit keys (e.g. namespace `2024`) into ints.
            cur = {str(k): v for k, v in cur.items()}
            if part not in cur:
                raise KeyError(key)
            cur = cur[part]
        return cur

    def has(self, key: str) -> bool:
        try:
            self._lookup(key)
        except KeyError:
            return False
        return True

    def keys(self) -> List[str]:
        return [str(k) for k in self._data.keys()]

    def get(self, key: str) -> Any:
        try:
            return self._lookup(key)
        except KeyError:
            raise ConfigurationError(f"Missing required config value '{self._full(key)}'") from None

    def get_string(self, key: str) -> str:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ConfigurationError(f"Config value '{self._full(key)}' must be a string")
        return str(value)

    def get_optional_string(self, key: str) -> Optional[str]:
        if not self.has(key) or self._lookup(key) is None:
            return None
        return self.get_string(key)

    def get_string_array(self, key: str) -> List[str]:
        value = self.get(key)
        if value is None:
            value = []
        if not isinstance(value, list):
            raise ConfigurationError(f"Config value '{self._full(key)}' must be a list of strings")
        out: List[str] = []
        for i, item in enumerate(value):
            if isinstance(item, bool) or not isinstance(item, (str, int, float)):
                raise ConfigurationError(f"Config value '{self._full(key)}[{i}]' must be a string")
            out.append(str(item))
        return out

    def get_optional_string_array(self, key: str) -> Optional[List[str]]:
        if not self.has(key):
            return None
        return self.get_string_array(key)

    def get_config(self, key: str) -> "ConfigReader":
        value = self.get(key)
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"Config value '{self._full(key)}' must be a mapping")
        return ConfigReader(value, self._full(key))

    def get_config_array(self, key: str) -> List["ConfigReader"]:
        value = self.get(key)
        if value is None:
            value = []
        if not isinstance(value, list):
            raise ConfigurationError(f"Config value '{self._full(key)}' must be a list")
        out: List[ConfigReader] = []
        for i, item in enumerate(value):
            if not isinstance(item, Mapping):
                raise ConfigurationError(f"Config value '{self._full(key)}[{i}]' must be a mapping")
            out.append(ConfigReader(item, f"{self._full(key)}[{i}]"))
        return out
