from __future__ import annotations

from typing import Optional


class KubelogError(Exception):
    """Base class for errors raised by the authorization backend."""


class ConfigurationError(KubelogError):
    """Malformed app-config: missing required fields, wrong types, invalid patterns."""

    def __init__(
        self,
        message: str,
        *,
        cluster: Optional[str] = None,
        scope: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> None:
        self.cluster = cluster
        self.scope = scope
        self.namespace = namespace
        where = ", ".join(
            f"{k}={v}" for k, v in (("cluster", cluster), ("scope", scope), ("namespace", namespace)) if v
        )
        super().__init__(f"{message} ({where})" if where else message)


class UnknownScopeError(KubelogError):
    """A scope string that is not part of the closed scope set, or a scope with no permission set."""


class UnknownClusterError(KubelogError):
    """A cluster name that is not present in the registry snapshot."""


class CollaboratorError(KubelogError):
    """A remote collaborator (log-streaming service, catalog) failed or timed out."""
