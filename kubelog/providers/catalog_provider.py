"""Catalog client: group membership of a user entity, as canonical group refs."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable
from urllib.parse import quote

import requests

from kubelog.authz.errors import CollaboratorError
from kubelog.config.settings import load_settings


def parse_entity_ref(ref: str) -> Tuple[str, str, str]:
    """
    Split `kind:namespace/name` into its parts.

    `kind:name` (no namespace) uses the `default` namespace.
    """
    raw = (ref or "").strip()
    if ":" not in raw:
        raise ValueError(f"Invalid entity ref {ref!r} (expected kind:namespace/name)")
    kind, rest = raw.split(":", 1)
    namespace, _, name = rest.rpartition("/")
    if not kind or not name:
        raise ValueError(f"Invalid entity ref {ref!r} (expected kind:namespace/name)")
    return kind.lower(), (namespace or "default").lower(), name.lower()


def user_name_from_ref(ref: str) -> str:
    try:
        return parse_entity_ref(ref)[2]
    except ValueError:
        return ref


@runtime_checkable
class CatalogProvider(Protocol):
    def get_user_groups(self, user_ref: str) -> List[str]: ...


class DefaultCatalogProvider:
    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        settings = load_settings()
        self.base_url = (base_url if base_url is not None else settings.catalog_url or "").rstrip("/")
        self.token = token if token is not None else settings.catalog_token
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds
        self._http = session or requests.Session()

    def get_user_groups(self, user_ref: str) -> List[str]:
        """Return `spec.memberOf` of the user entity, lower-cased. No catalog configured -> no groups."""
        if not self.base_url:
            return []

        try:
            kind, namespace, name = parse_entity_ref(user_ref)
        except ValueError as e:
            raise CollaboratorError(str(e)) from e

        url = f"{self.base_url}/entities/by-name/{quote(kind)}/{quote(namespace)}/{quote(name)}"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = self._http.get(url, headers=headers, timeout=self.timeout_seconds)
            if response.status_code == 404:
                return []
            response.raise_for_status()
            entity: Any = response.json()
        except requests.exceptions.RequestException as e:
            raise CollaboratorError(f"Failed to query catalog for {user_ref}: {str(e)}") from e
        except ValueError as e:
            raise CollaboratorError(f"Invalid catalog response for {user_ref}: {str(e)}") from e

        spec = entity.get("spec") if isinstance(entity, dict) else None
        member_of = (spec or {}).get("memberOf") or []
        return [str(g).lower() for g in member_of if g]


def get_catalog_provider() -> CatalogProvider:
    """Seam for swapping provider implementations (tests inject fakes here)."""
    return DefaultCatalogProvider()
