"""
Kwirth (remote log-streaming service) client.

Two calls only:
- pod discovery: which pods in a cluster are tagged with a catalog entity
- access-key issuance: a volatile key scoped to one resource (`<scope>:<namespace>::<pod>:`)
"""

from __future__ import annotations

import logging
import time
from typing import Any, List, Optional, Protocol, runtime_checkable

import requests
from pydantic import ValidationError

from kubelog.authz.errors import CollaboratorError
from kubelog.authz.rules import ClusterPermissionSet, Scope
from kubelog.config.settings import load_settings
from kubelog.core.models import ClusterPods, PodData

logger = logging.getLogger(__name__)


def access_key_resource(scope: Scope, namespace: str, pod_name: str) -> str:
    return f"{scope.value}:{namespace}::{pod_name}:"


@runtime_checkable
class KwirthProvider(Protocol):
    def find_pods(self, cluster: ClusterPermissionSet, entity_name: str) -> ClusterPods: ...

    def request_access_key(
        self,
        cluster: ClusterPermissionSet,
        entity_name: str,
        resource: str,
        user_name: str,
    ) -> str: ...


class DefaultKwirthProvider:
    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        access_key_ttl_seconds: Optional[int] = None,
        entity_label: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        settings = load_settings()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds
        self.access_key_ttl_seconds = (
            access_key_ttl_seconds if access_key_ttl_seconds is not None else settings.access_key_ttl_seconds
        )
        self.entity_label = entity_label or settings.entity_label
        self._http = session or requests.Session()

    def _headers(self, cluster: ClusterPermissionSet) -> dict:
        return {"Authorization": f"Bearer {cluster.credential_secret}"}

    def find_pods(self, cluster: ClusterPermissionSet, entity_name: str) -> ClusterPods:
        """
        Ask Kwirth for the pods labelled with the entity's kubernetes-id.

        Returns a ClusterPods without access keys.
        """
        url = f"{cluster.home}/managecluster/find"
        params = {"label": self.entity_label, "entity": entity_name}
        try:
            response = self._http.get(url, params=params, headers=self._headers(cluster), timeout=self.timeout_seconds)
            response.raise_for_status()
            payload: Any = response.json()
        except requests.exceptions.RequestException as e:
            raise CollaboratorError(f"Failed to query pods on cluster {cluster.cluster_id}: {str(e)}") from e
        except ValueError as e:
            raise CollaboratorError(f"Invalid pod list from cluster {cluster.cluster_id}: {str(e)}") from e

        pods: List[PodData] = []
        for item in payload if isinstance(payload, list) else []:
            if not (isinstance(item, dict) and item.get("name") and item.get("namespace")):
                continue
            try:
                pods.append(PodData.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed pod from cluster %s: %s", cluster.cluster_id, str(e))
        return ClusterPods(name=cluster.cluster_id, url=cluster.home, title=cluster.title, data=pods)

    def request_access_key(
        self,
        cluster: ClusterPermissionSet,
        entity_name: str,
        resource: str,
        user_name: str,
    ) -> str:
        payload = {
            "type": "volatile",
            "resource": resource,
            "description": f"Backstage API key for user {user_name} accessing component {entity_name}",
            "expire": int(time.time() * 1000) + self.access_key_ttl_seconds * 1000,
        }
        try:
            response = self._http.post(
                f"{cluster.home}/key",
                json=payload,
                headers=self._headers(cluster),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise CollaboratorError(f"Failed to obtain access key on cluster {cluster.cluster_id}: {str(e)}") from e
        except ValueError as e:
            raise CollaboratorError(f"Invalid access key response from cluster {cluster.cluster_id}: {str(e)}") from e

        access_key = data.get("accessKey") if isinstance(data, dict) else None
        if not access_key:
            raise CollaboratorError(f"Cluster {cluster.cluster_id} returned no access key for {resource}")
        return str(access_key)


def get_kwirth_provider() -> KwirthProvider:
    """Seam for swapping provider implementations (tests inject fakes here)."""
    return DefaultKwirthProvider()
