"""Access checks against one registry snapshot, used by the HTTP layer and the CLI.

Callers take `registry.snapshot()` once per request so every decision of that request sees the
same rules.

Unknown clusters and scopes without pod rules are recovered here: they log a warning and deny.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from kubelog.authz.errors import UnknownClusterError, UnknownScopeError
from kubelog.authz.policy import allowed_to_namespace, allowed_to_pod, get_permission_set
from kubelog.authz.rules import ClusterPermissionSet, Scope
from kubelog.core.models import PodData

logger = logging.getLogger(__name__)


def _lookup_cluster(snapshot: Mapping[str, ClusterPermissionSet], cluster_name: str) -> ClusterPermissionSet:
    cluster = snapshot.get(cluster_name)
    if cluster is None:
        raise UnknownClusterError(f"Invalid cluster specified {cluster_name}")
    return cluster


def check_namespace_access(
    snapshot: Mapping[str, ClusterPermissionSet],
    cluster_name: str,
    pod: PodData,
    user_ref: str,
    user_groups: Iterable[str],
) -> bool:
    try:
        cluster = _lookup_cluster(snapshot, cluster_name)
    except UnknownClusterError as e:
        logger.warning("%s", e)
        return False
    return allowed_to_namespace(cluster, pod.namespace, user_ref, user_groups)


def check_pod_access(
    snapshot: Mapping[str, ClusterPermissionSet],
    scope: Scope,
    cluster_name: str,
    pod: PodData,
    user_ref: str,
    user_groups: Iterable[str],
) -> bool:
    """Pod-level check for one scope; assumes the namespace gate already passed."""
    logger.info(
        "Checking scope '%s' in cluster %s for pod: %s/%s", scope.value, cluster_name, pod.namespace, pod.name
    )
    try:
        cluster = _lookup_cluster(snapshot, cluster_name)
        blocks = get_permission_set(scope, cluster)
        if blocks is None:
            raise UnknownScopeError(f"Invalid scope requested: {scope.value}")
    except (UnknownClusterError, UnknownScopeError) as e:
        logger.warning("%s", e)
        return False

    return allowed_to_pod(
        blocks, pod.namespace, pod.name, user_ref, user_groups, allow_mode=cluster.allow_match_mode
    )


def check_access(
    snapshot: Mapping[str, ClusterPermissionSet],
    scope: Scope,
    cluster_name: str,
    pod: PodData,
    user_ref: str,
    user_groups: Iterable[str],
) -> bool:
    """Namespace gate first, then the pod evaluator."""
    groups = list(user_groups)
    if not check_namespace_access(snapshot, cluster_name, pod, user_ref, groups):
        return False
    return check_pod_access(snapshot, scope, cluster_name, pod, user_ref, groups)
