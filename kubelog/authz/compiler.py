"""
Rule compiler: one cluster's app-config subtree -> ClusterPermissionSet.

Expected shape (per cluster, under kubernetes.clusterLocatorMethods[*].clusters[*]):

    name: cluster-a
    home: http://kwirth.cluster-a/kwirth
    credentialSecret: <api key>
    title: Cluster A
    namespacePermissions:
      - stage: ["group:default/devops", "user:default/nicklaus-wirth"]
    podViewPermissions:
      - stage:
          allow:
            - pods: ["^common-"]
          except:
            - pods: ["kwirth"]
              refs: ["group:default/admin"]
    podRestartPermissions:
      - production:
          allow:
            - refs: [".*"]
          deny:
            - refs: [".*"]
          unless:
            - refs: ["group:default/sre"]

Absent `pods`/`refs` default to [".*"]; an explicit empty list matches nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from kubelog.authz.errors import ConfigurationError
from kubelog.authz.rules import (
    MATCH_ALL,
    MATCH_ALL_RULE,
    AllowMatchMode,
    ClusterPermissionSet,
    NamespacePermission,
    Pattern,
    PodPermissionBlock,
    PodPermissionRule,
    Scope,
)
from kubelog.config.reader import ConfigReader

logger = logging.getLogger(__name__)

# Key names used by the first releases of the plugin; still accepted.
_LEGACY_KEYS = {
    "home": "kwirthHome",
    "credentialSecret": "kwirthApiKey",
    "namespacePermissions": "kwirthNamespacePermissions",
    "podViewPermissions": "kwirthPodViewPermissions",
    "podRestartPermissions": "kwirthPodRestartPermissions",
}

SCOPE_CONFIG_KEYS = {
    Scope.VIEW: "podViewPermissions",
    Scope.RESTART: "podRestartPermissions",
}

_RULE_SECTIONS = ("except", "deny", "unless")


def _resolve_key(cluster: ConfigReader, key: str) -> Optional[str]:
    if cluster.has(key):
        return key
    legacy = _LEGACY_KEYS.get(key)
    if legacy and cluster.has(legacy):
        return legacy
    return None


def compile_patterns(
    sources: Optional[List[str]],
    *,
    cluster: str,
    scope: str,
    namespace: str,
) -> Tuple[Pattern, ...]:
    if sources is None:
        return (MATCH_ALL,)
    out: List[Pattern] = []
    for src in sources:
        try:
            out.append(Pattern.compile(src))
        except re.error as e:
            raise ConfigurationError(
                f"Invalid pattern {src!r}: {e}", cluster=cluster, scope=scope, namespace=namespace
            ) from e
    return tuple(out)


def compile_rules(
    block: ConfigReader,
    section: str,
    *,
    cluster: str,
    scope: str,
    namespace: str,
) -> Tuple[PodPermissionRule, ...]:
    rules: List[PodPermissionRule] = []
    for rule in block.get_config_array(section):
        pods = rule.get_optional_string_array("pods")
        refs = rule.get_optional_string_array("refs")
        rules.append(
            PodPermissionRule(
                pods=compile_patterns(pods, cluster=cluster, scope=scope, namespace=namespace),
                refs=compile_patterns(refs, cluster=cluster, scope=scope, namespace=namespace),
            )
        )
    return tuple(rules)


def _single_key(entry: ConfigReader, *, cluster: str, scope: str) -> str:
    keys = entry.keys()
    if len(keys) != 1:
        raise ConfigurationError(
            f"Entry '{entry.path}' must be a single-key mapping {{namespace: ...}}, got keys {keys}",
            cluster=cluster,
            scope=scope,
        )
    return keys[0]


def compile_pod_permissions(cluster: ConfigReader, scope: Scope, cluster_name: str) -> Tuple[PodPermissionBlock, ...]:
    config_key = SCOPE_CONFIG_KEYS[scope]
    key = _resolve_key(cluster, config_key)
    if key is None:
        logger.info(
            "No pod permissions for %s will be applied for %s (everyone will be allowed).", config_key, cluster_name
        )
        return ()

    blocks: List[PodPermissionBlock] = []
    for entry in cluster.get_config_array(key):
        namespace = _single_key(entry, cluster=cluster_name, scope=scope.value)
        cfg = entry.get_config(namespace)
        ctx = {"cluster": cluster_name, "scope": scope.value, "namespace": namespace}

        if not cfg.has("allow"):
            ignored = [s for s in _RULE_SECTIONS if cfg.has(s)]
            if ignored:
                logger.warning(
                    "Cluster %s %s namespace %s declares %s without 'allow'; the block allows everyone.",
                    cluster_name,
                    scope.value,
                    namespace,
                    "/".join(ignored),
                )
            blocks.append(PodPermissionBlock(namespace=namespace, allow=(MATCH_ALL_RULE,)))
            continue

        blocks.append(
            PodPermissionBlock(
                namespace=namespace,
                allow=compile_rules(cfg, "allow", **ctx),
                except_=compile_rules(cfg, "except", **ctx) if cfg.has("except") else None,
                deny=compile_rules(cfg, "deny", **ctx) if cfg.has("deny") else None,
                unless=compile_rules(cfg, "unless", **ctx) if cfg.has("unless") else None,
            )
        )
    return tuple(blocks)


def compile_namespace_permissions(cluster: ConfigReader, cluster_name: str) -> Tuple[NamespacePermission, ...]:
    key = _resolve_key(cluster, "namespacePermissions")
    if key is None:
        logger.info("Cluster %s will have no namespace restrictions.", cluster_name)
        return ()

    logger.info("Namespace permission evaluation will be performed for cluster %s.", cluster_name)
    out: List[NamespacePermission] = []
    for entry in cluster.get_config_array(key):
        namespace = _single_key(entry, cluster=cluster_name, scope="namespace")
        refs = entry.get_string_array(namespace)
        out.append(NamespacePermission(namespace=namespace, identity_refs=tuple(r.lower() for r in refs)))
    return tuple(out)


def compile_cluster(
    cluster: ConfigReader,
    *,
    default_allow_mode: AllowMatchMode = AllowMatchMode.LAST,
) -> Optional[ClusterPermissionSet]:
    """
    Compile one cluster entry.

    Returns None (with a warning) when the cluster has no log-streaming home or credential.
    Raises ConfigurationError for malformed rules.
    """
    name = cluster.get_string("name")
    home_key = _resolve_key(cluster, "home")
    secret_key = _resolve_key(cluster, "credentialSecret")
    if home_key is None or secret_key is None:
        logger.warning("Cluster %s has no Kwirth information. Will not be used for log viewing.", name)
        return None

    try:
        allow_mode = AllowMatchMode.parse(cluster.get_optional_string("allowMatchMode"), default_allow_mode)
    except ValueError as e:
        raise ConfigurationError(str(e), cluster=name) from e

    permission_set = ClusterPermissionSet(
        cluster_id=name,
        home=cluster.get_string(home_key).rstrip("/"),
        credential_secret=cluster.get_string(secret_key),
        title=cluster.get_optional_string("title") or "No name",
        namespace_permissions=compile_namespace_permissions(cluster, name),
        view_permissions=compile_pod_permissions(cluster, Scope.VIEW, name),
        restart_permissions=compile_pod_permissions(cluster, Scope.RESTART, name),
        allow_match_mode=allow_mode,
    )
    logger.info("Kwirth for %s is located at %s.", name, permission_set.home)
    return permission_set


def compile_all(
    config: ConfigReader,
    *,
    default_allow_mode: AllowMatchMode = AllowMatchMode.LAST,
) -> Dict[str, ClusterPermissionSet]:
    """
    Compile every cluster of every cluster locator method.

    A missing `kubernetes.clusterLocatorMethods` section, or any malformed cluster, raises
    ConfigurationError: the caller keeps its previous state.
    """
    if not config.has("kubernetes.clusterLocatorMethods"):
        raise ConfigurationError("There is no 'kubernetes.clusterLocatorMethods' defined in app-config")

    clusters: Dict[str, ClusterPermissionSet] = {}
    for method in config.get_config_array("kubernetes.clusterLocatorMethods"):
        if not method.has("clusters"):
            continue
        for cluster in method.get_config_array("clusters"):
            permission_set = compile_cluster(cluster, default_allow_mode=default_allow_mode)
            if permission_set is None:
                continue
            if permission_set.cluster_id in clusters:
                logger.warning("Cluster %s is declared more than once; the last one is used.", permission_set.cluster_id)
            clusters[permission_set.cluster_id] = permission_set
    return clusters
