"""Namespace gate and pod permission evaluator.

Both functions are pure: they only read compiled, immutable rule objects and never raise for
well-formed input.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

from kubelog.authz.rules import (
    AllowMatchMode,
    ClusterPermissionSet,
    PodPermissionBlock,
    PodPermissionRule,
    Scope,
)

logger = logging.getLogger(__name__)


def allowed_to_namespace(
    permission_set: ClusterPermissionSet,
    namespace: str,
    user_ref: str,
    user_groups: Iterable[str],
) -> bool:
    """
    Coarse namespace check.

    No entry for the namespace means no restriction. Otherwise the lower-cased user ref or one of
    the group refs must be literally listed (exact string match, not regex).
    """
    rule = next((ns for ns in permission_set.namespace_permissions if ns.namespace == namespace), None)
    if rule is None:
        logger.debug("Namespace %s has no restrictions on cluster %s", namespace, permission_set.cluster_id)
        return True

    if user_ref.lower() in rule.identity_refs:
        logger.debug("User ref %s listed for namespace %s", user_ref, namespace)
        return True

    for group in user_groups:
        if group in rule.identity_refs:
            logger.debug("Group ref %s listed for namespace %s", group, namespace)
            return True

    logger.debug("No identity of %s listed for namespace %s", user_ref, namespace)
    return False


def _allow_matches(
    rules: Sequence[PodPermissionRule],
    pod_name: str,
    user_ref: str,
    user_groups: Tuple[str, ...],
    mode: AllowMatchMode,
) -> bool:
    if mode is AllowMatchMode.ANY:
        return any(r.matches(pod_name, user_ref, user_groups) for r in rules)

    # Every rule is evaluated and the last one decides; an earlier match can be overwritten.
    matched = False
    for r in rules:
        matched = r.matches(pod_name, user_ref, user_groups)
    return matched


def _first_match(
    rules: Optional[Sequence[PodPermissionRule]],
    pod_name: str,
    user_ref: str,
    user_groups: Tuple[str, ...],
) -> bool:
    if not rules:
        return False
    return any(r.matches(pod_name, user_ref, user_groups) for r in rules)


def block_grants(
    block: PodPermissionBlock,
    pod_name: str,
    user_ref: str,
    user_groups: Tuple[str, ...],
    *,
    allow_mode: AllowMatchMode = AllowMatchMode.LAST,
) -> bool:
    """Evaluate a single allow/except/deny/unless block."""
    if block.allow is None:
        return True

    if not _allow_matches(block.allow, pod_name, user_ref, user_groups, allow_mode):
        return False

    if _first_match(block.except_, pod_name, user_ref, user_groups):
        return False

    if block.deny is None:
        return True

    if not _first_match(block.deny, pod_name, user_ref, user_groups):
        return True

    return _first_match(block.unless, pod_name, user_ref, user_groups)


def allowed_to_pod(
    blocks: Sequence[PodPermissionBlock],
    namespace: str,
    pod_name: str,
    user_ref: str,
    user_groups: Iterable[str],
    *,
    allow_mode: AllowMatchMode = AllowMatchMode.LAST,
) -> bool:
    """
    Fine-grained pod check within one namespace.

    An empty block list means the scope is not restricted on this cluster. Otherwise blocks for
    the namespace are tried in config order and the first granting block wins; when none grants,
    including when no block names the namespace, the answer is False.
    """
    if not blocks:
        logger.debug("No pod permissions configured, %s/%s is unrestricted", namespace, pod_name)
        return True

    groups = tuple(user_groups)
    for block in blocks:
        if block.namespace != namespace:
            continue
        if block_grants(block, pod_name, user_ref, groups, allow_mode=allow_mode):
            logger.debug("Pod %s/%s granted to %s", namespace, pod_name, user_ref)
            return True
    logger.debug("Pod %s/%s not granted to %s", namespace, pod_name, user_ref)
    return False


def get_permission_set(scope: Scope, permission_set: ClusterPermissionSet) -> Optional[Tuple[PodPermissionBlock, ...]]:
    """Pod permission blocks for a scope, or None for scopes that carry no pod rules."""
    return permission_set.permission_blocks().get(scope)
