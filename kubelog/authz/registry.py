from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from kubelog.authz.compiler import compile_all
from kubelog.authz.rules import AllowMatchMode, ClusterPermissionSet, PodPermissionBlock, Scope
from kubelog.config.reader import ConfigReader

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, ClusterPermissionSet] = MappingProxyType({})


class ClusterPermissionRegistry:
    """
    Compiled permission state for all clusters, keyed by cluster name.

    Readers never lock: `snapshot()` returns an immutable mapping and a reload replaces the
    reference in one assignment, so a reader sees either the whole old state or the whole new one.
    The lock only serializes writers.
    """

    def __init__(self, *, default_allow_mode: AllowMatchMode = AllowMatchMode.LAST) -> None:
        self._snapshot: Mapping[str, ClusterPermissionSet] = _EMPTY
        self._write_lock = threading.Lock()
        self._default_allow_mode = default_allow_mode
        self._generation = 0

    def snapshot(self) -> Mapping[str, ClusterPermissionSet]:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Number of successful reloads (0 until the first load)."""
        return self._generation

    def get(self, cluster_name: str) -> Optional[ClusterPermissionSet]:
        return self._snapshot.get(cluster_name)

    def cluster_names(self) -> List[str]:
        return list(self._snapshot.keys())

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, cluster_name: object) -> bool:
        return cluster_name in self._snapshot

    def get_permission_set(self, scope: Scope, cluster_name: str) -> Optional[Tuple[PodPermissionBlock, ...]]:
        cluster = self.get(cluster_name)
        if cluster is None:
            return None
        return cluster.permission_blocks().get(scope)

    def replace(self, clusters: Dict[str, ClusterPermissionSet]) -> None:
        with self._write_lock:
            self._snapshot = MappingProxyType(dict(clusters))
            self._generation += 1

    def reload_all(self, config: ConfigReader) -> None:
        """
        Recompile every cluster from scratch and swap the snapshot.

        ConfigurationError propagates and the previous snapshot stays in place.
        """
        clusters = compile_all(config, default_allow_mode=self._default_allow_mode)
        self.replace(clusters)
        logger.info("Permission registry loaded: %d cluster(s) %s", len(clusters), sorted(clusters))
