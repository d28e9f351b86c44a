"""
Kubelog backend HTTP server.

The frontend plugin posts the catalog entity it is displaying; we discover the entity's pods on
every configured cluster, run the namespace gate and the pod rules for the requested scope, and
attach a short-lived Kwirth access key to each pod the user may access.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request

from kubelog.authz.access import check_namespace_access, check_pod_access
from kubelog.authz.errors import CollaboratorError
from kubelog.authz.registry import ClusterPermissionRegistry
from kubelog.authz.rules import ClusterPermissionSet, Scope
from kubelog.config.loader import ConfigFileWatcher, load_config_file, reload_registry
from kubelog.config.settings import load_settings
from kubelog.core.models import ClusterPods, EntityRequest

logger = logging.getLogger(__name__)

_REGISTRY: Optional[ClusterPermissionRegistry] = None
_WATCHER: Optional[ConfigFileWatcher] = None


def get_registry() -> ClusterPermissionRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = ClusterPermissionRegistry(default_allow_mode=load_settings().allow_match_mode)
    return _REGISTRY


def set_registry(registry: Optional[ClusterPermissionRegistry]) -> None:
    """Replace the process registry (tests, embedding)."""
    global _REGISTRY
    _REGISTRY = registry


app = FastAPI(title="Kubelog backend")


@app.on_event("startup")
def _startup_load_permissions() -> None:
    """
    Load cluster permissions from app-config.

    A missing or unusable app-config prevents startup: without rules we could only fail open.
    """
    global _WATCHER
    settings = load_settings()
    registry = get_registry()

    if registry.generation == 0:
        logger.info("Loading static config from %s", settings.config_path)
        registry.reload_all(load_config_file(settings.config_path))
        logger.info("Static config loaded")

    if settings.config_watch and _WATCHER is None:
        _WATCHER = ConfigFileWatcher(
            settings.config_path,
            lambda: reload_registry(registry, settings.config_path),
            interval_seconds=settings.config_watch_interval_seconds,
        )
        _WATCHER.start()
    elif not settings.config_watch:
        logger.info("App-config change detection disabled (KUBELOG_CONFIG_WATCH=0).")


@app.on_event("shutdown")
def _shutdown_stop_watcher() -> None:
    global _WATCHER
    if _WATCHER is not None:
        _WATCHER.stop()
        _WATCHER = None


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    logger.debug(
        "%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, time.time() - start_time
    )
    return response


def _user_ref_from_request(request: Request) -> str:
    """The identity-aware proxy in front of us sets the user entity ref in a trusted header."""
    header = load_settings().user_header
    user_ref = (request.headers.get(header) or "").strip()
    if not user_ref or ":" not in user_ref:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_ref.lower()


def _user_groups(user_ref: str) -> List[str]:
    from kubelog.providers.catalog_provider import get_catalog_provider

    try:
        return get_catalog_provider().get_user_groups(user_ref)
    except CollaboratorError as e:
        # No groups means only rules naming the user ref itself can match.
        logger.warning("Group lookup failed for %s, continuing without groups: %s", user_ref, str(e))
        return []


def get_valid_clusters(snapshot: Mapping[str, ClusterPermissionSet], entity_name: str) -> List[ClusterPods]:
    """Pods tagged with the entity on every configured cluster; unreachable clusters are skipped."""
    from kubelog.providers.kwirth_provider import get_kwirth_provider

    provider = get_kwirth_provider()
    out: List[ClusterPods] = []
    for cluster in snapshot.values():
        try:
            out.append(provider.find_pods(cluster, entity_name))
        except CollaboratorError as e:
            logger.warning("Skipping cluster %s: %s", cluster.cluster_id, str(e))
    return out


def add_access_keys(
    snapshot: Mapping[str, ClusterPermissionSet],
    scope: Scope,
    cluster_list: List[ClusterPods],
    entity_name: str,
    user_ref: str,
    user_groups: List[str],
) -> List[ClusterPods]:
    """Attach an access key to every pod the user passes both the namespace gate and the pod rules for."""
    from kubelog.providers.catalog_provider import user_name_from_ref
    from kubelog.providers.kwirth_provider import access_key_resource, get_kwirth_provider

    provider = get_kwirth_provider()
    user_name = user_name_from_ref(user_ref)

    for cluster_pods in cluster_list:
        cluster = snapshot.get(cluster_pods.name)
        for pod in cluster_pods.data:
            pod.access_key = None
            if cluster is None:
                continue
            if not check_namespace_access(snapshot, cluster_pods.name, pod, user_ref, user_groups):
                continue
            if not check_pod_access(snapshot, scope, cluster_pods.name, pod, user_ref, user_groups):
                continue
            resource = access_key_resource(scope, pod.namespace, pod.name)
            try:
                pod.access_key = provider.request_access_key(cluster, entity_name, resource, user_name)
            except CollaboratorError as e:
                logger.warning("No access key for %s/%s on %s: %s", pod.namespace, pod.name, cluster.cluster_id, e)
    return cluster_list


def process_scope(scope: Scope, body: EntityRequest, request: Request) -> List[Dict[str, Any]]:
    user_ref = _user_ref_from_request(request)
    groups = _user_groups(user_ref)

    # One snapshot for the whole request, even if a reload lands meanwhile.
    snapshot = get_registry().snapshot()
    entity_name = body.metadata.name

    clusters = get_valid_clusters(snapshot, entity_name)
    clusters = add_access_keys(snapshot, scope, clusters, entity_name, user_ref, groups)
    return [c.to_response() for c in clusters]


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True, "clusters": get_registry().cluster_names()}


@app.post("/start")
def start(body: EntityRequest, request: Request) -> List[Dict[str, Any]]:
    logger.warning('This endpoint is deprecated, update your "plugin-kubelog" package to use /view.')
    return process_scope(Scope.VIEW, body, request)


@app.post("/view")
def view(body: EntityRequest, request: Request) -> List[Dict[str, Any]]:
    return process_scope(Scope.VIEW, body, request)


@app.post("/restart")
def restart(body: EntityRequest, request: Request) -> List[Dict[str, Any]]:
    return process_scope(Scope.RESTART, body, request)


def run(host: str = "0.0.0.0", port: int = 7007) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting kubelog backend on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
