#!/usr/bin/env python3
"""
Kubelog backend - pod log viewing / pod restart authorization for Backstage.

Serves the authorization API, and offers offline helpers to validate an app-config and to
evaluate a single access decision against it.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep kubelog imports lazy (inside functions) so `--help` works without the server stack.
#


def validate_config(config_path: str) -> int:
    """Compile the app-config and print a summary of every usable cluster."""
    from kubelog.authz.errors import ConfigurationError
    from kubelog.authz.registry import ClusterPermissionRegistry
    from kubelog.config.loader import load_config_file
    from kubelog.config.settings import load_settings

    registry = ClusterPermissionRegistry(default_allow_mode=load_settings().allow_match_mode)
    try:
        registry.reload_all(load_config_file(config_path))
    except ConfigurationError as e:
        print(f"Invalid app-config: {e}", file=sys.stderr)
        return 1

    summary = []
    for name, cluster in registry.snapshot().items():
        summary.append(
            {
                "cluster": name,
                "title": cluster.title,
                "home": cluster.home,
                "allow_match_mode": cluster.allow_match_mode.value,
                "restricted_namespaces": [ns.namespace for ns in cluster.namespace_permissions],
                "view_blocks": len(cluster.view_permissions),
                "restart_blocks": len(cluster.restart_permissions),
            }
        )
    print(json.dumps({"ok": True, "clusters": summary}, indent=2))
    return 0


def check_access(
    config_path: str,
    *,
    cluster: str,
    namespace: str,
    pod: str,
    user: str,
    groups: Optional[List[str]] = None,
    scope: str = "view",
) -> int:
    """Evaluate one decision. Exit code 0 when granted, 2 when denied, 1 on errors."""
    from kubelog.authz.access import check_namespace_access, check_pod_access
    from kubelog.authz.errors import ConfigurationError, UnknownScopeError
    from kubelog.authz.registry import ClusterPermissionRegistry
    from kubelog.authz.rules import Scope
    from kubelog.config.loader import load_config_file
    from kubelog.config.settings import load_settings
    from kubelog.core.models import PodData

    try:
        req_scope = Scope.parse(scope)
        registry = ClusterPermissionRegistry(default_allow_mode=load_settings().allow_match_mode)
        registry.reload_all(load_config_file(config_path))
    except (ConfigurationError, UnknownScopeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    snapshot = registry.snapshot()
    target = PodData(name=pod, namespace=namespace)
    user_groups = [g.lower() for g in (groups or [])]

    namespace_ok = check_namespace_access(snapshot, cluster, target, user, user_groups)
    pod_ok = namespace_ok and check_pod_access(snapshot, req_scope, cluster, target, user, user_groups)
    print(
        json.dumps(
            {
                "cluster": cluster,
                "namespace": namespace,
                "pod": pod,
                "user": user,
                "groups": user_groups,
                "scope": req_scope.value,
                "namespace_allowed": namespace_ok,
                "allowed": bool(pod_ok),
            },
            indent=2,
        )
    )
    return 0 if pod_ok else 2


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Kubelog backend: pod log / restart authorization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP API
  python main.py serve --port 7007

  # Validate app-config
  python main.py --config app-config.yaml validate

  # Can this user view logs of this pod?
  python main.py check --cluster prod --namespace stage --pod health \\
      --user user:default/nicklaus-wirth --group group:default/devops
        """,
    )
    parser.add_argument("--config", help="App-config path (default: KUBELOG_CONFIG_PATH or app-config.yaml)")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=7007, help="Listen port (default: 7007)")

    sub.add_parser("validate", help="Compile app-config and print a summary")

    check = sub.add_parser("check", help="Evaluate a single access decision")
    check.add_argument("--cluster", required=True)
    check.add_argument("--namespace", "-n", required=True)
    check.add_argument("--pod", "-p", required=True)
    check.add_argument("--user", "-u", required=True, help="User entity ref, e.g. user:default/jdoe")
    check.add_argument(
        "--group", "-g", action="append", default=[], help="Group entity ref (repeatable), e.g. group:default/devops"
    )
    check.add_argument("--scope", default="view", help="view | restart (default: view)")

    args = parser.parse_args(argv)

    if args.config:
        import os

        os.environ["KUBELOG_CONFIG_PATH"] = args.config

    from kubelog.config.settings import load_settings

    load_settings.cache_clear()
    config_path = load_settings().config_path

    if args.command == "serve":
        from kubelog.api.server import run

        run(host=args.host, port=args.port)
        return 0

    if args.command == "validate":
        return validate_config(config_path)

    if args.command == "check":
        return check_access(
            config_path,
            cluster=args.cluster,
            namespace=args.namespace,
            pod=args.pod,
            user=args.user,
            groups=args.group,
            scope=args.scope,
        )

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
