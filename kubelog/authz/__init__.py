"""Authorization layer for pod log viewing and pod restarts (app-config driven).

Admins control, per cluster:
- which identities may touch a namespace at all (namespace permissions)
- which identities may view logs of / restart which pods (allow/except/deny/unless rule blocks)

Rules are compiled once at load time into immutable objects held by `ClusterPermissionRegistry`;
request-time evaluation is pure and never raises.
"""
