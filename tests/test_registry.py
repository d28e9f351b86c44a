from __future__ import annotations

import threading

import pytest

from kubelog.authz.access import check_access, check_namespace_access, check_pod_access
from kubelog.authz.errors import ConfigurationError
from kubelog.authz.registry import ClusterPermissionRegistry
from kubelog.authz.rules import Scope
from kubelog.config.reader import ConfigReader
from kubelog.core.models import PodData


def _config(*clusters):
    return ConfigReader({"kubernetes": {"clusterLocatorMethods": [{"type": "config", "clusters": list(clusters)}]}})


def _cluster(name="c1", **extra):
    return {"name": name, "home": "http://kwirth", "credentialSecret": "k", **extra}


def test_reload_populates_registry() -> None:
    reg = ClusterPermissionRegistry()
    assert len(reg) == 0
    assert reg.generation == 0

    reg.reload_all(_config(_cluster("c1"), _cluster("c2")))
    assert sorted(reg.cluster_names()) == ["c1", "c2"]
    assert "c1" in reg
    assert reg.get("c1").cluster_id == "c1"
    assert reg.get("missing") is None
    assert reg.generation == 1


def test_reload_replaces_everything() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1"), _cluster("c2")))
    reg.reload_all(_config(_cluster("c3")))
    assert reg.cluster_names() == ["c3"]


def test_failed_reload_keeps_previous_snapshot() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1")))
    before = reg.snapshot()

    bad = _cluster("c2", podViewPermissions=[{"stage": {"allow": [{"pods": ["("]}]}}])
    with pytest.raises(ConfigurationError):
        reg.reload_all(_config(_cluster("c1b"), bad))

    assert reg.snapshot() is before
    assert reg.cluster_names() == ["c1"]
    assert reg.generation == 1


def test_missing_locator_section_keeps_previous_snapshot() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1")))
    with pytest.raises(ConfigurationError):
        reg.reload_all(ConfigReader({"backend": {}}))
    assert reg.cluster_names() == ["c1"]


def test_snapshot_is_immutable_and_stable_across_reloads() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1")))
    snap = reg.snapshot()
    with pytest.raises(TypeError):
        snap["c2"] = snap["c1"]  # type: ignore[index]

    reg.reload_all(_config(_cluster("c2")))
    # A reader holding the old snapshot still sees the old state.
    assert list(snap) == ["c1"]
    assert list(reg.snapshot()) == ["c2"]


def test_readers_never_see_partial_state_during_reloads() -> None:
    reg = ClusterPermissionRegistry()
    cfg_a = _config(_cluster("a1"), _cluster("a2"))
    cfg_b = _config(_cluster("b1"), _cluster("b2"), _cluster("b3"))
    reg.reload_all(cfg_a)
    seen = []
    stop = threading.Event()

    def reader() -> None:
        while not stop.is_set():
            seen.append(tuple(sorted(reg.snapshot())))

    t = threading.Thread(target=reader)
    t.start()
    for i in range(50):
        reg.reload_all(cfg_b if i % 2 == 0 else cfg_a)
    stop.set()
    t.join()

    assert seen
    assert set(seen) <= {("a1", "a2"), ("b1", "b2", "b3")}


def test_get_permission_set() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1", podRestartPermissions=[{"prod": {"allow": [{}]}}])))
    assert reg.get_permission_set(Scope.VIEW, "c1") == ()
    assert len(reg.get_permission_set(Scope.RESTART, "c1")) == 1
    assert reg.get_permission_set(Scope.FILTER, "c1") is None
    assert reg.get_permission_set(Scope.VIEW, "missing") is None


def test_unknown_cluster_is_denied_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1")))
    pod = PodData(name="web", namespace="stage")
    with caplog.at_level("WARNING"):
        assert check_namespace_access(reg.snapshot(), "nope", pod, "user:default/a", []) is False
        assert check_pod_access(reg.snapshot(), Scope.VIEW, "nope", pod, "user:default/a", []) is False
    assert "Invalid cluster specified nope" in caplog.text


@pytest.mark.parametrize("scope", [Scope.FILTER, Scope.API, Scope.CLUSTER])
def test_scope_without_permission_set_is_denied(scope: Scope, caplog: pytest.LogCaptureFixture) -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(_config(_cluster("c1")))
    pod = PodData(name="web", namespace="stage")
    with caplog.at_level("WARNING"):
        assert check_pod_access(reg.snapshot(), scope, "c1", pod, "user:default/a", []) is False
    assert "Invalid scope requested" in caplog.text


def test_check_access_runs_namespace_gate_first() -> None:
    reg = ClusterPermissionRegistry()
    reg.reload_all(
        _config(
            _cluster(
                "c1",
                namespacePermissions=[{"pre": ["group:default/devops"]}],
                podViewPermissions=[{"pre": {"allow": [{}]}}],
            )
        )
    )
    pod = PodData(name="web", namespace="pre")
    snap = reg.snapshot()
    assert check_access(snap, Scope.VIEW, "c1", pod, "user:default/a", []) is False
    assert check_access(snap, Scope.VIEW, "c1", pod, "user:default/a", ["group:default/devops"]) is True


def test_scope_parse() -> None:
    from kubelog.authz.errors import UnknownScopeError

    assert Scope.parse("VIEW") is Scope.VIEW
    assert Scope.parse(Scope.RESTART) is Scope.RESTART
    with pytest.raises(UnknownScopeError):
        Scope.parse("delete")
