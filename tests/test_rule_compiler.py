from __future__ import annotations

import pytest

from kubelog.authz.compiler import compile_all, compile_cluster
from kubelog.authz.errors import ConfigurationError
from kubelog.authz.rules import MATCH_ALL_SOURCE, AllowMatchMode
from kubelog.config.reader import ConfigReader


def _base(**extra):
    return {"name": "c1", "home": "http://kwirth/", "credentialSecret": "secret", **extra}


def _sources(patterns):
    return [p.source for p in patterns]


def test_absent_pods_and_refs_default_to_match_all() -> None:
    c = compile_cluster(ConfigReader(_base(podViewPermissions=[{"stage": {"allow": [{}]}}])))
    rule = c.view_permissions[0].allow[0]
    assert _sources(rule.pods) == [MATCH_ALL_SOURCE]
    assert _sources(rule.refs) == [MATCH_ALL_SOURCE]


def test_explicit_empty_lists_stay_empty() -> None:
    c = compile_cluster(ConfigReader(_base(podViewPermissions=[{"stage": {"allow": [{"pods": [], "refs": []}]}}])))
    rule = c.view_permissions[0].allow[0]
    assert rule.pods == ()
    assert rule.refs == ()


def test_block_without_allow_gets_single_match_all_rule() -> None:
    c = compile_cluster(ConfigReader(_base(podViewPermissions=[{"stage": {}}, {"dev": None}])))
    for block in c.view_permissions:
        assert block.allow is not None and len(block.allow) == 1
        assert _sources(block.allow[0].pods) == [MATCH_ALL_SOURCE]
        assert _sources(block.allow[0].refs) == [MATCH_ALL_SOURCE]
        assert block.except_ is None and block.deny is None and block.unless is None


def test_omitted_sections_stay_none_and_empty_sections_stay_empty() -> None:
    c = compile_cluster(ConfigReader(_base(podViewPermissions=[{"stage": {"allow": [{}], "deny": []}}])))
    block = c.view_permissions[0]
    assert block.except_ is None
    assert block.unless is None
    assert block.deny == ()


def test_all_sections_compiled_in_order() -> None:
    cfg = _base(
        podRestartPermissions=[
            {
                "production": {
                    "allow": [{"pods": ["^a"]}, {"pods": ["^b"]}],
                    "except": [{"refs": ["x"]}],
                    "deny": [{"pods": ["^secure-"]}],
                    "unless": [{"refs": ["sre"]}],
                }
            }
        ]
    )
    c = compile_cluster(ConfigReader(cfg))
    assert c.view_permissions == ()
    block = c.restart_permissions[0]
    assert block.namespace == "production"
    assert [_sources(r.pods) for r in block.allow] == [["^a"], ["^b"]]
    assert _sources(block.except_[0].refs) == ["x"]
    assert _sources(block.deny[0].pods) == ["^secure-"]
    assert _sources(block.unless[0].refs) == ["sre"]


def test_repeated_namespace_blocks_are_kept_in_order() -> None:
    cfg = _base(podViewPermissions=[{"stage": {"allow": [{"pods": ["1"]}]}}, {"stage": {"allow": [{"pods": ["2"]}]}}])
    c = compile_cluster(ConfigReader(cfg))
    assert [b.namespace for b in c.view_permissions] == ["stage", "stage"]
    assert [_sources(b.allow[0].pods) for b in c.view_permissions] == [["1"], ["2"]]


def test_invalid_pattern_names_cluster_scope_and_namespace() -> None:
    cfg = _base(podRestartPermissions=[{"stage": {"allow": [{"pods": ["[unclosed"]}]}}])
    with pytest.raises(ConfigurationError) as exc:
        compile_cluster(ConfigReader(cfg))
    err = exc.value
    assert err.cluster == "c1"
    assert err.scope == "restart"
    assert err.namespace == "stage"
    assert "[unclosed" in str(err)


def test_namespace_entry_must_have_single_key() -> None:
    cfg = _base(podViewPermissions=[{"stage": {}, "dev": {}}])
    with pytest.raises(ConfigurationError):
        compile_cluster(ConfigReader(cfg))


def test_all_digit_namespace_keys_from_yaml_are_accepted() -> None:
    # yaml.safe_load("- 2024: [...]") yields an int key.
    cfg = _base(
        namespacePermissions=[{2024: ["User:default/A"]}],
        podViewPermissions=[{2024: {"allow": [{"pods": ["^web"]}]}}],
    )
    c = compile_cluster(ConfigReader(cfg))
    assert c.namespace_permissions[0].namespace == "2024"
    assert c.namespace_permissions[0].identity_refs == ("user:default/a",)
    assert c.view_permissions[0].namespace == "2024"
    assert _sources(c.view_permissions[0].allow[0].pods) == ["^web"]


def test_patterns_must_be_lists() -> None:
    cfg = _base(podViewPermissions=[{"stage": {"allow": [{"pods": "^web"}]}}])
    with pytest.raises(ConfigurationError):
        compile_cluster(ConfigReader(cfg))


def test_cluster_without_home_or_secret_is_skipped() -> None:
    assert compile_cluster(ConfigReader({"name": "c1", "home": "http://kwirth"})) is None
    assert compile_cluster(ConfigReader({"name": "c1", "credentialSecret": "k"})) is None


def test_defaults_and_home_normalization() -> None:
    c = compile_cluster(ConfigReader(_base()))
    assert c.cluster_id == "c1"
    assert c.title == "No name"
    assert c.home == "http://kwirth"
    assert c.credential_secret == "secret"
    assert c.namespace_permissions == ()
    assert c.allow_match_mode is AllowMatchMode.LAST


def test_legacy_kwirth_keys_are_accepted() -> None:
    cfg = {
        "name": "c1",
        "title": "Legacy",
        "kwirthHome": "http://kwirth",
        "kwirthApiKey": "k",
        "kwirthNamespacePermissions": [{"pre": ["group:default/devops"]}],
        "kwirthPodViewPermissions": [{"stage": {"allow": [{}]}}],
    }
    c = compile_cluster(ConfigReader(cfg))
    assert c is not None
    assert c.title == "Legacy"
    assert c.namespace_permissions[0].namespace == "pre"
    assert len(c.view_permissions) == 1


def test_invalid_allow_match_mode_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        compile_cluster(ConfigReader(_base(allowMatchMode="first")))


def test_compile_all_requires_cluster_locator_methods() -> None:
    with pytest.raises(ConfigurationError):
        compile_all(ConfigReader({"kubernetes": {}}))


def test_compile_all_walks_every_locator_method() -> None:
    cfg = {
        "kubernetes": {
            "clusterLocatorMethods": [
                {"type": "config", "clusters": [_base(), {"name": "bare"}]},
                {"type": "catalog"},
                {"type": "config", "clusters": [{**_base(), "name": "c2"}]},
            ]
        }
    }
    clusters = compile_all(ConfigReader(cfg), default_allow_mode=AllowMatchMode.ANY)
    assert sorted(clusters) == ["c1", "c2"]
    assert clusters["c2"].allow_match_mode is AllowMatchMode.ANY
