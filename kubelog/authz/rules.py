"""Compiled permission model.

Everything here is immutable once built: the registry swaps whole snapshots instead of
mutating rules in place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from kubelog.authz.errors import UnknownScopeError

MATCH_ALL_SOURCE = ".*"


class Scope(str, Enum):
    FILTER = "filter"
    VIEW = "view"
    RESTART = "restart"
    API = "api"
    CLUSTER = "cluster"

    @classmethod
    def parse(cls, raw: object) -> "Scope":
        if isinstance(raw, Scope):
            return raw
        value = str(raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise UnknownScopeError(f"Unknown scope: {raw!r}") from None


class AllowMatchMode(str, Enum):
    # Result of the last allow rule decides (legacy plugin behavior).
    LAST = "last"
    # Any matching allow rule is enough.
    ANY = "any"

    @classmethod
    def parse(cls, raw: object, default: Optional["AllowMatchMode"] = None) -> "AllowMatchMode":
        value = str(raw or "").strip().lower()
        if not value:
            return default or cls.LAST
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid allow match mode {raw!r} (expected 'last' or 'any')") from None


@dataclass(frozen=True)
class Pattern:
    """A regular expression from config, kept together with its source text."""

    source: str
    regex: "re.Pattern[str]" = field(compare=False, repr=False)

    @classmethod
    def compile(cls, source: str) -> "Pattern":
        # re.error propagates; the compiler turns it into a ConfigurationError with context.
        return cls(source=source, regex=re.compile(source))

    def matches(self, value: str) -> bool:
        return self.regex.search(value) is not None


MATCH_ALL = Pattern.compile(MATCH_ALL_SOURCE)


@dataclass(frozen=True)
class PodPermissionRule:
    pods: Tuple[Pattern, ...] = (MATCH_ALL,)
    refs: Tuple[Pattern, ...] = (MATCH_ALL,)

    def matches(self, pod_name: str, user_ref: str, user_groups: Tuple[str, ...]) -> bool:
        """
        True iff some `pods` pattern matches the pod name and some `refs` pattern matches
        either the (lower-cased) user ref or one of the group refs.
        """
        if not any(p.matches(pod_name) for p in self.pods):
            return False
        user = user_ref.lower()
        for ref in self.refs:
            if ref.matches(user):
                return True
            if any(ref.matches(g) for g in user_groups):
                return True
        return False


MATCH_ALL_RULE = PodPermissionRule()


@dataclass(frozen=True)
class PodPermissionBlock:
    """
    One `{namespace: {allow, except, deny, unless}}` entry.

    `None` means the section was not declared; an empty tuple means it was declared empty.
    The two are evaluated differently.
    """

    namespace: str
    allow: Optional[Tuple[PodPermissionRule, ...]] = None
    except_: Optional[Tuple[PodPermissionRule, ...]] = None
    deny: Optional[Tuple[PodPermissionRule, ...]] = None
    unless: Optional[Tuple[PodPermissionRule, ...]] = None


@dataclass(frozen=True)
class NamespacePermission:
    namespace: str
    identity_refs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClusterPermissionSet:
    cluster_id: str
    home: str
    credential_secret: str = field(repr=False)
    title: str = "No name"
    namespace_permissions: Tuple[NamespacePermission, ...] = ()
    view_permissions: Tuple[PodPermissionBlock, ...] = ()
    restart_permissions: Tuple[PodPermissionBlock, ...] = ()
    allow_match_mode: AllowMatchMode = AllowMatchMode.LAST

    def permission_blocks(self) -> Dict[Scope, Tuple[PodPermissionBlock, ...]]:
        return {Scope.VIEW: self.view_permissions, Scope.RESTART: self.restart_permissions}
