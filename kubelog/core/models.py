"""Wire models exchanged with the log-streaming service and the frontend plugin.

Pod payloads come from the remote service and are intentionally permissive (`extra="allow"`):
we only rely on `name` and `namespace`, everything else is passed back to the frontend untouched.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseModelAllowExtra(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PodData(BaseModelAllowExtra):
    name: str
    namespace: str
    access_key: Optional[str] = Field(default=None, alias="accessKey")


class ClusterPods(BaseModelStrict):
    name: str
    url: str
    title: str = "No name"
    data: List[PodData] = Field(default_factory=list)

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class EntityMetadata(BaseModelAllowExtra):
    name: str


class EntityRequest(BaseModelAllowExtra):
    """Body posted by the frontend plugin: the catalog entity being displayed."""

    metadata: EntityMetadata
