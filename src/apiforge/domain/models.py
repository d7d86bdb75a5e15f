from __future__ import annotations

import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]
Shape = Literal["ctx_err", "ctx_resp_err", "ctx_req_err", "ctx_req_resp_err"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ManifestFieldBinding(_Frozen):
    field_name: str
    tag_value: str
    type_kind: str  # str, int, bool, datetime, list[str], ...
    is_pointer: bool = False  # Optional[...]
    is_slice: bool = False  # list[...]
    elem_kind: Optional[str] = None


class ManifestBindings(_Frozen):
    has_json_body: bool = False
    path_bindings: list[ManifestFieldBinding] = Field(default_factory=list)
    query_bindings: list[ManifestFieldBinding] = Field(default_factory=list)
    header_bindings: list[ManifestFieldBinding] = Field(default_factory=list)


class ManifestMiddleware(_Frozen):
    pkg: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.pkg}.{self.name}" if self.pkg else self.name


class ManifestEndpoint(_Frozen):
    method: HttpMethod
    path: str
    handler_pkg: str
    handler_name: str
    shape: Shape
    req_type: Optional[str] = None
    resp_type: Optional[str] = None
    middlewares: list[ManifestMiddleware] = Field(default_factory=list)
    bindings: Optional[ManifestBindings] = None

    @property
    def pattern(self) -> str:
        return f"{self.method} {self.path}"

    @property
    def handler_key(self) -> str:
        return f"{self.handler_pkg}.{self.handler_name}"

    def sort_key(self) -> tuple[str, str, str, str]:
        return (self.method, self.path, self.handler_pkg, self.handler_name)


class ManifestContextKey(_Frozen):
    key: str
    type: str


class ManifestMayReturnStatus(_Frozen):
    status: int
    description: str


class ManifestMiddlewareMetadata(_Frozen):
    required_headers: list[str] = Field(default_factory=list)
    required_cookies: list[str] = Field(default_factory=list)
    security_schemes: list[str] = Field(default_factory=list)
    may_return_statuses: list[ManifestMayReturnStatus] = Field(default_factory=list)


class ManifestField(_Frozen):
    name: str
    json_name: Optional[str] = None
    type_id: str
    required: bool
    doc: Optional[str] = None


class ManifestType(_Frozen):
    id: str
    underlying_kind: str  # model, list, dict, optional, str, int, datetime, ...
    nullable: bool = False
    fields: Optional[list[ManifestField]] = None
    elem: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None
    doc: Optional[str] = None
    warnings: Optional[list[str]] = None


class ManifestDoc(_Frozen):
    summary: str = ""
    description: str = ""


class Manifest(_Frozen):
    """
    Snapshot of one discovery run.

    Endpoint and middleware lists keep registration order; context keys are
    sorted by name, metadata and docs are keyed maps that serialise sorted.
    """

    endpoints: list[ManifestEndpoint] = Field(default_factory=list)
    middlewares: list[ManifestMiddleware] = Field(default_factory=list)
    context_keys: list[ManifestContextKey] = Field(default_factory=list)
    middleware_metadata: dict[str, ManifestMiddlewareMetadata] = Field(default_factory=dict)

    # schema/doc extensions
    types: list[ManifestType] = Field(default_factory=list)
    endpoint_docs: dict[str, ManifestDoc] = Field(default_factory=dict)

    def to_json(self) -> str:
        payload = self.model_dump(mode="json", exclude_none=True)
        return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "Manifest":
        return cls.model_validate_json(text)
