"""
Per-field binding markers for request models.

Use them as ``typing.Annotated`` metadata:

    class GetPetRequest(BaseModel):
        id: Annotated[str, Path("id")]
        verbose: Annotated[Optional[bool], Query("verbose")] = None
        auth: Annotated[str, Header("Authorization")]

A field carries at most one marker. Fields without a marker are not bound.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class BindingMarker:
    name: str
    source: ClassVar[str] = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError(f"{type(self).__name__} marker requires a non-empty name")


@dataclass(frozen=True)
class Path(BindingMarker):
    source: ClassVar[str] = "path"


@dataclass(frozen=True)
class Query(BindingMarker):
    source: ClassVar[str] = "query"


@dataclass(frozen=True)
class Header(BindingMarker):
    source: ClassVar[str] = "header"


@dataclass(frozen=True)
class Body(BindingMarker):
    source: ClassVar[str] = "body"
