from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

CapabilityType = Literal["tool", "prompt", "resource"]
SearchField = Literal["name", "description", "schema", "server"]

DEFAULT_LIMIT = 20
DEFAULT_THRESHOLD = 0.0
DEFAULT_TYPES: tuple[CapabilityType, ...] = ("tool", "prompt", "resource")
DEFAULT_SEARCH_FIELDS: tuple[SearchField, ...] = ("name", "description", "schema")


@dataclass(frozen=True)
class IndexedCapability:
    """One tool, prompt or resource flattened for text matching.

    ``detail_text`` holds the type-specific searchable text: input schema
    property names and descriptions for tools, argument names and
    descriptions for prompts, URI and MIME type for resources.
    """

    type: CapabilityType
    server: str
    name: str
    description: str | None = None
    detail_text: str = ""
    uri: str | None = None
    mime_type: str | None = None

    @property
    def detail_field(self) -> str:
        if self.type == "tool":
            return "inputSchema"
        if self.type == "prompt":
            return "arguments"
        return "uri"


@dataclass
class CapabilityIndex:
    capabilities: list[IndexedCapability] = field(default_factory=list)
    servers: list[str] = field(default_factory=list)
    indexed_at: datetime = field(default_factory=datetime.now)


@dataclass
class SearchOptions:
    """Filters and limits for a capability search.

    ``servers`` of ``None`` searches every indexed server.
    """

    types: tuple[CapabilityType, ...] = DEFAULT_TYPES
    servers: list[str] | None = None
    search_fields: tuple[SearchField, ...] = DEFAULT_SEARCH_FIELDS
    limit: int = DEFAULT_LIMIT
    threshold: float = DEFAULT_THRESHOLD


@dataclass(frozen=True)
class SearchResult:
    type: CapabilityType
    server: str
    name: str
    description: str | None
    matched_on: list[str]
    score: float


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    # Matches before the limit was applied
    total: int = 0
