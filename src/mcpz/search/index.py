"""Text search over the tools, prompts and resources of connected servers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from mcpz.search.models import (
    CapabilityIndex,
    IndexedCapability,
    SearchOptions,
    SearchResponse,
    SearchResult,
)
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

EXACT_NAME_WEIGHT = 1.0
PARTIAL_NAME_WEIGHT = 0.8
DESCRIPTION_WEIGHT = 0.6
SCHEMA_WEIGHT = 0.4
SERVER_WEIGHT = 0.3


class CapabilityClient(Protocol):
    async def list_tools(self) -> Any: ...

    async def list_prompts(self) -> Any: ...

    async def list_resources(self) -> Any: ...


def _schema_text(input_schema: Any) -> str:
    if not isinstance(input_schema, Mapping):
        return ""

    parts: list[str] = []
    if input_schema.get("description"):
        parts.append(str(input_schema["description"]))
    properties = input_schema.get("properties")
    if isinstance(properties, Mapping):
        for prop_name, prop in properties.items():
            parts.append(str(prop_name))
            if isinstance(prop, Mapping) and prop.get("description"):
                parts.append(str(prop["description"]))
    return " ".join(parts)


def _arguments_text(arguments: list[Any] | None) -> str:
    if not arguments:
        return ""
    return " ".join(
        f"{arg.name} {arg.description}" if arg.description else arg.name
        for arg in arguments
    )


async def _safe_list(server_name: str, kind: str, call: Any, logger: logging.Logger) -> Any:
    try:
        return await call()
    except Exception as e:
        logger.debug(f"[{server_name}] list_{kind} failed: {e}")
        return None


async def build_capability_index(
    clients: Mapping[str, CapabilityClient],
    logger: logging.Logger | None = None,
) -> CapabilityIndex:
    """List every capability of each client into a searchable index.

    A server that does not support one of the list calls, or fails it,
    simply contributes nothing of that type.
    """
    log = resolve_logger(logger, default_logger)
    index = CapabilityIndex()

    for server_name, client in clients.items():
        index.servers.append(server_name)
        tools, prompts, resources = await asyncio.gather(
            _safe_list(server_name, "tools", client.list_tools, log),
            _safe_list(server_name, "prompts", client.list_prompts, log),
            _safe_list(server_name, "resources", client.list_resources, log),
        )

        for tool in getattr(tools, "tools", None) or []:
            index.capabilities.append(
                IndexedCapability(
                    type="tool",
                    server=server_name,
                    name=tool.name,
                    description=tool.description,
                    detail_text=_schema_text(tool.inputSchema),
                )
            )
        for prompt in getattr(prompts, "prompts", None) or []:
            index.capabilities.append(
                IndexedCapability(
                    type="prompt",
                    server=server_name,
                    name=prompt.name,
                    description=prompt.description,
                    detail_text=_arguments_text(prompt.arguments),
                )
            )
        for resource in getattr(resources, "resources", None) or []:
            uri = str(resource.uri)
            index.capabilities.append(
                IndexedCapability(
                    type="resource",
                    server=server_name,
                    name=resource.name,
                    description=resource.description,
                    detail_text=f"{uri} {resource.mimeType or ''}",
                    uri=uri,
                    mime_type=resource.mimeType,
                )
            )

    return index


def score_capability(
    capability: IndexedCapability,
    terms: list[str],
    search_fields: tuple[str, ...],
) -> tuple[float, list[str]]:
    """Score ``capability`` against lowercase query terms.

    Each term adds the weight of every field it hits; the total is divided
    by the term count and capped at 1.
    """
    matched_on: list[str] = []
    total = 0.0

    name = capability.name.lower()
    description = (capability.description or "").lower()
    detail = capability.detail_text.lower()
    server = capability.server.lower()

    def hit(field_name: str, weight: float) -> None:
        nonlocal total
        total += weight
        if field_name not in matched_on:
            matched_on.append(field_name)

    for term in terms:
        if "name" in search_fields:
            if name == term:
                hit("name", EXACT_NAME_WEIGHT)
            elif term in name:
                hit("name", PARTIAL_NAME_WEIGHT)
        if "description" in search_fields and term in description:
            hit("description", DESCRIPTION_WEIGHT)
        if "schema" in search_fields and term in detail:
            hit(capability.detail_field, SCHEMA_WEIGHT)
        if "server" in search_fields and term in server:
            hit("server", SERVER_WEIGHT)

    if not terms:
        return 0.0, matched_on
    return min(1.0, total / len(terms)), matched_on


def search_capabilities(
    index: CapabilityIndex,
    query: str,
    options: SearchOptions | None = None,
) -> SearchResponse:
    """Rank indexed capabilities against a whitespace-separated query.

    An empty query returns no results.
    """
    options = options or SearchOptions()
    terms = query.lower().split()
    if not terms:
        return SearchResponse(query=query)

    scored: list[tuple[IndexedCapability, float, list[str]]] = []
    for capability in index.capabilities:
        if capability.type not in options.types:
            continue
        if options.servers and capability.server not in options.servers:
            continue
        score, matched_on = score_capability(capability, terms, options.search_fields)
        if matched_on and score >= options.threshold:
            scored.append((capability, score, matched_on))

    scored.sort(key=lambda item: item[1], reverse=True)

    results = [
        SearchResult(
            type=capability.type,
            server=capability.server,
            name=capability.name,
            description=capability.description,
            matched_on=matched_on,
            score=score,
        )
        for capability, score, matched_on in scored[: options.limit]
    ]
    return SearchResponse(query=query, results=results, total=len(scored))


async def search(
    clients: Mapping[str, CapabilityClient],
    query: str,
    options: SearchOptions | None = None,
) -> SearchResponse:
    """Build an index from ``clients`` and search it in one call."""
    index = await build_capability_index(clients)
    return search_capabilities(index, query, options)
