"""Convenience views over protocol results.

Each wrapper keeps the native result available through ``raw()`` and adds
``text()`` and ``json()`` accessors that raise a typed error instead of
returning partial data.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, TypeVar

from mcp.types import (
    BlobResourceContents,
    CallToolResult,
    GetPromptResult,
    ReadResourceResult,
    TextContent,
    TextResourceContents,
)
from pydantic import BaseModel, ValidationError

from mcpz.errors import PromptResponseError, ResourceResponseError, ToolResponseError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _first_text(blocks: list[Any]) -> str | None:
    for block in blocks:
        if isinstance(block, TextContent):
            return block.text
    return None


def _validate(value: Any, model: type[ModelT] | None, error_type: type, response: Any) -> Any:
    if model is None:
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise error_type(f"Response failed validation: {e}", response) from e


class ToolResponse:
    def __init__(self, result: CallToolResult):
        self._result = result

    def raw(self) -> CallToolResult:
        return self._result

    def text(self) -> str:
        """First text block of the result.

        Raises:
            ToolResponseError: If the tool reported an error or returned no text
        """
        self._raise_if_error()
        text = _first_text(self._result.content)
        if text is None:
            raise ToolResponseError("Tool response did not include text content", self._result)
        return text

    def json(self, model: type[ModelT] | None = None) -> Any:
        """Structured content, or the first text block parsed as JSON.

        Args:
            model: Optional pydantic model to validate the payload into

        Raises:
            ToolResponseError: If the tool errored or nothing parses as JSON
        """
        self._raise_if_error()

        if self._result.structuredContent is not None:
            return _validate(self._result.structuredContent, model, ToolResponseError, self._result)

        text = _first_text(self._result.content)
        if text is None:
            raise ToolResponseError(
                "Tool response did not include structuredContent or text content",
                self._result,
            )
        try:
            value = json.loads(text)
        except ValueError as e:
            raise ToolResponseError(
                f"Failed to parse tool text content as JSON: {e}", self._result
            ) from e
        return _validate(value, model, ToolResponseError, self._result)

    def _raise_if_error(self) -> None:
        if not self._result.isError:
            return
        detail = _first_text(self._result.content)
        message = "Tool invocation returned an error result"
        if detail:
            message = f"{message}: {detail}"
        raise ToolResponseError(message, self._result)


class PromptResponse:
    def __init__(self, result: GetPromptResult):
        self._result = result

    def raw(self) -> GetPromptResult:
        return self._result

    def text(self) -> str:
        """Text of every text message, separated by blank lines."""
        segments = [
            message.content.text
            for message in self._result.messages
            if isinstance(message.content, TextContent)
        ]
        if not segments:
            raise PromptResponseError("Prompt response did not include text content", self._result)
        return "\n\n".join(segments)

    def json(self, model: type[ModelT] | None = None) -> Any:
        text = self.text()
        try:
            value = json.loads(text)
        except ValueError as e:
            raise PromptResponseError(
                f"Failed to parse prompt text as JSON: {e}", self._result
            ) from e
        return _validate(value, model, PromptResponseError, self._result)


class ResourceResponse:
    def __init__(self, result: ReadResourceResult):
        self._result = result

    def raw(self) -> ReadResourceResult:
        return self._result

    def text(self) -> str:
        """First content entry as text, decoding base64 blobs as UTF-8."""
        if not self._result.contents:
            raise ResourceResponseError(
                "Resource response did not include any contents", self._result
            )
        entry = self._result.contents[0]
        if isinstance(entry, TextResourceContents):
            return entry.text
        if isinstance(entry, BlobResourceContents):
            try:
                return base64.b64decode(entry.blob).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise ResourceResponseError(
                    f"Failed to decode resource blob as UTF-8 text: {e}", self._result
                ) from e
        raise ResourceResponseError(
            "Resource content does not include text or blob data", self._result
        )

    def json(self, model: type[ModelT] | None = None) -> Any:
        text = self.text()
        try:
            value = json.loads(text)
        except ValueError as e:
            raise ResourceResponseError(
                f"Failed to parse resource text as JSON: {e}", self._result
            ) from e
        return _validate(value, model, ResourceResponseError, self._result)
