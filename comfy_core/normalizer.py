"""
normalizer.py
=============
Facade over the external workflow readers.

``WorkflowNormalizer`` turns a ClassifiedSource into a CanonicalWorkflow. The
readers are capability interfaces, so concrete implementations can be
swapped for test doubles.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from .classifier import ClassifiedSource, SourceKind, decode_text
from .errors import NormalizationError, ParseError, PipelineError
from .workflow_reader import ApiJsonWorkflowReader, CanonicalWorkflow, PngWorkflowReader

logger = logging.getLogger(__name__)


class JsonWorkflowReader(Protocol):
    async def read(self, parsed: Any) -> CanonicalWorkflow: ...


class ImageWorkflowReader(Protocol):
    async def read(self, data: bytes) -> CanonicalWorkflow: ...


class WorkflowNormalizer:
    """Routes classified sources to the matching reader."""

    def __init__(
        self,
        json_reader: JsonWorkflowReader | None = None,
        image_reader: ImageWorkflowReader | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.json_reader = json_reader or ApiJsonWorkflowReader()
        self.image_reader = image_reader or PngWorkflowReader()
        self.encoding = encoding

    async def normalize(self, source: ClassifiedSource) -> CanonicalWorkflow:
        name = source.payload.display_name
        if source.kind is SourceKind.JSON_DOCUMENT:
            parsed = self._parse_json(source.payload.data)
            return await self._call_reader(self.json_reader, parsed, name)
        if source.kind is SourceKind.PNG_IMAGE:
            return await self._call_reader(self.image_reader, source.payload.data, name)
        raise NormalizationError(f"no reader for source kind '{source.kind}'")

    def _parse_json(self, data: bytes) -> Any:
        try:
            text = decode_text(data, self.encoding)
        except UnicodeDecodeError as exc:
            raise ParseError(f"malformed JSON (not valid {self.encoding} text)") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"malformed JSON (line {exc.lineno}, col {exc.colno}: {exc.msg})"
            ) from exc
        except RecursionError as exc:
            raise ParseError("malformed JSON (nesting too deep)") from exc

    async def _call_reader(self, reader: Any, argument: Any, name: str) -> CanonicalWorkflow:
        try:
            workflow = await reader.read(argument)
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("Workflow reader raised unexpectedly for '%s'", name)
            raise NormalizationError(f"not a recognized workflow schema ({exc})") from exc
        logger.info("Normalized '%s' into %d nodes.", name, workflow.node_count)
        return workflow


__all__ = ["ImageWorkflowReader", "JsonWorkflowReader", "WorkflowNormalizer"]
