"""
workflow_reader.py
==================
Canonical workflow models and the default JSON / PNG workflow readers.

Responsibilities:
    - Strict schema validation of ComfyUI API-format prompts via Pydantic v2.
    - Link detection between node inputs and upstream node outputs.
    - Extraction of the embedded prompt from PNG text chunks (Pillow).

Both readers are asynchronous and return a frozen ``CanonicalWorkflow``.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import json
import logging
from typing import Any

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import NormalizationError, ParseError

logger = logging.getLogger(__name__)

# PNG text chunk written by ComfyUI's SaveImage node.
PROMPT_CHUNK_KEY = "prompt"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class NodeLink(BaseModel):
    """An input wired to output ``output_index`` of node ``source_id``."""

    source_id: str
    output_index: int

    model_config = ConfigDict(frozen=True)


def as_link(value: Any) -> NodeLink | None:
    """Return a NodeLink if *value* is an API-format ``[node_id, index]`` pair."""
    if (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    ):
        return NodeLink(source_id=value[0], output_index=value[1])
    return None


class WorkflowNode(BaseModel):
    """A single node of the workflow graph."""

    node_id: str = Field(..., min_length=1)
    class_type: str = Field(..., min_length=1)
    inputs: dict[str, Any] = Field(default_factory=dict)
    title: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("class_type")
    @classmethod
    def class_type_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("class_type must not be blank or whitespace.")
        return v

    def links(self) -> list[tuple[str, NodeLink]]:
        found: list[tuple[str, NodeLink]] = []
        for name, value in self.inputs.items():
            link = as_link(value)
            if link is not None:
                found.append((name, link))
        return found

    def to_api_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"class_type": self.class_type, "inputs": dict(self.inputs)}
        if self.title:
            entry["_meta"] = {"title": self.title}
        return entry


class CanonicalWorkflow(BaseModel):
    """
    The format-independent workflow every source is normalized into.

    Node ids are kept exactly as they appear in the source.
    """

    nodes: dict[str, WorkflowNode]

    model_config = ConfigDict(frozen=True)

    @field_validator("nodes")
    @classmethod
    def must_have_nodes(cls, v: dict[str, WorkflowNode]) -> dict[str, WorkflowNode]:
        if not v:
            raise ValueError("workflow contains no nodes.")
        return v

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def class_types_found(self) -> list[str]:
        return sorted({n.class_type for n in self.nodes.values()})

    def links(self) -> list[tuple[str, str, NodeLink]]:
        """All (target node id, input name, link) triples."""
        return [
            (node_id, name, link)
            for node_id, node in self.nodes.items()
            for name, link in node.links()
        ]

    def to_api_dict(self) -> dict[str, Any]:
        return {node_id: node.to_api_dict() for node_id, node in self.nodes.items()}

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_api_dict(), indent=indent, ensure_ascii=False)

    def fingerprint(self) -> str:
        canonical = json.dumps(self.to_api_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# API-format parsing
# ---------------------------------------------------------------------------


def _is_ui_export(obj: dict[str, Any]) -> bool:
    return isinstance(obj.get("nodes"), list) and "links" in obj


def workflow_from_api_prompt(obj: Any) -> CanonicalWorkflow:
    """
    Validate an API-format prompt object and build a CanonicalWorkflow.

    Raises
    ------
    NormalizationError
        If *obj* is not a recognized workflow schema.
    """
    if not isinstance(obj, dict):
        raise NormalizationError(
            "not a recognized workflow schema: top-level value must be an object"
        )

    if isinstance(obj.get("prompt"), dict):
        obj = obj["prompt"]

    if _is_ui_export(obj):
        raise NormalizationError(
            "not a recognized workflow schema: this is an editor (UI) export; "
            "re-export it with 'Save (API Format)'"
        )

    if not obj:
        raise NormalizationError("not a recognized workflow schema: workflow contains no nodes")

    nodes: dict[str, WorkflowNode] = {}
    for node_id, raw in obj.items():
        if not isinstance(raw, dict) or "class_type" not in raw:
            raise NormalizationError(
                f"not a recognized workflow schema: entry '{node_id}' has no class_type"
            )
        meta = raw.get("_meta")
        title = meta.get("title") if isinstance(meta, dict) else None
        try:
            nodes[str(node_id)] = WorkflowNode(
                node_id=str(node_id),
                class_type=raw["class_type"],
                inputs=raw.get("inputs") or {},
                title=title if isinstance(title, str) else None,
            )
        except ValidationError as exc:
            logger.error("Node '%s' failed schema validation: %s", node_id, exc)
            raise NormalizationError(
                f"not a recognized workflow schema: node '{node_id}' is invalid "
                f"({exc.error_count()} validation error(s))"
            ) from exc

    workflow = CanonicalWorkflow(nodes=nodes)
    logger.info(
        "Workflow resolved: %d nodes, types=%s",
        workflow.node_count,
        workflow.class_types_found,
    )
    return workflow


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


class ApiJsonWorkflowReader:
    """Reads an already-parsed JSON object in ComfyUI API format."""

    async def read(self, parsed: Any) -> CanonicalWorkflow:
        return workflow_from_api_prompt(parsed)


class PngWorkflowReader:
    """
    Reads the API-format prompt embedded in a ComfyUI-generated PNG.

    Decoding runs in a worker thread so the event loop stays responsive.
    """

    def __init__(self, chunk_key: str = PROMPT_CHUNK_KEY) -> None:
        self.chunk_key = chunk_key

    async def read(self, data: bytes) -> CanonicalWorkflow:
        text = await asyncio.to_thread(self._extract_chunk, data)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"malformed JSON in embedded '{self.chunk_key}' chunk "
                f"(line {exc.lineno}, col {exc.colno}: {exc.msg})"
            ) from exc
        return workflow_from_api_prompt(parsed)

    def _extract_chunk(self, data: bytes) -> str:
        try:
            with Image.open(io.BytesIO(data)) as img:
                # Text chunks after IDAT are only visible once loaded.
                img.load()
                image_format = img.format
                info = dict(img.info)
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            logger.error("PNG decode failed: %s", exc)
            raise ParseError(f"corrupt image ({exc})") from exc

        if image_format != "PNG":
            raise ParseError(f"corrupt image (expected PNG data, found {image_format})")

        text = info.get(self.chunk_key)
        if not isinstance(text, str) or not text.strip():
            raise NormalizationError("no embedded workflow found")
        return text


__all__ = [
    "ApiJsonWorkflowReader",
    "CanonicalWorkflow",
    "NodeLink",
    "PROMPT_CHUNK_KEY",
    "PngWorkflowReader",
    "WorkflowNode",
    "as_link",
    "workflow_from_api_prompt",
]
