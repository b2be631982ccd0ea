"""
classifier.py
=============
Raw input units and the source classifier.

Every input channel (drop, file picker, paste, clipboard read) produces a
``RawInputUnit``. ``SourceClassifier`` decides which normalization path the
unit takes, or rejects it, without touching any external service.

Decision order:
    1. Recognized mime hint (``application/json``, ``image/png``).
    2. Name suffix (``.json``, ``.png``).
    3. Structural probe: text that parses to a JSON object.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ClassificationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class InputOrigin(str, Enum):
    DROP = "drop"
    SELECT = "select"
    PASTE_FILE = "paste_file"
    PASTE_TEXT = "paste_text"
    CLIPBOARD_READ = "clipboard_read"


class SourceKind(str, Enum):
    JSON_DOCUMENT = "json_document"
    PNG_IMAGE = "png_image"


JSON_MIME = "application/json"
PNG_MIME = "image/png"

# Mime → accepted suffixes. Also the drop-zone acceptance filter.
SUPPORTED_TYPES: dict[str, tuple[str, ...]] = {
    JSON_MIME: (".json",),
    PNG_MIME: (".png",),
}

_MIME_KINDS: dict[str, SourceKind] = {
    JSON_MIME: SourceKind.JSON_DOCUMENT,
    PNG_MIME: SourceKind.PNG_IMAGE,
}

_SUFFIX_KINDS: dict[str, SourceKind] = {
    ".json": SourceKind.JSON_DOCUMENT,
    ".png": SourceKind.PNG_IMAGE,
}

_ORIGIN_LABELS: dict[InputOrigin, str] = {
    InputOrigin.DROP: "dropped file",
    InputOrigin.SELECT: "selected file",
    InputOrigin.PASTE_FILE: "pasted file",
    InputOrigin.PASTE_TEXT: "pasted text",
    InputOrigin.CLIPBOARD_READ: "clipboard",
}

# ComfyUI node ids: "12", or "12:3" for nodes expanded from a group node.
_NODE_ID_RE = re.compile(r"^\d+(:\d+)*$")


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncomingFile:
    """A file handed over by a drop, the file picker, or a paste event."""

    name: str
    mime_type: str | None
    data: bytes

    @property
    def suffix(self) -> str:
        dot = self.name.rfind(".")
        return self.name[dot:].lower() if dot >= 0 else ""


@dataclass(frozen=True)
class RawInputUnit:
    """One unit of raw input, immutable once produced by a channel."""

    data: bytes
    origin: InputOrigin
    name: str | None = None
    mime_hint: str | None = None

    @classmethod
    def from_file(cls, file: IncomingFile, origin: InputOrigin) -> "RawInputUnit":
        return cls(data=file.data, origin=origin, name=file.name, mime_hint=file.mime_type)

    @classmethod
    def from_text(
        cls, text: str, origin: InputOrigin, encoding: str = "utf-8"
    ) -> "RawInputUnit":
        return cls(data=text.encode(encoding), origin=origin)

    @property
    def display_name(self) -> str:
        return self.name or _ORIGIN_LABELS[self.origin]


@dataclass(frozen=True)
class ClassifiedSource:
    kind: SourceKind
    payload: RawInputUnit


# ---------------------------------------------------------------------------
# Structural probe
# ---------------------------------------------------------------------------


def decode_text(data: bytes, encoding: str = "utf-8") -> str:
    """Decode *data*, dropping a leading byte-order mark for UTF-8 input."""
    if encoding.lower().replace("_", "-") in ("utf-8", "utf8"):
        encoding = "utf-8-sig"
    return data.decode(encoding)


def looks_like_api_prompt(obj: dict[str, Any]) -> bool:
    """Return True if *obj* is shaped like a ComfyUI API-format prompt."""
    if isinstance(obj.get("prompt"), dict):
        obj = obj["prompt"]
    if not obj:
        return False
    return all(
        _NODE_ID_RE.match(key) and isinstance(value, dict) and "class_type" in value
        for key, value in obj.items()
    )


def probe_workflow_object(text: str, strict: bool = False) -> dict[str, Any] | None:
    """
    Silently try to read *text* as a workflow-shaped JSON object.

    Returns the parsed object, or None when the text is not a JSON object
    (or, with *strict*, not an API-format prompt). Never raises.
    """
    try:
        parsed = json.loads(text.lstrip("\ufeff"))
    except (ValueError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None
    if strict and not looks_like_api_prompt(parsed):
        return None
    return parsed


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class SourceClassifier:
    """
    Pure, synchronous classification of raw input units.

    A hint or suffix match for JSON is accepted without parsing here; the
    normalizer always re-parses the text, so a ``.json`` file with invalid
    content still fails before anything reaches the generator.
    """

    def __init__(self, strict: bool = False, encoding: str = "utf-8") -> None:
        self.strict = strict
        self.encoding = encoding

    def classify(self, unit: RawInputUnit) -> ClassifiedSource:
        kind = self._kind_from_hint(unit.mime_hint) or self._kind_from_name(unit.name)
        if kind is not None:
            return ClassifiedSource(kind=kind, payload=unit)

        try:
            text = decode_text(unit.data, self.encoding)
        except UnicodeDecodeError as exc:
            raise ClassificationError(
                f"unsupported input '{unit.display_name}': not a .json or .png file"
            ) from exc

        if probe_workflow_object(text, strict=self.strict) is None:
            raise ClassificationError(
                f"unsupported input '{unit.display_name}': expected a .json or .png "
                "workflow file, or text containing a workflow JSON object"
            )

        logger.debug("Classified '%s' as JSON by structural probe.", unit.display_name)
        return ClassifiedSource(kind=SourceKind.JSON_DOCUMENT, payload=unit)

    @staticmethod
    def _kind_from_hint(mime_hint: str | None) -> SourceKind | None:
        if not mime_hint:
            return None
        # Drop parameters such as "; charset=utf-8".
        return _MIME_KINDS.get(mime_hint.split(";", 1)[0].strip().lower())

    @staticmethod
    def _kind_from_name(name: str | None) -> SourceKind | None:
        if not name:
            return None
        lowered = name.lower()
        for suffix, kind in _SUFFIX_KINDS.items():
            if lowered.endswith(suffix):
                return kind
        return None


def is_supported_file(file: IncomingFile) -> bool:
    """Acceptance filter shared by the drop zone and the paste listener."""
    if file.mime_type:
        mime = file.mime_type.split(";", 1)[0].strip().lower()
        if mime in SUPPORTED_TYPES:
            return True
    return any(file.suffix in suffixes for suffixes in SUPPORTED_TYPES.values())


__all__ = [
    "ClassifiedSource",
    "IncomingFile",
    "InputOrigin",
    "JSON_MIME",
    "PNG_MIME",
    "RawInputUnit",
    "SUPPORTED_TYPES",
    "SourceClassifier",
    "SourceKind",
    "decode_text",
    "is_supported_file",
    "looks_like_api_prompt",
    "probe_workflow_object",
]
