"""Shared fixtures: sample workflows, in-memory PNGs and controllable test doubles."""

from __future__ import annotations

import asyncio
import copy
import io
import json
from typing import Any

import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from comfy_core.errors import ClipboardAccessError, NormalizationError
from comfy_core.workflow_reader import ApiJsonWorkflowReader, CanonicalWorkflow

SAMPLE_PROMPT: dict[str, Any] = {
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 156680208700286,
            "steps": 20,
            "cfg": 7.5,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1.0,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        },
        "_meta": {"title": "KSampler"},
    },
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "v1-5-pruned-emaonly.safetensors"}},
    "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 512, "height": 512, "batch_size": 1}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a cat on a windowsill", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "blurry, watermark", "clip": ["4", 1]}},
    "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
    "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "ComfyUI", "images": ["8", 0]}},
}


def marker_prompt(label: str) -> dict[str, Any]:
    """A one-node workflow whose label identifies the run that produced it."""
    return {"1": {"class_type": "Marker", "inputs": {"label": label}}}


def make_png(text_chunks: dict[str, str] | None = None, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image = Image.new("RGB", (4, 4), color=(200, 30, 30))
    if image_format == "PNG":
        info = PngInfo()
        for key, value in (text_chunks or {}).items():
            info.add_text(key, value)
        image.save(buffer, format="PNG", pnginfo=info)
    else:
        image.save(buffer, format=image_format)
    return buffer.getvalue()


def label_of(workflow: CanonicalWorkflow | None) -> str | None:
    if workflow is None:
        return None
    return workflow.nodes["1"].inputs.get("label")


@pytest.fixture
def sample_prompt() -> dict[str, Any]:
    return copy.deepcopy(SAMPLE_PROMPT)


@pytest.fixture
def sample_json_bytes(sample_prompt) -> bytes:
    return json.dumps(sample_prompt).encode("utf-8")


@pytest.fixture
def sample_png_bytes(sample_prompt) -> bytes:
    return make_png({"prompt": json.dumps(sample_prompt), "workflow": "{}"})


class GatedJsonReader:
    """
    JSON reader whose completion is held back per marker label.

    ``hold(label)`` returns an event; a read of the marker workflow with that
    label suspends until the event is set. Labels starting with ``fail`` raise
    a NormalizationError once released.
    """

    def __init__(self) -> None:
        self._inner = ApiJsonWorkflowReader()
        self._gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def hold(self, label: str) -> asyncio.Event:
        self._gates[label] = asyncio.Event()
        return self._gates[label]

    async def read(self, parsed: Any) -> CanonicalWorkflow:
        label = parsed.get("1", {}).get("inputs", {}).get("label", "")
        self.calls.append(label)
        gate = self._gates.get(label)
        if gate is not None:
            await gate.wait()
        if label.startswith("fail"):
            raise NormalizationError(f"not a recognized workflow schema ({label})")
        return await self._inner.read(parsed)


class FakeClipboard:
    def __init__(self, text: str = "", fail_read: bool = False, fail_write: bool = False) -> None:
        self.text = text
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.written: list[str] = []

    async def read_text(self) -> str:
        if self.fail_read:
            raise ClipboardAccessError(
                "could not read the clipboard (denied); "
                "paste the workflow manually with Ctrl+V / Cmd+V instead"
            )
        return self.text

    async def write_text(self, text: str) -> None:
        if self.fail_write:
            raise ClipboardAccessError("could not write to the clipboard (denied)")
        self.written.append(text)


@pytest.fixture
def gated_reader() -> GatedJsonReader:
    return GatedJsonReader()


@pytest.fixture
def fake_clipboard() -> FakeClipboard:
    return FakeClipboard()
