"""Canonical workflow model and reader tests."""

from __future__ import annotations

import json

import pytest

from comfy_core.errors import NormalizationError, ParseError, PipelineStage
from comfy_core.workflow_reader import (
    ApiJsonWorkflowReader,
    CanonicalWorkflow,
    NodeLink,
    PngWorkflowReader,
    as_link,
    workflow_from_api_prompt,
)

from conftest import SAMPLE_PROMPT, make_png


class TestApiPromptParsing:
    def test_round_trips_to_api_dict(self, sample_prompt):
        workflow = workflow_from_api_prompt(sample_prompt)
        assert workflow.node_count == 7
        assert workflow.to_api_dict() == SAMPLE_PROMPT
        assert workflow.nodes["3"].title == "KSampler"

    def test_prompt_wrapper_is_unwrapped(self, sample_prompt):
        workflow = workflow_from_api_prompt({"prompt": sample_prompt, "client_id": "abc"})
        assert workflow.node_count == 7

    def test_class_types_found(self, sample_prompt):
        workflow = workflow_from_api_prompt(sample_prompt)
        assert workflow.class_types_found == sorted(
            {"KSampler", "CheckpointLoaderSimple", "EmptyLatentImage", "CLIPTextEncode", "VAEDecode", "SaveImage"}
        )

    def test_links_are_detected(self, sample_prompt):
        workflow = workflow_from_api_prompt(sample_prompt)
        links = {(target, name): link for target, name, link in workflow.links()}
        assert links[("3", "model")] == NodeLink(source_id="4", output_index=0)
        assert links[("8", "vae")] == NodeLink(source_id="4", output_index=2)
        assert ("3", "seed") not in links

    def test_as_link_ignores_look_alikes(self):
        assert as_link(["4", 0]) == NodeLink(source_id="4", output_index=0)
        assert as_link([4, 0]) is None
        assert as_link(["4", True]) is None
        assert as_link(["a", "b"]) is None
        assert as_link(["4", 0, 1]) is None

    def test_ui_export_is_rejected_with_hint(self):
        with pytest.raises(NormalizationError, match="Save \\(API Format\\)"):
            workflow_from_api_prompt({"nodes": [{"id": 1}], "links": [], "version": 0.4})

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            [],
            {"3": "KSampler"},
            {"3": {"inputs": {}}},
            {"3": {"class_type": "   "}},
            {"3": {"class_type": "KSampler", "inputs": ["not", "a", "dict"]}},
        ],
    )
    def test_unrecognized_schemas(self, payload):
        with pytest.raises(NormalizationError) as exc_info:
            workflow_from_api_prompt(payload)
        assert "not a recognized workflow schema" in exc_info.value.detail
        assert exc_info.value.stage is PipelineStage.NORMALIZATION

    def test_fingerprint_is_stable_and_order_independent(self, sample_prompt):
        reordered = dict(reversed(list(sample_prompt.items())))
        assert (
            workflow_from_api_prompt(sample_prompt).fingerprint()
            == workflow_from_api_prompt(reordered).fingerprint()
        )

    def test_workflow_is_frozen(self, sample_prompt):
        workflow = workflow_from_api_prompt(sample_prompt)
        with pytest.raises(Exception):
            workflow.nodes = {}

    def test_empty_workflow_model_is_invalid(self):
        with pytest.raises(Exception):
            CanonicalWorkflow(nodes={})


class TestApiJsonWorkflowReader:
    async def test_reads_parsed_object(self, sample_prompt):
        workflow = await ApiJsonWorkflowReader().read(sample_prompt)
        assert workflow.to_api_dict() == SAMPLE_PROMPT

    async def test_does_not_mutate_input(self, sample_prompt):
        before = json.dumps(sample_prompt, sort_keys=True)
        await ApiJsonWorkflowReader().read(sample_prompt)
        assert json.dumps(sample_prompt, sort_keys=True) == before


class TestPngWorkflowReader:
    async def test_reads_embedded_prompt(self, sample_png_bytes):
        workflow = await PngWorkflowReader().read(sample_png_bytes)
        assert workflow.to_api_dict() == SAMPLE_PROMPT

    async def test_missing_chunk(self):
        with pytest.raises(NormalizationError, match="no embedded workflow found"):
            await PngWorkflowReader().read(make_png({"parameters": "steps: 20"}))

    async def test_corrupt_bytes(self):
        with pytest.raises(ParseError, match="corrupt image"):
            await PngWorkflowReader().read(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)

    async def test_non_png_image(self):
        with pytest.raises(ParseError, match="corrupt image"):
            await PngWorkflowReader().read(make_png(image_format="JPEG"))

    async def test_malformed_chunk_json(self):
        with pytest.raises(ParseError, match="malformed JSON"):
            await PngWorkflowReader().read(make_png({"prompt": "{oops"}))

    async def test_chunk_with_ui_export(self):
        chunk = json.dumps({"nodes": [], "links": []})
        with pytest.raises(NormalizationError):
            await PngWorkflowReader().read(make_png({"prompt": chunk}))
