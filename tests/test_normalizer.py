"""Workflow normalizer tests."""

from __future__ import annotations

import pytest

from comfy_core.classifier import ClassifiedSource, InputOrigin, RawInputUnit, SourceKind
from comfy_core.errors import NormalizationError, ParseError
from comfy_core.normalizer import WorkflowNormalizer

from conftest import SAMPLE_PROMPT


def _source(kind: SourceKind, data: bytes, name: str = "input") -> ClassifiedSource:
    return ClassifiedSource(kind=kind, payload=RawInputUnit(data=data, origin=InputOrigin.SELECT, name=name))


class TestWorkflowNormalizer:
    async def test_json_document(self, sample_json_bytes):
        workflow = await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, sample_json_bytes))
        assert workflow.to_api_dict() == SAMPLE_PROMPT

    async def test_png_image(self, sample_png_bytes):
        workflow = await WorkflowNormalizer().normalize(_source(SourceKind.PNG_IMAGE, sample_png_bytes))
        assert workflow.node_count == 7

    async def test_malformed_json_is_a_parse_error(self):
        with pytest.raises(ParseError, match="malformed JSON"):
            await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, b'{"3": '))

    async def test_undecodable_bytes_are_a_parse_error(self):
        with pytest.raises(ParseError, match="malformed JSON"):
            await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, b"\xff\xfe\x00"))

    async def test_unrecognized_schema(self):
        with pytest.raises(NormalizationError, match="not a recognized workflow schema"):
            await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, b'{"hello": "world"}'))

    async def test_reader_exceptions_are_wrapped(self):
        class Exploding:
            async def read(self, parsed):
                raise KeyError("boom")

        normalizer = WorkflowNormalizer(json_reader=Exploding())
        with pytest.raises(NormalizationError) as exc_info:
            await normalizer.normalize(_source(SourceKind.JSON_DOCUMENT, b"{}"))
        assert isinstance(exc_info.value.__cause__, KeyError)

    async def test_reader_pipeline_errors_pass_through(self):
        class Corrupt:
            async def read(self, data):
                raise ParseError("corrupt image (test)")

        normalizer = WorkflowNormalizer(image_reader=Corrupt())
        with pytest.raises(ParseError, match="corrupt image"):
            await normalizer.normalize(_source(SourceKind.PNG_IMAGE, b"x"))

    async def test_json_reader_receives_parsed_structure(self, sample_json_bytes):
        seen = []

        class Recording:
            async def read(self, parsed):
                seen.append(parsed)
                return await WorkflowNormalizer().json_reader.read(parsed)

        await WorkflowNormalizer(json_reader=Recording()).normalize(
            _source(SourceKind.JSON_DOCUMENT, sample_json_bytes)
        )
        assert seen == [SAMPLE_PROMPT]

    async def test_utf8_byte_order_mark_is_ignored(self, sample_json_bytes):
        data = b"\xef\xbb\xbf" + sample_json_bytes
        workflow = await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, data))
        assert workflow.to_api_dict() == SAMPLE_PROMPT

    async def test_excessive_nesting_is_a_parse_error(self):
        data = b"[" * 100_000 + b"]" * 100_000
        with pytest.raises(ParseError, match="nesting too deep"):
            await WorkflowNormalizer().normalize(_source(SourceKind.JSON_DOCUMENT, data))
