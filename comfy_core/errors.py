"""
errors.py
=========
Exception taxonomy for the ingestion → normalization → generation pipeline.

Every failure the pipeline can surface carries the stage it happened in, so
the state machine can publish a single stage-qualified message without
inspecting exception types.
"""

from __future__ import annotations

from enum import Enum


class PipelineStage(str, Enum):
    CLASSIFICATION = "classification"
    PARSE = "parse"
    NORMALIZATION = "normalization"
    GENERATION = "generation"
    CLIPBOARD = "clipboard"


class PipelineError(Exception):
    """Base class for every user-visible pipeline failure."""

    stage: PipelineStage = PipelineStage.NORMALIZATION

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return f"{self.stage.value.capitalize()} error: {self.detail}"


class ClassificationError(PipelineError):
    """Input is neither a supported file type nor a JSON object."""

    stage = PipelineStage.CLASSIFICATION


class ParseError(PipelineError):
    """Malformed JSON or undecodable image bytes."""

    stage = PipelineStage.PARSE


class NormalizationError(PipelineError):
    """Well-formed input that does not hold a recognizable workflow."""

    stage = PipelineStage.NORMALIZATION


class GenerationError(PipelineError):
    """The workflow was normalized but code generation failed."""

    stage = PipelineStage.GENERATION


class ClipboardAccessError(PipelineError):
    """The host denied or failed an on-demand clipboard read or write."""

    stage = PipelineStage.CLIPBOARD


__all__ = [
    "ClassificationError",
    "ClipboardAccessError",
    "GenerationError",
    "NormalizationError",
    "ParseError",
    "PipelineError",
    "PipelineStage",
]
