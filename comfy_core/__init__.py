"""comfy_core — deterministic classification, normalization and code generation."""
from .classifier import ClassifiedSource, IncomingFile, InputOrigin, RawInputUnit, SourceClassifier, SourceKind
from .errors import (
    ClassificationError,
    ClipboardAccessError,
    GenerationError,
    NormalizationError,
    ParseError,
    PipelineError,
    PipelineStage,
)
from .invoker import GeneratedArtifact, TranspilerInvoker
from .normalizer import WorkflowNormalizer
from .settings import TranspilerSettings, get_settings
from .transpiler import WorkflowTranspiler
from .workflow_reader import ApiJsonWorkflowReader, CanonicalWorkflow, PngWorkflowReader, WorkflowNode

__all__ = [
    "ApiJsonWorkflowReader", "CanonicalWorkflow", "ClassificationError", "ClassifiedSource",
    "ClipboardAccessError", "GeneratedArtifact", "GenerationError", "IncomingFile", "InputOrigin",
    "NormalizationError", "ParseError", "PipelineError", "PipelineStage", "PngWorkflowReader",
    "RawInputUnit", "SourceClassifier", "SourceKind", "TranspilerInvoker", "TranspilerSettings",
    "WorkflowNode", "WorkflowNormalizer", "WorkflowTranspiler", "get_settings",
]
