"""Facade over the external code generator."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import GenerationError, PipelineError
from .transpiler import WorkflowTranspiler
from .workflow_reader import CanonicalWorkflow

logger = logging.getLogger(__name__)


class CodeGenerator(Protocol):
    """Synchronous or asynchronous ``generate(workflow) -> str``."""

    def generate(self, workflow: CanonicalWorkflow) -> Any: ...


@dataclass(frozen=True)
class GeneratedArtifact:
    """Generated source text, tied to the workflow that produced it."""

    source_text: str
    node_count: int
    workflow_fingerprint: str

    def belongs_to(self, workflow: CanonicalWorkflow) -> bool:
        return self.workflow_fingerprint == workflow.fingerprint()


class TranspilerInvoker:
    """
    Calls the generator and pairs its output with the input workflow.

    The generator may return text directly or an awaitable; both are treated
    as a potential suspension point.
    """

    def __init__(self, generator: CodeGenerator | None = None) -> None:
        self.generator = generator or WorkflowTranspiler()

    async def generate(self, workflow: CanonicalWorkflow) -> GeneratedArtifact:
        try:
            result = self.generator.generate(workflow)
            if inspect.isawaitable(result):
                result = await result
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("Code generator raised unexpectedly")
            raise GenerationError(f"code generation failed ({exc})") from exc

        if not isinstance(result, str):
            raise GenerationError(
                f"code generation failed (generator returned {type(result).__name__}, not text)"
            )

        return GeneratedArtifact(
            source_text=result,
            node_count=workflow.node_count,
            workflow_fingerprint=workflow.fingerprint(),
        )


__all__ = ["CodeGenerator", "GeneratedArtifact", "TranspilerInvoker"]
