"""
pipeline_agent.py
=================
Pipeline orchestration agent.

This module is the single authoritative coordinator between the input
channels, the pipeline stages (classifier, normalizer, invoker) and the
presentation layer.

Responsibilities:
    - Own the only externally observable state (``PipelineState``).
    - Run every accepted input through classify → normalize → generate as
      its own asyncio task.
    - Apply last-writer-wins arbitration: each run gets a monotonically
      increasing sequence id, and a completed run only touches state if it
      is still the latest issued one.
    - Emit structured events for the UI to render.

All state writes happen on the event loop thread, so no lock is needed.
External services are never cancelled; superseded results are discarded
when they arrive.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import PurePath
from typing import TYPE_CHECKING, Callable

from comfy_core.classifier import RawInputUnit, SourceClassifier
from comfy_core.errors import (
    ClassificationError,
    ClipboardAccessError,
    GenerationError,
    NormalizationError,
    PipelineError,
    PipelineStage,
)
from comfy_core.invoker import GeneratedArtifact, TranspilerInvoker
from comfy_core.normalizer import WorkflowNormalizer
from comfy_core.settings import TranspilerSettings
from comfy_core.transpiler import WorkflowTranspiler
from comfy_core.workflow_reader import CanonicalWorkflow

if TYPE_CHECKING:
    from .clipboard import ClipboardService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class PipelinePhase(Enum):
    IDLE = auto()
    RUNNING = auto()
    READY = auto()
    FAILED = auto()


# Allowed transitions (phase → set of valid next phases)
_VALID_TRANSITIONS: dict[PipelinePhase, set[PipelinePhase]] = {
    PipelinePhase.IDLE:    {PipelinePhase.RUNNING, PipelinePhase.FAILED, PipelinePhase.IDLE},
    PipelinePhase.RUNNING: {PipelinePhase.RUNNING, PipelinePhase.READY, PipelinePhase.FAILED, PipelinePhase.IDLE},
    PipelinePhase.READY:   {PipelinePhase.RUNNING, PipelinePhase.FAILED, PipelinePhase.IDLE},
    PipelinePhase.FAILED:  {PipelinePhase.RUNNING, PipelinePhase.FAILED, PipelinePhase.IDLE},
}

_STAGE_ERRORS: dict[PipelineStage, type[PipelineError]] = {
    PipelineStage.CLASSIFICATION: ClassificationError,
    PipelineStage.NORMALIZATION: NormalizationError,
    PipelineStage.GENERATION: GenerationError,
}

DEFAULT_DOWNLOAD_NAME = "workflow_client.py"


@dataclass(frozen=True)
class PipelineState:
    """
    Immutable snapshot of the pipeline.

    Ready states always carry a workflow and the artifact generated from
    exactly that workflow; Failed states carry only the error.
    """
    phase: PipelinePhase = PipelinePhase.IDLE
    source_name: str | None = None
    workflow: CanonicalWorkflow | None = None
    artifact: GeneratedArtifact | None = None
    error_message: str | None = None
    error_stage: PipelineStage | None = None

    @classmethod
    def idle(cls) -> "PipelineState":
        return cls()

    @classmethod
    def running(cls, source_name: str) -> "PipelineState":
        return cls(phase=PipelinePhase.RUNNING, source_name=source_name)

    @classmethod
    def ready(
        cls, workflow: CanonicalWorkflow, artifact: GeneratedArtifact, source_name: str
    ) -> "PipelineState":
        return cls(
            phase=PipelinePhase.READY,
            source_name=source_name,
            workflow=workflow,
            artifact=artifact,
        )

    @classmethod
    def failed(cls, error: PipelineError) -> "PipelineState":
        return cls(
            phase=PipelinePhase.FAILED,
            error_message=error.user_message,
            error_stage=error.stage,
        )

    @property
    def is_busy(self) -> bool:
        return self.phase is PipelinePhase.RUNNING

    @property
    def can_copy(self) -> bool:
        return self.phase is PipelinePhase.READY and self.artifact is not None

    @property
    def generated_code(self) -> str | None:
        return self.artifact.source_text if self.artifact else None


# ---------------------------------------------------------------------------
# Event system
# ---------------------------------------------------------------------------


class EventKind(Enum):
    STATE_CHANGED = "state_changed"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class PipelineEvent:
    """Immutable event emitted by the state machine for the UI layer to consume."""
    kind: EventKind
    message: str
    state: PipelineState
    timestamp: float = field(default_factory=time.monotonic)


# Callback signature: receives a PipelineEvent, returns nothing.
EventCallback = Callable[[PipelineEvent], None]


@dataclass(frozen=True)
class PipelineRun:
    """Arbitration token for one end-to-end attempt."""
    sequence_id: int
    source_name: str


# ---------------------------------------------------------------------------
# Main agent
# ---------------------------------------------------------------------------


class PipelineStateMachine:
    """
    Last-writer-wins orchestrator for workflow ingestion and transpilation.

    Lifecycle
    ---------
    One instance lives for the whole UI session, bound to a single event
    loop. ``submit()`` must be called from that loop; it switches to
    ``RUNNING`` before returning and schedules the run as a task.

    Example
    -------
    ::

        machine = PipelineStateMachine()
        machine.subscribe(render)
        machine.submit(RawInputUnit.from_file(file, InputOrigin.DROP))
        await machine.wait_idle()
        if machine.state.can_copy:
            await machine.copy_generated_code(clipboard)
    """

    def __init__(
        self,
        classifier: SourceClassifier | None = None,
        normalizer: WorkflowNormalizer | None = None,
        invoker: TranspilerInvoker | None = None,
    ) -> None:
        self._classifier = classifier or SourceClassifier()
        self._normalizer = normalizer or WorkflowNormalizer()
        self._invoker = invoker or TranspilerInvoker()
        self._state = PipelineState.idle()
        self._latest_issued = 0
        self._tasks: set[asyncio.Task] = set()
        self._callbacks: list[EventCallback] = []

    @classmethod
    def from_settings(cls, settings: TranspilerSettings) -> "PipelineStateMachine":
        return cls(
            classifier=SourceClassifier(
                strict=settings.strict_workflow_probe, encoding=settings.text_encoding
            ),
            normalizer=WorkflowNormalizer(encoding=settings.text_encoding),
            invoker=TranspilerInvoker(WorkflowTranspiler(server_url=settings.comfyui_server_url)),
        )

    # ------------------------------------------------------------------
    # Public state property (read-only for UI)
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def can_copy(self) -> bool:
        return self._state.can_copy

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Event subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a UI callback; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, kind: EventKind, message: str) -> None:
        event = PipelineEvent(kind=kind, message=message, state=self._state)
        logger.debug("Pipeline event: %s — %s", kind.value, message)
        for cb in list(self._callbacks):
            try:
                cb(event)
            except Exception as exc:
                logger.warning("Event callback raised: %s", exc)

    # ------------------------------------------------------------------
    # Run issuance
    # ------------------------------------------------------------------

    def submit(self, unit: RawInputUnit) -> asyncio.Task:
        """
        Accept a raw input unit and start a new authoritative run.

        The state is ``RUNNING`` when this returns, whatever was in flight.
        """
        loop = asyncio.get_running_loop()
        run = self._issue(unit.display_name)
        self._transition(PipelineState.running(run.source_name))

        task = loop.create_task(self._execute(run, unit), name=f"pipeline-run-{run.sequence_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process(self, unit: RawInputUnit) -> PipelineState:
        """Submit *unit*, wait for its run, and return the resulting state."""
        await self.submit(unit)
        return self._state

    def _issue(self, source_name: str) -> PipelineRun:
        self._latest_issued += 1
        run = PipelineRun(sequence_id=self._latest_issued, source_name=source_name)
        logger.info("Issued run #%d for '%s'.", run.sequence_id, source_name)
        return run

    # ------------------------------------------------------------------
    # Run execution
    # ------------------------------------------------------------------

    async def _execute(self, run: PipelineRun, unit: RawInputUnit) -> None:
        stage = PipelineStage.CLASSIFICATION
        try:
            source = self._classifier.classify(unit)
            stage = PipelineStage.NORMALIZATION
            workflow = await self._normalizer.normalize(source)
            stage = PipelineStage.GENERATION
            artifact = await self._invoker.generate(workflow)
        except asyncio.CancelledError:
            logger.debug("Run #%d cancelled.", run.sequence_id)
            raise
        except PipelineError as exc:
            self._complete(run, PipelineState.failed(exc))
        except Exception as exc:
            logger.exception("Run #%d raised unexpectedly during %s", run.sequence_id, stage.value)
            self._complete(run, PipelineState.failed(_STAGE_ERRORS[stage](f"unexpected error ({exc})")))
        else:
            self._complete(run, PipelineState.ready(workflow, artifact, run.source_name))

    def _complete(self, run: PipelineRun, outcome: PipelineState) -> None:
        if run.sequence_id != self._latest_issued:
            logger.debug(
                "Discarding run #%d (%s); run #%d is authoritative.",
                run.sequence_id,
                outcome.phase.name,
                self._latest_issued,
            )
            return

        self._transition(outcome)
        if outcome.phase is PipelinePhase.FAILED:
            logger.error("Run #%d failed: %s", run.sequence_id, outcome.error_message)
            self._emit(EventKind.ERROR, outcome.error_message or "")
        else:
            logger.info(
                "Run #%d ready: '%s' — %d nodes.",
                run.sequence_id,
                run.source_name,
                outcome.workflow.node_count if outcome.workflow else 0,
            )
            self._emit(EventKind.INFO, f"Processed '{run.source_name}'.")

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def report_error(self, error: PipelineError) -> None:
        """Publish an acquisition-level error; supersedes any in-flight run."""
        self._issue(f"<{error.stage.value}>")
        self._transition(PipelineState.failed(error))
        logger.error("Acquisition failed: %s", error.user_message)
        self._emit(EventKind.ERROR, error.user_message)

    def dismiss_error(self) -> None:
        """Return from FAILED to IDLE without re-running anything."""
        if self._state.phase is PipelinePhase.FAILED:
            self._transition(PipelineState.idle())

    def reset(self) -> None:
        """Invalidate every in-flight run and return to IDLE."""
        self._latest_issued += 1
        self._transition(PipelineState.idle())

    async def copy_generated_code(self, clipboard: ClipboardService) -> bool:
        """
        Write the current generated code to *clipboard*.

        Returns False, writing nothing, unless the state is READY.
        """
        state = self._state
        if not state.can_copy:
            return False
        try:
            await clipboard.write_text(state.artifact.source_text)
        except ClipboardAccessError as exc:
            logger.warning("Copy failed: %s", exc.user_message)
            self._emit(EventKind.WARNING, exc.user_message)
            return False
        self._emit(EventKind.INFO, "Generated code copied to clipboard.")
        return True

    def download_filename(self) -> str:
        if self._state.phase is not PipelinePhase.READY or not self._state.source_name:
            return DEFAULT_DOWNLOAD_NAME
        stem = re.sub(r"[^\w.-]+", "_", PurePath(self._state.source_name).stem).strip("_")
        return f"{stem or 'workflow'}_client.py"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until no run is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel pending runs; their results never reach the state."""
        self._latest_issued += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._callbacks.clear()

    # ------------------------------------------------------------------
    # Internal — state machine
    # ------------------------------------------------------------------

    def _transition(self, target: PipelineState) -> None:
        current = self._state.phase
        allowed = _VALID_TRANSITIONS.get(current, set())

        if target.phase not in allowed:
            raise RuntimeError(
                f"Invalid pipeline transition: {current.name} → {target.phase.name}. "
                f"Allowed targets: {[p.name for p in allowed]}"
            )

        logger.info("Pipeline: %s → %s", current.name, target.phase.name)
        self._state = target
        self._emit(EventKind.STATE_CHANGED, f"Phase: {target.phase.name}")


__all__ = [
    "EventKind",
    "PipelineEvent",
    "PipelinePhase",
    "PipelineRun",
    "PipelineState",
    "PipelineStateMachine",
]
