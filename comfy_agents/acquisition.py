"""
acquisition.py
==============
Unifies drag-and-drop, file selection and clipboard input into submissions
to the pipeline state machine.

Exactly one paste subscription exists per session; ``InputAcquisition``
installs it at session start and removes it at session end.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from comfy_core.classifier import IncomingFile, InputOrigin, RawInputUnit, is_supported_file
from comfy_core.errors import ClipboardAccessError

from .clipboard import ClipboardBridge, PasteEvent
from .pipeline_agent import PipelineStateMachine

logger = logging.getLogger(__name__)

PasteHandler = Callable[[PasteEvent], None]


class PasteEventSource:
    """Session-wide paste observer with a single subscriber slot."""

    def __init__(self) -> None:
        self._handler: PasteHandler | None = None

    @property
    def has_subscriber(self) -> bool:
        return self._handler is not None

    def subscribe(self, handler: PasteHandler) -> Callable[[], None]:
        if self._handler is not None:
            raise RuntimeError("Paste events already have a subscriber for this session.")
        self._handler = handler

        def unsubscribe() -> None:
            if self._handler is handler:
                self._handler = None

        return unsubscribe

    def dispatch(self, event: PasteEvent) -> PasteEvent:
        """Deliver *event* to the subscriber (if any) and return it."""
        if self._handler is not None:
            self._handler(event)
        return event


class InputAcquisition:
    """Single entry point for every user-driven input channel."""

    def __init__(
        self,
        machine: PipelineStateMachine,
        bridge: ClipboardBridge,
        paste_source: PasteEventSource,
    ) -> None:
        self.machine = machine
        self.bridge = bridge
        self.paste_source = paste_source
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def installed(self) -> bool:
        return self._unsubscribe is not None

    def install(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.paste_source.subscribe(self._on_paste)
            logger.info("Paste listener installed.")

    def uninstall(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Paste listener removed.")

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def files_dropped(self, files: Sequence[IncomingFile]) -> asyncio.Task | None:
        """Accept the first supported file of a drop; ignore the rest."""
        return self._submit_first(files, InputOrigin.DROP)

    def file_selected(self, file: IncomingFile) -> asyncio.Task | None:
        return self._submit_first([file], InputOrigin.SELECT)

    async def clipboard_read_requested(self) -> asyncio.Task | None:
        try:
            unit = await self.bridge.read_clipboard()
        except ClipboardAccessError as exc:
            self.machine.report_error(exc)
            return None
        if unit is None:
            return None
        return self.machine.submit(unit)

    async def copy_requested(self) -> bool:
        return await self.machine.copy_generated_code(self.bridge)

    def _on_paste(self, event: PasteEvent) -> None:
        unit = self.bridge.capture_paste(event)
        if unit is not None:
            self.machine.submit(unit)

    def _submit_first(
        self, files: Sequence[IncomingFile], origin: InputOrigin
    ) -> asyncio.Task | None:
        accepted = [f for f in files if is_supported_file(f)]
        if len(accepted) < len(files):
            logger.debug(
                "Ignored %d unsupported %s item(s).", len(files) - len(accepted), origin.value
            )
        if not accepted:
            return None
        return self.machine.submit(RawInputUnit.from_file(accepted[0], origin))


__all__ = ["InputAcquisition", "PasteEventSource"]
