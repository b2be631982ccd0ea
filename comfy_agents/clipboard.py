"""
clipboard.py
============
Clipboard bridge: turns paste events and on-demand clipboard reads into
raw input units.

Two acquisition modes:
    - Passive: ``capture_paste`` inspects a paste event. Supported files and
      workflow-shaped JSON text are claimed (default paste suppressed);
      anything else is left alone without surfacing an error.
    - Active: ``read_clipboard`` reads clipboard text on explicit request and
      always submits non-empty content, so its errors surface.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import pyperclip

from comfy_core.classifier import (
    IncomingFile,
    InputOrigin,
    RawInputUnit,
    is_supported_file,
    probe_workflow_object,
)
from comfy_core.errors import ClipboardAccessError

logger = logging.getLogger(__name__)

_MANUAL_PASTE_HINT = "paste the workflow manually with Ctrl+V / Cmd+V instead"


class ClipboardService(Protocol):
    async def read_text(self) -> str: ...

    async def write_text(self, text: str) -> None: ...


class PyperclipClipboard:
    """Host clipboard via pyperclip, run off the event loop thread."""

    async def read_text(self) -> str:
        try:
            return await asyncio.to_thread(pyperclip.paste) or ""
        except pyperclip.PyperclipException as exc:
            logger.error("Clipboard read failed: %s", exc)
            raise ClipboardAccessError(
                f"could not read the clipboard ({exc}); {_MANUAL_PASTE_HINT}"
            ) from exc

    async def write_text(self, text: str) -> None:
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as exc:
            logger.error("Clipboard write failed: %s", exc)
            raise ClipboardAccessError(f"could not write to the clipboard ({exc})") from exc


@dataclass
class PasteEvent:
    """A paste carrying files and/or text. Handlers may suppress the default paste."""
    files: tuple[IncomingFile, ...] = ()
    text: str | None = None
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


class ClipboardBridge:
    def __init__(
        self,
        clipboard: ClipboardService | None = None,
        strict: bool = False,
        encoding: str = "utf-8",
    ) -> None:
        self.clipboard = clipboard or PyperclipClipboard()
        self.strict = strict
        self.encoding = encoding

    def capture_paste(self, event: PasteEvent) -> RawInputUnit | None:
        """Claim *event* if it carries a workflow; otherwise leave it untouched."""
        if event.files:
            first = event.files[0]
            if is_supported_file(first):
                event.prevent_default()
                return RawInputUnit.from_file(first, InputOrigin.PASTE_FILE)

        if event.text:
            if probe_workflow_object(event.text, strict=self.strict) is not None:
                event.prevent_default()
                return RawInputUnit.from_text(event.text, InputOrigin.PASTE_TEXT, self.encoding)
            logger.debug("Ignoring paste: text is not a workflow JSON object.")

        return None

    async def read_clipboard(self) -> RawInputUnit | None:
        """
        Read clipboard text on explicit user request.

        Returns None for an empty clipboard. Raises ClipboardAccessError when
        the host refuses access.
        """
        text = await self.clipboard.read_text()
        if not text:
            logger.info("Clipboard is empty; nothing to process.")
            return None
        return RawInputUnit.from_text(text, InputOrigin.CLIPBOARD_READ, self.encoding)

    async def write_text(self, text: str) -> None:
        await self.clipboard.write_text(text)


__all__ = ["ClipboardBridge", "ClipboardService", "PasteEvent", "PyperclipClipboard"]
