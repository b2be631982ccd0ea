"""
session.py
==========
Background event loop for a synchronous UI session.

Streamlit re-runs the script synchronously on every interaction, but the
state machine needs one long-lived event loop so that runs from earlier
interactions can still complete and be arbitrated. ``SessionLoop`` owns
that loop on a daemon thread, builds the pipeline components on it, and
hands work over with ``asyncio.run_coroutine_threadsafe``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable

from comfy_core.settings import TranspilerSettings, get_settings

from .acquisition import InputAcquisition, PasteEventSource
from .clipboard import ClipboardBridge, ClipboardService
from .pipeline_agent import PipelineState, PipelineStateMachine

logger = logging.getLogger(__name__)


class SessionLoop:
    """One event loop, state machine and paste subscription per UI session."""

    SESSION_KEY = "_comfy_session_loop"

    def __init__(
        self,
        settings: TranspilerSettings | None = None,
        clipboard: ClipboardService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.machine = PipelineStateMachine.from_settings(self.settings)
        self.paste_source = PasteEventSource()
        self.acquisition = InputAcquisition(
            machine=self.machine,
            bridge=ClipboardBridge(
                clipboard,
                strict=self.settings.strict_workflow_probe,
                encoding=self.settings.text_encoding,
            ),
            paste_source=self.paste_source,
        )

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="comfy-session-loop", daemon=True
        )
        self._thread.start()
        self.acquisition.install()
        self._closed = False

    # ------------------------------------------------------------------
    # Factory / session integration
    # ------------------------------------------------------------------

    @classmethod
    def get_or_create(cls, session: "dict") -> "SessionLoop":
        """
        Retrieve the SessionLoop stored in Streamlit's session_state, or
        create a fresh one if none exists.
        """
        if cls.SESSION_KEY not in session:
            logger.info("Initialising new pipeline session.")
            session[cls.SESSION_KEY] = cls()
        return session[cls.SESSION_KEY]

    @classmethod
    def reset(cls, session: "dict") -> "SessionLoop":
        """Tear down the current session loop and start a fresh one."""
        logger.info("Pipeline session: hard reset triggered.")
        existing = session.pop(cls.SESSION_KEY, None)
        if existing is not None:
            existing.close()
        return cls.get_or_create(session)

    # ------------------------------------------------------------------
    # Bridging
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self.machine.state

    def call(self, fn: Callable[..., Any], *args: Any, timeout: float | None = None) -> Any:
        """
        Run *fn* on the session loop and wait for its outcome.

        Coroutines and tasks returned by *fn* are awaited, so a submitted
        run has finished (or been superseded) when this returns.
        """
        if self._closed:
            raise RuntimeError("Session loop is closed.")
        future = asyncio.run_coroutine_threadsafe(self._invoke(fn, *args), self._loop)
        return future.result(timeout)

    @staticmethod
    async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, asyncio.Task):
            result = await result
        return result

    def close(self) -> None:
        if self._closed:
            return
        self.acquisition.uninstall()
        asyncio.run_coroutine_threadsafe(self.machine.aclose(), self._loop).result()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        self._closed = True
        logger.info("Pipeline session closed.")


__all__ = ["SessionLoop"]
