"""comfy_agents — input acquisition and pipeline orchestration."""
from .acquisition import InputAcquisition, PasteEventSource
from .clipboard import ClipboardBridge, ClipboardService, PasteEvent, PyperclipClipboard
from .pipeline_agent import EventKind, PipelineEvent, PipelinePhase, PipelineState, PipelineStateMachine
from .session import SessionLoop

__all__ = [
    "ClipboardBridge", "ClipboardService", "EventKind", "InputAcquisition", "PasteEvent",
    "PasteEventSource", "PipelineEvent", "PipelinePhase", "PipelineState", "PipelineStateMachine",
    "PyperclipClipboard", "SessionLoop",
]
