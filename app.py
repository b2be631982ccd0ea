"""
app.py
======
Streamlit frontend — pure rendering layer.
All input handling, state transitions and error handling are delegated to
comfy_agents (InputAcquisition → PipelineStateMachine) running on the
session's background event loop.

Run with:  streamlit run app.py
"""
from __future__ import annotations

import logging

import streamlit as st

from comfy_agents import PasteEvent, PipelinePhase, SessionLoop
from comfy_core import IncomingFile, get_settings

settings = get_settings()
logger = logging.getLogger(__name__)
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s — %(message)s")

# ---------------------------------------------------------------------------
# Page config (must be FIRST Streamlit call)
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="ComfyUI Workflow Transpiler",
    page_icon="🧩",
    layout="wide",
    initial_sidebar_state="expanded",
)

session: SessionLoop = SessionLoop.get_or_create(st.session_state)
acquisition = session.acquisition

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
_PHASE_COLORS = {
    PipelinePhase.IDLE: "gray", PipelinePhase.RUNNING: "blue",
    PipelinePhase.READY: "green", PipelinePhase.FAILED: "red",
}

with st.sidebar:
    st.markdown("## 🧩 Workflow Transpiler")
    st.divider()
    st.markdown(f"**ComfyUI server:** `{settings.comfyui_server_url}`")
    st.markdown(f"**Strict JSON probe:** {'on' if settings.strict_workflow_probe else 'off'}")
    st.divider()
    if st.button("🔄 Reset Session", use_container_width=True):
        SessionLoop.reset(st.session_state)
        st.session_state.pop("_last_upload_id", None)
        st.rerun()

# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------
st.title("ComfyUI Workflow Transpiler")
st.markdown("Upload or drag & drop a ComfyUI `.json` (API format) or `.png` workflow file, or paste workflow JSON.")

c_upload, c_paste = st.columns(2)

with c_upload:
    uploaded = st.file_uploader("Drag 'n' drop a file here, or click to select a file", type=["json", "png"])
    # Streamlit re-renders the same upload on every rerun; submit each upload once.
    if uploaded is not None and st.session_state.get("_last_upload_id") != uploaded.file_id:
        st.session_state["_last_upload_id"] = uploaded.file_id
        incoming = IncomingFile(name=uploaded.name, mime_type=uploaded.type, data=uploaded.getvalue())
        with st.spinner("Processing, please wait..."):
            session.call(acquisition.file_selected, incoming)

with c_paste:
    pasted = st.text_area("Paste workflow JSON", height=120, key="paste_box")
    c_submit, c_clip = st.columns(2)
    with c_submit:
        if st.button("📋 Use pasted text", use_container_width=True, disabled=not pasted):
            with st.spinner("Processing, please wait..."):
                event = session.call(session.paste_source.dispatch, PasteEvent(text=pasted))
            if not event.default_prevented:
                st.info("Pasted text is not a workflow JSON object; nothing to process.")
    with c_clip:
        if st.button("📎 Read clipboard", use_container_width=True):
            with st.spinner("Reading clipboard..."):
                session.call(acquisition.clipboard_read_requested)

# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------
state = session.state
color = _PHASE_COLORS.get(state.phase, "gray")
st.markdown(f"**Status:** :{color}[{state.phase.name}]")

if state.phase is PipelinePhase.RUNNING:
    st.info(f"Processing **{state.source_name}**…")
elif state.phase is PipelinePhase.FAILED:
    c_err, c_dismiss = st.columns([4, 1])
    with c_err:
        st.error(state.error_message, icon="🚨")
    with c_dismiss:
        if st.button("Dismiss", use_container_width=True):
            session.call(session.machine.dismiss_error)
            st.rerun()
elif state.phase is PipelinePhase.READY:
    st.success(f"Processed file: **{state.source_name}** — {state.workflow.node_count} nodes.")

# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------
if state.phase is PipelinePhase.READY:
    c_copy, c_dl, _ = st.columns([1, 1, 2])
    with c_copy:
        if st.button("📄 Copy code", use_container_width=True, disabled=not state.can_copy):
            if session.call(acquisition.copy_requested):
                st.toast("Generated code copied to clipboard.")
            else:
                st.warning("Could not copy to the clipboard; use the download button instead.")
    with c_dl:
        st.download_button(
            "⬇️ Download .py",
            data=state.generated_code or "",
            file_name=session.machine.download_filename(),
            mime="text/x-python",
            use_container_width=True,
        )

    c_wf, c_code = st.columns(2)
    with c_wf:
        st.subheader("Workflow Data (JSON)")
        st.code(state.workflow.to_json(), language="json")
    with c_code:
        st.subheader("Transpiled Code (Python)")
        st.code(state.generated_code, language="python", line_numbers=True)
