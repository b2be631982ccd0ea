"""Session loop and settings tests."""

from __future__ import annotations

import json

import pytest

from comfy_agents.clipboard import PasteEvent
from comfy_agents.pipeline_agent import PipelinePhase
from comfy_agents.session import SessionLoop
from comfy_core.classifier import IncomingFile
from comfy_core.settings import TranspilerSettings, get_settings

from conftest import SAMPLE_PROMPT, FakeClipboard


@pytest.fixture
def session():
    loop = SessionLoop(settings=TranspilerSettings(_env_file=None), clipboard=FakeClipboard())
    yield loop
    loop.close()


class TestSessionLoop:
    def test_call_waits_for_the_submitted_run(self, session):
        incoming = IncomingFile("flow.json", "application/json", json.dumps(SAMPLE_PROMPT).encode())
        session.call(session.acquisition.file_selected, incoming)
        assert session.state.phase is PipelinePhase.READY
        assert session.state.source_name == "flow.json"

    def test_paste_dispatch_returns_the_event(self, session):
        event = session.call(session.paste_source.dispatch, PasteEvent(text="plain text"))
        assert not event.default_prevented
        assert session.state.phase is PipelinePhase.IDLE

    def test_paste_listener_is_installed_for_the_session(self, session):
        assert session.acquisition.installed
        assert session.paste_source.has_subscriber

    def test_get_or_create_and_reset(self):
        store: dict = {}
        first = SessionLoop.get_or_create(store)
        try:
            assert SessionLoop.get_or_create(store) is first
            second = SessionLoop.reset(store)
            assert second is not first
            assert not first.acquisition.installed
            with pytest.raises(RuntimeError):
                first.call(lambda: None)
        finally:
            store[SessionLoop.SESSION_KEY].close()

    def test_close_is_idempotent(self):
        loop = SessionLoop(settings=TranspilerSettings(_env_file=None), clipboard=FakeClipboard())
        loop.close()
        loop.close()


class TestSettings:
    def test_defaults(self):
        settings = TranspilerSettings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.strict_workflow_probe is False
        assert settings.comfyui_server_url == "http://127.0.0.1:8188"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("COMFY_TRANSPILER_LOG_LEVEL", "debug")
        monkeypatch.setenv("COMFY_TRANSPILER_STRICT_WORKFLOW_PROBE", "true")
        monkeypatch.setenv("COMFY_TRANSPILER_COMFYUI_SERVER_URL", "http://gpu:8188/")
        settings = get_settings()
        assert settings.log_level == "DEBUG"
        assert settings.strict_workflow_probe is True
        assert settings.comfyui_server_url == "http://gpu:8188"

    def test_strict_probe_reaches_the_session(self, monkeypatch):
        loop = SessionLoop(
            settings=TranspilerSettings(_env_file=None, strict_workflow_probe=True),
            clipboard=FakeClipboard(),
        )
        try:
            event = loop.call(loop.paste_source.dispatch, PasteEvent(text='{"title": "notes"}'))
            assert not event.default_prevented
        finally:
            loop.close()
