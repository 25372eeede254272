import pytest

from pathlib import Path

from stepwise.core.orchestrator import run_task
from stepwise.core.session import Session
from stepwise.llm import DummyLLM
from stepwise.memory.journal import Journal
from stepwise.security.kill import CancelToken, KillSwitchEngaged, RunCancelled
from conftest import fake_venv, make_settings


def test_create_wires_shared_collaborators(settings):
    s = Session.create(settings, journal=False)
    assert isinstance(s.llm, DummyLLM)
    assert s.journal is None
    assert s.runner.sandbox is s.sandbox
    assert s.dispatcher.cancel is s.cancel
    assert s.cancel.kill_switch_path == settings.general.kill_switch_path

def test_journal_follows_memory_setting(tmp_path):
    with Session.create(make_settings(tmp_path)) as s:
        assert isinstance(s.journal, Journal)
    s = Session.create(make_settings(tmp_path, {"memory.enabled": "false"}))
    assert s.journal is None

def test_two_sessions_are_independent(tmp_path):
    a = make_settings(tmp_path / "a")
    b = make_settings(tmp_path / "b")
    fake_venv(Path(a.general.workspace_path))
    fake_venv(Path(b.general.workspace_path))
    ra = run_task(Session.create(a, journal=False), "un")
    rb = run_task(Session.create(b, journal=False), "deux")
    assert ra.status == rb.status == "completed"
    assert ra.plan.id != rb.plan.id
    assert not (Path(a.general.workspace_path) / "scripts").samefile(Path(b.general.workspace_path) / "scripts")

def test_cancel_token(tmp_path):
    kill = tmp_path / "kill.switch"
    token = CancelToken(str(kill))
    token.check()
    assert token.wait(0.05) is False
    kill.write_text("KILLED", encoding="utf-8")
    assert token.cancelled
    with pytest.raises(KillSwitchEngaged):
        token.check()
    other = CancelToken()
    other.cancel()
    with pytest.raises(RunCancelled):
        other.check()
    assert other.wait(10) is True
