import pytest

from stepwise.core.types import ExecutionStatus
from stepwise.sandbox.environment import SandboxManager
from stepwise.sandbox.runner import ScriptRunner
from stepwise.security.kill import CancelToken
from stepwise.tools.errors import PathEscapeError
from conftest import fake_venv, make_settings

def _runner(settings, cancel=None) -> ScriptRunner:
    sb = SandboxManager(settings)
    sb.initialize()
    return ScriptRunner(sb, cancel)

def test_print_hello(ready_settings):
    r = _runner(ready_settings).execute_script_content("print('hello')\n")
    assert r.status is ExecutionStatus.SUCCESS
    assert r.exit_code == 0
    assert "hello" in r.output
    assert r.script_path.startswith("scripts/script_")

def test_failure_reports_last_stderr_line(ready_settings):
    r = _runner(ready_settings).execute_script_content("raise ValueError('nope')\n", "bad")
    assert r.status is ExecutionStatus.FAILED
    assert r.exit_code == 1
    assert r.error_message.startswith("Exit code 1")
    assert "ValueError: nope" in r.error_message
    assert r.script_path == "scripts/bad.py"

def test_generated_files_are_detected(ready_settings):
    code = "open('output/result.csv', 'w').write('a,b\\n')\n"
    r = _runner(ready_settings).execute_script_content(code)
    assert r.success
    assert r.generated_artifacts == ("output/result.csv",)

def test_cwd_is_workspace_root(ready_settings):
    r = _runner(ready_settings).execute_script_content("import os; print(os.getcwd())\n")
    assert r.output.strip().endswith("ws")

def test_timeout(tmp_path):
    s = make_settings(tmp_path, {"python.execution_timeout_sec": "1"})
    fake_venv(tmp_path / "ws")
    r = _runner(s).execute_script_content("import time; time.sleep(30)\n")
    assert r.status is ExecutionStatus.TIMED_OUT
    assert r.status.retryable

def test_cancelled(ready_settings):
    token = CancelToken()
    token.cancel()
    r = _runner(ready_settings, token).execute_script_content("import time; time.sleep(30)\n")
    assert r.status is ExecutionStatus.CANCELLED
    assert r.error_message == "Execution was cancelled"

def test_script_file_with_arguments(ready_settings):
    runner = _runner(ready_settings)
    (runner.root / "tool.py").write_text("import sys; print(sys.argv[1:])\n", encoding="utf-8")
    r = runner.execute_file("tool.py", "--n 3")
    assert r.success
    assert "['--n', '3']" in r.output

def test_missing_script_and_escape(ready_settings):
    runner = _runner(ready_settings)
    assert runner.execute_file("absent.py").status is ExecutionStatus.FAILED
    with pytest.raises(PathEscapeError):
        runner.execute_file("../outside.py")
