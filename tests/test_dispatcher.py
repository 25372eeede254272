import json
from pathlib import Path

from stepwise.sandbox.environment import SandboxManager
from stepwise.sandbox.runner import ScriptRunner
from stepwise.tools.dispatcher import ToolDispatcher
from conftest import make_settings, fake_venv

def _dispatcher(settings, journal=None) -> ToolDispatcher:
    sb = SandboxManager(settings)
    sb.initialize()
    return ToolDispatcher(settings, sb, ScriptRunner(sb), journal=journal)

def _call(d: ToolDispatcher, name: str, **args) -> dict:
    return json.loads(d.dispatch(name, args))

def test_write_then_read_then_list(ready_settings):
    d = _dispatcher(ready_settings)
    out = _call(d, "write_file", filename="notes/a.txt", content="bonjour")
    assert out == {"success": True, "message": "File written: notes/a.txt", "path": "notes/a.txt"}
    assert _call(d, "read_file", filename="notes/a.txt")["content"] == "bonjour"
    listing = _call(d, "list_files")
    assert "notes/a.txt" in listing["files"]
    assert not any(f.startswith("venv/") for f in listing["files"])

def test_path_escape_is_rejected_and_nothing_written(ready_settings, tmp_path):
    d = _dispatcher(ready_settings)
    out = _call(d, "write_file", filename="../../etc/passwd", content="x")
    assert out["success"] is False
    assert out["error_type"] == "PathEscapeError"
    assert not (tmp_path / "etc" / "passwd").exists()
    assert not Path(tmp_path.parent / "etc" / "passwd").exists()

def test_read_missing_file(ready_settings):
    out = _call(_dispatcher(ready_settings), "read_file", filename="absent.txt")
    assert out["success"] is False
    assert out["error"] == "File not found: absent.txt"

def test_unknown_tool_and_missing_argument(ready_settings):
    d = _dispatcher(ready_settings)
    out = _call(d, "format_disk")
    assert out["success"] is False and out["error"] == "Unknown tool: format_disk"
    out = _call(d, "execute_python")
    assert out["success"] is False and "script_content" in out["error"]

def test_execute_python_payload(ready_settings):
    d = _dispatcher(ready_settings)
    outcome = d.invoke("execute_python", {"script_content": "open('output/r.txt','w').write('1')\nprint('ok')"})
    assert outcome.success
    assert outcome.payload["exit_code"] == 0
    assert outcome.payload["stdout"].strip() == "ok"
    assert outcome.payload["generated_files"] == ["output/r.txt"]
    assert outcome.execution is not None and outcome.execution.success

def test_external_tools(ready_settings, tmp_path):
    ext = tmp_path / "external"
    ext.mkdir()
    (ext / "Rapport_2024.CSV").write_text("x,y\n1,2\n", encoding="utf-8")
    (ext / "photo.png").write_bytes(b"\x89PNG")
    d = _dispatcher(ready_settings)

    found = _call(d, "find_files", filename_pattern="rapport", search_path=str(ext))
    assert found["count"] == 1
    assert found["files"][0]["name"] == "Rapport_2024.CSV"
    assert set(found["files"][0]) == {"path", "name", "size_bytes", "last_modified", "extension"}
    assert found["files"][0]["extension"] == ".csv"

    read = _call(d, "read_external_file", file_path=str(ext / "Rapport_2024.CSV"))
    assert read["content"].startswith("x,y")
    assert read["truncated"] is False
    binary = _call(d, "read_external_file", file_path=str(ext / "photo.png"))
    assert binary["binary"] is True and "content" not in binary

    copied = _call(d, "copy_to_workspace", source_path=str(ext / "Rapport_2024.CSV"), destination_name="data/r.csv")
    assert copied["workspace_relative_path"] == "data/r.csv"
    assert (Path(ready_settings.general.workspace_path) / "data" / "r.csv").exists()

def test_copy_destination_cannot_escape(ready_settings, tmp_path):
    src = tmp_path / "src.txt"
    src.write_text("x", encoding="utf-8")
    out = _call(_dispatcher(ready_settings), "copy_to_workspace", source_path=str(src), destination_name="../../evil.txt")
    assert out["success"] is False
    assert not (tmp_path / "evil.txt").exists()

def test_external_tools_can_be_disabled(tmp_path):
    s = make_settings(tmp_path, {"tools.external_files": "false"})
    fake_venv(tmp_path / "ws")
    out = _call(_dispatcher(s), "find_files", filename_pattern="x", search_path=str(tmp_path))
    assert out["success"] is False
    assert out["error_type"] == "ToolDisabledError"

class _Journal:
    def __init__(self):
        self.calls, self.artifacts = [], []

    def tool_call(self, name, success, arguments, payload):
        self.calls.append((name, success, arguments))

    def artifact(self, path, meta=None):
        self.artifacts.append(Path(path).name)

def test_calls_are_journaled(ready_settings):
    j = _Journal()
    d = _dispatcher(ready_settings, journal=j)
    d.dispatch("write_file", '{"filename": "a.txt", "content": "x"}')
    d.dispatch("read_file", {"filename": "../x"})
    assert [c[:2] for c in j.calls] == [("write_file", True), ("read_file", False)]
    assert j.artifacts == ["a.txt"]
