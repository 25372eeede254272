import pytest

from stepwise.tools.errors import ToolArgumentError, UnknownToolError
from stepwise.tools.requests import (
    ExecuteScriptFileRequest, FindFilesRequest, WriteFileRequest, describe_tools, parse_tool_request,
)

def test_parse_from_json_text():
    req = parse_tool_request("write_file", '{"filename": "a.txt", "content": "x"}')
    assert req == WriteFileRequest(filename="a.txt", content="x")

def test_missing_required_argument_has_no_default():
    with pytest.raises(ToolArgumentError) as e:
        parse_tool_request("write_file", {"filename": "a.txt"})
    assert "content" in str(e.value)

def test_unknown_tool():
    with pytest.raises(UnknownToolError) as e:
        parse_tool_request("rm_rf", {})
    assert str(e.value) == "Unknown tool: rm_rf"

def test_lenient_scalars_and_optional_fields():
    req = parse_tool_request("find_files", {"filename_pattern": "*.csv", "recursive": "false", "max_results": "5"})
    assert req == FindFilesRequest(filename_pattern="*.csv", recursive=False, max_results=5)
    req = parse_tool_request("execute_script_file", {"script_path": "s.py", "arguments": ["-v", 2]})
    assert req == ExecuteScriptFileRequest(script_path="s.py", arguments=["-v", "2"])

def test_wrong_type_and_bad_json():
    with pytest.raises(ToolArgumentError):
        parse_tool_request("read_file", {"filename": 12})
    with pytest.raises(ToolArgumentError):
        parse_tool_request("read_file", "{not json")

def test_catalogue_hides_external_tools():
    assert "find_files" in describe_tools()
    text = describe_tools(external=False)
    assert "find_files" not in text
    assert "write_file(filename, content)" in text
