from __future__ import annotations
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional
from ..config import Settings
from ..core.types import ExecutionResult
from ..security.kill import CancelToken
from . import files
from .errors import ToolDisabledError
from .requests import (
    EXTERNAL_TOOLS, CopyToWorkspaceRequest, ExecutePythonRequest, ExecuteScriptFileRequest,
    FindFilesRequest, InstallPackageRequest, ListFilesRequest, ReadExternalFileRequest,
    ReadFileRequest, WriteFileRequest, parse_tool_request,
)

if TYPE_CHECKING:
    from ..sandbox.environment import SandboxManager
    from ..sandbox.runner import ScriptRunner

__all__ = ["ToolDispatcher", "ToolOutcome", "format_execution"]

def format_execution(result: ExecutionResult) -> dict:
    return {
        "success": result.success,
        "status": result.status.value,
        "exit_code": result.exit_code,
        "stdout": result.output,
        "stderr": result.stderr,
        "execution_time_ms": int(result.elapsed * 1000),
        "script_path": result.script_path,
        "generated_files": list(result.generated_artifacts),
        "error": result.error_message,
    }

@dataclass
class ToolOutcome:
    tool: str
    payload: dict
    execution: Optional[ExecutionResult] = None
    artifacts: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return bool(self.payload.get("success"))

    def to_json(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False, default=str)

class ToolDispatcher:
    """
    Routage exact nom -> handler. Toute erreur (argument, chemin, outil inconnu,
    exception d'un handler) devient un résultat {"success": false, ...}:
    un mauvais appel d'outil n'interrompt jamais le tour de l'agent.
    """
    def __init__(self, settings: Settings, sandbox: SandboxManager, runner: ScriptRunner, *,
                 journal=None, cancel: CancelToken | None = None):
        self.settings = settings
        self.sandbox = sandbox
        self.runner = runner
        self.journal = journal
        self.cancel = cancel
        self._handlers: dict[type, Callable[[Any], ToolOutcome]] = {
            WriteFileRequest: self._write_file,
            ReadFileRequest: self._read_file,
            ListFilesRequest: self._list_files,
            ExecutePythonRequest: self._execute_python,
            ExecuteScriptFileRequest: self._execute_script_file,
            InstallPackageRequest: self._install_package,
            FindFilesRequest: self._find_files,
            ReadExternalFileRequest: self._read_external_file,
            CopyToWorkspaceRequest: self._copy_to_workspace,
        }

    @property
    def root(self):
        return self.sandbox.workspace_path

    def dispatch(self, tool_name: str, arguments: str | Mapping[str, Any] | None) -> str:
        return self.invoke(tool_name, arguments).to_json()

    def invoke(self, tool_name: str, arguments: str | Mapping[str, Any] | None) -> ToolOutcome:
        try:
            request = parse_tool_request(tool_name, arguments)
            if tool_name in EXTERNAL_TOOLS and not self.settings.tools.external_files:
                raise ToolDisabledError(f"{tool_name}: fichiers externes désactivés (profil {self.settings.general.profile})")
            if self.cancel is not None:
                self.cancel.check()
            outcome = self._handlers[type(request)](request)
        except Exception as e:
            outcome = ToolOutcome(tool_name, {"success": False, "error": str(e) or type(e).__name__, "error_type": type(e).__name__, "tool": tool_name})
        self._record(tool_name, arguments, outcome)
        return outcome

    def _record(self, tool_name: str, arguments, outcome: ToolOutcome) -> None:
        if self.journal is None:
            return
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                arguments = {"raw": arguments}
        self.journal.tool_call(tool_name, outcome.success, dict(arguments or {}), outcome.payload)
        for rel in outcome.artifacts:
            self.journal.artifact(self.root / rel, {"tool": tool_name})

    # ---------------- Workspace ----------------
    def _write_file(self, req: WriteFileRequest) -> ToolOutcome:
        dest = files.safe_write_text(self.root, req.filename, req.content)
        rel = files.relative_to_workspace(self.root, dest)
        return ToolOutcome(req.TOOL, {"success": True, "message": f"File written: {rel}", "path": rel}, artifacts=(rel,))

    def _read_file(self, req: ReadFileRequest) -> ToolOutcome:
        content = files.safe_read_text(self.root, req.filename)
        if content is None:
            return ToolOutcome(req.TOOL, {"success": False, "error": f"File not found: {req.filename}", "tool": req.TOOL})
        return ToolOutcome(req.TOOL, {"success": True, "content": content})

    def _list_files(self, req: ListFilesRequest) -> ToolOutcome:
        found = files.list_workspace_files(self.root, req.subdirectory, exclude=(self.sandbox.environment.venv_path.name,))
        return ToolOutcome(req.TOOL, {"success": True, "files": found, "count": len(found)})

    # ---------------- Exécution ----------------
    def _execute_python(self, req: ExecutePythonRequest) -> ToolOutcome:
        result = self.runner.execute_script_content(req.script_content, req.script_name)
        return ToolOutcome(req.TOOL, format_execution(result), execution=result, artifacts=result.generated_artifacts)

    def _execute_script_file(self, req: ExecuteScriptFileRequest) -> ToolOutcome:
        result = self.runner.execute_file(req.script_path, req.arguments)
        return ToolOutcome(req.TOOL, format_execution(result), execution=result, artifacts=result.generated_artifacts)

    def _install_package(self, req: InstallPackageRequest) -> ToolOutcome:
        outcome = self.sandbox.install_packages([req.package_name])
        return ToolOutcome(req.TOOL, {"success": outcome.success, "message": outcome.message})

    # ---------------- Hors workspace ----------------
    def _find_files(self, req: FindFilesRequest) -> ToolOutcome:
        t = self.settings.tools
        found, searched = files.find_files(
            req.filename_pattern,
            req.search_path,
            recursive=req.recursive,
            max_results=req.max_results or t.find_max_results,
            default_dirs=t.find_search_paths,
        )
        return ToolOutcome(req.TOOL, {"success": True, "files": found, "count": len(found), "searched_directories": searched})

    def _read_external_file(self, req: ReadExternalFileRequest) -> ToolOutcome:
        payload = files.read_external_file(req.file_path, max_size_kb=req.max_size_kb or self.settings.tools.read_external_max_kb)
        return ToolOutcome(req.TOOL, payload)

    def _copy_to_workspace(self, req: CopyToWorkspaceRequest) -> ToolOutcome:
        payload = files.copy_to_workspace(self.root, req.source_path, req.destination_name)
        return ToolOutcome(req.TOOL, payload, artifacts=(payload["workspace_relative_path"],))
