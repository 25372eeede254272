from __future__ import annotations
import shlex, uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence
from ..core.types import ExecutionResult, ExecutionStatus
from ..security.kill import CancelToken
from ..tools.files import changed_since, relative_to_workspace, resolve_in_workspace, snapshot
from .environment import SandboxManager
from .process import run_process

__all__ = ["ScriptRunner", "default_script_name"]

def default_script_name() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"script_{ts}_{uuid.uuid4().hex[:8]}.py"

class ScriptRunner:
    """
    Exécute un script dans l'interpréteur du sandbox:
    cwd = racine du workspace, PYTHONUNBUFFERED=1, timeout, sorties bornées.
    Les chemins hors workspace lèvent PathEscapeError; le reste devient un ExecutionResult.
    """
    def __init__(self, sandbox: SandboxManager, cancel: CancelToken | None = None):
        self.sandbox = sandbox
        self.cancel = cancel if cancel is not None else sandbox.cancel

    @property
    def root(self) -> Path:
        return self.sandbox.workspace_path

    def execute_script_content(self, code: str, name: str | None = None) -> ExecutionResult:
        name = (name or "").strip() or default_script_name()
        if not name.endswith(".py"):
            name += ".py"
        scripts_rel = relative_to_workspace(self.root, self.sandbox.environment.scripts_path)
        target = resolve_in_workspace(self.root, f"{scripts_rel}/{name}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(code, encoding="utf-8")
        return self.execute_file(relative_to_workspace(self.root, target))

    def execute_file(self, script_path: str, args: Sequence[str] | str | None = None) -> ExecutionResult:
        target = resolve_in_workspace(self.root, script_path)
        rel = relative_to_workspace(self.root, target)
        if not target.is_file():
            return ExecutionResult.failure(f"Script introuvable: {script_path}", script_path=rel)
        python = self.sandbox.python_path
        if not python.exists():
            return ExecutionResult.failure(f"Interpréteur du sandbox absent: {python}", script_path=rel)

        if isinstance(args, str):
            argv = shlex.split(args)
        else:
            argv = [str(a) for a in (args or [])]

        py = self.sandbox.settings.python
        exclude = (self.sandbox.environment.venv_path.name,)
        before = snapshot(self.root, exclude=exclude)
        try:
            res = run_process(
                [str(python), str(target), *argv],
                cwd=self.root,
                env={"PYTHONUNBUFFERED": "1", "PYTHONIOENCODING": "utf-8"},
                timeout=py.execution_timeout_sec,
                cancel=self.cancel,
                max_output_bytes=py.max_output_bytes,
            )
        except OSError as e:
            return ExecutionResult.failure(f"Lancement impossible: {e}", script_path=rel)

        common = dict(output=res.stdout, stderr=res.stderr, exit_code=res.returncode, elapsed=res.elapsed, script_path=rel)
        if res.cancelled:
            return ExecutionResult(status=ExecutionStatus.CANCELLED, error_message="Execution was cancelled", **common)
        if res.timed_out:
            return ExecutionResult(
                status=ExecutionStatus.TIMED_OUT,
                error_message=f"Timeout: script interrompu après {py.execution_timeout_sec}s",
                **common,
            )
        generated = tuple(p for p in changed_since(before, snapshot(self.root, exclude=exclude)) if p != rel)
        if res.returncode == 0:
            return ExecutionResult(status=ExecutionStatus.SUCCESS, generated_artifacts=generated, **common)
        tail = res.stderr.strip().splitlines()[-1:] if res.stderr.strip() else []
        message = f"Exit code {res.returncode}" + (f": {tail[0]}" if tail else "")
        return ExecutionResult(status=ExecutionStatus.FAILED, error_message=message, generated_artifacts=generated, **common)
