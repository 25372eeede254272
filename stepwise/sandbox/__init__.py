from .environment import InstallOutcome, SandboxInitError, SandboxManager, venv_binary
from .process import ProcessOutcome, kill_process_tree, run_process
from .runner import ScriptRunner

__all__ = [
    "SandboxManager", "SandboxInitError", "InstallOutcome", "venv_binary",
    "ProcessOutcome", "run_process", "kill_process_tree", "ScriptRunner",
]
