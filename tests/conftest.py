import json
import os
import sys
from pathlib import Path

import pytest

from stepwise.config import Agent, General, Memory, Python, Settings, apply_overrides
from stepwise.llm.base import LLM, LLMError, LLMRequest

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

def make_settings(tmp_path: Path, overrides: dict | None = None) -> Settings:
    s = Settings(
        general=General(profile="safe", workspace_path=str(tmp_path / "ws"), log_dir=str(tmp_path / "logs"),
                        kill_switch_path=str(tmp_path / "kill.switch")),
        python=Python(upgrade_pip=False, execution_timeout_sec=30.0, pip_timeout_sec=30.0),
        agent=Agent(retry_base_delay_sec=0.0),
        memory=Memory(db_path=str(tmp_path / "mem.db")),
    )
    if overrides:
        apply_overrides(s, overrides)
    return s

def fake_venv(workspace: Path, venv_name: str = "venv") -> Path:
    """Tient lieu de venv: bin/python pointe sur l'interpréteur courant (pas de réseau)."""
    if os.name == "nt":
        pytest.skip("venv factice POSIX uniquement")
    bin_dir = Path(workspace) / venv_name / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    py = bin_dir / "python"
    if not py.exists():
        os.symlink(sys.executable, py)
    return py

@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)

@pytest.fixture
def ready_settings(tmp_path):
    s = make_settings(tmp_path)
    fake_venv(Path(s.general.workspace_path))
    return s

# ---------------- LLM scripté ----------------
class ScriptedLLM(LLM):
    """
    Réponses par rôle: liste consommée dans l'ordre (la dernière se répète)
    ou callable(req) -> str. Un rôle absent lève LLMError.
    """
    def __init__(self, **roles):
        self.roles = {k: (list(v) if isinstance(v, (list, tuple)) else v) for k, v in roles.items()}
        self.calls: list[LLMRequest] = []

    def generate(self, req: LLMRequest) -> str:
        self.calls.append(req)
        source = self.roles.get(req.role)
        if source is None:
            raise LLMError(f"pas de réponse scriptée pour {req.role!r}")
        if callable(source):
            return source(req)
        if len(source) > 1:
            return source.pop(0)
        return source[0]

    def count(self, role: str) -> int:
        return sum(1 for c in self.calls if c.role == role)

def plan_json(*descriptions: str, packages=(), step_packages=None, analysis="") -> str:
    step_packages = step_packages or {}
    return json.dumps({
        "analysis": analysis,
        "steps": [
            {"order": i, "description": d, "expected_output": "", "dependencies": [],
             "required_packages": list(step_packages.get(i, []))}
            for i, d in enumerate(descriptions, 1)
        ],
        "required_packages": list(packages),
    })

def tool(name: str, **arguments) -> str:
    return json.dumps({"tool": name, "arguments": arguments})

def final(result: str = "Success", output: str = "", errors=()) -> str:
    return json.dumps({"final": {"result": result, "output": output, "errors": list(errors)}})

def judgment(**kw) -> str:
    base = {"success": False, "retryable": False, "impossible": False, "requires_plan_change": False, "reasoning": ""}
    base.update(kw)
    return json.dumps(base)

def run_code(code: str) -> list[str]:
    """Séquence exécuteur: un execute_python puis une réponse finale Success."""
    return [tool("execute_python", script_content=code), final("Success")]

def executor_running(code: str):
    """Exécuteur sans état: exécute `code` à chaque tentative, puis conclut."""
    from stepwise.core.prompts import TOOL_RESULTS_LABEL

    def reply(req: LLMRequest) -> str:
        if TOOL_RESULTS_LABEL in req.prompt:
            return final("Success")
        return tool("execute_python", script_content=code)
    return reply
