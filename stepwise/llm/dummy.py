from __future__ import annotations
import json
from .base import LLM, LLMRequest
from ..core.prompts import STEP_LABEL, TASK_LABEL, TOOL_RESULTS_LABEL

def _block_after(label: str, text: str) -> str:
    """Texte qui suit `label` jusqu'à la première ligne vide."""
    idx = text.find(label)
    if idx == -1:
        return text.strip().splitlines()[0][:200] if text.strip() else ""
    body = text[idx + len(label):].lstrip("\n")
    return body.split("\n\n", 1)[0].strip()

class DummyLLM(LLM):
    """
    LLM déterministe pour tests/démo, hors ligne.
    - planner   : un plan d'une étape reprenant la tâche
    - executor  : un execute_python qui affiche la description, puis une réponse finale
    - evaluator : juge tout échec impossible (pas de diagnostic réel)
    """
    def generate(self, req: LLMRequest) -> str:
        if req.role == "planner":
            return self._plan(req.prompt)
        if req.role == "executor":
            return self._execute(req.prompt)
        if req.role == "evaluator":
            return json.dumps({
                "success": False,
                "retryable": False,
                "impossible": True,
                "reasoning": "DummyLLM: aucun diagnostic automatique possible",
            })
        goal = _block_after(TASK_LABEL, req.prompt)
        return (
            f"1. Analyser la tâche: {goal}\n"
            f"2. Écrire et exécuter un script Python\n"
            f"3. Vérifier la sortie produite\n"
        )

    def _plan(self, prompt: str) -> str:
        task = _block_after(TASK_LABEL, prompt)
        return json.dumps({
            "analysis": f"Tâche simple en une étape: {task}",
            "steps": [{
                "order": 1,
                "description": task,
                "expected_output": "La sortie console du script",
                "dependencies": [],
                "required_packages": [],
            }],
            "required_packages": [],
        }, ensure_ascii=False)

    def _execute(self, prompt: str) -> str:
        if TOOL_RESULTS_LABEL not in prompt:
            description = _block_after(STEP_LABEL, prompt)
            return "```json\n" + json.dumps({
                "tool": "execute_python",
                "arguments": {"script_content": f"print({description!r})\n"},
            }, ensure_ascii=False) + "\n```"
        results = prompt.split(TOOL_RESULTS_LABEL, 1)[1]
        ok = '"success": true' in results
        return json.dumps({"final": {
            "result": "Success" if ok else "Failure",
            "output": "Script exécuté" if ok else "Le script a échoué",
            "errors": [] if ok else ["voir la sortie de l'outil"],
        }}, ensure_ascii=False)
