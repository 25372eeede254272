from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union
from ..config import Settings
from ..llm.base import LLM, LLMError, LLMRequest
from ..llm.parsing import extract_json_object, pick
from ..security.kill import CancelToken
from ..tools.requests import describe_tools
from .prompts import (
    PLAN_SCHEMA, PLANNER_SYSTEM, build_executor_prompt, build_plan_prompt,
    build_replan_prompt, executor_system,
)
from .types import ExecutionResult, ExecutionStatus, Plan, RetryContext, Step

__all__ = [
    "PlanningError", "PlannerAgent", "ExecutorAgent", "ToolCall", "FinalAnswer",
    "parse_plan", "validate_plan", "parse_executor_reply",
]

class PlanningError(RuntimeError):
    """Plan introuvable, vide ou incohérent."""

# ---------------------------------------------------------------------------
# Planification
# ---------------------------------------------------------------------------

def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v for v in value.replace(",", " ").split() if v]
    return [str(v).strip() for v in value if str(v).strip()]

def _as_int_set(value: Any, where: str) -> set[int]:
    if value is None:
        return set()
    if isinstance(value, (int, str)):
        value = [value]
    try:
        return {int(v) for v in value}
    except (TypeError, ValueError):
        raise PlanningError(f"{where}: dépendances invalides {value!r}") from None

def validate_plan(plan: Plan) -> None:
    """Non vide, ordres uniques, dépendances existantes et strictement antérieures."""
    if not plan.steps:
        raise PlanningError("Plan vide")
    orders = [s.order for s in plan.steps]
    dupes = sorted({o for o in orders if orders.count(o) > 1})
    if dupes:
        raise PlanningError(f"Ordres d'étape dupliqués: {dupes}")
    known = set(orders)
    for s in plan.steps:
        for d in s.dependencies:
            if d >= s.order or d not in known:
                raise PlanningError(f"Étape {s.order}: dépendance invalide {d}")

def parse_plan(task: str, raw: str, *, max_steps: int) -> Plan:
    try:
        data = extract_json_object(raw)
    except ValueError as e:
        raise PlanningError(f"Réponse du planificateur inexploitable: {e}") from None

    items = pick(data, "steps", "plan")
    if not isinstance(items, list) or not items:
        raise PlanningError("Plan vide")

    parsed = []
    for i, item in enumerate(items, 1):
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            raise PlanningError(f"Étape {i}: format invalide")
        try:
            order = int(pick(item, "order", "stepNumber", "step_number", default=i))
        except (TypeError, ValueError):
            raise PlanningError(f"Étape {i}: ordre invalide") from None
        description = str(pick(item, "description", "task", default="")).strip()
        if not description:
            raise PlanningError(f"Étape {order}: description vide")
        parsed.append((order, description, item))

    parsed.sort(key=lambda x: x[0])
    steps: List[Step] = []
    for order, description, item in parsed[:max(1, max_steps)]:
        try:
            steps.append(Step(
                order=order,
                description=description,
                expected_output=str(pick(item, "expected_output", "expectedOutput", default="")),
                dependencies=_as_int_set(pick(item, "dependencies", "depends_on", "dependsOn"), f"Étape {order}"),
                required_packages=_as_str_list(pick(item, "required_packages", "requiredPackages")),
            ))
        except ValueError as e:
            raise PlanningError(str(e)) from None

    plan = Plan(
        original_task=task,
        steps=steps,
        analysis=str(pick(data, "analysis", "taskAnalysis", "task_analysis", default="")),
        required_packages=set(_as_str_list(pick(data, "required_packages", "requiredPackages"))),
    )
    validate_plan(plan)
    return plan

class PlannerAgent:
    def __init__(self, llm: LLM, settings: Settings) -> None:
        self.llm = llm
        self.settings = settings

    def _ask(self, prompt: str) -> str:
        req = LLMRequest(
            prompt=prompt,
            system=PLANNER_SYSTEM,
            role="planner",
            schema=PLAN_SCHEMA,
            max_tokens=self.settings.llm.max_tokens,
            temperature=self.settings.llm.temperature,
        )
        try:
            return self.llm.generate(req)
        except LLMError as e:
            raise PlanningError(f"Planificateur injoignable: {e}") from e

    def create_plan(self, task: str) -> Plan:
        max_steps = self.settings.agent.max_steps_per_plan
        return parse_plan(task, self._ask(build_plan_prompt(task, max_steps)), max_steps=max_steps)

    def replan(self, task: str, failure_reasoning: str, suggested_approach: str | None = None,
               previous: Plan | None = None) -> Plan:
        max_steps = self.settings.agent.max_steps_per_plan
        prompt = build_replan_prompt(task, failure_reasoning, suggested_approach, previous, max_steps)
        return parse_plan(task, self._ask(prompt), max_steps=max_steps)

# ---------------------------------------------------------------------------
# Exécution
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    name: str
    arguments: Union[dict, str, None] = None

@dataclass
class FinalAnswer:
    result: str
    output: str = ""
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.result.strip().lower() in {"success", "succès", "ok", "done"}

def _tool_call(obj: dict) -> ToolCall:
    name = pick(obj, "tool", "name", "tool_name")
    if not isinstance(name, str) or not name:
        raise ValueError("Appel d'outil sans nom")
    return ToolCall(name=name, arguments=pick(obj, "arguments", "args", "parameters", default={}))

def parse_executor_reply(text: str) -> Union[List[ToolCall], FinalAnswer]:
    """Un tour de l'exécuteur: liste d'appels d'outils, ou réponse finale."""
    data = extract_json_object(text)
    final = pick(data, "final", "final_answer")
    if final is None and "result" in data and "tool" not in data:
        final = data
    if isinstance(final, dict):
        errors = final.get("errors") or []
        if isinstance(errors, str):
            errors = [errors]
        return FinalAnswer(
            result=str(final.get("result", "Failure")),
            output=str(final.get("output") or ""),
            errors=[str(e) for e in errors],
        )
    if isinstance(final, str):
        return FinalAnswer(result=final, output=final)
    calls = pick(data, "tool_calls", "calls")
    if isinstance(calls, list) and calls:
        return [_tool_call(c) for c in calls if isinstance(c, dict)]
    if pick(data, "tool", "name", "tool_name"):
        return [_tool_call(data)]
    raise ValueError("Ni appel d'outil ni réponse finale")

class ExecutorAgent:
    """
    Boucle génération de code / appels d'outils pour une étape.
    La dernière exécution (execute_python / execute_script_file) fait foi.
    Les erreurs du LLM remontent: l'orchestrateur les convertit en résultat Failed.
    """
    def __init__(self, llm: LLM, dispatcher, settings: Settings, cancel: CancelToken | None = None) -> None:
        self.llm = llm
        self.dispatcher = dispatcher
        self.settings = settings
        self.cancel = cancel

    def _system(self) -> str:
        return executor_system(describe_tools(external=self.settings.tools.external_files))

    def execute_step(self, step: Step, plan: Plan, retry_context: Optional[RetryContext] = None) -> ExecutionResult:
        start = time.monotonic()
        system = self._system()
        transcript: List[tuple[str, str]] = []
        artifacts: List[str] = []
        last_exec: Optional[ExecutionResult] = None
        final: Optional[FinalAnswer] = None

        for _ in range(max(1, self.settings.agent.max_tool_rounds)):
            if self.cancel is not None:
                self.cancel.check()
            raw = self.llm.generate(LLMRequest(
                prompt=build_executor_prompt(step, plan, retry_context, transcript),
                system=system,
                role="executor",
                max_tokens=self.settings.llm.max_tokens,
                temperature=self.settings.llm.temperature,
            ))
            try:
                reply = parse_executor_reply(raw)
            except ValueError as e:
                bad = ExecutionResult.failure(f"Réponse de l'agent inexploitable: {e}", output=raw[:2000])
                return self._finish(step, start, bad, artifacts)
            if isinstance(reply, FinalAnswer):
                final = reply
                break
            for call in reply:
                outcome = self.dispatcher.invoke(call.name, call.arguments)
                transcript.append((call.name, outcome.to_json()))
                artifacts.extend(a for a in outcome.artifacts if a not in artifacts)
                if outcome.execution is not None:
                    last_exec = outcome.execution
                    if last_exec.status is ExecutionStatus.CANCELLED:
                        return self._finish(step, start, last_exec, artifacts)

        return self._finish(step, start, self._conclude(final, last_exec), artifacts)

    @staticmethod
    def _conclude(final: Optional[FinalAnswer], last_exec: Optional[ExecutionResult]) -> ExecutionResult:
        if last_exec is not None:
            if final is not None and not final.success and last_exec.success:
                reason = "; ".join(final.errors) or final.output or "L'agent a déclaré l'étape en échec"
                return ExecutionResult.failure(reason, output=last_exec.output, stderr=last_exec.stderr,
                                               exit_code=last_exec.exit_code, script_path=last_exec.script_path)
            return last_exec
        if final is None:
            return ExecutionResult.failure("Nombre maximal de tours d'outils atteint sans réponse finale")
        if final.success:
            return ExecutionResult(status=ExecutionStatus.SUCCESS, output=final.output)
        return ExecutionResult.failure("; ".join(final.errors) or final.output or "Échec déclaré par l'agent", output=final.output)

    @staticmethod
    def _finish(step: Step, start: float, result: ExecutionResult, artifacts: List[str]) -> ExecutionResult:
        merged = tuple(dict.fromkeys([*artifacts, *result.generated_artifacts]))
        return result.for_step(step.order, elapsed=time.monotonic() - start, generated_artifacts=merged)
