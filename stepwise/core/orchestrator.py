from __future__ import annotations
from typing import Iterable, Iterator, Optional
from ..sandbox.environment import SandboxInitError
from ..security.kill import RunCancelled
from .agents import ExecutorAgent, PlannerAgent
from .evaluation import EvaluationModule
from .retry import RetryStrategy
from .session import Session
from .types import (
    EvaluationResult, ExecutionResult, ExecutionStatus, Plan, PlanStatus, ProgressRecord,
    RetryContext, RunResult, Step, StepStatus, Verdict,
)

__all__ = ["Orchestrator", "run_task"]

class Orchestrator:
    """
    Boucle Plan -> Exécution -> Évaluation, une étape à la fois.

    Seul l'orchestrateur modifie le Plan et ses étapes, et seul lui termine une
    exécution. Les exceptions des collaborateurs deviennent des résultats Failed
    qui suivent le circuit normal des verdicts. Le compteur d'itérations global
    n'est pas remis à zéro par une replanification.
    """
    def __init__(self, session: Session, *, planner: PlannerAgent | None = None,
                 executor: ExecutorAgent | None = None, evaluator: EvaluationModule | None = None,
                 strategy: RetryStrategy | None = None) -> None:
        self.session = session
        settings = session.settings
        self.strategy = strategy or RetryStrategy.from_settings(settings)
        self.planner = planner or PlannerAgent(session.llm, settings)
        self.executor = executor or ExecutorAgent(session.llm, session.dispatcher, settings, session.cancel)
        self.evaluator = evaluator or EvaluationModule(session.llm, settings, self.strategy)
        self.plan: Optional[Plan] = None
        self._seq = 0

    # ---------------- API ----------------
    def run(self, task: str) -> RunResult:
        records = list(self.iter_run(task))
        return RunResult(status=self.plan.status.value, plan=self.plan, records=records)

    def iter_run(self, task: str) -> Iterator[ProgressRecord]:
        """Exécute la tâche en produisant des ProgressRecord immuables; le Plan final est dans self.plan."""
        plan = Plan(original_task=task)
        self.plan = plan
        self._seq = 0
        journal = self.session.journal
        if journal is not None:
            journal.start(plan)
        try:
            yield from self._drive(plan)
        finally:
            if journal is not None:
                journal.finish(plan)

    # ---------------- Boucle ----------------
    def _drive(self, plan: Plan) -> Iterator[ProgressRecord]:
        settings = self.session.settings
        sandbox = self.session.sandbox

        yield self._emit(plan, "initializing", f"Préparation du sandbox: {sandbox.workspace_path}")
        try:
            self._check_cancel()
            sandbox.initialize()
        except RunCancelled:
            yield self._cancelled(plan)
            return
        except SandboxInitError as e:
            if self.session.cancel.cancelled:
                yield self._cancelled(plan)
                return
            plan.issues.append(f"Initialisation: {e}")
            plan.status = PlanStatus.FAILED
            yield self._emit(plan, "failed", f"Initialisation impossible: {e}")
            raise

        plan.status = PlanStatus.PLANNING
        yield self._emit(plan, "planning", "Planification de la tâche")
        try:
            self._check_cancel()
            first = self.planner.create_plan(plan.original_task)
        except RunCancelled:
            yield self._cancelled(plan)
            return
        except Exception as e:
            plan.issues.append(f"Planification: {e}")
            plan.status = PlanStatus.FAILED
            yield self._emit(plan, "failed", f"Planification impossible: {e}")
            return
        plan.replace_steps(first, count_revision=False)
        yield from self._present(plan)

        if plan.required_packages:
            plan.status = PlanStatus.INSTALLING
            yield from self._install(plan, sorted(plan.required_packages))

        ctx = self.evaluator.initial_context()
        max_iterations = settings.agent.max_iterations
        iterations = plan.total_iterations
        plan.status = PlanStatus.EXECUTING

        while not plan.is_terminal:
            step = plan.current_step
            if step is None:
                plan.status = PlanStatus.COMPLETED
                yield self._emit(plan, "completed", "Toutes les étapes sont terminées")
                break

            missing = [p for p in step.required_packages if p not in sandbox.installed_packages]
            if missing:
                plan.status = PlanStatus.INSTALLING
                yield from self._install(plan, missing, step)

            plan.status = PlanStatus.EXECUTING
            step.status = StepStatus.RUNNING
            step.attempt_count += 1
            yield self._emit(plan, "executing", f"Tentative {ctx.attempt_number}/{ctx.max_attempts}: {step.description}", step)
            result = self._execute(step, plan, ctx)
            step.execution_result = result

            plan.status = PlanStatus.EVALUATING
            yield self._emit(plan, "evaluating", f"Résultat {result.status.value}" + (f": {result.error_message}" if result.error_message else ""), step)
            evaluation = self._evaluate(step, result, ctx)
            step.evaluation = evaluation
            iterations += 1
            plan.total_iterations = iterations

            verdict = evaluation.verdict
            if verdict is Verdict.SUCCESS:
                step.status = StepStatus.COMPLETED
                yield self._emit(plan, "step_completed", evaluation.reasoning, step)
                ctx = self.evaluator.initial_context()
                if not plan.advance():
                    plan.status = PlanStatus.COMPLETED
                    yield self._emit(plan, "completed", f"Plan terminé ({len(plan.steps)} étape(s))")
            elif verdict is Verdict.IMPOSSIBLE:
                step.status = StepStatus.IMPOSSIBLE
                plan.issues.append(f"Étape {step.order}: {evaluation.reasoning}")
                plan.status = PlanStatus.IMPOSSIBLE
                phase = "cancelled" if result.status is ExecutionStatus.CANCELLED else "impossible"
                yield self._emit(plan, phase, evaluation.reasoning, step)
            else:
                step.status = StepStatus.FAILED

            # garde-fou global, vérifié avant toute nouvelle tentative ou replanification
            if not plan.is_terminal and iterations >= max_iterations:
                plan.issues.append(f"Max iterations reached ({max_iterations})")
                plan.status = PlanStatus.FAILED
                yield self._emit(plan, "failed", f"Nombre maximal d'itérations atteint ({max_iterations})", step)
                break

            if verdict is Verdict.RETRY:
                ctx = evaluation.retry_context or ctx
                # le délai précède la réinstallation éventuelle et la nouvelle génération
                delay = self.strategy.delay(ctx.attempt_number - 1)
                yield self._emit(plan, "retrying", f"Nouvelle tentative dans {delay:.1f}s: {evaluation.reasoning}", step)
                self.session.cancel.wait(delay)
            elif verdict is Verdict.REQUIRES_PLAN_CHANGE:
                yield from self._replan(plan, step, evaluation)
                ctx = self.evaluator.initial_context()

    # ---------------- Étapes ----------------
    def _check_cancel(self) -> None:
        self.session.cancel.check()

    def _execute(self, step: Step, plan: Plan, ctx: RetryContext) -> ExecutionResult:
        try:
            self._check_cancel()
            result = self.executor.execute_step(step, plan, ctx)
        except RunCancelled:
            return ExecutionResult(status=ExecutionStatus.CANCELLED, step_order=step.order, error_message="Execution was cancelled")
        except Exception as e:
            return ExecutionResult.failure(f"{type(e).__name__}: {e}", step_order=step.order)
        if not result.success and self.session.cancel.cancelled:
            return result.for_step(step.order, status=ExecutionStatus.CANCELLED, error_message="Execution was cancelled")
        return result

    def _evaluate(self, step: Step, result: ExecutionResult, ctx: RetryContext) -> EvaluationResult:
        try:
            return self.evaluator.evaluate(step, result, ctx)
        except Exception as e:
            synthetic = result.for_step(step.order, status=ExecutionStatus.FAILED,
                                        error_message=f"Évaluation impossible: {type(e).__name__}: {e}")
            return self.evaluator.heuristic(synthetic, ctx, why=str(e))

    def _install(self, plan: Plan, names: Iterable[str], step: Step | None = None) -> Iterator[ProgressRecord]:
        names = list(names)
        yield self._emit(plan, "installing", f"pip install {' '.join(names)}", step)
        outcome = self.session.sandbox.install_packages(names)
        if outcome.success:
            yield self._emit(plan, "installing", outcome.message, step)
        else:
            # non bloquant: l'étape s'exécute et l'évaluation tranchera
            plan.issues.append(f"Installation: {outcome.message}")
            yield self._emit(plan, "installing", f"Échec: {outcome.message}", step)

    def _replan(self, plan: Plan, step: Step, evaluation: EvaluationResult) -> Iterator[ProgressRecord]:
        plan.status = PlanStatus.REPLANNING
        yield self._emit(plan, "replanning", f"Changement de plan après l'étape {step.order}: {evaluation.reasoning}", step)
        try:
            self._check_cancel()
            new_plan = self.planner.replan(plan.original_task, evaluation.reasoning, evaluation.suggested_adjustment, plan)
        except RunCancelled:
            yield self._cancelled(plan)
            return
        except Exception as e:
            plan.issues.append(f"Replanification: {e}")
            plan.status = PlanStatus.FAILED
            yield self._emit(plan, "failed", f"Replanification impossible: {e}")
            return
        plan.issues.append(f"Plan révisé après l'étape {step.order}: {evaluation.reasoning}")
        plan.replace_steps(new_plan)
        yield from self._present(plan)
        pending = sorted(p for p in plan.required_packages if p not in self.session.sandbox.installed_packages)
        if pending:
            plan.status = PlanStatus.INSTALLING
            yield from self._install(plan, pending)
        plan.status = PlanStatus.EXECUTING

    def _present(self, plan: Plan) -> Iterator[ProgressRecord]:
        head = f"{len(plan.steps)} étape(s)" + (f" - {plan.analysis}" if plan.analysis else "")
        yield self._emit(plan, "plan", head)
        for s in plan.steps:
            yield self._emit(plan, "plan", f"{s.order}. {s.description}", s)

    def _cancelled(self, plan: Plan) -> ProgressRecord:
        plan.issues.append("Exécution annulée")
        plan.status = PlanStatus.IMPOSSIBLE
        return self._emit(plan, "cancelled", "Exécution annulée")

    def _emit(self, plan: Plan, phase: str, message: str, step: Step | None = None) -> ProgressRecord:
        self._seq += 1
        record = ProgressRecord(
            seq=self._seq,
            phase=phase,
            message=message,
            step_order=step.order if step is not None else None,
            total_steps=len(plan.steps) if step is not None else None,
        )
        if self.session.journal is not None:
            self.session.journal.progress(record)
        return record

def run_task(session: Session, task: str) -> RunResult:
    return Orchestrator(session).run(task)
