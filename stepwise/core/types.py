from __future__ import annotations
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat(timespec="seconds").replace("+00:00", "Z") if ts else None

class PlanStateError(RuntimeError):
    """Transition interdite (ex: sortir d'un statut terminal)."""

# ---------------- Statuts ----------------
class PlanStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    INSTALLING = "installing"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    REPLANNING = "replanning"
    COMPLETED = "completed"
    FAILED = "failed"
    IMPOSSIBLE = "impossible"

    @property
    def terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.FAILED, PlanStatus.IMPOSSIBLE)

class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    IMPOSSIBLE = "impossible"

class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def retryable(self) -> bool:
        return self in (ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT)

class Verdict(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    IMPOSSIBLE = "impossible"
    REQUIRES_PLAN_CHANGE = "requires_plan_change"

# ---------------- Résultats (immuables) ----------------
@dataclass(frozen=True)
class ExecutionResult:
    status: ExecutionStatus
    step_order: int = 0
    output: str = ""
    error_message: Optional[str] = None
    stderr: str = ""
    exit_code: Optional[int] = None
    generated_artifacts: tuple[str, ...] = ()
    elapsed: float = 0.0
    script_path: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    @classmethod
    def failure(cls, message: str, *, status: ExecutionStatus = ExecutionStatus.FAILED, step_order: int = 0, **kw) -> "ExecutionResult":
        return cls(status=status, step_order=step_order, error_message=message, **kw)

    def for_step(self, order: int, **changes) -> "ExecutionResult":
        return replace(self, step_order=order, **changes)

    def to_dict(self) -> dict:
        return {
            "step_order": self.step_order,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "output": self.output,
            "stderr": self.stderr,
            "error": self.error_message,
            "generated_artifacts": list(self.generated_artifacts),
            "elapsed_sec": round(self.elapsed, 3),
            "script_path": self.script_path,
        }

@dataclass(frozen=True)
class RetryContext:
    """
    État des tentatives d'une étape. Immuable: next() renvoie un nouveau contexte.
    """
    max_attempts: int
    attempt_number: int = 1
    previous_errors: tuple[str, ...] = ()
    suggested_adjustment: Optional[str] = None

    @classmethod
    def initial(cls, max_attempts: int) -> "RetryContext":
        return cls(max_attempts=max_attempts)

    @property
    def can_retry(self) -> bool:
        return self.attempt_number < self.max_attempts

    def next(self, error: str, suggested_adjustment: Optional[str] = None) -> "RetryContext":
        return replace(
            self,
            attempt_number=self.attempt_number + 1,
            previous_errors=self.previous_errors + (error,),
            suggested_adjustment=suggested_adjustment,
        )

@dataclass(frozen=True)
class EvaluationResult:
    verdict: Verdict
    reasoning: str
    original_result: ExecutionResult
    retry_context: Optional[RetryContext] = None
    suggested_adjustment: Optional[str] = None
    issues: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "reasoning": self.reasoning,
            "suggested_adjustment": self.suggested_adjustment,
            "issues": list(self.issues),
            "attempt": self.retry_context.attempt_number if self.retry_context else None,
        }

@dataclass(frozen=True)
class ProgressRecord:
    seq: int
    phase: str
    message: str
    step_order: Optional[int] = None
    total_steps: Optional[int] = None
    ts: datetime = field(default_factory=_now)

    def line(self) -> str:
        where = f" {self.step_order}/{self.total_steps}" if self.step_order is not None and self.total_steps else ""
        return f"[{self.phase}{where}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "phase": self.phase,
            "message": self.message,
            "step_order": self.step_order,
            "total_steps": self.total_steps,
            "ts": _iso(self.ts),
        }

# ---------------- Plan / étapes (mutés par l'orchestrateur seul) ----------------
@dataclass
class Step:
    order: int
    description: str
    expected_output: str = ""
    dependencies: set[int] = field(default_factory=set)
    required_packages: List[str] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    attempt_count: int = 0
    execution_result: Optional[ExecutionResult] = None
    evaluation: Optional[EvaluationResult] = None

    def __post_init__(self) -> None:
        self.dependencies = set(self.dependencies)
        bad = sorted(d for d in self.dependencies if d >= self.order)
        if bad:
            raise ValueError(f"Étape {self.order}: dépendances non antérieures {bad}")

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "description": self.description,
            "expected_output": self.expected_output,
            "dependencies": sorted(self.dependencies),
            "required_packages": list(self.required_packages),
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "execution_result": self.execution_result.to_dict() if self.execution_result else None,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
        }

@dataclass
class Plan:
    original_task: str
    steps: List[Step] = field(default_factory=list)
    analysis: str = ""
    required_packages: set[str] = field(default_factory=set)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: PlanStatus = PlanStatus.PENDING
    current_step_index: int = 0
    total_iterations: int = 0
    revisions: int = 0
    issues: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    def __setattr__(self, name, value) -> None:
        if name == "status":
            current = self.__dict__.get("status")
            if current is not None and current.terminal and value is not current:
                raise PlanStateError(f"Plan {current.value}: statut figé (demandé: {value.value})")
            if value.terminal and current is not None and not current.terminal:
                super().__setattr__("completed_at", _now())
        elif name == "current_step_index":
            steps = self.__dict__.get("steps", [])
            if not 0 <= value <= len(steps):
                raise PlanStateError(f"Index d'étape hors bornes: {value}/{len(steps)}")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    @property
    def current_step(self) -> Optional[Step]:
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    def advance(self) -> bool:
        """Passe à l'étape suivante; False s'il n'en reste plus."""
        if self.current_step_index < len(self.steps):
            self.current_step_index += 1
        return self.current_step_index < len(self.steps)

    def replace_steps(self, new_plan: "Plan", *, count_revision: bool = True) -> None:
        """Substitue les étapes (la tâche d'origine est conservée)."""
        self.__dict__["current_step_index"] = 0
        self.steps = list(new_plan.steps)
        self.analysis = new_plan.analysis or self.analysis
        self.required_packages = set(self.required_packages) | set(new_plan.required_packages)
        if count_revision:
            self.revisions += 1

    def step(self, order: int) -> Optional[Step]:
        return next((s for s in self.steps if s.order == order), None)

    @property
    def completed_steps(self) -> List[Step]:
        return [s for s in self.steps if s.status is StepStatus.COMPLETED]

    @property
    def artifacts(self) -> List[str]:
        out: set[str] = set()
        for s in self.steps:
            if s.execution_result:
                out.update(s.execution_result.generated_artifacts)
        return sorted(out)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_task": self.original_task,
            "analysis": self.analysis,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "total_iterations": self.total_iterations,
            "revisions": self.revisions,
            "required_packages": sorted(self.required_packages),
            "issues": list(self.issues),
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
            "steps": [s.to_dict() for s in self.steps],
        }

    def summary(self) -> str:
        lines = [
            f"Task: {self.original_task}",
            f"Status: {self.status.value}",
            f"Completed Steps: {len(self.completed_steps)}/{len(self.steps)}",
            f"Total Iterations: {self.total_iterations}",
        ]
        if self.revisions:
            lines.append(f"Plan Revisions: {self.revisions}")
        arts = self.artifacts
        if arts:
            lines.append("Created Files:")
            lines.extend(f"  - {a}" for a in arts)
        lines.append("")
        for s in self.steps:
            lines.append(f"Step {s.order}: {s.description}")
            lines.append(f"  Status: {s.status.value} (attempts: {s.attempt_count})")
            if s.evaluation and s.evaluation.reasoning:
                lines.append(f"  Reasoning: {s.evaluation.reasoning}")
        if self.issues:
            lines.append("")
            lines.append("Issues:")
            lines.extend(f"  - {i}" for i in self.issues)
        return "\n".join(lines)

@dataclass
class RunResult:
    status: str
    plan: Plan
    records: List[ProgressRecord] = field(default_factory=list)

    @property
    def logs(self) -> List[str]:
        return [r.line() for r in self.records]

# ---------------- Sandbox ----------------
@dataclass
class SandboxEnvironment:
    workspace_path: Path
    venv_path: Path
    scripts_path: Path
    output_path: Path
    installed_packages: set[str] = field(default_factory=set)
    ready: bool = False

    def to_dict(self) -> dict:
        return {
            "workspace_path": str(self.workspace_path),
            "venv_path": str(self.venv_path),
            "scripts_path": str(self.scripts_path),
            "output_path": str(self.output_path),
            "installed_packages": sorted(self.installed_packages),
            "ready": self.ready,
        }
