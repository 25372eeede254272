from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from ..config import Settings
from ..llm.base import LLM, LLMError, LLMRequest
from ..llm.parsing import as_bool, extract_json_object, pick
from ..security.kill import RunCancelled
from .prompts import EVALUATION_SCHEMA, EVALUATOR_SYSTEM, build_evaluation_prompt
from .retry import RetryStrategy
from .types import EvaluationResult, ExecutionResult, ExecutionStatus, RetryContext, Step, Verdict

__all__ = ["EvaluationModule", "Judgment", "parse_judgment", "heuristic_judgment"]

@dataclass(frozen=True)
class Judgment:
    """Avis structuré du service d'évaluation (ou de l'heuristique de repli)."""
    success: bool = False
    retryable: bool = False
    impossible: bool = False
    requires_plan_change: bool = False
    reasoning: str = ""
    suggested_adjustment: Optional[str] = None
    issues: tuple[str, ...] = ()
    heuristic: bool = False

def parse_judgment(text: str) -> Judgment:
    data = extract_json_object(text)
    issues = pick(data, "issues", default=[]) or []
    if not isinstance(issues, (list, tuple)):
        issues = [issues]
    adjustment = pick(data, "suggested_adjustment", "suggestedAdjustment", "revised_approach", "revisedApproach")
    return Judgment(
        success=as_bool(pick(data, "success", "isSuccessful", "is_successful", default=False)),
        retryable=as_bool(pick(data, "retryable", "shouldRetry", "should_retry", default=False)),
        impossible=as_bool(pick(data, "impossible", "isImpossible", "is_impossible", default=False)),
        requires_plan_change=as_bool(pick(data, "requires_plan_change", "requiresPlanChange", default=False)),
        reasoning=str(pick(data, "reasoning", "reason", default="")).strip(),
        suggested_adjustment=(str(adjustment).strip() or None) if adjustment else None,
        issues=tuple(str(i) for i in issues),
    )

def heuristic_judgment(result: ExecutionResult, why: str = "") -> Judgment:
    retryable = result.status.retryable
    reasoning = result.error_message or f"Échec ({result.status.value})"
    if why:
        reasoning = f"{reasoning} [évaluation heuristique: {why}]"
    return Judgment(retryable=retryable, impossible=not retryable, reasoning=reasoning, heuristic=True)

class EvaluationModule:
    """
    Classe le résultat d'une étape en Success / Retry / Impossible / RequiresPlanChange.
    Ne modifie jamais le Plan: produit seulement un EvaluationResult.
    """
    def __init__(self, llm: LLM, settings: Settings, strategy: RetryStrategy | None = None) -> None:
        self.llm = llm
        self.settings = settings
        self.strategy = strategy or RetryStrategy.from_settings(settings)

    def initial_context(self) -> RetryContext:
        return RetryContext.initial(self.settings.agent.max_retry_attempts)

    def evaluate(self, step: Step, result: ExecutionResult, retry_context: RetryContext | None = None) -> EvaluationResult:
        ctx = retry_context or self.initial_context()
        if result.status is ExecutionStatus.SUCCESS:
            return EvaluationResult(Verdict.SUCCESS, "Step executed successfully", result, ctx)
        if result.status is ExecutionStatus.CANCELLED:
            return EvaluationResult(Verdict.IMPOSSIBLE, "Execution was cancelled", result, ctx)
        try:
            judgment = self._judge(step, result, ctx)
        except RunCancelled:
            return EvaluationResult(Verdict.IMPOSSIBLE, "Execution was cancelled", result, ctx)
        return self.decide(result, ctx, judgment)

    def heuristic(self, result: ExecutionResult, retry_context: RetryContext | None = None, why: str = "") -> EvaluationResult:
        """Verdict sans appel au service (service en panne, exception inattendue)."""
        return self.decide(result, retry_context or self.initial_context(), heuristic_judgment(result, why))

    def _judge(self, step: Step, result: ExecutionResult, ctx: RetryContext) -> Judgment:
        req = LLMRequest(
            prompt=build_evaluation_prompt(step, result, ctx),
            system=EVALUATOR_SYSTEM,
            role="evaluator",
            schema=EVALUATION_SCHEMA,
            max_tokens=min(1024, self.settings.llm.max_tokens),
            temperature=0.0,
        )
        try:
            return parse_judgment(self.llm.generate(req))
        except (LLMError, ValueError, TypeError, OSError) as e:
            return heuristic_judgment(result, str(e))

    def decide(self, result: ExecutionResult, ctx: RetryContext, judgment: Judgment) -> EvaluationResult:
        reasoning = judgment.reasoning or result.error_message or "Aucun diagnostic"
        common = dict(original_result=result, issues=judgment.issues, suggested_adjustment=judgment.suggested_adjustment)

        if judgment.impossible:
            return EvaluationResult(Verdict.IMPOSSIBLE, reasoning, retry_context=ctx, **common)
        if judgment.success and result.status is ExecutionStatus.FAILED:
            # le service juge la sortie conforme malgré le code retour
            return EvaluationResult(Verdict.SUCCESS, reasoning, retry_context=ctx, **common)
        if judgment.requires_plan_change:
            return EvaluationResult(Verdict.REQUIRES_PLAN_CHANGE, reasoning, retry_context=ctx, **common)
        if judgment.retryable and self.strategy.should_retry(ctx):
            nxt = ctx.next(result.error_message or "Unknown error", judgment.suggested_adjustment)
            return EvaluationResult(Verdict.RETRY, reasoning, retry_context=nxt, **common)
        return EvaluationResult(
            Verdict.IMPOSSIBLE,
            f"Failed after {ctx.attempt_number} attempts: {reasoning}",
            retry_context=ctx,
            **common,
        )
