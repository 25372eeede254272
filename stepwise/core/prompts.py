from __future__ import annotations
from typing import Optional, Sequence
from .types import ExecutionResult, Plan, RetryContext, Step

# Libellés de section (relus par DummyLLM)
TASK_LABEL = "TÂCHE :"
STEP_LABEL = "ÉTAPE :"
TOOL_RESULTS_LABEL = "RÉSULTATS DES OUTILS :"

_MAX_BLOCK = 4000

def _clip(text: str | None, limit: int = _MAX_BLOCK) -> str:
    text = (text or "").strip()
    if len(text) > limit:
        return text[:limit] + f"\n... [{len(text) - limit} caractères coupés]"
    return text

def section(label: str, body: str) -> str:
    return f"{label}\n{body.strip()}\n"

# ---------------------------------------------------------------------------
# Planification
# ---------------------------------------------------------------------------

PLANNER_SYSTEM = """
Tu es un planificateur. Tu découpes une tâche en étapes ordonnées, chacune
réalisable par un script Python exécuté dans un environnement virtuel isolé.
Chaque étape a une sortie attendue vérifiable. Une étape ne peut dépendre que
d'étapes antérieures. Liste les paquets pip nécessaires.
Réponds EXCLUSIVEMENT avec un objet JSON valide, sans texte autour.
""".strip()

PLAN_FORMAT = """
FORMAT DE RÉPONSE OBLIGATOIRE (JSON UNIQUEMENT) :
{
  "analysis": "analyse courte de la tâche",
  "steps": [
    {
      "order": 1,
      "description": "ce que fait l'étape",
      "expected_output": "résultat vérifiable",
      "dependencies": [],
      "required_packages": []
    }
  ],
  "required_packages": []
}
""".strip()

PLAN_SCHEMA = {
    "type": "object",
    "required": ["steps"],
    "properties": {
        "analysis": {"type": "string"},
        "steps": {"type": "array"},
        "required_packages": {"type": "array"},
    },
}

def build_plan_prompt(task: str, max_steps: int) -> str:
    return (
        section(TASK_LABEL, task)
        + f"\nProduis un plan de {max_steps} étapes au maximum (le moins possible).\n\n"
        + PLAN_FORMAT
    )

def build_replan_prompt(task: str, failure_reasoning: str, suggested_approach: Optional[str],
                        previous: Optional[Plan], max_steps: int) -> str:
    done = ""
    if previous is not None:
        lines = [f"- Étape {s.order} ({s.status.value}): {s.description}" for s in previous.steps]
        done = section("PLAN PRÉCÉDENT :", "\n".join(lines) or "(vide)") + "\n"
    prompt = (
        section(TASK_LABEL, task)
        + "\n"
        + done
        + section("ÉCHEC DU PLAN PRÉCÉDENT :", _clip(failure_reasoning) or "(non précisé)")
        + "\n"
        + section("APPROCHE ALTERNATIVE SUGGÉRÉE :", suggested_approach or "(aucune)")
        + f"\nPropose un NOUVEAU plan complet ({max_steps} étapes au maximum) qui évite cet échec.\n"
        + "Les fichiers déjà produits restent disponibles dans le workspace.\n\n"
        + PLAN_FORMAT
    )
    return prompt

# ---------------------------------------------------------------------------
# Exécution (génération de code + appels d'outils)
# ---------------------------------------------------------------------------

EXECUTOR_SYSTEM = """
Tu réalises UNE étape d'un plan en écrivant et en exécutant du code Python
dans un workspace isolé (répertoire courant = racine du workspace). Les
fichiers produits vont de préférence dans output/.

Outils disponibles :
{tools}

À chaque tour, réponds EXCLUSIVEMENT avec un objet JSON, au choix :
- appel d'outil : {{"tool": "execute_python", "arguments": {{"script_content": "print('ok')"}}}}
- plusieurs appels : {{"tool_calls": [{{"tool": "...", "arguments": {{...}}}}]}}
- fin de l'étape : {{"final": {{"result": "Success", "output": "résumé", "errors": []}}}}

Utilise "result": "Failure" si l'étape ne peut pas aboutir. Ne déclare "Success"
qu'après avoir vérifié la sortie d'une exécution.
""".strip()

def executor_system(tools_catalogue: str) -> str:
    return EXECUTOR_SYSTEM.format(tools=tools_catalogue)

def build_executor_prompt(step: Step, plan: Plan, retry_context: Optional[RetryContext],
                          transcript: Sequence[tuple[str, str]] = ()) -> str:
    parts = [
        section(TASK_LABEL, plan.original_task),
        section(STEP_LABEL, step.description),
        section("SORTIE ATTENDUE :", step.expected_output or "(non précisée)"),
        section("PAQUETS REQUIS :", ", ".join(step.required_packages) or "(aucun)"),
    ]
    deps = [plan.step(o) for o in sorted(step.dependencies)]
    dep_lines = [
        f"- Étape {d.order}: {d.description} -> {_clip(d.execution_result.output, 600) or '(sans sortie)'}"
        for d in deps if d is not None and d.execution_result is not None
    ]
    if dep_lines:
        parts.append(section("RÉSULTATS DES ÉTAPES PRÉCÉDENTES :", "\n".join(dep_lines)))
    if retry_context is not None and retry_context.attempt_number > 1:
        errors = "\n".join(f"- {_clip(e, 800)}" for e in retry_context.previous_errors)
        parts.append(section(
            f"TENTATIVE {retry_context.attempt_number}/{retry_context.max_attempts}, ERREURS PRÉCÉDENTES :",
            errors or "(aucune)",
        ))
        if retry_context.suggested_adjustment:
            parts.append(section("AJUSTEMENT SUGGÉRÉ :", retry_context.suggested_adjustment))
    if transcript:
        body = "\n\n".join(f"[{name}] -> {_clip(result, 3000)}" for name, result in transcript)
        parts.append(section(TOOL_RESULTS_LABEL, body))
        parts.append("Continue: nouvel appel d'outil ou réponse finale.")
    else:
        parts.append("Commence par un appel d'outil.")
    return "\n".join(parts)

# ---------------------------------------------------------------------------
# Évaluation
# ---------------------------------------------------------------------------

EVALUATOR_SYSTEM = """
Tu évalues le résultat d'une étape exécutée par un agent. Tu décides si
l'échec est transitoire (une nouvelle tentative corrigée peut réussir),
impossible (rien ne pourra réussir), ou s'il faut changer de plan.
Réponds EXCLUSIVEMENT avec un objet JSON valide.
""".strip()

EVALUATION_FORMAT = """
FORMAT DE RÉPONSE OBLIGATOIRE (JSON UNIQUEMENT) :
{
  "success": false,
  "retryable": true,
  "impossible": false,
  "requires_plan_change": false,
  "reasoning": "diagnostic court",
  "suggested_adjustment": "correction concrète pour la prochaine tentative",
  "issues": []
}
""".strip()

EVALUATION_SCHEMA = {
    "type": "object",
    "required": ["reasoning"],
    "properties": {
        "success": {"type": "boolean"},
        "retryable": {"type": "boolean"},
        "impossible": {"type": "boolean"},
        "requires_plan_change": {"type": "boolean"},
        "reasoning": {"type": "string"},
        "suggested_adjustment": {"type": "string"},
        "issues": {"type": "array"},
    },
}

def build_evaluation_prompt(step: Step, result: ExecutionResult, retry_context: RetryContext) -> str:
    parts = [
        section(STEP_LABEL, step.description),
        section("SORTIE ATTENDUE :", step.expected_output or "(non précisée)"),
        section("STATUT :", f"{result.status.value} (exit code: {result.exit_code})"),
        section("TENTATIVE :", f"{retry_context.attempt_number} sur {retry_context.max_attempts}"),
        section("STDOUT :", _clip(result.output) or "(vide)"),
        section("STDERR / ERREUR :", _clip("\n".join(x for x in (result.stderr, result.error_message or "") if x)) or "(vide)"),
    ]
    prior = list(retry_context.previous_errors)
    if prior:
        parts.append(section("ERREURS DES TENTATIVES PRÉCÉDENTES :", "\n".join(f"- {_clip(e, 800)}" for e in prior)))
    parts.append(EVALUATION_FORMAT)
    return "\n".join(parts)
