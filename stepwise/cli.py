from __future__ import annotations
import argparse, json, signal, sys
from . import __version__
from .config import PROFILES, load_settings
from .core.orchestrator import Orchestrator
from .core.session import Session
from .core.types import PlanStatus
from .llm.ollama import has_ollama
from .memory.journal import Journal
from .sandbox.environment import SandboxInitError
from .tools.logs import log_event

EXIT_OK, EXIT_NOT_COMPLETED, EXIT_SETUP = 0, 1, 2

# === Affichage ================================================================
def _print_banner(s) -> None:
    print(f"Stepwise v{__version__} (profil {s.general.profile})")
    print(f"workspace = {s.general.workspace_path}")
    print(f"llm = {s.llm.backend}" + (f" ({s.llm.model})" if s.llm.backend != "dummy" else ""))
    print(f"limits = {{retries={s.agent.max_retry_attempts}, iterations={s.agent.max_iterations}, timeout={s.python.execution_timeout_sec}s}}")
    if s.memory.enabled:
        print(f"memory.db = {s.memory.db_path}")

# === Arguments ================================================================
def _parse_set(values: list[str] | None) -> dict:
    out = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"--set attend section.cle=valeur (reçu: {item!r})")
        out[key.strip()] = value.strip()
    return out

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser("stepwise", description="Stepwise: planifie, exécute et évalue une tâche dans un sandbox Python")
    ap.add_argument("--task", help="Tâche à accomplir (texte libre).")
    ap.add_argument("--config", default="config", help="Chemin vers le dossier de configuration.")
    ap.add_argument("--profile", choices=PROFILES, default="safe", help="Profil de configuration.")
    ap.add_argument("--workspace", help="Dossier de travail (remplace general.workspace_path).")
    ap.add_argument("--llm-model", help="dummy | tag Ollama (ex: llama3.1:8b-instruct-q4_K_M).")
    ap.add_argument("--max-iterations", type=int, help="Plafond global d'itérations exécution/évaluation.")
    ap.add_argument("--max-retries", type=int, help="Tentatives maximum par étape.")
    ap.add_argument("--set", action="append", metavar="SECTION.CLE=VALEUR", help="Surcharge de configuration (répétable).")
    # Mémoire
    ap.add_argument("--no-journal", action="store_true", help="Ne pas journaliser l'exécution (SQLite).")
    ap.add_argument("--memory-db", help="Chemin DB SQLite du journal.")
    ap.add_argument("--json", action="store_true", help="Afficher le plan final en JSON.")
    ap.add_argument("--version", action="store_true", help="Afficher la version et quitter.")
    return ap

def _overrides(args) -> dict:
    out = _parse_set(args.set)
    if args.workspace:
        out["workspace_path"] = args.workspace
    if args.llm_model:
        if args.llm_model.lower() == "dummy":
            out["llm.backend"] = "dummy"
        else:
            out["llm.backend"] = "ollama"
            out["llm.model"] = args.llm_model
    if args.max_iterations is not None:
        out["agent.max_iterations"] = args.max_iterations
    if args.max_retries is not None:
        out["agent.max_retry_attempts"] = args.max_retries
    if args.memory_db:
        out["memory.db_path"] = args.memory_db
    if args.no_journal:
        out["memory.enabled"] = False
    return out

# === Main ====================================================================
def main(argv: list[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.version:
        print(__version__)
        return EXIT_OK
    if not args.task or not args.task.strip():
        ap.print_usage(sys.stderr)
        print("ERR: --task est requis", file=sys.stderr)
        return EXIT_SETUP

    try:
        s = load_settings(config=args.config, profile=args.profile, overrides=_overrides(args))
    except (KeyError, ValueError, argparse.ArgumentTypeError) as e:
        print(f"ERR: configuration invalide: {e}", file=sys.stderr)
        return EXIT_SETUP

    if s.llm.backend == "ollama" and not has_ollama():
        print("ERR: Ollama non disponible. Installez-le ou utilisez --llm-model dummy.", file=sys.stderr)
        return EXIT_SETUP

    _print_banner(s)

    journal = Journal(s) if s.memory.enabled else False
    session = Session.create(s, journal=journal)
    previous = signal.signal(signal.SIGINT, lambda *_: session.cancel.cancel())
    orchestrator = Orchestrator(session)
    try:
        print("\n=== PROGRESSION ===")
        for record in orchestrator.iter_run(args.task.strip()):
            print(record.line(), flush=True)
    except SandboxInitError as e:
        print(f"ERR: sandbox: {e}", file=sys.stderr)
        return EXIT_SETUP
    finally:
        signal.signal(signal.SIGINT, previous)
        session.close()

    plan = orchestrator.plan
    print("\n=== RÉSUMÉ ===")
    print(plan.summary())
    if args.json:
        print(json.dumps(plan.to_dict(), ensure_ascii=False, indent=2))
    print(f"\nSTATUS: {plan.status.value}")

    # trace texte, même sans journal SQLite
    try:
        log_event(s, f"cli run {plan.id}: {plan.status.value} ({args.task.strip()})")
    except OSError as e:
        print(f"[log] {e}", file=sys.stderr)
    return EXIT_OK if plan.status is PlanStatus.COMPLETED else EXIT_NOT_COMPLETED

if __name__ == "__main__":
    raise SystemExit(main())
