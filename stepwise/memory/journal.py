from __future__ import annotations
import sqlite3, sys
from pathlib import Path
from typing import Optional
from ..config import Settings
from ..core.types import Plan, ProgressRecord
from ..tools.logs import log_event
from .db import MemoryDB, persist_run

_MAX_ARTIFACT_HASH_BYTES = 20 * 1024 * 1024

class Journal:
    """
    Trace d'une exécution: SQLite (events/actions/artifacts) + ligne texte dans stepwise.log.
    Purement observationnel: une erreur d'écriture est signalée sur stderr, jamais propagée.
    """
    def __init__(self, settings: Settings, db: MemoryDB | None = None):
        self.settings = settings
        self.db = db if db is not None else MemoryDB(settings.memory.db_path)
        self.run_id: Optional[str] = None
        self._broken = False

    def _guard(self, what: str, fn, *args, **kwargs):
        if self._broken:
            return None
        try:
            return fn(*args, **kwargs)
        except (OSError, sqlite3.Error) as e:
            self._broken = True
            print(f"[journal] désactivé ({what}): {type(e).__name__}: {e}", file=sys.stderr)
        return None

    def start(self, plan: Plan) -> None:
        self.run_id = plan.id
        self._guard("start", self.db.add_event, "run_start", "info", f"task={plan.original_task}", {"run_id": plan.id})
        self._guard("log", log_event, self.settings, f"run {plan.id} start: {plan.original_task}")

    def progress(self, record: ProgressRecord) -> None:
        level = "warning" if record.phase in ("failed", "impossible", "cancelled", "retrying") else "info"
        data = {**record.to_dict(), "run_id": self.run_id}
        self._guard("progress", self.db.add_event, "progress", level, record.message, data)
        self._guard("log", log_event, self.settings, f"{self.run_id or '-'} {record.line()}")

    def tool_call(self, name: str, success: bool, arguments: dict, payload: dict) -> None:
        self._guard("action", self.db.add_action, name, "ok" if success else "error", arguments, payload, run_id=self.run_id)

    def artifact(self, path: Path, meta: dict | None = None) -> None:
        p = Path(path)
        content = None
        try:
            if p.is_file() and p.stat().st_size <= _MAX_ARTIFACT_HASH_BYTES:
                content = p.read_bytes()
        except OSError:
            content = None
        self._guard("artifact", self.db.add_artifact, str(p), meta, content_bytes=content, run_id=self.run_id)

    def finish(self, plan: Plan) -> None:
        data = {"run_id": plan.id, "steps": len(plan.steps), "iterations": plan.total_iterations, "issues": plan.issues}
        self._guard("finish", persist_run, self.db, plan.original_task, plan.status.value, data)
        self._guard("log", log_event, self.settings, f"run {plan.id} end: {plan.status.value}")

    def close(self) -> None:
        self._guard("close", self.db.close)
