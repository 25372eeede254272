from __future__ import annotations
import sqlite3, json, hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List

ISO = lambda: datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

SCHEMA = [
    """CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ts TEXT NOT NULL,
        kind TEXT NOT NULL,
        level TEXT NOT NULL,
        message TEXT NOT NULL,
        data TEXT
    );""",
    """CREATE TABLE IF NOT EXISTS actions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ts TEXT NOT NULL,
        run_id TEXT,
        name TEXT NOT NULL,
        status TEXT NOT NULL,
        input TEXT,
        output TEXT
    );""",
    """CREATE TABLE IF NOT EXISTS artifacts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ts TEXT NOT NULL,
        run_id TEXT,
        path TEXT NOT NULL,
        sha256 TEXT NOT NULL,
        meta TEXT
    );""",
]

def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

def sha256_text(text: str, encoding: str = "utf-8") -> str:
    return sha256_bytes(text.encode(encoding))

def _loads(raw: str | None):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None

class MemoryDB:
    """Journal SQLite (WAL) d'une ou plusieurs exécutions: événements, appels d'outils, fichiers produits."""
    def __init__(self, path: str | Path):
        self.path = str(path)
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path)
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ---------------- Events ----------------
    def add_event(self, kind: str, level: str, message: str, data: Optional[dict] = None) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO events(ts, kind, level, message, data) VALUES (?, ?, ?, ?, ?)",
            (ISO(), kind, level, message, json.dumps(data or {}, ensure_ascii=False, default=str)),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def list_events(self, kind: Optional[str] = None, limit: int = 100, *, after_id: int = 0) -> List[dict]:
        cur = self.conn.cursor()
        if kind:
            cur.execute("SELECT id, ts, kind, level, message, data FROM events WHERE kind=? AND id>? ORDER BY id DESC LIMIT ?", (kind, after_id, limit))
        else:
            cur.execute("SELECT id, ts, kind, level, message, data FROM events WHERE id>? ORDER BY id DESC LIMIT ?", (after_id, limit))
        return [
            {"id": r[0], "ts": r[1], "kind": r[2], "level": r[3], "message": r[4], "data": _loads(r[5])}
            for r in cur.fetchall()
        ]

    # ---------------- Actions ----------------
    def add_action(self, name: str, status: str, input: Optional[dict] = None, output: Optional[dict] = None, *, run_id: str | None = None) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO actions(ts, run_id, name, status, input, output) VALUES (?, ?, ?, ?, ?, ?)",
            (ISO(), run_id, name, status, json.dumps(input or {}, ensure_ascii=False, default=str), json.dumps(output or {}, ensure_ascii=False, default=str)),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def list_actions(self, limit: int = 100, *, run_id: str | None = None) -> List[dict]:
        cur = self.conn.cursor()
        if run_id:
            cur.execute("SELECT id, ts, run_id, name, status, input, output FROM actions WHERE run_id=? ORDER BY id DESC LIMIT ?", (run_id, limit))
        else:
            cur.execute("SELECT id, ts, run_id, name, status, input, output FROM actions ORDER BY id DESC LIMIT ?", (limit,))
        return [
            {"id": r[0], "ts": r[1], "run_id": r[2], "name": r[3], "status": r[4], "input": _loads(r[5]), "output": _loads(r[6])}
            for r in cur.fetchall()
        ]

    # ---------------- Artifacts ----------------
    def add_artifact(self, path: str, meta: Optional[dict] = None, *, content_bytes: bytes | None = None, run_id: str | None = None) -> int:
        digest = sha256_bytes(content_bytes) if content_bytes is not None else sha256_text(path)
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO artifacts(ts, run_id, path, sha256, meta) VALUES (?, ?, ?, ?, ?)",
            (ISO(), run_id, path, digest, json.dumps(meta or {}, ensure_ascii=False, default=str)),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def counts(self) -> dict:
        cur = self.conn.cursor()
        out = {}
        for table in ("events", "actions", "artifacts"):
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            out[table] = cur.fetchone()[0]
        return out

def persist_run(db: "MemoryDB", task: str, status: str, data: dict | None = None) -> int:
    level = "info" if status == "completed" else "warning"
    return db.add_event(kind="run", level=level, message=f"task={task}", data={"status": status, **(data or {})})
