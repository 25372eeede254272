from pathlib import Path

from stepwise.memory.db import MemoryDB, persist_run

def test_events_actions_artifacts_roundtrip(tmp_path: Path):
    db = MemoryDB(tmp_path / "mem.db")
    try:
        eid = db.add_event("unit", "info", "hello", {"a": 1})
        assert eid > 0
        ev = db.list_events(limit=5)
        assert ev and ev[0]["message"] == "hello" and ev[0]["data"] == {"a": 1}

        db.add_action("write_file", "ok", {"filename": "a.txt"}, {"success": True}, run_id="r1")
        db.add_action("read_file", "error", {}, {}, run_id="r2")
        assert [a["name"] for a in db.list_actions(run_id="r1")] == ["write_file"]

        art = db.add_artifact(str(tmp_path / "a.txt"), {"tool": "write_file"}, content_bytes=b"x", run_id="r1")
        assert art > 0
        assert db.counts() == {"events": 1, "actions": 2, "artifacts": 1}
    finally:
        db.close()

def test_list_events_after_id_and_kind(tmp_path: Path):
    db = MemoryDB(tmp_path / "mem.db")
    try:
        first = db.add_event("progress", "info", "a")
        db.add_event("run", "info", "b")
        db.add_event("progress", "warning", "c")
        assert [e["message"] for e in db.list_events(after_id=first)] == ["c", "b"]
        assert [e["message"] for e in db.list_events(kind="progress")] == ["c", "a"]
    finally:
        db.close()

def test_persist_run_levels(tmp_path: Path):
    db = MemoryDB(tmp_path / "mem.db")
    try:
        persist_run(db, "t", "completed")
        persist_run(db, "t", "failed", {"steps": 2})
        rows = db.list_events(kind="run")
        assert [r["level"] for r in rows] == ["warning", "info"]
        assert rows[0]["data"] == {"status": "failed", "steps": 2}
    finally:
        db.close()
