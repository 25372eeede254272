from pathlib import Path

from stepwise.core.orchestrator import run_task
from stepwise.core.session import Session
from stepwise.memory.db import MemoryDB
from stepwise.memory.journal import Journal
from stepwise.tools.logs import LOG_NAME, log_event
from conftest import ScriptedLLM, plan_json, run_code

def test_log_event_single_line(settings):
    path = log_event(settings, "ligne 1\nligne 2")
    text = path.read_text(encoding="utf-8")
    assert path.name == LOG_NAME
    assert text.count("\n") == 1
    assert "| ligne 1 ligne 2" in text

def test_run_is_journaled(ready_settings):
    llm = ScriptedLLM(planner=[plan_json("fichier")],
                      executor=run_code("open('output/a.txt', 'w').write('x')\nprint('ok')"))
    with Session.create(ready_settings, llm=llm) as session:
        result = run_task(session, "fichier")
    assert result.status == "completed"

    db = MemoryDB(ready_settings.memory.db_path)
    try:
        counts = db.counts()
        runs = db.list_events(kind="run")
        actions = db.list_actions(run_id=result.plan.id)
    finally:
        db.close()
    assert counts["events"] >= len(result.records) + 2
    assert runs[0]["data"]["status"] == "completed"
    assert [a["name"] for a in actions] == ["execute_python"]
    assert counts["artifacts"] >= 1
    log = Path(ready_settings.general.log_dir) / LOG_NAME
    assert result.plan.id in log.read_text(encoding="utf-8")

def test_journal_failure_does_not_break_run(ready_settings, capsys):
    class BrokenDB:
        def __getattr__(self, name):
            def fail(*a, **kw):
                raise OSError("disque plein")
            return fail

    journal = Journal(ready_settings, db=BrokenDB())
    llm = ScriptedLLM(planner=[plan_json("a")], executor=run_code("print(1)"))
    result = run_task(Session.create(ready_settings, llm=llm, journal=journal), "t")
    assert result.status == "completed"
    assert "[journal] désactivé" in capsys.readouterr().err
