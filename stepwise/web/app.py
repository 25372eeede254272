from __future__ import annotations
import json, mimetypes, asyncio
from pathlib import Path
from fastapi import FastAPI, Query, HTTPException
from fastapi.responses import FileResponse, StreamingResponse
from ..memory.db import MemoryDB
from ..tools.errors import PathEscapeError
from ..tools.files import list_workspace_files, resolve_in_workspace

# -------- FICHIERS (workspace) --------
ALLOWED_EXTS = {".txt", ".log", ".json", ".png", ".jpg", ".jpeg", ".csv", ".md", ".pdf", ".html", ".svg", ".py"}
MAX_DOWNLOAD_BYTES = 20 * 1024 * 1024  # 20 MB
SSE_POLL_SEC = 1.0

def create_app(db_path: str, workspace_path: str, log_dir: str, *, profile: str = "safe",
               kill_switch_path: str | None = None, venv_name: str = "venv") -> FastAPI:
    """Tableau de bord JSON: suivi des exécutions (journal SQLite) et fichiers produits."""
    app = FastAPI(title="Stepwise Dashboard", docs_url=None, redoc_url=None)

    app.state.db_path = db_path
    app.state.workspace = Path(workspace_path).resolve()
    app.state.log_dir = Path(log_dir).resolve()
    app.state.profile = profile
    app.state.kill_switch_path = kill_switch_path
    app.state.venv_name = venv_name

    def _with_db() -> MemoryDB:
        return MemoryDB(app.state.db_path)

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "profile": app.state.profile}

    @app.post("/api/kill")
    def kill() -> dict:
        if not app.state.kill_switch_path:
            raise HTTPException(status_code=400, detail="Kill-switch file path non configuré")
        p = Path(app.state.kill_switch_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("KILLED", encoding="utf-8")
        return {"status": "engaged", "path": str(p)}

    @app.get("/api/stats")
    def stats() -> dict:
        db = _with_db()
        try:
            return db.counts()
        finally:
            db.close()

    @app.get("/api/events")
    def list_events(limit: int = 50, kind: str | None = None) -> list[dict]:
        db = _with_db()
        try:
            return db.list_events(kind=kind, limit=max(1, min(500, limit)))
        finally:
            db.close()

    @app.get("/api/actions")
    def list_actions(limit: int = 50, run_id: str | None = None) -> list[dict]:
        db = _with_db()
        try:
            return db.list_actions(limit=max(1, min(500, limit)), run_id=run_id)
        finally:
            db.close()

    async def _sse_generator(last_id: int | None, once: bool = False):
        _last = last_id or 0
        while True:
            db = _with_db()
            try:
                # list_events renvoie du plus récent au plus ancien
                rows = list(reversed(db.list_events(limit=100, after_id=_last)))
            finally:
                db.close()
            for row in rows:
                _last = int(row["id"])
                yield f"id: {_last}\ndata: {json.dumps(row, ensure_ascii=False)}\n\n".encode("utf-8")
            if once:
                break
            if not rows:
                await asyncio.sleep(SSE_POLL_SEC)

    @app.get("/api/events/stream")
    async def events_stream(last_id: int | None = Query(default=None), once: bool = Query(default=False)) -> StreamingResponse:
        gen = _sse_generator(last_id=last_id, once=once)
        return StreamingResponse(gen, media_type="text/event-stream", headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})

    def _safe_join_workspace(relpath: str) -> Path:
        try:
            return resolve_in_workspace(app.state.workspace, relpath)
        except PathEscapeError:
            raise HTTPException(status_code=403, detail="Chemin hors workspace") from None

    @app.get("/api/files")
    def api_files() -> dict:
        root = app.state.workspace
        root.mkdir(parents=True, exist_ok=True)
        items = []
        for rel in list_workspace_files(root, exclude=[app.state.venv_name]):
            f = root / rel
            if f.suffix.lower() in ALLOWED_EXTS:
                items.append({"path": rel, "size": f.stat().st_size, "ext": f.suffix.lower()})
        return {"root": str(root), "count": len(items), "items": items[:2000]}

    @app.get("/files/download")
    def download(path: str):
        target = _safe_join_workspace(path)
        if not target.exists() or not target.is_file():
            raise HTTPException(status_code=404, detail="Fichier introuvable")
        if target.suffix.lower() not in ALLOWED_EXTS:
            raise HTTPException(status_code=403, detail="Extension non autorisée")
        if target.stat().st_size > MAX_DOWNLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Fichier trop volumineux")
        mime, _ = mimetypes.guess_type(target.name)
        return FileResponse(str(target), media_type=mime or "application/octet-stream", filename=target.name)

    return app
