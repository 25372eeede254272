from pathlib import Path
from starlette.testclient import TestClient
from stepwise.web.app import create_app

def _client(tmp_path: Path) -> TestClient:
    ws = tmp_path / "ws"
    (ws / "output").mkdir(parents=True)
    (ws / "output" / "result.csv").write_text("a,b\n1,2\n", encoding="utf-8")
    (ws / "output" / "blob.bin").write_bytes(b"\x00")
    (ws / "venv" / "lib").mkdir(parents=True)
    (ws / "venv" / "lib" / "site.txt").write_text("x", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("s", encoding="utf-8")
    return TestClient(create_app(str(tmp_path / "ui.db"), workspace_path=str(ws), log_dir=str(tmp_path / "logs")))

def test_list_files_excludes_venv(tmp_path: Path):
    js = _client(tmp_path).get("/api/files").json()
    paths = [x["path"] for x in js["items"]]
    assert paths == ["output/result.csv"]
    assert js["count"] == 1

def test_download_rules(tmp_path: Path):
    client = _client(tmp_path)
    r = client.get("/files/download", params={"path": "output/result.csv"})
    assert r.status_code == 200 and r.text.startswith("a,b")
    assert client.get("/files/download", params={"path": "../secret.txt"}).status_code == 403
    assert client.get("/files/download", params={"path": "output/absent.csv"}).status_code == 404
    assert client.get("/files/download", params={"path": "output/blob.bin"}).status_code == 403
