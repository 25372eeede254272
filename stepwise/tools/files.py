from __future__ import annotations
import fnmatch, shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional
from .errors import PathEscapeError

BINARY_EXTENSIONS = {
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".7z", ".tar", ".gz", ".exe", ".dll", ".so", ".dylib",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp",
    ".mp3", ".mp4", ".avi", ".mkv", ".wav", ".flac",
    ".bin", ".dat", ".db", ".sqlite",
}

def _mtime_iso(p: Path) -> str:
    ts = datetime.fromtimestamp(p.stat().st_mtime, tz=timezone.utc)
    return ts.isoformat(timespec="seconds").replace("+00:00", "Z")

# ---------------- Confinement workspace ----------------
def resolve_in_workspace(root: Path, rel_path: str) -> Path:
    """
    Résout `rel_path` contre la racine du workspace. Les chemins absolus sont
    acceptés seulement s'ils restent sous la racine. Jamais de recadrage silencieux.
    """
    if rel_path is None or not str(rel_path).strip():
        raise PathEscapeError("Chemin vide")
    base = Path(root).resolve()
    p = Path(rel_path).expanduser()
    full = (base / p).resolve() if not p.is_absolute() else p.resolve()
    # prevent escape
    try:
        full.relative_to(base)
    except ValueError:
        raise PathEscapeError(f"Chemin hors workspace: {rel_path}") from None
    return full

def relative_to_workspace(root: Path, path: Path) -> str:
    return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()

def safe_write_text(root: Path, rel_path: str, content: str, *, encoding: str = "utf-8") -> Path:
    dest = resolve_in_workspace(root, rel_path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(content, encoding=encoding)
    return dest

def safe_read_text(root: Path, rel_path: str, *, encoding: str = "utf-8") -> Optional[str]:
    """None si le fichier n'existe pas."""
    src = resolve_in_workspace(root, rel_path)
    if not src.is_file():
        return None
    return src.read_text(encoding=encoding, errors="replace")

def list_workspace_files(root: Path, subdirectory: str | None = None, *, exclude: Iterable[str] = ()) -> List[str]:
    """Fichiers relatifs à la racine, triés, séparateur '/', dossiers exclus ignorés (ex: venv)."""
    base = Path(root).resolve()
    start = resolve_in_workspace(base, subdirectory) if subdirectory else base
    if not start.is_dir():
        return []
    skip = set(exclude)
    out: List[str] = []
    for f in start.rglob("*"):
        if not f.is_file():
            continue
        rel = f.relative_to(base)
        if rel.parts and rel.parts[0] in skip:
            continue
        out.append(rel.as_posix())
    out.sort()
    return out

def snapshot(root: Path, *, exclude: Iterable[str] = ()) -> dict[str, int]:
    """{chemin relatif: mtime_ns} pour détecter les fichiers créés/modifiés."""
    base = Path(root).resolve()
    out: dict[str, int] = {}
    for rel in list_workspace_files(base, exclude=exclude):
        try:
            out[rel] = (base / rel).stat().st_mtime_ns
        except OSError:
            continue
    return out

def changed_since(before: dict[str, int], after: dict[str, int]) -> List[str]:
    return sorted(p for p, m in after.items() if before.get(p) != m)

# ---------------- Fichiers externes (bring-your-own-file) ----------------
def default_search_dirs() -> List[Path]:
    home = Path.home()
    return [d for d in (home / "Downloads", home / "Documents", home / "Desktop") if d.is_dir()]

def find_files(pattern: str, search_path: str | None = None, *, recursive: bool = True,
               max_results: int = 10, default_dirs: Iterable[str] = ()) -> tuple[List[dict], List[str]]:
    """
    Recherche hors workspace. `pattern` est un motif glob (insensible à la casse);
    sans joker il est traité comme une sous-chaîne du nom.
    """
    if search_path:
        dirs = [Path(search_path).expanduser()]
    else:
        dirs = [Path(d).expanduser() for d in default_dirs] or default_search_dirs()
    pat = pattern.lower()
    if not any(c in pat for c in "*?["):
        pat = f"*{pat}*"

    found: List[dict] = []
    searched: List[str] = []
    for d in dirs:
        if not d.is_dir():
            continue
        searched.append(str(d.resolve()))
        walker = d.rglob("*") if recursive else d.glob("*")
        try:
            for f in walker:
                if len(found) >= max_results:
                    break
                if not fnmatch.fnmatch(f.name.lower(), pat):
                    continue
                try:
                    if not f.is_file():
                        continue
                    found.append(file_info(f))
                except OSError:
                    continue
        except PermissionError:
            continue
        if len(found) >= max_results:
            break
    return found, searched

def file_info(p: Path) -> dict:
    return {
        "path": str(p.resolve()),
        "name": p.name,
        "size_bytes": p.stat().st_size,
        "last_modified": _mtime_iso(p),
        "extension": p.suffix.lower(),
    }

def read_external_file(file_path: str, *, max_size_kb: int = 1024) -> dict:
    p = Path(file_path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")
    info = file_info(p)
    if p.suffix.lower() in BINARY_EXTENSIONS:
        return {
            "success": True,
            "binary": True,
            "file_info": info,
            "message": "Fichier binaire: utilisez copy_to_workspace puis traitez-le avec un script Python.",
        }
    limit = max(1, int(max_size_kb)) * 1024
    with p.open("rb") as f:
        data = f.read(limit + 1)
    truncated = len(data) > limit
    return {
        "success": True,
        "binary": False,
        "content": data[:limit].decode("utf-8", errors="replace"),
        "truncated": truncated,
        "file_info": info,
    }

def copy_to_workspace(root: Path, source_path: str, destination_name: str | None = None) -> dict:
    src = Path(source_path).expanduser()
    if not src.is_file():
        raise FileNotFoundError(f"File not found: {source_path}")
    # la source est libre, la destination repasse par le confinement
    dest = resolve_in_workspace(root, destination_name or src.name)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dest)
    return {
        "success": True,
        "message": f"Copié dans le workspace: {dest.name}",
        "source_path": str(src.resolve()),
        "destination_path": str(dest),
        "workspace_relative_path": relative_to_workspace(root, dest),
        "size_bytes": dest.stat().st_size,
    }
