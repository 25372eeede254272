from __future__ import annotations
import os, sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional
from ..config import Settings
from ..core.types import SandboxEnvironment
from ..security.kill import CancelToken
from .process import run_process

__all__ = ["SandboxManager", "SandboxInitError", "InstallOutcome", "venv_binary"]

_VERSION_TIMEOUT_SEC = 10

class SandboxInitError(RuntimeError):
    """Échec d'initialisation du sandbox (fatal pour l'exécution)."""

@dataclass
class InstallOutcome:
    success: bool
    requested: List[str] = field(default_factory=list)
    installed: List[str] = field(default_factory=list)
    message: str = ""

def venv_binary(venv_path: Path, name: str, *, windows: bool | None = None) -> Path:
    """Chemin d'un exécutable du venv: bin/<name> (POSIX) ou Scripts/<name>.exe (Windows)."""
    windows = (os.name == "nt") if windows is None else windows
    if windows:
        exe = name if name.lower().endswith(".exe") else f"{name}.exe"
        return venv_path / "Scripts" / exe
    return venv_path / "bin" / name

class SandboxManager:
    """
    Propriétaire exclusif de l'arborescence du workspace:
        <workspace>/<venv>/  <workspace>/scripts/  <workspace>/output/
    Les paquets installés s'accumulent pendant toute l'exécution (jamais désinstallés).
    """
    def __init__(self, settings: Settings, cancel: CancelToken | None = None):
        self.settings = settings
        self.cancel = cancel
        self.environment = self._layout(Path(settings.general.workspace_path))

    def _layout(self, workspace: Path) -> SandboxEnvironment:
        py = self.settings.python
        ws = workspace.resolve()
        return SandboxEnvironment(
            workspace_path=ws,
            venv_path=ws / py.venv_name,
            scripts_path=ws / py.scripts_dir,
            output_path=ws / py.output_dir,
        )

    # ---------------- Chemins ----------------
    @property
    def workspace_path(self) -> Path:
        return self.environment.workspace_path

    @property
    def python_path(self) -> Path:
        return venv_binary(self.environment.venv_path, "python")

    @property
    def pip_path(self) -> Path:
        return venv_binary(self.environment.venv_path, self.settings.python.pip_name)

    @property
    def installed_packages(self) -> set[str]:
        return self.environment.installed_packages

    def _base_python(self) -> str:
        return self.settings.python.executable or sys.executable

    # ---------------- Cycle de vie ----------------
    def initialize(self, workspace_path: str | os.PathLike | None = None) -> SandboxEnvironment:
        """
        Idempotent. Crée workspace/scripts/output, le venv s'il manque (on vérifie
        la présence du binaire python, pas seulement du dossier), met pip à jour
        puis installe les paquets par défaut.
        """
        if workspace_path is not None:
            previous = self.environment.installed_packages
            self.environment = self._layout(Path(workspace_path))
            self.environment.installed_packages |= previous
        env = self.environment
        for d in (env.workspace_path, env.scripts_path, env.output_path):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SandboxInitError(f"Impossible de créer {d}: {e}") from e

        if not self.python_path.exists():
            self._create_venv()
            if self.settings.python.upgrade_pip:
                self._upgrade_pip()

        defaults = [p for p in self.settings.python.default_packages if p not in env.installed_packages]
        if defaults:
            outcome = self.install_packages(defaults)
            if not outcome.success:
                raise SandboxInitError(f"Paquets par défaut non installés: {outcome.message}")

        if not self.is_ready():
            raise SandboxInitError(f"Interpréteur du sandbox inutilisable: {self.python_path}")
        return env

    def _create_venv(self) -> None:
        venv = self.environment.venv_path
        cmd = [self._base_python(), "-m", "venv", str(venv)]
        try:
            res = run_process(cmd, cwd=self.workspace_path, timeout=self.settings.python.pip_timeout_sec, cancel=self.cancel)
        except OSError as e:
            raise SandboxInitError(f"Création du venv impossible ({cmd[0]}): {e}") from e
        if not res.ok or not self.python_path.exists():
            detail = (res.stderr or res.stdout).strip() or f"code {res.returncode}"
            raise SandboxInitError(f"Création du venv échouée: {detail}")

    def _upgrade_pip(self) -> bool:
        # échec non bloquant: un pip ancien reste utilisable
        cmd = [str(self.python_path), "-m", "pip", "install", "--upgrade", "pip"]
        try:
            res = run_process(cmd, cwd=self.workspace_path, timeout=self.settings.python.pip_timeout_sec, cancel=self.cancel)
        except OSError as e:
            print(f"[sandbox] mise à jour de pip impossible: {e}", file=sys.stderr)
            return False
        if not res.ok:
            print(f"[sandbox] mise à jour de pip échouée: {res.stderr.strip()[:500]}", file=sys.stderr)
        return res.ok

    def is_ready(self) -> bool:
        """Revérifie réellement l'interpréteur (python --version), sans cache."""
        if not self.python_path.exists():
            self.environment.ready = False
            return False
        try:
            res = run_process([str(self.python_path), "--version"], timeout=_VERSION_TIMEOUT_SEC, cancel=self.cancel)
        except OSError:
            res = None
        self.environment.ready = bool(res and res.ok)
        return self.environment.ready

    # ---------------- Paquets ----------------
    def install_packages(self, names: Iterable[str]) -> InstallOutcome:
        """
        Un seul appel pip par lot. Un lot en échec est signalé, jamais levé:
        seuls les lots réussis rejoignent installed_packages.
        """
        wanted: List[str] = []
        for n in names:
            for part in str(n).split():
                if part and part not in wanted:
                    wanted.append(part)
        todo = [n for n in wanted if n not in self.installed_packages]
        if not todo:
            return InstallOutcome(success=True, requested=wanted, message="Déjà installé")

        cmd = [str(self.pip_path), "install", *todo]
        try:
            res = run_process(
                cmd,
                cwd=self.workspace_path,
                timeout=self.settings.python.pip_timeout_sec,
                cancel=self.cancel,
                max_output_bytes=self.settings.python.max_output_bytes,
            )
        except OSError as e:
            return InstallOutcome(success=False, requested=wanted, message=f"pip introuvable ({self.pip_path}): {e}")

        if res.cancelled:
            return InstallOutcome(success=False, requested=wanted, message="Installation annulée")
        if res.timed_out:
            return InstallOutcome(success=False, requested=wanted, message=f"Installation interrompue après {self.settings.python.pip_timeout_sec}s")
        if res.returncode != 0:
            detail = (res.stderr or res.stdout).strip()[-2000:]
            return InstallOutcome(success=False, requested=wanted, message=f"pip install {' '.join(todo)} a échoué: {detail}")

        self.installed_packages.update(todo)
        return InstallOutcome(success=True, requested=wanted, installed=todo, message=f"Installé: {', '.join(todo)}")

    def cleanup(self) -> None:
        """Le workspace est conservé (résultats consultables); rien à libérer."""
        self.environment.ready = False
