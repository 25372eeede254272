from __future__ import annotations
import shutil
from .base import LLM, LLMError, LLMRequest
from ..sandbox.process import run_process
from ..security.kill import CancelToken

def has_ollama() -> bool:
    return bool(shutil.which("ollama"))

class OllamaCLI(LLM):
    """
    Appelle 'ollama run <model>' en local (pas d'HTTP).
    Nécessite que le binaire 'ollama' soit sur le PATH (Windows: winget install Ollama.Ollama).
    L'appel passe par run_process: annulable (CancelToken) et borné par timeout.
    """
    def __init__(self, model: str, *, extra: list[str] | None = None, cancel: CancelToken | None = None,
                 timeout: float | None = 600, json_mode: bool = False):
        self.model = model
        self.extra = list(extra or [])
        self.cancel = cancel
        self.timeout = timeout
        self.json_mode = json_mode

    def generate(self, req: LLMRequest) -> str:
        if self.cancel is not None:
            self.cancel.check()
        if not has_ollama():
            raise LLMError("Ollama non disponible (binaire 'ollama' introuvable sur PATH).")
        prompt = f"{req.system}\n\n{req.prompt}" if req.system else req.prompt
        cmd = ["ollama", "run", self.model, *self.extra]
        if req.schema is not None and self.json_mode:
            cmd += ["--format", "json"]
        cmd.append(prompt)
        try:
            p = run_process(cmd, timeout=self.timeout, cancel=self.cancel, env={"PYTHONIOENCODING": "utf-8"})
        except OSError as e:
            raise LLMError(f"ollama run impossible: {e}") from e
        if p.cancelled:
            # l'appel en cours est abandonné; le token relève l'annulation
            self.cancel.check()
        if p.timed_out:
            raise LLMError(f"ollama run: pas de réponse après {self.timeout}s")
        if p.returncode != 0:
            raise LLMError(f"ollama run a échoué: {p.stderr.strip() or p.stdout.strip()}")
        out = p.stdout.strip()
        if not out:
            raise LLMError("ollama run: réponse vide")
        return out
