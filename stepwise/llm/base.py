from __future__ import annotations
from dataclasses import dataclass

class LLMError(RuntimeError):
    """Service LLM injoignable ou réponse inutilisable."""

@dataclass
class LLMRequest:
    prompt: str
    system: str = ""
    # planner | executor | evaluator
    role: str = ""
    # contrainte de sortie JSON (best effort selon le backend)
    schema: dict | None = None
    max_tokens: int = 256
    temperature: float = 0.2

class LLM:
    def generate(self, req: LLMRequest) -> str:  # pragma: no cover - interface
        raise NotImplementedError
