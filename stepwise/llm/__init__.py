from __future__ import annotations
from ..config import Settings
from ..security.kill import CancelToken
from .base import LLM, LLMError, LLMRequest
from .dummy import DummyLLM
from .ollama import OllamaCLI, has_ollama
from .parsing import extract_json_object

__all__ = ["LLM", "LLMError", "LLMRequest", "DummyLLM", "OllamaCLI", "has_ollama", "extract_json_object", "build_llm"]

def build_llm(settings: Settings, cancel: CancelToken | None = None) -> LLM:
    s = settings.llm
    if s.backend == "dummy":
        return DummyLLM()
    if s.backend == "ollama":
        return OllamaCLI(s.model, cancel=cancel, timeout=s.timeout_sec, json_mode=s.structured_output)
    raise ValueError(f"Backend LLM inconnu: {s.backend}")
