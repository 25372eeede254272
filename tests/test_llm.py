import json

import pytest

from stepwise.config import Settings
from stepwise.core.prompts import TOOL_RESULTS_LABEL, build_plan_prompt
from stepwise.llm import DummyLLM, LLMRequest, OllamaCLI, build_llm, has_ollama
from stepwise.llm.parsing import extract_json_object, strip_fences

def test_extract_json_from_fenced_chatter():
    text = 'Voici le plan:\n```json\n{"steps": [{"description": "a"}]}\n```\nBonne chance'
    assert extract_json_object(text) == {"steps": [{"description": "a"}]}
    assert strip_fences("```python\nx\n```") == "x"

def test_extract_json_rejects_garbage():
    for bad in ("", "pas de json", "{ cassé", "[1, 2]"):
        with pytest.raises(ValueError):
            extract_json_object(bad)

def test_dummy_planner_and_executor_roles():
    llm = DummyLLM()
    plan = json.loads(llm.generate(LLMRequest(prompt=build_plan_prompt("print hello", 5), role="planner")))
    assert plan["steps"][0]["description"] == "print hello"

    first = llm.generate(LLMRequest(prompt="ÉTAPE :\nprint hello\n\nautre", role="executor"))
    call = extract_json_object(first)
    assert call["tool"] == "execute_python"
    assert "print('print hello')" in call["arguments"]["script_content"]

    done = llm.generate(LLMRequest(prompt=f"{TOOL_RESULTS_LABEL}\n" + '{"success": true}', role="executor"))
    assert extract_json_object(done)["final"]["result"] == "Success"

def test_dummy_without_role_is_plain_text():
    out = DummyLLM().generate(LLMRequest(prompt="TÂCHE :\nobjectif X"))
    assert out.splitlines()[0] == "1. Analyser la tâche: objectif X"

def test_build_llm_backends():
    s = Settings()
    assert isinstance(build_llm(s), DummyLLM)
    s.llm.backend = "ollama"
    assert isinstance(build_llm(s), OllamaCLI)
    s.llm.backend = "gpt"
    with pytest.raises(ValueError):
        build_llm(s)

@pytest.mark.skipif(not has_ollama(), reason="Ollama non installé")
def test_ollama_smoke():
    out = OllamaCLI("llama3.1:8b-instruct-q4_K_M", timeout=120).generate(LLMRequest(prompt="Dis bonjour."))
    assert isinstance(out, str) and out.strip()
