from __future__ import annotations
import json, re

_FENCE = re.compile(r"```[a-zA-Z0-9_-]*")

def strip_fences(text: str) -> str:
    return _FENCE.sub("", text or "").strip()

def extract_json_object(text: str) -> dict:
    """
    Les réponses du LLM sont du texte non fiable: on retire les blocs ```json,
    puis on parse l'intervalle premier '{' -> dernier '}'.
    Lève ValueError si rien d'exploitable.
    """
    cleaned = strip_fences(text)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Aucun objet JSON dans la réponse")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"JSON invalide: {e.msg}") from None
    if not isinstance(data, dict):
        raise ValueError("La réponse JSON n'est pas un objet")
    return data

def pick(data: dict, *keys: str, default=None):
    """Premier champ présent parmi des variantes (snake_case / camelCase)."""
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default

def as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "oui"}
    return bool(value)
