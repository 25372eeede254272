from __future__ import annotations
from dataclasses import dataclass, field, fields
from pathlib import Path
import tomllib, os

PROFILES = ["safe", "balanced", "danger"]
LLM_BACKENDS = ["dummy", "ollama"]

@dataclass
class General:
    profile: str = "safe"
    workspace_path: str = "data/workspace"
    log_dir: str = "data/logs"
    kill_switch_path: str = "data/kill.switch"

@dataclass
class Python:
    # interpréteur de base utilisé pour créer le venv ("" = interpréteur courant)
    executable: str = ""
    venv_name: str = "venv"
    pip_name: str = "pip"
    scripts_dir: str = "scripts"
    output_dir: str = "output"
    execution_timeout_sec: float = 120.0
    pip_timeout_sec: float = 300.0
    max_output_bytes: int = 102400
    default_packages: list[str] = field(default_factory=list)
    upgrade_pip: bool = True

@dataclass
class Agent:
    max_retry_attempts: int = 3
    max_iterations: int = 10
    max_steps_per_plan: int = 20
    max_tool_rounds: int = 12
    retry_base_delay_sec: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay_sec: float = 30.0

@dataclass
class Tools:
    # find_files / read_external_file / copy_to_workspace
    external_files: bool = True
    find_max_results: int = 10
    read_external_max_kb: int = 1024
    find_search_paths: list[str] = field(default_factory=list)

@dataclass
class LLM:
    backend: str = "dummy"
    model: str = "llama3.1:8b-instruct-q4_K_M"
    max_tokens: int = 2048
    temperature: float = 0.2
    structured_output: bool = False
    timeout_sec: float = 600.0

@dataclass
class Memory:
    enabled: bool = True
    db_path: str = "data/memory.db"

@dataclass
class Settings:
    general: General = field(default_factory=General)
    python: Python = field(default_factory=Python)
    agent: Agent = field(default_factory=Agent)
    tools: Tools = field(default_factory=Tools)
    llm: LLM = field(default_factory=LLM)
    memory: Memory = field(default_factory=Memory)

SECTIONS = {
    "general": General,
    "python": Python,
    "agent": Agent,
    "tools": Tools,
    "llm": LLM,
    "memory": Memory,
}

def _load_toml_if_exists(path: Path) -> dict:
    if path.exists():
        with path.open("rb") as f:
            return tomllib.load(f)
    return {}

def _read_profile_toml(config_path: Path, profile: str) -> dict:
    """
    Cherche dans:
      - config/defaults.toml et config/profiles/<profile>.toml
      - puis fallback: config/<profile>.toml
    """
    cfg_dir = config_path if config_path.is_dir() else config_path.parent

    data = _load_toml_if_exists(cfg_dir / "defaults.toml")

    prof = _load_toml_if_exists(cfg_dir / "profiles" / f"{profile}.toml")
    if not prof:
        prof = _load_toml_if_exists(cfg_dir / f"{profile}.toml")

    # Fusion superficielle defaults <- profil
    base = data or {}
    for k, v in prof.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k].update(v)
        else:
            base[k] = v
    return base

def _filter_for_dataclass(cls, data: dict) -> dict:
    """Ne garde que les clés connues du dataclass (évite TypeError sur clés en trop)."""
    allowed = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in allowed}

def _coerce(current, value):
    # les overrides CLI arrivent en texte: on les ramène au type du défaut
    if not isinstance(value, str) or isinstance(current, str):
        return value
    if isinstance(current, bool):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        return [v.strip() for v in value.split(",") if v.strip()]
    return value

def apply_overrides(settings: Settings, overrides: dict) -> Settings:
    """
    Clés simples -> section General (comportement historique),
    clés pointées "section.cle" -> section correspondante.
    """
    for key, value in overrides.items():
        if value is None:
            continue
        section_name, _, name = key.rpartition(".")
        section = getattr(settings, section_name or "general", None)
        if section is None or not hasattr(section, name):
            raise KeyError(f"Option de configuration inconnue: {key}")
        setattr(section, name, _coerce(getattr(section, name), value))
    return settings

def load_settings(config: str | None, profile: str, overrides: dict | None = None) -> Settings:
    config_path = Path(config) if config else Path("config")
    raw = _read_profile_toml(config_path, profile)

    # Workspace via env prioritaire
    env_ws = os.environ.get("STEPWISE_WORKSPACE")
    if env_ws:
        raw.setdefault("general", {})["workspace_path"] = env_ws

    sections = {name: cls(**_filter_for_dataclass(cls, raw.get(name))) for name, cls in SECTIONS.items()}
    settings = Settings(**sections)
    settings.general.profile = profile

    if overrides:
        apply_overrides(settings, overrides)
    return settings
