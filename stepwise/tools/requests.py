from __future__ import annotations
import json, types, typing
from dataclasses import MISSING, dataclass, fields
from typing import Any, ClassVar, Mapping, Optional, Union
from .errors import ToolArgumentError, UnknownToolError

__all__ = ["TOOL_REQUESTS", "EXTERNAL_TOOLS", "ToolRequest", "parse_tool_request", "describe_tools"]

# Une classe par outil: le nom de l'outil est l'étiquette, les champs sans défaut sont requis.

@dataclass(frozen=True)
class WriteFileRequest:
    """Écrit un fichier texte dans le workspace."""
    TOOL: ClassVar[str] = "write_file"
    filename: str
    content: str

@dataclass(frozen=True)
class ReadFileRequest:
    """Lit un fichier texte du workspace."""
    TOOL: ClassVar[str] = "read_file"
    filename: str

@dataclass(frozen=True)
class ListFilesRequest:
    """Liste les fichiers du workspace (venv exclu)."""
    TOOL: ClassVar[str] = "list_files"
    subdirectory: Optional[str] = None

@dataclass(frozen=True)
class ExecutePythonRequest:
    """Enregistre le code dans scripts/ puis l'exécute dans le venv du sandbox."""
    TOOL: ClassVar[str] = "execute_python"
    script_content: str
    script_name: Optional[str] = None

@dataclass(frozen=True)
class ExecuteScriptFileRequest:
    """Exécute un script déjà présent dans le workspace, avec arguments optionnels."""
    TOOL: ClassVar[str] = "execute_script_file"
    script_path: str
    arguments: Union[str, list, None] = None

@dataclass(frozen=True)
class InstallPackageRequest:
    """Installe un ou plusieurs paquets pip (séparés par des espaces) dans le venv."""
    TOOL: ClassVar[str] = "install_package"
    package_name: str

@dataclass(frozen=True)
class FindFilesRequest:
    """Cherche des fichiers hors workspace (Téléchargements, Documents, Bureau par défaut)."""
    TOOL: ClassVar[str] = "find_files"
    filename_pattern: str
    search_path: Optional[str] = None
    recursive: bool = True
    max_results: Optional[int] = None

@dataclass(frozen=True)
class ReadExternalFileRequest:
    """Lit un fichier texte hors workspace (les binaires renvoient seulement leurs métadonnées)."""
    TOOL: ClassVar[str] = "read_external_file"
    file_path: str
    max_size_kb: Optional[int] = None

@dataclass(frozen=True)
class CopyToWorkspaceRequest:
    """Copie un fichier externe dans le workspace pour le traiter avec un script."""
    TOOL: ClassVar[str] = "copy_to_workspace"
    source_path: str
    destination_name: Optional[str] = None

ToolRequest = Union[
    WriteFileRequest, ReadFileRequest, ListFilesRequest, ExecutePythonRequest,
    ExecuteScriptFileRequest, InstallPackageRequest, FindFilesRequest,
    ReadExternalFileRequest, CopyToWorkspaceRequest,
]

TOOL_REQUESTS: dict[str, type] = {cls.TOOL: cls for cls in typing.get_args(ToolRequest)}
EXTERNAL_TOOLS = frozenset({"find_files", "read_external_file", "copy_to_workspace"})

def _is_required(f) -> bool:
    return f.default is MISSING and f.default_factory is MISSING

def _convert(tool: str, name: str, tp: Any, value: Any) -> Any:
    origin = typing.get_origin(tp)
    if origin in (Union, types.UnionType):
        options = [a for a in typing.get_args(tp) if a is not type(None)]
        for opt in options:
            try:
                return _convert(tool, name, opt, value)
            except ToolArgumentError:
                continue
        raise ToolArgumentError(f"{tool}: type invalide pour '{name}' ({type(value).__name__})")
    if tp is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
    elif tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
    elif tp is list:
        if isinstance(value, list):
            return [str(v) for v in value]
    elif tp is str:
        if isinstance(value, str):
            return value
    raise ToolArgumentError(f"{tool}: type invalide pour '{name}' ({type(value).__name__})")

def parse_tool_request(tool_name: str, arguments: str | Mapping[str, Any] | None) -> ToolRequest:
    """
    Valide le nom puis les arguments requis de l'outil. Aucun défaut silencieux
    pour un argument requis; les clés inconnues sont ignorées.
    """
    cls = TOOL_REQUESTS.get(tool_name)
    if cls is None:
        raise UnknownToolError(f"Unknown tool: {tool_name}")

    if arguments is None or (isinstance(arguments, str) and not arguments.strip()):
        args: Mapping[str, Any] = {}
    elif isinstance(arguments, str):
        try:
            args = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"{tool_name}: arguments JSON invalides ({e.msg})") from None
    else:
        args = arguments
    if not isinstance(args, Mapping):
        raise ToolArgumentError(f"{tool_name}: les arguments doivent être un objet JSON")

    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        value = args.get(f.name)
        if value is None:
            if _is_required(f):
                raise ToolArgumentError(f"{tool_name}: argument requis manquant '{f.name}'")
            continue
        kwargs[f.name] = _convert(tool_name, f.name, hints[f.name], value)
    return cls(**kwargs)

def describe_tools(*, external: bool = True) -> str:
    """Catalogue des outils pour le prompt de l'exécuteur."""
    lines = []
    for name, cls in TOOL_REQUESTS.items():
        if not external and name in EXTERNAL_TOOLS:
            continue
        params = ", ".join(f.name if _is_required(f) else f"{f.name}?" for f in fields(cls))
        lines.append(f"- {name}({params}): {cls.__doc__}")
    return "\n".join(lines)
