from __future__ import annotations

class ToolSecurityError(Exception):
    """Base pour les exceptions de sécurité des outils."""

class FileSecurityError(ToolSecurityError):
    """Violation de sécurité liée au système de fichiers."""

class PathEscapeError(FileSecurityError):
    """Chemin résolu hors de la racine du workspace."""

class ToolError(Exception):
    """Base pour les erreurs d'appel d'outil (renvoyées à l'agent, jamais fatales)."""

class UnknownToolError(ToolError):
    pass

class ToolArgumentError(ToolError):
    """Argument requis manquant ou de mauvais type."""

class ToolDisabledError(ToolError):
    """Outil désactivé par la configuration du profil."""
