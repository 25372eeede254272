from .errors import FileSecurityError, PathEscapeError, ToolArgumentError, ToolDisabledError, ToolError, UnknownToolError

__all__ = ["ToolError", "ToolArgumentError", "UnknownToolError", "ToolDisabledError", "FileSecurityError", "PathEscapeError"]
