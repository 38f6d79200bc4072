"""File tools and the collaborator interfaces they depend on."""

from devagent.tools.collaborators import (
    Diagnostic,
    DiagnosticsProvider,
    DirectoryLister,
    DocumentEditor,
    PathDisplay,
    TextExtractor,
)
from devagent.tools.file_edit import LIST_FILES, READ_FILE, WRITE_TO_FILE, FileEditTool
from devagent.tools.responses import ToolOutcome
from devagent.tools.workspace import (
    FilesystemEditor,
    FilesystemLister,
    NullDiagnostics,
    PlainTextExtractor,
    StaticDiagnostics,
    WorkspacePaths,
)

__all__ = [
    "Diagnostic",
    "DiagnosticsProvider",
    "DirectoryLister",
    "DocumentEditor",
    "FileEditTool",
    "FilesystemEditor",
    "FilesystemLister",
    "LIST_FILES",
    "NullDiagnostics",
    "PathDisplay",
    "PlainTextExtractor",
    "READ_FILE",
    "StaticDiagnostics",
    "TextExtractor",
    "ToolOutcome",
    "WRITE_TO_FILE",
    "WorkspacePaths",
]
