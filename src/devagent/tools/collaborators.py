"""Interfaces to the surfaces the file tools drive but do not own.

The editor, linter, directory walker, text extractor and path display all
belong to the host. Headless implementations live in
``devagent.tools.workspace``.
"""

from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One problem reported by a linter or language server."""

    path: str
    line: int
    severity: str  # "error" or "warning"
    message: str
    source: str | None = None


@runtime_checkable
class DiagnosticsProvider(Protocol):
    """Point-in-time diagnostics for the workspace."""

    def snapshot(self) -> frozenset[Diagnostic]:
        """All diagnostics currently reported."""
        ...

    def diff(self, before: Set[Diagnostic], after: Set[Diagnostic]) -> frozenset[Diagnostic]:
        """Diagnostics present in ``after`` but not in ``before``."""
        ...

    def to_display_string(self, records: Iterable[Diagnostic]) -> str:
        """Human/model readable summary, empty when there is nothing to report."""
        ...


@runtime_checkable
class PathDisplay(Protocol):
    def to_readable(self, path: str) -> str:
        """Path as shown to the operator and the model."""
        ...


@runtime_checkable
class DirectoryLister(Protocol):
    def list(self, path: Path, recursive: bool, cap: int) -> tuple[list[str], bool]:
        """Entries under ``path`` (directories end with ``/``) and whether ``cap`` was hit."""
        ...


@runtime_checkable
class TextExtractor(Protocol):
    def extract(self, path: Path) -> str:
        """Plain-text content of a file."""
        ...


@runtime_checkable
class DocumentEditor(Protocol):
    """The editing surface a proposed change is reviewed in.

    While a change awaits approval the operator may edit the proposal in
    place; ``read`` returns whatever the buffer holds at that moment.
    """

    async def open(self, path: Path, original: str, proposed: str) -> None:
        """Show ``proposed`` against ``original`` without saving it."""
        ...

    async def read(self, path: Path) -> str:
        """Current (possibly operator-edited) buffer content."""
        ...

    async def write(self, path: Path, content: str) -> None:
        """Persist ``content`` to disk."""
        ...

    async def revert(self, path: Path, original: str) -> None:
        """Restore ``original`` on disk and discard the review buffer."""
        ...

    async def close(self, path: Path) -> None:
        """Close the review view for ``path``."""
        ...

    def compute_diff(self, filename: str, old: str, new: str) -> str:
        """Unified diff of ``old`` -> ``new``."""
        ...
