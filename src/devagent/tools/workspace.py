"""Headless implementations of the file tool collaborators.

These run without an editor host: the review buffer lives in memory,
diagnostics come from a fixed or scripted source, and listings walk the
local filesystem.
"""

from __future__ import annotations

import difflib
import os
from collections import deque
from collections.abc import Iterable, Sequence, Set
from dataclasses import dataclass
from pathlib import Path

from devagent.logging import get_logger
from devagent.tools.collaborators import Diagnostic

log = get_logger("workspace")

# Directory names never descended into by recursive listings
IGNORED_DIRECTORIES = frozenset(
    {
        "node_modules",
        "__pycache__",
        "env",
        "venv",
        "dist",
        "out",
        "bundle",
        "vendor",
        "tmp",
        "temp",
        "deps",
        "pkg",
        "Pods",
    }
)

TRUNCATED_LISTING_NOTE = (
    "(File list truncated. Use list_files on specific subdirectories "
    "if you need to explore further.)"
)


# -----------------------------------------------------------------------------
# Text helpers
# -----------------------------------------------------------------------------


def read_text(path: Path) -> str:
    """Read a file as UTF-8 keeping its line terminators untouched."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def write_text(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def detect_eol(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def normalize_eol(text: str, eol: str) -> str:
    return text.replace("\r\n", "\n").replace("\n", eol)


def create_patch(filename: str, old: str, new: str) -> str:
    """Unified diff with ``---``/``+++`` headers."""
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=filename,
        tofile=filename,
    )
    return "".join(
        line if line.endswith("\n") else line + "\n\\ No newline at end of file\n"
        for line in lines
    )


def create_pretty_patch(filename: str, old: str, new: str) -> str:
    """Unified diff hunks only, headers stripped."""
    patch = create_patch(filename, old, new)
    return "\n".join(patch.split("\n")[2:])


# -----------------------------------------------------------------------------
# Paths
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkspacePaths:
    """Resolution and display of paths relative to the workspace root.

    ``is_fallback`` marks a root chosen because no workspace was open; paths
    are then always shown absolute so the operator sees where files land.
    """

    root: Path
    is_fallback: bool = False

    @classmethod
    def from_cwd(cls, cwd: str | Path | None) -> WorkspacePaths:
        if cwd is None:
            return cls(root=Path.home() / "Desktop", is_fallback=True)
        return cls(root=Path(os.path.abspath(cwd)))

    @property
    def root_posix(self) -> str:
        return self.root.as_posix()

    def resolve(self, path: str) -> Path:
        """Absolute, normalized path; absolute inputs ignore the root."""
        return Path(os.path.normpath(os.path.join(self.root, path)))

    def to_readable(self, path: str) -> str:
        absolute = self.resolve(path)
        if self.is_fallback:
            return absolute.as_posix()
        if absolute == self.root:
            return absolute.name
        if absolute.is_relative_to(self.root):
            return absolute.relative_to(self.root).as_posix()
        return absolute.as_posix()


# -----------------------------------------------------------------------------
# Listing and extraction
# -----------------------------------------------------------------------------


class FilesystemLister:
    """Breadth-first directory listing with an entry cap."""

    def list(self, path: Path, recursive: bool, cap: int) -> tuple[list[str], bool]:
        path = Path(path)
        # Never walk the filesystem root or the home directory
        if path == Path(path.anchor) or path == Path.home():
            return [], False

        entries: list[str] = []
        queue: deque[Path] = deque([path])
        while queue:
            current = queue.popleft()
            try:
                children = sorted(current.iterdir(), key=lambda p: p.name.lower())
            except OSError as e:
                log.debug("Skipping unreadable directory %s: %s", current, e)
                continue

            for child in children:
                is_dir = child.is_dir()
                if recursive and is_dir and (
                    child.name in IGNORED_DIRECTORIES or child.name.startswith(".")
                ):
                    continue
                if len(entries) >= cap:
                    return entries, True
                entries.append(child.as_posix() + ("/" if is_dir else ""))
                if recursive and is_dir:
                    queue.append(child)

            if not recursive:
                break

        return entries, False


def format_files_list(base: Path, entries: Sequence[str], hit_cap: bool) -> str:
    """Listing text for the model: relative posix paths, directories first per level."""
    relative: list[str] = []
    for entry in entries:
        rel = Path(os.path.relpath(entry, base)).as_posix()
        if rel == ".":
            continue
        relative.append(rel + "/" if entry.endswith("/") else rel)
    relative.sort(key=lambda p: [part.lower() for part in p.split("/")])

    if hit_cap:
        return "\n".join(relative) + "\n\n" + TRUNCATED_LISTING_NOTE
    if not relative:
        return "No files found."
    return "\n".join(relative)


class PlainTextExtractor:
    """Reads text files; refuses binary content."""

    sniff_bytes = 8192

    def extract(self, path: Path) -> str:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        data = path.read_bytes()
        if b"\x00" in data[: self.sniff_bytes]:
            raise ValueError(f"Cannot read text for file type: {path.suffix or path.name}")
        return data.decode("utf-8", errors="replace")


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------


class BaseDiagnostics:
    """Set-difference and formatting shared by the headless providers."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    def snapshot(self) -> frozenset[Diagnostic]:
        raise NotImplementedError

    def diff(self, before: Set[Diagnostic], after: Set[Diagnostic]) -> frozenset[Diagnostic]:
        return frozenset(after) - frozenset(before)

    def to_display_string(self, records: Iterable[Diagnostic]) -> str:
        by_path: dict[str, list[Diagnostic]] = {}
        for record in records:
            if record.severity in ("error", "warning"):
                by_path.setdefault(record.path, []).append(record)

        sections: list[str] = []
        for path in sorted(by_path):
            shown = path
            if self._root is not None:
                shown = Path(os.path.relpath(path, self._root)).as_posix()
            lines = [shown]
            for record in sorted(by_path[path], key=lambda d: (d.line, d.message)):
                source = f"{record.source} " if record.source else ""
                label = "Error" if record.severity == "error" else "Warning"
                lines.append(f"- [{source}{label}] Line {record.line}: {record.message}")
            sections.append("\n".join(lines))
        return "\n\n".join(sections)


class NullDiagnostics(BaseDiagnostics):
    """No linter attached; every snapshot is empty."""

    def snapshot(self) -> frozenset[Diagnostic]:
        return frozenset()


class StaticDiagnostics(BaseDiagnostics):
    """Returns scripted snapshots in order, repeating the last one."""

    def __init__(self, snapshots: Sequence[Iterable[Diagnostic]], root: Path | None = None) -> None:
        super().__init__(root)
        self._snapshots = [frozenset(s) for s in snapshots] or [frozenset()]
        self._calls = 0

    def snapshot(self) -> frozenset[Diagnostic]:
        index = min(self._calls, len(self._snapshots) - 1)
        self._calls += 1
        return self._snapshots[index]


# -----------------------------------------------------------------------------
# Editor
# -----------------------------------------------------------------------------


class FilesystemEditor:
    """Review buffers kept in memory, saves go straight to disk."""

    def __init__(self) -> None:
        self._buffers: dict[Path, str] = {}

    def is_open(self, path: Path) -> bool:
        return path in self._buffers

    def update_buffer(self, path: Path, content: str) -> None:
        """Operator edit of a proposal under review."""
        if not self.is_open(path):
            raise KeyError(f"No review open for {path}")
        self._buffers[path] = content

    async def open(self, path: Path, original: str, proposed: str) -> None:
        self._buffers[path] = proposed

    async def read(self, path: Path) -> str:
        if self.is_open(path):
            return self._buffers[path]
        return read_text(path)

    async def write(self, path: Path, content: str) -> None:
        write_text(path, content)
        if self.is_open(path):
            self._buffers[path] = content

    async def revert(self, path: Path, original: str) -> None:
        write_text(path, original)
        self._buffers.pop(path, None)

    async def close(self, path: Path) -> None:
        self._buffers.pop(path, None)

    def compute_diff(self, filename: str, old: str, new: str) -> str:
        return create_pretty_patch(filename, old, new)
