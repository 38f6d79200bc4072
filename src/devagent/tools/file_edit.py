"""File tools: write, read and list, each gated on operator approval.

A write is the intricate one. The proposal is shown as a diff in the
editor, the operator may approve, reject or edit it before approving, and
a rejected write must leave the workspace exactly as it was, including
removing any directories created to hold a new file. After an approved
write the model is told about edits the operator made to its proposal and
about diagnostics that appeared because of the change.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from devagent.errors import TaskAborted
from devagent.logging import get_logger
from devagent.messages import AskKind, AskReply, AskResponse, SayKind, ToolDisplay
from devagent.tools.collaborators import (
    DiagnosticsProvider,
    DirectoryLister,
    DocumentEditor,
    PathDisplay,
    TextExtractor,
)
from devagent.tools.images import format_response_with_images
from devagent.tools.responses import (
    ToolOutcome,
    error_payload,
    missing_param_error,
    tool_denied,
    tool_denied_feedback,
    tool_error,
)
from devagent.tools.workspace import (
    FilesystemEditor,
    FilesystemLister,
    NullDiagnostics,
    PlainTextExtractor,
    WorkspacePaths,
    create_patch,
    detect_eol,
    format_files_list,
    normalize_eol,
    read_text,
    write_text,
)

if TYPE_CHECKING:
    from devagent.gateway import ToolGateway

log = get_logger("file_edit")

WRITE_TO_FILE = "write_to_file"
READ_FILE = "read_file"
LIST_FILES = "list_files"

DEFAULT_LIST_CAP = 200


def create_directories_for_file(file_path: Path) -> list[Path]:
    """Create the missing ancestors of ``file_path``.

    Returns:
        The directories that were created, outermost first.
    """
    missing: list[Path] = []
    current = file_path.parent
    while not current.exists():
        missing.append(current)
        current = current.parent

    created: list[Path] = []
    for directory in reversed(missing):
        directory.mkdir()
        created.append(directory)
    return created


def _parse_bool(value: bool | str | None) -> bool:
    if isinstance(value, bool):
        return value
    return value is not None and value.strip().lower() == "true"


class FileEditTool:
    """Write, read and list files in one workspace on behalf of the model."""

    def __init__(
        self,
        gateway: ToolGateway,
        workspace: WorkspacePaths,
        *,
        editor: DocumentEditor | None = None,
        diagnostics: DiagnosticsProvider | None = None,
        lister: DirectoryLister | None = None,
        extractor: TextExtractor | None = None,
        path_display: PathDisplay | None = None,
        allow_read_only: bool = False,
        list_cap: int = DEFAULT_LIST_CAP,
    ) -> None:
        self._gateway = gateway
        self._workspace = workspace
        self._editor: DocumentEditor = editor or FilesystemEditor()
        self._diagnostics: DiagnosticsProvider = diagnostics or NullDiagnostics(workspace.root)
        self._lister: DirectoryLister = lister or FilesystemLister()
        self._extractor: TextExtractor = extractor or PlainTextExtractor()
        self._paths: PathDisplay = path_display or workspace
        self.allow_read_only = allow_read_only
        self.list_cap = list_cap

    @property
    def editor(self) -> DocumentEditor:
        return self._editor

    # -------------------------------------------------------------------------
    # write_to_file
    # -------------------------------------------------------------------------

    async def write(self, path: str | None, content: str | None) -> ToolOutcome:
        """Propose ``content`` for ``path`` and apply it if the operator agrees."""
        if path is None:
            self._gateway.record_mistake()
            return await self._missing_param(WRITE_TO_FILE, "path")
        if content is None:
            self._gateway.record_mistake()
            await self._gateway.say(
                SayKind.ERROR,
                f"The assistant tried to use {WRITE_TO_FILE} for '{Path(path).as_posix()}' "
                "without value for required parameter 'content'. This is likely due to reaching "
                "the maximum output token limit. Retrying with suggestion to change response size...",
            )
            return ToolOutcome(
                tool_error(
                    "Missing value for required parameter 'content'. This may occur if the file "
                    "is too large, exceeding output limits. Consider splitting into smaller files "
                    "or reducing content size. Please retry with all required parameters."
                ),
                is_error=True,
            )
        self._gateway.reset_mistakes()

        try:
            return await self._write(path, content)
        except TaskAborted:
            raise
        except Exception as e:
            log.exception("write_to_file failed for %s", path)
            await self._gateway.say(SayKind.ERROR, f"Error writing file:\n{e}")
            return ToolOutcome(tool_error(error_payload("Error writing file", e)), is_error=True)

    async def _write(self, path: str, new_content: str) -> ToolOutcome:
        absolute = self._workspace.resolve(path)
        posix_path = Path(path).as_posix()
        file_exists = absolute.is_file()

        pre_diagnostics = self._diagnostics.snapshot()

        if file_exists:
            original = read_text(absolute)
            # Keep the file's final line break if the proposal dropped it
            eol = detect_eol(original)
            if original.endswith(eol) and not new_content.endswith(eol):
                new_content += eol
        else:
            original = ""

        created_dirs = create_directories_for_file(absolute)
        if not file_exists:
            write_text(absolute, "")

        try:
            await self._editor.open(absolute, original, new_content)

            if file_exists:
                display = ToolDisplay(
                    tool="editedExistingFile",
                    path=self._paths.to_readable(path),
                    diff=self._editor.compute_diff(posix_path, original, new_content),
                )
            else:
                display = ToolDisplay(
                    tool="newFileCreated",
                    path=self._paths.to_readable(path),
                    content=new_content,
                )
            reply = await self._gateway.ask(AskKind.TOOL, display.to_json())
        except BaseException:
            # Not approved, so nothing may stay behind in the workspace
            if file_exists:
                await self._editor.close(absolute)
            else:
                await self._discard_new_file(absolute, created_dirs)
            raise

        if not reply.approved:
            if file_exists:
                await self._editor.revert(absolute, original)
                log.info("Reverted %s to its original content", absolute)
            else:
                await self._discard_new_file(absolute, created_dirs)
                log.info("Removed rejected new file %s", absolute)
            return await self._deny(reply)

        edited = await self._editor.read(absolute)
        await self._editor.write(absolute, edited)
        await self._editor.close(absolute)

        post_diagnostics = self._diagnostics.snapshot()
        new_problems = self._diagnostics.to_display_string(
            self._diagnostics.diff(pre_diagnostics, post_diagnostics)
        )
        problems_message = (
            f"\n\nNew problems detected after saving the file:\n{new_problems}"
            if new_problems
            else ""
        )

        # Compare in the proposal's line-ending style so EOL-only churn is not reported
        proposal_eol = detect_eol(new_content)
        normalized_edited = normalize_eol(edited, proposal_eol)
        normalized_proposal = normalize_eol(new_content, proposal_eol)

        if normalized_edited != normalized_proposal:
            user_diff = create_patch(posix_path, normalized_proposal, normalized_edited)
            await self._gateway.say(
                SayKind.USER_FEEDBACK_DIFF,
                ToolDisplay(
                    tool="editedExistingFile" if file_exists else "newFileCreated",
                    path=self._paths.to_readable(path),
                    diff=self._editor.compute_diff(
                        posix_path, normalized_proposal, normalized_edited
                    ),
                ).to_json(),
            )
            return ToolOutcome(
                f"The user made the following updates to your content:\n\n{user_diff}\n\n"
                "The updated content, which includes both your original modifications and the "
                f"user's additional edits, has been successfully saved to {posix_path}. (Note this "
                "does not mean you need to re-write the file with the user's changes, as they have "
                f"already been applied to the file.){problems_message}"
            )

        return ToolOutcome(f"The content was successfully saved to {posix_path}.{problems_message}")

    async def _discard_new_file(self, absolute: Path, created_dirs: list[Path]) -> None:
        """Remove a new file and the directories created for it, deepest first."""
        await self._editor.close(absolute)
        absolute.unlink(missing_ok=True)
        for directory in reversed(created_dirs):
            directory.rmdir()
            log.debug("Removed directory %s", directory)

    # -------------------------------------------------------------------------
    # read_file
    # -------------------------------------------------------------------------

    async def read(self, path: str | None) -> ToolOutcome:
        if path is None:
            self._gateway.record_mistake()
            return await self._missing_param(READ_FILE, "path")
        self._gateway.reset_mistakes()

        try:
            absolute = self._workspace.resolve(path)
            content = self._extractor.extract(absolute)
            display = ToolDisplay(
                tool="readFile",
                path=self._paths.to_readable(path),
                content=absolute.as_posix(),
            )
            denial = await self._gate(display)
            if denial is not None:
                return await self._deny(denial)
            return ToolOutcome(content)
        except TaskAborted:
            raise
        except Exception as e:
            log.exception("read_file failed for %s", path)
            await self._gateway.say(SayKind.ERROR, f"Error reading file:\n{e}")
            return ToolOutcome(tool_error(error_payload("Error reading file", e)), is_error=True)

    # -------------------------------------------------------------------------
    # list_files
    # -------------------------------------------------------------------------

    async def list(self, path: str | None, recursive: bool | str | None = None) -> ToolOutcome:
        if path is None:
            self._gateway.record_mistake()
            return await self._missing_param(LIST_FILES, "path")
        self._gateway.reset_mistakes()

        try:
            is_recursive = _parse_bool(recursive)
            absolute = self._workspace.resolve(path)
            entries, hit_cap = self._lister.list(absolute, is_recursive, self.list_cap)
            listing = format_files_list(absolute, entries, hit_cap)
            display = ToolDisplay(
                tool="listFilesRecursive" if is_recursive else "listFilesTopLevel",
                path=self._paths.to_readable(path),
                content=listing,
            )
            denial = await self._gate(display)
            if denial is not None:
                return await self._deny(denial)
            return ToolOutcome(listing)
        except TaskAborted:
            raise
        except Exception as e:
            log.exception("list_files failed for %s", path)
            await self._gateway.say(SayKind.ERROR, f"Error listing files and directories:\n{e}")
            return ToolOutcome(
                tool_error(error_payload("Error listing files and directories", e)),
                is_error=True,
            )

    # -------------------------------------------------------------------------
    # Shared paths
    # -------------------------------------------------------------------------

    async def _gate(self, display: ToolDisplay) -> AskReply | None:
        """Approval for read-only tools. Returns the reply only when it is not a yes."""
        message = display.to_json()
        if self.allow_read_only:
            await self._gateway.say(SayKind.TOOL, message)
            return None
        reply = await self._gateway.ask(AskKind.TOOL, message)
        return None if reply.approved else reply

    async def _deny(self, reply: AskReply) -> ToolOutcome:
        if reply.response == AskResponse.MESSAGE:
            await self._gateway.say(SayKind.USER_FEEDBACK, reply.text, reply.images)
            return ToolOutcome(
                format_response_with_images(tool_denied_feedback(reply.text), reply.images),
                rejected=True,
            )
        return ToolOutcome(tool_denied(), rejected=True)

    async def _missing_param(self, tool_name: str, param: str) -> ToolOutcome:
        await self._gateway.say(
            SayKind.ERROR,
            f"The assistant tried to use {tool_name} without value for required "
            f"parameter '{param}'. Retrying...",
        )
        return ToolOutcome(missing_param_error(param), is_error=True)
