# src/pr_review_engine/diff_parser.py
import logging
import os
import re
from typing import List, Optional

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from .errors import DiffParseError
from .models import (
    ChangeType,
    DiffHunk,
    DiffLine,
    DiffLineType,
    ParsedDiff,
    ParsedDiffFile,
    SupportedLanguage,
)
from .results import Result, err, ok
from .utils.file_filter import PathFilter

logger = logging.getLogger(__name__)

FILE_BOUNDARY = "diff --git "
_FILE_BOUNDARY_RE = re.compile(r"^diff --git ", re.MULTILINE)
_GIT_HEADER_PATHS_RE = re.compile(r"^diff --git a/(.+) b/(.+)$")

EXTENSION_LANGUAGES = {
    ".ts": SupportedLanguage.TYPESCRIPT,
    ".tsx": SupportedLanguage.TYPESCRIPT,
    ".js": SupportedLanguage.JAVASCRIPT,
    ".jsx": SupportedLanguage.JAVASCRIPT,
    ".mjs": SupportedLanguage.JAVASCRIPT,
    ".cjs": SupportedLanguage.JAVASCRIPT,
    ".py": SupportedLanguage.PYTHON,
    ".go": SupportedLanguage.GO,
    ".rs": SupportedLanguage.RUST,
    ".java": SupportedLanguage.JAVA,
}


def detect_language(file_path: str) -> Optional[SupportedLanguage]:
    """Maps a file extension onto a supported language, or None."""
    _, extension = os.path.splitext(file_path)
    return EXTENSION_LANGUAGES.get(extension)


def parse_diff_text(
    diff_text: str,
    include_patterns: Optional[List[str]] = None,
    exclude_patterns: Optional[List[str]] = None
) -> Result:
    """
    Parses raw unified diff text (e.g., from git diff or SCM API) into a ParsedDiff.

    The text is split into per-file blocks on "diff --git " boundaries. Blocks whose
    path cannot be determined, whose path is not reviewable, or whose hunks are
    malformed are skipped without failing the whole parse.

    Args:
        diff_text: The raw diff output as a string.
        include_patterns: Optional git-style patterns a path must match to be kept.
        exclude_patterns: Optional git-style patterns that drop a path.

    Returns:
        Result with a ParsedDiff on success, or DiffParseError.DIFF_EMPTY for
        empty or whitespace-only input.
    """
    if not diff_text or not diff_text.strip():
        logger.info("Received empty diff text, nothing to parse.")
        return err(DiffParseError.DIFF_EMPTY)

    path_filter = PathFilter(include_patterns, exclude_patterns)
    parsed_files: List[ParsedDiffFile] = []

    for block in split_file_blocks(diff_text):
        parsed_file = _parse_file_block(block, path_filter)
        if parsed_file is not None:
            parsed_files.append(parsed_file)

    logger.info(f"Parsed {len(parsed_files)} reviewable files from diff text.")
    return ok(ParsedDiff(files=tuple(parsed_files)))


def split_file_blocks(diff_text: str) -> List[str]:
    """Splits diff text into one block per file, each starting with its "diff --git" line."""
    parts = _FILE_BOUNDARY_RE.split(diff_text)
    blocks = []
    for index, part in enumerate(parts):
        if not part.strip():
            continue
        # Only the text before the first boundary lacks the prefix.
        if index > 0 or diff_text.startswith(FILE_BOUNDARY):
            part = FILE_BOUNDARY + part
        blocks.append(part.rstrip("\n") + "\n")
    return blocks


def _parse_file_block(block: str, path_filter: PathFilter) -> Optional[ParsedDiffFile]:
    lines = block.split("\n")
    header = _header_lines(lines)

    file_path = extract_file_path(header)
    if not file_path:
        logger.debug(f"Skipping diff block without a recognizable path: {lines[0][:120]}")
        return None

    if not path_filter.accepts(file_path):
        logger.debug(f"Skipping non-reviewable file: {file_path}")
        return None

    change_type = detect_change_type(header)
    is_binary = any(line.startswith("Binary files") or "GIT binary patch" in line for line in header)

    hunks = ()
    if not is_binary and len(header) < len(lines):
        try:
            hunks = _parse_hunks(block)
        except UnidiffParseError as e:
            logger.warning(f"Skipping malformed diff block for {file_path}: {e}")
            return None

    return ParsedDiffFile(
        file_path=file_path,
        change_type=change_type,
        language=detect_language(file_path),
        is_binary=is_binary,
        previous_file_path=extract_previous_file_path(header),
        hunks=hunks,
    )


def _header_lines(lines: List[str]) -> List[str]:
    """Lines before the first hunk header; file metadata is only read from these."""
    for index, line in enumerate(lines):
        if line.startswith("@@"):
            return lines[:index]
    return lines


def extract_file_path(header: List[str]) -> Optional[str]:
    """
    Current path of the file: the "+++ b/" target, or the "--- a/" source when the
    target is /dev/null (deleted file), or the b/ path of the "diff --git" line.
    """
    for line in header:
        if line.startswith("+++ b/"):
            return line[len("+++ b/"):]
        if line.startswith("+++ /dev/null"):
            for old_line in header:
                if old_line.startswith("--- a/"):
                    return old_line[len("--- a/"):]
            break

    if header:
        match = _GIT_HEADER_PATHS_RE.match(header[0])
        if match:
            return match.group(2)
    return None


def extract_previous_file_path(header: List[str]) -> Optional[str]:
    """Pre-rename path, from a "rename from" line or differing ---/+++ paths."""
    for line in header:
        if line.startswith("rename from "):
            return line[len("rename from "):]

    old_path = None
    new_path = None
    for line in header:
        if line.startswith("--- a/"):
            old_path = line[len("--- a/"):]
        elif line.startswith("+++ b/"):
            new_path = line[len("+++ b/"):]
    if old_path and new_path and old_path != new_path:
        return old_path
    return None


def detect_change_type(header: List[str]) -> ChangeType:
    for line in header:
        if line.startswith("new file mode"):
            return ChangeType.ADDED
        if line.startswith("deleted file mode"):
            return ChangeType.DELETED
        if line.startswith("rename from") or line.startswith("rename to"):
            return ChangeType.RENAMED

    for line in header:
        if line.startswith("--- /dev/null"):
            return ChangeType.ADDED
        if line.startswith("+++ /dev/null"):
            return ChangeType.DELETED

    return ChangeType.MODIFIED


def _parse_hunks(block: str) -> tuple:
    patch_set = PatchSet(block)
    hunks = []
    for patched_file in patch_set:
        for hunk in patched_file:
            hunks.append(_convert_hunk(hunk))
    return tuple(hunks)


def _convert_hunk(hunk) -> DiffHunk:
    old_line = hunk.source_start
    new_line = hunk.target_start
    lines = []

    for line in hunk:
        content = line.value.rstrip("\r\n")
        if line.is_added:
            lines.append(DiffLine(type=DiffLineType.ADD, content=content, new_line_number=new_line))
            new_line += 1
        elif line.is_removed:
            lines.append(DiffLine(type=DiffLineType.DELETE, content=content, old_line_number=old_line))
            old_line += 1
        elif line.is_context:
            lines.append(DiffLine(
                type=DiffLineType.CONTEXT,
                content=content,
                old_line_number=old_line,
                new_line_number=new_line,
            ))
            old_line += 1
            new_line += 1
        # "\ No newline at end of file" markers are not content

    return DiffHunk(
        old_start=hunk.source_start,
        old_count=hunk.source_length,
        new_start=hunk.target_start,
        new_count=hunk.target_length,
        header=format_hunk_header(hunk),
        lines=tuple(lines),
    )


def format_hunk_header(hunk) -> str:
    header = f"@@ -{hunk.source_start},{hunk.source_length} +{hunk.target_start},{hunk.target_length} @@"
    if hunk.section_header:
        header += f" {hunk.section_header}"
    return header
