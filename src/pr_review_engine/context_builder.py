# src/pr_review_engine/context_builder.py
import logging
import math
import re
from typing import Iterable, List, Mapping, Optional

from .errors import ContextBuildError
from .models import (
    AstFileContext,
    AstScope,
    ChangeType,
    DiffHunk,
    DiffLineType,
    EnrichedHunk,
    FileReviewContext,
    ParsedDiff,
    ReviewChunk,
)
from .results import Result, err, ok

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS_PER_CHUNK = 30000
CHARS_PER_TOKEN = 4
# Per-item allowance for markup the prompt adds around each line, scope and import.
LINE_OVERHEAD_CHARS = 10
SCOPE_OVERHEAD_CHARS = 20
IMPORT_OVERHEAD_CHARS = 20

SECURITY_SENSITIVE_PATTERNS = [
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"login", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"crypto", re.IGNORECASE),
    re.compile(r"encrypt", re.IGNORECASE),
    re.compile(r"decrypt", re.IGNORECASE),
    re.compile(r"session", re.IGNORECASE),
    re.compile(r"permission", re.IGNORECASE),
    re.compile(r"\.env"),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"oauth", re.IGNORECASE),
    re.compile(r"jwt", re.IGNORECASE),
    re.compile(r"sanitiz", re.IGNORECASE),
    re.compile(r"injection", re.IGNORECASE),
]


def build_review_context(
    parsed_diff: ParsedDiff,
    ast_contexts: Optional[Mapping[str, AstFileContext]] = None,
    file_contents: Optional[Mapping[str, str]] = None,
    max_tokens_per_chunk: int = DEFAULT_MAX_TOKENS_PER_CHUNK
) -> Result:
    """
    Turns a parsed diff into prioritized, token-budgeted review chunks.

    Binary files, deleted files and files without hunks are dropped. Each remaining hunk is
    annotated with the scopes it overlaps; imports and full contents are
    attached when available.

    Args:
        parsed_diff: Output of the diff parser.
        ast_contexts: Structure per file path, for files that could be parsed.
        file_contents: Full post-change content per file path.
        max_tokens_per_chunk: Soft token budget for each chunk.

    Returns:
        Result with a non-empty list of ReviewChunk, or
        ContextBuildError.NO_REVIEWABLE_FILES when nothing is left to review.
    """
    ast_contexts = ast_contexts or {}
    file_contents = file_contents or {}

    reviewable = [
        f for f in parsed_diff.files
        if not f.is_binary and f.change_type != ChangeType.DELETED and f.hunks
    ]
    if not reviewable:
        logger.info("No reviewable files in diff after dropping binary, deleted and empty files.")
        return err(ContextBuildError.NO_REVIEWABLE_FILES)

    contexts = []
    for diff_file in reviewable:
        ast_context = ast_contexts.get(diff_file.file_path)
        scopes = ast_context.scopes if ast_context else ()
        contexts.append(FileReviewContext(
            file_path=diff_file.file_path,
            language=diff_file.language,
            change_type=diff_file.change_type,
            enriched_hunks=[
                EnrichedHunk(hunk=hunk, enclosing_scopes=find_enclosing_scopes(hunk, scopes))
                for hunk in diff_file.hunks
            ],
            imports=list(ast_context.imports) if ast_context else [],
            full_file_content=file_contents.get(diff_file.file_path),
        ))

    chunks = chunk_file_contexts(prioritize_files(contexts), max_tokens_per_chunk)
    logger.info(f"Built {len(chunks)} review chunk(s) from {len(contexts)} file(s).")
    return ok(chunks)


def find_enclosing_scopes(hunk: DiffHunk, scopes: Iterable[AstScope]) -> List[AstScope]:
    """Scopes overlapping the hunk's new-side range [new_start, new_start + new_count - 1]."""
    hunk_start = hunk.new_start
    hunk_end = hunk.new_start + hunk.new_count - 1
    return [s for s in scopes if s.start_line <= hunk_end and s.end_line >= hunk_start]


def is_security_sensitive(file_path: str) -> bool:
    return any(pattern.search(file_path) for pattern in SECURITY_SENSITIVE_PATTERNS)


def count_changed_lines(context: FileReviewContext) -> int:
    return sum(
        1
        for enriched in context.enriched_hunks
        for line in enriched.hunk.lines
        if line.type != DiffLineType.CONTEXT
    )


def prioritize_files(contexts: List[FileReviewContext]) -> List[FileReviewContext]:
    """Security-sensitive paths first, then by changed-line count descending. Stable."""
    return sorted(
        contexts,
        key=lambda c: (0 if is_security_sensitive(c.file_path) else 1, -count_changed_lines(c)),
    )


def estimate_file_tokens(context: FileReviewContext) -> int:
    chars = len(context.file_path)
    for enriched in context.enriched_hunks:
        for line in enriched.hunk.lines:
            chars += len(line.content) + LINE_OVERHEAD_CHARS
        for scope in enriched.enclosing_scopes:
            chars += len(scope.name) + len(scope.type.value) + SCOPE_OVERHEAD_CHARS
    for imp in context.imports:
        chars += len(imp.source) + IMPORT_OVERHEAD_CHARS
    return math.ceil(chars / CHARS_PER_TOKEN)


def chunk_file_contexts(
    contexts: List[FileReviewContext],
    max_tokens_per_chunk: int = DEFAULT_MAX_TOKENS_PER_CHUNK
) -> List[ReviewChunk]:
    """
    Greedily packs files into chunks in the given order.

    A chunk is closed when adding the next file would exceed the budget and the
    chunk already holds something, so a single oversized file gets its own chunk.
    """
    chunks: List[ReviewChunk] = []
    current = ReviewChunk()

    for context in contexts:
        tokens = estimate_file_tokens(context)
        if current.files and current.estimated_tokens + tokens > max_tokens_per_chunk:
            chunks.append(current)
            current = ReviewChunk()
        current.files.append(context)
        current.estimated_tokens += tokens

    if current.files:
        chunks.append(current)
    return chunks
