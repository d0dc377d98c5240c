# src/pr_review_engine/models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


def enum_value(value) -> str:
    """Plain string for an enum member; other values pass through unchanged."""
    return getattr(value, "value", value)


class DiffLineType(str, Enum):
    ADD = "add"
    DELETE = "delete"
    CONTEXT = "context"


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class SupportedLanguage(str, Enum):
    TYPESCRIPT = "typescript"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    GO = "go"
    RUST = "rust"
    JAVA = "java"


class ScopeType(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"


class CommentCategory(str, Enum):
    SECURITY = "SECURITY"
    BUGS = "BUGS"
    PERFORMANCE = "PERFORMANCE"
    STYLE = "STYLE"
    BEST_PRACTICES = "BEST_PRACTICES"


class CommentSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    SUGGESTION = "SUGGESTION"
    NITPICK = "NITPICK"


class DiffSide(str, Enum):
    LEFT = "LEFT"    # old version of the file
    RIGHT = "RIGHT"  # new version of the file


class ReviewEvent(str, Enum):
    COMMENT = "COMMENT"
    REQUEST_CHANGES = "REQUEST_CHANGES"


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# --- Parsed diff ---

@dataclass(frozen=True)
class DiffLine:
    """
    A single line inside a hunk.

    Added lines carry only `new_line_number`, deleted lines only
    `old_line_number`, context lines carry both.
    """
    type: DiffLineType
    content: str  # without the leading +/-/space marker
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


@dataclass(frozen=True)
class DiffHunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str  # e.g. "@@ -1,5 +1,6 @@ def main():"
    lines: Tuple[DiffLine, ...] = ()


@dataclass(frozen=True)
class ParsedDiffFile:
    file_path: str
    change_type: ChangeType
    language: Optional[SupportedLanguage]
    is_binary: bool = False
    previous_file_path: Optional[str] = None  # pre-rename path
    hunks: Tuple[DiffHunk, ...] = ()


@dataclass(frozen=True)
class ParsedDiff:
    files: Tuple[ParsedDiffFile, ...] = ()

    def find_file(self, path: str) -> Optional[ParsedDiffFile]:
        """Looks a file up by its current path, falling back to its pre-rename path."""
        for diff_file in self.files:
            if diff_file.file_path == path:
                return diff_file
        for diff_file in self.files:
            if diff_file.previous_file_path == path:
                return diff_file
        return None


# --- Source structure ---

@dataclass(frozen=True)
class AstScope:
    name: str
    type: ScopeType
    start_line: int  # 1-based, inclusive
    end_line: int


@dataclass(frozen=True)
class AstImport:
    source: str
    specifiers: Tuple[str, ...] = ()
    is_default: bool = False


@dataclass(frozen=True)
class AstFileContext:
    file_path: str
    language: SupportedLanguage
    scopes: Tuple[AstScope, ...] = ()
    imports: Tuple[AstImport, ...] = ()


# --- Review context ---

@dataclass
class EnrichedHunk:
    hunk: DiffHunk
    enclosing_scopes: List[AstScope] = field(default_factory=list)


@dataclass
class FileReviewContext:
    file_path: str
    language: Optional[SupportedLanguage]
    change_type: ChangeType
    enriched_hunks: List[EnrichedHunk] = field(default_factory=list)
    imports: List[AstImport] = field(default_factory=list)
    full_file_content: Optional[str] = None


@dataclass
class ReviewChunk:
    files: List[FileReviewContext] = field(default_factory=list)
    estimated_tokens: int = 0


# --- Analysis output ---

@dataclass
class ReviewFinding:
    """
    One issue reported by the analysis service.

    `category` and `severity` are normally enum members, but values the
    service invents are kept as raw strings.
    """
    file_path: str
    line_number: int
    category: CommentCategory
    severity: CommentSeverity
    message: str
    suggestion: Optional[str] = None
    confidence: float = 1.0


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ReviewResult:
    findings: List[ReviewFinding] = field(default_factory=list)
    summary: str = ""
    token_usage: TokenUsage = field(default_factory=TokenUsage)


# --- Comment mapping ---

@dataclass
class MappedReviewComment:
    path: str
    line: int
    side: DiffSide
    body: str
    finding: ReviewFinding


@dataclass
class UnmappedFinding:
    finding: ReviewFinding
    reason: str


@dataclass
class CommentMappingResult:
    mapped_comments: List[MappedReviewComment] = field(default_factory=list)
    unmapped_findings: List[UnmappedFinding] = field(default_factory=list)


# --- SCM payloads ---

@dataclass
class ReviewCommentPayload:
    path: str
    line: int
    side: DiffSide
    body: str


@dataclass
class PullRequestReviewPayload:
    commit_sha: str
    body: str
    event: ReviewEvent
    comments: List[ReviewCommentPayload] = field(default_factory=list)


@dataclass
class PostedReview:
    review_id: int
    posted_count: int


# --- Persistence records ---

@dataclass
class Repository:
    id: str
    full_name: str
    is_enabled: bool = True


@dataclass
class ReviewRecord:
    id: str
    repository_id: str
    pull_request_number: int
    commit_sha: str
    status: ReviewStatus = ReviewStatus.PENDING
    summary: Optional[str] = None
    issues_found: int = 0
    processing_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class ReviewCommentRecord:
    review_id: str
    file_path: str
    line_number: int
    category: str
    severity: str
    message: str
    suggestion: Optional[str] = None
    confidence: float = 1.0


# --- Orchestration ---

@dataclass
class ReviewRequest:
    repository_full_name: str  # "owner/repo"
    pull_request_number: int
    commit_sha: str


@dataclass
class ReviewEngineResult:
    review_id: str
    issues_found: int
    processing_time_ms: int
    summary: str
