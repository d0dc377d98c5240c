# src/pr_review_engine/finding_mapper.py
import logging
from typing import Iterable, Optional, Tuple

from .models import (
    CommentCategory,
    CommentMappingResult,
    CommentSeverity,
    DiffLine,
    DiffLineType,
    DiffSide,
    MappedReviewComment,
    ParsedDiff,
    ParsedDiffFile,
    ReviewFinding,
    UnmappedFinding,
    enum_value,
)

logger = logging.getLogger(__name__)

SEVERITY_BADGES = {
    CommentSeverity.CRITICAL: "🔴 **Critical**",
    CommentSeverity.WARNING: "🟡 **Warning**",
    CommentSeverity.SUGGESTION: "🔵 **Suggestion**",
    CommentSeverity.NITPICK: "⚪ **Nitpick**",
}

CATEGORY_LABELS = {
    CommentCategory.SECURITY: "Security",
    CommentCategory.BUGS: "Bug Risk",
    CommentCategory.PERFORMANCE: "Performance",
    CommentCategory.STYLE: "Style",
    CommentCategory.BEST_PRACTICES: "Best Practices",
}


def severity_badge(severity) -> str:
    return SEVERITY_BADGES.get(severity, enum_value(severity))


def category_label(category) -> str:
    return CATEGORY_LABELS.get(category, enum_value(category))


def format_comment_body(finding: ReviewFinding) -> str:
    body = f"{severity_badge(finding.severity)} | {category_label(finding.category)}\n\n{finding.message}"
    if finding.suggestion:
        body += f"\n\n**Suggestion:** {finding.suggestion}"
    return body


def find_line_in_file(diff_file: ParsedDiffFile, line_number: int) -> Optional[Tuple[DiffLine, DiffSide]]:
    """
    First line in the file's hunks matching `line_number`.

    A line matches on its new-side number (RIGHT side, or LEFT for a removed
    line), or a removed line matches on its old-side number (LEFT side).
    """
    for hunk in diff_file.hunks:
        for line in hunk.lines:
            if line.new_line_number == line_number:
                return line, DiffSide.LEFT if line.type == DiffLineType.DELETE else DiffSide.RIGHT
            if line.type == DiffLineType.DELETE and line.old_line_number == line_number:
                return line, DiffSide.LEFT
    return None


def map_finding(finding: ReviewFinding, parsed_diff: ParsedDiff):
    """Returns a MappedReviewComment, or an UnmappedFinding with the reason it could not be placed."""
    diff_file = parsed_diff.find_file(finding.file_path)
    if diff_file is None:
        return UnmappedFinding(finding=finding, reason=f'File "{finding.file_path}" not found in diff')

    if not diff_file.hunks:
        return UnmappedFinding(finding=finding, reason=f'File "{finding.file_path}" has no reviewable hunks')

    match = find_line_in_file(diff_file, finding.line_number)
    if match is None:
        return UnmappedFinding(
            finding=finding,
            reason=f'Line {finding.line_number} in "{finding.file_path}" is not within the diff context',
        )

    line, side = match
    anchor = line.old_line_number if side == DiffSide.LEFT else line.new_line_number
    return MappedReviewComment(
        path=diff_file.file_path,
        line=anchor if anchor is not None else finding.line_number,
        side=side,
        body=format_comment_body(finding),
        finding=finding,
    )


def map_findings_to_comments(findings: Iterable[ReviewFinding], parsed_diff: ParsedDiff) -> CommentMappingResult:
    """Partitions findings into inline comments and summary-only findings, preserving order."""
    result = CommentMappingResult()
    for finding in findings:
        mapped = map_finding(finding, parsed_diff)
        if isinstance(mapped, MappedReviewComment):
            result.mapped_comments.append(mapped)
        else:
            logger.debug(f"Finding not mappable to an inline comment: {mapped.reason}")
            result.unmapped_findings.append(mapped)
    return result


def build_review_summary(llm_summary: str, mapped_count: int, unmapped_findings: Iterable[UnmappedFinding]) -> str:
    unmapped_findings = list(unmapped_findings)
    summary = llm_summary

    if unmapped_findings:
        summary += "\n\n---\n\n**Additional findings** (outside diff context):\n"
        for unmapped in unmapped_findings:
            finding = unmapped.finding
            summary += (
                f"\n- {severity_badge(finding.severity)} | {category_label(finding.category)}"
                f" — `{finding.file_path}:{finding.line_number}`: {finding.message}"
            )

    total = mapped_count + len(unmapped_findings)
    summary += (
        f"\n\n---\n*{total} issue{'' if total == 1 else 's'} found "
        f"({mapped_count} inline, {len(unmapped_findings)} in summary)*"
    )
    return summary
