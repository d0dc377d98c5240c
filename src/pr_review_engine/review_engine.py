# src/pr_review_engine/review_engine.py
import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from .context_builder import DEFAULT_MAX_TOKENS_PER_CHUNK, build_review_context
from .diff_parser import parse_diff_text
from .errors import RepositoryNameError, ReviewEngineError
from .finding_mapper import build_review_summary, map_findings_to_comments
from .llm_reviewer import TextAnalysisService
from .models import (
    AstFileContext,
    ChangeType,
    CommentSeverity,
    ParsedDiff,
    PullRequestReviewPayload,
    ReviewChunk,
    ReviewCommentPayload,
    ReviewCommentRecord,
    ReviewEngineResult,
    ReviewEvent,
    ReviewFinding,
    ReviewRequest,
    ReviewStatus,
    enum_value,
)
from .persistence import ReviewStore
from .results import Result, err, ok
from .scm_client import SourceHostingService
from .structure_extractor import StructureExtractor

logger = logging.getLogger(__name__)

NO_REVIEWABLE_FILES_SUMMARY = "No reviewable files in this PR."
NO_REVIEWABLE_CONTENT_SUMMARY = "No reviewable content after filtering."
NO_SIGNIFICANT_ISSUES_SUMMARY = "No significant issues found."


def split_repository_full_name(full_name: str) -> Tuple[str, str]:
    """
    Splits "owner/repo" into its two parts.

    Raises:
        RepositoryNameError: if the name does not have exactly two non-empty parts.
    """
    parts = (full_name or "").split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise RepositoryNameError(f"Repository name must look like 'owner/repo', got {full_name!r}")
    return parts[0], parts[1]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class ReviewEngine:
    """
    Runs one pull request review end to end: fetch and parse the diff, enrich it
    with source structure, analyze it chunk by chunk, post inline comments and
    record the outcome.
    """

    def __init__(
        self,
        scm: SourceHostingService,
        llm: TextAnalysisService,
        store: ReviewStore,
        structure_extractor: Optional[StructureExtractor] = None,
        max_tokens_per_chunk: int = DEFAULT_MAX_TOKENS_PER_CHUNK,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
    ):
        self.scm = scm
        self.llm = llm
        self.store = store
        self.structure_extractor = structure_extractor or StructureExtractor()
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.include_patterns = include_patterns
        self.exclude_patterns = exclude_patterns

    async def execute_review(self, request: ReviewRequest) -> Result:
        """
        Executes a review attempt.

        Returns:
            Result with a ReviewEngineResult, or a ReviewEngineError. ALREADY_EXISTS
            means this commit was reviewed before and nothing was changed.
        """
        start = time.monotonic()
        logger.info(f"Starting review of {request.repository_full_name}#{request.pull_request_number} "
                    f"at {request.commit_sha}")

        try:
            owner, repo = split_repository_full_name(request.repository_full_name)
        except RepositoryNameError as e:
            logger.error(f"Invalid repository identity: {e}")
            return err(ReviewEngineError.DB_ERROR)

        repo_result = self.store.find_repository_by_full_name(request.repository_full_name)
        if not repo_result.success:
            logger.error(f"Failed to look up repository: {repo_result.error}")
            return err(ReviewEngineError.DB_ERROR)
        if repo_result.data is None:
            logger.error(f"Repository {request.repository_full_name} not found or disabled.")
            return err(ReviewEngineError.DB_ERROR)
        repository_id = repo_result.data.id

        existing_result = self.store.find_review_by_commit_sha(repository_id, request.commit_sha)
        if not existing_result.success:
            logger.error(f"Idempotency check failed: {existing_result.error}")
            return err(ReviewEngineError.DB_ERROR)
        if existing_result.data is not None:
            logger.info(f"Review {existing_result.data.id} already exists for commit {request.commit_sha}, skipping.")
            return err(ReviewEngineError.ALREADY_EXISTS)

        create_result = self.store.create_review(repository_id, request.pull_request_number, request.commit_sha)
        if not create_result.success:
            logger.error(f"Failed to create review record: {create_result.error}")
            return err(ReviewEngineError.DB_ERROR)
        review_id = create_result.data.id

        status_result = self.store.update_review_status(review_id, ReviewStatus.PROCESSING)
        if not status_result.success:
            logger.warning(f"Failed to mark review {review_id} as processing: {status_result.error}")

        diff_result = await self.scm.fetch_pull_request_diff(owner, repo, request.pull_request_number)
        if not diff_result.success:
            logger.error(f"Failed to fetch diff for review {review_id}: {enum_value(diff_result.error)}")
            self._fail(review_id, "Failed to fetch PR diff")
            return err(ReviewEngineError.DIFF_FETCH_FAILED)

        parse_result = parse_diff_text(diff_result.data, self.include_patterns, self.exclude_patterns)
        if not parse_result.success:
            logger.error(f"Failed to parse diff for review {review_id}: {enum_value(parse_result.error)}")
            self._fail(review_id, "Failed to parse PR diff")
            return err(ReviewEngineError.DIFF_PARSE_FAILED)
        parsed_diff: ParsedDiff = parse_result.data

        if not parsed_diff.files:
            return ok(self._complete(review_id, NO_REVIEWABLE_FILES_SUMMARY, 0, start))

        file_contents = await self._fetch_file_contents(owner, repo, request.commit_sha, parsed_diff)
        ast_contexts = self._extract_structures(parsed_diff, file_contents)

        context_result = build_review_context(parsed_diff, ast_contexts, file_contents, self.max_tokens_per_chunk)
        if not context_result.success:
            logger.warning(f"Context build returned no reviewable files: {enum_value(context_result.error)}")
            return ok(self._complete(review_id, NO_REVIEWABLE_CONTENT_SUMMARY, 0, start))

        analysis = await self._analyze_chunks(context_result.data)
        if analysis is None:
            self._fail(review_id, "LLM analysis failed")
            return err(ReviewEngineError.LLM_FAILED)
        findings, llm_summary = analysis

        mapping = map_findings_to_comments(findings, parsed_diff)
        review_summary = build_review_summary(llm_summary, len(mapping.mapped_comments), mapping.unmapped_findings)

        event = (
            ReviewEvent.REQUEST_CHANGES
            if any(f.severity == CommentSeverity.CRITICAL for f in findings)
            else ReviewEvent.COMMENT
        )
        post_result = await self.scm.post_pull_request_review(
            owner,
            repo,
            request.pull_request_number,
            PullRequestReviewPayload(
                commit_sha=request.commit_sha,
                body=review_summary,
                event=event,
                comments=[
                    ReviewCommentPayload(path=c.path, line=c.line, side=c.side, body=c.body)
                    for c in mapping.mapped_comments
                ],
            ),
        )
        if post_result.success:
            logger.info(f"Review posted (id {post_result.data.review_id}, "
                        f"{post_result.data.posted_count} inline comments).")
        else:
            logger.error(f"Failed to post review {review_id}: {enum_value(post_result.error)}")

        all_findings = [c.finding for c in mapping.mapped_comments] + [u.finding for u in mapping.unmapped_findings]
        save_result = self.store.save_review_comments([self._comment_record(review_id, f) for f in all_findings])
        if not save_result.success:
            logger.error(f"Failed to save comments for review {review_id}: {save_result.error}")

        result = self._complete(review_id, review_summary, len(findings), start)
        logger.info(f"Review {review_id} complete: {result.issues_found} issues in {result.processing_time_ms} ms "
                    f"(posted: {post_result.success}).")
        return ok(result)

    async def _fetch_file_contents(self, owner: str, repo: str, commit_sha: str, parsed_diff: ParsedDiff) -> Dict[str, str]:
        paths = [
            f.file_path for f in parsed_diff.files
            if not f.is_binary and f.change_type != ChangeType.DELETED
        ]
        results = await asyncio.gather(
            *(self.scm.fetch_file_content(owner, repo, path, commit_sha) for path in paths),
            return_exceptions=True,
        )

        contents: Dict[str, str] = {}
        for path, result in zip(paths, results):
            if isinstance(result, Exception):
                logger.warning(f"Unexpected error fetching content of {path}: {result}")
            elif not result.success:
                logger.warning(f"Failed to fetch content of {path}, skipping structure enrichment: {enum_value(result.error)}")
            else:
                contents[path] = result.data
        return contents

    def _extract_structures(self, parsed_diff: ParsedDiff, file_contents: Dict[str, str]) -> Dict[str, AstFileContext]:
        ast_contexts: Dict[str, AstFileContext] = {}
        init_result = self.structure_extractor.initialize()
        if not init_result.success:
            logger.warning(f"Structure extractor unavailable, skipping enrichment: {enum_value(init_result.error)}")
            return ast_contexts

        for diff_file in parsed_diff.files:
            content = file_contents.get(diff_file.file_path)
            if diff_file.language is None or not content:
                continue
            result = self.structure_extractor.extract_structure(content, diff_file.language, diff_file.file_path)
            if result.success:
                ast_contexts[diff_file.file_path] = result.data
            else:
                logger.warning(f"Structure extraction failed for {diff_file.file_path}: {enum_value(result.error)}")
        return ast_contexts

    async def _analyze_chunks(self, chunks: List[ReviewChunk]) -> Optional[Tuple[List[ReviewFinding], str]]:
        findings: List[ReviewFinding] = []
        summaries: List[str] = []
        input_tokens = 0
        output_tokens = 0

        for index, chunk in enumerate(chunks, start=1):
            result = await self.llm.analyze_chunk(chunk)
            if not result.success:
                logger.error(f"LLM analysis failed for chunk {index}/{len(chunks)} "
                             f"({len(chunk.files)} files): {enum_value(result.error)}")
                return None
            findings.extend(result.data.findings)
            if result.data.summary:
                summaries.append(result.data.summary)
            input_tokens += result.data.token_usage.input_tokens
            output_tokens += result.data.token_usage.output_tokens

        logger.info(f"LLM analysis complete: {len(findings)} findings, "
                    f"{input_tokens} input tokens, {output_tokens} output tokens.")
        return findings, "\n\n".join(summaries) if summaries else NO_SIGNIFICANT_ISSUES_SUMMARY

    def _comment_record(self, review_id: str, finding: ReviewFinding) -> ReviewCommentRecord:
        return ReviewCommentRecord(
            review_id=review_id,
            file_path=finding.file_path,
            line_number=finding.line_number,
            category=enum_value(finding.category),
            severity=enum_value(finding.severity),
            message=finding.message,
            suggestion=finding.suggestion or None,
            confidence=finding.confidence,
        )

    def _complete(self, review_id: str, summary: str, issues_found: int, start: float) -> ReviewEngineResult:
        processing_time_ms = _elapsed_ms(start)
        complete_result = self.store.complete_review(review_id, summary, issues_found, processing_time_ms)
        if not complete_result.success:
            logger.error(f"Failed to complete review record {review_id}: {complete_result.error}")
        return ReviewEngineResult(
            review_id=review_id,
            issues_found=issues_found,
            processing_time_ms=processing_time_ms,
            summary=summary,
        )

    def _fail(self, review_id: str, reason: str) -> None:
        fail_result = self.store.fail_review(review_id, reason)
        if not fail_result.success:
            logger.error(f"Failed to mark review {review_id} as failed: {fail_result.error}")
