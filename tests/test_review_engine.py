import os
import tempfile
import unittest
from unittest.mock import patch

from pr_review_engine.errors import LLMError, RepositoryNameError, ReviewEngineError, SCMError
from pr_review_engine.llm_reviewer import TextAnalysisService
from pr_review_engine.models import (
    CommentCategory,
    CommentSeverity,
    DiffSide,
    PostedReview,
    ReviewEvent,
    ReviewFinding,
    ReviewRequest,
    ReviewResult,
    ReviewStatus,
    TokenUsage,
)
from pr_review_engine.persistence import InMemoryReviewStore, JsonFileReviewStore
from pr_review_engine.results import err, ok
from pr_review_engine.review_engine import (
    NO_REVIEWABLE_CONTENT_SUMMARY,
    NO_REVIEWABLE_FILES_SUMMARY,
    ReviewEngine,
    split_repository_full_name,
)
from pr_review_engine.scm_client import SourceHostingService

APP_DIFF = """\
diff --git a/src/app.py b/src/app.py
index 1111111..2222222 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,3 +1,4 @@
 def handler(request):
+    token = request.args["token"]
     value = request.args["value"]
     return eval(value)
"""

APP_SOURCE = """\
def handler(request):
    token = request.args["token"]
    value = request.args["value"]
    return eval(value)
"""

LOCKFILE_DIFF = """\
diff --git a/package-lock.json b/package-lock.json
--- a/package-lock.json
+++ b/package-lock.json
@@ -1 +1 @@
-{}
+{"lockfileVersion": 3}
"""

RENAME_ONLY_DIFF = """\
diff --git a/docs/a.md b/docs/b.md
similarity index 100%
rename from docs/a.md
rename to docs/b.md
"""

DELETE_ONLY_DIFF = """\
diff --git a/src/old.py b/src/old.py
deleted file mode 100644
index 3b18e51..0000000
--- a/src/old.py
+++ /dev/null
@@ -1,2 +0,0 @@
-def old():
-    pass
"""


class FakeSCM(SourceHostingService):
    def __init__(self, diff=APP_DIFF, diff_error=None, post_error=None, contents=None):
        self.diff = diff
        self.diff_error = diff_error
        self.post_error = post_error
        self.contents = {"src/app.py": APP_SOURCE} if contents is None else contents
        self.diff_requests = []
        self.content_requests = []
        self.posted = []

    async def fetch_pull_request_diff(self, owner, repo, pull_number):
        self.diff_requests.append((owner, repo, pull_number))
        if self.diff_error:
            return err(self.diff_error)
        return ok(self.diff)

    async def fetch_file_content(self, owner, repo, path, ref):
        self.content_requests.append((path, ref))
        if path not in self.contents:
            return err(SCMError.NOT_FOUND)
        return ok(self.contents[path])

    async def post_pull_request_review(self, owner, repo, pull_number, review):
        self.posted.append(review)
        if self.post_error:
            return err(self.post_error)
        return ok(PostedReview(review_id=1001, posted_count=len(review.comments)))


class FakeLLM(TextAnalysisService):
    def __init__(self, findings=None, error=None):
        self.findings = findings or []
        self.error = error
        self.chunks = []

    async def analyze_chunk(self, chunk):
        self.chunks.append(chunk)
        if self.error:
            return err(self.error)
        return ok(ReviewResult(
            findings=list(self.findings),
            summary=f"Found {len(self.findings)} issues in this review." if self.findings else
            "No issues found in this review.",
            token_usage=TokenUsage(input_tokens=100, output_tokens=20),
        ))


def finding(line, severity=CommentSeverity.WARNING, path="src/app.py"):
    return ReviewFinding(
        file_path=path,
        line_number=line,
        category=CommentCategory.SECURITY,
        severity=severity,
        message=f"Issue on line {line}.",
        suggestion="Fix it.",
        confidence=0.9,
    )


REQUEST = ReviewRequest(repository_full_name="octo/repo", pull_request_number=7, commit_sha="abc123")


class TestReviewEngine(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryReviewStore()
        self.repository = self.store.add_repository("octo/repo").data

    def make_engine(self, scm=None, llm=None, **kwargs):
        self.scm = scm or FakeSCM()
        self.llm = llm or FakeLLM()
        return ReviewEngine(scm=self.scm, llm=self.llm, store=self.store, **kwargs)

    def only_review(self):
        self.assertEqual(len(self.store.reviews), 1)
        return next(iter(self.store.reviews.values()))

    async def test_full_review_posts_inline_and_summary_findings(self):
        engine = self.make_engine(llm=FakeLLM(findings=[finding(2), finding(40)]))
        result = await engine.execute_review(REQUEST)

        self.assertTrue(result.success)
        self.assertEqual(result.data.issues_found, 2)
        self.assertGreaterEqual(result.data.processing_time_ms, 0)

        self.assertEqual(self.scm.diff_requests, [("octo", "repo", 7)])
        self.assertEqual(self.scm.content_requests, [("src/app.py", "abc123")])
        scopes = self.llm.chunks[0].files[0].enriched_hunks[0].enclosing_scopes
        self.assertEqual([s.name for s in scopes], ["handler"])

        posted = self.scm.posted[0]
        self.assertEqual(posted.commit_sha, "abc123")
        self.assertEqual(posted.event, ReviewEvent.COMMENT)
        self.assertEqual([(c.path, c.line, c.side) for c in posted.comments], [("src/app.py", 2, DiffSide.RIGHT)])
        self.assertIn("`src/app.py:40`", posted.body)
        self.assertTrue(posted.body.endswith("*2 issues found (1 inline, 1 in summary)*"))

        review = self.only_review()
        self.assertEqual(review.status, ReviewStatus.COMPLETED)
        self.assertEqual(review.issues_found, 2)
        self.assertEqual(review.summary, posted.body)
        self.assertEqual(result.data.review_id, review.id)
        comments = self.store.list_review_comments(review.id)
        self.assertEqual([(c.line_number, c.category, c.severity) for c in comments],
                         [(2, "SECURITY", "WARNING"), (40, "SECURITY", "WARNING")])

    async def test_critical_finding_requests_changes(self):
        engine = self.make_engine(llm=FakeLLM(findings=[finding(4, CommentSeverity.CRITICAL)]))
        await engine.execute_review(REQUEST)
        self.assertEqual(self.scm.posted[0].event, ReviewEvent.REQUEST_CHANGES)

    async def test_no_findings(self):
        engine = self.make_engine()
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        self.assertEqual(result.data.issues_found, 0)
        self.assertEqual(self.scm.posted[0].comments, [])
        self.assertTrue(self.scm.posted[0].body.startswith("No issues found in this review."))

    async def test_same_commit_is_reviewed_once(self):
        engine = self.make_engine()
        first = await engine.execute_review(REQUEST)
        second = await engine.execute_review(REQUEST)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error, ReviewEngineError.ALREADY_EXISTS)
        self.assertEqual(len(self.scm.diff_requests), 1)
        self.assertEqual(len(self.store.reviews), 1)

    async def test_unknown_repository(self):
        engine = self.make_engine()
        result = await engine.execute_review(
            ReviewRequest(repository_full_name="octo/other", pull_request_number=7, commit_sha="abc123"))
        self.assertEqual(result.error, ReviewEngineError.DB_ERROR)
        self.assertEqual(self.store.reviews, {})

    async def test_malformed_repository_name(self):
        engine = self.make_engine()
        for name in ("octo", "octo/repo/extra", "/repo", ""):
            with self.subTest(name=name):
                result = await engine.execute_review(
                    ReviewRequest(repository_full_name=name, pull_request_number=7, commit_sha="abc123"))
                self.assertEqual(result.error, ReviewEngineError.DB_ERROR)
        self.assertEqual(self.scm.diff_requests, [])

    async def test_diff_fetch_failure(self):
        engine = self.make_engine(scm=FakeSCM(diff_error=SCMError.NOT_FOUND))
        result = await engine.execute_review(REQUEST)
        self.assertEqual(result.error, ReviewEngineError.DIFF_FETCH_FAILED)
        review = self.only_review()
        self.assertEqual(review.status, ReviewStatus.FAILED)
        self.assertEqual(review.summary, "Review failed: Failed to fetch PR diff")

    async def test_empty_diff_fails_parsing(self):
        engine = self.make_engine(scm=FakeSCM(diff="   \n"))
        result = await engine.execute_review(REQUEST)
        self.assertEqual(result.error, ReviewEngineError.DIFF_PARSE_FAILED)
        self.assertEqual(self.only_review().summary, "Review failed: Failed to parse PR diff")

    async def test_only_filtered_files(self):
        engine = self.make_engine(scm=FakeSCM(diff=LOCKFILE_DIFF))
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        self.assertEqual(result.data.summary, NO_REVIEWABLE_FILES_SUMMARY)
        self.assertEqual(result.data.issues_found, 0)
        self.assertEqual(self.llm.chunks, [])
        self.assertEqual(self.scm.posted, [])
        self.assertEqual(self.only_review().status, ReviewStatus.COMPLETED)

    async def test_nothing_left_after_context_build(self):
        engine = self.make_engine(scm=FakeSCM(diff=RENAME_ONLY_DIFF, contents={}))
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        self.assertEqual(result.data.summary, NO_REVIEWABLE_CONTENT_SUMMARY)
        self.assertEqual(self.llm.chunks, [])
        self.assertEqual(self.only_review().status, ReviewStatus.COMPLETED)

    async def test_delete_only_pull_request(self):
        engine = self.make_engine(scm=FakeSCM(diff=DELETE_ONLY_DIFF))
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        self.assertEqual(result.data.summary, NO_REVIEWABLE_CONTENT_SUMMARY)
        self.assertEqual(self.scm.content_requests, [])
        self.assertEqual(self.llm.chunks, [])
        self.assertEqual(self.scm.posted, [])

    async def test_llm_failure(self):
        engine = self.make_engine(llm=FakeLLM(error=LLMError.RATE_LIMITED))
        result = await engine.execute_review(REQUEST)
        self.assertEqual(result.error, ReviewEngineError.LLM_FAILED)
        self.assertEqual(self.scm.posted, [])
        review = self.only_review()
        self.assertEqual(review.status, ReviewStatus.FAILED)
        self.assertEqual(review.summary, "Review failed: LLM analysis failed")

    async def test_post_failure_still_completes(self):
        engine = self.make_engine(scm=FakeSCM(post_error=SCMError.FORBIDDEN),
                                  llm=FakeLLM(findings=[finding(2)]))
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        review = self.only_review()
        self.assertEqual(review.status, ReviewStatus.COMPLETED)
        self.assertEqual(len(self.store.list_review_comments(review.id)), 1)

    async def test_missing_file_content_skips_enrichment(self):
        engine = self.make_engine(scm=FakeSCM(contents={}))
        result = await engine.execute_review(REQUEST)
        self.assertTrue(result.success)
        context = self.llm.chunks[0].files[0]
        self.assertIsNone(context.full_file_content)
        self.assertEqual(context.enriched_hunks[0].enclosing_scopes, [])

    async def test_exclude_patterns_are_applied(self):
        engine = self.make_engine(exclude_patterns=["src/"])
        result = await engine.execute_review(REQUEST)
        self.assertEqual(result.data.summary, NO_REVIEWABLE_FILES_SUMMARY)


class TestReviewEngineWithFileStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = JsonFileReviewStore(os.path.join(self.tmpdir.name, "reviews.json"))
        self.store.add_repository("octo/repo")

    def tearDown(self):
        self.tmpdir.cleanup()

    async def test_unwritten_review_does_not_block_retry(self):
        engine = ReviewEngine(scm=FakeSCM(), llm=FakeLLM(), store=self.store)
        with patch("pr_review_engine.persistence.os.replace", side_effect=OSError("disk full")):
            first = await engine.execute_review(REQUEST)
        self.assertEqual(first.error, ReviewEngineError.DB_ERROR)

        second = await engine.execute_review(REQUEST)
        self.assertTrue(second.success)
        self.assertEqual(self.store.get_review(second.data.review_id).status, ReviewStatus.COMPLETED)


class TestSplitRepositoryFullName(unittest.TestCase):
    def test_split(self):
        self.assertEqual(split_repository_full_name("octo/repo"), ("octo", "repo"))

    def test_invalid(self):
        for name in ("octo", "a/b/c", "octo/", None):
            with self.subTest(name=name):
                with self.assertRaises(RepositoryNameError):
                    split_repository_full_name(name)


if __name__ == '__main__':
    unittest.main()
