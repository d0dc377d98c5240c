import os
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from pr_review_engine import main
from pr_review_engine.errors import ReviewEngineError
from pr_review_engine.models import ReviewEngineResult
from pr_review_engine.results import err, ok


class TestMain(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.env = {
            "REVIEW_LLM_MODEL": "openai/gpt-4o",
            "REVIEW_LLM_API_KEY": "sk-test",
            "REVIEW_SCM_TOKEN": "ghp_test",
            "REVIEW_REPOSITORY": "octo/repo",
            "REVIEW_PR_NUMBER": "7",
            "REVIEW_COMMIT_SHA": "abc123",
            "REVIEW_STORE_PATH": os.path.join(self.tmpdir.name, "reviews.json"),
        }

    def tearDown(self):
        self.tmpdir.cleanup()

    async def test_missing_settings_exit_code(self):
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(await main.async_main(), 1)

    async def test_build_engine_registers_repository(self):
        with patch.dict(os.environ, self.env, clear=True):
            engine = main.build_engine(main.load_engine_config())
        found = engine.store.find_repository_by_full_name("octo/repo")
        self.assertIsNotNone(found.data)
        self.assertTrue(os.path.exists(self.env["REVIEW_STORE_PATH"]))

    async def test_exit_codes_follow_review_outcome(self):
        outcomes = [
            (ok(ReviewEngineResult(review_id="r1", issues_found=0, processing_time_ms=5, summary="x")), 0),
            (err(ReviewEngineError.ALREADY_EXISTS), 0),
            (err(ReviewEngineError.LLM_FAILED), 1),
        ]
        for outcome, expected in outcomes:
            with self.subTest(expected=expected, outcome=outcome):
                with patch.dict(os.environ, self.env, clear=True), \
                        patch("pr_review_engine.main.ReviewEngine.execute_review",
                              new=AsyncMock(return_value=outcome)) as execute_review:
                    self.assertEqual(await main.async_main(), expected)
                request = execute_review.await_args.args[0]
                self.assertEqual((request.repository_full_name, request.pull_request_number, request.commit_sha),
                                 ("octo/repo", 7, "abc123"))


if __name__ == '__main__':
    unittest.main()
