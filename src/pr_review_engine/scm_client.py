# src/pr_review_engine/scm_client.py
import asyncio
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import quote

import requests  # Using requests library for HTTP calls

from .errors import SCMError
from .models import PostedReview, PullRequestReviewPayload
from .results import Result, err, ok

if TYPE_CHECKING:
    from .config import EngineConfig

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
DEFAULT_TIMEOUT_SECONDS = 30


def classify_status(status_code: int) -> SCMError:
    if status_code in (400, 401):
        return SCMError.AUTH_FAILED
    if status_code == 403:
        return SCMError.FORBIDDEN
    if status_code == 404:
        return SCMError.NOT_FOUND
    if status_code == 429:
        return SCMError.RATE_LIMITED
    return SCMError.UNKNOWN


class SourceHostingService(ABC):
    """
    Pull request operations the review engine needs from the hosting service.
    Every method returns a Result carrying an SCMError on failure.
    """

    @abstractmethod
    async def fetch_pull_request_diff(self, owner: str, repo: str, pull_number: int) -> Result:
        """Result[str, SCMError] with the raw unified diff."""

    @abstractmethod
    async def fetch_file_content(self, owner: str, repo: str, path: str, ref: str) -> Result:
        """Result[str, SCMError] with the decoded file content at `ref`."""

    @abstractmethod
    async def post_pull_request_review(
        self, owner: str, repo: str, pull_number: int, review: PullRequestReviewPayload
    ) -> Result:
        """Result[PostedReview, SCMError]."""


class GitHubClient(SourceHostingService):
    """GitHub REST implementation. Blocking HTTP calls run in a worker thread."""

    def __init__(self, config: 'EngineConfig'):
        self.config = config
        self.api_base_url = (config.scm_api_url or GITHUB_API_BASE_URL).rstrip("/")
        self.timeout = config.scm_timeout_seconds or DEFAULT_TIMEOUT_SECONDS
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "Authorization": f"token {config.scm_token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        logger.info(f"SCM Client initialized for base URL: {self.api_base_url}")

    def _request(self, method: str, endpoint: str, json_data: Optional[Dict] = None,
                 custom_headers: Optional[Dict] = None) -> Result:
        """Helper method to make HTTP requests. Returns Result[requests.Response, SCMError]."""
        url = f"{self.api_base_url}{endpoint}"
        request_headers = self.headers.copy()
        if custom_headers:
            request_headers.update(custom_headers)

        try:
            logger.debug(f"Making SCM API {method} request to {url}")
            response = requests.request(method, url, headers=request_headers, json=json_data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"SCM API request to {url} encountered an exception: {e}")
            return err(SCMError.UNKNOWN)

        if 200 <= response.status_code < 300:
            return ok(response)

        error = classify_status(response.status_code)
        logger.error(f"SCM API request to {url} failed with status {response.status_code} "
                     f"({error.value}): {response.text[:500]}")
        return err(error)

    async def _request_async(self, *args, **kwargs) -> Result:
        return await asyncio.to_thread(self._request, *args, **kwargs)

    async def fetch_pull_request_diff(self, owner: str, repo: str, pull_number: int) -> Result:
        endpoint = f"/repos/{owner}/{repo}/pulls/{pull_number}"
        logger.info(f"Fetching PR diff from SCM: {endpoint}")
        result = await self._request_async("GET", endpoint, custom_headers={"Accept": DIFF_MEDIA_TYPE})
        if not result.success:
            return result

        diff_text = result.data.text
        logger.info(f"Successfully fetched PR diff (length: {len(diff_text)}).")
        return ok(diff_text)

    async def fetch_file_content(self, owner: str, repo: str, path: str, ref: str) -> Result:
        endpoint = f"/repos/{owner}/{repo}/contents/{quote(path)}?ref={quote(ref, safe='')}"
        result = await self._request_async("GET", endpoint)
        if not result.success:
            return result

        try:
            payload: Any = result.data.json()
        except ValueError:
            logger.error(f"Contents API returned a non-JSON body for {path}.")
            return err(SCMError.UNKNOWN)

        if not isinstance(payload, dict) or payload.get("type") != "file" or "content" not in payload:
            logger.warning(f"Contents API entry for {path} is not a file.")
            return err(SCMError.NOT_FOUND)

        try:
            content = base64.b64decode(payload["content"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, TypeError) as e:
            logger.warning(f"Could not decode content of {path}: {e}")
            return err(SCMError.UNKNOWN)
        return ok(content)

    async def post_pull_request_review(
        self, owner: str, repo: str, pull_number: int, review: PullRequestReviewPayload
    ) -> Result:
        endpoint = f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews"
        body = {
            "commit_id": review.commit_sha,
            "body": review.body,
            "event": review.event.value,
            "comments": [
                {"path": c.path, "line": c.line, "side": c.side.value, "body": c.body}
                for c in review.comments
            ],
        }
        logger.info(f"Posting review with {len(review.comments)} inline comments to {endpoint}")
        result = await self._request_async("POST", endpoint, json_data=body)
        if not result.success:
            return result

        try:
            review_id = result.data.json().get("id")
        except (ValueError, AttributeError):
            review_id = None
        if review_id is None:
            logger.error("Review was posted but the response carried no review id.")
            return err(SCMError.UNKNOWN)

        return ok(PostedReview(review_id=review_id, posted_count=len(review.comments)))
