# src/pr_review_engine/persistence.py
import copy
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .models import Repository, ReviewCommentRecord, ReviewRecord, ReviewStatus
from .results import Result, err, ok

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewStore(ABC):
    """
    Review lifecycle storage. Every operation returns a Result whose error is a
    human-readable message.
    """

    @abstractmethod
    def add_repository(self, full_name: str, is_enabled: bool = True) -> Result:
        """Registers a repository, or returns the existing one with that name."""

    @abstractmethod
    def find_repository_by_full_name(self, full_name: str) -> Result:
        """Result[Optional[Repository]]; disabled repositories are not returned."""

    @abstractmethod
    def find_review_by_commit_sha(self, repository_id: str, commit_sha: str) -> Result:
        """Result[Optional[ReviewRecord]]."""

    @abstractmethod
    def create_review(self, repository_id: str, pull_request_number: int, commit_sha: str) -> Result:
        """Creates a PENDING review; fails if one exists for (repository, commit SHA)."""

    @abstractmethod
    def update_review_status(self, review_id: str, status: ReviewStatus) -> Result:
        pass

    @abstractmethod
    def complete_review(self, review_id: str, summary: str, issues_found: int, processing_time_ms: int) -> Result:
        pass

    @abstractmethod
    def fail_review(self, review_id: str, reason: str) -> Result:
        pass

    @abstractmethod
    def save_review_comments(self, comments: List[ReviewCommentRecord]) -> Result:
        """Result[int] with the number of comments stored."""


class InMemoryReviewStore(ReviewStore):
    def __init__(self):
        self.repositories: Dict[str, Repository] = {}
        self.reviews: Dict[str, ReviewRecord] = {}
        self.comments: List[ReviewCommentRecord] = []

    def _changed(self) -> None:
        """Hook called after every successful mutation."""

    def add_repository(self, full_name: str, is_enabled: bool = True) -> Result:
        for repository in self.repositories.values():
            if repository.full_name == full_name:
                return ok(repository)
        repository = Repository(id=uuid.uuid4().hex, full_name=full_name, is_enabled=is_enabled)
        self.repositories[repository.id] = repository
        self._changed()
        return ok(repository)

    def find_repository_by_full_name(self, full_name: str) -> Result:
        for repository in self.repositories.values():
            if repository.full_name == full_name and repository.is_enabled:
                return ok(repository)
        return ok(None)

    def find_review_by_commit_sha(self, repository_id: str, commit_sha: str) -> Result:
        for review in self.reviews.values():
            if review.repository_id == repository_id and review.commit_sha == commit_sha:
                return ok(review)
        return ok(None)

    def create_review(self, repository_id: str, pull_request_number: int, commit_sha: str) -> Result:
        existing = self.find_review_by_commit_sha(repository_id, commit_sha).data
        if existing is not None:
            return err(f"Failed to create review record: review {existing.id} already exists "
                       f"for commit {commit_sha}")
        review = ReviewRecord(
            id=uuid.uuid4().hex,
            repository_id=repository_id,
            pull_request_number=pull_request_number,
            commit_sha=commit_sha,
            status=ReviewStatus.PENDING,
            created_at=_utcnow(),
        )
        self.reviews[review.id] = review
        self._changed()
        return ok(review)

    def get_review(self, review_id: str) -> Optional[ReviewRecord]:
        return self.reviews.get(review_id)

    def list_review_comments(self, review_id: str) -> List[ReviewCommentRecord]:
        return [c for c in self.comments if c.review_id == review_id]

    def _update(self, review_id: str, **changes) -> Result:
        review = self.reviews.get(review_id)
        if review is None:
            return err(f"Review {review_id} not found")
        for name, value in changes.items():
            setattr(review, name, value)
        self._changed()
        return ok(review)

    def update_review_status(self, review_id: str, status: ReviewStatus) -> Result:
        return self._update(review_id, status=status)

    def complete_review(self, review_id: str, summary: str, issues_found: int, processing_time_ms: int) -> Result:
        return self._update(
            review_id,
            status=ReviewStatus.COMPLETED,
            summary=summary,
            issues_found=issues_found,
            processing_time_ms=processing_time_ms,
            completed_at=_utcnow(),
        )

    def fail_review(self, review_id: str, reason: str) -> Result:
        return self._update(
            review_id,
            status=ReviewStatus.FAILED,
            summary=f"Review failed: {reason}",
            completed_at=_utcnow(),
        )

    def save_review_comments(self, comments: List[ReviewCommentRecord]) -> Result:
        if not comments:
            return ok(0)
        missing = {c.review_id for c in comments if c.review_id not in self.reviews}
        if missing:
            return err(f"Failed to save review comments: unknown review(s) {sorted(missing)}")
        self.comments.extend(comments)
        self._changed()
        return ok(len(comments))


class JsonFileReviewStore(InMemoryReviewStore):
    """
    InMemoryReviewStore persisted to a single JSON file.

    The whole state is rewritten after each mutation through a temp file,
    fsync and atomic replace, so a crash never leaves a half-written file.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        for item in raw.get("repositories", []):
            repository = Repository(**item)
            self.repositories[repository.id] = repository
        for item in raw.get("reviews", []):
            review = ReviewRecord(**item)
            review.status = ReviewStatus(review.status)
            review.created_at = _parse_timestamp(item.get("created_at"))
            review.completed_at = _parse_timestamp(item.get("completed_at"))
            self.reviews[review.id] = review
        known = {f.name for f in fields(ReviewCommentRecord)}
        self.comments = [
            ReviewCommentRecord(**{k: v for k, v in item.items() if k in known})
            for item in raw.get("comments", [])
        ]
        logger.debug(f"Loaded {len(self.reviews)} reviews from {self.path}")

    def _changed(self) -> None:
        state = {
            "repositories": [asdict(r) for r in self.repositories.values()],
            "reviews": [_review_to_json(r) for r in self.reviews.values()],
            "comments": [asdict(c) for c in self.comments],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def _guarded(self, operation, *args, **kwargs) -> Result:
        """Runs a mutation; if the file write fails, in-memory state is rolled back."""
        snapshot = copy.deepcopy((self.repositories, self.reviews, self.comments))
        try:
            return operation(*args, **kwargs)
        except OSError as e:
            self.repositories, self.reviews, self.comments = snapshot
            logger.error(f"Failed to write review store {self.path}: {e}")
            return err(f"Failed to write review store: {e}")

    def add_repository(self, full_name: str, is_enabled: bool = True) -> Result:
        return self._guarded(super().add_repository, full_name, is_enabled)

    def create_review(self, repository_id: str, pull_request_number: int, commit_sha: str) -> Result:
        return self._guarded(super().create_review, repository_id, pull_request_number, commit_sha)

    def _update(self, review_id: str, **changes) -> Result:
        return self._guarded(super()._update, review_id, **changes)

    def save_review_comments(self, comments: List[ReviewCommentRecord]) -> Result:
        return self._guarded(super().save_review_comments, comments)


def _review_to_json(review: ReviewRecord) -> dict:
    data = asdict(review)
    data["status"] = review.status.value
    data["created_at"] = review.created_at.isoformat() if review.created_at else None
    data["completed_at"] = review.completed_at.isoformat() if review.completed_at else None
    return data


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
