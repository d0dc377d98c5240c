# src/pr_review_engine/errors.py
from enum import Enum


class DiffParseError(str, Enum):
    DIFF_EMPTY = "DIFF_EMPTY"


class AstParseError(str, Enum):
    INIT_FAILED = "AST_INIT_FAILED"
    LANGUAGE_NOT_SUPPORTED = "AST_LANGUAGE_NOT_SUPPORTED"
    PARSE_FAILED = "AST_PARSE_FAILED"


class ContextBuildError(str, Enum):
    NO_REVIEWABLE_FILES = "CONTEXT_NO_REVIEWABLE_FILES"


class LLMError(str, Enum):
    API_KEY_MISSING = "LLM_API_KEY_MISSING"
    RATE_LIMITED = "LLM_RATE_LIMITED"
    TIMEOUT = "LLM_TIMEOUT"
    INVALID_RESPONSE = "LLM_INVALID_RESPONSE"
    CONTEXT_TOO_LONG = "LLM_CONTEXT_TOO_LONG"
    UNKNOWN = "LLM_UNKNOWN_ERROR"


class SCMError(str, Enum):
    AUTH_FAILED = "SCM_AUTH_FAILED"
    FORBIDDEN = "SCM_FORBIDDEN"
    NOT_FOUND = "SCM_NOT_FOUND"
    RATE_LIMITED = "SCM_RATE_LIMITED"
    UNKNOWN = "SCM_UNKNOWN_ERROR"


class ReviewEngineError(str, Enum):
    ALREADY_EXISTS = "REVIEW_ALREADY_EXISTS"
    DB_ERROR = "REVIEW_DB_ERROR"
    DIFF_FETCH_FAILED = "REVIEW_DIFF_FETCH_FAILED"
    DIFF_PARSE_FAILED = "REVIEW_DIFF_PARSE_FAILED"
    LLM_FAILED = "REVIEW_LLM_FAILED"
    POST_FAILED = "REVIEW_POST_FAILED"


class RepositoryNameError(ValueError):
    """Raised when a repository identity is not of the form 'owner/repo'."""
