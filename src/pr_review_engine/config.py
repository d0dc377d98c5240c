# src/pr_review_engine/config.py
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .context_builder import DEFAULT_MAX_TOKENS_PER_CHUNK
from .llm_reviewer import DEFAULT_MAX_RETRIES
from .response_parser import DEFAULT_CONFIDENCE_THRESHOLD

# Default values for optional parameters
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_SCM_TIMEOUT_SECONDS = 30
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_STORE_PATH = ".pr-review/reviews.json"
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _split_patterns(raw: Optional[str]) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


def _optional_int(raw: Optional[str]) -> Optional[int]:
    return int(raw) if raw and raw.strip() else None


@dataclass
class EngineConfig:
    """
    Holds all configuration for the review engine,
    primarily sourced from REVIEW_ prefixed environment variables.
    """

    # --- Core LLM Settings ---
    llm_model: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_LLM_MODEL")
    )
    llm_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_LLM_API_KEY")
    )
    llm_api_base: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_LLM_API_BASE")
    )

    # --- Optional LLM Parameters ---
    temperature: float = field(
        default_factory=lambda: float(os.getenv("REVIEW_TEMPERATURE", str(DEFAULT_TEMPERATURE)))
    )
    max_output_tokens: int = field(
        default_factory=lambda: int(os.getenv("REVIEW_MAX_OUTPUT_TOKENS", str(DEFAULT_MAX_OUTPUT_TOKENS)))
    )
    llm_max_retries: int = field(
        default_factory=lambda: int(os.getenv("REVIEW_LLM_MAX_RETRIES", str(DEFAULT_MAX_RETRIES)))
    )
    confidence_threshold: float = field(
        default_factory=lambda: float(os.getenv("REVIEW_CONFIDENCE_THRESHOLD", str(DEFAULT_CONFIDENCE_THRESHOLD)))
    )

    # --- Optional Provider-Specific Configuration ---
    azure_api_version: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_AZURE_API_VERSION")
    )
    vertex_project: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_VERTEXAI_PROJECT")
    )
    vertex_location: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_VERTEXAI_LOCATION")
    )
    aws_region_name: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_AWS_REGION_NAME")
    )

    # --- SCM Settings ---
    scm_token: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_SCM_TOKEN")
    )
    scm_api_url: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_SCM_API_URL")
    )
    scm_timeout_seconds: int = field(
        default_factory=lambda: int(os.getenv("REVIEW_SCM_TIMEOUT", str(DEFAULT_SCM_TIMEOUT_SECONDS)))
    )

    # --- Review Behavior ---
    max_tokens_per_chunk: int = field(
        default_factory=lambda: int(os.getenv("REVIEW_MAX_TOKENS_PER_CHUNK", str(DEFAULT_MAX_TOKENS_PER_CHUNK)))
    )
    include_patterns: List[str] = field(
        default_factory=lambda: _split_patterns(os.getenv("REVIEW_INCLUDE_PATTERNS"))
    )
    exclude_patterns: List[str] = field(
        default_factory=lambda: _split_patterns(os.getenv("REVIEW_EXCLUDE_PATTERNS"))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("REVIEW_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    )
    store_path: str = field(
        default_factory=lambda: os.getenv("REVIEW_STORE_PATH", DEFAULT_STORE_PATH)
    )

    # --- Run inputs (populated by CI) ---
    repository_full_name: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_REPOSITORY")
    )
    pull_request_number: Optional[int] = field(
        default_factory=lambda: _optional_int(os.getenv("REVIEW_PR_NUMBER"))
    )
    commit_sha: Optional[str] = field(
        default_factory=lambda: os.getenv("REVIEW_COMMIT_SHA")
    )

    def __post_init__(self):
        if not self.llm_model:
            print("WARN: [EngineConfig] REVIEW_LLM_MODEL is not set.")

        if not self.scm_token:
            print("WARN: [EngineConfig] REVIEW_SCM_TOKEN is not set.")

        if self.log_level not in VALID_LOG_LEVELS:
            print(f"WARN: [EngineConfig] Invalid REVIEW_LOG_LEVEL '{self.log_level}'. Defaulting to '{DEFAULT_LOG_LEVEL}'.")
            self.log_level = DEFAULT_LOG_LEVEL

    def missing_required_settings(self) -> List[str]:
        """Names of the settings a CLI run cannot proceed without."""
        required = {
            "REVIEW_LLM_MODEL": self.llm_model,
            "REVIEW_SCM_TOKEN": self.scm_token,
            "REVIEW_REPOSITORY": self.repository_full_name,
            "REVIEW_PR_NUMBER": self.pull_request_number,
            "REVIEW_COMMIT_SHA": self.commit_sha,
        }
        return [name for name, value in required.items() if not value]


def load_engine_config() -> EngineConfig:
    """
    Factory function to create and return an EngineConfig instance.
    """
    return EngineConfig()
