# src/pr_review_engine/main.py
import os
import sys
import asyncio
import logging
from dotenv import load_dotenv # For local development using .env file

from . import __version__
from .config import load_engine_config, EngineConfig
from .errors import ReviewEngineError
from .llm_auth_helper import setup_litellm_provider_env
from .llm_reviewer import LLMReviewer
from .models import ReviewRequest
from .persistence import JsonFileReviewStore
from .review_engine import ReviewEngine
from .scm_client import GitHubClient

logger = logging.getLogger("pr_review_engine")


def setup_logging(log_level_str: str):
    """Configures basic logging for the engine."""
    numeric_level = getattr(logging, log_level_str.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        logger.warning(f"Invalid log level '{log_level_str}'. Defaulting to INFO.")

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_engine(config: EngineConfig) -> ReviewEngine:
    """Wires the GitHub client, LiteLLM reviewer and JSON-file store into a ReviewEngine."""
    store = JsonFileReviewStore(config.store_path)
    registered = store.add_repository(config.repository_full_name)
    if not registered.success:
        logger.warning(f"Could not register repository {config.repository_full_name}: {registered.error}")

    return ReviewEngine(
        scm=GitHubClient(config),
        llm=LLMReviewer(config),
        store=store,
        max_tokens_per_chunk=config.max_tokens_per_chunk,
        include_patterns=config.include_patterns or None,
        exclude_patterns=config.exclude_patterns or None,
    )


async def async_main() -> int:
    """
    Asynchronous main function: reviews the pull request described by the configuration.
    """
    config = load_engine_config()
    setup_logging(config.log_level)

    logger.info(f"Starting PR review engine {__version__}")

    missing = config.missing_required_settings()
    if missing:
        logger.critical(f"Missing required configuration: {', '.join(missing)}. Cannot proceed.")
        return 1

    setup_litellm_provider_env(config)
    engine = build_engine(config)

    result = await engine.execute_review(ReviewRequest(
        repository_full_name=config.repository_full_name,
        pull_request_number=config.pull_request_number,
        commit_sha=config.commit_sha,
    ))

    if result.success:
        logger.info(f"Review {result.data.review_id} finished with {result.data.issues_found} issues "
                    f"in {result.data.processing_time_ms} ms.")
        return 0
    if result.error == ReviewEngineError.ALREADY_EXISTS:
        logger.info(f"Commit {config.commit_sha} was already reviewed. Nothing to do.")
        return 0

    logger.error(f"Review failed: {result.error.value}")
    return 1


def main_cli() -> int:
    """
    CLI entry point. Loads .env for local dev.
    """
    if os.path.exists(".env"):
        load_dotenv(override=True)

    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Review interrupted by user (KeyboardInterrupt).")
        return 130


if __name__ == "__main__":
    sys.exit(main_cli())
