# src/pr_review_engine/llm_auth_helper.py
import os
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import EngineConfig

logger = logging.getLogger(__name__)


def setup_litellm_provider_env(config: 'EngineConfig') -> None:
    """
    Exports the provider-specific environment variables LiteLLM reads on its own
    (project ids, regions). API key, base URL and API version are passed directly
    to each completion call instead.

    Args:
        config: The EngineConfig instance.
    """
    if not config.llm_model:
        logger.info("No LLM model configured, skipping provider-specific env setup for LiteLLM.")
        return

    model = config.llm_model.lower()
    provider = model.split("/", 1)[0] if "/" in model else ""

    # LiteLLM reads VERTEXAI_PROJECT and VERTEXAI_LOCATION for Vertex AI.
    if provider in ("vertex_ai", "vertex_ai_beta") or "vertex_ai" in model:
        if config.vertex_project:
            os.environ["VERTEXAI_PROJECT"] = config.vertex_project
            logger.info(f"Set environment variable VERTEXAI_PROJECT to '{config.vertex_project}'")
        else:
            logger.info("REVIEW_VERTEXAI_PROJECT not set. Relying on gcloud ADC defaults for Vertex AI project.")
        if config.vertex_location:
            os.environ["VERTEXAI_LOCATION"] = config.vertex_location
            logger.info(f"Set environment variable VERTEXAI_LOCATION to '{config.vertex_location}'")

    if provider == "bedrock" or "bedrock" in model:
        if config.aws_region_name:
            os.environ["AWS_REGION_NAME"] = config.aws_region_name
            os.environ["AWS_DEFAULT_REGION"] = config.aws_region_name
            logger.info(f"Set AWS_REGION_NAME/AWS_DEFAULT_REGION to '{config.aws_region_name}' for Bedrock.")
        else:
            logger.info("REVIEW_AWS_REGION_NAME not set. Relying on default AWS SDK configuration for Bedrock region.")

    if provider == "azure" and not config.azure_api_version:
        logger.warning("Azure model configured without REVIEW_AZURE_API_VERSION; LiteLLM will use its default.")
