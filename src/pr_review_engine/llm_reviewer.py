# src/pr_review_engine/llm_reviewer.py
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, TYPE_CHECKING

import litellm  # type: ignore

from .errors import LLMError
from .models import ReviewChunk, ReviewResult, TokenUsage
from .prompt_builder import build_review_messages
from .response_parser import DEFAULT_CONFIDENCE_THRESHOLD, parse_llm_review_response
from .results import Result, err, ok

if TYPE_CHECKING:
    from .config import EngineConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
BASE_RETRY_DELAY_SECONDS = 1.0
RETRYABLE_ERRORS = (LLMError.RATE_LIMITED, LLMError.TIMEOUT, LLMError.UNKNOWN, LLMError.INVALID_RESPONSE)
# Providers that run without an API key.
KEYLESS_MODEL_PREFIXES = ("ollama/", "ollama_chat/")
_CONTEXT_LENGTH_HINTS = ("context length", "context window", "too many tokens", "maximum")


class TextAnalysisService(ABC):
    """Analyzes one review chunk and reports findings."""

    @abstractmethod
    async def analyze_chunk(self, chunk: ReviewChunk) -> Result:
        """Returns Result[ReviewResult, LLMError]."""


@dataclass
class _Completion:
    text: str
    input_tokens: int
    output_tokens: int


class LLMReviewer(TextAnalysisService):
    def __init__(self, config: 'EngineConfig'):
        """
        Initializes the LLMReviewer.

        Args:
            config: Engine configuration; model, credentials, sampling and retry settings are read from it.
        """
        self.config = config
        self.base_delay_seconds = BASE_RETRY_DELAY_SECONDS

    def _requires_api_key(self) -> bool:
        model = (self.config.llm_model or "").lower()
        return not model.startswith(KEYLESS_MODEL_PREFIXES)

    def _completion_kwargs(self, chunk: ReviewChunk) -> Dict[str, Any]:
        kwargs_for_litellm: Dict[str, Any] = {
            "model": self.config.llm_model,
            "messages": build_review_messages(chunk),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_output_tokens,
        }
        if self.config.llm_api_key:
            kwargs_for_litellm["api_key"] = self.config.llm_api_key
        if self.config.llm_api_base:
            kwargs_for_litellm["api_base"] = self.config.llm_api_base
        if self.config.azure_api_version and "azure" in self.config.llm_model.lower():
            kwargs_for_litellm["api_version"] = self.config.azure_api_version
        return kwargs_for_litellm

    async def analyze_chunk(self, chunk: ReviewChunk) -> Result:
        """
        Sends one chunk to the model and parses the findings it returns.

        Returns:
            Result with a ReviewResult, or an LLMError once retries are exhausted
            or a non-retryable error occurs.
        """
        if not self.config.llm_model:
            logger.error("LLM model is not configured. Cannot analyze chunk.")
            return err(LLMError.UNKNOWN)
        if self._requires_api_key() and not self.config.llm_api_key:
            logger.error(f"No API key configured for model {self.config.llm_model}.")
            return err(LLMError.API_KEY_MISSING)

        kwargs_for_litellm = self._completion_kwargs(chunk)
        if logger.isEnabledFor(logging.DEBUG):
            debug_kwargs = {k: v for k, v in kwargs_for_litellm.items() if k not in ("messages", "api_key")}
            logger.debug(f"LiteLLM request kwargs (messages omitted): {json.dumps(debug_kwargs, default=str)}")

        completion_result = await self._complete_with_retry(kwargs_for_litellm)
        if not completion_result.success:
            return completion_result
        completion: _Completion = completion_result.data

        parse_result = parse_llm_review_response(
            completion.text,
            self.config.confidence_threshold
            if self.config.confidence_threshold is not None
            else DEFAULT_CONFIDENCE_THRESHOLD,
        )
        if not parse_result.success:
            return parse_result

        findings = parse_result.data
        logger.info(f"Received {len(findings)} findings from {self.config.llm_model} for {len(chunk.files)} file(s).")
        return ok(ReviewResult(
            findings=findings,
            summary=build_chunk_summary(len(findings)),
            token_usage=TokenUsage(input_tokens=completion.input_tokens, output_tokens=completion.output_tokens),
        ))

    async def _complete_with_retry(self, kwargs_for_litellm: Dict[str, Any]) -> Result:
        last_error = LLMError.UNKNOWN
        max_retries = self.config.llm_max_retries

        for attempt in range(max_retries + 1):
            if attempt > 0:
                delay = self.base_delay_seconds * 3 ** (attempt - 1)
                logger.info(f"Retrying LLM call (attempt {attempt}/{max_retries}) in {delay:.1f}s after {last_error.value}.")
                await asyncio.sleep(delay)

            try:
                response = await litellm.acompletion(**kwargs_for_litellm)
            except Exception as e:
                last_error = classify_litellm_exception(e)
                if last_error not in RETRYABLE_ERRORS:
                    logger.error(f"LLM call failed with non-retryable error {last_error.value}: {e}")
                    return err(last_error)
                logger.warning(f"LLM call failed on attempt {attempt} ({last_error.value}): {e}")
                continue

            content = _response_text(response)
            if not content:
                logger.warning("LLM response structure not as expected or content is missing.")
                last_error = LLMError.INVALID_RESPONSE
                continue

            input_tokens, output_tokens = _token_usage(response)
            logger.info(f"LLM call completed: model={kwargs_for_litellm['model']}, "
                        f"input_tokens={input_tokens}, output_tokens={output_tokens}")
            return ok(_Completion(text=content, input_tokens=input_tokens, output_tokens=output_tokens))

        logger.error(f"LLM call failed after {max_retries + 1} attempt(s): {last_error.value}")
        return err(last_error)


def classify_litellm_exception(error: Exception) -> LLMError:
    """Maps a LiteLLM exception onto the LLMError taxonomy."""
    if isinstance(error, litellm.exceptions.RateLimitError):
        return LLMError.RATE_LIMITED
    if isinstance(error, litellm.exceptions.Timeout):
        return LLMError.TIMEOUT
    if isinstance(error, litellm.exceptions.ContextWindowExceededError):
        return LLMError.CONTEXT_TOO_LONG
    if isinstance(error, litellm.exceptions.AuthenticationError):
        return LLMError.API_KEY_MISSING
    if isinstance(error, litellm.exceptions.BadRequestError):
        message = str(error).lower()
        if any(hint in message for hint in _CONTEXT_LENGTH_HINTS):
            return LLMError.CONTEXT_TOO_LONG
    return LLMError.UNKNOWN


def _response_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


def _token_usage(response: Any):
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0
    return getattr(usage, "prompt_tokens", 0) or 0, getattr(usage, "completion_tokens", 0) or 0


def build_chunk_summary(finding_count: int) -> str:
    if finding_count == 0:
        return "No issues found in this review."
    return f"Found {finding_count} issue{'' if finding_count == 1 else 's'} in this review."
