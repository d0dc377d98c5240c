# src/pr_review_engine/response_parser.py
import json
import logging
import math
import re
from typing import Any, Optional

from .errors import LLMError
from .models import CommentCategory, CommentSeverity, ReviewFinding
from .results import Result, err, ok

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.7

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")


def parse_llm_review_response(
    response_text: str,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
) -> Result:
    """
    Parses the raw completion text into validated findings.

    Args:
        response_text: Raw text returned by the model.
        confidence_threshold: Findings below this confidence are dropped.

    Returns:
        Result with a list of ReviewFinding, or LLMError.INVALID_RESPONSE when no
        JSON array can be recovered from the text.
    """
    json_string = extract_json_array(response_text)
    if json_string is None:
        logger.error(f"No JSON array found in LLM response: {response_text[:500]}")
        return err(LLMError.INVALID_RESPONSE)

    try:
        parsed = json.loads(json_string)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON response from LLM: {e}")
        logger.debug(f"LLM raw response content that failed parsing: {response_text[:1000]}")
        return err(LLMError.INVALID_RESPONSE)

    if not isinstance(parsed, list):
        logger.error(f"LLM response JSON is not an array (got {type(parsed).__name__}).")
        return err(LLMError.INVALID_RESPONSE)

    findings = []
    for index, item in enumerate(parsed):
        finding = validate_finding(item)
        if finding is None:
            logger.warning(f"Skipping invalid finding #{index} from LLM response: {item!r}")
            continue
        if finding.confidence >= confidence_threshold:
            findings.append(finding)

    return ok(findings)


def extract_json_array(text: str) -> Optional[str]:
    """Recovers the JSON array from a bare, fenced or prose-wrapped response."""
    trimmed = (text or "").strip()
    if trimmed.startswith("["):
        return trimmed

    fence_match = _FENCED_BLOCK_RE.search(trimmed)
    if fence_match:
        inner = fence_match.group(1).strip()
        if inner.startswith("["):
            return inner

    start = trimmed.find("[")
    end = trimmed.rfind("]")
    if start != -1 and end > start:
        return trimmed[start:end + 1]
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_finding(raw: Any) -> Optional[ReviewFinding]:
    if not isinstance(raw, dict):
        return None

    file_path = raw.get("filePath")
    line_number = raw.get("lineNumber")
    message = raw.get("message")
    suggestion = raw.get("suggestion")
    confidence = raw.get("confidence")
    category = _to_enum(CommentCategory, raw.get("category"))
    severity = _to_enum(CommentSeverity, raw.get("severity"))

    if not isinstance(file_path, str) or not isinstance(message, str) or not isinstance(suggestion, str):
        return None
    if not _is_number(line_number) or int(line_number) != line_number:
        return None
    if not _is_number(confidence) or not 0 <= confidence <= 1:
        return None
    if category is None or severity is None:
        return None

    return ReviewFinding(
        file_path=file_path,
        line_number=int(line_number),
        category=category,
        severity=severity,
        message=message,
        suggestion=suggestion,
        confidence=float(confidence),
    )


def _to_enum(enum_cls, value: Any):
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        return None
