# src/pr_review_engine/prompt_builder.py
import importlib.resources
import logging
from functools import lru_cache
from string import Template
from typing import Dict, List

from .models import DiffLineType, FileReviewContext, ReviewChunk

logger = logging.getLogger(__name__)

PROMPTS_PACKAGE = "pr_review_engine.prompts"
SYSTEM_PROMPT_FILE = "review_system_prompt.txt"
REQUEST_PROMPT_FILE = "review_request_prompt.txt"

_LINE_PREFIXES = {
    DiffLineType.ADD: "+",
    DiffLineType.DELETE: "-",
    DiffLineType.CONTEXT: " ",
}


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """Loads a prompt file shipped as package data."""
    prompt_file_ref = importlib.resources.files(PROMPTS_PACKAGE).joinpath(name)
    return prompt_file_ref.read_text(encoding="utf-8")


def build_review_messages(chunk: ReviewChunk) -> List[Dict[str, str]]:
    """
    Creates the chat messages for one review chunk: the fixed reviewer
    instructions as the system message and the rendered changes as the user message.
    """
    request_template = Template(load_prompt(REQUEST_PROMPT_FILE))
    user_content = request_template.substitute(
        file_sections="\n".join(format_file_for_prompt(f) for f in chunk.files)
    )
    return [
        {"role": "system", "content": load_prompt(SYSTEM_PROMPT_FILE)},
        {"role": "user", "content": user_content},
    ]


def format_file_for_prompt(context: FileReviewContext) -> str:
    language = context.language.value if context.language else "unknown"
    parts = [
        f"## File: {context.file_path}",
        f"Language: {language} | Change: {context.change_type.value}",
    ]

    if context.imports:
        import_lines = []
        for imp in context.imports:
            if imp.specifiers:
                names = ", ".join(imp.specifiers)
            else:
                names = "default" if imp.is_default else "*"
            import_lines.append(f'  {names} from "{imp.source}"')
        parts.append("Imports:\n" + "\n".join(import_lines))

    for enriched in context.enriched_hunks:
        if enriched.enclosing_scopes:
            scope_desc = ", ".join(
                f'{s.type.value} "{s.name}" (lines {s.start_line}-{s.end_line})'
                for s in enriched.enclosing_scopes
            )
            parts.append(f"\nScope: {scope_desc}")

        parts.append(f"\n{enriched.hunk.header}")
        for line in enriched.hunk.lines:
            line_number = line.new_line_number if line.new_line_number is not None else line.old_line_number
            parts.append(f"{_LINE_PREFIXES[line.type]} L{line_number}: {line.content}")

    parts.append("")
    return "\n".join(parts)
