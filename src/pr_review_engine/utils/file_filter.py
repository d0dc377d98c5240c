from typing import List, Optional
from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern

# Lock files, generated code, minified bundles, binary assets and vendored trees.
NON_REVIEWABLE_PATTERNS = [
    "*.lock",
    "*-lock.*",
    "*.lock.*",
    "*.min.js",
    "*.min.css",
    "*.wasm",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.ico",
    "*.svg",
    "*.webp",
    "*.map",
    "src/generated/",
    "node_modules/",
    "vendor/",
]

_NON_REVIEWABLE_SPEC = PathSpec.from_lines(GitWildMatchPattern, NON_REVIEWABLE_PATTERNS)


def is_reviewable_path(path: str) -> bool:
    """Returns False for lock files, generated code and other paths not worth reviewing."""
    return not _NON_REVIEWABLE_SPEC.match_file(path)


class PathFilter:
    """
    Combines the built-in non-reviewable list with optional user include/exclude patterns.

    Include patterns narrow the set (no include patterns means everything is included);
    exclude patterns are applied afterwards.
    """

    def __init__(
        self,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None
    ):
        self.include_spec = (
            PathSpec.from_lines(GitWildMatchPattern, include_patterns) if include_patterns else None
        )
        self.exclude_spec = (
            PathSpec.from_lines(GitWildMatchPattern, exclude_patterns) if exclude_patterns else None
        )

    def accepts(self, path: str) -> bool:
        if not is_reviewable_path(path):
            return False
        if self.include_spec and not self.include_spec.match_file(path):
            return False
        if self.exclude_spec and self.exclude_spec.match_file(path):
            return False
        return True
