import unittest

from pr_review_engine.diff_parser import parse_diff_text
from pr_review_engine.finding_mapper import (
    build_review_summary,
    format_comment_body,
    map_findings_to_comments,
)
from pr_review_engine.models import (
    CommentCategory,
    CommentSeverity,
    DiffSide,
    ParsedDiff,
    ReviewFinding,
    UnmappedFinding,
    enum_value,
)

DIFF_TEXT = """\
diff --git a/src/a.ts b/src/a.ts
--- a/src/a.ts
+++ b/src/a.ts
@@ -10,4 +10,4 @@ export function run() {
   const a = 1;
-  const b = 2;
+  const b = 3;
   return a + b;
 }
diff --git a/src/old_name.py b/src/new_name.py
similarity index 95%
rename from src/old_name.py
rename to src/new_name.py
--- a/src/old_name.py
+++ b/src/new_name.py
@@ -1,2 +1,3 @@
 import os
+import sys
 print(os.name)
diff --git a/assets/font.woff2 b/assets/font.woff2
index 1111111..2222222 100644
Binary files a/assets/font.woff2 and b/assets/font.woff2 differ
"""


def finding(path, line, severity=CommentSeverity.WARNING, category=CommentCategory.BUGS,
            message="Something is off.", suggestion="Fix it."):
    return ReviewFinding(
        file_path=path,
        line_number=line,
        category=category,
        severity=severity,
        message=message,
        suggestion=suggestion,
        confidence=0.9,
    )


class TestFindingMapper(unittest.TestCase):
    def setUp(self):
        self.parsed_diff = parse_diff_text(DIFF_TEXT).data

    def test_added_line_maps_to_right_side(self):
        result = map_findings_to_comments([finding("src/new_name.py", 2)], self.parsed_diff)
        self.assertEqual(len(result.mapped_comments), 1)
        comment = result.mapped_comments[0]
        self.assertEqual((comment.path, comment.line, comment.side), ("src/new_name.py", 2, DiffSide.RIGHT))

    def test_removed_line_wins_over_later_added_line_with_same_number(self):
        comment = map_findings_to_comments([finding("src/a.ts", 11)], self.parsed_diff).mapped_comments[0]
        self.assertEqual((comment.line, comment.side), (11, DiffSide.LEFT))

    def test_context_line_maps_to_right_side(self):
        comment = map_findings_to_comments([finding("src/a.ts", 13)], self.parsed_diff).mapped_comments[0]
        self.assertEqual((comment.line, comment.side), (13, DiffSide.RIGHT))

    def test_removed_line_maps_to_left_side_by_old_number(self):
        parsed = parse_diff_text(
            "diff --git a/m.py b/m.py\n"
            "--- a/m.py\n"
            "+++ b/m.py\n"
            "@@ -1,3 +1,1 @@\n"
            " keep()\n"
            "-gone()\n"
            "-also_gone()\n"
        ).data
        comment = map_findings_to_comments([finding("m.py", 3)], parsed).mapped_comments[0]
        self.assertEqual((comment.line, comment.side), (3, DiffSide.LEFT))

    def test_previous_path_resolves_to_current_path(self):
        comment = map_findings_to_comments([finding("src/old_name.py", 3)], self.parsed_diff).mapped_comments[0]
        self.assertEqual(comment.path, "src/new_name.py")
        self.assertEqual(comment.side, DiffSide.RIGHT)

    def test_line_outside_diff_context(self):
        parsed = parse_diff_text(
            "diff --git a/src/a.ts b/src/a.ts\n"
            "--- a/src/a.ts\n"
            "+++ b/src/a.ts\n"
            "@@ -10,11 +10,11 @@\n"
            + "".join(f" line{i}\n" for i in range(10, 15))
            + "-old\n+new\n"
            + "".join(f" line{i}\n" for i in range(16, 21))
        ).data
        result = map_findings_to_comments([finding("src/a.ts", 5)], parsed)
        self.assertEqual(result.mapped_comments, [])
        self.assertEqual(len(result.unmapped_findings), 1)
        self.assertIn("not within the diff context", result.unmapped_findings[0].reason)

    def test_unmapped_reasons(self):
        findings = [
            finding("src/missing.py", 1),
            finding("assets/font.woff2", 1),
            finding("src/a.ts", 99),
        ]
        result = map_findings_to_comments(findings, self.parsed_diff)
        self.assertEqual([u.reason for u in result.unmapped_findings], [
            'File "src/missing.py" not found in diff',
            'File "assets/font.woff2" has no reviewable hunks',
            'Line 99 in "src/a.ts" is not within the diff context',
        ])

    def test_mapping_is_total_and_ordered(self):
        findings = [finding("src/a.ts", line) for line in range(8, 16)]
        result = map_findings_to_comments(findings, self.parsed_diff)
        self.assertEqual(len(result.mapped_comments) + len(result.unmapped_findings), len(findings))
        self.assertEqual(
            [(c.line, c.side) for c in result.mapped_comments],
            [(10, DiffSide.RIGHT), (11, DiffSide.LEFT), (12, DiffSide.RIGHT), (13, DiffSide.RIGHT)],
        )

    def test_no_findings(self):
        result = map_findings_to_comments([], ParsedDiff())
        self.assertEqual((result.mapped_comments, result.unmapped_findings), ([], []))

    def test_comment_body(self):
        body = format_comment_body(finding(
            "src/a.ts", 11,
            severity=CommentSeverity.CRITICAL,
            category=CommentCategory.SECURITY,
            message="Secret is logged.",
            suggestion="Redact it.",
        ))
        self.assertEqual(body, "🔴 **Critical** | Security\n\nSecret is logged.\n\n**Suggestion:** Redact it.")

    def test_comment_body_without_suggestion_and_unknown_labels(self):
        body = format_comment_body(finding("a.py", 1, severity="BLOCKER", category="LICENSING", suggestion=""))
        self.assertEqual(body, "BLOCKER | LICENSING\n\nSomething is off.")

    def test_enum_value(self):
        self.assertEqual(enum_value(CommentSeverity.CRITICAL), "CRITICAL")
        self.assertEqual(enum_value("LICENSING"), "LICENSING")

    def test_summary_with_unmapped_findings(self):
        unmapped = [UnmappedFinding(
            finding=finding("src/b.py", 7, severity=CommentSeverity.NITPICK, category=CommentCategory.STYLE,
                            message="Rename this."),
            reason="x",
        )]
        summary = build_review_summary("Found 3 issues in this review.", 2, unmapped)
        self.assertEqual(
            summary,
            "Found 3 issues in this review."
            "\n\n---\n\n**Additional findings** (outside diff context):\n"
            "\n- ⚪ **Nitpick** | Style — `src/b.py:7`: Rename this."
            "\n\n---\n*3 issues found (2 inline, 1 in summary)*",
        )

    def test_summary_singular_count(self):
        summary = build_review_summary("LLM says hi.", 1, [])
        self.assertEqual(summary, "LLM says hi.\n\n---\n*1 issue found (1 inline, 0 in summary)*")


if __name__ == '__main__':
    unittest.main()
