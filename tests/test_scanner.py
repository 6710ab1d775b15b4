from __future__ import annotations

import dataclasses
import json
import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from merman.layout import DEFAULT_LAYOUT
from merman.scanner import ScannerConfig, _comment_safe, find_blocks, transform_document

GOOD = json.dumps(
    {
        "nodes": {"a": {"name": "A"}, "b": {"name": "B"}},
        "connections": [{"from": "a", "to": "b"}],
    }
)
BAD = json.dumps({"nodes": {"a": {}}, "connections": [{"from": "a", "to": "ghost"}]})


def _fence(body: str) -> str:
    return f"```merman\n{body}\n```\n"


class FindBlocksTests(unittest.TestCase):
    def test_locates_blocks_with_offsets_and_lines(self) -> None:
        text = "# Title\n\n" + _fence(GOOD) + "between\n" + _fence(BAD)
        blocks = find_blocks(text)
        self.assertEqual([b.index for b in blocks], [0, 1])
        self.assertEqual(blocks[0].line, 3)
        self.assertEqual(text[blocks[0].start : blocks[0].end], _fence(GOOD))
        self.assertEqual(blocks[0].source, GOOD + "\n")
        self.assertEqual(blocks[1].line, 7)
        self.assertEqual(blocks[1].end, len(text))

    def test_other_fences_are_ignored(self) -> None:
        text = "```python\nprint(1)\n```\n\nplain text\n"
        self.assertEqual(find_blocks(text), [])

    def test_unterminated_block_stops_scan(self) -> None:
        text = _fence(GOOD) + "```merman\n{\"nodes\": {}}\n"
        with self.assertLogs("merman.scanner", level="WARNING") as logs:
            blocks = find_blocks(text)
        self.assertEqual(len(blocks), 1)
        self.assertIn("unterminated", logs.output[0])

    def test_custom_markers(self) -> None:
        config = ScannerConfig(begin_marker="<<<graph\n", end_marker=">>>\n")
        text = "intro\n<<<graph\n" + GOOD + "\n>>>\n"
        blocks = find_blocks(text, config)
        self.assertEqual(len(blocks), 1)
        self.assertEqual(blocks[0].line, 2)
        self.assertEqual(find_blocks(text), [])


class TransformDocumentTests(unittest.TestCase):
    def test_good_block_is_replaced_by_svg(self) -> None:
        text = "before\n" + _fence(GOOD) + "after\n"
        result = transform_document(text)
        self.assertTrue(result.ok)
        self.assertEqual(result.rendered, 1)
        self.assertTrue(result.text.startswith("before\n<!-- merman:begin -->\n<svg "))
        self.assertTrue(result.text.endswith("</svg>\n<!-- merman:end -->\nafter\n"))
        self.assertNotIn("```merman", result.text)

    def test_failed_block_is_annotated_and_kept(self) -> None:
        prose_head = "# Design\n\nSome *prose* with ``` inline ticks.\n\n"
        prose_mid = "\nMiddle paragraph.\n\n"
        prose_tail = "\nClosing words, no trailing newline"
        text = prose_head + _fence(BAD) + prose_mid + _fence(GOOD) + prose_tail
        result = transform_document(text)

        self.assertFalse(result.ok)
        self.assertEqual(result.rendered, 1)
        self.assertEqual(len(result.failures), 1)
        failure = result.failures[0]
        self.assertEqual(failure.index, 0)
        self.assertEqual(failure.line, 5)
        self.assertEqual(failure.code, "E_UNKNOWN_NODE")
        self.assertIn("ghost", failure.message)

        self.assertTrue(result.text.startswith(prose_head))
        self.assertTrue(result.text.endswith(prose_tail))
        annotation_at = len(prose_head)
        self.assertTrue(result.text[annotation_at:].startswith("<!-- merman:error E_UNKNOWN_NODE: "))
        annotation_end = result.text.index("-->\n", annotation_at) + len("-->\n")
        self.assertTrue(result.text[annotation_end:].startswith(_fence(BAD) + prose_mid))
        self.assertIn("<!-- merman:begin -->\n<svg", result.text)

    def test_document_without_blocks_is_unchanged(self) -> None:
        text = "nothing to see\n```\ncode\n```\n"
        result = transform_document(text)
        self.assertEqual(result.text, text)
        self.assertEqual(result.rendered, 0)
        self.assertTrue(result.ok)

    def test_unterminated_block_leaves_text_unchanged(self) -> None:
        text = "intro\n```merman\n" + GOOD + "\n"
        with self.assertLogs("merman.scanner", level="WARNING"):
            result = transform_document(text)
        self.assertEqual(result.text, text)
        self.assertEqual(result.rendered, 0)

    def test_blocks_get_distinct_id_prefixes(self) -> None:
        result = transform_document(_fence(GOOD) + "\n" + _fence(GOOD))
        self.assertEqual(result.rendered, 2)
        self.assertIn('id="merman-0-arrow"', result.text)
        self.assertIn('id="merman-1-arrow"', result.text)
        self.assertIn("url(#merman-1-arrow)", result.text)

    def test_per_block_limits(self) -> None:
        config = dataclasses.replace(DEFAULT_LAYOUT, max_nodes=1)
        with self.assertLogs("merman.scanner", level="WARNING"):
            result = transform_document(_fence(GOOD), layout_config=config)
        self.assertEqual(result.rendered, 0)
        self.assertEqual(result.failures[0].code, "E_LAYOUT_OVERFLOW")
        self.assertTrue(result.text.endswith(_fence(GOOD)))

    def test_invalid_json_block_reports_decode_error(self) -> None:
        with self.assertLogs("merman.scanner", level="WARNING"):
            result = transform_document(_fence("{not json"))
        self.assertEqual(result.failures[0].code, "E_PARSE_JSON")

    def test_rerun_replaces_existing_annotation(self) -> None:
        text = "intro\n" + _fence(BAD) + "\n" + _fence(GOOD)
        with self.assertLogs("merman.scanner", level="WARNING"):
            first = transform_document(text)
        with self.assertLogs("merman.scanner", level="WARNING"):
            second = transform_document(first.text)
        self.assertEqual(second.text, first.text)
        self.assertEqual(second.text.count("<!-- merman:error"), 1)
        self.assertEqual(len(second.failures), 1)

    def test_fixed_block_drops_stale_annotation(self) -> None:
        text = "intro\n<!-- merman:error E_UNKNOWN_NODE: old failure -->\n" + _fence(GOOD)
        result = transform_document(text)
        self.assertEqual(result.rendered, 1)
        self.assertNotIn("merman:error", result.text)
        self.assertTrue(result.text.startswith("intro\n<!-- merman:begin -->\n<svg"))

    def test_unrelated_comment_above_block_is_kept(self) -> None:
        text = "<!-- keep me -->\n" + _fence(GOOD)
        result = transform_document(text)
        self.assertTrue(result.text.startswith("<!-- keep me -->\n<!-- merman:begin -->"))

    def test_oversized_font_fails_only_its_block(self) -> None:
        huge = '{"style": {"fontSize": 1e308}, "nodes": {"a": {"name": "mmmmmmmmmm"}}}'
        with self.assertLogs("merman.scanner", level="WARNING"):
            result = transform_document(_fence(huge) + "\n" + _fence(GOOD))
        self.assertEqual(result.rendered, 1)
        self.assertEqual(len(result.failures), 1)
        self.assertEqual(result.failures[0].code, "E_INVALID_VALUE")
        self.assertTrue(result.text.startswith("<!-- merman:error E_INVALID_VALUE: "))
        self.assertIn(_fence(huge), result.text)
        self.assertIn("<!-- merman:begin -->\n<svg", result.text)

    def test_rendering_is_repeatable(self) -> None:
        text = "x\n" + _fence(GOOD)
        self.assertEqual(transform_document(text).text, transform_document(text).text)


class CommentSafeTests(unittest.TestCase):
    def test_flattens_whitespace(self) -> None:
        self.assertEqual(_comment_safe("line one\n  line two\t!"), "line one line two !")

    def test_breaks_comment_terminators(self) -> None:
        self.assertNotIn("--", _comment_safe("a -- b --> c ---- d"))


if __name__ == "__main__":
    unittest.main()
