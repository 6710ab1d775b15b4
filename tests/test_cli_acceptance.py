from __future__ import annotations

import io
import json
import sys
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest import mock

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from merman import cli

CHAIN = json.dumps(
    {
        "nodes": {"A": {"name": "A"}, "B": {"name": "B"}, "C": {"name": "C"}},
        "connections": [{"from": "A", "to": "B"}, {"from": "B", "to": "C"}],
    }
)
DANGLING = json.dumps({"nodes": {"a": {}}, "connections": [{"from": "a", "to": "ghost"}]})


def _fence(body: str) -> str:
    return f"```merman\n{body}\n```\n"


class CLIAcceptanceTests(unittest.TestCase):
    def run_cli(self, argv: list[str], stdin_text: str = "") -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        stdin = io.StringIO(stdin_text)
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", stdin):
            code = cli.main(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_requires_subcommand(self) -> None:
        code, _out, err = self.run_cli([])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)
        self.assertIn("subcommand", err)

    def test_unknown_subcommand_is_usage_error(self) -> None:
        code, _out, err = self.run_cli(["explode"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_render_file_writes_svg_next_to_input(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "chain.json"
            src.write_text(CHAIN, encoding="utf-8")
            code, out, err = self.run_cli(["render", str(src)])
            self.assertEqual(code, 0, err)
            target = Path(td) / "chain.svg"
            self.assertTrue(target.exists())
            self.assertIn("Wrote", out)
            root = ET.fromstring(target.read_text(encoding="utf-8"))
            self.assertEqual(root.get("width"), "100")

    def test_render_output_path(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "chain.json"
            src.write_text(CHAIN, encoding="utf-8")
            dest = Path(td) / "out"
            dest.mkdir()
            target = dest / "picture.svg"
            code, _out, err = self.run_cli(["render", str(src), "-o", str(target)])
            self.assertEqual(code, 0, err)
            self.assertTrue(target.read_text(encoding="utf-8").startswith("<svg"))

    def test_render_text_to_stdout(self) -> None:
        for argv in (["render", "--text", CHAIN, "--stdout"], ["render", "--text", CHAIN]):
            with self.subTest(argv=argv[2:]):
                code, out, err = self.run_cli(argv)
                self.assertEqual(code, 0, err)
                self.assertTrue(out.startswith("<svg"))
                self.assertTrue(out.endswith("</svg>\n"))

    def test_render_from_stdin(self) -> None:
        code, out, err = self.run_cli(["render"], stdin_text=CHAIN)
        self.assertEqual(code, 0, err)
        root = ET.fromstring(out)
        self.assertEqual(len(root.findall(".//{http://www.w3.org/2000/svg}path")), 3)

    def test_empty_stdin_is_usage_error(self) -> None:
        code, _out, err = self.run_cli(["render"], stdin_text="   ")
        self.assertEqual(code, 2)
        self.assertIn("stdin was empty", err)

    def test_render_is_repeatable(self) -> None:
        first = self.run_cli(["render", "--text", CHAIN])
        second = self.run_cli(["render", "--text", CHAIN])
        self.assertEqual(first, second)

    def test_malformed_description_exit_code(self) -> None:
        code, out, err = self.run_cli(["render", "--text", DANGLING])
        self.assertEqual(code, 3)
        self.assertEqual(out, "")
        self.assertIn("error[E_UNKNOWN_NODE]", err)
        self.assertIn("hint:", err)

    def test_invalid_json_exit_code(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", "{nodes"])
        self.assertEqual(code, 2)
        self.assertIn("E_PARSE_JSON", err)

    def test_json_error_format(self) -> None:
        code, _out, err = self.run_cli(["--error-format", "json", "render", "--text", "{\n  oops"])
        self.assertEqual(code, 2)
        payload = json.loads(err.strip())
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["code"], "E_PARSE_JSON")
        self.assertEqual(payload["line"], 2)
        self.assertIsNotNone(payload["column"])

    def test_node_limit_overflow(self) -> None:
        code, out, err = self.run_cli(["render", "--text", CHAIN, "--max-nodes", "1"])
        self.assertEqual(code, 4)
        self.assertEqual(out, "")
        self.assertIn("E_LAYOUT_OVERFLOW", err)
        self.assertIn("--max-nodes", err)

    def test_lane_limit_overflow(self) -> None:
        skipping = json.dumps(
            {
                "nodes": {"A": {}, "B": {}, "C": {}},
                "connections": [
                    {"from": "A", "to": "B"},
                    {"from": "B", "to": "C"},
                    {"from": "A", "to": "C"},
                ],
            }
        )
        code, out, err = self.run_cli(["render", "--text", skipping, "--max-lanes", "0"])
        self.assertEqual(code, 4)
        self.assertEqual(out, "")
        self.assertIn("lanes=1", err)
        self.assertIn("--max-lanes", err)
        code, _out, err = self.run_cli(["render", "--text", skipping, "--max-lanes", "1"])
        self.assertEqual(code, 0, err)

    def test_negative_limit_rejected(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", CHAIN, "--max-edges", "-1"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_direction_override(self) -> None:
        code, out, err = self.run_cli(["render", "--text", CHAIN, "--direction", "LR"])
        self.assertEqual(code, 0, err)
        root = ET.fromstring(out)
        self.assertGreater(float(root.get("width")), float(root.get("height")))

    def test_bogus_direction_is_malformed(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", CHAIN, "--direction", "sideways"])
        self.assertEqual(code, 3)
        self.assertIn("E_INVALID_VALUE", err)

    def test_stdout_and_output_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", CHAIN, "--stdout", "-o", "x.svg"])
        self.assertEqual(code, 2)
        self.assertIn("mutually exclusive", err)

    def test_text_and_file_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["render", "in.json", "--text", CHAIN])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_missing_input_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            missing = Path(td) / "absent.json"
            code, _out, err = self.run_cli(["render", str(missing)])
        self.assertEqual(code, 2)
        self.assertIn("E_IO_READ", err)

    def test_markdown_rewrites_in_place(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            doc = Path(td) / "notes.md"
            doc.write_text("# Notes\n\n" + _fence(CHAIN) + "\nDone.\n", encoding="utf-8")
            code, out, err = self.run_cli(["markdown", str(doc)])
            self.assertEqual(code, 0, err)
            self.assertIn("(1 rendered, 0 failed)", out)
            text = doc.read_text(encoding="utf-8")
            self.assertTrue(text.startswith("# Notes\n\n<!-- merman:begin -->\n<svg"))
            self.assertTrue(text.endswith("<!-- merman:end -->\n\nDone.\n"))

    def test_markdown_output_path_keeps_source(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            doc = Path(td) / "notes.md"
            original = "intro\n" + _fence(CHAIN)
            doc.write_text(original, encoding="utf-8")
            target = Path(td) / "rendered.md"
            code, _out, err = self.run_cli(["markdown", str(doc), "-o", str(target)])
            self.assertEqual(code, 0, err)
            self.assertEqual(doc.read_text(encoding="utf-8"), original)
            self.assertIn("<!-- merman:begin -->", target.read_text(encoding="utf-8"))

    def test_markdown_reports_failed_blocks(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            doc = Path(td) / "notes.md"
            doc.write_text("intro\n" + _fence(DANGLING) + "\n" + _fence(CHAIN), encoding="utf-8")
            code, out, err = self.run_cli(["markdown", str(doc)])
            self.assertEqual(code, 0)
            self.assertIn("(1 rendered, 1 failed)", out)
            self.assertIn(f"{doc}:2: block 0 error[E_UNKNOWN_NODE]", err)
            text = doc.read_text(encoding="utf-8")
            self.assertIn("<!-- merman:error E_UNKNOWN_NODE: ", text)
            self.assertIn(_fence(DANGLING), text)

            doc.write_text("intro\n" + _fence(DANGLING), encoding="utf-8")
            code, _out, _err = self.run_cli(["markdown", str(doc), "--check"])
            self.assertEqual(code, 5)

    def test_format_prints_reference(self) -> None:
        code, out, err = self.run_cli(["format"])
        self.assertEqual(code, 0, err)
        self.assertIn("layoutDirection", out)
        self.assertIn("connections", out)


if __name__ == "__main__":
    unittest.main()
