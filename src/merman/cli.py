"""Command-line interface for merman render/markdown workflows."""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .errors import DiagramDecodeError, LayoutOverflow, MalformedDiagram
from .layout import DEFAULT_LAYOUT, LayoutConfig
from .model import parse_diagram
from .pipeline import render_diagram
from .resources import load_format_reference
from .scanner import transform_document

log = logging.getLogger(__name__)


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="merman",
        description="Render JSON graph descriptions to SVG, standalone or inside Markdown.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")

    subparsers = parser.add_subparsers(dest="command")

    render_parser = subparsers.add_parser("render", help="Render a JSON description to SVG")
    render_parser.add_argument("input", nargs="?", help="Input .json file")
    render_parser.add_argument("--text", help="Raw JSON description")
    render_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    render_parser.add_argument("-o", "--output", help="Output .svg path")
    render_parser.add_argument("--direction", help="Override the layout direction (TB, BT, LR, RL)")
    _add_limit_arguments(render_parser)

    markdown_parser = subparsers.add_parser(
        "markdown", help="Replace merman blocks in a Markdown file with SVG"
    )
    markdown_parser.add_argument("input", help="Input Markdown file")
    markdown_parser.add_argument(
        "-o", "--output", help="Output path (default: rewrite the input file in place)"
    )
    markdown_parser.add_argument(
        "--check", action="store_true", help="Exit non-zero when any block fails to render"
    )
    _add_limit_arguments(markdown_parser)

    subparsers.add_parser("format", help="Print the JSON description format reference")

    return parser


def _add_limit_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--max-nodes", type=int, default=DEFAULT_LAYOUT.max_nodes)
    parser.add_argument("--max-edges", type=int, default=DEFAULT_LAYOUT.max_edges)
    parser.add_argument(
        "--max-lanes",
        type=int,
        default=DEFAULT_LAYOUT.max_lanes,
        help="Limit on routing lanes created for edges that skip ranks",
    )


def _layout_config(args: argparse.Namespace) -> LayoutConfig:
    if min(args.max_nodes, args.max_edges, args.max_lanes) < 0:
        raise CliError(
            "E_ARGS",
            "--max-nodes, --max-edges and --max-lanes must be >= 0",
            exit_code=2,
        )
    return dataclasses.replace(
        DEFAULT_LAYOUT,
        max_nodes=args.max_nodes,
        max_edges=args.max_edges,
        max_lanes=args.max_lanes,
    )


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, "<text>", None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(encoding="utf-8"), str(input_path), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe a JSON description into stdin.",
            exit_code=2,
        )
    return data, "<stdin>", None


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, DiagramDecodeError):
        return CliError(
            exc.code,
            exc.message,
            hint="Check the description against `merman format`.",
            exit_code=2,
            line=exc.line,
            column=exc.column,
        )
    if isinstance(exc, MalformedDiagram):
        return CliError(
            exc.code,
            exc.message,
            hint=f"Fix the {exc.field} value {exc.value!r} in the description.",
            exit_code=3,
        )
    if isinstance(exc, LayoutOverflow):
        return CliError(
            exc.code,
            exc.message,
            hint=f"Split the diagram or raise --max-{exc.kind} above {exc.limit}.",
            exit_code=4,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "column": err.column,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_render(args: argparse.Namespace) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )

    config = _layout_config(args)
    source, source_name, source_path = _read_input(args.input, args.text)
    diagram = parse_diagram(source)
    if args.direction:
        diagram = dataclasses.replace(diagram, direction=args.direction)
    log.debug(
        "%s: %d nodes, %d edges, direction %s",
        source_name,
        len(diagram.nodes),
        len(diagram.edges),
        diagram.direction.value,
    )
    svg_text = render_diagram(diagram, config=config)

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.write(svg_text)
        if not svg_text.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".svg")
    _write_text(output_path, svg_text + "\n")
    print(f"Wrote {output_path}")
    return 0


def _handle_markdown(args: argparse.Namespace) -> int:
    config = _layout_config(args)
    source, source_name, source_path = _read_input(args.input, None)
    result = transform_document(source, layout_config=config)
    for failure in result.failures:
        sys.stderr.write(
            f"{source_name}:{failure.line}: block {failure.index} "
            f"error[{failure.code}]: {failure.message}\n"
        )

    output_path = Path(args.output) if args.output else source_path
    if result.text != source or output_path != source_path:
        _write_text(output_path, result.text)
    print(f"Wrote {output_path} ({result.rendered} rendered, {len(result.failures)} failed)")
    if args.check and result.failures:
        return 5
    return 0


def _configure_logging(verbose: bool) -> None:
    log_handler = logging.StreamHandler(sys.stderr)
    log_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        handlers=[log_handler],
        force=True,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, markdown, format.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("MERMAN_DEBUG") == "1"
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        _configure_logging(args.verbose or debug_enabled)

        if args.command == "render":
            return _handle_render(args)
        if args.command == "markdown":
            return _handle_markdown(args)
        if args.command == "format":
            print(load_format_reference())
            return 0

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, markdown, format.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: render, markdown, format.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
