"""Command-line interface for htmlbatch."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"htmlbatch {__version__}\n"
        "Usage:\n"
        "  htmlbatch [--help] [--version|--ver]\n"
        "  htmlbatch --write-recipe PATH\n"
        "  htmlbatch --input PATH [PATH ...] [--recipe RECIPE] [--to-dir TO_DIR] [options]\n\n"
        "Options:\n"
        "  --input PATH [PATH ...]      Files or directories to load (directories are read recursively)\n"
        "  --recipe PATH                JSON recipe with the ordered edit steps\n"
        "  --write-recipe PATH          Write a recipe with one default step per operation and exit\n"
        "  --to-dir TO_DIR              Write the resulting batch as a dated zip archive\n"
        "  --archive-prefix PREFIX      Archive name prefix (default: Otzaria_Output)\n"
        "  --preview INDEX              Print the document at INDEX after the recipe ran\n"
        "  --markdown                   Render the preview as Markdown\n"
        "  --verbose                    Verbose progress logs and activity log\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", nargs="+", help="Files or directories holding the documents to edit")
    parser.add_argument("--recipe", help="Path to a JSON recipe listing the edit steps in order")
    parser.add_argument("--write-recipe", help="Write the default recipe JSON to the given path and exit")
    parser.add_argument("--to-dir", help="Output directory for the zip archive")
    parser.add_argument("--archive-prefix", default=None, help="Prefix of the archive file name")
    parser.add_argument("--preview", type=int, default=None, help="Index of the document to print (0-based)")
    parser.add_argument("--markdown", action="store_true", help="Render the preview through markdownify")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from htmlbatch import core
    except Exception as exc:
        print(f"Unable to import htmlbatch core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    if args.write_recipe:
        target = Path(args.write_recipe).expanduser().resolve()
        try:
            core.write_default_recipe(target)
        except OSError as exc:
            print(f"Unable to write recipe file {target}: {exc}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        if args.verbose:
            print(f"Default recipe written to {target}")
        return 0

    if not args.input:
        print(_get_usage())
        print("Option --input is required unless --write-recipe or --version/--ver is used", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not args.recipe and not args.to_dir and args.preview is None:
        print("Nothing to do: pass --recipe, --to-dir or --preview", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    input_paths = [Path(raw).expanduser().resolve() for raw in args.input]
    for path in input_paths:
        if not path.exists():
            print(f"Input not found: {path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    to_dir = Path(args.to_dir).expanduser().resolve() if args.to_dir else None
    if to_dir is not None and to_dir.exists() and not to_dir.is_dir():
        print(f"Output path is not a directory: {to_dir}", file=sys.stderr)
        return core.EXIT_OUTPUT_DIR

    steps = []
    if args.recipe:
        recipe_path = Path(args.recipe).expanduser().resolve()
        if not recipe_path.exists() or not recipe_path.is_file():
            print(f"Recipe file not found: {recipe_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            steps = core.load_recipe(recipe_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    activity = core.ActivityLog()
    try:
        documents = core.load_documents(input_paths)
    except OSError as exc:
        print(f"Unable to load input: {exc}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS
    activity.add(f"Loaded {len(documents)} files.", "success")

    documents, rejected = core.run_recipe(documents, steps, activity)

    if args.preview is not None:
        if not 0 <= args.preview < len(documents):
            print(f"Preview index out of range: {args.preview} (documents: {len(documents)})", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            print(core.render_preview(documents[args.preview], markdown=args.markdown))
        except RuntimeError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    if to_dir is not None:
        if not documents:
            activity.add("No documents to export.", "info")
        else:
            try:
                archive_path = core.export_archive(
                    documents,
                    to_dir,
                    prefix=str(args.archive_prefix or core.DEFAULT_ARCHIVE_PREFIX),
                )
            except OSError as exc:
                print(f"Unable to write archive in {to_dir}: {exc}", file=sys.stderr)
                return core.EXIT_OUTPUT_DIR
            activity.add(f"Archive ready: {archive_path}", "success")

    if args.verbose:
        for line in activity.format_lines():
            print(line)

    return core.EXIT_STEP_REJECTED if rejected else 0


if __name__ == "__main__":
    raise SystemExit(main())
