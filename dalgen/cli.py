# File: dalgen/cli.py
"""
DALGen - Command-Line Interface
===============================

CLI built with the standard-library ``argparse`` module.

Usage examples::

    # Generate into ./gen
    python -m dalgen generate design.yaml -o ./gen

    # Render everything but write nothing
    dalgen generate design.yaml -o ./gen --dry-run -v

    # Validate only
    dalgen validate design.yaml

    # Show version
    dalgen --version

Exit codes:
    0 - success
    1 - design validation failed
    2 - generation or export (I/O) failed
    3 - design could not be loaded
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Tuple

# ---------------------------------------------------------------------------
# Logger (configured in _setup_logging)
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen")


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_VALIDATION_ERROR: int = 1
EXIT_GENERATION_ERROR: int = 2
EXIT_LOAD_ERROR: int = 3


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the root dalgen logger based on verbosity level.

    Args:
        verbosity: -1 = ERROR, 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    elif verbosity >= 0:
        level = logging.WARNING
    else:
        level = logging.ERROR

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s", datefmt="%H:%M:%S")
    )

    root_logger: logging.Logger = logging.getLogger("dalgen")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    from dalgen import __version__

    common: argparse.ArgumentParser = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "design",
        metavar="DESIGN",
        help="Path to the design file (YAML or JSON).",
    )
    common.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log output (-v info, -vv debug).",
    )
    common.add_argument(
        "-q", "--quiet",
        action="store_true",
        default=False,
        help="Only log errors.",
    )

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="dalgen",
        description=(
            "DALGen - typed request contexts, media types and relational data "
            "access objects generated from an API design."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s generate design.yaml -o ./gen\n"
            "  %(prog)s generate design.yaml -o ./gen --dry-run -v\n"
            "  %(prog)s validate design.yaml\n"
        ),
    )
    parser.add_argument("--version", action="version", version=f"DALGen v{__version__}")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    gen: argparse.ArgumentParser = sub.add_parser(
        "generate", parents=[common], help="Validate the design and write generated code."
    )
    gen.add_argument(
        "-o", "--output",
        metavar="DIR",
        default=None,
        help="Output package directory (overrides config.output_dir).",
    )
    gen.add_argument(
        "--models-package",
        metavar="NAME",
        default=None,
        help="Sub-package holding relational models (default: models).",
    )
    gen.add_argument(
        "--runtime-module",
        metavar="MODULE",
        default=None,
        help="Module generated code imports its support code from.",
    )
    gen.add_argument(
        "--no-hrefs",
        action="store_true",
        default=False,
        help="Skip the hrefs modules.",
    )
    gen.add_argument(
        "--no-overwrite",
        action="store_true",
        default=False,
        help="Fail instead of replacing existing files.",
    )
    gen.add_argument(
        "--manifest",
        action="store_true",
        default=False,
        help="Write a manifest with file checksums next to the generated code.",
    )
    gen.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Render everything but do not write files.",
    )

    sub.add_parser("validate", parents=[common], help="Validate the design only.")
    return parser


# ---------------------------------------------------------------------------
# Config override builder
# ---------------------------------------------------------------------------


def _build_config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.output is not None:
        overrides["output_dir"] = str(Path(args.output).resolve())
    if args.models_package is not None:
        overrides["models_package"] = args.models_package
    if args.runtime_module is not None:
        overrides["runtime_module"] = args.runtime_module
    if args.no_hrefs:
        overrides["generate_hrefs"] = False
    if args.no_overwrite:
        overrides["overwrite_existing"] = False
    return overrides


def _load(design_path: Path, overrides: Optional[Dict[str, Any]] = None) -> Tuple[Any, Any]:
    """Load and parse the design; ``DesignLoadError`` covers bad overrides too."""
    from pydantic import ValidationError as PydanticValidationError

    from dalgen.errors import DesignLoadError
    from dalgen.generator import load_design_file, parse_raw_design
    from dalgen.models import GenerationConfig

    raw: Dict[str, Any] = load_design_file(design_path)
    api, config = parse_raw_design(raw, str(design_path))
    if overrides:
        try:
            config = GenerationConfig.model_validate({**config.model_dump(), **overrides})
        except PydanticValidationError as exc:
            raise DesignLoadError(f"invalid option: {exc}", str(design_path)) from exc
    return api, config


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _run_validate(design_path: Path) -> int:
    from dalgen.errors import DesignLoadError
    from dalgen.validators import validate_full

    try:
        api, config = _load(design_path)
    except DesignLoadError as exc:
        logger.error("Failed to load design: %s", exc)
        return EXIT_LOAD_ERROR

    result = validate_full(api, config)
    print(f"\n{'=' * 50}")
    print("  Design Validation Report")
    print(f"{'=' * 50}")
    print(f"  File:         {design_path.name}")
    print(f"  API:          {api.name}")
    print(f"  Types:        {len(api.user_types)} user, {len(api.media_types)} media")
    print(f"  Resources:    {len(api.resources)}")
    print(f"  Valid:        {'Yes' if result.is_valid else 'No'}")
    print()
    print(result.format_report())
    print(f"{'=' * 50}\n")
    return EXIT_SUCCESS if result.is_valid else EXIT_VALIDATION_ERROR


def _run_generate(design_path: Path, args: argparse.Namespace) -> int:
    from dalgen.errors import DesignLoadError
    from dalgen.generator import DALGenerator, GenerationReport

    try:
        api, config = _load(design_path, _build_config_overrides(args))
    except DesignLoadError as exc:
        logger.error("Failed to load design: %s", exc)
        return EXIT_LOAD_ERROR

    if args.dry_run:
        logger.info("Dry-run mode: files will not be written to disk.")
    logger.info("Output:  %s", config.output_dir)

    generator: DALGenerator = DALGenerator(config, write_manifest=args.manifest)
    report: GenerationReport = generator.run(api, dry_run=args.dry_run)
    print(report.summary())
    if args.dry_run and report.result is not None:
        for path in report.result.artifact_paths:
            print(f"  would write {path}")

    if report.validation_errors:
        return EXIT_VALIDATION_ERROR
    if not report.success:
        return EXIT_GENERATION_ERROR
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def cli_main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """
    Main CLI entry point.

    Can be called from ``__main__.py`` or directly for testing.
    """
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)
    _setup_logging(-1 if args.quiet else args.verbose)

    design_path: Path = Path(args.design).resolve()
    logger.info("Design:  %s", design_path)

    if args.command == "validate":
        exit_code: int = _run_validate(design_path)
    else:
        exit_code = _run_generate(design_path, args)

    if exit_code == EXIT_SUCCESS:
        logger.info("%s completed successfully.", args.command.capitalize())
    else:
        logger.error("%s failed with exit code %d.", args.command.capitalize(), exit_code)
    sys.exit(exit_code)


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "cli_main",
    "EXIT_SUCCESS",
    "EXIT_VALIDATION_ERROR",
    "EXIT_GENERATION_ERROR",
    "EXIT_LOAD_ERROR",
]

logger.debug("dalgen.cli loaded — %d public symbols.", len(__all__))
