"""wpverify CLI — Command-line interface for the verifier.

Commands:
  wpverify verify <module.json>      — Verify every annotated function
  wpverify vcs <module.json>         — Print the generated verification conditions

Exit codes: 0 verified, 1 not verified, 2 unreadable input or config.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from wpverify import __version__
from wpverify.config import FORMATS, VerifierConfig, load_config
from wpverify.encoder import EXISTS_MODES
from wpverify.errors import ConfigError, ModuleLoadError, SpecificationError
from wpverify.formatters import format_report
from wpverify.loader import load_module
from wpverify.verifier import Verifier
from wpverify.wp import generate_vcs

EXIT_OK = 0
EXIT_NOT_VERIFIED = 1
EXIT_USAGE = 2


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(args, "verbose", 0) >= 2:
        level = logging.DEBUG
    elif getattr(args, "verbose", 0) == 1:
        level = logging.INFO
    if getattr(args, "quiet", False):
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s",
                        stream=sys.stderr)


def _build_config(args: argparse.Namespace) -> VerifierConfig:
    config = load_config(args.config)
    if args.timeout is not None:
        config.timeout_ms = args.timeout
    if args.depth is not None:
        config.max_unfold_depth = args.depth
    if args.exists is not None:
        config.exists_mode = args.exists
    if args.function:
        config.functions = list(args.function)
    if args.parallel:
        config.parallel = True
    if args.workers is not None:
        config.parallel_workers = args.workers
    if args.format is not None:
        config.format = args.format
    return config


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a module document and print the report."""
    try:
        config = _build_config(args)
        module = load_module(args.file)
        report = Verifier(config).verify_module(module)
    except (ModuleLoadError, ConfigError) as e:
        print(e.to_json(), file=sys.stderr)
        return EXIT_USAGE

    print(format_report(report, config.format, module=module, filepath=args.file))
    return EXIT_OK if report.verified else EXIT_NOT_VERIFIED


def cmd_vcs(args: argparse.Namespace) -> int:
    """Print the verification conditions of each function."""
    try:
        module = load_module(args.file)
    except ModuleLoadError as e:
        print(e.to_json(), file=sys.stderr)
        return EXIT_USAGE

    status = EXIT_OK
    for func in module.functions:
        if args.function and func.name not in args.function:
            continue
        print(func.signature())
        try:
            vcs = generate_vcs(func)
        except SpecificationError as e:
            print(f"  error: {e.error.message}")
            status = EXIT_NOT_VERIFIED
            continue
        for vc in vcs:
            print(f"  {vc}")
    return status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wpverify",
        description="Weakest-precondition verifier for annotated integer programs",
    )
    parser.add_argument("--version", action="version", version=f"wpverify {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log progress (-vv for per-VC detail)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    sub = parser.add_subparsers(dest="command")

    p_verify = sub.add_parser("verify", help="Verify a module")
    p_verify.add_argument("file", help="Module document (.json, .yml)")
    p_verify.add_argument("--config", default=None, help="Config file (default: search upwards)")
    p_verify.add_argument("--timeout", type=int, default=None, help="Per-VC solver timeout (ms)")
    p_verify.add_argument("--depth", type=int, default=None,
                          help="Formula inlining / call unfolding bound")
    p_verify.add_argument("--exists", choices=EXISTS_MODES, default=None,
                          help="Encoding of existential quantifiers")
    p_verify.add_argument("--function", action="append", default=[],
                          help="Verify only this function (repeatable)")
    p_verify.add_argument("--parallel", action="store_true", help="Verify functions in parallel")
    p_verify.add_argument("--workers", type=int, default=None, help="Parallel worker count")
    p_verify.add_argument("--format", choices=FORMATS, default=None, help="Output format")
    p_verify.set_defaults(func=cmd_verify)

    p_vcs = sub.add_parser("vcs", help="Print generated verification conditions")
    p_vcs.add_argument("file", help="Module document (.json, .yml)")
    p_vcs.add_argument("--function", action="append", default=[],
                       help="Only this function (repeatable)")
    p_vcs.set_defaults(func=cmd_vcs)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return EXIT_USAGE
    _configure_logging(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
