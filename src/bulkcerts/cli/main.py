"""bulkcerts command-line entry point.

Usage::

    bulkcerts issue domains.csv --email admin@example.com --agree
    bulkcerts -c bulkcerts.yaml issue domains.csv --ca https://acme.example/directory
    bulkcerts -c bulkcerts.yaml issue domains.tsv --delim tab --out /srv/certs
    bulkcerts status domains.csv --out /srv/certs
    python -m bulkcerts issue domains.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

log = logging.getLogger(__name__)

# sysexits.h EX_TEMPFAIL: the CA was unreachable, try again later
_EXIT_TEMPFAIL = 75


def _get_version() -> str:
    from bulkcerts import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkcerts",
        description="bulkcerts - obtain TLS certificates for many domains from an ACME CA",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        default=None,
        help="Path to a configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # issue
    issue = subparsers.add_parser("issue", help="Obtain certificates for every bundle")
    issue.add_argument("input", metavar="INPUT", help="Delimited file, one bundle per line")
    issue.add_argument("--ca", metavar="URL", help="ACME directory URL")
    issue.add_argument("--email", help="Contact email for the CA account")
    issue.add_argument("--out", metavar="DIR", help="Workspace directory")
    issue.add_argument(
        "--agree",
        action="store_true",
        default=False,
        help="Agree to the CA's terms of service",
    )
    issue.add_argument("--delim", metavar="D", help="Field delimiter (e.g. ',', 'tab', 'asc31')")
    issue.add_argument("--key-size", type=int, metavar="BITS", help="RSA key size for new accounts")

    # status
    status = subparsers.add_parser("status", help="Show which bundles are already issued")
    status.add_argument("input", metavar="INPUT", help="Delimited file, one bundle per line")
    status.add_argument("--out", metavar="DIR", help="Workspace directory")
    status.add_argument("--delim", metavar="D", help="Field delimiter")

    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate command-line flags into a config override tree.

    Flags that were not given stay ``None`` and do not mask file values.
    """
    return {
        "ca": {"directory_url": getattr(args, "ca", None)},
        "account": {
            "email": getattr(args, "email", None),
            "agree_terms": True if getattr(args, "agree", False) else None,
            "key_size": getattr(args, "key_size", None),
        },
        "workspace": {"path": args.out},
        "input": {"delimiter": args.delim},
    }


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"bulkcerts: error: {message}", file=sys.stderr)


def _is_temporary(exc: BaseException) -> bool:
    """Whether *exc*, or the CA error that caused it, is marked retryable."""
    return any(getattr(e, "retryable", False) for e in (exc, exc.__cause__))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs the command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from bulkcerts.config import ConfigValidationError, load_config

    try:
        config = load_config(args.config, overrides=_overrides(args))
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from bulkcerts.logging import configure_logging

    root = configure_logging(config.settings.logging)
    if args.debug:
        root.setLevel(logging.DEBUG)

    # -- dispatch subcommand ---
    from bulkcerts.ca.base import CAError
    from bulkcerts.core.errors import BulkcertsError

    try:
        if args.command == "issue":
            from bulkcerts.cli.commands.issue import run_issue

            run_issue(config, args)
        elif args.command == "status":
            from bulkcerts.cli.commands.status import run_status

            run_status(config, args)
    except (BulkcertsError, CAError) as exc:
        if args.debug:
            raise
        if _is_temporary(exc):
            _print_error(f"{exc} (temporary; retry later)")
            sys.exit(_EXIT_TEMPFAIL)
        _print_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        _print_error("interrupted")
        sys.exit(130)
