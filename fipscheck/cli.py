#!/usr/bin/env python3
"""
fipscheck Command Line Interface

Usage:
    fipscheck scan [ROOT] [--json] [--timeout SECONDS] [--workers N] ...
    fipscheck host [--json]

Exit codes:
    0  every Go binary under ROOT is FIPS compliant
    1  at least one is not, or none were found
    2  the root cannot be scanned or the scan was cancelled
"""

import argparse
import json
import signal
import sys
import threading

from pydantic import ValidationError

EXIT_COMPLIANT = 0
EXIT_NOT_COMPLIANT = 1
EXIT_FATAL = 2

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _install_interrupt(cancel: threading.Event):
    """First Ctrl-C cancels the scan; the second falls back to the default."""
    def handler(signum, frame):
        print("\nCancelling scan...", file=sys.stderr)
        cancel.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)
    return signal.signal(signal.SIGINT, handler)


def _emit(result, as_json: bool) -> None:
    from fipscheck.report import render_text

    if as_json:
        data = result.to_dict()
        data["digest"] = result.digest()
        print(json.dumps(data, indent=2))
    else:
        print(render_text(result), end="")


def cmd_scan(args):
    """Scan a root directory for Go binaries and report compliance."""
    from fipscheck import FatalRootError, ScanCancelledError, ScanConfig, check_binaries

    try:
        config = ScanConfig.from_env(
            probe_timeout=args.timeout,
            output_cap=args.output_cap,
            workers=args.workers,
            prune=args.prune,
            follow_symlinks=args.follow_symlinks or None,
            deadline=args.deadline,
            openssl_library=args.openssl_library,
        )
    except ValidationError as exc:
        print(f"Error: invalid options\n{exc}", file=sys.stderr)
        return EXIT_FATAL

    cancel = threading.Event()
    previous = _install_interrupt(cancel)
    try:
        result = check_binaries(args.root, config=config, cancel_event=cancel)
    except FatalRootError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    except ScanCancelledError as exc:
        _emit(exc.result, args.json)
        print("\n✗ Scan cancelled, report is partial", file=sys.stderr)
        return EXIT_FATAL
    finally:
        signal.signal(signal.SIGINT, previous)

    _emit(result, args.json)
    verdict = result.aggregate.verdict
    if verdict.compliant:
        print(f"\n✓ COMPLIANT ({result.aggregate.total} Go binaries)", file=sys.stderr)
        return EXIT_COMPLIANT
    print(f"\n✗ NOT COMPLIANT: {verdict.reason.value}", file=sys.stderr)
    return EXIT_NOT_COMPLIANT


def cmd_host(args):
    """Report the host crypto library and its FIPS capability."""
    from fipscheck import check_host
    from fipscheck.report import render_host

    host = check_host(args.openssl_library)
    if args.json:
        print(json.dumps(host.to_dict(), indent=2))
    else:
        print(render_host(host), end="")
    return EXIT_COMPLIANT if host.fips_capable else EXIT_NOT_COMPLIANT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fipscheck",
        description="FIPS compliance checker for Go binaries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fipscheck host                          Check the host crypto library
  fipscheck scan                          Scan the whole host filesystem
  fipscheck scan /mnt/image --json        Scan an unpacked image, JSON output
  fipscheck scan /opt --timeout 5 --prune cache
        """
    )
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS,
                        help="Log level (default from FIPSCHECK_LOG_LEVEL, DEBUG if FIPSCHECK_DEBUG is set)")
    parser.add_argument("--log-json", action="store_true", help="Structured JSON logs on stderr")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # scan
    scan_parser = subparsers.add_parser("scan", help="Scan a directory tree")
    scan_parser.add_argument("root", nargs="?", default="/", help="Scan root (default: /)")
    scan_parser.add_argument("--json", action="store_true", help="Machine-readable output")
    scan_parser.add_argument("-t", "--timeout", type=float, help="Per-binary probe timeout in seconds")
    scan_parser.add_argument("--output-cap", type=int, help="Bytes of probe output kept per stream")
    scan_parser.add_argument("-w", "--workers", type=int, help="Worker pool size")
    scan_parser.add_argument("-p", "--prune", action="append",
                             help="Root-relative directory to skip (repeatable)")
    scan_parser.add_argument("--follow-symlinks", action="store_true", help="Follow symbolic links")
    scan_parser.add_argument("-d", "--deadline", type=float, help="Global deadline in seconds")
    scan_parser.add_argument("--openssl-library", help="libcrypto to load for the host check")

    # host
    host_parser = subparsers.add_parser("host", help="Check host FIPS capability")
    host_parser.add_argument("--json", action="store_true", help="Machine-readable output")
    host_parser.add_argument("--openssl-library", help="libcrypto to load")

    return parser


def main(argv=None):
    from fipscheck.config import LOG_JSON, LOG_LEVEL, is_debug
    from fipscheck.logging_config import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)
    level = args.log_level or ("DEBUG" if is_debug() else LOG_LEVEL)
    try:
        configure_logging(level=level, json_format=args.log_json or LOG_JSON)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_FATAL)

    if args.command == "scan":
        sys.exit(cmd_scan(args))
    elif args.command == "host":
        sys.exit(cmd_host(args))
    else:
        parser.print_help()
        sys.exit(EXIT_FATAL)


if __name__ == "__main__":
    main()
