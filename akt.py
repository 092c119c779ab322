#!/usr/bin/env python3
"""
akt - Authorized Keys Tool for SSH

Reports which keys in an authorized_keys file have been used to log in, and
how long ago, by matching key fingerprints against the "Accepted publickey"
messages sshd writes to the authentication log.

Log sources:
- /var/log/auth.log* (Debian/Ubuntu) or /var/log/secure* (RHEL/CentOS)
- Numbered rotations, plain or compressed (.gz, .bz2, .xz, .lz4)
- Optionally the systemd journal (--journal)

Only SSH key usage within the retained log window can be seen: a key shown
as "never used" may have been used before the oldest rotation.
"""

__version__ = "0.2.0"

import argparse
import itertools
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from auth_log_parser import parse_auth_lines
from auth_log_reader import DEFAULT_LOG_DIR, DEFAULT_LOG_NAME, DirectoryStorage, JournalSource, RotatedLogSource
from authorized_keys import KeyFileError, load_authorized_keys_file
from key_usage import ReportRow, UsageIndex, correlate
from report_output import OutputFormat, print_report

logger = logging.getLogger("akt")

EXIT_CODE_ERROR = 1
EXIT_CODE_INTERRUPTED = 130

SHOW_KEYS_COMMAND = "show-keys"

LOG_LEVEL_DEFAULT_VALUE = "off"
LOG_LEVELS = {
    "off": None,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'
LOG_HANDLER_NAME = "akt-stderr"


# ============================================================================
# Console Styling
# ============================================================================

class Style:
    """ANSI color codes for terminal output."""

    ENABLED = sys.stderr.isatty()

    RESET = '\033[0m' if ENABLED else ''
    BOLD = '\033[1m' if ENABLED else ''
    RED = '\033[91m' if ENABLED else ''
    YELLOW = '\033[93m' if ENABLED else ''

    ERROR = RED
    WARNING = YELLOW


# ============================================================================
# Configuration
# ============================================================================

def resolve_path(path: str) -> str:
    """Expand ~ and environment variables and make the path absolute."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path)))


def default_authorized_keys_path() -> str:
    return os.path.join(os.path.expanduser("~"), ".ssh", "authorized_keys")


@dataclass
class AuditConfig:
    """Everything one audit run needs; passed explicitly, never read from globals."""
    key_file: str = field(default_factory=default_authorized_keys_path)
    log_dir: str = DEFAULT_LOG_DIR
    log_name: str = DEFAULT_LOG_NAME
    threshold_days: Optional[int] = None
    output_format: OutputFormat = OutputFormat.TEXT
    now: datetime = field(default_factory=datetime.now)
    use_journal: bool = False
    parallel: bool = False


def setup_logging(level_name: str) -> None:
    """
    Send diagnostics to stderr at the requested level.
    'off' disables them so stdout stays clean for the report.
    """
    level = LOG_LEVELS[level_name.lower()]
    root = logging.getLogger()

    for handler in list(root.handlers):
        if handler.get_name() == LOG_HANDLER_NAME:
            root.removeHandler(handler)

    if level is None:
        logging.disable(logging.CRITICAL)
        return

    logging.disable(logging.NOTSET)
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(LOG_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of days: '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"number of days must not be negative: {number}")
    return number


def output_format(value: str) -> OutputFormat:
    try:
        return OutputFormat.parse(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"unsupported format '{value}', expected text or json")


def config_from_args(args: argparse.Namespace, now: datetime = None) -> AuditConfig:
    return AuditConfig(
        key_file=resolve_path(args.file_path) if args.file_path else default_authorized_keys_path(),
        log_dir=resolve_path(args.auth_log_path),
        log_name=args.auth_log_name,
        threshold_days=args.older_than_days,
        output_format=args.format,
        now=now or datetime.now(),
        use_journal=args.journal,
        parallel=args.parallel,
    )


# ============================================================================
# Audit
# ============================================================================

def build_log_lines(config: AuditConfig) -> Iterable[str]:
    """Chain the rotated log files and, if requested, the journal."""
    sources = [
        RotatedLogSource(DirectoryStorage(config.log_dir), config.log_name, parallel=config.parallel)
    ]
    if config.use_journal:
        sources.append(JournalSource())
    return itertools.chain.from_iterable(sources)


def run_audit(config: AuditConfig, log_lines: Iterable[str] = None) -> List[ReportRow]:
    """
    Run one audit: load keys, scan logs, correlate.

    Args:
        config: Audit configuration
        log_lines: Log lines to scan instead of the configured sources

    Raises:
        KeyFileError: if the authorized_keys file cannot be read
    """
    logger.info(f"key file: {config.key_file}")
    keys = load_authorized_keys_file(config.key_file)

    if log_lines is None:
        logger.info(f"auth logs: {os.path.join(config.log_dir, config.log_name)}*")
        log_lines = build_log_lines(config)

    index = UsageIndex.from_events(parse_auth_lines(log_lines, config.now))
    return correlate(keys, index, config.now, config.threshold_days)


# ============================================================================
# Command Line
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="akt",
        description="Authorized Keys Tool for SSH",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Version: {__version__}

Examples:
  # Keys from ~/.ssh/authorized_keys with their last use
  akt show-keys

  # Keys not used for 90 days (or never), as JSON
  akt show-keys --older-than-days 90 --format json

  # RHEL/CentOS log name, with diagnostics
  akt --log-level info show-keys --auth-log-name secure
        """
    )

    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL_DEFAULT_VALUE,
        type=str.lower,
        choices=list(LOG_LEVELS),
        help="Diagnostic logging level on stderr (default: off)"
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    show_keys = subparsers.add_parser(
        SHOW_KEYS_COMMAND,
        help="Show keys with their last use, optionally only those older than N days"
    )

    show_keys.add_argument(
        "--file-path",
        help="Path to authorized_keys file (default: ~/.ssh/authorized_keys)"
    )

    show_keys.add_argument(
        "--auth-log-path",
        default=DEFAULT_LOG_DIR,
        help=f"Directory holding the auth logs (default: {DEFAULT_LOG_DIR})"
    )

    show_keys.add_argument(
        "--auth-log-name",
        default=DEFAULT_LOG_NAME,
        help=f"Auth log file name, rotations are NAME.1, NAME.2.gz, ... (default: {DEFAULT_LOG_NAME})"
    )

    show_keys.add_argument(
        "--older-than-days",
        type=non_negative_int,
        metavar="DAYS",
        help="Only show keys last used at least DAYS days ago, or never"
    )

    show_keys.add_argument(
        "--format",
        type=output_format,
        default=OutputFormat.TEXT,
        metavar="{text,json}",
        help="Output format (default: text)"
    )

    show_keys.add_argument(
        "--journal",
        action="store_true",
        help="Also read sshd entries from the systemd journal"
    )

    show_keys.add_argument(
        "--parallel",
        action="store_true",
        help="Decompress rotated logs in parallel"
    )

    return parser


def main(argv: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if args.command == SHOW_KEYS_COMMAND:
        logger.info("command: show public keys")
        config = config_from_args(args)

        try:
            rows = run_audit(config)
        except KeyFileError as e:
            print(f"{Style.ERROR}Error:{Style.RESET} {e}", file=sys.stderr)
            return EXIT_CODE_ERROR

        print_report(rows, config.output_format)

    return 0


def cli() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.", file=sys.stderr)
        sys.exit(EXIT_CODE_INTERRUPTED)


if __name__ == "__main__":
    cli()
