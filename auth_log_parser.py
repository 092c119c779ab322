#!/usr/bin/env python3
"""
SSH Auth Log Parser

Extracts public key authentication events from auth.log / secure lines.

Recognized sshd messages:
- Accepted publickey for USER from IP port N ssh2: TYPE FINGERPRINT
- Failed publickey for [invalid user] USER from IP port N ssh2: TYPE FINGERPRINT
- Partial publickey for USER from IP port N ssh2: TYPE FINGERPRINT
- Postponed publickey for USER from IP port N ssh2: TYPE FINGERPRINT
- debug1: Server accepts key: TYPE FINGERPRINT (LogLevel DEBUG)

Partial, Postponed and Server accepts key lines are OTHER outcomes: the key
was offered but the login was not completed by it.

Both classic syslog ("Dec 17 10:30:45 host ...") and high precision
ISO 8601 ("2024-12-17T10:30:45.123456+00:00 host ...") prefixes are handled.
Every other line is noise and yields no event.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Iterator, Optional

logger = logging.getLogger(__name__)


class Outcome(Enum):
    ACCEPTED = "accepted"
    FAILED = "failed"
    OTHER = "other"


@dataclass(frozen=True)
class AuthEvent:
    """A public key authentication attempt seen in the log."""
    identity: str
    timestamp: datetime
    outcome: Outcome
    username: str = ""
    source_ip: str = ""
    port: int = 0
    key_type: str = ""
    raw: str = ""


# ============================================================================
# Patterns
# ============================================================================

SYSLOG_TIMESTAMP_PATTERN = re.compile(
    r'^(\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+(\S+)\s+(.+)$'
)

ISO_TIMESTAMP_PATTERN = re.compile(
    r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:[+-]\d{2}:?\d{2}|Z)?)\s+(\S+)\s+(.+)$'
)

FINGERPRINT_PATTERN = r'(SHA256:[A-Za-z0-9+/]+=*|MD5:[0-9a-fA-F:]+|(?:[0-9a-fA-F]{2}:){15}[0-9a-fA-F]{2})'

# OpenSSH 9.8+ logs from sshd-session instead of sshd
PUBLICKEY_PATTERN = re.compile(
    r'sshd(?:-session)?\[(\d+)\]:\s+(Accepted|Failed|Partial|Postponed) publickey for '
    r'(?:invalid user )?(\S+) from (\S+) port (\d+)(?:\s+ssh2)?:\s+'
    r'(\S+)\s+' + FINGERPRINT_PATTERN
)

SERVER_ACCEPTS_KEY_PATTERN = re.compile(
    r'sshd(?:-session)?\[(\d+)\]:\s+(?:debug\d:\s+)?Server accepts key:\s+(\S+)\s+' + FINGERPRINT_PATTERN
)

OUTCOME_MAP = {
    "accepted": Outcome.ACCEPTED,
    "failed": Outcome.FAILED,
    "partial": Outcome.OTHER,
    "postponed": Outcome.OTHER,
    "server accepts key": Outcome.OTHER,
}

# Entries stamped a little after the reference date are clock skew, not last year
FUTURE_TOLERANCE = timedelta(days=1)


# ============================================================================
# Timestamps
# ============================================================================

def make_naive(dt: datetime) -> datetime:
    """
    Convert an offset-aware datetime to a naive local time.
    Syslog timestamps are local and naive, so everything is compared that way.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def parse_syslog_timestamp(timestamp_str: str, reference_date: datetime) -> Optional[datetime]:
    """
    Parse a syslog-style timestamp (e.g., "Dec 17 10:30:45").

    Syslog timestamps don't include a year. The reference date's year is
    tried first; if that places the entry after the reference date, the
    entry belongs to the previous year. This keeps December entries read in
    January in the right year, and handles Feb 29 from the last leap year.

    Args:
        timestamp_str: Timestamp string (e.g., "Dec 17 10:30:45")
        reference_date: Point in time the logs were read at

    Returns:
        Naive datetime or None
    """
    limit = reference_date + FUTURE_TOLERANCE

    for year in (reference_date.year, reference_date.year - 1):
        try:
            dt = datetime.strptime(f"{year} {timestamp_str}", "%Y %b %d %H:%M:%S")
        except ValueError:
            continue
        if dt <= limit:
            return dt

    return None


def parse_iso_timestamp(timestamp_str: str) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as written by rsyslog or journalctl -o short-iso."""
    formats = [
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
    ]

    value = timestamp_str.replace("Z", "+0000")
    for fmt in formats:
        try:
            return make_naive(datetime.strptime(value, fmt))
        except ValueError:
            continue

    return None


def normalize_fingerprint(value: str) -> str:
    """Bare hex-colon fingerprints (OpenSSH < 6.8) are MD5."""
    if value.startswith("SHA256:"):
        return value
    if value.startswith("MD5:"):
        return "MD5:" + value[4:].lower()
    return "MD5:" + value.lower()


# ============================================================================
# Line Parsing
# ============================================================================

def parse_auth_line(line: str, reference_date: datetime) -> Optional[AuthEvent]:
    """
    Attempt to extract a public key AuthEvent from one log line.

    Args:
        line: Raw log line
        reference_date: Reference datetime for year inference

    Returns:
        AuthEvent, or None for any line that is not a recognized
        public key authentication message
    """
    line = line.strip()
    if not line or ("publickey" not in line and "Server accepts key" not in line):
        return None

    match = SYSLOG_TIMESTAMP_PATTERN.match(line)
    if match:
        timestamp = parse_syslog_timestamp(match.group(1), reference_date)
    else:
        match = ISO_TIMESTAMP_PATTERN.match(line)
        if not match:
            return None
        timestamp = parse_iso_timestamp(match.group(1))

    if timestamp is None:
        logger.warning(f"unparseable timestamp: '{line[:120]}'")
        return None

    message = match.group(3)
    auth = PUBLICKEY_PATTERN.search(message)
    if auth:
        _pid, result, username, source_ip, port, key_type, fingerprint = auth.groups()
        return AuthEvent(
            identity=normalize_fingerprint(fingerprint),
            timestamp=timestamp,
            outcome=OUTCOME_MAP[result.lower()],
            username=username,
            source_ip=source_ip,
            port=int(port),
            key_type=key_type,
            raw=line,
        )

    # debug1 output carries no user or address
    accepts = SERVER_ACCEPTS_KEY_PATTERN.search(message)
    if accepts:
        _pid, key_type, fingerprint = accepts.groups()
        return AuthEvent(
            identity=normalize_fingerprint(fingerprint),
            timestamp=timestamp,
            outcome=OUTCOME_MAP["server accepts key"],
            key_type=key_type,
            raw=line,
        )

    return None


def parse_auth_lines(lines: Iterable[str], reference_date: datetime) -> Iterator[AuthEvent]:
    """Yield the AuthEvents found in a stream of log lines."""
    for line in lines:
        event = parse_auth_line(line, reference_date)
        if event is not None:
            yield event
