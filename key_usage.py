#!/usr/bin/env python3
"""
Key Usage Correlation

Builds a fingerprint -> last accepted login index from auth events and joins
it against the keys of an authorized_keys file.

Join strategy: the key fingerprint. sshd logs the SHA256 (or, on old
versions, MD5) fingerprint of the key that authenticated, and the same
fingerprints are computed from the key blob on the authorized_keys side.
Comments and user names are never used for matching; a key whose
fingerprint never appears in an accepted event is reported as never used.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from auth_log_parser import AuthEvent, Outcome
from authorized_keys import KeyRecord

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class KeyStatus(Enum):
    USED = "used"
    NEVER_USED = "never-used"


# ============================================================================
# Usage Index
# ============================================================================

class UsageIndex:
    """Latest accepted authentication time per key identity."""

    def __init__(self):
        self._last_used: Dict[str, datetime] = {}

    def record(self, identity: str, timestamp: datetime, outcome: Outcome) -> None:
        if outcome is not Outcome.ACCEPTED:
            return
        current = self._last_used.get(identity)
        if current is None or timestamp > current:
            self._last_used[identity] = timestamp

    def record_event(self, event: AuthEvent) -> None:
        self.record(event.identity, event.timestamp, event.outcome)

    def lookup(self, identity: str) -> Optional[datetime]:
        return self._last_used.get(identity)

    @classmethod
    def from_events(cls, events: Iterable[AuthEvent]) -> "UsageIndex":
        index = cls()
        count = 0
        for event in events:
            index.record_event(event)
            count += 1
        logger.info(f"auth events scanned: {count}, keys with accepted logins: {len(index)}")
        return index

    def items(self) -> Iterator[Tuple[str, datetime]]:
        return iter(self._last_used.items())

    def __len__(self) -> int:
        return len(self._last_used)

    def __contains__(self, identity: str) -> bool:
        return identity in self._last_used

    def __eq__(self, other):
        if not isinstance(other, UsageIndex):
            return NotImplemented
        return self._last_used == other._last_used


# ============================================================================
# Report Rows
# ============================================================================

@dataclass(frozen=True)
class ReportRow:
    """Usage verdict for one authorized key."""
    key: KeyRecord
    last_used: Optional[datetime] = None
    age_days: Optional[int] = None
    status: KeyStatus = KeyStatus.NEVER_USED

    def to_dict(self) -> Dict[str, Any]:
        """Convert row to a JSON-ready dictionary."""
        return {
            "algorithm": self.key.key_type,
            "blob": self.key.blob,
            "comment": self.key.comment,
            "fingerprint": self.key.fingerprint,
            "line": self.key.line_number,
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
            "ageDays": self.age_days,
            "status": self.status.value,
        }


def age_in_days(now: datetime, last_used: datetime) -> int:
    """Whole days elapsed since last_used; entries dated after now count as 0."""
    seconds = (now - last_used).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def lookup_key(key: KeyRecord, index: UsageIndex) -> Optional[datetime]:
    """Find the last use of a key by SHA256 fingerprint, then by legacy MD5."""
    last_used = index.lookup(key.fingerprint)
    if last_used is None and key.md5_fingerprint:
        last_used = index.lookup(key.md5_fingerprint)
    return last_used


# ============================================================================
# Correlation
# ============================================================================

def correlate(
    keys: Sequence[KeyRecord],
    index: UsageIndex,
    now: datetime,
    threshold_days: Optional[int] = None,
) -> List[ReportRow]:
    """
    Join keys against the usage index and apply the staleness filter.

    Args:
        keys: Keys in authorized_keys file order
        index: Completed usage index
        now: Point in time ages are measured from
        threshold_days: If set, only keep never used keys and keys whose
                        age is at least this many days

    Returns:
        One ReportRow per key that passes the filter, in input order
    """
    if threshold_days is not None and threshold_days < 0:
        raise ValueError(f"threshold_days must not be negative: {threshold_days}")

    rows = []
    for key in keys:
        last_used = lookup_key(key, index)
        if last_used is None:
            row = ReportRow(key=key)
            logger.debug(f"{key.fingerprint} ('{key.comment}'): no accepted login found")
        else:
            row = ReportRow(
                key=key,
                last_used=last_used,
                age_days=age_in_days(now, last_used),
                status=KeyStatus.USED,
            )
            logger.debug(f"{key.fingerprint} ('{key.comment}'): last used {last_used}, {row.age_days} day(s) ago")

        if threshold_days is not None and row.age_days is not None and row.age_days < threshold_days:
            continue
        rows.append(row)

    logger.info(f"report rows: {len(rows)} of {len(keys)} key(s)")
    return rows
