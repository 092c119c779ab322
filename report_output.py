#!/usr/bin/env python3
"""
Report output for key usage rows: plain text or JSON.
"""

import json
import sys
from enum import Enum
from typing import List, Sequence, TextIO

from key_usage import KeyStatus, ReportRow


class OutputFormat(Enum):
    TEXT = "text"
    JSON = "json"

    @classmethod
    def parse(cls, value: str) -> "OutputFormat":
        """'default' is the historical name of the text format."""
        lowered = value.strip().lower()
        if lowered == "default":
            return cls.TEXT
        return cls(lowered)


def format_text_row(row: ReportRow) -> str:
    """<algorithm> <blob> <comment> followed by an age annotation."""
    line = str(row.key)
    if row.status is KeyStatus.NEVER_USED:
        return f"{line} # never used"
    return f"{line} # last used {row.last_used:%Y-%m-%d %H:%M:%S} ({row.age_days} day(s) ago)"


def render_text(rows: Sequence[ReportRow]) -> str:
    return "".join(f"{format_text_row(row)}\n" for row in rows)


def render_json(rows: Sequence[ReportRow]) -> str:
    return json.dumps([row.to_dict() for row in rows], indent=2)


def render(rows: Sequence[ReportRow], output_format: OutputFormat) -> str:
    if output_format is OutputFormat.JSON:
        return render_json(rows) + "\n"
    return render_text(rows)


def print_report(rows: List[ReportRow], output_format: OutputFormat, stream: TextIO = None) -> None:
    stream = stream or sys.stdout
    stream.write(render(rows, output_format))
    stream.flush()
