#!/usr/bin/env python3
"""
Auth Log Source Reader

Turns a rotated log (auth.log, auth.log.1, auth.log.2.gz, ...) into a single
oldest-first stream of text lines.

Rotation handling:
- Base file missing: treated as empty
- Gap in the rotation numbers: later rotations are not included
- Unreadable or corrupt rotation: skipped with a warning

Compressed rotations (.gz, .bz2, .xz, .lz4) are decoded through the
DECOMPRESSORS table, so new formats only need a new entry there.
A JournalSource reads the same events from systemd-journald instead.
"""

import bz2
import gzip
import logging
import lzma
import os
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence

import lz4.frame

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = "/var/log"
DEFAULT_LOG_NAME = "auth.log"

# Rotation numbers are never this high in practice; stops runaway scans
MAX_ROTATIONS = 1000

DECOMPRESSORS: Dict[str, Callable[[bytes], bytes]] = {
    "gz": gzip.decompress,
    "bz2": bz2.decompress,
    "xz": lzma.decompress,
    "lz4": lz4.frame.decompress,
}


# ============================================================================
# Storage Backends
# ============================================================================

class DirectoryStorage:
    """Reads log files from a directory on disk."""

    def __init__(self, base_path: str):
        self.base_path = base_path

    def _path(self, name: str) -> str:
        return os.path.join(self.base_path, name)

    def exists(self, name: str) -> bool:
        return os.path.isfile(self._path(name))

    def read_bytes(self, name: str) -> bytes:
        with open(self._path(name), "rb") as f:
            return f.read()

    def __repr__(self):
        return f"DirectoryStorage({self.base_path!r})"


class MemoryStorage:
    """Serves log files from a name -> bytes mapping."""

    def __init__(self, files: Optional[Mapping[str, bytes]] = None):
        self.files = dict(files or {})

    def exists(self, name: str) -> bool:
        return name in self.files

    def read_bytes(self, name: str) -> bytes:
        try:
            return self.files[name]
        except KeyError:
            raise FileNotFoundError(name) from None


# ============================================================================
# Rotations
# ============================================================================

@dataclass(frozen=True)
class RotationDescriptor:
    """One generation of a rotated log file."""
    name: str
    number: int = 0
    compression: Optional[str] = None

    @property
    def is_base(self) -> bool:
        return self.number == 0


def decode_lines(data: bytes) -> List[str]:
    return data.decode("utf-8", errors="replace").splitlines()


class RotatedLogSource:
    """
    Line stream over a base log file and its numbered rotations.

    Rotations are looked up as NAME.N or NAME.N.<ext> for each known
    compression extension, starting at N=1. The first missing number ends
    the scan. Lines are produced oldest-first: highest rotation number first,
    base file last.
    """

    def __init__(
        self,
        storage,
        name: str = DEFAULT_LOG_NAME,
        decompressors: Optional[Mapping[str, Callable[[bytes], bytes]]] = None,
        parallel: bool = False,
        max_workers: int = 4,
    ):
        self.storage = storage
        self.name = name
        self.decompressors = dict(DECOMPRESSORS if decompressors is None else decompressors)
        self.parallel = parallel
        self.max_workers = max_workers
        self.stats = {"rotations_read": 0, "rotations_skipped": 0, "lines": 0}

    def _find_rotation(self, number: int) -> Optional[RotationDescriptor]:
        plain = f"{self.name}.{number}"
        if self.storage.exists(plain):
            return RotationDescriptor(plain, number, None)

        for tag in self.decompressors:
            candidate = f"{plain}.{tag}"
            if self.storage.exists(candidate):
                return RotationDescriptor(candidate, number, tag)

        return None

    def descriptors(self) -> List[RotationDescriptor]:
        """Return the available files oldest-first: highest rotation number down to the base file."""
        rotations = []
        for number in range(1, MAX_ROTATIONS + 1):
            rotation = self._find_rotation(number)
            if rotation is None:
                logger.debug(f"no rotation {self.name}.{number}, stopping scan")
                break
            rotations.append(rotation)
        rotations.reverse()

        if self.storage.exists(self.name):
            rotations.append(RotationDescriptor(self.name))
        else:
            logger.info(f"base log '{self.name}' not found in {self.storage!r}, treated as empty")

        return rotations

    def read_rotation(self, rotation: RotationDescriptor) -> Optional[List[str]]:
        """
        Read and decode one rotation completely.

        Returns:
            Lines of the rotation, or None if it could not be read
        """
        try:
            data = self.storage.read_bytes(rotation.name)
        except OSError as e:
            logger.warning(f"cannot read '{rotation.name}': {e}, skipped")
            return None

        if rotation.compression is not None:
            decompress = self.decompressors[rotation.compression]
            # injected decompressors may raise anything on bad input
            try:
                data = decompress(data)
            except Exception as e:
                logger.warning(f"corrupt {rotation.compression} rotation '{rotation.name}': {e}, skipped")
                return None

        return decode_lines(data)

    def _read_all(self, rotations: Sequence[RotationDescriptor]) -> List[Optional[List[str]]]:
        if self.parallel and len(rotations) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(self.read_rotation, rotations))
        return [self.read_rotation(rotation) for rotation in rotations]

    def lines(self) -> Iterator[str]:
        """Yield every line of every readable rotation, oldest first."""
        rotations = self.descriptors()
        logger.info(f"{self.name}: {len(rotations)} file(s) to read")

        if self.parallel:
            contents = self._read_all(rotations)
        else:
            # Read lazily, one rotation in memory at a time
            contents = (self.read_rotation(rotation) for rotation in rotations)

        for rotation, content in zip(rotations, contents):
            if content is None:
                self.stats["rotations_skipped"] += 1
                continue
            self.stats["rotations_read"] += 1
            logger.debug(f"{rotation.name}: {len(content)} line(s)")
            for line in content:
                self.stats["lines"] += 1
                yield line

    def __iter__(self) -> Iterator[str]:
        return self.lines()


# ============================================================================
# systemd Journal
# ============================================================================

JOURNAL_UNITS = ("ssh.service", "sshd.service")


def run_journalctl(args: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(args, capture_output=True, timeout=300)


class JournalSource:
    """
    Line stream from systemd-journald for the sshd unit(s).

    Uses 'journalctl -o short-iso' so lines carry a full ISO timestamp and
    parse exactly like high precision rsyslog output.
    """

    def __init__(
        self,
        units: Sequence[str] = JOURNAL_UNITS,
        runner: Callable[[List[str]], subprocess.CompletedProcess] = run_journalctl,
        directory: Optional[str] = None,
    ):
        self.units = list(units)
        self.runner = runner
        self.directory = directory

    def command(self) -> List[str]:
        args = ["journalctl", "--no-pager", "-o", "short-iso"]
        if self.directory:
            args += ["-D", self.directory]
        for unit in self.units:
            args += ["-u", unit]
        return args

    def lines(self) -> Iterator[str]:
        if self.runner is run_journalctl and shutil.which("journalctl") is None:
            logger.warning("journalctl not found, no journal entries read")
            return

        args = self.command()
        logger.info(f"running: {' '.join(args)}")
        try:
            result = self.runner(args)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"journalctl failed: {e}")
            return

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip() if result.stderr else ""
            logger.warning(f"journalctl exited with {result.returncode}: {stderr}")
            return

        yield from decode_lines(result.stdout or b"")

    def __iter__(self) -> Iterator[str]:
        return self.lines()
