#!/usr/bin/env python3
"""
Authorized Keys Parser

Parses OpenSSH authorized_keys content into KeyRecord objects.

Supported line format:
    [options] <algorithm> <base64-blob> [comment]

- Blank lines and '#' comment lines are ignored
- Malformed lines are logged as warnings and skipped
- Fingerprints are computed the same way OpenSSH prints them, so they can be
  matched against the "Accepted publickey" lines written by sshd
"""

import base64
import binascii
import hashlib
import logging
import os
import re
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class KeyFileError(Exception):
    """Raised when the authorized_keys file cannot be read at all."""


# ============================================================================
# Key Types
# ============================================================================

class KeyAlgorithm(Enum):
    RSA = "rsa"
    DSS = "dss"
    ED25519 = "ed25519"
    ECDSA = "ecdsa"
    SK_ED25519 = "sk-ed25519"
    SK_ECDSA = "sk-ecdsa"


# Algorithm tokens accepted by sshd(8) in authorized_keys files
KEY_TYPES = {
    "ssh-rsa": KeyAlgorithm.RSA,
    "ssh-dss": KeyAlgorithm.DSS,
    "ssh-ed25519": KeyAlgorithm.ED25519,
    "ecdsa-sha2-nistp256": KeyAlgorithm.ECDSA,
    "ecdsa-sha2-nistp384": KeyAlgorithm.ECDSA,
    "ecdsa-sha2-nistp521": KeyAlgorithm.ECDSA,
    "sk-ssh-ed25519@openssh.com": KeyAlgorithm.SK_ED25519,
    "sk-ecdsa-sha2-nistp256@openssh.com": KeyAlgorithm.SK_ECDSA,
}

# Options may contain quoted strings with spaces, e.g. command="echo hi"
OPTIONS_PATTERN = re.compile(r'^((?:[^\s"]|"(?:[^"\\]|\\.)*")+)\s+(.*)$')

WHITESPACE_PATTERN = re.compile(r'\s+')


def fingerprint_sha256(raw_blob: bytes) -> str:
    """Return the OpenSSH SHA256 fingerprint (SHA256:<unpadded base64>)."""
    digest = hashlib.sha256(raw_blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def fingerprint_md5(raw_blob: bytes) -> str:
    """Return the legacy MD5 fingerprint (MD5:aa:bb:...)."""
    digest = hashlib.md5(raw_blob).hexdigest()
    return "MD5:" + ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def embedded_key_type(raw_blob: bytes) -> Optional[str]:
    """
    Read the key type name stored at the start of an SSH wire-format blob.

    Returns:
        The type name, or None if the blob is too short to hold one
    """
    if len(raw_blob) < 4:
        return None
    (length,) = struct.unpack(">I", raw_blob[:4])
    if length == 0 or len(raw_blob) < 4 + length:
        return None
    return raw_blob[4:4 + length].decode("ascii", errors="replace")


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class KeyRecord:
    """A single public key entry from an authorized_keys file."""
    algorithm: KeyAlgorithm
    key_type: str
    blob: str
    comment: str = ""
    options: str = ""
    line_number: int = 0
    fingerprint: str = field(default="", compare=False)
    md5_fingerprint: str = field(default="", compare=False)

    def __post_init__(self):
        if not self.fingerprint:
            raw = base64.b64decode(self.blob)
            object.__setattr__(self, "fingerprint", fingerprint_sha256(raw))
            object.__setattr__(self, "md5_fingerprint", fingerprint_md5(raw))

    def __str__(self) -> str:
        parts = [self.key_type, self.blob]
        if self.comment:
            parts.append(self.comment)
        return " ".join(parts)


# ============================================================================
# Parsing
# ============================================================================

def _split_key_line(line: str) -> Optional[Tuple[str, str, str, str]]:
    """
    Split a stripped line into (options, key_type, blob, comment).

    The algorithm token is looked up first; if the first token is not a known
    algorithm it is treated as an options string.
    """
    options = ""
    parts = line.split(None, 2)
    if parts[0] not in KEY_TYPES:
        match = OPTIONS_PATTERN.match(line)
        if not match:
            return None
        options = match.group(1)
        parts = match.group(2).split(None, 2)

    if len(parts) < 2 or parts[0] not in KEY_TYPES:
        return None
    return options, parts[0], parts[1], parts[2] if len(parts) > 2 else ""


def parse_key_line(line: str, line_number: int = 0) -> Optional[KeyRecord]:
    """
    Parse one authorized_keys line.

    Args:
        line: Raw text line
        line_number: 1-based position in the source file, for diagnostics

    Returns:
        KeyRecord, or None for blank, comment and malformed lines
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    split = _split_key_line(stripped)
    if split is None:
        logger.warning(f"line {line_number}: unsupported key format, skipped")
        return None

    options, key_type, blob, comment = split

    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError):
        logger.warning(f"line {line_number}: invalid base64 key data for '{key_type}', skipped")
        return None

    if not raw:
        logger.warning(f"line {line_number}: empty key data for '{key_type}', skipped")
        return None

    wire_type = embedded_key_type(raw)
    if wire_type != key_type:
        logger.warning(
            f"line {line_number}: key data declares type '{wire_type}' but line says '{key_type}'"
        )

    return KeyRecord(
        algorithm=KEY_TYPES[key_type],
        key_type=key_type,
        blob=blob,
        comment=WHITESPACE_PATTERN.sub(" ", comment).strip(),
        options=options,
        line_number=line_number,
        fingerprint=fingerprint_sha256(raw),
        md5_fingerprint=fingerprint_md5(raw),
    )


def parse_authorized_keys(data: Union[bytes, str]) -> List[KeyRecord]:
    """
    Parse authorized_keys content, preserving file order.

    Args:
        data: File content as bytes or text

    Returns:
        List of KeyRecord objects (empty for empty input)
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    keys = []
    for line_number, line in enumerate(data.splitlines(), start=1):
        key = parse_key_line(line, line_number)
        if key is not None:
            logger.debug(f"line {line_number}: {key.key_type} {key.fingerprint} '{key.comment}'")
            keys.append(key)

    logger.info(f"authorized keys parsed: {len(keys)}")
    return keys


def load_authorized_keys_file(path: str) -> List[KeyRecord]:
    """
    Load and parse an authorized_keys file.

    Raises:
        KeyFileError: if the file is missing, is not a regular file or cannot be read
    """
    logger.info(f"reading authorized keys from '{path}'")

    if not os.path.exists(path):
        raise KeyFileError(f"authorized_keys file does not exist: {path}")
    if not os.path.isfile(path):
        raise KeyFileError(f"authorized_keys path is not a regular file: {path}")

    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise KeyFileError(f"cannot read authorized_keys file {path}: {e.strerror or e}") from e

    return parse_authorized_keys(data)
