"""
Shared fixtures: generated key blobs, a fixed clock and sshd log lines.
"""

import base64
import hashlib
import logging
import struct
from datetime import datetime

import pytest
from hypothesis import HealthCheck, settings

from akt import LOG_HANDLER_NAME

NOW = datetime(2026, 10, 17, 12, 0, 0)

# reset_logging is an autouse function-scoped fixture
settings.register_profile("akt", suppress_health_check=[HealthCheck.function_scoped_fixture])
settings.load_profile("akt")


def make_key_blob(key_type: str = "ssh-ed25519", seed: str = "key") -> str:
    """Base64 SSH wire-format blob: type name followed by 32 key bytes."""
    name = key_type.encode("ascii")
    payload = hashlib.sha256(seed.encode("utf-8")).digest()
    raw = struct.pack(">I", len(name)) + name + struct.pack(">I", len(payload)) + payload
    return base64.b64encode(raw).decode("ascii")


def sha256_fingerprint(blob: str) -> str:
    digest = hashlib.sha256(base64.b64decode(blob)).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def syslog_line(
    when: datetime,
    fingerprint: str,
    result: str = "Accepted",
    user: str = "deploy",
    key_type: str = "ED25519",
) -> str:
    return (
        f"{when:%b} {when.day:>2} {when:%H:%M:%S} web01 sshd[4242]: "
        f"{result} publickey for {user} from 192.0.2.10 port 52144 ssh2: {key_type} {fingerprint}"
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo akt.setup_logging so one CLI test cannot silence or redirect the next."""
    yield
    logging.disable(logging.NOTSET)
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == LOG_HANDLER_NAME:
            root.removeHandler(handler)
    root.setLevel(logging.WARNING)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def key_blob():
    return make_key_blob


@pytest.fixture
def fingerprint_of():
    return sha256_fingerprint


@pytest.fixture
def log_line():
    return syslog_line
