"""
Command line tests: argument handling, exit codes and stdout/stderr separation.
"""

import gzip
import json
import logging
from datetime import datetime, timedelta

import pytest

import akt
from akt import AuditConfig, build_parser, config_from_args, main, run_audit
from key_usage import KeyStatus
from report_output import OutputFormat


@pytest.fixture
def setup_files(tmp_path, key_blob, fingerprint_of, log_line):
    """authorized_keys with a recently used, a stale and an unused key, plus rotated logs."""
    recent, stale, unused = key_blob(seed="recent"), key_blob(seed="stale"), key_blob(seed="unused")
    keys_file = tmp_path / "authorized_keys"
    keys_file.write_text(
        f"ssh-ed25519 {recent} recent@example.com\n"
        f"not a key line\n"
        f"ssh-ed25519 {stale} stale@example.com\n"
        f"ssh-ed25519 {unused} unused@example.com\n"
    )

    now = datetime.now()
    log_dir = tmp_path / "log"
    log_dir.mkdir()
    (log_dir / "auth.log").write_text(log_line(now - timedelta(days=1), fingerprint_of(recent)) + "\n")
    (log_dir / "auth.log.1.gz").write_bytes(
        gzip.compress((log_line(now - timedelta(days=40), fingerprint_of(stale)) + "\n").encode())
    )
    (log_dir / "auth.log.2.gz").write_bytes(b"corrupt")

    return keys_file, log_dir


def show_keys(keys_file, log_dir, *extra):
    return ["show-keys", "--file-path", str(keys_file), "--auth-log-path", str(log_dir), *extra]


class TestMain:
    def test_text_output(self, setup_files, capsys) -> None:
        keys_file, log_dir = setup_files

        assert main(show_keys(keys_file, log_dir)) == 0

        out = capsys.readouterr()
        lines = out.out.splitlines()
        assert len(lines) == 3
        assert lines[0].endswith("(1 day(s) ago)")
        assert "recent@example.com" in lines[0]
        assert lines[2].endswith("# never used")
        assert out.err == ""

    def test_json_output_with_threshold(self, setup_files, capsys) -> None:
        keys_file, log_dir = setup_files

        assert main(show_keys(keys_file, log_dir, "--older-than-days", "31", "--format", "json")) == 0

        rows = json.loads(capsys.readouterr().out)
        assert [row["comment"] for row in rows] == ["stale@example.com", "unused@example.com"]
        assert rows[0]["ageDays"] == 40
        assert rows[1]["status"] == "never-used"

    def test_missing_key_file_is_fatal(self, tmp_path, capsys) -> None:
        assert main(show_keys(tmp_path / "missing", tmp_path)) == akt.EXIT_CODE_ERROR

        out = capsys.readouterr()
        assert out.out == ""
        assert "does not exist" in out.err

    def test_diagnostics_go_to_stderr(self, setup_files, capsys) -> None:
        keys_file, log_dir = setup_files

        assert main(["--log-level", "warn", *show_keys(keys_file, log_dir, "--format", "json")]) == 0

        out = capsys.readouterr()
        json.loads(out.out)
        assert "auth.log.2.gz" in out.err
        assert "unsupported key format" in out.err

    def test_diagnostic_line_format(self, setup_files, capsys) -> None:
        keys_file, log_dir = setup_files

        assert main(["--log-level", "warn", *show_keys(keys_file, log_dir)]) == 0

        warning = next(line for line in capsys.readouterr().err.splitlines() if "auth.log.2.gz" in line)
        timestamp, level, message = warning.split(" | ", 2)
        assert timestamp[:4].isdigit()
        assert level == "WARNING "
        assert message.startswith("corrupt gz rotation 'auth.log.2.gz'")

    def test_negative_days_rejected(self, setup_files) -> None:
        keys_file, log_dir = setup_files

        with pytest.raises(SystemExit) as exc:
            main(show_keys(keys_file, log_dir, "--older-than-days", "-3"))

        assert exc.value.code == 2

    def test_unknown_format_rejected(self, setup_files) -> None:
        keys_file, log_dir = setup_files

        with pytest.raises(SystemExit):
            main(show_keys(keys_file, log_dir, "--format", "xml"))

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            main([])


class TestConfig:
    def test_defaults(self) -> None:
        args = build_parser().parse_args(["show-keys"])
        now = datetime(2026, 10, 17)

        config = config_from_args(args, now=now)

        assert config.key_file.endswith("/.ssh/authorized_keys")
        assert config.log_dir == "/var/log"
        assert config.log_name == "auth.log"
        assert config.threshold_days is None
        assert config.output_format is OutputFormat.TEXT
        assert config.now == now
        assert not config.use_journal

    def test_default_format_alias(self) -> None:
        args = build_parser().parse_args(["show-keys", "--format", "default"])

        assert args.format is OutputFormat.TEXT

    def test_log_level_off_disables_diagnostics(self) -> None:
        akt.setup_logging("off")

        assert logging.getLogger("authorized_keys").isEnabledFor(logging.CRITICAL) is False


def test_run_audit_with_explicit_lines(tmp_path, key_blob, fingerprint_of, log_line) -> None:
    blob = key_blob(seed="explicit")
    keys_file = tmp_path / "authorized_keys"
    keys_file.write_text(f"ssh-ed25519 {blob} a@b.com\n")
    now = datetime(2026, 10, 17, 12, 0, 0)
    config = AuditConfig(key_file=str(keys_file), now=now, threshold_days=7)

    rows = run_audit(config, [log_line(now - timedelta(days=10), fingerprint_of(blob))])

    assert len(rows) == 1
    assert rows[0].age_days == 10
    assert rows[0].status is KeyStatus.USED
