import logging
from pathlib import Path

from face_gate.config import LOG_DIR, GateSettings
from face_gate.logger import setup_logger


def test_defaults_from_empty_environment(monkeypatch, tmp_path):
    for name in ("FACE_GATE_MATCH_THRESHOLD", "FACE_GATE_POLL_INTERVAL_MS", "FACE_GATE_DB_URL"):
        monkeypatch.delenv(name, raising=False)

    settings = GateSettings.from_env(project_root=tmp_path)

    assert settings.match_threshold == 0.6
    assert settings.poll_interval_seconds == 0.1
    assert settings.resolved_database_url == f"sqlite:///{tmp_path / 'data' / 'face_gate.db'}"


def test_environment_overrides_and_bad_values(monkeypatch, tmp_path):
    monkeypatch.setenv("FACE_GATE_MATCH_THRESHOLD", "0.45")
    monkeypatch.setenv("FACE_GATE_MAX_READ_FAILURES", "not-a-number")
    monkeypatch.setenv("FACE_GATE_INITIAL_MODE", "QR")

    settings = GateSettings.from_env(project_root=tmp_path)

    assert settings.match_threshold == 0.45
    assert settings.max_read_failures == 4
    assert settings.initial_mode == "qr"


def test_poll_interval_is_clamped():
    assert GateSettings(project_root=Path("."), poll_interval_ms=5).poll_interval_seconds == 0.05
    assert GateSettings(project_root=Path("."), poll_interval_ms=9000).poll_interval_seconds == 1.0


def test_logger_writes_under_log_dir_once():
    first = setup_logger("ConfigTestLogger")
    second = setup_logger("ConfigTestLogger")

    files = [h for h in first.handlers if isinstance(h, logging.FileHandler)]
    assert first is second
    assert len(first.handlers) == 2
    assert len(files) == 1
    assert Path(files[0].baseFilename).parent == LOG_DIR.resolve()
