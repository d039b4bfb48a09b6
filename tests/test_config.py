# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from sparkboard.config import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("SPARKBOARD_DATA_DIR", "SPARKBOARD_DB_PATH", "SPARKBOARD_QUEUE_URL", "SPARKBOARD_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()

    assert s.db_path == Path(".local/sparkboard") / "sparkboard.sqlite3"
    assert s.batch_size == 10
    assert s.max_receive_count == 3
    assert s.announcement_user_cap == 500
    assert s.pipeline_config().dead_letter_queue_url == "sparkboard-notifications-dlq"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPARKBOARD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SPARKBOARD_QUEUE_URL", "jobs")
    monkeypatch.setenv("SPARKBOARD_BATCH_SIZE", "25")
    monkeypatch.setenv("SPARKBOARD_FANOUT_DELAY_SECONDS", "0")
    monkeypatch.setenv("SPARKBOARD_MAX_RECEIVE_COUNT", "not-a-number")

    s = Settings.from_env()

    assert s.db_path == tmp_path / "sparkboard.sqlite3"
    assert s.queue_url == "jobs"
    assert s.batch_size == 25
    assert s.fanout_delay_seconds == 0.0
    assert s.max_receive_count == 3
