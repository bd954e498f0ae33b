"""Unit tests for logging utilities."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pyfakefs.fake_filesystem import FakeFilesystem


def _rotating_handlers(prefix: str) -> list[RotatingFileHandler]:
    return [
        handler
        for name in list(logging.root.manager.loggerDict)
        if name.startswith(prefix)
        for handler in logging.getLogger(name).handlers
        if isinstance(handler, RotatingFileHandler)
    ]


class TestLogLevelFromString:
    def test_known_levels(self) -> None:
        from zminit.utils._logging import _log_level_from_string

        assert _log_level_from_string("debug") == logging.DEBUG
        assert _log_level_from_string("WARNING") == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        from zminit.utils._logging import _log_level_from_string

        assert _log_level_from_string("chatty") == logging.INFO

    def test_debug_env_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from zminit.utils._logging import _log_level_from_string

        monkeypatch.setenv("ZMINIT_DEBUG", "1")

        assert _log_level_from_string("error", respect_env=True) == logging.DEBUG

    def test_level_env_replaces_configured_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from zminit.utils._logging import _log_level_from_string

        monkeypatch.delenv("ZMINIT_DEBUG", raising=False)
        monkeypatch.setenv("ZMINIT_LOG_LEVEL", "error")

        assert _log_level_from_string("info", respect_env=True) == logging.ERROR
        assert _log_level_from_string("info") == logging.INFO


class TestCreateLogger:
    def test_creates_log_directory_if_missing(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        log_path = Path("/log/zminit.log")
        assert not log_path.parent.exists()

        _ = _create_logger(str(log_path))

        assert log_path.parent.exists()

    def test_default_format_is_json(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        logger = _create_logger("/log/zminit.log")

        logger.info("service_transition", service="nginx")

        log_content = Path("/log/zminit.log").read_text()
        assert '"event": "service_transition"' in log_content
        assert '"service": "nginx"' in log_content
        assert '"timestamp"' in log_content

    def test_text_format(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        logger = _create_logger("/log/zminit.log", log_format="text")

        logger.info("service_transition", service="nginx")

        log_content = Path("/log/zminit.log").read_text()
        assert "service_transition" in log_content
        assert "service=nginx" in log_content

    def test_level_filters_records(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        logger = _create_logger("/log/zminit.log", log_level=logging.ERROR)

        logger.info("quiet_message")
        logger.error("loud_message")

        log_content = Path("/log/zminit.log").read_text()
        assert "quiet_message" not in log_content
        assert "loud_message" in log_content

    def test_empty_path_writes_to_stdout(self, capsys: pytest.CaptureFixture[str]) -> None:
        from zminit.utils._logging import _create_logger

        logger = _create_logger("")

        logger.info("to_stdout")

        assert "to_stdout" in capsys.readouterr().out

    def test_rotation_requires_both_params(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        _create_logger("/log/first.log", max_bytes=1000).info("test")
        _create_logger("/log/second.log", backup_count=3).info("test")

        assert _rotating_handlers("zminit.first.") == []
        assert _rotating_handlers("zminit.second.") == []


class TestCreateLoggerRotation:
    def test_with_rotation_uses_stdlib_logger(self, fs: FakeFilesystem) -> None:
        from zminit.utils._logging import _create_logger

        _ = _create_logger("/log/rotated.log", max_bytes=1000, backup_count=3)

        handlers = _rotating_handlers("zminit.rotated.")
        assert handlers
        assert handlers[-1].maxBytes == 1000
        assert handlers[-1].backupCount == 3


class TestCreateSupervisorLogger:
    def test_binds_component(self, fs: FakeFilesystem) -> None:
        from zminit.utils import create_supervisor_logger

        logger = create_supervisor_logger(
            log_format="json", log_file="/log/zminit.log", component="supervisor"
        )

        logger.info("supervisor_started")

        assert '"component": "supervisor"' in Path("/log/zminit.log").read_text()

    def test_respects_log_level(
        self, fs: FakeFilesystem, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from zminit.utils import create_supervisor_logger

        monkeypatch.delenv("ZMINIT_DEBUG", raising=False)
        monkeypatch.delenv("ZMINIT_LOG_LEVEL", raising=False)

        logger = create_supervisor_logger(level="error", log_file="/log/zminit.log")

        logger.debug("debug_level_message")
        logger.error("error_level_message")

        content = Path("/log/zminit.log").read_text()
        assert "debug_level_message" not in content
        assert "error_level_message" in content


class TestNullLogger:
    def test_drops_everything_below_critical(self, capsys: pytest.CaptureFixture[str]) -> None:
        from zminit.utils import get_null_logger

        logger = get_null_logger()

        logger.error("dropped")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""
