import logging

import pytest
import structlog

from flightflasher.config.models import FlasherSettings, LoggingConfig
from flightflasher.system.structlog_configurator import (
    StageLogSink,
    _renderer,
    configure_structlog,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers back after configure_structlog runs."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestConfigureStructlog:
    """Logging setup."""

    def test_console_renderer_by_default(self):
        """Should render human-readable output unless JSON is requested."""
        assert isinstance(_renderer(FlasherSettings()), structlog.dev.ConsoleRenderer)

    def test_json_from_settings(self):
        """Should render JSON when settings enable it."""
        settings = FlasherSettings(logging=LoggingConfig(json_logs=True))

        assert isinstance(_renderer(settings), structlog.processors.JSONRenderer)

    def test_json_from_environment(self, monkeypatch):
        """Should render JSON when FLIGHTFLASHER_JSON_LOGS is true."""
        monkeypatch.setenv("FLIGHTFLASHER_JSON_LOGS", "true")

        assert isinstance(_renderer(FlasherSettings()), structlog.processors.JSONRenderer)

    @pytest.mark.usefixtures("restore_root_logger")
    def test_installs_single_handler(self):
        """Should replace root handlers with one structlog formatter handler."""
        settings = FlasherSettings(logging=LoggingConfig(level="DEBUG"))

        configure_structlog(settings)
        configure_structlog(settings)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert root.level == logging.DEBUG


class TestStageLogSink:
    """Per-stage log file lifecycle."""

    def test_writes_lines(self, tmp_path):
        """Should append messages to the log file while open."""
        path = tmp_path / "var" / "log" / "setup.log"

        with StageLogSink(path, logger_name="test.sink.write") as sink:
            assert sink.is_open
            sink.write("entered network_waited")

        assert not sink.is_open
        assert "entered network_waited" in path.read_text()

    def test_appends_across_runs(self, tmp_path):
        """Should keep output from an earlier attempt."""
        path = tmp_path / "setup.log"

        for message in ("first attempt", "second attempt"):
            with StageLogSink(path, logger_name="test.sink.append") as sink:
                sink.write(message)

        text = path.read_text()
        assert "first attempt" in text
        assert "second attempt" in text

    def test_write_requires_open(self, tmp_path):
        """Should refuse writes before the sink is opened."""
        sink = StageLogSink(tmp_path / "setup.log", logger_name="test.sink.closed")

        with pytest.raises(RuntimeError, match="is not open"):
            sink.write("lost")

    def test_open_once(self, tmp_path):
        """Should refuse to open twice."""
        sink = StageLogSink(tmp_path / "setup.log", logger_name="test.sink.twice")
        sink.open()
        try:
            with pytest.raises(RuntimeError, match="already open"):
                sink.open()
        finally:
            sink.close()

    def test_close_is_idempotent(self, tmp_path):
        """Should tolerate closing a closed sink."""
        sink = StageLogSink(tmp_path / "setup.log", logger_name="test.sink.close")

        sink.close()

        assert not sink.is_open
