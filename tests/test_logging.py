"""
Tests for logging setup and stage context.
"""

import logging

import pytest

from seufit.logging import ProgressLogger, get_logger, log_context, setup_logging


@pytest.fixture
def restore_logger():
    yield
    setup_logging("INFO")


class TestLogging:
    """Test logger configuration."""

    def test_file_handler(self, temp_dir, restore_logger):
        log_file = temp_dir / "logs" / "run.log"
        logger = setup_logging("DEBUG", log_file)

        assert logger.level == logging.DEBUG
        assert get_logger() is logger
        logger.info("bootstrap started")
        for handler in logger.handlers:
            handler.flush()

        assert "bootstrap started" in log_file.read_text()

    def test_reconfigure_replaces_handlers(self, restore_logger):
        setup_logging("INFO")
        logger = setup_logging("WARNING")
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1

    def test_log_context_reraises(self):
        with pytest.raises(RuntimeError):
            with log_context("failing stage"):
                raise RuntimeError("boom")

    def test_log_context_records_timing(self):
        timings = {}
        with log_context("Goodness of fit", timings=timings):
            pass
        with pytest.raises(RuntimeError):
            with log_context("Parametric bootstrap", timings=timings):
                raise RuntimeError("boom")

        assert set(timings) == {"Goodness of fit", "Parametric bootstrap"}
        assert all(t >= 0.0 for t in timings.values())


class TestProgressLogger:
    """Test throttled progress reporting."""

    @pytest.fixture
    def plain_logger(self, caplog):
        caplog.set_level(logging.DEBUG, logger="seufit-progress-test")
        return logging.getLogger("seufit-progress-test")

    def test_counts_updates(self):
        progress = ProgressLogger(10, "Bootstrap")
        progress.update(4)
        progress.update(6, "chunk 2")
        progress.done()
        assert progress.current == 10
        assert progress.fraction == 1.0

    def test_info_every_quarter(self, plain_logger, caplog):
        progress = ProgressLogger(100, "Bootstrap", plain_logger)
        for _ in range(10):
            progress.update(10, "0 failed")

        info = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
        assert info == [
            "Bootstrap: 30/100 iterations (30.0%) - 0 failed",
            "Bootstrap: 50/100 iterations (50.0%) - 0 failed",
            "Bootstrap: 80/100 iterations (80.0%) - 0 failed",
        ]

    def test_done_reports_early_stop(self, plain_logger, caplog):
        progress = ProgressLogger(60, "Bootstrap", plain_logger)
        progress.update(10)
        progress.done("cancelled")
        assert "Bootstrap stopped early (cancelled) after 10/60 iterations" in caplog.text

    def test_empty_total(self, plain_logger):
        progress = ProgressLogger(0, "Bootstrap", plain_logger)
        progress.done("timeout")
        assert progress.fraction == 0.0
