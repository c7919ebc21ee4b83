"""
Tests for loguru sink configuration.
"""

import sys

import pytest
from loguru import logger

from whaleflow.utils.log_setup import configure_logging


@pytest.fixture(autouse=True)
def restore_default_sink():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_file_sink_receives_debug(tmp_path):
    log_file = tmp_path / "logs" / "whaleflow.log"

    configure_logging(level="WARNING", log_file=str(log_file))
    logger.debug("debug line for file sink")
    logger.remove()

    assert log_file.exists()
    assert "debug line for file sink" in log_file.read_text()


def test_stderr_sink_respects_level(capsys):
    configure_logging(level="WARNING")
    logger.info("quiet info")
    logger.warning("loud warning")

    err = capsys.readouterr().err
    assert "loud warning" in err
    assert "quiet info" not in err
