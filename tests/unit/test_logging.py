import logging
from pathlib import Path

from bbm import __version__
from bbm.infra.logging import ResilientWatchedFileHandler, log_run_header, reset_logging, setup_logging


def test_setup_logging_single_file_handler(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("BBM_LOG_LEVEL", "DEBUG")
    log_path = tmp_path / "logs" / "run.log"
    try:
        setup_logging(log_path, also_console=False)
        setup_logging(log_path, also_console=False)
        handlers = [h for h in logging.getLogger().handlers if isinstance(h, ResilientWatchedFileHandler)]
        assert len(handlers) == 1
        header = log_run_header("compute")
        assert header.startswith(f"bbm {__version__} | cmd=compute")
        logging.getLogger("bbm.test").debug("debug line")
        text = log_path.read_text()
        assert "Logging initialized" in text
        assert "cmd=compute" in text
        assert "debug line" in text
    finally:
        reset_logging()
    assert not logging.getLogger().handlers


def test_log_file_recreated_after_removal(tmp_path: Path):
    log_path = tmp_path / "gone" / "run.log"
    try:
        setup_logging(log_path, also_console=False, suppress_initial_message=True)
        log_path.unlink()
        log_path.parent.rmdir()
        logging.getLogger().warning("after removal")
        assert "after removal" in log_path.read_text()
    finally:
        reset_logging()
