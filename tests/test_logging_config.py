import logging
import os
import sys
import threading

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from runtime.logging_config import setup_logging


def _read(path):
    for handler in logging.getLogger("mesh_refiner").handlers:
        handler.flush()
    return path.read_text()


def test_debug_log_names_worker_threads(tmp_path):
    log_path = tmp_path / "logs" / "debug.log"
    logger = setup_logging(str(log_path), quiet=True, debug=True)

    worker = threading.Thread(target=lambda: logger.debug("from worker"), name="refine-worker-0")
    worker.start()
    worker.join()
    logger.info("from main")

    text = _read(log_path)
    assert " - DEBUG - [refine-worker-0] from worker" in text
    assert " - INFO - [MainThread] from main" in text


def test_info_log_keeps_plain_format(tmp_path):
    log_path = tmp_path / "run.log"
    logger = setup_logging(str(log_path), quiet=True)
    logger.debug("hidden")
    logger.info("shown")

    text = _read(log_path)
    assert "hidden" not in text
    assert " - INFO - shown" in text
    assert "[MainThread]" not in text


def test_repeated_setup_replaces_handlers(tmp_path):
    setup_logging(str(tmp_path / "a.log"))
    logger = setup_logging(str(tmp_path / "b.log"))
    assert len(logger.handlers) == 2
    file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert [h.baseFilename for h in file_handlers] == [str(tmp_path / "b.log")]


def test_unopenable_log_file_warns(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    logger = setup_logging(str(blocker / "run.log"), quiet=True)
    assert logger.handlers == []
    assert "Could not open log file" in caplog.text
