from __future__ import annotations

import json
import logging
from pathlib import Path

from nagare.app.logging_setup import setup_app_logger


def test_setup_app_logger_writes_json_line(tmp_path: Path) -> None:
    logger, log_path = setup_app_logger("nagare.test", log_dir=tmp_path / "logs")
    try:
        logger.info("chunk_conversion_failed", extra={"sample_rate": 44100, "shape": "(3,)"})
        logger.debug("hidden")
        for h in logger.handlers:
            h.flush()

        assert log_path == tmp_path / "logs" / "nagare.log"
        lines = [ln for ln in log_path.read_text(encoding="utf-8").splitlines() if ln.strip()]
        assert len(lines) == 1
        payload = json.loads(lines[0])
        assert payload["message"] == "chunk_conversion_failed"
        assert payload["sample_rate"] == 44100
        assert payload["level"] == "INFO"
        assert payload["logger"] == "nagare.test"
        assert "lineno" not in payload
    finally:
        for h in logger.handlers:
            h.close()
        logging.getLogger("nagare.test").handlers.clear()


def test_child_loggers_reach_the_file_and_debug_flag(tmp_path: Path) -> None:
    logger, log_path = setup_app_logger("nagare.test2", debug=True, log_dir=tmp_path)
    try:
        logging.getLogger("nagare.test2.live.session").debug("vad_transition", extra={"to": "speaking"})
        for h in logger.handlers:
            h.flush()
        payload = json.loads(log_path.read_text(encoding="utf-8").splitlines()[-1])
        assert payload["message"] == "vad_transition"
        assert payload["to"] == "speaking"
        assert payload["logger"] == "nagare.test2.live.session"
    finally:
        for h in logger.handlers:
            h.close()
        logging.getLogger("nagare.test2").handlers.clear()
