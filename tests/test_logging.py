from __future__ import annotations

import logging
from pathlib import Path

from investment_core.logging_config import configure_logging


def test_configure_logging_adds_stream_handler() -> None:
    configure_logging(None)
    root = logging.getLogger()
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)


def test_configure_logging_accepts_level_names(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "core.log"
    configure_logging(log_file, "debug")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("pymongo").level == logging.WARNING
    assert log_file.parent.exists()

    configure_logging(None, "not-a-level")
    assert logging.getLogger().level == logging.INFO
