from __future__ import annotations

import logging
from pathlib import Path

import pytest

from despacho_extraction.logging_setup import resolve_level, setup_logging


@pytest.mark.parametrize(
    ("level", "expected"),
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("nonsense", logging.INFO), (logging.ERROR, logging.ERROR)],
)
def test_resolve_level(level, expected: int) -> None:
    assert resolve_level(level) == expected


def test_setup_logging_writes_log_file(tmp_path: Path, restore_root_logging) -> None:
    log_file = tmp_path / "logs" / "run.log"
    setup_logging("DEBUG", log_file)
    assert restore_root_logging.level == logging.DEBUG
    assert logging.getLogger("openpyxl").level == logging.WARNING

    logging.getLogger("despacho_extraction.merge").debug("Rejected %s", "PERITO")
    for handler in restore_root_logging.handlers:
        handler.flush()
    line = log_file.read_text(encoding="utf-8").strip()
    assert line.endswith("| DEBUG | despacho_extraction.merge | Rejected PERITO")
