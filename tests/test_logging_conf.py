from __future__ import annotations

import logging

import pytest

from dyehouse.logging_conf import configure_logging, resolve_level
from dyehouse.settings import Settings


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    yield root
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]


def test_level_comes_from_settings(tmp_path, root_logger):
    configure_logging(Settings(db_path=tmp_path / "x.db", log_level="debug"))
    configure_logging(Settings(db_path=tmp_path / "x.db", log_level="WARNING"))

    assert root_logger.level == logging.WARNING
    assert len(root_logger.handlers) == 1
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_unknown_level_is_rejected():
    assert resolve_level(" info ") == logging.INFO
    with pytest.raises(ValueError, match="LOUD"):
        resolve_level("LOUD")
