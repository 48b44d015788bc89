"""Tests for the exception hierarchy and logging setup."""

from __future__ import annotations

import logging
import pathlib

from meshstore.core import errors, logging_config


def test_store_errors_share_base() -> None:
    """Test that recoverable and fatal errors share one base class."""
    for exc_type in (
        errors.InputError,
        errors.GeometryDegenerate,
        errors.StoreError,
    ):
        assert issubclass(exc_type, errors.MeshStoreError)


def test_capacity_exceeded_message() -> None:
    """Test CapacityExceeded carries total and limit."""
    exc = errors.CapacityExceeded(25, 10)
    assert exc.total == 25
    assert exc.limit == 10
    assert str(exc) == "25 mesh cells exceeds limit of 10"


def test_identifier_errors_are_value_errors() -> None:
    """Test identifier validation errors are ValueErrors."""
    assert issubclass(errors.InvalidLayerName, ValueError)
    assert issubclass(errors.InvalidMeshId, ValueError)


def test_setup_logging_replaces_handlers(tmp_path: pathlib.Path) -> None:
    """Test setup_logging is idempotent and writes to the log file."""
    log_file = tmp_path / "ingest.log"
    logging_config.setup_logging("DEBUG")
    logging_config.setup_logging(logging.INFO, str(log_file))

    logger = logging.getLogger("meshstore")
    try:
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 2
        logging.getLogger("meshstore.services.test").info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "meshstore.services.test - INFO - hello" in log_file.read_text()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
