"""Tests for the command line entry points."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

import pytest

from meshstore import cli
from meshstore.core import config, errors
from meshstore.db import database

if TYPE_CHECKING:
    import pathlib

LINE = {
    "type": "LineString",
    "coordinates": [[139.759, 35.678], [139.771, 35.688]],
}


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Remove the handlers main() installs on the meshstore logger."""
    yield
    logger = logging.getLogger("meshstore")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def _write(path: pathlib.Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def _line_file(path: pathlib.Path) -> None:
    _write(
        path,
        json.dumps({"type": "Feature", "geometry": LINE, "properties": {}}),
    )


def test_ingest_success(tmp_path: pathlib.Path) -> None:
    """Test a clean run exits with status 0."""
    _line_file(tmp_path / "roads.geojson")
    _write(tmp_path / "broken.geojson", "{not json")
    store = database.InMemoryMeshStore()

    status = cli.main(["ingest", str(tmp_path)], store_factory=lambda _: store)

    assert status == 0
    assert [layer.layer_name for layer in store.all_layers()] == ["roads"]
    assert store.rows("line_mesh_map")


def test_ingest_max_cells_option(tmp_path: pathlib.Path) -> None:
    """Test --max-cells is passed to the tiler."""
    _line_file(tmp_path / "roads.geojson")
    store = database.InMemoryMeshStore()

    status = cli.main(
        ["ingest", str(tmp_path), "--max-cells", "2"],
        store_factory=lambda _: store,
    )

    assert status == 0
    assert len(store.rows("line_features")) == 1
    assert store.rows("line_mesh_map") == []


def test_ingest_uses_data_dir_setting(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test the data directory defaults to the DATA_DIR setting."""
    _line_file(tmp_path / "roads.geojson")
    monkeypatch.setattr(
        config, "get_settings", lambda: config.Settings(data_dir=tmp_path)
    )
    store = database.InMemoryMeshStore()

    assert cli.main(["ingest"], store_factory=lambda _: store) == 0
    assert store.get_layer("roads") is not None


def test_ingest_store_failure_exits_nonzero(tmp_path: pathlib.Path) -> None:
    """Test a file failing in the store makes the run fail."""

    class FailingStore(database.InMemoryMeshStore):
        def insert_features(self, kind, rows):  # type: ignore[no-untyped-def]
            raise errors.StoreError("connection lost")

    _line_file(tmp_path / "roads.geojson")
    status = cli.main(
        ["ingest", str(tmp_path)], store_factory=lambda _: FailingStore()
    )
    assert status == 1


def test_ingest_missing_directory(tmp_path: pathlib.Path) -> None:
    """Test a missing data directory exits with status 1."""
    status = cli.main(
        ["ingest", str(tmp_path / "missing")],
        store_factory=lambda _: database.InMemoryMeshStore(),
    )
    assert status == 1


def test_unreachable_store_exits_nonzero() -> None:
    """Test a store that cannot be opened exits with status 1."""

    def unreachable(settings: config.Settings) -> database.MeshStoreProtocol:
        raise errors.StoreError("could not connect")

    assert cli.main(["reconcile"], store_factory=unreachable) == 1


def test_reconcile(tmp_path: pathlib.Path) -> None:
    """Test the reconcile command rebuilds the index."""
    _line_file(tmp_path / "roads.geojson")
    store = database.InMemoryMeshStore()
    cli.main(["ingest", str(tmp_path)], store_factory=lambda _: store)
    mesh_id = store.rows("line_mesh_map")[0].mesh_id
    store.set_layer_presence("roads", [mesh_id], False)

    assert cli.main(["reconcile"], store_factory=lambda _: store) == 0
    (entry,) = store.get_mesh_entries([mesh_id])
    assert entry.layer_presence == {"roads": True}


def test_requires_command() -> None:
    """Test running without a command is a usage error."""
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 2
