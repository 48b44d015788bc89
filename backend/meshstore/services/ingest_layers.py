"""GeoJSON layer ingestion into the mesh store.

Each input file produces one layer per geometry kind it contains. For every
layer the pipeline

1. removes layers previously registered for the file that it no longer
   produces,
2. provisions the layer's dynamic table(s),
3. replaces the layer's rows in the generic and per-layer tables, in
   batches of at most ``chunk_size`` rows,
4. updates the mesh presence index for the cells the layer touched before
   or touches now, and
5. upserts the layer's registry row.

Steps 2-5 for one layer run in a single store transaction, so a failure
leaves the layer exactly as it was before the file was processed.

Example:
    Ingest a directory with an in-memory store:
        >>> import pathlib
        >>> from meshstore.db.database import InMemoryMeshStore
        >>> from meshstore.services.ingest_layers import LayerIngestionPipeline
        >>> pipeline = LayerIngestionPipeline(InMemoryMeshStore())
        >>> report = pipeline.ingest_directory(pathlib.Path("data"))
        >>> report.ok
        True
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Literal

from meshstore.core import errors
from meshstore.db import models as db_models
from meshstore.services import (
    geojson_reader,
    geometry_clipper,
    grid_tiler,
    layer_catalog,
    mesh_codec,
    mesh_presence,
)
from meshstore.utils import batching

if TYPE_CHECKING:
    import pathlib

    from meshstore.core import config
    from meshstore.db import database

logger = logging.getLogger(__name__)

FileStatus = Literal["ingested", "skipped", "failed", "removed"]

Piece = geometry_clipper.LinePiece | geometry_clipper.PolygonPiece


@dataclasses.dataclass
class FileOutcome:
    """Result of processing one source file."""

    source_file: str
    status: FileStatus
    layers: list[str] = dataclasses.field(default_factory=list)
    detail: str = ""


@dataclasses.dataclass
class IngestReport:
    """Per-file outcomes of one ingestion run."""

    files: list[FileOutcome] = dataclasses.field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True unless some file failed with a store error."""
        return all(outcome.status != "failed" for outcome in self.files)

    def by_status(self, status: FileStatus) -> list[FileOutcome]:
        return [outcome for outcome in self.files if outcome.status == status]


@dataclasses.dataclass
class _Decomposed:
    feature: geojson_reader.Feature
    mesh_id: str
    pieces: list[Piece]


def _inside(bounds: grid_tiler.BBox, lon: float, lat: float) -> bool:
    return bounds[0] <= lon <= bounds[2] and bounds[1] <= lat <= bounds[3]


class LayerIngestionPipeline:
    """Ingest GeoJSON files as mesh-indexed layers.

    Args:
        store: Target store.
        tiler: Grid tiler with the cell guard to apply. Defaults to an
            unbounded tiler.
        chunk_size: Maximum rows per insert statement.
    """

    def __init__(
        self,
        store: database.MeshStoreProtocol,
        tiler: grid_tiler.GridTiler | None = None,
        chunk_size: int = batching.DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.tiler = tiler or grid_tiler.GridTiler()
        self.clipper = geometry_clipper.GeometryClipper(self.tiler)
        self.presence = mesh_presence.MeshPresenceIndex(store, chunk_size)
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(
        cls,
        store: database.MeshStoreProtocol,
        settings: config.Settings,
    ) -> LayerIngestionPipeline:
        """Build a pipeline using the configured cell guard and batch size."""
        return cls(
            store,
            tiler=grid_tiler.GridTiler(max_cells=settings.mesh_cell_limit),
            chunk_size=settings.insert_chunk_size,
        )

    def ingest_directory(
        self,
        data_dir: pathlib.Path,
        prune: bool = False,
    ) -> IngestReport:
        """Ingest every GeoJSON file in ``data_dir``, in name order.

        Args:
            data_dir: Directory holding ``.geojson``/``.json`` files.
            prune: Also remove layers whose source file is no longer in
                the directory.

        Returns:
            IngestReport with one outcome per file (and per pruned source).

        Raises:
            InputError: If ``data_dir`` is not a directory.
        """
        if not data_dir.is_dir():
            raise errors.InputError(f"Data directory not found: {data_dir}")

        paths = sorted(
            path
            for path in data_dir.iterdir()
            if path.is_file()
            and path.suffix.lower() in geojson_reader.SUPPORTED_SUFFIXES
        )
        if not paths:
            logger.info("No GeoJSON files found in %s", data_dir)

        report = IngestReport()
        for path in paths:
            logger.info("Processing %s...", path.name)
            report.files.append(self._ingest_path(path))

        if prune:
            present = {path.name for path in paths}
            registered = {layer.source_file for layer in self.store.all_layers()}
            for source_file in sorted(registered - present):
                report.files.append(self._prune_source(source_file))
        return report

    def _ingest_path(self, path: pathlib.Path) -> FileOutcome:
        try:
            layers = self.ingest_file(path)
        except errors.InputError as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            return FileOutcome(path.name, "skipped", detail=str(exc))
        except errors.StoreError as exc:
            logger.error("Ingestion of %s failed: %s", path.name, exc)
            return FileOutcome(path.name, "failed", detail=str(exc))
        if not layers:
            logger.warning("Skipping %s: no supported geometries", path.name)
            return FileOutcome(
                path.name, "skipped", detail="no supported geometries"
            )
        return FileOutcome(path.name, "ingested", layers=layers)

    def _prune_source(self, source_file: str) -> FileOutcome:
        try:
            removed = self.remove_source(source_file)
        except errors.StoreError as exc:
            logger.error("Removing layers of %s failed: %s", source_file, exc)
            return FileOutcome(source_file, "failed", detail=str(exc))
        return FileOutcome(source_file, "removed", layers=removed)

    def ingest_file(self, path: pathlib.Path) -> list[str]:
        """Ingest one GeoJSON file.

        Args:
            path: File to read. Its base name is the layers' source file.

        Returns:
            Names of the layers now registered for the file; empty when the
            file has no supported geometry (its old layers are removed).

        Raises:
            InputError: If the file cannot be read or parsed, or one of its
                layer names is registered to another source file.
            StoreError: If a store operation fails. Layers completed before
                the failure stay committed.
        """
        source_file = path.name
        grouped = geojson_reader.read_grouped(path)
        kinds = [kind for kind in geojson_reader.GEOMETRY_KINDS if grouped[kind]]
        definitions = layer_catalog.build_layer_definitions(source_file, kinds)
        expected = {definition.layer_name for definition in definitions}
        self._check_ownership(definitions)

        for stale in self.store.layers_for_source(source_file):
            if stale.layer_name not in expected:
                with self.store.transaction():
                    self._remove_layer(stale)

        for definition in definitions:
            features = grouped[definition.geometry_kind]
            with self.store.transaction():
                count = self._process_layer(definition, features)
            logger.info(
                "Ingested %s (%s): %d features",
                definition.layer_name,
                definition.geometry_kind,
                count,
            )
        return [definition.layer_name for definition in definitions]

    def _check_ownership(
        self, definitions: list[db_models.LayerDefinition]
    ) -> None:
        for definition in definitions:
            owner = self.store.get_layer(definition.layer_name)
            if (
                owner is not None
                and owner.source_file != definition.source_file
            ):
                raise errors.InputError(
                    f"Layer name {definition.layer_name!r} is already "
                    f"registered for {owner.source_file}"
                )

    def remove_source(self, source_file: str) -> list[str]:
        """Remove every layer registered for ``source_file``.

        Returns:
            Names of the removed layers.
        """
        removed: list[str] = []
        for layer in self.store.layers_for_source(source_file):
            with self.store.transaction():
                self._remove_layer(layer)
            removed.append(layer.layer_name)
        return removed

    def _remove_layer(self, layer: db_models.LayerDefinition) -> None:
        old_mesh_ids = self.store.layer_mesh_ids(layer)
        self.store.delete_layer_rows(layer.layer_name)
        if layer.mesh_map_table:
            self.store.drop_table(layer.mesh_map_table)
        self.store.drop_table(layer.table_name)
        self.store.delete_layer(layer.layer_name)
        self.presence.apply_layer_delta(layer.layer_name, old_mesh_ids, set())
        logger.info("Removed layer %s", layer.layer_name)

    def _process_layer(
        self,
        definition: db_models.LayerDefinition,
        features: list[geojson_reader.Feature],
    ) -> int:
        name = definition.layer_name
        previous = self.store.get_layer(name)
        old_mesh_ids: set[str] = set()
        if previous is not None:
            old_mesh_ids = self.store.layer_mesh_ids(previous)
            if (
                previous.geometry_kind != definition.geometry_kind
                and previous.mesh_map_table
            ):
                self.store.drop_table(previous.mesh_map_table)

        self.store.create_layer_tables(definition)
        self.store.delete_layer_rows(name)
        if definition.mesh_map_table:
            self.store.clear_table(definition.mesh_map_table)
        self.store.clear_table(definition.table_name)

        if definition.geometry_kind == "point":
            count, new_mesh_ids = self._write_points(definition, features)
        else:
            count, new_mesh_ids = self._write_shapes(definition, features)

        self.presence.apply_layer_delta(name, old_mesh_ids, new_mesh_ids)
        self.store.upsert_layer(definition)
        return count

    def _write_points(
        self,
        definition: db_models.LayerDefinition,
        features: list[geojson_reader.Feature],
    ) -> tuple[int, set[str]]:
        rows: list[db_models.FeatureRow] = []
        rejected = 0
        for feature in features:
            for point in geojson_reader.explode_points(feature):
                lon, lat = point.geometry["coordinates"][:2]
                if not _inside(self.tiler.bounds, lon, lat):
                    rejected += 1
                    continue
                rows.append(
                    db_models.FeatureRow(
                        mesh_id=mesh_codec.mesh_code(lat, lon),
                        geometry=point.geometry,
                        properties=point.properties,
                        source_layer=definition.layer_name,
                    )
                )
        if rejected:
            logger.info(
                "Layer %s: %d points outside the grid extent rejected",
                definition.layer_name,
                rejected,
            )

        mesh_ids = {row.mesh_id for row in rows}
        self.presence.ensure(mesh_ids)
        for batch in batching.chunked(rows, self.chunk_size):
            self.store.insert_features("point", batch)
            self.store.insert_layer_features(definition, batch)
        return len(rows), mesh_ids

    def _decompose(
        self,
        definition: db_models.LayerDefinition,
        features: list[geojson_reader.Feature],
    ) -> list[_Decomposed]:
        clip = (
            self.clipper.clip_line
            if definition.geometry_kind == "line"
            else self.clipper.clip_polygon
        )
        decomposed: list[_Decomposed] = []
        skipped = 0
        for feature in features:
            try:
                pieces: list[Piece] = list(clip(feature.geometry))
                if pieces:
                    mesh_id = pieces[0].mesh_id
                else:
                    mesh_id = self._over_capacity(
                        feature, definition.geometry_kind
                    )
            except errors.InputError as exc:
                logger.info(
                    "Layer %s: skipping feature: %s", definition.layer_name, exc
                )
                skipped += 1
                continue
            if mesh_id is None:
                skipped += 1
                continue
            decomposed.append(_Decomposed(feature, mesh_id, pieces))
        if skipped:
            logger.info(
                "Layer %s: %d features produced no mesh pieces",
                definition.layer_name,
                skipped,
            )
        return decomposed

    def _over_capacity(
        self,
        feature: geojson_reader.Feature,
        kind: db_models.GeometryKind,
    ) -> str | None:
        """Mesh id to store an undecomposed feature under, if guarded out.

        Features whose bbox exceeds the cell guard keep their whole-feature
        row, keyed to the cell of a representative point, without pieces.
        Degenerate features are never kept.
        """
        shape = geometry_clipper.to_shape(feature.geometry)
        if shape.is_empty:
            return None
        try:
            geometry_clipper.require_usable(
                geometry_clipper.MEASURES[kind](shape)
            )
        except errors.GeometryDegenerate:
            return None
        try:
            self.tiler.check_capacity(self.tiler.count(shape.bounds))
        except errors.CapacityExceeded as exc:
            point = shape.representative_point()
            if not _inside(self.tiler.bounds, point.x, point.y):
                return None
            logger.warning("Storing feature without mesh pieces: %s", exc)
            return mesh_codec.mesh_code(point.y, point.x)
        return None

    def _write_shapes(
        self,
        definition: db_models.LayerDefinition,
        features: list[geojson_reader.Feature],
    ) -> tuple[int, set[str]]:
        kind = definition.geometry_kind
        name = definition.layer_name
        decomposed = self._decompose(definition, features)

        piece_mesh_ids = {
            piece.mesh_id for item in decomposed for piece in item.pieces
        }
        self.presence.ensure(
            piece_mesh_ids | {item.mesh_id for item in decomposed}
        )

        for batch in batching.chunked(decomposed, self.chunk_size):
            feature_rows = [
                db_models.FeatureRow(
                    mesh_id=item.mesh_id,
                    geometry=item.feature.geometry,
                    properties=item.feature.properties,
                    source_layer=name,
                )
                for item in batch
            ]
            generic_ids = self.store.insert_features(kind, feature_rows)
            layer_ids = self.store.insert_layer_features(definition, feature_rows)

            generic_pieces: list[db_models.PieceRow] = []
            layer_pieces: list[db_models.PieceRow] = []
            for item, generic_id, layer_id in zip(
                batch, generic_ids, layer_ids, strict=True
            ):
                for piece in item.pieces:
                    generic_pieces.append(
                        self._piece_row(generic_id, piece, item.feature, name)
                    )
                    layer_pieces.append(
                        self._piece_row(layer_id, piece, item.feature, name)
                    )

            for piece_batch in batching.chunked(generic_pieces, self.chunk_size):
                self.store.insert_pieces(kind, piece_batch)
            for piece_batch in batching.chunked(layer_pieces, self.chunk_size):
                self.store.insert_layer_pieces(definition, piece_batch)

        return len(decomposed), piece_mesh_ids

    @staticmethod
    def _piece_row(
        feature_id: int,
        piece: Piece,
        feature: geojson_reader.Feature,
        source_layer: str,
    ) -> db_models.PieceRow:
        mesh_id, geometry, measure, ratio = piece
        properties: dict[str, Any] = feature.properties
        return db_models.PieceRow(
            feature_id=feature_id,
            mesh_id=mesh_id,
            geometry=geometry,
            properties=properties,
            measure=measure,
            ratio=ratio,
            source_layer=source_layer,
        )
