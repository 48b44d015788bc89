"""Store protocol and implementations for layers, features and the mesh index.

The ingestion pipeline talks to storage only through MeshStoreProtocol:
transactional execution, bulk inserts that return generated ids, upserts on
primary key, DDL for per-layer tables and a handful of existence queries.
Two implementations are provided:

- PostgresMeshStore: PostgreSQL via psycopg2, geometry and properties as
  jsonb, dynamic identifiers composed with ``psycopg2.sql``.
- InMemoryMeshStore: dictionaries, for tests and local development.
  Transactions snapshot and restore the whole state.

Callers are responsible for batching; each insert method issues a single
statement for the rows it receives.
"""

from __future__ import annotations

import contextlib
import copy
import dataclasses
import datetime
import itertools
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras
from psycopg2 import sql

from meshstore.core import errors
from meshstore.db import models as db_models
from meshstore.services import layer_catalog

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from meshstore.core import config


class MeshStoreProtocol(Protocol):
    """Storage contract consumed by the ingestion services and the API."""

    def transaction(self) -> contextlib.AbstractContextManager[None]: ...

    # Layer registry
    def get_layer(self, layer_name: str) -> db_models.LayerDefinition | None: ...

    def layers_for_source(
        self, source_file: str
    ) -> list[db_models.LayerDefinition]: ...

    def all_layers(self) -> Iterable[db_models.LayerDefinition]: ...

    def upsert_layer(
        self, layer: db_models.LayerDefinition
    ) -> db_models.LayerDefinition: ...

    def delete_layer(self, layer_name: str) -> None: ...

    # Per-layer tables
    def table_exists(self, table_name: str) -> bool: ...

    def create_layer_tables(self, layer: db_models.LayerDefinition) -> None: ...

    def drop_table(self, table_name: str) -> None: ...

    def clear_table(self, table_name: str) -> None: ...

    # Feature rows
    def delete_layer_rows(self, layer_name: str) -> None: ...

    def insert_features(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.FeatureRow],
    ) -> list[int]: ...

    def insert_pieces(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.PieceRow],
    ) -> None: ...

    def insert_layer_features(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.FeatureRow],
    ) -> list[int]: ...

    def insert_layer_pieces(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.PieceRow],
    ) -> None: ...

    def layer_mesh_ids(self, layer: db_models.LayerDefinition) -> set[str]: ...

    # Mesh index
    def ensure_mesh_ids(self, mesh_ids: list[str]) -> None: ...

    def set_layer_presence(
        self, layer_name: str, mesh_ids: list[str], present: bool
    ) -> None: ...

    def refresh_mesh_flags(self, mesh_ids: list[str]) -> None: ...

    def reconcile_mesh_index(self) -> int: ...

    def get_mesh_entries(
        self, mesh_ids: list[str]
    ) -> list[db_models.MeshIndexEntry]: ...

    def lookup_features(
        self,
        kind: db_models.GeometryKind,
        mesh_ids: list[str],
    ) -> list[db_models.MeshFeature]: ...


@dataclasses.dataclass
class _TableMeta:
    kind: db_models.GeometryKind
    parent: str | None = None


@dataclasses.dataclass
class _MemoryState:
    mesh_index: dict[str, db_models.MeshIndexEntry] = dataclasses.field(
        default_factory=dict
    )
    registry: dict[str, db_models.LayerDefinition] = dataclasses.field(
        default_factory=dict
    )
    tables: dict[str, list[Any]] = dataclasses.field(default_factory=dict)
    meta: dict[str, _TableMeta] = dataclasses.field(default_factory=dict)


class InMemoryMeshStore(MeshStoreProtocol):
    """Simple in-memory store for tests and local development.

    Mirrors the PostgreSQL schema closely enough to exercise the pipeline:
    generic and per-layer tables are lists of rows, foreign keys to the
    mesh index and parent features are enforced, and a failed transaction
    leaves no trace. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty store with the fixed tables created."""
        self._state = _MemoryState()
        self._ids = itertools.count(1)
        self._depth = 0
        for kind, table in db_models.FEATURE_TABLES.items():
            self._state.tables[table] = []
            self._state.meta[table] = _TableMeta(kind)
        for kind, table in db_models.MESH_MAP_TABLES.items():
            self._state.tables[table] = []
            self._state.meta[table] = _TableMeta(
                kind, db_models.FEATURE_TABLES[kind]
            )

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run a block atomically; on any exception restore prior state."""
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = copy.deepcopy(self._state)
        self._depth = 1
        try:
            yield
        except BaseException:
            self._state = snapshot
            raise
        finally:
            self._depth = 0

    def rows(self, table_name: str) -> list[Any]:
        """Return the rows of a table (test helper).

        Raises:
            StoreError: If the table does not exist.
        """
        try:
            return self._state.tables[table_name]
        except KeyError as exc:
            raise errors.StoreError(
                f'relation "{table_name}" does not exist'
            ) from exc

    def get_layer(self, layer_name: str) -> db_models.LayerDefinition | None:
        return self._state.registry.get(layer_name)

    def layers_for_source(
        self, source_file: str
    ) -> list[db_models.LayerDefinition]:
        return [
            layer
            for layer in self._state.registry.values()
            if layer.source_file == source_file
        ]

    def all_layers(self) -> Iterable[db_models.LayerDefinition]:
        return sorted(
            self._state.registry.values(), key=lambda layer: layer.layer_name
        )

    def upsert_layer(
        self, layer: db_models.LayerDefinition
    ) -> db_models.LayerDefinition:
        previous = self._state.registry.get(layer.layer_name)
        if previous is not None:
            layer = dataclasses.replace(layer, created_at=previous.created_at)
        self._state.registry[layer.layer_name] = layer
        return layer

    def delete_layer(self, layer_name: str) -> None:
        self._state.registry.pop(layer_name, None)

    def table_exists(self, table_name: str) -> bool:
        return table_name in self._state.tables

    def create_layer_tables(self, layer: db_models.LayerDefinition) -> None:
        table = layer_catalog.validate_identifier(layer.table_name)
        if table not in self._state.tables:
            self._state.tables[table] = []
        self._state.meta[table] = _TableMeta(layer.geometry_kind)
        if layer.mesh_map_table:
            mesh_map = layer_catalog.validate_identifier(layer.mesh_map_table)
            self._state.tables.setdefault(mesh_map, [])
            self._state.meta[mesh_map] = _TableMeta(layer.geometry_kind, table)

    def drop_table(self, table_name: str) -> None:
        layer_catalog.validate_identifier(table_name)
        dependants = [
            name
            for name, meta in self._state.meta.items()
            if meta.parent == table_name and name in self._state.tables
        ]
        if dependants:
            raise errors.StoreError(
                f"cannot drop table {table_name} because other objects "
                f"depend on it: {', '.join(dependants)}"
            )
        self._state.tables.pop(table_name, None)
        self._state.meta.pop(table_name, None)

    def clear_table(self, table_name: str) -> None:
        layer_catalog.validate_identifier(table_name)
        rows = self.rows(table_name)
        removed = {row.id for row in rows}
        rows.clear()
        self._cascade(table_name, removed)

    def _cascade(self, parent: str, removed_ids: set[int | None]) -> None:
        if not removed_ids:
            return
        for name, meta in self._state.meta.items():
            if meta.parent == parent and name in self._state.tables:
                self._state.tables[name] = [
                    row
                    for row in self._state.tables[name]
                    if row.feature_id not in removed_ids
                ]

    def delete_layer_rows(self, layer_name: str) -> None:
        for table in [
            *db_models.MESH_MAP_TABLES.values(),
            *db_models.FEATURE_TABLES.values(),
        ]:
            rows = self._state.tables[table]
            removed = {row.id for row in rows if row.source_layer == layer_name}
            self._state.tables[table] = [
                row for row in rows if row.source_layer != layer_name
            ]
            self._cascade(table, removed)

    def _check_mesh_ids(self, mesh_ids: Iterable[str]) -> None:
        missing = sorted(set(mesh_ids) - self._state.mesh_index.keys())
        if missing:
            raise errors.StoreError(
                f"insert violates foreign key constraint: mesh_id "
                f"{missing[0]} is not present in mesh_index"
            )

    def _check_parents(self, table: str, rows: list[db_models.PieceRow]) -> None:
        parent = self._state.meta[table].parent
        if parent is None:
            return
        known = {row.id for row in self.rows(parent)}
        for row in rows:
            if row.feature_id not in known:
                raise errors.StoreError(
                    f"insert violates foreign key constraint: feature_id "
                    f"{row.feature_id} is not present in {parent}"
                )

    def _append(self, table: str, rows: list[Any]) -> list[int]:
        target = self.rows(table)
        ids: list[int] = []
        for row in rows:
            stored = dataclasses.replace(row, id=next(self._ids))
            target.append(stored)
            ids.append(cast(int, stored.id))
        return ids

    def insert_features(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.FeatureRow],
    ) -> list[int]:
        self._check_mesh_ids(row.mesh_id for row in rows)
        return self._append(db_models.FEATURE_TABLES[kind], rows)

    def insert_pieces(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.PieceRow],
    ) -> None:
        table = db_models.MESH_MAP_TABLES[kind]
        self._check_mesh_ids(row.mesh_id for row in rows)
        self._check_parents(table, rows)
        self._append(table, rows)

    def insert_layer_features(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.FeatureRow],
    ) -> list[int]:
        return self._append(layer.table_name, rows)

    def insert_layer_pieces(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.PieceRow],
    ) -> None:
        if layer.mesh_map_table is None:
            raise errors.StoreError(f"layer {layer.layer_name} has no mesh map")
        self._check_parents(layer.mesh_map_table, rows)
        self._append(layer.mesh_map_table, rows)

    def layer_mesh_ids(self, layer: db_models.LayerDefinition) -> set[str]:
        for table in (layer.mesh_map_table, layer.table_name):
            if table and self.table_exists(table):
                return {row.mesh_id for row in self.rows(table)}
        return set()

    def ensure_mesh_ids(self, mesh_ids: list[str]) -> None:
        for mesh_id in mesh_ids:
            self._state.mesh_index.setdefault(
                mesh_id, db_models.MeshIndexEntry(mesh_id=mesh_id)
            )

    def set_layer_presence(
        self, layer_name: str, mesh_ids: list[str], present: bool
    ) -> None:
        for mesh_id in mesh_ids:
            entry = self._state.mesh_index.get(mesh_id)
            if entry is None:
                continue
            if present:
                entry.layer_presence[layer_name] = True
            else:
                entry.layer_presence.pop(layer_name, None)

    def _meshes_with_rows(self, table: str, wanted: set[str]) -> set[str]:
        return {
            row.mesh_id for row in self.rows(table) if row.mesh_id in wanted
        }

    def refresh_mesh_flags(self, mesh_ids: list[str]) -> None:
        wanted = set(mesh_ids) & self._state.mesh_index.keys()
        if not wanted:
            return
        points = self._meshes_with_rows(
            db_models.FEATURE_TABLES["point"], wanted
        )
        lines = self._meshes_with_rows(db_models.MESH_MAP_TABLES["line"], wanted)
        polygons = self._meshes_with_rows(
            db_models.MESH_MAP_TABLES["polygon"], wanted
        )
        for mesh_id in mesh_ids:
            entry = self._state.mesh_index.get(mesh_id)
            if entry is None:
                continue
            entry.has_points = mesh_id in points
            entry.has_lines = mesh_id in lines
            entry.has_polygons = mesh_id in polygons

    def reconcile_mesh_index(self) -> int:
        presence: dict[str, dict[str, bool]] = {}
        for table in (
            db_models.FEATURE_TABLES["point"],
            *db_models.MESH_MAP_TABLES.values(),
        ):
            for row in self.rows(table):
                presence.setdefault(row.mesh_id, {})[row.source_layer] = True
        for entry in self._state.mesh_index.values():
            entry.layer_presence = presence.get(entry.mesh_id, {})
        self.refresh_mesh_flags(list(self._state.mesh_index))
        return len(self._state.mesh_index)

    def get_mesh_entries(
        self, mesh_ids: list[str]
    ) -> list[db_models.MeshIndexEntry]:
        return [
            copy.deepcopy(self._state.mesh_index[mesh_id])
            for mesh_id in mesh_ids
            if mesh_id in self._state.mesh_index
        ]

    def lookup_features(
        self,
        kind: db_models.GeometryKind,
        mesh_ids: list[str],
    ) -> list[db_models.MeshFeature]:
        wanted = set(mesh_ids)
        features = {
            row.id: row for row in self.rows(db_models.FEATURE_TABLES[kind])
        }
        if kind == "point":
            return [
                db_models.MeshFeature(
                    id=cast(int, row.id),
                    mesh_id=row.mesh_id,
                    source_layer=row.source_layer,
                    geometry=row.geometry,
                    properties=row.properties,
                )
                for row in features.values()
                if row.mesh_id in wanted
            ]
        return [
            db_models.MeshFeature(
                id=piece.feature_id,
                mesh_id=piece.mesh_id,
                source_layer=piece.source_layer,
                geometry=features[piece.feature_id].geometry,
                properties=features[piece.feature_id].properties,
                ratio=piece.ratio,
            )
            for piece in self.rows(db_models.MESH_MAP_TABLES[kind])
            if piece.mesh_id in wanted
        ]


class PostgresMeshStore(MeshStoreProtocol):
    """PostgreSQL-backed store.

    Creates the fixed tables on initialization. Statements outside
    ``transaction()`` run on a short-lived connection and commit
    immediately; statements inside it share one connection that is
    committed or rolled back as a unit. psycopg2 errors surface as
    StoreError.
    """

    SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS mesh_index (
      mesh_id TEXT PRIMARY KEY,
      has_points BOOLEAN NOT NULL DEFAULT false,
      has_lines BOOLEAN NOT NULL DEFAULT false,
      has_polygons BOOLEAN NOT NULL DEFAULT false,
      layer_presence JSONB NOT NULL DEFAULT '{}'::jsonb,
      updated_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS point_features (
      id SERIAL PRIMARY KEY,
      source_layer TEXT NOT NULL,
      mesh_id TEXT NOT NULL
        REFERENCES mesh_index (mesh_id) ON DELETE CASCADE,
      geometry JSONB NOT NULL,
      properties JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS line_features (
      id SERIAL PRIMARY KEY,
      source_layer TEXT NOT NULL,
      mesh_id TEXT NOT NULL
        REFERENCES mesh_index (mesh_id) ON DELETE CASCADE,
      geometry JSONB NOT NULL,
      properties JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS polygon_features (
      id SERIAL PRIMARY KEY,
      source_layer TEXT NOT NULL,
      mesh_id TEXT NOT NULL
        REFERENCES mesh_index (mesh_id) ON DELETE CASCADE,
      geometry JSONB NOT NULL,
      properties JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS line_mesh_map (
      id SERIAL PRIMARY KEY,
      source_layer TEXT NOT NULL,
      feature_id INTEGER NOT NULL
        REFERENCES line_features (id) ON DELETE CASCADE,
      mesh_id TEXT NOT NULL
        REFERENCES mesh_index (mesh_id) ON DELETE CASCADE,
      geometry JSONB NOT NULL,
      properties JSONB NOT NULL DEFAULT '{}'::jsonb,
      length_m DOUBLE PRECISION NOT NULL,
      length_ratio DOUBLE PRECISION NOT NULL,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS polygon_mesh_map (
      id SERIAL PRIMARY KEY,
      source_layer TEXT NOT NULL,
      feature_id INTEGER NOT NULL
        REFERENCES polygon_features (id) ON DELETE CASCADE,
      mesh_id TEXT NOT NULL
        REFERENCES mesh_index (mesh_id) ON DELETE CASCADE,
      geometry JSONB NOT NULL,
      properties JSONB NOT NULL DEFAULT '{}'::jsonb,
      area_m2 DOUBLE PRECISION NOT NULL,
      area_ratio DOUBLE PRECISION NOT NULL,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS layer_registry (
      layer_name TEXT PRIMARY KEY,
      table_name TEXT NOT NULL,
      geometry_type TEXT NOT NULL,
      mesh_map_table TEXT,
      source_file TEXT NOT NULL,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS point_features_mesh_id_idx
      ON point_features (mesh_id);
    CREATE INDEX IF NOT EXISTS point_features_source_layer_idx
      ON point_features (source_layer);
    CREATE INDEX IF NOT EXISTS line_features_source_layer_idx
      ON line_features (source_layer);
    CREATE INDEX IF NOT EXISTS polygon_features_source_layer_idx
      ON polygon_features (source_layer);
    CREATE INDEX IF NOT EXISTS line_mesh_map_mesh_id_idx
      ON line_mesh_map (mesh_id);
    CREATE INDEX IF NOT EXISTS line_mesh_map_source_layer_idx
      ON line_mesh_map (source_layer);
    CREATE INDEX IF NOT EXISTS polygon_mesh_map_mesh_id_idx
      ON polygon_mesh_map (mesh_id);
    CREATE INDEX IF NOT EXISTS polygon_mesh_map_source_layer_idx
      ON polygon_mesh_map (source_layer);
    CREATE INDEX IF NOT EXISTS layer_registry_source_file_idx
      ON layer_registry (source_file);
    """

    LAYER_TABLE_SQL = sql.SQL(
        """
        CREATE TABLE IF NOT EXISTS {table} (
          id SERIAL PRIMARY KEY,
          mesh_id TEXT NOT NULL,
          geometry JSONB NOT NULL,
          properties JSONB NOT NULL DEFAULT '{{}}'::jsonb,
          created_at TIMESTAMPTZ DEFAULT now()
        )
        """
    )

    MESH_MAP_TABLE_SQL = sql.SQL(
        """
        CREATE TABLE IF NOT EXISTS {table} (
          id SERIAL PRIMARY KEY,
          feature_id INTEGER NOT NULL
            REFERENCES {parent} (id) ON DELETE CASCADE,
          mesh_id TEXT NOT NULL,
          geometry JSONB NOT NULL,
          properties JSONB NOT NULL DEFAULT '{{}}'::jsonb,
          {measure} DOUBLE PRECISION NOT NULL,
          {ratio} DOUBLE PRECISION NOT NULL,
          created_at TIMESTAMPTZ DEFAULT now()
        )
        """
    )

    REFRESH_FLAGS_SQL = """
    UPDATE mesh_index
    SET has_points = EXISTS (
          SELECT 1 FROM point_features pf
          WHERE pf.mesh_id = mesh_index.mesh_id),
        has_lines = EXISTS (
          SELECT 1 FROM line_mesh_map lm
          WHERE lm.mesh_id = mesh_index.mesh_id),
        has_polygons = EXISTS (
          SELECT 1 FROM polygon_mesh_map pm
          WHERE pm.mesh_id = mesh_index.mesh_id),
        updated_at = now()
    WHERE mesh_id = ANY(%s)
    """

    RECONCILE_SQL = """
    UPDATE mesh_index
    SET has_points = false, has_lines = false, has_polygons = false,
        layer_presence = '{}'::jsonb, updated_at = now();
    UPDATE mesh_index m SET has_points = true
    FROM (SELECT DISTINCT mesh_id FROM point_features) s
    WHERE s.mesh_id = m.mesh_id;
    UPDATE mesh_index m SET has_lines = true
    FROM (SELECT DISTINCT mesh_id FROM line_mesh_map) s
    WHERE s.mesh_id = m.mesh_id;
    UPDATE mesh_index m SET has_polygons = true
    FROM (SELECT DISTINCT mesh_id FROM polygon_mesh_map) s
    WHERE s.mesh_id = m.mesh_id;
    UPDATE mesh_index m SET layer_presence = agg.presence
    FROM (
      SELECT mesh_id, jsonb_object_agg(source_layer, true) AS presence
      FROM (
        SELECT mesh_id, source_layer FROM point_features
        UNION
        SELECT mesh_id, source_layer FROM line_mesh_map
        UNION
        SELECT mesh_id, source_layer FROM polygon_mesh_map
      ) layers
      GROUP BY mesh_id
    ) agg
    WHERE agg.mesh_id = m.mesh_id;
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize the store and ensure the fixed schema exists.

        Args:
            settings: Application settings containing the database URL.
        """
        self.settings = settings
        self._conn: psycopg2.extensions.connection | None = None
        self._ensure_schema()

    def _connect(self) -> psycopg2.extensions.connection:
        try:
            return psycopg2.connect(self.settings.database_url)
        except psycopg2.Error as exc:
            raise errors.StoreError(f"Cannot connect: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(self.SCHEMA_SQL)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Share one connection for the block; commit or roll back at end."""
        if self._conn is not None:
            yield
            return

        conn = self._connect()
        self._conn = conn
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        else:
            try:
                conn.commit()
            except psycopg2.Error as exc:
                raise errors.StoreError(str(exc)) from exc
        finally:
            self._conn = None
            conn.close()

    @contextlib.contextmanager
    def _cursor(
        self,
        cursor_factory: type[psycopg2.extensions.cursor] | None = None,
    ) -> Iterator[psycopg2.extensions.cursor]:
        if self._conn is not None:
            try:
                with self._conn.cursor(cursor_factory=cursor_factory) as cur:
                    yield cur
            except psycopg2.Error as exc:
                raise errors.StoreError(str(exc)) from exc
            return

        conn = self._connect()
        try:
            with conn.cursor(cursor_factory=cursor_factory) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            raise errors.StoreError(str(exc)) from exc
        finally:
            conn.close()

    def get_layer(self, layer_name: str) -> db_models.LayerDefinition | None:
        with self._cursor(psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                "SELECT * FROM layer_registry WHERE layer_name = %s",
                (layer_name,),
            )
            row = cur.fetchone()
        return self._from_row(row) if row is not None else None

    def layers_for_source(
        self, source_file: str
    ) -> list[db_models.LayerDefinition]:
        with self._cursor(psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                "SELECT * FROM layer_registry WHERE source_file = %s "
                "ORDER BY layer_name",
                (source_file,),
            )
            return [self._from_row(row) for row in cur.fetchall()]

    def all_layers(self) -> Iterable[db_models.LayerDefinition]:
        with self._cursor(psycopg2.extras.RealDictCursor) as cur:
            cur.execute("SELECT * FROM layer_registry ORDER BY layer_name")
            return [self._from_row(row) for row in cur.fetchall()]

    def upsert_layer(
        self, layer: db_models.LayerDefinition
    ) -> db_models.LayerDefinition:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO layer_registry (
                    layer_name, table_name, geometry_type, mesh_map_table,
                    source_file, created_at
                ) VALUES (%(layer_name)s, %(table_name)s, %(geometry_type)s,
                    %(mesh_map_table)s, %(source_file)s, %(created_at)s)
                ON CONFLICT (layer_name) DO UPDATE SET
                    table_name = EXCLUDED.table_name,
                    geometry_type = EXCLUDED.geometry_type,
                    mesh_map_table = EXCLUDED.mesh_map_table,
                    source_file = EXCLUDED.source_file;
                """,
                self._to_row(layer),
            )
        return layer

    def delete_layer(self, layer_name: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM layer_registry WHERE layer_name = %s",
                (layer_name,),
            )

    def table_exists(self, table_name: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_name = %s
                """,
                (table_name,),
            )
            return cur.fetchone() is not None

    def create_layer_tables(self, layer: db_models.LayerDefinition) -> None:
        table = sql.Identifier(
            layer_catalog.validate_identifier(layer.table_name)
        )
        with self._cursor() as cur:
            cur.execute(self.LAYER_TABLE_SQL.format(table=table))
            if layer.mesh_map_table and layer.geometry_kind != "point":
                measure, ratio = db_models.MEASURE_COLUMNS[layer.geometry_kind]
                mesh_map = layer_catalog.validate_identifier(
                    layer.mesh_map_table
                )
                cur.execute(
                    self.MESH_MAP_TABLE_SQL.format(
                        table=sql.Identifier(mesh_map),
                        parent=table,
                        measure=sql.Identifier(measure),
                        ratio=sql.Identifier(ratio),
                    )
                )

    def drop_table(self, table_name: str) -> None:
        table = sql.Identifier(layer_catalog.validate_identifier(table_name))
        with self._cursor() as cur:
            cur.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(table))

    def clear_table(self, table_name: str) -> None:
        table = sql.Identifier(layer_catalog.validate_identifier(table_name))
        with self._cursor() as cur:
            cur.execute(sql.SQL("DELETE FROM {}").format(table))

    def delete_layer_rows(self, layer_name: str) -> None:
        with self._cursor() as cur:
            for table in [
                *db_models.MESH_MAP_TABLES.values(),
                *db_models.FEATURE_TABLES.values(),
            ]:
                cur.execute(
                    sql.SQL("DELETE FROM {} WHERE source_layer = %s").format(
                        sql.Identifier(table)
                    ),
                    (layer_name,),
                )

    def _insert(
        self,
        table: str,
        columns: list[str],
        values: list[tuple[Any, ...]],
        returning: bool,
    ) -> list[int]:
        if not values:
            return []
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES %s").format(
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
        )
        if returning:
            query = query + sql.SQL(" RETURNING id")
        with self._cursor() as cur:
            result = psycopg2.extras.execute_values(
                cur,
                query.as_string(cur),
                values,
                page_size=len(values),
                fetch=returning,
            )
        return [row[0] for row in result] if returning else []

    def insert_features(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.FeatureRow],
    ) -> list[int]:
        return self._insert(
            db_models.FEATURE_TABLES[kind],
            ["source_layer", "mesh_id", "geometry", "properties"],
            [
                (
                    row.source_layer,
                    row.mesh_id,
                    psycopg2.extras.Json(row.geometry),
                    psycopg2.extras.Json(row.properties),
                )
                for row in rows
            ],
            returning=True,
        )

    def insert_pieces(
        self,
        kind: db_models.GeometryKind,
        rows: list[db_models.PieceRow],
    ) -> None:
        measure, ratio = db_models.MEASURE_COLUMNS[kind]
        self._insert(
            db_models.MESH_MAP_TABLES[kind],
            [
                "source_layer",
                "feature_id",
                "mesh_id",
                "geometry",
                "properties",
                measure,
                ratio,
            ],
            [
                (
                    row.source_layer,
                    row.feature_id,
                    row.mesh_id,
                    psycopg2.extras.Json(row.geometry),
                    psycopg2.extras.Json(row.properties),
                    row.measure,
                    row.ratio,
                )
                for row in rows
            ],
            returning=False,
        )

    def insert_layer_features(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.FeatureRow],
    ) -> list[int]:
        return self._insert(
            layer_catalog.validate_identifier(layer.table_name),
            ["mesh_id", "geometry", "properties"],
            [
                (
                    row.mesh_id,
                    psycopg2.extras.Json(row.geometry),
                    psycopg2.extras.Json(row.properties),
                )
                for row in rows
            ],
            returning=True,
        )

    def insert_layer_pieces(
        self,
        layer: db_models.LayerDefinition,
        rows: list[db_models.PieceRow],
    ) -> None:
        if layer.mesh_map_table is None:
            raise errors.StoreError(f"layer {layer.layer_name} has no mesh map")
        measure, ratio = db_models.MEASURE_COLUMNS[layer.geometry_kind]
        self._insert(
            layer_catalog.validate_identifier(layer.mesh_map_table),
            ["feature_id", "mesh_id", "geometry", "properties", measure, ratio],
            [
                (
                    row.feature_id,
                    row.mesh_id,
                    psycopg2.extras.Json(row.geometry),
                    psycopg2.extras.Json(row.properties),
                    row.measure,
                    row.ratio,
                )
                for row in rows
            ],
            returning=False,
        )

    def layer_mesh_ids(self, layer: db_models.LayerDefinition) -> set[str]:
        for table in (layer.mesh_map_table, layer.table_name):
            if table and self.table_exists(table):
                identifier = sql.Identifier(
                    layer_catalog.validate_identifier(table)
                )
                with self._cursor() as cur:
                    cur.execute(
                        sql.SQL("SELECT DISTINCT mesh_id FROM {}").format(
                            identifier
                        )
                    )
                    return {row[0] for row in cur.fetchall()}
        return set()

    def ensure_mesh_ids(self, mesh_ids: list[str]) -> None:
        if not mesh_ids:
            return
        with self._cursor() as cur:
            psycopg2.extras.execute_values(
                cur,
                "INSERT INTO mesh_index (mesh_id) VALUES %s "
                "ON CONFLICT (mesh_id) DO NOTHING",
                [(mesh_id,) for mesh_id in mesh_ids],
                page_size=len(mesh_ids),
            )

    def set_layer_presence(
        self, layer_name: str, mesh_ids: list[str], present: bool
    ) -> None:
        if not mesh_ids:
            return
        if present:
            query = (
                "UPDATE mesh_index SET layer_presence = layer_presence || "
                "jsonb_build_object(%s::text, true), updated_at = now() "
                "WHERE mesh_id = ANY(%s)"
            )
        else:
            query = (
                "UPDATE mesh_index SET layer_presence = layer_presence - "
                "%s::text, updated_at = now() WHERE mesh_id = ANY(%s)"
            )
        with self._cursor() as cur:
            cur.execute(query, (layer_name, list(mesh_ids)))

    def refresh_mesh_flags(self, mesh_ids: list[str]) -> None:
        if not mesh_ids:
            return
        with self._cursor() as cur:
            cur.execute(self.REFRESH_FLAGS_SQL, (list(mesh_ids),))

    def reconcile_mesh_index(self) -> int:
        with self._cursor() as cur:
            cur.execute(self.RECONCILE_SQL)
            cur.execute("SELECT count(*) FROM mesh_index")
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def get_mesh_entries(
        self, mesh_ids: list[str]
    ) -> list[db_models.MeshIndexEntry]:
        if not mesh_ids:
            return []
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT mesh_id, has_points, has_lines, has_polygons,
                       layer_presence
                FROM mesh_index WHERE mesh_id = ANY(%s)
                """,
                (list(mesh_ids),),
            )
            return [
                db_models.MeshIndexEntry(
                    mesh_id=row[0],
                    has_points=bool(row[1]),
                    has_lines=bool(row[2]),
                    has_polygons=bool(row[3]),
                    layer_presence=dict(row[4] or {}),
                )
                for row in cur.fetchall()
            ]

    def lookup_features(
        self,
        kind: db_models.GeometryKind,
        mesh_ids: list[str],
    ) -> list[db_models.MeshFeature]:
        if not mesh_ids:
            return []
        features = sql.Identifier(db_models.FEATURE_TABLES[kind])
        if kind == "point":
            query = sql.SQL(
                "SELECT f.id, f.mesh_id, f.source_layer, f.geometry, "
                "f.properties, NULL FROM {features} f "
                "WHERE f.mesh_id = ANY(%s) ORDER BY f.id"
            ).format(features=features)
        else:
            _, ratio = db_models.MEASURE_COLUMNS[kind]
            query = sql.SQL(
                "SELECT f.id, m.mesh_id, f.source_layer, f.geometry, "
                "f.properties, m.{ratio} FROM {mesh_map} m "
                "JOIN {features} f ON f.id = m.feature_id "
                "WHERE m.mesh_id = ANY(%s) ORDER BY f.id, m.id"
            ).format(
                ratio=sql.Identifier(ratio),
                mesh_map=sql.Identifier(db_models.MESH_MAP_TABLES[kind]),
                features=features,
            )
        with self._cursor() as cur:
            cur.execute(query, (list(mesh_ids),))
            return [
                db_models.MeshFeature(
                    id=int(row[0]),
                    mesh_id=row[1],
                    source_layer=row[2],
                    geometry=row[3],
                    properties=row[4] or {},
                    ratio=float(row[5]) if row[5] is not None else None,
                )
                for row in cur.fetchall()
            ]

    @staticmethod
    def _to_row(layer: db_models.LayerDefinition) -> dict[str, object]:
        """Convert a LayerDefinition to a parameter dictionary."""
        return {
            "layer_name": layer.layer_name,
            "table_name": layer.table_name,
            "geometry_type": layer.geometry_kind,
            "mesh_map_table": layer.mesh_map_table,
            "source_file": layer.source_file,
            "created_at": layer.created_at,
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.LayerDefinition:
        """Convert a layer_registry row to a LayerDefinition."""
        mesh_map_value = row.get("mesh_map_table")
        created_at_value = row.get("created_at")
        created_at = (
            cast(datetime.datetime, created_at_value)
            if created_at_value is not None
            else datetime.datetime.now(datetime.UTC)
        )
        return db_models.LayerDefinition(
            layer_name=str(row["layer_name"]),
            table_name=str(row["table_name"]),
            geometry_kind=cast(
                db_models.GeometryKind, str(row["geometry_type"])
            ),
            mesh_map_table=(
                str(mesh_map_value) if mesh_map_value is not None else None
            ),
            source_file=str(row["source_file"]),
            created_at=created_at,
        )


def get_mesh_store(settings: config.Settings) -> MeshStoreProtocol:
    """Factory function to create a mesh store.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresMeshStore instance for production use.
    """
    return PostgresMeshStore(settings)
