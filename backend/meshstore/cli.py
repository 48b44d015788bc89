"""Command line entry points.

Usage:
    python -m meshstore ingest [DATA_DIR] [--prune] [--max-cells N]
    python -m meshstore reconcile

``ingest`` processes every GeoJSON file in DATA_DIR (default: the
``DATA_DIR`` setting) and exits with status 1 if any file failed with a
store error. ``reconcile`` rebuilds the mesh presence index from the
feature tables.
"""

from __future__ import annotations

import argparse
import logging
import pathlib
from collections.abc import Callable
from typing import TYPE_CHECKING

from meshstore.core import config, errors, logging_config
from meshstore.db import database
from meshstore.services import ingest_layers, mesh_presence

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

StoreFactory = Callable[[config.Settings], database.MeshStoreProtocol]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meshstore",
        description="Mesh-indexed GeoJSON layer store",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL setting)",
    )
    parser.add_argument("--log-file", default=None, help="Also log to file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser(
        "ingest", help="Ingest a directory of GeoJSON files"
    )
    ingest.add_argument(
        "data_dir",
        nargs="?",
        type=pathlib.Path,
        default=None,
        help="Directory of .geojson/.json files (default: DATA_DIR setting)",
    )
    ingest.add_argument(
        "--prune",
        action="store_true",
        help="Remove layers whose source file is no longer present",
    )
    ingest.add_argument(
        "--max-cells",
        type=int,
        default=None,
        help="Maximum mesh cells per feature (0 disables the guard)",
    )

    subparsers.add_parser(
        "reconcile", help="Rebuild the mesh presence index from stored rows"
    )
    return parser


def run_ingest(
    args: argparse.Namespace,
    settings: config.Settings,
    store: database.MeshStoreProtocol,
) -> int:
    if args.max_cells is not None:
        settings = settings.model_copy(
            update={"max_mesh_cells_per_feature": args.max_cells}
        )
    data_dir = args.data_dir or settings.data_dir
    pipeline = ingest_layers.LayerIngestionPipeline.from_settings(
        store, settings
    )
    try:
        report = pipeline.ingest_directory(data_dir, prune=args.prune)
    except errors.InputError as exc:
        logger.error("%s", exc)
        return 1

    for status in ("ingested", "removed", "skipped", "failed"):
        outcomes = report.by_status(status)
        if outcomes:
            logger.info(
                "%s: %s",
                status,
                ", ".join(outcome.source_file for outcome in outcomes),
            )
    if report.ok:
        logger.info("GeoJSON ingest complete.")
        return 0
    logger.error("GeoJSON ingest finished with failures.")
    return 1


def run_reconcile(
    args: argparse.Namespace,
    settings: config.Settings,
    store: database.MeshStoreProtocol,
) -> int:
    del args
    index = mesh_presence.MeshPresenceIndex(store, settings.insert_chunk_size)
    index.reconcile()
    return 0


_COMMANDS = {
    "ingest": run_ingest,
    "reconcile": run_reconcile,
}


def main(
    argv: Sequence[str] | None = None,
    store_factory: StoreFactory = database.get_mesh_store,
) -> int:
    """Run the command line and return the process exit status."""
    args = build_parser().parse_args(argv)
    settings = config.get_settings()
    logging_config.setup_logging(
        (args.log_level or settings.log_level).upper(), args.log_file
    )
    try:
        store = store_factory(settings)
        return _COMMANDS[args.command](args, settings, store)
    except errors.StoreError as exc:
        logger.error("Store failure: %s", exc)
        return 1
