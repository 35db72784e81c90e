"""
Pipeline wiring and command-line entry point.

build_pipeline() assembles the collaborators from configuration:

    store       PostgresMeasurementStore(settings.database_url)
    storage     LocalObjectStorage(settings.storage_root)
    provider    create_embedding_provider(config.embedding)
    worker      EmbeddingWorker(store, provider)
    trigger     EmbedTrigger(InlineDispatcher(worker))
    coordinator IngestionCoordinator(store, storage, on_batch_committed=trigger)
    search      SimilaritySearch(store, provider)

Any collaborator can be passed in instead; tests use the in-memory store.

Usage:
    sensorlog init-db
    sensorlog process 42
    sensorlog search "psu input power" --threshold 0.8
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from typing import List, Optional

from sensorlog.ingestion.coordinator import IngestionCoordinator
from sensorlog.ingestion.embed_worker import EmbeddingWorker
from sensorlog.ingestion.triggers import (
    EmbedTrigger,
    InlineDispatcher,
    handle_process_request,
)
from sensorlog.providers.embeddings import create_embedding_provider
from sensorlog.query.similarity import SimilaritySearch
from sensorlog.shared.config import (
    Config,
    Settings,
    get_config,
    get_settings,
    init_config,
)
from sensorlog.shared.observability import get_logger, setup_logging
from sensorlog.storage.objects import LocalObjectStorage
from sensorlog.storage.postgres import PostgresMeasurementStore

logger = get_logger(__name__)


@dataclass
class Pipeline:
    """The wired collaborators of one process."""

    config: Config
    store: object
    storage: object
    provider: object
    worker: EmbeddingWorker
    trigger: EmbedTrigger
    coordinator: IngestionCoordinator
    search: SimilaritySearch


def build_pipeline(
    config: Optional[Config] = None,
    settings: Optional[Settings] = None,
    store=None,
    storage=None,
    provider=None,
) -> Pipeline:
    """
    Assemble store, storage, provider, worker, trigger, coordinator and search.

    Args:
        config: Config (defaults to the global config)
        settings: Settings (defaults to the global settings)
        store: MeasurementStore; Postgres at settings.database_url if omitted
        storage: ObjectStorage; a directory at settings.storage_root if omitted
        provider: EmbeddingProvider; built from config.embedding if omitted
    """
    config = config or get_config()
    settings = settings or get_settings()

    if store is None:
        store = PostgresMeasurementStore(
            settings.database_url,
            summary_dims=config.ingestion.summary_dims,
            embedding_dims=config.embedding.dims,
        )
    if storage is None:
        storage = LocalObjectStorage(settings.storage_root)
    if provider is None:
        provider = create_embedding_provider(config.embedding)

    worker = EmbeddingWorker(store, provider, config=config)
    trigger = EmbedTrigger(InlineDispatcher(worker), config=config)
    coordinator = IngestionCoordinator(
        store,
        storage=storage,
        config=config,
        on_batch_committed=trigger.on_batch_committed,
    )
    search = SimilaritySearch(store, provider, config=config)

    logger.info(
        "pipeline_built",
        env=settings.env,
        store=type(store).__name__,
        storage=type(storage).__name__,
        provider=type(provider).__name__,
    )
    return Pipeline(
        config=config,
        store=store,
        storage=storage,
        provider=provider,
        worker=worker,
        trigger=trigger,
        coordinator=coordinator,
        search=search,
    )


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sensorlog",
        description="Ingest sensor logs, embed measurements and search them",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create tables and vector indexes")

    process = commands.add_parser("process", help="Ingest the file behind a log record")
    process.add_argument("measurement_id", type=int)

    search = commands.add_parser("search", help="Rank measurements against a text")
    search.add_argument("text")
    search.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum similarity, exclusive (default: config search.match_threshold)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Load configuration, set up logging, build the pipeline and run one command."""
    args = _parse_args(argv)

    config, settings = init_config()
    setup_logging(settings.log_level)

    try:
        if args.command == "init-db":
            PostgresMeasurementStore(
                settings.database_url,
                create_schema=True,
                summary_dims=config.ingestion.summary_dims,
                embedding_dims=config.embedding.dims,
            )
            logger.info("schema_ready", database=settings.database_url.rsplit("@", 1)[-1])
            return 0

        pipeline = build_pipeline(config, settings)

        if args.command == "process":
            response = handle_process_request(
                {"measurement_id": args.measurement_id}, pipeline.coordinator
            )
            outcome = {"status": response.status, "error": response.error}
            print(json.dumps({**outcome, **response.details}))
            return 0 if response.ok else 1

        hits = pipeline.search.search_text(args.text, args.threshold)
        for hit in hits:
            print(json.dumps({"id": hit.id, "similarity": round(hit.similarity, 6)}))
        return 0

    except Exception as e:
        logger.error("command_failed", command=args.command, error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
