#!/usr/bin/env python3
"""
CLI tool that backfills embeddings for schema descriptors that have none.
"""

import argparse
import sys
import logging
from typing import Dict, List, Optional

import psycopg2

from semantic_pg.core.config import ConfigService, load_config
from semantic_pg.core.database import DatabaseService
from semantic_pg.core.embeddings import EmbeddingService, OpenAIEmbedder
from semantic_pg.core.metadata import MetadataStore, PostgresMetadataStore, embedding_text
from semantic_pg.core.models import EmbeddingError, EntityKind

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def create_argument_parser():
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Generate embeddings for table and column metadata that is missing one",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Embed every table and column descriptor without an embedding
  semantic-pg-backfill --kind all

  # Embed at most 100 column descriptors, 20 per API call
  semantic-pg-backfill --kind column --limit 100 --batch-size 20

  # Show what would be embedded
  semantic-pg-backfill --dry-run
        """
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file (JSON format)"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--kind",
        choices=["table", "column", "all"],
        default="all",
        help="Which descriptors to embed (default: all)"
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Batch size for embedding calls (overrides config)"
    )

    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of descriptors to process per kind"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without actually doing it"
    )

    return parser


def validate_arguments(args) -> List[str]:
    """Validate command line arguments."""
    errors = []
    if args.batch_size is not None and args.batch_size <= 0:
        errors.append("Batch size must be positive")
    if args.limit is not None and args.limit <= 0:
        errors.append("Limit must be positive")
    return errors


def selected_kinds(kind: str) -> List[EntityKind]:
    if kind == "all":
        return [EntityKind.TABLE, EntityKind.COLUMN]
    return [EntityKind(kind)]


def backfill(
    store: MetadataStore,
    embedder: EmbeddingService,
    kind: EntityKind,
    batch_size: int = 50,
    limit: Optional[int] = None,
    dry_run: bool = False
) -> int:
    """
    Embed descriptors of one kind that have no embedding yet.

    Args:
        store: Metadata store to read from and write to
        embedder: Embedding service
        kind: Tables or columns
        batch_size: Texts per embedding call
        limit: Maximum descriptors to process
        dry_run: Only report what would be embedded

    Returns:
        Number of embeddings written (or that would be written)
    """
    pending = store.missing_embeddings(kind, limit)
    if not pending:
        logger.info(f"No {kind.value} metadata to embed")
        return 0

    logger.info(f"Found {len(pending)} {kind.value} metadata records to embed")
    if dry_run:
        for entity in pending:
            logger.info(f"Would embed {entity.qualified_name}")
        return len(pending)

    updated = 0
    for i in range(0, len(pending), batch_size):
        batch = pending[i:i + batch_size]
        embeddings = embedder.generate_embeddings([embedding_text(e) for e in batch], batch_size)
        for entity, embedding in zip(batch, embeddings):
            if not embedding or not any(embedding):
                logger.warning(f"Skipping zero embedding for {entity.qualified_name}")
                continue
            store.update_embedding(kind, entity.id, embedding)
            updated += 1
            logger.info(f"Updated embedding for {entity.qualified_name}")
        logger.debug(f"Embedded batch {i//batch_size + 1}: {len(batch)} descriptors")

    return updated


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    errors = validate_arguments(args)
    if errors:
        for error in errors:
            logger.error(error)
        return 1

    config = load_config(args.config) if args.config else ConfigService(setup_logging=False)
    batch_size = args.batch_size or config.embedding.batch_size

    try:
        with DatabaseService.from_config(config) as db_service:
            store = PostgresMetadataStore.from_config(db_service, config)
            embedder = OpenAIEmbedder.from_config(config)

            results: Dict[str, int] = {}
            for kind in selected_kinds(args.kind):
                results[kind.value] = backfill(
                    store, embedder, kind,
                    batch_size=batch_size,
                    limit=args.limit,
                    dry_run=args.dry_run
                )
    except KeyboardInterrupt:
        logger.warning("Embedding backfill interrupted by user")
        return 1
    except (EmbeddingError, ValueError, psycopg2.Error) as e:
        logger.error(f"Embedding backfill failed: {e}")
        return 1

    verb = "would embed" if args.dry_run else "embedded"
    for kind, count in results.items():
        logger.info(f"{kind.title()}: {verb} {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
