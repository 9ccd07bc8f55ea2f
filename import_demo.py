"""
Run the import pipeline on a local PDF and print the event feed.

Usage:
    python import_demo.py meal-plan.pdf --batch
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from recipe_importer.importing import (
    ImporterConfig,
    IngredientResolver,
    JobEventBus,
    JobOrchestrator,
    SqlAlchemyRecipeRepository,
    build_extraction_gateway,
)
from recipe_importer.logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("pdf", type=Path, help="PDF document to import")
    parser.add_argument("--batch", action="store_true", help="Create one recipe per recipe found in the document")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level into ./logs as well")
    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.debug else logging.INFO, log_dir=Path("./logs") if args.debug else None)

    config = ImporterConfig.from_env()
    Path("./data").mkdir(exist_ok=True)
    repo = SqlAlchemyRecipeRepository(config.database_url)
    bus = JobEventBus(replay_depth=config.replay_depth, closed_channel_ttl=config.closed_channel_ttl)
    orchestrator = JobOrchestrator(
        repository=repo,
        gateway=build_extraction_gateway(config),
        event_bus=bus,
        resolver=IngredientResolver(repo, threshold=config.fuzzy_threshold),
        parallel_resolution=config.parallel_resolution,
        resolution_workers=config.resolution_workers,
        job_workers=config.job_workers,
    )

    payload = args.pdf.read_bytes()
    if args.batch:
        job_id = orchestrator.submit_batch(payload, args.pdf.name)
    else:
        job_id = orchestrator.submit(payload, args.pdf.name)

    with bus.subscribe(job_id) as subscription:
        for event in subscription:
            print(json.dumps(event.to_dict(), indent=2, default=str))
    orchestrator.shutdown()
    print("finished")


if __name__ == "__main__":
    main()
