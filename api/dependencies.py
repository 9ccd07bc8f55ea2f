from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from sqlalchemy.engine import make_url

from recipe_importer.importing import (
    ExtractionGateway,
    ImporterConfig,
    IngredientResolver,
    JobEventBus,
    JobOrchestrator,
    RecipeRepository,
    SqlAlchemyRecipeRepository,
    build_extraction_gateway,
)


@lru_cache(maxsize=1)
def get_config() -> ImporterConfig:
    return ImporterConfig.from_env()


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_repo() -> RecipeRepository:
    config = get_config()
    _ensure_sqlite_dir(config.database_url)
    return SqlAlchemyRecipeRepository(config.database_url)


@lru_cache(maxsize=1)
def get_event_bus() -> JobEventBus:
    config = get_config()
    return JobEventBus(replay_depth=config.replay_depth, closed_channel_ttl=config.closed_channel_ttl)


@lru_cache(maxsize=1)
def get_gateway() -> ExtractionGateway:
    return build_extraction_gateway(get_config())


@lru_cache(maxsize=1)
def get_resolver() -> IngredientResolver:
    return IngredientResolver(get_repo(), threshold=get_config().fuzzy_threshold)


@lru_cache(maxsize=1)
def get_orchestrator() -> JobOrchestrator:
    config = get_config()
    return JobOrchestrator(
        repository=get_repo(),
        gateway=get_gateway(),
        event_bus=get_event_bus(),
        resolver=get_resolver(),
        parallel_resolution=config.parallel_resolution,
        resolution_workers=config.resolution_workers,
        job_workers=config.job_workers,
    )
