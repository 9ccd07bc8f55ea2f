from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ImporterConfig:
    database_url: str = "sqlite+pysqlite:///./data/recipes.db"
    text_extractor: str = "pypdf"
    perform_ocr: bool = False
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.1
    fuzzy_threshold: float = 0.3
    replay_depth: int = 1
    closed_channel_ttl: float = 300.0
    parallel_resolution: bool = False
    resolution_workers: int = 4
    job_workers: int = 4
    sse_heartbeat_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "ImporterConfig":
        """
        Build a config from environment variables, falling back to the dataclass defaults.
        """
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            text_extractor=os.getenv("TEXT_EXTRACTOR", defaults.text_extractor).strip().lower(),
            perform_ocr=_env_bool("PERFORM_OCR", defaults.perform_ocr),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            openai_temperature=float(os.getenv("OPENAI_TEMPERATURE", str(defaults.openai_temperature))),
            fuzzy_threshold=float(os.getenv("FUZZY_MATCH_THRESHOLD", str(defaults.fuzzy_threshold))),
            replay_depth=int(os.getenv("EVENT_REPLAY_DEPTH", str(defaults.replay_depth))),
            closed_channel_ttl=float(os.getenv("CLOSED_CHANNEL_TTL_SECONDS", str(defaults.closed_channel_ttl))),
            parallel_resolution=_env_bool("PARALLEL_RESOLUTION", defaults.parallel_resolution),
            resolution_workers=int(os.getenv("RESOLUTION_WORKERS", str(defaults.resolution_workers))),
            job_workers=int(os.getenv("JOB_WORKERS", str(defaults.job_workers))),
            sse_heartbeat_seconds=float(os.getenv("SSE_HEARTBEAT_SECONDS", str(defaults.sse_heartbeat_seconds))),
        )
