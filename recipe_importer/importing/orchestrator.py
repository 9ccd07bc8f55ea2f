from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional

from .engine import ExtractionGateway
from .errors import ExtractionFailure, InvalidStatusTransition, NotFound, ParseFailure, PipelineFailure, RecipeImportError
from .events import JobEventBus
from .models import JobEvent, JobEventType, ParsedRecipe, RecipeRecord, RecipeStatus, ResolvedIngredientLink
from .repository import RecipeRepository
from .resolver import IngredientResolver

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """
    Drives an upload through started -> extracting_text -> processing_ai ->
    saving_recipes -> finished | failed, publishing one event per step.

    Jobs run on a pool of `job_workers` threads. Every failure is captured,
    recorded and published as a `failed` event; the job's event channel is
    completed on every exit path so observers never hang.
    """

    def __init__(
        self,
        repository: RecipeRepository,
        gateway: ExtractionGateway,
        event_bus: JobEventBus,
        resolver: Optional[IngredientResolver] = None,
        parallel_resolution: bool = False,
        resolution_workers: int = 4,
        job_workers: int = 4,
    ):
        self.repo = repository
        self.gateway = gateway
        self.bus = event_bus
        self.resolver = resolver or IngredientResolver(repository)
        self.parallel_resolution = parallel_resolution
        self.resolution_workers = resolution_workers
        self._executor = ThreadPoolExecutor(max_workers=max(1, job_workers), thread_name_prefix="recipe-import")
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    # region Job submission
    def submit(self, document_bytes: bytes, filename: str) -> str:
        """
        Start a single-recipe job. The placeholder recipe's id doubles as the job id.
        """
        recipe = self.repo.create_empty()
        job_id = recipe.id
        self.bus.open(job_id)
        self._spawn(job_id, self.run_job, document_bytes, filename, job_id)
        return job_id

    def submit_batch(self, document_bytes: bytes, filename: str) -> str:
        job_id = f"batch-{uuid.uuid4().hex}"
        self.bus.open(job_id)
        self._spawn(job_id, self.run_batch_job, document_bytes, filename, job_id)
        return job_id

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """
        Block until the job finishes. Returns False if it is still running when the timeout elapses.
        """
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is None:
            return True
        try:
            future.result(timeout)
        except FutureTimeoutError:
            return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down recipe import workers")
        self._executor.shutdown(wait=wait)

    def _spawn(self, job_id: str, target, *args) -> None:
        future = self._executor.submit(target, *args)
        with self._futures_lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _: self._forget(job_id))

    def _forget(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    # endregion

    # region Pipelines
    def run_job(self, document_bytes: bytes, filename: str, job_id: str) -> Optional[RecipeRecord]:
        logger.info("Starting recipe import job %s for %s", job_id, filename)
        try:
            parsed = self._extract_and_parse(job_id, document_bytes, filename)
            if len(parsed) > 1:
                logger.warning("Job %s parsed %s recipes; keeping the first one", job_id, len(parsed))
            recipe_data = parsed[0]

            self._publish(job_id, JobEventType.SAVING_RECIPES, {"count": 1})
            links = self.resolver.resolve_all(recipe_data.ingredients)
            recipe = self.repo.complete_recipe(job_id, recipe_data.fields(), links, recipe_data.instructions)

            self._publish(
                job_id,
                JobEventType.FINISHED,
                {"recipeId": recipe.id, "recipeIds": [recipe.id], "recipe": recipe.to_payload()},
            )
            logger.info("Successfully finished recipe import job %s", job_id)
            return recipe
        except Exception as exc:  # noqa: BLE001
            failure = self._as_failure(exc)
            message = str(failure) or type(failure).__name__
            logger.exception("Recipe import job %s failed: %s", job_id, message)
            self._publish(job_id, JobEventType.FAILED, {"error": message, "errorType": type(failure).__name__})
            self._record_failure(job_id, message)
            return None
        finally:
            logger.info("Completing event stream for job %s", job_id)
            self.bus.complete(job_id)

    def run_batch_job(self, document_bytes: bytes, filename: str, job_id: str) -> List[RecipeRecord]:
        logger.info("Starting batch recipe import job %s for %s", job_id, filename)
        created: List[RecipeRecord] = []
        try:
            parsed = self._extract_and_parse(job_id, document_bytes, filename)

            self._publish(job_id, JobEventType.SAVING_RECIPES, {"count": len(parsed)})
            resolved = self._resolve_batch(parsed)
            for recipe_data, links in zip(parsed, resolved):
                created.append(self.repo.create_recipe(recipe_data.fields(), links, recipe_data.instructions))

            recipe_ids = [recipe.id for recipe in created]
            self._publish(job_id, JobEventType.FINISHED, {"recipeIds": recipe_ids, "count": len(recipe_ids)})
            logger.info("Batch job %s created %s recipe(s)", job_id, len(recipe_ids))
            return created
        except Exception as exc:  # noqa: BLE001
            failure = self._as_failure(exc)
            message = str(failure) or type(failure).__name__
            logger.exception("Batch recipe import job %s failed: %s", job_id, message)
            self._publish(
                job_id,
                JobEventType.FAILED,
                {
                    "error": message,
                    "errorType": type(failure).__name__,
                    "recipeIds": [recipe.id for recipe in created],
                },
            )
            return []
        finally:
            logger.info("Completing event stream for job %s", job_id)
            self.bus.complete(job_id)

    # endregion

    def _extract_and_parse(self, job_id: str, document_bytes: bytes, filename: str) -> List[ParsedRecipe]:
        self._publish(job_id, JobEventType.STARTED, {"filename": filename})

        self._publish(job_id, JobEventType.EXTRACTING_TEXT, {})
        try:
            text = self.gateway.extract_text(document_bytes)
        except RecipeImportError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ExtractionFailure(str(exc) or "Could not parse the document.") from exc

        self._publish(job_id, JobEventType.PROCESSING_AI, {})
        try:
            parsed = self.gateway.parse_recipes(text)
        except RecipeImportError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ParseFailure(str(exc) or "Failed to process recipe text with AI model.") from exc
        if not parsed:
            raise ParseFailure("No recipes were found in the document.")
        return parsed

    def _resolve_batch(self, parsed: List[ParsedRecipe]) -> List[List[ResolvedIngredientLink]]:
        if not self.parallel_resolution or len(parsed) < 2:
            return [self.resolver.resolve_all(recipe.ingredients) for recipe in parsed]
        workers = max(1, min(self.resolution_workers, len(parsed)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingredient-resolve") as pool:
            return list(pool.map(lambda recipe: self.resolver.resolve_all(recipe.ingredients), parsed))

    def _publish(self, job_id: str, event_type: JobEventType, payload: Dict[str, Any]) -> None:
        self.bus.publish(job_id, JobEvent(type=event_type, payload=payload))

    def _record_failure(self, job_id: str, message: str) -> None:
        try:
            self.repo.update_status(job_id, RecipeStatus.FAILED, error_message=message)
        except (NotFound, InvalidStatusTransition) as exc:
            logger.error("Could not mark recipe %s as failed: %s", job_id, exc)

    @staticmethod
    def _as_failure(exc: Exception) -> RecipeImportError:
        if isinstance(exc, RecipeImportError):
            return exc
        return PipelineFailure(str(exc) or type(exc).__name__)
