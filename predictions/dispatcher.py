"""
Prediction Dispatcher

Orchestrates one prediction request:

    validate features → resolve algorithm → execute backend
        → validate labels (explicit path) → persist → publish → return

BOUNDARY ENFORCEMENT:
=====================
- Every failure is returned as Result.failure with the stage reached
- The resolved Algorithm is captured once; later project changes do not
  affect an in-flight request
- Publication is detached and best-effort; it never alters the result
- asyncio.CancelledError propagates untouched
"""

from __future__ import annotations
from enum import Enum
from typing import Optional, Set
import asyncio
import logging

from .backends import BackendAdapter
from .config import DispatchConfig
from .contracts import Algorithm, Features, Prediction, Project
from .errors import Error, ErrorCode, Result
from .policy import RandomSource, SystemRandomSource, select_algorithm
from .publisher import PredictionPublisher
from .storage import PredictionsRepository
from .validation import validate_features, validate_labels

logger = logging.getLogger(__name__)


class DispatchStage(Enum):
    RECEIVED = "received"
    INPUT_VALIDATED = "input_validated"
    ALGORITHM_RESOLVED = "algorithm_resolved"
    BACKEND_EXECUTED = "backend_executed"
    OUTPUT_VALIDATED = "output_validated"
    PERSISTED = "persisted"
    PUBLISHED = "published"
    COMPLETED = "completed"
    FAILED = "failed"


class PredictionDispatcher:
    """
    Stateless across requests except for the set of in-flight publish tasks.
    """

    def __init__(
        self,
        repository: PredictionsRepository,
        publisher: Optional[PredictionPublisher] = None,
        config: Optional[DispatchConfig] = None,
        adapter: Optional[BackendAdapter] = None,
        random_source: Optional[RandomSource] = None
    ):
        self._config = config or DispatchConfig()
        self._repository = repository
        self._publisher = publisher
        self._adapter = adapter or BackendAdapter(timeout_seconds=self._config.remote_timeout_seconds)
        self._random = random_source or SystemRandomSource()
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_publications(self) -> int:
        return len(self._pending)

    def _fail(self, stage: DispatchStage, error: Error) -> Result[Prediction]:
        logger.info(
            "Dispatch rejected at %s: %s (%s)",
            stage.value, error.code.value, error.message
        )
        return Result.failure(error.with_context("stage", stage.value))

    async def predict(
        self,
        features: Features,
        project: Project,
        algorithm_id: Optional[str] = None
    ) -> Result[Prediction]:
        """Run a single prediction against `project`."""
        stage = DispatchStage.RECEIVED
        configuration = project.configuration

        if not validate_features(configuration.features_class, configuration.features_size, features):
            return self._fail(stage, Error.create(
                ErrorCode.FEATURES_VALIDATION_FAILED,
                f"Features do not match {configuration.features_class.value} "
                f"of size {configuration.features_size}",
                project_id=project.project_id
            ))
        stage = DispatchStage.INPUT_VALIDATED

        resolved = self._resolve(project, algorithm_id)
        if resolved.is_failure:
            return self._fail(stage, resolved.error)
        algorithm: Algorithm = resolved.value
        stage = DispatchStage.ALGORITHM_RESOLVED

        executed = await self._adapter.execute(algorithm, project.project_id, features)
        if executed.is_failure:
            return self._fail(stage, executed.error)
        prediction: Prediction = executed.value
        stage = DispatchStage.BACKEND_EXECUTED

        if algorithm_id is not None:
            if not validate_labels(configuration.labels, prediction.labels):
                return self._fail(stage, Error.create(
                    ErrorCode.LABELS_VALIDATION_FAILED,
                    f"Algorithm {algorithm.algorithm_id} produced labels "
                    f"{sorted(prediction.labels.label_names())}, expected "
                    f"{sorted(configuration.labels)}",
                    project_id=project.project_id,
                    algorithm_id=algorithm.algorithm_id
                ))
            stage = DispatchStage.OUTPUT_VALIDATED

        persisted = await self._persist(prediction)
        if persisted is not None:
            return self._fail(stage, persisted)
        stage = DispatchStage.PERSISTED

        if self._config.publish_enabled and self._publisher is not None:
            self._schedule_publication(prediction)
            stage = DispatchStage.PUBLISHED

        logger.debug(
            "Prediction %s %s after %s",
            prediction.prediction_id, DispatchStage.COMPLETED.value, stage.value
        )
        return Result.success(prediction)

    def _resolve(self, project: Project, algorithm_id: Optional[str]) -> Result[Algorithm]:
        algorithms = project.algorithms_map

        if algorithm_id is not None:
            algorithm = algorithms.get(algorithm_id)
            if algorithm is None:
                return Result.fail(
                    ErrorCode.INVALID_ARGUMENT,
                    f"Algorithm {algorithm_id} is not registered in project {project.project_id}",
                    project_id=project.project_id,
                    algorithm_id=algorithm_id
                )
            return Result.success(algorithm)

        selected = select_algorithm(project.policy, project.algorithm_ids, self._random)
        algorithm = algorithms.get(selected) if selected is not None else None
        if algorithm is None:
            return Result.fail(
                ErrorCode.NO_ALGORITHM_AVAILABLE,
                f"Policy {type(project.policy).__name__} selected no available "
                f"algorithm for project {project.project_id}",
                project_id=project.project_id
            )
        return Result.success(algorithm)

    async def _persist(self, prediction: Prediction) -> Optional[Error]:
        try:
            write = await asyncio.to_thread(self._repository.insert_prediction, prediction)
        except Exception as e:
            logger.error("Persisting prediction %s raised: %s", prediction.prediction_id, e)
            return Error.create(
                ErrorCode.PERSISTENCE_ERROR,
                f"Failed to persist prediction: {e}",
                prediction_id=prediction.prediction_id
            )

        if not write.success:
            logger.error("Persisting prediction %s failed: %s", prediction.prediction_id, write.error)
            return Error.create(
                ErrorCode.PERSISTENCE_ERROR,
                write.error or "Repository rejected the prediction",
                prediction_id=prediction.prediction_id
            )
        return None

    # =========================================================================
    # PUBLICATION (detached)
    # =========================================================================

    def _schedule_publication(self, prediction: Prediction) -> None:
        task = asyncio.create_task(self._publisher.publish(
            prediction,
            self._config.predictions_stream,
            prediction.project_id
        ))
        self._pending.add(task)
        task.add_done_callback(self._publication_done)

    def _publication_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Publishing prediction failed: %s", exc)

    async def drain(self) -> None:
        """Wait for every outstanding publication to finish."""
        while self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)
