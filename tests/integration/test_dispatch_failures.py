"""
Dispatch Failure Mode Tests

AXIOM UNDER TEST:
=================
Every failure surfaces as a typed ErrorCode, recorded with the stage
reached, and rejected requests never write a prediction.
"""

import asyncio

import httpx
import pytest

from predictions.backends import BackendAdapter
from predictions.config import DispatchConfig
from predictions.contracts import DefaultAlgorithm, FeatureClass, Features, NoAlgorithm
from predictions.dispatcher import DispatchStage, PredictionDispatcher
from predictions.errors import ErrorCode
from predictions.storage import InMemoryRepository

from .fixtures import (
    WRONG_LABELS,
    ExplodingRepository,
    FailingPublisher,
    RecordingHandler,
    RejectingRepository,
    create_project,
    create_project_default,
    double_features,
    local_algorithm,
    remote_algorithm,
)


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# INPUT VALIDATION
# =============================================================================

class TestFeatureValidation:

    @pytest.fixture
    def repository(self):
        return InMemoryRepository()

    def test_wrong_size_rejected(self, repository):
        dispatcher = PredictionDispatcher(repository)

        result = run(dispatcher.predict(double_features(1.0, 2.0), create_project_default()))

        assert result.error.code == ErrorCode.FEATURES_VALIDATION_FAILED
        assert result.error.context_value("stage") == DispatchStage.RECEIVED.value
        assert repository.prediction_count() == 0

    def test_wrong_type_rejected(self, repository):
        dispatcher = PredictionDispatcher(repository)
        features = Features.of(["a", "b", "c"], FeatureClass.STRING)

        result = run(dispatcher.predict(features, create_project_default()))

        assert result.error.code == ErrorCode.FEATURES_VALIDATION_FAILED
        assert repository.prediction_count() == 0


# =============================================================================
# ALGORITHM RESOLUTION
# =============================================================================

class TestAlgorithmResolution:

    @pytest.fixture
    def repository(self):
        return InMemoryRepository()

    def test_unknown_explicit_id_is_invalid_argument(self, repository):
        dispatcher = PredictionDispatcher(repository)

        result = run(dispatcher.predict(
            double_features(1.0, 2.0, 3.0), create_project_default(), "ghost"
        ))

        assert result.error.code == ErrorCode.INVALID_ARGUMENT
        assert "ghost" in result.error.message
        assert result.error.context_value("algorithm_id") == "ghost"
        assert result.error.context_value("stage") == DispatchStage.INPUT_VALIDATED.value
        assert repository.prediction_count() == 0

    def test_zero_algorithms_on_policy_path(self, repository):
        dispatcher = PredictionDispatcher(repository)
        project = create_project(policy=DefaultAlgorithm("algo-a"))

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), project))

        assert result.error.code == ErrorCode.NO_ALGORITHM_AVAILABLE
        assert repository.prediction_count() == 0

    def test_no_algorithm_policy(self, repository):
        dispatcher = PredictionDispatcher(repository)
        project = create_project(local_algorithm("algo-a"), policy=NoAlgorithm())

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), project))

        assert result.error.code == ErrorCode.NO_ALGORITHM_AVAILABLE

    def test_default_points_at_deleted_algorithm(self, repository):
        dispatcher = PredictionDispatcher(repository)
        project = create_project(local_algorithm("algo-b"), policy=DefaultAlgorithm("algo-a"))

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), project))

        assert result.error.code == ErrorCode.NO_ALGORITHM_AVAILABLE


# =============================================================================
# OUTPUT VALIDATION
# =============================================================================

class TestLabelValidation:

    def test_explicit_path_rejects_unexpected_labels(self):
        repository = InMemoryRepository()
        dispatcher = PredictionDispatcher(repository)
        project = create_project(local_algorithm("algo-a", labels=WRONG_LABELS))

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), project, "algo-a"))

        assert result.error.code == ErrorCode.LABELS_VALIDATION_FAILED
        assert result.error.context_value("stage") == DispatchStage.BACKEND_EXECUTED.value
        assert repository.prediction_count() == 0


# =============================================================================
# BACKEND ERRORS PROPAGATE UNCHANGED
# =============================================================================

class TestBackendErrors:

    def test_remote_failure_propagates_backend_error(self):
        handler = RecordingHandler(status_code=503, json_body={"error": "overloaded"})
        adapter = BackendAdapter(transport=httpx.MockTransport(handler))
        repository = InMemoryRepository()
        dispatcher = PredictionDispatcher(repository, adapter=adapter)
        project = create_project(remote_algorithm("remote"), policy=DefaultAlgorithm("remote"))

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), project))

        assert result.error.code == ErrorCode.BACKEND_ERROR
        assert result.error.context_value("stage") == DispatchStage.ALGORITHM_RESOLVED.value
        assert len(handler.requests) == 1
        assert repository.prediction_count() == 0

    def test_non_finite_features_fail_before_the_request(self):
        handler = RecordingHandler(json_body={"labels": []})
        adapter = BackendAdapter(transport=httpx.MockTransport(handler))
        repository = InMemoryRepository()
        dispatcher = PredictionDispatcher(repository, adapter=adapter)
        project = create_project(remote_algorithm("remote"), policy=DefaultAlgorithm("remote"))

        result = run(dispatcher.predict(double_features(float("nan"), 1.0, 2.0), project))

        assert result.error.code == ErrorCode.FEATURES_TRANSFORMER_ERROR
        assert result.error.context_value("stage") == DispatchStage.ALGORITHM_RESOLVED.value
        assert handler.requests == []
        assert repository.prediction_count() == 0


# =============================================================================
# PERSISTENCE
# =============================================================================

class TestPersistenceFailure:
    """A prediction that cannot be stored is never returned as success."""

    def test_rejected_write_is_persistence_error(self):
        dispatcher = PredictionDispatcher(RejectingRepository())

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), create_project_default()))

        assert result.is_failure
        assert result.error.code == ErrorCode.PERSISTENCE_ERROR
        assert "disk full" in result.error.message

    def test_raising_repository_is_persistence_error(self):
        dispatcher = PredictionDispatcher(ExplodingRepository())

        result = run(dispatcher.predict(double_features(1.0, 2.0, 3.0), create_project_default()))

        assert result.error.code == ErrorCode.PERSISTENCE_ERROR
        assert result.error.context_value("prediction_id") is not None

    def test_persistence_failure_skips_publication(self):
        publisher = FailingPublisher()
        dispatcher = PredictionDispatcher(
            RejectingRepository(),
            publisher=publisher,
            config=DispatchConfig(publish_enabled=True)
        )

        async def scenario():
            await dispatcher.predict(double_features(1.0, 2.0, 3.0), create_project_default())
            await dispatcher.drain()

        run(scenario())
        assert publisher.attempts == 0


# =============================================================================
# PUBLICATION
# =============================================================================

class TestPublishFailure:

    def test_failing_publisher_does_not_change_result(self, caplog):
        repository = InMemoryRepository()
        publisher = FailingPublisher()
        dispatcher = PredictionDispatcher(
            repository,
            publisher=publisher,
            config=DispatchConfig(publish_enabled=True)
        )

        async def scenario():
            result = await dispatcher.predict(double_features(1.0, 2.0, 3.0), create_project_default())
            await dispatcher.drain()
            return result

        with caplog.at_level("WARNING", logger="predictions.dispatcher"):
            result = run(scenario())

        assert result.is_success
        assert repository.read_prediction(result.value.prediction_id) == result.value
        assert publisher.attempts == 1
        assert "stream unavailable" in caplog.text


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancellation:

    def test_cancelled_dispatch_writes_nothing(self):
        class HangingTransport(httpx.AsyncBaseTransport):
            def __init__(self):
                self.started = asyncio.Event()

            async def handle_async_request(self, request):
                self.started.set()
                await asyncio.sleep(3600)
                return httpx.Response(200, json={})

        repository = InMemoryRepository()
        project = create_project(remote_algorithm("remote"), policy=DefaultAlgorithm("remote"))

        async def scenario():
            transport = HangingTransport()
            dispatcher = PredictionDispatcher(repository, adapter=BackendAdapter(transport=transport))
            task = asyncio.create_task(dispatcher.predict(double_features(1.0, 2.0, 3.0), project))
            await transport.started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        run(scenario())
        assert repository.prediction_count() == 0
