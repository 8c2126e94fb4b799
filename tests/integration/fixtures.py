"""
Integration Test Fixtures

Explicit projects, algorithms and collaborators for dispatch tests.
Randomness is always injected through FixedRandomSource.
"""

from typing import Iterable, List, Optional

import httpx

from predictions.contracts import (
    Algorithm,
    DefaultAlgorithm,
    FeatureClass,
    Features,
    Labels,
    LocalBackend,
    NoAlgorithm,
    Prediction,
    ProblemType,
    Project,
    ProjectConfiguration,
    RemoteServingBackend,
    WeightedPolicy,
)
from predictions.policy import RandomSource
from predictions.publisher import PredictionPublisher
from predictions.storage import InMemoryRepository, StorageWriteResult
from predictions.transformers import JsonFeaturesTransformer, JsonLabelsTransformer


PROJECT_ID = "churn-model"
LABELS = frozenset({"churn", "stay"})

LOCAL_LABELS = Labels.of({"churn": 0.2, "stay": 0.8})
WRONG_LABELS = Labels.of({"churn": 0.5, "unknown": 0.5})


# =============================================================================
# COLLABORATORS
# =============================================================================

class FixedRandomSource(RandomSource):
    """Cycles through a fixed list of draws."""

    def __init__(self, draws: Iterable[float]):
        self._draws = list(draws)
        self._index = 0

    def uniform(self) -> float:
        value = self._draws[self._index % len(self._draws)]
        self._index += 1
        return value


class FailingPublisher(PredictionPublisher):
    def __init__(self):
        self.attempts = 0

    async def publish(self, prediction, stream_name, partition_key):
        self.attempts += 1
        raise RuntimeError("stream unavailable")


class RejectingRepository(InMemoryRepository):
    """Refuses every prediction write."""

    def insert_prediction(self, prediction: Prediction) -> StorageWriteResult:
        return StorageWriteResult.failed("disk full")


class ExplodingRepository(InMemoryRepository):
    """Raises on every prediction write."""

    def insert_prediction(self, prediction: Prediction) -> StorageWriteResult:
        raise OSError("connection lost")


class RecordingHandler:
    """httpx.MockTransport handler that records requests."""

    def __init__(self, status_code: int = 200, json_body=None, content: Optional[bytes] = None):
        self.requests: List[httpx.Request] = []
        self._status_code = status_code
        self._json_body = json_body
        self._content = content

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._content is not None:
            return httpx.Response(self._status_code, content=self._content)
        return httpx.Response(self._status_code, json=self._json_body)


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================

def double_features(*values: float) -> Features:
    return Features.of(values, FeatureClass.DOUBLE)


def create_configuration(
    features_class: FeatureClass = FeatureClass.DOUBLE,
    features_size: int = 3
) -> ProjectConfiguration:
    return ProjectConfiguration(
        problem=ProblemType.CLASSIFICATION,
        features_class=features_class,
        features_size=features_size,
        labels=LABELS
    )


def local_algorithm(algorithm_id: str, labels: Labels = LOCAL_LABELS) -> Algorithm:
    return Algorithm(
        algorithm_id=algorithm_id,
        backend=LocalBackend(computed=labels),
        project_id=PROJECT_ID
    )


def remote_algorithm(algorithm_id: str, host: str = "serving", port: str = "8501") -> Algorithm:
    return Algorithm(
        algorithm_id=algorithm_id,
        backend=RemoteServingBackend(
            host=host,
            port=port,
            features_transformer=JsonFeaturesTransformer(),
            labels_transformer=JsonLabelsTransformer()
        ),
        project_id=PROJECT_ID
    )


def create_project(*algorithms: Algorithm, policy=None) -> Project:
    return Project(
        project_id=PROJECT_ID,
        name="Churn",
        configuration=create_configuration(),
        algorithms=tuple(algorithms),
        policy=policy if policy is not None else NoAlgorithm()
    )


def create_project_default(algorithm_id: str = "algo-a") -> Project:
    return create_project(local_algorithm(algorithm_id), policy=DefaultAlgorithm(algorithm_id))


def create_project_weighted() -> Project:
    return create_project(
        local_algorithm("algo-a"),
        local_algorithm("algo-b"),
        policy=WeightedPolicy.from_mapping({"algo-a": 0.75, "algo-b": 0.25})
    )
