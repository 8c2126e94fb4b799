"""
Domain Contracts

Typed, immutable data for projects, algorithms, backends, features,
labels, policies and predictions.

BOUNDARY ENFORCEMENT:
=====================
- All types are FROZEN (immutable)
- Dispatch captures Algorithm values, never live references
- No behaviour beyond derived views and construction checks
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union, TYPE_CHECKING
from enum import Enum
import math

if TYPE_CHECKING:
    from .transformers import FeaturesTransformer, LabelsTransformer


# =============================================================================
# FEATURES & LABELS
# =============================================================================

class FeatureClass(Enum):
    """Declared class of a feature vector."""
    DOUBLE = "DoubleFeatures"
    FLOAT = "FloatFeatures"
    INT = "IntFeatures"
    STRING = "StringFeatures"
    CUSTOM = "CustomFeatures"


FeatureValue = Union[float, int, str, Tuple[Any, ...]]


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class Features:
    """
    Ordered feature values with their declared class.

    A value is either a scalar or a tuple (vector) of scalars.
    """
    values: Tuple[FeatureValue, ...]
    features_class: FeatureClass = FeatureClass.CUSTOM

    @staticmethod
    def of(values, features_class: FeatureClass = FeatureClass.CUSTOM) -> Features:
        """Build Features from any iterable, freezing lists at every depth."""
        return Features(
            values=tuple(_freeze(v) for v in values),
            features_class=features_class
        )

    @property
    def size(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class Label:
    """A single (label, score) pair."""
    label: str
    probability: float


@dataclass(frozen=True)
class Labels:
    """Set of scored labels produced by an algorithm."""
    labels: FrozenSet[Label] = field(default_factory=frozenset)

    @staticmethod
    def of(pairs: Mapping[str, float]) -> Labels:
        return Labels(labels=frozenset(Label(k, float(v)) for k, v in pairs.items()))

    def label_names(self) -> FrozenSet[str]:
        return frozenset(l.label for l in self.labels)

    def sorted(self) -> Tuple[Label, ...]:
        """Labels ordered by descending score, then name."""
        return tuple(sorted(self.labels, key=lambda l: (-l.probability, l.label)))


# =============================================================================
# PROJECT CONFIGURATION
# =============================================================================

class ProblemType(Enum):
    CLASSIFICATION = "classification"
    REGRESSION = "regression"


ALLOWED_FEATURE_TYPES = frozenset({
    "float",
    "int",
    "string",
    "float_vector",
    "int_vector",
    "string_vector",
})


@dataclass(frozen=True)
class FeatureDescriptor:
    """Named entry of a project's feature contract."""
    name: str
    feature_type: str
    description: str = ""


@dataclass(frozen=True)
class ProjectConfiguration:
    problem: ProblemType
    features_class: FeatureClass
    features_size: int
    labels: FrozenSet[str] = field(default_factory=frozenset)
    feature_descriptors: Tuple[FeatureDescriptor, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SecurityConfiguration:
    """
    Per-algorithm security descriptor.

    Carried with the algorithm; injecting it into remote calls belongs
    to the transport layer.
    """
    encryption: str = "plain"
    headers: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


# =============================================================================
# BACKENDS (closed variant: LocalBackend | RemoteServingBackend)
# =============================================================================

@dataclass(frozen=True)
class LocalBackend:
    """Fixed, precomputed answer."""
    computed: Labels


@dataclass(frozen=True)
class RemoteServingBackend:
    """Delegates computation to an external serving process over HTTP."""
    host: str
    port: str
    features_transformer: FeaturesTransformer
    labels_transformer: LabelsTransformer

    def uri(self) -> str:
        return f"http://{self.host}:{self.port}/"


Backend = Union[LocalBackend, RemoteServingBackend]


# =============================================================================
# ALGORITHM POLICIES (closed variant)
# =============================================================================

@dataclass(frozen=True)
class NoAlgorithm:
    """Never selects an algorithm."""


@dataclass(frozen=True)
class DefaultAlgorithm:
    """Always selects the same algorithm, if it is still registered."""
    algorithm_id: str


@dataclass(frozen=True)
class WeightedPolicy:
    """
    Probabilistic selection proportional to weight.

    Weights keep declaration order; ties in the cumulative draw resolve
    to the earliest declared id.
    """
    weights: Tuple[Tuple[str, float], ...] = field(default_factory=tuple)

    def __post_init__(self):
        for algorithm_id, weight in self.weights:
            if not math.isfinite(weight) or weight <= 0:
                raise ValueError(
                    f"Weight for algorithm {algorithm_id} must be positive and finite, got {weight}"
                )
        if self.weights and sum(w for _, w in self.weights) <= 0:
            raise ValueError("Weights must sum to a positive value")

    @staticmethod
    def from_mapping(weights: Mapping[str, float]) -> WeightedPolicy:
        return WeightedPolicy(weights=tuple((k, float(v)) for k, v in weights.items()))


AlgorithmPolicy = Union[NoAlgorithm, DefaultAlgorithm, WeightedPolicy]


# =============================================================================
# ALGORITHM & PROJECT
# =============================================================================

@dataclass(frozen=True)
class Algorithm:
    algorithm_id: str
    backend: Backend
    project_id: str
    security: SecurityConfiguration = field(default_factory=SecurityConfiguration)


@dataclass(frozen=True)
class Project:
    """
    A named prediction target with a declared contract and its algorithms.

    INVARIANT: every algorithm.project_id == project_id
    """
    project_id: str
    name: str
    configuration: ProjectConfiguration
    algorithms: Tuple[Algorithm, ...] = field(default_factory=tuple)
    policy: AlgorithmPolicy = field(default_factory=NoAlgorithm)

    def __post_init__(self):
        for algorithm in self.algorithms:
            if algorithm.project_id != self.project_id:
                raise ValueError(
                    f"Algorithm {algorithm.algorithm_id} belongs to project "
                    f"{algorithm.project_id}, not {self.project_id}"
                )

    @property
    def algorithms_map(self) -> Dict[str, Algorithm]:
        return {a.algorithm_id: a for a in self.algorithms}

    @property
    def algorithm_ids(self) -> Tuple[str, ...]:
        return tuple(a.algorithm_id for a in self.algorithms)


def merge_projects(left: Project, right: Project) -> Project:
    """
    Combine two views of the same project.

    Keeps the left-hand metadata and appends the right-hand algorithms
    not already present. Associative, so join rows can be folded in any
    grouping.
    """
    known = set(left.algorithm_ids)
    extra = tuple(a for a in right.algorithms if a.algorithm_id not in known)
    return Project(
        project_id=left.project_id,
        name=left.name,
        configuration=left.configuration,
        algorithms=left.algorithms + extra,
        policy=left.policy
    )


# =============================================================================
# PREDICTION
# =============================================================================

@dataclass(frozen=True)
class Prediction:
    """One resolved input/output pair plus the identifiers that produced it."""
    prediction_id: str
    project_id: str
    algorithm_id: str
    features: Features
    labels: Labels
    examples: Tuple[str, ...] = field(default_factory=tuple)
    created_at: Optional[datetime] = field(default_factory=lambda: datetime.now(timezone.utc))
