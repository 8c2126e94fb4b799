"""
Prediction Dispatch Engine

Accepts feature vectors for a registered project and dispatches them to
one of the project's algorithms, either named explicitly or chosen by the
project's selection policy.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts.py, errors.py)
   - Frozen data: projects, algorithms, backends, features, labels
   - Errors as data: ErrorCode, Error, Result

2. VALIDATION & POLICY (validation.py, policy.py)
   - Pure predicates and stateless algorithm selection
   - MUST NOT: perform I/O

3. BACKEND ADAPTER (backends.py, transformers.py)
   - Local precomputed answers, or one HTTP round trip to a serving process
   - MUST NOT: retry, persist, or publish

4. DISPATCHER (dispatcher.py)
   - Validate → resolve → execute → validate → persist → publish
   - MUST NOT: raise across its public surface

5. COLLABORATORS (storage.py, publisher.py, projects.py, api/)
   - Persistence, event publication, project registry, HTTP transport

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: all domain data is frozen
- Explicit errors: every failure kind is a distinct ErrorCode
- Injected randomness: weighted selection is reproducible under test
"""

from .config import DispatchConfig
from .contracts import (
    Algorithm,
    DefaultAlgorithm,
    FeatureClass,
    Features,
    Label,
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
from .backends import BackendAdapter
from .dispatcher import DispatchStage, PredictionDispatcher
from .errors import Error, ErrorCode, Result
from .policy import RandomSource, SystemRandomSource, select_algorithm
from .projects import ProjectsService
from .storage import InMemoryRepository, PredictionsRepository, SQLiteRepository
from .validation import validate_features, validate_labels

__all__ = [
    "Algorithm",
    "BackendAdapter",
    "DefaultAlgorithm",
    "DispatchConfig",
    "DispatchStage",
    "Error",
    "ErrorCode",
    "FeatureClass",
    "Features",
    "InMemoryRepository",
    "Label",
    "Labels",
    "LocalBackend",
    "NoAlgorithm",
    "Prediction",
    "PredictionDispatcher",
    "PredictionsRepository",
    "ProblemType",
    "Project",
    "ProjectConfiguration",
    "ProjectsService",
    "RandomSource",
    "RemoteServingBackend",
    "Result",
    "SQLiteRepository",
    "SystemRandomSource",
    "WeightedPolicy",
    "select_algorithm",
    "validate_features",
    "validate_labels",
]
