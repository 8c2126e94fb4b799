"""
Projects Service

Creation, lookup and mutation of projects and their algorithms.
All operations return Result; repository exceptions are mapped to
typed errors at this boundary.
"""

from __future__ import annotations
from typing import AbstractSet, Iterable, List, Optional, Tuple
import logging
import re

from .contracts import (
    ALLOWED_FEATURE_TYPES,
    Algorithm,
    AlgorithmPolicy,
    FeatureClass,
    FeatureDescriptor,
    NoAlgorithm,
    ProblemType,
    Project,
    ProjectConfiguration,
)
from .errors import Error, ErrorCode, Result
from .storage import PredictionsRepository, StorageError

logger = logging.getLogger(__name__)


PROJECT_ID_PATTERN = re.compile(r"[0-9a-zA-Z_-]+")


def validate_project_id(project_id: str) -> Optional[Error]:
    if PROJECT_ID_PATTERN.fullmatch(project_id):
        return None
    return Error.create(
        ErrorCode.INVALID_PROJECT_IDENTIFIER,
        f"{project_id} is not an alphanumerical id. It should satisfy the "
        f"following regular expression: {PROJECT_ID_PATTERN.pattern}",
        project_id=project_id
    )


def validate_feature_descriptors(descriptors: Iterable[FeatureDescriptor]) -> List[Error]:
    return [
        Error.create(
            ErrorCode.FEATURES_CONFIGURATION_ERROR,
            f"{d.feature_type} is not an accepted type for feature {d.name}",
            feature=d.name
        )
        for d in descriptors
        if d.feature_type not in ALLOWED_FEATURE_TYPES
    ]


class ProjectsService:
    """Project and algorithm registry on top of a PredictionsRepository."""

    def __init__(self, repository: PredictionsRepository):
        self._repository = repository

    def create_project(
        self,
        project_id: str,
        name: str,
        problem: ProblemType,
        features_class: FeatureClass,
        features_size: int,
        labels: AbstractSet[str] = frozenset(),
        feature_descriptors: Tuple[FeatureDescriptor, ...] = (),
        policy: Optional[AlgorithmPolicy] = None
    ) -> Result[Project]:
        """Create a project with no algorithms."""
        errors = [e for e in [validate_project_id(project_id)] if e is not None]
        errors += validate_feature_descriptors(feature_descriptors)
        if errors:
            logger.warning(errors[0].message)
            return Result.failure(errors[0])

        project = Project(
            project_id=project_id,
            name=name,
            configuration=ProjectConfiguration(
                problem=problem,
                features_class=features_class,
                features_size=features_size,
                labels=frozenset(labels),
                feature_descriptors=tuple(feature_descriptors)
            ),
            policy=policy or NoAlgorithm()
        )

        if self._repository.project_exists(project_id):
            return Result.fail(
                ErrorCode.PROJECT_ALREADY_EXISTS,
                f"Project {project_id} already exists",
                project_id=project_id
            )
        try:
            self._repository.insert_project(project)
        except StorageError as e:
            logger.warning("Inserting project %s failed: %s", project_id, e)
            return Result.fail(ErrorCode.PROJECT_ALREADY_EXISTS, str(e), project_id=project_id)

        logger.info("Created project %s", project_id)
        return Result.success(project)

    def read_project(self, project_id: str) -> Result[Project]:
        project = self._repository.read_project(project_id)
        if project is None:
            return Result.fail(
                ErrorCode.PROJECT_DOES_NOT_EXIST,
                f"Project {project_id} does not exist",
                project_id=project_id
            )
        return Result.success(project)

    def list_projects(self) -> List[Project]:
        return self._repository.read_all_projects()

    def update_project(
        self,
        project_id: str,
        name: str,
        policy: AlgorithmPolicy
    ) -> Result[int]:
        """Replace a project's name and policy. Configuration is immutable."""
        updated = self._repository.update_project(project_id, name, policy)
        if updated == 0:
            return Result.fail(
                ErrorCode.PROJECT_DOES_NOT_EXIST,
                f"Project {project_id} does not exist",
                project_id=project_id
            )
        logger.info("Updated project %s", project_id)
        return Result.success(updated)

    def add_algorithm(self, algorithm: Algorithm, project_id: Optional[str] = None) -> Result[Algorithm]:
        """Register an algorithm; `project_id` defaults to the algorithm's own."""
        target = project_id if project_id is not None else algorithm.project_id

        if algorithm.project_id != target:
            return Result.fail(
                ErrorCode.ALGORITHM_PROJECT_MISMATCH,
                f"Algorithm {algorithm.algorithm_id} belongs to project "
                f"{algorithm.project_id}, not {target}",
                project_id=target,
                algorithm_id=algorithm.algorithm_id
            )
        if not self._repository.project_exists(target):
            return Result.fail(
                ErrorCode.PROJECT_DOES_NOT_EXIST,
                f"Project {target} does not exist",
                project_id=target
            )
        try:
            self._repository.insert_algorithm(algorithm)
        except StorageError as e:
            return Result.fail(
                ErrorCode.ALGORITHM_ALREADY_EXISTS,
                f"Algorithm {algorithm.algorithm_id} already exists: {e}",
                project_id=target,
                algorithm_id=algorithm.algorithm_id
            )

        logger.info("Registered algorithm %s on project %s", algorithm.algorithm_id, target)
        return Result.success(algorithm)

    def delete_algorithm(self, project_id: str, algorithm_id: str) -> Result[int]:
        deleted = self._repository.delete_algorithm(project_id, algorithm_id)
        if deleted == 0:
            logger.info("Unknown algorithm %s on project %s", algorithm_id, project_id)
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Algorithm {algorithm_id} is not registered in project {project_id}",
                project_id=project_id,
                algorithm_id=algorithm_id
            )
        return Result.success(deleted)
