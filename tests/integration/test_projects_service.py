"""
Projects Service Tests

Identifier and feature-configuration validation, duplicate handling,
algorithm registration and policy updates.
"""

import pytest

from predictions.contracts import (
    DefaultAlgorithm,
    FeatureClass,
    FeatureDescriptor,
    NoAlgorithm,
    ProblemType,
    WeightedPolicy,
)
from predictions.errors import ErrorCode
from predictions.projects import ProjectsService, validate_project_id
from predictions.storage import InMemoryRepository

from .fixtures import LABELS, PROJECT_ID, local_algorithm


@pytest.fixture
def service():
    return ProjectsService(InMemoryRepository())


def create(service, project_id=PROJECT_ID, descriptors=()):
    return service.create_project(
        project_id=project_id,
        name="Churn",
        problem=ProblemType.CLASSIFICATION,
        features_class=FeatureClass.DOUBLE,
        features_size=3,
        labels=LABELS,
        feature_descriptors=descriptors
    )


class TestProjectIdentifier:

    @pytest.mark.parametrize("project_id", ["churn", "churn-model", "churn_2", "ABC123"])
    def test_accepted(self, project_id):
        assert validate_project_id(project_id) is None

    @pytest.mark.parametrize("project_id", ["", "churn model", "churn/1", "émoji", "a.b"])
    def test_rejected(self, project_id):
        error = validate_project_id(project_id)
        assert error.code == ErrorCode.INVALID_PROJECT_IDENTIFIER


class TestCreateProject:

    def test_creates_empty_project(self, service):
        result = create(service)

        assert result.is_success
        assert result.value.algorithms == ()
        assert result.value.policy == NoAlgorithm()

    def test_invalid_identifier(self, service):
        result = create(service, project_id="not valid")
        assert result.error.code == ErrorCode.INVALID_PROJECT_IDENTIFIER

    def test_unknown_feature_type(self, service):
        result = create(service, descriptors=(
            FeatureDescriptor("tenure", "int"),
            FeatureDescriptor("when", "datetime"),
        ))

        assert result.error.code == ErrorCode.FEATURES_CONFIGURATION_ERROR
        assert "datetime" in result.error.message
        assert result.error.context_value("feature") == "when"

    def test_every_allowed_feature_type(self, service):
        descriptors = tuple(
            FeatureDescriptor(f"f{i}", t)
            for i, t in enumerate(
                ["float", "int", "string", "float_vector", "int_vector", "string_vector"]
            )
        )
        assert create(service, descriptors=descriptors).is_success

    def test_duplicate_project(self, service):
        create(service)
        result = create(service)
        assert result.error.code == ErrorCode.PROJECT_ALREADY_EXISTS


class TestReadProject:

    def test_missing_project(self, service):
        result = service.read_project("missing")
        assert result.error.code == ErrorCode.PROJECT_DOES_NOT_EXIST

    def test_project_without_algorithms_reads_as_missing(self, service):
        create(service)
        result = service.read_project(PROJECT_ID)
        assert result.error.code == ErrorCode.PROJECT_DOES_NOT_EXIST

    def test_readable_after_first_algorithm(self, service):
        create(service)
        service.add_algorithm(local_algorithm("algo-a"))

        result = service.read_project(PROJECT_ID)

        assert result.is_success
        assert result.value.algorithm_ids == ("algo-a",)
        assert [p.project_id for p in service.list_projects()] == [PROJECT_ID]


class TestAlgorithms:

    def test_add_to_missing_project(self, service):
        result = service.add_algorithm(local_algorithm("algo-a"))
        assert result.error.code == ErrorCode.PROJECT_DOES_NOT_EXIST

    def test_add_under_other_project(self, service):
        create(service)
        create(service, project_id="fraud")

        result = service.add_algorithm(local_algorithm("algo-a"), project_id="fraud")

        assert result.error.code == ErrorCode.ALGORITHM_PROJECT_MISMATCH

    def test_duplicate_algorithm(self, service):
        create(service)
        service.add_algorithm(local_algorithm("algo-a"))

        result = service.add_algorithm(local_algorithm("algo-a"))

        assert result.error.code == ErrorCode.ALGORITHM_ALREADY_EXISTS

    def test_delete_algorithm(self, service):
        create(service)
        service.add_algorithm(local_algorithm("algo-a"))
        service.add_algorithm(local_algorithm("algo-b"))

        assert service.delete_algorithm(PROJECT_ID, "algo-a").value == 1
        assert service.read_project(PROJECT_ID).value.algorithm_ids == ("algo-b",)

    def test_delete_unknown_algorithm(self, service):
        create(service)
        result = service.delete_algorithm(PROJECT_ID, "ghost")
        assert result.error.code == ErrorCode.INVALID_ARGUMENT


class TestUpdateProject:

    def test_update_name_and_policy(self, service):
        create(service)
        service.add_algorithm(local_algorithm("algo-a"))
        policy = WeightedPolicy.from_mapping({"algo-a": 1.0})

        assert service.update_project(PROJECT_ID, "Renamed", policy).is_success

        project = service.read_project(PROJECT_ID).value
        assert project.name == "Renamed"
        assert project.policy == policy

    def test_update_missing_project(self, service):
        result = service.update_project("missing", "x", DefaultAlgorithm("a"))
        assert result.error.code == ErrorCode.PROJECT_DOES_NOT_EXIST
