"""
Prediction Dispatch: HTTP API
=============================

Endpoints:
- GET    /health
- POST   /projects                                   -> create project
- GET    /projects                                   -> list projects
- GET    /projects/{project_id}                      -> read project
- PATCH  /projects/{project_id}                      -> rename / change policy
- POST   /projects/{project_id}/algorithms           -> register algorithm
- DELETE /projects/{project_id}/algorithms/{algo_id} -> remove algorithm
- POST   /projects/{project_id}/predict              -> dispatch a prediction
- GET    /predictions/{prediction_id}                -> stored prediction

Usage:
    uvicorn predictions.api.server:app --reload
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import asyncio
import logging
import math

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..backends import BackendAdapter
from ..config import DispatchConfig
from ..contracts import (
    Algorithm,
    FeatureClass,
    FeatureDescriptor,
    Features,
    NoAlgorithm,
    ProblemType,
    SecurityConfiguration,
)
from ..dispatcher import PredictionDispatcher
from ..errors import Error, ErrorCode
from ..policy import RandomSource
from ..projects import ProjectsService
from ..publisher import HttpStreamPublisher, InMemoryPublisher, PredictionPublisher
from ..serialization import (
    algorithm_to_dict,
    backend_from_dict,
    policy_from_dict,
    prediction_to_dict,
    project_to_dict,
    security_from_dict,
)
from ..storage import InMemoryRepository, PredictionsRepository, SQLiteRepository

logger = logging.getLogger(__name__)


ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.FEATURES_VALIDATION_FAILED: 400,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.INVALID_PROJECT_IDENTIFIER: 400,
    ErrorCode.FEATURES_CONFIGURATION_ERROR: 400,
    ErrorCode.ALGORITHM_PROJECT_MISMATCH: 400,
    ErrorCode.PROJECT_DOES_NOT_EXIST: 404,
    ErrorCode.NO_ALGORITHM_AVAILABLE: 409,
    ErrorCode.PROJECT_ALREADY_EXISTS: 409,
    ErrorCode.ALGORITHM_ALREADY_EXISTS: 409,
    ErrorCode.FEATURES_TRANSFORMER_ERROR: 502,
    ErrorCode.LABELS_TRANSFORMER_ERROR: 502,
    ErrorCode.BACKEND_ERROR: 502,
    ErrorCode.LABELS_VALIDATION_FAILED: 502,
    ErrorCode.PERSISTENCE_ERROR: 500,
}


def error_to_http(error: Error) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(error.code, 500),
        detail={
            "code": error.code.value,
            "message": error.message,
            "context": dict(error.context),
        }
    )


def _invalid_argument(message: str) -> HTTPException:
    return error_to_http(Error.create(ErrorCode.INVALID_ARGUMENT, message))


# =============================================================================
# REQUEST MODELS
# =============================================================================

class FeatureDescriptorModel(BaseModel):
    name: str
    type: str
    description: str = ""


class ProjectCreateRequest(BaseModel):
    id: str
    name: str
    problem: ProblemType
    features_class: FeatureClass
    features_size: int = Field(ge=0)
    labels: List[str] = Field(default_factory=list)
    features: List[FeatureDescriptorModel] = Field(default_factory=list)
    policy: Optional[Dict[str, Any]] = None


class ProjectUpdateRequest(BaseModel):
    name: str
    policy: Dict[str, Any]


class AlgorithmCreateRequest(BaseModel):
    id: str
    backend: Dict[str, Any]
    security: Optional[Dict[str, Any]] = None


class PredictRequest(BaseModel):
    features: List[Any]
    algorithm_id: Optional[str] = None


def _parse_policy(data: Optional[Dict[str, Any]]):
    if data is None:
        return NoAlgorithm()
    try:
        return policy_from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise _invalid_argument(f"Invalid policy: {e}") from e


def _coerce_features(values: List[Any], features_class: FeatureClass) -> Features:
    """JSON has one number type; widen integral values for float classes."""
    if features_class in (FeatureClass.DOUBLE, FeatureClass.FLOAT):
        def widen(v):
            if isinstance(v, list):
                return [widen(x) for x in v]
            if isinstance(v, int) and not isinstance(v, bool):
                return float(v)
            return v
        values = [widen(v) for v in values]
    return Features.of(values, features_class)


def _is_finite(value: Any) -> bool:
    """NaN and Infinity cannot be echoed back in a JSON response."""
    if isinstance(value, (list, tuple)):
        return all(_is_finite(v) for v in value)
    if isinstance(value, float):
        return math.isfinite(value)
    return True


# =============================================================================
# APPLICATION
# =============================================================================

def _default_repository(config: DispatchConfig) -> PredictionsRepository:
    if config.database_path:
        return SQLiteRepository(config.database_path)
    return InMemoryRepository()


def _default_publisher(config: DispatchConfig) -> PredictionPublisher:
    if config.publish_endpoint:
        return HttpStreamPublisher(config.publish_endpoint, timeout=config.remote_timeout_seconds)
    return InMemoryPublisher()


def create_app(
    config: Optional[DispatchConfig] = None,
    repository: Optional[PredictionsRepository] = None,
    publisher: Optional[PredictionPublisher] = None,
    adapter: Optional[BackendAdapter] = None,
    random_source: Optional[RandomSource] = None
) -> FastAPI:
    config = config or DispatchConfig.from_env()
    repository = repository or _default_repository(config)
    publisher = publisher or _default_publisher(config)

    dispatcher = PredictionDispatcher(
        repository=repository,
        publisher=publisher,
        config=config,
        adapter=adapter,
        random_source=random_source
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Prediction API starting (repository=%s, publish_enabled=%s)",
            type(repository).__name__, config.publish_enabled
        )
        yield
        await dispatcher.drain()
        await publisher.close()
        logger.info("Prediction API stopped")

    app = FastAPI(
        title="Prediction Dispatch API",
        version="0.1.0",
        description="Project registry and prediction dispatch",
        lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.repository = repository
    app.state.projects = ProjectsService(repository)
    app.state.dispatcher = dispatcher

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health_check():
        """System status."""
        return {"status": "online", "publish_enabled": app.state.config.publish_enabled}

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    @app.post("/projects", status_code=201)
    def create_project(body: ProjectCreateRequest, request: Request):
        service: ProjectsService = request.app.state.projects
        result = service.create_project(
            project_id=body.id,
            name=body.name,
            problem=body.problem,
            features_class=body.features_class,
            features_size=body.features_size,
            labels=frozenset(body.labels),
            feature_descriptors=tuple(
                FeatureDescriptor(name=f.name, feature_type=f.type, description=f.description)
                for f in body.features
            ),
            policy=_parse_policy(body.policy)
        )
        if result.is_failure:
            raise error_to_http(result.error)
        return project_to_dict(result.value)

    @app.get("/projects")
    def list_projects(request: Request):
        """Projects with at least one registered algorithm."""
        service: ProjectsService = request.app.state.projects
        return {"projects": [project_to_dict(p) for p in service.list_projects()]}

    @app.get("/projects/{project_id}")
    def read_project(project_id: str, request: Request):
        result = request.app.state.projects.read_project(project_id)
        if result.is_failure:
            raise error_to_http(result.error)
        return project_to_dict(result.value)

    @app.patch("/projects/{project_id}")
    def update_project(project_id: str, body: ProjectUpdateRequest, request: Request):
        result = request.app.state.projects.update_project(
            project_id, body.name, _parse_policy(body.policy)
        )
        if result.is_failure:
            raise error_to_http(result.error)
        return {"project_id": project_id, "updated": result.value}

    # -------------------------------------------------------------------------
    # Algorithms
    # -------------------------------------------------------------------------

    @app.post("/projects/{project_id}/algorithms", status_code=201)
    def add_algorithm(project_id: str, body: AlgorithmCreateRequest, request: Request):
        try:
            algorithm = Algorithm(
                algorithm_id=body.id,
                backend=backend_from_dict(body.backend),
                project_id=project_id,
                security=security_from_dict(body.security) if body.security else SecurityConfiguration()
            )
        except (KeyError, TypeError, ValueError) as e:
            raise _invalid_argument(f"Invalid algorithm: {e}") from e

        result = request.app.state.projects.add_algorithm(algorithm, project_id)
        if result.is_failure:
            raise error_to_http(result.error)
        return algorithm_to_dict(result.value)

    @app.delete("/projects/{project_id}/algorithms/{algorithm_id}")
    def delete_algorithm(project_id: str, algorithm_id: str, request: Request):
        result = request.app.state.projects.delete_algorithm(project_id, algorithm_id)
        if result.is_failure:
            raise error_to_http(result.error)
        return {"deleted": result.value}

    # -------------------------------------------------------------------------
    # Predictions
    # -------------------------------------------------------------------------

    @app.post("/projects/{project_id}/predict")
    async def predict(project_id: str, body: PredictRequest, request: Request):
        """
        Dispatch features to an algorithm.
        Explicit `algorithm_id` bypasses the project policy.
        """
        project_result = await asyncio.to_thread(request.app.state.projects.read_project, project_id)
        if project_result.is_failure:
            raise error_to_http(project_result.error)
        project = project_result.value

        if not _is_finite(body.features):
            raise error_to_http(Error.create(
                ErrorCode.FEATURES_VALIDATION_FAILED,
                "Feature values must be finite numbers",
                project_id=project_id
            ))
        features = _coerce_features(body.features, project.configuration.features_class)
        dispatcher: PredictionDispatcher = request.app.state.dispatcher
        result = await dispatcher.predict(features, project, body.algorithm_id)
        if result.is_failure:
            raise error_to_http(result.error)
        return prediction_to_dict(result.value)

    @app.get("/predictions/{prediction_id}")
    def read_prediction(prediction_id: str, request: Request):
        prediction = request.app.state.repository.read_prediction(prediction_id)
        if prediction is None:
            raise HTTPException(status_code=404, detail=f"Prediction {prediction_id} not found")
        return prediction_to_dict(prediction)


app = create_app()
