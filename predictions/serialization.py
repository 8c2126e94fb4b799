"""
Serialization

JSON encoding of domain contracts for SQLite columns, published events
and the HTTP API.

RULES:
1. Dates are ISO 8601 strings (UTC).
2. Enums use their .value.
3. Sets become sorted lists.
4. Tagged unions carry a "class" discriminator.
"""

from __future__ import annotations
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping
import json

from .contracts import (
    Algorithm,
    AlgorithmPolicy,
    Backend,
    DefaultAlgorithm,
    FeatureClass,
    FeatureDescriptor,
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
    SecurityConfiguration,
    WeightedPolicy,
)
from .transformers import features_transformer_from_dict, labels_transformer_from_dict


class PredictionEncoder(json.JSONEncoder):
    """JSON encoder for values that escape the explicit encoders below."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def dumps(data: Any) -> str:
    return json.dumps(data, cls=PredictionEncoder, sort_keys=True, separators=(",", ":"))


# =============================================================================
# FEATURES & LABELS
# =============================================================================

def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def features_to_dict(features: Features) -> Dict[str, Any]:
    return {
        "class": features.features_class.value,
        "values": [_thaw(v) for v in features.values],
    }


def features_from_dict(data: Mapping[str, Any]) -> Features:
    return Features.of(data["values"], FeatureClass(data["class"]))


def labels_to_list(labels: Labels) -> list:
    return [{"label": l.label, "probability": l.probability} for l in labels.sorted()]


def labels_from_list(data) -> Labels:
    return Labels(labels=frozenset(
        Label(label=item["label"], probability=float(item["probability"]))
        for item in data
    ))


# =============================================================================
# BACKENDS, POLICIES, SECURITY
# =============================================================================

def backend_to_dict(backend: Backend) -> Dict[str, Any]:
    if isinstance(backend, LocalBackend):
        return {"class": "LocalBackend", "computed": labels_to_list(backend.computed)}
    if isinstance(backend, RemoteServingBackend):
        return {
            "class": "RemoteServingBackend",
            "host": backend.host,
            "port": backend.port,
            "features_transformer": backend.features_transformer.to_dict(),
            "labels_transformer": backend.labels_transformer.to_dict(),
        }
    raise ValueError(f"Unknown backend type: {type(backend).__name__}")


def backend_from_dict(data: Mapping[str, Any]) -> Backend:
    class_name = data.get("class")
    if class_name == "LocalBackend":
        return LocalBackend(computed=labels_from_list(data.get("computed", [])))
    if class_name == "RemoteServingBackend":
        return RemoteServingBackend(
            host=str(data["host"]),
            port=str(data["port"]),
            features_transformer=features_transformer_from_dict(data["features_transformer"]),
            labels_transformer=labels_transformer_from_dict(data["labels_transformer"]),
        )
    raise ValueError(f"Unknown backend: {class_name}")


def policy_to_dict(policy: AlgorithmPolicy) -> Dict[str, Any]:
    if isinstance(policy, NoAlgorithm):
        return {"class": "NoAlgorithm"}
    if isinstance(policy, DefaultAlgorithm):
        return {"class": "DefaultAlgorithm", "algorithm_id": policy.algorithm_id}
    if isinstance(policy, WeightedPolicy):
        return {
            "class": "WeightedPolicy",
            "weights": [{"algorithm_id": k, "weight": w} for k, w in policy.weights],
        }
    raise ValueError(f"Unknown policy type: {type(policy).__name__}")


def policy_from_dict(data: Mapping[str, Any]) -> AlgorithmPolicy:
    class_name = data.get("class")
    if class_name == "NoAlgorithm":
        return NoAlgorithm()
    if class_name == "DefaultAlgorithm":
        return DefaultAlgorithm(algorithm_id=data["algorithm_id"])
    if class_name == "WeightedPolicy":
        return WeightedPolicy(weights=tuple(
            (w["algorithm_id"], float(w["weight"])) for w in data.get("weights", [])
        ))
    raise ValueError(f"Unknown policy: {class_name}")


def security_to_dict(security: SecurityConfiguration) -> Dict[str, Any]:
    return {"encryption": security.encryption, "headers": [list(h) for h in security.headers]}


def security_from_dict(data: Mapping[str, Any]) -> SecurityConfiguration:
    return SecurityConfiguration(
        encryption=data.get("encryption", "plain"),
        headers=tuple((str(k), str(v)) for k, v in data.get("headers", [])),
    )


# =============================================================================
# PROJECTS & ALGORITHMS
# =============================================================================

def configuration_to_dict(configuration: ProjectConfiguration) -> Dict[str, Any]:
    return {
        "problem": configuration.problem.value,
        "features_class": configuration.features_class.value,
        "features_size": configuration.features_size,
        "labels": sorted(configuration.labels),
        "features": [
            {"name": d.name, "type": d.feature_type, "description": d.description}
            for d in configuration.feature_descriptors
        ],
    }


def configuration_from_dict(data: Mapping[str, Any]) -> ProjectConfiguration:
    return ProjectConfiguration(
        problem=ProblemType(data["problem"]),
        features_class=FeatureClass(data["features_class"]),
        features_size=int(data["features_size"]),
        labels=frozenset(data.get("labels", [])),
        feature_descriptors=tuple(
            FeatureDescriptor(
                name=f["name"],
                feature_type=f["type"],
                description=f.get("description", ""),
            )
            for f in data.get("features", [])
        ),
    )


def algorithm_to_dict(algorithm: Algorithm) -> Dict[str, Any]:
    return {
        "id": algorithm.algorithm_id,
        "project_id": algorithm.project_id,
        "backend": backend_to_dict(algorithm.backend),
        "security": security_to_dict(algorithm.security),
    }


def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.project_id,
        "name": project.name,
        "configuration": configuration_to_dict(project.configuration),
        "algorithms": [algorithm_to_dict(a) for a in project.algorithms],
        "policy": policy_to_dict(project.policy),
    }


# =============================================================================
# PREDICTIONS
# =============================================================================

def prediction_to_dict(prediction: Prediction) -> Dict[str, Any]:
    return {
        "id": prediction.prediction_id,
        "project_id": prediction.project_id,
        "algorithm_id": prediction.algorithm_id,
        "features": features_to_dict(prediction.features),
        "labels": labels_to_list(prediction.labels),
        "examples": list(prediction.examples),
        "created_at": prediction.created_at.isoformat() if prediction.created_at else None,
    }
