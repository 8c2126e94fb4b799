"""
Feature/Label Transformers

Pure conversions between the project's generic Features/Labels and a
remote backend's JSON wire format. Used only by RemoteServingBackend.

Failures raise FeaturesTransformerError / LabelsTransformerError;
the backend adapter turns them into typed dispatch errors.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from .contracts import Features, Label, Labels
from .errors import FeaturesTransformerError, LabelsTransformerError


class FeaturesTransformer(ABC):
    """Features → wire request payload."""

    class_name: str = ""

    @abstractmethod
    def transform(self, features: Features) -> Dict[str, Any]:
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass


class LabelsTransformer(ABC):
    """Wire response payload → Labels."""

    class_name: str = ""

    @abstractmethod
    def transform(self, payload: Any) -> Labels:
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass


def _wire_value(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_wire_value(v) for v in value]
    return value


# =============================================================================
# TENSORFLOW SERVING (classify API)
# =============================================================================

@dataclass(frozen=True)
class TensorFlowFeaturesTransformer(FeaturesTransformer):
    """
    Maps positional features to named TensorFlow example fields.

    Output: {"signature_name": ..., "examples": [{field: value, ...}]}
    """
    signature_name: str
    fields: Tuple[str, ...]

    class_name = "TensorFlowFeaturesTransformer"

    def transform(self, features: Features) -> Dict[str, Any]:
        if len(self.fields) != features.size:
            raise FeaturesTransformerError(
                f"Expected {len(self.fields)} features for signature "
                f"{self.signature_name}, got {features.size}"
            )
        example = {
            name: _wire_value(value)
            for name, value in zip(self.fields, features.values)
        }
        return {"signature_name": self.signature_name, "examples": [example]}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class": self.class_name,
            "signature_name": self.signature_name,
            "fields": list(self.fields),
        }


@dataclass(frozen=True)
class TensorFlowLabelsTransformer(LabelsTransformer):
    """
    Maps TensorFlow class names to project labels.

    Input: {"result": [[[class_name, score], ...]]}
    """
    fields: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    class_name = "TensorFlowLabelsTransformer"

    @staticmethod
    def from_mapping(fields: Mapping[str, str]) -> TensorFlowLabelsTransformer:
        return TensorFlowLabelsTransformer(fields=tuple(fields.items()))

    def transform(self, payload: Any) -> Labels:
        if not isinstance(payload, dict) or "result" not in payload:
            raise LabelsTransformerError("TensorFlow response has no 'result' field")

        mapping = dict(self.fields)
        labels: List[Label] = []
        try:
            for example in payload["result"]:
                for tf_class, score in example:
                    if tf_class not in mapping:
                        raise LabelsTransformerError(
                            f"TensorFlow class {tf_class} has no project label mapping"
                        )
                    labels.append(Label(label=mapping[tf_class], probability=float(score)))
        except (TypeError, ValueError) as e:
            raise LabelsTransformerError(f"Malformed TensorFlow result: {e}") from e

        return Labels(labels=frozenset(labels))

    def to_dict(self) -> Dict[str, Any]:
        return {"class": self.class_name, "fields": dict(self.fields)}


# =============================================================================
# GENERIC JSON
# =============================================================================

@dataclass(frozen=True)
class JsonFeaturesTransformer(FeaturesTransformer):
    """Output: {"features": [...]}"""

    class_name = "JsonFeaturesTransformer"

    def transform(self, features: Features) -> Dict[str, Any]:
        return {"features": [_wire_value(v) for v in features.values]}

    def to_dict(self) -> Dict[str, Any]:
        return {"class": self.class_name}


@dataclass(frozen=True)
class JsonLabelsTransformer(LabelsTransformer):
    """Input: {"labels": [{"label": ..., "probability": ...}, ...]}"""

    class_name = "JsonLabelsTransformer"

    def transform(self, payload: Any) -> Labels:
        if not isinstance(payload, dict) or not isinstance(payload.get("labels"), list):
            raise LabelsTransformerError("Response has no 'labels' list")
        try:
            return Labels(labels=frozenset(
                Label(label=str(item["label"]), probability=float(item["probability"]))
                for item in payload["labels"]
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise LabelsTransformerError(f"Malformed label entry: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {"class": self.class_name}


def features_transformer_from_dict(data: Mapping[str, Any]) -> FeaturesTransformer:
    class_name = data.get("class")
    if class_name == TensorFlowFeaturesTransformer.class_name:
        return TensorFlowFeaturesTransformer(
            signature_name=data["signature_name"],
            fields=tuple(data["fields"])
        )
    if class_name == JsonFeaturesTransformer.class_name:
        return JsonFeaturesTransformer()
    raise ValueError(f"Unknown features transformer: {class_name}")


def labels_transformer_from_dict(data: Mapping[str, Any]) -> LabelsTransformer:
    class_name = data.get("class")
    if class_name == TensorFlowLabelsTransformer.class_name:
        return TensorFlowLabelsTransformer.from_mapping(data.get("fields", {}))
    if class_name == JsonLabelsTransformer.class_name:
        return JsonLabelsTransformer()
    raise ValueError(f"Unknown labels transformer: {class_name}")
