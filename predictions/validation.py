"""
Feature/Label Validation

Pure predicates checking payloads against a project's declared contract.
They never raise; the caller decides which failure kind to report.
"""

from __future__ import annotations
from typing import AbstractSet, Any, Callable, Dict

from .contracts import FeatureClass, Features, Labels


def _is_float(value: Any) -> bool:
    return isinstance(value, float)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


_SCALAR_CHECKS: Dict[FeatureClass, Callable[[Any], bool]] = {
    FeatureClass.DOUBLE: _is_float,
    FeatureClass.FLOAT: _is_float,
    FeatureClass.INT: _is_int,
    FeatureClass.STRING: _is_str,
}


def _matches(check: Callable[[Any], bool], value: Any) -> bool:
    if isinstance(value, (tuple, list)):
        return all(check(v) for v in value)
    return check(value)


def validate_features(
    expected_class: FeatureClass,
    expected_size: int,
    features: Features
) -> bool:
    """
    True iff size matches AND every value has the expected runtime type.

    CUSTOM always passes the type check.
    """
    size_check = features.size == expected_size
    if expected_class == FeatureClass.CUSTOM:
        return size_check

    check = _SCALAR_CHECKS.get(expected_class)
    if check is None:
        return False
    type_check = all(_matches(check, v) for v in features.values)
    return size_check and type_check


def validate_labels(expected_labels: AbstractSet[str], labels: Labels) -> bool:
    """True iff the produced label names equal the declared set exactly."""
    return frozenset(expected_labels) == labels.label_names()
