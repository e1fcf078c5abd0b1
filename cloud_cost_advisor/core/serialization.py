"""
Payload encoding for persisted workflow items.

Each recommendation variant is stored with a ``variant`` tag naming its
class, so decoding always yields the same closed set of types.
"""

import dataclasses
from enum import Enum
from typing import Any, Dict, Type

from .actions import ActionType, WorkflowAction
from .commitments import CommitmentRecommendation, CommitmentType, PaymentOption
from .recommendations import (
    Complexity,
    Impact,
    RecommendationBase,
    ReservedCapacityRecommendation,
    RightsizingRecommendation,
    SpotRecommendation,
)

VARIANTS: Dict[str, Type[RecommendationBase]] = {
    "rightsizing": RightsizingRecommendation,
    "reserved_capacity": ReservedCapacityRecommendation,
    "spot": SpotRecommendation,
    "commitment": CommitmentRecommendation,
}

_VARIANT_NAMES = {cls: name for name, cls in VARIANTS.items()}

_ENUM_FIELDS = {
    "impact": Impact,
    "implementation_complexity": Complexity,
    "commitment_type": CommitmentType,
    "payment_option": PaymentOption,
}

_TUPLE_FIELDS = ("resource_ids", "risk_factors")


def variant_of(recommendation: RecommendationBase) -> str:
    try:
        return _VARIANT_NAMES[type(recommendation)]
    except KeyError:
        raise ValueError(f"Unknown recommendation class: {type(recommendation).__name__}")


def recommendation_to_payload(recommendation: RecommendationBase) -> Dict[str, Any]:
    """Encode a recommendation as a JSON-compatible dict."""
    payload: Dict[str, Any] = {"variant": variant_of(recommendation)}
    payload["type"] = recommendation.type.value
    for f in dataclasses.fields(recommendation):
        value = getattr(recommendation, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        payload[f.name] = value
    return payload


def recommendation_from_payload(payload: Dict[str, Any]) -> RecommendationBase:
    """Decode a dict produced by :func:`recommendation_to_payload`.

    Raises:
        ValueError: If the variant tag is missing or unknown
    """
    variant = payload.get("variant")
    if variant not in VARIANTS:
        raise ValueError(f"Unknown recommendation variant: {variant!r}")

    cls = VARIANTS[variant]
    kwargs = {}
    for f in dataclasses.fields(cls):
        value = payload[f.name]
        if f.name in _ENUM_FIELDS:
            value = _ENUM_FIELDS[f.name](value)
        elif f.name in _TUPLE_FIELDS:
            value = tuple(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def action_to_payload(action: WorkflowAction) -> Dict[str, Any]:
    return {
        "id": action.id,
        "type": action.type.value,
        "provider": action.provider,
        "resource_id": action.resource_id,
        "parameters": dict(action.parameters),
        "requires_approval": action.requires_approval,
        "recommendation_id": action.recommendation_id,
    }


def action_from_payload(payload: Dict[str, Any]) -> WorkflowAction:
    return WorkflowAction(
        id=payload["id"],
        type=ActionType(payload["type"]),
        provider=payload["provider"],
        resource_id=payload["resource_id"],
        parameters=dict(payload.get("parameters") or {}),
        requires_approval=payload.get("requires_approval", True),
        recommendation_id=payload.get("recommendation_id"),
    )
