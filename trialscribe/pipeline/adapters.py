from __future__ import annotations

"""
Shape coercion for extraction-service payloads.

Design intent:
- Tolerate the known ways a model drifts from the declared schema (a single
  object instead of a list, bare strings, a wrapping `moments` key).
- Reject anything else with `MomentShapeError` so callers can degrade explicitly.
"""

from typing import Any, Mapping

from pydantic import ValidationError

from trialscribe.internal_core.contracts import KeyMoment


class MomentShapeError(ValueError):
    """Raised when a key-moments payload cannot be coerced into a list of moments."""


def _coerce_one(item: Any) -> KeyMoment:
    if isinstance(item, KeyMoment):
        return item
    if isinstance(item, str):
        text = item.strip()
        if not text:
            raise MomentShapeError("empty moment string")
        return KeyMoment(desc=text)
    if isinstance(item, Mapping):
        try:
            return KeyMoment.model_validate(dict(item))
        except ValidationError as exc:
            raise MomentShapeError(f"invalid moment: {exc}") from exc
    raise MomentShapeError(f"unsupported moment type: {type(item).__name__}")


def coerce_moments(raw: Any) -> list[KeyMoment]:
    if isinstance(raw, Mapping) and "moments" in raw and "desc" not in raw:
        raw = raw["moments"]
    if raw is None:
        return []
    if isinstance(raw, (KeyMoment, Mapping, str)):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise MomentShapeError(f"unsupported moments payload: {type(raw).__name__}")
    return [_coerce_one(item) for item in raw]
