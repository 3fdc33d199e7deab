"""Core data models used by harnessview.

Update payloads form a tagged union discriminated by ``kind``. The execution
engines may push either model instances or plain dicts; both are validated at
the scheduler boundary by :func:`parse_payload` so the rest of the pipeline
only ever sees typed payloads.

Example payload as pushed by an engine::

    {
      "kind": "result",
      "test_id": "T10",
      "variants": [
        {"name": "MCD-Q1", "tier": "Q1", "trials": [{"trial": 1, "passed": true}]}
      ],
      "tier_data": {"Q1": {"accuracy": 0.8}}
    }
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import InvalidPayloadError


class Tier(str, Enum):
    """Capability tier of the tiered test, ordered Q1 < Q4 < Q8."""

    Q1 = "Q1"
    Q4 = "Q4"
    Q8 = "Q8"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def canonical(cls) -> List["Tier"]:
        return list(_TIER_ORDER)

    @classmethod
    def highest(cls) -> "Tier":
        return _TIER_ORDER[-1]


_TIER_ORDER = (Tier.Q1, Tier.Q4, Tier.Q8)


class UpdateKind(str, Enum):
    TEST_BED = "test_bed"
    RESULT = "result"
    WALKTHROUGH = "walkthrough"
    LIVE = "live"


class TestBedSnapshot(BaseModel):
    """Current test bed configuration and progress of the systematic suite."""

    kind: Literal["test_bed"] = "test_bed"
    model_name: str = Field(default="unknown", description="Model under test")
    selected_tests: List[str] = Field(default_factory=list)
    selected_tiers: List[Tier] = Field(default_factory=list)
    current_test: Optional[str] = None
    completed_tests: int = 0
    status: str = "idle"


class VariantResult(BaseModel):
    name: str
    tier: Optional[Tier] = None
    trials: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


class ResultItem(BaseModel):
    """Accumulated result of one systematic test."""

    kind: Literal["result"] = "result"
    test_id: str
    description: str = ""
    variants: List[VariantResult] = Field(default_factory=list)
    tier_data: Dict[Tier, Dict[str, Any]] = Field(default_factory=dict)


class WalkthroughStep(BaseModel):
    """Progress of one scenario in the domain walkthrough suite."""

    kind: Literal["walkthrough"] = "walkthrough"
    domain: str
    scenario: str
    step: int = 0
    status: str = "running"
    detail: str = ""


class LiveComparison(BaseModel):
    """Rolling comparison metrics shown while tests execute."""

    kind: Literal["live"] = "live"
    metrics: Dict[str, float] = Field(default_factory=dict)
    tier: Optional[Tier] = None


UpdatePayload = Annotated[
    Union[TestBedSnapshot, ResultItem, WalkthroughStep, LiveComparison],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(UpdatePayload)


class UpdateRequest(BaseModel):
    kind: UpdateKind
    payload: UpdatePayload
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def parse_payload(kind: UpdateKind, payload: Any):
    """Validate ``payload`` against the schema registered for ``kind``.

    Returns the typed payload, or None when there is nothing to render.
    Raises InvalidPayloadError when the payload does not match the kind.
    """
    kind = UpdateKind(kind)
    if payload is None:
        return None
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if isinstance(payload, dict):
        payload = {"kind": kind.value, **payload}
    try:
        parsed = _payload_adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidPayloadError(kind.value, str(e)) from e
    if parsed.kind != kind.value:
        raise InvalidPayloadError(
            kind.value, f"payload is tagged '{parsed.kind}'"
        )
    return parsed


def payload_fingerprint(payload: BaseModel) -> str:
    """Stable short digest of a payload, used to build cache keys."""
    raw = payload.model_dump_json().encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:16]


__all__ = [
    "Tier",
    "UpdateKind",
    "TestBedSnapshot",
    "VariantResult",
    "ResultItem",
    "WalkthroughStep",
    "LiveComparison",
    "UpdatePayload",
    "UpdateRequest",
    "parse_payload",
    "payload_fingerprint",
]
