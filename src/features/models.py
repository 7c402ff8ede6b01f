"""Pydantic models for feature flags, segments and the tenant document."""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    TypeAdapter,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated, TypeAlias

# Rollout weights are expressed in basis points of a percent (0.01% granularity)
ROLLOUT_TOTAL = 10000

JsonPrimitive = str | int | float | bool | None
JsonValue: TypeAlias = JsonPrimitive | list[Any] | dict[str, Any]

Rollout: TypeAlias = dict[str, NonNegativeInt]


class FlagKind(str, Enum):
    """Supported flag kinds; fixes the shape of the evaluation result."""

    BOOLEAN = "boolean"
    VARIANT = "variant"
    PAYLOAD = "payload"


# ---------------------------------------------------------------------------
# Segment rules
# ---------------------------------------------------------------------------


class ConditionOperator(str, Enum):
    """Comparison operators for rule leaves."""

    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    NOT_IN = "not_in"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    EXISTS = "exists"


_OPEN_RANGE = re.compile(r"\{\d*,\}")
_RANGE = re.compile(r"\{\d*(?:,\d*)?\}")


def _skip_class(pattern: str, start: int) -> int:
    """Index just past the character class opening at ``start``."""
    i = start + 1
    if pattern.startswith("^", i):
        i += 1
    if pattern.startswith("]", i):
        i += 1
    while i < len(pattern) and pattern[i] != "]":
        i += 2 if pattern[i] == "\\" else 1
    return i + 1


def _is_unbounded(pattern: str, i: int) -> bool:
    return pattern.startswith(("*", "+"), i) or _OPEN_RANGE.match(pattern, i) is not None


def _is_repeating(pattern: str, i: int) -> bool:
    # Anything but "?" may apply the group more than once
    return pattern.startswith(("*", "+"), i) or _RANGE.match(pattern, i) is not None


def has_nested_quantifier(pattern: str) -> bool:
    """
    Detect a repeated group holding an unbounded quantifier, e.g. ``(a+)+`` or ``(\\w*x)*``.

    Such patterns backtrack exponentially on near-miss input.
    """
    # One flag per open group: does it contain an unbounded quantifier?
    groups: list[bool] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\":
            i += 2
            continue
        if char == "[":
            i = _skip_class(pattern, i)
            continue

        if char == "(":
            groups.append(False)
        elif char == ")" and groups:
            unbounded_inside = groups.pop()
            if unbounded_inside and _is_repeating(pattern, i + 1):
                return True
            if groups and (unbounded_inside or _is_unbounded(pattern, i + 1)):
                groups[-1] = True
        elif groups and _is_unbounded(pattern, i):
            groups[-1] = True
        i += 1
    return False


class Condition(BaseModel):
    """Leaf predicate: compare one context attribute against a value."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["condition"] = "condition"
    attribute: str = Field(..., min_length=1, description="Dotted attribute path, e.g. 'user.plan'")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: JsonValue = Field(None, description="Value to compare against")

    @model_validator(mode="after")
    def check_value_shape(self) -> "Condition":
        if self.operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(self.value, list):
                raise ValueError(f"'{self.operator.value}' requires a list value")
        if self.operator is ConditionOperator.MATCHES:
            if not isinstance(self.value, str):
                raise ValueError("'matches' requires a regular expression string")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression: {e}") from e
            if has_nested_quantifier(self.value):
                raise ValueError(
                    "Regular expression repeats a group that contains an unbounded quantifier"
                )
        if self.operator is ConditionOperator.EXISTS and not isinstance(self.value, (bool, type(None))):
            raise ValueError("'exists' takes an optional boolean value")
        return self


class AllRule(BaseModel):
    """AND: matches when every child matches (an empty list matches)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["all"] = "all"
    rules: list[SegmentRule] = Field(default_factory=list)


class AnyRule(BaseModel):
    """OR: matches when at least one child matches (an empty list never matches)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["any"] = "any"
    rules: list[SegmentRule] = Field(default_factory=list)


class NotRule(BaseModel):
    """NOT: inverts its child."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["not"] = "not"
    rule: SegmentRule


SegmentRule = Annotated[
    Union[Condition, AllRule, AnyRule, NotRule],
    Field(discriminator="type"),
]

AllRule.model_rebuild()
AnyRule.model_rebuild()
NotRule.model_rebuild()

SEGMENT_RULE_ADAPTER: TypeAdapter[SegmentRule] = TypeAdapter(SegmentRule)


class SegmentInput(BaseModel):
    """Request model for creating or replacing a segment."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, max_length=255)
    rule: SegmentRule


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------


def _check_rollout(rollout: Mapping[str, int], allowed: list[str], label: str) -> None:
    """Validate weights: known outcome keys, summing to ROLLOUT_TOTAL."""
    if not rollout:
        return
    unknown = sorted(set(rollout) - set(allowed))
    if unknown:
        raise ValueError(f"{label} references unknown outcomes: {unknown}")
    total = sum(rollout.values())
    if total != ROLLOUT_TOTAL:
        raise ValueError(f"{label} weights must sum to {ROLLOUT_TOTAL}, got {total}")


class BaseFeatureFlag(BaseModel):
    """Fields shared by every flag kind."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, max_length=255, description="Flag id, unique per tenant")
    label: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    enabled: bool = False
    segments: list[str] = Field(
        default_factory=list, description="Targeted segment ids, first match wins"
    )
    rollout: Rollout = Field(
        default_factory=dict, description="Tenant-wide outcome weights (empty = not configured)"
    )
    segment_rollouts: dict[str, Rollout] = Field(
        default_factory=dict, description="Per-segment outcome weights overriding the positive outcome"
    )

    @property
    def flag_kind(self) -> FlagKind:
        return FlagKind(self.kind)  # type: ignore[attr-defined]

    def outcome_keys(self) -> list[str]:
        raise NotImplementedError

    def positive_result(self) -> Any:
        """Result served when a segment matches without its own rollout."""
        raise NotImplementedError

    def outcome_result(self, outcome: str) -> Any:
        """Map a rollout outcome key to the flag's result value."""
        raise NotImplementedError

    def referenced_segments(self) -> list[str]:
        return list(dict.fromkeys([*self.segments, *self.segment_rollouts]))

    @field_validator("segments")
    @classmethod
    def check_unique_segments(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("segments must not contain duplicates")
        return value

    @model_validator(mode="after")
    def check_rollouts(self) -> "BaseFeatureFlag":
        allowed = self.outcome_keys()
        _check_rollout(self.rollout, allowed, "rollout")
        for segment_id, rollout in self.segment_rollouts.items():
            if segment_id not in self.segments:
                raise ValueError(
                    f"segment_rollouts key '{segment_id}' is not listed in segments"
                )
            _check_rollout(rollout, allowed, f"segment_rollouts['{segment_id}']")
        return self


class BooleanFlag(BaseFeatureFlag):
    """On/off flag."""

    kind: Literal["boolean"] = "boolean"
    default: bool = False

    def outcome_keys(self) -> list[str]:
        return ["off", "on"]

    def positive_result(self) -> bool:
        return True

    def outcome_result(self, outcome: str) -> bool:
        return outcome == "on"


class VariantFlag(BaseFeatureFlag):
    """Flag resolving to one of a fixed set of variant names."""

    kind: Literal["variant"] = "variant"
    variants: list[str] = Field(..., min_length=1)
    default: str
    match_variant: Optional[str] = Field(
        None, description="Variant served on a segment match (defaults to the first variant)"
    )

    def outcome_keys(self) -> list[str]:
        return list(self.variants)

    def positive_result(self) -> str:
        return self.match_variant or self.variants[0]

    def outcome_result(self, outcome: str) -> str:
        return outcome

    @model_validator(mode="after")
    def check_variants(self) -> "VariantFlag":
        if len(set(self.variants)) != len(self.variants):
            raise ValueError("variants must be unique")
        if self.default not in self.variants:
            raise ValueError(f"default '{self.default}' is not a declared variant")
        if self.match_variant is not None and self.match_variant not in self.variants:
            raise ValueError(f"match_variant '{self.match_variant}' is not a declared variant")
        return self


class PayloadFlag(BaseFeatureFlag):
    """Flag serving an arbitrary JSON payload when on, and ``default`` when off."""

    kind: Literal["payload"] = "payload"
    payload: JsonValue = None
    default: JsonValue = None

    def outcome_keys(self) -> list[str]:
        return ["off", "on"]

    def positive_result(self) -> Any:
        return self.payload

    def outcome_result(self, outcome: str) -> Any:
        return self.payload if outcome == "on" else self.default


FeatureFlag = Annotated[
    Union[BooleanFlag, VariantFlag, PayloadFlag],
    Field(discriminator="kind"),
]

FEATURE_FLAG_ADAPTER: TypeAdapter[FeatureFlag] = TypeAdapter(FeatureFlag)


class FeatureFlagUpdate(BaseModel):
    """Partial update for an existing flag; ``id`` and ``kind`` are immutable."""

    model_config = ConfigDict(extra="forbid")

    label: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None
    segments: Optional[list[str]] = None
    rollout: Optional[Rollout] = None
    segment_rollouts: Optional[dict[str, Rollout]] = None
    default: JsonValue = None
    variants: Optional[list[str]] = None
    match_variant: Optional[str] = None
    payload: JsonValue = None

    def changes(self) -> dict[str, Any]:
        """Fields explicitly present in the update."""
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Tenant document
# ---------------------------------------------------------------------------


class AppData(BaseModel):
    """The single configuration document stored per (app, env) tenant."""

    flags: dict[str, FeatureFlag] = Field(default_factory=dict)
    segments: dict[str, SegmentRule] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0, exclude=True, description="Persisted version tag")

    def to_document(self) -> dict[str, Any]:
        """JSON-ready ``{flags, segments}`` document."""
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class PageInfo(BaseModel):
    """Page the request originates from."""

    url: Optional[str] = None


class RequestGeo(BaseModel):
    """
    Network and geographic metadata derived from the request by the edge.

    Values the edge sends with an unexpected type are kept as sent, so a rule
    comparing them sees a type mismatch instead of the request failing.
    Segment rules address each field by its edge name (``geo.regionCode``,
    ``geo.isEUCountry``) or by its snake_case name (``geo.region_code``).
    """

    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    country: Optional[str] = None
    region: Optional[str] = None
    region_code: Optional[str] = None
    city: Optional[str] = None
    continent: Optional[str] = None
    postal_code: Optional[str] = None
    metro_code: Optional[str] = None
    timezone: Optional[str] = None
    latitude: Optional[float | str] = None
    longitude: Optional[float | str] = None
    asn: Optional[int] = None
    colo: Optional[str] = None
    is_eu_country: Optional[bool] = Field(None, alias="isEUCountry")

    @field_validator("*", mode="wrap")
    @classmethod
    def keep_unexpected_values(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return value

    def attributes(self) -> dict[str, Any]:
        """Present values keyed by both their edge name and their snake_case name."""
        values: dict[str, Any] = dict(self.model_extra or {})
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is None:
                continue
            values[name] = value
            if field.alias:
                values[field.alias] = value
        return values


class RequestInfo(BaseModel):
    """Raw request metadata; header names are stored lower-cased."""

    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("headers")
    @classmethod
    def lower_header_names(cls, value: dict[str, str]) -> dict[str, str]:
        return {name.lower(): header for name, header in value.items()}


class EvaluationRequest(BaseModel):
    """Body of an evaluation request as sent by clients."""

    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(None, description="Stable subject id used for bucketing")
    user: dict[str, Any] = Field(default_factory=dict)
    page: Optional[PageInfo] = None


class EvaluationContext(BaseModel):
    """Everything the engine may consult for one request."""

    id: Optional[str] = None
    user: dict[str, Any] = Field(default_factory=dict)
    page: Optional[PageInfo] = None
    geo: RequestGeo = Field(default_factory=RequestGeo)
    request: RequestInfo = Field(default_factory=RequestInfo)

    @property
    def subject_id(self) -> Optional[str]:
        """Subject id, or None when absent or empty."""
        return self.id or None

    @classmethod
    def from_request(
        cls,
        body: EvaluationRequest,
        headers: Optional[Mapping[str, str]] = None,
        geo: Optional[Mapping[str, Any]] = None,
    ) -> "EvaluationContext":
        """Combine the client body with collaborator-derived headers and geo."""
        return cls(
            id=body.id,
            user=body.user,
            page=body.page,
            geo=RequestGeo.model_validate(dict(geo or {})),
            request=RequestInfo(headers={str(k): str(v) for k, v in (headers or {}).items()}),
        )


class EvaluationResult(BaseModel):
    """Decision for one flag: ``{type, result}`` on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    kind: FlagKind = Field(..., alias="type")
    result: Any = None

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
