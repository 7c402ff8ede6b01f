"""Unit tests for the flag evaluation engine."""
import logging
from typing import Any

import pytest
from hypothesis import given, settings, strategies as st

from src.features.bucketing import MissingSubjectPolicy, bucket
from src.features.engine import evaluate_all, evaluate_flag
from src.features.models import (
    FEATURE_FLAG_ADAPTER,
    SEGMENT_RULE_ADAPTER,
    AppData,
    EvaluationContext,
    EvaluationResult,
    FlagKind,
)


def make_flag(**fields: Any):
    fields.setdefault("kind", "boolean")
    fields.setdefault("enabled", True)
    return FEATURE_FLAG_ADAPTER.validate_python(fields)


def make_rule(attribute: str, operator: str, value: Any = None):
    return SEGMENT_RULE_ADAPTER.validate_python(
        {"type": "condition", "attribute": attribute, "operator": operator, "value": value}
    )


@pytest.fixture
def segments():
    """Segments used across engine tests."""
    return {
        "premium": make_rule("user.plan", "eq", "premium"),
        "germany": make_rule("geo.country", "eq", "DE"),
        "nobody": make_rule("user.plan", "eq", "enterprise"),
    }


@pytest.fixture
def premium_de() -> EvaluationContext:
    return EvaluationContext.model_validate(
        {"id": "user-1", "user": {"plan": "premium"}, "geo": {"country": "DE"}}
    )


def first_subject_in(flag_id: str, low: int, high: int) -> str:
    """Find a subject id whose bucket for ``flag_id`` lies in [low, high)."""
    for i in range(100000):
        subject = f"subject-{i}"
        if low <= bucket(flag_id, subject) < high:
            return subject
    raise AssertionError("no subject found in range")


class TestDisabledFlags:
    """Disabled flags short-circuit to their default."""

    @pytest.mark.parametrize(
        "fields, expected",
        [
            ({"kind": "boolean", "default": True, "rollout": {"off": 10000}}, True),
            (
                {"kind": "variant", "variants": ["a", "b"], "default": "b", "rollout": {"a": 10000}},
                "b",
            ),
            ({"kind": "payload", "payload": {"x": 1}, "default": {"x": 0}, "rollout": {"on": 10000}}, {"x": 0}),
        ],
    )
    def test_returns_default(self, segments, premium_de, fields, expected):
        flag = make_flag(id="f", enabled=False, segments=["premium"], **fields)
        result = evaluate_flag(flag, segments, premium_de)
        assert result.result == expected
        assert result.kind.value == fields["kind"]

    def test_does_not_consult_segments(self, premium_de):
        flag = make_flag(id="f", enabled=False, segments=["ghost"])
        # A missing segment would be logged if consulted
        assert evaluate_flag(flag, {}, premium_de) == EvaluationResult(kind=FlagKind.BOOLEAN, result=False)


class TestSegments:
    """Ordered segment matching."""

    def test_segment_match_serves_positive_outcome(self, segments, premium_de):
        flag = make_flag(id="f", segments=["premium"])
        assert evaluate_flag(flag, segments, premium_de).result is True

    def test_variant_positive_outcome(self, segments, premium_de):
        flag = make_flag(
            id="f", kind="variant", variants=["control", "treatment"], default="control",
            match_variant="treatment", segments=["premium"],
        )
        assert evaluate_flag(flag, segments, premium_de).result == "treatment"

    def test_variant_positive_outcome_defaults_to_first_variant(self, segments, premium_de):
        flag = make_flag(
            id="f", kind="variant", variants=["blue", "green"], default="green", segments=["premium"],
        )
        assert evaluate_flag(flag, segments, premium_de).result == "blue"

    def test_payload_positive_outcome(self, segments, premium_de):
        flag = make_flag(id="f", kind="payload", payload={"limit": 10}, segments=["germany"])
        assert evaluate_flag(flag, segments, premium_de).result == {"limit": 10}

    def test_first_matching_segment_wins(self, segments, premium_de):
        flag = make_flag(
            id="f",
            kind="variant",
            variants=["s1", "s2"],
            default="s2",
            segments=["premium", "germany"],
            segment_rollouts={"premium": {"s1": 10000}, "germany": {"s2": 10000}},
        )
        for _ in range(5):
            assert evaluate_flag(flag, segments, premium_de).result == "s1"

    def test_order_decides_precedence(self, segments, premium_de):
        flag = make_flag(
            id="f",
            kind="variant",
            variants=["s1", "s2"],
            default="s1",
            segments=["germany", "premium"],
            segment_rollouts={"premium": {"s1": 10000}, "germany": {"s2": 10000}},
        )
        assert evaluate_flag(flag, segments, premium_de).result == "s2"

    def test_non_matching_segment_falls_through(self, segments, premium_de):
        flag = make_flag(id="f", segments=["nobody", "germany"])
        assert evaluate_flag(flag, segments, premium_de).result is True

    def test_matched_segment_rollout_is_final(self, segments, premium_de):
        # Segment buckets the subject "off"; the tenant-wide rollout is not consulted
        flag = make_flag(
            id="f",
            segments=["premium"],
            segment_rollouts={"premium": {"off": 10000}},
            rollout={"on": 10000},
        )
        assert evaluate_flag(flag, segments, premium_de).result is False

    def test_missing_segment_fails_open(self, segments, premium_de, caplog):
        flag = make_flag(id="f", segments=["ghost", "germany"])
        with caplog.at_level(logging.WARNING, logger="src.features.engine"):
            result = evaluate_flag(flag, segments, premium_de)

        assert result.result is True
        assert any("missing segment" in record.message for record in caplog.records)

    def test_missing_segment_only_falls_back_to_default(self, premium_de):
        flag = make_flag(id="f", segments=["ghost"], default=False)
        assert evaluate_flag(flag, {}, premium_de).result is False


class TestRollout:
    """Tenant-wide rollout when no segment matches."""

    def test_no_rollout_returns_default(self, segments):
        flag = make_flag(id="f", segments=["nobody"], default=True)
        assert evaluate_flag(flag, segments, EvaluationContext(id="u")).result is True

    def test_full_rollout(self):
        flag = make_flag(id="f", rollout={"on": 10000, "off": 0})
        assert evaluate_flag(flag, {}, EvaluationContext(id="u")).result is True

    def test_rollout_boundary(self):
        flag = make_flag(id="split", rollout={"off": 3000, "on": 7000})
        below = first_subject_in("split", 0, 3000)
        above = first_subject_in("split", 3000, 10000)

        assert evaluate_flag(flag, {}, EvaluationContext(id=below)).result is False
        assert evaluate_flag(flag, {}, EvaluationContext(id=above)).result is True

    def test_variant_rollout(self):
        flag = make_flag(
            id="exp", kind="variant", variants=["a", "b", "c"], default="a",
            rollout={"c": 2000, "a": 5000, "b": 3000},
        )
        # Lexicographic ranges: a [0, 5000), b [5000, 8000), c [8000, 10000)
        assert evaluate_flag(flag, {}, EvaluationContext(id=first_subject_in("exp", 0, 5000))).result == "a"
        assert evaluate_flag(flag, {}, EvaluationContext(id=first_subject_in("exp", 5000, 8000))).result == "b"
        assert evaluate_flag(flag, {}, EvaluationContext(id=first_subject_in("exp", 8000, 10000))).result == "c"

    def test_payload_rollout_off_serves_default(self):
        flag = make_flag(id="p", kind="payload", payload="on-value", default="off-value", rollout={"off": 10000})
        assert evaluate_flag(flag, {}, EvaluationContext(id="u")).result == "off-value"

    def test_missing_subject_exclude_policy_serves_default(self):
        flag = make_flag(id="f", rollout={"on": 10000}, default=False)
        result = evaluate_flag(flag, {}, EvaluationContext(), MissingSubjectPolicy.EXCLUDE)
        assert result.result is False

    def test_missing_subject_random_policy_still_buckets(self):
        flag = make_flag(id="f", rollout={"on": 10000}, default=False)
        result = evaluate_flag(flag, {}, EvaluationContext(), MissingSubjectPolicy.RANDOM)
        assert result.result is True

    def test_missing_subject_random_policy_is_not_sticky(self):
        flag = make_flag(id="f", rollout={"on": 5000, "off": 5000})
        results = {evaluate_flag(flag, {}, EvaluationContext()).result for _ in range(200)}
        assert results == {True, False}

    def test_segment_match_without_subject_needs_no_bucket(self, segments):
        flag = make_flag(id="f", segments=["premium"], rollout={"off": 10000})
        context = EvaluationContext(user={"plan": "premium"})
        result = evaluate_flag(flag, segments, context, MissingSubjectPolicy.EXCLUDE)
        assert result.result is True

    @given(subject_id=st.text(min_size=1, max_size=30))
    @settings(max_examples=100)
    def test_deterministic(self, subject_id):
        flag = make_flag(
            id="exp", kind="variant", variants=["a", "b", "c"], default="a",
            rollout={"a": 3333, "b": 3333, "c": 3334},
        )
        context = EvaluationContext(id=subject_id)
        results = {evaluate_flag(flag, {}, context).result for _ in range(5)}
        assert len(results) == 1


class TestEvaluateAll:
    """Batch evaluation over one snapshot."""

    def test_evaluates_every_flag_independently(self, segments, premium_de):
        data = AppData(
            flags={
                "a": make_flag(id="a", segments=["premium"]),
                "b": make_flag(id="b", enabled=False, default=True),
                "c": make_flag(id="c", kind="payload", payload=[1, 2], segments=["germany"]),
            },
            segments=segments,
        )
        results = evaluate_all(data, premium_de)

        assert {k: v.to_response() for k, v in results.items()} == {
            "a": {"type": "boolean", "result": True},
            "b": {"type": "boolean", "result": True},
            "c": {"type": "payload", "result": [1, 2]},
        }

    def test_missing_segment_does_not_block_other_flags(self, segments, premium_de):
        data = AppData(
            flags={
                "broken": make_flag(id="broken", segments=["ghost"], default=False),
                "fine": make_flag(id="fine", segments=["premium"]),
            },
            segments=segments,
        )
        results = evaluate_all(data, premium_de)
        assert results["broken"].result is False
        assert results["fine"].result is True

    def test_restricted_to_flag_ids(self, segments, premium_de):
        data = AppData(
            flags={"a": make_flag(id="a"), "b": make_flag(id="b")},
            segments=segments,
        )
        assert set(evaluate_all(data, premium_de, flag_ids=["b", "zzz"])) == {"b"}

    def test_unexpected_failure_serves_default(self, premium_de, monkeypatch):
        data = AppData(flags={"a": make_flag(id="a", default=True, segments=[])})

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("src.features.engine.evaluate_flag", explode)
        results = evaluate_all(data, premium_de)
        assert results["a"].result is True

    def test_empty_document(self, premium_de):
        assert evaluate_all(AppData(), premium_de) == {}
