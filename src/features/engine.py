"""
Flag evaluation engine.

Evaluation of one flag for one context:

1. A disabled flag returns its ``default``.
2. Segments are tried in declared order and the first match wins. A matched segment
   with an entry in ``segment_rollouts`` is resolved through that distribution;
   otherwise the flag's positive outcome is served. Once a segment matched, its
   decision is final even if it buckets the subject into an "off" outcome.
3. Without a match, the tenant-wide ``rollout`` is bucketed.
4. Without a rollout, ``default`` is returned.

A segment id missing from the document is a configuration integrity fault. It is
logged and treated as non-matching so the remaining segments still apply.
"""
import logging
from typing import Mapping, Optional

from src.features.bucketing import MissingSubjectPolicy, bucket, select_outcome
from src.features.models import (
    AppData,
    BaseFeatureFlag,
    EvaluationContext,
    EvaluationResult,
    SegmentRule,
)
from src.features.rules import matches

logger = logging.getLogger(__name__)


def _default(flag: BaseFeatureFlag) -> EvaluationResult:
    return EvaluationResult(kind=flag.flag_kind, result=flag.default)  # type: ignore[attr-defined]


def _from_rollout(
    flag: BaseFeatureFlag,
    rollout: Mapping[str, int],
    context: EvaluationContext,
    policy: MissingSubjectPolicy,
) -> EvaluationResult:
    position = bucket(flag.id, context.subject_id, policy)
    if position is None:
        return _default(flag)

    outcome = select_outcome(rollout, position)
    if outcome is None:
        return _default(flag)

    return EvaluationResult(kind=flag.flag_kind, result=flag.outcome_result(outcome))


def evaluate_flag(
    flag: BaseFeatureFlag,
    segments: Mapping[str, SegmentRule],
    context: EvaluationContext,
    policy: MissingSubjectPolicy = MissingSubjectPolicy.RANDOM,
) -> EvaluationResult:
    """
    Evaluate a single flag.

    Args:
        flag: Flag to evaluate
        segments: Segment rules of the same document snapshot
        context: Request context
        policy: Bucketing behaviour for a missing subject id

    Returns:
        EvaluationResult with the flag's kind and decided result
    """
    if not flag.enabled:
        return _default(flag)

    for segment_id in flag.segments:
        rule = segments.get(segment_id)
        if rule is None:
            logger.warning(
                "Flag references a missing segment, treating it as non-matching",
                extra={"flag_id": flag.id, "segment_id": segment_id},
            )
            continue

        if not matches(rule, context):
            continue

        override = flag.segment_rollouts.get(segment_id)
        if override:
            return _from_rollout(flag, override, context, policy)
        return EvaluationResult(kind=flag.flag_kind, result=flag.positive_result())

    if flag.rollout:
        return _from_rollout(flag, flag.rollout, context, policy)

    return _default(flag)


def evaluate_all(
    data: AppData,
    context: EvaluationContext,
    policy: MissingSubjectPolicy = MissingSubjectPolicy.RANDOM,
    flag_ids: Optional[list[str]] = None,
) -> dict[str, EvaluationResult]:
    """
    Evaluate flags of one document snapshot independently.

    A flag whose evaluation fails is reported with its default so the rest of the
    batch is still answered.

    Args:
        data: Tenant document snapshot
        context: Request context
        policy: Bucketing behaviour for a missing subject id
        flag_ids: Restrict evaluation to these ids (unknown ids are skipped)

    Returns:
        Mapping of flag id to EvaluationResult
    """
    selected = data.flags if flag_ids is None else {
        flag_id: data.flags[flag_id] for flag_id in flag_ids if flag_id in data.flags
    }

    results: dict[str, EvaluationResult] = {}
    for flag_id, flag in selected.items():
        try:
            results[flag_id] = evaluate_flag(flag, data.segments, context, policy)
        except Exception:
            logger.error(
                "Flag evaluation failed, serving default",
                extra={"flag_id": flag_id},
                exc_info=True,
            )
            results[flag_id] = _default(flag)
    return results
