"""
Stable percentage bucketing for rollouts.

A (flag id, subject id) pair maps to a position in ``[0, ROLLOUT_TOTAL)``. Positions
depend only on those two strings, so changing one flag's weights never moves subjects
of another flag, and widening one outcome only moves subjects sitting between the old
and the new boundary.
"""
import hashlib
import random
from enum import Enum
from typing import Mapping, Optional

from src.features.models import ROLLOUT_TOTAL


class MissingSubjectPolicy(str, Enum):
    """What to do when a request carries no subject id."""

    # Non-sticky: a fresh random position per evaluation
    RANDOM = "random"
    # No position; rollout decisions fall back to the flag default
    EXCLUDE = "exclude"


_random = random.SystemRandom()


def hash_position(flag_id: str, subject_id: str) -> int:
    """
    Deterministic bucket position for a subject.

    Uses the first 8 bytes (big-endian) of SHA-256 over ``"<flag_id>:<subject_id>"``,
    reduced modulo ROLLOUT_TOTAL.
    """
    digest = hashlib.sha256(f"{flag_id}:{subject_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % ROLLOUT_TOTAL


def bucket(
    flag_id: str,
    subject_id: Optional[str],
    policy: MissingSubjectPolicy = MissingSubjectPolicy.RANDOM,
) -> Optional[int]:
    """
    Map a subject to a position in ``[0, ROLLOUT_TOTAL)``.

    Args:
        flag_id: Flag being evaluated
        subject_id: Stable subject id; None or empty means "no subject"
        policy: Behaviour for a missing subject id

    Returns:
        Bucket position, or None when the subject is missing and the policy is EXCLUDE
    """
    if subject_id:
        return hash_position(flag_id, subject_id)
    if policy is MissingSubjectPolicy.EXCLUDE:
        return None
    return _random.randrange(ROLLOUT_TOTAL)


def select_outcome(rollout: Mapping[str, int], position: int) -> Optional[str]:
    """
    Pick the outcome whose cumulative weight range contains ``position``.

    Ranges are laid out in lexicographic order of outcome keys, so the same weights
    always produce the same boundaries.
    """
    upper = 0
    for outcome in sorted(rollout):
        upper += rollout[outcome]
        if position < upper:
            return outcome
    return None
