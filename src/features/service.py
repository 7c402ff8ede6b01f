"""Feature flag evaluation service."""
import logging
from typing import Any, Dict, Mapping, Optional

from src.exceptions import ErrorCode, NotFoundError
from src.features.bucketing import MissingSubjectPolicy
from src.features.engine import evaluate_all, evaluate_flag
from src.features.models import (
    EvaluationContext,
    EvaluationRequest,
    EvaluationResult,
    FlagKind,
)
from src.features.store import AppStore

logger = logging.getLogger(__name__)


class FeatureFlagService:
    """Evaluates a tenant's flags against request contexts."""

    def __init__(
        self,
        store: AppStore,
        missing_subject_policy: MissingSubjectPolicy = MissingSubjectPolicy.RANDOM,
    ):
        """
        Initialize feature flag service.

        Args:
            store: Tenant document store
            missing_subject_policy: Bucketing behaviour for requests without a subject id
        """
        self.store = store
        self.missing_subject_policy = missing_subject_policy

    async def evaluate_all(self, context: EvaluationContext) -> Dict[str, EvaluationResult]:
        """
        Evaluate every flag of the tenant against one snapshot.

        Args:
            context: Request context

        Returns:
            Dictionary mapping flag ids to results
        """
        data = await self.store.get_data()
        results = evaluate_all(data, context, self.missing_subject_policy)

        logger.debug(
            "Evaluated flags",
            extra={"app": self.store.app, "env": self.store.env, "flag_count": len(results)},
        )
        return results

    async def evaluate(self, flag_id: str, context: EvaluationContext) -> EvaluationResult:
        """
        Evaluate one flag.

        Raises:
            NotFoundError: FLAG_NOT_FOUND when the tenant has no such flag
        """
        data = await self.store.get_data()
        flag = data.flags.get(flag_id)
        if flag is None:
            raise NotFoundError(ErrorCode.FLAG_NOT_FOUND, "Flag", flag_id)

        return evaluate_flag(flag, data.segments, context, self.missing_subject_policy)

    async def is_enabled(self, flag_id: str, context: EvaluationContext) -> bool:
        """True only when a boolean flag resolves to True."""
        result = await self.evaluate(flag_id, context)
        return result.kind is FlagKind.BOOLEAN and result.result is True

    async def evaluate_request(
        self,
        body: EvaluationRequest,
        headers: Optional[Mapping[str, str]] = None,
        geo: Optional[Mapping[str, Any]] = None,
        flag_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Evaluate a client request and return the wire response.

        Headers and geo come from the routing layer, never from the client body.
        The batch form maps flag ids to ``{type, result}``; with ``flag_id`` the
        single ``{type, result}`` shape is returned.
        """
        context = EvaluationContext.from_request(body, headers=headers, geo=geo)

        if flag_id is not None:
            result = await self.evaluate(flag_id, context)
            return result.to_response()

        results = await self.evaluate_all(context)
        return {key: result.to_response() for key, result in results.items()}
