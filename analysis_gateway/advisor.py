"""Advisory analyses built on top of the request dispatcher.

Each analysis renders a brief from the client data, appends the template's
instruction block, and dispatches with structured-document recovery enabled.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Optional

from analysis_gateway.dispatcher import RequestDispatcher
from analysis_gateway.formatter import render_comparison_brief, render_profile_brief
from analysis_gateway.models import (
    AnalysisResult,
    ClientFinancialProfile,
    ErrorCategory,
    PlanSnapshot,
    Provenance,
    RecoveredDocument,
)
from analysis_gateway.prompts import PromptLibrary
from analysis_gateway.recovery import build_fallback
from analysis_gateway.telemetry import logger

DEBT_PROMPT = "debt_analysis"
GOAL_PROMPT = "goal_analysis"
COMPARISON_PROMPT = "plan_comparison"

REQUIRED_COMPARISON_FIELDS = ("executiveSummary", "keyDifferences", "recommendation")


class AdvisoryAnalyst:
    """Runs the debt-strategy, goal and plan comparison analyses."""

    def __init__(self, dispatcher: RequestDispatcher, prompts: PromptLibrary) -> None:
        self._dispatcher = dispatcher
        self._prompts = prompts

    async def analyze_debt_strategy(
        self,
        profile: ClientFinancialProfile,
        reference_year: Optional[int] = None,
    ) -> AnalysisResult:
        """Ask the provider for a debt prioritisation strategy.

        Raises:
            PromptNotFoundError: If the debt prompt is missing from the library.
        """
        template = self._prompts.get(DEBT_PROMPT)
        brief = render_profile_brief(profile, _year_or_now(reference_year))
        return await self._dispatcher.dispatch(
            template.system,
            template.user_message(brief.body),
            template.temperature,
            expect_json=True,
            operation="debt_strategy",
        )

    async def analyze_goals(
        self,
        profile: ClientFinancialProfile,
        reference_year: Optional[int] = None,
    ) -> AnalysisResult:
        """Ask the provider for a multi-goal plan.

        A profile without goals fails locally with category client and is
        still counted in the statistics.

        Raises:
            PromptNotFoundError: If the goal prompt is missing from the library.
        """
        template = self._prompts.get(GOAL_PROMPT)
        if not profile.goals:
            return self._dispatcher.record_local_failure(
                "goal_analysis",
                "Client profile has no goals to analyze",
                ErrorCategory.CLIENT,
            )
        brief = render_profile_brief(profile, _year_or_now(reference_year))
        return await self._dispatcher.dispatch(
            template.system,
            template.user_message(brief.body),
            template.temperature,
            expect_json=True,
            operation="goal_analysis",
        )

    async def compare_plans(
        self,
        plan_a: PlanSnapshot,
        plan_b: PlanSnapshot,
        reference_year: Optional[int] = None,
    ) -> AnalysisResult:
        """Ask the provider to compare two plans for the same client.

        The recovered document always carries executiveSummary,
        keyDifferences and recommendation, with the recommendation's
        confidenceScore kept within [0, 1].

        Raises:
            PromptNotFoundError: If the comparison prompt is missing.
        """
        template = self._prompts.get(COMPARISON_PROMPT)
        brief = render_comparison_brief(plan_a, plan_b, _year_or_now(reference_year))
        result = await self._dispatcher.dispatch(
            template.system,
            template.user_message(brief),
            template.temperature,
            expect_json=True,
            operation="plan_comparison",
        )
        if not result.success or result.document is None:
            return result
        return result.model_copy(
            update={"document": finalize_comparison(result.document)}
        )


def _missing(value: Any) -> bool:
    return value is None or value == ""


def finalize_comparison(document: RecoveredDocument) -> RecoveredDocument:
    """Enforce the comparison document's required fields and score range.

    A document missing any required field is replaced by the comparison
    placeholder with provenance fallback.
    """
    value = document.value
    missing = [
        key
        for key in REQUIRED_COMPARISON_FIELDS
        if not isinstance(value, dict) or _missing(value.get(key))
    ]
    if missing:
        logger.warning(
            "Comparison reply lacks %s; using placeholder", ", ".join(missing)
        )
        return RecoveredDocument(
            value=build_fallback("plan comparison")[1],
            provenance=Provenance.FALLBACK,
            attempts=document.attempts + ["required_fields"],
        )

    value = copy.deepcopy(value)
    recommendation = value["recommendation"]
    if isinstance(recommendation, dict):
        score = recommendation.get("confidenceScore")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            recommendation["confidenceScore"] = max(0.0, min(1.0, float(score)))
    return document.model_copy(update={"value": value})


def _year_or_now(reference_year: Optional[int]) -> int:
    if reference_year is not None:
        return reference_year
    return datetime.now(timezone.utc).year
