"""Financial profile formatting and scoring.

Turns a ClientFinancialProfile into the derived figures the analyses need
(debt totals, investment totals, required monthly contributions, a 0-100
health score) and renders them into a plain-text brief for the provider.

Everything here is pure. render_profile_brief() keeps wall-clock time out of
the body so identical inputs always produce byte-identical briefs.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from analysis_gateway.models import (
    AssetBuckets,
    ClientFinancialProfile,
    DebtEntry,
    PlanSnapshot,
)

DEFAULT_ANNUAL_RETURN_PCT = 12.0

# Entries below both thresholds are treated as noise in totals.
DEBT_EMI_THRESHOLD = 100.0
DEBT_OUTSTANDING_THRESHOLD = 1000.0

SUBSCORE_MAX = 25
SCORE_MAX = 100


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def format_inr(amount: float) -> str:
    """Format an amount in whole rupees with Indian digit grouping.

    >>> format_inr(100000)
    '₹1,00,000'
    """
    value = round_half_up(amount)
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    return "{}₹{}".format(sign, digits)


@dataclass(frozen=True)
class DebtSummary:
    total_emi: float
    total_outstanding: float
    included: List[DebtEntry] = field(default_factory=list)
    active_count: int = 0


@dataclass(frozen=True)
class InvestmentSummary:
    total: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    cash: float = 0.0
    real_estate: float = 0.0


@dataclass(frozen=True)
class HealthScore:
    expense_score: int
    debt_score: int
    emergency_score: int
    investment_score: int

    @property
    def total(self) -> int:
        return min(
            self.expense_score
            + self.debt_score
            + self.emergency_score
            + self.investment_score,
            SCORE_MAX,
        )


@dataclass(frozen=True)
class ProfileBrief:
    """Rendered client brief. `body` is deterministic, `generated_at` is not."""

    body: str
    generated_at: datetime


def summarize_debts(debts: Sequence[DebtEntry]) -> DebtSummary:
    """Total the client's debts.

    An entry is active when it has any EMI or outstanding balance. It counts
    towards the totals only when its EMI exceeds 100 or its outstanding
    balance exceeds 1000.
    """
    included = [
        debt
        for debt in debts
        if debt.emi > DEBT_EMI_THRESHOLD
        or debt.outstanding > DEBT_OUTSTANDING_THRESHOLD
    ]
    return DebtSummary(
        total_emi=sum(debt.emi for debt in included),
        total_outstanding=sum(debt.outstanding for debt in included),
        included=included,
        active_count=sum(1 for debt in debts if debt.emi > 0 or debt.outstanding > 0),
    )


def summarize_investments(assets: AssetBuckets) -> InvestmentSummary:
    """Total investable assets: equity, fixed income and other."""
    breakdown = {
        "equity": assets.equity,
        "fixed_income": assets.fixed_income,
        "other": assets.other,
    }
    return InvestmentSummary(
        total=sum(breakdown.values()),
        breakdown=breakdown,
        cash=assets.cash,
        real_estate=assets.real_estate,
    )


def required_contribution(
    target_amount: float,
    months: int,
    annual_return_pct: float = DEFAULT_ANNUAL_RETURN_PCT,
) -> int:
    """Monthly contribution needed to reach target_amount in `months`.

    Args:
        target_amount: Amount to accumulate.
        months: Number of monthly contributions.
        annual_return_pct: Expected annual return in percent.

    Returns:
        The contribution rounded half-up to a whole currency unit; 0 when
        there is no horizon or nothing to save for.
    """
    if months < 1 or target_amount <= 0:
        return 0
    rate = annual_return_pct / 12 / 100
    if rate == 0:
        return round_half_up(target_amount / months)
    return round_half_up(target_amount * rate / ((1 + rate) ** months - 1))


def emergency_fund_coverage(cash: float, monthly_expenses: float) -> float:
    """Months of expenses covered by cash, to one decimal place."""
    if monthly_expenses <= 0:
        return 0.0
    return round_half_up(cash / monthly_expenses * 10) / 10


def expense_subscore(income: float, expenses: float, total_emi: float) -> int:
    if income <= 0:
        return 0
    ratio = (expenses + total_emi) / income
    if ratio < 0.5:
        return 25
    if ratio < 0.7:
        return 20
    if ratio < 0.8:
        return 15
    if ratio < 0.9:
        return 10
    return 0


def debt_subscore(income: float, total_emi: float) -> int:
    if total_emi <= 0:
        return 25
    ratio = total_emi / income if income > 0 else math.inf
    if ratio < 0.2:
        return 20
    if ratio < 0.3:
        return 15
    if ratio < 0.4:
        return 10
    return 0


def emergency_subscore(coverage_months: float) -> int:
    if coverage_months >= 6:
        return 25
    if coverage_months >= 3:
        return 15
    if coverage_months >= 1:
        return 10
    return 0


def investment_subscore(investments: float, income: float) -> int:
    if investments <= 0:
        return 0
    if investments > income * 12:
        return 25
    if investments > income * 6:
        return 20
    if investments > income * 3:
        return 15
    return 10


def financial_health_score(profile: ClientFinancialProfile) -> HealthScore:
    """Score the profile out of 100 across four 25-point dimensions."""
    income = profile.monthly_income
    expenses = profile.monthly_expenses
    total_emi = summarize_debts(profile.debts).total_emi
    coverage = emergency_fund_coverage(profile.assets.cash, expenses)
    investments = summarize_investments(profile.assets).total

    return HealthScore(
        expense_score=min(expense_subscore(income, expenses, total_emi), SUBSCORE_MAX),
        debt_score=min(debt_subscore(income, total_emi), SUBSCORE_MAX),
        emergency_score=min(emergency_subscore(coverage), SUBSCORE_MAX),
        investment_score=min(investment_subscore(investments, income), SUBSCORE_MAX),
    )


def goal_months(target_year: int, reference_year: int) -> int:
    """Months between the reference year and a goal's target year."""
    return max(0, (target_year - reference_year) * 12)


def _optional(value: Optional[object]) -> str:
    return "Not provided" if value is None or value == "" else str(value)


def render_profile_brief(
    profile: ClientFinancialProfile,
    reference_year: int,
    annual_return_pct: float = DEFAULT_ANNUAL_RETURN_PCT,
) -> ProfileBrief:
    """Render the client profile as a fixed-layout text brief.

    Args:
        profile: Client data to render.
        reference_year: Year goal horizons are measured from. Passed in
            rather than read from the clock so the body is reproducible.
        annual_return_pct: Expected return used for goal contributions.

    Returns:
        ProfileBrief whose body has the sections CLIENT PROFILE, CASH FLOW,
        DEBTS, ASSETS, GOALS and FEASIBILITY, in that order.
    """
    debts = summarize_debts(profile.debts)
    investments = summarize_investments(profile.assets)
    score = financial_health_score(profile)
    surplus = profile.monthly_income - profile.monthly_expenses
    available = surplus - debts.total_emi
    coverage = emergency_fund_coverage(profile.assets.cash, profile.monthly_expenses)

    lines = [
        "CLIENT PROFILE:",
        "- Name: {}".format(_optional(profile.name)),
        "- Age: {}".format(_optional(profile.age)),
        "- Occupation: {}".format(_optional(profile.occupation)),
        "- Risk Tolerance: {}".format(_optional(profile.risk_tolerance)),
        "",
        "CASH FLOW:",
        "- Monthly Income: {}".format(format_inr(profile.monthly_income)),
        "- Monthly Expenses: {}".format(format_inr(profile.monthly_expenses)),
        "- Monthly Surplus (before EMIs): {}".format(format_inr(surplus)),
        "- Combined Monthly EMIs: {}".format(format_inr(debts.total_emi)),
        "- Post-EMI Cash Flow: {}".format(format_inr(available)),
        "",
        "DEBTS:",
        "- Active Debts: {}".format(debts.active_count),
        "- Total Outstanding: {}".format(format_inr(debts.total_outstanding)),
    ]
    if debts.included:
        for debt in debts.included:
            lines.append(
                "- {}: EMI {}, Outstanding {}, Rate {}%{}".format(
                    debt.type,
                    format_inr(debt.emi),
                    format_inr(debt.outstanding),
                    debt.interest_rate,
                    ", Lender {}".format(debt.lender) if debt.lender else "",
                )
            )
    else:
        lines.append("- No active debts")

    lines.extend(
        [
            "",
            "ASSETS:",
            "- Cash & Bank Savings: {}".format(format_inr(profile.assets.cash)),
            "- Equity: {}".format(format_inr(profile.assets.equity)),
            "- Fixed Income: {}".format(format_inr(profile.assets.fixed_income)),
            "- Other Investments: {}".format(format_inr(profile.assets.other)),
            "- Real Estate: {}".format(format_inr(profile.assets.real_estate)),
            "- Total Investments: {}".format(format_inr(investments.total)),
            "- Emergency Fund Coverage: {} months".format(coverage),
            "",
            "GOALS:",
        ]
    )

    total_required = 0
    if profile.goals:
        for index, goal in enumerate(profile.goals, start=1):
            months = goal_months(goal.target_year, reference_year)
            contribution = required_contribution(
                goal.target_amount, months, annual_return_pct
            )
            total_required += contribution
            lines.append(
                "- Goal {}: {} | Target {} by {} ({} months) | Priority {} | "
                "Required Monthly: {}".format(
                    index,
                    goal.name,
                    format_inr(goal.target_amount),
                    goal.target_year,
                    months,
                    goal.priority,
                    format_inr(contribution),
                )
            )
    else:
        lines.append("- No goals specified")

    if total_required <= available:
        status = "ACHIEVABLE"
    else:
        status = "SHORTFALL OF {}".format(format_inr(total_required - available))

    lines.extend(
        [
            "",
            "FEASIBILITY:",
            "- Total Monthly Contribution Required: {}".format(
                format_inr(total_required)
            ),
            "- Available Monthly Surplus: {}".format(format_inr(available)),
            "- Status: {}".format(status),
            "- Financial Health Score: {}/100".format(score.total),
        ]
    )

    return ProfileBrief(
        body="\n".join(lines), generated_at=datetime.now(timezone.utc)
    )


GENERAL_CRITERIA = """GENERAL COMPARISON CRITERIA:
1. Financial Health Improvement: Which plan better improves overall financial health?
2. Risk Management: Which plan better manages financial risks?
3. Return Potential: Which plan has better return expectations?
4. Feasibility: Which plan is more realistic to implement?
5. Flexibility: Which plan allows for better future adjustments?"""

COMPARISON_CRITERIA: Dict[str, str] = {
    "goal_based": """COMPARISON CRITERIA FOR GOAL-BASED PLANS:
1. Goal Achievement Probability: Which plan is more likely to meet the stated goals?
2. Timeline Feasibility: Which plan has more realistic timelines?
3. Risk-Return Balance: Which plan better balances risk with expected returns?
4. SIP Requirements: Which plan has more manageable monthly investments?
5. Goal Prioritization: Which plan better prioritizes multiple goals?
6. Flexibility: Which plan allows for better adjustments over time?""",
    "cash_flow": """COMPARISON CRITERIA FOR CASH FLOW PLANS:
1. Debt Management: Which plan more effectively reduces the debt burden?
2. Emergency Fund Strategy: Which plan builds the emergency fund more efficiently?
3. Monthly Surplus Optimization: Which plan better uses the available surplus?
4. EMI Ratio Improvement: Which plan achieves better debt-to-income ratios?
5. Investment Growth: Which plan creates more long-term wealth?
6. Risk Management: Which plan better protects against financial emergencies?""",
}


def comparison_criteria(plan_type: str) -> str:
    """Return the criteria block for a plan type, or the general one."""
    return COMPARISON_CRITERIA.get(plan_type, GENERAL_CRITERIA)


def _plan_lines(label: str, plan: PlanSnapshot) -> List[str]:
    metrics = (
        json.dumps(plan.key_metrics, indent=2, sort_keys=True)
        if plan.key_metrics
        else "None"
    )
    return [
        "PLAN {} DETAILS:".format(label),
        "- Plan Type: {}".format(plan.plan_type),
        "- Version: {}".format(_optional(plan.version)),
        "- Created: {}".format(_optional(plan.created_at)),
        "- Status: {}".format(_optional(plan.status)),
        "- Key Metrics: {}".format(metrics),
        "- Advisor Recommendations: {}".format(
            ", ".join(plan.advisor_key_points) or "None"
        ),
        "- AI Recommendations: {}".format(plan.ai_recommendation or "None"),
    ]


def render_comparison_brief(
    plan_a: PlanSnapshot,
    plan_b: PlanSnapshot,
    reference_year: int,
) -> str:
    """Render two plans side by side for a comparison.

    The client context comes from plan A's profile, or plan B's when A has
    none. Criteria follow plan A's type.
    """
    profile = plan_a.client_profile or plan_b.client_profile
    if profile is not None:
        context = render_profile_brief(profile, reference_year).body
    else:
        context = "- Not provided"

    lines = ["CLIENT CONTEXT:", context, ""]
    lines.extend(_plan_lines("A", plan_a))
    lines.append("")
    lines.extend(_plan_lines("B", plan_b))
    lines.extend(["", comparison_criteria(plan_a.plan_type)])
    return "\n".join(lines)
