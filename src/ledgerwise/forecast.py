"""Cash-flow projection and what-if scenario simulation."""

import logging
from datetime import date
from typing import Any

from .analytics import UNBOUNDED_RUNWAY, financial_summary, monthly_trends, runway_analysis
from .database import Database
from .utils import add_months, month_key, month_start


logger = logging.getLogger(__name__)

HISTORY_MONTHS = 6
SCENARIO_TYPES = ("new_hire", "price_change", "cost_reduction", "revenue_increase", "custom")


def calculate_growth_rate(values: list[float]) -> float:
    """Average monthly growth between the oldest and newest value.

    ``values`` are ordered newest first. The rate is the total change
    between the two endpoints spread evenly over the intervals, a two-point
    approximation rather than a regression.

    Returns:
        Monthly growth as a fraction; 0 with fewer than two values or a
        zero oldest value.
    """
    if len(values) < 2:
        return 0.0

    oldest = values[-1]
    newest = values[0]
    if oldest == 0:
        return 0.0

    return ((newest - oldest) / oldest) / (len(values) - 1)


def projection_confidence(month_index: int) -> float:
    """Confidence for the i-th projected month (decays by 0.1, floor 0.5)."""
    return round(max(0.5, 0.9 - 0.1 * month_index), 2)


def forecast_cash_flow(
    db: Database, user_id: str, months: int = 3, persist: bool = True
) -> list[dict[str, Any]]:
    """Project income, expenses and balance for the coming months.

    Uses the trailing 6 calendar months of history. With ``persist`` each
    projected month is appended as a forecast row after rows for past months
    are pruned.

    Args:
        db: Database instance.
        user_id: Owner.
        months: Number of months to project.
        persist: Store the projection as forecast rows.

    Returns:
        List of {month, projected_income, projected_expenses,
        projected_balance, confidence}; empty with fewer than two months of
        history.
    """
    trends = monthly_trends(db, user_id, HISTORY_MONTHS)
    if len(trends) < 2:
        return []

    incomes = [t["income"] for t in trends]
    expenses = [t["expenses"] for t in trends]
    avg_income = sum(incomes) / len(incomes)
    avg_expenses = sum(expenses) / len(expenses)
    income_growth = calculate_growth_rate(incomes)
    expense_growth = calculate_growth_rate(expenses)

    assumptions = (
        f"Based on {len(trends)} months of historical data with "
        f"{income_growth * 100:.1f}% income growth and "
        f"{expense_growth * 100:.1f}% expense growth"
    )

    balance = financial_summary(db, user_id)["profit"]
    first_of_month = month_start(date.today())
    projections = []

    for i in range(1, months + 1):
        projected_income = avg_income * (1 + income_growth) ** i
        projected_expenses = avg_expenses * (1 + expense_growth) ** i
        balance += projected_income - projected_expenses

        projections.append({
            "month": month_key(add_months(first_of_month, i)),
            "projected_income": round(projected_income, 2),
            "projected_expenses": round(projected_expenses, 2),
            "projected_balance": round(balance, 2),
            "confidence": projection_confidence(i),
        })

    if persist:
        db.clear_old_forecasts(user_id)
        for p in projections:
            db.save_forecast(
                user_id,
                forecast_date=p["month"],
                projected_income=p["projected_income"],
                projected_expenses=p["projected_expenses"],
                projected_balance=p["projected_balance"],
                confidence_level=p["confidence"],
                assumptions=assumptions,
            )

    logger.debug("Forecast for %s: %d months, %s", user_id, months, assumptions)
    return projections


def _scenario_recommendation(monthly_impact: float, risk_level: str) -> str:
    if monthly_impact > 0:
        text = f"This scenario would increase your monthly profit by ${abs(monthly_impact):,.2f}. "
        if risk_level == "low":
            return text + "This appears to be a financially sound decision with minimal risk."
        return text + "While positive, ensure you have sufficient cash reserves to manage the transition."

    text = f"This scenario would decrease your monthly profit by ${abs(monthly_impact):,.2f}. "
    if risk_level == "high":
        return text + (
            "This would put your business at significant financial risk. "
            "Build more cash reserves before proceeding."
        )
    if risk_level == "medium":
        return text + "Proceed with caution and monitor cash flow closely."
    return text + "Your business can absorb this cost, but look for ways to optimize the investment."


def simulate_scenario(db: Database, user_id: str, scenario: dict[str, Any]) -> dict[str, Any]:
    """What-if analysis for a recurring monthly profit impact.

    Args:
        db: Database instance.
        user_id: Owner.
        scenario: Dict with type (new_hire, price_change, cost_reduction,
            revenue_increase, custom), monthly_impact (signed, positive adds
            profit), description and optional duration_months (default 12).

    Returns:
        Dictionary with current and projected profit, runway before and
        after, risk_level and a recommendation.

    Raises:
        ValueError: If the scenario type or impact is invalid.
    """
    scenario_type = scenario.get("type", "custom")
    if scenario_type not in SCENARIO_TYPES:
        raise ValueError(f"Unknown scenario type: {scenario_type}. Use one of: {', '.join(SCENARIO_TYPES)}")
    try:
        monthly_impact = float(scenario["monthly_impact"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("monthly_impact must be a number") from None
    duration = int(scenario.get("duration_months") or 12)
    if duration <= 0:
        raise ValueError("duration_months must be positive")

    current_profit = financial_summary(db, user_id)["profit"]
    runway = runway_analysis(db, user_id)
    trends = monthly_trends(db, user_id, 3)

    monthly_profit = (
        sum(t["profit"] for t in trends) / len(trends) if trends else current_profit
    )
    projected_monthly_profit = monthly_profit + monthly_impact
    projected_profit = current_profit + monthly_impact * duration
    profit_change = projected_profit - current_profit

    if projected_monthly_profit < 0:
        risk_level = "high"
    elif projected_monthly_profit < monthly_profit * 0.5:
        risk_level = "medium"
    else:
        risk_level = "low"

    projected_burn = runway["monthly_burn"] + max(0.0, -monthly_impact)
    if projected_monthly_profit >= 0:
        runway_projected = float(UNBOUNDED_RUNWAY)
    elif projected_burn > 0:
        runway_projected = round(max(projected_profit, 0) / projected_burn, 1)
    else:
        runway_projected = 0.0

    return {
        "scenario": {
            "type": scenario_type,
            "monthly_impact": monthly_impact,
            "description": scenario.get("description", ""),
            "duration_months": duration,
        },
        "current_profit": round(current_profit, 2),
        "current_monthly_profit": round(monthly_profit, 2),
        "projected_monthly_profit": round(projected_monthly_profit, 2),
        "projected_profit": round(projected_profit, 2),
        "profit_change": round(profit_change, 2),
        "profit_change_percentage": (
            round(profit_change / current_profit * 100, 2) if current_profit != 0 else 0
        ),
        "cash_runway_current": runway["runway_months"],
        "cash_runway_projected": runway_projected,
        "risk_level": risk_level,
        "recommendation": _scenario_recommendation(monthly_impact, risk_level),
    }
