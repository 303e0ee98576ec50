"""Proactive insights and the daily digest."""

from datetime import date
from typing import Any

from .analytics import financial_summary, spending_patterns
from .budgets import budget_alerts, goal_progress
from .database import Database
from .utils import trailing_window_start


LOW_RESERVES = 10000
HIGH_SHARE_PERCENT = 25
MAX_INSIGHTS = 10


def _spending_insights(db: Database, user_id: str) -> list[dict[str, Any]]:
    """Insights from expense patterns over the last 3 calendar months."""
    today = date.today()
    patterns = spending_patterns(
        db, user_id, trailing_window_start(3, today).isoformat(), today.isoformat()
    )

    high_share = []
    increasing = []
    decreasing = []

    for p in patterns:
        category = p["category"]
        if p["percentage"] > HIGH_SHARE_PERCENT:
            high_share.append({
                "type": "info",
                "category": category,
                "title": f"{category} is {p['percentage']:.1f}% of total expenses",
                "description": (
                    f"You're spending ${p['total']:,.2f} on {category}. "
                    "This represents a significant portion of your budget."
                ),
                "impact": p["total"],
                "actionable": True,
                "recommendation": f"Review {category} expenses to identify potential savings opportunities.",
            })
        if p["trend"] == "increasing":
            increasing.append({
                "type": "warning",
                "category": category,
                "title": f"{category} costs are increasing",
                "description": f"Spending on {category} has been trending upward over the past 3 months.",
                "impact": p["total"],
                "actionable": True,
                "recommendation": (
                    f"Investigate why {category} costs are rising and consider cost-control measures."
                ),
            })
        elif p["trend"] == "decreasing":
            decreasing.append({
                "type": "opportunity",
                "category": category,
                "title": f"Great job reducing {category} costs",
                "description": f"You've successfully decreased spending on {category} over recent months.",
                "impact": p["total"],
                "actionable": False,
            })

    return high_share + increasing + decreasing


def generate_insights(db: Database, user_id: str) -> list[dict[str, Any]]:
    """Ranked list of at most 10 insights.

    Order: low cash warning, budget overruns, then spending insights
    (high share, increasing, decreasing).
    """
    insights = []

    cash = financial_summary(db, user_id)["profit"]
    if cash < LOW_RESERVES:
        insights.append({
            "type": "warning",
            "category": "Cash Flow",
            "title": "Low cash reserves",
            "description": f"Your current cash position is ${cash:,.2f}. Consider building reserves.",
            "impact": cash,
            "actionable": True,
            "recommendation": "Aim to build at least 3 months of operating expenses in reserves.",
        })

    for v in budget_alerts(db, user_id):
        if v["status"] != "over":
            continue
        category = v["budget"]["category"]
        insights.append({
            "type": "warning",
            "category": category,
            "title": f"{category} budget exceeded",
            "description": (
                f"You've spent ${v['actual']:,.2f} against a budget of "
                f"${v['budget']['amount']:,.2f}."
            ),
            "impact": abs(v["variance"]),
            "actionable": True,
            "recommendation": f"Review {category} expenses and adjust budget or reduce spending.",
        })

    insights.extend(_spending_insights(db, user_id))
    return insights[:MAX_INSIGHTS]


def daily_digest(db: Database, user_id: str) -> dict[str, Any]:
    """Today's snapshot: cash, today's flows, alerts, budgets, goals."""
    today = date.today().isoformat()
    conn = db.connect()

    row = conn.execute("""
        SELECT
            COALESCE(SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END), 0) as income,
            COALESCE(SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END), 0) as expenses
        FROM transactions
        WHERE user_id = ? AND date = ?
    """, (user_id, today)).fetchone()

    daily_income = round(row["income"], 2)
    daily_expenses = round(row["expenses"], 2)

    flagged_budgets = budget_alerts(db, user_id)
    if not flagged_budgets:
        budget_status = "All budgets on track"
    else:
        n = len(flagged_budgets)
        budget_status = f"{n} budget{'s' if n > 1 else ''} need attention"

    insights = generate_insights(db, user_id)

    active_goals = goal_progress(db, user_id)["goals"]
    goal_summary = None
    if active_goals:
        n = len(active_goals)
        avg = sum(g["progress_percentage"] for g in active_goals) / n
        goal_summary = f"{n} active goal{'s' if n > 1 else ''}, avg {avg:.0f}% complete"

    return {
        "date": today,
        "cash_balance": financial_summary(db, user_id)["profit"],
        "daily_income": daily_income,
        "daily_expenses": daily_expenses,
        "daily_profit": round(daily_income - daily_expenses, 2),
        "active_alerts": len(db.get_alerts(user_id)),
        "budget_status": budget_status,
        "top_insight": insights[0]["title"] if insights else None,
        "goal_progress": goal_summary,
    }
