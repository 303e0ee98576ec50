"""Alert triggers: cash, budgets, goals, trends and anomalies.

Every check queries the alert store before inserting, so a given
(alert type, discriminator) pair produces at most one alert per owner per
calendar day, read and dismissed alerts included.
"""

import logging
from datetime import date
from typing import Any

from .analytics import financial_summary, monthly_trends
from .budgets import budget_alerts, goal_progress
from .database import Database
from .detection import detect_anomalies
from .insights import daily_digest


logger = logging.getLogger(__name__)

DEFAULT_CASH_THRESHOLD = 5000.0
GOAL_AT_RISK_DAYS = 30
MILESTONE_PERCENT = 50
MILESTONE_BAND = 55
DIGEST_METRIC = "daily_digest"


def _today() -> str:
    return date.today().isoformat()


def monitor_cash_balance(
    db: Database, user_id: str, threshold: float = DEFAULT_CASH_THRESHOLD
) -> int:
    """Alert when the cash balance drops below ``threshold``.

    Returns:
        Number of alerts created (0 or 1).
    """
    balance = financial_summary(db, user_id)["profit"]
    if balance >= threshold:
        return 0
    if db.has_alert(user_id, "low_cash", on_date=_today()):
        return 0

    db.create_alert(
        user_id,
        alert_type="low_cash",
        severity="critical" if balance < threshold * 0.5 else "warning",
        title="Low Cash Reserves",
        message=(
            f"Your cash balance is ${balance:,.2f}, which is below the recommended "
            f"threshold of ${threshold:,.2f}."
        ),
        data={"current_balance": balance, "threshold": threshold},
    )
    return 1


def monitor_budgets(db: Database, user_id: str) -> int:
    """One alert per budget that is over or past its threshold this month."""
    created = 0
    today = _today()

    for v in budget_alerts(db, user_id):
        budget = v["budget"]
        category = budget["category"]
        if db.has_alert(user_id, "budget_overrun", on_date=today, category=category):
            continue

        used = v["actual"] / budget["amount"] * 100
        db.create_alert(
            user_id,
            alert_type="budget_overrun",
            severity="critical" if v["actual"] > budget["amount"] * 1.2 else "warning",
            title=f"{category} Budget Alert",
            message=(
                f"You've spent ${v['actual']:,.2f} against a budget of "
                f"${budget['amount']:,.2f} ({used:.0f}% used)."
            ),
            data={"budget_id": budget["id"], "budget": budget["amount"], "actual": v["actual"]},
            category=category,
        )
        created += 1

    return created


def monitor_goals(db: Database, user_id: str) -> int:
    """At-risk warnings and the one-time halfway milestone."""
    created = 0
    today = _today()

    for progress in goal_progress(db, user_id)["goals"]:
        goal = progress["goal"]
        name = goal["description"] or goal["goal_type"]
        pct = progress["progress_percentage"]
        days_remaining = progress["days_remaining"]

        if (
            days_remaining is not None
            and days_remaining < GOAL_AT_RISK_DAYS
            and not progress["on_track"]
            and not db.has_alert(user_id, "goal_progress", on_date=today, goal_id=goal["id"], milestone=None)
        ):
            db.create_alert(
                user_id,
                alert_type="goal_progress",
                severity="warning",
                title=f"Goal At Risk: {name}",
                message=(
                    f"You're {pct:.0f}% towards your goal with {days_remaining} days remaining. "
                    "You may need to accelerate progress."
                ),
                data={"goal_id": goal["id"], "progress": pct},
                goal_id=goal["id"],
            )
            created += 1

        # once ever per goal, no date restriction
        if (
            MILESTONE_PERCENT <= pct < MILESTONE_BAND
            and progress["on_track"]
            and not db.has_alert(user_id, "goal_progress", goal_id=goal["id"], milestone=MILESTONE_PERCENT)
        ):
            db.create_alert(
                user_id,
                alert_type="goal_progress",
                severity="info",
                title="Halfway There!",
                message=f"You've reached 50% of your {name} goal. Keep up the great work!",
                data={"goal_id": goal["id"], "milestone": MILESTONE_PERCENT},
                goal_id=goal["id"],
                milestone=MILESTONE_PERCENT,
            )
            created += 1

    return created


def monitor_trends(db: Database, user_id: str) -> int:
    """Alert on a month-over-month revenue drop or expense spike."""
    trends = monthly_trends(db, user_id, 3)
    if len(trends) < 2:
        return 0

    latest, previous = trends[0], trends[1]
    today = _today()
    created = 0

    if latest["income"] < previous["income"] * 0.8 and not db.has_alert(
        user_id, "trend", on_date=today, metric="income"
    ):
        drop = (previous["income"] - latest["income"]) / previous["income"] * 100
        db.create_alert(
            user_id,
            alert_type="trend",
            severity="warning",
            title="Revenue Decline Detected",
            message=(
                f"Your revenue dropped by {drop:.0f}% this month compared to last month. "
                f"From ${previous['income']:,.2f} to ${latest['income']:,.2f}."
            ),
            data={"previous": previous["income"], "current": latest["income"]},
            metric="income",
        )
        created += 1

    if latest["expenses"] > previous["expenses"] * 1.2 and not db.has_alert(
        user_id, "trend", on_date=today, metric="expenses"
    ):
        if previous["expenses"]:
            increase = f"by {(latest['expenses'] - previous['expenses']) / previous['expenses'] * 100:.0f}%"
        else:
            increase = "sharply"
        db.create_alert(
            user_id,
            alert_type="trend",
            severity="warning",
            title="Expense Spike Detected",
            message=(
                f"Your expenses increased {increase} this month. "
                f"From ${previous['expenses']:,.2f} to ${latest['expenses']:,.2f}."
            ),
            data={"previous": previous["expenses"], "current": latest["expenses"]},
            metric="expenses",
        )
        created += 1

    return created


def run_all_monitoring(
    db: Database, user_id: str, cash_threshold: float | None = None
) -> dict[str, Any]:
    """Run every check in order.

    Returns:
        Number of alerts created per check plus the total.
    """
    if cash_threshold is None:
        cash_threshold = DEFAULT_CASH_THRESHOLD

    summary = {
        "cash": monitor_cash_balance(db, user_id, cash_threshold),
        "budgets": monitor_budgets(db, user_id),
        "goals": monitor_goals(db, user_id),
        "trends": monitor_trends(db, user_id),
        "anomalies": len(detect_anomalies(db, user_id)),
    }
    summary["total"] = sum(summary.values())

    logger.info("Monitoring for %s created %d alerts", user_id, summary["total"])
    return summary


def format_digest(digest: dict[str, Any]) -> str:
    """Plain-text rendering of a daily digest."""
    lines = [
        "Daily Financial Summary",
        "",
        f"Cash Balance: ${digest['cash_balance']:,.2f}",
        f"Today's Income: ${digest['daily_income']:,.2f}",
        f"Today's Expenses: ${digest['daily_expenses']:,.2f}",
        f"Net: ${digest['daily_profit']:,.2f}",
        "",
    ]
    if digest["active_alerts"] > 0:
        n = digest["active_alerts"]
        lines.append(f"{n} active alert{'s' if n > 1 else ''}")
    lines.append(digest["budget_status"])
    if digest.get("top_insight"):
        lines.append(f"Insight: {digest['top_insight']}")
    if digest.get("goal_progress"):
        lines.append(f"Goals: {digest['goal_progress']}")
    return "\n".join(lines)


def send_daily_digest(db: Database, user_id: str) -> int | None:
    """Store today's digest as an info alert.

    Returns:
        The alert id, or None when today's digest was already stored.
    """
    if db.has_alert(user_id, "custom", on_date=_today(), metric=DIGEST_METRIC):
        return None

    digest = daily_digest(db, user_id)
    return db.create_alert(
        user_id,
        alert_type="custom",
        severity="info",
        title="Daily Financial Digest",
        message=format_digest(digest),
        data=digest,
        metric=DIGEST_METRIC,
    )
