"""Budget variance and goal progress evaluation."""

import logging
import math
from datetime import date, datetime
from typing import Any

from .database import Database
from .utils import month_start, parse_date, parse_datetime


logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 0.9
ON_TRACK_RATIO = 0.9


def _variance_status(actual: float, amount: float, threshold: float) -> str:
    if actual > amount:
        return "over"
    if actual < amount * threshold:
        return "under"
    return "on_track"


def budget_variance(
    db: Database, user_id: str, start_date: str, end_date: str
) -> list[dict[str, Any]]:
    """Budgeted versus actual spending for every active budget.

    Args:
        db: Database instance.
        user_id: Owner.
        start_date: Inclusive start of the spending window (YYYY-MM-DD).
        end_date: Inclusive end of the spending window (YYYY-MM-DD).

    Returns:
        List of {budget, actual, variance, variance_percentage, status} where
        variance = amount - actual and a negative variance means overspend.
    """
    conn = db.connect()
    variances = []

    for budget in db.get_active_budgets(user_id):
        row = conn.execute("""
            SELECT COALESCE(SUM(amount), 0) as total
            FROM transactions
            WHERE user_id = ? AND category = ? AND type = 'expense'
              AND date >= ? AND date <= ?
        """, (user_id, budget["category"], start_date, end_date)).fetchone()

        amount = budget["amount"]
        actual = row["total"]
        threshold = budget["alert_threshold"] or DEFAULT_ALERT_THRESHOLD
        variance = amount - actual

        variances.append({
            "budget": budget,
            "actual": round(actual, 2),
            "variance": round(variance, 2),
            "variance_percentage": round(variance / amount * 100, 2) if amount > 0 else 0,
            "status": _variance_status(actual, amount, threshold),
        })

    return variances


def budget_alerts(db: Database, user_id: str) -> list[dict[str, Any]]:
    """Budgets that are over or past their alert threshold this month.

    The window runs from the first of the current month to today.
    """
    today = date.today()
    variances = budget_variance(db, user_id, month_start(today).isoformat(), today.isoformat())

    flagged = []
    for v in variances:
        amount = v["budget"]["amount"]
        threshold = v["budget"]["alert_threshold"] or DEFAULT_ALERT_THRESHOLD
        if v["status"] == "over" or (amount > 0 and v["actual"] / amount >= threshold):
            flagged.append(v)
    return flagged


def _ceil_days(delta_seconds: float) -> int:
    return math.ceil(delta_seconds / 86400)


def check_goal_completion(db: Database, user_id: str) -> list[dict[str, Any]]:
    """Mark active goals whose current amount reached the target as completed.

    Returns:
        The goals that transitioned, with their new status.
    """
    completed = []
    for goal in db.get_goals(user_id, status="active"):
        if goal["current_amount"] >= goal["target_amount"]:
            db.set_goal_status(goal["id"], "completed")
            goal["status"] = "completed"
            completed.append(goal)
            logger.info("Goal %s of %s completed", goal["id"], user_id)
    return completed


def evaluate_goal(goal: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Progress figures for a single goal.

    A goal is on track when its progress is at least 90% of the progress
    expected from the share of time elapsed between creation and deadline.
    Goals without a deadline are always on track.
    """
    now = now or datetime.now()
    target = goal["target_amount"]
    current = goal["current_amount"] or 0
    progress = current / target * 100 if target > 0 else 0

    days_remaining = None
    on_track = True

    if goal["deadline"]:
        deadline = datetime.combine(parse_date(goal["deadline"]), datetime.min.time())
        created = parse_datetime(goal["created_at"]) if goal["created_at"] else now

        days_remaining = _ceil_days((deadline - now).total_seconds())
        total_days = _ceil_days((deadline - created).total_seconds())
        elapsed_days = _ceil_days((now - created).total_seconds())
        expected = elapsed_days / total_days * 100 if total_days > 0 else 0

        on_track = progress >= expected * ON_TRACK_RATIO

    return {
        "goal": goal,
        "progress_percentage": round(progress, 2),
        "remaining_amount": round(target - current, 2),
        "days_remaining": days_remaining,
        "on_track": on_track,
    }


def goal_progress(db: Database, user_id: str) -> dict[str, Any]:
    """Progress of active goals, after auto-completing reached ones.

    Returns:
        Dictionary with "goals" (progress of still-active goals) and
        "completed" (goals completed by this check).
    """
    completed = check_goal_completion(db, user_id)
    now = datetime.now()
    goals = [evaluate_goal(goal, now) for goal in db.get_goals(user_id, status="active")]
    return {"goals": goals, "completed": completed}
