"""Aggregation layer: monthly trends, spending patterns and summary figures."""

from datetime import date
from typing import Any

from .database import Database
from .utils import month_key, trailing_window_start


METRICS = ("income", "expenses", "profit")
METRIC_ALIASES = {"revenue": "income", "expense": "expenses"}

UNBOUNDED_RUNWAY = 999


def monthly_trends(db: Database, user_id: str, months_back: int = 6) -> list[dict[str, Any]]:
    """Income, expenses and profit per calendar month.

    The window is the current month plus the ``months_back - 1`` months
    before it. Months without transactions are omitted.

    Args:
        db: Database instance.
        user_id: Owner.
        months_back: Number of calendar months in the window.

    Returns:
        List of {period, income, expenses, profit}, newest first.
    """
    conn = db.connect()
    start = trailing_window_start(months_back).isoformat()

    rows = conn.execute("""
        SELECT
            substr(date, 1, 7) as period,
            SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END) as income,
            SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END) as expenses
        FROM transactions
        WHERE user_id = ? AND date >= ?
        GROUP BY period
        ORDER BY period DESC
    """, (user_id, start)).fetchall()

    return [
        {
            "period": row["period"],
            "income": row["income"],
            "expenses": row["expenses"],
            "profit": row["income"] - row["expenses"],
        }
        for row in rows
    ]


def category_trend(db: Database, user_id: str, category: str) -> str:
    """Direction of spending in a category over the last 3 calendar months.

    Compares the first and last month that have spending: more than +10%
    is "increasing", less than -10% is "decreasing", anything else (or
    fewer than two months) is "stable".
    """
    conn = db.connect()
    start = trailing_window_start(3).isoformat()

    rows = conn.execute("""
        SELECT substr(date, 1, 7) as month, SUM(amount) as total
        FROM transactions
        WHERE user_id = ? AND category = ? AND type = 'expense' AND date >= ?
        GROUP BY month
        ORDER BY month ASC
    """, (user_id, category, start)).fetchall()

    if len(rows) < 2:
        return "stable"

    first = rows[0]["total"]
    last = rows[-1]["total"]
    if not first:
        return "stable"

    change = (last - first) / first * 100
    if change > 10:
        return "increasing"
    if change < -10:
        return "decreasing"
    return "stable"


def spending_patterns(
    db: Database,
    user_id: str,
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[dict[str, Any]]:
    """Expense totals per category with share and trend.

    Args:
        db: Database instance.
        user_id: Owner.
        start_date: Optional inclusive lower bound (YYYY-MM-DD).
        end_date: Optional inclusive upper bound (YYYY-MM-DD).

    Returns:
        List of {category, total, count, average, percentage, trend},
        sorted by total descending.
    """
    conn = db.connect()

    query = """
        SELECT category, SUM(amount) as total, COUNT(*) as count, AVG(amount) as average
        FROM transactions
        WHERE user_id = ? AND type = 'expense'
    """
    params: list[Any] = [user_id]

    if start_date:
        query += " AND date >= ?"
        params.append(start_date)
    if end_date:
        query += " AND date <= ?"
        params.append(end_date)

    query += " GROUP BY category ORDER BY total DESC"
    rows = conn.execute(query, params).fetchall()

    grand_total = sum(row["total"] for row in rows)

    return [
        {
            "category": row["category"],
            "total": round(row["total"], 2),
            "count": row["count"],
            "average": round(row["average"], 2),
            "percentage": round(row["total"] / grand_total * 100, 2) if grand_total > 0 else 0,
            "trend": category_trend(db, user_id, row["category"]),
        }
        for row in rows
    ]


def category_totals(
    db: Database, user_id: str, start_date: str, end_date: str
) -> list[dict[str, Any]]:
    """Income and expenses per category within a date range."""
    conn = db.connect()
    rows = conn.execute("""
        SELECT
            category,
            SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END) as income,
            SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END) as expenses
        FROM transactions
        WHERE user_id = ? AND date >= ? AND date <= ?
        GROUP BY category
        ORDER BY (income + expenses) DESC
    """, (user_id, start_date, end_date)).fetchall()

    return [
        {
            "category": row["category"],
            "income": round(row["income"], 2),
            "expenses": round(row["expenses"], 2),
        }
        for row in rows
    ]


def normalize_metric(metric: str) -> str:
    """Map a metric name or alias to one of income/expenses/profit.

    Raises:
        ValueError: If the metric is unknown.
    """
    metric = METRIC_ALIASES.get(metric, metric)
    if metric not in METRICS:
        raise ValueError(f"Unknown metric: {metric}. Use one of: revenue, income, expenses, profit")
    return metric


def growth_rate(db: Database, user_id: str, metric: str, months_back: int = 3) -> float:
    """Percent change of a metric between the oldest and newest month.

    Returns:
        Growth in percent; 0 with fewer than two months or a zero base.
    """
    metric = normalize_metric(metric)
    trends = monthly_trends(db, user_id, months_back)
    if len(trends) < 2:
        return 0.0

    earliest = trends[-1][metric]
    latest = trends[0][metric]
    if earliest == 0:
        return 0.0

    return round((latest - earliest) / earliest * 100, 2)


def financial_summary(db: Database, user_id: str) -> dict[str, float]:
    """All-time revenue, expenses and profit.

    The profit doubles as the cash balance throughout the package.
    """
    conn = db.connect()
    row = conn.execute("""
        SELECT
            COALESCE(SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END), 0) as revenue,
            COALESCE(SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END), 0) as expenses
        FROM transactions
        WHERE user_id = ?
    """, (user_id,)).fetchone()

    revenue = row["revenue"]
    expenses = row["expenses"]
    return {
        "revenue": round(revenue, 2),
        "expenses": round(expenses, 2),
        "profit": round(revenue - expenses, 2),
    }


def runway_status(runway_months: float | None) -> str:
    """Label a runway length."""
    if runway_months is None:
        return "unknown"
    if runway_months >= 12:
        return "healthy"
    if runway_months >= 6:
        return "caution"
    return "critical"


def runway_analysis(db: Database, user_id: str) -> dict[str, Any]:
    """Months of operation the current cash covers at the current burn.

    Burn is the mean monthly expenses over the trailing 3 months. When the
    business is not losing money on average the runway is unbounded and
    reported as 999 months.

    Returns:
        Dictionary with runway_months, status, monthly_burn, monthly_profit
        and cash_balance.
    """
    cash_balance = financial_summary(db, user_id)["profit"]
    trends = monthly_trends(db, user_id, 3)

    if not trends:
        return {
            "runway_months": None,
            "status": "unknown",
            "monthly_burn": 0.0,
            "monthly_profit": 0.0,
            "cash_balance": cash_balance,
            "as_of": month_key(date.today()),
        }

    monthly_burn = sum(t["expenses"] for t in trends) / len(trends)
    monthly_profit = sum(t["profit"] for t in trends) / len(trends)

    if monthly_profit >= 0:
        runway_months = float(UNBOUNDED_RUNWAY)
    elif monthly_burn > 0:
        runway_months = round(max(cash_balance, 0) / monthly_burn, 1)
    else:
        runway_months = 0.0

    return {
        "runway_months": runway_months,
        "status": runway_status(runway_months),
        "monthly_burn": round(monthly_burn, 2),
        "monthly_profit": round(monthly_profit, 2),
        "cash_balance": cash_balance,
        "as_of": month_key(date.today()),
    }
