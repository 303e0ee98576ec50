"""Tool declarations and the name -> handler dispatch table.

The same registry feeds the model's function declarations and the MCP
server's tool list. ``call_tool`` never raises: unknown names and handler
failures come back as error dicts the model can read.
"""

import logging
from datetime import date
from typing import Any, Callable

from mcp.types import Tool

from .analytics import growth_rate, monthly_trends, normalize_metric, runway_analysis, spending_patterns
from .budgets import budget_variance, goal_progress
from .config import Settings
from .database import Database, TRANSACTION_TYPES
from .detection import anomalous_transactions, detect_recurring, missed_recurring
from .forecast import SCENARIO_TYPES, forecast_cash_flow, simulate_scenario
from .insights import generate_insights
from .monitoring import run_all_monitoring, send_daily_digest
from .utils import get_period_dates, month_start


logger = logging.getLogger(__name__)

QUERY_RESULT_LIMIT = 30

Handler = Callable[[Database, str, dict[str, Any], Settings], dict[str, Any]]


TOOLS: list[Tool] = [
    Tool(
        name="add_transaction",
        description=(
            "Add a financial transaction (income or expense). Use this when the user "
            "explicitly asks to record an expense, income, or sale."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "description": {"type": "string", "description": "Description of the transaction"},
                "amount": {"type": "number", "description": "Amount of the transaction (positive)"},
                "type": {
                    "type": "string",
                    "enum": list(TRANSACTION_TYPES),
                    "description": "Type of transaction",
                },
                "category": {
                    "type": "string",
                    "description": "Category (e.g. Office, Payroll, Sales, Software, Travel, Meals, Utilities)",
                },
                "date": {
                    "type": "string",
                    "description": "Date in YYYY-MM-DD format. Defaults to today.",
                },
            },
            "required": ["description", "amount", "type", "category"],
        },
    ),
    Tool(
        name="query_transactions",
        description=(
            "Search transactions by category, date range, amount or type. Answers: "
            "'Show me all software expenses from last month', 'Did I pay for Uber recently?'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "Category to filter by"},
                "start_date": {"type": "string", "description": "Start date in YYYY-MM-DD"},
                "end_date": {"type": "string", "description": "End date in YYYY-MM-DD"},
                "min_amount": {"type": "number", "description": "Minimum amount"},
                "max_amount": {"type": "number", "description": "Maximum amount"},
                "type": {"type": "string", "enum": list(TRANSACTION_TYPES)},
            },
        },
    ),
    Tool(
        name="get_balance_trends",
        description=(
            "Monthly revenue, expense and profit trends with month-over-month change. Answers: "
            "'How is my business trending?', 'Compare this month to last month'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "months": {
                    "type": "integer",
                    "description": "Number of months to analyze",
                    "default": 6,
                },
            },
        },
    ),
    Tool(
        name="analyze_budget",
        description=(
            "Compare this month's actual spending against budgets. Answers: "
            "'Am I over budget on software?', 'How much of my marketing budget is left?'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "Specific category to check (optional)"},
            },
        },
    ),
    Tool(
        name="get_anomalies",
        description=(
            "Identify unusually large transactions compared to their category average. "
            "Answers: 'Check for anything unusual', 'Run a quick audit'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "threshold_multiplier": {
                    "type": "number",
                    "description": "Flag amounts above this multiple of the category mean",
                    "default": 3,
                },
            },
        },
    ),
    Tool(
        name="forecast_cash_flow",
        description=(
            "Predict income, expenses and balance for the coming months from historical "
            "patterns. Answers: 'What will my balance be next month?', 'When will I run out of cash?'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "months": {
                    "type": "integer",
                    "description": "Number of months to forecast",
                    "default": 3,
                },
            },
        },
    ),
    Tool(
        name="get_recurring_items",
        description=(
            "Detect and store recurring subscriptions or payments with their frequency, "
            "plus the ones that are overdue. Answers: "
            "'What are my monthly subscriptions?', 'Find recurring expenses'"
        ),
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="analyze_trends",
        description=(
            "Growth rate of revenue, expenses or profit plus the top spending patterns. "
            "Answers: 'Analyze my revenue growth', 'Identify patterns in my spending'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "metric": {"type": "string", "enum": ["revenue", "expenses", "profit"]},
                "timeframe": {
                    "type": "integer",
                    "description": "Number of months to analyze",
                    "default": 6,
                },
            },
            "required": ["metric"],
        },
    ),
    Tool(
        name="bulk_categorize",
        description=(
            "Change the category of every transaction whose description contains a vendor "
            "name. Use for commands like 'Make all Uber trips Travel'."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "vendor": {
                    "type": "string",
                    "description": "Vendor name or keyword to match (e.g. 'Uber', 'Starbucks')",
                },
                "new_category": {"type": "string", "description": "The new category to apply"},
            },
            "required": ["vendor", "new_category"],
        },
    ),
    Tool(
        name="generate_report",
        description="Request a financial report. Use when the user asks for a report, summary or export.",
        inputSchema={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["pdf", "csv", "summary"],
                    "description": "Type of report",
                },
                "timeframe": {
                    "type": "string",
                    "description": "Period: 'this_month', 'last_month', 'last_30_days', 'ytd', 'all_time' or 'YYYY-MM'",
                    "default": "this_month",
                },
            },
            "required": ["type"],
        },
    ),
    Tool(
        name="get_insights",
        description="Proactive insights: cash warnings, budget overruns and spending patterns worth acting on.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_goal_progress",
        description="Progress of financial goals, whether each is on track, and goals just completed.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_runway",
        description="Cash runway: how many months the business can operate at the current burn rate.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="simulate_scenario",
        description=(
            "What-if analysis for a recurring monthly profit change. Answers: "
            "'Can we afford a new hire at $4,000/month?', 'What if we raise prices?'"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": list(SCENARIO_TYPES)},
                "monthly_impact": {
                    "type": "number",
                    "description": "Monthly profit change; negative for new costs",
                },
                "description": {"type": "string", "description": "Short description of the scenario"},
                "duration_months": {
                    "type": "integer",
                    "description": "Months to simulate",
                    "default": 12,
                },
            },
            "required": ["type", "monthly_impact"],
        },
    ),
    Tool(
        name="run_monitoring",
        description=(
            "Run all financial health checks now, create alerts for anything that needs "
            "attention and store today's digest."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "cash_threshold": {
                    "type": "number",
                    "description": "Low-cash alert threshold. Defaults to the configured threshold.",
                },
            },
        },
    ),
]


# ============================================================================
# Handlers
# ============================================================================

def _add_transaction(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    tx_type = args.get("type")
    description = args.get("description")
    amount = args.get("amount")
    tx_id = db.add_transaction(
        user_id,
        date=args.get("date") or date.today().isoformat(),
        description=description,
        amount=amount,
        category=args.get("category"),
        tx_type=tx_type,
    )

    try:
        db.create_notification(
            user_id,
            title="New Transaction",
            message=f"Added {tx_type}: {description} - ${float(amount):,.2f}",
            notification_type="success",
        )
    except Exception:
        logger.exception("Notification for transaction %s failed", tx_id)

    return {"success": True, "message": "Transaction added successfully", "transaction_id": tx_id}


def _query_transactions(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    transactions = db.get_transactions(
        user_id,
        start_date=args.get("start_date"),
        end_date=args.get("end_date"),
        category=args.get("category"),
        tx_type=args.get("type"),
        min_amount=args.get("min_amount"),
        max_amount=args.get("max_amount"),
    )
    return {
        "success": True,
        "count": len(transactions),
        "data": transactions[:QUERY_RESULT_LIMIT],
    }


def _get_balance_trends(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    trends = monthly_trends(db, user_id, int(args.get("months") or 6))

    comparison = None
    if len(trends) >= 2:
        latest, previous = trends[0], trends[1]
        comparison = {
            metric: {
                "current": latest[metric],
                "previous": previous[metric],
                "change_pct": (
                    round((latest[metric] - previous[metric]) / abs(previous[metric]) * 100, 2)
                    if previous[metric] else None
                ),
            }
            for metric in ("income", "expenses", "profit")
        }

    return {"success": True, "data": trends, "comparison": comparison}


def _analyze_budget(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    """Spending of the current calendar month (1st to today) against each active budget.

    Every budget is measured over this same window, not over its own
    start_date..end_date range.
    """
    today = date.today()
    variances = budget_variance(db, user_id, month_start(today).isoformat(), today.isoformat())

    category = args.get("category")
    if category:
        variances = [v for v in variances if v["budget"]["category"].lower() == category.lower()]

    data = [
        {
            "category": v["budget"]["category"],
            "budgeted": v["budget"]["amount"],
            "actual": v["actual"],
            "remaining": v["variance"],
            "percentage": round(v["actual"] / v["budget"]["amount"] * 100, 2),
            "status": v["status"],
        }
        for v in variances
    ]
    return {"success": True, "period": f"{month_start(today).isoformat()}..{today.isoformat()}", "data": data}


def _get_anomalies(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    flagged = anomalous_transactions(db, user_id, float(args.get("threshold_multiplier") or 3))
    return {"success": True, "count": len(flagged), "data": flagged}


def _forecast_cash_flow(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    projections = forecast_cash_flow(db, user_id, int(args.get("months") or 3))
    if not projections:
        return {"success": True, "data": [], "message": "Not enough history: at least 2 months are needed"}
    return {"success": True, "data": projections}


def _get_recurring_items(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    """Refresh the stored recurring patterns, then report overdue ones."""
    detected = detect_recurring(db, user_id)
    return {
        "success": True,
        "count": len(detected["recurring"]),
        "created": detected["created"],
        "updated": detected["updated"],
        "data": detected["recurring"],
        "missed": missed_recurring(db, user_id),
    }


def _analyze_trends(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    metric = normalize_metric(args.get("metric") or "revenue")
    months = int(args.get("timeframe") or 6)
    rate = growth_rate(db, user_id, metric, months)
    return {
        "success": True,
        "metric": metric,
        "growth_rate": rate,
        "period": f"Last {months} months",
        "top_patterns": spending_patterns(db, user_id)[:5],
    }


def _bulk_categorize(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    vendor = args.get("vendor")
    new_category = args.get("new_category")
    count = db.bulk_update_category(user_id, vendor, new_category)
    return {
        "success": True,
        "updated": count,
        "message": f'Updated {count} transactions matching "{vendor}" to category "{new_category}".',
    }


def _generate_report(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    report_type = args.get("type") or "summary"
    timeframe = args.get("timeframe") or "this_month"
    start_date, end_date = get_period_dates(timeframe)

    report_id = db.create_report(user_id, report_type, f"{start_date}:{end_date}")
    result: dict[str, Any] = {
        "success": True,
        "report_id": report_id,
        "status": "pending",
        "message": f"Report of type {report_type} for {start_date} to {end_date} requested.",
    }

    if report_type == "summary":
        conn = db.connect()
        row = conn.execute("""
            SELECT
                COALESCE(SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END), 0) as income,
                COALESCE(SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END), 0) as expenses,
                COUNT(*) as count
            FROM transactions
            WHERE user_id = ? AND date >= ? AND date <= ?
        """, (user_id, start_date, end_date)).fetchone()
        result["summary"] = {
            "start_date": start_date,
            "end_date": end_date,
            "income": round(row["income"], 2),
            "expenses": round(row["expenses"], 2),
            "profit": round(row["income"] - row["expenses"], 2),
            "transaction_count": row["count"],
            "top_spending": spending_patterns(db, user_id, start_date, end_date)[:5],
        }

    return result


def _get_insights(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    insights = generate_insights(db, user_id)
    return {"success": True, "count": len(insights), "data": insights}


def _get_goal_progress(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    return {"success": True, **goal_progress(db, user_id)}


def _get_runway(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    return {"success": True, **runway_analysis(db, user_id)}


def _simulate_scenario(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    return {"success": True, **simulate_scenario(db, user_id, args)}


def _run_monitoring(db: Database, user_id: str, args: dict[str, Any], settings: Settings) -> dict[str, Any]:
    threshold = args.get("cash_threshold")
    if threshold is None:
        threshold = settings.cash_threshold
    created = run_all_monitoring(db, user_id, float(threshold))
    return {
        "success": True,
        "created": created,
        "digest_alert_id": send_daily_digest(db, user_id),
    }


HANDLERS: dict[str, Handler] = {
    "add_transaction": _add_transaction,
    "query_transactions": _query_transactions,
    "get_balance_trends": _get_balance_trends,
    "analyze_budget": _analyze_budget,
    "get_anomalies": _get_anomalies,
    "forecast_cash_flow": _forecast_cash_flow,
    "get_recurring_items": _get_recurring_items,
    "analyze_trends": _analyze_trends,
    "bulk_categorize": _bulk_categorize,
    "generate_report": _generate_report,
    "get_insights": _get_insights,
    "get_goal_progress": _get_goal_progress,
    "get_runway": _get_runway,
    "simulate_scenario": _simulate_scenario,
    "run_monitoring": _run_monitoring,
}


def call_tool(
    db: Database,
    user_id: str,
    name: str,
    arguments: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Run a declared tool by name.

    Args:
        db: Database instance.
        user_id: Owner the tool acts for.
        name: Declared tool name.
        arguments: Tool arguments from the caller.
        settings: Runtime settings that supply defaults (e.g. the cash threshold).

    Returns:
        The handler's result, ``{"error", "unsupported_tool"}`` for an unknown
        name, or ``{"error"}`` when the handler raised.
    """
    handler = HANDLERS.get(name)
    if handler is None:
        logger.warning("Unsupported tool requested: %s", name)
        return {"error": f"Unsupported tool: {name}", "unsupported_tool": name}

    try:
        return handler(db, user_id, dict(arguments or {}), settings or Settings())
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return {"error": str(e)}
