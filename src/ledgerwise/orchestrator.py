"""Tool-calling accountant: context snapshot, model round-trip, persistence."""

import asyncio
import logging
from datetime import date
from typing import Any, AsyncIterator

from .analytics import financial_summary, monthly_trends, runway_analysis
from .config import Settings
from .database import Database
from .forecast import forecast_cash_flow
from .llm_client import GeminiClient, ModelError
from .tools import TOOLS, call_tool
from .utils import month_key


logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 20
TOP_ANOMALIES = 3

SYSTEM_PROMPT = """You are Ledgerwise, an expert AI accountant and CFO for a small business.
Give precise, Big Four level accounting advice and be proactive about risks.

CURRENT FINANCIAL SNAPSHOT:
- Cash Position: ${cash_balance:,.2f}
- This Month: ${revenue:,.2f} Revenue | ${expenses:,.2f} Expenses
- Profit Margin: {profit_margin:.1f}%
- {runway}
- {forecast}

HISTORICAL PERFORMANCE (Last 6 Months):
{history}

{anomalies}

RECENT TRANSACTIONS (expenses negative):
{transactions}

GUIDELINES:
- Speak like a business partner: use "we" and "our".
- Never invent numbers. If the data is not in the snapshot, call a tool to get it.
- When asked how the business is doing, synthesize cash, runway, profit and risk.
- For any expense above $75, remind the user to keep the receipt.
- Point out recurring subscriptions that may no longer be needed.
- Only record a transaction when the user explicitly asks for it.

Respond in concise, professional markdown."""


def classify_error(message: str) -> str:
    """Map a model error message to authentication, network or other."""
    if any(sig in message for sig in ("401", "403", "identity", "API key")):
        return "authentication"
    if "fetch failed" in message:
        return "network"
    return "other"


def diagnostic_message(error: ModelError) -> str:
    """User-facing text for a failed model round-trip."""
    message = str(error)
    kind = classify_error(message)
    if kind == "authentication":
        return (
            "AI identity error: the API key is missing or was rejected. "
            "Check the GEMINI_API_KEY setting."
        )
    if kind == "network":
        return (
            "Connection error: the model API is unreachable (fetch failed). "
            "Check the network connection and try again."
        )
    return f"Connection error: {message}. Check the API key and model settings."


def summarize_tool_result(name: str, result: dict[str, Any]) -> str:
    """Fallback answer when the model returns no text after a tool call."""
    if "error" in result:
        return f"I couldn't complete {name}: {result['error']}"
    if result.get("message"):
        return result["message"]
    if "count" in result:
        return f"{name} returned {result['count']} results."
    return f"{name} completed."


class Accountant:
    """Chat front end that lets the model call the local tools."""

    def __init__(self, db: Database, client: GeminiClient, settings: Settings | None = None):
        """Initialize the accountant.

        Args:
            db: Database instance.
            client: Model API client.
            settings: Runtime settings; defaults when omitted.
        """
        self.db = db
        self.client = client
        self.settings = settings or Settings()

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    def build_context(self, user_id: str) -> dict[str, Any]:
        """Fresh financial snapshot for the system prompt."""
        summary = financial_summary(self.db, user_id)
        trends = monthly_trends(self.db, user_id, 6)

        current_key = month_key(date.today())
        current = next((t for t in trends if t["period"] == current_key), None)
        previous = next((t for t in trends if t["period"] < current_key), None)

        revenue = current["income"] if current else 0.0
        expenses = current["expenses"] if current else 0.0
        profit = revenue - expenses

        def change(metric: str) -> float:
            if not current or not previous or not previous[metric]:
                return 0.0
            return round((current[metric] - previous[metric]) / previous[metric] * 100, 2)

        transactions = [
            {
                "date": tx["date"],
                "description": tx["description"],
                "category": tx["category"],
                "amount": tx["amount"] if tx["type"] == "income" else -tx["amount"],
            }
            for tx in self.db.get_recent_transactions(user_id, RECENT_TRANSACTIONS)
        ]

        runway = runway_analysis(self.db, user_id)
        projections = forecast_cash_flow(self.db, user_id, 1, persist=False)

        return {
            "cash_balance": summary["profit"],
            "revenue": {"current": round(revenue, 2), "change": change("income")},
            "expenses": {"current": round(expenses, 2), "change": change("expenses")},
            "profit": round(profit, 2),
            "profit_margin": round(profit / revenue * 100, 2) if revenue > 0 else 0.0,
            "transactions": transactions,
            "monthly_history": [
                {
                    "month": t["period"],
                    "income": round(t["income"], 2),
                    "expenses": round(t["expenses"], 2),
                    "profit": round(t["profit"], 2),
                }
                for t in trends
            ],
            "runway": (
                {"months": runway["runway_months"], "status": runway["status"]}
                if runway["runway_months"] is not None else None
            ),
            "forecast": (
                {
                    "next_month_balance": projections[0]["projected_balance"],
                    "confidence": projections[0]["confidence"],
                }
                if projections else None
            ),
            "anomalies": [
                {"description": a["description"], "severity": a["severity"]}
                for a in self.db.get_anomalies(user_id)[:TOP_ANOMALIES]
            ],
        }

    def build_system_prompt(self, context: dict[str, Any]) -> str:
        """Render the snapshot into the system instruction."""
        runway = context["runway"]
        if runway is None:
            runway_text = "Runway: Data unavailable"
        elif runway["months"] > 99:
            runway_text = f"Runway: Unlimited ({runway['status']})"
        else:
            runway_text = f"Runway: {runway['months']} months ({runway['status']})"

        forecast = context["forecast"]
        if forecast is None:
            forecast_text = "Forecast: Insufficient data"
        else:
            forecast_text = (
                f"Projected Next Month Balance: ${forecast['next_month_balance']:,.2f} "
                f"(Confidence: {forecast['confidence'] * 100:.0f}%)"
            )

        history = "\n".join(
            f"{m['month']}: Rev ${m['income']:,.2f} | Exp ${m['expenses']:,.2f} | Net ${m['profit']:,.2f}"
            for m in context["monthly_history"]
        ) or "No history yet."

        if context["anomalies"]:
            anomalies = "DETECTED ANOMALIES:\n" + "\n".join(
                f"- {a['description']}" for a in context["anomalies"]
            )
        else:
            anomalies = "No recent anomalies detected."

        transactions = "\n".join(
            f"{tx['date']} | {tx['description']} | {tx['category']} | {tx['amount']:,.2f}"
            for tx in context["transactions"]
        ) or "No transactions yet."

        return SYSTEM_PROMPT.format(
            cash_balance=context["cash_balance"],
            revenue=context["revenue"]["current"],
            expenses=context["expenses"]["current"],
            profit_margin=context["profit_margin"],
            runway=runway_text,
            forecast=forecast_text,
            history=history,
            anomalies=anomalies,
            transactions=transactions,
        )

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    def _history_contents(self, user_id: str) -> list[dict[str, Any]]:
        return [
            {"role": msg["role"], "parts": [{"text": msg["content"]}]}
            for msg in self.db.get_conversation_history(user_id, self.settings.history_limit)
        ]

    async def chat(self, user_id: str, message: str) -> str:
        """Answer one user message, running at most one tool call.

        The user message is stored before the model is called. The final
        answer is stored as a model message unless the model call failed,
        in which case a diagnostic text is returned instead.
        """
        system_instruction = self.build_system_prompt(self.build_context(user_id))
        contents = self._history_contents(user_id)
        contents.append({"role": "user", "parts": [{"text": message}]})

        self.db.save_message(user_id, "user", message)

        metadata: dict[str, Any] | None = None
        try:
            response = await self.client.generate(system_instruction, contents, TOOLS)

            if response.function_call:
                name = response.function_call["name"]
                args = response.function_call["args"]
                logger.info("Model called %s for %s", name, user_id)

                result = call_tool(self.db, user_id, name, args, self.settings)
                metadata = {"function": name}
                if "transaction_id" in result:
                    metadata["transaction_id"] = result["transaction_id"]

                # the model turn goes back verbatim (thought signatures included)
                contents.append(
                    response.content
                    or {"role": "model", "parts": [{"functionCall": {"name": name, "args": args}}]}
                )
                contents.append({
                    "role": "user",
                    "parts": [{"functionResponse": {"name": name, "response": result}}],
                })

                final = await self.client.generate(system_instruction, contents, TOOLS)
                text = final.text.strip() or summarize_tool_result(name, result)
            else:
                text = response.text.strip()
        except ModelError as e:
            logger.error("Model call failed (%s): %s", classify_error(str(e)), e)
            return diagnostic_message(e)

        if not text:
            text = "I couldn't generate a response. Please try rephrasing the question."

        self.db.save_message(user_id, "model", text, metadata)
        return text

    async def stream_chat(self, user_id: str, message: str) -> AsyncIterator[str]:
        """Yield the full answer word by word.

        The answer is computed first so tool side effects complete before
        anything is streamed.
        """
        text = await self.chat(user_id, message)
        for i, word in enumerate(text.split(" ")):
            yield word if i == 0 else " " + word
            await asyncio.sleep(self.settings.stream_delay)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def get_history(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Stored messages, oldest first."""
        return [
            {
                "role": msg["role"],
                "content": msg["content"],
                "metadata": msg["metadata"],
                "timestamp": msg["timestamp"],
            }
            for msg in self.db.get_conversation_history(user_id, limit)
        ]

    def clear_history(self, user_id: str) -> int:
        """Delete a user's conversation log."""
        return self.db.clear_conversation(user_id)

    def get_all_conversations(self, user_id: str) -> list[dict[str, Any]]:
        """Conversation sessions grouped by day."""
        return self.db.get_all_conversations(user_id)
