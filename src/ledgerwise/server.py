"""MCP server exposing the ledger tools and the AI accountant."""

import json
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool

from .budgets import budget_variance, goal_progress
from .config import Settings, configure_logging
from .database import Database
from .insights import daily_digest
from .llm_client import GeminiClient
from .orchestrator import Accountant
from .tools import TOOLS, call_tool as dispatch_tool
from .utils import get_period_dates


# Initialize MCP server
server = Server("ledgerwise")

# Global state
_settings: Settings | None = None
_db: Database | None = None
_accountant: Accountant | None = None


def get_settings() -> Settings:
    """Get or load settings from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_db() -> Database:
    """Get or create database instance."""
    global _db
    if _db is None:
        db_path = Path(get_settings().db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        _db = Database(db_path)
        _db.init_schema()
    return _db


def get_accountant() -> Accountant:
    """Get or create the accountant."""
    global _accountant
    if _accountant is None:
        settings = get_settings()
        if not settings.api_key:
            raise ValueError(
                "GEMINI_API_KEY environment variable is required for ask_accountant. "
                "Get a key at https://aistudio.google.com/apikey"
            )
        client = GeminiClient(settings.api_key, settings.model, settings.api_url)
        _accountant = Accountant(get_db(), client, settings)
    return _accountant


def init_for_testing(
    db: Database,
    accountant: Accountant | None = None,
    settings: Settings | None = None,
) -> None:
    """Initialize server with a test database and optional accountant.

    Args:
        db: Database instance to use.
        accountant: Accountant to answer ask_accountant (may use a mock client).
        settings: Settings; defaults when omitted.
    """
    global _db, _accountant, _settings
    _db = db
    _accountant = accountant
    _settings = settings or Settings()


def _dump(result: Any) -> str:
    return json.dumps(result, ensure_ascii=False, indent=2)


# ============================================================================
# Tools
# ============================================================================

ASK_ACCOUNTANT = Tool(
    name="ask_accountant",
    description=(
        "Ask the AI accountant a question in natural language. It sees a fresh financial "
        "snapshot, remembers the conversation, and can run the other tools itself."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "Question or instruction"},
        },
        "required": ["message"],
    },
)


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [*TOOLS, ASK_ACCOUNTANT]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    user_id = get_settings().user_id

    if name == "ask_accountant":
        message = (arguments or {}).get("message")
        if not message:
            raise ValueError("message is required")
        text = await get_accountant().chat(user_id, message)
        return [TextContent(type="text", text=text)]

    result = dispatch_tool(get_db(), user_id, name, arguments, get_settings())
    return [TextContent(type="text", text=_dump(result))]


# ============================================================================
# Resources
# ============================================================================

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri="ledgerwise://alerts",
            name="Alerts",
            description="Unread, undismissed alerts",
            mimeType="application/json",
        ),
        Resource(
            uri="ledgerwise://budgets/current",
            name="Budgets",
            description="Active budgets with spending for the current month",
            mimeType="application/json",
        ),
        Resource(
            uri="ledgerwise://goals",
            name="Goals",
            description="Progress of active financial goals",
            mimeType="application/json",
        ),
        Resource(
            uri="ledgerwise://digest",
            name="Daily Digest",
            description="Today's financial summary",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri: str) -> str:
    """Read resource content."""
    db = get_db()
    user_id = get_settings().user_id
    uri = str(uri)

    if uri == "ledgerwise://alerts":
        result: Any = db.get_alerts(user_id)
    elif uri == "ledgerwise://budgets/current":
        start_date, end_date = get_period_dates("this_month")
        result = budget_variance(db, user_id, start_date, end_date)
    elif uri == "ledgerwise://goals":
        result = goal_progress(db, user_id)
    elif uri == "ledgerwise://digest":
        result = daily_digest(db, user_id)
    else:
        raise ValueError(f"Unknown resource: {uri}")

    return _dump(result)


# ============================================================================
# Main
# ============================================================================

def main() -> None:
    """Run the MCP server."""
    import asyncio

    from mcp.server.stdio import stdio_server

    configure_logging(get_settings().log_level)

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
