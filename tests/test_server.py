"""Tests for the MCP server surface."""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from ledgerwise import server
from ledgerwise.config import Settings
from ledgerwise.database import Database
from ledgerwise.llm_client import ModelResponse
from ledgerwise.orchestrator import Accountant
from ledgerwise.tools import TOOLS

from conftest import USER_ID


@pytest.fixture
def settings() -> Settings:
    return Settings(user_id=USER_ID, stream_delay=0.0)


@pytest.fixture
def served_db(populated_db: Database, settings: Settings) -> Database:
    server.init_for_testing(populated_db, settings=settings)
    return populated_db


class TestTools:
    """Test tool listing and dispatch."""

    @pytest.mark.asyncio
    async def test_list_tools(self):
        tools = await server.list_tools()

        names = [t.name for t in tools]
        assert len(tools) == len(TOOLS) + 1
        assert names[-1] == "ask_accountant"

    @pytest.mark.asyncio
    async def test_call_tool_returns_json(self, served_db: Database):
        content = await server.call_tool("get_runway", {})

        assert len(content) == 1
        result = json.loads(content[0].text)
        assert result["runway_months"] == 999

    @pytest.mark.asyncio
    async def test_call_tool_uses_configured_user(self, served_db: Database):
        content = await server.call_tool("query_transactions", {"type": "income"})

        result = json.loads(content[0].text)
        assert result["count"] == 3

    @pytest.mark.asyncio
    async def test_run_monitoring_uses_configured_threshold(self, populated_db: Database):
        server.init_for_testing(populated_db, settings=Settings(user_id=USER_ID, cash_threshold=20000))

        content = await server.call_tool("run_monitoring", {})

        result = json.loads(content[0].text)
        assert result["created"]["cash"] == 1
        assert result["created"]["total"] == 1

    @pytest.mark.asyncio
    async def test_recurring_items_stored(self, served_db: Database):
        await server.call_tool("get_recurring_items", {})
        assert served_db.count_table("recurring_transactions") == 3

    @pytest.mark.asyncio
    async def test_unknown_tool(self, served_db: Database):
        content = await server.call_tool("wire_money", {})

        assert json.loads(content[0].text)["unsupported_tool"] == "wire_money"

    @pytest.mark.asyncio
    async def test_ask_accountant(self, populated_db: Database, settings: Settings):
        client = Mock()
        client.generate = AsyncMock(return_value=ModelResponse(text="Runway is unlimited."))
        server.init_for_testing(populated_db, Accountant(populated_db, client, settings), settings)

        content = await server.call_tool("ask_accountant", {"message": "What is our runway?"})

        assert content[0].text == "Runway is unlimited."
        assert populated_db.count_table("conversations") == 2

    @pytest.mark.asyncio
    async def test_ask_accountant_requires_message(self, served_db: Database):
        with pytest.raises(ValueError):
            await server.call_tool("ask_accountant", {})

    @pytest.mark.asyncio
    async def test_ask_accountant_requires_api_key(self, served_db: Database):
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            await server.call_tool("ask_accountant", {"message": "hi"})


class TestResources:
    """Test resource listing and reading."""

    @pytest.mark.asyncio
    async def test_list_resources(self):
        resources = await server.list_resources()

        assert [str(r.uri) for r in resources] == [
            "ledgerwise://alerts",
            "ledgerwise://budgets/current",
            "ledgerwise://goals",
            "ledgerwise://digest",
        ]

    @pytest.mark.asyncio
    async def test_alerts(self, served_db: Database):
        served_db.create_alert(USER_ID, "custom", "info", "Hello", "World")

        alerts = json.loads(await server.read_resource("ledgerwise://alerts"))

        assert [a["title"] for a in alerts] == ["Hello"]

    @pytest.mark.asyncio
    async def test_budgets(self, served_db: Database):
        served_db.create_budget(USER_ID, "Office", 1000)

        budgets = json.loads(await server.read_resource("ledgerwise://budgets/current"))

        assert budgets[0]["actual"] == 2000
        assert budgets[0]["status"] == "over"

    @pytest.mark.asyncio
    async def test_goals(self, served_db: Database):
        served_db.create_goal(USER_ID, "savings", 1000, current_amount=100)

        goals = json.loads(await server.read_resource("ledgerwise://goals"))

        assert len(goals["goals"]) == 1

    @pytest.mark.asyncio
    async def test_digest(self, served_db: Database):
        digest = json.loads(await server.read_resource("ledgerwise://digest"))
        assert digest["cash_balance"] == 17630

    @pytest.mark.asyncio
    async def test_unknown_resource(self, served_db: Database):
        with pytest.raises(ValueError, match="Unknown resource"):
            await server.read_resource("ledgerwise://nope")
