"""Tests for the Gemini REST client."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from ledgerwise.llm_client import (
    GeminiClient,
    ModelError,
    parse_response,
    tool_to_declaration,
)
from ledgerwise.tools import TOOLS


def _tool(name: str):
    return next(t for t in TOOLS if t.name == name)


class TestDeclarations:
    """Test tool -> function declaration conversion."""

    def test_default_keys_stripped(self):
        declaration = tool_to_declaration(_tool("forecast_cash_flow"))

        months = declaration["parameters"]["properties"]["months"]
        assert "default" not in months
        assert months["type"] == "integer"

    def test_no_parameters_for_empty_schema(self):
        declaration = tool_to_declaration(_tool("get_runway"))

        assert declaration["name"] == "get_runway"
        assert "parameters" not in declaration

    def test_required_kept(self):
        declaration = tool_to_declaration(_tool("add_transaction"))
        assert declaration["parameters"]["required"] == ["description", "amount", "type", "category"]


class TestParseResponse:
    """Test parse_response."""

    def test_text_parts_joined(self):
        response = parse_response({
            "candidates": [{"content": {"role": "model", "parts": [{"text": "Hello "}, {"text": "there"}]}}]
        })

        assert response.text == "Hello there"
        assert response.function_call is None

    def test_function_call(self):
        response = parse_response({
            "candidates": [{
                "content": {
                    "role": "model",
                    "parts": [{"functionCall": {"name": "get_runway"}}],
                }
            }]
        })

        assert response.function_call == {"name": "get_runway", "args": {}}
        assert response.text == ""

    def test_no_candidates(self):
        response = parse_response({"promptFeedback": {"blockReason": "SAFETY"}})

        assert response.text == ""
        assert response.function_call is None


class TestGenerate:
    """Test GeminiClient.generate."""

    @pytest.mark.asyncio
    async def test_request(self):
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "candidates": [{"content": {"role": "model", "parts": [{"text": "All good"}]}}]
        }

        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = post

            client = GeminiClient("secret", model="gemini-test", api_url="https://example.test/v1beta/")
            result = await client.generate("be brief", [{"role": "user", "parts": [{"text": "hi"}]}], TOOLS)

        assert result.text == "All good"

        args, kwargs = post.call_args
        assert args[0] == "https://example.test/v1beta/models/gemini-test:generateContent"
        assert kwargs["headers"]["x-goog-api-key"] == "secret"

        body = kwargs["json"]
        assert body["systemInstruction"] == {"parts": [{"text": "be brief"}]}
        assert body["generationConfig"] == {"maxOutputTokens": 2048}
        assert len(body["tools"][0]["functionDeclarations"]) == len(TOOLS)

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self):
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"candidates": []}

        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = post

            await GeminiClient("secret").generate("sys", [])

        assert "tools" not in post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_non_200_status(self):
        mock_response = Mock()
        mock_response.status_code = 403
        mock_response.text = "API key not valid"

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=mock_response)

            with pytest.raises(ModelError, match="API returned status 403"):
                await GeminiClient("bad").generate("sys", [])

    @pytest.mark.asyncio
    async def test_network_error(self):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ConnectError("Name or service not known")
            )

            with pytest.raises(ModelError, match="fetch failed"):
                await GeminiClient("secret").generate("sys", [])

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json.side_effect = ValueError("Expecting value")

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=mock_response)

            with pytest.raises(ModelError, match="Invalid JSON"):
                await GeminiClient("secret").generate("sys", [])
