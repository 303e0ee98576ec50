"""Client for the Gemini generateContent REST API."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from mcp.types import Tool

from .config import DEFAULT_API_URL, DEFAULT_MODEL


logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 2048

# JSON-schema keys the functionDeclarations parser rejects
UNSUPPORTED_SCHEMA_KEYS = ("default", "additionalProperties", "$schema", "examples")


class ModelError(Exception):
    """Error talking to the language model API."""

    pass


@dataclass
class ModelResponse:
    """Parsed first candidate of a generateContent response."""

    text: str = ""
    function_call: dict[str, Any] | None = None
    content: dict[str, Any] = field(default_factory=dict)


def _clean_schema(schema: Any) -> Any:
    """Strip keys the function-declaration schema dialect does not accept."""
    if isinstance(schema, dict):
        return {
            key: _clean_schema(value)
            for key, value in schema.items()
            if key not in UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


def tool_to_declaration(tool: Tool) -> dict[str, Any]:
    """Convert an MCP tool definition into a Gemini function declaration."""
    declaration: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description or "",
    }
    schema = _clean_schema(tool.inputSchema or {})
    if schema.get("properties"):
        declaration["parameters"] = schema
    return declaration


def parse_response(data: dict[str, Any]) -> ModelResponse:
    """Extract text and the first function call from a response body."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ModelResponse()

    content = candidates[0].get("content") or {}
    texts = []
    function_call = None

    for part in content.get("parts") or []:
        if "text" in part:
            texts.append(part["text"])
        elif "functionCall" in part and function_call is None:
            call = part["functionCall"]
            function_call = {"name": call.get("name", ""), "args": call.get("args") or {}}

    return ModelResponse(text="".join(texts), function_call=function_call, content=content)


class GeminiClient:
    """Async client for ``models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 60.0,
    ):
        """Initialize the client.

        Args:
            api_key: Gemini API key, sent in the x-goog-api-key header.
            model: Model name.
            api_url: API base URL.
            timeout: Request timeout in seconds.
        """
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/models/{self.model}:generateContent"

    async def generate(
        self,
        system_instruction: str,
        contents: list[dict[str, Any]],
        tools: list[Tool] | None = None,
    ) -> ModelResponse:
        """Send one generateContent request.

        Args:
            system_instruction: System prompt text.
            contents: Conversation turns ({"role": "user"|"model", "parts": [...]}).
            tools: Tools the model may call.

        Returns:
            Parsed response of the first candidate.

        Raises:
            ModelError: On transport failure, non-200 status or invalid JSON.
        """
        body: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": MAX_OUTPUT_TOKENS},
        }
        if tools:
            body["tools"] = [{"functionDeclarations": [tool_to_declaration(t) for t in tools]}]

        logger.debug("generateContent %s with %d turns", self.model, len(contents))

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    self.endpoint,
                    json=body,
                    headers={
                        "x-goog-api-key": self.api_key,
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                raise ModelError(f"fetch failed: {e}") from e

        if response.status_code != 200:
            raise ModelError(f"API returned status {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise ModelError(f"Invalid JSON response: {e}") from e

        return parse_response(data)
