"""Generic external tool invoker with an in-memory tool registry."""

import json
import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..lib.completion import CompletionClient, CompletionError
from ..lib.json_extract import Decoded, extract_json_object
from ..lib.metrics import time_agent_operation
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.message import Message
from ..models.tool_definition import AuthType, HttpMethod, ToolDefinition
from .base_agent import BaseAgent


TOOL_PROMPT = """You are a Tool Agent for Morpheus AI.
Your role is to manage and execute external API calls and tools:
- You can access and call various external APIs
- You should ensure proper authentication is used
- You should validate input parameters before making calls
- You should format API responses in a readable way
- You should handle API errors gracefully
- You should never expose sensitive API keys or credentials
Tools are called with `!tool <name> <parameters>`, registered with `!register <definition>`,
listed with `!list tools` and given credentials with `!apikey <name> <secret>`."""

DEFINITION_PROMPT = """Convert the following tool description into a JSON object with these properties:
- name: short identifier (letters, digits, underscores or dashes)
- description: what the tool does
- endpoint: full http(s) URL; use {{param}} placeholders for path parameters
- method: "GET", "POST", "PUT" or "DELETE"
- auth_type: "none", "api_key", "bearer" or "basic"
- parameters: array of {{name, description, required, type}} where type is string, number, boolean, object or array

Description: {description}

Respond with the JSON object only."""

PLACEHOLDER = re.compile(r"\{(\w+)\}")

BUILTIN_TOOLS = [
    {
        "name": "weather",
        "description": "Get current weather data for a location",
        "endpoint": "https://api.openweathermap.org/data/2.5/weather",
        "method": "GET",
        "auth_type": "api_key",
        "parameters": [
            {"name": "location", "description": "City name or coordinates", "required": True, "type": "string"},
            {"name": "units", "description": "Units of measurement (metric, imperial, standard)", "required": False, "type": "string"},
        ],
    },
    {
        "name": "news",
        "description": "Get latest news headlines",
        "endpoint": "https://newsapi.org/v2/top-headlines",
        "method": "GET",
        "auth_type": "api_key",
        "parameters": [
            {"name": "country", "description": "Country code (e.g., us, gb, au)", "required": False, "type": "string"},
            {"name": "category", "description": "News category (business, entertainment, health, science, sports, technology)", "required": False, "type": "string"},
            {"name": "query", "description": "Keywords or phrases to search for", "required": False, "type": "string"},
        ],
    },
    {
        "name": "dictionary",
        "description": "Look up word definitions",
        "endpoint": "https://api.dictionaryapi.dev/api/v2/entries/en/{word}",
        "method": "GET",
        "auth_type": "none",
        "parameters": [
            {"name": "word", "description": "Word to look up", "required": True, "type": "string"},
        ],
    },
]


def parse_tool_params(tool: ToolDefinition, text: str) -> Dict[str, Any]:
    """Parse `!tool` arguments: a JSON object, `key: value` pairs, or one bare value.

    A bare value is assigned to the first required parameter.
    """
    text = text.strip()
    if not text:
        return {}

    if text.startswith("{"):
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        text = text.strip("{}")

    if ":" in text:
        params = {}
        for pair in text.split(","):
            key, _, value = pair.partition(":")
            key, value = key.strip().strip('"'), value.strip().strip('"')
            if key and value:
                params[key] = value
        return params

    required = tool.required_parameters
    if required:
        return {required[0].name: text}
    return {}


class ToolAgent(BaseAgent):
    """Registers external HTTP tools and invokes them with validated parameters."""

    kind = AgentKind.TOOL

    def __init__(
        self,
        completion: CompletionClient,
        request_timeout: float = 30.0,
        builtin_tools: bool = True,
        credentials: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(
            "Tool Agent",
            "Manages external API calls and integrations",
            TOOL_PROMPT,
            completion
        )
        self.request_timeout = request_timeout
        self._tools: Dict[str, ToolDefinition] = {}
        self._credentials: Dict[str, str] = dict(credentials or {})
        self._http_client = http_client
        self._owns_client = http_client is None

        if builtin_tools:
            for definition in BUILTIN_TOOLS:
                tool = ToolDefinition.model_validate(definition)
                self._tools[tool.name] = tool

    async def initialize(self) -> bool:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.request_timeout)
            self._owns_client = True
        self.logger.info(f"Tool Agent initialized with {len(self._tools)} tools")
        return await super().initialize()

    async def shutdown(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        await super().shutdown()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.request_timeout)
            self._owns_client = True
        return self._http_client

    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        text = message.strip()

        if text.startswith("!tool"):
            parts = text[len("!tool"):].strip().split(None, 1)
            if not parts:
                return AgentResult.fail("Usage: !tool <name> <parameters>", ErrorCode.INVALID_DIRECTIVE)
            tool = self._tools.get(parts[0])
            if tool is None:
                return self._tool_not_found(parts[0])
            return await self.invoke(tool.name, parse_tool_params(tool, parts[1] if len(parts) > 1 else ""))

        if text.startswith("!register"):
            return await self.register(text[len("!register"):].strip())

        if text.startswith("!list tools"):
            return self.list_tools()

        if text.startswith("!apikey"):
            parts = text[len("!apikey"):].strip().split()
            if len(parts) < 2:
                return AgentResult.fail("Usage: !apikey <tool> <secret>", ErrorCode.INVALID_DIRECTIVE)
            return self.set_credential(parts[0], parts[1])

        catalogue = "\n".join(f"- {tool.name}: {tool.description}" for tool in self._tools.values())
        return await self._answer(f"{message}\n\nAvailable tools:\n{catalogue}", history)

    def _tool_not_found(self, name: str) -> AgentResult:
        return AgentResult.fail(
            f'Tool not found: {name}. Use "!list tools" to see available tools.',
            ErrorCode.TOOL_NOT_FOUND,
            {"tool": name}
        )

    async def register(self, definition: Union[ToolDefinition, Dict[str, Any], str]) -> AgentResult:
        """Register a tool from a definition, a mapping, JSON text or a free-text description.

        Free text is converted to a definition by the completion service.
        """
        if isinstance(definition, str):
            text = definition.strip()
            if not text:
                return AgentResult.fail("Tool definition is empty", ErrorCode.INVALID_DEFINITION)
            decoded = extract_json_object(text) if text.startswith("{") else None
            if isinstance(decoded, Decoded):
                definition = decoded.value
            else:
                try:
                    reply = await self.completion.complete(
                        self.system_prompt, [Message.user(DEFINITION_PROMPT.format(description=text))]
                    )
                except CompletionError as e:
                    return AgentResult.fail(
                        f"Error registering tool: {e}", ErrorCode.UPSTREAM_ERROR, {"message": str(e)}
                    )
                decoded = extract_json_object(reply)
                if not isinstance(decoded, Decoded):
                    return AgentResult.fail(
                        f"Could not derive a tool definition from the description: {decoded.reason}",
                        ErrorCode.INVALID_DEFINITION,
                        {"raw": reply}
                    )
                definition = decoded.value

        if not isinstance(definition, ToolDefinition):
            try:
                definition = ToolDefinition.model_validate(definition)
            except ValidationError as e:
                return AgentResult.fail(
                    f"Invalid tool definition: {e.error_count()} validation error(s)",
                    ErrorCode.INVALID_DEFINITION,
                    {"errors": json.loads(e.json())}
                )

        replaced = definition.name in self._tools
        self._tools[definition.name] = definition
        self.logger.info(f"{'Replaced' if replaced else 'Registered'} tool {definition.name}")

        content = f"Tool registered successfully: {definition.name}"
        if definition.requires_auth:
            content += f'\nThis tool requires a credential. Use "!apikey {definition.name} YOUR_API_KEY" to set it.'
        return AgentResult.ok(content, {"tool": definition.model_dump(mode="json")})

    def set_credential(self, name: str, secret: str) -> AgentResult:
        if name not in self._tools:
            return self._tool_not_found(name)
        if not secret:
            return AgentResult.fail("Credential cannot be empty", ErrorCode.INVALID_DIRECTIVE)
        self._credentials[name] = secret
        return AgentResult.ok(f"Credential set for tool: {name}", {"tool": name})

    def list_tools(self) -> AgentResult:
        if not self._tools:
            return AgentResult.ok("No tools registered.", {"tools": []})

        lines = ["Available tools:", ""]
        for tool in self._tools.values():
            lines.append(f"**{tool.name}**: {tool.description}")
            lines.append(f"  Method: {tool.method.value}, Auth: {tool.auth_type.value}"
                         + (" (credential set)" if tool.name in self._credentials else ""))
            for param in tool.parameters:
                lines.append(f"  - {param.name}{' (required)' if param.required else ''}: {param.description}")
            lines.append("")
        lines.append("To use a tool, type `!tool [tool_name] [parameters]`")
        return AgentResult.ok(
            "\n".join(lines),
            {"tools": [tool.model_dump(mode="json") for tool in self._tools.values()]}
        )

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    async def invoke(self, name: str, params: Optional[Dict[str, Any]] = None) -> AgentResult:
        """Call a registered tool.

        Args:
            name: Tool name
            params: Parameter values by name

        Returns:
            AgentResult with the decoded response, or a failure with an ErrorCode
        """
        tool = self._tools.get(name)
        if tool is None:
            return self._tool_not_found(name)

        params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}

        placeholders = PLACEHOLDER.findall(tool.endpoint)
        required = [p.name for p in tool.required_parameters]
        for param_name in required + [p for p in placeholders if p not in required]:
            if param_name not in params:
                declared = next((p for p in tool.parameters if p.name == param_name), None)
                detail = f" ({declared.description})" if declared and declared.description else ""
                return AgentResult.fail(
                    f"Missing required parameter: {param_name}{detail}",
                    ErrorCode.MISSING_PARAMETER,
                    {"tool": name, "parameter": param_name}
                )

        headers = {"Accept": "application/json"}
        query: Dict[str, Any] = {}
        if tool.requires_auth:
            secret = self._credentials.get(name)
            if not secret:
                return AgentResult.fail(
                    f'API key not set for tool: {name}. Use "!apikey {name} YOUR_API_KEY" to set it.',
                    ErrorCode.MISSING_CREDENTIAL,
                    {"tool": name}
                )
            if tool.auth_type == AuthType.API_KEY:
                query["apiKey"] = secret
            elif tool.auth_type == AuthType.BEARER:
                headers["Authorization"] = f"Bearer {secret}"
            elif tool.auth_type == AuthType.BASIC:
                headers["Authorization"] = f"Basic {secret}"

        url = tool.endpoint
        remaining = dict(params)
        for placeholder in placeholders:
            url = url.replace(f"{{{placeholder}}}", quote(str(remaining.pop(placeholder)), safe=""))

        request_kwargs: Dict[str, Any] = {"headers": headers}
        if tool.method == HttpMethod.GET:
            query.update({k: v if isinstance(v, str) else json.dumps(v) for k, v in remaining.items()})
        else:
            request_kwargs["json"] = remaining
        if query:
            request_kwargs["params"] = query

        with time_agent_operation(self.name, f"invoke:{name}") as timer:
            try:
                response = await self._client().request(tool.method.value, url, **request_kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                timer.success = False
                self.logger.warning(f"Tool {name} returned HTTP {e.response.status_code}")
                return AgentResult.fail(
                    f"Error executing tool {name}: HTTP {e.response.status_code}",
                    ErrorCode.UPSTREAM_ERROR,
                    {"tool": name, "status": e.response.status_code, "body": e.response.text}
                )
            except httpx.RequestError as e:
                timer.success = False
                self.logger.warning(f"Tool {name} request failed: {e}")
                return AgentResult.fail(
                    f"Error executing tool {name}: {e}",
                    ErrorCode.UPSTREAM_ERROR,
                    {"tool": name, "status": None, "message": str(e)}
                )

        try:
            payload: Any = response.json()
            body = f"```json\n{json.dumps(payload, indent=2)}\n```"
        except ValueError:
            payload = response.text
            body = payload

        return AgentResult.ok(
            f"### Response from {name}\n\n{body}",
            {"tool": name, "status": response.status_code, "response": payload}
        )
