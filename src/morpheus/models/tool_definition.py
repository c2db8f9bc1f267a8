"""External tool definitions for the tool agent."""

import re
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field, field_validator, model_validator


class HttpMethod(str, Enum):
    """Supported HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class AuthType(str, Enum):
    """How a credential is attached to a tool request."""

    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"


class ParameterType(str, Enum):
    """Declared parameter value types."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class ToolParameter(BaseModel):
    """Declared tool parameter."""

    name: str = Field(..., min_length=1, description="Parameter name")
    description: str = Field(default="", description="What the parameter means")
    required: bool = Field(default=False, description="Whether the call fails without it")
    type: ParameterType = Field(default=ParameterType.STRING, description="Value type")


class ToolDefinition(BaseModel):
    """A registered external HTTP tool."""

    name: str = Field(..., min_length=1, max_length=64, description="Unique tool identifier")
    description: str = Field(..., min_length=1, description="What the tool does")
    endpoint: str = Field(..., description="HTTP endpoint, may contain {param} placeholders")
    method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method")
    auth_type: AuthType = Field(default=AuthType.NONE, description="Authentication mode")
    parameters: List[ToolParameter] = Field(default_factory=list, description="Declared parameters")

    @model_validator(mode='before')
    @classmethod
    def normalize_legacy_fields(cls, data: Any) -> Any:
        """Accept `requiresAuth`/`authType` style definitions produced by language models."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "authType" in data and "auth_type" not in data:
            data["auth_type"] = data.pop("authType")
        requires_auth = data.pop("requiresAuth", data.pop("requires_auth", None))
        auth = data.get("auth_type")
        if isinstance(auth, str):
            auth = {"apikey": "api_key", "api-key": "api_key"}.get(auth.lower(), auth.lower())
            data["auth_type"] = auth
        if requires_auth is False:
            data["auth_type"] = AuthType.NONE.value
        elif requires_auth and not auth:
            data["auth_type"] = AuthType.API_KEY.value
        if isinstance(data.get("method"), str):
            data["method"] = data["method"].upper()
        return data

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Tool names are simple identifiers."""
        name = v.strip()
        if not re.fullmatch(r"[A-Za-z0-9_\-]+", name):
            raise ValueError(f"Invalid tool name: {v!r}")
        return name

    @field_validator('endpoint')
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http(s) URL")
        return v

    @property
    def requires_auth(self) -> bool:
        return self.auth_type != AuthType.NONE

    @property
    def required_parameters(self) -> List[ToolParameter]:
        return [p for p in self.parameters if p.required]
