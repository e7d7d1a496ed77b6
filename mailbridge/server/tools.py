"""Tool registry for the MailBridge server

Tools are registered with their handler, a category and typed parameter
declarations. The registry builds each tool's JSON input schema, checks
arguments before a handler runs and turns every handler failure into an
error result, so nothing raised by a handler escapes the tool boundary.
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mailbridge.utils.errors import (
    ErrorHandler,
    InvalidParameterError,
    MissingRequiredFieldError,
    NotFoundError,
)
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

PARAM_TYPES = ("string", "number", "boolean", "array", "object")

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


## Serialization


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(data: Any) -> str:
    """Serialize a handler result as indented JSON text."""
    return json.dumps(data, indent=2, default=_json_default, ensure_ascii=False)


## Tool Declarations


@dataclass
class ToolParam:
    """A named tool parameter."""

    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    default: Any = None
    items: Optional[str] = None
    enum: Optional[List[str]] = None

    def __post_init__(self):
        if self.type not in PARAM_TYPES:
            raise ValueError(f"Unsupported parameter type: {self.type}")

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.default is not None:
            schema["default"] = self.default
        if self.items:
            schema["items"] = {"type": self.items}
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema

    def matches(self, value: Any) -> bool:
        """Whether ``value`` has this parameter's primitive type."""
        if self.type == "string":
            return isinstance(value, str)
        if self.type == "number":
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == "boolean":
            return isinstance(value, bool)
        if self.type == "object":
            return isinstance(value, dict)
        if not isinstance(value, list):
            return False
        if self.items is None:
            return True
        item = ToolParam(name=self.name, type=self.items)
        return all(item.matches(v) for v in value)


@dataclass
class ToolMetadata:
    """Metadata for a registered tool."""

    name: str
    handler: ToolHandler
    description: str = ""
    category: str = "general"
    params: List[ToolParam] = field(default_factory=list)

    def input_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.params},
        }
        required = [p.name for p in self.params if p.required]
        if required:
            schema["required"] = required
        return schema


@dataclass
class ToolResult:
    """Text returned to the host; ``is_error`` marks the error variant."""

    text: str
    is_error: bool = False
    data: Optional[Any] = None

    @classmethod
    def json(cls, data: Any) -> "ToolResult":
        return cls(text=to_json(data), data=data)

    @classmethod
    def error(cls, payload: Dict[str, Any]) -> "ToolResult":
        return cls(text=to_json(payload), is_error=True, data=payload)


## Registry


class ToolRegistry:
    """Registry of tool handlers with metadata."""

    def __init__(self):
        self._tools: Dict[str, ToolMetadata] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        description: str = "",
        category: str = "general",
        params: Optional[List[ToolParam]] = None,
    ) -> None:
        """Register a tool with metadata."""
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")

        self._tools[name] = ToolMetadata(
            name=name,
            handler=handler,
            description=description,
            category=category,
            params=list(params or []),
        )

    def get_metadata(self, name: str) -> Optional[ToolMetadata]:
        return self._tools.get(name)

    def exists(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self, category: Optional[str] = None) -> List[ToolMetadata]:
        """Registered tools in registration order, optionally filtered by category."""
        return [
            meta for meta in self._tools.values()
            if category is None or meta.category == category
        ]

    def list_categories(self) -> List[str]:
        return sorted({meta.category for meta in self._tools.values()})

    def get_tools_by_category(self) -> Dict[str, List[str]]:
        """Tool names grouped by category."""
        result: Dict[str, List[str]] = {}
        for meta in self._tools.values():
            result.setdefault(meta.category, []).append(meta.name)
        for category in result:
            result[category].sort()
        return result

    def __len__(self) -> int:
        return len(self._tools)

    ## Validation

    def validate_arguments(self, meta: ToolMetadata, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Check presence and type of arguments, then fill in defaults.

        Raises:
            MissingRequiredFieldError: If a required parameter is absent
            InvalidParameterError: If a value has the wrong type or is not an allowed choice
        """
        arguments = dict(arguments or {})

        missing = [p.name for p in meta.params if p.required and arguments.get(p.name) is None]
        if missing:
            raise MissingRequiredFieldError(
                f"Missing required arguments: {', '.join(missing)}",
                details={"tool": meta.name, "missing_args": missing},
            )

        validated: Dict[str, Any] = {}
        for param in meta.params:
            value = arguments.pop(param.name, None)
            if value is None:
                validated[param.name] = param.default
                continue
            if not param.matches(value):
                raise InvalidParameterError(
                    f"Parameter '{param.name}' must be of type {param.type}",
                    details={"tool": meta.name, "parameter": param.name},
                )
            if param.enum and value not in param.enum:
                raise InvalidParameterError(
                    f"Parameter '{param.name}' must be one of: {', '.join(param.enum)}",
                    details={"tool": meta.name, "parameter": param.name, "value": value},
                )
            validated[param.name] = value

        if arguments:
            logger.debug(
                f"Ignoring unknown arguments for {meta.name}",
                extra={"data": {"arguments": sorted(arguments)}},
            )

        return validated

    ## Dispatch

    async def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Run a tool and always return a well-formed result."""
        logger.debug(f"Tool called: {name}")

        try:
            meta = self._tools.get(name)
            if meta is None:
                raise NotFoundError(f"Unknown tool: {name}", details={"tool": name})

            result = await meta.handler(self.validate_arguments(meta, arguments))

        except Exception as e:
            error = ErrorHandler.handle(e, context=f"Tool execution failed: {name}")
            return ToolResult.error(
                {
                    "error": error["message"],
                    "error_type": error["error_type"],
                    "category": error["category"],
                    "details": error.get("details", {}),
                }
            )

        if isinstance(result, ToolResult):
            return result
        if isinstance(result, str):
            return ToolResult(text=result)
        return ToolResult.json(result)
