"""
ToolRegistry - named tools backed by domain service coroutines.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from aem_mcp.services.errors import AEMError, ValidationError
from aem_mcp.services.response import sanitize
from aem_mcp.tools.formatter import error_result, success_result

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


@dataclass
class Tool:
    """A callable tool with a JSON-schema parameter description."""

    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": self.properties,
            "required": self.required,
            "additionalProperties": False,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    def validate(self, arguments: dict[str, Any]) -> None:
        missing = [name for name in self.required if arguments.get(name) is None]
        if missing:
            raise ValidationError(f"Missing required arguments: {', '.join(missing)}")

        unknown = sorted(set(arguments) - set(self.properties))
        if unknown:
            raise ValidationError(f"Unknown arguments: {', '.join(unknown)}")

        for name, value in arguments.items():
            expected = self.properties[name].get("type")
            if value is None or expected not in _JSON_TYPES:
                continue
            # bool is an int subclass; reject it where a number is expected
            if isinstance(value, bool) and expected != "boolean":
                raise ValidationError(f"Argument '{name}' must be of type {expected}")
            if not isinstance(value, _JSON_TYPES[expected]):
                raise ValidationError(f"Argument '{name}' must be of type {expected}")


class ToolRegistry:
    """
    Maps tool names to handlers and turns their outcome into tool results.

    Usage:
        registry = ToolRegistry("aem-read")
        registry.add("get_page", "Get a page", content.get_page,
                     properties={"path": {"type": "string"}}, required=["path"])
        result = await registry.call("get_page", {"path": "/content/site/en"})
    """

    def __init__(self, name: str):
        self.name = name
        self._tools: dict[str, Tool] = {}

    def add(
        self,
        name: str,
        description: str,
        handler: Callable[..., Awaitable[Any]],
        properties: dict[str, dict[str, Any]] | None = None,
        required: list[str] | None = None,
    ) -> Tool:
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        tool = Tool(name, description, handler, properties or {}, required or [])
        self._tools[name] = tool
        return tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.to_dict() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a tool; failures come back as error results, never as exceptions."""
        arguments = arguments or {}
        tool = self._tools.get(name)
        if tool is None:
            return error_result(ValidationError(f"Unknown tool: {name}"))

        logger.debug(f"[{self.name}] {name} {sanitize(arguments)}")
        try:
            tool.validate(arguments)
            value = await tool.handler(**arguments)
        except AEMError as e:
            logger.warning(f"[{self.name}] {name} failed: {e.kind.value}: {e.message}")
            return error_result(e)
        except Exception as e:
            logger.exception(f"[{self.name}] {name} raised unexpectedly")
            return error_result(AEMError(f"Internal error in {name}: {e}", cause=e))

        return success_result(value)
