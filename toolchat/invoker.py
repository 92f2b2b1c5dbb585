"""toolchat/invoker.py

Executes registered tools over the MCP session.

Every call is checked against the tool's input schema before it is sent,
bounded by a timeout, and normalised into a :class:`ToolResult`.  Tools with
a fallback (currently ``weather``) never fail on their primary attempt: the
invoker runs a web search instead and returns a degraded result.  Only the
fallback's own failure is raised.
"""

from __future__ import annotations

# Standard Library
import asyncio
import dataclasses
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

# Local Modules
from toolchat.errors import ToolArgumentsError, ToolExecutionError
from toolchat.models import ToolDescriptor, ToolResult
from toolchat.registry import ToolRegistry

logger = logging.getLogger(__name__)

# JSON Schema type name → accepted Python types.  bool is excluded from the
# numeric types explicitly in _matches_type.
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "null": (type(None),),
}


# ---------------------------------------------------------------------------
# Argument validation
# ---------------------------------------------------------------------------


def _matches_type(value: Any, expected: str | list[str]) -> bool:
    names = [expected] if isinstance(expected, str) else list(expected)
    for name in names:
        types = _JSON_TYPES.get(name)
        if types is None:
            # Unknown type keyword: do not reject what we cannot check.
            return True
        if isinstance(value, bool) and name in ("integer", "number"):
            continue
        if isinstance(value, types):
            return True
        # JSON Schema treats 5.0 as an integer.
        if name == "integer" and isinstance(value, float) and value.is_integer():
            return True
    return False


def _property_types(spec: Mapping[str, Any]) -> list[str] | None:
    """Collect allowed types of a property, following ``anyOf`` unions."""
    if "type" in spec:
        declared = spec["type"]
        return [declared] if isinstance(declared, str) else list(declared)
    if "anyOf" in spec:
        types: list[str] = []
        for option in spec["anyOf"]:
            option_types = _property_types(option)
            if option_types is None:
                return None
            types.extend(option_types)
        return types
    return None


def validate_arguments(descriptor: ToolDescriptor, arguments: Any) -> None:
    """Check ``arguments`` against the descriptor's input schema.

    Only the top level is checked: required keys, declared property types,
    and ``additionalProperties: false``.

    Raises:
        ToolArgumentsError: Describing every problem found.
    """
    if not isinstance(arguments, Mapping):
        raise ToolArgumentsError(
            descriptor.name,
            f"arguments must be an object, got {type(arguments).__name__}",
        )

    schema = descriptor.input_schema
    properties: Mapping[str, Any] = schema.get("properties") or {}
    problems: list[str] = []

    for key in schema.get("required") or []:
        if key not in arguments:
            problems.append(f"missing required argument '{key}'")

    for key, value in arguments.items():
        spec = properties.get(key)
        if spec is None:
            if schema.get("additionalProperties") is False:
                problems.append(f"unexpected argument '{key}'")
            continue
        expected = _property_types(spec)
        if expected is not None and not _matches_type(value, expected):
            problems.append(
                f"argument '{key}' should be {' or '.join(expected)}, "
                f"got {type(value).__name__}"
            )

    if problems:
        raise ToolArgumentsError(descriptor.name, "; ".join(problems))


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class Fallback:
    """Secondary strategy for a tool whose primary call failed.

    Attributes:
        tool: Name of the tool to call instead (a search tool).
        build_query: Builds the search query from the original arguments.
        render: Turns the search tool's text output into the degraded answer.
    """

    tool: str
    build_query: Callable[[Mapping[str, Any]], str]
    render: Callable[[Mapping[str, Any], str], str]


def weather_search_query(arguments: Mapping[str, Any]) -> str:
    """``"météo <city> <postal code>"`` with blank parts dropped."""
    parts = ["météo", str(arguments.get("city") or ""), str(arguments.get("postal_code") or "")]
    return " ".join(p.strip() for p in parts if p and p.strip())


def render_weather_links(arguments: Mapping[str, Any], search_output: str) -> str:
    """Reformat ``search`` tool JSON into a short list of links."""
    city = str(arguments.get("city") or "").strip() or "cette ville"
    try:
        results = json.loads(search_output).get("results", [])
    except (ValueError, AttributeError):
        return search_output
    if not isinstance(results, list):
        return search_output

    lines = [f"Impossible d'obtenir la météo pour {city}. Voici quelques liens utiles :"]
    for item in results:
        if isinstance(item, Mapping):
            lines.append(f"- {item.get('title', '')} : {item.get('url', '')}")
    if len(lines) == 1:
        lines.append("(aucun résultat de recherche)")
    return "\n".join(lines)


DEFAULT_FALLBACKS: dict[str, Fallback] = {
    "weather": Fallback(
        tool="search",
        build_query=weather_search_query,
        render=render_weather_links,
    ),
}


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


class ToolInvoker:
    """Runs tools from a :class:`ToolRegistry` over an MCP client.

    Args:
        registry: Loaded registry used for lookup and validation.
        client: Connected ``fastmcp.Client`` (anything with an async
            ``call_tool_mcp(name, arguments)`` returning an MCP
            ``CallToolResult``).
        timeout: Seconds allowed per tool call.
        fallbacks: Tool name → :class:`Fallback`.  Defaults to the weather
            search fallback.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        client: Any,
        *,
        timeout: float = 30.0,
        fallbacks: Mapping[str, Fallback] | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.timeout = timeout
        self.fallbacks = dict(DEFAULT_FALLBACKS if fallbacks is None else fallbacks)

    async def invoke(self, name: str, arguments: Mapping[str, Any] | None) -> ToolResult:
        """Execute ``name`` with ``arguments``.

        Raises:
            UnknownToolError: ``name`` is not registered.
            ToolExecutionError: The call failed and no fallback rescued it.
        """
        descriptor = self.registry.get(name)
        if arguments is None:
            args: Any = {}
        elif isinstance(arguments, Mapping):
            args = dict(arguments)
        else:
            args = arguments

        fallback = self.fallbacks.get(name)
        try:
            validate_arguments(descriptor, args)
            return await self._call(name, args)
        except ToolExecutionError as exc:
            if fallback is None:
                raise
            logger.warning(
                "Tool %s failed (%s); falling back to %s", name, exc, fallback.tool
            )
            return await self._run_fallback(fallback, args if isinstance(args, Mapping) else {})

    async def _call(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        logger.info("Calling tool %s with args %s", name, arguments)
        try:
            async with asyncio.timeout(self.timeout):
                response = await self.client.call_tool_mcp(name, arguments)
        except TimeoutError as exc:
            raise ToolExecutionError(
                name, f"timed out after {self.timeout:g}s", exc
            ) from exc
        except Exception as exc:
            logger.error("Tool %s transport error: %s", name, exc, exc_info=True)
            raise ToolExecutionError(name, str(exc) or type(exc).__name__, exc) from exc

        result = ToolResult(content=[_block_to_dict(b) for b in response.content or []])
        if getattr(response, "isError", False):
            raise ToolExecutionError(name, result.text or "tool reported an error")

        logger.info("Tool %s returned %d chars", name, len(result.text))
        return result

    async def _run_fallback(
        self, fallback: Fallback, arguments: Mapping[str, Any]
    ) -> ToolResult:
        query = fallback.build_query(arguments)
        if fallback.tool not in self.registry:
            raise ToolExecutionError(
                fallback.tool, "fallback tool is not available on this server"
            )
        search = await self.invoke(fallback.tool, {"query": query})
        return ToolResult.from_text(
            fallback.render(arguments, search.text), degraded=True
        )


def _block_to_dict(block: Any) -> dict[str, Any]:
    """Convert an MCP content block (pydantic model or dict) to a dict."""
    if isinstance(block, Mapping):
        return dict(block)
    if hasattr(block, "model_dump"):
        return block.model_dump(exclude_none=True)
    return {"type": getattr(block, "type", "unknown"), "text": getattr(block, "text", None)}
