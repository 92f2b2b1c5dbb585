"""tests/test_chat.py

Unit tests for the ChatEngine class (toolchat/chat.py).
Tests the weather fast path, completion rounds with tool calls, round
limits, failure handling and history commits.  The completion backend and
the MCP client are mocked.
"""

from __future__ import annotations

# Standard Library
import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, Mock

# Third-Party Libraries
import pytest
from mcp.types import CallToolResult

# Local Modules
from toolchat.chat import EMPTY_ANSWER, ChatEngine, RoundState
from toolchat.config import Settings
from toolchat.errors import ToolExecutionError, UnknownToolError, UpstreamError
from toolchat.intent import Category, Intent
from toolchat.invoker import ToolInvoker
from toolchat.models import Completion, ToolUseBlock
from toolchat.registry import ToolRegistry

ResultFactory = Callable[..., CallToolResult]


@pytest.fixture
def engine(
    registry: ToolRegistry,
    mcp_client: Mock,
    completion_backend: Mock,
    settings: Settings,
) -> ChatEngine:
    invoker = ToolInvoker(registry, mcp_client, timeout=1.0)
    return ChatEngine(registry, invoker, completion_backend, settings)


def _sent_messages(completion_backend: Mock, call_index: int) -> list[dict]:
    """Messages passed to the completion backend on the given call."""
    messages = completion_backend.complete.await_args_list[call_index].args[0]
    return [m.to_dict() for m in messages]


class TestFastPath:
    """Weather queries go straight to the weather tool."""

    async def test_weather_query_skips_completion(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        tool_result: ResultFactory,
    ) -> None:
        report = "Météo à Chelles\nActuellement : 12°C, nuageux"
        mcp_client.call_tool_mcp.return_value = tool_result(report)

        answer = await engine.process_query("Quelle est la météo à Chelles ?")

        assert answer == report
        mcp_client.call_tool_mcp.assert_awaited_once_with(
            "weather", {"city": "chelles", "postal_code": "77500"}
        )
        completion_backend.complete.assert_not_awaited()
        assert engine.trail == [
            RoundState.START,
            RoundState.HANDLING_TOOL_CALL,
            RoundState.DONE,
        ]

    async def test_fast_path_commits_exchange(
        self, engine: ChatEngine, mcp_client: Mock, tool_result: ResultFactory
    ) -> None:
        mcp_client.call_tool_mcp.return_value = tool_result("Météo à Paris")

        await engine.process_query("météo à Paris")

        context = engine.memory.get_context()
        assert [m.to_dict() for m in context] == [
            {"role": "user", "content": "météo à Paris"},
            {"role": "assistant", "content": "Météo à Paris"},
        ]

    async def test_weather_failure_returns_links(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        tool_result: ResultFactory,
        sample_search_json: str,
    ) -> None:
        """A failing weather provider yields search links, not an error."""
        mcp_client.call_tool_mcp.side_effect = [
            tool_result("OpenWeatherMap request failed", is_error=True),
            tool_result(sample_search_json),
        ]

        answer = await engine.process_query("Quelle est la météo à Chelles ?")

        assert "https://meteo.example/chelles" in answer
        completion_backend.complete.assert_not_awaited()

    async def test_fast_path_failure_falls_through(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        """When weather and its fallback both fail, the model answers."""
        mcp_client.call_tool_mcp.side_effect = [
            OSError("weather down"),
            tool_result("search down", is_error=True),
        ]
        completion_backend.complete.return_value = text_completion("Je ne sais pas.")

        answer = await engine.process_query("météo à Lyon")

        assert answer == "Je ne sais pas."
        completion_backend.complete.assert_awaited_once()
        assert engine.trail[-1] is RoundState.DONE

    async def test_empty_weather_result_falls_through(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        mcp_client.call_tool_mcp.return_value = tool_result()
        completion_backend.complete.return_value = text_completion("Answer")

        assert await engine.process_query("météo à Lyon") == "Answer"

    async def test_no_weather_tool_uses_completion(
        self,
        descriptors: list,
        mcp_client: Mock,
        completion_backend: Mock,
        settings: Settings,
        text_completion: Callable[..., Completion],
    ) -> None:
        registry = ToolRegistry(d for d in descriptors if d.name != "weather")
        engine = ChatEngine(
            registry, ToolInvoker(registry, mcp_client), completion_backend, settings
        )
        completion_backend.complete.return_value = text_completion("Sunny, probably.")

        assert await engine.process_query("météo à Nice") == "Sunny, probably."
        mcp_client.call_tool_mcp.assert_not_awaited()

    async def test_custom_classifier(
        self,
        registry: ToolRegistry,
        mcp_client: Mock,
        completion_backend: Mock,
        settings: Settings,
        tool_result: ResultFactory,
    ) -> None:
        """Any object with classify() can route queries."""
        classifier = Mock()
        classifier.classify.return_value = Intent(Category.WEATHER, {"city": "Brest"})
        mcp_client.call_tool_mcp.return_value = tool_result("Pluie")
        engine = ChatEngine(
            registry,
            ToolInvoker(registry, mcp_client),
            completion_backend,
            settings,
            classifier=classifier,
        )

        assert await engine.process_query("anything") == "Pluie"
        classifier.classify.assert_called_once_with("anything")


class TestCompletionRounds:
    """General queries run through the completion endpoint."""

    async def test_plain_answer(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
    ) -> None:
        completion_backend.complete.return_value = text_completion("Paris.")

        answer = await engine.process_query("What is the capital of France?")

        assert answer == "Paris."
        mcp_client.call_tool_mcp.assert_not_awaited()
        messages, tools, max_tokens = completion_backend.complete.await_args.args
        assert [m.to_dict() for m in messages] == [
            {"role": "user", "content": "What is the capital of France?"}
        ]
        assert [t.name for t in tools] == ["search", "weather", "chat"]
        assert max_tokens == 1000
        assert engine.trail == [
            RoundState.START,
            RoundState.AWAITING_COMPLETION,
            RoundState.DONE,
        ]

    async def test_tool_call_then_answer(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
        tool_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        completion_backend.complete.side_effect = [
            tool_completion("search", {"query": "python tutorials"}, text="Searching."),
            text_completion("Here are some tutorials."),
        ]
        mcp_client.call_tool_mcp.return_value = tool_result('{"results": []}')

        answer = await engine.process_query("Search for Python tutorials")

        assert answer == "Searching.\nHere are some tutorials."
        mcp_client.call_tool_mcp.assert_awaited_once_with(
            "search", {"query": "python tutorials"}
        )
        assert _sent_messages(completion_backend, 1) == [
            {"role": "user", "content": "Search for Python tutorials"},
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Searching."},
                    {
                        "type": "tool_use",
                        "id": "toolu_01",
                        "name": "search",
                        "input": {"query": "python tutorials"},
                    },
                ],
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_01",
                        "content": '{"results": []}',
                    }
                ],
            },
        ]
        assert engine.trail == [
            RoundState.START,
            RoundState.AWAITING_COMPLETION,
            RoundState.HANDLING_TOOL_CALL,
            RoundState.AWAITING_COMPLETION,
            RoundState.DONE,
        ]

    async def test_tool_request_in_last_round_ignored(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        tool_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        """The round limit caps tool calls; the text so far is the answer."""
        completion_backend.complete.side_effect = [
            tool_completion("search", {"query": "a"}, text="First."),
            tool_completion("search", {"query": "b"}, text="Second.", call_id="toolu_02"),
        ]
        mcp_client.call_tool_mcp.return_value = tool_result("r")

        answer = await engine.process_query("Search twice")

        assert answer == "First.\nSecond."
        assert completion_backend.complete.await_count == 2
        mcp_client.call_tool_mcp.assert_awaited_once()

    async def test_chained_tool_calls_within_limit(
        self,
        registry: ToolRegistry,
        mcp_client: Mock,
        completion_backend: Mock,
        settings: Settings,
        text_completion: Callable[..., Completion],
        tool_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        engine = ChatEngine(
            registry,
            ToolInvoker(registry, mcp_client),
            completion_backend,
            settings.model_copy(update={"max_rounds": 3}),
        )
        completion_backend.complete.side_effect = [
            tool_completion("search", {"query": "a"}),
            tool_completion("search", {"query": "b"}, call_id="toolu_02"),
            text_completion("Done."),
        ]
        mcp_client.call_tool_mcp.return_value = tool_result("r")

        assert await engine.process_query("Search twice") == "Done."
        assert mcp_client.call_tool_mcp.await_count == 2

    async def test_single_round_never_calls_tools(
        self,
        registry: ToolRegistry,
        mcp_client: Mock,
        completion_backend: Mock,
        settings: Settings,
        tool_completion: Callable[..., Completion],
    ) -> None:
        engine = ChatEngine(
            registry,
            ToolInvoker(registry, mcp_client),
            completion_backend,
            settings.model_copy(update={"max_rounds": 1}),
        )
        completion_backend.complete.return_value = tool_completion(
            "search", {"query": "x"}, text="I would search."
        )

        assert await engine.process_query("Search x") == "I would search."
        mcp_client.call_tool_mcp.assert_not_awaited()

    async def test_only_first_tool_request_dispatched(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        completion_backend.complete.side_effect = [
            Completion(
                content=[
                    ToolUseBlock(id="a", name="search", input={"query": "one"}),
                    ToolUseBlock(id="b", name="chat", input={"message": "two"}),
                ],
                stop_reason="tool_use",
            ),
            text_completion("Answer."),
        ]
        mcp_client.call_tool_mcp.return_value = tool_result("r")

        assert await engine.process_query("Do two things") == "Answer."
        mcp_client.call_tool_mcp.assert_awaited_once_with("search", {"query": "one"})
        recorded = _sent_messages(completion_backend, 1)[1]["content"]
        assert [b["id"] for b in recorded] == ["a"]

    async def test_empty_response_gets_apology(
        self,
        engine: ChatEngine,
        completion_backend: Mock,
    ) -> None:
        completion_backend.complete.return_value = Completion(content=[], stop_reason="end_turn")
        assert await engine.process_query("Hello") == EMPTY_ANSWER

    async def test_history_sent_on_next_query(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
        tool_completion: Callable[..., Completion],
        tool_result: ResultFactory,
    ) -> None:
        completion_backend.complete.side_effect = [
            tool_completion("search", {"query": "mcp"}),
            text_completion("MCP is a protocol."),
            text_completion("Yes."),
        ]
        mcp_client.call_tool_mcp.return_value = tool_result("r")

        await engine.process_query("What is MCP?")
        assert engine.get_message_count() == 4

        await engine.process_query("Really?")
        sent = _sent_messages(completion_backend, 2)
        assert sent[0] == {"role": "user", "content": "What is MCP?"}
        assert sent[3] == {"role": "assistant", "content": "MCP is a protocol."}
        assert sent[-1] == {"role": "user", "content": "Really?"}

    async def test_clear_history(
        self,
        engine: ChatEngine,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
    ) -> None:
        completion_backend.complete.return_value = text_completion("Hi.")
        await engine.process_query("Hello")
        engine.clear_history()
        assert engine.get_message_count() == 0


class TestFailures:
    """Failed rounds raise and leave no trace in history."""

    async def test_upstream_error_propagates(
        self, engine: ChatEngine, completion_backend: Mock
    ) -> None:
        completion_backend.complete.side_effect = UpstreamError("HTTP 529")

        with pytest.raises(UpstreamError):
            await engine.process_query("Hello")

        assert engine.trail[-1] is RoundState.FAILED
        assert engine.get_message_count() == 0

    async def test_completion_timeout(
        self,
        registry: ToolRegistry,
        mcp_client: Mock,
        completion_backend: Mock,
        settings: Settings,
    ) -> None:
        async def hang(*args: object) -> None:
            await asyncio.sleep(10)

        completion_backend.complete.side_effect = hang
        engine = ChatEngine(
            registry,
            ToolInvoker(registry, mcp_client),
            completion_backend,
            settings.model_copy(update={"completion_timeout": 0.01}),
        )

        with pytest.raises(UpstreamError, match="timed out"):
            await engine.process_query("Hello")
        assert engine.trail[-1] is RoundState.FAILED

    async def test_unknown_tool_requested(
        self,
        engine: ChatEngine,
        completion_backend: Mock,
        tool_completion: Callable[..., Completion],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """The text before the bad tool request still reaches the logs."""
        completion_backend.complete.return_value = tool_completion(
            "teleport", {}, text="Let me check that"
        )

        with caplog.at_level("WARNING", logger="toolchat.chat"):
            with pytest.raises(UnknownToolError):
                await engine.process_query("Beam me up")

        assert "Let me check that" in caplog.text
        assert engine.trail[-1] is RoundState.FAILED
        assert engine.get_message_count() == 0

    async def test_tool_failure_after_text(
        self,
        engine: ChatEngine,
        mcp_client: Mock,
        completion_backend: Mock,
        tool_completion: Callable[..., Completion],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Partial text is logged, not returned."""
        completion_backend.complete.return_value = tool_completion(
            "search", {"query": "x"}, text="Let me look."
        )
        mcp_client.call_tool_mcp.side_effect = OSError("pipe closed")

        with caplog.at_level("WARNING", logger="toolchat.chat"):
            with pytest.raises(ToolExecutionError):
                await engine.process_query("Search x")

        assert "Let me look." in caplog.text
        assert engine.get_message_count() == 0

    async def test_unexpected_tool_exception_is_wrapped(
        self,
        registry: ToolRegistry,
        completion_backend: Mock,
        settings: Settings,
        tool_completion: Callable[..., Completion],
    ) -> None:
        """Errors outside the toolchat hierarchy still end the round as FAILED."""
        invoker = Mock()
        invoker.invoke = AsyncMock(side_effect=TypeError("'NoneType' object is not iterable"))
        engine = ChatEngine(registry, invoker, completion_backend, settings)
        completion_backend.complete.return_value = tool_completion("search", {"query": "x"})

        with pytest.raises(ToolExecutionError, match="not iterable") as excinfo:
            await engine.process_query("Search x")

        assert isinstance(excinfo.value.cause, TypeError)
        assert excinfo.value.tool == "search"
        assert engine.trail[-1] is RoundState.FAILED
        assert engine.get_message_count() == 0

    async def test_unexpected_completion_exception_is_upstream_error(
        self, engine: ChatEngine, completion_backend: Mock
    ) -> None:
        completion_backend.complete.side_effect = ValueError("malformed tool call")

        with pytest.raises(UpstreamError, match="malformed tool call"):
            await engine.process_query("Hello")

        assert engine.trail[-1] is RoundState.FAILED

    async def test_history_unchanged_by_failure(
        self,
        engine: ChatEngine,
        completion_backend: Mock,
        text_completion: Callable[..., Completion],
    ) -> None:
        completion_backend.complete.side_effect = [
            text_completion("Hi."),
            UpstreamError("overloaded"),
        ]
        await engine.process_query("Hello")

        with pytest.raises(UpstreamError):
            await engine.process_query("Again")

        assert [m.content for m in engine.memory.get_context()] == ["Hello", "Hi."]
