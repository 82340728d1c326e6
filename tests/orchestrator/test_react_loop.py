"""Tests for agentrun.orchestrator.react_loop"""

import asyncio
import json

import pytest

from agentrun.llm.base import LLMResponse
from agentrun.llm.errors import ContextOverflowError, RateLimitError
from agentrun.message import Message
from agentrun.orchestrator.context_manager import estimate_tokens
from agentrun.orchestrator.react_config import ReactLoopConfig
from agentrun.orchestrator.react_loop import (
    MAX_ITERATIONS_TEMPLATE,
    ReActLoop,
    ReactLoopError,
)
from agentrun.tools.executor import ToolExecutor
from agentrun.tools.models import CORE_CATEGORY, ToolDefinition


def _loop(llm, registry, store=None, **config):
    return ReActLoop(
        llm,
        ToolExecutor(registry, store),
        message_store=store,
        config=ReactLoopConfig(**config),
    )


def _start(text="What is 2+2?"):
    return [Message.system("You are helpful"), Message.user(text)]


async def _run(loop, registry, messages=None, **kwargs):
    return await loop.run(
        messages or _start(),
        tools_provider=lambda: registry.definitions(set()),
        conversation_id="conv-1",
        **kwargs,
    )


# =========================================================================
# Final answers
# =========================================================================


class TestFinalAnswer:

    @pytest.mark.asyncio
    async def test_stop_returns_text(self, scripted, registry):
        llm = scripted(scripted.text("4", prompt_tokens=12, completion_tokens=1))
        result = await _run(_loop(llm, registry), registry)

        assert result.text == "4"
        assert result.iterations == 1
        assert result.usage.total_tokens == 13
        assert not result.degraded
        assert not result.exhausted

    @pytest.mark.asyncio
    async def test_request_shape(self, scripted, registry):
        llm = scripted(scripted.text("4"))
        await _run(_loop(llm, registry), registry, model="gpt-4.1", temperature=0.0)

        request = llm.requests[0]
        assert request["model"] == "gpt-4.1"
        assert request["temperature"] == 0.0
        assert [m.role for m in request["messages"]] == ["system", "user"]
        assert llm.tool_names(0) == ["read_file"]

    @pytest.mark.asyncio
    async def test_empty_stop_content_raises(self, scripted, registry):
        llm = scripted(scripted.text("   "))
        with pytest.raises(ReactLoopError, match="Empty final response"):
            await _run(_loop(llm, registry), registry)

    @pytest.mark.asyncio
    async def test_no_choices_raises(self, scripted, registry):
        llm = scripted(LLMResponse(choices=[]))
        with pytest.raises(ReactLoopError, match="No response from LLM"):
            await _run(_loop(llm, registry), registry)

    @pytest.mark.asyncio
    async def test_length_with_content_returned(self, scripted, registry):
        llm = scripted(scripted.text("partial answer", finish_reason="length"))
        result = await _run(_loop(llm, registry), registry)
        assert result.text == "partial answer"

    @pytest.mark.asyncio
    async def test_other_without_content_raises(self, scripted, registry):
        llm = scripted(scripted.text(None, finish_reason="other"))
        with pytest.raises(ReactLoopError, match="Unknown finish_reason: other"):
            await _run(_loop(llm, registry), registry)


# =========================================================================
# Tool calls
# =========================================================================


class TestToolCalls:

    @pytest.mark.asyncio
    async def test_tool_result_fed_back(self, scripted, registry, store, read_file_handle):
        llm = scripted(
            scripted.tool_calls(("call_1", "read_file", {"path": "a.txt"})),
            scripted.text("The file says hello"),
        )
        result = await _run(_loop(llm, registry, store), registry)

        assert result.text == "The file says hello"
        assert result.iterations == 2
        assert [(r.name, r.success) for r in result.tool_calls] == [("read_file", True)]
        assert read_file_handle.calls == [("read_file", {"path": "a.txt", "_conversation_id": "conv-1"})]

        second = llm.requests[1]["messages"]
        tool_message = second[-1]
        assert tool_message.role == "tool"
        assert tool_message.content == "hello"
        assert tool_message.tool_call_id == "call_1"
        assert second[-2].tool_calls[0].id == "call_1"

    @pytest.mark.asyncio
    async def test_batch_persistence_order(self, scripted, registry, store):
        llm = scripted(
            scripted.tool_calls(
                ("c1", "read_file", {"path": "a"}),
                ("c2", "missing_tool", {}),
                ("c3", "read_file", {"path": "b"}),
            ),
            scripted.text("done"),
        )
        await _run(_loop(llm, registry, store), registry)

        records = store.records("conv-1")
        assert [r.role for r in records] == ["assistant", "tool", "tool", "tool"]
        assert [c["id"] for c in json.loads(records[0].tool_calls_json)] == ["c1", "c2", "c3"]
        assert [r.tool_call_id for r in records[1:]] == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_failed_tool_observed_as_error(self, scripted, registry):
        llm = scripted(
            scripted.tool_calls(("c1", "missing_tool", {})),
            scripted.text("sorry, no such tool"),
        )
        result = await _run(_loop(llm, registry), registry)

        observation = llm.requests[1]["messages"][-1]
        assert observation.content == "Error: Tool 'missing_tool' not found"
        assert result.tool_calls[0].success is False

    @pytest.mark.asyncio
    async def test_tool_output_truncated_for_llm(self, scripted, registry, read_file_handle):
        read_file_handle.output = "x" * 100
        llm = scripted(
            scripted.tool_calls(("c1", "read_file", {"path": "big"})),
            scripted.text("ok"),
        )
        await _run(_loop(llm, registry, max_llm_tool_result_chars=10), registry)

        observation = llm.requests[1]["messages"][-1].content
        assert observation == "x" * 10 + "\n\n[Output truncated: 100 chars total, showing first 10]"

    @pytest.mark.asyncio
    async def test_tool_calls_without_calls_raises(self, scripted, registry):
        llm = scripted(scripted.text(None, finish_reason="tool_calls"))
        with pytest.raises(ReactLoopError):
            await _run(_loop(llm, registry), registry)

    @pytest.mark.asyncio
    async def test_tools_provider_called_every_iteration(self, scripted, registry):
        active = set()

        def activate(messages):
            active.add("mail")
            return scripted.tool_calls(("c1", "read_file", {"path": "a"}))

        llm = scripted(activate, scripted.text("done"))
        loop = _loop(llm, registry)
        await loop.run(
            _start(),
            tools_provider=lambda: registry.definitions(active),
            conversation_id="conv-1",
        )

        assert llm.tool_names(0) == ["read_file"]
        assert llm.tool_names(1) == ["read_file", "send_mail"]


# =========================================================================
# Failures and limits
# =========================================================================


class TestFailures:

    @pytest.mark.asyncio
    async def test_provider_error_becomes_apology(self, scripted, registry):
        llm = scripted(RateLimitError("Rate limit exceeded: quota", provider="scripted", status_code=429))
        result = await _run(_loop(llm, registry), registry)

        assert result.degraded
        assert result.text.startswith("Sorry, I ran into an issue while processing your request")
        assert "Rate limit exceeded: quota" in result.text

    @pytest.mark.asyncio
    async def test_overflow_on_first_iteration_not_retried(self, scripted, registry):
        llm = scripted(ContextOverflowError("too long"))
        result = await _run(_loop(llm, registry), registry)
        assert result.degraded
        assert llm.call_count == 1

    @pytest.mark.asyncio
    async def test_overflow_retry_bound(self, scripted, registry):
        llm = scripted(
            scripted.tool_calls(("c1", "read_file", {"path": "a"})),
            ContextOverflowError("too long"),
            ContextOverflowError("too long"),
            ContextOverflowError("too long"),
            scripted.text("never reached"),
        )
        result = await _run(_loop(llm, registry), registry)

        assert result.degraded
        assert "too long" in result.text
        # first call, the failing second iteration, then two retries
        assert llm.call_count == 4

    @pytest.mark.asyncio
    async def test_overflow_retry_does_not_consume_iterations(self, scripted, registry):
        llm = scripted(
            scripted.tool_calls(("c1", "read_file", {"path": "a"})),
            ContextOverflowError("too long"),
            scripted.text("recovered"),
        )
        result = await _run(_loop(llm, registry, max_iterations=2), registry)
        assert result.text == "recovered"
        assert result.iterations == 2

    @pytest.mark.asyncio
    async def test_max_iterations(self, scripted, registry):
        llm = scripted(*[
            scripted.tool_calls((f"c{i}", "read_file", {"path": "a"})) for i in range(5)
        ])
        result = await _run(_loop(llm, registry), registry, max_iterations=3)

        assert result.exhausted
        assert result.text == MAX_ITERATIONS_TEMPLATE.format(max_iterations=3)
        assert llm.call_count == 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, scripted, registry, read_file_handle):
        read_file_handle.delay = 10
        llm = scripted(scripted.tool_calls(("c1", "read_file", {"path": "a"})))
        task = asyncio.create_task(_run(_loop(llm, registry), registry))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# =========================================================================
# Injection and trimming
# =========================================================================


class TestInjection:

    @pytest.mark.asyncio
    async def test_injected_message_drained_before_next_call(self, scripted, registry):
        loop = None

        def inject_during_tools(messages):
            loop.inject_message("also check b.txt")
            return scripted.tool_calls(("c1", "read_file", {"path": "a"}))

        llm = scripted(inject_during_tools, scripted.text("both read"))
        loop = _loop(llm, registry)
        await _run(loop, registry)

        second = llm.requests[1]["messages"]
        assert second[-1].role == "user"
        assert second[-1].content == "also check b.txt"
        assert not loop.has_pending_injections

    @pytest.mark.asyncio
    async def test_stop_with_pending_injection_continues(self, scripted, registry, store):
        loop = None

        def answer_and_inject(messages):
            loop.inject_message("and 3+3?")
            return scripted.text("4")

        llm = scripted(answer_and_inject, scripted.text("6"))
        loop = _loop(llm, registry, store)
        result = await _run(loop, registry)

        assert result.text == "6"
        assert result.iterations == 2
        second = llm.requests[1]["messages"]
        assert [(m.role, m.content) for m in second[-2:]] == [("assistant", "4"), ("user", "and 3+3?")]
        assert [(r.role, r.content) for r in store.records("conv-1")] == [("assistant", "4")]


class TestProactiveTrim:

    @pytest.mark.asyncio
    async def test_history_trimmed_before_call(self, scripted, registry):
        messages = _start()
        for i in range(20):
            messages.append(Message.user(f"q{i} " + "u" * 200))
            messages.append(Message.assistant(f"a{i} " + "a" * 200))
        messages.append(Message.user("final question"))
        llm = scripted(scripted.text("ok"))

        await _run(_loop(llm, registry), registry, messages=messages, context_window_tokens=1_000)

        sent = llm.requests[0]["messages"]
        assert len(sent) < len(messages)
        assert sent[:2] == messages[:2]
        assert sent[-6:] == messages[-6:]
        assert estimate_tokens(sent) <= 850

    @pytest.mark.asyncio
    async def test_small_history_untouched(self, scripted, registry):
        llm = scripted(scripted.text("ok"))
        await _run(_loop(llm, registry), registry, context_window_tokens=1_000)
        assert len(llm.requests[0]["messages"]) == 2
