"""Tests for agentrun.tools.executor"""

import asyncio

import pytest

from agentrun.message import ToolCall
from agentrun.stores import InMemoryMessageStore
from agentrun.tools.executor import ToolExecutor, truncate_for_storage
from agentrun.tools.models import (
    CORE_CATEGORY,
    ToolDefinition,
    ToolExecutionFailure,
    ToolExecutionSuccess,
    ToolFailure,
    ToolSuccess,
)
from agentrun.tools.registry import ToolRegistry


class RecordingHandle:
    """Returns a canned result and remembers what it was called with."""

    def __init__(self, result=None, delay=0.0, error=None):
        self.result = result if result is not None else ToolSuccess(output="ok")
        self.delay = delay
        self.error = error
        self.calls = []

    async def invoke(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


class SyncHandle:
    def invoke(self, name, arguments):
        return {"echo": arguments.get("text")}


def _registry(**handles):
    reg = ToolRegistry()
    for name, (handle, timeout_ms) in handles.items():
        reg.register(
            f"plugin_{name}",
            CORE_CATEGORY,
            [(ToolDefinition(name=name, description=name, timeout_ms=timeout_ms), handle)],
        )
    return reg


@pytest.fixture
def store():
    return InMemoryMessageStore()


# =========================================================================
# truncate_for_storage
# =========================================================================


class TestTruncateForStorage:

    def test_short_content_unchanged(self):
        assert truncate_for_storage("hello", max_chars=10) == "hello"

    def test_long_content_capped_with_note(self):
        result = truncate_for_storage("x" * 50, max_chars=10)
        assert result == "x" * 10 + "\n\n[Truncated: 50 chars total]"


# =========================================================================
# execute
# =========================================================================


class TestExecute:

    @pytest.mark.asyncio
    async def test_success_passes_parsed_arguments_and_conversation_id(self, store):
        handle = RecordingHandle(ToolSuccess(output="contents", image_paths=["/tmp/a.png"]))
        executor = ToolExecutor(_registry(read_file=(handle, 0)), message_store=store)

        result = await executor.execute("conv-1", ToolCall("call_1", "read_file", '{"path": "a.txt"}'))

        assert isinstance(result, ToolExecutionSuccess)
        assert result.output == "contents"
        assert result.tool_call_id == "call_1"
        assert result.image_paths == ["/tmp/a.png"]
        assert handle.calls == [("read_file", {"path": "a.txt", "_conversation_id": "conv-1"})]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, store):
        executor = ToolExecutor(ToolRegistry(), message_store=store)
        result = await executor.execute("conv-1", ToolCall("call_1", "ghost", "{}"))
        assert isinstance(result, ToolExecutionFailure)
        assert result.error == "Tool 'ghost' not found"
        assert result.is_error

    @pytest.mark.asyncio
    async def test_invalid_json_never_invokes_handle(self, store):
        handle = RecordingHandle()
        executor = ToolExecutor(_registry(read_file=(handle, 0)), message_store=store)

        result = await executor.execute("conv-1", ToolCall("call_1", "read_file", "{not json"))

        assert isinstance(result, ToolExecutionFailure)
        assert result.error.startswith("Invalid JSON arguments:")
        assert handle.calls == []

    @pytest.mark.asyncio
    async def test_non_object_arguments_rejected(self, store):
        handle = RecordingHandle()
        executor = ToolExecutor(_registry(read_file=(handle, 0)), message_store=store)
        result = await executor.execute("conv-1", ToolCall("call_1", "read_file", "[1, 2]"))
        assert isinstance(result, ToolExecutionFailure)
        assert result.error.startswith("Invalid JSON arguments:")

    @pytest.mark.asyncio
    async def test_empty_arguments_treated_as_empty_object(self, store):
        handle = RecordingHandle()
        executor = ToolExecutor(_registry(ping=(handle, 0)), message_store=store)
        result = await executor.execute("conv-1", ToolCall("call_1", "ping", ""))
        assert isinstance(result, ToolExecutionSuccess)
        assert handle.calls == [("ping", {"_conversation_id": "conv-1"})]

    @pytest.mark.asyncio
    async def test_timeout_uses_tool_deadline(self, store):
        handle = RecordingHandle(delay=5)
        executor = ToolExecutor(_registry(slow=(handle, 50)), message_store=store)

        result = await executor.execute("conv-1", ToolCall("call_1", "slow", "{}"))

        assert isinstance(result, ToolExecutionFailure)
        assert result.error == "Tool execution timed out (0.05s)"

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_default(self, store):
        handle = RecordingHandle(delay=5)
        executor = ToolExecutor(_registry(slow=(handle, 0)), message_store=store, default_timeout_ms=20)
        result = await executor.execute("conv-1", ToolCall("call_1", "slow", "{}"))
        assert result.error == "Tool execution timed out (0.02s)"

    @pytest.mark.asyncio
    async def test_handle_exception_becomes_failure(self, store):
        handle = RecordingHandle(error=RuntimeError("disk on fire"))
        executor = ToolExecutor(_registry(read_file=(handle, 0)), message_store=store)

        result = await executor.execute("conv-1", ToolCall("call_1", "read_file", "{}"))

        assert isinstance(result, ToolExecutionFailure)
        assert result.error == "Unexpected error: disk on fire"
        assert isinstance(result.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_tool_failure_passed_through(self, store):
        handle = RecordingHandle(ToolFailure(error="permission denied"))
        executor = ToolExecutor(_registry(read_file=(handle, 0)), message_store=store)
        result = await executor.execute("conv-1", ToolCall("call_1", "read_file", "{}"))
        assert isinstance(result, ToolExecutionFailure)
        assert result.error == "permission denied"

    @pytest.mark.asyncio
    async def test_sync_handle_returning_dict(self, store):
        executor = ToolExecutor(_registry(echo=(SyncHandle(), 0)), message_store=store)
        result = await executor.execute("conv-1", ToolCall("call_1", "echo", '{"text": "hi"}'))
        assert isinstance(result, ToolExecutionSuccess)
        assert '"echo": "hi"' in result.output

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, store):
        handle = RecordingHandle(delay=5)
        executor = ToolExecutor(_registry(slow=(handle, 0)), message_store=store)

        task = asyncio.create_task(executor.execute("conv-1", ToolCall("call_1", "slow", "{}")))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.records("conv-1") == []


# =========================================================================
# persistence
# =========================================================================


class TestPersistence:

    @pytest.mark.asyncio
    async def test_success_persisted_truncated(self, store):
        handle = RecordingHandle(ToolSuccess(output="y" * 100))
        executor = ToolExecutor(
            _registry(big=(handle, 0)), message_store=store, max_stored_result_chars=10,
        )

        result = await executor.execute("conv-1", ToolCall("call_1", "big", "{}"))

        assert result.output == "y" * 100
        [record] = store.records("conv-1")
        assert record.role == "tool"
        assert record.tool_call_id == "call_1"
        assert record.tool_name == "big"
        assert record.content == "y" * 10 + "\n\n[Truncated: 100 chars total]"

    @pytest.mark.asyncio
    async def test_failure_persisted_with_error_prefix(self, store):
        executor = ToolExecutor(ToolRegistry(), message_store=store)
        await executor.execute("conv-1", ToolCall("call_1", "ghost", "{}"))
        [record] = store.records("conv-1")
        assert record.content == "Error: Tool 'ghost' not found"

    @pytest.mark.asyncio
    async def test_no_store_is_fine(self):
        executor = ToolExecutor(_registry(ping=(RecordingHandle(), 0)))
        result = await executor.execute("conv-1", ToolCall("call_1", "ping", "{}"))
        assert isinstance(result, ToolExecutionSuccess)


class TestExecuteBatch:

    @pytest.mark.asyncio
    async def test_results_in_call_order_and_sequential(self, store):
        order = []

        class OrderedHandle:
            def __init__(self, label, delay):
                self.label = label
                self.delay = delay

            async def invoke(self, name, arguments):
                order.append(f"start:{self.label}")
                await asyncio.sleep(self.delay)
                order.append(f"end:{self.label}")
                return ToolSuccess(output=self.label)

        executor = ToolExecutor(
            _registry(first=(OrderedHandle("first", 0.02), 0), second=(OrderedHandle("second", 0), 0)),
            message_store=store,
        )
        results = await executor.execute_batch("conv-1", [
            ToolCall("c1", "first", "{}"),
            ToolCall("c2", "ghost", "{}"),
            ToolCall("c3", "second", "{}"),
        ])

        assert [r.tool_call_id for r in results] == ["c1", "c2", "c3"]
        assert [r.is_error for r in results] == [False, True, False]
        assert order == ["start:first", "end:first", "start:second", "end:second"]
        assert [r.tool_call_id for r in store.records("conv-1")] == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, store):
        executor = ToolExecutor(ToolRegistry(), message_store=store)
        assert await executor.execute_batch("conv-1", []) == []
