"""Tests for agentrun.orchestrator.manager"""

import asyncio

import pytest

from agentrun.config import AgentProfile, AgentSettings, LLMSettings, RuntimeConfig
from agentrun.llm.anthropic_client import AnthropicClient
from agentrun.message import MediaData
from agentrun.orchestrator.manager import ExecutionManager
from agentrun.orchestrator.models import AgentStatus
from agentrun.orchestrator.prompts import CANCELLED_NOTE, NOT_ENOUGH_HISTORY, SUMMARIZE_SUCCESS
from agentrun.orchestrator.react_loop import ReactLoopError
from agentrun.protocols import META_ROLE, STOPPED_MARKER, SUMMARY_MARKER, MessageRecord
from agentrun.stores import InMemoryCredentialVault
from agentrun.tools.builtin import DELEGATE_TOOL_NAME, SUMMARIZE_TOOL_NAME


def _manager(llm, registry, store, **kwargs):
    return ExecutionManager(
        tool_registry=registry,
        message_store=store,
        conversation_store=store,
        llm_client=llm,
        **kwargs,
    )


def _roles(store, conversation_id="conv-1"):
    return [(r.role, r.content) for r in store.records(conversation_id)]


# =========================================================================
# Chat executions
# =========================================================================


class TestChat:

    @pytest.mark.asyncio
    async def test_persists_user_and_answer(self, scripted, registry, store):
        llm = scripted(scripted.text("4"))
        manager = _manager(llm, registry, store)

        answer = await manager.start_execution("conv-1", "What is 2+2?")

        assert answer == "4"
        assert _roles(store) == [("user", "What is 2+2?"), ("assistant", "4")]

    @pytest.mark.asyncio
    async def test_uses_configured_prompt(self, scripted, registry, store):
        llm = scripted(scripted.text("ok"))
        config = RuntimeConfig(agent=AgentSettings(system_prompt="Be brief"))
        manager = _manager(llm, registry, store, config=config)

        await manager.start_execution("conv-1", "hi")
        await manager.start_execution("conv-1", "again", system_prompt="Be verbose")

        assert llm.requests[0]["messages"][0].content == "Be brief"
        assert llm.requests[1]["messages"][0].content == "Be verbose"

    @pytest.mark.asyncio
    async def test_history_replayed_from_store(self, scripted, registry, store):
        llm = scripted(scripted.text("4"), scripted.text("8"))
        manager = _manager(llm, registry, store)

        await manager.start_execution("conv-1", "What is 2+2?")
        await manager.start_execution("conv-1", "Double it")

        sent = llm.requests[1]["messages"]
        assert [(m.role, m.content) for m in sent[1:]] == [
            ("user", "What is 2+2?"),
            ("assistant", "4"),
            ("user", "Double it"),
        ]

    @pytest.mark.asyncio
    async def test_host_stored_user_message_not_duplicated(self, scripted, registry, store):
        await store.insert(MessageRecord(conversation_id="conv-1", role="user", content="hi"))
        llm = scripted(scripted.text("hello"))
        manager = _manager(llm, registry, store)

        await manager.start_execution("conv-1", "hi", persist_user_message=False)

        assert [m.content for m in llm.requests[0]["messages"][1:]] == ["hi"]
        assert _roles(store) == [("user", "hi"), ("assistant", "hello")]

    @pytest.mark.asyncio
    async def test_attachment_names_recorded(self, scripted, registry, store):
        manager = _manager(scripted(scripted.text("A cat")), registry, store)
        media = [MediaData(base64="aW1n", mime_type="image/png", file_name="cat.png")]

        await manager.start_execution("conv-1", "What is this?", media=media)

        assert store.records("conv-1")[0].image_paths == ["cat.png"]

    @pytest.mark.asyncio
    async def test_apology_persisted_on_failure(self, scripted, registry, store):
        manager = _manager(scripted(scripted.text("")), registry, store)

        with pytest.raises(ReactLoopError):
            await manager.start_execution("conv-1", "hi")

        last = store.records("conv-1")[-1]
        assert last.role == "assistant"
        assert last.content.startswith("Sorry, I ran into an issue")
        await asyncio.sleep(0)
        assert not manager.is_running("conv-1")

    @pytest.mark.asyncio
    async def test_registration_released(self, scripted, registry, store):
        manager = _manager(scripted(scripted.text("ok")), registry, store)
        task = manager.start_execution("conv-1", "hi")
        assert manager.is_running("conv-1")

        await task
        await asyncio.sleep(0)

        assert not manager.is_running("conv-1")
        assert not manager.has_active_jobs()
        assert manager.get_state("conv-1") is None

    @pytest.mark.asyncio
    async def test_meta_tools_stay_off_shared_registry(self, scripted, registry, store):
        gate = asyncio.Event()
        manager = _manager(scripted(gate=gate), registry, store)
        task = manager.start_execution("conv-1", "hi")
        await asyncio.sleep(0.01)

        coordinator = manager.get_coordinator("conv-1")
        assert coordinator.tool_registry is not registry
        assert coordinator.tool_registry.has_tool(SUMMARIZE_TOOL_NAME)
        assert not registry.has_tool(SUMMARIZE_TOOL_NAME)

        gate.set()
        await task
        assert not coordinator.tool_registry.has_tool(SUMMARIZE_TOOL_NAME)


# =========================================================================
# Single-flight and control
# =========================================================================


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_new_execution_supersedes_running_one(self, scripted, registry, store):
        gate = asyncio.Event()
        llm = scripted(gate=gate)
        manager = _manager(llm, registry, store)

        first = manager.start_execution("conv-1", "first")
        await asyncio.sleep(0.01)
        second = manager.start_execution("conv-1", "second")

        assert manager.active_conversation_ids() == ["conv-1"]
        gate.set()

        assert await second == "done"
        assert first.cancelled()
        await asyncio.sleep(0)
        assert not manager.is_running("conv-1")

        # The replacement saw the interrupted turn and the cancellation note
        sent = llm.requests[-1]["messages"]
        assert [(m.role, m.content) for m in sent[1:]] == [
            ("user", "first"),
            ("assistant", CANCELLED_NOTE),
            ("user", "second"),
        ]

    @pytest.mark.asyncio
    async def test_conversations_run_independently(self, scripted, registry, store):
        gate = asyncio.Event()
        manager = _manager(scripted(gate=gate), registry, store)

        a = manager.start_execution("conv-a", "hi")
        b = manager.start_execution("conv-b", "hi")
        assert sorted(manager.active_conversation_ids()) == ["conv-a", "conv-b"]

        gate.set()
        assert await asyncio.gather(a, b) == ["done", "done"]

    @pytest.mark.asyncio
    async def test_cancel_execution(self, scripted, registry, store):
        gate = asyncio.Event()
        manager = _manager(scripted(gate=gate), registry, store)
        task = manager.start_execution("conv-1", "long job")
        await asyncio.sleep(0.01)
        assert manager.get_state("conv-1").status == AgentStatus.THINKING

        assert await manager.cancel_execution("conv-1") is True

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        markers = [r for r in store.records("conv-1") if r.role == META_ROLE]
        assert len(markers) == 1
        assert markers[0].tool_name == STOPPED_MARKER
        assert not manager.is_running("conv-1")

    @pytest.mark.asyncio
    async def test_cancel_before_start_records_marker(self, scripted, registry, store):
        manager = _manager(scripted(), registry, store)
        task = manager.start_execution("conv-1", "hi")

        assert await manager.cancel_execution("conv-1") is True

        with pytest.raises(asyncio.CancelledError):
            await task
        assert [r.tool_name for r in store.records("conv-1")] == [STOPPED_MARKER]

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, scripted, registry, store):
        manager = _manager(scripted(), registry, store)
        assert await manager.cancel_execution("nope") is False

    @pytest.mark.asyncio
    async def test_inject_message(self, scripted, registry, store):
        gate = asyncio.Event()
        llm = scripted(scripted.text("first"), scripted.text("second"), gate=gate)
        manager = _manager(llm, registry, store)
        assert manager.inject_message("conv-1", "too early") is False

        task = manager.start_execution("conv-1", "hi")
        await asyncio.sleep(0.01)
        assert manager.inject_message("conv-1", "one more thing") is True
        gate.set()

        assert await task == "second"
        assert llm.requests[1]["messages"][-1].content == "one more thing"

    @pytest.mark.asyncio
    async def test_inject_before_loop_starts_is_kept(self, scripted, registry, store):
        llm = scripted(scripted.text("both handled"))
        manager = _manager(llm, registry, store)

        task = manager.start_execution("conv-1", "hi")
        assert manager.inject_message("conv-1", "and also this") is True

        assert await task == "both handled"
        sent = llm.requests[0]["messages"]
        assert [m.content for m in sent[-2:]] == ["hi", "and also this"]

    @pytest.mark.asyncio
    async def test_inject_refused_for_summarization(self, scripted, registry, store):
        gate = asyncio.Event()
        manager = _manager(scripted(gate=gate), registry, store)
        task = manager.start_summarization("conv-1")

        assert manager.inject_message("conv-1", "hello") is False
        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_shutdown(self, scripted, registry, store):
        gate = asyncio.Event()
        manager = _manager(scripted(gate=gate), registry, store)
        tasks = [manager.start_execution(cid, "hi") for cid in ("conv-a", "conv-b")]
        await asyncio.sleep(0.01)
        assert manager.stats()["active"] == 2

        await manager.shutdown()

        assert all(t.cancelled() for t in tasks)
        assert not manager.has_active_jobs()


# =========================================================================
# Summarization jobs
# =========================================================================


class TestSummarization:

    @pytest.mark.asyncio
    async def test_start_summarization(self, scripted, registry, store):
        for i in range(3):
            await store.insert(MessageRecord(conversation_id="conv-1", role="user", content=f"q{i}"))
            await store.insert(MessageRecord(conversation_id="conv-1", role="assistant", content=f"a{i}"))
        llm = scripted(scripted.text("User asked three questions."))
        manager = _manager(llm, registry, store)

        assert await manager.start_summarization("conv-1") == SUMMARIZE_SUCCESS

        last = store.records("conv-1")[-1]
        assert last.role == META_ROLE
        assert last.tool_name == SUMMARY_MARKER
        assert last.content == "User asked three questions."

    @pytest.mark.asyncio
    async def test_summarization_uses_requested_model(self, scripted, registry, store):
        for i in range(2):
            await store.insert(MessageRecord(conversation_id="conv-1", role="user", content=f"q{i}"))
            await store.insert(MessageRecord(conversation_id="conv-1", role="assistant", content=f"a{i}"))
        llm = scripted(scripted.text("summary"))
        manager = _manager(llm, registry, store)

        await manager.start_summarization("conv-1", model="my-summary-model")

        assert llm.requests[0]["model"] == "my-summary-model"

    @pytest.mark.asyncio
    async def test_summarization_of_short_conversation(self, scripted, registry, store):
        llm = scripted()
        manager = _manager(llm, registry, store)
        assert await manager.start_summarization("conv-1") == NOT_ENOUGH_HISTORY
        assert llm.call_count == 0


# =========================================================================
# Delegation
# =========================================================================


class TestDelegation:

    @pytest.mark.asyncio
    async def test_configured_profiles_enable_delegation(self, scripted, registry, store):
        llm = scripted(
            scripted.tool_calls(("d1", DELEGATE_TOOL_NAME, {"agent": "researcher", "task": "Capital of France?"})),
            scripted.text("Paris"),
            scripted.text("The capital is Paris."),
        )
        config = RuntimeConfig(agents=[AgentProfile("researcher", "Finds facts", system_prompt="You research.")])
        manager = _manager(llm, registry, store, config=config)

        answer = await manager.start_execution("conv-1", "What is the capital of France?")

        assert answer == "The capital is Paris."
        assert DELEGATE_TOOL_NAME in llm.tool_names(0)
        assert DELEGATE_TOOL_NAME not in llm.tool_names(1)
        assert [m.content for m in llm.requests[1]["messages"]] == ["You research.", "Capital of France?"]
        assert llm.requests[2]["messages"][-1].content == "Paris"
        assert not registry.has_tool(DELEGATE_TOOL_NAME)
        assert list(store._records) == ["conv-1"]

    @pytest.mark.asyncio
    async def test_no_profiles_no_delegation(self, scripted, registry, store):
        llm = scripted(scripted.text("ok"))
        await _manager(llm, registry, store).start_execution("conv-1", "hi")
        assert DELEGATE_TOOL_NAME not in llm.tool_names(0)


# =========================================================================
# LLM client construction
# =========================================================================


class TestLLMClient:

    def test_lazy_client_from_vault(self, registry, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        manager = ExecutionManager(
            tool_registry=registry,
            config=RuntimeConfig(llm=LLMSettings(provider="anthropic")),
            vault=InMemoryCredentialVault({"anthropic_api_key": "sk-test"}),
        )
        client = manager.llm_client
        assert isinstance(client, AnthropicClient)
        assert client.config.api_key == "sk-test"
        assert manager.llm_client is client

    def test_missing_key(self, registry, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        manager = ExecutionManager(
            tool_registry=registry,
            config=RuntimeConfig(llm=LLMSettings(provider="anthropic")),
        )
        with pytest.raises(ValueError, match="No API key"):
            manager.llm_client
