"""Shared fixtures for orchestrator tests: a scripted LLM client and stores."""

import asyncio
import json
from typing import List, Optional

import pytest

from agentrun.llm.base import BaseLLMClient, Choice, FinishReason, LLMResponse, Usage
from agentrun.message import Message, ToolCall
from agentrun.stores import InMemoryMessageStore
from agentrun.tools.models import CORE_CATEGORY, ToolDefinition, ToolSuccess
from agentrun.tools.registry import ToolRegistry


class ScriptedLLMClient(BaseLLMClient):
    """
    Returns scripted responses in order and records every request.

    A script entry is an LLMResponse, an exception to raise, or a callable
    taking the request messages and returning either. When the script runs
    out the client answers "done".
    """

    provider = "scripted"

    def __init__(self, *script, gate: Optional[asyncio.Event] = None):
        super().__init__(model="scripted-model")
        self.script = list(script)
        self.gate = gate
        self.requests: List[dict] = []

    async def _call_api(self, messages, tools, model, temperature, max_tokens):
        self.requests.append({
            "messages": list(messages),
            "tools": tools,
            "model": model,
            "temperature": temperature,
        })
        if self.gate is not None:
            await self.gate.wait()
        entry = self.script.pop(0) if self.script else self.text("done")
        if callable(entry) and not isinstance(entry, LLMResponse):
            entry = entry(messages)
        if isinstance(entry, BaseException):
            raise entry
        return entry

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def tool_names(self, call_index: int) -> List[str]:
        tools = self.requests[call_index]["tools"] or []
        return [t["function"]["name"] for t in tools]

    @staticmethod
    def text(content, finish_reason=FinishReason.STOP.value, prompt_tokens=0, completion_tokens=0):
        usage = None
        if prompt_tokens or completion_tokens:
            usage = Usage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)
        return LLMResponse(
            choices=[Choice(message=Message.assistant(content), finish_reason=finish_reason)],
            usage=usage,
        )

    @staticmethod
    def tool_calls(*calls, content=None):
        """calls: (id, name, arguments dict) tuples"""
        tool_calls = [ToolCall(tc_id, name, json.dumps(args)) for tc_id, name, args in calls]
        return LLMResponse(choices=[Choice(
            message=Message.assistant(content, tool_calls),
            finish_reason=FinishReason.TOOL_CALLS.value,
        )])


class EchoHandle:
    """Tool handle returning a fixed output, recording invocations."""

    def __init__(self, output="ok", delay=0.0):
        self.output = output
        self.delay = delay
        self.calls = []

    async def invoke(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        if self.delay:
            await asyncio.sleep(self.delay)
        return ToolSuccess(output=self.output)


@pytest.fixture
def scripted():
    return ScriptedLLMClient


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def read_file_handle():
    return EchoHandle("hello")


@pytest.fixture
def registry(read_file_handle):
    reg = ToolRegistry()
    reg.register("files", CORE_CATEGORY, [(
        ToolDefinition(
            "read_file",
            "Read a file",
            {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        ),
        read_file_handle,
    )])
    reg.register(
        "gmail", "mail",
        [(ToolDefinition("send_mail", "Send an email"), EchoHandle("sent"))],
        category_description="Email access",
    )
    return reg
