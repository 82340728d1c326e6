"""
Per-coordinator meta-tools

Each coordinator registers its own instances under plugin ids carrying
the coordinator id, so two conversations never share summarization
triggers or activation state.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Set

from .models import CORE_CATEGORY, ToolDefinition, ToolFailure, ToolResult, ToolSuccess
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

SUMMARIZE_TOOL_NAME = "summarize_conversation"
ACTIVATE_TOOL_NAME = "activate_tools"
DELEGATE_TOOL_NAME = "delegate_to_agent"

SUMMARIZATION_PLUGIN = "summarization"
ACTIVATE_TOOLS_PLUGIN = "activate_tools"


class SummarizeConversationTool:
    """Lets the model compact the conversation on demand."""

    def __init__(self, summarize: Callable[[], Awaitable[str]]):
        self._summarize = summarize

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=SUMMARIZE_TOOL_NAME,
            description=(
                "Summarize older messages of this conversation to free up context. "
                "Use when the conversation has grown long or the user asks to compact it."
            ),
            parameters={"type": "object", "properties": {}},
            category=CORE_CATEGORY,
        )

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        try:
            return ToolSuccess(output=await self._summarize())
        except Exception as e:
            logger.error(f"Summarization tool failed: {e}", exc_info=True)
            return ToolFailure(error=f"Summarization failed: {e}", cause=e)


class ActivateToolsTool:
    """
    Lets the model unlock on-demand tool categories.

    Activation mutates the owning coordinator's category set, so tools
    stay visible for the rest of that conversation.
    """

    def __init__(self, registry: ToolRegistry, active_categories: Set[str]):
        self.registry = registry
        self.active_categories = active_categories

    @property
    def definition(self) -> ToolDefinition:
        categories = sorted(self.registry.on_demand_categories())
        if categories:
            menu = "\n".join(
                f"- {c}: {self.registry.category_description(c) or 'no description'}"
                for c in categories
            )
        else:
            menu = "(none currently registered)"
        return ToolDefinition(
            name=ACTIVATE_TOOL_NAME,
            description=(
                "Activate additional tool categories so their tools become available "
                "for the rest of this conversation. Available categories:\n" + menu
            ),
            parameters={
                "type": "object",
                "properties": {
                    "categories": {
                        "type": "array",
                        "items": {"type": "string", "enum": categories},
                        "description": "Categories to activate",
                    },
                },
                "required": ["categories"],
            },
            category=CORE_CATEGORY,
        )

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        requested = arguments.get("categories")
        if not requested or not isinstance(requested, list):
            return ToolFailure(error="Missing required field: categories")

        available = self.registry.on_demand_categories()
        valid = [c for c in requested if c in available]
        invalid = [c for c in requested if c not in available]
        if not valid:
            return ToolFailure(
                error=f"No valid categories found. Available: {', '.join(sorted(available))}"
            )

        self.active_categories.update(valid)
        logger.info(f"Activated tool categories: {', '.join(valid)}")

        lines = [f"Activated {len(valid)} category(s): {', '.join(valid)}", "", "New tools now available:"]
        for category in valid:
            for definition in self.registry.tools_in_category(category):
                lines.append(f"- {definition.name}: {definition.description[:100]}")
        if invalid:
            lines.append("")
            lines.append(f"Unknown categories (ignored): {', '.join(invalid)}")
        return ToolSuccess(output="\n".join(lines))
