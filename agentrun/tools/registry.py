"""
agentrun Tool Registry - Shared name -> RegisteredTool mapping

One registry is shared by every coordinator in a process. Reads and
writes go through a single lock so a coordinator listing its tools is
never disturbed by another one registering or removing meta-tools.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .models import CORE_CATEGORY, RegisteredTool, ToolDefinition

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Registry of callable tools with category-scoped visibility.

    Usage:
        registry = ToolRegistry()
        registry.register("files", CORE_CATEGORY, [(read_file_def, files_handle)])
        registry.register(
            "gmail", "mail", [(send_mail_def, gmail_handle)],
            category_description="Read and send email",
        )

        registry.definitions(set())        # only core tools
        registry.definitions({"mail"})     # core + mail tools
    """

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}
        self._category_descriptions: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(
        self,
        plugin_id: str,
        category: str,
        tools: Iterable[Tuple[ToolDefinition, object]],
        category_description: Optional[str] = None,
    ) -> None:
        """
        Register the tools of a plugin.

        A tool whose name is already present is overwritten, which is how
        hot reload works.

        Args:
            plugin_id: Owner id used by unregister()
            category: Category applied to every tool of this call
            tools: (definition, handle) pairs
            category_description: Shown in the activation menu
        """
        with self._lock:
            for definition, handle in tools:
                if definition.category != category:
                    definition = ToolDefinition(
                        name=definition.name,
                        description=definition.description,
                        parameters=definition.parameters,
                        category=category,
                        timeout_ms=definition.timeout_ms,
                    )
                previous = self._tools.get(definition.name)
                if previous is not None and previous.plugin_id != plugin_id:
                    logger.warning(
                        f"Tool '{definition.name}' from plugin '{previous.plugin_id}' "
                        f"overwritten by plugin '{plugin_id}'"
                    )
                self._tools[definition.name] = RegisteredTool(
                    plugin_id=plugin_id,
                    definition=definition,
                    handle=handle,
                )
            if category != CORE_CATEGORY and category_description:
                self._category_descriptions[category] = category_description
        logger.debug(f"Registered plugin '{plugin_id}' in category '{category}'")

    def unregister(self, plugin_id: str) -> int:
        """Remove every tool owned by plugin_id. Returns the number removed."""
        with self._lock:
            names = [name for name, tool in self._tools.items() if tool.plugin_id == plugin_id]
            for name in names:
                del self._tools[name]
            remaining = {tool.category for tool in self._tools.values()}
            for category in list(self._category_descriptions):
                if category not in remaining:
                    del self._category_descriptions[category]
        if names:
            logger.debug(f"Unregistered plugin '{plugin_id}' ({len(names)} tools)")
        return len(names)

    def lookup(self, name: str) -> Optional[RegisteredTool]:
        with self._lock:
            return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def definitions(self, active_categories: Optional[Set[str]] = None) -> List[ToolDefinition]:
        """
        Tool definitions visible to the model.

        Args:
            active_categories: On-demand categories activated so far

        Returns:
            Core tools plus tools of the active categories, in
            registration order
        """
        active = active_categories or set()
        with self._lock:
            return [
                tool.definition
                for tool in self._tools.values()
                if tool.category == CORE_CATEGORY or tool.category in active
            ]

    def on_demand_categories(self) -> Set[str]:
        with self._lock:
            return {
                tool.category
                for tool in self._tools.values()
                if tool.category != CORE_CATEGORY
            }

    def category_description(self, category: str) -> Optional[str]:
        with self._lock:
            return self._category_descriptions.get(category)

    def tools_in_category(self, category: str) -> List[ToolDefinition]:
        with self._lock:
            return [t.definition for t in self._tools.values() if t.category == category]

    def all_tools(self) -> List[RegisteredTool]:
        with self._lock:
            return list(self._tools.values())

    def isolated_copy(self, predicate: Callable[[RegisteredTool], bool]) -> "ToolRegistry":
        """
        New registry holding only the tools matching predicate.

        Used to give a delegated run or a single execution its own
        registry, so tools registered into it never reach the parent.
        """
        copy = ToolRegistry()
        with self._lock:
            for name, tool in self._tools.items():
                if predicate(tool):
                    copy._tools[name] = tool
            kept = {tool.category for tool in copy._tools.values()}
            copy._category_descriptions = {
                category: description
                for category, description in self._category_descriptions.items()
                if category in kept
            }
        return copy

    def snapshot(self) -> "ToolRegistry":
        return self.isolated_copy(lambda tool: True)

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()
            self._category_descriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return self.has_tool(name)
