"""Tool registry for discovering and managing available tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

from invoice_bot.ai.tools.base import Tool
from invoice_bot.log import get_logger

if TYPE_CHECKING:
    from invoice_bot.services.data_source import DataSourceResolver

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def api_definitions(self) -> list[dict]:
        return [tool.to_api_dict() for tool in self._tools.values()]

    def discover_and_register(self, resolver: DataSourceResolver) -> None:
        """Register the built-in invoice tools."""
        from invoice_bot.ai.tools.invoices import (
            CreateInvoiceTool,
            GetInvoiceDetailsTool,
            GetTotalInvoicesTool,
            UpdateInvoiceTool,
        )

        self.register(GetInvoiceDetailsTool(resolver))
        self.register(CreateInvoiceTool(resolver))
        self.register(UpdateInvoiceTool(resolver))
        self.register(GetTotalInvoicesTool(resolver))
