"""Abstract tool interface for model tool use."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Mapping

from pydantic import BaseModel, ValidationError

from invoice_bot.ai.results import ToolResult
from invoice_bot.errors import ToolExecutionError


class Tool(ABC):
    """Base class for all model-callable tools.

    Subclasses declare a pydantic ``params_model``; its JSON schema is sent to
    the model and every call is validated against it before ``run``.
    """

    params_model: ClassVar[type[BaseModel]]

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        schema = self.params_model.model_json_schema()
        schema.pop("title", None)
        return schema

    @abstractmethod
    async def run(self, params: Any, cancel_event: asyncio.Event) -> ToolResult:
        """Do the work. *cancel_event* is set once the caller stops waiting for the result."""
        ...

    async def execute(
        self, arguments: Mapping[str, Any], cancel_event: asyncio.Event | None = None
    ) -> ToolResult:
        """Validate the model-supplied *arguments* and run the tool."""
        try:
            params = self.params_model.model_validate(arguments)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "input" for err in e.errors())
            raise ToolExecutionError(
                f"Invalid arguments for {self.name}: {fields}", self.name, dict(arguments)
            ) from e
        return await self.run(params, cancel_event or asyncio.Event())

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
