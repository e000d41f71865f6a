"""Runs the tool calls of a generation pass, each bounded by a reporting deadline."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable, Optional

from invoice_bot.ai.client import ToolCall
from invoice_bot.ai.results import ToolResult
from invoice_bot.ai.tools.registry import ToolRegistry
from invoice_bot.core.types import ToolOutcome
from invoice_bot.log import get_logger

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 5.0
TIMEOUT_MESSAGE = "Tool execution timed out"


@dataclass
class ToolInvocation:
    id: str
    name: str
    arguments: dict[str, Any]
    deadline: float
    outcome: ToolOutcome = ToolOutcome.PENDING
    value: Optional[ToolResult] = None
    error: Optional[str] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def succeed(self, value: ToolResult) -> None:
        self.outcome = ToolOutcome.SUCCESS
        self.value = value

    def fail(self, message: str) -> None:
        self.outcome = ToolOutcome.ERROR
        self.error = message


class ToolCoordinator:
    """Executes tool calls one after another in request order.

    A call that outlives its deadline is reported as timed out, but its task
    keeps running: the coordinator only stops waiting. The invocation's
    ``cancel_event`` is set at that moment for tools that want to stop early.
    """

    def __init__(self, registry: ToolRegistry, timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS):
        self._registry = registry
        self._timeout = timeout_seconds
        self._background: set[asyncio.Task] = set()

    @property
    def pending_background(self) -> int:
        """Timed-out executions that have not finished yet."""
        return len(self._background)

    async def run(self, calls: Iterable[ToolCall]) -> AsyncIterator[ToolInvocation]:
        """Yield each call's resolved invocation as soon as it is known."""
        for call in calls:
            invocation = ToolInvocation(
                id=call.id, name=call.name, arguments=dict(call.arguments), deadline=self._timeout
            )
            await self._execute(invocation)
            yield invocation

    async def _execute(self, invocation: ToolInvocation) -> None:
        tool = self._registry.get(invocation.name)
        if tool is None:
            logger.warning("unknown_tool", tool=invocation.name)
            invocation.fail(f"Unknown tool: {invocation.name}")
            return

        started = time.monotonic()
        try:
            task = asyncio.create_task(
                tool.execute(invocation.arguments, cancel_event=invocation.cancel_event),
                name=f"tool:{invocation.name}:{invocation.id}",
            )
        except Exception as e:
            logger.error("tool_start_failed", tool=invocation.name, error=str(e))
            invocation.fail(str(e) or e.__class__.__name__)
            return
        done, _ = await asyncio.wait({task}, timeout=invocation.deadline)

        if not done:
            invocation.cancel_event.set()
            invocation.fail(TIMEOUT_MESSAGE)
            logger.warning("tool_timeout", tool=invocation.name, deadline=invocation.deadline)
            self._background.add(task)
            task.add_done_callback(self._late_outcome(invocation.name))
            return

        elapsed = round(time.monotonic() - started, 3)
        exc = task.exception()
        if exc is not None:
            logger.error("tool_execution_error", tool=invocation.name, error=str(exc), elapsed=elapsed)
            invocation.fail(str(exc) or exc.__class__.__name__)
            return
        invocation.succeed(task.result())
        logger.info("tool_executed", tool=invocation.name, elapsed=elapsed)

    def _late_outcome(self, tool_name: str):
        def _done(task: asyncio.Task) -> None:
            self._background.discard(task)
            if task.cancelled():
                logger.info("tool_late_cancelled", tool=tool_name)
            elif task.exception() is not None:
                logger.warning("tool_late_error", tool=tool_name, error=str(task.exception()))
            else:
                logger.info("tool_late_success", tool=tool_name)

        return _done

    async def drain(self) -> None:
        """Wait for timed-out executions still in flight."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
