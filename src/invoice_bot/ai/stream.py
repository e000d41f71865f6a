"""Interleaves model text and tool-result frames into one plain-text stream.

Frame layout, in order:

    <model tokens, verbatim>
    \\n\\n[Processing tools...]                  (only when tools were called)
    \\n\\n[Tool <name> Result]: <rendered value>  (one per successful call)
    \\n\\n[Tool Error]: <message>                 (one per failed call)

There is no end marker; the stream closing means the response is complete.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Optional

from invoice_bot.ai.client import ModelStream
from invoice_bot.ai.formatting import render_invoice_detail, render_totals
from invoice_bot.ai.results import InvoiceResult, InvoiceTotalsResult, MessageResult
from invoice_bot.ai.tool_runner import ToolCoordinator, ToolInvocation
from invoice_bot.core.types import ToolOutcome

PROCESSING_MARKER = "\n\n[Processing tools...]"
ERROR_MARKER = "\n\n[Tool Error]: "


def result_marker(tool_name: str) -> str:
    return f"\n\n[Tool {tool_name} Result]: "


def _json_dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def render_tool_result(tool_name: str, value: Any) -> str:
    match value:
        case None:
            return "null"
        case bool():
            return "true" if value else "false"
        case str() | int() | float() | Decimal():
            return str(value)
        case MessageResult(message=message):
            return message
        case InvoiceTotalsResult():
            return render_totals(value)
        case InvoiceResult() if tool_name == "getInvoiceDetails":
            return render_invoice_detail(value)
        case InvoiceResult():
            return _json_dump(value.to_dict())
        case _:
            return _json_dump(value)


async def multiplex(
    model_stream: ModelStream,
    coordinator: ToolCoordinator,
    on_tools_started: Optional[Callable[[], None]] = None,
    on_invocation: Optional[Callable[[ToolInvocation], None]] = None,
) -> AsyncIterator[str]:
    """Relay *model_stream* tokens, then one frame per tool call in call order."""
    async for token in model_stream:
        yield token

    calls = model_stream.tool_calls
    if not calls:
        return

    if on_tools_started is not None:
        on_tools_started()
    yield PROCESSING_MARKER

    async for invocation in coordinator.run(calls):
        if on_invocation is not None:
            on_invocation(invocation)
        if invocation.outcome == ToolOutcome.SUCCESS:
            yield result_marker(invocation.name) + render_tool_result(invocation.name, invocation.value)
        else:
            yield ERROR_MARKER + (invocation.error or "Unknown error")
