"""Terminal consumer for the chat endpoint."""

from __future__ import annotations

import sys
from typing import Optional, TextIO

import httpx

from invoice_bot.client.demux import Segment, SegmentKind, StreamDemultiplexer
from invoice_bot.errors import IntegrationError
from invoice_bot.log import get_logger

logger = get_logger(__name__)

API_NAME = "invoice-bot"
_MARKER_STARTS = ("\n\n[Processing tools...]", "\n\n[Tool ")


def stable_prefix(text: str) -> str:
    """Drop a trailing fragment that could still turn into a frame marker."""
    cut = text.rfind("\n\n")
    if cut != -1 and any(m.startswith(text[cut:]) or text[cut:].startswith(m) for m in _MARKER_STARTS):
        return text[:cut]
    if text.endswith("\n"):
        return text[:-1]
    return text


def format_segment(segment: Segment) -> str:
    match segment.kind:
        case SegmentKind.PROCESSING:
            return "[Processing tools...]"
        case SegmentKind.RESULT:
            return f"--- {segment.tool_name or 'tool'} ---\n{segment.text}"
        case SegmentKind.ERROR:
            return f"Error: {segment.text}"


async def stream_chat(
    client: httpx.AsyncClient,
    prompt: str,
    interaction_id: Optional[str] = None,
    out: TextIO = sys.stdout,
) -> StreamDemultiplexer:
    """POST *prompt* to ``/api/chat``, echo the model text as it arrives, then print tool segments."""
    payload: dict = {"messages": [{"role": "user", "content": prompt}]}
    if interaction_id:
        payload["interactionId"] = interaction_id

    demux = StreamDemultiplexer()
    printed = 0
    async with client.stream("POST", "/api/chat", json=payload) as response:
        if response.status_code != 200:
            await response.aread()
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise IntegrationError(message, API_NAME, cause=f"HTTP {response.status_code}")

        logger.debug("chat_stream_opened", interaction_id=response.headers.get("x-interaction-id"))
        async for chunk in response.aiter_bytes():
            demux.feed(chunk)
            visible = stable_prefix(demux.display_text) if not demux.segments else demux.display_text
            if len(visible) > printed:
                out.write(visible[printed:])
                out.flush()
                printed = len(visible)

    demux.finish()
    logger.debug(
        "chat_stream_finished",
        tool_results=len(demux.tool_results()),
        tool_errors=len(demux.errors()),
    )
    out.write(demux.display_text[printed:])
    for segment in demux.segments:
        out.write("\n\n" + format_segment(segment))
    out.write("\n")
    out.flush()
    return demux
