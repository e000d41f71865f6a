"""Splits a chat response stream back into display text and tool segments."""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional

# The blank line before a marker is dropped; the marker itself is captured so it can be re-attached.
_SPLIT_PATTERN = re.compile(r"\n\n(\[Processing tools\.\.\.\]|\[Tool Error|\[Tool )")
_RESULT_HEADER = re.compile(r"\[Tool (?P<name>.+?) Result\]: ")
_ERROR_HEADER = "[Tool Error]: "
_PROCESSING_HEADER = "[Processing tools...]"


class SegmentKind(StrEnum):
    PROCESSING = "processing"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Segment:
    kind: SegmentKind
    raw: str
    tool_name: Optional[str]
    text: str
    complete: bool


def _parse_segment(raw: str, complete: bool) -> Segment:
    if raw.startswith(_PROCESSING_HEADER):
        return Segment(SegmentKind.PROCESSING, raw, None, raw[len(_PROCESSING_HEADER):], complete)
    if raw.startswith("[Tool Error"):
        text = raw[len(_ERROR_HEADER):] if raw.startswith(_ERROR_HEADER) else ""
        return Segment(SegmentKind.ERROR, raw, None, text, complete)
    header = _RESULT_HEADER.match(raw)
    if header is None:
        # header not fully received yet
        return Segment(SegmentKind.RESULT, raw, None, "", complete)
    return Segment(SegmentKind.RESULT, raw, header.group("name"), raw[header.end():], complete)


class StreamDemultiplexer:
    """Accumulates chunks and re-parses the whole buffer after each one.

    Parsing always starts from the full buffer, so the result does not depend
    on how the stream was chunked. A marker split across chunks simply stays
    part of the preceding text until its remaining characters arrive.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False
        self.display_text = ""
        self.segments: list[Segment] = []

    def feed(self, chunk: str | bytes) -> None:
        if self._finished:
            raise RuntimeError("stream already finished")
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        self._reparse(complete=False)

    def finish(self) -> None:
        """Flush the decoder and mark every segment complete."""
        if self._finished:
            return
        self._buffer += self._decoder.decode(b"", final=True)
        self._finished = True
        self._reparse(complete=True)

    def _reparse(self, complete: bool) -> None:
        parts = _SPLIT_PATTERN.split(self._buffer)
        self.display_text = parts[0]
        raws = [marker + rest for marker, rest in zip(parts[1::2], parts[2::2])]
        self.segments = [
            _parse_segment(raw, complete or i < len(raws) - 1) for i, raw in enumerate(raws)
        ]

    def tool_results(self) -> list[Segment]:
        return [s for s in self.segments if s.kind == SegmentKind.RESULT]

    def errors(self) -> list[Segment]:
        return [s for s in self.segments if s.kind == SegmentKind.ERROR]
