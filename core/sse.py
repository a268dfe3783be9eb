# core/sse.py
"""
Incremental decoder for chat-completion SSE streams.

Wire format: `data: <json>` lines, terminated by `data: [DONE]`. A chunk
boundary may fall anywhere, including inside a multi-byte character or a
JSON record, so bytes are decoded incrementally and only complete lines are
parsed.
"""

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, List, Optional

from core.models import StreamEvent, StreamToken, UsageDelta

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def _extract_text(record: dict) -> Optional[str]:
    try:
        choice = record["choices"][0]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(choice, dict):
        return None
    for key in ("delta", "message"):
        part = choice.get(key)
        if isinstance(part, dict) and isinstance(part.get("content"), str):
            return part["content"]
    return None


def _extract_usage(record: dict) -> Optional[UsageDelta]:
    usage = record.get("usage")
    if not isinstance(usage, dict):
        return None
    return UsageDelta(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
    )


class SSEDecoder:
    """
    Push-style decoder: feed() raw byte chunks, get back the events they
    complete. After the sentinel is seen `done` is set and further input
    is ignored.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> List[StreamEvent]:
        """Parse whatever is left once the transport has closed."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._parse_lines([rest])

    def _parse_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            line = line.strip()
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self.done = True
                break
            if not payload:
                continue
            try:
                record = json.loads(payload)
            except json.JSONDecodeError:
                # Usually a record split across two chunks by an upstream proxy
                self.skipped_lines += 1
                logger.debug("Skipping malformed SSE line", extra={"event": "sse_malformed", "line": payload[:200]})
                continue
            if not isinstance(record, dict):
                continue

            text = _extract_text(record)
            if text:
                events.append(StreamToken(text))
            usage = _extract_usage(record)
            if usage is not None:
                events.append(usage)
        return events


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """
    Turn an async byte-chunk iterator into StreamToken / UsageDelta events.

    Stops at the sentinel or when the transport ends. Decode problems are
    skipped per line; transport errors raised by `chunks` propagate.
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.flush():
        yield event
