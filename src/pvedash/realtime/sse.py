"""Server-Sent Events frame parser.

Learn: An SSE stream is UTF-8 text, one field per line, frames separated
by a blank line:

    event: alert
    data: {"id": 7, "severity": "critical", ...}

    : comment lines start with a colon and are ignored
    event: ping
    data: {"timestamp": 1700000000}

Multiple data lines in one frame are joined with "\\n". A frame without an
`event:` field has type "message". A frame with no data lines is not
dispatched (per the WHATWG EventSource algorithm).
"""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental line-based decoder; feed lines, get complete frames."""

    def __init__(self):
        self._event = ""
        self._data: list[str] = []
        self._id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, line: str) -> Optional[ServerSentEvent]:
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = ""
            return None
        sse = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        self._retry = None
        return sse


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Turn an async stream of text lines into ServerSentEvent frames."""
    decoder = SSEDecoder()
    async for line in lines:
        sse = decoder.feed(line)
        if sse is not None:
            yield sse
