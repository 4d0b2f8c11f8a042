"""Minimal Server-Sent Events line parser."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class SSEMessage:
    event: str
    data: str
    id: Optional[str] = None
    retry: Optional[int] = None


def iter_sse(lines: Iterable[str]) -> Iterator[SSEMessage]:
    """Group decoded text lines into SSE messages.

    A blank line ends a message; ``data`` lines are joined with newlines;
    lines starting with ``:`` are comments (keep-alives). Messages without
    data are skipped, as the SSE dispatch rules require.
    """
    event = ""
    data: List[str] = []
    last_id: Optional[str] = None
    retry: Optional[int] = None
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data:
                yield SSEMessage(event=event or "message", data="\n".join(data), id=last_id, retry=retry)
            event, data, retry = "", [], None
            continue
        if line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            last_id = value
        elif name == "retry" and value.isdigit():
            retry = int(value)
    if data:
        yield SSEMessage(event=event or "message", data="\n".join(data), id=last_id, retry=retry)


__all__ = ["SSEMessage", "iter_sse"]
