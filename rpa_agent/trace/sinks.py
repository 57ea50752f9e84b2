"""Destinations for trace events."""
import json
from pathlib import Path
from typing import List, Union

import aiofiles

from rpa_agent.trace.types import TraceEvent


class MemorySink:
    """Keeps events in a list. Used by tests and by `trace` in step results."""

    def __init__(self) -> None:
        self._events: List[TraceEvent] = []

    def write(self, event: TraceEvent) -> None:
        self._events.append(event)

    def get_events(self) -> List[TraceEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()


class FileSink:
    """Appends events to a JSON Lines file, creating its directory on first use."""

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

    async def write(self, event: TraceEvent) -> None:
        line = json.dumps(event, ensure_ascii=False, default=str)
        async with aiofiles.open(self.file_path, mode="a", encoding="utf-8") as f:
            await f.write(line + "\n")
