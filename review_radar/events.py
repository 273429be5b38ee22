"""
Stream events — the wire vocabulary shared by the orchestrator and the client.

Every frame is one JSON object on its own line (NDJSON). There is no sequence
number: order is stream position, and clients de-duplicate by fingerprint.
"""

import asyncio
import json
from enum import Enum
from typing import AsyncIterator, Optional


class Phase(str, Enum):
    """Which skeleton the client should show while this status is current."""
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    COMPARING = "comparing"
    SUMMARIZING = "summarizing"


def status_event(status: str, message: str, phase: Optional[Phase] = None,
                 app_id: Optional[str] = None, progress: Optional[int] = None) -> dict:
    event = {"type": "status", "status": status, "message": message}
    if phase is not None:
        event["phase"] = phase.value
    if app_id is not None:
        event["appId"] = app_id
    if progress is not None:
        event["progress"] = progress
    return event


def text_event(index: int, content: str) -> dict:
    """One narrative token. The index keeps repeated tokens distinct."""
    return {"type": "text", "index": index, "content": content}


def fingerprint(event: dict) -> str:
    """Structural identity of an event: equal events serialize identically."""
    return json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)


def encode_frame(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), default=str) + "\n"


def decode_frames(lines) -> list[dict]:
    """Parse NDJSON lines back into events, skipping blank lines."""
    return [json.loads(line) for line in lines if line and line.strip()]


class EventChannel:
    """
    A single ordered stream that several concurrent pipelines write into.

    Writers call send(); one reader iterates. close() ends the iteration once
    everything already sent has been read.
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def send(self, event: dict) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[dict]:
        while True:
            event = await self._queue.get()
            if event is self._CLOSED:
                return
            yield event
