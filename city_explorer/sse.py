import json
from typing import AsyncIterator, Iterable

from .chat.models import StreamEvent


def encode_event(event: StreamEvent) -> str:
    return f"event: {event.event}\ndata: {json.dumps(event.payload())}\n\n"


async def event_stream(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_event(event)


async def single_events(events: Iterable[StreamEvent]) -> AsyncIterator[str]:
    for event in events:
        yield encode_event(event)
