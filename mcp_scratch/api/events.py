from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends

from ..core.dependencies import legacy_event_processor_dependency
from ..schemas.events import EventMessage, EventResponse
from ..services.legacy_events import LegacyEventProcessor

router = APIRouter(tags=["events"])


@router.post("/send-event", response_model=EventResponse, name="send_event")
async def send_event(
    event: EventMessage,
    processor: LegacyEventProcessor = Depends(legacy_event_processor_dependency),
):
    return EventResponse(
        received=event,
        processed=processor.process(event),
        timestamp=dt.datetime.now(dt.timezone.utc),
    )
