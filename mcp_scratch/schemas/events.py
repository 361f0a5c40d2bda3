from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from pydantic import BaseModel


class EventMessage(BaseModel):
    method: Optional[str] = None
    data: Any = None


class EventResponse(BaseModel):
    received: EventMessage
    processed: Dict[str, Any]
    timestamp: dt.datetime
