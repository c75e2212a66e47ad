"""Row models for the storage layer."""

import json
from typing import Any

from pydantic import BaseModel


class EventLogEntry(BaseModel):
    id: str
    request_id: str | None = None
    event_type: str
    data: str = "{}"
    duration_ms: int | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float | None = None
    created_at: str

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.data)
