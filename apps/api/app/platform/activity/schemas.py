from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    entity_type: str
    entity_id: str
    actor_id: str
    actor_name: str
    description: str
    metadata: dict[str, Any] | None = None
    timestamp: datetime
    correlation_id: str | None = None
