from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ASSIGNED = "assigned"


@dataclass(slots=True, frozen=True)
class ActivityEntry:
    """Immutable audit record of one successful mutation."""

    type: ActivityType
    entity_type: str
    entity_id: str
    actor_id: str
    actor_name: str
    description: str
    metadata: Mapping[str, Any] | None = None
    timestamp: datetime = field(default_factory=utcnow)
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ActivityType(self.type))
        if self.metadata is not None:
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "description": self.description,
            "metadata": dict(self.metadata) if self.metadata is not None else None,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ActivityEntry:
        timestamp = payload.get("timestamp")
        return cls(
            type=ActivityType(payload["type"]),
            entity_type=str(payload["entity_type"]),
            entity_id=str(payload["entity_id"]),
            actor_id=str(payload["actor_id"]),
            actor_name=str(payload["actor_name"]),
            description=str(payload["description"]),
            metadata=payload.get("metadata"),
            timestamp=datetime.fromisoformat(timestamp) if isinstance(timestamp, str) else utcnow(),
            correlation_id=payload.get("correlation_id"),
        )
