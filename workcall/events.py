import json
import uuid
from datetime import datetime, timezone
from enum import Enum


class EventKind(str, Enum):
    ESTIMATE_SUBMITTED = "estimate-submitted"
    WORKER_SELECTED = "worker-selected"
    STATUS_CHANGED = "status-changed"
    COMPLETED = "completed"


def build_event(event_type: str, data: dict, event_id: str | None = None) -> dict:
    return {
        "event_id": event_id or str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def routing_key(kind: str) -> str:
    return f"booking.{kind}"


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)
