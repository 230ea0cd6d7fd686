"""Serialize orchestration events into SSE records.

Each event becomes one record whose ``event`` field is the event type and
whose ``data`` field is the JSON payload (which repeats ``type`` so clients
using a generic ``onmessage`` handler can dispatch on it). Records are
produced one at a time; nothing is buffered.
"""

import json
from typing import Any

from querydesk.orchestrator.events import OrchestrationEvent


def encode_event(event: OrchestrationEvent) -> dict[str, str]:
    """Encode one event as an sse-starlette record dict."""
    payload: dict[str, Any] = event.to_dict()
    return {"event": event.type, "data": json.dumps(payload, default=str)}
